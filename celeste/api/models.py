"""Pydantic request/response models shared across Celeste API endpoints.

Endpoint-specific request models live beside their routes; this module holds
the validation helpers and the common error shape.
"""

from __future__ import annotations

import re
from typing import Any

from pydantic import BaseModel

# =============================================================================
# VALIDATION HELPERS
# =============================================================================

# Limits on caller-supplied JSON blobs (signal evidence)
MAX_DICT_SIZE = 50
MAX_STRING_LENGTH = 2_000
MAX_DICT_DEPTH = 4

MAX_IDENTIFIER_LENGTH = 128
_IDENTIFIER_RE = re.compile(r"^[A-Za-z0-9_.:@-]+$")


def validate_identifier(value: str, field_name: str = "identifier") -> str:
    """
    Strip and validate an opaque identifier (user id, tracking id).

    Raises:
        ValueError: If blank, too long or containing unexpected characters
    """
    value = value.strip()
    if not value:
        raise ValueError(f"{field_name} must not be blank")
    if len(value) > MAX_IDENTIFIER_LENGTH:
        raise ValueError(f"{field_name} too long: {len(value)} > {MAX_IDENTIFIER_LENGTH}")
    if not _IDENTIFIER_RE.match(value):
        raise ValueError(f"{field_name} contains invalid characters")
    return value


def validate_dict_structure(
    data: dict[str, Any],
    max_keys: int = MAX_DICT_SIZE,
    max_str_len: int = MAX_STRING_LENGTH,
    max_depth: int = MAX_DICT_DEPTH,
    current_depth: int = 0,
) -> None:
    """
    Validate dict structure to keep stored evidence blobs small and shallow.

    Args:
        data: Dict to validate
        max_keys: Maximum number of keys (or list items) allowed
        max_str_len: Maximum string value length
        max_depth: Maximum nesting depth (dicts + lists combined)
        current_depth: Current recursion depth

    Raises:
        ValueError: If validation fails
    """
    if current_depth > max_depth:
        raise ValueError(f"Dict nesting exceeds maximum depth of {max_depth}")

    if len(data) > max_keys:
        raise ValueError(f"Dict has too many keys: {len(data)} > {max_keys}")

    for key, value in data.items():
        if isinstance(key, str) and len(key) > 100:
            raise ValueError(f"Dict key too long: {len(key)} > 100")
        _validate_value(value, max_keys, max_str_len, max_depth, current_depth)


def _validate_value(
    value: Any, max_keys: int, max_str_len: int, max_depth: int, current_depth: int
) -> None:
    if isinstance(value, str):
        if len(value) > max_str_len:
            raise ValueError(f"String value too long: {len(value)} > {max_str_len}")
    elif isinstance(value, dict):
        validate_dict_structure(value, max_keys, max_str_len, max_depth, current_depth + 1)
    elif isinstance(value, list):
        if current_depth + 1 > max_depth:
            raise ValueError(f"List nesting exceeds maximum depth of {max_depth}")
        if len(value) > max_keys:
            raise ValueError(f"List too long: {len(value)} > {max_keys}")
        for item in value:
            _validate_value(item, max_keys, max_str_len, max_depth, current_depth + 1)


# =============================================================================
# SHARED MODELS
# =============================================================================


class ErrorResponse(BaseModel):
    """Standard error response."""

    success: bool = False
    error: str
    error_count: int = 1
    invalid_fields: list[str] = []
