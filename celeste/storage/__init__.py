"""Typed data access for the behavioral datastore."""

from __future__ import annotations

from celeste.storage.repository import (
    BehavioralStore,
    DatastoreError,
    SupabaseBehavioralStore,
)

__all__ = [
    "BehavioralStore",
    "DatastoreError",
    "SupabaseBehavioralStore",
]
