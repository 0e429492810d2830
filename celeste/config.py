"""Centralized configuration for the Celeste backend.

Typed constants for environment, datastore, inference, caching, scoring and
rate-limiting settings. Environment variable overrides use safe defaults so
the app starts without extra env configuration.
"""

from __future__ import annotations

import os

from dotenv import load_dotenv

# Load .env before the constants below read the environment
load_dotenv()


def _env_bool(key: str, default: str) -> bool:
    return os.getenv(key, default).lower() in ("1", "true", "yes")


# --- App ---
APP_NAME: str = "Celeste Behavioral API"
APP_VERSION: str = "1.0.0"
ENV: str = os.getenv("CELESTE_ENV", "development")
API_HOST: str = os.getenv("API_HOST", "0.0.0.0")
API_PORT: int = int(os.getenv("API_PORT", "8000"))

# --- Datastore (Supabase) ---
SUPABASE_URL: str = os.getenv("SUPABASE_URL", "")
SUPABASE_ANON_KEY: str = os.getenv("SUPABASE_ANON_KEY", "")
STORE_CALL_TIMEOUT_SECONDS: float = float(os.getenv("STORE_CALL_TIMEOUT_SECONDS", "2"))
STORE_BREAKER_FAIL_MAX: int = 3
STORE_BREAKER_RESET_SECONDS: float = 30.0

# --- Inference ---
HUGGINGFACE_API_KEY: str = os.getenv("HUGGINGFACE_API_KEY", "")
HUGGINGFACE_API_URL: str = os.getenv(
    "HUGGINGFACE_API_URL", "https://api-inference.huggingface.co/models"
)
CLASSIFIER_MODEL: str = "facebook/bart-large-mnli"
GENERATOR_MODEL: str = "facebook/bart-large"
INFERENCE_TIMEOUT_SECONDS: float = float(os.getenv("INFERENCE_TIMEOUT_SECONDS", "3"))
ML_ENABLED: bool = _env_bool("CELESTE_ML_ENABLED", "true")

# --- Cache ---
CACHE_TTL_SECONDS: int = int(os.getenv("CACHE_TTL_SECONDS", "30"))
CACHE_MAX_ENTRIES: int = int(os.getenv("CACHE_MAX_ENTRIES", "5000"))

# --- Scoring ---
PATTERN_MIN_CONFIDENCE: float = 0.7
INTERVENTION_COST_THRESHOLD: float = 1000.0
DEFAULT_DAILY_BURN: float = 100.0
MAX_RESISTANCE_LEVEL: int = 5
RECENT_MESSAGE_LIMIT: int = 50
COMPETITOR_LIMIT: int = 20
MIN_COMPETITORS_FOR_RANK: int = 5

# --- Interventions ---
# Unset means a fresh random stream per process
INTERVENTION_SEED: int | None = (
    int(os.environ["CELESTE_INTERVENTION_SEED"])
    if os.getenv("CELESTE_INTERVENTION_SEED")
    else None
)

# --- Request handling ---
SLOW_REQUEST_MS: int = 500
MAX_MESSAGE_CHARS: int = 5000

# --- Realtime stream ---
REALTIME_POLL_SECONDS: float = float(os.getenv("REALTIME_POLL_SECONDS", "2"))
REALTIME_HEARTBEAT_SECONDS: float = 30.0

# --- Rate Limiting ---
RATE_LIMIT_RPM: int = 60
RATE_LIMIT_RPH: int = 1000
RATE_LIMIT_ANALYSES_PER_USER_PM: int = 20
RATE_LIMIT_MAX_IPS: int = 10000


def is_production() -> bool:
    """Check if running in production"""
    return ENV == "production"
