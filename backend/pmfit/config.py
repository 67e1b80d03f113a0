"""
PM-Fit Backend - Central Configuration

All environment variables and queue defaults live here.
Import `settings`, `log`, and `generate_error_code` from this module.
Do not read `os.environ` anywhere else.
"""

import uuid
from datetime import datetime, timezone

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All environment variables. Loaded from .env or the deployment env."""

    # Serverless functions (invoke_function / prefetch_related target)
    functions_base_url: str = "http://localhost:54321/functions/v1"
    functions_api_key: str = ""       # Sent as a bearer token when set

    # Search providers (empty key = provider disabled)
    serper_api_key: str = ""
    tavily_api_key: str = ""

    # Request queue
    queue_max_concurrency: int = 3
    queue_max_retries: int = 2
    queue_backoff_base_ms: int = 400
    queue_backoff_max_ms: int = 5000
    queue_dedupe_ttl_ms: int = 0      # 0 disables deduplication
    queue_dedupe_max_entries: int = 500  # Cap on cached results; oldest 25% evicted when full
    queue_min_interval_ms: int = 0    # Minimum gap between operation starts

    # Outbound HTTP
    http_timeout_seconds: float = 10.0

    # App
    environment: str = "development"  # "development" | "production" | "test"
    cors_origins: str = "http://localhost:5173"  # Comma-separated for multiple origins

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


# Singleton: import this everywhere
settings = Settings()


# ──────────────────────────────────────────────────────
# Logging Utilities (structured print)
# ──────────────────────────────────────────────────────

def generate_error_code() -> str:
    """Generate a short, user-friendly error reference code.

    Format: 'PM-' followed by 6 uppercase hex characters.
    Example: 'PM-3F8A2C'

    The same code is logged on the backend AND returned in the API error
    detail, so a failed upstream call can be traced from the client side.
    """
    return f"PM-{uuid.uuid4().hex[:6].upper()}"


def log(level: str, message: str, **context) -> None:
    """Structured print-based logger.

    Every log line follows the format:
        [ISO_TIMESTAMP] [LEVEL] message | key1=value1 key2=value2

    Args:
        level: One of "INFO", "WARN", "ERROR".
        message: Human-readable description of what happened.
        **context: Arbitrary key-value pairs. Include the task label when available.

    Usage:
        log("INFO", "task completed", label="reddit-search", attempts=1, duration_ms=412)
        log("ERROR", "task failed", label="google-trends", error_code="PM-3F8A2C", error=str(e))
    """
    ts = datetime.now(timezone.utc).isoformat()
    ctx = " ".join(f"{k}={v}" for k, v in context.items())
    print(f"[{ts}] [{level}] {message} | {ctx}", flush=True)
