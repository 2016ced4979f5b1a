"""Core module for exceptions, telemetry, locks and time helpers."""

from prima.core.clock import ensure_utc, utcnow
from prima.core.exceptions import (
    BadRequestError,
    ConflictError,
    KeywordConfigError,
    NotFoundError,
    RateLimitedError,
    StateConflictError,
    WhatsAppAPIError,
)
from prima.core.locks import KeyedLock
from prima.core.telemetry import get_tracer, setup_all_instrumentation, setup_telemetry

__all__ = [
    "BadRequestError",
    "ConflictError",
    "KeyedLock",
    "KeywordConfigError",
    "NotFoundError",
    "RateLimitedError",
    "StateConflictError",
    "WhatsAppAPIError",
    "ensure_utc",
    "get_tracer",
    "setup_all_instrumentation",
    "setup_telemetry",
    "utcnow",
]
