"""Utility functions for the Policy Spec Sync operator."""

from .backoff import Backoff
from .context import get_correlation_id, with_correlation_id
from .errors import (
    ErrorKind,
    classify,
    sanitize_error_message,
    sanitize_exception,
    translate_api_exception,
)
from .rate_limit import RateLimiter

__all__ = [
    "Backoff",
    "ErrorKind",
    "RateLimiter",
    "classify",
    "get_correlation_id",
    "sanitize_error_message",
    "sanitize_exception",
    "translate_api_exception",
    "with_correlation_id",
]
