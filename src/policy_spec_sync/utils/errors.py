"""Error hierarchy, API error classification and sanitization utilities."""

from __future__ import annotations

import re
from enum import Enum
from typing import Any

from kubernetes.client.exceptions import ApiException
from urllib3.exceptions import HTTPError as Urllib3HTTPError


class ErrorKind(str, Enum):
    """Outcome classes for a failed API call."""

    NOT_FOUND = "not_found"
    TRANSIENT = "transient"
    FATAL = "fatal"


class SpecSyncError(Exception):
    """Base exception for spec synchronization failures.

    Attributes:
        message: Human-readable error message.
        status_code: HTTP status code from the API server (if applicable).
        cluster: Cluster the failing call was made against ("hub" or "managed").
        ref: Policy reference involved, as "namespace/name".
    """

    kind = ErrorKind.FATAL

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        cluster: str | None = None,
        ref: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.cluster = cluster
        self.ref = ref

    def __str__(self) -> str:
        parts = [self.message]
        if self.status_code:
            parts.append(f"(status: {self.status_code})")
        if self.cluster:
            loc = f"[{self.cluster}"
            if self.ref is not None:
                loc += f" {self.ref}"
            loc += "]"
            parts.append(loc)
        return " ".join(parts)


class NotFoundError(SpecSyncError):
    """The requested object does not exist. A valid state, not a failure."""

    kind = ErrorKind.NOT_FOUND


class TransientError(SpecSyncError):
    """Failure expected to clear by itself; the key is requeued with backoff."""

    kind = ErrorKind.TRANSIENT


class ConflictError(TransientError):
    """Optimistic-concurrency conflict or an object that already exists."""


class ClusterUnavailableError(TransientError):
    """Network failure, throttling or server-side unavailability."""


class CleanupPendingError(TransientError):
    """The managed mirror was deleted but is still terminating."""


class FatalError(SpecSyncError):
    """Failure that will not clear without an external change."""

    kind = ErrorKind.FATAL


class ForbiddenError(FatalError):
    """Authentication or authorization was rejected."""


class InvalidRequestError(FatalError):
    """The API server rejected the request as malformed or invalid."""


_TRANSIENT_STATUSES = {408, 429, 500, 502, 503, 504}


def translate_api_exception(
    error: Exception,
    cluster: str | None = None,
    ref: Any = None,
) -> Exception:
    """Translate a Kubernetes client exception into the spec sync hierarchy.

    Exceptions already in the hierarchy and exceptions that are not API or
    transport failures are returned unchanged.

    Args:
        error: The original exception
        cluster: Cluster the call was made against
        ref: Policy reference the call concerned

    Returns:
        The translated exception
    """
    if isinstance(error, SpecSyncError):
        return error

    if isinstance(error, ApiException):
        status = error.status or 0
        reason = sanitize_error_message(error.reason or f"API error {status}")

        if status == 404:
            return NotFoundError("Object not found", status, cluster, ref)
        if status == 409:
            return ConflictError(reason, status, cluster, ref)
        if status in (401, 403):
            return ForbiddenError(reason, status, cluster, ref)
        if status == 0 or status in _TRANSIENT_STATUSES or status >= 500:
            return ClusterUnavailableError(reason, status or None, cluster, ref)
        return InvalidRequestError(reason, status, cluster, ref)

    if isinstance(error, (Urllib3HTTPError, ConnectionError, TimeoutError)):
        return ClusterUnavailableError(sanitize_exception(error), None, cluster, ref)

    return error


def classify(error: Exception) -> ErrorKind:
    """Classify an exception as not-found, transient or fatal.

    Anything outside the spec sync hierarchy is fatal.
    """
    if isinstance(error, SpecSyncError):
        return error.kind
    return ErrorKind.FATAL


# Patterns that might expose credentials
SENSITIVE_PATTERNS = [
    r"(bearer)\s+[A-Za-z0-9\-\._~\+/]+=*",
    r"(client-key-data)[:\s]+\S+",
    r"(client-certificate-data)[:\s]+\S+",
    r"(certificate-authority-data)[:\s]+\S+",
]

# Fields to redact completely
SENSITIVE_FIELDS = {
    "password",
    "token",
    "secret",
}


def sanitize_error_message(message: str) -> str:
    """Sanitize error message to remove credentials.

    Args:
        message: Original error message

    Returns:
        Sanitized error message with sensitive data redacted
    """
    sanitized = message

    for pattern in SENSITIVE_PATTERNS:
        sanitized = re.sub(pattern, r"\1 [REDACTED]", sanitized, flags=re.IGNORECASE)

    for field in SENSITIVE_FIELDS:
        sanitized = re.sub(
            rf"\b{field}([=:]\s*|\s+)([^\s,;\)]+)",
            rf"{field}: [REDACTED]",
            sanitized,
            flags=re.IGNORECASE,
        )

    return sanitized


def sanitize_exception(error: Exception) -> str:
    """Sanitize exception message.

    Args:
        error: Exception object

    Returns:
        Sanitized error message
    """
    return sanitize_error_message(str(error))
