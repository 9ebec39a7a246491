"""Base handler class and the reconcile result contract."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from .. import metrics
from ..constants import CONTROLLER_NAME
from ..logging import log_resource_event
from ..models import PolicyRef, SyncState
from ..tracing import set_span_attribute, trace_span
from ..utils.context import with_correlation_id
from ..utils.errors import sanitize_exception


class ReconcileAction(str, Enum):
    DONE = "done"
    REQUEUE = "requeue"
    FATAL = "fatal"


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of one reconcile attempt."""

    action: ReconcileAction
    delay: float = 0.0
    error: Exception | None = None
    state: SyncState | None = None

    @classmethod
    def done(cls, state: SyncState | None = None) -> ReconcileResult:
        return cls(ReconcileAction.DONE, state=state)

    @classmethod
    def requeue_after(cls, delay: float, error: Exception | None = None) -> ReconcileResult:
        return cls(ReconcileAction.REQUEUE, delay=delay, error=error)

    @classmethod
    def fatal(cls, error: Exception) -> ReconcileResult:
        return cls(ReconcileAction.FATAL, error=error)


class BaseHandler:
    """Base class for reconcile handlers with structured logging and metrics."""

    def __init__(self, kind: str):
        """Initialize base handler.

        Args:
            kind: The Kubernetes resource kind (e.g., "Policy")
        """
        self.kind = kind
        self.logger = logging.getLogger(__name__)

    def _log(
        self,
        level: int,
        ref: PolicyRef,
        message: str,
        event: str,
        reason: str,
        **kwargs: Any,
    ) -> None:
        log_resource_event(
            self.logger,
            level,
            controller=CONTROLLER_NAME,
            resource_kind=self.kind,
            resource_name=ref.name,
            namespace=ref.namespace,
            event=event,
            reason=reason,
            message=message,
            **kwargs,
        )

    def log_debug(self, ref: PolicyRef, message: str, event: str = "debug", reason: str = "Debug", **kwargs: Any) -> None:
        self._log(logging.DEBUG, ref, message, event, reason, **kwargs)

    def log_info(self, ref: PolicyRef, message: str, event: str = "info", reason: str = "Info", **kwargs: Any) -> None:
        """Log an info-level structured log message.

        Args:
            ref: Policy the message is about
            message: Log message
            event: Event type (default: "info")
            reason: Reason for the event (default: "Info")
            **kwargs: Additional fields to include in the log
        """
        self._log(logging.INFO, ref, message, event, reason, **kwargs)

    def log_warning(
        self,
        ref: PolicyRef,
        message: str,
        event: str = "warning",
        reason: str = "Warning",
        **kwargs: Any,
    ) -> None:
        """Log a warning-level structured log message."""
        self._log(logging.WARNING, ref, message, event, reason, **kwargs)

    def log_error(
        self,
        ref: PolicyRef,
        message: str,
        error: Exception | None = None,
        event: str = "error",
        reason: str = "Error",
        **kwargs: Any,
    ) -> None:
        """Log an error-level structured log message.

        Args:
            ref: Policy the message is about
            message: Log message
            error: Optional exception to include sanitized error details
            event: Event type (default: "error")
            reason: Reason for the event (default: "Error")
            **kwargs: Additional fields to include in the log
        """
        log_data = kwargs.copy()

        if error is not None:
            log_data["error"] = sanitize_exception(error)
            log_data["error_type"] = type(error).__name__

        self._log(logging.ERROR, ref, message, event, reason, **log_data)

    def reconcile_with_metrics(
        self,
        ref: PolicyRef,
        reconcile_fn: Callable[[], ReconcileResult],
    ) -> ReconcileResult:
        """Run one reconcile attempt with a correlation id, a trace span and metrics.

        Args:
            ref: Policy being reconciled
            reconcile_fn: Function performing the attempt; must not raise

        Returns:
            The attempt's result
        """
        with with_correlation_id(), trace_span(
            "reconcile_policy",
            attributes={"resource.kind": self.kind, "policy.namespace": ref.namespace, "policy.name": ref.name},
        ):
            metrics.reconcile_total.labels(result="started").inc()
            start_time = time.time()
            try:
                result = reconcile_fn()
            finally:
                duration = time.time() - start_time
                metrics.reconcile_duration_seconds.observe(duration)

            metrics.reconcile_total.labels(result=result.action.value).inc()
            if result.state is not None:
                metrics.reconcile_state_total.labels(state=result.state.value).inc()
            set_span_attribute("reconcile.result", result.action.value)
            return result
