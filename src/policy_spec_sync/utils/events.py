"""Utilities for recording Kubernetes events on the managed cluster."""

from __future__ import annotations

import logging
import queue
import threading
from datetime import datetime, timezone
from typing import Any

from ..constants import (
    API_GROUP_VERSION,
    CONTROLLER_NAME,
    EVENT_REASON_CLEANUP_PENDING,
    EVENT_REASON_MIRROR_CREATED,
    EVENT_REASON_MIRROR_DELETED,
    EVENT_REASON_MIRROR_UPDATED,
    EVENT_REASON_ORPHAN_DELETED,
    EVENT_REASON_RECONCILE_FAILED,
    KIND_POLICY,
)
from ..models import PolicyRef
from .errors import sanitize_error_message

logger = logging.getLogger(__name__)

# Kubernetes caps event messages at 1024 bytes
_MAX_MESSAGE_LENGTH = 1024


class EventRecorder:
    """Fire-and-forget event sink.

    ``record`` only enqueues; a daemon thread posts the events. Posting
    failures and a full buffer drop the event.
    """

    def __init__(self, core_api: Any, component: str = CONTROLLER_NAME, max_pending: int = 1000):
        self.core_api = core_api
        self.component = component
        self._queue: queue.Queue[dict[str, Any] | None] = queue.Queue(maxsize=max_pending)
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="event-recorder", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        if self._thread is None:
            return
        try:
            self._queue.put(None, timeout=timeout)
        except queue.Full:
            pass
        self._thread.join(timeout)
        self._thread = None

    def record(
        self,
        ref: PolicyRef,
        reason: str,
        message: str,
        type_: str = "Normal",
        uid: str | None = None,
    ) -> None:
        """Queue an event about the policy at ``ref``. Never blocks or raises."""
        try:
            self._queue.put_nowait(self.build_event(ref, reason, message, type_, uid))
        except queue.Full:
            logger.debug(f"Event buffer full, dropping {reason} event for {ref}")

    def build_event(
        self,
        ref: PolicyRef,
        reason: str,
        message: str,
        type_: str = "Normal",
        uid: str | None = None,
    ) -> dict[str, Any]:
        now = datetime.now(timezone.utc).isoformat()
        involved = {
            "apiVersion": API_GROUP_VERSION,
            "kind": KIND_POLICY,
            "name": ref.name,
            "namespace": ref.namespace,
        }
        if uid:
            involved["uid"] = uid
        return {
            "apiVersion": "v1",
            "kind": "Event",
            "metadata": {"generateName": f"{ref.name}.", "namespace": ref.namespace},
            "involvedObject": involved,
            "reason": reason,
            "message": sanitize_error_message(message)[:_MAX_MESSAGE_LENGTH],
            "type": type_,
            "source": {"component": self.component},
            "reportingComponent": self.component,
            "firstTimestamp": now,
            "lastTimestamp": now,
            "count": 1,
        }

    def post(self, event: dict[str, Any]) -> None:
        try:
            self.core_api.create_namespaced_event(event["metadata"]["namespace"], event)
        except Exception as e:
            logger.debug(f"Failed to post {event.get('reason')} event: {e}")

    def _run(self) -> None:
        while True:
            event = self._queue.get()
            if event is None:
                return
            self.post(event)


def emit_mirror_created(recorder: EventRecorder, ref: PolicyRef) -> None:
    """Emit mirror created event."""
    recorder.record(ref, EVENT_REASON_MIRROR_CREATED, f"Policy {ref} mirrored from hub")


def emit_mirror_updated(recorder: EventRecorder, ref: PolicyRef) -> None:
    """Emit mirror updated event."""
    recorder.record(ref, EVENT_REASON_MIRROR_UPDATED, f"Policy {ref} spec updated from hub")


def emit_mirror_deleted(recorder: EventRecorder, ref: PolicyRef) -> None:
    """Emit mirror deleted event."""
    recorder.record(ref, EVENT_REASON_MIRROR_DELETED, f"Policy {ref} deleted because the hub policy is being deleted")


def emit_orphan_deleted(recorder: EventRecorder, ref: PolicyRef) -> None:
    """Emit orphan deleted event."""
    recorder.record(ref, EVENT_REASON_ORPHAN_DELETED, f"Policy {ref} deleted because the hub policy no longer exists")


def emit_cleanup_pending(recorder: EventRecorder, ref: PolicyRef, message: str) -> None:
    """Emit cleanup pending event."""
    recorder.record(ref, EVENT_REASON_CLEANUP_PENDING, message, type_="Warning")


def emit_reconcile_failed(recorder: EventRecorder, ref: PolicyRef, message: str) -> None:
    """Emit reconcile failed event."""
    recorder.record(ref, EVENT_REASON_RECONCILE_FAILED, message, type_="Warning")
