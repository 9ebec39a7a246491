"""Spec synchronization of hub policies onto the managed cluster."""

from __future__ import annotations

from typing import Any, Callable

from .. import metrics
from ..constants import KIND_POLICY
from ..models import (
    HubPolicy,
    ManagedPolicy,
    PolicyRef,
    SyncState,
    apply_hub_spec,
    build_mirror,
    derive_sync_state,
    mirror_metadata_current,
)
from ..utils.backoff import Backoff
from ..utils.errors import (
    CleanupPendingError,
    NotFoundError,
    TransientError,
    sanitize_exception,
)
from ..utils.events import (
    EventRecorder,
    emit_cleanup_pending,
    emit_mirror_created,
    emit_mirror_deleted,
    emit_mirror_updated,
    emit_orphan_deleted,
    emit_reconcile_failed,
)
from .base import BaseHandler, ReconcileResult
from .finalizers import FinalizerTracker


class PolicySyncHandler(BaseHandler):
    """Drives the managed mirror of one policy toward its hub object.

    Every attempt re-reads both clusters; nothing from the triggering
    notification is trusted. The hub spec always wins and the managed side
    only contributes whether a mirror exists.
    """

    def __init__(
        self,
        hub_client: Any,
        managed_client: Any,
        finalizers: FinalizerTracker,
        recorder: EventRecorder,
        backoff: Backoff | None = None,
        warn_after_failures: int = 3,
    ):
        super().__init__(KIND_POLICY)
        self.hub = hub_client
        self.managed = managed_client
        self.finalizers = finalizers
        self.recorder = recorder
        self.backoff = backoff or Backoff()
        self.warn_after_failures = warn_after_failures

    def reconcile(self, ref: PolicyRef) -> ReconcileResult:
        """Reconcile one policy. Never raises."""
        return self.reconcile_with_metrics(ref, lambda: self._reconcile(ref))

    def _reconcile(self, ref: PolicyRef) -> ReconcileResult:
        try:
            state = self.sync(ref)
        except (TransientError, NotFoundError) as e:
            # NotFound here means an object vanished between read and write
            return self._requeue(ref, e)
        except Exception as e:
            return self._fail(ref, e)

        self.backoff.forget(ref)
        return ReconcileResult.done(state)

    def sync(self, ref: PolicyRef) -> SyncState:
        """Perform one pass and return the state observed at its start.

        Raises:
            SpecSyncError: On any classified client failure
        """
        hub_obj = self.hub.get_or_none(ref)
        if hub_obj is None:
            return self._sync_hub_absent(ref)

        hub = HubPolicy.from_object(hub_obj)
        if hub.deleting:
            return self._sync_hub_deleting(ref, hub)
        return self._sync_hub_present(ref, hub)

    def _sync_hub_present(self, ref: PolicyRef, hub: HubPolicy) -> SyncState:
        # The finalizer must be stored before any mirror can exist
        if not self.finalizers.has_finalizer(hub):
            hub = self.finalizers.add(hub)
            self.log_info(ref, "Added finalizer to hub policy", event="finalizer", reason="FinalizerAdded")

        managed_obj = self.managed.get_or_none(ref)
        if managed_obj is None:
            self._write_mirror("create", lambda: self.managed.create(build_mirror(hub)))
            self.log_info(ref, "Created managed policy from hub", event="mirror", reason="MirrorCreated")
            emit_mirror_created(self.recorder, ref)
            return SyncState.HUB_ONLY

        managed = ManagedPolicy.from_object(managed_obj)
        state = derive_sync_state(hub, managed)

        if managed.deleting:
            raise CleanupPendingError("Managed policy is terminating, will recreate once it is gone", cluster="managed", ref=ref)

        if state is SyncState.BOTH_IN_SYNC and mirror_metadata_current(managed, ref):
            self.log_debug(ref, "Managed policy in sync", event="mirror", reason="InSync")
            return state

        if not managed.is_mirror:
            self.log_warning(ref, "Adopting managed policy without mirror label", event="mirror", reason="MirrorAdopted")

        self._write_mirror("update", lambda: self.managed.update(apply_hub_spec(managed, hub)))
        self.log_info(ref, "Updated managed policy from hub", event="mirror", reason="MirrorUpdated", state=state.value)
        emit_mirror_updated(self.recorder, ref)
        return state

    def _sync_hub_deleting(self, ref: PolicyRef, hub: HubPolicy) -> SyncState:
        owns_ref = self.finalizers.has_finalizer(hub)
        try:
            managed_obj = self.managed.get_or_none(ref)
            if managed_obj is not None:
                managed = ManagedPolicy.from_object(managed_obj)
                if not managed.deleting:
                    self._delete_mirror(ref, managed)
                    self.log_info(ref, "Deleted managed policy for deleting hub policy", event="mirror", reason="MirrorDeleted")
                    emit_mirror_deleted(self.recorder, ref)
                # Only a NotFound read proves the mirror is gone
                if self.managed.get_or_none(ref) is not None:
                    raise CleanupPendingError("Managed policy is still terminating", cluster="managed", ref=ref)
        except TransientError as e:
            if owns_ref:
                emit_cleanup_pending(
                    self.recorder,
                    ref,
                    f"Hub policy deletion waits for managed cleanup: {sanitize_exception(e)}",
                )
            raise

        if owns_ref:
            self.finalizers.remove(hub)
            self.log_info(ref, "Removed finalizer from hub policy", event="finalizer", reason="FinalizerRemoved")
        return SyncState.HUB_DELETING

    def _sync_hub_absent(self, ref: PolicyRef) -> SyncState:
        managed_obj = self.managed.get_or_none(ref)
        if managed_obj is None:
            return SyncState.ABSENT_ABSENT

        # Labelled or not, the object at the ref is an orphan
        managed = ManagedPolicy.from_object(managed_obj)
        if not managed.deleting:
            self._delete_mirror(ref, managed)
            metrics.orphans_deleted_total.inc()
            self.log_info(ref, "Deleted orphaned managed policy", event="mirror", reason="OrphanDeleted")
            emit_orphan_deleted(self.recorder, ref)
        return SyncState.MANAGED_ONLY

    def _delete_mirror(self, ref: PolicyRef, managed: ManagedPolicy) -> None:
        def delete() -> None:
            try:
                self.managed.delete(ref, uid=managed.uid)
            except NotFoundError:
                pass

        self._write_mirror("delete", delete)

    def _write_mirror(self, operation: str, write: Callable[[], Any]) -> Any:
        try:
            result = write()
        except Exception:
            metrics.mirror_operations_total.labels(operation=operation, result="failed").inc()
            raise
        metrics.mirror_operations_total.labels(operation=operation, result="success").inc()
        return result

    def _requeue(self, ref: PolicyRef, error: Exception) -> ReconcileResult:
        delay = self.backoff.next_delay(ref)
        failures = self.backoff.failures(ref)
        error_type = type(error).__name__
        metrics.requeue_total.labels(error_type=error_type).inc()
        metrics.error_total.labels(kind="transient", error_type=error_type).inc()
        self.log_warning(
            ref,
            f"Reconcile will be retried in {delay:.1f}s",
            event="requeue",
            reason="Requeue",
            error=sanitize_exception(error),
            error_type=error_type,
            failures=failures,
        )
        if failures >= self.warn_after_failures:
            emit_reconcile_failed(
                self.recorder,
                ref,
                f"Spec sync failing for {failures} attempts: {sanitize_exception(error)}",
            )
        return ReconcileResult.requeue_after(delay, error)

    def _fail(self, ref: PolicyRef, error: Exception) -> ReconcileResult:
        self.backoff.forget(ref)
        metrics.error_total.labels(kind="fatal", error_type=type(error).__name__).inc()
        self.log_error(ref, "Reconcile abandoned until the policy changes", error=error, event="fatal", reason="ReconcileFailed")
        emit_reconcile_failed(self.recorder, ref, f"Spec sync failed: {sanitize_exception(error)}")
        return ReconcileResult.fatal(error)
