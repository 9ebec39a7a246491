"""Worker pool, resync loop and managed-side watch feeding the reconcile engine."""

from __future__ import annotations

import logging
import threading
from typing import Any, Mapping

from kubernetes import watch

from .config import OperatorConfig
from .constants import CLUSTER_HUB, CLUSTER_MANAGED, LABEL_SELECTOR_MIRROR
from .handlers.base import ReconcileAction
from .handlers.policy import PolicySyncHandler
from .models import PolicyRef, mirror_source
from .utils.backoff import Backoff
from .utils.errors import SpecSyncError, classify, sanitize_exception, translate_api_exception
from .workqueue import WorkQueue

logger = logging.getLogger(__name__)


class Controller:
    """Feeds policy keys from both clusters into a work queue drained by workers.

    Hub notifications arrive through ``enqueue_hub_object`` (called by the
    kopf event handler); managed notifications come from a watch stream on
    mirror-labelled objects. A periodic full resync enqueues every known key
    from both sides, which also catches missed notifications.
    """

    def __init__(
        self,
        config: OperatorConfig,
        handler: PolicySyncHandler,
        hub_client: Any,
        managed_client: Any,
        queue: WorkQueue[PolicyRef] | None = None,
    ):
        self.config = config
        self.handler = handler
        self.hub_client = hub_client
        self.managed_client = managed_client
        self.queue: WorkQueue[PolicyRef] = queue if queue is not None else WorkQueue()
        self._stop = threading.Event()
        self._workers: list[threading.Thread] = []
        self._background: list[threading.Thread] = []
        self._watchers: set[watch.Watch] = set()
        self._watchers_lock = threading.Lock()

    # Enqueue signals

    def _watched(self, namespace: str) -> bool:
        return self.config.cluster_wide or namespace in self.config.watch_namespaces

    def enqueue(self, ref: PolicyRef) -> None:
        if ref.namespace and ref.name and self._watched(ref.namespace):
            self.queue.add(ref)

    def enqueue_hub_object(self, obj: Mapping[str, Any]) -> None:
        self.enqueue(PolicyRef.from_object(obj))

    def enqueue_managed_object(self, obj: Mapping[str, Any]) -> None:
        """Enqueue the hub reference a managed mirror points at; ignore non-mirrors."""
        source = mirror_source(obj)
        if source is not None:
            self.enqueue(source)

    def resync(self) -> int:
        """Enqueue every policy on the hub and every mirror on the managed cluster.

        Listing failures are logged and that side is skipped until the next resync.

        Returns:
            Number of distinct keys enqueued
        """
        refs: set[PolicyRef] = set()
        for namespace in self.config.watch_namespaces or (None,):
            try:
                for obj in self.hub_client.list(namespace):
                    refs.add(PolicyRef.from_object(obj))
            except SpecSyncError as e:
                logger.warning(f"Resync could not list {CLUSTER_HUB} policies in {namespace or 'all namespaces'}: {e}")
            try:
                for obj in self.managed_client.list(namespace, label_selector=LABEL_SELECTOR_MIRROR):
                    source = mirror_source(obj)
                    if source is not None:
                        refs.add(source)
            except SpecSyncError as e:
                logger.warning(f"Resync could not list {CLUSTER_MANAGED} mirrors in {namespace or 'all namespaces'}: {e}")

        for ref in sorted(refs):
            self.enqueue(ref)
        logger.info(f"Resync enqueued {len(refs)} policies")
        return len(refs)

    # Workers

    def process_next_item(self, timeout: float | None = None) -> bool:
        """Reconcile one key from the queue.

        Returns:
            False once the queue is shut down (or the timeout passed with nothing to do)
        """
        ref = self.queue.get(timeout)
        if ref is None:
            return False
        try:
            result = self.handler.reconcile(ref)
            if result.action is ReconcileAction.REQUEUE:
                self.queue.add_after(ref, result.delay)
        except Exception as e:
            self.handler.log_error(ref, "Unexpected failure reconciling policy", error=e, event="worker", reason="UnexpectedFailure")
        finally:
            self.queue.done(ref)
        return True

    def _run_worker(self) -> None:
        while self.process_next_item():
            pass

    def _run_resync(self) -> None:
        while not self._stop.is_set():
            try:
                self.resync()
            except Exception:
                logger.exception("Resync failed")
            if self._stop.wait(self.config.resync_interval):
                return

    def _watch_managed(self, namespace: str | None) -> None:
        backoff = Backoff(base=self.config.backoff_base, maximum=self.config.backoff_max, jitter=self.config.backoff_jitter)
        scope = namespace or "all namespaces"
        while not self._stop.is_set():
            watcher = watch.Watch()
            with self._watchers_lock:
                self._watchers.add(watcher)
            failed = False
            try:
                func, kwargs = self.managed_client.watch_arguments(namespace)
                logger.info(f"Watching managed mirrors in {scope}")
                for event in watcher.stream(
                    func,
                    label_selector=LABEL_SELECTOR_MIRROR,
                    timeout_seconds=self.config.watch_timeout_seconds,
                    **kwargs,
                ):
                    if self._stop.is_set():
                        break
                    obj = event.get("object")
                    if event.get("type") == "ERROR":
                        logger.info(f"Managed watch in {scope} expired, restarting: {obj}")
                        break
                    if isinstance(obj, Mapping):
                        self.enqueue_managed_object(obj)
                backoff.forget(scope)
            except Exception as e:
                failed = True
                error = translate_api_exception(e, cluster=CLUSTER_MANAGED)
                logger.warning(
                    f"Managed watch in {scope} failed ({classify(error).value}): {sanitize_exception(error)}"
                )
            finally:
                watcher.stop()
                with self._watchers_lock:
                    self._watchers.discard(watcher)
            if failed and self._stop.wait(backoff.next_delay(scope)):
                return

    # Lifecycle

    def start(self) -> None:
        for index in range(self.config.workers):
            thread = threading.Thread(target=self._run_worker, name=f"sync-worker-{index}", daemon=True)
            thread.start()
            self._workers.append(thread)

        resync = threading.Thread(target=self._run_resync, name="resync", daemon=True)
        resync.start()
        self._background.append(resync)

        for namespace in self.config.watch_namespaces or (None,):
            thread = threading.Thread(
                target=self._watch_managed,
                args=(namespace,),
                name=f"managed-watch-{namespace or 'all'}",
                daemon=True,
            )
            thread.start()
            self._background.append(thread)

        logger.info(f"Started {self.config.workers} sync workers")

    def stop(self, timeout: float | None = None) -> None:
        """Stop accepting keys and wait for in-flight reconciles to finish."""
        logger.info("Stopping sync workers")
        self._stop.set()
        self.queue.shutdown()
        with self._watchers_lock:
            for watcher in self._watchers:
                watcher.stop()
        for thread in self._workers:
            thread.join(timeout)
        for thread in self._background:
            thread.join(1.0)
        self._workers.clear()
        self._background.clear()
