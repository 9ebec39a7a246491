"""Finalizer tracking on hub policies."""

from __future__ import annotations

import copy
from typing import Any, Callable

from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .. import metrics
from ..constants import CLUSTER_HUB, FINALIZER
from ..models import HubPolicy
from ..utils.errors import ConflictError, NotFoundError


class FinalizerTracker:
    """Adds and removes this controller's finalizer on hub policies.

    Both operations are set-membership updates: other finalizers are kept in
    place, and nothing is written when the object is already in the wanted
    state. Writes are read-modify-write against the hub and are retried with
    a fresh read when the resourceVersion went stale.
    """

    def __init__(
        self,
        hub_client: Any,
        finalizer: str = FINALIZER,
        max_attempts: int = 5,
        wait: Any = None,
    ):
        self.hub = hub_client
        self.finalizer = finalizer
        self.max_attempts = max_attempts
        self.wait = wait if wait is not None else wait_exponential(multiplier=0.05, max=1.0)

    def has_finalizer(self, policy: HubPolicy) -> bool:
        return policy.has_finalizer(self.finalizer)

    def add(self, policy: HubPolicy) -> HubPolicy:
        """Ensure the finalizer is present.

        Returns:
            The hub policy as stored after the write (or as read, if no write was needed)

        Raises:
            ConflictError: If the policy started deleting, or conflicts persisted
            NotFoundError: If the policy disappeared meanwhile
        """
        def mutate(current: HubPolicy) -> list[str] | None:
            if self.has_finalizer(current) or current.deleting:
                return None
            return current.finalizers + [self.finalizer]

        result = self._apply(policy, "add", mutate)
        if not self.has_finalizer(result):
            raise ConflictError("Hub policy is being deleted, finalizer not added", cluster=CLUSTER_HUB, ref=policy.ref)
        return result

    def remove(self, policy: HubPolicy) -> HubPolicy | None:
        """Ensure the finalizer is absent.

        Returns:
            The hub policy after the write, or None if it no longer exists
        """
        def mutate(current: HubPolicy) -> list[str] | None:
            if not self.has_finalizer(current):
                return None
            return [f for f in current.finalizers if f != self.finalizer]

        try:
            return self._apply(policy, "remove", mutate)
        except NotFoundError:
            return None

    def _retrying(self) -> Retrying:
        return Retrying(
            retry=retry_if_exception_type(ConflictError),
            stop=stop_after_attempt(self.max_attempts),
            wait=self.wait,
            reraise=True,
        )

    def _apply(
        self,
        policy: HubPolicy,
        operation: str,
        mutate: Callable[[HubPolicy], list[str] | None],
    ) -> HubPolicy:
        current = policy
        for attempt in self._retrying():
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    current = HubPolicy.from_object(self.hub.get(policy.ref))

                finalizers = mutate(current)
                if finalizers is None:
                    return current

                body = copy.deepcopy(current.raw)
                body.setdefault("metadata", {})["finalizers"] = finalizers
                try:
                    updated = self.hub.update(body)
                except ConflictError:
                    metrics.finalizer_operations_total.labels(operation=operation, result="conflict").inc()
                    raise
                metrics.finalizer_operations_total.labels(operation=operation, result="success").inc()
                return HubPolicy.from_object(updated)
        raise AssertionError("unreachable")  # pragma: no cover
