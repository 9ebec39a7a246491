"""Shared fixtures: an in-memory two-cluster test double."""

from __future__ import annotations

import copy
import itertools
from typing import Any
from unittest.mock import MagicMock

import pytest
from tenacity import wait_none

from policy_spec_sync.constants import API_GROUP_VERSION, FINALIZER, KIND_POLICY
from policy_spec_sync.handlers.finalizers import FinalizerTracker
from policy_spec_sync.handlers.policy import PolicySyncHandler
from policy_spec_sync.models import PolicyRef
from policy_spec_sync.utils.backoff import Backoff
from policy_spec_sync.utils.errors import ConflictError, NotFoundError
from policy_spec_sync.utils.events import EventRecorder


class FakeCluster:
    """Policy store that behaves like an API server for the calls the engine makes.

    Writes are version checked, deletes honour finalizers, and every call is
    appended to a call log shared between clusters so ordering can be asserted.
    Faults queued in ``faults[operation]`` are raised before the call runs.
    """

    _versions = itertools.count(1)
    _uids = itertools.count(1)

    def __init__(self, cluster: str, calls: list[tuple[str, str, str]]):
        self.cluster = cluster
        self.calls = calls
        self.objects: dict[PolicyRef, dict[str, Any]] = {}
        self.faults: dict[str, list[Exception]] = {}

    # Test helpers

    def put(self, namespace: str, name: str, spec: Any, **metadata: Any) -> dict[str, Any]:
        """Store an object directly, bypassing the call log."""
        meta = {"name": name, "namespace": namespace, **metadata}
        meta.setdefault("uid", f"{self.cluster}-uid-{next(self._uids)}")
        meta["resourceVersion"] = str(next(self._versions))
        obj = {"apiVersion": API_GROUP_VERSION, "kind": KIND_POLICY, "metadata": meta, "spec": copy.deepcopy(spec)}
        self.objects[PolicyRef(namespace, name)] = obj
        return copy.deepcopy(obj)

    def spec_of(self, ref: PolicyRef) -> Any:
        return self.objects[ref]["spec"]

    def meta_of(self, ref: PolicyRef) -> dict[str, Any]:
        return self.objects[ref]["metadata"]

    def fail(self, operation: str, *errors: Exception) -> None:
        self.faults.setdefault(operation, []).extend(errors)

    def writes(self) -> list[tuple[str, str, str]]:
        return [c for c in self.calls if c[0] == self.cluster and c[1] in ("create", "update", "delete")]

    def _record(self, operation: str, ref: PolicyRef | None) -> None:
        self.calls.append((self.cluster, operation, str(ref) if ref else ""))
        pending = self.faults.get(operation)
        if pending:
            raise pending.pop(0)

    # Client interface

    def get(self, ref: PolicyRef) -> dict[str, Any]:
        self._record("get", ref)
        if ref not in self.objects:
            raise NotFoundError("Object not found", 404, self.cluster, ref)
        return copy.deepcopy(self.objects[ref])

    def get_or_none(self, ref: PolicyRef) -> dict[str, Any] | None:
        try:
            return self.get(ref)
        except NotFoundError:
            return None

    def create(self, body: dict[str, Any]) -> dict[str, Any]:
        ref = PolicyRef.from_object(body)
        self._record("create", ref)
        if ref in self.objects:
            raise ConflictError("AlreadyExists", 409, self.cluster, ref)
        obj = copy.deepcopy(body)
        meta = obj.setdefault("metadata", {})
        meta["uid"] = f"{self.cluster}-uid-{next(self._uids)}"
        meta["resourceVersion"] = str(next(self._versions))
        self.objects[ref] = obj
        return copy.deepcopy(obj)

    def update(self, body: dict[str, Any]) -> dict[str, Any]:
        ref = PolicyRef.from_object(body)
        self._record("update", ref)
        if ref not in self.objects:
            raise NotFoundError("Object not found", 404, self.cluster, ref)
        stored = self.objects[ref]
        if body["metadata"].get("resourceVersion") != stored["metadata"]["resourceVersion"]:
            raise ConflictError("the object has been modified", 409, self.cluster, ref)
        obj = copy.deepcopy(body)
        meta = obj["metadata"]
        meta["uid"] = stored["metadata"]["uid"]
        meta["resourceVersion"] = str(next(self._versions))
        if stored["metadata"].get("deletionTimestamp"):
            meta["deletionTimestamp"] = stored["metadata"]["deletionTimestamp"]
            if not meta.get("finalizers"):
                del self.objects[ref]
                return copy.deepcopy(obj)
        self.objects[ref] = obj
        return copy.deepcopy(obj)

    def delete(self, ref: PolicyRef, uid: str | None = None) -> None:
        self._record("delete", ref)
        if ref not in self.objects:
            raise NotFoundError("Object not found", 404, self.cluster, ref)
        meta = self.objects[ref]["metadata"]
        if uid is not None and meta["uid"] != uid:
            raise ConflictError("Precondition failed: UID mismatch", 409, self.cluster, ref)
        if meta.get("finalizers"):
            meta.setdefault("deletionTimestamp", "2026-01-01T00:00:00Z")
            meta["resourceVersion"] = str(next(self._versions))
        else:
            del self.objects[ref]

    def list(self, namespace: str | None = None, label_selector: str | None = None) -> list[dict[str, Any]]:
        self._record("list", None)
        items = []
        for ref, obj in sorted(self.objects.items()):
            if namespace and ref.namespace != namespace:
                continue
            if label_selector:
                key, _, value = label_selector.partition("=")
                if (obj["metadata"].get("labels") or {}).get(key) != value:
                    continue
            items.append(copy.deepcopy(obj))
        return items

    def watch_arguments(self, namespace: str | None = None) -> tuple[Any, dict[str, Any]]:
        return self.list, {"namespace": namespace} if namespace else {}


@pytest.fixture
def calls() -> list[tuple[str, str, str]]:
    return []


@pytest.fixture
def hub(calls) -> FakeCluster:
    return FakeCluster("hub", calls)


@pytest.fixture
def managed(calls) -> FakeCluster:
    return FakeCluster("managed", calls)


@pytest.fixture
def recorder() -> MagicMock:
    return MagicMock(spec=EventRecorder)


@pytest.fixture
def handler(hub, managed, recorder) -> PolicySyncHandler:
    return PolicySyncHandler(
        hub,
        managed,
        FinalizerTracker(hub, max_attempts=3, wait=wait_none()),
        recorder,
        backoff=Backoff(base=1.0, maximum=8.0, jitter=0.1, rand=lambda: 0.0),
    )


@pytest.fixture
def ref() -> PolicyRef:
    return PolicyRef("ns1", "P1")


@pytest.fixture
def hub_finalized(hub, ref):
    """Put a hub policy that already carries the finalizer."""
    def _put(spec: Any, **metadata: Any) -> dict[str, Any]:
        return hub.put(ref.namespace, ref.name, spec, finalizers=[FINALIZER], **metadata)

    return _put
