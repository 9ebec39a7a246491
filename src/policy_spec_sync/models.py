"""Typed views over hub and managed policy objects."""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from .constants import (
    ANNOTATION_HUB_NAME,
    ANNOTATION_HUB_NAMESPACE,
    ANNOTATION_LAST_APPLIED,
    API_GROUP_VERSION,
    CONTROLLER_NAME,
    FINALIZER,
    KIND_POLICY,
    LABEL_MANAGED_BY,
)


@dataclass(frozen=True, order=True)
class PolicyRef:
    """Identifies a policy by namespace and name on either cluster."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"

    @classmethod
    def parse(cls, key: str) -> PolicyRef:
        """Parse a "namespace/name" key."""
        namespace, sep, name = key.partition("/")
        if not sep or not namespace or not name:
            raise ValueError(f"invalid policy key {key!r}, expected namespace/name")
        return cls(namespace, name)

    @classmethod
    def from_object(cls, obj: Mapping[str, Any]) -> PolicyRef:
        """Build a reference from an object's metadata."""
        meta = obj.get("metadata") or {}
        return cls(meta.get("namespace", ""), meta.get("name", ""))


def canonical_spec(spec: Any) -> str:
    """Serialize a spec payload into its canonical comparable form."""
    return json.dumps(spec, sort_keys=True, separators=(",", ":"), default=str)


def specs_equal(left: Any, right: Any) -> bool:
    """Compare two spec payloads structurally."""
    return canonical_spec(left) == canonical_spec(right)


@dataclass
class _PolicyView:
    ref: PolicyRef
    spec: Any
    resource_version: str | None = None
    uid: str | None = None
    deletion_timestamp: str | None = None
    finalizers: list[str] = field(default_factory=list)
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_object(cls, obj: Mapping[str, Any]):
        meta = obj.get("metadata") or {}
        return cls(
            ref=PolicyRef.from_object(obj),
            spec=copy.deepcopy(obj.get("spec")),
            resource_version=meta.get("resourceVersion"),
            uid=meta.get("uid"),
            deletion_timestamp=meta.get("deletionTimestamp"),
            finalizers=list(meta.get("finalizers") or []),
            labels=dict(meta.get("labels") or {}),
            annotations=dict(meta.get("annotations") or {}),
            raw=copy.deepcopy(dict(obj)),
        )

    @property
    def deleting(self) -> bool:
        return self.deletion_timestamp is not None


@dataclass
class HubPolicy(_PolicyView):
    """The authoritative policy on the hub cluster."""

    def has_finalizer(self, finalizer: str = FINALIZER) -> bool:
        return finalizer in self.finalizers


@dataclass
class ManagedPolicy(_PolicyView):
    """The mirrored policy on the managed cluster."""

    @property
    def is_mirror(self) -> bool:
        return self.labels.get(LABEL_MANAGED_BY) == CONTROLLER_NAME

    @property
    def hub_ref(self) -> PolicyRef | None:
        """The hub policy this object mirrors, from its annotations."""
        return mirror_source(self.raw)


def mirror_source(obj: Mapping[str, Any]) -> PolicyRef | None:
    """Derive the hub reference of a managed object, or None if it is no mirror.

    Falls back to the object's own namespace and name when the mirror label is
    present but the annotations were stripped.
    """
    meta = obj.get("metadata") or {}
    labels = meta.get("labels") or {}
    if labels.get(LABEL_MANAGED_BY) != CONTROLLER_NAME:
        return None
    annotations = meta.get("annotations") or {}
    namespace = annotations.get(ANNOTATION_HUB_NAMESPACE) or meta.get("namespace")
    name = annotations.get(ANNOTATION_HUB_NAME) or meta.get("name")
    if not namespace or not name:
        return None
    return PolicyRef(namespace, name)


def mirror_metadata_current(managed: ManagedPolicy, ref: PolicyRef) -> bool:
    """Check that the mirror label and annotations point at ``ref``."""
    return (
        managed.is_mirror
        and managed.annotations.get(ANNOTATION_HUB_NAMESPACE) == ref.namespace
        and managed.annotations.get(ANNOTATION_HUB_NAME) == ref.name
    )


def build_mirror(hub: HubPolicy) -> dict[str, Any]:
    """Build the managed-side body for a hub policy."""
    labels = dict(hub.labels)
    labels[LABEL_MANAGED_BY] = CONTROLLER_NAME

    annotations = {k: v for k, v in hub.annotations.items() if k != ANNOTATION_LAST_APPLIED}
    annotations[ANNOTATION_HUB_NAMESPACE] = hub.ref.namespace
    annotations[ANNOTATION_HUB_NAME] = hub.ref.name

    return {
        "apiVersion": hub.raw.get("apiVersion", API_GROUP_VERSION),
        "kind": hub.raw.get("kind", KIND_POLICY),
        "metadata": {
            "name": hub.ref.name,
            "namespace": hub.ref.namespace,
            "labels": labels,
            "annotations": annotations,
        },
        "spec": copy.deepcopy(hub.spec),
    }


def apply_hub_spec(managed: ManagedPolicy, hub: HubPolicy) -> dict[str, Any]:
    """Return the managed body with the hub spec and mirror metadata applied.

    The spec is overwritten as a whole; the resourceVersion is kept so the
    update is checked against the version that was read.
    """
    body = copy.deepcopy(managed.raw)
    meta = body.setdefault("metadata", {})

    labels = dict(meta.get("labels") or {})
    labels[LABEL_MANAGED_BY] = CONTROLLER_NAME
    meta["labels"] = labels

    annotations = dict(meta.get("annotations") or {})
    annotations[ANNOTATION_HUB_NAMESPACE] = hub.ref.namespace
    annotations[ANNOTATION_HUB_NAME] = hub.ref.name
    meta["annotations"] = annotations

    body["spec"] = copy.deepcopy(hub.spec)
    return body


class SyncState(str, Enum):
    """Derived synchronization state of one policy pair."""

    ABSENT_ABSENT = "absent-absent"
    HUB_ONLY = "hub-only"
    MANAGED_ONLY = "managed-only"
    BOTH_IN_SYNC = "both-in-sync"
    BOTH_OUT_OF_SYNC = "both-out-of-sync"
    HUB_DELETING = "hub-deleting"


def derive_sync_state(hub: HubPolicy | None, managed: ManagedPolicy | None) -> SyncState:
    """Derive the sync state from the current hub and managed objects."""
    if hub is not None and hub.deleting:
        return SyncState.HUB_DELETING
    if hub is None:
        return SyncState.ABSENT_ABSENT if managed is None else SyncState.MANAGED_ONLY
    if managed is None:
        return SyncState.HUB_ONLY
    if specs_equal(hub.spec, managed.spec):
        return SyncState.BOTH_IN_SYNC
    return SyncState.BOTH_OUT_OF_SYNC
