"""Tests for policy references, views and mirror construction."""

from __future__ import annotations

import pytest

from policy_spec_sync.constants import (
    ANNOTATION_HUB_NAME,
    ANNOTATION_HUB_NAMESPACE,
    ANNOTATION_LAST_APPLIED,
    CONTROLLER_NAME,
    FINALIZER,
    LABEL_MANAGED_BY,
)
from policy_spec_sync.models import (
    HubPolicy,
    ManagedPolicy,
    PolicyRef,
    SyncState,
    apply_hub_spec,
    build_mirror,
    derive_sync_state,
    mirror_metadata_current,
    mirror_source,
    specs_equal,
)


def _obj(namespace="ns1", name="P1", spec=None, **metadata):
    meta = {"namespace": namespace, "name": name, "resourceVersion": "7", "uid": "u-1", **metadata}
    return {"apiVersion": "policy.open-cluster-management.io/v1", "kind": "Policy", "metadata": meta, "spec": spec}


MIRROR_LABELS = {LABEL_MANAGED_BY: CONTROLLER_NAME}


class TestPolicyRef:
    """Test cases for PolicyRef."""

    def test_str(self):
        assert str(PolicyRef("ns1", "P1")) == "ns1/P1"

    def test_parse(self):
        assert PolicyRef.parse("ns1/P1") == PolicyRef("ns1", "P1")

    @pytest.mark.parametrize("key", ["", "ns1", "ns1/", "/P1"])
    def test_parse_invalid(self, key):
        with pytest.raises(ValueError):
            PolicyRef.parse(key)

    def test_from_object(self):
        assert PolicyRef.from_object(_obj("a", "b")) == PolicyRef("a", "b")

    def test_hashable_and_ordered(self):
        refs = {PolicyRef("b", "x"), PolicyRef("a", "y"), PolicyRef("a", "y")}
        assert sorted(refs) == [PolicyRef("a", "y"), PolicyRef("b", "x")]


class TestSpecComparison:
    """Structural spec equality."""

    def test_key_order_is_irrelevant(self):
        assert specs_equal({"a": 1, "b": {"c": 2, "d": 3}}, {"b": {"d": 3, "c": 2}, "a": 1})

    def test_list_order_matters(self):
        assert not specs_equal({"a": [1, 2]}, {"a": [2, 1]})

    def test_shape_change_is_a_difference(self):
        assert not specs_equal({"a": 1}, {"a": 1, "b": None})

    def test_none_and_empty(self):
        assert specs_equal(None, None)
        assert not specs_equal(None, {})


class TestViews:
    """Test cases for HubPolicy and ManagedPolicy."""

    def test_hub_policy_fields(self):
        hub = HubPolicy.from_object(_obj(spec={"x": 1}, finalizers=[FINALIZER]))
        assert hub.ref == PolicyRef("ns1", "P1")
        assert hub.resource_version == "7"
        assert hub.uid == "u-1"
        assert hub.has_finalizer()
        assert not hub.deleting

    def test_deleting(self):
        hub = HubPolicy.from_object(_obj(deletionTimestamp="2026-01-01T00:00:00Z"))
        assert hub.deleting

    def test_view_is_a_copy(self):
        raw = _obj(spec={"x": [1]})
        hub = HubPolicy.from_object(raw)
        hub.spec["x"].append(2)
        assert raw["spec"] == {"x": [1]}

    def test_is_mirror(self):
        assert ManagedPolicy.from_object(_obj(labels=MIRROR_LABELS)).is_mirror
        assert not ManagedPolicy.from_object(_obj(labels={LABEL_MANAGED_BY: "someone-else"})).is_mirror
        assert not ManagedPolicy.from_object(_obj()).is_mirror


class TestMirrorSource:
    """Reverse mapping from managed objects to hub references."""

    def test_from_annotations(self):
        obj = _obj(
            "local",
            "copy",
            labels=MIRROR_LABELS,
            annotations={ANNOTATION_HUB_NAMESPACE: "ns1", ANNOTATION_HUB_NAME: "P1"},
        )
        assert mirror_source(obj) == PolicyRef("ns1", "P1")
        assert ManagedPolicy.from_object(obj).hub_ref == PolicyRef("ns1", "P1")

    def test_falls_back_to_own_name(self):
        assert mirror_source(_obj("ns2", "P2", labels=MIRROR_LABELS)) == PolicyRef("ns2", "P2")

    def test_non_mirror(self):
        assert mirror_source(_obj()) is None

    def test_metadata_current(self):
        ref = PolicyRef("ns1", "P1")
        current = ManagedPolicy.from_object(
            _obj(labels=MIRROR_LABELS, annotations={ANNOTATION_HUB_NAMESPACE: "ns1", ANNOTATION_HUB_NAME: "P1"})
        )
        stripped = ManagedPolicy.from_object(_obj(labels=MIRROR_LABELS))
        assert mirror_metadata_current(current, ref)
        assert not mirror_metadata_current(stripped, ref)


class TestBuildMirror:
    """Test cases for managed body construction."""

    def test_build_mirror(self):
        hub = HubPolicy.from_object(
            _obj(
                spec={"remediationAction": "inform"},
                labels={"team": "a"},
                annotations={ANNOTATION_LAST_APPLIED: "{}", "note": "x"},
                finalizers=[FINALIZER],
            )
        )
        body = build_mirror(hub)

        meta = body["metadata"]
        assert meta["name"] == "P1"
        assert meta["namespace"] == "ns1"
        assert meta["labels"] == {"team": "a", LABEL_MANAGED_BY: CONTROLLER_NAME}
        assert meta["annotations"] == {"note": "x", ANNOTATION_HUB_NAMESPACE: "ns1", ANNOTATION_HUB_NAME: "P1"}
        assert "finalizers" not in meta
        assert "resourceVersion" not in meta
        assert "uid" not in meta
        assert body["spec"] == {"remediationAction": "inform"}
        assert body["kind"] == "Policy"

    def test_apply_hub_spec_overwrites_whole_spec(self):
        hub = HubPolicy.from_object(_obj(spec={"remediationAction": "enforce"}))
        managed = ManagedPolicy.from_object(
            _obj(spec={"remediationAction": "inform", "disabled": True}, labels={"local": "1"})
        )

        body = apply_hub_spec(managed, hub)

        assert body["spec"] == {"remediationAction": "enforce"}
        assert body["metadata"]["resourceVersion"] == "7"
        assert body["metadata"]["labels"] == {"local": "1", LABEL_MANAGED_BY: CONTROLLER_NAME}
        assert body["metadata"]["annotations"][ANNOTATION_HUB_NAME] == "P1"
        assert managed.raw["spec"] == {"remediationAction": "inform", "disabled": True}


class TestDeriveSyncState:
    """Test cases for sync state derivation."""

    def test_all_states(self):
        hub = HubPolicy.from_object(_obj(spec={"a": 1}))
        same = ManagedPolicy.from_object(_obj(spec={"a": 1}))
        other = ManagedPolicy.from_object(_obj(spec={"a": 2}))
        deleting = HubPolicy.from_object(_obj(spec={"a": 1}, deletionTimestamp="t"))

        assert derive_sync_state(None, None) is SyncState.ABSENT_ABSENT
        assert derive_sync_state(hub, None) is SyncState.HUB_ONLY
        assert derive_sync_state(None, same) is SyncState.MANAGED_ONLY
        assert derive_sync_state(hub, same) is SyncState.BOTH_IN_SYNC
        assert derive_sync_state(hub, other) is SyncState.BOTH_OUT_OF_SYNC
        assert derive_sync_state(deleting, same) is SyncState.HUB_DELETING
        assert derive_sync_state(deleting, None) is SyncState.HUB_DELETING
