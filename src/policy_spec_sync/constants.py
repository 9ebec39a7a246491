"""Constants for the Policy Spec Sync operator."""

# Synchronized resource
API_GROUP = "policy.open-cluster-management.io"
API_VERSION = "v1"
API_GROUP_VERSION = f"{API_GROUP}/{API_VERSION}"
PLURAL_POLICY = "policies"
KIND_POLICY = "Policy"

# Controller identity
CONTROLLER_NAME = "policy-spec-sync"
SYNC_GROUP = "policy-spec-sync.open-cluster-management.io"

# Clusters
CLUSTER_HUB = "hub"
CLUSTER_MANAGED = "managed"

# Labels
LABEL_MANAGED_BY = f"{SYNC_GROUP}/managed-by"
LABEL_SELECTOR_MIRROR = f"{LABEL_MANAGED_BY}={CONTROLLER_NAME}"

# Annotations
ANNOTATION_HUB_NAMESPACE = f"{SYNC_GROUP}/hub-namespace"
ANNOTATION_HUB_NAME = f"{SYNC_GROUP}/hub-name"
ANNOTATION_LAST_APPLIED = "kubectl.kubernetes.io/last-applied-configuration"

# Finalizers
FINALIZER = f"{API_GROUP}/spec-sync-cleanup"

# Event Reasons
EVENT_REASON_MIRROR_CREATED = "MirrorCreated"
EVENT_REASON_MIRROR_UPDATED = "MirrorUpdated"
EVENT_REASON_MIRROR_DELETED = "MirrorDeleted"
EVENT_REASON_ORPHAN_DELETED = "OrphanDeleted"
EVENT_REASON_CLEANUP_PENDING = "CleanupPending"
EVENT_REASON_RECONCILE_FAILED = "ReconcileFailed"
