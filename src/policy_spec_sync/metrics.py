"""Prometheus metrics for the Policy Spec Sync operator."""

from prometheus_client import Counter, Gauge, Histogram

# Reconciliation metrics
reconcile_total = Counter(
    "policy_spec_sync_reconcile_total",
    "Total number of reconciliations",
    ["result"],
)

reconcile_state_total = Counter(
    "policy_spec_sync_reconcile_state_total",
    "Sync state observed at the start of each completed reconciliation",
    ["state"],
)

reconcile_duration_seconds = Histogram(
    "policy_spec_sync_reconcile_duration_seconds",
    "Duration of reconciliations in seconds",
    buckets=[0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0],
)

requeue_total = Counter(
    "policy_spec_sync_requeue_total",
    "Total number of keys requeued with backoff",
    ["error_type"],
)

error_total = Counter(
    "policy_spec_sync_error_total",
    "Total number of reconcile errors",
    ["kind", "error_type"],
)

# Mirror operation metrics
mirror_operations_total = Counter(
    "policy_spec_sync_mirror_operations_total",
    "Total number of managed mirror writes",
    ["operation", "result"],
)

orphans_deleted_total = Counter(
    "policy_spec_sync_orphans_deleted_total",
    "Total number of orphaned mirrors deleted",
)

finalizer_operations_total = Counter(
    "policy_spec_sync_finalizer_operations_total",
    "Total number of hub finalizer writes",
    ["operation", "result"],
)

# API call metrics
api_call_total = Counter(
    "policy_spec_sync_api_call_total",
    "Total number of API calls",
    ["cluster", "operation", "result"],
)

api_call_duration_seconds = Histogram(
    "policy_spec_sync_api_call_duration_seconds",
    "Duration of API calls in seconds",
    ["cluster", "operation"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0],
)

rate_limit_hits_total = Counter(
    "policy_spec_sync_rate_limit_hits_total",
    "Total number of rate limit hits",
    ["cluster"],
)

# Queue and health metrics
queue_depth = Gauge(
    "policy_spec_sync_queue_depth",
    "Number of keys waiting in the work queue",
)

degraded = Gauge(
    "policy_spec_sync_degraded",
    "1 while sustained failures are observed against a cluster",
    ["cluster"],
)
