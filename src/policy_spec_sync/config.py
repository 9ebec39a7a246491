"""Operator configuration loaded from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping

from .constants import CONTROLLER_NAME


def _env_float(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = environ.get(name, "")
    if raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _env_int(environ: Mapping[str, str], name: str, default: int, minimum: int = 0) -> int:
    raw = environ.get(name, "")
    if raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value


def parse_namespaces(raw: str | None) -> tuple[str, ...]:
    """Parse a comma separated WATCH_NAMESPACE value. Empty means all namespaces."""
    if not raw:
        return ()
    return tuple(ns.strip() for ns in raw.split(",") if ns.strip())


@dataclass(frozen=True)
class OperatorConfig:
    """Explicit configuration passed to the clients, engine and controller."""

    hub_kubeconfig: str | None = None
    managed_kubeconfig: str | None = None
    watch_namespaces: tuple[str, ...] = field(default_factory=tuple)
    workers: int = 4
    resync_interval: float = 300.0
    backoff_base: float = 1.0
    backoff_max: float = 60.0
    backoff_jitter: float = 0.1
    finalizer_conflict_retries: int = 5
    degraded_threshold: int = 5
    metrics_port: int = 8384
    k8s_rate_limit_per_second: float = 10.0
    request_timeout: float = 30.0
    watch_timeout_seconds: int = 300
    event_component: str = CONTROLLER_NAME
    log_level: str = "INFO"

    @property
    def cluster_wide(self) -> bool:
        return not self.watch_namespaces

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> OperatorConfig:
        """Build the configuration from environment variables.

        Environment Variables:
            HUB_CONFIG: kubeconfig for the hub cluster
            MANAGED_CONFIG: kubeconfig for the managed cluster (default: in-cluster)
            WATCH_NAMESPACE: comma separated namespaces (default: all)
            SYNC_WORKERS: number of reconcile workers (default: 4)
            RESYNC_INTERVAL_SECONDS: full resync period (default: 300)
            BACKOFF_BASE_SECONDS / BACKOFF_MAX_SECONDS / BACKOFF_JITTER: requeue backoff
            FINALIZER_CONFLICT_RETRIES: finalizer write attempts on conflict (default: 5)
            DEGRADED_FAILURE_THRESHOLD: consecutive failures before degraded (default: 5)
            METRICS_PORT: metrics and health port (default: 8384)
            K8S_RATE_LIMIT_PER_SECOND: API calls per second per cluster (default: 10)
            K8S_REQUEST_TIMEOUT_SECONDS: API request timeout (default: 30)
            WATCH_TIMEOUT_SECONDS: managed watch stream timeout (default: 300)
            EVENT_COMPONENT: event source component (default: policy-spec-sync)
            LOG_LEVEL: logging level (default: INFO)

        Raises:
            ValueError: If a numeric variable cannot be parsed
        """
        env = os.environ if environ is None else environ

        config = cls(
            hub_kubeconfig=env.get("HUB_CONFIG") or None,
            managed_kubeconfig=env.get("MANAGED_CONFIG") or None,
            watch_namespaces=parse_namespaces(env.get("WATCH_NAMESPACE")),
            workers=_env_int(env, "SYNC_WORKERS", 4, minimum=1),
            resync_interval=_env_float(env, "RESYNC_INTERVAL_SECONDS", 300.0),
            backoff_base=_env_float(env, "BACKOFF_BASE_SECONDS", 1.0),
            backoff_max=_env_float(env, "BACKOFF_MAX_SECONDS", 60.0),
            backoff_jitter=_env_float(env, "BACKOFF_JITTER", 0.1),
            finalizer_conflict_retries=_env_int(env, "FINALIZER_CONFLICT_RETRIES", 5, minimum=1),
            degraded_threshold=_env_int(env, "DEGRADED_FAILURE_THRESHOLD", 5, minimum=1),
            metrics_port=_env_int(env, "METRICS_PORT", 8384),
            k8s_rate_limit_per_second=_env_float(env, "K8S_RATE_LIMIT_PER_SECOND", 10.0),
            request_timeout=_env_float(env, "K8S_REQUEST_TIMEOUT_SECONDS", 30.0),
            watch_timeout_seconds=_env_int(env, "WATCH_TIMEOUT_SECONDS", 300, minimum=1),
            event_component=env.get("EVENT_COMPONENT") or CONTROLLER_NAME,
            log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
        )

        if config.backoff_base <= 0 or config.backoff_max < config.backoff_base:
            raise ValueError("BACKOFF_BASE_SECONDS must be > 0 and <= BACKOFF_MAX_SECONDS")
        if not 0 <= config.backoff_jitter <= 1:
            raise ValueError("BACKOFF_JITTER must be between 0 and 1")

        return config
