"""Main entry point for the Policy Spec Sync operator."""

from __future__ import annotations

import logging
import platform
import sys
from typing import Any

import kopf
from kubernetes import client

from . import __version__
from . import logging as structured_logging
from .config import OperatorConfig
from .constants import (
    API_GROUP,
    API_VERSION,
    CLUSTER_HUB,
    CLUSTER_MANAGED,
    CONTROLLER_NAME,
    PLURAL_POLICY,
)
from .controller import Controller
from .handlers.finalizers import FinalizerTracker
from .handlers.policy import PolicySyncHandler
from .health import ConfigChecker, HealthTracker, start_http_server
from .services.kube.client import PolicyClient, build_api_client, load_client_configuration
from .tracing import initialize_tracing
from .utils.backoff import Backoff
from .utils.events import EventRecorder
from .utils.rate_limit import RateLimiter

logger = logging.getLogger(__name__)


def _config_from_memo(memo: Any) -> OperatorConfig:
    config = memo.get("config") if memo is not None else None
    return config if config is not None else OperatorConfig.from_env()


def connection_info_from_configuration(configuration: client.Configuration) -> kopf.ConnectionInfo:
    """Translate a kubernetes client configuration into kopf credentials."""
    scheme = token = None
    header = configuration.get_api_key_with_prefix("authorization") or configuration.get_api_key_with_prefix("BearerToken")
    if header:
        parts = header.split(" ", 1)
        scheme, token = (parts[0], parts[1]) if len(parts) == 2 else ("Bearer", parts[0])

    return kopf.ConnectionInfo(
        server=configuration.host,
        ca_path=configuration.ssl_ca_cert,
        insecure=not configuration.verify_ssl,
        username=configuration.username or None,
        password=configuration.password or None,
        scheme=scheme,
        token=token,
        certificate_path=configuration.cert_file,
        private_key_path=configuration.key_file,
    )


def build_controller(config: OperatorConfig, health: HealthTracker) -> tuple[Controller, EventRecorder]:
    """Wire clients, finalizer tracker, engine and controller from explicit configuration."""
    hub_api = build_api_client(config.hub_kubeconfig)
    managed_api = build_api_client(config.managed_kubeconfig)

    hub_client = PolicyClient(
        hub_api,
        CLUSTER_HUB,
        rate_limiter=RateLimiter(config.k8s_rate_limit_per_second),
        health=health,
        request_timeout=config.request_timeout,
    )
    managed_client = PolicyClient(
        managed_api,
        CLUSTER_MANAGED,
        rate_limiter=RateLimiter(config.k8s_rate_limit_per_second),
        health=health,
        request_timeout=config.request_timeout,
    )

    recorder = EventRecorder(client.CoreV1Api(managed_api), component=config.event_component)
    handler = PolicySyncHandler(
        hub_client,
        managed_client,
        FinalizerTracker(hub_client, max_attempts=config.finalizer_conflict_retries),
        recorder,
        backoff=Backoff(base=config.backoff_base, maximum=config.backoff_max, jitter=config.backoff_jitter),
    )
    return Controller(config, handler, hub_client, managed_client), recorder


def build_config_checker(config: OperatorConfig) -> ConfigChecker | None:
    """Watch the hub kubeconfig for changes; in-cluster credentials are not checked."""
    if not config.hub_kubeconfig:
        return None
    return ConfigChecker(CONTROLLER_NAME, (config.hub_kubeconfig,))


@kopf.on.startup()
def configure(settings: kopf.OperatorSettings, memo: kopf.Memo, **_: Any) -> None:
    """Configure the operator and start the sync workers."""
    config = _config_from_memo(memo)
    memo.config = config

    structured_logging.setup_structured_logging(config.log_level)
    initialize_tracing()

    logger.info(f"Operator Version: {__version__}")
    logger.info(f"Python Version: {sys.version.split()[0]}")
    logger.info(f"OS/Arch: {platform.system().lower()}/{platform.machine()}")

    # Hub notifications only enqueue keys; nothing is written back through kopf
    settings.posting.enabled = False
    settings.networking.request_timeout = config.request_timeout
    settings.watching.server_timeout = config.watch_timeout_seconds
    settings.watching.client_timeout = config.watch_timeout_seconds + 10
    settings.watching.connect_timeout = 10
    settings.execution.max_workers = config.workers

    health = HealthTracker(threshold=config.degraded_threshold)
    memo.health = health
    memo.server = start_http_server(config.metrics_port, health, build_config_checker(config))

    controller, recorder = build_controller(config, health)
    recorder.start()
    controller.start()
    health.mark_started()

    memo.controller = controller
    memo.recorder = recorder


@kopf.on.login()
def login_to_hub(memo: kopf.Memo, **kwargs: Any) -> kopf.ConnectionInfo | None:
    """Authenticate the hub watch with the hub kubeconfig."""
    config = _config_from_memo(memo)
    if not config.hub_kubeconfig:
        return kopf.login_via_client(memo=memo, **kwargs)
    return connection_info_from_configuration(
        load_client_configuration(config.hub_kubeconfig)
    )


@kopf.on.event(API_GROUP, API_VERSION, PLURAL_POLICY)
def on_hub_policy_event(body: kopf.Body, memo: kopf.Memo, **_: Any) -> None:
    """Enqueue every observed hub policy change, deletions included."""
    controller = memo.get("controller")
    if controller is not None:
        controller.enqueue_hub_object(body)


@kopf.on.probe(id="specSync")
def report_sync_health(memo: kopf.Memo, **_: Any) -> dict[str, Any]:
    health = memo.get("health")
    return health.snapshot() if health is not None else {"status": "starting"}


@kopf.on.cleanup()
def shutdown(memo: kopf.Memo, **_: Any) -> None:
    """Drain in-flight reconciles and stop background threads."""
    controller = memo.get("controller")
    if controller is not None:
        controller.stop()
    recorder = memo.get("recorder")
    if recorder is not None:
        recorder.stop()
    server = memo.get("server")
    if server is not None:
        server.shutdown()
    logger.info(f"{CONTROLLER_NAME} stopped")


def run() -> None:
    """Run the operator against the hub, watching the configured namespaces."""
    config = OperatorConfig.from_env()
    structured_logging.setup_structured_logging(config.log_level)
    kopf.run(
        clusterwide=config.cluster_wide,
        namespaces=list(config.watch_namespaces),
        memo=kopf.Memo(config=config),
        # Single replica, no peering
        standalone=True,
    )


if __name__ == "__main__":
    run()
