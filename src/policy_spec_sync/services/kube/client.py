"""Policy clients for the hub and managed API servers."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

from kubernetes import client, config
from kubernetes.config import ConfigException

from ... import metrics
from ...constants import API_GROUP, API_VERSION, PLURAL_POLICY
from ...health import HealthTracker
from ...models import PolicyRef
from ...utils.errors import (
    ConflictError,
    ErrorKind,
    NotFoundError,
    classify,
    translate_api_exception,
)
from ...utils.rate_limit import RateLimiter

logger = logging.getLogger(__name__)


def load_client_configuration(
    kubeconfig: str | None,
    in_cluster_fallback: bool = True,
) -> client.Configuration:
    """Load a dedicated client configuration for one cluster.

    An explicit kubeconfig path wins. Without one, in-cluster credentials are
    tried first (when allowed), then the default kubeconfig.

    Args:
        kubeconfig: Path to a kubeconfig file
        in_cluster_fallback: Whether to try the service account credentials

    Returns:
        Configuration instance that is not installed as the process default
    """
    configuration = client.Configuration()
    if kubeconfig:
        config.load_kube_config(config_file=kubeconfig, client_configuration=configuration)
        return configuration

    if in_cluster_fallback:
        try:
            config.load_incluster_config(client_configuration=configuration)
            return configuration
        except ConfigException:
            pass

    config.load_kube_config(client_configuration=configuration)
    return configuration


def build_api_client(
    kubeconfig: str | None,
    in_cluster_fallback: bool = True,
) -> client.ApiClient:
    """Build an ApiClient bound to one cluster's configuration."""
    return client.ApiClient(configuration=load_client_configuration(kubeconfig, in_cluster_fallback))


class PolicyClient:
    """Typed CRUD accessor for policy objects on one cluster.

    Every call is rate limited, measured, reported to the health tracker and
    has its errors translated into the spec sync error hierarchy, so callers
    can tell NotFound, conflicts, transient and fatal failures apart.
    """

    def __init__(
        self,
        api_client: Any,
        cluster: str,
        rate_limiter: RateLimiter | None = None,
        health: HealthTracker | None = None,
        request_timeout: float = 30.0,
        group: str = API_GROUP,
        version: str = API_VERSION,
        plural: str = PLURAL_POLICY,
    ):
        self.cluster = cluster
        self.api = client.CustomObjectsApi(api_client)
        self.rate_limiter = rate_limiter or RateLimiter(0)
        self.health = health
        self.request_timeout = request_timeout
        self.group = group
        self.version = version
        self.plural = plural

    def _call(self, operation: str, ref: PolicyRef | None, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        self.rate_limiter.wait()
        start_time = time.time()
        try:
            result = fn(*args, _request_timeout=self.request_timeout, **kwargs)
        except Exception as e:
            error = translate_api_exception(e, cluster=self.cluster, ref=ref)
            kind = classify(error)
            if kind is ErrorKind.NOT_FOUND:
                metrics.api_call_total.labels(cluster=self.cluster, operation=operation, result="not_found").inc()
                self._record_success()
            else:
                metrics.api_call_total.labels(cluster=self.cluster, operation=operation, result=kind.value).inc()
                if getattr(error, "status_code", None) == 429:
                    metrics.rate_limit_hits_total.labels(cluster=self.cluster).inc()
                if isinstance(error, ConflictError):
                    # A conflict still proves the server is reachable
                    self._record_success()
                elif self.health is not None:
                    self.health.record_failure(self.cluster, kind.value)
            if error is e:
                raise
            raise error from e
        else:
            metrics.api_call_total.labels(cluster=self.cluster, operation=operation, result="success").inc()
            self._record_success()
            return result
        finally:
            duration = time.time() - start_time
            metrics.api_call_duration_seconds.labels(cluster=self.cluster, operation=operation).observe(duration)

    def _record_success(self) -> None:
        if self.health is not None:
            self.health.record_success(self.cluster)

    def get(self, ref: PolicyRef) -> dict[str, Any]:
        """Get the policy at ``ref``.

        Raises:
            NotFoundError: If the policy does not exist
        """
        return self._call(
            "get",
            ref,
            self.api.get_namespaced_custom_object,
            group=self.group,
            version=self.version,
            namespace=ref.namespace,
            plural=self.plural,
            name=ref.name,
        )

    def get_or_none(self, ref: PolicyRef) -> dict[str, Any] | None:
        try:
            return self.get(ref)
        except NotFoundError:
            return None

    def create(self, body: dict[str, Any]) -> dict[str, Any]:
        """Create a policy.

        Raises:
            ConflictError: If an object with the same name already exists
        """
        ref = PolicyRef.from_object(body)
        return self._call(
            "create",
            ref,
            self.api.create_namespaced_custom_object,
            group=self.group,
            version=self.version,
            namespace=ref.namespace,
            plural=self.plural,
            body=body,
        )

    def update(self, body: dict[str, Any]) -> dict[str, Any]:
        """Replace a policy. The body's resourceVersion is checked by the server.

        Raises:
            ConflictError: If the object changed since it was read
            NotFoundError: If the object no longer exists
        """
        ref = PolicyRef.from_object(body)
        return self._call(
            "update",
            ref,
            self.api.replace_namespaced_custom_object,
            group=self.group,
            version=self.version,
            namespace=ref.namespace,
            plural=self.plural,
            name=ref.name,
            body=body,
        )

    def delete(self, ref: PolicyRef, uid: str | None = None) -> None:
        """Delete the policy at ``ref``, optionally only if its uid matches.

        Raises:
            NotFoundError: If the object does not exist
            ConflictError: If the uid precondition fails
        """
        body = client.V1DeleteOptions(
            preconditions=client.V1Preconditions(uid=uid) if uid else None,
        )
        self._call(
            "delete",
            ref,
            self.api.delete_namespaced_custom_object,
            group=self.group,
            version=self.version,
            namespace=ref.namespace,
            plural=self.plural,
            name=ref.name,
            body=body,
        )

    def list(self, namespace: str | None = None, label_selector: str | None = None) -> list[dict[str, Any]]:
        """List policies in ``namespace`` (all namespaces when None)."""
        kwargs: dict[str, Any] = {}
        if label_selector:
            kwargs["label_selector"] = label_selector
        if namespace:
            result = self._call(
                "list",
                None,
                self.api.list_namespaced_custom_object,
                group=self.group,
                version=self.version,
                namespace=namespace,
                plural=self.plural,
                **kwargs,
            )
        else:
            result = self._call(
                "list",
                None,
                self.api.list_cluster_custom_object,
                group=self.group,
                version=self.version,
                plural=self.plural,
                **kwargs,
            )
        return list(result.get("items") or [])

    def watch_arguments(self, namespace: str | None = None) -> tuple[Callable[..., Any], dict[str, Any]]:
        """Return the list function and its arguments for a watch stream."""
        if namespace:
            return self.api.list_namespaced_custom_object, {
                "group": self.group,
                "version": self.version,
                "namespace": namespace,
                "plural": self.plural,
            }
        return self.api.list_cluster_custom_object, {
            "group": self.group,
            "version": self.version,
            "plural": self.plural,
        }
