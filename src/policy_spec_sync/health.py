"""Health tracking and the metrics/health HTTP endpoints."""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from typing import Any

from prometheus_client import make_wsgi_app
from werkzeug.serving import BaseWSGIServer, make_server
from werkzeug.wrappers import Response

from . import metrics
from .constants import CLUSTER_HUB, CLUSTER_MANAGED

logger = logging.getLogger(__name__)


class HealthTracker:
    """Consecutive-failure streaks per cluster.

    A cluster is degraded once ``threshold`` API calls in a row have failed
    against it, transient or fatal. Any successful call (NotFound included)
    resets its streak.
    """

    def __init__(self, threshold: int = 5, clusters: tuple[str, ...] = (CLUSTER_HUB, CLUSTER_MANAGED)):
        self.threshold = threshold
        self._lock = threading.Lock()
        self._streaks: dict[str, int] = {cluster: 0 for cluster in clusters}
        self._last_error: dict[str, str | None] = {cluster: None for cluster in clusters}
        self._started = False
        for cluster in clusters:
            metrics.degraded.labels(cluster=cluster).set(0)

    def record_success(self, cluster: str) -> None:
        with self._lock:
            self._streaks[cluster] = 0
            self._last_error[cluster] = None
        metrics.degraded.labels(cluster=cluster).set(0)

    def record_failure(self, cluster: str, kind: str) -> None:
        with self._lock:
            streak = self._streaks.get(cluster, 0) + 1
            self._streaks[cluster] = streak
            self._last_error[cluster] = kind
        if streak >= self.threshold:
            metrics.degraded.labels(cluster=cluster).set(1)

    def mark_started(self) -> None:
        with self._lock:
            self._started = True

    @property
    def started(self) -> bool:
        with self._lock:
            return self._started

    def degraded_clusters(self) -> list[str]:
        with self._lock:
            return sorted(c for c, streak in self._streaks.items() if streak >= self.threshold)

    @property
    def degraded(self) -> bool:
        return bool(self.degraded_clusters())

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            streaks = dict(self._streaks)
            last_error = dict(self._last_error)
            started = self._started
        degraded_clusters = sorted(c for c, streak in streaks.items() if streak >= self.threshold)
        return {
            "status": "degraded" if degraded_clusters else "ok",
            "started": started,
            "degraded": degraded_clusters,
            "failureStreaks": streaks,
            "lastErrorKind": last_error,
        }


class ConfigChecker:
    """Detects that mounted credential files changed since startup.

    The checksum of every file is taken once at construction. A file that can
    no longer be read counts as changed.
    """

    def __init__(self, name: str, paths: tuple[str, ...]):
        self.name = name
        self.paths = tuple(paths)
        self._checksums = {path: self._checksum(path) for path in self.paths}

    @staticmethod
    def _checksum(path: str) -> str | None:
        try:
            with open(path, "rb") as f:
                return hashlib.sha256(f.read()).hexdigest()
        except OSError:
            return None

    def changed_paths(self) -> list[str]:
        return [path for path in self.paths if self._checksum(path) != self._checksums[path]]


def _json_response(body: dict[str, Any], status: int) -> Response:
    return Response(json.dumps(body, separators=(",", ":")), mimetype="application/json", status=status)


def create_combined_wsgi_app(tracker: HealthTracker, config_checker: ConfigChecker | None = None) -> Any:
    """Create a WSGI app that combines metrics and health check endpoints.

    /healthz answers 200 while the process is alive and reports the tracker
    snapshot, or 500 once a checked config file has changed. /readyz answers
    503 before startup and while degraded.

    Args:
        tracker: Health tracker to report on
        config_checker: Optional checker for mounted kubeconfig files

    Returns:
        Combined WSGI application
    """
    metrics_app = make_wsgi_app()

    def combined_app(environ: dict[str, Any], start_response: Any) -> Any:
        """WSGI app that routes /healthz and /readyz, delegates /metrics to prometheus."""
        path = environ.get("PATH_INFO", "")

        if path == "/healthz":
            snapshot = tracker.snapshot()
            if config_checker is not None:
                changed = config_checker.changed_paths()
                if changed:
                    logger.warning(f"Config {config_checker.name} changed since startup: {', '.join(changed)}")
                    snapshot["configChanged"] = changed
                    return _json_response(snapshot, 500)(environ, start_response)
            return _json_response(snapshot, 200)(environ, start_response)
        elif path == "/readyz":
            snapshot = tracker.snapshot()
            ready = snapshot["started"] and not snapshot["degraded"]
            return _json_response(snapshot, 200 if ready else 503)(environ, start_response)
        else:
            return metrics_app(environ, start_response)

    return combined_app


def start_http_server(port: int, tracker: HealthTracker, config_checker: ConfigChecker | None = None) -> BaseWSGIServer:
    """Serve metrics and health endpoints from a background thread."""
    server = make_server("", port, create_combined_wsgi_app(tracker, config_checker), threaded=True)
    thread = threading.Thread(target=server.serve_forever, name="metrics-server", daemon=True)
    thread.start()
    return server
