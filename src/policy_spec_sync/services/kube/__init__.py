"""Kubernetes policy clients."""

from .client import PolicyClient, build_api_client, load_client_configuration

__all__ = ["PolicyClient", "build_api_client", "load_client_configuration"]
