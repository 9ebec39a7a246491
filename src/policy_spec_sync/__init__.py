"""Policy Spec Sync operator: mirrors hub policy specs onto a managed cluster."""

__version__ = "0.1.0"
