"""Reconcile handlers for policy spec synchronization."""

from .base import BaseHandler, ReconcileAction, ReconcileResult
from .finalizers import FinalizerTracker
from .policy import PolicySyncHandler

__all__ = [
    "BaseHandler",
    "FinalizerTracker",
    "PolicySyncHandler",
    "ReconcileAction",
    "ReconcileResult",
]
