"""Session reconciliation and route guarding."""

from kitchen_pos.auth.cache import FileStore, MemoryStore, ProfileCache
from kitchen_pos.auth.guard import RouteGuard
from kitchen_pos.auth.reconciler import SessionReconciler, build_reconciler, validate_profile

__all__ = [
    "FileStore",
    "MemoryStore",
    "ProfileCache",
    "RouteGuard",
    "SessionReconciler",
    "build_reconciler",
    "validate_profile",
]
