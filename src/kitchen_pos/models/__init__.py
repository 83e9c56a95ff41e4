"""Pydantic models for Kitchen POS."""

from kitchen_pos.models.identity import Identity, Profile, Role
from kitchen_pos.models.routing import GuardDecision, GuardOutcome
from kitchen_pos.models.session import AuthEvent, SessionPhase, SessionState

__all__ = [
    "AuthEvent",
    "GuardDecision",
    "GuardOutcome",
    "Identity",
    "Profile",
    "Role",
    "SessionPhase",
    "SessionState",
]
