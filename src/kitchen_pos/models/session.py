"""Session state models published by the reconciler."""

from collections.abc import Iterable
from enum import Enum

from pydantic import BaseModel, ConfigDict, model_validator

from kitchen_pos.models.identity import Identity, Profile, Role


class SessionPhase(str, Enum):
    """Lifecycle phases of a session."""

    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    AUTHENTICATED = "authenticated"
    UNAUTHENTICATED = "unauthenticated"


class AuthEvent(str, Enum):
    """Events pushed by the credential store."""

    INITIAL_SESSION = "INITIAL_SESSION"
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    USER_UPDATED = "USER_UPDATED"
    USER_DELETED = "USER_DELETED"
    PASSWORD_RECOVERY = "PASSWORD_RECOVERY"
    MFA_CHALLENGE_VERIFIED = "MFA_CHALLENGE_VERIFIED"


class SessionState(BaseModel):
    """Immutable snapshot of who is signed in.

    Once ``loading`` is false, identity and profile are either both present
    or both absent.
    """

    model_config = ConfigDict(frozen=True)

    phase: SessionPhase
    identity: Identity | None = None
    profile: Profile | None = None
    loading: bool = True

    @model_validator(mode="after")
    def _check_resolved_pair(self) -> "SessionState":
        if self.loading:
            return self
        if (self.identity is None) != (self.profile is None):
            raise ValueError("Resolved session must carry both identity and profile, or neither")
        if self.phase is SessionPhase.AUTHENTICATED and self.profile is None:
            raise ValueError("Authenticated session requires a profile")
        if self.phase is SessionPhase.UNAUTHENTICATED and self.profile is not None:
            raise ValueError("Unauthenticated session cannot carry a profile")
        return self

    @classmethod
    def uninitialized(cls) -> "SessionState":
        return cls(phase=SessionPhase.UNINITIALIZED, loading=True)

    @classmethod
    def initializing(cls, profile: Profile | None = None) -> "SessionState":
        """Loading state, optionally painted with a cached profile."""
        return cls(phase=SessionPhase.INITIALIZING, profile=profile, loading=True)

    @classmethod
    def authenticated(cls, identity: Identity, profile: Profile) -> "SessionState":
        return cls(
            phase=SessionPhase.AUTHENTICATED,
            identity=identity,
            profile=profile,
            loading=False,
        )

    @classmethod
    def unauthenticated(cls) -> "SessionState":
        return cls(phase=SessionPhase.UNAUTHENTICATED, loading=False)

    @property
    def is_authenticated(self) -> bool:
        return self.phase is SessionPhase.AUTHENTICATED

    @property
    def role(self) -> Role | None:
        if not self.is_authenticated or self.profile is None:
            return None
        return self.profile.role

    def has_role(self, role: Role) -> bool:
        """Exact role match. There is no role hierarchy."""
        return self.role is role

    def has_any_role(self, roles: Iterable[Role]) -> bool:
        return self.role is not None and self.role in set(roles)
