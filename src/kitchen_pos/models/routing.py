"""Route guard decision models."""

from enum import Enum

from pydantic import BaseModel, ConfigDict


class GuardOutcome(str, Enum):
    """What a guarded screen should do."""

    PENDING = "pending"                              # Render placeholder
    ALLOW = "allow"
    REDIRECT_SIGN_IN = "redirect_sign_in"
    REDIRECT_UNAUTHORIZED = "redirect_unauthorized"
    REDIRECT_SETUP = "redirect_setup"                # Owner without restaurant
    REDIRECT_LANDING = "redirect_landing"            # Admin on default landing


class GuardDecision(BaseModel):
    """Outcome of evaluating a guard against a session state."""

    model_config = ConfigDict(frozen=True)

    outcome: GuardOutcome
    redirect_to: str | None = None
    reason: str | None = None

    @property
    def allowed(self) -> bool:
        return self.outcome is GuardOutcome.ALLOW

    @property
    def is_redirect(self) -> bool:
        return self.redirect_to is not None
