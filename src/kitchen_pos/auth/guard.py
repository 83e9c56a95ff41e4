"""Route guard.

Maps the reconciler's session state onto a render/redirect decision for a
screen. Role checks are exact matches: ``super_admin`` does not satisfy a
``kitchen_owner`` screen, and vice versa.
"""

import asyncio
import logging
from collections.abc import Callable, Iterable

from kitchen_pos.auth.reconciler import SessionReconciler
from kitchen_pos.config import Settings, get_settings
from kitchen_pos.models.identity import Profile, Role
from kitchen_pos.models.routing import GuardDecision, GuardOutcome
from kitchen_pos.models.session import SessionState

logger = logging.getLogger(__name__)

_PENDING = GuardDecision(outcome=GuardOutcome.PENDING)
_ALLOW = GuardDecision(outcome=GuardOutcome.ALLOW)


class RouteGuard:
    """Allow or redirect access to a screen based on the session state."""

    def __init__(
        self,
        reconciler: SessionReconciler,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._reconciler = reconciler
        self.sign_in_route = settings.sign_in_route
        self.unauthorized_route = settings.unauthorized_route
        self.admin_landing_route = settings.admin_landing_route
        self.default_landing_route = settings.default_landing_route
        self.setup_route = settings.setup_route
        self.max_loading_seconds = settings.guard_max_loading_seconds

    def landing_route(self, profile: Profile) -> str:
        """Where a freshly signed-in profile should land."""
        if profile.role is Role.SUPER_ADMIN:
            return self.admin_landing_route
        return self.default_landing_route

    def evaluate(
        self,
        state: SessionState,
        required_role: Role | None = None,
        required_roles: Iterable[Role] | None = None,
        path: str | None = None,
    ) -> GuardDecision:
        """Decide what a screen should do for the given state.

        Args:
            state: Session state to evaluate
            required_role: Exact role the screen requires, if any
            required_roles: Roles of which the profile must hold one, if any
            path: Requested path, enables the setup and landing redirects

        Returns:
            The guard decision
        """
        if state.loading:
            return _PENDING

        if not state.is_authenticated or state.profile is None:
            return GuardDecision(
                outcome=GuardOutcome.REDIRECT_SIGN_IN,
                redirect_to=self.sign_in_route,
                reason="unauthenticated",
            )

        profile = state.profile

        if required_role is not None and not state.has_role(required_role):
            return self._deny()
        if required_roles is not None and not state.has_any_role(required_roles):
            return self._deny()

        if path is not None:
            if (
                profile.role is Role.KITCHEN_OWNER
                and profile.restaurant_id is None
                and path != self.setup_route
            ):
                return GuardDecision(
                    outcome=GuardOutcome.REDIRECT_SETUP,
                    redirect_to=self.setup_route,
                    reason="restaurant_setup_required",
                )
            if profile.role is Role.SUPER_ADMIN and path == self.default_landing_route:
                return GuardDecision(
                    outcome=GuardOutcome.REDIRECT_LANDING,
                    redirect_to=self.admin_landing_route,
                    reason="admin_landing",
                )

        return _ALLOW

    def _deny(self) -> GuardDecision:
        return GuardDecision(
            outcome=GuardOutcome.REDIRECT_UNAUTHORIZED,
            redirect_to=self.unauthorized_route,
            reason="access_denied",
        )

    def watch(
        self,
        on_decision: Callable[[GuardDecision], None],
        required_role: Role | None = None,
        required_roles: Iterable[Role] | None = None,
        path: str | None = None,
    ) -> Callable[[], None]:
        """Emit a decision now and every time it changes.

        Returns:
            Function that stops watching
        """
        roles = frozenset(required_roles) if required_roles is not None else None
        last: GuardDecision | None = None

        def on_state(state: SessionState) -> None:
            nonlocal last
            decision = self.evaluate(state, required_role, roles, path)
            if decision != last:
                last = decision
                on_decision(decision)

        on_state(self._reconciler.state)
        return self._reconciler.subscribe(on_state)

    async def check(
        self,
        required_role: Role | None = None,
        required_roles: Iterable[Role] | None = None,
        path: str | None = None,
    ) -> GuardDecision:
        """Wait for the session to resolve, then decide.

        A session still loading after ``max_loading_seconds`` is sent to
        sign-in.
        """
        try:
            state = await asyncio.wait_for(
                self._reconciler.wait_until_resolved(),
                timeout=self.max_loading_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"Session still loading after {self.max_loading_seconds:g}s, "
                "redirecting to sign-in"
            )
            return GuardDecision(
                outcome=GuardOutcome.REDIRECT_SIGN_IN,
                redirect_to=self.sign_in_route,
                reason="timeout",
            )
        return self.evaluate(state, required_role, required_roles, path)
