"""Tests for the route guard."""

import asyncio
from unittest.mock import MagicMock
from uuid import uuid4

import pytest

from conftest import make_identity, make_profile
from kitchen_pos.auth.guard import RouteGuard
from kitchen_pos.models.identity import Role
from kitchen_pos.models.routing import GuardDecision, GuardOutcome
from kitchen_pos.models.session import AuthEvent, SessionState


def _authenticated(role: Role = Role.KITCHEN_OWNER, **kwargs) -> SessionState:
    return SessionState.authenticated(make_identity(), make_profile(role=role, **kwargs))


@pytest.fixture
def guard(settings) -> RouteGuard:
    return RouteGuard(MagicMock(), settings=settings)


# ---------------------------------------------------------------------------
# TestEvaluate
# ---------------------------------------------------------------------------

class TestEvaluate:
    """Tests for RouteGuard.evaluate."""

    def test_loading_renders_placeholder(self, guard):
        decision = guard.evaluate(SessionState.initializing(make_profile()))

        assert decision.outcome is GuardOutcome.PENDING
        assert decision.redirect_to is None

    def test_loading_does_not_redirect_even_with_required_role(self, guard):
        decision = guard.evaluate(SessionState.initializing(), required_role=Role.SUPER_ADMIN)

        assert decision.outcome is GuardOutcome.PENDING

    def test_unauthenticated_redirects_to_sign_in(self, guard):
        decision = guard.evaluate(SessionState.unauthenticated())

        assert decision.outcome is GuardOutcome.REDIRECT_SIGN_IN
        assert decision.redirect_to == "/login"

    def test_any_authenticated_role_allowed(self, guard):
        for role in Role:
            decision = guard.evaluate(_authenticated(role))
            assert decision.allowed, role

    def test_wrong_role_goes_to_unauthorized_not_sign_in(self, guard):
        """Kitchen owner on a super-admin screen is denied, not sent to sign-in."""
        decision = guard.evaluate(_authenticated(Role.KITCHEN_OWNER), required_role=Role.SUPER_ADMIN)

        assert decision.outcome is GuardOutcome.REDIRECT_UNAUTHORIZED
        assert decision.redirect_to == "/unauthorized"

    def test_super_admin_does_not_satisfy_owner_screen(self, guard):
        decision = guard.evaluate(_authenticated(Role.SUPER_ADMIN), required_role=Role.KITCHEN_OWNER)

        assert decision.outcome is GuardOutcome.REDIRECT_UNAUTHORIZED

    def test_exact_role_allowed(self, guard):
        decision = guard.evaluate(_authenticated(Role.SUPER_ADMIN), required_role=Role.SUPER_ADMIN)

        assert decision.allowed

    def test_required_roles_any_of(self, guard):
        roles = [Role.KITCHEN_OWNER, Role.MANAGER]

        assert guard.evaluate(_authenticated(Role.MANAGER), required_roles=roles).allowed
        assert not guard.evaluate(_authenticated(Role.STAFF), required_roles=roles).allowed

    def test_owner_without_restaurant_sent_to_setup(self, guard):
        state = SessionState.authenticated(
            make_identity(),
            make_profile(role=Role.KITCHEN_OWNER).model_copy(update={"restaurant_id": None}),
        )

        decision = guard.evaluate(state, path="/menu")

        assert decision.outcome is GuardOutcome.REDIRECT_SETUP
        assert decision.redirect_to == "/setup"
        assert guard.evaluate(state, path="/setup").allowed

    def test_setup_redirect_needs_a_path(self, guard):
        state = SessionState.authenticated(
            make_identity(),
            make_profile(role=Role.KITCHEN_OWNER).model_copy(update={"restaurant_id": None}),
        )

        assert guard.evaluate(state).allowed

    def test_super_admin_on_default_landing_sent_to_admin_landing(self, guard):
        decision = guard.evaluate(_authenticated(Role.SUPER_ADMIN), path="/dashboard")

        assert decision.outcome is GuardOutcome.REDIRECT_LANDING
        assert decision.redirect_to == "/super-admin"

    def test_role_check_precedes_setup_redirect(self, guard):
        state = SessionState.authenticated(
            make_identity(),
            make_profile(role=Role.KITCHEN_OWNER).model_copy(update={"restaurant_id": None}),
        )

        decision = guard.evaluate(state, required_role=Role.SUPER_ADMIN, path="/kitchens")

        assert decision.outcome is GuardOutcome.REDIRECT_UNAUTHORIZED


# ---------------------------------------------------------------------------
# TestLandingRoute
# ---------------------------------------------------------------------------

class TestLandingRoute:
    """Tests for RouteGuard.landing_route."""

    def test_super_admin_lands_on_admin_dashboard(self, guard):
        assert guard.landing_route(make_profile(role=Role.SUPER_ADMIN)) == "/super-admin"

    @pytest.mark.parametrize("role", [Role.KITCHEN_OWNER, Role.MANAGER, Role.STAFF])
    def test_other_roles_land_on_default(self, guard, role):
        assert guard.landing_route(make_profile(role=role, restaurant_id=uuid4())) == "/dashboard"


# ---------------------------------------------------------------------------
# TestWatchAndCheck
# ---------------------------------------------------------------------------

class TestWatchAndCheck:
    """Tests for the subscribing guard entry points."""

    @pytest.mark.asyncio
    async def test_watch_emits_on_change(self, reconciler, credentials, profiles, settings):
        credentials.session = make_identity()
        profiles.add(make_profile())
        guard = RouteGuard(reconciler, settings=settings)
        decisions: list[GuardDecision] = []

        guard.watch(decisions.append, required_role=Role.SUPER_ADMIN)
        await reconciler.start()
        await reconciler.drain()

        assert [d.outcome for d in decisions] == [
            GuardOutcome.PENDING,
            GuardOutcome.REDIRECT_UNAUTHORIZED,
        ]
        await reconciler.close()

    @pytest.mark.asyncio
    async def test_watch_stops_after_unsubscribe(self, reconciler, settings):
        guard = RouteGuard(reconciler, settings=settings)
        decisions: list[GuardDecision] = []

        stop = guard.watch(decisions.append)
        stop()
        await reconciler.start()
        await reconciler.drain()

        assert [d.outcome for d in decisions] == [GuardOutcome.PENDING]
        await reconciler.close()

    @pytest.mark.asyncio
    async def test_check_waits_for_resolution(self, reconciler, credentials, profiles, settings):
        credentials.session = make_identity()
        profiles.add(make_profile())
        guard = RouteGuard(reconciler, settings=settings)
        await reconciler.start()

        decision = await guard.check()

        assert decision.allowed
        await reconciler.close()

    @pytest.mark.asyncio
    async def test_check_times_out_to_sign_in(self, reconciler, settings):
        """A reconciler that never resolves sends the guard to sign-in."""
        guard = RouteGuard(reconciler, settings=settings)

        decision = await guard.check(required_role=Role.SUPER_ADMIN)

        assert decision.outcome is GuardOutcome.REDIRECT_SIGN_IN
        assert decision.reason == "timeout"

    @pytest.mark.asyncio
    async def test_watch_never_replays_states_older_than_current(self, reconciler, credentials, profiles, settings):
        """A backed-up listener must not make a new watcher flap back to ALLOW."""
        credentials.session = make_identity()
        profiles.add(make_profile())
        release = asyncio.Event()

        async def slow(state: SessionState) -> None:
            await release.wait()

        reconciler.subscribe(slow)
        await reconciler.start()
        credentials.emit(AuthEvent.SIGNED_OUT, None)
        guard = RouteGuard(reconciler, settings=settings)
        outcomes: list[GuardOutcome] = []

        guard.watch(lambda decision: outcomes.append(decision.outcome))
        release.set()
        await reconciler.drain()

        assert outcomes == [GuardOutcome.REDIRECT_SIGN_IN]
        await reconciler.close()
