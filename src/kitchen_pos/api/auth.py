"""Session dependencies for guarded routes."""

import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from kitchen_pos.auth.guard import RouteGuard
from kitchen_pos.auth.reconciler import SessionReconciler
from kitchen_pos.models.identity import Profile, Role

logger = logging.getLogger(__name__)


def get_reconciler(request: Request) -> SessionReconciler:
    """Get the process-wide reconciler created by the app lifespan."""
    reconciler = getattr(request.app.state, "reconciler", None)
    if reconciler is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Session service is not running",
        )
    return reconciler


def get_route_guard(
    reconciler: Annotated[SessionReconciler, Depends(get_reconciler)],
) -> RouteGuard:
    return RouteGuard(reconciler)


def _redirect(location: str, reason: str | None) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_303_SEE_OTHER,
        detail=reason or "redirect",
        headers={"Location": location},
    )


def require_session(
    required_role: Role | None = None,
    required_roles: Iterable[Role] | None = None,
) -> Callable[..., Awaitable[Profile]]:
    """Build a dependency that admits only sessions passing the route guard.

    Args:
        required_role: Exact role the route requires, if any
        required_roles: Roles of which the session must hold one, if any

    Returns:
        Dependency resolving to the signed-in profile
    """
    roles = frozenset(required_roles) if required_roles is not None else None

    async def dependency(
        request: Request,
        reconciler: Annotated[SessionReconciler, Depends(get_reconciler)],
        guard: Annotated[RouteGuard, Depends(get_route_guard)],
    ) -> Profile:
        decision = await guard.check(required_role, roles, path=request.url.path)
        if not decision.allowed:
            logger.debug(f"Guard redirected {request.url.path} to {decision.redirect_to}")
            raise _redirect(decision.redirect_to or guard.sign_in_route, decision.reason)

        profile = reconciler.state.profile
        if profile is None:
            raise _redirect(guard.sign_in_route, "unauthenticated")
        return profile

    return dependency


# Type aliases for dependency injection
Reconciler = Annotated[SessionReconciler, Depends(get_reconciler)]
Guard = Annotated[RouteGuard, Depends(get_route_guard)]
AnyProfile = Annotated[Profile, Depends(require_session())]
SuperAdminProfile = Annotated[Profile, Depends(require_session(Role.SUPER_ADMIN))]
KitchenOwnerProfile = Annotated[Profile, Depends(require_session(Role.KITCHEN_OWNER))]
