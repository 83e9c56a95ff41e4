"""API routes for the admin console session."""

import logging
from typing import Any

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from kitchen_pos import __version__
from kitchen_pos.api.auth import AnyProfile, Guard, KitchenOwnerProfile, Reconciler, SuperAdminProfile
from kitchen_pos.exceptions import SignOutFailureError

logger = logging.getLogger(__name__)

router = APIRouter()

SIGN_IN_ENDPOINT = "/auth/sign-in"


class SignInRequest(BaseModel):
    """Credentials submitted from the sign-in screen."""

    email: str = Field(min_length=1)
    password: str = Field(min_length=1)


def _ok(data: Any) -> dict:
    return {"success": True, "data": data}


@router.get("/health")
async def health() -> dict:
    """Health check endpoint."""
    return {"status": "ok", "version": __version__}


@router.get("/login")
async def login(reconciler: Reconciler, guard: Guard) -> dict:
    """Sign-in entry point. Credentials are posted to ``/auth/sign-in``.

    An already signed-in session is pointed at its landing route instead.
    """
    state = reconciler.state
    if state.is_authenticated and state.profile is not None:
        return _ok({
            "authenticated": True,
            "sign_in_endpoint": SIGN_IN_ENDPOINT,
            "redirect_to": guard.landing_route(state.profile),
        })

    return _ok({
        "authenticated": False,
        "sign_in_endpoint": SIGN_IN_ENDPOINT,
        "redirect_to": None,
    })


@router.post(SIGN_IN_ENDPOINT)
async def sign_in(request: SignInRequest, reconciler: Reconciler, guard: Guard) -> dict:
    """Sign in and report the role-appropriate landing route.

    Failures are rendered by the ``AuthError`` handler.
    """
    state = await reconciler.sign_in(request.email, request.password)

    if not state.is_authenticated or state.profile is None:
        return _ok({"profile": None, "redirect_to": guard.sign_in_route})

    return _ok({
        "profile": state.profile.model_dump(mode="json"),
        "redirect_to": guard.landing_route(state.profile),
    })


@router.post("/auth/sign-out")
async def sign_out(reconciler: Reconciler) -> dict:
    """Sign out. Always succeeds locally."""
    remote_signed_out = True
    try:
        await reconciler.sign_out()
    except SignOutFailureError as e:
        logger.warning(f"Signed out locally only: {e}")
        remote_signed_out = False

    return _ok({"remote_signed_out": remote_signed_out})


@router.post("/auth/refresh")
async def refresh(reconciler: Reconciler) -> dict:
    """Pick up out-of-band profile changes, such as an approval."""
    state = await reconciler.refresh()
    return _ok(state.model_dump(mode="json"))


@router.get("/auth/session")
async def get_session(reconciler: Reconciler) -> dict:
    """Current session state."""
    return _ok(reconciler.state.model_dump(mode="json"))


@router.get("/unauthorized")
async def unauthorized() -> JSONResponse:
    """Terminal access-denied destination."""
    return JSONResponse(
        status_code=status.HTTP_403_FORBIDDEN,
        content={"success": False, "error": "Access denied"},
    )


@router.get("/dashboard")
async def dashboard(profile: AnyProfile) -> dict:
    """Default landing screen for restaurant roles."""
    return _ok({"profile": profile.model_dump(mode="json")})


@router.get("/super-admin")
async def super_admin_dashboard(profile: SuperAdminProfile) -> dict:
    """Platform administration landing screen."""
    return _ok({"profile": profile.model_dump(mode="json")})


@router.get("/setup")
async def restaurant_setup(profile: KitchenOwnerProfile) -> dict:
    """Restaurant setup screen for owners who have not created one yet."""
    return _ok({
        "profile": profile.model_dump(mode="json"),
        "setup_required": profile.restaurant_id is None,
    })
