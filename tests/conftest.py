"""Global test configuration for Kitchen POS."""

import asyncio
import os
from collections.abc import Callable
from uuid import UUID, uuid4

import pytest

from kitchen_pos.auth.cache import MemoryStore, ProfileCache
from kitchen_pos.auth.reconciler import SessionReconciler
from kitchen_pos.config import Settings
from kitchen_pos.exceptions import InvalidCredentialsError
from kitchen_pos.models.identity import Identity, Profile, Role
from kitchen_pos.models.session import AuthEvent


@pytest.fixture(autouse=True, scope="session")
def _set_test_env_vars():
    """Set dummy environment variables for Settings validation.

    This ensures tests don't require a real .env file or exported env vars.
    Only sets values that aren't already present, so real env vars take
    precedence (useful for integration tests).
    """
    defaults = {
        "SUPABASE_URL": "https://test.supabase.co",
        "SUPABASE_KEY": "test-supabase-key",
    }
    originals = {}
    for key, value in defaults.items():
        if key not in os.environ:
            os.environ[key] = value
            originals[key] = None
        else:
            originals[key] = os.environ[key]

    # Clear the lru_cache on get_settings so it picks up the new env vars
    from kitchen_pos.config import get_settings
    get_settings.cache_clear()

    yield

    # Restore original env state
    for key, original in originals.items():
        if original is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = original
    get_settings.cache_clear()


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeCredentialStore:
    """In-memory credential store with controllable latency."""

    def __init__(self) -> None:
        self.session: Identity | None = None
        self.accounts: dict[str, tuple[str, Identity]] = {}
        self.session_gate: asyncio.Event | None = None
        self.sign_in_gate: asyncio.Event | None = None
        self.sign_out_gate: asyncio.Event | None = None
        self.sign_out_error: Exception | None = None
        self.sign_out_calls = 0
        self.listeners: list[Callable[[AuthEvent, Identity | None], None]] = []

    def add_account(self, email: str, password: str, identity: Identity) -> None:
        self.accounts[email] = (password, identity)

    async def get_session(self) -> Identity | None:
        if self.session_gate is not None:
            await self.session_gate.wait()
        return self.session

    async def sign_in(self, email: str, password: str) -> Identity:
        if self.sign_in_gate is not None:
            await self.sign_in_gate.wait()
        account = self.accounts.get(email)
        if account is None or account[0] != password:
            raise InvalidCredentialsError("Invalid login credentials")
        self.session = account[1]
        return account[1]

    async def sign_out(self) -> None:
        self.sign_out_calls += 1
        self.session = None
        if self.sign_out_gate is not None:
            await self.sign_out_gate.wait()
        if self.sign_out_error is not None:
            raise self.sign_out_error

    def on_auth_state_change(self, callback):
        self.listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self.listeners:
                self.listeners.remove(callback)

        return unsubscribe

    def emit(self, event: AuthEvent, identity: Identity | None) -> None:
        for listener in list(self.listeners):
            listener(event, identity)


class FakeProfileStore:
    """In-memory profile table with per-user gates."""

    def __init__(self) -> None:
        self.profiles: dict[str, Profile] = {}
        self.gates: dict[str, asyncio.Event] = {}
        self.error: Exception | None = None
        self.calls: list[str] = []

    def add(self, profile: Profile) -> None:
        self.profiles[profile.auth_user_id] = profile

    async def fetch_by_auth_id(self, auth_user_id: str) -> Profile | None:
        self.calls.append(auth_user_id)
        gate = self.gates.get(auth_user_id)
        if gate is not None:
            await gate.wait()
        if self.error is not None:
            raise self.error
        return self.profiles.get(auth_user_id)


def make_identity(
    subject_id: str = "auth-owner",
    email: str = "owner@restaurant.com",
    email_confirmed: bool = True,
) -> Identity:
    return Identity(subject_id=subject_id, email=email, email_confirmed=email_confirmed)


def make_profile(
    auth_user_id: str = "auth-owner",
    email: str = "owner@restaurant.com",
    role: Role = Role.KITCHEN_OWNER,
    is_active: bool = True,
    restaurant_id: UUID | None = None,
    full_name: str | None = "Test Owner",
) -> Profile:
    if restaurant_id is None and role is not Role.SUPER_ADMIN:
        restaurant_id = uuid4()
    return Profile(
        id=uuid4(),
        auth_user_id=auth_user_id,
        email=email,
        full_name=full_name,
        role=role,
        restaurant_id=restaurant_id,
        is_active=is_active,
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def settings() -> Settings:
    """Settings with short timeouts so timeout paths run quickly."""
    return Settings(
        supabase_url="https://test.supabase.co",
        supabase_key="test-supabase-key",
        session_fetch_timeout=0.2,
        profile_fetch_timeout=0.2,
        sign_out_timeout=0.2,
        guard_max_loading_seconds=0.2,
    )


@pytest.fixture
def identity_factory():
    return make_identity


@pytest.fixture
def profile_factory():
    return make_profile


@pytest.fixture
def credentials() -> FakeCredentialStore:
    return FakeCredentialStore()


@pytest.fixture
def profiles() -> FakeProfileStore:
    return FakeProfileStore()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def cache(store: MemoryStore) -> ProfileCache:
    return ProfileCache(store, key="user")


@pytest.fixture
def reconciler(credentials, profiles, cache, settings) -> SessionReconciler:
    return SessionReconciler(credentials, profiles, cache, settings=settings)
