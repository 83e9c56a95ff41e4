"""Credential store adapters backed by Supabase Auth."""

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any, Protocol

from supabase import AuthError as SupabaseAuthError
from supabase import Client, create_client

from kitchen_pos.config import get_settings
from kitchen_pos.exceptions import InvalidCredentialsError
from kitchen_pos.models.identity import Identity
from kitchen_pos.models.session import AuthEvent

logger = logging.getLogger(__name__)

AuthListener = Callable[[AuthEvent, Identity | None], None]


class CredentialStore(Protocol):
    """Capabilities the reconciler needs from the auth provider."""

    async def get_session(self) -> Identity | None:
        """Return the identity of the current session, if any."""
        ...

    async def sign_in(self, email: str, password: str) -> Identity:
        """Exchange credentials for a session.

        Raises:
            InvalidCredentialsError: If the provider rejects the credentials
        """
        ...

    async def sign_out(self) -> None:
        """End the provider session."""
        ...

    def on_auth_state_change(self, callback: AuthListener) -> Callable[[], None]:
        """Register a listener for pushed auth events.

        The callback is invoked on the event loop that registered it.
        Returns a function that removes the listener.
        """
        ...


def identity_from_user(user: Any, expires_at: int | None = None) -> Identity:
    """Build an Identity from a Supabase user object.

    Args:
        user: The provider's user record
        expires_at: Session expiry as a unix timestamp, if known
    """
    return Identity(
        subject_id=str(user.id),
        email=user.email,
        email_confirmed=user.email_confirmed_at is not None,
        expires_at=(
            datetime.fromtimestamp(expires_at, UTC) if expires_at is not None else None
        ),
    )


def identity_from_session(session: Any) -> Identity | None:
    """Build an Identity from a Supabase session, or None if there is none."""
    if session is None or session.user is None:
        return None
    return identity_from_user(session.user, session.expires_at)


class SupabaseCredentialStore:
    """Credential store over the synchronous Supabase client.

    Blocking client calls run in worker threads so callers can bound them
    with ``asyncio.wait_for``.
    """

    def __init__(self, client: Client | None = None) -> None:
        if client is None:
            settings = get_settings()
            client = create_client(settings.supabase_url, settings.supabase_key)
        self.client = client

    async def get_session(self) -> Identity | None:
        session = await asyncio.to_thread(self.client.auth.get_session)
        return identity_from_session(session)

    async def sign_in(self, email: str, password: str) -> Identity:
        try:
            response = await asyncio.to_thread(
                self.client.auth.sign_in_with_password,
                {"email": email, "password": password},
            )
        except SupabaseAuthError as e:
            logger.info(f"Provider rejected sign-in for {email}: {e}")
            raise InvalidCredentialsError(str(e) or None) from e

        if response.user is None:
            raise InvalidCredentialsError()

        expires_at = response.session.expires_at if response.session else None
        return identity_from_user(response.user, expires_at)

    async def sign_out(self) -> None:
        await asyncio.to_thread(self.client.auth.sign_out)

    def on_auth_state_change(self, callback: AuthListener) -> Callable[[], None]:
        loop = asyncio.get_running_loop()

        def relay(event: str, session: Any) -> None:
            try:
                auth_event = AuthEvent(event)
            except ValueError:
                logger.debug(f"Ignoring unknown auth event {event!r}")
                return
            identity = identity_from_session(session)
            loop.call_soon_threadsafe(callback, auth_event, identity)

        subscription = self.client.auth.on_auth_state_change(relay)
        return subscription.unsubscribe


class SupabaseAdminClient:
    """Service-role access to Supabase Auth user management.

    Only the provisioning tooling uses this client. It must never be handed to
    the reconciler.
    """

    def __init__(self, client: Client | None = None) -> None:
        if client is None:
            settings = get_settings()
            if not settings.supabase_service_role_key:
                raise ValueError("SUPABASE_SERVICE_ROLE_KEY is required for admin operations")
            client = create_client(settings.supabase_url, settings.supabase_service_role_key)
        self.client = client

    async def list_users(self) -> list[Identity]:
        users = await asyncio.to_thread(self.client.auth.admin.list_users)
        return [identity_from_user(user) for user in users]

    async def find_user_by_email(self, email: str) -> Identity | None:
        """Find an auth user by email, case-insensitively."""
        wanted = email.lower()
        for identity in await self.list_users():
            if identity.email and identity.email.lower() == wanted:
                return identity
        return None

    async def create_user(
        self,
        email: str,
        password: str,
        metadata: dict[str, Any] | None = None,
    ) -> Identity:
        """Create an auth user with an already-confirmed email."""
        response = await asyncio.to_thread(
            self.client.auth.admin.create_user,
            {
                "email": email,
                "password": password,
                "email_confirm": True,
                "user_metadata": metadata or {},
            },
        )
        logger.info(f"Created auth user {response.user.id}")
        return identity_from_user(response.user)

    async def update_user(
        self,
        subject_id: str,
        password: str | None = None,
        email_confirm: bool | None = None,
    ) -> Identity:
        """Update an auth user's password and/or email confirmation."""
        attributes: dict[str, Any] = {}
        if password is not None:
            attributes["password"] = password
        if email_confirm is not None:
            attributes["email_confirm"] = email_confirm

        response = await asyncio.to_thread(
            self.client.auth.admin.update_user_by_id,
            subject_id,
            attributes,
        )
        logger.info(f"Updated auth user {subject_id}")
        return identity_from_user(response.user)
