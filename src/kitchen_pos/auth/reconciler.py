"""Session reconciler.

Decides, at any point in time, whether the console holds a valid
authenticated identity and which profile belongs to it. Inputs are the local
profile cache, the credential store (direct calls and pushed events) and the
profile table. The output is a stream of immutable ``SessionState`` values
delivered to subscribers.

Every operation takes a generation ticket when it starts. Only the holder of
the latest ticket may commit a result, so a slow fetch that resolves after a
newer operation is discarded instead of overwriting it. Commits never await,
which keeps identity, profile and cache changes atomic on the event loop.
"""

import asyncio
import contextlib
import inspect
import logging
from collections.abc import Awaitable, Callable, Coroutine
from pathlib import Path
from typing import Any

from kitchen_pos.auth.cache import FileStore, ProfileCache
from kitchen_pos.auth.credentials import CredentialStore, SupabaseCredentialStore
from kitchen_pos.config import Settings, get_settings
from kitchen_pos.db.client import DatabaseClient, ProfileStore
from kitchen_pos.exceptions import (
    AccountPendingApprovalError,
    AuthError,
    EmailNotVerifiedError,
    InvalidCredentialsError,
    ProfileNotFoundError,
    ProfileRejectedError,
    SessionFetchTimeoutError,
    SignOutFailureError,
)
from kitchen_pos.models.identity import Identity, Profile, Role
from kitchen_pos.models.session import AuthEvent, SessionState

logger = logging.getLogger(__name__)

Listener = Callable[[SessionState], Awaitable[None] | None]

# Pushed events that a manual sign-in reconciles on its own
_SIGN_IN_EVENTS = frozenset({
    AuthEvent.SIGNED_IN,
    AuthEvent.TOKEN_REFRESHED,
    AuthEvent.USER_UPDATED,
})

_TERMINAL_EVENTS = frozenset({AuthEvent.SIGNED_OUT, AuthEvent.USER_DELETED})


def validate_profile(identity: Identity, profile: Profile) -> None:
    """Apply the session policy to a freshly fetched profile.

    Raises:
        EmailNotVerifiedError: If the identity's email is unconfirmed
        AccountPendingApprovalError: If a non-admin profile is inactive
    """
    if not identity.email_confirmed:
        raise EmailNotVerifiedError()
    if profile.role is not Role.SUPER_ADMIN and not profile.is_active:
        raise AccountPendingApprovalError()


class SessionReconciler:
    """Owns the session state and publishes every change to subscribers.

    Construct one per console process, call ``start()`` once, and ``close()``
    on shutdown (or use it as an async context manager).
    """

    def __init__(
        self,
        credentials: CredentialStore,
        profiles: ProfileStore,
        cache: ProfileCache,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._credentials = credentials
        self._profiles = profiles
        self._cache = cache
        self.session_fetch_timeout = settings.session_fetch_timeout
        self.profile_fetch_timeout = settings.profile_fetch_timeout
        self.sign_out_timeout = settings.sign_out_timeout

        self._state = SessionState.uninitialized()
        # (listener, last sequence published before it subscribed)
        self._subscriptions: list[tuple[Listener, int]] = []
        self._outbox: asyncio.Queue[tuple[int, SessionState]] | None = None
        self._dispatcher: asyncio.Task | None = None
        self._published = 0

        self._generation = 0
        self._manual_sign_ins = 0
        self._abandoned_sign_ins: set[str] = set()
        self._started = False
        self._closed = False
        self._unsubscribe_provider: Callable[[], None] | None = None
        self._event_tasks: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        """The latest committed state."""
        return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener for published states.

        Listeners run from the dispatcher task, never inside a state change.
        A new listener only receives states published after it subscribed,
        so it never sees anything older than ``state`` at that moment.
        Returns an idempotent unsubscribe function.
        """
        entry = (listener, self._published)
        self._subscriptions.append(entry)

        def unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._subscriptions.remove(entry)

        return unsubscribe

    async def start(self) -> SessionState:
        """Run the initial load sequence.

        Never raises: any failure resolves to the unauthenticated state.
        """
        if self._started:
            return self._state
        self._started = True

        ticket = self._next_ticket()
        snapshot = self._cache.read()
        self._set_state(
            SessionState.initializing(snapshot.profile if snapshot else None)
        )
        if snapshot is not None:
            logger.debug(f"Painted cached profile for {snapshot.subject_id}")

        identity: Identity | None = None
        try:
            identity = await self._bounded(
                self._credentials.get_session(),
                self.session_fetch_timeout,
                "session fetch",
            )
        except SessionFetchTimeoutError as e:
            logger.warning(f"Session initialization failed: {e}")
        except Exception as e:
            logger.error(f"Error getting session: {e}")

        identity, profile = await self._reconcile_identity(ticket, identity)
        self._commit(ticket, identity, profile)

        try:
            self._unsubscribe_provider = self._credentials.on_auth_state_change(
                self._on_provider_event
            )
        except Exception as e:
            logger.error(f"Could not subscribe to auth events: {e}")

        return self._state

    async def sign_in(self, email: str, password: str) -> SessionState:
        """Sign in with email and password.

        Returns:
            The session state after the sign-in is reconciled

        Raises:
            InvalidCredentialsError: Credentials rejected; prior state restored
            EmailNotVerifiedError: Identity email not confirmed
            AccountPendingApprovalError: Profile awaiting approval
            ProfileNotFoundError: No usable profile for the identity
            SessionFetchTimeoutError: Provider or profile call timed out
        """
        ticket = self._next_ticket()
        previous = self._state
        self._abandoned_sign_ins.discard(email.lower())
        self._manual_sign_ins += 1
        try:
            self._set_state(previous.model_copy(update={"loading": True}))

            try:
                identity = await self._bounded(
                    self._credentials.sign_in(email, password),
                    self.session_fetch_timeout,
                    "sign-in",
                )
            except SessionFetchTimeoutError:
                # The provider call keeps running; its late SIGNED_IN is dropped
                self._abandoned_sign_ins.add(email.lower())
                self._restore(ticket, previous)
                raise
            except AuthError:
                self._restore(ticket, previous)
                raise
            except Exception as e:
                self._restore(ticket, previous)
                raise InvalidCredentialsError(str(e) or None) from e

            try:
                profile = await self._resolve_profile(identity)
            except AuthError as e:
                await self._reject(ticket, e)
                raise
            except Exception as e:
                error = ProfileNotFoundError(f"Profile lookup failed: {e}")
                await self._reject(ticket, error)
                raise error from e
        finally:
            self._manual_sign_ins -= 1

        if self._commit(ticket, identity, profile):
            logger.info(f"Signed in {email} as {profile.role.value}")
        else:
            logger.info(f"Sign-in for {email} superseded by a newer session change")
        return self._state

    async def sign_out(self) -> None:
        """Sign out locally and at the credential store.

        Local state is cleared even when the remote call fails.

        Raises:
            SignOutFailureError: If the remote sign-out failed or timed out
        """
        self._next_ticket()
        failure: Exception | None = None
        try:
            await self._bounded(
                self._credentials.sign_out(),
                self.sign_out_timeout,
                "sign-out",
            )
        except Exception as e:
            failure = e
            logger.warning(f"Remote sign-out failed: {e}")
        finally:
            # A fresh ticket so nothing in flight can commit over this
            self._commit(self._next_ticket(), None, None)

        if failure is not None:
            raise SignOutFailureError(str(failure) or None) from failure

    async def refresh(self) -> SessionState:
        """Re-fetch and re-validate the current provider session.

        The published state keeps its current value until the result is known,
        and ``loading`` is not touched.
        """
        ticket = self._next_ticket()
        identity: Identity | None = None
        try:
            identity = await self._bounded(
                self._credentials.get_session(),
                self.session_fetch_timeout,
                "session refresh",
            )
        except SessionFetchTimeoutError as e:
            logger.warning(f"Session refresh failed: {e}")
        except Exception as e:
            logger.error(f"Error refreshing session: {e}")

        identity, profile = await self._reconcile_identity(ticket, identity)
        self._commit(ticket, identity, profile)
        return self._state

    async def wait_until_resolved(self) -> SessionState:
        """Wait until the state is no longer loading."""
        if not self._state.loading:
            return self._state

        future: asyncio.Future[SessionState] = asyncio.get_running_loop().create_future()

        def on_state(state: SessionState) -> None:
            if not state.loading and not future.done():
                future.set_result(state)

        unsubscribe = self.subscribe(on_state)
        try:
            return await future
        finally:
            unsubscribe()

    async def drain(self) -> None:
        """Wait until every published state has reached the listeners."""
        if self._outbox is not None:
            await self._outbox.join()

    async def close(self) -> None:
        """Detach from the credential store and stop the dispatcher.

        State changes after this point are still applied but no longer
        published.
        """
        self._closed = True
        if self._unsubscribe_provider is not None:
            try:
                self._unsubscribe_provider()
            except Exception as e:
                logger.warning(f"Error unsubscribing from auth events: {e}")
            self._unsubscribe_provider = None

        for task in list(self._event_tasks):
            task.cancel()
        if self._event_tasks:
            await asyncio.gather(*self._event_tasks, return_exceptions=True)

        if self._dispatcher is not None:
            await self.drain()
            self._dispatcher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._dispatcher
            self._dispatcher = None

    async def __aenter__(self) -> "SessionReconciler":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Provider events
    # ------------------------------------------------------------------

    def _on_provider_event(self, event: AuthEvent, identity: Identity | None) -> None:
        if event in _TERMINAL_EVENTS or identity is None:
            logger.info(f"Auth event {event.value}: session ended")
            self._commit(self._next_ticket(), None, None)
            return

        if self._manual_sign_ins and event in _SIGN_IN_EVENTS:
            logger.debug(f"Ignoring {event.value} during manual sign-in")
            return

        ticket = self._next_ticket()
        email = (identity.email or "").lower()
        if event is AuthEvent.SIGNED_IN and email in self._abandoned_sign_ins:
            self._abandoned_sign_ins.discard(email)
            logger.info(f"Ending session from timed-out sign-in for {identity.email}")
            self._track(self._end_abandoned_session(ticket))
            return

        self._track(self._revalidate(ticket, identity))

    def _track(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._event_tasks.add(task)
        task.add_done_callback(self._event_tasks.discard)

    async def _revalidate(self, ticket: int, identity: Identity) -> None:
        identity_, profile = await self._reconcile_identity(ticket, identity)
        self._commit(ticket, identity_, profile)

    async def _end_abandoned_session(self, ticket: int) -> None:
        await self._sign_out_remote()
        self._commit(ticket, None, None)

    # ------------------------------------------------------------------
    # Fetch and validate
    # ------------------------------------------------------------------

    async def _bounded(self, awaitable: Awaitable[Any], timeout: float, operation: str) -> Any:
        try:
            return await asyncio.wait_for(awaitable, timeout=timeout)
        except asyncio.TimeoutError as e:
            raise SessionFetchTimeoutError(operation, timeout) from e

    async def _resolve_profile(self, identity: Identity) -> Profile:
        """Fetch and validate the profile for a live identity."""
        profile = await self._bounded(
            self._profiles.fetch_by_auth_id(identity.subject_id),
            self.profile_fetch_timeout,
            "profile fetch",
        )
        if profile is None:
            raise ProfileNotFoundError()
        validate_profile(identity, profile)
        return profile

    async def _reconcile_identity(
        self,
        ticket: int,
        identity: Identity | None,
    ) -> tuple[Identity | None, Profile | None]:
        """Turn a provider identity into a committed pair, or (None, None).

        Never raises. Policy rejections also end the provider session.
        """
        if identity is None:
            return None, None
        if identity.is_expired():
            logger.info(f"Session for {identity.subject_id} has expired")
            return None, None

        try:
            profile = await self._resolve_profile(identity)
        except ProfileRejectedError as e:
            logger.warning(f"Session for {identity.subject_id} rejected: {e}")
            if ticket == self._generation:
                await self._sign_out_remote()
            return None, None
        except SessionFetchTimeoutError as e:
            logger.warning(f"Profile fetch for {identity.subject_id} failed: {e}")
            return None, None
        except Exception as e:
            logger.error(f"Error fetching profile for {identity.subject_id}: {e}")
            return None, None

        return identity, profile

    async def _reject(self, ticket: int, error: AuthError) -> None:
        """End a half-established sign-in and resolve unauthenticated."""
        logger.warning(f"Sign-in rejected: {error}")
        if ticket != self._generation:
            return
        await self._sign_out_remote()
        self._commit(ticket, None, None)

    async def _sign_out_remote(self) -> None:
        try:
            await self._bounded(
                self._credentials.sign_out(),
                self.sign_out_timeout,
                "sign-out",
            )
        except Exception as e:
            logger.warning(f"Remote sign-out after rejection failed: {e}")

    # ------------------------------------------------------------------
    # Commit and publish
    # ------------------------------------------------------------------

    def _next_ticket(self) -> int:
        self._generation += 1
        return self._generation

    def _commit(
        self,
        ticket: int,
        identity: Identity | None,
        profile: Profile | None,
    ) -> bool:
        """Apply a resolved result if its ticket is still current.

        Returns:
            True if the result was applied, False if it was stale
        """
        if ticket != self._generation:
            logger.debug(f"Discarding stale session result (ticket {ticket}, current {self._generation})")
            return False

        if identity is not None and profile is not None:
            self._cache.write(profile, identity.subject_id)
            self._set_state(SessionState.authenticated(identity, profile))
        else:
            self._cache.clear()
            self._set_state(SessionState.unauthenticated())
        return True

    def _restore(self, ticket: int, previous: SessionState) -> None:
        if ticket == self._generation:
            self._set_state(previous)

    def _set_state(self, state: SessionState) -> None:
        if state == self._state:
            return
        self._state = state
        self._publish(state)

    def _publish(self, state: SessionState) -> None:
        if self._closed:
            logger.debug(f"Reconciler closed, not publishing {state.phase.value}")
            return
        if self._outbox is None:
            self._outbox = asyncio.Queue()
        if self._dispatcher is None or self._dispatcher.done():
            self._dispatcher = asyncio.create_task(self._dispatch(self._outbox))
        self._published += 1
        self._outbox.put_nowait((self._published, state))

    async def _dispatch(self, outbox: asyncio.Queue[tuple[int, SessionState]]) -> None:
        while True:
            sequence, state = await outbox.get()
            try:
                for listener, floor in list(self._subscriptions):
                    if sequence <= floor:
                        continue
                    try:
                        result = listener(state)
                        if inspect.isawaitable(result):
                            await result
                    except Exception as e:
                        logger.error(f"Session listener failed: {e}")
            finally:
                outbox.task_done()


def build_reconciler(settings: Settings | None = None) -> SessionReconciler:
    """Wire a reconciler to Supabase and the on-disk profile cache."""
    settings = settings or get_settings()
    cache = ProfileCache(
        FileStore(Path(settings.profile_cache_path)),
        key=settings.profile_cache_key,
        ttl_seconds=settings.profile_cache_ttl_seconds,
    )
    return SessionReconciler(
        credentials=SupabaseCredentialStore(),
        profiles=DatabaseClient(),
        cache=cache,
        settings=settings,
    )
