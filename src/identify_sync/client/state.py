#    Copyright 2025 FAO
#
#    Licensed under the Apache License, Version 2.0 (the "License");
#    you may not use this file except in compliance with the License.
#    You may obtain a copy of the License at
#
#        http://www.apache.org/licenses/LICENSE-2.0
#
#    Unless required by applicable law or agreed to in writing, software
#    distributed under the License is distributed on an "AS IS" BASIS,
#    WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#    See the License for the specific language governing permissions and
#    limitations under the License.
#
#    Author: Carlo Cancellieri (ccancellieri@gmail.com)
#    Company: FAO, Viale delle Terme di Caracalla, 00100 Rome, Italy
#    Contact: copyright@fao.org - http://fao.org/contact-us/terms/en/

"""
Auth State Context

`AuthStateStore` merges the identity provider's sign-in state with the
backend's session into one published `AuthSnapshot`.

Every provider event, `refresh()`, `login()` and `logout()` starts a new
generation. Results of backend calls are applied only if their generation is
still current, so a sign-out during a pending sync cannot resurrect the
session.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Set

from identify_sync.shared.exceptions import IdentityException, NoBackendSession
from identify_sync.shared.models import UserRecord, UserType
from identify_sync.client.backend import BackendClient
from identify_sync.client.notifications import LoggingNotifier, Notification, Notifier
from identify_sync.client.provider import IdentityProviderClient, ProviderUser

logger = logging.getLogger(__name__)

FETCH_FAILED_NOTIFICATION = Notification("Authentication error", "Could not load your account. Please try again.")
SYNC_FAILED_NOTIFICATION = Notification("Login error", "Could not synchronize the session.")
LOGOUT_FAILED_NOTIFICATION = Notification("Logout error", "Could not log out, please try again.")


class AuthPhase(str, Enum):
    UNCHECKED = "unchecked"
    PROVIDER_ABSENT = "provider_absent"
    FETCHING_LOCAL_USER = "fetching_local_user"
    LOCAL_USER_FOUND = "local_user_found"
    NO_LOCAL_SESSION = "no_local_session"
    SYNCING = "syncing"
    SYNC_FAILED = "sync_failed"
    FETCH_FAILED = "fetch_failed"


LOADING_PHASES = frozenset(
    {AuthPhase.UNCHECKED, AuthPhase.FETCHING_LOCAL_USER, AuthPhase.NO_LOCAL_SESSION, AuthPhase.SYNCING}
)


@dataclass(frozen=True)
class AuthFlags:
    is_loading: bool = True
    is_authenticated: bool = False
    is_profile_complete: bool = False
    is_admin: bool = False
    is_guide: bool = False
    is_operator: bool = False
    is_event_producer: bool = False


def derive_flags(
    phase: AuthPhase, provider_user: Optional[ProviderUser], local_user: Optional[UserRecord]
) -> AuthFlags:
    """
    Authenticated means: a provider session, a local user and a completed
    profile. Role flags need only the first two.
    """
    signed_in = phase == AuthPhase.LOCAL_USER_FOUND and provider_user is not None and local_user is not None
    if not signed_in:
        return AuthFlags(is_loading=phase in LOADING_PHASES)

    return AuthFlags(
        is_loading=False,
        is_authenticated=local_user.is_profile_complete,
        is_profile_complete=local_user.is_profile_complete,
        is_admin=local_user.has_admin_role,
        is_guide=local_user.user_type == UserType.GUIDE,
        is_operator=local_user.user_type == UserType.BOAT_TOUR_OPERATOR,
        is_event_producer=local_user.user_type == UserType.EVENT_PRODUCER,
    )


@dataclass(frozen=True)
class AuthSnapshot:
    phase: AuthPhase
    provider_user: Optional[ProviderUser]
    local_user: Optional[UserRecord]
    flags: AuthFlags
    generation: int
    is_logging_in: bool = False
    is_logging_out: bool = False
    error: Optional[str] = None

    @property
    def is_loading(self) -> bool:
        return self.flags.is_loading

    @property
    def is_authenticated(self) -> bool:
        return self.flags.is_authenticated


SnapshotListener = Callable[[AuthSnapshot], None]


@dataclass
class _State:
    phase: AuthPhase = AuthPhase.UNCHECKED
    provider_user: Optional[ProviderUser] = None
    local_user: Optional[UserRecord] = None
    is_logging_in: bool = False
    is_logging_out: bool = False
    error: Optional[str] = None


class AuthStateStore:
    def __init__(
        self,
        provider: IdentityProviderClient,
        backend: BackendClient,
        notifier: Optional[Notifier] = None,
    ):
        self.provider = provider
        self.backend = backend
        self.notifier = notifier if notifier is not None else LoggingNotifier()

        self._state = _State()
        self._listeners: List[SnapshotListener] = []
        self._generation = 0
        self._publishing_suspended = False
        self._tasks: Set[asyncio.Task] = set()
        self._unsubscribe_provider: Optional[Callable[[], None]] = None
        self._snapshot = self._build_snapshot()

    # --- Lifecycle ---

    async def start(self) -> None:
        """Begin observing the provider. Its current state is evaluated right away."""
        if self._unsubscribe_provider is None:
            self._unsubscribe_provider = self.provider.on_auth_state_changed(self._on_provider_change)

    async def stop(self) -> None:
        if self._unsubscribe_provider is not None:
            self._unsubscribe_provider()
            self._unsubscribe_provider = None
        self._generation += 1
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def wait_idle(self) -> None:
        """Wait until no evaluation started by a provider event is pending."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # --- Observation ---

    @property
    def snapshot(self) -> AuthSnapshot:
        return self._snapshot

    @property
    def generation(self) -> int:
        return self._generation

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """The listener receives the current snapshot now and every change after."""
        self._listeners.append(listener)
        listener(self._snapshot)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _build_snapshot(self) -> AuthSnapshot:
        state = self._state
        return AuthSnapshot(
            phase=state.phase,
            provider_user=state.provider_user,
            local_user=state.local_user,
            flags=derive_flags(state.phase, state.provider_user, state.local_user),
            generation=self._generation,
            is_logging_in=state.is_logging_in,
            is_logging_out=state.is_logging_out,
            error=state.error,
        )

    def _publish(self) -> None:
        if self._publishing_suspended:
            return
        snapshot = self._build_snapshot()
        if snapshot == self._snapshot:
            return
        self._snapshot = snapshot
        logger.debug(f"Auth state: {snapshot.phase.value} (generation {snapshot.generation})")
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.error("Auth state listener failed", exc_info=True)

    def _set_phase(self, phase: AuthPhase, error: Optional[str] = None) -> None:
        self._state.phase = phase
        self._state.error = error
        self._publish()

    # --- Generations ---

    def _next_generation(self) -> int:
        self._generation += 1
        return self._generation

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Auth state evaluation crashed", exc_info=task.exception())

    # --- Transitions ---

    def _on_provider_change(self, user: Optional[ProviderUser]) -> None:
        generation = self._next_generation()
        self._state.provider_user = user
        self._state.local_user = None
        if user is None:
            self._set_phase(AuthPhase.PROVIDER_ABSENT)
            return
        self._set_phase(AuthPhase.FETCHING_LOCAL_USER)
        self._spawn(self._evaluate(generation))

    async def _evaluate(self, generation: int) -> None:
        try:
            user = await self.backend.fetch_current_user()
        except NoBackendSession:
            if not self._is_current(generation):
                return
            self._set_phase(AuthPhase.NO_LOCAL_SESSION)
            await self._sync(generation)
            return
        except IdentityException as e:
            if not self._is_current(generation):
                return
            logger.error(f"Fetching the current user failed: {e.detail}")
            self._set_phase(AuthPhase.FETCH_FAILED, error=e.detail)
            self.notifier.notify(FETCH_FAILED_NOTIFICATION)
            return

        if not self._is_current(generation):
            logger.debug(f"Discarding current user from stale generation {generation}")
            return
        self._state.local_user = user
        self._set_phase(AuthPhase.LOCAL_USER_FOUND)

    async def _sync(self, generation: int) -> None:
        uid = self._state.provider_user.uid if self._state.provider_user else None
        logger.info(f"Synchronizing backend session for {uid}")
        self._set_phase(AuthPhase.SYNCING)

        try:
            id_token = await self.provider.get_id_token(force_refresh=True)
            if not self._is_current(generation):
                return
            user = await self.backend.sync_session(id_token)
        except IdentityException as e:
            if not self._is_current(generation):
                return
            logger.error(f"Session sync failed: {e.detail}")
            self._set_phase(AuthPhase.SYNC_FAILED, error=e.detail)
            self.notifier.notify(SYNC_FAILED_NOTIFICATION)
            return

        if not self._is_current(generation):
            await self._discard_stale_sync(generation, uid)
            return
        logger.info(f"Session synchronized for {uid}")
        self._state.local_user = user
        self._set_phase(AuthPhase.LOCAL_USER_FOUND)

    async def _discard_stale_sync(self, generation: int, uid: Optional[str]) -> None:
        current = self._state.provider_user
        if self._state.is_logging_out or (current is not None and current.uid == uid):
            logger.debug(f"Discarding sync result from stale generation {generation}")
            return
        # The cookie now carries a session for a user who is no longer signed in.
        logger.info(f"Sync for {uid} from generation {generation} finished too late; closing its session.")
        try:
            await self.backend.logout()
        except IdentityException as e:
            logger.warning(f"Could not close stale backend session: {e.detail}")
        if self._state.provider_user is not None and not self._state.is_logging_out:
            # The current user's own session was replaced; evaluate it again.
            self._on_provider_change(self._state.provider_user)

    # --- Commands ---

    async def refresh(self) -> AuthSnapshot:
        """Re-evaluate the current provider user against the backend."""
        generation = self._next_generation()
        self._state.local_user = None
        if self._state.provider_user is None:
            self._set_phase(AuthPhase.PROVIDER_ABSENT)
        else:
            self._set_phase(AuthPhase.FETCHING_LOCAL_USER)
            await self._evaluate(generation)
        return self._snapshot

    async def login(self, id_token: str) -> UserRecord:
        """
        Explicitly synchronize a fresh ID token, e.g. right after an interactive
        sign-in. Supersedes any evaluation in flight. Raises SyncFailure.
        """
        generation = self._next_generation()
        self._state.is_logging_in = True
        self._state.local_user = None
        self._set_phase(AuthPhase.SYNCING)
        try:
            user = await self.backend.sync_session(id_token)
        except IdentityException as e:
            self._state.is_logging_in = False
            if self._is_current(generation):
                self._set_phase(AuthPhase.SYNC_FAILED, error=e.detail)
                self.notifier.notify(SYNC_FAILED_NOTIFICATION)
            else:
                logger.info(f"Superseded login failed: {e.detail}")
                self._publish()
            raise

        self._state.is_logging_in = False
        if self._is_current(generation):
            self._state.local_user = user
            self._set_phase(AuthPhase.LOCAL_USER_FOUND)
        else:
            self._publish()
        return user

    async def logout(self) -> None:
        """
        Close the backend session, then sign out of the provider, and publish a
        single logged-out snapshot. A backend failure leaves the provider signed
        in, notifies, and raises.
        """
        self._next_generation()
        self._state.is_logging_out = True
        self._publish()

        try:
            await self.backend.logout()
        except IdentityException as e:
            logger.error(f"Logout failed: {e.detail}")
            self._state.is_logging_out = False
            self.notifier.notify(LOGOUT_FAILED_NOTIFICATION)
            self._on_provider_change(self._state.provider_user)
            raise

        self._publishing_suspended = True
        try:
            await self.provider.sign_out()
        except IdentityException as e:
            logger.warning(f"Provider sign-out failed after backend logout: {e.detail}")
        finally:
            self._publishing_suspended = False

        self._next_generation()
        self._state.provider_user = None
        self._state.local_user = None
        self._state.is_logging_out = False
        self._set_phase(AuthPhase.PROVIDER_ABSENT)
        logger.info("Logged out")
