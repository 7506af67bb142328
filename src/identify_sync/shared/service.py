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
Framework-neutral identity/session synchronization.

The FastAPI and Flask adapters only translate HTTP to these calls and
IdentityException subclasses back to HTTP.
"""

import logging
from dataclasses import dataclass
from typing import Any, List, Optional

from identify_sync.shared.exceptions import (
    AuthorizationError,
    IdentityException,
    NoBackendSession,
    UserNotFound,
)
from identify_sync.shared.models import (
    AdminUserUpdate,
    ProfileCompletion,
    SessionData,
    UserRecord,
    UserUpdate,
)
from identify_sync.shared.sessions import SessionManager
from identify_sync.shared.users import UserRepository
from identify_sync.shared.verifiers import AssertionVerifier

logger = logging.getLogger(__name__)

PROFILE_RESET_FIELDS = ("user_type", "bio", "phone")


@dataclass
class SyncResult:
    user: UserRecord
    session_id: str
    created: bool


class IdentitySyncService:
    def __init__(
        self,
        verifier: AssertionVerifier,
        users: UserRepository,
        sessions: SessionManager,
        allow_profile_reset: bool = False,
    ):
        self.verifier = verifier
        self.users = users
        self.sessions = sessions
        self.allow_profile_reset = allow_profile_reset

    async def sync_identity(self, id_token: Any, current_session_id: Optional[str] = None) -> SyncResult:
        """
        Verify an identity assertion, upsert its user and open a new session.

        The session is persisted before this returns; callers may treat a
        returned SyncResult as proof of an established session.
        """
        try:
            identity = await self.verifier.verify(id_token)
        except IdentityException as e:
            logger.warning(f"Identity verification failed: {e.detail}")
            if current_session_id:
                await self.sessions.destroy(current_session_id)
            raise

        user, created = await self.users.upsert_from_identity(identity)
        if current_session_id:
            await self.sessions.destroy(current_session_id)
        session_id = await self.sessions.establish(user)
        logger.info(f"Identity synchronized for {user.email} (user {user.id}, new={created})")
        return SyncResult(user=user, session_id=session_id, created=created)

    async def resolve_session(
        self, session_id: Optional[str], session: Optional[SessionData] = None
    ) -> SessionData:
        """Return `session` when the caller already loaded it, else read the store."""
        if session is None:
            session = await self.sessions.load(session_id)
        if session is None:
            raise NoBackendSession()
        return session

    async def current_user(
        self, session_id: Optional[str], session: Optional[SessionData] = None
    ) -> UserRecord:
        """
        Load the session's user fresh from the database.

        A session whose user no longer exists is destroyed.
        """
        session = await self.resolve_session(session_id, session)
        user = await self.users.get_by_id(session.user_id)
        if user is None:
            logger.warning(f"Session references missing user {session.user_id}; destroying it.")
            await self.sessions.destroy(session_id)
            raise NoBackendSession("User no longer exists")
        await self.sessions.refresh(session_id, session, user)
        return user

    async def logout(self, session_id: Optional[str]) -> None:
        await self.sessions.destroy(session_id)

    async def require_admin(
        self, session_id: Optional[str], session: Optional[SessionData] = None
    ) -> UserRecord:
        user = await self.current_user(session_id, session)
        self.ensure_admin(user)
        return user

    @staticmethod
    def ensure_admin(user: UserRecord) -> None:
        if not user.has_admin_role:
            logger.warning(f"User {user.id} denied admin access.")
            raise AuthorizationError("Admin access required")

    async def _update_current(self, session_id: Optional[str], values: dict) -> UserRecord:
        session = await self.resolve_session(session_id)
        user = await self.users.update(session.user_id, values)
        if user is None:
            await self.sessions.destroy(session_id)
            raise NoBackendSession("User no longer exists")
        await self.sessions.refresh(session_id, session, user)
        return user

    async def update_user(self, session_id: Optional[str], data: UserUpdate) -> UserRecord:
        return await self._update_current(session_id, data.model_dump(exclude_unset=True))

    async def complete_profile(self, session_id: Optional[str], data: ProfileCompletion) -> UserRecord:
        values = data.model_dump(exclude_unset=True)
        values["is_profile_complete"] = True
        user = await self._update_current(session_id, values)
        logger.info(f"User {user.id} completed profile as {user.user_type.value}")
        return user

    async def reset_profile(self, session_id: Optional[str]) -> UserRecord:
        if not self.allow_profile_reset:
            raise AuthorizationError("Not allowed in production")
        values = {field: None for field in PROFILE_RESET_FIELDS}
        values["is_profile_complete"] = False
        return await self._update_current(session_id, values)

    async def list_users(self, admin: UserRecord) -> List[UserRecord]:
        """`admin` is the caller, as returned by `require_admin`."""
        self.ensure_admin(admin)
        return await self.users.list_users()

    async def admin_update_user(self, admin: UserRecord, user_id: str, data: AdminUserUpdate) -> UserRecord:
        self.ensure_admin(admin)
        user = await self.users.update(user_id, data.model_dump(exclude_unset=True))
        if user is None:
            raise UserNotFound()
        logger.info(f"Admin {admin.id} updated user {user_id}")
        return user
