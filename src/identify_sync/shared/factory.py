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

"""Builds the verifier, session store and service a Settings object selects."""

import logging
from typing import Optional

from identify_sync.shared.config import Settings
from identify_sync.shared.service import IdentitySyncService
from identify_sync.shared.sessions import (
    DatabaseSessionStore,
    InMemorySessionStore,
    RedisSessionStore,
    SessionManager,
    SessionStore,
)
from identify_sync.shared.users import UserRepository
from identify_sync.shared.verifiers import (
    AssertionVerifier,
    FirebaseTokenVerifier,
    GoogleAuthTokenVerifier,
)

logger = logging.getLogger(__name__)


def build_verifier(settings: Settings) -> AssertionVerifier:
    if settings.token_verifier == "google-auth":
        return GoogleAuthTokenVerifier(
            settings.firebase_project_id, clock_skew_in_seconds=settings.token_leeway_seconds
        )
    return FirebaseTokenVerifier(settings.firebase_project_id, leeway=settings.token_leeway_seconds)


def build_session_store(settings: Settings, db_callable) -> SessionStore:
    if settings.session_backend == "memory":
        if settings.is_production:
            logger.warning("In-memory sessions in production: sessions are lost on restart and not shared.")
        return InMemorySessionStore()
    if settings.session_backend == "redis":
        return RedisSessionStore.from_url(settings.redis_url)
    return DatabaseSessionStore(db_callable)


def build_service(
    settings: Settings,
    db_callable,
    verifier: Optional[AssertionVerifier] = None,
    session_store: Optional[SessionStore] = None,
) -> IdentitySyncService:
    sessions = SessionManager(
        session_store if session_store is not None else build_session_store(settings, db_callable),
        settings.cookie_settings(),
    )
    return IdentitySyncService(
        verifier if verifier is not None else build_verifier(settings),
        UserRepository(db_callable),
        sessions,
        allow_profile_reset=settings.allow_profile_reset,
    )


async def prune_sessions(service: IdentitySyncService) -> int:
    """Delete expired rows from a database session store. Other stores expire on their own."""
    store = service.sessions.store
    if not isinstance(store, DatabaseSessionStore):
        return 0
    pruned = await store.prune_expired()
    if pruned:
        logger.info(f"Pruned {pruned} expired sessions.")
    return pruned
