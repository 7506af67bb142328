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

import json
import logging
import secrets
import time
import typing
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any

from pydantic import BaseModel
from sqlalchemy import String, Text, DateTime, select, delete
from sqlalchemy.orm import Mapped, mapped_column

from identify_sync.shared.database import Base, DbCallable
from identify_sync.shared.exceptions import IdentityException, SessionPersistenceFailure
from identify_sync.shared.models import SessionData, UserRecord

logger = logging.getLogger(__name__)

SESSION_COOKIE_NAME = "sessionId"
DEFAULT_SESSION_TTL = 14 * 24 * 60 * 60  # 14 days


class SessionStore(ABC):
    """
    Server-side session storage keyed by session id.
    Implementations must raise on storage failures instead of returning defaults.
    """

    @abstractmethod
    async def read(self, session_id: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    async def write(self, session_id: str, data: Dict[str, Any], ttl: int) -> None:
        pass

    @abstractmethod
    async def remove(self, session_id: str) -> None:
        pass

    async def exists(self, session_id: str) -> bool:
        return await self.read(session_id) is not None


class InMemorySessionStore(SessionStore):
    """Process-local store for development and tests."""

    def __init__(self):
        self._data: Dict[str, typing.Tuple[Dict[str, Any], float]] = {}

    async def read(self, session_id: str) -> Optional[Dict[str, Any]]:
        entry = self._data.get(session_id)
        if entry is None:
            return None
        data, expires_at = entry
        if time.time() >= expires_at:
            self._data.pop(session_id, None)
            return None
        return dict(data)

    async def write(self, session_id: str, data: Dict[str, Any], ttl: int) -> None:
        self._data[session_id] = (dict(data), time.time() + ttl)

    async def remove(self, session_id: str) -> None:
        self._data.pop(session_id, None)

    def __len__(self) -> int:
        return len(self._data)


class SessionRecord(Base):
    __tablename__ = "session"

    sid: Mapped[str] = mapped_column(String(128), primary_key=True)
    sess: Mapped[str] = mapped_column(Text, nullable=False)
    expire: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)


class DatabaseSessionStore(SessionStore):
    """
    A server-side session store that uses a SQLAlchemy table for storage.
    """

    def __init__(self, db_callable: DbCallable, session_table: typing.Type[SessionRecord] = SessionRecord):
        self.session_table = session_table
        self.db_callable = db_callable

    @staticmethod
    def _expired(expire: datetime) -> bool:
        # SQLite hands timezone-aware columns back naive.
        if expire.tzinfo is None:
            expire = expire.replace(tzinfo=timezone.utc)
        return expire <= datetime.now(timezone.utc)

    async def read(self, session_id: str) -> Optional[Dict[str, Any]]:
        async with self.db_callable() as db:
            stmt = select(self.session_table).where(self.session_table.sid == session_id)
            record = (await db.execute(stmt)).scalar_one_or_none()
            if record is None:
                return None
            if self._expired(record.expire):
                await db.delete(record)
                await db.commit()
                return None
            return json.loads(record.sess)

    async def write(self, session_id: str, data: Dict[str, Any], ttl: int) -> None:
        expire = datetime.now(timezone.utc) + timedelta(seconds=ttl)
        async with self.db_callable() as db:
            record = await db.get(self.session_table, session_id)
            if record is None:
                db.add(self.session_table(sid=session_id, sess=json.dumps(data), expire=expire))
            else:
                record.sess = json.dumps(data)
                record.expire = expire
            await db.commit()

    async def remove(self, session_id: str) -> None:
        async with self.db_callable() as db:
            await db.execute(delete(self.session_table).where(self.session_table.sid == session_id))
            await db.commit()

    async def prune_expired(self) -> int:
        async with self.db_callable() as db:
            result = await db.execute(
                delete(self.session_table).where(self.session_table.expire <= datetime.now(timezone.utc))
            )
            await db.commit()
            return result.rowcount or 0


class RedisSessionStore(SessionStore):
    """Stores sessions as JSON strings with a native Redis TTL."""

    def __init__(self, client: Any, prefix: str = "sess:"):
        self.client = client
        self.prefix = prefix

    @classmethod
    def from_url(cls, redis_url: str, prefix: str = "sess:") -> "RedisSessionStore":
        try:
            from redis import asyncio as aioredis
        except ImportError:
            raise ImportError("redis library required for RedisSessionStore. pip install redis")
        return cls(aioredis.from_url(redis_url, decode_responses=True), prefix=prefix)

    def _key(self, session_id: str) -> str:
        return f"{self.prefix}{session_id}"

    async def read(self, session_id: str) -> Optional[Dict[str, Any]]:
        raw = await self.client.get(self._key(session_id))
        return json.loads(raw) if raw else None

    async def write(self, session_id: str, data: Dict[str, Any], ttl: int) -> None:
        await self.client.set(self._key(session_id), json.dumps(data), ex=ttl)

    async def remove(self, session_id: str) -> None:
        await self.client.delete(self._key(session_id))

    async def exists(self, session_id: str) -> bool:
        return bool(await self.client.exists(self._key(session_id)))


class CookieSettings(BaseModel):
    name: str = SESSION_COOKIE_NAME
    max_age: int = DEFAULT_SESSION_TTL
    secure: bool = False
    same_site: str = "lax"
    domain: Optional[str] = None
    path: str = "/"
    httponly: bool = True

    @classmethod
    def for_environment(
        cls, production: bool, domain: Optional[str] = None, name: str = SESSION_COOKIE_NAME,
        max_age: int = DEFAULT_SESSION_TTL,
    ) -> "CookieSettings":
        # The SPA is served from another site in production: cross-site cookies need None+Secure.
        if production:
            return cls(name=name, max_age=max_age, secure=True, same_site="none", domain=domain)
        return cls(name=name, max_age=max_age, secure=False, same_site="lax", domain=None)

    def set_cookie_kwargs(self, session_id: str) -> Dict[str, Any]:
        return {
            "key": self.name,
            "value": session_id,
            "max_age": self.max_age,
            "path": self.path,
            "domain": self.domain,
            "secure": self.secure,
            "httponly": self.httponly,
            "samesite": self.same_site,
        }

    def delete_cookie_kwargs(self) -> Dict[str, Any]:
        return {
            "key": self.name,
            "path": self.path,
            "domain": self.domain,
            "secure": self.secure,
            "httponly": self.httponly,
            "samesite": self.same_site,
        }


class SessionManager:
    """
    Creates, loads and destroys sessions on top of a SessionStore.

    Store failures on write or remove are raised as SessionPersistenceFailure;
    a failing read is a 500 as well. Nothing here reports success it did not get.
    """

    def __init__(self, store: SessionStore, cookie: Optional[CookieSettings] = None):
        self.store = store
        self.cookie = cookie if cookie is not None else CookieSettings()

    @property
    def ttl(self) -> int:
        return self.cookie.max_age

    @staticmethod
    def new_session_id() -> str:
        return secrets.token_urlsafe(32)

    async def establish(self, user: UserRecord) -> str:
        session_id = self.new_session_id()
        data = SessionData(user_id=user.id, user=user, created_at=int(time.time()))
        await self._write(session_id, data)
        logger.info(f"Session established for user {user.id}")
        return session_id

    async def refresh(self, session_id: str, session: SessionData, user: UserRecord) -> SessionData:
        """Store the latest user snapshot; rewriting also renews the expiry."""
        updated = session.model_copy(update={"user": user})
        await self._write(session_id, updated)
        return updated

    async def load(self, session_id: Optional[str]) -> Optional[SessionData]:
        if not session_id:
            return None
        try:
            raw = await self.store.read(session_id)
        except Exception as e:
            logger.error(f"Session store read failed: {e}", exc_info=True)
            raise IdentityException(status_code=500, detail="Session store unavailable") from e
        if raw is None:
            return None
        try:
            return SessionData.model_validate(raw)
        except ValueError as e:
            logger.warning(f"Discarding unreadable session data: {e}")
            await self.destroy(session_id)
            return None

    async def destroy(self, session_id: Optional[str]) -> None:
        if not session_id:
            return
        try:
            await self.store.remove(session_id)
        except Exception as e:
            logger.error(f"Session destroy failed: {e}", exc_info=True)
            raise SessionPersistenceFailure("Could not log out, please try again.") from e
        logger.debug("Session destroyed.")

    async def _write(self, session_id: str, data: SessionData) -> None:
        try:
            await self.store.write(session_id, data.to_json(), self.ttl)
        except Exception as e:
            logger.error(f"Session save failed: {e}", exc_info=True)
            raise SessionPersistenceFailure() from e
