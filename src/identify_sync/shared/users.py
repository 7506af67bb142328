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

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional, List, Tuple, Dict, Any

from sqlalchemy import String, Boolean, Text, DateTime, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from identify_sync.shared.database import Base, DbCallable
from identify_sync.shared.models import UserIdentity, UserRecord

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    firebase_uid: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)

    first_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    profile_image_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    # NULL means the user has not picked a role yet.
    user_type: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    bio: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    is_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_profile_complete: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now, nullable=False)

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email} type={self.user_type}>"


class UserRepository:
    """
    Database operations on User records.

    Every method opens its own AsyncSession from `db_callable` and returns
    detached `UserRecord` snapshots, never ORM instances.
    """

    def __init__(self, db_callable: DbCallable):
        self.db_callable = db_callable

    @staticmethod
    async def _get_by_email(db: AsyncSession, email: str) -> Optional[User]:
        result = await db.execute(select(User).where(User.email == email))
        return result.scalar_one_or_none()

    async def get_by_id(self, user_id: str) -> Optional[UserRecord]:
        async with self.db_callable() as db:
            user = await db.get(User, user_id)
            return UserRecord.model_validate(user) if user else None

    async def get_by_email(self, email: str) -> Optional[UserRecord]:
        async with self.db_callable() as db:
            user = await self._get_by_email(db, email)
            return UserRecord.model_validate(user) if user else None

    async def upsert_from_identity(self, identity: UserIdentity) -> Tuple[UserRecord, bool]:
        """
        Find the user by the assertion's email, creating it on first sign-in.

        Concurrent first logins race on the unique email constraint; the loser
        rolls back and continues with the winner's row.

        Returns:
            (record, created)
        """
        async with self.db_callable() as db:
            created = False
            user = await self._get_by_email(db, identity.email)

            if user is None:
                user = User(
                    id=_new_id(),
                    email=identity.email,
                    firebase_uid=identity.id,
                    first_name=identity.first_name,
                    last_name=identity.last_name,
                    profile_image_url=identity.picture,
                    user_type=None,
                    is_admin=False,
                    is_profile_complete=False,
                )
                db.add(user)
                try:
                    await db.commit()
                    created = True
                    logger.info(f"Created user {user.id} for {identity.email}")
                except IntegrityError:
                    await db.rollback()
                    logger.info(f"Concurrent first sign-in for {identity.email}; re-fetching existing user.")
                    user = await self._get_by_email(db, identity.email)
                    if user is None:
                        raise

            if not created:
                if user.firebase_uid and user.firebase_uid != identity.id:
                    logger.warning(
                        f"User {user.id} ({identity.email}) signed in with a different provider uid "
                        f"({identity.id}, stored {user.firebase_uid})."
                    )
                if identity.picture and identity.picture != user.profile_image_url:
                    user.profile_image_url = identity.picture
                    user.updated_at = _now()
                    await db.commit()
                    logger.info(f"Updated profile image for user {user.id}")

            if created:
                await self._warn_on_uid_reuse(db, user)

            return UserRecord.model_validate(user), created

    async def _warn_on_uid_reuse(self, db: AsyncSession, user: User) -> None:
        stmt = select(User.id).where(User.firebase_uid == user.firebase_uid, User.id != user.id)
        others = (await db.execute(stmt)).scalars().all()
        if others:
            logger.warning(
                f"Provider uid {user.firebase_uid} is now linked to {len(others) + 1} local users; "
                f"the provider email probably changed (new user {user.id})."
            )

    async def update(self, user_id: str, values: Dict[str, Any]) -> Optional[UserRecord]:
        """Set the given columns. Returns None when the user does not exist."""
        async with self.db_callable() as db:
            user = await db.get(User, user_id)
            if user is None:
                return None
            for field, value in values.items():
                if field == "user_type" and value is not None:
                    value = getattr(value, "value", value)
                setattr(user, field, value)
            user.updated_at = _now()
            await db.commit()
            return UserRecord.model_validate(user)

    async def list_users(self) -> List[UserRecord]:
        async with self.db_callable() as db:
            result = await db.execute(select(User).order_by(User.created_at.desc()))
            return [UserRecord.model_validate(user) for user in result.scalars().all()]
