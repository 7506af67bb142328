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

import asyncio
import logging
from unittest.mock import patch

import pytest
from sqlalchemy import func, select

from identify_sync.shared.models import UserType
from identify_sync.shared.users import User, UserRepository


async def _count_users(db_callable, email=None) -> int:
    async with db_callable() as db:
        stmt = select(func.count()).select_from(User)
        if email:
            stmt = stmt.where(User.email == email)
        return (await db.execute(stmt)).scalar_one()


@pytest.mark.asyncio
async def test_upsert_creates_incomplete_user(db_callable, make_identity):
    repo = UserRepository(db_callable)

    user, created = await repo.upsert_from_identity(make_identity())

    assert created is True
    assert user.email == "ana@example.com"
    assert user.first_name == "Ana"
    assert user.last_name == "Souza"
    assert user.profile_image_url == "https://example.com/ana.png"
    assert user.user_type is None
    assert user.is_profile_complete is False
    assert user.is_admin is False
    assert await _count_users(db_callable) == 1


@pytest.mark.asyncio
async def test_local_id_is_independent_of_provider_uid(db_callable, make_identity):
    user, _ = await UserRepository(db_callable).upsert_from_identity(make_identity(uid="uid-123"))
    assert user.id != "uid-123"


@pytest.mark.asyncio
async def test_upsert_is_idempotent(db_callable, make_identity):
    repo = UserRepository(db_callable)
    first, _ = await repo.upsert_from_identity(make_identity())

    second, created = await repo.upsert_from_identity(make_identity())

    assert created is False
    assert second.id == first.id
    assert await _count_users(db_callable, "ana@example.com") == 1


@pytest.mark.asyncio
async def test_changed_picture_updates_only_the_image(db_callable, make_identity):
    repo = UserRepository(db_callable)
    first, _ = await repo.upsert_from_identity(make_identity())
    await repo.update(first.id, {"user_type": UserType.GUIDE, "is_profile_complete": True, "bio": "Trilhas"})

    user, created = await repo.upsert_from_identity(
        make_identity(name="Someone Else", picture="https://example.com/new.png")
    )

    assert created is False
    assert user.profile_image_url == "https://example.com/new.png"
    assert user.first_name == "Ana"
    assert user.last_name == "Souza"
    assert user.user_type == UserType.GUIDE
    assert user.is_profile_complete is True
    assert user.bio == "Trilhas"


@pytest.mark.asyncio
async def test_empty_picture_keeps_stored_image(db_callable, make_identity):
    repo = UserRepository(db_callable)
    await repo.upsert_from_identity(make_identity())

    user, _ = await repo.upsert_from_identity(make_identity(picture=None))

    assert user.profile_image_url == "https://example.com/ana.png"


@pytest.mark.asyncio
async def test_conflict_after_stale_read_reuses_existing_row(db_callable, make_identity):
    repo = UserRepository(db_callable)
    existing, _ = await repo.upsert_from_identity(make_identity())

    original = UserRepository._get_by_email
    calls = []

    async def stale_then_real(db, email):
        calls.append(email)
        if len(calls) == 1:
            # Another request inserted the row after this one looked.
            return None
        return await original(db, email)

    with patch.object(UserRepository, "_get_by_email", side_effect=stale_then_real):
        user, created = await repo.upsert_from_identity(make_identity())

    assert created is False
    assert user.id == existing.id
    assert len(calls) == 2
    assert await _count_users(db_callable, "ana@example.com") == 1


@pytest.mark.asyncio
async def test_concurrent_first_logins_share_one_row(db_callable, make_identity):
    repo = UserRepository(db_callable)

    results = await asyncio.gather(
        repo.upsert_from_identity(make_identity()),
        repo.upsert_from_identity(make_identity()),
        repo.upsert_from_identity(make_identity()),
    )

    assert len({user.id for user, _ in results}) == 1
    assert sum(created for _, created in results) == 1
    assert await _count_users(db_callable, "ana@example.com") == 1


@pytest.mark.asyncio
async def test_new_email_for_known_uid_logs_warning(db_callable, make_identity, caplog):
    repo = UserRepository(db_callable)
    first, _ = await repo.upsert_from_identity(make_identity(email="ana@example.com", uid="uid-123"))

    with caplog.at_level(logging.WARNING, logger="identify_sync.shared.users"):
        second, created = await repo.upsert_from_identity(make_identity(email="ana@new.example.com", uid="uid-123"))

    assert created is True
    assert second.id != first.id
    assert "probably changed" in caplog.text


@pytest.mark.asyncio
async def test_update_and_lookup(db_callable, make_identity):
    repo = UserRepository(db_callable)
    user, _ = await repo.upsert_from_identity(make_identity())

    updated = await repo.update(user.id, {"phone": "+55 12 99999-0000", "user_type": UserType.BOAT_TOUR_OPERATOR})

    assert updated.phone == "+55 12 99999-0000"
    assert updated.user_type == UserType.BOAT_TOUR_OPERATOR
    assert (await repo.get_by_id(user.id)).phone == "+55 12 99999-0000"
    assert (await repo.get_by_email("ana@example.com")).id == user.id
    assert await repo.get_by_id("missing") is None
    assert await repo.update("missing", {"phone": "1"}) is None


@pytest.mark.asyncio
async def test_list_users(db_callable, make_identity):
    repo = UserRepository(db_callable)
    await repo.upsert_from_identity(make_identity(email="ana@example.com", uid="a"))
    await repo.upsert_from_identity(make_identity(email="bia@example.com", uid="b"))

    users = await repo.list_users()

    assert {u.email for u in users} == {"ana@example.com", "bia@example.com"}
