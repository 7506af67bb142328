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
SQLAlchemy asyncio plumbing.

Repositories and the database session store receive `db_callable`, an
`async_sessionmaker` (or any callable returning an async context manager that
yields an AsyncSession).
"""

import logging
import typing

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

logger = logging.getLogger(__name__)

DbCallable = typing.Callable[[], typing.AsyncContextManager[AsyncSession]]


class Base(DeclarativeBase):
    pass


def create_engine(database_url: str, echo: bool = False, use_null_pool: bool = False) -> AsyncEngine:
    """
    Create the async engine.

    Use `use_null_pool=True` when the engine is driven from several event loops
    (e.g. Flask + asgiref), since pooled asyncio connections are bound to the
    loop that opened them.
    """
    kwargs: typing.Dict[str, typing.Any] = {"echo": echo}
    if use_null_pool:
        kwargs["poolclass"] = NullPool
    return create_async_engine(database_url, **kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    # Records are read after commit, so attributes must not expire.
    return async_sessionmaker(engine, expire_on_commit=False)


async def create_tables(engine: AsyncEngine) -> None:
    # Import for side effect: registers the tables on Base.metadata.
    from identify_sync.shared import sessions, users  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables ensured.")
