"""Shared test fixtures.

Store-backed tests run against an in-memory SQLite database (aiosqlite) with
real BEGIN / SAVEPOINT semantics; every test gets a fresh schema.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import datetime
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import Update
from sqlalchemy.ext.asyncio import AsyncSession

from loopeco.database import close_db, get_engine, get_session, get_session_factory, init_db
from loopeco.db import models  # noqa: F401
from loopeco.db.base import Base
from loopeco.economy.balance_service import open_account
from loopeco.economy.seed import seed_gift_catalog
from loopeco.progression.seed import seed_achievements

TEST_DATABASE_URL = "sqlite+aiosqlite://"


class RecordingDispatcher:
    """NotificationDispatcher fake that keeps every delivered event."""

    def __init__(self) -> None:
        self.events: list[dict[str, Any]] = []

    async def dispatch(
        self,
        user_id: int,
        type_: str,
        title: str,
        message: str,
        data: dict[str, Any],
        *,
        notification_id: int,
        created_at: datetime | None = None,
    ) -> None:
        self.events.append({
            "user_id": user_id,
            "type": type_,
            "title": title,
            "message": message,
            "data": data,
            "id": notification_id,
        })


class FailingDispatcher:
    """NotificationDispatcher fake whose transport is always down."""

    def __init__(self) -> None:
        self.calls = 0

    async def dispatch(self, *args: Any, **kwargs: Any) -> None:
        self.calls += 1
        raise ConnectionError("notification transport unavailable")


@pytest_asyncio.fixture
async def db_engine() -> AsyncGenerator[None, None]:
    await init_db(TEST_DATABASE_URL)
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await close_db()


@pytest_asyncio.fixture
async def db_session(db_engine: None) -> AsyncGenerator[AsyncSession, None]:
    async with get_session_factory()() as session:
        yield session


@pytest_asyncio.fixture
async def seeded_db(db_session: AsyncSession) -> AsyncSession:
    """Session with the gift catalog and achievement definitions seeded."""
    await seed_gift_catalog(db_session)
    await seed_achievements(db_session)
    return db_session


@pytest.fixture
def make_accounts(seeded_db: AsyncSession):
    """Open accounts with given balances: ``await make_accounts({1: 1000, 2: 0})``."""

    async def _make(balances: dict[int, int]) -> None:
        for user_id, balance in balances.items():
            await open_account(seeded_db, user_id, starting_balance=balance)
        await seeded_db.commit()

    return _make


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest_asyncio.fixture
async def client(seeded_db: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to the app, with sessions from the test database."""
    from loopeco.main import create_app

    app = create_app()

    async def _test_session() -> AsyncGenerator[AsyncSession, None]:
        async with get_session_factory()() as session:
            yield session

    app.dependency_overrides[get_session] = _test_session

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def failing_dispatcher() -> FailingDispatcher:
    return FailingDispatcher()


@pytest.fixture
def interleave(monkeypatch):
    """Run a competing write next to an UPDATE issued by the code under test.

    ``interleave(db, "SET current_amount", stmt)`` executes ``stmt`` on the
    same session right before the first UPDATE whose SQL contains the marker
    (``after=True``: right after it). The single test connection cannot hold
    two transactions, so this is how a concurrent writer that committed in
    between is reproduced. ``times`` repeats it for the next matches too.
    """

    def _install(
        db: AsyncSession,
        marker: str,
        competing: Any,
        *,
        after: bool = False,
        times: int = 1,
    ) -> None:
        real_execute = db.execute
        remaining = times

        async def execute(statement: Any, *args: Any, **kwargs: Any):
            nonlocal remaining
            hit = remaining > 0 and isinstance(statement, Update) and marker in str(statement)
            if hit:
                remaining -= 1
                if not after:
                    await real_execute(competing)
            result = await real_execute(statement, *args, **kwargs)
            if hit and after:
                await real_execute(competing)
            return result

        monkeypatch.setattr(db, "execute", execute)

    return _install
