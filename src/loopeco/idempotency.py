"""Idempotency records for mutating operations.

A caller that times out does not know whether its operation committed. It
retries with the same key; if the first attempt committed, the stored result
is returned and nothing is applied twice.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from loopeco.db.base import dialect_insert
from loopeco.db.models import IdempotencyRecord


async def lookup(db: AsyncSession, operation: str, user_id: int, key: str) -> dict[str, Any] | None:
    """Stored result for (operation, user_id, key), if any."""
    result = await db.execute(
        select(IdempotencyRecord.response).where(
            IdempotencyRecord.operation == operation,
            IdempotencyRecord.user_id == user_id,
            IdempotencyRecord.key == key,
        )
    )
    return result.scalar_one_or_none()


async def remember(
    db: AsyncSession,
    operation: str,
    user_id: int,
    key: str,
    response: dict[str, Any],
) -> bool:
    """Store the result in the caller's transaction.

    Returns False if another request already stored a result under the same
    key; the caller must then roll back its own work.
    """
    stmt = (
        dialect_insert(db, IdempotencyRecord)
        .values(
            operation=operation,
            user_id=user_id,
            key=key,
            response=response,
            created_at=datetime.now(timezone.utc),
        )
        .on_conflict_do_nothing(index_elements=["operation", "user_id", "key"])
        .returning(IdempotencyRecord.id)
    )
    return (await db.execute(stmt)).scalar_one_or_none() is not None
