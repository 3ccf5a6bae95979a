"""Inventory grants for items received as gifts."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from loopeco.db.base import dialect_insert
from loopeco.db.models import GiftItem, InventoryItem


async def grant_inventory_item(db: AsyncSession, user_id: int, item_id: str) -> bool:
    """Add an item to a user's inventory. Idempotent per (user_id, item_id).

    Returns True if the item was newly granted.
    """
    stmt = (
        dialect_insert(db, InventoryItem)
        .values(
            user_id=user_id,
            item_id=item_id,
            is_active=False,
            acquired_at=datetime.now(timezone.utc),
        )
        .on_conflict_do_nothing(index_elements=["user_id", "item_id"])
        .returning(InventoryItem.id)
    )
    return (await db.execute(stmt)).scalar_one_or_none() is not None


async def list_inventory(db: AsyncSession, user_id: int) -> list[tuple[InventoryItem, GiftItem]]:
    """A user's inventory with catalog details, newest first."""
    result = await db.execute(
        select(InventoryItem, GiftItem)
        .join(GiftItem, InventoryItem.item_id == GiftItem.id)
        .where(InventoryItem.user_id == user_id)
        .order_by(InventoryItem.acquired_at.desc(), InventoryItem.id.desc())
    )
    return [(row.InventoryItem, row.GiftItem) for row in result]
