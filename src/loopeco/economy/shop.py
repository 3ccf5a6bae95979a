"""Coin shop: a user buys a catalog item for their own inventory."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from loopeco.db.models import Account, GiftItem, InventoryItem
from loopeco.economy.balance_service import apply_delta
from loopeco.economy.gift_service import get_gift_item
from loopeco.economy.inventory import grant_inventory_item
from loopeco.errors import AccountNotFound, ItemAlreadyOwned, ItemNotPurchasable
from loopeco.notifications.outbox import enqueue_notification

logger = logging.getLogger(__name__)


async def purchase_item(db: AsyncSession, user_id: int, item_id: str) -> tuple[GiftItem, int]:
    """Buy ``item_id`` at its list price. Returns (item, new balance).

    Only items that land in the inventory can be bought for yourself, and
    each at most once. The inventory insert is the ownership guard: if a
    concurrent purchase got there first the insert conflicts and the whole
    unit of work (including the debit) is rolled back by the caller.
    """
    item = await get_gift_item(db, item_id)
    if not item.grants_inventory:
        raise ItemNotPurchasable(item.id)

    balance = await db.scalar(select(Account.balance).where(Account.id == user_id))
    if balance is None:
        raise AccountNotFound(user_id)

    owned = await db.scalar(
        select(InventoryItem.id).where(
            InventoryItem.user_id == user_id, InventoryItem.item_id == item.id
        )
    )
    if owned is not None:
        raise ItemAlreadyOwned(item.id)

    if item.coin_price > 0:
        balance = await apply_delta(
            db,
            user_id,
            -item.coin_price,
            "shop_purchase",
            {"item_id": item.id},
            reference=f"shop:{item.id}",
        )

    if not await grant_inventory_item(db, user_id, item.id):
        raise ItemAlreadyOwned(item.id)

    await enqueue_notification(
        db,
        user_id,
        "purchase",
        "Purchase Successful!",
        f"You purchased {item.name} for {item.coin_price} coins",
        {"item_id": item.id, "item_name": item.name},
    )
    logger.info("User %d purchased %s for %d coins", user_id, item.id, item.coin_price)
    return item, balance
