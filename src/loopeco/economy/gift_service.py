"""Single gift transactions: sender pays, recipient receives.

A gift row is written as ``pending`` before the debit and flipped to ``sent``
afterwards, all in one transaction. If a deployment ever splits those steps
(or a process dies between them), the pending row is the compensating log the
reconciler uses to finish or fail the gift; a debit is never silently lost.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from loopeco.db.models import Account, GiftItem, GiftTransaction, GroupGift
from loopeco.economy.balance_service import apply_delta, find_ledger_entry
from loopeco.economy.inventory import grant_inventory_item
from loopeco.errors import AccountNotFound, ItemNotFound, SelfGift
from loopeco.notifications.outbox import enqueue_notification
from loopeco.progression.xp_service import XPAward, award_xp

if TYPE_CHECKING:
    from loopeco.progression.achievement_engine import AchievementEngine

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_SENT = "sent"
STATUS_FAILED = "failed"

FUNDING_BALANCE = "balance"
FUNDING_GROUP_GIFT = "group_gift"


def gift_cost(item: GiftItem) -> int:
    """Coins charged for an item: floor(price x multiplier)."""
    return math.floor(Decimal(item.coin_price) * Decimal(str(item.multiplier)))


async def get_gift_item(db: AsyncSession, item_id: str) -> GiftItem:
    """Fetch an active catalog item or raise ItemNotFound."""
    result = await db.execute(
        select(GiftItem).where(GiftItem.id == item_id, GiftItem.is_active.is_(True))
    )
    item = result.scalar_one_or_none()
    if item is None:
        raise ItemNotFound(item_id)
    return item


async def list_catalog(db: AsyncSession) -> list[GiftItem]:
    """All active catalog items."""
    result = await db.execute(
        select(GiftItem)
        .where(GiftItem.is_active.is_(True))
        .order_by(GiftItem.sort_order, GiftItem.id)
    )
    return list(result.scalars().all())


async def _require_account(db: AsyncSession, account_id: int) -> None:
    if await db.scalar(select(Account.id).where(Account.id == account_id)) is None:
        raise AccountNotFound(account_id)


async def send_gift(
    db: AsyncSession,
    sender_id: int,
    recipient_id: int,
    item_id: str,
    *,
    message: str | None = None,
    is_anonymous: bool = False,
    xp_bonus: int = 20,
    evaluator: AchievementEngine | None = None,
) -> tuple[GiftTransaction, XPAward | None]:
    """Send a catalog item from sender to recipient, paid from the sender's balance.

    1. Look up the item (ItemNotFound)
    2. cost = floor(price x multiplier)
    3. Write the pending transaction row
    4. Debit the sender (InsufficientFunds propagates unchanged)
    5. Mark the transaction sent
    6. Grant inventory if the item grants it
    7. Notify the recipient (sender redacted when anonymous)
    8. Award the sender's XP bonus
    """
    if sender_id == recipient_id:
        raise SelfGift()

    item = await get_gift_item(db, item_id)
    for account_id in (sender_id, recipient_id):
        await _require_account(db, account_id)
    cost = gift_cost(item)

    tx = GiftTransaction(
        sender_id=sender_id,
        recipient_id=recipient_id,
        item_id=item.id,
        amount_charged=cost,
        status=STATUS_PENDING,
        is_anonymous=is_anonymous,
        message=message,
        funding_source=FUNDING_BALANCE,
        created_at=datetime.now(timezone.utc),
    )
    db.add(tx)
    await db.flush()

    if cost > 0:
        await apply_delta(
            db,
            sender_id,
            -cost,
            "gift_sent",
            {"item_id": item.id, "recipient_id": recipient_id, "gift_transaction_id": tx.id},
            reference=f"gift:{tx.id}",
        )

    await _deliver(db, tx, item)

    award = None
    if xp_bonus > 0:
        award = await award_xp(
            db,
            sender_id,
            xp_bonus,
            "send_gift",
            {"gift_item_id": item.id, "recipient_id": recipient_id, "amount": cost},
            reference=f"gift:{tx.id}",
            evaluator=evaluator,
        )
    elif evaluator is not None:
        await evaluator.evaluate(sender_id)

    logger.info(
        "Gift %d sent: %d -> %d item=%s cost=%d", tx.id, sender_id, recipient_id, item.id, cost
    )
    return tx, award


async def send_pooled_gift(db: AsyncSession, group_gift: GroupGift) -> GiftTransaction:
    """Send the gift of a completed group campaign.

    The coins were already debited from contributors and are held by the
    campaign, so nobody is charged again here.
    """
    item = await db.get(GiftItem, group_gift.item_id)
    if item is None:
        raise ItemNotFound(group_gift.item_id)

    tx = GiftTransaction(
        sender_id=group_gift.organizer_id,
        recipient_id=group_gift.recipient_id,
        item_id=item.id,
        amount_charged=group_gift.target_amount,
        status=STATUS_PENDING,
        is_anonymous=False,
        message=group_gift.group_message,
        funding_source=FUNDING_GROUP_GIFT,
        group_gift_id=group_gift.id,
        created_at=datetime.now(timezone.utc),
    )
    db.add(tx)
    await db.flush()

    await _deliver(db, tx, item)
    logger.info("Group gift %d delivered as gift transaction %d", group_gift.id, tx.id)
    return tx


async def _deliver(db: AsyncSession, tx: GiftTransaction, item: GiftItem) -> bool:
    """Move a pending transaction to sent and apply its side effects once."""
    now = datetime.now(timezone.utc)
    flipped = (await db.execute(
        update(GiftTransaction)
        .where(GiftTransaction.id == tx.id, GiftTransaction.status == STATUS_PENDING)
        .values(status=STATUS_SENT, resolved_at=now)
        .returning(GiftTransaction.id)
        .execution_options(synchronize_session=False)
    )).scalar_one_or_none()
    await db.refresh(tx)
    if flipped is None:
        return False

    if item.grants_inventory:
        await grant_inventory_item(db, tx.recipient_id, item.id)

    sender_name = "Someone" if tx.is_anonymous else "A friend"
    text = f"{sender_name} sent you {item.name}"
    if tx.message:
        text += f' with a message: "{tx.message}"'

    await enqueue_notification(
        db,
        tx.recipient_id,
        "gift",
        "You received a gift!",
        text,
        {
            "gift_transaction_id": tx.id,
            "gift_item_id": item.id,
            "gift_item_name": item.name,
            "gift_rarity": item.rarity,
            "sender_id": None if tx.is_anonymous else tx.sender_id,
            "group_gift_id": tx.group_gift_id,
            "message": tx.message,
        },
    )
    return True


async def _fail(db: AsyncSession, tx: GiftTransaction) -> None:
    await db.execute(
        update(GiftTransaction)
        .where(GiftTransaction.id == tx.id, GiftTransaction.status == STATUS_PENDING)
        .values(status=STATUS_FAILED, resolved_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )


async def reconcile_pending_gifts(
    db: AsyncSession,
    older_than: timedelta = timedelta(minutes=5),
    now: datetime | None = None,
    xp_bonus: int = 20,
) -> dict[str, int]:
    """Resolve gift transactions left ``pending`` longer than ``older_than``.

    - balance-funded with a matching debit in the ledger: delivered, and the
      sender gets the gift XP bonus that ``send_gift`` would have paid
    - pool-funded whose campaign completed: delivered
    - anything else (no debit happened): marked failed
    """
    if now is None:
        now = datetime.now(timezone.utc)
    cutoff = now - older_than

    result = await db.execute(
        select(GiftTransaction)
        .where(GiftTransaction.status == STATUS_PENDING, GiftTransaction.created_at < cutoff)
        .order_by(GiftTransaction.id)
        .with_for_update(skip_locked=True)
    )
    pending = list(result.scalars().all())

    counts = {"delivered": 0, "failed": 0}
    for tx in pending:
        if tx.funding_source == FUNDING_GROUP_GIFT:
            group_gift = await db.get(GroupGift, tx.group_gift_id) if tx.group_gift_id else None
            paid = group_gift is not None and group_gift.status == "completed"
        else:
            paid = tx.amount_charged == 0 or await find_ledger_entry(
                db, tx.sender_id, f"gift:{tx.id}"
            ) is not None

        item = await db.get(GiftItem, tx.item_id)
        if paid and item is not None:
            delivered = await _deliver(db, tx, item)
            if delivered and tx.funding_source == FUNDING_BALANCE and xp_bonus > 0:
                await award_xp(
                    db,
                    tx.sender_id,
                    xp_bonus,
                    "send_gift",
                    {"gift_item_id": item.id, "recipient_id": tx.recipient_id,
                     "amount": tx.amount_charged},
                    reference=f"gift:{tx.id}",
                )
            counts["delivered"] += 1
            logger.warning("Reconciled pending gift %d: delivered", tx.id)
        else:
            await _fail(db, tx)
            counts["failed"] += 1
            logger.warning("Reconciled pending gift %d: failed (no debit recorded)", tx.id)

    await db.commit()
    return counts


async def list_received_gifts(
    db: AsyncSession,
    user_id: int,
    limit: int = 50,
) -> list[tuple[GiftTransaction, GiftItem]]:
    """Gifts delivered to a user, newest first."""
    result = await db.execute(
        select(GiftTransaction, GiftItem)
        .join(GiftItem, GiftTransaction.item_id == GiftItem.id)
        .where(GiftTransaction.recipient_id == user_id, GiftTransaction.status == STATUS_SENT)
        .order_by(GiftTransaction.id.desc())
        .limit(limit)
    )
    return [(row.GiftTransaction, row.GiftItem) for row in result]
