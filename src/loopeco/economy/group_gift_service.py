"""Group gifts: many contributors fund one recipient's gift before a deadline.

State machine (one-way): open -> completed | expired.

``current_amount`` only moves through a compare-and-swap UPDATE bounded by
``target_amount``, and the open -> completed / open -> expired flips are
conditional UPDATEs. Exactly one caller wins each flip; only the winner sends
the pooled gift (completed) or refunds contributors (expired).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from loopeco.clock import as_utc, utcnow
from loopeco.db.models import Account, GiftTransaction, GroupGift, GroupGiftContribution
from loopeco.economy.balance_service import apply_delta
from loopeco.economy.gift_service import get_gift_item, gift_cost, send_pooled_gift
from loopeco.errors import (
    AccountNotFound,
    AlreadyCompletedGroupGift,
    ExpiredGroupGift,
    GroupGiftNotFound,
    InvalidAmount,
    InvalidDeadline,
    SelfGift,
    StoreUnavailable,
)
from loopeco.notifications.outbox import enqueue_notification

logger = logging.getLogger(__name__)

STATUS_OPEN = "open"
STATUS_COMPLETED = "completed"
STATUS_EXPIRED = "expired"

# Bounded CAS retries when another contribution lands between read and update.
MAX_CAS_ATTEMPTS = 5


@dataclass
class ContributionResult:
    group_gift: GroupGift
    accepted: int
    refunded: int
    completed: bool
    gift_transaction: GiftTransaction | None = None


async def create_group_gift(
    db: AsyncSession,
    organizer_id: int,
    recipient_id: int,
    item_id: str,
    deadline: datetime,
    message: str | None = None,
    *,
    max_days: int = 30,
    now: datetime | None = None,
) -> GroupGift:
    """Open a campaign whose target is the item's cost."""
    if organizer_id == recipient_id:
        raise SelfGift()

    now = now or utcnow()
    deadline = as_utc(deadline)
    if deadline <= now:
        raise InvalidDeadline("Deadline must be in the future")
    if deadline > now + timedelta(days=max_days):
        raise InvalidDeadline(f"Deadline cannot be more than {max_days} days away")

    item = await get_gift_item(db, item_id)
    for account_id in (organizer_id, recipient_id):
        if await db.scalar(select(Account.id).where(Account.id == account_id)) is None:
            raise AccountNotFound(account_id)

    target = gift_cost(item)
    if target <= 0:
        raise InvalidAmount("Free items cannot be group funded")

    group_gift = GroupGift(
        organizer_id=organizer_id,
        recipient_id=recipient_id,
        item_id=item.id,
        target_amount=target,
        current_amount=0,
        deadline=deadline,
        status=STATUS_OPEN,
        group_message=message,
        created_at=now,
    )
    db.add(group_gift)
    await db.flush()
    logger.info(
        "Group gift %d opened by %d for %d: item=%s target=%d",
        group_gift.id, organizer_id, recipient_id, item.id, target,
    )
    return group_gift


async def get_group_gift(db: AsyncSession, group_gift_id: int) -> GroupGift:
    group_gift = await db.get(GroupGift, group_gift_id, populate_existing=True)
    if group_gift is None:
        raise GroupGiftNotFound(group_gift_id)
    return group_gift


async def list_contributions(db: AsyncSession, group_gift_id: int) -> list[GroupGiftContribution]:
    result = await db.execute(
        select(GroupGiftContribution)
        .where(GroupGiftContribution.group_gift_id == group_gift_id)
        .order_by(GroupGiftContribution.id)
    )
    return list(result.scalars().all())


async def contribute(
    db: AsyncSession,
    group_gift_id: int,
    contributor_id: int,
    amount: int,
    *,
    now: datetime | None = None,
) -> ContributionResult:
    """Pledge ``amount`` coins to an open campaign.

    1. Reject closed campaigns; an overdue open campaign is expired first
    2. Debit the contributor by the full amount
    3. CAS-increment current_amount by min(amount, remaining)
    4. Refund the part that did not fit
    5. The contribution that reaches the target completes the campaign and
       sends the pooled gift
    """
    if amount <= 0:
        raise InvalidAmount("Contribution must be positive")

    now = now or utcnow()
    group_gift = await get_group_gift(db, group_gift_id)

    if group_gift.status == STATUS_OPEN and await _expire(db, group_gift, now):
        raise ExpiredGroupGift(group_gift_id)
    _ensure_open(group_gift)

    await apply_delta(
        db,
        contributor_id,
        -amount,
        "group_gift_contribution",
        {"group_gift_id": group_gift_id},
        reference=f"group_gift:{group_gift_id}",
    )

    accepted, new_amount = await _reserve(db, group_gift_id, contributor_id, amount)

    db.add(GroupGiftContribution(
        group_gift_id=group_gift_id,
        contributor_id=contributor_id,
        amount=accepted,
        created_at=now,
    ))
    await db.flush()

    refunded = amount - accepted
    if refunded > 0:
        await apply_delta(
            db,
            contributor_id,
            refunded,
            "group_gift_overflow_refund",
            {"group_gift_id": group_gift_id, "pledged": amount, "accepted": accepted},
            reference=f"group_gift:{group_gift_id}",
        )

    completed = False
    gift_tx = None
    if new_amount == group_gift.target_amount:
        gift_tx = await _complete(db, group_gift, now)
        completed = gift_tx is not None

    await db.refresh(group_gift)
    logger.info(
        "Contribution to group gift %d by %d: accepted=%d refunded=%d completed=%s",
        group_gift_id, contributor_id, accepted, refunded, completed,
    )
    return ContributionResult(
        group_gift=group_gift,
        accepted=accepted,
        refunded=refunded,
        completed=completed,
        gift_transaction=gift_tx,
    )


def _ensure_open(group_gift: GroupGift) -> None:
    if group_gift.status == STATUS_COMPLETED:
        raise AlreadyCompletedGroupGift(group_gift.id)
    if group_gift.status == STATUS_EXPIRED:
        raise ExpiredGroupGift(group_gift.id)


async def _reserve(
    db: AsyncSession,
    group_gift_id: int,
    contributor_id: int,
    amount: int,
) -> tuple[int, int]:
    """Claim up to ``amount`` of the remaining target. Returns (accepted, new current_amount)."""
    for _ in range(MAX_CAS_ATTEMPTS):
        row = (await db.execute(
            select(GroupGift.current_amount, GroupGift.target_amount, GroupGift.status)
            .where(GroupGift.id == group_gift_id)
        )).one()

        if row.status == STATUS_EXPIRED:
            # Expired by someone else since we checked: undo our own debit.
            await apply_delta(
                db,
                contributor_id,
                amount,
                "group_gift_expired_refund",
                {"group_gift_id": group_gift_id},
                reference=f"group_gift:{group_gift_id}",
            )
            raise ExpiredGroupGift(group_gift_id)

        accepted = min(amount, row.target_amount - row.current_amount)
        if row.status != STATUS_OPEN or accepted <= 0:
            raise AlreadyCompletedGroupGift(group_gift_id)

        new_amount = (await db.execute(
            update(GroupGift)
            .where(
                GroupGift.id == group_gift_id,
                GroupGift.status == STATUS_OPEN,
                GroupGift.current_amount + accepted <= GroupGift.target_amount,
            )
            .values(current_amount=GroupGift.current_amount + accepted)
            .returning(GroupGift.current_amount)
            .execution_options(synchronize_session=False)
        )).scalar_one_or_none()
        if new_amount is not None:
            return accepted, new_amount

    raise StoreUnavailable(f"Group gift {group_gift_id} is under heavy contention, retry later")


async def _complete(
    db: AsyncSession,
    group_gift: GroupGift,
    now: datetime,
) -> GiftTransaction | None:
    """Flip open -> completed. Only the winning caller sends the gift."""
    won = (await db.execute(
        update(GroupGift)
        .where(
            GroupGift.id == group_gift.id,
            GroupGift.status == STATUS_OPEN,
            GroupGift.current_amount == GroupGift.target_amount,
        )
        .values(status=STATUS_COMPLETED, closed_at=now)
        .returning(GroupGift.id)
        .execution_options(synchronize_session=False)
    )).scalar_one_or_none()
    if won is None:
        return None

    await db.refresh(group_gift)
    gift_tx = await send_pooled_gift(db, group_gift)

    await db.execute(
        update(GroupGift)
        .where(GroupGift.id == group_gift.id)
        .values(gift_transaction_id=gift_tx.id)
        .execution_options(synchronize_session=False)
    )
    await enqueue_notification(
        db,
        group_gift.organizer_id,
        "group_gift",
        "Group gift complete!",
        "Your group gift reached its goal and was sent",
        {"group_gift_id": group_gift.id, "gift_transaction_id": gift_tx.id},
    )
    logger.info("Group gift %d completed (gift transaction %d)", group_gift.id, gift_tx.id)
    return gift_tx


async def _expire(db: AsyncSession, group_gift: GroupGift, now: datetime) -> bool:
    """Flip an overdue open campaign to expired and refund every contribution.

    Returns False if the campaign is not overdue or another caller already
    closed it.
    """
    won = (await db.execute(
        update(GroupGift)
        .where(
            GroupGift.id == group_gift.id,
            GroupGift.status == STATUS_OPEN,
            GroupGift.deadline <= now,
        )
        .values(status=STATUS_EXPIRED, closed_at=now)
        .returning(GroupGift.id)
        .execution_options(synchronize_session=False)
    )).scalar_one_or_none()
    await db.refresh(group_gift)
    if won is None:
        return False

    refunds: dict[int, int] = {}
    for contribution in await list_contributions(db, group_gift.id):
        await apply_delta(
            db,
            contribution.contributor_id,
            contribution.amount,
            "group_gift_expired_refund",
            {"group_gift_id": group_gift.id, "contribution_id": contribution.id},
            reference=f"group_gift:{group_gift.id}",
        )
        refunds[contribution.contributor_id] = (
            refunds.get(contribution.contributor_id, 0) + contribution.amount
        )

    for contributor_id, refunded in refunds.items():
        await enqueue_notification(
            db,
            contributor_id,
            "group_gift",
            "Group gift expired",
            f"A group gift you contributed to expired. {refunded} coins were refunded.",
            {"group_gift_id": group_gift.id, "refunded": refunded},
        )
    if group_gift.organizer_id not in refunds:
        await enqueue_notification(
            db,
            group_gift.organizer_id,
            "group_gift",
            "Group gift expired",
            "Your group gift expired before reaching its goal",
            {"group_gift_id": group_gift.id, "refunded": 0},
        )

    logger.info(
        "Group gift %d expired: refunded %d coins to %d contributors",
        group_gift.id, sum(refunds.values()), len(refunds),
    )
    return True


async def expire_group_gifts(db: AsyncSession, now: datetime | None = None) -> int:
    """Expire every overdue open campaign. Returns how many were expired."""
    now = now or utcnow()
    result = await db.execute(
        select(GroupGift)
        .where(GroupGift.status == STATUS_OPEN, GroupGift.deadline <= now)
        .order_by(GroupGift.id)
    )
    expired = 0
    for group_gift in result.scalars().all():
        if await _expire(db, group_gift, now):
            expired += 1

    await db.commit()
    if expired:
        logger.info("Expired %d overdue group gifts", expired)
    return expired
