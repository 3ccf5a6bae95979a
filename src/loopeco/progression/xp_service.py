"""XP awards with level-up detection."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from loopeco.db.models import Account, LedgerEntry
from loopeco.economy.balance_service import KIND_XP
from loopeco.errors import AccountNotFound, InvalidAmount
from loopeco.notifications.outbox import enqueue_notification
from loopeco.progression.level_curve import compute_level

if TYPE_CHECKING:
    from loopeco.progression.achievement_engine import AchievementEngine

logger = logging.getLogger(__name__)


@dataclass
class XPAward:
    xp_total: int
    level: int
    xp_into_level: int
    xp_for_level: int
    leveled_up: bool
    unlocked: list[str] = field(default_factory=list)


async def get_level_progress(db: AsyncSession, user_id: int) -> dict:
    """Current XP total plus the derived level info."""
    xp_total = await db.scalar(select(Account.xp_total).where(Account.id == user_id))
    if xp_total is None:
        raise AccountNotFound(user_id)
    info = compute_level(xp_total)
    info["xp_total"] = xp_total
    return info


async def award_xp(
    db: AsyncSession,
    user_id: int,
    amount: int,
    action: str,
    metadata: dict[str, Any] | None = None,
    *,
    reference: str | None = None,
    evaluator: AchievementEngine | None = None,
) -> XPAward:
    """Award XP to a user.

    1. Atomically add ``amount`` to accounts.xp_total
    2. Append an ``xp`` ledger entry
    3. Emit a level_up notification if the level changed
    4. Re-evaluate achievements (when an evaluator is supplied)
    """
    if amount <= 0:
        raise InvalidAmount("XP award must be positive")

    now = datetime.now(timezone.utc)
    stmt = (
        update(Account)
        .where(Account.id == user_id)
        .values(xp_total=Account.xp_total + amount, updated_at=now)
        .returning(Account.xp_total)
        .execution_options(synchronize_session=False)
    )
    xp_total = (await db.execute(stmt)).scalar_one_or_none()
    if xp_total is None:
        raise AccountNotFound(user_id)

    db.add(LedgerEntry(
        account_id=user_id,
        kind=KIND_XP,
        amount=amount,
        reason=action,
        reference=reference,
        entry_metadata=metadata or {},
        created_at=now,
    ))
    await db.flush()

    old_level = compute_level(xp_total - amount)["level"]
    level_info = compute_level(xp_total)
    leveled_up = level_info["level"] > old_level

    if leveled_up:
        await enqueue_notification(
            db,
            user_id,
            "level_up",
            "Level Up!",
            f"You reached level {level_info['level']}",
            {"old_level": old_level, "new_level": level_info["level"], "xp_total": xp_total},
        )
        logger.info("User %d leveled up %d -> %d", user_id, old_level, level_info["level"])

    unlocked: list[str] = []
    if evaluator is not None:
        unlocked = [a.id for a in await evaluator.evaluate(user_id)]
        if unlocked:
            # Unlock rewards moved the total; report the final state.
            level_info = await get_level_progress(db, user_id)
            xp_total = level_info["xp_total"]
            leveled_up = level_info["level"] > old_level

    return XPAward(
        xp_total=xp_total,
        level=level_info["level"],
        xp_into_level=level_info["xp_into_level"],
        xp_for_level=level_info["xp_for_level"],
        leveled_up=leveled_up,
        unlocked=unlocked,
    )
