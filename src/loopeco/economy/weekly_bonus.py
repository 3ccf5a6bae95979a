"""Weekly coin bonus, claimable once per ISO week."""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from loopeco.clock import get_week_iso, next_week_start, utcnow
from loopeco.db.base import dialect_insert
from loopeco.db.models import WeeklyBonusClaim
from loopeco.economy.balance_service import apply_delta, get_balance
from loopeco.errors import WeeklyBonusAlreadyClaimed

logger = logging.getLogger(__name__)


async def claim_weekly_bonus(
    db: AsyncSession,
    user_id: int,
    amount: int = 500,
    now: datetime | None = None,
) -> tuple[int, int]:
    """Credit the weekly bonus. Returns (amount, new_balance).

    Raises WeeklyBonusAlreadyClaimed (with the next claim time) on a second
    claim in the same ISO week.
    """
    now = now or utcnow()
    week_iso = get_week_iso(now)
    await get_balance(db, user_id)  # AccountNotFound before touching claims

    stmt = (
        dialect_insert(db, WeeklyBonusClaim)
        .values(user_id=user_id, week_iso=week_iso, amount=amount, claimed_at=now)
        .on_conflict_do_nothing(index_elements=["user_id", "week_iso"])
        .returning(WeeklyBonusClaim.id)
    )
    if (await db.execute(stmt)).scalar_one_or_none() is None:
        raise WeeklyBonusAlreadyClaimed(next_week_start(now))

    new_balance = await apply_delta(
        db, user_id, amount, "weekly_bonus", {"week": week_iso}, reference=f"weekly_bonus:{week_iso}"
    )
    logger.info("User %d claimed weekly bonus for %s: +%d", user_id, week_iso, amount)
    return amount, new_balance
