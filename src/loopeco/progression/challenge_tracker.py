"""Daily challenges: per-user objectives for one UTC calendar day."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from loopeco.clock import day_of, next_midnight, utcnow
from loopeco.db.base import dialect_insert
from loopeco.db.models import Account, DailyChallenge
from loopeco.economy.balance_service import apply_delta
from loopeco.errors import AccountNotFound, InvalidAmount
from loopeco.notifications.outbox import enqueue_notification
from loopeco.progression.xp_service import award_xp

if TYPE_CHECKING:
    from loopeco.progression.achievement_engine import AchievementEngine

logger = logging.getLogger(__name__)

CHALLENGE_TEMPLATES = [
    {"challenge_type": "create_loops", "target_value": 3, "xp_reward": 50, "coin_reward": 25},
    {"challenge_type": "like_loops", "target_value": 10, "xp_reward": 30, "coin_reward": 15},
    {"challenge_type": "visit_profiles", "target_value": 5, "xp_reward": 25, "coin_reward": 10},
]

STATUS_ADVANCED = "advanced"
STATUS_COMPLETED = "completed"
STATUS_EXPIRED = "expired"
STATUS_NOT_FOUND = "not_found"
STATUS_ALREADY_COMPLETED = "already_completed"


@dataclass
class AdvanceResult:
    completed: bool
    status: str
    challenge: DailyChallenge | None = None


async def generate_daily(
    db: AsyncSession,
    user_id: int,
    now: datetime | None = None,
) -> list[DailyChallenge]:
    """Create today's challenges for a user. Safe to call any number of times.

    The (user_id, challenge_day, challenge_type) unique constraint decides
    whether a row is new; existing rows are left untouched.
    """
    now = now or utcnow()
    today = day_of(now)

    if await db.scalar(select(Account.id).where(Account.id == user_id)) is None:
        raise AccountNotFound(user_id)

    rows = [
        {
            **template,
            "user_id": user_id,
            "challenge_day": today,
            "current_progress": 0,
            "is_completed": False,
            "expires_at": next_midnight(now),
            "created_at": now,
        }
        for template in CHALLENGE_TEMPLATES
    ]
    stmt = (
        dialect_insert(db, DailyChallenge)
        .values(rows)
        .on_conflict_do_nothing(index_elements=["user_id", "challenge_day", "challenge_type"])
    )
    result = await db.execute(stmt)
    if result.rowcount:
        logger.info("Generated %d daily challenges for user %d", result.rowcount, user_id)

    return await _todays_challenges(db, user_id, now)


async def list_open_challenges(
    db: AsyncSession,
    user_id: int,
    now: datetime | None = None,
) -> list[DailyChallenge]:
    """Today's challenges that can still be advanced."""
    now = now or utcnow()
    result = await db.execute(
        select(DailyChallenge)
        .where(
            DailyChallenge.user_id == user_id,
            DailyChallenge.challenge_day == day_of(now),
            DailyChallenge.is_completed.is_(False),
            DailyChallenge.expires_at > now,
        )
        .order_by(DailyChallenge.id)
    )
    return list(result.scalars().all())


async def _todays_challenges(db: AsyncSession, user_id: int, now: datetime) -> list[DailyChallenge]:
    result = await db.execute(
        select(DailyChallenge)
        .where(DailyChallenge.user_id == user_id, DailyChallenge.challenge_day == day_of(now))
        .order_by(DailyChallenge.id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def advance(
    db: AsyncSession,
    user_id: int,
    challenge_type: str,
    increment: int = 1,
    *,
    now: datetime | None = None,
    evaluator: AchievementEngine | None = None,
) -> AdvanceResult:
    """Add ``increment`` to today's challenge of ``challenge_type``.

    Progress is clamped to the target in the UPDATE itself. The completion
    flip is a separate conditional UPDATE, so the XP and coin rewards are paid
    exactly once no matter how many callers reach the target.
    """
    if increment <= 0:
        raise InvalidAmount("Challenge increment must be positive")

    now = now or utcnow()
    today = day_of(now)
    bumped = DailyChallenge.current_progress + increment

    row = (await db.execute(
        update(DailyChallenge)
        .where(
            DailyChallenge.user_id == user_id,
            DailyChallenge.challenge_type == challenge_type,
            DailyChallenge.challenge_day == today,
            DailyChallenge.is_completed.is_(False),
            DailyChallenge.expires_at > now,
        )
        .values(
            current_progress=case(
                (bumped >= DailyChallenge.target_value, DailyChallenge.target_value),
                else_=bumped,
            )
        )
        .returning(DailyChallenge.id, DailyChallenge.current_progress, DailyChallenge.target_value)
        .execution_options(synchronize_session=False)
    )).one_or_none()

    if row is None:
        return await _inert_result(db, user_id, challenge_type, today)

    challenge = await db.get(DailyChallenge, row.id, populate_existing=True)
    if row.current_progress < row.target_value:
        return AdvanceResult(completed=False, status=STATUS_ADVANCED, challenge=challenge)

    won = (await db.execute(
        update(DailyChallenge)
        .where(DailyChallenge.id == row.id, DailyChallenge.is_completed.is_(False))
        .values(is_completed=True, completed_at=now)
        .returning(DailyChallenge.id)
        .execution_options(synchronize_session=False)
    )).scalar_one_or_none()
    if won is None:
        await db.refresh(challenge)
        return AdvanceResult(completed=False, status=STATUS_ALREADY_COMPLETED, challenge=challenge)

    await db.refresh(challenge)
    await _pay_rewards(db, challenge, evaluator)
    return AdvanceResult(completed=True, status=STATUS_COMPLETED, challenge=challenge)


async def _inert_result(
    db: AsyncSession,
    user_id: int,
    challenge_type: str,
    today,
) -> AdvanceResult:
    """Explain why no challenge row was advanced."""
    challenge = (await db.execute(
        select(DailyChallenge)
        .where(
            DailyChallenge.user_id == user_id,
            DailyChallenge.challenge_type == challenge_type,
            DailyChallenge.challenge_day == today,
        )
        .execution_options(populate_existing=True)
    )).scalar_one_or_none()

    if challenge is None:
        return AdvanceResult(completed=False, status=STATUS_NOT_FOUND)
    if challenge.is_completed:
        return AdvanceResult(completed=False, status=STATUS_ALREADY_COMPLETED, challenge=challenge)
    return AdvanceResult(completed=False, status=STATUS_EXPIRED, challenge=challenge)


async def _pay_rewards(
    db: AsyncSession,
    challenge: DailyChallenge,
    evaluator: AchievementEngine | None,
) -> None:
    details = {"challenge_type": challenge.challenge_type, "challenge_id": challenge.id}
    reference = f"challenge:{challenge.id}"

    if challenge.coin_reward > 0:
        await apply_delta(
            db, challenge.user_id, challenge.coin_reward, "daily_challenge_reward",
            details, reference=reference,
        )

    await enqueue_notification(
        db,
        challenge.user_id,
        "challenge",
        "Challenge Complete!",
        f"You've completed the {challenge.challenge_type.replace('_', ' ')} challenge!",
        {
            "challenge_id": challenge.id,
            "xp_reward": challenge.xp_reward,
            "coin_reward": challenge.coin_reward,
        },
    )

    if challenge.xp_reward > 0:
        await award_xp(
            db, challenge.user_id, challenge.xp_reward, "complete_daily_challenge",
            details, reference=reference, evaluator=evaluator,
        )
    elif evaluator is not None:
        await evaluator.evaluate(challenge.user_id)

    logger.info(
        "User %d completed challenge %s (+%d XP, +%d coins)",
        challenge.user_id, challenge.challenge_type, challenge.xp_reward, challenge.coin_reward,
    )
