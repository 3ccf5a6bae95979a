"""Achievement engine: evaluates stat snapshots against achievement requirements."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from loopeco.db.base import dialect_insert
from loopeco.db.models import AchievementDefinition, UserAchievement
from loopeco.notifications.outbox import enqueue_notification
from loopeco.progression.requirements import all_satisfied, parse_requirements
from loopeco.progression.stats import StatsProvider
from loopeco.progression.xp_service import award_xp

logger = logging.getLogger(__name__)


class AchievementEngine:
    """Unlocks achievements at most once per (user, achievement)."""

    def __init__(self, db: AsyncSession, stats: StatsProvider) -> None:
        self.db = db
        self.stats = stats

    async def _load_candidates(self, user_id: int) -> list[AchievementDefinition]:
        """Active definitions the user has not unlocked yet."""
        unlocked = (
            select(UserAchievement.achievement_id)
            .where(
                UserAchievement.user_id == user_id,
                UserAchievement.unlocked_at.is_not(None),
            )
        )
        result = await self.db.execute(
            select(AchievementDefinition)
            .where(
                AchievementDefinition.is_active.is_(True),
                AchievementDefinition.id.not_in(unlocked),
            )
            .order_by(AchievementDefinition.sort_order, AchievementDefinition.id)
        )
        return list(result.scalars().all())

    async def evaluate(self, user_id: int) -> list[AchievementDefinition]:
        """Unlock every achievement the user now satisfies.

        Returns the definitions unlocked by this call (may be empty). XP from
        one unlock can satisfy another, so passes repeat until nothing new
        unlocks.
        """
        unlocked: list[AchievementDefinition] = []
        while True:
            newly = await self._evaluate_pass(user_id)
            if not newly:
                break
            unlocked += newly
        return unlocked

    async def _evaluate_pass(self, user_id: int) -> list[AchievementDefinition]:
        stats = await self.stats.snapshot(user_id)
        candidates = await self._load_candidates(user_id)
        unlocked = []

        for achievement in candidates:
            try:
                requirements = parse_requirements(achievement.requirements)
            except (ValueError, KeyError, TypeError):
                logger.error("Achievement %s has invalid requirements", achievement.id, exc_info=True)
                continue

            if not all_satisfied(requirements, stats):
                continue

            # Each candidate is independent: a failure rolls back only its
            # own savepoint and evaluation moves on.
            try:
                async with self.db.begin_nested():
                    if await self._unlock(user_id, achievement, stats):
                        unlocked.append(achievement)
            except Exception:
                logger.exception("Failed to unlock %s for user %d", achievement.id, user_id)

        return unlocked

    async def _unlock(
        self,
        user_id: int,
        achievement: AchievementDefinition,
        stats: dict[str, float],
    ) -> bool:
        """Upsert the unlock. Returns False if it was already unlocked (soft no-op)."""
        now = datetime.now(timezone.utc)
        stmt = dialect_insert(self.db, UserAchievement).values(
            user_id=user_id,
            achievement_id=achievement.id,
            unlocked_at=now,
            progress=stats,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "achievement_id"],
            set_={"unlocked_at": now, "progress": stmt.excluded.progress},
            where=UserAchievement.unlocked_at.is_(None),
        ).returning(UserAchievement.id)

        if (await self.db.execute(stmt)).scalar_one_or_none() is None:
            return False

        if achievement.xp_reward > 0:
            await award_xp(
                self.db,
                user_id,
                achievement.xp_reward,
                "achievement_unlock",
                {"achievement_id": achievement.id, "achievement_name": achievement.name},
                reference=f"achievement:{achievement.id}",
            )

        await enqueue_notification(
            self.db,
            user_id,
            "achievement",
            "Achievement Unlocked!",
            f'You\'ve unlocked the "{achievement.name}" achievement!',
            {
                "achievement_id": achievement.id,
                "achievement_name": achievement.name,
                "xp_reward": achievement.xp_reward,
            },
        )
        logger.info("User %d unlocked achievement %s", user_id, achievement.id)
        return True


async def list_user_achievements(
    db: AsyncSession,
    user_id: int,
) -> list[tuple[AchievementDefinition, UserAchievement | None]]:
    """All active achievements with the user's unlock row (if any)."""
    result = await db.execute(
        select(AchievementDefinition, UserAchievement)
        .outerjoin(
            UserAchievement,
            (UserAchievement.achievement_id == AchievementDefinition.id)
            & (UserAchievement.user_id == user_id),
        )
        .where(AchievementDefinition.is_active.is_(True))
        .order_by(AchievementDefinition.sort_order, AchievementDefinition.id)
    )
    return [(row.AchievementDefinition, row.UserAchievement) for row in result]
