"""Achievement definition seed data."""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from loopeco.db.base import dialect_insert
from loopeco.db.models import AchievementDefinition

logger = logging.getLogger(__name__)

ACHIEVEMENT_SEED_DATA: list[dict] = [
    # Creation (stats supplied by the content service)
    {
        "id": "first_loop",
        "name": "First Loop",
        "description": "Create your very first loop",
        "category": "creation",
        "requirements": {"loops_created": 1},
        "xp_reward": 50,
        "sort_order": 1,
    },
    {
        "id": "loop_maker",
        "name": "Loop Maker",
        "description": "Create 3 loops",
        "category": "creation",
        "requirements": {"loops_created": 3},
        "xp_reward": 100,
        "sort_order": 2,
    },
    # Gifting
    {
        "id": "first_gift",
        "name": "Generous Soul",
        "description": "Send your first gift",
        "category": "gifting",
        "requirements": [{"kind": "min_stat", "stat": "gifts_sent", "threshold": 1}],
        "xp_reward": 50,
        "sort_order": 10,
    },
    {
        "id": "gift_giver_10",
        "name": "Gift Giver",
        "description": "Send 10 gifts",
        "category": "gifting",
        "requirements": [{"kind": "min_stat", "stat": "gifts_sent", "threshold": 10}],
        "xp_reward": 200,
        "sort_order": 11,
    },
    {
        "id": "team_player",
        "name": "Team Player",
        "description": "Contribute to a group gift",
        "category": "gifting",
        "requirements": [{"kind": "min_stat", "stat": "group_gift_contributions", "threshold": 1}],
        "xp_reward": 50,
        "sort_order": 12,
    },
    # Challenges
    {
        "id": "challenger",
        "name": "Challenger",
        "description": "Complete your first daily challenge",
        "category": "challenges",
        "requirements": [{"kind": "min_stat", "stat": "challenges_completed", "threshold": 1}],
        "xp_reward": 25,
        "sort_order": 20,
    },
    # Progression
    {
        "id": "level_5",
        "name": "Rising Star",
        "description": "Reach level 5",
        "category": "progression",
        "requirements": [{"kind": "min_level", "level": 5}],
        "xp_reward": 250,
        "sort_order": 30,
    },
    {
        "id": "level_10",
        "name": "Loop Legend",
        "description": "Reach level 10",
        "category": "progression",
        "requirements": [{"kind": "min_level", "level": 10}],
        "xp_reward": 500,
        "sort_order": 31,
    },
]


async def seed_achievements(db: AsyncSession) -> int:
    """Upsert all achievement definitions. Returns number seeded."""
    seeded = 0
    for data in ACHIEVEMENT_SEED_DATA:
        stmt = dialect_insert(db, AchievementDefinition).values(is_active=True, **data)
        stmt = stmt.on_conflict_do_update(
            index_elements=["id"],
            set_={
                "name": stmt.excluded.name,
                "description": stmt.excluded.description,
                "category": stmt.excluded.category,
                "requirements": stmt.excluded.requirements,
                "xp_reward": stmt.excluded.xp_reward,
                "sort_order": stmt.excluded.sort_order,
            },
        )
        await db.execute(stmt)
        seeded += 1

    await db.commit()
    logger.info("Seeded %d achievement definitions", seeded)
    return seeded
