"""Achievement engine: unlock-once semantics, chained unlocks, bad definitions."""

from __future__ import annotations

import pytest
from sqlalchemy import func, select

from loopeco.db.models import AchievementDefinition, NotificationOutbox, UserAchievement
from loopeco.economy.balance_service import open_account
from loopeco.progression.achievement_engine import AchievementEngine, list_user_achievements
from loopeco.progression.stats import EconomyStatsProvider, StaticStatsProvider
from loopeco.progression.xp_service import award_xp, get_level_progress


def _engine(db, **external_stats) -> AchievementEngine:
    external = StaticStatsProvider({1: external_stats})
    return AchievementEngine(db, EconomyStatsProvider(db, external))


async def _unlock_rows(db, user_id: int) -> int:
    return (await db.execute(
        select(func.count()).select_from(UserAchievement).where(
            UserAchievement.user_id == user_id,
            UserAchievement.unlocked_at.is_not(None),
        )
    )).scalar_one()


class TestEvaluate:
    @pytest.mark.asyncio
    async def test_unlocks_once(self, seeded_db):
        """loops_created = 3 unlocks First Loop and Loop Maker exactly once."""
        await open_account(seeded_db, 1)
        engine = _engine(seeded_db, loops_created=3)

        first = await engine.evaluate(1)
        second = await engine.evaluate(1)

        assert {a.id for a in first} == {"first_loop", "loop_maker"}
        assert second == []
        assert await _unlock_rows(seeded_db, 1) == 2

        progress = await get_level_progress(seeded_db, 1)
        assert progress["xp_total"] == 150  # 50 + 100, awarded once

        achievement_notifications = (await seeded_db.execute(
            select(func.count()).select_from(NotificationOutbox).where(
                NotificationOutbox.type == "achievement"
            )
        )).scalar_one()
        assert achievement_notifications == 2

    @pytest.mark.asyncio
    async def test_nothing_satisfied(self, seeded_db):
        await open_account(seeded_db, 1)
        assert await _engine(seeded_db).evaluate(1) == []
        assert await _unlock_rows(seeded_db, 1) == 0

    @pytest.mark.asyncio
    async def test_xp_from_one_unlock_can_satisfy_another(self, seeded_db):
        """3950 XP + First Loop (50) + Loop Maker (100) crosses level 5."""
        await open_account(seeded_db, 1)
        await award_xp(seeded_db, 1, 3950, "seed")

        unlocked = await _engine(seeded_db, loops_created=3).evaluate(1)

        assert [a.id for a in unlocked] == ["first_loop", "loop_maker", "level_5"]
        progress = await get_level_progress(seeded_db, 1)
        assert progress["xp_total"] == 3950 + 50 + 100 + 250

    @pytest.mark.asyncio
    async def test_invalid_definition_does_not_block_others(self, seeded_db):
        await open_account(seeded_db, 1)
        seeded_db.add(AchievementDefinition(
            id="broken",
            name="Broken",
            description="",
            category="general",
            requirements=[{"kind": "unknown"}],
            xp_reward=10,
            sort_order=0,
            is_active=True,
        ))
        await seeded_db.flush()

        unlocked = await _engine(seeded_db, loops_created=1).evaluate(1)

        assert [a.id for a in unlocked] == ["first_loop"]

    @pytest.mark.asyncio
    async def test_empty_requirements_always_eligible(self, seeded_db):
        await open_account(seeded_db, 1)
        seeded_db.add(AchievementDefinition(
            id="welcome",
            name="Welcome",
            description="",
            category="general",
            requirements={},
            xp_reward=0,
            sort_order=0,
            is_active=True,
        ))
        await seeded_db.flush()

        unlocked = await _engine(seeded_db).evaluate(1)
        assert [a.id for a in unlocked] == ["welcome"]

    @pytest.mark.asyncio
    async def test_inactive_definitions_ignored(self, seeded_db):
        await open_account(seeded_db, 1)
        definition = await seeded_db.get(AchievementDefinition, "first_loop")
        definition.is_active = False
        await seeded_db.flush()

        unlocked = await _engine(seeded_db, loops_created=1).evaluate(1)
        assert unlocked == []


class TestListUserAchievements:
    @pytest.mark.asyncio
    async def test_includes_locked_and_unlocked(self, seeded_db):
        await open_account(seeded_db, 1)
        await _engine(seeded_db, loops_created=1).evaluate(1)

        rows = await list_user_achievements(seeded_db, 1)
        by_id = {definition.id: ua for definition, ua in rows}

        assert by_id["first_loop"] is not None
        assert by_id["first_loop"].unlocked_at is not None
        assert by_id["loop_maker"] is None
        assert len(rows) == 8
