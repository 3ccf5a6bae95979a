"""XP awards: additive totals, pure levels, level-up notifications."""

from __future__ import annotations

import pytest
from sqlalchemy import select

from loopeco.db.models import LedgerEntry, NotificationOutbox
from loopeco.economy.balance_service import KIND_XP, open_account
from loopeco.errors import AccountNotFound, InvalidAmount
from loopeco.progression.achievement_engine import AchievementEngine
from loopeco.progression.level_curve import compute_level
from loopeco.progression.stats import EconomyStatsProvider
from loopeco.progression.xp_service import award_xp, get_level_progress


class TestAwardXP:
    @pytest.mark.asyncio
    async def test_level_up_across_threshold(self, db_session):
        """950 XP + 100 -> 1050 XP, level 1 -> 2, progress 50/1000."""
        await open_account(db_session, 1)
        await award_xp(db_session, 1, 950, "seed")

        award = await award_xp(db_session, 1, 100, "create_loop")

        assert award.xp_total == 1050
        assert award.level == 2
        assert award.xp_into_level == 50
        assert award.xp_for_level == 1000
        assert award.leveled_up is True

        notifications = (await db_session.execute(
            select(NotificationOutbox).where(NotificationOutbox.type == "level_up")
        )).scalars().all()
        assert len(notifications) == 1
        assert notifications[0].data["new_level"] == 2

    @pytest.mark.asyncio
    async def test_additive_and_level_is_pure(self, db_session):
        await open_account(db_session, 1)
        total = 0
        for amount in (10, 250, 990, 1, 3000):
            award = await award_xp(db_session, 1, amount, "action")
            total += amount
            assert award.xp_total == total
            assert award.level == compute_level(total)["level"]

        progress = await get_level_progress(db_session, 1)
        assert progress["xp_total"] == total
        assert progress["level"] == compute_level(total)["level"]

    @pytest.mark.asyncio
    async def test_no_level_up_within_level(self, db_session):
        await open_account(db_session, 1)
        award = await award_xp(db_session, 1, 20, "send_gift")
        assert award.leveled_up is False

        rows = (await db_session.execute(select(NotificationOutbox))).scalars().all()
        assert rows == []

    @pytest.mark.asyncio
    async def test_xp_is_ledgered(self, db_session):
        await open_account(db_session, 1)
        await award_xp(db_session, 1, 20, "send_gift", {"gift_item_id": "x"}, reference="gift:7")

        entry = (await db_session.execute(
            select(LedgerEntry).where(LedgerEntry.kind == KIND_XP)
        )).scalar_one()
        assert entry.amount == 20
        assert entry.reason == "send_gift"
        assert entry.reference == "gift:7"

    @pytest.mark.asyncio
    async def test_non_positive_amount_rejected(self, db_session):
        await open_account(db_session, 1)
        with pytest.raises(InvalidAmount):
            await award_xp(db_session, 1, 0, "nothing")
        with pytest.raises(InvalidAmount):
            await award_xp(db_session, 1, -5, "nothing")

    @pytest.mark.asyncio
    async def test_missing_account(self, db_session):
        with pytest.raises(AccountNotFound):
            await award_xp(db_session, 404, 10, "action")


class TestAwardXPWithAchievements:
    @pytest.mark.asyncio
    async def test_reaching_level_5_unlocks_rising_star(self, seeded_db):
        await open_account(seeded_db, 1)
        evaluator = AchievementEngine(seeded_db, EconomyStatsProvider(seeded_db))

        award = await award_xp(seeded_db, 1, 4000, "seed", evaluator=evaluator)

        assert award.unlocked == ["level_5"]
        assert award.xp_total == 4250  # + level_5 reward
        assert award.level == 5
        assert award.leveled_up is True
