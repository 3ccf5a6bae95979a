"""EconomyEngine: units of work, idempotent retries and error mapping."""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import func, select, update
from sqlalchemy.exc import OperationalError

from loopeco.clock import utcnow
from loopeco.config import Settings
from loopeco.db.models import GiftTransaction, GroupGift, IdempotencyRecord
from loopeco.economy import balance_service
from loopeco.engine import EconomyEngine
from loopeco.errors import (
    ExpiredGroupGift,
    InsufficientFunds,
    StoreUnavailable,
    WeeklyBonusAlreadyClaimed,
)
from loopeco.progression.stats import StaticStatsProvider


@pytest.fixture
def engine(seeded_db) -> EconomyEngine:
    return EconomyEngine(seeded_db, Settings(starting_balance=100))


async def _count(db, model) -> int:
    return (await db.execute(select(func.count()).select_from(model))).scalar_one()


class TestAccounts:
    @pytest.mark.asyncio
    async def test_open_account_replays_by_key(self, engine):
        first = await engine.open_account(1, idempotency_key="open-1")
        replay = await engine.open_account(1, idempotency_key="open-1")
        fresh = await engine.open_account(1)

        assert first.created is True
        assert first.balance == 100
        assert replay == first
        assert fresh.created is False

    @pytest.mark.asyncio
    async def test_keys_are_scoped_per_user(self, engine, seeded_db):
        await engine.open_account(1, idempotency_key="same")
        second = await engine.open_account(2, idempotency_key="same")

        assert second.user_id == 2
        assert second.created is True
        assert await _count(seeded_db, IdempotencyRecord) == 2

    @pytest.mark.asyncio
    async def test_driver_failure_becomes_store_unavailable(self, engine, monkeypatch):
        async def broken(*args, **kwargs):
            raise OperationalError("UPDATE accounts", {}, ConnectionError("connection reset"))

        monkeypatch.setattr(balance_service, "open_account", broken)

        with pytest.raises(StoreUnavailable):
            await engine.open_account(1, idempotency_key="open-1")


class TestWeeklyBonus:
    @pytest.mark.asyncio
    async def test_second_claim_rejected(self, engine):
        await engine.open_account(1)
        first = await engine.claim_weekly_bonus(1)

        with pytest.raises(WeeklyBonusAlreadyClaimed):
            await engine.claim_weekly_bonus(1)

        assert first.new_balance == 600
        assert first.next_available > utcnow()
        assert (await engine.get_balance(1)).balance == 600

    @pytest.mark.asyncio
    async def test_retry_with_same_key_is_not_a_second_claim(self, engine):
        await engine.open_account(1)
        first = await engine.claim_weekly_bonus(1, idempotency_key="bonus")
        replay = await engine.claim_weekly_bonus(1, idempotency_key="bonus")

        assert replay == first
        assert (await engine.get_balance(1)).balance == 600


class TestSendGift:
    @pytest.mark.asyncio
    async def test_retry_does_not_charge_twice(self, engine, make_accounts, seeded_db):
        await make_accounts({1: 1000, 2: 0})

        first = await engine.send_gift(1, 2, "badge-supporter", idempotency_key="gift-1")
        replay = await engine.send_gift(1, 2, "badge-supporter", idempotency_key="gift-1")

        assert replay == first
        assert first.new_balance == 700
        assert first.gift.status == "sent"
        assert (await engine.get_balance(1)).balance == 700
        assert await _count(seeded_db, GiftTransaction) == 1

    @pytest.mark.asyncio
    async def test_first_gift_unlocks_achievement(self, engine, make_accounts):
        await make_accounts({1: 1000, 2: 0})

        result = await engine.send_gift(1, 2, "badge-supporter")

        assert result.xp_awarded == 20
        assert result.achievements_unlocked == ["first_gift"]
        assert (await engine.get_level(1)).xp_total == 70

    @pytest.mark.asyncio
    async def test_failure_rolls_back_everything(self, engine, make_accounts, seeded_db):
        await make_accounts({1: 100, 2: 0})

        with pytest.raises(InsufficientFunds):
            await engine.send_gift(1, 2, "badge-superfan", idempotency_key="gift-1")

        assert (await engine.get_balance(1)).balance == 100
        assert await _count(seeded_db, GiftTransaction) == 0
        assert await _count(seeded_db, IdempotencyRecord) == 0

    @pytest.mark.asyncio
    async def test_received_gifts_redact_anonymous_sender(self, engine, make_accounts):
        await make_accounts({1: 1000, 2: 0})
        await engine.send_gift(1, 2, "badge-supporter", is_anonymous=True)
        await engine.send_gift(1, 2, "badge-supporter")

        received = await engine.list_received_gifts(2)

        assert [g.sender_id for g in received.gifts] == [1, None]


class TestGroupGifts:
    @pytest.mark.asyncio
    async def test_expiry_discovered_by_contribution_is_persisted(
        self, engine, make_accounts, seeded_db
    ):
        await make_accounts({1: 0, 2: 500, 3: 500, 9: 0})
        created = await engine.create_group_gift(
            1, 9, "badge-superfan", utcnow() + timedelta(days=1)
        )
        await engine.contribute_to_group_gift(created.id, 2, 200)

        await seeded_db.execute(
            update(GroupGift)
            .where(GroupGift.id == created.id)
            .values(deadline=utcnow() - timedelta(minutes=1))
        )
        await seeded_db.commit()

        with pytest.raises(ExpiredGroupGift):
            await engine.contribute_to_group_gift(created.id, 3, 100)

        group_gift = await engine.get_group_gift(created.id)
        assert group_gift.status == "expired"
        assert (await engine.get_balance(2)).balance == 500
        assert (await engine.get_balance(3)).balance == 500

    @pytest.mark.asyncio
    async def test_completion_reports_pooled_gift(self, engine, make_accounts):
        await make_accounts({1: 0, 2: 800, 3: 800, 9: 0})
        created = await engine.create_group_gift(
            1, 9, "badge-superfan", utcnow() + timedelta(days=1), "from all of us"
        )

        await engine.contribute_to_group_gift(created.id, 2, 600)
        result = await engine.contribute_to_group_gift(created.id, 3, 600)

        assert result.completed is True
        assert (result.accepted, result.refunded) == (400, 200)
        assert result.new_balance == 400
        assert result.group_gift.status == "completed"
        assert result.group_gift.gift_transaction_id is not None
        assert [c.amount for c in result.group_gift.contributions] == [600, 400]

        achievements = await engine.list_achievements(3)
        unlocked = {a.id for a in achievements.achievements if a.unlocked}
        assert "team_player" in unlocked


class TestProgression:
    @pytest.mark.asyncio
    async def test_external_stats_flow_into_evaluation(self, seeded_db):
        stats = StaticStatsProvider({1: {"loops_created": 1}})
        engine = EconomyEngine(seeded_db, Settings(starting_balance=0), stats=stats)
        await engine.open_account(1)

        first = await engine.evaluate_achievements(1)
        second = await engine.evaluate_achievements(1)

        assert first.unlocked == ["first_loop"]
        assert second.unlocked == []

    @pytest.mark.asyncio
    async def test_evaluate_replays_by_key(self, seeded_db):
        stats = StaticStatsProvider({1: {"loops_created": 1}})
        engine = EconomyEngine(seeded_db, Settings(starting_balance=0), stats=stats)
        await engine.open_account(1)

        first = await engine.evaluate_achievements(1, idempotency_key="eval-1")
        replay = await engine.evaluate_achievements(1, idempotency_key="eval-1")
        fresh = await engine.evaluate_achievements(1, idempotency_key="eval-2")

        assert first.unlocked == ["first_loop"]
        assert replay == first
        assert fresh.unlocked == []

    @pytest.mark.asyncio
    async def test_award_xp_reports_level(self, engine):
        await engine.open_account(1)
        result = await engine.award_xp(1, 1200, "create_loop")

        assert result.level == 2
        assert result.leveled_up is True
        assert result.xp_total == 1200

    @pytest.mark.asyncio
    async def test_challenge_flow(self, engine):
        await engine.open_account(1)
        generated = await engine.generate_daily_challenges(1)
        assert len(generated.challenges) == 3

        result = await engine.advance_challenge(1, "visit_profiles", 5)

        assert result.completed is True
        assert result.status == "completed"
        assert (await engine.get_balance(1)).balance == 110
        assert [c.challenge_type for c in (await engine.list_open_challenges(1)).challenges] == [
            "create_loops", "like_loops",
        ]
