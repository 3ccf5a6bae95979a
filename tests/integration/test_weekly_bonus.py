"""Weekly bonus: once per ISO week."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from loopeco.economy.balance_service import find_ledger_entry, get_balance, open_account
from loopeco.economy.weekly_bonus import claim_weekly_bonus
from loopeco.errors import AccountNotFound, WeeklyBonusAlreadyClaimed

WEDNESDAY = datetime(2026, 2, 25, 9, 30, tzinfo=timezone.utc)  # 2026-W09


class TestClaimWeeklyBonus:
    @pytest.mark.asyncio
    async def test_first_claim_credits(self, db_session):
        await open_account(db_session, 1, starting_balance=100)

        amount, new_balance = await claim_weekly_bonus(db_session, 1, now=WEDNESDAY)

        assert amount == 500
        assert new_balance == 600
        entry = await find_ledger_entry(db_session, 1, "weekly_bonus:2026-W09")
        assert entry is not None
        assert entry.reason == "weekly_bonus"

    @pytest.mark.asyncio
    async def test_second_claim_same_week_rejected(self, db_session):
        await open_account(db_session, 1)
        await claim_weekly_bonus(db_session, 1, now=WEDNESDAY)

        with pytest.raises(WeeklyBonusAlreadyClaimed) as exc_info:
            await claim_weekly_bonus(db_session, 1, now=WEDNESDAY + timedelta(days=4))

        assert exc_info.value.next_available == datetime(2026, 3, 2, tzinfo=timezone.utc)
        assert exc_info.value.to_dict()["next_available"] == "2026-03-02T00:00:00+00:00"
        assert await get_balance(db_session, 1) == 500

    @pytest.mark.asyncio
    async def test_next_week_can_claim_again(self, db_session):
        await open_account(db_session, 1)
        await claim_weekly_bonus(db_session, 1, now=WEDNESDAY)
        _, new_balance = await claim_weekly_bonus(db_session, 1, now=WEDNESDAY + timedelta(days=7))
        assert new_balance == 1000

    @pytest.mark.asyncio
    async def test_configured_amount(self, db_session):
        await open_account(db_session, 1)
        amount, new_balance = await claim_weekly_bonus(db_session, 1, amount=250, now=WEDNESDAY)
        assert (amount, new_balance) == (250, 250)

    @pytest.mark.asyncio
    async def test_unknown_account(self, db_session):
        with pytest.raises(AccountNotFound):
            await claim_weekly_bonus(db_session, 42, now=WEDNESDAY)
