"""Economy worker jobs against the test database."""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import update

from loopeco.clock import utcnow
from loopeco.db.models import GroupGift
from loopeco.economy.balance_service import get_balance
from loopeco.economy.group_gift_service import contribute, create_group_gift, get_group_gift
from loopeco.notifications.outbox import count_pending, enqueue_notification
from loopeco.workers.economy_worker import (
    EconomyWorkerSettings,
    drain_notification_outbox,
    expire_overdue_group_gifts,
    reconcile_gifts,
)


class TestDrainJob:
    @pytest.mark.asyncio
    async def test_delivers_through_context_dispatcher(self, db_session, dispatcher):
        await enqueue_notification(db_session, 1, "system", "Hello", "welcome aboard")
        await db_session.commit()

        delivered = await drain_notification_outbox({"dispatcher": dispatcher})

        assert delivered == 1
        assert dispatcher.events[0]["title"] == "Hello"
        assert await count_pending(db_session) == 0

    @pytest.mark.asyncio
    async def test_transport_outage_keeps_events(self, db_session, failing_dispatcher):
        await enqueue_notification(db_session, 1, "system", "Hello", "welcome aboard")
        await db_session.commit()

        assert await drain_notification_outbox({"dispatcher": failing_dispatcher}) == 0
        assert await count_pending(db_session) == 1


class TestExpireJob:
    @pytest.mark.asyncio
    async def test_expires_overdue_campaigns(self, seeded_db, make_accounts):
        await make_accounts({1: 500, 9: 0})
        group_gift = await create_group_gift(
            seeded_db, 1, 9, "badge-superfan", utcnow() + timedelta(days=1)
        )
        await contribute(seeded_db, group_gift.id, 1, 200)
        await seeded_db.execute(
            update(GroupGift)
            .where(GroupGift.id == group_gift.id)
            .values(deadline=utcnow() - timedelta(seconds=1))
        )
        await seeded_db.commit()

        assert await expire_overdue_group_gifts({}) == 1

        assert (await get_group_gift(seeded_db, group_gift.id)).status == "expired"
        assert await get_balance(seeded_db, 1) == 500


class TestReconcileJob:
    @pytest.mark.asyncio
    async def test_nothing_pending(self, db_session):
        assert await reconcile_gifts({}) == {"delivered": 0, "failed": 0}


class TestWorkerSettings:
    def test_registers_all_jobs(self):
        names = {f.__name__ for f in EconomyWorkerSettings.functions}
        assert names == {"drain_notification_outbox", "expire_overdue_group_gifts", "reconcile_gifts"}
        assert len(EconomyWorkerSettings.cron_jobs) == 3
