"""Stat snapshots for achievement evaluation."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Protocol

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from loopeco.db.models import Account, DailyChallenge, GiftTransaction, GroupGiftContribution
from loopeco.errors import AccountNotFound
from loopeco.progression.level_curve import compute_level


class StatsProvider(Protocol):
    """Returns a stat name -> numeric value map for a user."""

    async def snapshot(self, user_id: int) -> dict[str, float]: ...


class StaticStatsProvider:
    """Fixed per-user stats, e.g. pushed in by the content service with an event."""

    def __init__(self, stats: Mapping[int, Mapping[str, float]] | None = None) -> None:
        self._stats: dict[int, dict[str, float]] = {
            uid: dict(values) for uid, values in (stats or {}).items()
        }

    async def snapshot(self, user_id: int) -> dict[str, float]:
        return dict(self._stats.get(user_id, {}))


class EconomyStatsProvider:
    """Engine-owned counters merged over an optional external provider.

    The external provider supplies platform stats the engine does not own
    (loops_created, followers, ...). Engine counters win on key collisions.
    """

    def __init__(self, db: AsyncSession, external: StatsProvider | None = None) -> None:
        self.db = db
        self.external = external

    async def snapshot(self, user_id: int) -> dict[str, float]:
        stats: dict[str, float] = {}
        if self.external is not None:
            stats.update(await self.external.snapshot(user_id))

        row = (await self.db.execute(
            select(Account.balance, Account.xp_total).where(Account.id == user_id)
        )).one_or_none()
        if row is None:
            raise AccountNotFound(user_id)

        stats["balance"] = row.balance
        stats["xp_total"] = row.xp_total
        stats["level"] = compute_level(row.xp_total)["level"]
        stats["gifts_sent"] = await self._count(
            select(func.count()).select_from(GiftTransaction).where(
                GiftTransaction.sender_id == user_id,
                GiftTransaction.status == "sent",
                GiftTransaction.funding_source == "balance",
            )
        )
        stats["gifts_received"] = await self._count(
            select(func.count()).select_from(GiftTransaction).where(
                GiftTransaction.recipient_id == user_id,
                GiftTransaction.status == "sent",
            )
        )
        stats["group_gift_contributions"] = await self._count(
            select(func.count()).select_from(GroupGiftContribution).where(
                GroupGiftContribution.contributor_id == user_id,
            )
        )
        stats["challenges_completed"] = await self._count(
            select(func.count()).select_from(DailyChallenge).where(
                DailyChallenge.user_id == user_id,
                DailyChallenge.is_completed.is_(True),
            )
        )
        return stats

    async def _count(self, stmt) -> int:  # type: ignore[no-untyped-def]
        return (await self.db.execute(stmt)).scalar_one()
