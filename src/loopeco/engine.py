"""Engine facade: one entry point per operation, one store transaction per call.

Every mutating operation runs as a unit of work on the session it was given:

- success: the result is (optionally) stored under the idempotency key and
  the transaction commits
- business error: rolled back, except errors flagged ``persist_changes``
  (e.g. a group gift that was expired by this very call), which commit first
- driver/connection failure: rolled back and surfaced as StoreUnavailable;
  the outcome is unknown to the caller, who retries with the same key
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import TypeVar

from pydantic import BaseModel
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from loopeco import idempotency
from loopeco.clock import next_week_start, utcnow
from loopeco.config import Settings, get_settings
from loopeco.db.models import GiftTransaction, GroupGift, GroupGiftContribution
from loopeco.economy import balance_service, gift_service, group_gift_service, inventory, shop
from loopeco.economy.schemas import (
    AccountResponse,
    BalanceResponse,
    CatalogResponse,
    ContributeResponse,
    ContributionResponse,
    GiftItemResponse,
    GiftTransactionResponse,
    GroupGiftResponse,
    InventoryItemResponse,
    InventoryResponse,
    LedgerEntryResponse,
    LedgerResponse,
    PurchaseResponse,
    ReceivedGiftsResponse,
    SendGiftResponse,
    WeeklyBonusResponse,
)
from loopeco.economy.weekly_bonus import claim_weekly_bonus
from loopeco.errors import EconomyError, StoreUnavailable
from loopeco.progression import challenge_tracker, xp_service
from loopeco.progression.achievement_engine import AchievementEngine, list_user_achievements
from loopeco.progression.schemas import (
    AchievementResponse,
    AchievementsResponse,
    AdvanceChallengeResponse,
    ChallengeResponse,
    ChallengesResponse,
    EvaluateResponse,
    LevelResponse,
    XPAwardResponse,
)
from loopeco.progression.stats import EconomyStatsProvider, StatsProvider

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=BaseModel)


def _gift_response(tx: GiftTransaction, redact_sender: bool = False) -> GiftTransactionResponse:
    return GiftTransactionResponse(
        id=tx.id,
        sender_id=None if redact_sender and tx.is_anonymous else tx.sender_id,
        recipient_id=tx.recipient_id,
        item_id=tx.item_id,
        amount_charged=tx.amount_charged,
        status=tx.status,
        is_anonymous=tx.is_anonymous,
        message=tx.message,
        funding_source=tx.funding_source,
        group_gift_id=tx.group_gift_id,
        created_at=tx.created_at,
    )


def _group_gift_response(
    group_gift: GroupGift,
    contributions: list[GroupGiftContribution],
) -> GroupGiftResponse:
    return GroupGiftResponse(
        id=group_gift.id,
        organizer_id=group_gift.organizer_id,
        recipient_id=group_gift.recipient_id,
        item_id=group_gift.item_id,
        target_amount=group_gift.target_amount,
        current_amount=group_gift.current_amount,
        deadline=group_gift.deadline,
        status=group_gift.status,
        group_message=group_gift.group_message,
        gift_transaction_id=group_gift.gift_transaction_id,
        contributions=[
            ContributionResponse(
                contributor_id=c.contributor_id, amount=c.amount, created_at=c.created_at
            )
            for c in contributions
        ],
    )


def _challenge_response(challenge) -> ChallengeResponse:  # type: ignore[no-untyped-def]
    return ChallengeResponse.model_validate(challenge, from_attributes=True)


class EconomyEngine:
    """Composes the economy and progression services over one session."""

    def __init__(
        self,
        db: AsyncSession,
        settings: Settings | None = None,
        stats: StatsProvider | None = None,
    ) -> None:
        self.db = db
        self.settings = settings or get_settings()
        self.achievements = AchievementEngine(db, EconomyStatsProvider(db, stats))

    # ── Unit of work ──

    async def _run(
        self,
        operation: str,
        user_id: int,
        idempotency_key: str | None,
        response_model: type[R],
        work: Callable[[], Awaitable[R]],
    ) -> R:
        if idempotency_key is not None:
            stored = await idempotency.lookup(self.db, operation, user_id, idempotency_key)
            if stored is not None:
                await self.db.rollback()
                logger.info("Replaying %s for user %d (key=%s)", operation, user_id, idempotency_key)
                return response_model.model_validate(stored)

        try:
            result = await work()
            if idempotency_key is not None:
                stored_now = await idempotency.remember(
                    self.db, operation, user_id, idempotency_key, result.model_dump(mode="json")
                )
                if not stored_now:
                    # A concurrent request with the same key committed first.
                    await self.db.rollback()
                    winner = await idempotency.lookup(self.db, operation, user_id, idempotency_key)
                    await self.db.rollback()
                    return response_model.model_validate(winner)
            await self.db.commit()
            return result
        except EconomyError as exc:
            if exc.persist_changes:
                await self.db.commit()
            else:
                await self.db.rollback()
            raise
        except (OperationalError, InterfaceError) as exc:
            await self.db.rollback()
            logger.error("%s failed for user %d: store unavailable", operation, user_id, exc_info=True)
            raise StoreUnavailable("Store unavailable; outcome unknown, retry with the same key") from exc
        except Exception:
            await self.db.rollback()
            raise

    # ── Accounts ──

    async def open_account(self, user_id: int, idempotency_key: str | None = None) -> AccountResponse:
        async def work() -> AccountResponse:
            account, created = await balance_service.open_account(
                self.db, user_id, self.settings.starting_balance
            )
            return AccountResponse(
                user_id=account.id,
                balance=account.balance,
                xp_total=account.xp_total,
                created=created,
            )

        return await self._run("open_account", user_id, idempotency_key, AccountResponse, work)

    async def get_balance(self, user_id: int) -> BalanceResponse:
        balance = await balance_service.get_balance(self.db, user_id)
        return BalanceResponse(user_id=user_id, balance=balance)

    async def get_ledger(
        self,
        user_id: int,
        kind: str | None = None,
        page: int = 1,
        per_page: int = 20,
    ) -> LedgerResponse:
        await balance_service.get_account(self.db, user_id)
        entries, total = await balance_service.get_ledger(self.db, user_id, kind, page, per_page)
        return LedgerResponse(
            entries=[
                LedgerEntryResponse(
                    id=e.id,
                    kind=e.kind,
                    amount=e.amount,
                    reason=e.reason,
                    reference=e.reference,
                    metadata=e.entry_metadata or {},
                    balance_after=e.balance_after,
                    created_at=e.created_at,
                )
                for e in entries
            ],
            total=total,
            page=page,
            per_page=per_page,
        )

    async def claim_weekly_bonus(
        self,
        user_id: int,
        idempotency_key: str | None = None,
    ) -> WeeklyBonusResponse:
        async def work() -> WeeklyBonusResponse:
            now = utcnow()
            amount, new_balance = await claim_weekly_bonus(
                self.db, user_id, self.settings.weekly_bonus_amount, now
            )
            return WeeklyBonusResponse(
                amount=amount, new_balance=new_balance, next_available=next_week_start(now)
            )

        return await self._run(
            "claim_weekly_bonus", user_id, idempotency_key, WeeklyBonusResponse, work
        )

    # ── Progression ──

    async def award_xp(
        self,
        user_id: int,
        amount: int,
        action: str,
        metadata: dict | None = None,
        idempotency_key: str | None = None,
    ) -> XPAwardResponse:
        async def work() -> XPAwardResponse:
            award = await xp_service.award_xp(
                self.db, user_id, amount, action, metadata, evaluator=self.achievements
            )
            return XPAwardResponse(
                xp_total=award.xp_total,
                level=award.level,
                xp_into_level=award.xp_into_level,
                xp_for_level=award.xp_for_level,
                leveled_up=award.leveled_up,
                achievements_unlocked=award.unlocked,
            )

        return await self._run("award_xp", user_id, idempotency_key, XPAwardResponse, work)

    async def get_level(self, user_id: int) -> LevelResponse:
        return LevelResponse(**await xp_service.get_level_progress(self.db, user_id))

    async def evaluate_achievements(
        self,
        user_id: int,
        idempotency_key: str | None = None,
    ) -> EvaluateResponse:
        async def work() -> EvaluateResponse:
            await balance_service.get_account(self.db, user_id)
            unlocked = await self.achievements.evaluate(user_id)
            return EvaluateResponse(unlocked=[a.id for a in unlocked])

        return await self._run(
            "evaluate_achievements", user_id, idempotency_key, EvaluateResponse, work
        )

    async def list_achievements(self, user_id: int) -> AchievementsResponse:
        rows = await list_user_achievements(self.db, user_id)
        items = [
            AchievementResponse(
                id=definition.id,
                name=definition.name,
                description=definition.description,
                category=definition.category,
                xp_reward=definition.xp_reward,
                unlocked=bool(ua and ua.unlocked_at),
                unlocked_at=ua.unlocked_at if ua else None,
            )
            for definition, ua in rows
        ]
        return AchievementsResponse(
            achievements=items,
            total_available=len(items),
            total_unlocked=sum(1 for a in items if a.unlocked),
        )

    async def generate_daily_challenges(
        self,
        user_id: int,
        idempotency_key: str | None = None,
    ) -> ChallengesResponse:
        async def work() -> ChallengesResponse:
            challenges = await challenge_tracker.generate_daily(self.db, user_id)
            return ChallengesResponse(challenges=[_challenge_response(c) for c in challenges])

        return await self._run(
            "generate_daily_challenges", user_id, idempotency_key, ChallengesResponse, work
        )

    async def advance_challenge(
        self,
        user_id: int,
        challenge_type: str,
        increment: int = 1,
        idempotency_key: str | None = None,
    ) -> AdvanceChallengeResponse:
        async def work() -> AdvanceChallengeResponse:
            result = await challenge_tracker.advance(
                self.db, user_id, challenge_type, increment, evaluator=self.achievements
            )
            return AdvanceChallengeResponse(
                completed=result.completed,
                status=result.status,
                challenge=_challenge_response(result.challenge) if result.challenge else None,
            )

        return await self._run(
            "advance_challenge", user_id, idempotency_key, AdvanceChallengeResponse, work
        )

    async def list_open_challenges(self, user_id: int) -> ChallengesResponse:
        challenges = await challenge_tracker.list_open_challenges(self.db, user_id)
        return ChallengesResponse(challenges=[_challenge_response(c) for c in challenges])

    # ── Gifts ──

    async def list_catalog(self) -> CatalogResponse:
        items = await gift_service.list_catalog(self.db)
        return CatalogResponse(items=[
            GiftItemResponse(
                id=item.id,
                name=item.name,
                description=item.description,
                category=item.category,
                rarity=item.rarity,
                coin_price=item.coin_price,
                cost=gift_service.gift_cost(item),
                grants_inventory=item.grants_inventory,
            )
            for item in items
        ])

    async def list_inventory(self, user_id: int) -> InventoryResponse:
        rows = await inventory.list_inventory(self.db, user_id)
        return InventoryResponse(items=[
            InventoryItemResponse(
                item_id=item.id,
                name=item.name,
                category=item.category,
                rarity=item.rarity,
                is_active=owned.is_active,
                acquired_at=owned.acquired_at,
            )
            for owned, item in rows
        ])

    async def send_gift(
        self,
        sender_id: int,
        recipient_id: int,
        item_id: str,
        message: str | None = None,
        is_anonymous: bool = False,
        idempotency_key: str | None = None,
    ) -> SendGiftResponse:
        async def work() -> SendGiftResponse:
            tx, award = await gift_service.send_gift(
                self.db,
                sender_id,
                recipient_id,
                item_id,
                message=message,
                is_anonymous=is_anonymous,
                xp_bonus=self.settings.gift_sender_xp_bonus,
                evaluator=self.achievements,
            )
            await self.achievements.evaluate(recipient_id)
            level = await xp_service.get_level_progress(self.db, sender_id)
            return SendGiftResponse(
                gift=_gift_response(tx),
                new_balance=await balance_service.get_balance(self.db, sender_id),
                xp_awarded=self.settings.gift_sender_xp_bonus if award else 0,
                level=level["level"],
                leveled_up=award.leveled_up if award else False,
                achievements_unlocked=award.unlocked if award else [],
            )

        return await self._run("send_gift", sender_id, idempotency_key, SendGiftResponse, work)

    async def purchase_item(
        self,
        user_id: int,
        item_id: str,
        idempotency_key: str | None = None,
    ) -> PurchaseResponse:
        async def work() -> PurchaseResponse:
            item, new_balance = await shop.purchase_item(self.db, user_id, item_id)
            return PurchaseResponse(
                item_id=item.id, amount_charged=item.coin_price, new_balance=new_balance
            )

        return await self._run("purchase_item", user_id, idempotency_key, PurchaseResponse, work)

    async def list_received_gifts(self, user_id: int) -> ReceivedGiftsResponse:
        rows = await gift_service.list_received_gifts(self.db, user_id)
        return ReceivedGiftsResponse(
            gifts=[_gift_response(tx, redact_sender=True) for tx, _item in rows]
        )

    # ── Group gifts ──

    async def create_group_gift(
        self,
        organizer_id: int,
        recipient_id: int,
        item_id: str,
        deadline: datetime,
        message: str | None = None,
        idempotency_key: str | None = None,
    ) -> GroupGiftResponse:
        async def work() -> GroupGiftResponse:
            group_gift = await group_gift_service.create_group_gift(
                self.db,
                organizer_id,
                recipient_id,
                item_id,
                deadline,
                message,
                max_days=self.settings.group_gift_max_days,
            )
            return _group_gift_response(group_gift, [])

        return await self._run(
            "create_group_gift", organizer_id, idempotency_key, GroupGiftResponse, work
        )

    async def contribute_to_group_gift(
        self,
        group_gift_id: int,
        contributor_id: int,
        amount: int,
        idempotency_key: str | None = None,
    ) -> ContributeResponse:
        async def work() -> ContributeResponse:
            result = await group_gift_service.contribute(
                self.db, group_gift_id, contributor_id, amount
            )
            await self.achievements.evaluate(contributor_id)
            if result.completed:
                await self.achievements.evaluate(result.group_gift.recipient_id)
            contributions = await group_gift_service.list_contributions(self.db, group_gift_id)
            return ContributeResponse(
                group_gift=_group_gift_response(result.group_gift, contributions),
                accepted=result.accepted,
                refunded=result.refunded,
                completed=result.completed,
                new_balance=await balance_service.get_balance(self.db, contributor_id),
            )

        return await self._run(
            "contribute_to_group_gift", contributor_id, idempotency_key, ContributeResponse, work
        )

    async def get_group_gift(self, group_gift_id: int) -> GroupGiftResponse:
        group_gift = await group_gift_service.get_group_gift(self.db, group_gift_id)
        contributions = await group_gift_service.list_contributions(self.db, group_gift_id)
        return _group_gift_response(group_gift, contributions)
