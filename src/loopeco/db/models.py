"""ORM models for the economy and progression engine.

The same tables are created by ``alembic/versions/001_economy_tables.py``.
Shared counters (``accounts.balance``, ``accounts.xp_total``,
``group_gifts.current_amount``, ``daily_challenges.current_progress``) are only
ever written with conditional UPDATE statements; the CHECK constraints below
are the last line of defence.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from loopeco.db.base import Base, BigIntPK, JSONType


# ---------------------------------------------------------------------------
# Accounts & Ledger
# ---------------------------------------------------------------------------


class Account(Base):
    """A user's economic state. ``id`` is the platform user id."""

    __tablename__ = "accounts"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_accounts_balance_non_negative"),
        CheckConstraint("xp_total >= 0", name="ck_accounts_xp_non_negative"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    xp_total: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class LedgerEntry(Base):
    """Append-only record of a coin or XP delta."""

    __tablename__ = "ledger_entries"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    kind: Mapped[str] = mapped_column(String(8), nullable=False)  # coins | xp
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    reason: Mapped[str] = mapped_column(String(64), nullable=False)
    reference: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    entry_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSONType, default=dict)
    balance_after: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# Achievements
# ---------------------------------------------------------------------------


class AchievementDefinition(Base):
    """A requirement set a user can satisfy, seeded on startup."""

    __tablename__ = "achievement_definitions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    category: Mapped[str] = mapped_column(String(32), nullable=False, default="general")
    requirements: Mapped[Any] = mapped_column(JSONType, nullable=False, default=dict)
    xp_reward: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class UserAchievement(Base):
    """One user's relationship to one achievement."""

    __tablename__ = "user_achievements"
    __table_args__ = (
        UniqueConstraint("user_id", "achievement_id", name="uq_user_achievements_user_achievement"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    achievement_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("achievement_definitions.id"), nullable=False
    )
    unlocked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    progress: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)


# ---------------------------------------------------------------------------
# Gifts
# ---------------------------------------------------------------------------


class GiftItem(Base):
    """A giftable catalog item."""

    __tablename__ = "gift_items"
    __table_args__ = (
        CheckConstraint("coin_price >= 0", name="ck_gift_items_price_non_negative"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    rarity: Mapped[str] = mapped_column(String(16), nullable=False, default="common")
    coin_price: Mapped[int] = mapped_column(Integer, nullable=False)
    multiplier: Mapped[Decimal] = mapped_column(Numeric(6, 2), nullable=False, default=Decimal("1"))
    grants_inventory: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class GroupGift(Base):
    """Crowdfunded gift campaign: open -> completed | expired."""

    __tablename__ = "group_gifts"
    __table_args__ = (
        CheckConstraint(
            "current_amount >= 0 AND current_amount <= target_amount",
            name="ck_group_gifts_amount_bounds",
        ),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    organizer_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("accounts.id"), nullable=False)
    recipient_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("accounts.id"), nullable=False)
    item_id: Mapped[str] = mapped_column(String(64), ForeignKey("gift_items.id"), nullable=False)
    target_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    current_amount: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    deadline: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="open", index=True)
    group_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    gift_transaction_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class GroupGiftContribution(Base):
    """One contributor's accepted pledge to a group gift."""

    __tablename__ = "group_gift_contributions"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    group_gift_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("group_gifts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    contributor_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("accounts.id"), nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class GiftTransaction(Base):
    """A single gift transfer. Immutable once status leaves ``pending``."""

    __tablename__ = "gift_transactions"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    sender_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("accounts.id"), nullable=False, index=True)
    recipient_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("accounts.id"), nullable=False, index=True
    )
    item_id: Mapped[str] = mapped_column(String(64), ForeignKey("gift_items.id"), nullable=False)
    amount_charged: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending", index=True)
    is_anonymous: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    funding_source: Mapped[str] = mapped_column(String(16), nullable=False, default="balance")
    group_gift_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("group_gifts.id"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class InventoryItem(Base):
    """An item owned by a user (granted by gifts)."""

    __tablename__ = "user_inventory"
    __table_args__ = (
        UniqueConstraint("user_id", "item_id", name="uq_user_inventory_user_item"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    item_id: Mapped[str] = mapped_column(String(64), ForeignKey("gift_items.id"), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    acquired_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class WeeklyBonusClaim(Base):
    """One weekly bonus claim per user per ISO week."""

    __tablename__ = "weekly_bonus_claims"
    __table_args__ = (
        UniqueConstraint("user_id", "week_iso", name="uq_weekly_bonus_claims_user_week"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    week_iso: Mapped[str] = mapped_column(String(8), nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    claimed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# Daily challenges
# ---------------------------------------------------------------------------


class DailyChallenge(Base):
    """One user's objective for one UTC calendar day."""

    __tablename__ = "daily_challenges"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "challenge_day", "challenge_type", name="uq_daily_challenges_user_day_type"
        ),
        CheckConstraint(
            "current_progress >= 0 AND current_progress <= target_value",
            name="ck_daily_challenges_progress_bounds",
        ),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    challenge_day: Mapped[date] = mapped_column(Date, nullable=False)
    challenge_type: Mapped[str] = mapped_column(String(32), nullable=False)
    target_value: Mapped[int] = mapped_column(Integer, nullable=False)
    current_progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    xp_reward: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    coin_reward: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# Infrastructure: notification outbox, idempotency
# ---------------------------------------------------------------------------


class NotificationOutbox(Base):
    """Pending notification events, written in the same transaction as the economic change."""

    __tablename__ = "notification_outbox"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    dispatched_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class IdempotencyRecord(Base):
    """Stored result of a mutating request, keyed by caller-supplied idempotency key."""

    __tablename__ = "idempotency_records"
    __table_args__ = (
        UniqueConstraint("operation", "user_id", "key", name="uq_idempotency_records_scope"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    operation: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    key: Mapped[str] = mapped_column(String(128), nullable=False)
    response: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
