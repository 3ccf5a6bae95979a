"""Pydantic request/response models for economy endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


# --- Accounts & ledger ---


class AccountResponse(BaseModel):
    user_id: int
    balance: int
    xp_total: int
    created: bool = False


class BalanceResponse(BaseModel):
    user_id: int
    balance: int


class LedgerEntryResponse(BaseModel):
    id: int
    kind: str
    amount: int
    reason: str
    reference: str | None = None
    metadata: dict = {}
    balance_after: int | None = None
    created_at: datetime


class LedgerResponse(BaseModel):
    entries: list[LedgerEntryResponse]
    total: int
    page: int
    per_page: int


# --- Catalog & inventory ---


class GiftItemResponse(BaseModel):
    id: str
    name: str
    description: str
    category: str
    rarity: str
    coin_price: int
    cost: int
    grants_inventory: bool


class CatalogResponse(BaseModel):
    items: list[GiftItemResponse]


class InventoryItemResponse(BaseModel):
    item_id: str
    name: str
    category: str
    rarity: str
    is_active: bool
    acquired_at: datetime


class InventoryResponse(BaseModel):
    items: list[InventoryItemResponse]


# --- Gifts ---


class SendGiftRequest(BaseModel):
    recipient_id: int
    item_id: str = Field(..., min_length=1, max_length=64)
    message: str | None = Field(default=None, max_length=500)
    is_anonymous: bool = False


class GiftTransactionResponse(BaseModel):
    id: int
    sender_id: int | None
    recipient_id: int
    item_id: str
    amount_charged: int
    status: str
    is_anonymous: bool
    message: str | None = None
    funding_source: str
    group_gift_id: int | None = None
    created_at: datetime


class SendGiftResponse(BaseModel):
    gift: GiftTransactionResponse
    new_balance: int
    xp_awarded: int
    level: int
    leveled_up: bool
    achievements_unlocked: list[str] = []


class ReceivedGiftsResponse(BaseModel):
    gifts: list[GiftTransactionResponse]


# --- Group gifts ---


class CreateGroupGiftRequest(BaseModel):
    recipient_id: int
    item_id: str = Field(..., min_length=1, max_length=64)
    deadline: datetime
    message: str | None = Field(default=None, max_length=500)


class ContributeRequest(BaseModel):
    amount: int = Field(..., gt=0)


class ContributionResponse(BaseModel):
    contributor_id: int
    amount: int
    created_at: datetime


class GroupGiftResponse(BaseModel):
    id: int
    organizer_id: int
    recipient_id: int
    item_id: str
    target_amount: int
    current_amount: int
    deadline: datetime
    status: str
    group_message: str | None = None
    gift_transaction_id: int | None = None
    contributions: list[ContributionResponse] = []


class ContributeResponse(BaseModel):
    group_gift: GroupGiftResponse
    accepted: int
    refunded: int
    completed: bool
    new_balance: int


# --- Weekly bonus ---


class WeeklyBonusResponse(BaseModel):
    amount: int
    new_balance: int
    next_available: datetime


# --- Shop ---


class PurchaseRequest(BaseModel):
    item_id: str = Field(..., min_length=1, max_length=64)


class PurchaseResponse(BaseModel):
    item_id: str
    amount_charged: int
    new_balance: int
