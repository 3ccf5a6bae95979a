"""Economy API endpoints: accounts, gifts, shop, group gifts, weekly bonus."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from loopeco.dependencies import get_current_user_id, get_engine, get_idempotency_key
from loopeco.economy.schemas import (
    AccountResponse,
    BalanceResponse,
    CatalogResponse,
    ContributeRequest,
    ContributeResponse,
    CreateGroupGiftRequest,
    GroupGiftResponse,
    InventoryResponse,
    LedgerResponse,
    PurchaseRequest,
    PurchaseResponse,
    ReceivedGiftsResponse,
    SendGiftRequest,
    SendGiftResponse,
    WeeklyBonusResponse,
)
from loopeco.engine import EconomyEngine

router = APIRouter(prefix="/api/v1", tags=["Economy"])


# ── Accounts ──


@router.post("/accounts", response_model=AccountResponse)
async def open_account(
    user_id: int = Depends(get_current_user_id),
    idempotency_key: str | None = Depends(get_idempotency_key),
    engine: EconomyEngine = Depends(get_engine),
):
    """Open the caller's account (no-op if it already exists)."""
    return await engine.open_account(user_id, idempotency_key)


@router.get("/accounts/me/balance", response_model=BalanceResponse)
async def get_balance(
    user_id: int = Depends(get_current_user_id),
    engine: EconomyEngine = Depends(get_engine),
):
    return await engine.get_balance(user_id)


@router.get("/accounts/me/ledger", response_model=LedgerResponse)
async def get_ledger(
    kind: str | None = Query(None, pattern="^(coins|xp)$"),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    user_id: int = Depends(get_current_user_id),
    engine: EconomyEngine = Depends(get_engine),
):
    """Paginated ledger history, most recent first."""
    return await engine.get_ledger(user_id, kind, page, per_page)


@router.post("/rewards/weekly-bonus", response_model=WeeklyBonusResponse)
async def claim_weekly_bonus(
    user_id: int = Depends(get_current_user_id),
    idempotency_key: str | None = Depends(get_idempotency_key),
    engine: EconomyEngine = Depends(get_engine),
):
    return await engine.claim_weekly_bonus(user_id, idempotency_key)


# ── Gifts ──


@router.get("/gifts/catalog", response_model=CatalogResponse)
async def list_catalog(engine: EconomyEngine = Depends(get_engine)):
    return await engine.list_catalog()


@router.post("/gifts", response_model=SendGiftResponse)
async def send_gift(
    body: SendGiftRequest,
    user_id: int = Depends(get_current_user_id),
    idempotency_key: str | None = Depends(get_idempotency_key),
    engine: EconomyEngine = Depends(get_engine),
):
    """Send a catalog item to another user, paid from the caller's balance."""
    return await engine.send_gift(
        user_id,
        body.recipient_id,
        body.item_id,
        message=body.message,
        is_anonymous=body.is_anonymous,
        idempotency_key=idempotency_key,
    )


@router.get("/gifts/received", response_model=ReceivedGiftsResponse)
async def list_received_gifts(
    user_id: int = Depends(get_current_user_id),
    engine: EconomyEngine = Depends(get_engine),
):
    return await engine.list_received_gifts(user_id)


@router.post("/shop/purchase", response_model=PurchaseResponse)
async def purchase_item(
    body: PurchaseRequest,
    user_id: int = Depends(get_current_user_id),
    idempotency_key: str | None = Depends(get_idempotency_key),
    engine: EconomyEngine = Depends(get_engine),
):
    """Buy a catalog item for the caller's own inventory."""
    return await engine.purchase_item(user_id, body.item_id, idempotency_key=idempotency_key)


@router.get("/inventory", response_model=InventoryResponse)
async def list_inventory(
    user_id: int = Depends(get_current_user_id),
    engine: EconomyEngine = Depends(get_engine),
):
    return await engine.list_inventory(user_id)


# ── Group gifts ──


@router.post("/group-gifts", response_model=GroupGiftResponse)
async def create_group_gift(
    body: CreateGroupGiftRequest,
    user_id: int = Depends(get_current_user_id),
    idempotency_key: str | None = Depends(get_idempotency_key),
    engine: EconomyEngine = Depends(get_engine),
):
    """Open a group gift campaign organized by the caller."""
    return await engine.create_group_gift(
        user_id,
        body.recipient_id,
        body.item_id,
        body.deadline,
        body.message,
        idempotency_key=idempotency_key,
    )


@router.get("/group-gifts/{group_gift_id}", response_model=GroupGiftResponse)
async def get_group_gift(
    group_gift_id: int,
    engine: EconomyEngine = Depends(get_engine),
):
    return await engine.get_group_gift(group_gift_id)


@router.post("/group-gifts/{group_gift_id}/contributions", response_model=ContributeResponse)
async def contribute(
    group_gift_id: int,
    body: ContributeRequest,
    user_id: int = Depends(get_current_user_id),
    idempotency_key: str | None = Depends(get_idempotency_key),
    engine: EconomyEngine = Depends(get_engine),
):
    """Contribute coins; any amount beyond the remaining target is refunded."""
    return await engine.contribute_to_group_gift(
        group_gift_id, user_id, body.amount, idempotency_key=idempotency_key
    )
