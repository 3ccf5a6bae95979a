"""Balance ledger: atomic coin deltas with an append-only audit trail."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from loopeco.db.base import dialect_insert
from loopeco.db.models import Account, LedgerEntry
from loopeco.errors import AccountNotFound, InsufficientFunds, InvalidAmount

logger = logging.getLogger(__name__)

KIND_COINS = "coins"
KIND_XP = "xp"


async def get_account(db: AsyncSession, account_id: int) -> Account:
    """Fetch an account, raising AccountNotFound if it does not exist."""
    account = await db.get(Account, account_id, populate_existing=True)
    if account is None:
        raise AccountNotFound(account_id)
    return account


async def open_account(
    db: AsyncSession,
    user_id: int,
    starting_balance: int = 0,
) -> tuple[Account, bool]:
    """Create the account for a user if missing. Returns (account, created).

    The starting balance is credited through the ledger so that every coin in
    circulation has an audit record.
    """
    now = datetime.now(timezone.utc)
    stmt = (
        dialect_insert(db, Account)
        .values(id=user_id, balance=0, xp_total=0, created_at=now, updated_at=now)
        .on_conflict_do_nothing(index_elements=["id"])
        .returning(Account.id)
    )
    created = (await db.execute(stmt)).scalar_one_or_none() is not None

    if created and starting_balance > 0:
        await apply_delta(db, user_id, starting_balance, "welcome_bonus")

    if created:
        logger.info("Opened account %d (starting_balance=%d)", user_id, starting_balance)
    return await get_account(db, user_id), created


async def apply_delta(
    db: AsyncSession,
    account_id: int,
    amount: int,
    reason: str,
    metadata: dict[str, Any] | None = None,
    reference: str | None = None,
) -> int:
    """Apply a coin delta and ledger it. Returns the new balance.

    The change is a single conditional UPDATE: a debit only matches the row
    while ``balance + amount >= 0``, so two concurrent debits can never both
    succeed against funds that only cover one of them.
    """
    if amount == 0:
        raise InvalidAmount("Balance delta must be non-zero")

    now = datetime.now(timezone.utc)
    stmt = (
        update(Account)
        .where(Account.id == account_id, Account.balance + amount >= 0)
        .values(balance=Account.balance + amount, updated_at=now)
        .returning(Account.balance)
        .execution_options(synchronize_session=False)
    )
    new_balance = (await db.execute(stmt)).scalar_one_or_none()

    if new_balance is None:
        exists = await db.scalar(select(Account.id).where(Account.id == account_id))
        if exists is None:
            raise AccountNotFound(account_id)
        raise InsufficientFunds(account_id, -amount)

    db.add(LedgerEntry(
        account_id=account_id,
        kind=KIND_COINS,
        amount=amount,
        reason=reason,
        reference=reference,
        entry_metadata=metadata or {},
        balance_after=new_balance,
        created_at=now,
    ))
    await db.flush()
    return new_balance


async def get_balance(db: AsyncSession, account_id: int) -> int:
    """Current spendable balance."""
    balance = await db.scalar(select(Account.balance).where(Account.id == account_id))
    if balance is None:
        raise AccountNotFound(account_id)
    return balance


async def find_ledger_entry(
    db: AsyncSession,
    account_id: int,
    reference: str,
    kind: str = KIND_COINS,
) -> LedgerEntry | None:
    """Find the ledger entry written for a given reference (e.g. ``gift:42``)."""
    result = await db.execute(
        select(LedgerEntry)
        .where(
            LedgerEntry.account_id == account_id,
            LedgerEntry.reference == reference,
            LedgerEntry.kind == kind,
        )
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_ledger(
    db: AsyncSession,
    account_id: int,
    kind: str | None = None,
    page: int = 1,
    per_page: int = 20,
) -> tuple[list[LedgerEntry], int]:
    """Ledger history for an account (paginated, most recent first)."""
    filters = [LedgerEntry.account_id == account_id]
    if kind is not None:
        filters.append(LedgerEntry.kind == kind)

    total_result = await db.execute(
        select(func.count()).select_from(LedgerEntry).where(*filters)
    )
    total = total_result.scalar_one()

    result = await db.execute(
        select(LedgerEntry)
        .where(*filters)
        .order_by(LedgerEntry.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
    )
    return list(result.scalars().all()), total
