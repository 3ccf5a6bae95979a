"""Shared FastAPI dependencies."""

from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from loopeco.config import get_settings
from loopeco.database import get_session
from loopeco.engine import EconomyEngine

get_db = get_session


async def get_current_user_id(x_user_id: str | None = Header(default=None)) -> int:
    """Caller identity, set by the upstream auth gateway after verifying the session."""
    if x_user_id is None:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    try:
        user_id = int(x_user_id)
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid X-User-Id header") from None
    if user_id <= 0:
        raise HTTPException(status_code=401, detail="Invalid X-User-Id header")
    return user_id


async def get_idempotency_key(idempotency_key: str | None = Header(default=None)) -> str | None:
    """Optional ``Idempotency-Key`` header for mutating requests."""
    if idempotency_key is not None and not 1 <= len(idempotency_key) <= 128:
        raise HTTPException(status_code=422, detail="Idempotency-Key must be 1-128 characters")
    return idempotency_key


async def get_engine(db: AsyncSession = Depends(get_db)) -> EconomyEngine:  # noqa: B008
    return EconomyEngine(db, get_settings())
