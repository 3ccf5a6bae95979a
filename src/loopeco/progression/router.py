"""Progression API endpoints: XP, levels, achievements, daily challenges."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from loopeco.dependencies import get_current_user_id, get_engine, get_idempotency_key
from loopeco.engine import EconomyEngine
from loopeco.progression.schemas import (
    AchievementsResponse,
    AdvanceChallengeRequest,
    AdvanceChallengeResponse,
    AwardXPRequest,
    ChallengesResponse,
    EvaluateResponse,
    LevelResponse,
    XPAwardResponse,
)

router = APIRouter(prefix="/api/v1", tags=["Progression"])


# ── XP & levels ──


@router.get("/progression/level", response_model=LevelResponse)
async def get_level(
    user_id: int = Depends(get_current_user_id),
    engine: EconomyEngine = Depends(get_engine),
):
    return await engine.get_level(user_id)


@router.post("/progression/xp", response_model=XPAwardResponse)
async def award_xp(
    body: AwardXPRequest,
    user_id: int = Depends(get_current_user_id),
    idempotency_key: str | None = Depends(get_idempotency_key),
    engine: EconomyEngine = Depends(get_engine),
):
    """Award XP for a platform action (called by trusted platform services)."""
    return await engine.award_xp(
        user_id, body.amount, body.action, body.metadata, idempotency_key=idempotency_key
    )


# ── Achievements ──


@router.get("/achievements", response_model=AchievementsResponse)
async def list_achievements(
    user_id: int = Depends(get_current_user_id),
    engine: EconomyEngine = Depends(get_engine),
):
    return await engine.list_achievements(user_id)


@router.post("/achievements/evaluate", response_model=EvaluateResponse)
async def evaluate_achievements(
    user_id: int = Depends(get_current_user_id),
    idempotency_key: str | None = Depends(get_idempotency_key),
    engine: EconomyEngine = Depends(get_engine),
):
    """Re-check every achievement for the caller."""
    return await engine.evaluate_achievements(user_id, idempotency_key)


# ── Daily challenges ──


@router.get("/challenges", response_model=ChallengesResponse)
async def list_open_challenges(
    user_id: int = Depends(get_current_user_id),
    engine: EconomyEngine = Depends(get_engine),
):
    return await engine.list_open_challenges(user_id)


@router.post("/challenges/generate", response_model=ChallengesResponse)
async def generate_daily_challenges(
    user_id: int = Depends(get_current_user_id),
    idempotency_key: str | None = Depends(get_idempotency_key),
    engine: EconomyEngine = Depends(get_engine),
):
    """Create today's challenges (safe to call repeatedly)."""
    return await engine.generate_daily_challenges(user_id, idempotency_key)


@router.post("/challenges/advance", response_model=AdvanceChallengeResponse)
async def advance_challenge(
    body: AdvanceChallengeRequest,
    user_id: int = Depends(get_current_user_id),
    idempotency_key: str | None = Depends(get_idempotency_key),
    engine: EconomyEngine = Depends(get_engine),
):
    return await engine.advance_challenge(
        user_id, body.challenge_type, body.increment, idempotency_key=idempotency_key
    )
