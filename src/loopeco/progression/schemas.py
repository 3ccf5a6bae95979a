"""Pydantic request/response models for progression endpoints."""

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, Field


# --- XP ---


class AwardXPRequest(BaseModel):
    amount: int = Field(..., gt=0)
    action: str = Field(..., min_length=1, max_length=64)
    metadata: dict = {}


class LevelResponse(BaseModel):
    xp_total: int
    level: int
    xp_into_level: int
    xp_for_level: int
    next_level: int
    xp_to_next_level: int


class XPAwardResponse(BaseModel):
    xp_total: int
    level: int
    xp_into_level: int
    xp_for_level: int
    leveled_up: bool
    achievements_unlocked: list[str] = []


# --- Achievements ---


class AchievementResponse(BaseModel):
    id: str
    name: str
    description: str
    category: str
    xp_reward: int
    unlocked: bool = False
    unlocked_at: datetime | None = None


class AchievementsResponse(BaseModel):
    achievements: list[AchievementResponse]
    total_available: int
    total_unlocked: int


class EvaluateResponse(BaseModel):
    unlocked: list[str]


# --- Daily challenges ---


class ChallengeResponse(BaseModel):
    id: int
    challenge_type: str
    challenge_day: date
    target_value: int
    current_progress: int
    xp_reward: int
    coin_reward: int
    is_completed: bool
    completed_at: datetime | None = None
    expires_at: datetime


class ChallengesResponse(BaseModel):
    challenges: list[ChallengeResponse]


class AdvanceChallengeRequest(BaseModel):
    challenge_type: str = Field(..., min_length=1, max_length=32)
    increment: int = Field(default=1, gt=0)


class AdvanceChallengeResponse(BaseModel):
    completed: bool
    status: str
    challenge: ChallengeResponse | None = None
