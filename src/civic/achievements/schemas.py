"""Pydantic response models for achievement endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from civic.progression.records import AchievementRecord, GrantRecord, UserAchievementView


class AchievementResponse(BaseModel):
    id: int
    title: str
    rarity: str
    description: str | None = None
    icon: str | None = None
    quest_id: int | None = None

    @classmethod
    def from_record(cls, record: AchievementRecord) -> AchievementResponse:
        return cls(**vars(record))


class AchievementListResponse(BaseModel):
    achievements: list[AchievementResponse]
    total: int


class AssignAchievementRequest(BaseModel):
    user_id: int


class GrantResponse(BaseModel):
    id: int
    user_id: int
    achievement_id: int
    earned_at: datetime

    @classmethod
    def from_record(cls, record: GrantRecord) -> GrantResponse:
        return cls(**vars(record))


class UserAchievementResponse(BaseModel):
    achievement: AchievementResponse
    earned_at: datetime

    @classmethod
    def from_view(cls, view: UserAchievementView) -> UserAchievementResponse:
        return cls(
            achievement=AchievementResponse.from_record(view.achievement),
            earned_at=view.grant.earned_at,
        )


class UserAchievementsResponse(BaseModel):
    achievements: list[UserAchievementResponse]
    total: int


class ReconcileResponse(BaseModel):
    removed: list[int]
