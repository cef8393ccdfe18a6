"""Pydantic response models for quest endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel

from civic.progression.records import ParticipationRecord, QuestView, UserQuestView


class UserBrief(BaseModel):
    id: int
    first_name: str
    last_name: str
    email: str | None = None


class NamedRef(BaseModel):
    id: int
    name: str


class CityResponse(NamedRef):
    latitude: float | None = None
    longitude: float | None = None


class QuestAchievementResponse(BaseModel):
    id: int
    title: str
    rarity: str
    description: str | None = None
    icon: str | None = None


class QuestResponse(BaseModel):
    id: int
    title: str
    description: str | None = None
    status: str
    experience_reward: int
    owner_id: int
    city_id: int | None = None
    organization_type_id: int | None = None
    achievement_id: int | None = None
    latitude: float | None = None
    longitude: float | None = None
    address: str | None = None
    contacts: list[dict[str, Any]] | None = None
    cover_image: str | None = None
    gallery: list[str] | None = None
    steps: list[dict[str, Any]] | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    owner: UserBrief | None = None
    city: CityResponse | None = None
    organization_type: NamedRef | None = None
    achievement: QuestAchievementResponse | None = None
    categories: list[NamedRef] = []

    @classmethod
    def from_view(cls, view: QuestView) -> QuestResponse:
        quest = view.quest
        return cls(
            id=quest.id,
            title=quest.title,
            description=quest.description,
            status=quest.status,
            experience_reward=quest.experience_reward,
            owner_id=quest.owner_id,
            city_id=quest.city_id,
            organization_type_id=quest.organization_type_id,
            achievement_id=quest.achievement_id,
            latitude=quest.latitude,
            longitude=quest.longitude,
            address=quest.address,
            contacts=quest.contacts,
            cover_image=quest.cover_image,
            gallery=quest.gallery,
            steps=quest.steps_payload(),
            created_at=quest.created_at,
            updated_at=quest.updated_at,
            owner=UserBrief(**view.owner.brief()) if view.owner else None,
            city=CityResponse(**vars(view.city)) if view.city else None,
            organization_type=NamedRef(**vars(view.organization_type)) if view.organization_type else None,
            achievement=QuestAchievementResponse(**{
                k: v for k, v in vars(view.achievement).items() if k != "quest_id"
            }) if view.achievement else None,
            categories=[NamedRef(id=c.id, name=c.name) for c in view.categories],
        )


class QuestListResponse(BaseModel):
    quests: list[QuestResponse]
    total: int


class ParticipationResponse(BaseModel):
    id: int
    user_id: int
    quest_id: int
    status: str
    started_at: datetime
    completed_at: datetime | None = None

    @classmethod
    def from_record(cls, record: ParticipationRecord) -> ParticipationResponse:
        return cls(**vars(record))


class UserQuestResponse(BaseModel):
    participation: ParticipationResponse
    quest: QuestResponse

    @classmethod
    def from_view(cls, view: UserQuestView) -> UserQuestResponse:
        return cls(
            participation=ParticipationResponse.from_record(view.participation),
            quest=QuestResponse.from_view(view.quest),
        )


class UserQuestsResponse(BaseModel):
    quests: list[UserQuestResponse]
    total: int


class CategoryLinkRequest(BaseModel):
    category_id: int


class QuestDeletedResponse(BaseModel):
    id: int
    status: str = "deleted"
