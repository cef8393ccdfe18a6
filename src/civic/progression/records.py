"""Typed records exchanged between the progression core and its stores."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from civic.progression.schemas import Step


@dataclass
class UserRecord:
    id: int
    first_name: str = ""
    last_name: str = ""
    email: str | None = None
    level: int = 1
    experience: int = 0

    def brief(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
        }


@dataclass
class CityRecord:
    id: int
    name: str
    latitude: float | None = None
    longitude: float | None = None


@dataclass
class OrganizationTypeRecord:
    id: int
    name: str


@dataclass
class CategoryRecord:
    id: int
    name: str


@dataclass
class CategoryRelation:
    """A category row tagged with the quest that owns the association."""

    quest_id: int
    id: int
    name: str


@dataclass
class QuestRecord:
    id: int
    title: str
    owner_id: int
    city_id: int | None
    status: str = "active"
    description: str | None = None
    experience_reward: int = 0
    organization_type_id: int | None = None
    achievement_id: int | None = None
    latitude: float | None = None
    longitude: float | None = None
    address: str | None = None
    contacts: list[dict[str, Any]] | None = None
    cover_image: str | None = None
    gallery: list[str] | None = None
    steps: list[Step] | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    version: int = 1

    def steps_payload(self) -> list[dict[str, Any]] | None:
        if self.steps is None:
            return None
        return [step.model_dump(mode="json", exclude_none=True) for step in self.steps]

    def summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "status": self.status,
            "experience_reward": self.experience_reward,
        }


@dataclass
class AchievementRecord:
    id: int
    title: str
    rarity: str
    description: str | None = None
    icon: str | None = None
    quest_id: int | None = None


@dataclass
class ParticipationRecord:
    id: int
    user_id: int
    quest_id: int
    status: str
    started_at: datetime
    completed_at: datetime | None = None


@dataclass
class GrantRecord:
    id: int
    user_id: int
    achievement_id: int
    earned_at: datetime


@dataclass
class QuestView:
    """A quest enriched with the entities it references."""

    quest: QuestRecord
    owner: UserRecord | None = None
    achievement: AchievementRecord | None = None
    city: CityRecord | None = None
    organization_type: OrganizationTypeRecord | None = None
    categories: list[CategoryRecord] = field(default_factory=list)

    @property
    def id(self) -> int:
        return self.quest.id

    def to_payload(self) -> dict[str, Any]:
        quest = self.quest
        return {
            **quest.summary(),
            "description": quest.description,
            "owner_id": quest.owner_id,
            "city_id": quest.city_id,
            "organization_type_id": quest.organization_type_id,
            "achievement_id": quest.achievement_id,
            "steps": quest.steps_payload(),
            "categories": [{"id": c.id, "name": c.name} for c in self.categories],
        }


@dataclass
class UserQuestView:
    participation: ParticipationRecord
    quest: QuestView


@dataclass
class UserAchievementView:
    grant: GrantRecord
    achievement: AchievementRecord
