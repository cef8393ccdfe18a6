"""Pydantic input models for quest and achievement operations.

Patch models distinguish "absent" from "explicit null" through
``model_fields_set``: a field that was never supplied is left untouched,
an explicit ``None`` clears a nullable column.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, FiniteFloat, model_validator

# NaN and infinities are rejected at the boundary.
Number = Union[int, FiniteFloat]


class QuestStatus(str, Enum):
    """Quest lifecycle status."""

    ACTIVE = "active"
    ARCHIVED = "archived"
    COMPLETED = "completed"


class ParticipationStatus(str, Enum):
    """Per-user participation status."""

    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class Rarity(str, Enum):
    """Achievement rarity. PRIVATE binds the achievement to one quest."""

    COMMON = "common"
    EPIC = "epic"
    RARE = "rare"
    LEGENDARY = "legendary"
    PRIVATE = "private"


# --- Steps ---


class Requirement(BaseModel):
    current_value: Number | None = None
    target_value: Number | None = None

    @property
    def current(self) -> Number:
        return self.current_value if self.current_value is not None else 0


class Step(BaseModel):
    model_config = ConfigDict(extra="allow")

    title: str
    description: str | None = None
    status: str = "pending"
    progress: Number = 0
    requirement: Requirement | None = None
    deadline: str | None = None


class Contact(BaseModel):
    name: str
    value: str


# --- Quests ---


class InlineAchievement(BaseModel):
    """Achievement created together with a quest (always private)."""

    title: str = Field(max_length=255)
    description: str | None = None
    icon: str | None = Field(default=None, max_length=255)


class QuestCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: str | None = None
    status: QuestStatus = QuestStatus.ACTIVE
    experience_reward: int = Field(default=0, ge=0)
    city_id: int
    organization_type_id: int | None = None
    category_ids: list[int] | None = None
    latitude: FiniteFloat | None = None
    longitude: FiniteFloat | None = None
    address: str | None = None
    contacts: list[Contact] | None = None
    cover_image: str | None = None
    gallery: list[str] | None = None
    steps: list[Step] | None = None
    achievement: InlineAchievement | None = None


_NON_NULLABLE_QUEST_FIELDS = ("title", "status", "experience_reward", "city_id", "category_ids")


class QuestUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    status: QuestStatus | None = None
    experience_reward: int | None = Field(default=None, ge=0)
    achievement_id: int | None = None
    city_id: int | None = None
    organization_type_id: int | None = None
    category_ids: list[int] | None = None
    latitude: FiniteFloat | None = None
    longitude: FiniteFloat | None = None
    address: str | None = None
    contacts: list[Contact] | None = None
    cover_image: str | None = None
    gallery: list[str] | None = None
    steps: list[Step] | None = None

    @model_validator(mode="after")
    def _reject_null_for_required(self) -> QuestUpdate:
        for name in _NON_NULLABLE_QUEST_FIELDS:
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self

    def supplied(self) -> dict[str, Any]:
        """Return only the fields that were present in the patch."""
        return {name: getattr(self, name) for name in self.model_fields_set}


class RequirementUpdate(BaseModel):
    current_value: Number


# --- Achievements ---


class AchievementCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: str | None = None
    icon: str | None = Field(default=None, max_length=255)
    rarity: Rarity = Rarity.COMMON
    quest_id: int | None = Field(default=None, gt=0)


class AchievementUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    icon: str | None = Field(default=None, max_length=255)
    rarity: Rarity | None = None
    quest_id: int | None = Field(default=None, gt=0)

    @model_validator(mode="after")
    def _reject_null_for_required(self) -> AchievementUpdate:
        for name in ("title", "rarity"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self

    def supplied(self) -> dict[str, Any]:
        """Return only the fields that were present in the patch."""
        return {name: getattr(self, name) for name in self.model_fields_set}
