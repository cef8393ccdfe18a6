"""Storage contracts consumed by the progression core.

The core never talks to a database directly: it receives these
collaborators at construction time. ``civic.quests.repository`` implements
them over SQLAlchemy, ``civic.progression.memory`` in process.

All ``get``/``find`` operations only ever return live (non-deleted) rows.
"""

from __future__ import annotations

from collections.abc import Iterable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from civic.progression.records import (
    AchievementRecord,
    CategoryRecord,
    CategoryRelation,
    CityRecord,
    GrantRecord,
    OrganizationTypeRecord,
    ParticipationRecord,
    QuestRecord,
    UserRecord,
)


class QuestStore(Protocol):
    async def get(self, quest_id: int) -> QuestRecord | None: ...

    async def get_many(self, quest_ids: Iterable[int]) -> list[QuestRecord]: ...

    async def list(
        self,
        status: str | None = None,
        city_id: int | None = None,
        category_id: int | None = None,
    ) -> list[QuestRecord]: ...

    async def create(self, values: dict[str, Any]) -> QuestRecord: ...

    async def save(self, quest: QuestRecord) -> QuestRecord:
        """Persist every field of ``quest``.

        Raises ConflictError when the stored version no longer matches
        ``quest.version`` (another writer got there first).
        """
        ...

    async def soft_delete(self, quest_id: int) -> QuestRecord | None: ...

    async def count_by_status(self) -> dict[str, int]: ...


class ParticipationStore(Protocol):
    async def find(self, user_id: int, quest_id: int) -> ParticipationRecord | None: ...

    async def create(self, user_id: int, quest_id: int, status: str) -> ParticipationRecord:
        """Insert a participation row. Raises ConflictError on a duplicate pair."""
        ...

    async def update(
        self,
        participation_id: int,
        status: str,
        completed_at: datetime | None = None,
    ) -> ParticipationRecord | None: ...

    async def delete(self, participation_id: int) -> ParticipationRecord | None: ...

    async def list_for_user(self, user_id: int) -> list[ParticipationRecord]: ...

    async def count_by_status(self) -> dict[str, int]: ...


class AchievementStore(Protocol):
    async def get(self, achievement_id: int) -> AchievementRecord | None: ...

    async def get_many(self, achievement_ids: Iterable[int]) -> list[AchievementRecord]: ...

    async def find_by_title(self, title: str, exclude_id: int | None = None) -> AchievementRecord | None: ...

    async def list(self) -> list[AchievementRecord]: ...

    async def list_private(self) -> list[AchievementRecord]: ...

    async def create(self, values: dict[str, Any]) -> AchievementRecord: ...

    async def update(self, achievement_id: int, values: dict[str, Any]) -> AchievementRecord | None: ...

    async def soft_delete(self, achievement_id: int) -> AchievementRecord | None: ...

    async def find_grant(self, user_id: int, achievement_id: int) -> GrantRecord | None: ...

    async def grant(self, user_id: int, achievement_id: int) -> GrantRecord:
        """Insert a grant row. Raises ConflictError on a duplicate pair."""
        ...

    async def list_grants(self, user_id: int) -> list[tuple[GrantRecord, AchievementRecord]]: ...


class CategoryStore(Protocol):
    async def get(self, category_id: int) -> CategoryRecord | None: ...

    async def existing_ids(self, category_ids: Iterable[int]) -> set[int]: ...

    async def has_relation(self, quest_id: int, category_id: int) -> bool: ...

    async def add_relations(self, quest_id: int, category_ids: Iterable[int]) -> None: ...

    async def remove_relation(self, quest_id: int, category_id: int) -> bool: ...

    async def remove_all(self, quest_id: int) -> None: ...

    async def list_for_quests(self, quest_ids: Iterable[int]) -> list[CategoryRelation]: ...


class DirectoryStore(Protocol):
    """Read access to users and the reference tables quests point at."""

    async def get_user(self, user_id: int) -> UserRecord | None: ...

    async def get_city(self, city_id: int) -> CityRecord | None: ...

    async def get_organization_type(self, organization_type_id: int) -> OrganizationTypeRecord | None: ...

    # Batch variants skip unknown ids; callers index the result by id.
    async def get_users(self, user_ids: Iterable[int]) -> list[UserRecord]: ...

    async def get_cities(self, city_ids: Iterable[int]) -> list[CityRecord]: ...

    async def get_organization_types(self, organization_type_ids: Iterable[int]) -> list[OrganizationTypeRecord]: ...

    async def count_users(self) -> int: ...


class RewardLedger(Protocol):
    async def credit(
        self,
        user_id: int,
        amount: int,
        source: str,
        source_id: str,
        idempotency_key: str,
    ) -> bool:
        """Add ``amount`` experience. Returns False if the key was already used."""
        ...


class UnitOfWork(Protocol):
    def atomic(self) -> AbstractAsyncContextManager[None]:
        """All writes inside the block become visible together or not at all."""
        ...


@dataclass
class Stores:
    """Bundle of collaborators handed to the progression services."""

    quests: QuestStore
    participations: ParticipationStore
    achievements: AchievementStore
    categories: CategoryStore
    directory: DirectoryStore
    ledger: RewardLedger
    uow: UnitOfWork
