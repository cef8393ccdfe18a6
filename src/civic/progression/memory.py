"""In-process implementation of the progression stores.

Backs the test suite and local tooling. It enforces the same uniqueness
guarantees as the database schema (one participation per user/quest, one
grant per user/achievement, unique ledger keys, quest version checks) so
the engine behaves identically on either backend.
"""

from __future__ import annotations

import copy
import itertools
from collections import Counter
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any

from civic.progression.errors import ConflictError
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
from civic.progression.stores import Stores


@dataclass
class MemoryDatabase:
    """All tables as plain dicts; ``deleted_*`` sets mark soft-deleted rows."""

    users: dict[int, UserRecord] = field(default_factory=dict)
    cities: dict[int, CityRecord] = field(default_factory=dict)
    organization_types: dict[int, OrganizationTypeRecord] = field(default_factory=dict)
    categories: dict[int, CategoryRecord] = field(default_factory=dict)
    quests: dict[int, QuestRecord] = field(default_factory=dict)
    quest_categories: list[tuple[int, int]] = field(default_factory=list)
    participations: dict[int, ParticipationRecord] = field(default_factory=dict)
    achievements: dict[int, AchievementRecord] = field(default_factory=dict)
    grants: dict[int, GrantRecord] = field(default_factory=dict)
    ledger: dict[str, tuple[int, int]] = field(default_factory=dict)
    deleted_users: set[int] = field(default_factory=set)
    deleted_quests: set[int] = field(default_factory=set)
    deleted_achievements: set[int] = field(default_factory=set)
    deleted_categories: set[int] = field(default_factory=set)
    _ids: dict[str, itertools.count] = field(default_factory=dict, repr=False)

    def next_id(self, table: str) -> int:
        counter = self._ids.setdefault(table, itertools.count(1))
        return next(counter)

    # --- Seeding helpers ---

    def add_user(self, level: int = 1, experience: int = 0, **kwargs: Any) -> UserRecord:
        user = UserRecord(id=self.next_id("users"), level=level, experience=experience, **kwargs)
        self.users[user.id] = user
        return user

    def add_city(self, name: str = "City", latitude: float | None = None, longitude: float | None = None) -> CityRecord:
        city = CityRecord(id=self.next_id("cities"), name=name, latitude=latitude, longitude=longitude)
        self.cities[city.id] = city
        return city

    def add_organization_type(self, name: str = "Shelter") -> OrganizationTypeRecord:
        org_type = OrganizationTypeRecord(id=self.next_id("organization_types"), name=name)
        self.organization_types[org_type.id] = org_type
        return org_type

    def add_category(self, name: str = "Category") -> CategoryRecord:
        category = CategoryRecord(id=self.next_id("categories"), name=name)
        self.categories[category.id] = category
        return category

    def snapshot(self) -> dict[str, Any]:
        return {
            name: copy.deepcopy(getattr(self, name))
            for name in self.__dataclass_fields__
            if name != "_ids"
        }

    def restore(self, state: dict[str, Any]) -> None:
        for name, value in state.items():
            setattr(self, name, value)


class MemoryQuestStore:
    def __init__(self, db: MemoryDatabase) -> None:
        self.db = db

    def _live(self, quest_id: int) -> bool:
        return quest_id in self.db.quests and quest_id not in self.db.deleted_quests

    async def get(self, quest_id: int) -> QuestRecord | None:
        if not self._live(quest_id):
            return None
        return copy.deepcopy(self.db.quests[quest_id])

    async def get_many(self, quest_ids: Iterable[int]) -> list[QuestRecord]:
        return [copy.deepcopy(self.db.quests[qid]) for qid in sorted(set(quest_ids)) if self._live(qid)]

    async def list(
        self,
        status: str | None = None,
        city_id: int | None = None,
        category_id: int | None = None,
    ) -> list[QuestRecord]:
        tagged = {qid for qid, cid in self.db.quest_categories if cid == category_id}
        result = []
        for quest_id in sorted(self.db.quests):
            quest = self.db.quests[quest_id]
            if not self._live(quest_id):
                continue
            if status is not None and quest.status != status:
                continue
            if city_id is not None and quest.city_id != city_id:
                continue
            if category_id is not None and quest_id not in tagged:
                continue
            result.append(copy.deepcopy(quest))
        return result

    async def create(self, values: dict[str, Any]) -> QuestRecord:
        quest = QuestRecord(id=self.db.next_id("quests"), **copy.deepcopy(values))
        self.db.quests[quest.id] = quest
        return copy.deepcopy(quest)

    async def save(self, quest: QuestRecord) -> QuestRecord:
        stored = self.db.quests.get(quest.id)
        if stored is None or stored.version != quest.version:
            raise ConflictError("quest_modified_concurrently", quest_id=quest.id)
        saved = replace(copy.deepcopy(quest), version=quest.version + 1)
        self.db.quests[quest.id] = saved
        return copy.deepcopy(saved)

    async def soft_delete(self, quest_id: int) -> QuestRecord | None:
        if not self._live(quest_id):
            return None
        self.db.deleted_quests.add(quest_id)
        return copy.deepcopy(self.db.quests[quest_id])

    async def count_by_status(self) -> dict[str, int]:
        return dict(Counter(q.status for qid, q in self.db.quests.items() if self._live(qid)))


class MemoryParticipationStore:
    def __init__(self, db: MemoryDatabase) -> None:
        self.db = db

    async def find(self, user_id: int, quest_id: int) -> ParticipationRecord | None:
        for row in self.db.participations.values():
            if row.user_id == user_id and row.quest_id == quest_id:
                return replace(row)
        return None

    async def create(self, user_id: int, quest_id: int, status: str) -> ParticipationRecord:
        if await self.find(user_id, quest_id) is not None:
            raise ConflictError("already_joined", user_id=user_id, quest_id=quest_id)
        row = ParticipationRecord(
            id=self.db.next_id("participations"),
            user_id=user_id,
            quest_id=quest_id,
            status=status,
            started_at=datetime.now(timezone.utc),
        )
        self.db.participations[row.id] = row
        return replace(row)

    async def update(
        self,
        participation_id: int,
        status: str,
        completed_at: datetime | None = None,
    ) -> ParticipationRecord | None:
        row = self.db.participations.get(participation_id)
        if row is None:
            return None
        row.status = status
        row.completed_at = completed_at
        return replace(row)

    async def delete(self, participation_id: int) -> ParticipationRecord | None:
        return self.db.participations.pop(participation_id, None)

    async def list_for_user(self, user_id: int) -> list[ParticipationRecord]:
        return [replace(row) for row in self.db.participations.values() if row.user_id == user_id]

    async def count_by_status(self) -> dict[str, int]:
        return dict(Counter(row.status for row in self.db.participations.values()))


class MemoryAchievementStore:
    def __init__(self, db: MemoryDatabase) -> None:
        self.db = db

    def _live(self) -> list[AchievementRecord]:
        return [
            a for aid, a in sorted(self.db.achievements.items())
            if aid not in self.db.deleted_achievements
        ]

    async def get(self, achievement_id: int) -> AchievementRecord | None:
        if achievement_id in self.db.deleted_achievements:
            return None
        row = self.db.achievements.get(achievement_id)
        return replace(row) if row else None

    async def get_many(self, achievement_ids: Iterable[int]) -> list[AchievementRecord]:
        wanted = set(achievement_ids)
        return [replace(row) for row in self._live() if row.id in wanted]

    async def find_by_title(self, title: str, exclude_id: int | None = None) -> AchievementRecord | None:
        for row in self._live():
            if row.title == title and row.id != exclude_id:
                return replace(row)
        return None

    async def list(self) -> list[AchievementRecord]:
        return [replace(row) for row in self._live()]

    async def list_private(self) -> list[AchievementRecord]:
        return [replace(row) for row in self._live() if row.rarity == "private"]

    async def create(self, values: dict[str, Any]) -> AchievementRecord:
        row = AchievementRecord(id=self.db.next_id("achievements"), **values)
        self.db.achievements[row.id] = row
        return replace(row)

    async def update(self, achievement_id: int, values: dict[str, Any]) -> AchievementRecord | None:
        row = await self.get(achievement_id)
        if row is None:
            return None
        updated = replace(row, **values)
        self.db.achievements[achievement_id] = updated
        return replace(updated)

    async def soft_delete(self, achievement_id: int) -> AchievementRecord | None:
        row = await self.get(achievement_id)
        if row is None:
            return None
        self.db.deleted_achievements.add(achievement_id)
        return row

    async def find_grant(self, user_id: int, achievement_id: int) -> GrantRecord | None:
        for row in self.db.grants.values():
            if row.user_id == user_id and row.achievement_id == achievement_id:
                return replace(row)
        return None

    async def grant(self, user_id: int, achievement_id: int) -> GrantRecord:
        if await self.find_grant(user_id, achievement_id) is not None:
            raise ConflictError("achievement_already_granted", user_id=user_id, achievement_id=achievement_id)
        row = GrantRecord(
            id=self.db.next_id("grants"),
            user_id=user_id,
            achievement_id=achievement_id,
            earned_at=datetime.now(timezone.utc),
        )
        self.db.grants[row.id] = row
        return replace(row)

    async def list_grants(self, user_id: int) -> list[tuple[GrantRecord, AchievementRecord]]:
        rows = []
        for grant in self.db.grants.values():
            if grant.user_id != user_id:
                continue
            achievement = await self.get(grant.achievement_id)
            if achievement is not None:
                rows.append((replace(grant), achievement))
        return rows


class MemoryCategoryStore:
    def __init__(self, db: MemoryDatabase) -> None:
        self.db = db

    async def get(self, category_id: int) -> CategoryRecord | None:
        if category_id in self.db.deleted_categories:
            return None
        row = self.db.categories.get(category_id)
        return replace(row) if row else None

    async def existing_ids(self, category_ids: Iterable[int]) -> set[int]:
        return {
            cid for cid in category_ids
            if cid in self.db.categories and cid not in self.db.deleted_categories
        }

    async def has_relation(self, quest_id: int, category_id: int) -> bool:
        return (quest_id, category_id) in self.db.quest_categories

    async def add_relations(self, quest_id: int, category_ids: Iterable[int]) -> None:
        for category_id in category_ids:
            pair = (quest_id, category_id)
            if pair in self.db.quest_categories:
                raise ConflictError("category_relation_exists", quest_id=quest_id, category_id=category_id)
            self.db.quest_categories.append(pair)

    async def remove_relation(self, quest_id: int, category_id: int) -> bool:
        pair = (quest_id, category_id)
        if pair not in self.db.quest_categories:
            return False
        self.db.quest_categories.remove(pair)
        return True

    async def remove_all(self, quest_id: int) -> None:
        self.db.quest_categories = [p for p in self.db.quest_categories if p[0] != quest_id]

    async def list_for_quests(self, quest_ids: Iterable[int]) -> list[CategoryRelation]:
        wanted = set(quest_ids)
        return [
            CategoryRelation(quest_id=qid, id=cid, name=self.db.categories[cid].name)
            for qid, cid in self.db.quest_categories
            if qid in wanted and cid in self.db.categories and cid not in self.db.deleted_categories
        ]


class MemoryDirectoryStore:
    def __init__(self, db: MemoryDatabase) -> None:
        self.db = db

    async def get_user(self, user_id: int) -> UserRecord | None:
        if user_id in self.db.deleted_users:
            return None
        row = self.db.users.get(user_id)
        return replace(row) if row else None

    async def get_city(self, city_id: int) -> CityRecord | None:
        row = self.db.cities.get(city_id)
        return replace(row) if row else None

    async def get_organization_type(self, organization_type_id: int) -> OrganizationTypeRecord | None:
        row = self.db.organization_types.get(organization_type_id)
        return replace(row) if row else None

    async def get_users(self, user_ids: Iterable[int]) -> list[UserRecord]:
        return [
            replace(self.db.users[uid]) for uid in sorted(set(user_ids))
            if uid in self.db.users and uid not in self.db.deleted_users
        ]

    async def get_cities(self, city_ids: Iterable[int]) -> list[CityRecord]:
        return [replace(self.db.cities[cid]) for cid in sorted(set(city_ids)) if cid in self.db.cities]

    async def get_organization_types(self, organization_type_ids: Iterable[int]) -> list[OrganizationTypeRecord]:
        types = self.db.organization_types
        return [replace(types[tid]) for tid in sorted(set(organization_type_ids)) if tid in types]

    async def count_users(self) -> int:
        return len(set(self.db.users) - self.db.deleted_users)


class MemoryRewardLedger:
    def __init__(self, db: MemoryDatabase) -> None:
        self.db = db

    async def credit(
        self,
        user_id: int,
        amount: int,
        source: str,
        source_id: str,
        idempotency_key: str,
    ) -> bool:
        if idempotency_key in self.db.ledger:
            return False
        self.db.ledger[idempotency_key] = (user_id, amount)
        self.db.users[user_id].experience += amount
        return True


class MemoryUnitOfWork:
    """Snapshot on entry, restore on error."""

    def __init__(self, db: MemoryDatabase) -> None:
        self.db = db

    @asynccontextmanager
    async def atomic(self) -> AsyncIterator[None]:
        state = self.db.snapshot()
        try:
            yield
        except BaseException:
            self.db.restore(state)
            raise


def build_memory_stores(db: MemoryDatabase | None = None) -> Stores:
    db = db if db is not None else MemoryDatabase()
    return Stores(
        quests=MemoryQuestStore(db),
        participations=MemoryParticipationStore(db),
        achievements=MemoryAchievementStore(db),
        categories=MemoryCategoryStore(db),
        directory=MemoryDirectoryStore(db),
        ledger=MemoryRewardLedger(db),
        uow=MemoryUnitOfWork(db),
    )
