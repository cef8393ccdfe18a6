"""SQLAlchemy implementations of the quest-side progression stores."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from civic.achievements.repository import SqlAchievementStore
from civic.db.models import (
    RECORD_ACTIVE,
    RECORD_DELETED,
    Category,
    City,
    OrganizationType,
    Quest,
    QuestCategory,
    User,
    UserQuest,
)
from civic.gamification.xp_service import SqlRewardLedger
from civic.progression.errors import ConflictError
from civic.progression.records import (
    CategoryRecord,
    CategoryRelation,
    CityRecord,
    OrganizationTypeRecord,
    ParticipationRecord,
    QuestRecord,
    UserRecord,
)
from civic.progression.schemas import Step
from civic.progression.stores import Stores

logger = logging.getLogger(__name__)

# Columns copied verbatim between QuestRecord and the Quest row on save.
_QUEST_COLUMNS = (
    "title",
    "description",
    "status",
    "experience_reward",
    "achievement_id",
    "owner_id",
    "city_id",
    "organization_type_id",
    "address",
    "contacts",
    "cover_image",
    "gallery",
    "created_at",
    "updated_at",
)


def _as_float(value: Decimal | None) -> float | None:
    return float(value) if value is not None else None


def _dump_steps(steps: list[Step] | None) -> list[dict[str, Any]] | None:
    if steps is None:
        return None
    return [step.model_dump(mode="json", exclude_none=True) for step in steps]


def to_quest_record(row: Quest) -> QuestRecord:
    return QuestRecord(
        id=row.id,
        title=row.title,
        owner_id=row.owner_id,
        city_id=row.city_id,
        status=row.status,
        description=row.description,
        experience_reward=row.experience_reward,
        organization_type_id=row.organization_type_id,
        achievement_id=row.achievement_id,
        latitude=_as_float(row.latitude),
        longitude=_as_float(row.longitude),
        address=row.address,
        contacts=row.contacts,
        cover_image=row.cover_image,
        gallery=row.gallery,
        steps=[Step.model_validate(s) for s in row.steps] if row.steps is not None else None,
        created_at=row.created_at,
        updated_at=row.updated_at,
        version=row.version,
    )


def to_participation_record(row: UserQuest) -> ParticipationRecord:
    return ParticipationRecord(
        id=row.id,
        user_id=row.user_id,
        quest_id=row.quest_id,
        status=row.status,
        started_at=row.started_at,
        completed_at=row.completed_at,
    )


class SqlQuestStore:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def _get_row(self, quest_id: int) -> Quest | None:
        result = await self.db.execute(
            select(Quest).where(Quest.id == quest_id, Quest.record_status == RECORD_ACTIVE)
        )
        return result.scalar_one_or_none()

    async def get(self, quest_id: int) -> QuestRecord | None:
        row = await self._get_row(quest_id)
        return to_quest_record(row) if row else None

    async def get_many(self, quest_ids: Iterable[int]) -> list[QuestRecord]:
        ids = list(set(quest_ids))
        if not ids:
            return []
        result = await self.db.execute(
            select(Quest).where(Quest.id.in_(ids), Quest.record_status == RECORD_ACTIVE).order_by(Quest.id)
        )
        return [to_quest_record(row) for row in result.scalars()]

    async def list(
        self,
        status: str | None = None,
        city_id: int | None = None,
        category_id: int | None = None,
    ) -> list[QuestRecord]:
        stmt = select(Quest).where(Quest.record_status == RECORD_ACTIVE)
        if status is not None:
            stmt = stmt.where(Quest.status == status)
        if city_id is not None:
            stmt = stmt.where(Quest.city_id == city_id)
        if category_id is not None:
            stmt = stmt.join(QuestCategory, QuestCategory.quest_id == Quest.id).where(
                QuestCategory.category_id == category_id
            )
        result = await self.db.execute(stmt.order_by(Quest.id))
        return [to_quest_record(row) for row in result.scalars()]

    async def create(self, values: dict[str, Any]) -> QuestRecord:
        row = Quest(**{**values, "steps": _dump_steps(values.get("steps"))})
        self.db.add(row)
        await self.db.flush()
        return to_quest_record(row)

    async def save(self, quest: QuestRecord) -> QuestRecord:
        row = await self._get_row(quest.id)
        if row is None or row.version != quest.version:
            raise ConflictError("quest_modified_concurrently", quest_id=quest.id)

        for column in _QUEST_COLUMNS:
            setattr(row, column, getattr(quest, column))
        row.latitude = Decimal(str(quest.latitude)) if quest.latitude is not None else None
        row.longitude = Decimal(str(quest.longitude)) if quest.longitude is not None else None
        row.steps = _dump_steps(quest.steps)

        try:
            await self.db.flush()
        except StaleDataError as e:
            raise ConflictError("quest_modified_concurrently", quest_id=quest.id) from e
        return to_quest_record(row)

    async def soft_delete(self, quest_id: int) -> QuestRecord | None:
        row = await self._get_row(quest_id)
        if row is None:
            return None
        row.record_status = RECORD_DELETED
        row.updated_at = datetime.now(timezone.utc)
        await self.db.flush()
        return to_quest_record(row)

    async def count_by_status(self) -> dict[str, int]:
        result = await self.db.execute(
            select(Quest.status, func.count())
            .where(Quest.record_status == RECORD_ACTIVE)
            .group_by(Quest.status)
        )
        return {status: count for status, count in result.all()}


class SqlParticipationStore:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def _get_row(self, participation_id: int) -> UserQuest | None:
        return await self.db.get(UserQuest, participation_id)

    async def find(self, user_id: int, quest_id: int) -> ParticipationRecord | None:
        result = await self.db.execute(
            select(UserQuest).where(UserQuest.user_id == user_id, UserQuest.quest_id == quest_id)
        )
        row = result.scalar_one_or_none()
        return to_participation_record(row) if row else None

    async def create(self, user_id: int, quest_id: int, status: str) -> ParticipationRecord:
        row = UserQuest(
            user_id=user_id,
            quest_id=quest_id,
            status=status,
            started_at=datetime.now(timezone.utc),
        )
        try:
            async with self.db.begin_nested():
                self.db.add(row)
                await self.db.flush()
        except IntegrityError as e:
            # Race condition: a concurrent join landed first
            raise ConflictError("already_joined", user_id=user_id, quest_id=quest_id) from e
        return to_participation_record(row)

    async def update(
        self,
        participation_id: int,
        status: str,
        completed_at: datetime | None = None,
    ) -> ParticipationRecord | None:
        row = await self._get_row(participation_id)
        if row is None:
            return None
        row.status = status
        row.completed_at = completed_at
        await self.db.flush()
        return to_participation_record(row)

    async def delete(self, participation_id: int) -> ParticipationRecord | None:
        row = await self._get_row(participation_id)
        if row is None:
            return None
        record = to_participation_record(row)
        await self.db.delete(row)
        await self.db.flush()
        return record

    async def list_for_user(self, user_id: int) -> list[ParticipationRecord]:
        result = await self.db.execute(
            select(UserQuest).where(UserQuest.user_id == user_id).order_by(UserQuest.started_at)
        )
        return [to_participation_record(row) for row in result.scalars()]

    async def count_by_status(self) -> dict[str, int]:
        result = await self.db.execute(
            select(UserQuest.status, func.count()).group_by(UserQuest.status)
        )
        return {status: count for status, count in result.all()}


class SqlCategoryStore:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get(self, category_id: int) -> CategoryRecord | None:
        result = await self.db.execute(
            select(Category).where(Category.id == category_id, Category.record_status == RECORD_ACTIVE)
        )
        row = result.scalar_one_or_none()
        return CategoryRecord(id=row.id, name=row.name) if row else None

    async def existing_ids(self, category_ids: Iterable[int]) -> set[int]:
        ids = list(category_ids)
        if not ids:
            return set()
        result = await self.db.execute(
            select(Category.id).where(Category.id.in_(ids), Category.record_status == RECORD_ACTIVE)
        )
        return set(result.scalars())

    async def has_relation(self, quest_id: int, category_id: int) -> bool:
        result = await self.db.execute(
            select(QuestCategory.id).where(
                QuestCategory.quest_id == quest_id,
                QuestCategory.category_id == category_id,
            )
        )
        return result.scalar_one_or_none() is not None

    async def add_relations(self, quest_id: int, category_ids: Iterable[int]) -> None:
        ids = list(category_ids)
        try:
            async with self.db.begin_nested():
                self.db.add_all([QuestCategory(quest_id=quest_id, category_id=cid) for cid in ids])
                await self.db.flush()
        except IntegrityError as e:
            raise ConflictError("category_relation_exists", quest_id=quest_id, category_id=ids) from e

    async def remove_relation(self, quest_id: int, category_id: int) -> bool:
        result = await self.db.execute(
            delete(QuestCategory).where(
                QuestCategory.quest_id == quest_id,
                QuestCategory.category_id == category_id,
            )
        )
        return result.rowcount > 0

    async def remove_all(self, quest_id: int) -> None:
        await self.db.execute(delete(QuestCategory).where(QuestCategory.quest_id == quest_id))

    async def list_for_quests(self, quest_ids: Iterable[int]) -> list[CategoryRelation]:
        ids = list(quest_ids)
        if not ids:
            return []
        result = await self.db.execute(
            select(QuestCategory.quest_id, Category.id, Category.name)
            .join(Category, Category.id == QuestCategory.category_id)
            .where(QuestCategory.quest_id.in_(ids), Category.record_status == RECORD_ACTIVE)
            .order_by(QuestCategory.id)
        )
        return [CategoryRelation(quest_id=qid, id=cid, name=name) for qid, cid, name in result.all()]


def to_user_record(row: User) -> UserRecord:
    return UserRecord(
        id=row.id,
        first_name=row.first_name,
        last_name=row.last_name,
        email=row.email,
        level=row.level,
        experience=row.experience,
    )


def to_city_record(row: City) -> CityRecord:
    return CityRecord(
        id=row.id,
        name=row.name,
        latitude=_as_float(row.latitude),
        longitude=_as_float(row.longitude),
    )


class SqlDirectoryStore:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get_user(self, user_id: int) -> UserRecord | None:
        users = await self.get_users([user_id])
        return users[0] if users else None

    async def get_users(self, user_ids: Iterable[int]) -> list[UserRecord]:
        ids = list(set(user_ids))
        if not ids:
            return []
        result = await self.db.execute(
            select(User).where(User.id.in_(ids), User.record_status == RECORD_ACTIVE)
        )
        return [to_user_record(row) for row in result.scalars()]

    async def get_city(self, city_id: int) -> CityRecord | None:
        cities = await self.get_cities([city_id])
        return cities[0] if cities else None

    async def get_cities(self, city_ids: Iterable[int]) -> list[CityRecord]:
        ids = list(set(city_ids))
        if not ids:
            return []
        result = await self.db.execute(
            select(City).where(City.id.in_(ids), City.record_status == RECORD_ACTIVE)
        )
        return [to_city_record(row) for row in result.scalars()]

    async def get_organization_type(self, organization_type_id: int) -> OrganizationTypeRecord | None:
        org_types = await self.get_organization_types([organization_type_id])
        return org_types[0] if org_types else None

    async def get_organization_types(self, organization_type_ids: Iterable[int]) -> list[OrganizationTypeRecord]:
        ids = list(set(organization_type_ids))
        if not ids:
            return []
        result = await self.db.execute(
            select(OrganizationType).where(
                OrganizationType.id.in_(ids),
                OrganizationType.record_status == RECORD_ACTIVE,
            )
        )
        return [OrganizationTypeRecord(id=row.id, name=row.name) for row in result.scalars()]

    async def count_users(self) -> int:
        result = await self.db.execute(
            select(func.count()).select_from(User).where(User.record_status == RECORD_ACTIVE)
        )
        return int(result.scalar_one())


class SqlUnitOfWork:
    """Wraps a block of writes in a SAVEPOINT; the request commits the outer transaction."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    @asynccontextmanager
    async def atomic(self) -> AsyncIterator[None]:
        async with self.db.begin_nested():
            yield


def build_sql_stores(db: AsyncSession) -> Stores:
    return Stores(
        quests=SqlQuestStore(db),
        participations=SqlParticipationStore(db),
        achievements=SqlAchievementStore(db),
        categories=SqlCategoryStore(db),
        directory=SqlDirectoryStore(db),
        ledger=SqlRewardLedger(db),
        uow=SqlUnitOfWork(db),
    )
