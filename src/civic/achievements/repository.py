"""Achievement persistence with duplicate-grant prevention."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from collections.abc import Iterable
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from civic.db.models import RECORD_ACTIVE, RECORD_DELETED, Achievement, UserAchievement
from civic.progression.errors import ConflictError
from civic.progression.records import AchievementRecord, GrantRecord

logger = logging.getLogger(__name__)


def to_achievement_record(row: Achievement) -> AchievementRecord:
    return AchievementRecord(
        id=row.id,
        title=row.title,
        rarity=row.rarity,
        description=row.description,
        icon=row.icon,
        quest_id=row.quest_id,
    )


def to_grant_record(row: UserAchievement) -> GrantRecord:
    return GrantRecord(
        id=row.id,
        user_id=row.user_id,
        achievement_id=row.achievement_id,
        earned_at=row.earned_at,
    )


class SqlAchievementStore:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def _get_row(self, achievement_id: int) -> Achievement | None:
        result = await self.db.execute(
            select(Achievement).where(
                Achievement.id == achievement_id,
                Achievement.record_status == RECORD_ACTIVE,
            )
        )
        return result.scalar_one_or_none()

    async def get(self, achievement_id: int) -> AchievementRecord | None:
        row = await self._get_row(achievement_id)
        return to_achievement_record(row) if row else None

    async def get_many(self, achievement_ids: Iterable[int]) -> list[AchievementRecord]:
        ids = list(set(achievement_ids))
        if not ids:
            return []
        result = await self.db.execute(
            select(Achievement).where(
                Achievement.id.in_(ids),
                Achievement.record_status == RECORD_ACTIVE,
            )
        )
        return [to_achievement_record(row) for row in result.scalars()]

    async def find_by_title(self, title: str, exclude_id: int | None = None) -> AchievementRecord | None:
        stmt = select(Achievement).where(
            Achievement.title == title,
            Achievement.record_status == RECORD_ACTIVE,
        )
        if exclude_id is not None:
            stmt = stmt.where(Achievement.id != exclude_id)
        result = await self.db.execute(stmt.limit(1))
        row = result.scalar_one_or_none()
        return to_achievement_record(row) if row else None

    async def list(self) -> list[AchievementRecord]:
        result = await self.db.execute(
            select(Achievement)
            .where(Achievement.record_status == RECORD_ACTIVE)
            .order_by(Achievement.id)
        )
        return [to_achievement_record(row) for row in result.scalars()]

    async def list_private(self) -> list[AchievementRecord]:
        result = await self.db.execute(
            select(Achievement)
            .where(
                Achievement.record_status == RECORD_ACTIVE,
                Achievement.rarity == "private",
            )
            .order_by(Achievement.id)
        )
        return [to_achievement_record(row) for row in result.scalars()]

    async def create(self, values: dict[str, Any]) -> AchievementRecord:
        now = datetime.now(timezone.utc)
        row = Achievement(**values, created_at=now, updated_at=now)
        self.db.add(row)
        await self.db.flush()
        return to_achievement_record(row)

    async def update(self, achievement_id: int, values: dict[str, Any]) -> AchievementRecord | None:
        row = await self._get_row(achievement_id)
        if row is None:
            return None
        for key, value in values.items():
            setattr(row, key, value)
        row.updated_at = datetime.now(timezone.utc)
        await self.db.flush()
        return to_achievement_record(row)

    async def soft_delete(self, achievement_id: int) -> AchievementRecord | None:
        row = await self._get_row(achievement_id)
        if row is None:
            return None
        row.record_status = RECORD_DELETED
        row.updated_at = datetime.now(timezone.utc)
        await self.db.flush()
        return to_achievement_record(row)

    async def find_grant(self, user_id: int, achievement_id: int) -> GrantRecord | None:
        result = await self.db.execute(
            select(UserAchievement).where(
                UserAchievement.user_id == user_id,
                UserAchievement.achievement_id == achievement_id,
            )
        )
        row = result.scalar_one_or_none()
        return to_grant_record(row) if row else None

    async def grant(self, user_id: int, achievement_id: int) -> GrantRecord:
        row = UserAchievement(
            user_id=user_id,
            achievement_id=achievement_id,
            earned_at=datetime.now(timezone.utc),
        )
        try:
            async with self.db.begin_nested():
                self.db.add(row)
                await self.db.flush()
        except IntegrityError as e:
            # Race condition: achievement already granted
            raise ConflictError(
                "achievement_already_granted", user_id=user_id, achievement_id=achievement_id,
            ) from e
        logger.info("Achievement %d granted to user %d", achievement_id, user_id)
        return to_grant_record(row)

    async def list_grants(self, user_id: int) -> list[tuple[GrantRecord, AchievementRecord]]:
        result = await self.db.execute(
            select(UserAchievement)
            .join(Achievement, Achievement.id == UserAchievement.achievement_id)
            .where(
                UserAchievement.user_id == user_id,
                Achievement.record_status == RECORD_ACTIVE,
            )
            .order_by(UserAchievement.earned_at.desc())
        )
        return [
            (to_grant_record(row), to_achievement_record(row.achievement))
            for row in result.unique().scalars()
        ]
