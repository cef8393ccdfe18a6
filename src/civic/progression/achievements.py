"""Achievement binding rules, grants, and orphan reconciliation.

Rarity/quest invariant: ``rarity == private`` if and only if ``quest_id``
references a live quest. Create rejects violations in both directions;
update additionally detaches the quest when rarity flips away from
private.
"""

from __future__ import annotations

import logging
from typing import Any

from civic.progression.errors import BadRequestError, ConflictError, NotFoundError
from civic.progression.records import AchievementRecord, GrantRecord, UserAchievementView
from civic.progression.schemas import AchievementCreate, AchievementUpdate, InlineAchievement, Rarity
from civic.progression.stores import AchievementStore, DirectoryStore, QuestStore

logger = logging.getLogger(__name__)


class AchievementBinder:
    """Enforces achievement invariants and idempotent grants."""

    def __init__(
        self,
        achievements: AchievementStore,
        quests: QuestStore,
        directory: DirectoryStore,
    ) -> None:
        self.achievements = achievements
        self.quests = quests
        self.directory = directory

    # --- Reads ---

    async def find_all(self) -> list[AchievementRecord]:
        return await self.achievements.list()

    async def find_one(self, achievement_id: int) -> AchievementRecord:
        achievement = await self.achievements.get(achievement_id)
        if achievement is None:
            raise NotFoundError("achievement_not_found", achievement_id=achievement_id)
        return achievement

    async def get_user_achievements(self, user_id: int) -> list[UserAchievementView]:
        if await self.directory.get_user(user_id) is None:
            raise NotFoundError("user_not_found", user_id=user_id)
        rows = await self.achievements.list_grants(user_id)
        return [UserAchievementView(grant=grant, achievement=ach) for grant, ach in rows]

    # --- Writes ---

    async def ensure_title_available(self, title: str, exclude_id: int | None = None) -> None:
        if await self.achievements.find_by_title(title, exclude_id=exclude_id) is not None:
            raise ConflictError("achievement_title_taken", title=title)

    async def _ensure_live_quest(self, quest_id: int) -> None:
        if await self.quests.get(quest_id) is None:
            raise NotFoundError("quest_not_found", quest_id=quest_id)

    async def create(self, data: AchievementCreate) -> AchievementRecord:
        await self.ensure_title_available(data.title)

        if data.rarity == Rarity.PRIVATE:
            if data.quest_id is None:
                raise BadRequestError("private_requires_quest")
            await self._ensure_live_quest(data.quest_id)
        elif data.quest_id is not None:
            raise BadRequestError("non_private_forbids_quest")

        achievement = await self.achievements.create({
            "title": data.title,
            "description": data.description,
            "icon": data.icon,
            "rarity": data.rarity.value,
            "quest_id": data.quest_id,
        })
        logger.info("Achievement created: %s (id=%d, rarity=%s)", achievement.title, achievement.id, achievement.rarity)
        return achievement

    async def update(self, achievement_id: int, patch: AchievementUpdate) -> AchievementRecord:
        current = await self.find_one(achievement_id)
        values: dict[str, Any] = patch.supplied()

        if "title" in values:
            await self.ensure_title_available(values["title"], exclude_id=achievement_id)

        final_rarity = patch.rarity if "rarity" in values else Rarity(current.rarity)

        if final_rarity == Rarity.PRIVATE:
            if "quest_id" in values:
                if values["quest_id"] is None:
                    raise BadRequestError("private_requires_quest")
                await self._ensure_live_quest(values["quest_id"])
            elif current.quest_id is None:
                raise BadRequestError("private_requires_quest")
        elif "rarity" in values:
            # Switching to a public rarity detaches any quest link, even one in the same patch.
            values["quest_id"] = None
        elif values.get("quest_id") is not None:
            raise BadRequestError("non_private_forbids_quest")

        if "rarity" in values:
            values["rarity"] = values["rarity"].value

        updated = await self.achievements.update(achievement_id, values)
        if updated is None:
            raise NotFoundError("achievement_not_found", achievement_id=achievement_id)
        return updated

    async def remove(self, achievement_id: int) -> AchievementRecord:
        removed = await self.achievements.soft_delete(achievement_id)
        if removed is None:
            raise NotFoundError("achievement_not_found", achievement_id=achievement_id)
        return removed

    async def assign_to_user(self, user_id: int, achievement_id: int) -> GrantRecord:
        if await self.directory.get_user(user_id) is None:
            raise NotFoundError("user_not_found", user_id=user_id)
        await self.find_one(achievement_id)
        if await self.achievements.find_grant(user_id, achievement_id) is not None:
            raise ConflictError("achievement_already_granted", user_id=user_id, achievement_id=achievement_id)
        return await self.achievements.grant(user_id, achievement_id)

    async def grant_if_missing(self, user_id: int, achievement_id: int) -> GrantRecord | None:
        """Grant unless already held. Safe to re-run after a partial failure."""
        if await self.achievements.get(achievement_id) is None:
            logger.warning("Bound achievement %d is missing, skipping grant", achievement_id)
            return None
        if await self.achievements.find_grant(user_id, achievement_id) is not None:
            return None
        return await self.achievements.grant(user_id, achievement_id)

    # --- Quest-bound achievements ---

    async def create_for_quest(self, data: InlineAchievement) -> AchievementRecord:
        """Phase one of the quest/achievement cycle: private, quest_id unset."""
        return await self.achievements.create({
            "title": data.title,
            "description": data.description,
            "icon": data.icon,
            "rarity": Rarity.PRIVATE.value,
            "quest_id": None,
        })

    async def bind_to_quest(self, achievement_id: int, quest_id: int) -> AchievementRecord | None:
        """Phase two: back-patch the quest id once the quest exists."""
        return await self.achievements.update(achievement_id, {"quest_id": quest_id})

    async def find_dangling(self) -> list[AchievementRecord]:
        """Private achievements whose quest link is unset or points at a deleted quest."""
        dangling = []
        for achievement in await self.achievements.list_private():
            if achievement.quest_id is None or await self.quests.get(achievement.quest_id) is None:
                dangling.append(achievement)
        return dangling

    async def reconcile_dangling(self) -> list[int]:
        """Soft-delete every dangling private achievement. Returns their ids."""
        removed = []
        for achievement in await self.find_dangling():
            await self.achievements.soft_delete(achievement.id)
            removed.append(achievement.id)
        if removed:
            logger.info("Reconciled %d dangling private achievements: %s", len(removed), removed)
        return removed
