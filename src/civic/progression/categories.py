"""Quest <-> category association management."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from civic.progression.errors import ConflictError, NotFoundError
from civic.progression.records import CategoryRecord
from civic.progression.stores import CategoryStore, QuestStore

logger = logging.getLogger(__name__)


class CategoryTagging:
    """Adds and removes category tags on quests, checking both sides exist."""

    def __init__(self, quests: QuestStore, categories: CategoryStore) -> None:
        self.quests = quests
        self.categories = categories

    async def ensure_exist(self, category_ids: Sequence[int]) -> None:
        """Raise NotFoundError unless every id references a live category."""
        if not category_ids:
            return
        found = await self.categories.existing_ids(category_ids)
        missing = sorted(set(category_ids) - found)
        if missing:
            raise NotFoundError("categories_not_found", missing=missing)

    async def _ensure_quest(self, quest_id: int) -> None:
        if await self.quests.get(quest_id) is None:
            raise NotFoundError("quest_not_found", quest_id=quest_id)

    async def add(self, quest_id: int, category_id: int) -> None:
        await self._ensure_quest(quest_id)
        if await self.categories.get(category_id) is None:
            raise NotFoundError("category_not_found", category_id=category_id)
        if await self.categories.has_relation(quest_id, category_id):
            raise ConflictError("category_relation_exists", quest_id=quest_id, category_id=category_id)
        await self.categories.add_relations(quest_id, [category_id])

    async def add_many(self, quest_id: int, category_ids: Sequence[int]) -> None:
        """Attach several categories. Nothing is written if any pair already exists."""
        await self._ensure_quest(quest_id)
        unique_ids = list(dict.fromkeys(category_ids))
        await self.ensure_exist(unique_ids)
        for cid in unique_ids:
            if await self.categories.has_relation(quest_id, cid):
                raise ConflictError("category_relation_exists", quest_id=quest_id, category_id=cid)
        if unique_ids:
            await self.categories.add_relations(quest_id, unique_ids)

    async def remove(self, quest_id: int, category_id: int) -> None:
        await self._ensure_quest(quest_id)
        if not await self.categories.remove_relation(quest_id, category_id):
            raise NotFoundError("category_relation_not_found", quest_id=quest_id, category_id=category_id)

    async def remove_all(self, quest_id: int) -> None:
        await self.categories.remove_all(quest_id)

    async def replace(self, quest_id: int, category_ids: Sequence[int]) -> None:
        """Swap the full tag set. An empty list clears all tags."""
        unique_ids = list(dict.fromkeys(category_ids))
        await self.ensure_exist(unique_ids)
        await self.categories.remove_all(quest_id)
        if unique_ids:
            await self.categories.add_relations(quest_id, unique_ids)
        logger.debug("Quest %d categories replaced: %s", quest_id, unique_ids)

    async def list_for_quest(self, quest_id: int) -> list[CategoryRecord]:
        relations = await self.categories.list_for_quests([quest_id])
        return [CategoryRecord(id=rel.id, name=rel.name) for rel in relations]
