"""Category tagging and batch aggregation unit tests."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from civic.progression.aggregation import attach_categories, categories_by_quest, group_by_owner
from civic.progression.errors import ConflictError, NotFoundError
from civic.progression.records import CategoryRecord, CategoryRelation, QuestRecord, QuestView


@pytest_asyncio.fixture
async def quest_id(engine, world, quest_body):
    outcome = await engine.create_quest(quest_body(category_ids=[]), world.creator.id)
    return outcome.value.id


class TestCategoryTagging:
    """Test add/remove/replace on quest categories."""

    @pytest.mark.asyncio
    async def test_add_and_list(self, engine, world, quest_id):
        await engine.tagging.add(quest_id, world.food.id)
        assert [c.name for c in await engine.tagging.list_for_quest(quest_id)] == ["Food"]

    @pytest.mark.asyncio
    async def test_add_twice_conflicts(self, engine, world, quest_id):
        await engine.tagging.add(quest_id, world.food.id)
        with pytest.raises(ConflictError, match="already attached"):
            await engine.tagging.add(quest_id, world.food.id)

    @pytest.mark.asyncio
    async def test_add_requires_both_sides(self, engine, world, quest_id):
        with pytest.raises(NotFoundError, match="Category"):
            await engine.tagging.add(quest_id, 404)
        with pytest.raises(NotFoundError, match="Quest"):
            await engine.tagging.add(404, world.food.id)

    @pytest.mark.asyncio
    async def test_add_many_dedupes(self, engine, world, quest_id):
        await engine.tagging.add_many(quest_id, [world.food.id, world.animals.id, world.animals.id])
        assert [c.id for c in await engine.tagging.list_for_quest(quest_id)] == [world.food.id, world.animals.id]

    @pytest.mark.asyncio
    async def test_add_many_rejects_existing(self, engine, world, quest_id):
        await engine.tagging.add(quest_id, world.food.id)
        with pytest.raises(ConflictError, match="already attached"):
            await engine.tagging.add_many(quest_id, [world.animals.id, world.food.id])
        assert [c.id for c in await engine.tagging.list_for_quest(quest_id)] == [world.food.id]

    @pytest.mark.asyncio
    async def test_remove_missing_relation(self, engine, world, quest_id):
        with pytest.raises(NotFoundError, match="not attached"):
            await engine.tagging.remove(quest_id, world.food.id)

    @pytest.mark.asyncio
    async def test_remove(self, engine, world, quest_id):
        await engine.tagging.add(quest_id, world.food.id)
        await engine.tagging.remove(quest_id, world.food.id)
        assert await engine.tagging.list_for_quest(quest_id) == []

    @pytest.mark.asyncio
    async def test_replace(self, engine, world, quest_id):
        await engine.tagging.add(quest_id, world.food.id)
        await engine.tagging.replace(quest_id, [world.animals.id])
        assert [c.id for c in await engine.tagging.list_for_quest(quest_id)] == [world.animals.id]

        await engine.tagging.remove_all(quest_id)
        assert await engine.tagging.list_for_quest(quest_id) == []

    @pytest.mark.asyncio
    async def test_replace_validates_before_clearing(self, engine, world, quest_id):
        await engine.tagging.add(quest_id, world.food.id)
        with pytest.raises(NotFoundError):
            await engine.tagging.replace(quest_id, [404])
        assert [c.id for c in await engine.tagging.list_for_quest(quest_id)] == [world.food.id]

    @pytest.mark.asyncio
    async def test_deleted_category_hidden(self, engine, world, quest_id, memory_db):
        await engine.tagging.add(quest_id, world.food.id)
        memory_db.deleted_categories.add(world.food.id)
        assert await engine.tagging.list_for_quest(quest_id) == []
        with pytest.raises(NotFoundError):
            await engine.tagging.ensure_exist([world.food.id])


class TestAggregation:
    """Test grouping of batch-loaded rows."""

    def test_group_by_owner(self):
        rows = [
            CategoryRelation(quest_id=1, id=10, name="Food"),
            CategoryRelation(quest_id=2, id=11, name="Animals"),
            CategoryRelation(quest_id=1, id=11, name="Animals"),
        ]
        grouped = group_by_owner(rows)
        assert set(grouped) == {1, 2}
        assert [r.id for r in grouped[1]] == [10, 11]

    def test_categories_by_quest(self):
        grouped = categories_by_quest([CategoryRelation(quest_id=3, id=10, name="Food")])
        assert grouped == {3: [CategoryRecord(id=10, name="Food")]}

    @pytest.mark.asyncio
    async def test_attach_categories_single_lookup(self):
        store = AsyncMock()
        store.list_for_quests.return_value = [CategoryRelation(quest_id=1, id=10, name="Food")]
        views = [
            QuestView(quest=QuestRecord(id=1, title="A", owner_id=1, city_id=None)),
            QuestView(quest=QuestRecord(id=2, title="B", owner_id=1, city_id=None)),
        ]

        result = await attach_categories(store, views)

        store.list_for_quests.assert_awaited_once_with([1, 2])
        assert result[0].categories == [CategoryRecord(id=10, name="Food")]
        assert result[1].categories == []

    @pytest.mark.asyncio
    async def test_attach_categories_empty(self):
        store = AsyncMock()
        assert await attach_categories(store, []) == []
        store.list_for_quests.assert_not_awaited()
