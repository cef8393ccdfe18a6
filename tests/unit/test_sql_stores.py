"""SQL store unit tests: row mapping, optimistic locking, experience idempotency."""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import IntegrityError

from civic.db.models import Quest, User
from civic.gamification.xp_service import grant_experience
from civic.progression.errors import ConflictError
from civic.progression.schemas import Step
from civic.quests.repository import SqlDirectoryStore, SqlQuestStore, to_quest_record


def _quest_row(**overrides) -> Quest:
    values = {
        "id": 1,
        "title": "Feed the shelter",
        "owner_id": 1,
        "city_id": 2,
        "status": "active",
        "experience_reward": 50,
        "latitude": Decimal("55.7963000"),
        "longitude": None,
        "steps": [{"title": "S1", "requirement": {"current_value": 2, "target_value": 10}}],
        "version": 3,
    }
    values.update(overrides)
    return Quest(**values)


def _session(*scalars) -> MagicMock:
    """Session whose successive execute() results yield the given scalars."""
    db = MagicMock()
    results = []
    for value in scalars:
        result = MagicMock()
        result.scalar_one_or_none.return_value = value
        results.append(result)
    db.execute = AsyncMock(side_effect=results)
    db.flush = AsyncMock()
    return db


class TestToQuestRecord:
    def test_converts_numeric_and_steps(self):
        record = to_quest_record(_quest_row())
        assert record.latitude == pytest.approx(55.7963)
        assert record.longitude is None
        assert isinstance(record.steps[0], Step)
        assert record.steps[0].requirement.current_value == 2
        assert record.version == 3

    def test_null_steps(self):
        assert to_quest_record(_quest_row(steps=None)).steps is None


class TestQuestSave:
    @pytest.mark.asyncio
    async def test_stale_version_conflicts(self):
        row = _quest_row(version=4)
        store = SqlQuestStore(_session(row))
        stale = to_quest_record(_quest_row(version=3))

        with pytest.raises(ConflictError, match="modified concurrently"):
            await store.save(stale)

    @pytest.mark.asyncio
    async def test_missing_row_conflicts(self):
        store = SqlQuestStore(_session(None))
        with pytest.raises(ConflictError):
            await store.save(to_quest_record(_quest_row()))

    @pytest.mark.asyncio
    async def test_writes_back_columns(self):
        row = _quest_row()
        db = _session(row)
        store = SqlQuestStore(db)
        record = to_quest_record(_quest_row())
        record.title = "Feed every shelter"
        record.latitude = 10.5

        await store.save(record)

        assert row.title == "Feed every shelter"
        assert row.latitude == Decimal("10.5")
        assert row.steps == [{"title": "S1", "status": "pending", "progress": 0,
                              "requirement": {"current_value": 2, "target_value": 10}}]
        db.flush.assert_awaited_once()


class TestGrantExperience:
    """Test grant_experience idempotency."""

    @pytest.mark.asyncio
    async def test_first_credit(self):
        db = _session(None, None)
        credited = await grant_experience(db, 1, 50, "quest", "7", "quest:3")
        assert credited is True
        db.add.assert_called_once()
        assert db.add.call_args.args[0].idempotency_key == "quest:3"
        assert db.execute.await_count == 2  # lookup + increment

    @pytest.mark.asyncio
    async def test_existing_key_is_skipped(self):
        db = _session(42)
        credited = await grant_experience(db, 1, 50, "quest", "7", "quest:3")
        assert credited is False
        db.add.assert_not_called()
        assert db.execute.await_count == 1

    @pytest.mark.asyncio
    async def test_racing_insert_is_skipped(self):
        db = _session(None)
        db.flush.side_effect = IntegrityError("INSERT", {}, Exception("duplicate key"))
        credited = await grant_experience(db, 1, 50, "quest", "7", "quest:3")
        assert credited is False
        assert db.execute.await_count == 1


class TestBatchLookups:
    """Test get_many/get_users issue one IN query, or none for no ids."""

    @staticmethod
    def _rows_session(rows) -> MagicMock:
        result = MagicMock()
        result.scalars.return_value = rows
        db = MagicMock()
        db.execute = AsyncMock(return_value=result)
        return db

    @pytest.mark.asyncio
    async def test_quests_in_one_query(self):
        db = self._rows_session([_quest_row(id=1), _quest_row(id=2)])
        records = await SqlQuestStore(db).get_many([2, 1, 2])
        assert [r.id for r in records] == [1, 2]
        db.execute.assert_awaited_once()
        assert " IN " in str(db.execute.await_args.args[0])

    @pytest.mark.asyncio
    async def test_no_ids_skips_query(self):
        db = self._rows_session([])
        assert await SqlQuestStore(db).get_many([]) == []
        assert await SqlDirectoryStore(db).get_users([]) == []
        db.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_single_user_goes_through_batch(self):
        row = User(id=4, first_name="Ada", last_name="Volunteer", email=None, level=5, experience=10)
        db = self._rows_session([row])
        user = await SqlDirectoryStore(db).get_user(4)
        assert (user.id, user.level) == (4, 5)
        db.execute.assert_awaited_once()
