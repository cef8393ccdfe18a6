"""Shared test fixtures.

Engine and API tests run on the in-process stores; the HTTP client swaps
the SQL-backed dependencies for them through ``dependency_overrides``.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from dataclasses import dataclass
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from civic.dependencies import get_db, get_event_sink, get_stores
from civic.main import create_app
from civic.progression.engine import ProgressionEngine
from civic.progression.events import RecordingEventSink
from civic.progression.memory import MemoryDatabase, build_memory_stores
from civic.progression.records import (
    CategoryRecord,
    CityRecord,
    OrganizationTypeRecord,
    UserRecord,
)
from civic.progression.schemas import QuestCreate
from civic.progression.stores import Stores


@dataclass
class World:
    """Seeded reference data shared by most tests."""

    creator: UserRecord
    player: UserRecord
    city: CityRecord
    org_type: OrganizationTypeRecord
    food: CategoryRecord
    animals: CategoryRecord


@pytest.fixture
def memory_db() -> MemoryDatabase:
    return MemoryDatabase()


@pytest.fixture
def stores(memory_db: MemoryDatabase) -> Stores:
    return build_memory_stores(memory_db)


@pytest.fixture
def engine(stores: Stores) -> ProgressionEngine:
    return ProgressionEngine(stores)


@pytest.fixture
def sink() -> RecordingEventSink:
    return RecordingEventSink()


@pytest.fixture
def world(memory_db: MemoryDatabase) -> World:
    return World(
        creator=memory_db.add_user(level=5, first_name="Ada", last_name="Volunteer", email="ada@example.org"),
        player=memory_db.add_user(level=1, first_name="Bo", last_name="Helper", email="bo@example.org"),
        city=memory_db.add_city("Kazan", latitude=55.7963, longitude=49.1088),
        org_type=memory_db.add_organization_type("Animal shelter"),
        food=memory_db.add_category("Food"),
        animals=memory_db.add_category("Animals"),
    )


@pytest.fixture
def quest_body(world: World):
    """Factory for a valid quest body in the seeded world."""

    def _make(**overrides) -> QuestCreate:
        data = {
            "title": "Feed the shelter",
            "description": "Collect food for the city shelter",
            "experience_reward": 50,
            "city_id": world.city.id,
            "organization_type_id": world.org_type.id,
            "category_ids": [world.food.id],
            "steps": [{"title": "S1", "requirement": {"current_value": 0, "target_value": 10}}],
        }
        data.update(overrides)
        return QuestCreate.model_validate(data)

    return _make


@pytest.fixture
def fake_session() -> MagicMock:
    """Stands in for AsyncSession; routers only commit through it."""
    session = MagicMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.execute = AsyncMock(return_value=MagicMock())
    return session


@pytest_asyncio.fixture
async def client(
    stores: Stores,
    sink: RecordingEventSink,
    fake_session: MagicMock,
) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client over the app, backed by the in-memory stores."""
    app = create_app()

    async def _db():
        yield fake_session

    app.dependency_overrides[get_db] = _db
    app.dependency_overrides[get_stores] = lambda: stores
    app.dependency_overrides[get_event_sink] = lambda: sink

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
