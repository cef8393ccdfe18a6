"""Shared FastAPI dependencies."""

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from civic.config import Settings, get_settings
from civic.database import get_session as _get_session
from civic.progression.engine import ProgressionEngine
from civic.progression.events import EventSink, RedisEventSink
from civic.progression.stores import Stores
from civic.quests.repository import build_sql_stores
from civic.redis_client import get_redis_or_none

get_db = _get_session


async def get_actor_id(x_user_id: int = Header(..., alias="X-User-Id", gt=0)) -> int:  # noqa: B008
    """Acting user id, supplied by the upstream gateway."""
    return x_user_id


async def get_stores(db: AsyncSession = Depends(get_db)) -> Stores:  # noqa: B008
    return build_sql_stores(db)


async def get_engine(
    stores: Stores = Depends(get_stores),  # noqa: B008
    settings: Settings = Depends(get_settings),  # noqa: B008
) -> ProgressionEngine:
    return ProgressionEngine(
        stores,
        min_creator_level=settings.quest_min_creator_level,
        gallery_max=settings.quest_gallery_max,
    )


async def get_event_sink(settings: Settings = Depends(get_settings)) -> EventSink | None:  # noqa: B008
    """Redis sink when events are enabled and the pool is up, otherwise None."""
    if not settings.events_enabled:
        return None
    redis = get_redis_or_none()
    if redis is None:
        return None
    return RedisEventSink(redis, prefix=settings.events_channel_prefix)
