"""Statistics endpoint."""

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from civic.dependencies import get_stores
from civic.progression.stores import Stores
from civic.redis_client import get_redis_or_none
from civic.statistics.service import get_quest_statistics

router = APIRouter(prefix="/api/v1", tags=["Statistics"])


class StatisticsResponse(BaseModel):
    users_count: int
    total_quests: int
    active_quests: int
    archived_quests: int
    completed_quests: int
    participations_in_progress: int
    participations_completed: int


@router.get("/statistics", response_model=StatisticsResponse)
async def statistics(stores: Stores = Depends(get_stores)):
    """Quest and participation counters (60s cached in Redis)."""
    return await get_quest_statistics(stores, get_redis_or_none())
