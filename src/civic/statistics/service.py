"""Quest and participation counters for the admin overview.

Results are cached in Redis with a 60-second TTL when a pool is available.
"""

from __future__ import annotations

import json
import logging

import redis.asyncio as aioredis

from civic.progression.schemas import ParticipationStatus, QuestStatus
from civic.progression.stores import Stores

logger = logging.getLogger(__name__)

STATISTICS_CACHE_KEY = "statistics:quests"
STATISTICS_CACHE_TTL = 60  # seconds


async def compute_quest_statistics(stores: Stores) -> dict[str, int]:
    quests = await stores.quests.count_by_status()
    participations = await stores.participations.count_by_status()
    return {
        "users_count": await stores.directory.count_users(),
        "total_quests": sum(quests.values()),
        "active_quests": quests.get(QuestStatus.ACTIVE.value, 0),
        "archived_quests": quests.get(QuestStatus.ARCHIVED.value, 0),
        "completed_quests": quests.get(QuestStatus.COMPLETED.value, 0),
        "participations_in_progress": participations.get(ParticipationStatus.IN_PROGRESS.value, 0),
        "participations_completed": participations.get(ParticipationStatus.COMPLETED.value, 0),
    }


async def get_quest_statistics(stores: Stores, redis: aioredis.Redis | None = None) -> dict[str, int]:
    """Counts of live quests by status and participations by state.

    A cache failure is logged and the counters are computed from the stores.
    """
    if redis is not None:
        try:
            cached = await redis.get(STATISTICS_CACHE_KEY)
            if cached:
                return json.loads(cached)
        except aioredis.RedisError:
            logger.warning("Statistics cache read failed", exc_info=True)

    stats = await compute_quest_statistics(stores)

    if redis is not None:
        try:
            await redis.setex(STATISTICS_CACHE_KEY, STATISTICS_CACHE_TTL, json.dumps(stats))
        except aioredis.RedisError:
            logger.warning("Statistics cache write failed", exc_info=True)
    return stats
