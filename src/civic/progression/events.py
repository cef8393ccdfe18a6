"""Domain events and their delivery.

The engine never publishes on its own: every operation returns its pending
events inside an ``Outcome`` and the caller hands them to
``dispatch_events`` once the primary mutation is committed. Delivery is
best-effort: a failing sink is logged and never undoes the mutation.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from dataclasses import asdict, dataclass, field
from typing import Any, ClassVar, Generic, Protocol, TypeVar

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class DomainEvent:
    name: ClassVar[str] = ""
    channel: ClassVar[str] = ""

    def payload(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class QuestCreated(DomainEvent):
    name: ClassVar[str] = "QuestCreated"
    channel: ClassVar[str] = "quest_created"

    quest_id: int
    quest: dict[str, Any]


@dataclass(frozen=True)
class UserJoined(DomainEvent):
    name: ClassVar[str] = "UserJoined"
    channel: ClassVar[str] = "user_joined"

    quest_id: int
    user_id: int
    user: dict[str, Any]


@dataclass(frozen=True)
class QuestCompleted(DomainEvent):
    name: ClassVar[str] = "QuestCompleted"
    channel: ClassVar[str] = "quest_completed"

    quest_id: int
    user_id: int
    quest: dict[str, Any]
    experience_awarded: int
    achievement_granted: int | None = None


@dataclass(frozen=True)
class RequirementUpdated(DomainEvent):
    name: ClassVar[str] = "RequirementUpdated"
    channel: ClassVar[str] = "requirement_updated"

    quest_id: int
    steps: list[dict[str, Any]]


@dataclass
class Outcome(Generic[T]):
    """Result of an engine operation plus the events it produced, in order."""

    value: T
    events: list[DomainEvent] = field(default_factory=list)


class EventSink(Protocol):
    async def emit(self, name: str, channel: str, payload: dict[str, Any]) -> None: ...


class RecordingEventSink:
    """Keeps emitted events in memory."""

    def __init__(self) -> None:
        self.emitted: list[tuple[str, dict[str, Any]]] = []

    async def emit(self, name: str, channel: str, payload: dict[str, Any]) -> None:
        self.emitted.append((name, payload))

    @property
    def names(self) -> list[str]:
        return [name for name, _ in self.emitted]


class RedisEventSink:
    """Publishes events to Redis pub/sub channels named ``<prefix><event channel>``."""

    def __init__(self, redis: aioredis.Redis, prefix: str = "pubsub:") -> None:
        self.redis = redis
        self.prefix = prefix

    async def emit(self, name: str, channel: str, payload: dict[str, Any]) -> None:
        await self.redis.publish(
            f"{self.prefix}{channel}",
            json.dumps({"event": name, "data": payload}, default=str),
        )


async def dispatch_events(sink: EventSink | None, events: Iterable[DomainEvent]) -> int:
    """Deliver events in order. Returns how many were delivered."""
    if sink is None:
        return 0
    delivered = 0
    for event in events:
        try:
            await sink.emit(event.name, event.channel, event.payload())
            delivered += 1
        except Exception:
            logger.warning("Failed to emit %s event", event.name, exc_info=True)
    return delivered
