"""Batch lookups across many quests.

Listing N quests costs one query per relation, not N: rows come back in a
single batch and are grouped or indexed here.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Sequence
from typing import Protocol, TypeVar

from civic.progression.records import CategoryRecord, CategoryRelation, QuestView
from civic.progression.stores import CategoryStore


class _Owned(Protocol):
    quest_id: int


class _Identified(Protocol):
    id: int


R = TypeVar("R", bound=_Owned)
T = TypeVar("T", bound=_Identified)


def group_by_owner(rows: Iterable[R]) -> dict[int, list[R]]:
    """Group tagged rows by the id of the quest that owns them."""
    grouped: dict[int, list[R]] = defaultdict(list)
    for row in rows:
        grouped[row.quest_id].append(row)
    return dict(grouped)


def index_by_id(rows: Iterable[T]) -> dict[int, T]:
    return {row.id: row for row in rows}


def categories_by_quest(relations: Iterable[CategoryRelation]) -> dict[int, list[CategoryRecord]]:
    return {
        quest_id: [CategoryRecord(id=rel.id, name=rel.name) for rel in rels]
        for quest_id, rels in group_by_owner(relations).items()
    }


async def attach_categories(categories: CategoryStore, views: Sequence[QuestView]) -> list[QuestView]:
    """Fill ``categories`` on every view using a single batch lookup."""
    if not views:
        return []
    relations = await categories.list_for_quests([view.id for view in views])
    grouped = categories_by_quest(relations)
    for view in views:
        view.categories = grouped.get(view.id, [])
    return list(views)
