"""Quest API endpoints: lifecycle, participation, progress, and tagging."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from civic.dependencies import get_actor_id, get_db, get_engine, get_event_sink
from civic.progression.engine import ProgressionEngine
from civic.progression.errors import ProgressionError
from civic.progression.events import EventSink, Outcome, dispatch_events
from civic.progression.schemas import QuestCreate, QuestStatus, QuestUpdate, RequirementUpdate
from civic.quests.schemas import (
    CategoryLinkRequest,
    NamedRef,
    ParticipationResponse,
    QuestDeletedResponse,
    QuestListResponse,
    QuestResponse,
    UserQuestResponse,
    UserQuestsResponse,
)

router = APIRouter(prefix="/api/v1", tags=["Quests"])


def _http_error(e: ProgressionError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=str(e))


async def _commit(db: AsyncSession, sink: EventSink | None, outcome: Outcome) -> None:
    """Commit the request transaction, then hand its events to the sink."""
    await db.commit()
    await dispatch_events(sink, outcome.events)


# ── Quest lifecycle ──


@router.post("/quests", response_model=QuestResponse, status_code=201)
async def create_quest(
    body: QuestCreate,
    actor_id: int = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
    engine: ProgressionEngine = Depends(get_engine),
    sink: EventSink | None = Depends(get_event_sink),
):
    """Create a quest; the creator joins it automatically."""
    try:
        outcome = await engine.create_quest(body, actor_id)
    except ProgressionError as e:
        raise _http_error(e) from e
    await _commit(db, sink, outcome)
    return QuestResponse.from_view(outcome.value)


@router.get("/quests", response_model=QuestListResponse)
async def list_quests(
    status: QuestStatus | None = Query(None),
    city_id: int | None = Query(None),
    category_id: int | None = Query(None),
    engine: ProgressionEngine = Depends(get_engine),
):
    """List live quests, optionally filtered by status, city, or category."""
    views = await engine.find_by_status(status, city_id=city_id, category_id=category_id)
    return QuestListResponse(quests=[QuestResponse.from_view(v) for v in views], total=len(views))


@router.get("/quests/{quest_id}", response_model=QuestResponse)
async def get_quest(quest_id: int, engine: ProgressionEngine = Depends(get_engine)):
    try:
        view = await engine.find_one(quest_id)
    except ProgressionError as e:
        raise _http_error(e) from e
    return QuestResponse.from_view(view)


@router.patch("/quests/{quest_id}", response_model=QuestResponse)
async def update_quest(
    quest_id: int,
    body: QuestUpdate,
    db: AsyncSession = Depends(get_db),
    engine: ProgressionEngine = Depends(get_engine),
    sink: EventSink | None = Depends(get_event_sink),
):
    """Partial update. Omitted fields are untouched, explicit nulls clear."""
    try:
        outcome = await engine.update(quest_id, body)
    except ProgressionError as e:
        raise _http_error(e) from e
    await _commit(db, sink, outcome)
    return QuestResponse.from_view(outcome.value)


@router.delete("/quests/{quest_id}", response_model=QuestDeletedResponse)
async def delete_quest(
    quest_id: int,
    db: AsyncSession = Depends(get_db),
    engine: ProgressionEngine = Depends(get_engine),
):
    try:
        quest = await engine.remove(quest_id)
    except ProgressionError as e:
        raise _http_error(e) from e
    await db.commit()
    return QuestDeletedResponse(id=quest.id)


@router.post("/quests/{quest_id}/archive", response_model=QuestResponse)
async def archive_quest(
    quest_id: int,
    db: AsyncSession = Depends(get_db),
    engine: ProgressionEngine = Depends(get_engine),
):
    try:
        view = await engine.archive_quest(quest_id)
    except ProgressionError as e:
        raise _http_error(e) from e
    await db.commit()
    return QuestResponse.from_view(view)


@router.post("/quests/{quest_id}/unarchive", response_model=QuestResponse)
async def unarchive_quest(
    quest_id: int,
    db: AsyncSession = Depends(get_db),
    engine: ProgressionEngine = Depends(get_engine),
):
    try:
        view = await engine.unarchive_quest(quest_id)
    except ProgressionError as e:
        raise _http_error(e) from e
    await db.commit()
    return QuestResponse.from_view(view)


# ── Participation ──


@router.post("/quests/{quest_id}/join", response_model=ParticipationResponse, status_code=201)
async def join_quest(
    quest_id: int,
    actor_id: int = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
    engine: ProgressionEngine = Depends(get_engine),
    sink: EventSink | None = Depends(get_event_sink),
):
    try:
        outcome = await engine.join_quest(actor_id, quest_id)
    except ProgressionError as e:
        raise _http_error(e) from e
    await _commit(db, sink, outcome)
    return ParticipationResponse.from_record(outcome.value)


@router.post("/quests/{quest_id}/leave", response_model=ParticipationResponse)
async def leave_quest(
    quest_id: int,
    actor_id: int = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
    engine: ProgressionEngine = Depends(get_engine),
):
    """Leave a quest that is still in progress. Returns the removed participation."""
    try:
        participation = await engine.leave_quest(actor_id, quest_id)
    except ProgressionError as e:
        raise _http_error(e) from e
    await db.commit()
    return ParticipationResponse.from_record(participation)


@router.post("/quests/{quest_id}/complete", response_model=ParticipationResponse)
async def complete_quest(
    quest_id: int,
    actor_id: int = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
    engine: ProgressionEngine = Depends(get_engine),
    sink: EventSink | None = Depends(get_event_sink),
):
    try:
        outcome = await engine.complete_quest(actor_id, quest_id)
    except ProgressionError as e:
        raise _http_error(e) from e
    await _commit(db, sink, outcome)
    return ParticipationResponse.from_record(outcome.value)


# ── Requirement progress ──


@router.patch("/quests/{quest_id}/steps/{step_index}/requirement", response_model=QuestResponse)
async def update_requirement(
    quest_id: int,
    step_index: int,
    body: RequirementUpdate,
    db: AsyncSession = Depends(get_db),
    engine: ProgressionEngine = Depends(get_engine),
    sink: EventSink | None = Depends(get_event_sink),
):
    try:
        outcome = await engine.update_requirement_current_value(quest_id, step_index, body.current_value)
    except ProgressionError as e:
        raise _http_error(e) from e
    await _commit(db, sink, outcome)
    return QuestResponse.from_view(outcome.value)


# ── Categories ──


@router.get("/quests/{quest_id}/categories", response_model=list[NamedRef])
async def list_quest_categories(quest_id: int, engine: ProgressionEngine = Depends(get_engine)):
    try:
        await engine.find_one(quest_id)
    except ProgressionError as e:
        raise _http_error(e) from e
    categories = await engine.tagging.list_for_quest(quest_id)
    return [NamedRef(id=c.id, name=c.name) for c in categories]


@router.post("/quests/{quest_id}/categories", response_model=list[NamedRef], status_code=201)
async def add_quest_category(
    quest_id: int,
    body: CategoryLinkRequest,
    db: AsyncSession = Depends(get_db),
    engine: ProgressionEngine = Depends(get_engine),
):
    try:
        await engine.tagging.add(quest_id, body.category_id)
    except ProgressionError as e:
        raise _http_error(e) from e
    await db.commit()
    categories = await engine.tagging.list_for_quest(quest_id)
    return [NamedRef(id=c.id, name=c.name) for c in categories]


@router.delete("/quests/{quest_id}/categories/{category_id}", status_code=204)
async def remove_quest_category(
    quest_id: int,
    category_id: int,
    db: AsyncSession = Depends(get_db),
    engine: ProgressionEngine = Depends(get_engine),
) -> None:
    try:
        await engine.tagging.remove(quest_id, category_id)
    except ProgressionError as e:
        raise _http_error(e) from e
    await db.commit()


# ── Per-user views ──


@router.get("/users/{user_id}/quests", response_model=UserQuestsResponse)
async def get_user_quests(user_id: int, engine: ProgressionEngine = Depends(get_engine)):
    """Every quest the user has joined, with its participation state."""
    try:
        views = await engine.get_user_quests(user_id)
    except ProgressionError as e:
        raise _http_error(e) from e
    return UserQuestsResponse(quests=[UserQuestResponse.from_view(v) for v in views], total=len(views))


@router.get("/users/{user_id}/quests/available", response_model=QuestListResponse)
async def get_available_quests(user_id: int, engine: ProgressionEngine = Depends(get_engine)):
    """Active quests the user has not joined yet."""
    try:
        views = await engine.get_available_quests(user_id)
    except ProgressionError as e:
        raise _http_error(e) from e
    return QuestListResponse(quests=[QuestResponse.from_view(v) for v in views], total=len(views))
