"""Achievement API endpoints: CRUD, grants, and dangling-link reconciliation."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from civic.achievements.schemas import (
    AchievementListResponse,
    AchievementResponse,
    AssignAchievementRequest,
    GrantResponse,
    ReconcileResponse,
    UserAchievementResponse,
    UserAchievementsResponse,
)
from civic.dependencies import get_db, get_engine
from civic.progression.engine import ProgressionEngine
from civic.progression.errors import ProgressionError
from civic.progression.schemas import AchievementCreate, AchievementUpdate

router = APIRouter(prefix="/api/v1", tags=["Achievements"])


def _http_error(e: ProgressionError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=str(e))


@router.get("/achievements", response_model=AchievementListResponse)
async def list_achievements(engine: ProgressionEngine = Depends(get_engine)):
    achievements = await engine.binder.find_all()
    return AchievementListResponse(
        achievements=[AchievementResponse.from_record(a) for a in achievements],
        total=len(achievements),
    )


@router.post("/achievements", response_model=AchievementResponse, status_code=201)
async def create_achievement(
    body: AchievementCreate,
    db: AsyncSession = Depends(get_db),
    engine: ProgressionEngine = Depends(get_engine),
):
    """Create an achievement. Private rarity requires a live quest_id."""
    try:
        achievement = await engine.binder.create(body)
    except ProgressionError as e:
        raise _http_error(e) from e
    await db.commit()
    return AchievementResponse.from_record(achievement)


# Static paths go before /achievements/{achievement_id}.


@router.get("/achievements/dangling", response_model=AchievementListResponse)
async def list_dangling_achievements(engine: ProgressionEngine = Depends(get_engine)):
    """Private achievements whose quest is missing or deleted."""
    dangling = await engine.binder.find_dangling()
    return AchievementListResponse(
        achievements=[AchievementResponse.from_record(a) for a in dangling],
        total=len(dangling),
    )


@router.post("/achievements/dangling/reconcile", response_model=ReconcileResponse)
async def reconcile_dangling_achievements(
    db: AsyncSession = Depends(get_db),
    engine: ProgressionEngine = Depends(get_engine),
):
    removed = await engine.binder.reconcile_dangling()
    await db.commit()
    return ReconcileResponse(removed=removed)


@router.get("/achievements/{achievement_id}", response_model=AchievementResponse)
async def get_achievement(achievement_id: int, engine: ProgressionEngine = Depends(get_engine)):
    try:
        achievement = await engine.binder.find_one(achievement_id)
    except ProgressionError as e:
        raise _http_error(e) from e
    return AchievementResponse.from_record(achievement)


@router.patch("/achievements/{achievement_id}", response_model=AchievementResponse)
async def update_achievement(
    achievement_id: int,
    body: AchievementUpdate,
    db: AsyncSession = Depends(get_db),
    engine: ProgressionEngine = Depends(get_engine),
):
    try:
        achievement = await engine.binder.update(achievement_id, body)
    except ProgressionError as e:
        raise _http_error(e) from e
    await db.commit()
    return AchievementResponse.from_record(achievement)


@router.delete("/achievements/{achievement_id}", response_model=AchievementResponse)
async def delete_achievement(
    achievement_id: int,
    db: AsyncSession = Depends(get_db),
    engine: ProgressionEngine = Depends(get_engine),
):
    try:
        achievement = await engine.binder.remove(achievement_id)
    except ProgressionError as e:
        raise _http_error(e) from e
    await db.commit()
    return AchievementResponse.from_record(achievement)


@router.post("/achievements/{achievement_id}/assign", response_model=GrantResponse, status_code=201)
async def assign_achievement(
    achievement_id: int,
    body: AssignAchievementRequest,
    db: AsyncSession = Depends(get_db),
    engine: ProgressionEngine = Depends(get_engine),
):
    """Grant an achievement to a user directly."""
    try:
        grant = await engine.binder.assign_to_user(body.user_id, achievement_id)
    except ProgressionError as e:
        raise _http_error(e) from e
    await db.commit()
    return GrantResponse.from_record(grant)


@router.get("/users/{user_id}/achievements", response_model=UserAchievementsResponse)
async def get_user_achievements(user_id: int, engine: ProgressionEngine = Depends(get_engine)):
    try:
        views = await engine.binder.get_user_achievements(user_id)
    except ProgressionError as e:
        raise _http_error(e) from e
    return UserAchievementsResponse(
        achievements=[UserAchievementResponse.from_view(v) for v in views],
        total=len(views),
    )
