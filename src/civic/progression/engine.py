"""Quest progression engine: lifecycle, participation, and rewards.

Participation: (none) -> in_progress -> completed
Quest status:  active <-> archived; only active quests accept joins and
requirement progress.

Every operation re-reads the entities it needs, front-loads validation
before the first write, and returns the domain events it produced inside
an ``Outcome`` for the caller to dispatch after commit.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any

from civic.progression.achievements import AchievementBinder
from civic.progression.aggregation import attach_categories, index_by_id
from civic.progression.categories import CategoryTagging
from civic.progression.errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from civic.progression.events import (
    DomainEvent,
    Outcome,
    QuestCompleted,
    QuestCreated,
    RequirementUpdated,
    UserJoined,
)
from civic.progression.records import (
    AchievementRecord,
    CityRecord,
    OrganizationTypeRecord,
    ParticipationRecord,
    QuestRecord,
    QuestView,
    UserQuestView,
    UserRecord,
)
from civic.progression.schemas import (
    InlineAchievement,
    Number,
    ParticipationStatus,
    QuestCreate,
    QuestStatus,
    QuestUpdate,
)
from civic.progression.steps import requirements_changed, validate_steps, with_current_value
from civic.progression.stores import QuestStore, Stores

logger = logging.getLogger(__name__)

MIN_CREATOR_LEVEL = 5
GALLERY_MAX = 10

QUEST_XP_SOURCE = "quest"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class QuestAchievementBuilder:
    """Creates a quest together with its inline private achievement.

    Quest and achievement reference each other, so creation is two-phase:
    the achievement is created with no quest link, the quest is created
    pointing at it, then the link is back-patched. An interruption between
    the phases leaves a private achievement with ``quest_id=None``;
    ``AchievementBinder.find_dangling`` reports those for reconciliation.
    """

    def __init__(self, binder: AchievementBinder, quests: QuestStore) -> None:
        self.binder = binder
        self.quests = quests

    async def build(self, values: dict[str, Any], inline: InlineAchievement | None) -> QuestRecord:
        achievement: AchievementRecord | None = None
        if inline is not None:
            achievement = await self.binder.create_for_quest(inline)
            values = {**values, "achievement_id": achievement.id}

        quest = await self.quests.create(values)

        if achievement is not None:
            await self.binder.bind_to_quest(achievement.id, quest.id)
        return quest


class ProgressionEngine:
    """Owns quest lifecycle transitions and the join/leave/complete rules."""

    def __init__(
        self,
        stores: Stores,
        min_creator_level: int = MIN_CREATOR_LEVEL,
        gallery_max: int = GALLERY_MAX,
    ) -> None:
        self.stores = stores
        self.min_creator_level = min_creator_level
        self.gallery_max = gallery_max
        self.binder = AchievementBinder(stores.achievements, stores.quests, stores.directory)
        self.tagging = CategoryTagging(stores.quests, stores.categories)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def _require_user(self, user_id: int) -> UserRecord:
        user = await self.stores.directory.get_user(user_id)
        if user is None:
            raise NotFoundError("user_not_found", user_id=user_id)
        return user

    async def _require_quest(self, quest_id: int) -> QuestRecord:
        quest = await self.stores.quests.get(quest_id)
        if quest is None:
            raise NotFoundError("quest_not_found", quest_id=quest_id)
        return quest

    async def _require_city(self, city_id: int) -> CityRecord:
        city = await self.stores.directory.get_city(city_id)
        if city is None:
            raise NotFoundError("city_not_found", city_id=city_id)
        return city

    async def _require_organization_type(self, organization_type_id: int) -> OrganizationTypeRecord:
        org_type = await self.stores.directory.get_organization_type(organization_type_id)
        if org_type is None:
            raise NotFoundError("organization_type_not_found", organization_type_id=organization_type_id)
        return org_type

    def _check_gallery(self, gallery: Sequence[str] | None) -> None:
        if gallery is not None and len(gallery) > self.gallery_max:
            raise BadRequestError("gallery_too_large", limit=self.gallery_max, count=len(gallery))

    async def _build_views(self, quests: Sequence[QuestRecord]) -> list[QuestView]:
        """Enrich quests with their relations, one batch lookup per relation."""
        if not quests:
            return []
        directory = self.stores.directory
        city_ids = {q.city_id for q in quests if q.city_id is not None}
        org_ids = {q.organization_type_id for q in quests if q.organization_type_id is not None}
        ach_ids = {q.achievement_id for q in quests if q.achievement_id is not None}

        users = index_by_id(await directory.get_users({q.owner_id for q in quests}))
        cities = index_by_id(await directory.get_cities(city_ids)) if city_ids else {}
        org_types = index_by_id(await directory.get_organization_types(org_ids)) if org_ids else {}
        achievements = index_by_id(await self.stores.achievements.get_many(ach_ids)) if ach_ids else {}

        views = [
            QuestView(
                quest=quest,
                owner=users.get(quest.owner_id),
                city=cities.get(quest.city_id) if quest.city_id is not None else None,
                organization_type=(
                    org_types.get(quest.organization_type_id) if quest.organization_type_id is not None else None
                ),
                achievement=achievements.get(quest.achievement_id) if quest.achievement_id is not None else None,
            )
            for quest in quests
        ]
        return await attach_categories(self.stores.categories, views)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def find_one(self, quest_id: int) -> QuestView:
        quest = await self._require_quest(quest_id)
        views = await self._build_views([quest])
        return views[0]

    async def find_all(self, city_id: int | None = None, category_id: int | None = None) -> list[QuestView]:
        quests = await self.stores.quests.list(city_id=city_id, category_id=category_id)
        return await self._build_views(quests)

    async def find_by_status(
        self,
        status: QuestStatus | str | None = None,
        city_id: int | None = None,
        category_id: int | None = None,
    ) -> list[QuestView]:
        status_value = QuestStatus(status).value if status is not None else None
        quests = await self.stores.quests.list(status=status_value, city_id=city_id, category_id=category_id)
        return await self._build_views(quests)

    async def get_user_quests(self, user_id: int) -> list[UserQuestView]:
        await self._require_user(user_id)
        participations = await self.stores.participations.list_for_user(user_id)

        quests = await self.stores.quests.get_many([p.quest_id for p in participations])
        views = index_by_id(await self._build_views(quests))

        return [
            UserQuestView(participation=p, quest=views[p.quest_id])
            for p in participations
            if p.quest_id in views
        ]

    async def get_available_quests(self, user_id: int) -> list[QuestView]:
        """Active quests the user has not started yet."""
        await self._require_user(user_id)
        started = {p.quest_id for p in await self.stores.participations.list_for_user(user_id)}
        active = await self.stores.quests.list(status=QuestStatus.ACTIVE.value)
        return await self._build_views([q for q in active if q.id not in started])

    # ------------------------------------------------------------------
    # Quest lifecycle
    # ------------------------------------------------------------------

    async def create_quest(self, data: QuestCreate, creator_id: int) -> Outcome[QuestView]:
        creator = await self._require_user(creator_id)
        if creator.level < self.min_creator_level:
            raise ForbiddenError(
                "level_too_low", required=self.min_creator_level, user_id=creator_id, level=creator.level,
            )

        city = await self._require_city(data.city_id)
        if data.organization_type_id is not None:
            await self._require_organization_type(data.organization_type_id)
        category_ids = list(dict.fromkeys(data.category_ids or []))
        await self.tagging.ensure_exist(category_ids)
        self._check_gallery(data.gallery)
        validate_steps(data.steps)
        if data.achievement is not None:
            await self.binder.ensure_title_available(data.achievement.title)

        now = _now()
        values: dict[str, Any] = {
            "title": data.title,
            "description": data.description,
            "status": data.status.value,
            "experience_reward": data.experience_reward,
            "owner_id": creator_id,
            "city_id": data.city_id,
            "organization_type_id": data.organization_type_id,
            "latitude": data.latitude if data.latitude is not None else city.latitude,
            "longitude": data.longitude if data.longitude is not None else city.longitude,
            "address": data.address,
            "contacts": [c.model_dump() for c in data.contacts] if data.contacts is not None else None,
            "cover_image": data.cover_image,
            "gallery": data.gallery,
            "steps": data.steps,
            "created_at": now,
            "updated_at": now,
        }

        builder = QuestAchievementBuilder(self.binder, self.stores.quests)
        async with self.stores.uow.atomic():
            quest = await builder.build(values, data.achievement)
            if category_ids:
                await self.stores.categories.add_relations(quest.id, category_ids)
            await self.stores.participations.create(creator_id, quest.id, ParticipationStatus.IN_PROGRESS.value)

        view = await self.find_one(quest.id)
        logger.info("Quest created: %s (id=%d, owner=%d)", quest.title, quest.id, creator_id)
        return Outcome(view, [
            UserJoined(quest_id=quest.id, user_id=creator_id, user=creator.brief()),
            QuestCreated(quest_id=quest.id, quest=view.to_payload()),
        ])

    async def update(self, quest_id: int, patch: QuestUpdate) -> Outcome[QuestView]:
        """Partial update: only fields present in the patch are touched."""
        existing = await self._require_quest(quest_id)
        fields = patch.supplied()

        if fields.get("achievement_id") is not None:
            if await self.stores.achievements.get(fields["achievement_id"]) is None:
                raise NotFoundError("achievement_not_found", achievement_id=fields["achievement_id"])
        if fields.get("city_id") is not None:
            await self._require_city(fields["city_id"])
        if fields.get("organization_type_id") is not None:
            await self._require_organization_type(fields["organization_type_id"])
        if "gallery" in fields:
            self._check_gallery(fields["gallery"])
        if "steps" in fields:
            validate_steps(fields["steps"])
        category_ids = fields.pop("category_ids", None)
        if category_ids:
            await self.tagging.ensure_exist(category_ids)

        changed = "steps" in fields and requirements_changed(existing.steps, fields["steps"])

        if "status" in fields:
            fields["status"] = fields["status"].value
        if fields.get("contacts") is not None:
            fields["contacts"] = [c.model_dump() for c in fields["contacts"]]

        async with self.stores.uow.atomic():
            saved = await self.stores.quests.save(replace(existing, **fields, updated_at=_now()))
            if category_ids is not None:
                await self.tagging.replace(quest_id, category_ids)

        events: list[DomainEvent] = []
        if changed:
            logger.info("Requirements changed for quest %d", quest_id)
            events.append(RequirementUpdated(quest_id=quest_id, steps=saved.steps_payload() or []))
        return Outcome(await self.find_one(quest_id), events)

    async def remove(self, quest_id: int) -> QuestRecord:
        """Soft delete. Bound private achievements are left in place."""
        quest = await self.stores.quests.soft_delete(quest_id)
        if quest is None:
            raise NotFoundError("quest_not_found", quest_id=quest_id)
        logger.info("Quest %d soft-deleted", quest_id)
        return quest

    async def _set_status(self, quest_id: int, status: QuestStatus) -> QuestView:
        quest = await self._require_quest(quest_id)
        await self.stores.quests.save(replace(quest, status=status.value, updated_at=_now()))
        return await self.find_one(quest_id)

    async def archive_quest(self, quest_id: int) -> QuestView:
        return await self._set_status(quest_id, QuestStatus.ARCHIVED)

    async def unarchive_quest(self, quest_id: int) -> QuestView:
        return await self._set_status(quest_id, QuestStatus.ACTIVE)

    # ------------------------------------------------------------------
    # Participation
    # ------------------------------------------------------------------

    async def join_quest(self, user_id: int, quest_id: int) -> Outcome[ParticipationRecord]:
        user = await self._require_user(user_id)
        quest = await self._require_quest(quest_id)
        if quest.status != QuestStatus.ACTIVE.value:
            raise BadRequestError("quest_not_available", quest_id=quest_id, status=quest.status)
        if await self.stores.participations.find(user_id, quest_id) is not None:
            raise ConflictError("already_joined", user_id=user_id, quest_id=quest_id)

        participation = await self.stores.participations.create(
            user_id, quest_id, ParticipationStatus.IN_PROGRESS.value,
        )
        logger.info("User %d joined quest %d", user_id, quest_id)
        return Outcome(participation, [UserJoined(quest_id=quest_id, user_id=user_id, user=user.brief())])

    async def leave_quest(self, user_id: int, quest_id: int) -> ParticipationRecord:
        await self._require_user(user_id)
        await self._require_quest(quest_id)
        participation = await self.stores.participations.find(user_id, quest_id)
        if participation is None:
            raise NotFoundError("participation_not_found", user_id=user_id, quest_id=quest_id)
        if participation.status == ParticipationStatus.COMPLETED.value:
            raise BadRequestError("leave_completed", user_id=user_id, quest_id=quest_id)

        deleted = await self.stores.participations.delete(participation.id)
        if deleted is None:
            raise NotFoundError("participation_not_found", user_id=user_id, quest_id=quest_id)
        logger.info("User %d left quest %d", user_id, quest_id)
        return deleted

    async def complete_quest(self, user_id: int, quest_id: int) -> Outcome[ParticipationRecord]:
        """Complete a participation, credit experience and grant the bound achievement.

        Steps 1-3 run in one unit of work. The experience credit is keyed by
        the participation id and the grant checks for an existing row first,
        so a retry after a partial failure never double-rewards.
        """
        await self._require_user(user_id)
        quest = await self._require_quest(quest_id)
        participation = await self.stores.participations.find(user_id, quest_id)
        if participation is None:
            raise NotFoundError("quest_not_started", user_id=user_id, quest_id=quest_id)
        if participation.status == ParticipationStatus.COMPLETED.value:
            raise ConflictError("already_completed", user_id=user_id, quest_id=quest_id)

        async with self.stores.uow.atomic():
            completed = await self.stores.participations.update(
                participation.id, ParticipationStatus.COMPLETED.value, completed_at=_now(),
            )
            if completed is None:
                raise NotFoundError("quest_not_started", user_id=user_id, quest_id=quest_id)

            credited = await self.stores.ledger.credit(
                user_id,
                quest.experience_reward,
                source=QUEST_XP_SOURCE,
                source_id=str(quest_id),
                idempotency_key=f"quest:{participation.id}",
            )

            grant = None
            if quest.achievement_id is not None:
                grant = await self.binder.grant_if_missing(user_id, quest.achievement_id)

        logger.info(
            "User %d completed quest %d (+%d XP, achievement=%s)",
            user_id, quest_id, quest.experience_reward if credited else 0,
            grant.achievement_id if grant else None,
        )
        return Outcome(completed, [QuestCompleted(
            quest_id=quest_id,
            user_id=user_id,
            quest=quest.summary(),
            experience_awarded=quest.experience_reward if credited else 0,
            achievement_granted=grant.achievement_id if grant else None,
        )])

    # ------------------------------------------------------------------
    # Requirement progress
    # ------------------------------------------------------------------

    async def update_requirement_current_value(
        self,
        quest_id: int,
        step_index: int,
        new_value: Number,
    ) -> Outcome[QuestView]:
        """Report progress on one step; it may reach but never exceed its target."""
        quest = await self._require_quest(quest_id)
        if quest.status != QuestStatus.ACTIVE.value:
            raise BadRequestError("quest_not_mutable", status=quest.status)
        if not quest.steps:
            raise BadRequestError("quest_has_no_steps", quest_id=quest_id)
        if step_index < 0 or step_index >= len(quest.steps):
            raise BadRequestError("step_index_out_of_range", step_index=step_index, count=len(quest.steps))

        requirement = quest.steps[step_index].requirement
        if requirement is None:
            raise BadRequestError("step_has_no_requirement", step_index=step_index)
        if requirement.target_value is None:
            raise BadRequestError("requirement_missing_target", step_index=step_index)
        if not math.isfinite(new_value):
            raise BadRequestError("requirement_not_finite", value=new_value)
        if new_value < 0:
            raise BadRequestError("requirement_negative", value=new_value)
        if new_value > requirement.target_value:
            raise BadRequestError("requirement_exceeds_target", value=new_value, target=requirement.target_value)

        steps = with_current_value(quest.steps, step_index, new_value)
        saved = await self.stores.quests.save(replace(quest, steps=steps, updated_at=_now()))

        logger.info("Requirement updated for quest %d, step %d: %s", quest_id, step_index, new_value)
        return Outcome(
            await self.find_one(quest_id),
            [RequirementUpdated(quest_id=quest_id, steps=saved.steps_payload() or [])],
        )
