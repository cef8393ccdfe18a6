"""Progression error taxonomy.

Every error carries a stable ``code`` and a message rendered from the
``MESSAGES`` template table, so callers can build machine-checkable
responses. All errors derive from ValueError: services raise them, routers
translate them into HTTP responses using ``status_code``.
"""

from __future__ import annotations

from typing import Any

MESSAGES: dict[str, str] = {
    # --- Not found ---
    "user_not_found": "User with ID {user_id} not found",
    "quest_not_found": "Quest with ID {quest_id} not found",
    "achievement_not_found": "Achievement with ID {achievement_id} not found",
    "city_not_found": "City with ID {city_id} not found",
    "organization_type_not_found": "Organization type with ID {organization_type_id} not found",
    "category_not_found": "Category with ID {category_id} not found",
    "categories_not_found": "Categories not found: {missing}",
    "category_relation_not_found": "Category {category_id} is not attached to quest {quest_id}",
    "participation_not_found": "User {user_id} is not participating in quest {quest_id}",
    "quest_not_started": "User {user_id} has not started quest {quest_id}",
    # --- Bad request ---
    "quest_not_available": "Quest {quest_id} is not available (status '{status}')",
    "leave_completed": "User {user_id} cannot leave quest {quest_id}: it is already completed",
    "gallery_too_large": "Gallery cannot contain more than {limit} images (got {count})",
    "quest_not_mutable": "Quest with status '{status}' cannot be modified",
    "quest_has_no_steps": "Quest {quest_id} has no steps",
    "step_index_out_of_range": "Step index {step_index} is out of range (steps: {count})",
    "step_has_no_requirement": "Step {step_index} has no requirement",
    "requirement_missing_target": "Requirement of step {step_index} has no target_value",
    "requirement_not_finite": "current_value must be a finite number (got {value})",
    "requirement_negative": "current_value must be non-negative (got {value})",
    "requirement_exceeds_target": "current_value ({value}) cannot exceed target_value ({target})",
    "invalid_step_requirement": (
        "Step {step_index}: requirement must satisfy 0 <= current_value <= target_value"
    ),
    "private_requires_quest": 'Rarity "private" requires quest_id',
    "non_private_forbids_quest": 'quest_id must be null or absent unless rarity is "private"',
    # --- Conflict ---
    "already_joined": "User {user_id} has already joined quest {quest_id}",
    "already_completed": "User {user_id} has already completed quest {quest_id}",
    "achievement_title_taken": 'Achievement with title "{title}" already exists',
    "achievement_already_granted": "User {user_id} already has achievement {achievement_id}",
    "category_relation_exists": "Category {category_id} is already attached to quest {quest_id}",
    "quest_modified_concurrently": "Quest {quest_id} was modified concurrently, retry the request",
    # --- Forbidden ---
    "level_too_low": "Creating a quest requires level {required} or higher (user {user_id} is level {level})",
}


class ProgressionError(ValueError):
    """Base class for all progression errors."""

    status_code = 400

    def __init__(self, code: str, **params: Any) -> None:
        self.code = code
        self.params = params
        super().__init__(MESSAGES[code].format(**params))


class NotFoundError(ProgressionError):
    """Referenced entity does not exist or is soft-deleted."""

    status_code = 404


class BadRequestError(ProgressionError):
    """Input is invalid relative to the current state."""

    status_code = 400


class ConflictError(ProgressionError):
    """Operation would violate a uniqueness or idempotency invariant."""

    status_code = 409


class ForbiddenError(ProgressionError):
    """Authorization-level rule unrelated to existence."""

    status_code = 403
