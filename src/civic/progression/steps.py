"""Step sequence rules: requirement bounds and change detection."""

from __future__ import annotations

import math
from collections.abc import Sequence

from civic.progression.errors import BadRequestError
from civic.progression.schemas import Number, Requirement, Step


def validate_steps(steps: Sequence[Step] | None) -> None:
    """Reject steps whose requirement violates 0 <= current <= target."""
    for index, step in enumerate(steps or ()):
        req = step.requirement
        if req is None:
            continue
        if req.target_value is None:
            raise BadRequestError("requirement_missing_target", step_index=index)
        if not (math.isfinite(req.current) and math.isfinite(req.target_value)):
            raise BadRequestError("invalid_step_requirement", step_index=index)
        if req.current < 0 or req.current > req.target_value:
            raise BadRequestError("invalid_step_requirement", step_index=index)


def requirements_changed(old: Sequence[Step] | None, new: Sequence[Step] | None) -> bool:
    """Detect whether any step's requirement was added, removed or altered.

    Steps are compared pairwise by index. A value left undefined in the new
    requirement does not count as a change.
    """
    if old is None and new is None:
        return False
    if old is None:
        return any(step.requirement is not None for step in new or ())
    if new is None:
        return any(step.requirement is not None for step in old)

    for index in range(max(len(old), len(new))):
        old_req = old[index].requirement if index < len(old) else None
        new_req = new[index].requirement if index < len(new) else None
        if (old_req is None) != (new_req is None):
            return True
        if old_req is not None and new_req is not None and _differs(old_req, new_req):
            return True
    return False


def _differs(old: Requirement, new: Requirement) -> bool:
    if new.current_value is not None and new.current_value != old.current_value:
        return True
    return new.target_value is not None and new.target_value != old.target_value


def with_current_value(steps: Sequence[Step], step_index: int, value: Number) -> list[Step]:
    """Copy-on-write: return a new steps list with one requirement updated."""
    step = steps[step_index]
    if step.requirement is None:
        raise BadRequestError("step_has_no_requirement", step_index=step_index)
    requirement = step.requirement.model_copy(update={"current_value": value})
    updated = list(steps)
    updated[step_index] = step.model_copy(update={"requirement": requirement})
    return updated
