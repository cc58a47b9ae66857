"""Goal tracking: measurement updates, mastery evaluation and status control."""

import logging
import math
from datetime import datetime, timedelta
from typing import Any, Callable, Optional, Sequence, Union

from pydantic import ValidationError as PydanticValidationError

from therapy_progress.config import get_settings
from therapy_progress.tracking.exceptions import InvalidStateError, NotFoundError, ValidationError
from therapy_progress.tracking.models import (
    GoalStatus,
    MasteryCriteria,
    ProgressSnapshot,
    ProgressUpdate,
    TargetData,
    TherapyGoal,
    utcnow,
)
from therapy_progress.tracking.store import TherapyStore, record_audit

logger = logging.getLogger(__name__)

_PERCENT_FIELDS = ("accuracy", "independence")

# Fields a therapist may change through edit_goal; progress and status have
# their own operations.
_EDITABLE_GOAL_FIELDS = frozenset(
    {"title", "description", "category", "priority", "target", "mastery_criteria"}
)


def progress_percentage(goal: TherapyGoal) -> float:
    """Percentage of the way from baseline frequency to target frequency.

    Always within [0, 100]. When target equals baseline the goal counts as
    complete once current frequency is at or above baseline.
    """
    baseline = goal.baseline.frequency
    target = goal.target.frequency
    current = goal.current_progress.frequency

    span = target - baseline
    if span == 0:
        return 100.0 if current >= baseline else 0.0

    percentage = (current - baseline) / span * 100
    return max(0.0, min(100.0, percentage))


def is_mastery_met(
    progress: ProgressSnapshot, target: TargetData, criteria: MasteryCriteria
) -> bool:
    """Check all three mastery thresholds against a single snapshot.

    An unmeasured accuracy or independence never meets its threshold.
    """
    if progress.accuracy is None or progress.independence is None:
        return False
    return (
        progress.accuracy >= criteria.accuracy_threshold
        and progress.independence >= criteria.independence_threshold
        and progress.frequency >= target.frequency
    )


def validate_progress_update(update: Union[ProgressUpdate, dict[str, Any]]) -> dict[str, float]:
    """Return the set fields of *update*, rejecting out-of-range values.

    An update must carry at least one measurement.
    """
    if not isinstance(update, ProgressUpdate):
        try:
            update = ProgressUpdate.model_validate(update)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid progress update: {e}") from e

    fields = update.model_dump(exclude_none=True)
    if not fields:
        raise ValidationError("Progress update has no measurements")
    for name, value in fields.items():
        if not math.isfinite(value):
            raise ValidationError(f"{name} must be a finite number (got {value})", field=name)
        if value < 0:
            raise ValidationError(f"{name} cannot be negative (got {value})", field=name)
        if name in _PERCENT_FIELDS and value > 100:
            raise ValidationError(f"{name} cannot exceed 100 (got {value})", field=name)
    return fields


class GoalTracker:
    """Applies measurements to therapy goals and decides mastery.

    When *require_streak* is on, a goal is only mastered after
    ``mastery_criteria.consecutive_days`` qualifying updates in a row;
    otherwise the latest snapshot alone decides.
    """

    def __init__(
        self,
        store: TherapyStore,
        require_streak: Optional[bool] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        if require_streak is None:
            require_streak = get_settings().mastery_requires_streak
        self.require_streak = require_streak
        self._clock = clock

    async def create_goal(self, goal: TherapyGoal) -> TherapyGoal:
        """Persist a newly assigned goal in the active state."""
        now = self._clock()
        goal = goal.model_copy(
            update={
                "status": GoalStatus.ACTIVE,
                "mastered_at": None,
                "mastery_streak": 0,
                "created_at": now,
                "updated_at": now,
            }
        )
        saved = await self.store.create_goal(goal)
        logger.info("Created goal %s for patient %s", saved.id, saved.patient_id)
        await record_audit(self.store, "create", "therapy_goal", saved.id, user_id=saved.therapist_id)
        return saved

    async def get_goal(self, goal_id: str) -> TherapyGoal:
        goal = await self.store.get_goal(goal_id)
        if goal is None:
            raise NotFoundError("Goal", goal_id)
        return goal

    async def goals_for_patient(self, patient_id: str) -> Sequence[TherapyGoal]:
        return await self.store.list_goals_by_patient(patient_id)

    async def apply_measurement(
        self, goal_id: str, update: Union[ProgressUpdate, dict[str, Any]]
    ) -> TherapyGoal:
        """Merge a partial measurement into the goal and re-evaluate mastery."""
        fields = validate_progress_update(update)
        goal = await self.get_goal(goal_id)

        now = self._next_timestamp(goal.current_progress.last_updated)
        merged = {**goal.current_progress.model_dump(), **fields, "last_updated": now}
        try:
            progress = ProgressSnapshot.model_validate(merged)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid progress update: {e}") from e

        qualifies = is_mastery_met(progress, goal.target, goal.mastery_criteria)
        streak = goal.mastery_streak + 1 if qualifies else 0

        changes: dict[str, Any] = {
            "current_progress": progress,
            "mastery_streak": streak,
            "updated_at": now,
        }

        newly_mastered = (
            goal.status == GoalStatus.ACTIVE
            and qualifies
            and (not self.require_streak or streak >= goal.mastery_criteria.consecutive_days)
        )
        if newly_mastered:
            changes["status"] = GoalStatus.MASTERED
            changes["mastered_at"] = now

        saved = await self.store.update_goal(goal.model_copy(update=changes))

        if newly_mastered:
            logger.info("Goal %s mastered after %d qualifying update(s)", goal_id, streak)
            await record_audit(
                self.store,
                "mastered",
                "therapy_goal",
                goal_id,
                details={"accuracy": progress.accuracy, "independence": progress.independence,
                         "frequency": progress.frequency},
            )
        else:
            logger.debug("Applied measurement to goal %s: %s", goal_id, fields)
        return saved

    async def set_status(self, goal_id: str, status: Union[GoalStatus, str]) -> TherapyGoal:
        """Explicitly pause, discontinue or resume a goal.

        Mastery is never granted here; it is only reached through
        :meth:`apply_measurement`. Resuming a paused goal restores ``mastered``
        when the goal had already been mastered.
        """
        try:
            target = GoalStatus(status)
        except ValueError as e:
            raise ValidationError(f"Unknown goal status: {status!r}", field="status") from e

        goal = await self.get_goal(goal_id)
        current = goal.status

        if target == GoalStatus.PAUSED and current in (GoalStatus.ACTIVE, GoalStatus.MASTERED):
            new_status = GoalStatus.PAUSED
        elif target == GoalStatus.DISCONTINUED and current != GoalStatus.DISCONTINUED:
            new_status = GoalStatus.DISCONTINUED
        elif target == GoalStatus.ACTIVE and current == GoalStatus.PAUSED:
            new_status = GoalStatus.MASTERED if goal.mastered_at else GoalStatus.ACTIVE
        else:
            raise InvalidStateError("Goal", goal_id, current.value, target.value)

        saved = await self.store.update_goal(
            goal.model_copy(update={"status": new_status, "updated_at": self._clock()})
        )
        logger.info("Goal %s status %s -> %s", goal_id, current.value, new_status.value)
        await record_audit(
            self.store,
            "status_change",
            "therapy_goal",
            goal_id,
            details={"from": current.value, "to": new_status.value},
        )
        return saved

    async def edit_goal(self, goal_id: str, patch: dict[str, Any]) -> TherapyGoal:
        """Update descriptive fields, targets or mastery criteria.

        Edits never change the goal's status: a mastered goal stays mastered
        and an active goal is only mastered by its next measurement. Changing
        the target or mastery criteria restarts the mastery streak.
        """
        protected = set(patch) - _EDITABLE_GOAL_FIELDS
        if protected:
            raise ValidationError(
                f"Fields cannot be edited directly: {', '.join(sorted(protected))}",
                field=sorted(protected)[0],
            )

        goal = await self.get_goal(goal_id)
        data = goal.model_dump()
        data.update(patch)
        data["updated_at"] = self._clock()
        if {"target", "mastery_criteria"} & set(patch):
            data["mastery_streak"] = 0
        try:
            updated = TherapyGoal.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid goal edit: {e}") from e

        saved = await self.store.update_goal(updated)
        await record_audit(
            self.store, "edit", "therapy_goal", goal_id, details={"fields": sorted(patch)}
        )
        return saved

    def _next_timestamp(self, previous: datetime) -> datetime:
        # last_updated must strictly increase even on coarse clocks
        now = self._clock()
        if now <= previous:
            now = previous + timedelta(microseconds=1)
        return now
