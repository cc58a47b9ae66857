"""Task tracking: completion progress and level-appropriate recommendations."""

import logging
from datetime import datetime
from typing import Any, Callable, Optional, Sequence, Union

from pydantic import ValidationError as PydanticValidationError

from therapy_progress.tracking.exceptions import NotFoundError, ValidationError
from therapy_progress.tracking.models import (
    AbilityLevel,
    CommunicationLevel,
    GoalStatus,
    PatientProfile,
    TaskDifficulty,
    TaskStatus,
    TherapyTask,
    TherapyType,
    clamp_percentage,
    utcnow,
)
from therapy_progress.tracking.store import TherapyStore, record_audit

logger = logging.getLogger(__name__)

_DIFFICULTY_RANK: dict[TaskDifficulty, int] = {
    TaskDifficulty.BEGINNER: 0,
    TaskDifficulty.INTERMEDIATE: 1,
    TaskDifficulty.ADVANCED: 2,
}

# Hardest task tier each level can take on.
_COMMUNICATION_CEILING: dict[CommunicationLevel, TaskDifficulty] = {
    CommunicationLevel.PRE_VERBAL: TaskDifficulty.BEGINNER,
    CommunicationLevel.SINGLE_WORDS: TaskDifficulty.BEGINNER,
    CommunicationLevel.PHRASES: TaskDifficulty.INTERMEDIATE,
    CommunicationLevel.SENTENCES: TaskDifficulty.ADVANCED,
    CommunicationLevel.CONVERSATIONAL: TaskDifficulty.ADVANCED,
}

_ABILITY_CEILING: dict[AbilityLevel, TaskDifficulty] = {
    AbilityLevel.SEVERE: TaskDifficulty.BEGINNER,
    AbilityLevel.MODERATE: TaskDifficulty.INTERMEDIATE,
    AbilityLevel.MILD: TaskDifficulty.ADVANCED,
    AbilityLevel.TYPICAL: TaskDifficulty.ADVANCED,
}

_IMMUTABLE_TASK_FIELDS = frozenset({"id", "created_at"})


def _within(difficulty: TaskDifficulty, ceiling: TaskDifficulty) -> bool:
    return _DIFFICULTY_RANK[difficulty] <= _DIFFICULTY_RANK[ceiling]


def matches_communication_level(task: TherapyTask, level: CommunicationLevel) -> bool:
    return _within(task.difficulty, _COMMUNICATION_CEILING[level])


def matches_cognitive_level(task: TherapyTask, level: AbilityLevel) -> bool:
    return _within(task.difficulty, _ABILITY_CEILING[level])


def matches_motor_level(task: TherapyTask, level: AbilityLevel) -> bool:
    return _within(task.difficulty, _ABILITY_CEILING[level])


def is_task_appropriate(task: TherapyTask, patient: PatientProfile) -> bool:
    """All three level checks must pass."""
    return (
        matches_communication_level(task, patient.communication_level)
        and matches_cognitive_level(task, patient.cognitive_level)
        and matches_motor_level(task, patient.motor_level)
    )


class TaskTracker:
    """Records task progress and recommends tasks for a patient."""

    def __init__(self, store: TherapyStore, clock: Callable[[], datetime] = utcnow) -> None:
        self.store = store
        self._clock = clock

    async def create_task(self, task: TherapyTask) -> TherapyTask:
        now = self._clock()
        saved = await self.store.create_task(
            task.model_copy(update={"created_at": now, "updated_at": now})
        )
        logger.info("Created task %s (goal=%s)", saved.id, saved.goal_id)
        return saved

    async def get_task(self, task_id: str) -> TherapyTask:
        task = await self.store.get_task(task_id)
        if task is None:
            raise NotFoundError("Task", task_id)
        return task

    async def update_progress(
        self,
        task_id: str,
        progress: float,
        status: Optional[Union[TaskStatus, str]] = None,
    ) -> TherapyTask:
        """Store *progress* clamped into [0, 100]; keep the status unless given."""
        new_status = self._parse_status(status) if status is not None else None
        try:
            value = clamp_percentage(float(progress))
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Invalid task progress: {progress!r}", field="progress") from e
        task = await self.get_task(task_id)

        changes: dict[str, Any] = {
            "progress": value,
            "updated_at": self._clock(),
        }
        if new_status is not None:
            changes["status"] = new_status

        saved = await self.store.update_task(task.model_copy(update=changes))
        logger.debug("Task %s progress %.1f%% (%s)", task_id, saved.progress, saved.status.value)
        return saved

    async def edit_task(self, task_id: str, patch: dict[str, Any]) -> TherapyTask:
        """Merge *patch* into the task, re-parsing dates and re-clamping progress."""
        locked = set(patch) & _IMMUTABLE_TASK_FIELDS
        if locked:
            raise ValidationError(
                f"Fields cannot be edited: {', '.join(sorted(locked))}",
                field=sorted(locked)[0],
            )

        task = await self.get_task(task_id)
        data = task.model_dump()
        data.update(patch)
        data["updated_at"] = self._clock()
        try:
            updated = TherapyTask.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid task edit: {e}") from e

        saved = await self.store.update_task(updated)
        await record_audit(
            self.store, "edit", "therapy_task", task_id, details={"fields": sorted(patch)}
        )
        return saved

    async def complete_task(self, task_id: str, notes: Optional[str] = None) -> TherapyTask:
        task = await self.get_task(task_id)
        saved = await self.store.update_task(
            task.model_copy(
                update={
                    "progress": 100.0,
                    "status": TaskStatus.COMPLETED,
                    "completion_notes": notes,
                    "updated_at": self._clock(),
                }
            )
        )
        logger.info("Task %s completed", task_id)
        await record_audit(self.store, "complete", "therapy_task", task_id)
        return saved

    async def tasks_for_goal(self, goal_id: str) -> list[TherapyTask]:
        """Active tasks attached to *goal_id*."""
        if await self.store.get_goal(goal_id) is None:
            raise NotFoundError("Goal", goal_id)
        tasks = await self.store.list_tasks(active_only=True)
        return [t for t in tasks if t.goal_id == goal_id]

    async def recommended_tasks(
        self, patient_id: str, therapy_type: Union[TherapyType, str]
    ) -> list[TherapyTask]:
        """Active tasks under the patient's active goals of *therapy_type*,
        filtered to the patient's communication, cognitive and motor levels."""
        try:
            therapy_type = TherapyType(therapy_type)
        except ValueError as e:
            raise ValidationError(f"Unknown therapy type: {therapy_type!r}", field="therapy_type") from e

        patient = await self.store.get_patient(patient_id)
        if patient is None:
            raise NotFoundError("Patient", patient_id)

        goals = await self.store.list_goals_by_patient(patient_id)
        eligible_goals = {
            g.id
            for g in goals
            if g.patient_id == patient_id
            and g.therapy_type == therapy_type
            and g.status == GoalStatus.ACTIVE
        }
        if not eligible_goals:
            return []

        tasks: Sequence[TherapyTask] = await self.store.list_tasks(active_only=True)
        return [
            t
            for t in tasks
            if t.is_active and t.goal_id in eligible_goals and is_task_appropriate(t, patient)
        ]

    @staticmethod
    def _parse_status(status: Union[TaskStatus, str]) -> TaskStatus:
        try:
            return TaskStatus(status)
        except ValueError as e:
            raise ValidationError(f"Unknown task status: {status!r}", field="status") from e
