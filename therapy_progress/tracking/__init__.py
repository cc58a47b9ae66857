"""Therapy goal/task progress tracking engine."""

from therapy_progress.tracking.collaboration import CollaborationWorkflow
from therapy_progress.tracking.exceptions import (
    DependencyFailureError,
    InvalidRangeError,
    InvalidStateError,
    NotFoundError,
    TherapyProgressError,
    ValidationError,
)
from therapy_progress.tracking.goals import GoalTracker, is_mastery_met, progress_percentage
from therapy_progress.tracking.reports import ProgressReportGenerator, calculate_trend
from therapy_progress.tracking.store import TherapyStore
from therapy_progress.tracking.tasks import TaskTracker, is_task_appropriate

__all__ = [
    "CollaborationWorkflow",
    "DependencyFailureError",
    "GoalTracker",
    "InvalidRangeError",
    "InvalidStateError",
    "NotFoundError",
    "ProgressReportGenerator",
    "TaskTracker",
    "TherapyProgressError",
    "TherapyStore",
    "ValidationError",
    "calculate_trend",
    "is_mastery_met",
    "is_task_appropriate",
    "progress_percentage",
]
