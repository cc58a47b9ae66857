"""Pydantic domain models for goal, task, session and report tracking."""

import math
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator, model_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and normalise aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


UTCDateTime = Annotated[datetime, AfterValidator(ensure_utc)]

Percentage = Annotated[float, Field(ge=0, le=100)]


class TherapyType(str, Enum):
    """Therapy discipline a goal belongs to."""

    BEHAVIORAL = "behavioral"  # ABA
    SPEECH = "speech"
    OCCUPATIONAL = "occupational"


class GoalStatus(str, Enum):
    ACTIVE = "active"
    MASTERED = "mastered"
    PAUSED = "paused"
    DISCONTINUED = "discontinued"


class GoalPriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class TaskDifficulty(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class TaskStatus(str, Enum):
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class MasteryStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    MASTERED = "mastered"
    REGRESSED = "regressed"


class Trend(str, Enum):
    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"


class RequestStatus(str, Enum):
    """Collaboration request lifecycle. accepted and declined are terminal."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class RelationshipStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class CommunicationLevel(str, Enum):
    PRE_VERBAL = "pre_verbal"
    SINGLE_WORDS = "single_words"
    PHRASES = "phrases"
    SENTENCES = "sentences"
    CONVERSATIONAL = "conversational"


class AbilityLevel(str, Enum):
    """Shared scale for cognitive and motor levels."""

    SEVERE = "severe"
    MODERATE = "moderate"
    MILD = "mild"
    TYPICAL = "typical"


# ---------------------------------------------------------------------------
# Goals
# ---------------------------------------------------------------------------


class BaselineData(BaseModel):
    """Measurement captured before intervention started."""

    frequency: float = Field(ge=0)
    duration: Optional[float] = Field(None, ge=0, description="minutes")
    accuracy: Optional[Percentage] = None
    independence: Optional[Percentage] = None
    date: UTCDateTime = Field(default_factory=utcnow)


class TargetData(BaseModel):
    """Measurement the goal aims for within ``timeframe_days``."""

    frequency: float = Field(ge=0)
    duration: Optional[float] = Field(None, ge=0, description="minutes")
    accuracy: Optional[Percentage] = None
    independence: Optional[Percentage] = None
    timeframe_days: int = Field(30, ge=1)


class ProgressSnapshot(BaseModel):
    """Most recent measurement applied to a goal."""

    frequency: float = Field(0, ge=0)
    duration: Optional[float] = Field(None, ge=0, description="minutes")
    accuracy: Optional[Percentage] = None
    independence: Optional[Percentage] = None
    last_updated: UTCDateTime = Field(default_factory=utcnow)


class ProgressUpdate(BaseModel):
    """A partial measurement. Range checks happen in the goal tracker."""

    model_config = ConfigDict(extra="forbid")

    frequency: Optional[float] = None
    duration: Optional[float] = None
    accuracy: Optional[float] = None
    independence: Optional[float] = None


class MasteryCriteria(BaseModel):
    consecutive_days: int = Field(1, ge=1)
    accuracy_threshold: Percentage
    independence_threshold: Percentage


class TherapyGoal(BaseModel):
    """A therapist-assigned goal with baseline, target and live progress."""

    id: str = Field(default_factory=lambda: new_id("goal"))
    patient_id: str
    therapist_id: str
    therapy_type: TherapyType
    title: str
    description: str = ""
    category: str = ""
    priority: GoalPriority = GoalPriority.MEDIUM
    baseline: BaselineData
    target: TargetData
    mastery_criteria: MasteryCriteria
    current_progress: Optional[ProgressSnapshot] = None
    status: GoalStatus = GoalStatus.ACTIVE
    mastered_at: Optional[UTCDateTime] = None
    mastery_streak: int = Field(0, ge=0)
    created_at: UTCDateTime = Field(default_factory=utcnow)
    updated_at: UTCDateTime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _default_progress_from_baseline(self) -> "TherapyGoal":
        if self.current_progress is None:
            self.current_progress = ProgressSnapshot(
                frequency=self.baseline.frequency,
                duration=self.baseline.duration,
                accuracy=self.baseline.accuracy,
                independence=self.baseline.independence,
                last_updated=self.created_at,
            )
        return self


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


def clamp_percentage(value: float) -> float:
    if math.isnan(value):
        raise ValueError("percentage must be a number, got NaN")
    return float(max(0.0, min(100.0, value)))


class TherapyTask(BaseModel):
    """A practice activity, optionally attached to a goal."""

    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(default_factory=lambda: new_id("task"))
    goal_id: Optional[str] = None
    title: str
    description: str = ""
    instructions: list[str] = Field(default_factory=list)
    materials: list[str] = Field(default_factory=list)
    difficulty: TaskDifficulty = TaskDifficulty.BEGINNER
    estimated_duration: int = Field(15, ge=0, description="minutes")
    due_date: Optional[UTCDateTime] = None
    is_active: bool = True
    progress: float = 0.0
    status: TaskStatus = TaskStatus.ASSIGNED
    completion_notes: Optional[str] = None
    created_at: UTCDateTime = Field(default_factory=utcnow)
    updated_at: UTCDateTime = Field(default_factory=utcnow)

    @field_validator("progress", mode="before")
    @classmethod
    def _clamp_progress(cls, v):
        return clamp_percentage(float(v))


# ---------------------------------------------------------------------------
# Sessions and patients
# ---------------------------------------------------------------------------


class SessionActivity(BaseModel):
    """Measurements for one activity within a session."""

    model_config = ConfigDict(frozen=True)

    task_id: Optional[str] = None
    goal_id: Optional[str] = None
    attempts: int = Field(0, ge=0)
    successes: int = Field(0, ge=0)
    prompts: int = Field(0, ge=0)
    independence: Percentage = 0
    accuracy: Percentage = 0
    notes: str = ""


class TherapySession(BaseModel):
    """A historical therapy session. Never modified once recorded."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: new_id("session"))
    patient_id: str
    therapist_id: str
    session_date: UTCDateTime
    duration: int = Field(0, ge=0, description="minutes")
    goal_ids: tuple[str, ...] = ()
    task_ids: tuple[str, ...] = ()
    activities: tuple[SessionActivity, ...] = ()
    notes: str = ""
    created_at: UTCDateTime = Field(default_factory=utcnow)


class PatientProfile(BaseModel):
    id: str = Field(default_factory=lambda: new_id("patient"))
    name: str
    communication_level: CommunicationLevel = CommunicationLevel.SINGLE_WORDS
    cognitive_level: AbilityLevel = AbilityLevel.MODERATE
    motor_level: AbilityLevel = AbilityLevel.MODERATE
    created_at: UTCDateTime = Field(default_factory=utcnow)


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


class GoalProgressEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    goal_id: str
    progress: Percentage
    mastery_status: MasteryStatus
    data_points: int = Field(ge=0)
    trend: Trend


class ReportPeriod(BaseModel):
    model_config = ConfigDict(frozen=True)

    start_date: UTCDateTime
    end_date: UTCDateTime


class ProgressReport(BaseModel):
    """Read-only progress aggregate over a reporting period."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: new_id("report"))
    patient_id: str
    therapist_id: str
    period: ReportPeriod
    goals: tuple[GoalProgressEntry, ...] = ()
    summary: str
    recommendations: tuple[str, ...] = ()
    next_steps: tuple[str, ...] = ()
    created_at: UTCDateTime = Field(default_factory=utcnow)

    def entry_for(self, goal_id: str) -> Optional[GoalProgressEntry]:
        """Return this report's entry for *goal_id*, if any."""
        return next((g for g in self.goals if g.goal_id == goal_id), None)


# ---------------------------------------------------------------------------
# Collaboration
# ---------------------------------------------------------------------------


class CollaborationRequest(BaseModel):
    """A patient's (or parent's) request to work with a therapist."""

    id: str = Field(default_factory=lambda: new_id("request"))
    patient_id: str
    therapist_id: str
    patient_name: str = ""
    therapist_name: str = ""
    message: str = ""
    status: RequestStatus = RequestStatus.PENDING
    created_at: UTCDateTime = Field(default_factory=utcnow)
    updated_at: UTCDateTime = Field(default_factory=utcnow)


class TherapistPatientRelationship(BaseModel):
    id: str = Field(default_factory=lambda: new_id("relationship"))
    therapist_id: str
    patient_id: str
    therapist_name: str = ""
    patient_name: str = ""
    status: RelationshipStatus = RelationshipStatus.ACTIVE
    created_at: UTCDateTime = Field(default_factory=utcnow)
    updated_at: UTCDateTime = Field(default_factory=utcnow)


class AcceptanceResult(BaseModel):
    """Outcome of accepting a collaboration request."""

    request: CollaborationRequest
    relationship: TherapistPatientRelationship
