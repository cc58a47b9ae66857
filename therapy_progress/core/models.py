"""SQLAlchemy 2.0 async models for the tracking store."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import JSON


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


class Base(DeclarativeBase):
    pass


class PatientDB(Base):
    __tablename__ = "patients"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    communication_level: Mapped[str] = mapped_column(String(20), nullable=False)
    cognitive_level: Mapped[str] = mapped_column(String(20), nullable=False)
    motor_level: Mapped[str] = mapped_column(String(20), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class TherapyGoalDB(Base):
    __tablename__ = "therapy_goals"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    patient_id: Mapped[str] = mapped_column(String(64), nullable=False)
    therapist_id: Mapped[str] = mapped_column(String(64), nullable=False)
    therapy_type: Mapped[str] = mapped_column(String(20), nullable=False)  # behavioral, speech, occupational
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    category: Mapped[str] = mapped_column(String(100), default="")
    priority: Mapped[str] = mapped_column(String(10), default="medium")

    # Measurement snapshots (JSON, ISO-8601 timestamps)
    baseline: Mapped[dict] = mapped_column(JSON, nullable=False)
    target: Mapped[dict] = mapped_column(JSON, nullable=False)
    mastery_criteria: Mapped[dict] = mapped_column(JSON, nullable=False)
    current_progress: Mapped[dict] = mapped_column(JSON, nullable=False)

    status: Mapped[str] = mapped_column(String(20), default="active")
    mastered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    mastery_streak: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        Index("ix_therapy_goals_patient_id", "patient_id"),
        Index("ix_therapy_goals_status", "status"),
    )


class TherapyTaskDB(Base):
    __tablename__ = "therapy_tasks"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    goal_id: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("therapy_goals.id", ondelete="SET NULL")
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    instructions: Mapped[list] = mapped_column(JSON, default=list)
    materials: Mapped[list] = mapped_column(JSON, default=list)
    difficulty: Mapped[str] = mapped_column(String(20), default="beginner")
    estimated_duration: Mapped[int] = mapped_column(Integer, default=15)
    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    progress: Mapped[float] = mapped_column(Float, default=0.0)
    status: Mapped[str] = mapped_column(String(20), default="assigned")
    completion_notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        Index("ix_therapy_tasks_goal_id", "goal_id"),
        Index("ix_therapy_tasks_active", "is_active"),
    )


class TherapySessionDB(Base):
    __tablename__ = "therapy_sessions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    patient_id: Mapped[str] = mapped_column(String(64), nullable=False)
    therapist_id: Mapped[str] = mapped_column(String(64), nullable=False)
    session_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    duration: Mapped[int] = mapped_column(Integer, default=0)
    goal_ids: Mapped[list] = mapped_column(JSON, default=list)
    task_ids: Mapped[list] = mapped_column(JSON, default=list)
    activities: Mapped[list] = mapped_column(JSON, default=list)
    notes: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        Index("ix_therapy_sessions_patient_id", "patient_id"),
        Index("ix_therapy_sessions_date", "session_date"),
    )


class ProgressReportDB(Base):
    __tablename__ = "progress_reports"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    patient_id: Mapped[str] = mapped_column(String(64), nullable=False)
    therapist_id: Mapped[str] = mapped_column(String(64), nullable=False)
    period_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    period_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    goals: Mapped[list] = mapped_column(JSON, default=list)
    summary: Mapped[str] = mapped_column(Text, nullable=False)
    recommendations: Mapped[list] = mapped_column(JSON, default=list)
    next_steps: Mapped[list] = mapped_column(JSON, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        Index("ix_progress_reports_patient_id", "patient_id"),
        Index("ix_progress_reports_created_at", "created_at"),
    )


class CollaborationRequestDB(Base):
    __tablename__ = "therapist_requests"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    patient_id: Mapped[str] = mapped_column(String(64), nullable=False)
    therapist_id: Mapped[str] = mapped_column(String(64), nullable=False)
    patient_name: Mapped[str] = mapped_column(String(200), default="")
    therapist_name: Mapped[str] = mapped_column(String(200), default="")
    message: Mapped[str] = mapped_column(Text, default="")
    status: Mapped[str] = mapped_column(String(20), default="pending")  # pending, accepted, declined
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        Index("ix_therapist_requests_therapist_status", "therapist_id", "status"),
    )


class RelationshipDB(Base):
    __tablename__ = "therapist_patient_relationships"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    therapist_id: Mapped[str] = mapped_column(String(64), nullable=False)
    patient_id: Mapped[str] = mapped_column(String(64), nullable=False)
    therapist_name: Mapped[str] = mapped_column(String(200), default="")
    patient_name: Mapped[str] = mapped_column(String(200), default="")
    status: Mapped[str] = mapped_column(String(20), default="active")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        Index("ix_relationships_therapist_id", "therapist_id"),
        Index("ix_relationships_patient_id", "patient_id"),
    )


class AuditLog(Base):
    __tablename__ = "audit_log"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    user_id: Mapped[str | None] = mapped_column(String(255))
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False)
    resource_id: Mapped[str] = mapped_column(String(255), nullable=False)
    details: Mapped[dict | None] = mapped_column(JSON)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        Index("ix_audit_resource", "resource_type", "resource_id"),
        Index("ix_audit_timestamp", "timestamp"),
    )
