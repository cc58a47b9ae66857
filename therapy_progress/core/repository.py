"""SQLAlchemy repositories backing the tracking engine.

Each repository maps one table to its domain model. :class:`SqlTherapyStore`
composes them behind the :class:`TherapyStore` interface and turns database
errors into :class:`DependencyFailureError`. A failed call rolls back the
session's open transaction, so earlier writes made through the same session
are discarded with it.
"""

from __future__ import annotations

import functools
from enum import Enum
from typing import Any, Optional, Sequence

from pydantic import BaseModel
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from therapy_progress.core.models import (
    AuditLog,
    CollaborationRequestDB,
    PatientDB,
    ProgressReportDB,
    RelationshipDB,
    TherapyGoalDB,
    TherapySessionDB,
    TherapyTaskDB,
)
from therapy_progress.tracking.exceptions import DependencyFailureError, NotFoundError
from therapy_progress.tracking.models import (
    CollaborationRequest,
    PatientProfile,
    ProgressReport,
    RequestStatus,
    TherapistPatientRelationship,
    TherapyGoal,
    TherapySession,
    TherapyTask,
)
from therapy_progress.tracking.store import TherapyStore


def _row_values(model: BaseModel, json_fields: frozenset[str] = frozenset()) -> dict[str, Any]:
    """Column values for *model*: JSON-safe nested fields, plain enum values."""
    values = model.model_dump()
    if json_fields:
        values.update(model.model_dump(mode="json", include=set(json_fields)))
    return {k: v.value if isinstance(v, Enum) else v for k, v in values.items()}


def _apply(row: Any, values: dict[str, Any]) -> None:
    for k, v in values.items():
        if k != "id":
            setattr(row, k, v)


class PatientRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, patient: PatientProfile) -> PatientProfile:
        self.session.add(PatientDB(**_row_values(patient)))
        await self.session.flush()
        return patient

    async def get_by_id(self, patient_id: str) -> Optional[PatientProfile]:
        row = await self.session.get(PatientDB, patient_id)
        return PatientProfile.model_validate(row, from_attributes=True) if row else None


class GoalRepository:
    _json_fields = frozenset({"baseline", "target", "mastery_criteria", "current_progress"})

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, goal: TherapyGoal) -> TherapyGoal:
        self.session.add(TherapyGoalDB(**_row_values(goal, self._json_fields)))
        await self.session.flush()
        return goal

    async def get_by_id(self, goal_id: str) -> Optional[TherapyGoal]:
        row = await self.session.get(TherapyGoalDB, goal_id)
        return TherapyGoal.model_validate(row, from_attributes=True) if row else None

    async def update(self, goal: TherapyGoal) -> TherapyGoal:
        row = await self.session.get(TherapyGoalDB, goal.id)
        if row is None:
            raise NotFoundError("Goal", goal.id)
        _apply(row, _row_values(goal, self._json_fields))
        await self.session.flush()
        return goal

    async def list_by_patient(self, patient_id: str) -> Sequence[TherapyGoal]:
        stmt = (
            select(TherapyGoalDB)
            .where(TherapyGoalDB.patient_id == patient_id)
            .order_by(TherapyGoalDB.created_at)
        )
        result = await self.session.execute(stmt)
        return [TherapyGoal.model_validate(r, from_attributes=True) for r in result.scalars().all()]


class TaskRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, task: TherapyTask) -> TherapyTask:
        self.session.add(TherapyTaskDB(**_row_values(task)))
        await self.session.flush()
        return task

    async def get_by_id(self, task_id: str) -> Optional[TherapyTask]:
        row = await self.session.get(TherapyTaskDB, task_id)
        return TherapyTask.model_validate(row, from_attributes=True) if row else None

    async def update(self, task: TherapyTask) -> TherapyTask:
        row = await self.session.get(TherapyTaskDB, task.id)
        if row is None:
            raise NotFoundError("Task", task.id)
        _apply(row, _row_values(task))
        await self.session.flush()
        return task

    async def list(self, active_only: bool = True) -> Sequence[TherapyTask]:
        stmt = select(TherapyTaskDB)
        if active_only:
            stmt = stmt.where(TherapyTaskDB.is_active.is_(True))
        stmt = stmt.order_by(TherapyTaskDB.created_at)
        result = await self.session.execute(stmt)
        return [TherapyTask.model_validate(r, from_attributes=True) for r in result.scalars().all()]


class SessionRepository:
    _json_fields = frozenset({"goal_ids", "task_ids", "activities"})

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, therapy_session: TherapySession) -> TherapySession:
        self.session.add(TherapySessionDB(**_row_values(therapy_session, self._json_fields)))
        await self.session.flush()
        return therapy_session

    async def list_by_patient(self, patient_id: str, limit: int = 50) -> Sequence[TherapySession]:
        stmt = (
            select(TherapySessionDB)
            .where(TherapySessionDB.patient_id == patient_id)
            .order_by(TherapySessionDB.session_date.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return [TherapySession.model_validate(r, from_attributes=True) for r in result.scalars().all()]


class ReportRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, report: ProgressReport) -> ProgressReport:
        data = report.model_dump(mode="json", include={"goals", "recommendations", "next_steps"})
        self.session.add(
            ProgressReportDB(
                id=report.id,
                patient_id=report.patient_id,
                therapist_id=report.therapist_id,
                period_start=report.period.start_date,
                period_end=report.period.end_date,
                summary=report.summary,
                created_at=report.created_at,
                **data,
            )
        )
        await self.session.flush()
        return report

    async def list_by_patient(self, patient_id: str, limit: int = 20) -> Sequence[ProgressReport]:
        stmt = (
            select(ProgressReportDB)
            .where(ProgressReportDB.patient_id == patient_id)
            .order_by(ProgressReportDB.created_at.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return [self._to_model(r) for r in result.scalars().all()]

    @staticmethod
    def _to_model(row: ProgressReportDB) -> ProgressReport:
        return ProgressReport.model_validate(
            {
                "id": row.id,
                "patient_id": row.patient_id,
                "therapist_id": row.therapist_id,
                "period": {"start_date": row.period_start, "end_date": row.period_end},
                "goals": row.goals,
                "summary": row.summary,
                "recommendations": row.recommendations,
                "next_steps": row.next_steps,
                "created_at": row.created_at,
            }
        )


class RequestRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, request: CollaborationRequest) -> CollaborationRequest:
        self.session.add(CollaborationRequestDB(**_row_values(request)))
        await self.session.flush()
        return request

    async def get_by_id(self, request_id: str) -> Optional[CollaborationRequest]:
        row = await self.session.get(CollaborationRequestDB, request_id)
        return CollaborationRequest.model_validate(row, from_attributes=True) if row else None

    async def update(self, request: CollaborationRequest) -> CollaborationRequest:
        row = await self.session.get(CollaborationRequestDB, request.id)
        if row is None:
            raise NotFoundError("Request", request.id)
        row.status = request.status.value
        row.updated_at = request.updated_at
        await self.session.flush()
        return request

    async def list_pending(self, therapist_id: str, limit: int = 50) -> Sequence[CollaborationRequest]:
        stmt = (
            select(CollaborationRequestDB)
            .where(
                CollaborationRequestDB.therapist_id == therapist_id,
                CollaborationRequestDB.status == RequestStatus.PENDING.value,
            )
            .order_by(CollaborationRequestDB.created_at.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return [
            CollaborationRequest.model_validate(r, from_attributes=True)
            for r in result.scalars().all()
        ]


class RelationshipRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, relationship: TherapistPatientRelationship) -> TherapistPatientRelationship:
        self.session.add(RelationshipDB(**_row_values(relationship)))
        await self.session.flush()
        return relationship

    async def delete(self, relationship_id: str) -> None:
        await self.session.execute(delete(RelationshipDB).where(RelationshipDB.id == relationship_id))
        await self.session.flush()

    async def list_by_therapist(self, therapist_id: str) -> Sequence[TherapistPatientRelationship]:
        stmt = select(RelationshipDB).where(RelationshipDB.therapist_id == therapist_id)
        result = await self.session.execute(stmt)
        return [
            TherapistPatientRelationship.model_validate(r, from_attributes=True)
            for r in result.scalars().all()
        ]


class AuditRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def log_action(
        self,
        action: str,
        resource_type: str,
        resource_id: str,
        user_id: Optional[str] = None,
        details: Optional[dict] = None,
        flush: bool = True,
    ) -> AuditLog:
        entry = AuditLog(
            user_id=user_id,
            action=action,
            resource_type=resource_type,
            resource_id=str(resource_id),
            details=details,
        )
        self.session.add(entry)
        if flush:
            await self.session.flush()
        return entry

    async def get_by_resource(self, resource_type: str, resource_id: str, limit: int = 50) -> Sequence[AuditLog]:
        stmt = (
            select(AuditLog)
            .where(AuditLog.resource_type == resource_type, AuditLog.resource_id == resource_id)
            .order_by(AuditLog.timestamp.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()


def _db_call(func):
    """Translate SQLAlchemy failures into DependencyFailureError."""

    @functools.wraps(func)
    async def wrapper(self: "SqlTherapyStore", *args, **kwargs):
        try:
            return await func(self, *args, **kwargs)
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise DependencyFailureError(f"{func.__name__} failed: {e}") from e

    return wrapper


class SqlTherapyStore(TherapyStore):
    """:class:`TherapyStore` over a single SQLAlchemy async session.

    Writes are flushed, not committed; the caller owns the transaction.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.patients = PatientRepository(session)
        self.goals = GoalRepository(session)
        self.tasks = TaskRepository(session)
        self.sessions = SessionRepository(session)
        self.reports = ReportRepository(session)
        self.requests = RequestRepository(session)
        self.relationships = RelationshipRepository(session)
        self.audit = AuditRepository(session)

    @_db_call
    async def create_goal(self, goal: TherapyGoal) -> TherapyGoal:
        return await self.goals.create(goal)

    @_db_call
    async def get_goal(self, goal_id: str) -> Optional[TherapyGoal]:
        return await self.goals.get_by_id(goal_id)

    @_db_call
    async def update_goal(self, goal: TherapyGoal) -> TherapyGoal:
        return await self.goals.update(goal)

    @_db_call
    async def list_goals_by_patient(self, patient_id: str) -> Sequence[TherapyGoal]:
        return await self.goals.list_by_patient(patient_id)

    @_db_call
    async def create_task(self, task: TherapyTask) -> TherapyTask:
        return await self.tasks.create(task)

    @_db_call
    async def get_task(self, task_id: str) -> Optional[TherapyTask]:
        return await self.tasks.get_by_id(task_id)

    @_db_call
    async def update_task(self, task: TherapyTask) -> TherapyTask:
        return await self.tasks.update(task)

    @_db_call
    async def list_tasks(self, active_only: bool = True) -> Sequence[TherapyTask]:
        return await self.tasks.list(active_only=active_only)

    @_db_call
    async def create_patient(self, patient: PatientProfile) -> PatientProfile:
        return await self.patients.create(patient)

    @_db_call
    async def get_patient(self, patient_id: str) -> Optional[PatientProfile]:
        return await self.patients.get_by_id(patient_id)

    @_db_call
    async def create_session(self, session: TherapySession) -> TherapySession:
        return await self.sessions.create(session)

    @_db_call
    async def list_sessions_by_patient(self, patient_id: str, limit: int = 50) -> Sequence[TherapySession]:
        return await self.sessions.list_by_patient(patient_id, limit=limit)

    @_db_call
    async def create_progress_report(self, report: ProgressReport) -> ProgressReport:
        return await self.reports.create(report)

    @_db_call
    async def list_progress_reports(self, patient_id: str, limit: int = 20) -> Sequence[ProgressReport]:
        return await self.reports.list_by_patient(patient_id, limit=limit)

    @_db_call
    async def create_request(self, request: CollaborationRequest) -> CollaborationRequest:
        return await self.requests.create(request)

    @_db_call
    async def get_request(self, request_id: str) -> Optional[CollaborationRequest]:
        return await self.requests.get_by_id(request_id)

    @_db_call
    async def update_request(self, request: CollaborationRequest) -> CollaborationRequest:
        return await self.requests.update(request)

    @_db_call
    async def list_pending_requests(self, therapist_id: str) -> Sequence[CollaborationRequest]:
        return await self.requests.list_pending(therapist_id)

    @_db_call
    async def create_relationship(
        self, relationship: TherapistPatientRelationship
    ) -> TherapistPatientRelationship:
        return await self.relationships.create(relationship)

    @_db_call
    async def delete_relationship(self, relationship_id: str) -> None:
        await self.relationships.delete(relationship_id)

    @_db_call
    async def log_audit(
        self,
        action: str,
        resource_type: str,
        resource_id: str,
        user_id: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        # staged with the caller's transaction; an audit row is never flushed on its own
        await self.audit.log_action(
            action, resource_type, resource_id, user_id=user_id, details=details, flush=False
        )
