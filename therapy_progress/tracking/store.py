"""Abstract persistence interface consumed by the trackers."""

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional, Sequence

from therapy_progress.tracking.exceptions import DependencyFailureError
from therapy_progress.tracking.models import (
    CollaborationRequest,
    PatientProfile,
    ProgressReport,
    TherapistPatientRelationship,
    TherapyGoal,
    TherapySession,
    TherapyTask,
)

logger = logging.getLogger(__name__)


class TherapyStore(ABC):
    """Record store for tracking entities.

    ``get_*`` methods return ``None`` for unknown ids. Any failure of the
    underlying storage must surface as
    :class:`~therapy_progress.tracking.exceptions.DependencyFailureError`.
    """

    # Goals

    @abstractmethod
    async def create_goal(self, goal: TherapyGoal) -> TherapyGoal: ...

    @abstractmethod
    async def get_goal(self, goal_id: str) -> Optional[TherapyGoal]: ...

    @abstractmethod
    async def update_goal(self, goal: TherapyGoal) -> TherapyGoal: ...

    @abstractmethod
    async def list_goals_by_patient(self, patient_id: str) -> Sequence[TherapyGoal]: ...

    # Tasks

    @abstractmethod
    async def create_task(self, task: TherapyTask) -> TherapyTask: ...

    @abstractmethod
    async def get_task(self, task_id: str) -> Optional[TherapyTask]: ...

    @abstractmethod
    async def update_task(self, task: TherapyTask) -> TherapyTask: ...

    @abstractmethod
    async def list_tasks(self, active_only: bool = True) -> Sequence[TherapyTask]: ...

    # Patients

    @abstractmethod
    async def create_patient(self, patient: PatientProfile) -> PatientProfile: ...

    @abstractmethod
    async def get_patient(self, patient_id: str) -> Optional[PatientProfile]: ...

    # Sessions

    @abstractmethod
    async def create_session(self, session: TherapySession) -> TherapySession: ...

    @abstractmethod
    async def list_sessions_by_patient(
        self, patient_id: str, limit: int = 50
    ) -> Sequence[TherapySession]:
        """Most recent sessions first."""

    # Reports

    @abstractmethod
    async def create_progress_report(self, report: ProgressReport) -> ProgressReport: ...

    @abstractmethod
    async def list_progress_reports(
        self, patient_id: str, limit: int = 20
    ) -> Sequence[ProgressReport]:
        """Most recent reports first."""

    # Collaboration

    @abstractmethod
    async def create_request(self, request: CollaborationRequest) -> CollaborationRequest: ...

    @abstractmethod
    async def get_request(self, request_id: str) -> Optional[CollaborationRequest]: ...

    @abstractmethod
    async def update_request(self, request: CollaborationRequest) -> CollaborationRequest: ...

    @abstractmethod
    async def list_pending_requests(self, therapist_id: str) -> Sequence[CollaborationRequest]: ...

    @abstractmethod
    async def create_relationship(
        self, relationship: TherapistPatientRelationship
    ) -> TherapistPatientRelationship: ...

    @abstractmethod
    async def delete_relationship(self, relationship_id: str) -> None: ...

    # Audit

    @abstractmethod
    async def log_audit(
        self,
        action: str,
        resource_type: str,
        resource_id: str,
        user_id: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        """Record an audit entry.

        A failure here must not undo the change being audited.
        """


async def record_audit(
    store: TherapyStore,
    action: str,
    resource_type: str,
    resource_id: str,
    user_id: Optional[str] = None,
    details: Optional[dict[str, Any]] = None,
) -> None:
    """Write an audit entry for a change that is already stored.

    Audit writes are best-effort: a store failure is logged and the audited
    operation still succeeds.
    """
    try:
        await store.log_audit(action, resource_type, resource_id, user_id=user_id, details=details)
    except DependencyFailureError:
        logger.error(
            "Failed to write audit entry %s %s/%s", action, resource_type, resource_id, exc_info=True
        )
