"""Collaboration request workflow between patients and therapists.

``pending`` is the only state a request can leave. Accepting a request also
creates the therapist-patient relationship; the two writes succeed or fail
together. The relationship is written first and deleted again if the request
update fails.
"""

import logging
from datetime import datetime
from typing import Callable, Sequence

from therapy_progress.tracking.exceptions import (
    DependencyFailureError,
    InvalidStateError,
    NotFoundError,
)
from therapy_progress.tracking.models import (
    AcceptanceResult,
    CollaborationRequest,
    RelationshipStatus,
    RequestStatus,
    TherapistPatientRelationship,
    utcnow,
)
from therapy_progress.tracking.store import TherapyStore, record_audit

logger = logging.getLogger(__name__)


class CollaborationWorkflow:
    """State machine for patient -> therapist connection requests."""

    def __init__(self, store: TherapyStore, clock: Callable[[], datetime] = utcnow) -> None:
        self.store = store
        self._clock = clock

    async def submit_request(
        self,
        patient_id: str,
        therapist_id: str,
        message: str = "",
        patient_name: str = "",
        therapist_name: str = "",
    ) -> CollaborationRequest:
        now = self._clock()
        request = CollaborationRequest(
            patient_id=patient_id,
            therapist_id=therapist_id,
            patient_name=patient_name,
            therapist_name=therapist_name,
            message=message,
            status=RequestStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        saved = await self.store.create_request(request)
        logger.info("Request %s submitted: patient %s -> therapist %s", saved.id, patient_id, therapist_id)
        return saved

    async def pending_requests(self, therapist_id: str) -> Sequence[CollaborationRequest]:
        return await self.store.list_pending_requests(therapist_id)

    async def accept(self, request_id: str) -> AcceptanceResult:
        request = await self._get_pending(request_id, RequestStatus.ACCEPTED)
        now = self._clock()

        relationship = await self.store.create_relationship(
            TherapistPatientRelationship(
                therapist_id=request.therapist_id,
                patient_id=request.patient_id,
                therapist_name=request.therapist_name,
                patient_name=request.patient_name,
                status=RelationshipStatus.ACTIVE,
                created_at=now,
                updated_at=now,
            )
        )

        try:
            updated = await self.store.update_request(
                request.model_copy(update={"status": RequestStatus.ACCEPTED, "updated_at": now})
            )
        except Exception as e:
            await self._discard_relationship(relationship, request_id)
            raise DependencyFailureError(
                f"Accepting request {request_id} failed; relationship rolled back"
            ) from e

        logger.info(
            "Request %s accepted; relationship %s created", request_id, relationship.id
        )
        await record_audit(
            self.store,
            "accept",
            "collaboration_request",
            request_id,
            user_id=request.therapist_id,
            details={"relationship_id": relationship.id},
        )
        return AcceptanceResult(request=updated, relationship=relationship)

    async def decline(self, request_id: str) -> CollaborationRequest:
        request = await self._get_pending(request_id, RequestStatus.DECLINED)
        updated = await self.store.update_request(
            request.model_copy(
                update={"status": RequestStatus.DECLINED, "updated_at": self._clock()}
            )
        )
        logger.info("Request %s declined", request_id)
        await record_audit(
            self.store, "decline", "collaboration_request", request_id, user_id=request.therapist_id
        )
        return updated

    async def _get_pending(self, request_id: str, attempted: RequestStatus) -> CollaborationRequest:
        request = await self.store.get_request(request_id)
        if request is None:
            raise NotFoundError("Request", request_id)
        if request.status != RequestStatus.PENDING:
            raise InvalidStateError("Request", request_id, request.status.value, attempted.value)
        return request

    async def _discard_relationship(
        self, relationship: TherapistPatientRelationship, request_id: str
    ) -> None:
        try:
            await self.store.delete_relationship(relationship.id)
        except Exception:
            logger.exception(
                "Could not roll back relationship %s for request %s",
                relationship.id,
                request_id,
            )
