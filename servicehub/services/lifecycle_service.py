"""
Service request lifecycle manager.

Owns the primary status state machine:

    pending    --accept(scheduled_at)--> in-process --complete--> completed
    pending    --reject(reason)--------> rejected | cancelled
    in-process --reject(reason)--------> rejected | cancelled

Every transition is validated before the row is touched, so a refused
transition leaves the record exactly as it was. Payment is tracked
independently: a request can be accepted before it is paid.
"""
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from servicehub.api.middleware.error_handler import (
    BadRequestException,
    ForbiddenException,
    InvalidTransitionException,
    NotFoundException,
    ValidationException,
)
from servicehub.lib.logging import get_logger
from servicehub.lib.metrics import MetricsCollector, get_metrics_collector
from servicehub.models.service_requests import (
    RequestStatus,
    ServiceRequest,
    WITHDRAWN_STATUSES,
)
from servicehub.models.workers import Worker
from servicehub.services.notification_service import NotificationService, get_notification_service

logger = get_logger(__name__)


TRANSITIONS: dict[RequestStatus, frozenset[RequestStatus]] = {
    RequestStatus.PENDING: frozenset({
        RequestStatus.IN_PROCESS,
        RequestStatus.REJECTED,
        RequestStatus.CANCELLED,
    }),
    RequestStatus.IN_PROCESS: frozenset({
        RequestStatus.COMPLETED,
        RequestStatus.REJECTED,
        RequestStatus.CANCELLED,
    }),
    RequestStatus.COMPLETED: frozenset(),
    RequestStatus.REJECTED: frozenset(),
    RequestStatus.CANCELLED: frozenset(),
}

# Tolerated clock skew between the staff client and the server
SCHEDULE_SKEW = timedelta(minutes=1)


def can_transition(from_status: RequestStatus, to_status: RequestStatus) -> bool:
    return to_status in TRANSITIONS.get(from_status, frozenset())


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class LifecycleManager:
    """
    Applies staff and worker actions to a service request.

    Args:
        db_session: Session the request was loaded from
        notification_service: Customer notifications (defaults to global instance)
        metrics: Metrics collector (defaults to global instance)
        clock: Returns "now"; injectable for tests
    """

    def __init__(
        self,
        db_session: Session,
        notification_service: Optional[NotificationService] = None,
        metrics: Optional[MetricsCollector] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db_session
        self.notifications = notification_service or get_notification_service()
        self.metrics = metrics or get_metrics_collector()
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def _require_transition(self, request: ServiceRequest, target: RequestStatus) -> None:
        if not can_transition(request.status, target):
            logger.warning(
                "Rejected lifecycle transition",
                extra={
                    "request_id": str(request.id),
                    "from_status": request.status.value,
                    "to_status": target.value,
                },
            )
            raise InvalidTransitionException(request.status.value, target.value)

    def _require_open(self, request: ServiceRequest, action: str) -> None:
        if request.is_terminal:
            raise InvalidTransitionException(
                request.status.value,
                request.status.value,
                message=f"Cannot {action} a {request.status.value} service request",
            )

    def _save(self, request: ServiceRequest) -> None:
        request.touch()
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(request)

    def _record_transition(self, request: ServiceRequest, previous: RequestStatus) -> None:
        self.metrics.increment_transitions(previous.value, request.status.value)
        logger.info(
            "Service request transitioned",
            extra={
                "request_id": str(request.id),
                "from_status": previous.value,
                "to_status": request.status.value,
            },
        )

    async def accept(self, request: ServiceRequest, scheduled_at: datetime) -> ServiceRequest:
        """Schedule the job and move it to in-process."""
        self._require_transition(request, RequestStatus.IN_PROCESS)

        scheduled = _as_utc(scheduled_at)
        if scheduled < self.clock() - SCHEDULE_SKEW:
            raise ValidationException(
                "Scheduled time must not be in the past",
                errors={"scheduled_at": "Scheduled time must not be in the past"},
            )

        previous = request.status
        request.status = RequestStatus.IN_PROCESS
        request.scheduled_at = scheduled
        self._save(request)
        self._record_transition(request, previous)

        await self.notifications.send_schedule_confirmation(request)
        return request

    async def reschedule(self, request: ServiceRequest, scheduled_at: datetime) -> ServiceRequest:
        """Move the appointment of an accepted request."""
        if request.status != RequestStatus.IN_PROCESS:
            raise InvalidTransitionException(
                request.status.value,
                RequestStatus.IN_PROCESS.value,
                message="Only accepted requests can be rescheduled",
            )
        scheduled = _as_utc(scheduled_at)
        if scheduled < self.clock() - SCHEDULE_SKEW:
            raise ValidationException(
                "Scheduled time must not be in the past",
                errors={"scheduled_at": "Scheduled time must not be in the past"},
            )
        if request.scheduled_at is not None and _as_utc(request.scheduled_at) == scheduled:
            return request

        request.scheduled_at = scheduled
        self._save(request)
        await self.notifications.send_schedule_confirmation(request)
        return request

    async def reject(
        self,
        request: ServiceRequest,
        reason: str,
        kind: RequestStatus = RequestStatus.REJECTED,
    ) -> ServiceRequest:
        """
        Withdraw the request with a mandatory reason.

        ``kind`` records the legacy ``cancelled`` value when the withdrawal
        came from the customer side; both are the same terminal outcome.
        Refunds are a separate decision made through the payment orchestrator.
        """
        if kind not in WITHDRAWN_STATUSES:
            raise ValidationException("Invalid rejection kind", errors={"kind": f"Unsupported value '{kind.value}'"})
        reason = (reason or "").strip()
        if not reason:
            raise ValidationException("Rejection reason is required", errors={"reason": "Rejection reason is required"})
        self._require_transition(request, kind)

        previous = request.status
        request.status = kind
        request.rejection_reason = reason
        # A withdrawn request keeps no appointment
        request.scheduled_at = None
        self._save(request)
        self._record_transition(request, previous)

        await self.notifications.send_rejection_notice(request)
        return request

    async def complete(self, request: ServiceRequest, completion_notes: Optional[str] = None) -> ServiceRequest:
        """Close out an accepted request."""
        self._require_transition(request, RequestStatus.COMPLETED)

        previous = request.status
        request.status = RequestStatus.COMPLETED
        request.completed_at = self.clock()
        notes = (completion_notes or "").strip()
        if notes:
            request.completion_notes = notes
        self._save(request)
        self._record_transition(request, previous)

        await self.notifications.send_completion_notice(request)
        return request

    def reassign_worker(self, request: ServiceRequest, worker_id: Optional[UUID]) -> ServiceRequest:
        """Assign, replace or clear (``None``) the worker. Status is unchanged."""
        self._require_open(request, "reassign")

        if worker_id is not None:
            worker = self.db.get(Worker, worker_id)
            if worker is None or not worker.is_active:
                raise NotFoundException("Worker", str(worker_id))

        if request.assigned_worker_id == worker_id:
            return request

        request.assigned_worker_id = worker_id
        request.worker_accepted = False
        request.worker_accepted_at = None
        self._save(request)
        logger.info(
            "Worker assignment changed",
            extra={"request_id": str(request.id), "worker_id": str(worker_id) if worker_id else None},
        )
        return request

    def _require_assigned(self, request: ServiceRequest, worker_id: UUID, action: str) -> None:
        if request.assigned_worker_id is None or request.assigned_worker_id != worker_id:
            raise ForbiddenException(f"Not authorized to {action} this job")

    def worker_accept(self, request: ServiceRequest, worker_id: UUID) -> ServiceRequest:
        """The assigned worker acknowledges the job."""
        self._require_open(request, "accept")
        self._require_assigned(request, worker_id, "accept")
        if request.worker_accepted:
            raise BadRequestException("Job already accepted")

        request.worker_accepted = True
        request.worker_accepted_at = self.clock()
        self._save(request)
        return request

    def add_worker_remarks(self, request: ServiceRequest, worker_id: UUID, remarks: str) -> ServiceRequest:
        self._require_assigned(request, worker_id, "add remarks to")
        request.worker_remarks = (remarks or "").strip() or None
        self._save(request)
        return request

    async def on_payment_received(self, request: ServiceRequest) -> None:
        """Listener for the payment orchestrator's ``paid`` transition."""
        logger.info(
            "Payment settled for service request",
            extra={
                "request_id": str(request.id),
                "status": request.status.value,
                "amount_paid": request.amount_paid,
            },
        )
        await self.notifications.send_payment_receipt(request)
