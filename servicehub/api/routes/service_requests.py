"""
Service request routes.

Provides:
- POST /service-requests: Public submission
- GET /service-requests: Staff listing with filters and pagination
- GET /service-requests/summary: Counts by status
- GET /service-requests/{id}: Single request
- POST /service-requests/{id}/accept|reject|complete: Lifecycle transitions
- PUT /service-requests/{id}/schedule: Reschedule an accepted request
- PUT /service-requests/{id}/worker: Assign or clear the worker
- POST /service-requests/{id}/worker-accept, /remarks: Assigned worker actions
"""
import math
from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session

from servicehub.api.dependencies import (
    Principal,
    get_current_staff,
    get_current_worker_id,
    get_db,
    get_lifecycle_manager,
    get_payment_orchestrator,
)
from servicehub.api.middleware.error_handler import (
    GatewayUnavailableException,
    InvalidTransitionException,
    RefundFailedException,
    ValidationException,
)
from servicehub.lib.logging import get_logger
from servicehub.lib.validators import (
    sanitize_email,
    sanitize_phone,
    sanitize_text,
    validate_email,
    validate_phone,
    validate_zip,
)
from servicehub.models.service_requests import (
    PaymentMethod,
    PaymentStatus,
    RequestStatus,
    ServiceRequest,
    Urgency,
)
from servicehub.services.lifecycle_service import LifecycleManager, can_transition
from servicehub.services.payment_service import PaymentOrchestrator
from servicehub.services.request_service import RequestService


logger = get_logger(__name__)
router = APIRouter(prefix="/service-requests", tags=["service-requests"])


# Request schemas
class ServiceRequestCreate(BaseModel):
    """Submission body; ZIP, phone and email follow the booking form rules."""
    name: str = Field(min_length=1, max_length=255)
    phone: str
    email: Optional[str] = None
    address: str = Field(min_length=1, max_length=500)
    city: str = Field(min_length=1, max_length=255)
    state: str = "MD"
    zip: str
    service: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    preferred_date: Optional[str] = None
    preferred_time: Optional[str] = None
    urgency: Optional[Urgency] = None
    attachment_url: Optional[str] = None
    assigned_worker_id: Optional[UUID] = None
    payment_method: Optional[PaymentMethod] = None
    amount: int = Field(0, ge=0, description="Service amount in cents")
    tax: int = Field(0, ge=0, description="Tax in cents")
    total_amount: Optional[int] = Field(None, ge=0, description="Total in cents (defaults to amount + tax)")

    @field_validator("name", "address", "city", "service", mode="before")
    @classmethod
    def _trim(cls, v):
        return sanitize_text(v) if isinstance(v, str) else v

    @field_validator("zip", mode="before")
    @classmethod
    def _check_zip(cls, v):
        value = sanitize_text(v)
        error = validate_zip(value)
        if error:
            raise ValueError(error)
        return value

    @field_validator("phone", mode="before")
    @classmethod
    def _check_phone(cls, v):
        value = sanitize_phone(v)
        error = validate_phone(value)
        if error:
            raise ValueError(error)
        return value

    @field_validator("email", mode="before")
    @classmethod
    def _check_email(cls, v):
        if v is None or not str(v).strip():
            return None
        value = sanitize_email(v)
        error = validate_email(value)
        if error:
            raise ValueError(error)
        return value


class AcceptBody(BaseModel):
    scheduled_at: datetime


class RejectBody(BaseModel):
    reason: str = Field(min_length=1)
    kind: Literal["rejected", "cancelled"] = "rejected"
    refund: bool = Field(False, description="Refund the captured card payment before rejecting")
    refund_amount: Optional[int] = Field(None, description="Cents; omit for the full remaining amount")


class CompleteBody(BaseModel):
    completion_notes: Optional[str] = None


class AssignWorkerBody(BaseModel):
    worker_id: Optional[UUID] = None


class RemarksBody(BaseModel):
    remarks: str


# Response models
class ServiceRequestResponse(BaseModel):
    id: UUID
    name: str
    phone: str
    email: Optional[str]
    address: str
    city: str
    state: str
    zip: str
    service: str
    description: Optional[str]
    attachment_url: Optional[str]
    urgency: Urgency
    preferred_date: Optional[str]
    preferred_time: Optional[str]
    scheduled_at: Optional[datetime]
    assigned_worker_id: Optional[UUID]
    worker_accepted: bool
    worker_remarks: Optional[str]
    status: RequestStatus
    payment_method: Optional[PaymentMethod]
    payment_status: PaymentStatus
    amount: int
    tax: int
    total_amount: int
    amount_paid: int
    amount_refunded: int
    external_payment_ref: Optional[str]
    refund_pending: bool
    paid_at: Optional[datetime]
    rejection_reason: Optional[str]
    completion_notes: Optional[str]
    completed_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


def _serialize(request: ServiceRequest) -> dict:
    return ServiceRequestResponse.model_validate(request).model_dump(mode="json")


def _envelope(request: ServiceRequest, message: Optional[str] = None) -> dict:
    body = {"success": True, "data": _serialize(request)}
    if message:
        body["message"] = message
    return body


@router.post("", status_code=status.HTTP_201_CREATED, summary="Submit a service request")
def create_service_request(
    body: ServiceRequestCreate,
    db: Session = Depends(get_db),
) -> dict:
    request = RequestService(db).submit(**body.model_dump())
    return _envelope(request, "Service request submitted successfully")


@router.get("", summary="List service requests")
def list_service_requests(
    status_filter: Optional[RequestStatus] = Query(None, alias="status"),
    payment_status: Optional[PaymentStatus] = Query(None),
    assigned_worker_id: Optional[UUID] = Query(None),
    search: Optional[str] = Query(None, description="Matches name, service, description, phone, email, address"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    staff: Principal = Depends(get_current_staff),
) -> dict:
    items, total = RequestService(db).list(
        status=status_filter,
        payment_status=payment_status,
        assigned_worker_id=assigned_worker_id,
        search=search,
        page=page,
        limit=limit,
    )
    return {
        "success": True,
        "data": [_serialize(r) for r in items],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": math.ceil(total / limit) if total else 0,
        },
    }


@router.get("/summary", summary="Counts by status")
def service_request_summary(
    db: Session = Depends(get_db),
    staff: Principal = Depends(get_current_staff),
) -> dict:
    return {"success": True, "data": RequestService(db).summary()}


@router.get("/{request_id}")
def get_service_request(
    request_id: UUID,
    db: Session = Depends(get_db),
    staff: Principal = Depends(get_current_staff),
) -> dict:
    return _envelope(RequestService(db).get(request_id))


@router.post("/{request_id}/accept", summary="Schedule and accept")
async def accept_service_request(
    request_id: UUID,
    body: AcceptBody,
    db: Session = Depends(get_db),
    lifecycle: LifecycleManager = Depends(get_lifecycle_manager),
    staff: Principal = Depends(get_current_staff),
) -> dict:
    request = RequestService(db).get(request_id)
    await lifecycle.accept(request, body.scheduled_at)
    return _envelope(request, "Service request accepted")


@router.put("/{request_id}/schedule", summary="Move the appointment of an accepted request")
async def reschedule_service_request(
    request_id: UUID,
    body: AcceptBody,
    db: Session = Depends(get_db),
    lifecycle: LifecycleManager = Depends(get_lifecycle_manager),
    staff: Principal = Depends(get_current_staff),
) -> dict:
    request = RequestService(db).get(request_id)
    await lifecycle.reschedule(request, body.scheduled_at)
    return _envelope(request)


@router.post("/{request_id}/reject", summary="Reject, optionally refunding first")
async def reject_service_request(
    request_id: UUID,
    body: RejectBody,
    db: Session = Depends(get_db),
    lifecycle: LifecycleManager = Depends(get_lifecycle_manager),
    payments: PaymentOrchestrator = Depends(get_payment_orchestrator),
    staff: Principal = Depends(get_current_staff),
) -> dict:
    """
    A failed refund does not block the rejection; the request is flagged
    ``refund_pending`` so staff can settle it by hand.
    """
    request = RequestService(db).get(request_id)
    kind = RequestStatus(body.kind)
    if not body.reason.strip():
        raise ValidationException("Rejection reason is required", errors={"reason": "Rejection reason is required"})
    if not can_transition(request.status, kind):
        raise InvalidTransitionException(request.status.value, kind.value)

    if body.refund and request.payment_method == PaymentMethod.GATEWAY and request.refundable_amount > 0:
        try:
            await payments.refund(request.id, body.refund_amount, reason=body.reason)
        except (RefundFailedException, GatewayUnavailableException) as e:
            logger.warning(
                "Refund failed during rejection, flagging for manual follow-up",
                extra={"request_id": str(request.id), "error": e.message},
            )
            payments.flag_refund_pending(request)

    await lifecycle.reject(request, body.reason, kind)
    return _envelope(request, "Service request rejected")


@router.post("/{request_id}/complete")
async def complete_service_request(
    request_id: UUID,
    body: CompleteBody,
    db: Session = Depends(get_db),
    lifecycle: LifecycleManager = Depends(get_lifecycle_manager),
    staff: Principal = Depends(get_current_staff),
) -> dict:
    request = RequestService(db).get(request_id)
    await lifecycle.complete(request, body.completion_notes)
    return _envelope(request, "Service request completed")


@router.put("/{request_id}/worker")
def assign_worker(
    request_id: UUID,
    body: AssignWorkerBody,
    db: Session = Depends(get_db),
    lifecycle: LifecycleManager = Depends(get_lifecycle_manager),
    staff: Principal = Depends(get_current_staff),
) -> dict:
    request = RequestService(db).get(request_id)
    lifecycle.reassign_worker(request, body.worker_id)
    return _envelope(request)


@router.post("/{request_id}/worker-accept")
def worker_accept(
    request_id: UUID,
    db: Session = Depends(get_db),
    lifecycle: LifecycleManager = Depends(get_lifecycle_manager),
    worker_id: UUID = Depends(get_current_worker_id),
) -> dict:
    request = RequestService(db).get(request_id)
    lifecycle.worker_accept(request, worker_id)
    return _envelope(request, "Job accepted")


@router.post("/{request_id}/remarks")
def add_remarks(
    request_id: UUID,
    body: RemarksBody,
    db: Session = Depends(get_db),
    lifecycle: LifecycleManager = Depends(get_lifecycle_manager),
    worker_id: UUID = Depends(get_current_worker_id),
) -> dict:
    request = RequestService(db).get(request_id)
    lifecycle.add_worker_remarks(request, worker_id, body.remarks)
    return _envelope(request)
