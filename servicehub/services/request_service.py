"""
Service request submission and queries.
"""
from typing import Optional
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from servicehub.api.middleware.error_handler import NotFoundException
from servicehub.lib.logging import get_logger
from servicehub.models.service_requests import (
    PaymentMethod,
    PaymentStatus,
    RequestStatus,
    ServiceRequest,
    Urgency,
    WITHDRAWN_STATUSES,
)
from servicehub.models.workers import Worker

logger = get_logger(__name__)


def derive_urgency(preferred_time: Optional[str], requested: Optional[Urgency] = None) -> Urgency:
    """Emergency/ASAP time slots override whatever urgency was requested."""
    slot = (preferred_time or "").lower()
    if "emergency" in slot:
        return Urgency.EMERGENCY
    if "asap" in slot or "urgent" in slot:
        return Urgency.URGENT
    return requested or Urgency.ROUTINE


class RequestService:
    """Creates service requests and serves staff queries over them."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def get(self, request_id: UUID) -> ServiceRequest:
        request = self.db.get(ServiceRequest, request_id)
        if request is None:
            raise NotFoundException("Service request", str(request_id))
        return request

    def find_by_payment_ref(self, external_ref: str) -> Optional[ServiceRequest]:
        stmt = select(ServiceRequest).where(ServiceRequest.external_payment_ref == external_ref)
        return self.db.execute(stmt).scalars().first()

    def submit(
        self,
        *,
        name: str,
        phone: str,
        address: str,
        city: str,
        zip: str,
        service: str,
        email: Optional[str] = None,
        state: str = "MD",
        description: Optional[str] = None,
        preferred_date: Optional[str] = None,
        preferred_time: Optional[str] = None,
        urgency: Optional[Urgency] = None,
        attachment_url: Optional[str] = None,
        assigned_worker_id: Optional[UUID] = None,
        payment_method: Optional[PaymentMethod] = None,
        amount: int = 0,
        tax: int = 0,
        total_amount: Optional[int] = None,
    ) -> ServiceRequest:
        """Persist a new request in ``pending`` with a pending payment."""
        if assigned_worker_id is not None and self.db.get(Worker, assigned_worker_id) is None:
            raise NotFoundException("Worker", str(assigned_worker_id))

        request = ServiceRequest(
            name=name,
            phone=phone,
            email=email,
            address=address,
            city=city,
            state=state,
            zip=zip,
            service=service,
            description=description,
            preferred_date=preferred_date,
            preferred_time=preferred_time,
            urgency=derive_urgency(preferred_time, urgency),
            attachment_url=attachment_url,
            assigned_worker_id=assigned_worker_id,
            status=RequestStatus.PENDING,
            payment_method=payment_method,
            payment_status=PaymentStatus.PENDING,
            amount=amount,
            tax=tax,
            total_amount=total_amount if total_amount is not None else amount + tax,
        )
        self.db.add(request)
        self.db.commit()
        self.db.refresh(request)

        logger.info(
            "Service request submitted",
            extra={"request_id": str(request.id), "service": service, "zip": zip},
        )
        return request

    def list(
        self,
        status: Optional[RequestStatus] = None,
        payment_status: Optional[PaymentStatus] = None,
        assigned_worker_id: Optional[UUID] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[ServiceRequest], int]:
        """Newest first. Filtering on rejected or cancelled returns both."""
        stmt = select(ServiceRequest)

        if status is not None:
            if status in WITHDRAWN_STATUSES:
                stmt = stmt.where(ServiceRequest.status.in_(list(WITHDRAWN_STATUSES)))
            else:
                stmt = stmt.where(ServiceRequest.status == status)
        if payment_status is not None:
            stmt = stmt.where(ServiceRequest.payment_status == payment_status)
        if assigned_worker_id is not None:
            stmt = stmt.where(ServiceRequest.assigned_worker_id == assigned_worker_id)
        if search:
            pattern = f"%{search.strip()}%"
            stmt = stmt.where(or_(
                ServiceRequest.name.ilike(pattern),
                ServiceRequest.service.ilike(pattern),
                ServiceRequest.description.ilike(pattern),
                ServiceRequest.phone.ilike(pattern),
                ServiceRequest.email.ilike(pattern),
                ServiceRequest.address.ilike(pattern),
            ))

        total = self.db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
        rows = self.db.execute(
            stmt.order_by(ServiceRequest.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).scalars().all()
        return list(rows), total

    def summary(self) -> dict:
        """Total and per-status counts."""
        rows = self.db.execute(
            select(ServiceRequest.status, func.count()).group_by(ServiceRequest.status)
        ).all()
        counts = {status.value: count for status, count in rows}
        return {"total": sum(counts.values()), "counts_by_status": counts}
