"""
ServiceRequest model - a customer's request for a home service.
"""
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4, UUID
import enum

from sqlalchemy import (
    String,
    Text,
    Integer,
    Boolean,
    DateTime,
    ForeignKey,
    Uuid,
    Enum as SQLEnum,
    CheckConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from servicehub.lib.db import Base


class RequestStatus(str, enum.Enum):
    """
    Primary lifecycle.
    pending → in-process → completed; pending/in-process → rejected (or cancelled).
    """
    PENDING = "pending"
    IN_PROCESS = "in-process"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


TERMINAL_STATUSES = frozenset({
    RequestStatus.COMPLETED,
    RequestStatus.CANCELLED,
    RequestStatus.REJECTED,
})

# Legacy "cancelled" and "rejected" are the same withdrawn outcome
WITHDRAWN_STATUSES = frozenset({RequestStatus.CANCELLED, RequestStatus.REJECTED})


class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    GATEWAY = "gateway"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    PARTIALLY_PAID = "partially_paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class Urgency(str, enum.Enum):
    ROUTINE = "routine"
    URGENT = "urgent"
    EMERGENCY = "emergency"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ServiceRequest(Base):
    """
    Service request entity.

    Amounts (amount, tax, total_amount, amount_paid, amount_refunded) are
    integer minor units (cents). Rows are never deleted; terminal requests
    stay for audit.
    """
    __tablename__ = "service_requests"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Customer
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str] = mapped_column(String(32), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    address: Mapped[str] = mapped_column(String(500), nullable=False)
    city: Mapped[str] = mapped_column(String(255), nullable=False)
    state: Mapped[str] = mapped_column(String(64), nullable=False, default="MD")
    zip: Mapped[str] = mapped_column(String(10), nullable=False, index=True)

    # Service
    service: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    attachment_url: Mapped[Optional[str]] = mapped_column(
        String(1000),
        nullable=True,
        comment="Reference to an uploaded image held by the file store",
    )
    urgency: Mapped[Urgency] = mapped_column(
        SQLEnum(Urgency, name="request_urgency", values_callable=_enum_values),
        nullable=False,
        default=Urgency.ROUTINE,
    )

    # Scheduling
    preferred_date: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    preferred_time: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        comment="Labelled slot such as 'Morning (8AM-12PM)'",
    )
    scheduled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        index=True,
    )

    # Assignment
    assigned_worker_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid,
        ForeignKey("workers.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    worker_accepted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    worker_accepted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    worker_remarks: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Status
    status: Mapped[RequestStatus] = mapped_column(
        SQLEnum(RequestStatus, name="request_status", values_callable=_enum_values),
        nullable=False,
        default=RequestStatus.PENDING,
        index=True,
    )

    # Payment
    payment_method: Mapped[Optional[PaymentMethod]] = mapped_column(
        SQLEnum(PaymentMethod, name="payment_method", values_callable=_enum_values),
        nullable=True,
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        SQLEnum(PaymentStatus, name="payment_status", values_callable=_enum_values),
        nullable=False,
        default=PaymentStatus.PENDING,
        index=True,
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tax: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    amount_paid: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    amount_refunded: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    external_payment_ref: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        index=True,
        comment="Gateway charge reference (payment intent id)",
    )
    checkout_session_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    refund_pending: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="A refund attached to a rejection failed and needs staff follow-up",
    )

    # Audit
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    completion_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    __table_args__ = (
        CheckConstraint(
            "scheduled_at IS NULL OR status IN ('in-process', 'completed')",
            name="service_request_schedule_requires_acceptance",
        ),
        CheckConstraint(
            "amount_refunded <= amount_paid",
            name="service_request_refund_within_paid",
        ),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def refundable_amount(self) -> int:
        return max(self.amount_paid - self.amount_refunded, 0)

    @property
    def charge_amount(self) -> int:
        """Amount to collect: total_amount, or amount + tax if no total was set."""
        return self.total_amount or (self.amount + self.tax)

    def touch(self) -> None:
        self.updated_at = _utcnow()

    def __repr__(self) -> str:
        return f"<ServiceRequest(id={self.id}, status={self.status}, payment_status={self.payment_status})>"
