"""
SQLAlchemy models package.
Import all models here to ensure they're registered with Base.metadata.
"""
from servicehub.models.workers import Worker
from servicehub.models.service_requests import (
    ServiceRequest,
    RequestStatus,
    PaymentMethod,
    PaymentStatus,
    Urgency,
)

__all__ = [
    "Worker",
    "ServiceRequest",
    "RequestStatus",
    "PaymentMethod",
    "PaymentStatus",
    "Urgency",
]
