"""
API dependencies for FastAPI dependency injection.

Provides database sessions, token-based caller identity, and the payment
and notification collaborators (overridable in tests through
``app.dependency_overrides``).
"""
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

import jwt
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from servicehub.api.middleware.error_handler import ForbiddenException, UnauthorizedException
from servicehub.lib.db import get_db as get_db_session
from servicehub.lib.jwt import get_user_from_token, is_staff
from servicehub.services.lifecycle_service import LifecycleManager
from servicehub.services.notification_service import NotificationService, get_notification_service
from servicehub.services.payment_gateway import PaymentGateway, StripeGateway
from servicehub.services.payment_service import PaymentOrchestrator


# Re-export get_db for convenience
get_db = get_db_session


# HTTP Bearer token security scheme; missing tokens are reported as 401 below
security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Principal:
    user_id: str
    user_type: str


def get_current_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Principal:
    """
    Identify the caller from the Bearer token.

    Tokens are issued elsewhere; only signature, expiry and the
    ``sub``/``user_type`` claims are checked here.
    """
    if credentials is None:
        raise UnauthorizedException("Missing authentication token")
    try:
        user_id, user_type = get_user_from_token(credentials.credentials)
    except jwt.InvalidTokenError as e:
        raise UnauthorizedException(f"Could not validate credentials: {e}") from e
    return Principal(user_id=user_id, user_type=user_type)


def get_current_staff(principal: Principal = Depends(get_current_principal)) -> Principal:
    """Admin or staff caller."""
    if not is_staff(principal.user_type):
        raise ForbiddenException("Staff access required")
    return principal


def get_current_worker_id(principal: Principal = Depends(get_current_principal)) -> UUID:
    """Worker caller; the token subject is the worker id."""
    if principal.user_type.upper() != "WORKER":
        raise ForbiddenException("Worker access required")
    try:
        return UUID(principal.user_id)
    except ValueError as e:
        raise UnauthorizedException("Invalid worker id in token") from e


_gateway: Optional[PaymentGateway] = None


def get_payment_gateway() -> PaymentGateway:
    global _gateway
    if _gateway is None:
        _gateway = StripeGateway()
    return _gateway


def get_notifications() -> NotificationService:
    return get_notification_service()


def get_lifecycle_manager(
    db: Session = Depends(get_db),
    notifications: NotificationService = Depends(get_notifications),
) -> LifecycleManager:
    return LifecycleManager(db, notification_service=notifications)


def get_payment_orchestrator(
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    notifications: NotificationService = Depends(get_notifications),
    lifecycle: LifecycleManager = Depends(get_lifecycle_manager),
) -> PaymentOrchestrator:
    return PaymentOrchestrator(
        db,
        gateway=gateway,
        notification_service=notifications,
        payment_listeners=[lifecycle.on_payment_received],
    )
