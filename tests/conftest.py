"""
Shared fixtures: in-memory SQLite database, an in-memory payment gateway,
a recording notification provider and API client helpers.
"""
import json
import os

# Configure before any servicehub import reads settings
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["NOTIFICATION_PROVIDER"] = "console"
os.environ["FRONTEND_BASE_URL"] = "https://app.servicehub.test"

from typing import Optional
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from servicehub.lib.db import SessionLocal, drop_db, init_db
from servicehub.lib.jwt import create_access_token
from servicehub.lib.metrics import MetricsCollector
from servicehub.models.service_requests import PaymentMethod
from servicehub.models.workers import Worker
from servicehub.services.notification_service import NotificationProvider, NotificationService
from servicehub.services.payment_gateway import (
    GatewayCheckoutSession,
    GatewayError,
    GatewayEvent,
    GatewayIntent,
    GatewayRefund,
    PaymentGateway,
    WebhookSignatureError,
)
from servicehub.services.request_service import RequestService


class RecordingProvider(NotificationProvider):
    def __init__(self):
        self.sent: list[tuple[str, str, str]] = []

    async def send(self, to: str, subject: str, message: str) -> bool:
        self.sent.append((to, subject, message))
        return True


class FakeGateway(PaymentGateway):
    """In-memory gateway; set ``fail_with`` to make every call fail."""

    VALID_SIGNATURE = "t=1,v1=valid"

    def __init__(self):
        self.intents: dict[str, GatewayIntent] = {}
        self.sessions: dict[str, GatewayCheckoutSession] = {}
        self.refunds: list[tuple[str, int]] = []
        self.calls: list[str] = []
        self.fail_with: Optional[GatewayError] = None

    def _check(self, operation: str) -> None:
        self.calls.append(operation)
        if self.fail_with is not None:
            raise self.fail_with

    async def create_intent(self, amount_cents, currency, metadata, idempotency_key=None):
        self._check("create_intent")
        intent_id = f"pi_{len(self.intents) + 1}"
        intent = GatewayIntent(
            id=intent_id,
            status="requires_payment_method",
            amount=amount_cents,
            client_secret=f"{intent_id}_secret",
            metadata=dict(metadata),
        )
        self.intents[intent_id] = intent
        return intent

    def settle(self, intent_id: str, status: str = "succeeded") -> None:
        self.intents[intent_id].status = status

    async def retrieve_intent(self, intent_id):
        self._check("retrieve_intent")
        return self.intents[intent_id]

    async def create_checkout_session(
        self, *, amount_cents, currency, product_name, success_url, cancel_url,
        metadata, client_reference_id, description=None,
    ):
        self._check("create_checkout_session")
        session_id = f"cs_{len(self.sessions) + 1}"
        session = GatewayCheckoutSession(
            id=session_id,
            url=f"https://checkout.test/{session_id}",
            payment_status="unpaid",
            amount_total=amount_cents,
            client_reference_id=client_reference_id,
            metadata=dict(metadata),
        )
        session.success_url = success_url
        session.cancel_url = cancel_url
        self.sessions[session_id] = session
        return session

    def pay_session(self, session_id: str, payment_intent: str = "pi_hosted") -> None:
        self.sessions[session_id].payment_status = "paid"
        self.sessions[session_id].payment_intent = payment_intent

    async def retrieve_checkout_session(self, session_id):
        self._check("retrieve_checkout_session")
        return self.sessions[session_id]

    async def create_refund(self, payment_intent_id, amount_cents, metadata):
        self._check("create_refund")
        self.refunds.append((payment_intent_id, amount_cents))
        return GatewayRefund(id=f"re_{len(self.refunds)}", status="succeeded", amount=amount_cents)

    def construct_event(self, payload, signature):
        if signature != self.VALID_SIGNATURE:
            raise WebhookSignatureError("Webhook Error: No signatures found matching the expected signature")
        body = json.loads(payload)
        return GatewayEvent(type=body["type"], data=body["data"]["object"])


@pytest.fixture
def db_session():
    init_db()
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        drop_db()


@pytest.fixture
def provider():
    return RecordingProvider()


@pytest.fixture
def notifications(provider):
    return NotificationService(provider=provider)


@pytest.fixture
def metrics():
    return MetricsCollector()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def make_worker(db_session):
    def _make(name="Pat Pro", postal_code=None, city=None, skills=None, is_active=True):
        worker = Worker(
            name=name,
            email=f"{uuid4().hex[:8]}@pros.test",
            phone="4105550100",
            postal_code=postal_code,
            city=city,
            state="MD",
            skills=skills or [],
            is_active=is_active,
        )
        db_session.add(worker)
        db_session.commit()
        return worker
    return _make


@pytest.fixture
def make_request(db_session):
    def _make(**overrides):
        fields = dict(
            name="Jordan Customer",
            phone="(410) 555-0199",
            email="jordan@example.com",
            address="100 Light St",
            city="Baltimore",
            zip="21201",
            service="Plumbing",
            description="Kitchen sink is leaking",
            preferred_date="2030-01-15",
            preferred_time="Morning (8AM-12PM)",
            payment_method=PaymentMethod.CASH,
            amount=10000,
            tax=600,
        )
        fields.update(overrides)
        return RequestService(db_session).submit(**fields)
    return _make


def _auth_headers(user_type: str = "ADMIN", user_id: Optional[str] = None) -> dict:
    token = create_access_token(user_id or str(uuid4()), user_type)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def make_headers():
    return _auth_headers


@pytest.fixture
def staff_headers():
    return _auth_headers("STAFF")


@pytest.fixture
def api_client(gateway, notifications):
    from servicehub.api.app import app
    from servicehub.api.dependencies import get_notifications, get_payment_gateway

    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_notifications] = lambda: notifications
    try:
        with TestClient(app) as client:
            yield client
    finally:
        app.dependency_overrides.clear()
        drop_db()
