"""
Lifecycle manager state machine against SQLite.
"""
from datetime import datetime, timedelta, timezone
from itertools import product
from uuid import uuid4

import pytest

from servicehub.api.middleware.error_handler import (
    BadRequestException,
    ForbiddenException,
    InvalidTransitionException,
    NotFoundException,
    ValidationException,
)
from servicehub.models.service_requests import PaymentStatus, RequestStatus
from servicehub.services.lifecycle_service import TRANSITIONS, LifecycleManager, can_transition
from servicehub.services.notification_service import NotificationProvider, NotificationService

NOW = datetime(2030, 1, 10, 12, 0, tzinfo=timezone.utc)
TOMORROW = NOW + timedelta(days=1)


@pytest.fixture
def lifecycle(db_session, notifications, metrics):
    return LifecycleManager(db_session, notification_service=notifications, metrics=metrics, clock=lambda: NOW)


ALLOWED = {
    (RequestStatus.PENDING, RequestStatus.IN_PROCESS),
    (RequestStatus.PENDING, RequestStatus.REJECTED),
    (RequestStatus.PENDING, RequestStatus.CANCELLED),
    (RequestStatus.IN_PROCESS, RequestStatus.COMPLETED),
    (RequestStatus.IN_PROCESS, RequestStatus.REJECTED),
    (RequestStatus.IN_PROCESS, RequestStatus.CANCELLED),
}


@pytest.mark.unit
@pytest.mark.parametrize("source, target", list(product(RequestStatus, RequestStatus)))
def test_transition_table(source, target):
    assert can_transition(source, target) is ((source, target) in ALLOWED)


@pytest.mark.unit
def test_terminal_states_have_no_exits():
    for status in (RequestStatus.COMPLETED, RequestStatus.REJECTED, RequestStatus.CANCELLED):
        assert TRANSITIONS[status] == frozenset()


async def drive_to(lifecycle, request, status):
    if status == RequestStatus.IN_PROCESS:
        await lifecycle.accept(request, TOMORROW)
    elif status == RequestStatus.COMPLETED:
        await lifecycle.accept(request, TOMORROW)
        await lifecycle.complete(request)
    elif status in (RequestStatus.REJECTED, RequestStatus.CANCELLED):
        await lifecycle.reject(request, "No pro available", status)


async def attempt(lifecycle, request, target):
    if target == RequestStatus.IN_PROCESS:
        await lifecycle.accept(request, TOMORROW)
    elif target == RequestStatus.COMPLETED:
        await lifecycle.complete(request)
    elif target in (RequestStatus.REJECTED, RequestStatus.CANCELLED):
        await lifecycle.reject(request, "Duplicate", target)


ILLEGAL = [
    (source, target)
    for source, target in product(RequestStatus, RequestStatus)
    if target != RequestStatus.PENDING and (source, target) not in ALLOWED
]


@pytest.mark.integration
@pytest.mark.asyncio
@pytest.mark.parametrize("source, target", ILLEGAL)
async def test_illegal_transitions_leave_record_unchanged(lifecycle, make_request, source, target):
    request = make_request()
    await drive_to(lifecycle, request, source)
    before = (request.status, request.scheduled_at, request.rejection_reason, request.completed_at, request.updated_at)

    with pytest.raises(InvalidTransitionException) as exc_info:
        await attempt(lifecycle, request, target)

    assert exc_info.value.status_code == 409
    assert exc_info.value.from_status == source.value
    after = (request.status, request.scheduled_at, request.rejection_reason, request.completed_at, request.updated_at)
    assert after == before


@pytest.mark.integration
@pytest.mark.asyncio
async def test_cash_request_end_to_end(lifecycle, make_request, metrics, provider):
    request = make_request()
    assert request.status == RequestStatus.PENDING

    await lifecycle.accept(request, TOMORROW)
    assert request.status == RequestStatus.IN_PROCESS
    assert request.scheduled_at.replace(tzinfo=timezone.utc) == TOMORROW
    assert request.payment_status == PaymentStatus.PENDING

    await lifecycle.complete(request, "Replaced trap  ")
    assert request.status == RequestStatus.COMPLETED
    assert request.completion_notes == "Replaced trap"
    assert request.completed_at is not None
    assert request.payment_status == PaymentStatus.PENDING

    assert metrics.get_counter_value(
        "service_request_transitions_total", {"from_status": "pending", "to_status": "in-process"}
    ) == 1
    assert metrics.get_counter_value(
        "service_request_transitions_total", {"from_status": "in-process", "to_status": "completed"}
    ) == 1
    subjects = [subject for _, subject, _ in provider.sent]
    assert subjects == ["Your Plumbing service is scheduled", "Your Plumbing service is complete"]


@pytest.mark.integration
@pytest.mark.asyncio
async def test_accept_treats_naive_time_as_utc_and_rejects_past(lifecycle, make_request):
    request = make_request()

    with pytest.raises(ValidationException):
        await lifecycle.accept(request, NOW - timedelta(hours=1))
    assert request.status == RequestStatus.PENDING

    await lifecycle.accept(request, (NOW + timedelta(seconds=30)).replace(tzinfo=None))
    assert request.status == RequestStatus.IN_PROCESS


@pytest.mark.integration
@pytest.mark.asyncio
async def test_accept_tolerates_small_clock_skew(lifecycle, make_request):
    request = make_request()
    await lifecycle.accept(request, NOW - timedelta(seconds=20))
    assert request.status == RequestStatus.IN_PROCESS


@pytest.mark.integration
@pytest.mark.asyncio
async def test_reject_requires_reason(lifecycle, make_request):
    request = make_request()

    with pytest.raises(ValidationException):
        await lifecycle.reject(request, "   ")

    assert request.status == RequestStatus.PENDING


@pytest.mark.integration
@pytest.mark.asyncio
async def test_reject_from_in_process_drops_appointment(lifecycle, make_request, provider):
    request = make_request()
    await lifecycle.accept(request, TOMORROW)

    await lifecycle.reject(request, "  Customer unreachable ")

    assert request.status == RequestStatus.REJECTED
    assert request.rejection_reason == "Customer unreachable"
    assert request.scheduled_at is None
    assert "Customer unreachable" in provider.sent[-1][2]


@pytest.mark.integration
@pytest.mark.asyncio
async def test_cancelled_kind_and_invalid_kind(lifecycle, make_request):
    request = make_request()
    with pytest.raises(ValidationException):
        await lifecycle.reject(request, "reason", RequestStatus.COMPLETED)

    await lifecycle.reject(request, "Customer cancelled", RequestStatus.CANCELLED)
    assert request.status == RequestStatus.CANCELLED


@pytest.mark.integration
@pytest.mark.asyncio
async def test_reschedule(lifecycle, make_request):
    request = make_request()
    with pytest.raises(InvalidTransitionException):
        await lifecycle.reschedule(request, TOMORROW)

    await lifecycle.accept(request, TOMORROW)
    later = TOMORROW + timedelta(days=2)
    await lifecycle.reschedule(request, later)

    assert request.scheduled_at.replace(tzinfo=timezone.utc) == later


@pytest.mark.integration
@pytest.mark.asyncio
async def test_request_without_email_skips_notifications(lifecycle, make_request, provider):
    request = make_request(email=None)
    await lifecycle.accept(request, TOMORROW)
    assert provider.sent == []


@pytest.mark.integration
@pytest.mark.asyncio
async def test_worker_assignment_and_acceptance(lifecycle, make_request, make_worker):
    first = make_worker("First")
    second = make_worker("Second")
    request = make_request()

    lifecycle.reassign_worker(request, first.id)
    assert request.assigned_worker_id == first.id

    with pytest.raises(ForbiddenException):
        lifecycle.worker_accept(request, second.id)

    lifecycle.worker_accept(request, first.id)
    assert request.worker_accepted is True
    assert request.status == RequestStatus.PENDING

    with pytest.raises(BadRequestException):
        lifecycle.worker_accept(request, first.id)

    lifecycle.add_worker_remarks(request, first.id, "Bring a new P-trap")
    assert request.worker_remarks == "Bring a new P-trap"

    lifecycle.reassign_worker(request, second.id)
    assert request.assigned_worker_id == second.id
    assert request.worker_accepted is False
    assert request.worker_accepted_at is None

    lifecycle.reassign_worker(request, None)
    assert request.assigned_worker_id is None


@pytest.mark.integration
@pytest.mark.asyncio
async def test_reassign_rejects_unknown_inactive_or_terminal(lifecycle, make_request, make_worker):
    inactive = make_worker("Retired", is_active=False)
    request = make_request()

    with pytest.raises(NotFoundException):
        lifecycle.reassign_worker(request, uuid4())
    with pytest.raises(NotFoundException):
        lifecycle.reassign_worker(request, inactive.id)

    await lifecycle.reject(request, "Out of area")
    with pytest.raises(InvalidTransitionException):
        lifecycle.reassign_worker(request, None)


@pytest.mark.integration
@pytest.mark.asyncio
async def test_payment_listener_sends_receipt(lifecycle, make_request, provider):
    request = make_request()
    request.amount_paid = 10600

    await lifecycle.on_payment_received(request)

    assert provider.sent[-1][1] == "Payment received for Plumbing"
    assert "$106.00" in provider.sent[-1][2]


class FailingProvider(NotificationProvider):
    async def send(self, to, subject, message):
        raise RuntimeError("mail relay down")


@pytest.mark.integration
@pytest.mark.asyncio
async def test_notification_failure_does_not_fail_transition(db_session, metrics, make_request):
    lifecycle = LifecycleManager(
        db_session,
        notification_service=NotificationService(FailingProvider()),
        metrics=metrics,
        clock=lambda: NOW,
    )
    request = make_request()

    await lifecycle.accept(request, TOMORROW)
    await lifecycle.complete(request, "Done")

    db_session.expire_all()
    assert request.status == RequestStatus.COMPLETED

