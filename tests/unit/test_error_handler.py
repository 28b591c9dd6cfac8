"""
Tests for error handler middleware and custom exceptions.
"""
import pytest
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.testclient import TestClient
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from servicehub.api.middleware.error_handler import (
    AppException,
    NotFoundException,
    UnauthorizedException,
    ForbiddenException,
    BadRequestException,
    ValidationException,
    InvalidTransitionException,
    InvalidRefundAmountException,
    GatewayUnavailableException,
    RefundFailedException,
    app_exception_handler,
    validation_exception_handler,
    http_exception_handler,
    unhandled_exception_handler,
)


def build_app() -> FastAPI:
    app = FastAPI()
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
    return app


@pytest.mark.unit
def test_not_found_exception():
    exc = NotFoundException("Service request", "123")

    assert exc.message == "Service request with id '123' not found"
    assert exc.status_code == 404
    assert exc.details == {"resource": "Service request", "resource_id": "123"}
    assert NotFoundException("Worker").message == "Worker not found"


@pytest.mark.unit
@pytest.mark.parametrize("exc, status_code", [
    (UnauthorizedException(), 401),
    (ForbiddenException("Staff access required"), 403),
    (BadRequestException("Job already accepted"), 400),
    (ValidationException("Bad input", errors={"zip": "required"}), 422),
    (GatewayUnavailableException(), 502),
    (RefundFailedException(), 502),
])
def test_status_codes(exc, status_code):
    assert exc.status_code == status_code


@pytest.mark.unit
def test_validation_exception_keeps_field_errors():
    exc = ValidationException("Please fix the highlighted fields", errors={"phone": "Invalid phone number format!"})

    assert exc.errors == {"phone": "Invalid phone number format!"}
    assert exc.details == {"errors": {"phone": "Invalid phone number format!"}}


@pytest.mark.unit
def test_invalid_transition_exception():
    """Illegal lifecycle moves map to 409 with both statuses."""
    exc = InvalidTransitionException("completed", "in-process")

    assert exc.status_code == 409
    assert exc.message == "Cannot move service request from 'completed' to 'in-process'"
    assert exc.details == {"from_status": "completed", "to_status": "in-process"}


@pytest.mark.unit
def test_invalid_refund_amount_exception():
    exc = InvalidRefundAmountException(requested=12000, refundable=10600)

    assert exc.status_code == 400
    assert exc.message == "Refund of 12000 exceeds refundable amount 10600"
    assert InvalidRefundAmountException(0, 10600).message == "Refund amount must be positive"


@pytest.mark.integration
def test_app_exception_body():
    app = build_app()

    @app.post("/requests/{request_id}/complete")
    async def complete(request_id: str, request: Request):
        request.state.correlation_id = "corr-1"
        raise InvalidTransitionException("pending", "completed")

    response = TestClient(app).post("/requests/abc/complete")

    assert response.status_code == 409
    assert response.json() == {
        "success": False,
        "message": "Cannot move service request from 'pending' to 'completed'",
        "error": "Cannot move service request from 'pending' to 'completed'",
        "correlation_id": "corr-1",
        "details": {"from_status": "pending", "to_status": "completed"},
    }


@pytest.mark.integration
def test_request_validation_errors_are_listed():
    app = build_app()

    class Body(BaseModel):
        zip: str = Field(..., pattern=r"^\d{5}$")
        amount: int = Field(..., ge=0)

    @app.post("/validate")
    async def validate(body: Body):
        return {"ok": True}

    response = TestClient(app).post("/validate", json={"zip": "abc", "amount": -1})

    assert response.status_code == 422
    data = response.json()
    assert data["success"] is False
    assert data["error"] == "Validation error"
    assert {tuple(e["loc"]) for e in data["details"]["errors"]} == {("body", "zip"), ("body", "amount")}


@pytest.mark.integration
def test_http_and_unhandled_exceptions():
    app = build_app()

    @app.get("/boom")
    async def boom():
        raise RuntimeError("Unexpected error")

    client = TestClient(app, raise_server_exceptions=False)

    missing = client.get("/nowhere")
    assert missing.status_code == 404
    assert missing.json()["error"] == "Not Found"
    assert missing.json()["correlation_id"] == "unknown"

    crashed = client.get("/boom")
    assert crashed.status_code == 500
    assert crashed.json()["error"] == "Internal server error"
