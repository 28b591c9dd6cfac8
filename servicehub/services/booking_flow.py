"""
Four-step booking flow.

Drives a single booking draft from service details to payment against the
HTTP API through ``RemoteCallClient``:

    DETAILS (1) -> CONTACT (2) -> ADDRESS (3) -> PAYMENT (4)

Each ``next()`` validates only the current step; ``back()`` never validates.
Validation problems stay here as field errors and are never sent to the
server.
"""
import enum
from dataclasses import asdict, dataclass
from typing import Any, Optional
from urllib.parse import urlencode

from servicehub.api.middleware.error_handler import BadRequestException, ValidationException
from servicehub.lib.coverage import ZipDirectory, default_zip_directory
from servicehub.lib.http_client import RemoteCallClient
from servicehub.lib.logging import get_logger
from servicehub.lib.result import Err, Ok
from servicehub.lib.validators import (
    sanitize_email,
    sanitize_phone,
    sanitize_text,
    sanitize_zip,
    validate_email,
    validate_phone,
    validate_zip,
)
from servicehub.models.service_requests import PaymentMethod

logger = get_logger(__name__)


class BookingStep(int, enum.Enum):
    DETAILS = 1
    CONTACT = 2
    ADDRESS = 3
    PAYMENT = 4


STEP_TRANSITIONS: dict[BookingStep, dict[str, BookingStep]] = {
    BookingStep.DETAILS: {"next": BookingStep.CONTACT},
    BookingStep.CONTACT: {"next": BookingStep.ADDRESS, "back": BookingStep.DETAILS},
    BookingStep.ADDRESS: {"next": BookingStep.PAYMENT, "back": BookingStep.CONTACT},
    BookingStep.PAYMENT: {"back": BookingStep.ADDRESS},
}

_SANITIZERS = {
    "phone": sanitize_phone,
    "email": sanitize_email,
    "zip": sanitize_zip,
}


@dataclass
class BookingDraft:
    service: str = ""
    description: str = ""
    preferred_date: str = ""
    preferred_time: str = ""
    name: str = ""
    phone: str = ""
    email: str = ""
    address: str = ""
    city: str = ""
    state: str = "MD"
    zip: str = ""
    payment_method: Optional[PaymentMethod] = None
    assigned_worker_id: Optional[str] = None
    attachment_url: Optional[str] = None
    amount: int = 0
    tax: int = 0
    total_amount: Optional[int] = None

    def to_payload(self) -> dict[str, Any]:
        payload = {k: v for k, v in asdict(self).items() if v not in (None, "")}
        if self.payment_method is not None:
            payload["payment_method"] = self.payment_method.value
        return payload


def _required(errors: dict[str, str], draft: BookingDraft, field_name: str, message: str) -> None:
    if not getattr(draft, field_name):
        errors[field_name] = message


def validate_step(step: BookingStep, draft: BookingDraft, zip_directory: ZipDirectory) -> dict[str, str]:
    """Field errors for one step; empty when the step is complete."""
    errors: dict[str, str] = {}

    if step == BookingStep.DETAILS:
        _required(errors, draft, "service", "Please select a service")
        _required(errors, draft, "description", "Please describe the job")

    elif step == BookingStep.CONTACT:
        _required(errors, draft, "preferred_date", "Please choose a date")
        _required(errors, draft, "preferred_time", "Please choose a time slot")
        _required(errors, draft, "name", "Please enter your name")
        phone_error = validate_phone(draft.phone)
        if phone_error:
            errors["phone"] = phone_error
        email_error = validate_email(draft.email)
        if email_error:
            errors["email"] = email_error

    elif step == BookingStep.ADDRESS:
        _required(errors, draft, "address", "Please enter the service address")
        _required(errors, draft, "city", "Please enter a city")
        zip_error = validate_zip(draft.zip, zip_directory)
        if zip_error:
            errors["zip"] = zip_error
        if draft.payment_method is None:
            errors["payment_method"] = "Please choose a payment method"

    return errors


class BookingFlow:
    """
    Booking wizard state.

    Args:
        client: Remote-call client pointed at the API
        zip_directory: Served ZIP codes (defaults to the built-in directory)
    """

    def __init__(self, client: RemoteCallClient, zip_directory: Optional[ZipDirectory] = None):
        self.client = client
        self.zip_directory = zip_directory or default_zip_directory
        self.step = BookingStep.DETAILS
        self.draft = BookingDraft()
        self.workers: list[dict[str, Any]] = []
        self.request: Optional[dict[str, Any]] = None
        self.finalized = False

    def update(self, **fields: Any) -> BookingDraft:
        """Set draft fields, trimming text input."""
        for name, value in fields.items():
            if not hasattr(self.draft, name):
                raise AttributeError(f"Unknown booking field '{name}'")
            if name == "payment_method" and value is not None:
                value = PaymentMethod(value)
            elif isinstance(value, str):
                value = _SANITIZERS.get(name, sanitize_text)(value)
            setattr(self.draft, name, value)
        return self.draft

    def errors(self, step: Optional[BookingStep] = None) -> dict[str, str]:
        return validate_step(step or self.step, self.draft, self.zip_directory)

    def next(self) -> BookingStep:
        target = STEP_TRANSITIONS[self.step].get("next")
        if target is None:
            raise BadRequestException("Already on the last step")
        errors = self.errors()
        if errors:
            raise ValidationException("Please fix the highlighted fields", errors=errors)
        self.step = target
        return self.step

    def back(self) -> BookingStep:
        target = STEP_TRANSITIONS[self.step].get("back")
        if target is not None:
            self.step = target
        return self.step

    async def load_workers(self) -> list[dict[str, Any]]:
        """
        Fetch pros for the draft's ZIP and service, dropping a stale selection.

        When the lookup itself fails the list is emptied but the selection is
        kept, so a flaky network does not silently unassign the chosen pro.
        """
        if validate_zip(self.draft.zip, self.zip_directory):
            self.workers = []
        else:
            query = {"zip": self.draft.zip, "service": self.draft.service}
            if self.draft.city:
                query["city"] = self.draft.city
            match await self.client.call_result(f"/workers/match?{urlencode(query)}"):
                case Ok(value=response):
                    self.workers = list(response.get("data") or [])
                case Err(error=exc):
                    logger.warning("Could not load matching workers", extra={"error": str(exc)})
                    self.workers = []
                    return self.workers

        selected = self.draft.assigned_worker_id
        if selected is not None and selected not in {str(w.get("id")) for w in self.workers}:
            logger.info("Selected worker no longer matches, clearing", extra={"worker_id": selected})
            self.draft.assigned_worker_id = None
        return self.workers

    def _require_payment_step(self) -> None:
        if self.step != BookingStep.PAYMENT:
            raise BadRequestException("Complete the previous steps first", details={"step": self.step.value})

    async def submit(self) -> dict[str, Any]:
        """Create the service request. Resubmitting returns the same request."""
        self._require_payment_step()
        if self.request is not None:
            return self.request

        errors: dict[str, str] = {}
        for step in (BookingStep.DETAILS, BookingStep.CONTACT, BookingStep.ADDRESS):
            errors.update(self.errors(step))
        if errors:
            raise ValidationException("Please fix the highlighted fields", errors=errors)

        response = await self.client.call("/service-requests", method="POST", body=self.draft.to_payload())
        self.request = response["data"]
        self.finalized = self.draft.payment_method == PaymentMethod.CASH
        logger.info(
            "Booking submitted",
            extra={"request_id": self.request.get("id"), "payment_method": self.draft.payment_method.value},
        )
        return self.request

    def _require_gateway_request(self) -> str:
        if self.request is None:
            raise BadRequestException("Submit the booking before paying")
        if self.draft.payment_method != PaymentMethod.GATEWAY:
            raise BadRequestException("Card payment was not selected for this booking")
        return str(self.request["id"])

    async def open_intent(self) -> dict[str, Any]:
        """Open an intent for the embedded card field; returns its client secret."""
        request_id = self._require_gateway_request()
        response = await self.client.call(
            "/payments/intent", method="POST", body={"service_request_id": request_id}
        )
        return response["data"]

    async def confirm_payment(self, intent_id: str) -> str:
        request_id = self._require_gateway_request()
        response = await self.client.call(
            "/payments/confirm",
            method="POST",
            body={"service_request_id": request_id, "payment_intent_id": intent_id},
        )
        status = response["data"]["payment_status"]
        self.finalized = status == "paid"
        return status

    async def open_checkout(self, return_url: Optional[str] = None) -> str:
        """Create a hosted checkout page and return the URL to redirect to."""
        request_id = self._require_gateway_request()
        body: dict[str, Any] = {"service_request_id": request_id}
        if return_url:
            body["return_url"] = return_url
        response = await self.client.call("/payments/checkout-session", method="POST", body=body)
        return response["data"]["url"]
