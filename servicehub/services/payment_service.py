"""
Payment orchestrator.

Reconciles a service request's payment sub-state with the card gateway.
The request row is the single source of truth; gateway objects are only
consulted to confirm what happened to a charge.

    pending --confirm/webhook succeeded--> paid --refund(all)--> refunded
    pending --confirm/webhook failed-----> failed
    paid    --refund(part)---------------> partially_paid --refund(rest)--> refunded

All amounts are integer cents.
"""
import enum
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Iterable, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from servicehub.api.middleware.error_handler import (
    BadRequestException,
    GatewayUnavailableException,
    InvalidRefundAmountException,
    RefundFailedException,
    ValidationException,
)
from servicehub.lib.logging import get_logger
from servicehub.lib.metrics import MetricsCollector, get_metrics_collector
from servicehub.lib.settings import settings
from servicehub.models.service_requests import (
    PaymentMethod,
    PaymentStatus,
    ServiceRequest,
    WITHDRAWN_STATUSES,
)
from servicehub.services.notification_service import NotificationService, get_notification_service
from servicehub.services.payment_gateway import (
    GatewayError,
    PaymentGateway,
    StripeGateway,
    WebhookSignatureError,
)
from servicehub.services.request_service import RequestService

logger = get_logger(__name__)

PaymentListener = Callable[[ServiceRequest], Awaitable[None]]

# Intent states that are neither settled nor failed yet
IN_FLIGHT_INTENT_STATES = frozenset({
    "processing",
    "requires_action",
    "requires_confirmation",
    "requires_capture",
    "requires_payment_method",
})

SETTLED_PAYMENT_STATUSES = frozenset({
    PaymentStatus.PAID,
    PaymentStatus.PARTIALLY_PAID,
    PaymentStatus.REFUNDED,
})


class PaymentOperationKind(str, enum.Enum):
    INTENT = "intent"
    CHECKOUT_SESSION = "checkout_session"
    REFUND = "refund"


class PaymentOperationStatus(str, enum.Enum):
    CREATED = "created"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    DUPLICATE = "duplicate"


@dataclass
class PaymentOperation:
    """A single gateway interaction on behalf of a service request."""

    kind: PaymentOperationKind
    external_ref: str
    status: PaymentOperationStatus
    amount: int
    service_request_id: UUID
    client_secret: Optional[str] = None
    checkout_url: Optional[str] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_request_id(value: Optional[str]) -> Optional[UUID]:
    if not value:
        return None
    try:
        return UUID(str(value))
    except ValueError:
        return None


class PaymentOrchestrator:
    """
    Opens, confirms and refunds payments for service requests.

    Args:
        db_session: Database session
        gateway: Card gateway (defaults to ``StripeGateway``)
        notification_service: Refund notices (defaults to global instance)
        payment_listeners: Awaited with the request whenever it becomes paid
        metrics: Metrics collector (defaults to global instance)
    """

    def __init__(
        self,
        db_session: Session,
        gateway: Optional[PaymentGateway] = None,
        notification_service: Optional[NotificationService] = None,
        payment_listeners: Optional[Iterable[PaymentListener]] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.db = db_session
        self.gateway = gateway or StripeGateway()
        self.notifications = notification_service or get_notification_service()
        self.listeners = list(payment_listeners or [])
        self.metrics = metrics or get_metrics_collector()
        self.requests = RequestService(db_session)

    def _save(self, request: ServiceRequest) -> None:
        request.touch()
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(request)

    def _require_chargeable(self, request: ServiceRequest) -> int:
        if request.status in WITHDRAWN_STATUSES:
            raise BadRequestException(
                "Cannot collect payment for a withdrawn service request",
                details={"status": request.status.value},
            )
        if request.payment_status in SETTLED_PAYMENT_STATUSES:
            raise BadRequestException(
                "Service request is already paid",
                details={"payment_status": request.payment_status.value},
            )
        amount = request.charge_amount
        if amount <= 0:
            raise ValidationException("Amount must be positive", errors={"amount": "Amount must be positive"})
        return amount

    # ------------------------------------------------------------------
    # Opening a payment
    # ------------------------------------------------------------------

    def open_cash_flow(self, request: ServiceRequest) -> ServiceRequest:
        """Payment will be collected on site; no gateway involvement."""
        if request.payment_method == PaymentMethod.GATEWAY and request.amount_paid > 0:
            raise BadRequestException("A card payment has already been captured for this request")

        request.payment_method = PaymentMethod.CASH
        request.payment_status = PaymentStatus.PENDING
        # Abandoned intents or checkout pages no longer belong to this request
        request.external_payment_ref = None
        request.checkout_session_id = None
        self._save(request)
        self.metrics.increment_payment_operations("cash", PaymentOperationStatus.CREATED.value)
        logger.info("Cash payment selected", extra={"request_id": str(request.id)})
        return request

    async def open_gateway_intent(self, request: ServiceRequest) -> PaymentOperation:
        """Create a card intent for the embedded card field."""
        amount = self._require_chargeable(request)

        try:
            intent = await self.gateway.create_intent(
                amount_cents=amount,
                currency=settings.stripe_currency,
                metadata={"service_request_id": str(request.id)},
                idempotency_key=f"intent-{request.id}-{amount}",
            )
        except GatewayError as e:
            self.metrics.increment_payment_operations(
                PaymentOperationKind.INTENT.value, PaymentOperationStatus.FAILED.value
            )
            raise GatewayUnavailableException(details={"reason": str(e)}) from e

        request.payment_method = PaymentMethod.GATEWAY
        request.payment_status = PaymentStatus.PENDING
        request.external_payment_ref = intent.id
        self._save(request)

        self.metrics.increment_payment_operations(
            PaymentOperationKind.INTENT.value, PaymentOperationStatus.CREATED.value
        )
        logger.info(
            "Payment intent created",
            extra={"request_id": str(request.id), "intent_id": intent.id, "amount": amount},
        )
        return PaymentOperation(
            kind=PaymentOperationKind.INTENT,
            external_ref=intent.id,
            status=PaymentOperationStatus.CREATED,
            amount=amount,
            service_request_id=request.id,
            client_secret=intent.client_secret,
        )

    async def create_checkout_redirect(
        self,
        request: ServiceRequest,
        return_url: Optional[str] = None,
    ) -> PaymentOperation:
        """Create a hosted checkout page and return its URL."""
        amount = self._require_chargeable(request)
        origin = (return_url or settings.frontend_base_url).rstrip("/")
        metadata = {"service_request_id": str(request.id)}

        try:
            session = await self.gateway.create_checkout_session(
                amount_cents=amount,
                currency=settings.stripe_currency,
                product_name=request.service or "Service",
                description=request.description,
                success_url=f"{origin}/payment-success?srid={request.id}&session_id={{CHECKOUT_SESSION_ID}}",
                cancel_url=f"{origin}/payment-cancel?srid={request.id}",
                metadata=metadata,
                client_reference_id=str(request.id),
            )
        except GatewayError as e:
            self.metrics.increment_payment_operations(
                PaymentOperationKind.CHECKOUT_SESSION.value, PaymentOperationStatus.FAILED.value
            )
            raise GatewayUnavailableException(details={"reason": str(e)}) from e

        request.payment_method = PaymentMethod.GATEWAY
        request.payment_status = PaymentStatus.PENDING
        request.checkout_session_id = session.id
        self._save(request)

        self.metrics.increment_payment_operations(
            PaymentOperationKind.CHECKOUT_SESSION.value, PaymentOperationStatus.CREATED.value
        )
        return PaymentOperation(
            kind=PaymentOperationKind.CHECKOUT_SESSION,
            external_ref=session.id,
            status=PaymentOperationStatus.CREATED,
            amount=amount,
            service_request_id=request.id,
            checkout_url=session.url,
        )

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------

    async def _mark_paid(self, request: ServiceRequest, external_ref: str, amount: Optional[int]) -> bool:
        """Record a captured charge. Returns False when it was a second charge."""
        if (
            request.payment_status in SETTLED_PAYMENT_STATUSES
            and request.external_payment_ref
            and request.external_payment_ref != external_ref
        ):
            # Keep the first charge on record; the extra one is refunded by hand
            request.refund_pending = True
            self._save(request)
            logger.warning(
                "Second charge for an already settled service request",
                extra={
                    "request_id": str(request.id),
                    "recorded_ref": request.external_payment_ref,
                    "duplicate_ref": external_ref,
                    "amount": amount,
                },
            )
            self.metrics.increment_payment_operations("charge", PaymentOperationStatus.DUPLICATE.value)
            return False

        request.payment_method = PaymentMethod.GATEWAY
        request.payment_status = PaymentStatus.PAID
        request.external_payment_ref = external_ref
        # Assigned, not added: replaying a confirmation must not double count
        request.amount_paid = amount if amount is not None else request.charge_amount
        request.paid_at = _utcnow()
        if not request.total_amount:
            request.total_amount = request.amount_paid
        self._save(request)

        logger.info(
            "Service request paid",
            extra={"request_id": str(request.id), "external_ref": external_ref, "amount_paid": request.amount_paid},
        )
        for listener in self.listeners:
            await listener(request)
        return True

    def _mark_failed(self, request: ServiceRequest, external_ref: str) -> None:
        if request.payment_status in SETTLED_PAYMENT_STATUSES:
            return
        request.payment_status = PaymentStatus.FAILED
        request.external_payment_ref = external_ref
        self._save(request)
        logger.warning(
            "Payment failed for service request",
            extra={"request_id": str(request.id), "external_ref": external_ref},
        )

    async def confirm(self, intent_ref: str, request_id: UUID) -> PaymentStatus:
        """Reconcile the request with the gateway's view of the intent."""
        request = self.requests.get(request_id)

        if request.external_payment_ref == intent_ref and request.payment_status in SETTLED_PAYMENT_STATUSES:
            return request.payment_status

        try:
            intent = await self.gateway.retrieve_intent(intent_ref)
        except GatewayError as e:
            raise GatewayUnavailableException(details={"reason": str(e)}) from e

        owner = _parse_request_id(intent.metadata.get("service_request_id"))
        if owner is not None and owner != request.id:
            raise BadRequestException(
                "Payment intent does not belong to this service request",
                details={"intent_id": intent_ref},
            )

        if intent.status == "succeeded":
            if await self._mark_paid(request, intent.id, intent.amount):
                self.metrics.increment_payment_operations(
                    PaymentOperationKind.INTENT.value, PaymentOperationStatus.CONFIRMED.value
                )
        elif intent.status in IN_FLIGHT_INTENT_STATES:
            logger.info(
                "Payment intent not settled yet",
                extra={"request_id": str(request.id), "intent_status": intent.status},
            )
        else:
            self._mark_failed(request, intent.id)
            self.metrics.increment_payment_operations(
                PaymentOperationKind.INTENT.value, PaymentOperationStatus.FAILED.value
            )
        return request.payment_status

    async def verify_checkout_session(self, session_id: str) -> tuple[UUID, PaymentStatus]:
        """Resume payment state after the customer returns from the hosted page."""
        try:
            session = await self.gateway.retrieve_checkout_session(session_id)
        except GatewayError as e:
            raise GatewayUnavailableException(details={"reason": str(e)}) from e

        request_id = _parse_request_id(session.client_reference_id) or _parse_request_id(
            session.metadata.get("service_request_id")
        )
        if request_id is None:
            raise BadRequestException("Checkout session is not linked to a service request")

        request = self.requests.get(request_id)
        await self._apply_checkout_session(request, session.id, session.payment_status,
                                           session.payment_intent, session.amount_total)
        return request.id, request.payment_status

    async def _apply_checkout_session(
        self,
        request: ServiceRequest,
        session_id: str,
        payment_status: str,
        payment_intent: Optional[str],
        amount_total: Optional[int],
    ) -> None:
        if payment_status != "paid":
            if request.checkout_session_id != session_id:
                request.checkout_session_id = session_id
                self._save(request)
            return
        request.checkout_session_id = session_id
        ref = payment_intent or session_id
        settled = request.payment_status in SETTLED_PAYMENT_STATUSES
        if settled and payment_intent and request.external_payment_ref == session_id:
            # Same charge, first recorded before its intent id was known
            request.external_payment_ref = payment_intent
            self._save(request)
            return
        if settled and request.external_payment_ref == ref:
            return
        if await self._mark_paid(request, ref, amount_total):
            self.metrics.increment_payment_operations(
                PaymentOperationKind.CHECKOUT_SESSION.value, PaymentOperationStatus.CONFIRMED.value
            )

    # ------------------------------------------------------------------
    # Refunds
    # ------------------------------------------------------------------

    async def refund(
        self,
        request_id: UUID,
        amount: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> PaymentStatus:
        """
        Refund part or all of a captured card payment.

        Omitting ``amount`` refunds whatever has not been refunded yet.
        Every check runs before the gateway call, so a rejected refund
        leaves the request unchanged.
        """
        request = self.requests.get(request_id)

        if (
            request.payment_method != PaymentMethod.GATEWAY
            or not request.external_payment_ref
            or request.amount_paid <= 0
        ):
            raise BadRequestException("No captured card payment to refund")

        refundable = request.refundable_amount
        requested = refundable if amount is None else amount
        if requested <= 0 or requested > refundable:
            raise InvalidRefundAmountException(requested, refundable)

        metadata = {"service_request_id": str(request.id)}
        if reason:
            metadata["reason"] = reason
        try:
            refund = await self.gateway.create_refund(request.external_payment_ref, requested, metadata)
        except GatewayError as e:
            self.metrics.increment_payment_operations(
                PaymentOperationKind.REFUND.value, PaymentOperationStatus.FAILED.value
            )
            logger.error(
                "Refund failed",
                extra={"request_id": str(request.id), "amount": requested, "reason": str(e)},
            )
            raise RefundFailedException(details={"reason": str(e)}) from e

        request.amount_refunded += requested
        request.payment_status = (
            PaymentStatus.REFUNDED if request.refundable_amount == 0 else PaymentStatus.PARTIALLY_PAID
        )
        request.refund_pending = False
        self._save(request)

        self.metrics.increment_payment_operations(
            PaymentOperationKind.REFUND.value, PaymentOperationStatus.CONFIRMED.value
        )
        logger.info(
            "Refund issued",
            extra={"request_id": str(request.id), "refund_id": refund.id, "amount": requested},
        )
        await self.notifications.send_refund_notice(request, requested)
        return request.payment_status

    def flag_refund_pending(self, request: ServiceRequest) -> ServiceRequest:
        """Remember that a refund still has to be issued by hand."""
        request.refund_pending = True
        self._save(request)
        return request

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def _request_for(self, obj: dict) -> Optional[ServiceRequest]:
        metadata = obj.get("metadata") or {}
        request_id = _parse_request_id(obj.get("client_reference_id")) or _parse_request_id(
            metadata.get("service_request_id")
        )
        if request_id is not None:
            request = self.db.get(ServiceRequest, request_id)
            if request is not None:
                return request
        if obj.get("id"):
            return self.requests.find_by_payment_ref(obj["id"])
        return None

    async def handle_webhook(self, payload: bytes, signature: Optional[str]) -> dict:
        """Apply a signed gateway event. Unknown events are acknowledged and ignored."""
        try:
            event = self.gateway.construct_event(payload, signature)
        except WebhookSignatureError as e:
            logger.warning(f"Rejected webhook: {e}")
            raise BadRequestException(str(e)) from e

        obj = event.data
        request = self._request_for(obj)
        if request is None:
            logger.warning(
                "Webhook event without a matching service request",
                extra={"event_type": event.type, "object_id": obj.get("id")},
            )
            return {"received": True}

        if event.type == "payment_intent.succeeded":
            if not (request.external_payment_ref == obj["id"] and request.payment_status in SETTLED_PAYMENT_STATUSES):
                if await self._mark_paid(request, obj["id"], obj.get("amount_received") or obj.get("amount")):
                    self.metrics.increment_payment_operations(
                        PaymentOperationKind.INTENT.value, PaymentOperationStatus.CONFIRMED.value
                    )
        elif event.type == "payment_intent.payment_failed":
            self._mark_failed(request, obj["id"])
            self.metrics.increment_payment_operations(
                PaymentOperationKind.INTENT.value, PaymentOperationStatus.FAILED.value
            )
        elif event.type == "checkout.session.completed":
            payment_intent = obj.get("payment_intent")
            if isinstance(payment_intent, dict):
                payment_intent = payment_intent.get("id")
            await self._apply_checkout_session(
                request,
                obj["id"],
                obj.get("payment_status") or "unpaid",
                payment_intent,
                obj.get("amount_total"),
            )
        else:
            logger.info("Ignoring webhook event", extra={"event_type": event.type})

        return {"received": True}
