"""Payment gateway adapters.

``PaymentGateway`` is the contract the payment orchestrator depends on;
``StripeGateway`` implements it on top of the Stripe SDK. SDK calls are
blocking, so each one runs in a worker thread and transient failures
(connection errors, rate limits, 5xx) are retried a bounded number of times
before surfacing as ``GatewayError``.
"""
import functools
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional

import anyio
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from servicehub.lib.logging import get_logger
from servicehub.lib.settings import settings

logger = get_logger(__name__)


class GatewayError(Exception):
    """The gateway call failed after the retry budget or was declined."""


class WebhookSignatureError(GatewayError):
    """Webhook payload could not be authenticated."""


@dataclass
class GatewayIntent:
    id: str
    status: str
    amount: int
    client_secret: Optional[str] = None
    metadata: dict = field(default_factory=dict)


@dataclass
class GatewayCheckoutSession:
    id: str
    url: Optional[str]
    payment_status: str
    amount_total: Optional[int] = None
    payment_intent: Optional[str] = None
    client_reference_id: Optional[str] = None
    metadata: dict = field(default_factory=dict)


@dataclass
class GatewayRefund:
    id: str
    status: str
    amount: int


@dataclass
class GatewayEvent:
    type: str
    data: dict


class PaymentGateway(ABC):
    """Operations the orchestrator needs from a card-payment provider."""

    @abstractmethod
    async def create_intent(
        self,
        amount_cents: int,
        currency: str,
        metadata: dict[str, str],
        idempotency_key: Optional[str] = None,
    ) -> GatewayIntent:
        pass

    @abstractmethod
    async def retrieve_intent(self, intent_id: str) -> GatewayIntent:
        pass

    @abstractmethod
    async def create_checkout_session(
        self,
        *,
        amount_cents: int,
        currency: str,
        product_name: str,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
        client_reference_id: str,
        description: Optional[str] = None,
    ) -> GatewayCheckoutSession:
        pass

    @abstractmethod
    async def retrieve_checkout_session(self, session_id: str) -> GatewayCheckoutSession:
        pass

    @abstractmethod
    async def create_refund(
        self,
        payment_intent_id: str,
        amount_cents: int,
        metadata: dict[str, str],
    ) -> GatewayRefund:
        pass

    @abstractmethod
    def construct_event(self, payload: bytes, signature: Optional[str]) -> GatewayEvent:
        pass


def _get(obj: Any, key: str, default: Any = None) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(key, default)
    return getattr(obj, key, default)


def _as_dict(obj: Any) -> dict:
    if obj is None:
        return {}
    if isinstance(obj, Mapping):
        return dict(obj)
    return dict(getattr(obj, "to_dict", lambda: {})())


class StripeGateway(PaymentGateway):
    """Stripe implementation of the payment gateway contract."""

    def __init__(
        self,
        secret_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        stripe_sdk: Any = None,
        max_retries: Optional[int] = None,
        backoff_multiplier: float = 0.5,
    ):
        """
        Args:
            secret_key: Stripe secret key (defaults to settings.stripe_secret_key)
            webhook_secret: Webhook signing secret (defaults to settings)
            stripe_sdk: Stripe module; injected by tests
            max_retries: Retries for transient failures (defaults to settings)
            backoff_multiplier: Exponential backoff multiplier in seconds
        """
        if stripe_sdk is None:
            import stripe as stripe_sdk

        self.stripe = stripe_sdk
        self.secret_key = secret_key or settings.stripe_secret_key
        self.webhook_secret = webhook_secret or settings.stripe_webhook_secret
        self.max_retries = settings.gateway_max_retries if max_retries is None else max_retries
        self.backoff_multiplier = backoff_multiplier

    def _is_transient(self, exc: BaseException) -> bool:
        if isinstance(exc, (self.stripe.APIConnectionError, self.stripe.RateLimitError)):
            return True
        if isinstance(exc, self.stripe.APIError):
            status = getattr(exc, "http_status", None)
            return status is None or status >= 500
        return False

    async def _call(self, fn: Callable[..., Any], /, *args, **kwargs) -> Any:
        if not self.secret_key:
            raise GatewayError("Stripe secret key not configured")

        call = functools.partial(fn, *args, api_key=self.secret_key, **kwargs)
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=self.backoff_multiplier, max=5),
            retry=retry_if_exception(self._is_transient),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        logger.warning(
                            f"Retrying Stripe call {getattr(fn, '__qualname__', fn)} "
                            f"(attempt {attempt.retry_state.attempt_number}/{self.max_retries + 1})"
                        )
                    result = await anyio.to_thread.run_sync(call)
        except self.stripe.StripeError as e:
            message = getattr(e, "user_message", None) or str(e)
            logger.error(f"Stripe call failed: {message}", extra={"stripe_error": type(e).__name__})
            raise GatewayError(message) from e
        return result

    @staticmethod
    def _intent(obj: Any) -> GatewayIntent:
        return GatewayIntent(
            id=_get(obj, "id"),
            status=_get(obj, "status"),
            amount=int(_get(obj, "amount") or 0),
            client_secret=_get(obj, "client_secret"),
            metadata=_as_dict(_get(obj, "metadata")),
        )

    @staticmethod
    def _session(obj: Any) -> GatewayCheckoutSession:
        payment_intent = _get(obj, "payment_intent")
        if payment_intent is not None and not isinstance(payment_intent, str):
            payment_intent = _get(payment_intent, "id")
        amount_total = _get(obj, "amount_total")
        return GatewayCheckoutSession(
            id=_get(obj, "id"),
            url=_get(obj, "url"),
            payment_status=_get(obj, "payment_status") or "unpaid",
            amount_total=int(amount_total) if amount_total is not None else None,
            payment_intent=payment_intent,
            client_reference_id=_get(obj, "client_reference_id"),
            metadata=_as_dict(_get(obj, "metadata")),
        )

    async def create_intent(
        self,
        amount_cents: int,
        currency: str,
        metadata: dict[str, str],
        idempotency_key: Optional[str] = None,
    ) -> GatewayIntent:
        extra: dict[str, Any] = {}
        if idempotency_key:
            extra["idempotency_key"] = idempotency_key
        intent = await self._call(
            self.stripe.PaymentIntent.create,
            amount=amount_cents,
            currency=currency,
            metadata=metadata,
            automatic_payment_methods={"enabled": True},
            **extra,
        )
        return self._intent(intent)

    async def retrieve_intent(self, intent_id: str) -> GatewayIntent:
        return self._intent(await self._call(self.stripe.PaymentIntent.retrieve, intent_id))

    async def create_checkout_session(
        self,
        *,
        amount_cents: int,
        currency: str,
        product_name: str,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
        client_reference_id: str,
        description: Optional[str] = None,
    ) -> GatewayCheckoutSession:
        product_data: dict[str, Any] = {"name": product_name}
        if description:
            product_data["description"] = description
        session = await self._call(
            self.stripe.checkout.Session.create,
            mode="payment",
            payment_method_types=["card"],
            line_items=[
                {
                    "price_data": {
                        "currency": currency,
                        "product_data": product_data,
                        "unit_amount": amount_cents,
                    },
                    "quantity": 1,
                }
            ],
            metadata=metadata,
            client_reference_id=client_reference_id,
            payment_intent_data={"metadata": metadata},
            success_url=success_url,
            cancel_url=cancel_url,
        )
        return self._session(session)

    async def retrieve_checkout_session(self, session_id: str) -> GatewayCheckoutSession:
        return self._session(await self._call(self.stripe.checkout.Session.retrieve, session_id))

    async def create_refund(
        self,
        payment_intent_id: str,
        amount_cents: int,
        metadata: dict[str, str],
    ) -> GatewayRefund:
        refund = await self._call(
            self.stripe.Refund.create,
            payment_intent=payment_intent_id,
            amount=amount_cents,
            reason="requested_by_customer",
            metadata=metadata,
        )
        return GatewayRefund(
            id=_get(refund, "id"),
            status=_get(refund, "status"),
            amount=int(_get(refund, "amount") or amount_cents),
        )

    def construct_event(self, payload: bytes, signature: Optional[str]) -> GatewayEvent:
        if not self.webhook_secret:
            raise WebhookSignatureError("Webhook secret not configured")
        if not signature:
            raise WebhookSignatureError("Missing Stripe signature header")
        try:
            event = self.stripe.Webhook.construct_event(
                payload=payload, sig_header=signature, secret=self.webhook_secret
            )
        except (ValueError, self.stripe.SignatureVerificationError) as e:
            raise WebhookSignatureError(f"Webhook Error: {e}") from e
        data = _get(event, "data") or {}
        return GatewayEvent(type=_get(event, "type"), data=_as_dict(_get(data, "object")))
