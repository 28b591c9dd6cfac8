"""
Payment routes.

Customer-facing endpoints open and confirm payments for a service request;
refunds are staff only. The webhook is authenticated by the gateway
signature, not by a token.
"""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from servicehub.api.dependencies import Principal, get_current_staff, get_db, get_payment_orchestrator
from servicehub.models.service_requests import PaymentStatus
from servicehub.services.payment_service import PaymentOrchestrator
from servicehub.services.request_service import RequestService


router = APIRouter(prefix="/payments", tags=["payments"])


class PaymentTarget(BaseModel):
    service_request_id: UUID


class ConfirmBody(PaymentTarget):
    payment_intent_id: str = Field(min_length=1)


class CheckoutBody(PaymentTarget):
    return_url: Optional[str] = Field(None, description="Origin the hosted page returns to")


class RefundBody(PaymentTarget):
    amount: Optional[int] = Field(None, description="Cents; omit to refund the remaining amount")
    reason: Optional[str] = None


def _status_body(request_id: UUID, payment_status: PaymentStatus) -> dict:
    return {
        "success": True,
        "data": {"service_request_id": str(request_id), "payment_status": payment_status.value},
    }


@router.post("/cash")
def select_cash(
    body: PaymentTarget,
    db: Session = Depends(get_db),
    payments: PaymentOrchestrator = Depends(get_payment_orchestrator),
) -> dict:
    request = payments.open_cash_flow(RequestService(db).get(body.service_request_id))
    return _status_body(request.id, request.payment_status)


@router.post("/intent")
async def create_payment_intent(
    body: PaymentTarget,
    db: Session = Depends(get_db),
    payments: PaymentOrchestrator = Depends(get_payment_orchestrator),
) -> dict:
    operation = await payments.open_gateway_intent(RequestService(db).get(body.service_request_id))
    return {
        "success": True,
        "data": {
            "client_secret": operation.client_secret,
            "payment_intent_id": operation.external_ref,
            "amount": operation.amount,
        },
    }


@router.post("/confirm")
async def confirm_payment(
    body: ConfirmBody,
    payments: PaymentOrchestrator = Depends(get_payment_orchestrator),
) -> dict:
    payment_status = await payments.confirm(body.payment_intent_id, body.service_request_id)
    return _status_body(body.service_request_id, payment_status)


@router.post("/checkout-session")
async def create_checkout_session(
    body: CheckoutBody,
    db: Session = Depends(get_db),
    payments: PaymentOrchestrator = Depends(get_payment_orchestrator),
) -> dict:
    operation = await payments.create_checkout_redirect(
        RequestService(db).get(body.service_request_id), body.return_url
    )
    return {
        "success": True,
        "data": {"url": operation.checkout_url, "session_id": operation.external_ref, "amount": operation.amount},
    }


@router.get("/checkout-session")
async def verify_checkout_session(
    session_id: str = Query(..., min_length=1),
    payments: PaymentOrchestrator = Depends(get_payment_orchestrator),
) -> dict:
    request_id, payment_status = await payments.verify_checkout_session(session_id)
    return _status_body(request_id, payment_status)


@router.post("/refund")
async def refund_payment(
    body: RefundBody,
    payments: PaymentOrchestrator = Depends(get_payment_orchestrator),
    staff: Principal = Depends(get_current_staff),
) -> dict:
    payment_status = await payments.refund(body.service_request_id, body.amount, body.reason)
    return _status_body(body.service_request_id, payment_status)


@router.post("/webhook", include_in_schema=False)
async def payment_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    payments: PaymentOrchestrator = Depends(get_payment_orchestrator),
) -> dict:
    payload = await request.body()
    return await payments.handle_webhook(payload, stripe_signature)
