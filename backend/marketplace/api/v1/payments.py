"""
Payment API endpoints: provider webhook and partial payments.

The webhook endpoint is unauthenticated; the provider signature is the
credential. A verified event is always answered with 200 so the provider
stops redelivering it, even when it had no effect.
"""

from typing import Annotated, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Request, status

from marketplace.api.deps import (
    CurrentCustomer,
    CurrentPrincipal,
    get_partial_payment_ledger,
    get_reconciler,
)
from marketplace.core.logging import get_logger
from marketplace.schemas.payments import (
    PartialPaymentCreate,
    PartialPaymentResponse,
    PartialPaymentSchedule,
    PartialPaymentSummary,
    WebhookAck,
)
from marketplace.services.payments.partial import PartialPaymentLedger
from marketplace.services.payments.reconciliation import PaymentReconciler

logger = get_logger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])

Ledger = Annotated[PartialPaymentLedger, Depends(get_partial_payment_ledger)]


@router.post(
    "/webhook",
    response_model=WebhookAck,
    status_code=status.HTTP_200_OK,
    summary="Handle Stripe webhook",
    description="Verify and apply a payment provider event",
)
async def handle_webhook(
    request: Request,
    reconciler: Annotated[PaymentReconciler, Depends(get_reconciler)],
    stripe_signature: Annotated[Optional[str], Header(alias="stripe-signature")] = None,
) -> WebhookAck:
    """
    Handle Stripe webhook event.

    Raises:
        AuthenticationError: 401 for a missing or invalid signature
    """
    payload = await request.body()
    result = await reconciler.handle_webhook(payload, stripe_signature)

    logger.info(
        "Webhook processed",
        event_id=result.event_id,
        event_type=result.event_type,
        order_id=result.order_id,
        applied=result.applied,
        failed_items=result.failed_items,
    )
    return WebhookAck(
        received=result.acknowledged,
        event_id=result.event_id,
        event_type=result.event_type,
        order_id=result.order_id,
        applied=result.applied,
    )


@router.post(
    "/orders/{order_id}/partial",
    response_model=PartialPaymentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record installment",
)
async def create_partial_payment(
    order_id: UUID,
    request: PartialPaymentCreate,
    principal: CurrentCustomer,
    ledger: Ledger,
) -> PartialPaymentResponse:
    payment = await ledger.create(
        order_id,
        request.amount,
        request.payment_method,
        request.transaction_ref,
        principal,
    )
    return PartialPaymentResponse.model_validate(payment)


@router.post(
    "/partial/{payment_id}/complete",
    response_model=PartialPaymentResponse,
    summary="Complete installment",
)
async def complete_partial_payment(
    payment_id: UUID,
    principal: CurrentCustomer,
    ledger: Ledger,
) -> PartialPaymentResponse:
    payment = await ledger.complete(payment_id, principal)
    return PartialPaymentResponse.model_validate(payment)


@router.post(
    "/partial/{payment_id}/refund",
    response_model=PartialPaymentResponse,
    summary="Refund installment",
)
async def refund_partial_payment(
    payment_id: UUID,
    principal: CurrentCustomer,
    ledger: Ledger,
) -> PartialPaymentResponse:
    payment = await ledger.refund(payment_id, principal)
    return PartialPaymentResponse.model_validate(payment)


@router.get(
    "/orders/{order_id}/partial",
    response_model=PartialPaymentSummary,
    summary="Installment balance",
)
async def get_partial_payment_status(
    order_id: UUID,
    principal: CurrentPrincipal,
    ledger: Ledger,
) -> PartialPaymentSummary:
    return await ledger.status(order_id, principal)


@router.get(
    "/orders/{order_id}/partial/schedule",
    response_model=PartialPaymentSchedule,
    summary="Installment schedule",
)
async def get_partial_payment_schedule(
    order_id: UUID,
    principal: CurrentPrincipal,
    ledger: Ledger,
) -> PartialPaymentSchedule:
    return await ledger.schedule(order_id, principal)


@router.get(
    "/orders/{order_id}/partial/history",
    response_model=list[PartialPaymentResponse],
    summary="Installment history",
)
async def get_partial_payment_history(
    order_id: UUID,
    principal: CurrentPrincipal,
    ledger: Ledger,
) -> list[PartialPaymentResponse]:
    payments = await ledger.history(order_id, principal)
    return [PartialPaymentResponse.model_validate(p) for p in payments]
