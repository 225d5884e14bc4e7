"""
Stripe adapter for webhook verification and refunds.

Translates Stripe's event and error shapes into the marketplace's own:
verified webhooks become ``ProviderEvent`` values with normalized event
types, and Stripe exceptions become ``TransientProviderError`` (network,
rate limit, 5xx; safe to retry) or ``PermanentProviderError`` (everything
else). Retrying itself is left to the retry executor.
"""

import asyncio
import json
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Optional, TypeVar

import stripe

from marketplace.core.config import get_settings
from marketplace.core.errors import (
    AuthenticationError,
    PermanentProviderError,
    TransientProviderError,
    ValidationError,
)
from marketplace.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class ProviderEventType(str, Enum):
    """Normalized payment event types."""

    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_CANCELED = "payment_canceled"


STRIPE_EVENT_TYPES: dict[str, ProviderEventType] = {
    "payment_intent.succeeded": ProviderEventType.PAYMENT_SUCCEEDED,
    "payment_intent.payment_failed": ProviderEventType.PAYMENT_FAILED,
    "payment_intent.canceled": ProviderEventType.PAYMENT_CANCELED,
}


@dataclass(frozen=True)
class ProviderEvent:
    """
    Verified payment provider event.

    Attributes:
        event_id: Provider event identifier
        raw_type: Provider event type string
        type: Normalized type, None for event types the engine ignores
        order_id: Value of ``metadata.order_id`` (or ``orderId``), if any
        payment_intent_id: Provider payment reference
        failure_message: Provider failure message for failed payments
    """

    event_id: str
    raw_type: str
    type: Optional[ProviderEventType]
    order_id: Optional[str]
    payment_intent_id: Optional[str]
    failure_message: Optional[str] = None


def to_minor_units(amount: Decimal) -> int:
    """Convert a decimal amount to integer cents."""
    return int((amount * 100).to_integral_value())


def normalize_event(event: Any) -> ProviderEvent:
    """
    Build a ProviderEvent from a verified Stripe event.

    Args:
        event: Decoded Stripe event payload

    Returns:
        Normalized provider event
    """
    raw_type = event["type"]
    data_object = event["data"]["object"] or {}
    metadata = data_object.get("metadata") or {}
    last_error = data_object.get("last_payment_error") or {}

    order_id = metadata.get("order_id") or metadata.get("orderId")

    return ProviderEvent(
        event_id=event["id"],
        raw_type=raw_type,
        type=STRIPE_EVENT_TYPES.get(raw_type),
        order_id=str(order_id) if order_id else None,
        payment_intent_id=data_object.get("id"),
        failure_message=last_error.get("message"),
    )


class StripeClient:
    """Thin async wrapper over the Stripe SDK."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
    ):
        settings = get_settings()
        self.api_key = api_key or settings.stripe_secret_key
        self.webhook_secret = webhook_secret or settings.stripe_webhook_secret

    def verify_event(self, payload: bytes, signature: Optional[str]) -> ProviderEvent:
        """
        Verify a webhook signature and normalize the event.

        Args:
            payload: Raw request body
            signature: ``Stripe-Signature`` header value

        Returns:
            Normalized provider event

        Raises:
            AuthenticationError: If the signature is missing or invalid
            ValidationError: If the payload is not a valid event
        """
        if not signature:
            logger.warning("Webhook rejected: missing signature header")
            raise AuthenticationError(
                "Missing webhook signature",
                code="INVALID_SIGNATURE",
            )

        body = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        try:
            stripe.WebhookSignature.verify_header(
                body,
                signature,
                self.webhook_secret,
                tolerance=stripe.Webhook.DEFAULT_TOLERANCE,
            )
        except stripe.SignatureVerificationError as e:
            logger.warning("Webhook signature verification failed", error=str(e))
            raise AuthenticationError(
                "Webhook signature verification failed",
                code="INVALID_SIGNATURE",
            ) from e

        try:
            event = json.loads(body)
            normalized = normalize_event(event)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Invalid webhook payload", error=str(e))
            raise ValidationError("Invalid webhook payload", code="INVALID_PAYLOAD") from e

        logger.info(
            "Webhook event verified",
            event_id=normalized.event_id,
            event_type=normalized.raw_type,
        )
        return normalized

    async def _call(self, operation: str, func: Callable[..., T], **kwargs: Any) -> T:
        """
        Run a blocking SDK call off the event loop and map its errors.

        Raises:
            TransientProviderError: For connection, rate limit and API errors
            PermanentProviderError: For any other Stripe error
        """
        try:
            return await asyncio.to_thread(func, api_key=self.api_key, **kwargs)
        except (stripe.APIConnectionError, stripe.RateLimitError, stripe.APIError) as e:
            logger.warning(
                "Stripe transient error",
                operation=operation,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise TransientProviderError(
                f"Payment provider unavailable: {e.user_message or e}",
                operation=operation,
            ) from e
        except stripe.StripeError as e:
            logger.error(
                "Stripe request rejected",
                operation=operation,
                error=str(e),
                code=e.code,
            )
            raise PermanentProviderError(
                f"Payment provider rejected request: {e.user_message or e}",
                operation=operation,
                provider_code=e.code,
            ) from e

    async def create_refund(
        self,
        payment_intent_id: str,
        amount: Decimal,
        idempotency_key: str,
    ) -> str:
        """
        Refund part or all of a payment.

        The idempotency key makes a retried call return the original refund
        instead of issuing a second one.

        Args:
            payment_intent_id: Provider payment reference
            amount: Amount to refund
            idempotency_key: Stable key for this logical refund

        Returns:
            Provider refund identifier
        """
        refund = await self._call(
            "create_refund",
            stripe.Refund.create,
            payment_intent=payment_intent_id,
            amount=to_minor_units(amount),
            idempotency_key=idempotency_key,
        )
        logger.info(
            "Refund created",
            payment_intent_id=payment_intent_id,
            refund_id=refund["id"],
            amount=str(amount),
        )
        return refund["id"]


def get_stripe_client() -> StripeClient:
    """FastAPI dependency returning a configured Stripe client."""
    return StripeClient()
