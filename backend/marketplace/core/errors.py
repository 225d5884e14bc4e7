"""
Error taxonomy for order fulfillment and payment reconciliation.

Every error carries a stable, localizable code, a human readable message
and keyword context for logs. The HTTP status each error maps to lives on
the class so the exception handlers in ``marketplace.main`` stay generic.
"""

from typing import Any


class MarketplaceError(Exception):
    """Base exception for all domain errors."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, code: str | None = None, **context: Any):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        """Render the error as a response payload."""
        return {
            "code": self.code,
            "message": self.message,
            "context": {k: str(v) for k, v in self.context.items()},
        }


class ValidationError(MarketplaceError):
    """Raised for malformed or out-of-range input the caller can correct."""

    code = "VALIDATION_ERROR"
    status_code = 400


class AuthenticationError(MarketplaceError):
    """Raised when a signature or credential check fails."""

    code = "AUTHENTICATION_FAILED"
    status_code = 401


class AuthorizationError(MarketplaceError):
    """Raised when an authenticated caller is not entitled to a resource."""

    code = "FORBIDDEN"
    status_code = 403


class NotFoundError(MarketplaceError):
    """Raised when a referenced order, product, payment or return is missing."""

    code = "NOT_FOUND"
    status_code = 404


class InvalidStateError(MarketplaceError):
    """Raised when an operation is not legal from the current state."""

    code = "INVALID_STATE"
    status_code = 409


class InsufficientStockError(MarketplaceError):
    """Raised when a stock decrement would drive stock below zero."""

    code = "INSUFFICIENT_STOCK"
    status_code = 409

    def __init__(self, product_id: Any, requested: int, **context: Any):
        super().__init__(
            f"Insufficient stock for product {product_id}",
            product_id=product_id,
            requested=requested,
            **context,
        )


class ProviderError(MarketplaceError):
    """Base exception for payment provider failures."""

    code = "PROVIDER_ERROR"
    status_code = 502


class TransientProviderError(ProviderError):
    """Network or timeout failure talking to the payment provider."""

    code = "PROVIDER_UNAVAILABLE"


class PermanentProviderError(ProviderError):
    """Provider rejected the request for a non-transient reason."""

    code = "PROVIDER_REJECTED"
