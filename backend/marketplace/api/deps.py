"""
FastAPI dependencies for authentication, authorization and services.

Authentication failures are raised as domain errors and rendered by the
application's error handler, so every endpoint reports them with the same
``{"code", "message", "context"}`` body.
"""

from typing import Annotated, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.alerts import AlertSink, get_alert_sink
from marketplace.core.errors import AuthenticationError, AuthorizationError
from marketplace.core.logging import get_logger, set_user_id
from marketplace.core.security import Principal, UserRole, decode_principal
from marketplace.database.connection import get_db
from marketplace.services.inventory.ledger import InventoryLedger
from marketplace.services.orders.service import OrderService
from marketplace.services.payments.partial import PartialPaymentLedger
from marketplace.services.payments.reconciliation import PaymentReconciler
from marketplace.services.payments.stripe_client import StripeClient, get_stripe_client
from marketplace.services.returns.workflow import ReturnWorkflow

logger = get_logger(__name__)

security = HTTPBearer(auto_error=False)


async def get_principal(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> Principal:
    """
    Decode the bearer token into the calling principal.

    Args:
        credentials: HTTP Bearer token from Authorization header

    Returns:
        Principal: Authenticated caller

    Raises:
        AuthenticationError: If the token is missing, expired or invalid
    """
    if credentials is None:
        logger.warning("Authentication failed: No credentials provided")
        raise AuthenticationError("Could not validate credentials", code="TOKEN_MISSING")

    principal = decode_principal(credentials.credentials)
    set_user_id(str(principal.user_id))
    return principal


def require_roles(*allowed_roles: UserRole):
    """
    Dependency factory restricting an endpoint to the given roles.

    Example:
        @router.post("/{return_id}/approve")
        async def approve(principal: Annotated[Principal, Depends(require_roles(UserRole.ADMIN))]):
            ...
    """

    async def role_checker(
        principal: Annotated[Principal, Depends(get_principal)],
    ) -> Principal:
        if principal.role not in allowed_roles:
            logger.warning(
                "Authorization failed: Insufficient role",
                user_id=str(principal.user_id),
                user_role=principal.role.value,
                required_roles=[role.value for role in allowed_roles],
            )
            raise AuthorizationError(
                "Insufficient permissions",
                role=principal.role.value,
            )
        return principal

    return role_checker


DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
CurrentPrincipal = Annotated[Principal, Depends(get_principal)]
CurrentAdmin = Annotated[Principal, Depends(require_roles(UserRole.ADMIN))]
CurrentCustomer = Annotated[Principal, Depends(require_roles(UserRole.CUSTOMER))]
CurrentInventoryManager = Annotated[
    Principal, Depends(require_roles(UserRole.SELLER, UserRole.ADMIN))
]
StripeProvider = Annotated[StripeClient, Depends(get_stripe_client)]
Alerts = Annotated[AlertSink, Depends(get_alert_sink)]


def get_order_service(db: DatabaseSession) -> OrderService:
    return OrderService(db)


def get_inventory_ledger(db: DatabaseSession) -> InventoryLedger:
    return InventoryLedger(db)


def get_reconciler(
    db: DatabaseSession, provider: StripeProvider, alerts: Alerts
) -> PaymentReconciler:
    return PaymentReconciler(db, provider=provider, alerts=alerts)


def get_partial_payment_ledger(
    db: DatabaseSession,
    provider: StripeProvider,
    reconciler: Annotated[PaymentReconciler, Depends(get_reconciler)],
) -> PartialPaymentLedger:
    return PartialPaymentLedger(db, provider=provider, reconciler=reconciler)


def get_return_workflow(db: DatabaseSession, provider: StripeProvider) -> ReturnWorkflow:
    return ReturnWorkflow(db, provider=provider)
