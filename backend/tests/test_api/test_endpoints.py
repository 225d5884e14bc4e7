"""
Integration tests for the HTTP surface.

Services are swapped for instances built over the in-memory fakes through
FastAPI dependency overrides; no database or network is touched.
"""

import hashlib
import hmac
import json
import time
import uuid
from unittest.mock import AsyncMock

import pytest

from fakes import make_order, make_product
from marketplace.api.deps import (
    get_inventory_ledger,
    get_order_service,
    get_reconciler,
    get_return_workflow,
)
from marketplace.core.security import Principal, UserRole
from marketplace.main import app
from marketplace.services.inventory.ledger import InventoryLedger
from marketplace.services.orders.enums import OrderStatus, PaymentStatus
from marketplace.services.orders.service import OrderService
from marketplace.services.payments.reconciliation import PaymentReconciler
from marketplace.services.payments.stripe_client import StripeClient
from marketplace.services.returns.workflow import ReturnWorkflow

WEBHOOK_SECRET = "whsec_api_test"


def signed_headers(payload: str) -> dict[str, str]:
    timestamp = int(time.time())
    signature = hmac.new(
        WEBHOOK_SECRET.encode("utf-8"),
        f"{timestamp}.{payload}".encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    return {
        "stripe-signature": f"t={timestamp},v1={signature}",
        "content-type": "application/json",
    }


@pytest.fixture
def reconciler(fake_session, order_repo, ledger, alerts, fast_retry) -> PaymentReconciler:
    return PaymentReconciler(
        fake_session,
        provider=StripeClient(api_key="sk_test_api", webhook_secret=WEBHOOK_SECRET),
        orders=order_repo,
        ledger=ledger,
        alerts=alerts,
        retry_config=fast_retry,
    )


@pytest.fixture
def pending_order(order_repo, inventory_repo, seller_id, customer):
    product = inventory_repo.add_product(make_product(seller_id, "15.00", stock=4))
    order = make_order(customer.user_id, [(product, 2)])
    order_repo.orders[order.id] = order
    return order


# ============================================================================
# Webhook Endpoint
# ============================================================================


class TestWebhookEndpoint:
    """Tests for POST /api/v1/payments/webhook."""

    def test_verified_event_is_applied_and_acknowledged(
        self, test_client, reconciler, pending_order, inventory_repo
    ):
        # Arrange
        app.dependency_overrides[get_reconciler] = lambda: reconciler
        payload = json.dumps(
            {
                "id": "evt_api_1",
                "type": "payment_intent.succeeded",
                "data": {
                    "object": {
                        "id": "pi_api_1",
                        "metadata": {"order_id": str(pending_order.id)},
                    }
                },
            }
        )

        # Act
        response = test_client.post(
            "/api/v1/payments/webhook", content=payload, headers=signed_headers(payload)
        )

        # Assert
        assert response.status_code == 200
        body = response.json()
        assert body["received"] is True
        assert body["applied"] is True
        assert body["order_id"] == str(pending_order.id)
        assert pending_order.status == OrderStatus.CONFIRMED
        assert inventory_repo.stock_of(pending_order.items[0].product_id) == 2

    def test_event_without_order_id_is_still_acknowledged(
        self, test_client, reconciler, alerts
    ):
        app.dependency_overrides[get_reconciler] = lambda: reconciler
        payload = json.dumps(
            {
                "id": "evt_api_2",
                "type": "payment_intent.succeeded",
                "data": {"object": {"id": "pi_api_2", "metadata": {}}},
            }
        )

        response = test_client.post(
            "/api/v1/payments/webhook", content=payload, headers=signed_headers(payload)
        )

        assert response.status_code == 200
        assert response.json()["applied"] is False
        assert len(alerts.alerts) == 1

    def test_missing_signature_is_rejected(self, test_client, reconciler):
        app.dependency_overrides[get_reconciler] = lambda: reconciler

        response = test_client.post("/api/v1/payments/webhook", content=b"{}")

        assert response.status_code == 401
        assert response.json()["code"] == "INVALID_SIGNATURE"

    def test_forged_signature_is_rejected(self, test_client, reconciler, pending_order):
        app.dependency_overrides[get_reconciler] = lambda: reconciler
        payload = json.dumps({"id": "evt_x", "type": "payment_intent.succeeded"})

        response = test_client.post(
            "/api/v1/payments/webhook",
            content=payload,
            headers={"stripe-signature": f"t={int(time.time())},v1=deadbeef"},
        )

        assert response.status_code == 401
        assert pending_order.status == OrderStatus.PENDING


# ============================================================================
# Authentication and Error Rendering
# ============================================================================


class TestAuthentication:
    """Tests for bearer token handling."""

    def test_missing_token(self, test_client):
        app.dependency_overrides[get_order_service] = lambda: AsyncMock(spec=OrderService)

        response = test_client.get("/api/v1/orders/")

        assert response.status_code == 401
        assert response.json()["code"] == "TOKEN_MISSING"

    def test_garbage_token(self, test_client):
        app.dependency_overrides[get_order_service] = lambda: AsyncMock(spec=OrderService)

        response = test_client.get(
            "/api/v1/orders/", headers={"Authorization": "Bearer not-a-jwt"}
        )

        assert response.status_code == 401
        assert response.json()["code"] == "TOKEN_INVALID"

    def test_customer_cannot_approve_returns(self, test_client, customer, auth_headers):
        app.dependency_overrides[get_return_workflow] = lambda: AsyncMock(
            spec=ReturnWorkflow
        )

        response = test_client.post(
            f"/api/v1/returns/{uuid.uuid4()}/approve", headers=auth_headers(customer)
        )

        assert response.status_code == 403
        assert response.json()["code"] == "FORBIDDEN"


class TestOrderEndpoints:
    """Tests for order endpoints backed by the fake repositories."""

    @pytest.fixture
    def service(self, fake_session, order_repo, ledger):
        service = OrderService(fake_session, repository=order_repo, ledger=ledger)
        app.dependency_overrides[get_order_service] = lambda: service
        return service

    def test_customer_lists_own_orders(
        self, test_client, service, pending_order, customer, auth_headers
    ):
        response = test_client.get("/api/v1/orders/", headers=auth_headers(customer))

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 1
        assert body["items"][0]["id"] == str(pending_order.id)

    def test_other_customer_gets_forbidden(
        self, test_client, service, pending_order, other_customer, auth_headers
    ):
        response = test_client.get(
            f"/api/v1/orders/{pending_order.id}", headers=auth_headers(other_customer)
        )

        assert response.status_code == 403
        assert response.json()["code"] == "FORBIDDEN"

    def test_illegal_transition_is_conflict(
        self, test_client, service, pending_order, admin, auth_headers
    ):
        response = test_client.patch(
            f"/api/v1/orders/{pending_order.id}/status",
            json={"status": "delivered"},
            headers=auth_headers(admin),
        )

        assert response.status_code == 409
        assert response.json()["code"] == "INVALID_STATE"
        assert pending_order.status == OrderStatus.PENDING

    def test_customer_cancels_pending_order(
        self, test_client, service, pending_order, customer, auth_headers
    ):
        response = test_client.patch(
            f"/api/v1/orders/{pending_order.id}/status",
            json={"status": "cancelled", "reason": "Ordered by mistake"},
            headers=auth_headers(customer),
        )

        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"
        assert pending_order.payment_status == PaymentStatus.UNPAID

    def test_bad_status_value_is_validation_error(
        self, test_client, service, pending_order, admin, auth_headers
    ):
        response = test_client.patch(
            f"/api/v1/orders/{pending_order.id}/status",
            json={"status": "teleported"},
            headers=auth_headers(admin),
        )

        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"


def test_health(test_client):
    response = test_client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_seller_principal_role_claim_round_trips(test_client, seller_id, auth_headers):
    app.dependency_overrides[get_order_service] = lambda: AsyncMock(
        spec=OrderService, list_orders=AsyncMock(return_value=([], 0))
    )
    seller = Principal(user_id=seller_id, role=UserRole.SELLER)

    response = test_client.get("/api/v1/orders/", headers=auth_headers(seller))

    assert response.status_code == 200
    assert response.json()["items"] == []


class TestInventoryEndpoints:
    """Tests for forecast visibility across sellers."""

    @pytest.fixture
    def products(self, fake_session, inventory_repo, seller_id):
        ledger = InventoryLedger(fake_session, repository=inventory_repo)
        app.dependency_overrides[get_inventory_ledger] = lambda: ledger
        own = inventory_repo.add_product(make_product(seller_id, "3.00", stock=0))
        rival = inventory_repo.add_product(make_product(uuid.uuid4(), "3.00", stock=0))
        return own, rival

    def test_seller_only_sees_own_forecasts(
        self, test_client, products, seller_id, auth_headers
    ):
        own, _ = products
        seller = Principal(user_id=seller_id, role=UserRole.SELLER)

        for path in ("/api/v1/inventory/forecasts", "/api/v1/inventory/alerts"):
            response = test_client.get(path, headers=auth_headers(seller))

            assert response.status_code == 200
            body = response.json()
            assert body["total"] == 1
            assert body["items"][0]["product_id"] == str(own.id)

    def test_admin_sees_every_forecast(self, test_client, products, admin, auth_headers):
        response = test_client.get(
            "/api/v1/inventory/forecasts", headers=auth_headers(admin)
        )

        assert response.status_code == 200
        assert response.json()["total"] == 2

    def test_seller_cannot_forecast_rival_product(
        self, test_client, products, seller_id, auth_headers
    ):
        own, rival = products
        seller = Principal(user_id=seller_id, role=UserRole.SELLER)

        denied = test_client.get(
            f"/api/v1/inventory/{rival.id}/forecast", headers=auth_headers(seller)
        )
        allowed = test_client.get(
            f"/api/v1/inventory/{own.id}/forecast", headers=auth_headers(seller)
        )

        assert denied.status_code == 403
        assert denied.json()["code"] == "FORBIDDEN"
        assert allowed.status_code == 200
