"""
Pytest configuration and shared test fixtures.

Service tests run against the in-memory fakes in ``fakes.py``; API tests
use FastAPI's TestClient with dependency overrides, so no database or
payment provider is needed.
"""

import os
import uuid
from typing import Generator
from unittest.mock import AsyncMock

os.environ.setdefault("APP_ENVIRONMENT", "test")

import pytest
from fastapi.testclient import TestClient

from fakes import (
    FakeInventoryRepository,
    FakeOrderRepository,
    FakePartialPaymentRepository,
    FakeReturnRepository,
    FakeSession,
    RecordingAlertSink,
)
from marketplace.core.retry import RetryConfig
from marketplace.core.security import Principal, UserRole, create_access_token
from marketplace.services.inventory.ledger import InventoryLedger
from marketplace.services.payments.stripe_client import StripeClient


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def inventory_repo() -> FakeInventoryRepository:
    return FakeInventoryRepository()


@pytest.fixture
def order_repo() -> FakeOrderRepository:
    return FakeOrderRepository()


@pytest.fixture
def payment_repo() -> FakePartialPaymentRepository:
    return FakePartialPaymentRepository()


@pytest.fixture
def return_repo(order_repo: FakeOrderRepository) -> FakeReturnRepository:
    return FakeReturnRepository(order_repo)


@pytest.fixture
def alerts() -> RecordingAlertSink:
    return RecordingAlertSink()


@pytest.fixture
def ledger(
    fake_session: FakeSession, inventory_repo: FakeInventoryRepository
) -> InventoryLedger:
    """Inventory ledger over the fake inventory repository."""
    return InventoryLedger(fake_session, repository=inventory_repo)


@pytest.fixture
def mock_provider() -> AsyncMock:
    """
    Create mock Stripe client.

    Returns:
        AsyncMock: Provider whose refunds succeed with a fixed id
    """
    provider = AsyncMock(spec=StripeClient)
    provider.create_refund = AsyncMock(return_value="re_test_123")
    return provider


@pytest.fixture
def fast_retry() -> RetryConfig:
    """Retry policy without waits."""
    return RetryConfig(max_attempts=3, initial_delay=0.0, max_delay=0.0)


@pytest.fixture
def seller_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def customer() -> Principal:
    return Principal(user_id=uuid.uuid4(), role=UserRole.CUSTOMER)


@pytest.fixture
def other_customer() -> Principal:
    return Principal(user_id=uuid.uuid4(), role=UserRole.CUSTOMER)


@pytest.fixture
def admin() -> Principal:
    return Principal(user_id=uuid.uuid4(), role=UserRole.ADMIN)


@pytest.fixture(scope="function")
def test_client() -> Generator[TestClient, None, None]:
    """
    Create a synchronous test client for the FastAPI application.

    Dependency overrides set by a test are cleared afterwards.

    Yields:
        TestClient: Synchronous test client for FastAPI app
    """
    from marketplace.main import app

    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    """Build an Authorization header for a principal."""

    def _headers(principal: Principal) -> dict[str, str]:
        token = create_access_token(principal.user_id, principal.role)
        return {"Authorization": f"Bearer {token}"}

    return _headers
