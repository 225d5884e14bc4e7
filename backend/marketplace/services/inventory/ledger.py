"""
Inventory ledger: the only mutation path for product stock.

Every mutation runs inside a savepoint together with its StockMovement
audit row, so stock and audit trail are written as one unit or not at
all. A decrement that would take stock below zero returns ``False`` and
leaves both untouched; callers treat that as "insufficient stock,
escalate" rather than success.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.config import get_settings
from marketplace.core.errors import (
    AuthorizationError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from marketplace.core.logging import get_logger
from marketplace.core.security import Principal
from marketplace.database.models.inventory import StockOperation
from marketplace.services.inventory.forecasting import (
    ForecastResult,
    compute_forecast,
    sort_by_urgency,
)
from marketplace.services.inventory.repository import InventoryRepository

logger = get_logger(__name__)


class InventoryLedger:
    """
    Stock availability, atomic mutation and forecasting.

    Reservations are not modelled, so available stock equals on-hand stock.
    """

    def __init__(
        self,
        session: AsyncSession,
        repository: Optional[InventoryRepository] = None,
    ):
        self.session = session
        self.repository = repository or InventoryRepository(session)
        self.settings = get_settings()

    async def get_available_stock(self, product_id: uuid.UUID) -> int:
        """
        Get stock available to sell.

        Raises:
            NotFoundError: If the product has no inventory record
        """
        record = await self.repository.get_record(product_id)
        if record is None:
            raise NotFoundError(
                f"No inventory record for product {product_id}",
                product_id=product_id,
            )
        return record.available_stock

    async def ensure_can_manage(self, product_id: uuid.UUID, principal: Principal) -> None:
        """
        Check that the principal may adjust a product's stock.

        Raises:
            NotFoundError: If the product does not exist
            AuthorizationError: If a seller does not own the product
        """
        product = (await self.repository.get_products([product_id])).get(product_id)
        if product is None:
            raise NotFoundError(f"Product {product_id} not found", product_id=product_id)
        if not principal.is_admin and product.seller_id != principal.user_id:
            raise AuthorizationError(
                "You do not manage this product",
                product_id=product_id,
            )

    async def update_stock(
        self,
        product_id: uuid.UUID,
        quantity: int,
        operation: StockOperation | str,
        reason: str,
    ) -> bool:
        """
        Mutate stock and write its audit entry atomically.

        Args:
            product_id: Product identifier
            quantity: Non-negative quantity for the operation
            operation: increment, decrement or set
            reason: Audit reason, e.g. "Order <id> payment confirmed"

        Returns:
            True if applied, False if a decrement would go negative or the
            product has no inventory record

        Raises:
            ValidationError: For a negative quantity, an unknown operation
                or an empty reason
        """
        try:
            op = (
                operation
                if isinstance(operation, StockOperation)
                else StockOperation.from_string(operation)
            )
        except ValueError as e:
            raise ValidationError(str(e), operation=operation) from e

        if quantity < 0:
            raise ValidationError(
                "Stock quantity must not be negative",
                product_id=product_id,
                quantity=quantity,
            )
        if not reason or not reason.strip():
            raise ValidationError("Stock change requires a reason", product_id=product_id)

        async with self.session.begin_nested():
            if op == StockOperation.SET:
                change = await self.repository.set_stock(product_id, quantity)
            else:
                delta = quantity if op == StockOperation.INCREMENT else -quantity
                change = await self.repository.apply_delta(product_id, delta)

            if change is None:
                logger.warning(
                    "Stock update rejected",
                    product_id=str(product_id),
                    operation=op.value,
                    quantity=quantity,
                    reason=reason,
                )
                return False

            previous_stock, new_stock = change
            await self.repository.add_movement(
                product_id=product_id,
                operation=op,
                quantity=quantity,
                previous_stock=previous_stock,
                new_stock=new_stock,
                reason=reason,
            )

        logger.info(
            "Stock updated",
            product_id=str(product_id),
            operation=op.value,
            quantity=quantity,
            previous_stock=previous_stock,
            new_stock=new_stock,
            reason=reason,
        )
        return True

    async def decrement_or_raise(
        self, product_id: uuid.UUID, quantity: int, reason: str
    ) -> None:
        """
        Decrement stock, raising instead of returning False.

        Raises:
            InsufficientStockError: If stock would go negative
        """
        if not await self.update_stock(
            product_id, quantity, StockOperation.DECREMENT, reason
        ):
            raise InsufficientStockError(product_id, quantity, reason=reason)

    def _window_start(self) -> datetime:
        return datetime.now(timezone.utc) - timedelta(
            days=self.settings.forecast_window_days
        )

    def _forecast(self, product_id: uuid.UUID, stock: int, units_sold: int) -> ForecastResult:
        return compute_forecast(
            product_id=product_id,
            current_stock=stock,
            units_sold=units_sold,
            window_days=self.settings.forecast_window_days,
            lead_time_days=self.settings.forecast_lead_time_days,
            safety_days=self.settings.forecast_safety_days,
        )

    async def forecast(self, product_id: uuid.UUID) -> ForecastResult:
        """
        Forecast replenishment for one product.

        Raises:
            NotFoundError: If the product has no inventory record
        """
        stock = await self.get_available_stock(product_id)
        units_sold = await self.repository.units_sold_since(
            product_id, self._window_start()
        )
        return self._forecast(product_id, stock, units_sold)

    async def _forecast_every_product(
        self, seller_id: Optional[uuid.UUID] = None
    ) -> list[ForecastResult]:
        sales = await self.repository.units_sold_by_product(self._window_start())
        stocked = await self.repository.list_stocked_products(seller_id)
        return sort_by_urgency(
            [
                self._forecast(product_id, stock, sales.get(product_id, 0))
                for product_id, stock in stocked
            ]
        )

    @staticmethod
    def _page(
        results: list[ForecastResult], page: int, page_size: int
    ) -> tuple[list[ForecastResult], int]:
        if page < 1 or page_size < 1:
            raise ValidationError(
                "Page and page size must be positive",
                page=page,
                page_size=page_size,
            )
        start = (page - 1) * page_size
        return results[start : start + page_size], len(results)

    async def forecast_all(
        self,
        page: int = 1,
        page_size: int = 20,
        seller_id: Optional[uuid.UUID] = None,
    ) -> tuple[list[ForecastResult], int]:
        """
        Forecast every active product, most urgent first.

        Args:
            page: 1-indexed page number
            page_size: Items per page
            seller_id: Restrict to one seller's products

        Returns:
            Tuple of (page of forecasts, total products)
        """
        return self._page(
            await self._forecast_every_product(seller_id), page, page_size
        )

    async def low_stock_alerts(
        self,
        page: int = 1,
        page_size: int = 20,
        seller_id: Optional[uuid.UUID] = None,
    ) -> tuple[list[ForecastResult], int]:
        """
        Products at or below their reorder point, most urgent first.

        Args:
            page: 1-indexed page number
            page_size: Items per page
            seller_id: Restrict to one seller's products

        Returns:
            Tuple of (page of forecasts, total matching products)
        """
        alerts = [
            f for f in await self._forecast_every_product(seller_id) if f.needs_reorder
        ]

        logger.debug(
            "Low stock alerts computed",
            total=len(alerts),
            page=page,
            page_size=page_size,
        )
        return self._page(alerts, page, page_size)
