"""
API v1 package initialization.
"""

from marketplace.api.v1.inventory import router as inventory_router
from marketplace.api.v1.orders import router as orders_router
from marketplace.api.v1.payments import router as payments_router
from marketplace.api.v1.returns import router as returns_router

__all__ = ["inventory_router", "orders_router", "payments_router", "returns_router"]
