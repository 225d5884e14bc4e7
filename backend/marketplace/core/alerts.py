"""
Operational alert path for failures that need manual reconciliation.

Failures such as a stock decrement that could not be applied after a
confirmed payment are never surfaced to the customer. They are raised here
instead so back-office staff can correct stock by hand.
"""

from typing import Any, Protocol

from marketplace.core.errors import MarketplaceError
from marketplace.core.logging import get_logger

logger = get_logger(__name__)


class AlertSink(Protocol):
    """Receiver for operational alerts."""

    async def raise_alert(self, error: Exception, **context: Any) -> None:
        ...


class LoggingAlertSink:
    """Alert sink that emits a critical structured log event per alert."""

    async def raise_alert(self, error: Exception, **context: Any) -> None:
        code = error.code if isinstance(error, MarketplaceError) else "INTERNAL_ERROR"
        logger.critical(
            "Operational alert raised",
            alert_code=code,
            error=str(error),
            error_type=type(error).__name__,
            **context,
        )


_default_sink: AlertSink = LoggingAlertSink()


def get_alert_sink() -> AlertSink:
    """FastAPI dependency returning the process-wide alert sink."""
    return _default_sink
