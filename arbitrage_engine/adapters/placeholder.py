"""
Placeholder Exchange Adapter.

Stands in for a generic "Exchange A / Exchange B" role whose display
name does not identify a supported exchange. It returns synthetic
market data so callers keep running, logs a warning on every call so
the misconfiguration is visible, and refuses to trade.
"""

import logging
from decimal import Decimal
from typing import Optional

from ..config import ExchangeConfig
from ..types import (
    AccountBalance,
    Order,
    OrderBook,
    OrderBookEntry,
    OrderRequest,
    Ticker,
)
from .errors import BusinessError, ErrorCategory, ExchangeError, RetryEligibility
from .base import ExchangeAdapter
from .logging_utils import AdapterLogger


logger = logging.getLogger(__name__)


PLACEHOLDER_BID = Decimal("42000")
PLACEHOLDER_ASK = Decimal("42010")
PLACEHOLDER_LEVELS = 5
PLACEHOLDER_LEVEL_STEP = Decimal("10")


class PlaceholderAdapter(ExchangeAdapter):
    """Synthetic, non-trading adapter for unrecognised exchange roles."""

    def __init__(self, config: ExchangeConfig):
        self._config = config
        self._exchange_id = config.name.lower().replace(" ", "")
        self._logger = AdapterLogger(self._exchange_id)

    @property
    def exchange_id(self) -> str:
        return self._exchange_id

    @property
    def display_name(self) -> str:
        return self._config.name

    @property
    def is_live(self) -> bool:
        return False

    @property
    def config(self) -> ExchangeConfig:
        return self._config

    def _warn(self, operation: str) -> None:
        self._logger.warning(
            f"{operation}: '{self._config.name}' is a placeholder exchange; "
            f"returning synthetic data. Configure a supported exchange name."
        )

    def _refuse(self, operation: str, symbol: Optional[str] = None) -> BusinessError:
        self._warn(operation)
        return BusinessError(ExchangeError(
            category=ErrorCategory.INVALID_ORDER,
            code=f"{self._exchange_id.upper()}_PLACEHOLDER",
            message=f"{self._config.name}: placeholder exchange cannot trade",
            retry_eligible=RetryEligibility.NO_RETRY,
            exchange_id=self._exchange_id,
            operation=operation,
            symbol=symbol,
        ))

    async def test_connection(self) -> bool:
        self._warn("test_connection")
        return False

    async def get_ticker(self, symbol: str) -> Ticker:
        self._warn("get_ticker")
        return Ticker(
            symbol=symbol,
            exchange=self.display_name,
            bid_price=PLACEHOLDER_BID,
            ask_price=PLACEHOLDER_ASK,
            bid_quantity=Decimal("1.5"),
            ask_quantity=Decimal("2.0"),
            last_price=(PLACEHOLDER_BID + PLACEHOLDER_ASK) / 2,
            volume_24h=Decimal("15000"),
        )

    async def get_order_book(self, symbol: str, depth: int = 20) -> OrderBook:
        self._warn("get_order_book")
        levels = range(min(depth, PLACEHOLDER_LEVELS))
        return OrderBook(
            symbol=symbol,
            exchange=self.display_name,
            bids=tuple(
                OrderBookEntry(PLACEHOLDER_BID - i * PLACEHOLDER_LEVEL_STEP, Decimal("1") + Decimal("0.1") * i)
                for i in levels
            ),
            asks=tuple(
                OrderBookEntry(PLACEHOLDER_ASK + i * PLACEHOLDER_LEVEL_STEP, Decimal("1") + Decimal("0.1") * i)
                for i in levels
            ),
        )

    async def get_balance(self) -> AccountBalance:
        self._warn("get_balance")
        return AccountBalance(exchange=self.display_name)

    async def place_order(self, request: OrderRequest) -> Order:
        raise self._refuse("place_order", request.symbol)

    async def cancel_order(self, symbol: str, order_id: str) -> bool:
        raise self._refuse("cancel_order", symbol)

    async def get_order(self, symbol: str, order_id: str) -> Order:
        raise self._refuse("get_order", symbol)
