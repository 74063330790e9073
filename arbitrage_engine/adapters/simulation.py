"""
Simulation Exchange Adapter.

============================================================
PURPOSE
============================================================
Self-contained, non-networked adapter implementing the full
adapter contract over a synthetic market. Used whenever live
trading is disabled, and in tests.

FEATURES:
- Prices random-walk around a per-symbol base price
- Randomised bid/ask spread (0.05% - 0.1%)
- Balance checks and two-leg balance updates on fill
- Limit orders that do not cross are parked as OPEN
- Seedable randomness and injectable sleep

============================================================
CONCURRENCY
============================================================
Balances and order maps are only touched inside one lock scope
per operation. The simulated fill delay is awaited before the
lock is taken, so a slow fill never blocks other callers.

============================================================
"""

import asyncio
import logging
import random
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional

from ..types import (
    HUNDRED,
    AccountBalance,
    AssetBalance,
    Order,
    OrderBook,
    OrderBookEntry,
    OrderRequest,
    OrderSide,
    OrderStatus,
    OrderType,
    Ticker,
    split_symbol,
)
from .base import ExchangeAdapter
from .errors import (
    BusinessError,
    ErrorCategory,
    ExchangeError,
    InsufficientBalanceError,
    RetryEligibility,
)
from .transport import SleepFunc


logger = logging.getLogger(__name__)


# ============================================================
# DEFAULTS
# ============================================================

DEFAULT_BASE_PRICES: Dict[str, Decimal] = {
    "BTCUSDT": Decimal("42000"),
    "ETHUSDT": Decimal("2200"),
    "BNBUSDT": Decimal("300"),
    "SOLUSDT": Decimal("100"),
    "XRPUSDT": Decimal("0.5"),
}

DEFAULT_UNKNOWN_PRICE = Decimal("100")

DEFAULT_BALANCES: Dict[str, Decimal] = {
    "USDT": Decimal("10000"),
    "BTC": Decimal("0.5"),
    "ETH": Decimal("5"),
    "BNB": Decimal("10"),
    "SOL": Decimal("20"),
    "XRP": Decimal("1000"),
}

DEFAULT_FEE_PERCENT = Decimal("0.1")
DEFAULT_VOLATILITY = Decimal("0.001")
DEFAULT_FILL_DELAY_MS = 100

MIN_SPREAD_FRACTION = Decimal("0.0005")
BOOK_LEVEL_STEP = Decimal("0.0001")

PRICE_QUANTUM = Decimal("0.00000001")


def _price_key(symbol: str) -> str:
    base, quote = split_symbol(symbol)
    return f"{base}{quote}"


# ============================================================
# SIMULATION ADAPTER
# ============================================================

class SimulationAdapter(ExchangeAdapter):
    """
    Synthetic exchange.

    Two instances with different price_bias values produce a stable
    cross-exchange spread, which is what the scanner looks for.
    """

    def __init__(
        self,
        name: str = "Simulation",
        price_bias: Decimal = Decimal("1"),
        fee_percent: Decimal = DEFAULT_FEE_PERCENT,
        rng: Optional[random.Random] = None,
        sleep: Optional[SleepFunc] = None,
        fill_delay_ms: int = DEFAULT_FILL_DELAY_MS,
    ):
        """
        Initialize simulation adapter.

        Args:
            name: Display name used in tickers, orders and balances
            price_bias: Multiplier applied to every default base price
            fee_percent: Trading fee in percent of filled value
            rng: Random source; pass a seeded Random for repeatable runs
            sleep: Coroutine used for the fill delay
            fill_delay_ms: Artificial delay before each fill
        """
        self._name = name
        self._price_bias = Decimal(str(price_bias))
        self._fee_percent = Decimal(str(fee_percent))
        self._volatility = DEFAULT_VOLATILITY
        self._fill_delay_ms = fill_delay_ms
        self._rng = rng or random.Random()
        self._sleep = sleep or asyncio.sleep
        self._lock = asyncio.Lock()
        self._connected = False

        self._base_prices: Dict[str, Decimal] = {
            key: price * self._price_bias for key, price in DEFAULT_BASE_PRICES.items()
        }
        self._balances: Dict[str, AssetBalance] = {}
        self._open_orders: Dict[str, Order] = {}
        self._order_history: List[Order] = []

        self._init_balances()
        logger.info(f"{self._name}: simulation adapter initialized (bias={self._price_bias})")

    def _init_balances(self) -> None:
        self._balances = {
            asset: AssetBalance(asset=asset, available=amount, total=amount)
            for asset, amount in DEFAULT_BALANCES.items()
        }

    # --------------------------------------------------------
    # IDENTITY / CONNECTION
    # --------------------------------------------------------

    @property
    def exchange_id(self) -> str:
        return self._name.lower()

    @property
    def display_name(self) -> str:
        return self._name

    @property
    def is_live(self) -> bool:
        return False

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def fee_percent(self) -> Decimal:
        return self._fee_percent

    @property
    def price_bias(self) -> Decimal:
        return self._price_bias

    async def connect(self) -> None:
        self._connected = True
        logger.info(f"{self._name}: simulation connected")

    async def disconnect(self) -> None:
        self._connected = False
        logger.info(f"{self._name}: simulation disconnected")

    async def test_connection(self) -> bool:
        return True

    # --------------------------------------------------------
    # MARKET DATA
    # --------------------------------------------------------

    def _base_price(self, symbol: str) -> Decimal:
        return self._base_prices.get(_price_key(symbol), DEFAULT_UNKNOWN_PRICE)

    def _random(self) -> Decimal:
        return Decimal(str(self._rng.random()))

    def _quote(self, symbol: str) -> Ticker:
        """One synthetic quote; synchronous so it can run under the lock."""
        base_price = self._base_price(symbol)
        factor = 1 + (self._random() - Decimal("0.5")) * 2 * self._volatility
        current = base_price * factor

        spread = current * (MIN_SPREAD_FRACTION + self._random() * MIN_SPREAD_FRACTION)
        return Ticker(
            symbol=symbol,
            exchange=self._name,
            bid_price=(current - spread / 2).quantize(PRICE_QUANTUM),
            ask_price=(current + spread / 2).quantize(PRICE_QUANTUM),
            bid_quantity=(self._random() * 10 + 1).quantize(PRICE_QUANTUM),
            ask_quantity=(self._random() * 10 + 1).quantize(PRICE_QUANTUM),
            last_price=current.quantize(PRICE_QUANTUM),
            volume_24h=(self._random() * 1000000).quantize(PRICE_QUANTUM),
        )

    async def get_ticker(self, symbol: str) -> Ticker:
        return self._quote(symbol)

    async def get_order_book(self, symbol: str, depth: int = 20) -> OrderBook:
        base_price = self._base_price(symbol)
        bids = []
        asks = []
        for i in range(depth):
            offset = base_price * BOOK_LEVEL_STEP * (i + 1)
            bids.append(OrderBookEntry(
                price=base_price - offset,
                quantity=(self._random() * 5 + Decimal("0.5")).quantize(PRICE_QUANTUM),
            ))
            asks.append(OrderBookEntry(
                price=base_price + offset,
                quantity=(self._random() * 5 + Decimal("0.5")).quantize(PRICE_QUANTUM),
            ))
        return OrderBook(symbol=symbol, exchange=self._name, bids=tuple(bids), asks=tuple(asks))

    # --------------------------------------------------------
    # ACCOUNT
    # --------------------------------------------------------

    async def get_balance(self) -> AccountBalance:
        return AccountBalance(exchange=self._name, assets=dict(self._balances))

    # --------------------------------------------------------
    # ORDERS
    # --------------------------------------------------------

    async def place_order(self, request: OrderRequest) -> Order:
        logger.info(
            f"{self._name}: placing {request.side.value} {request.quantity} {request.symbol}"
        )

        if self._fill_delay_ms > 0:
            await self._sleep(self._fill_delay_ms / 1000)

        base_asset, quote_asset = split_symbol(request.symbol)

        async with self._lock:
            ticker = self._quote(request.symbol)
            market_price = ticker.ask_price if request.side == OrderSide.BUY else ticker.bid_price
            fills = self._crosses(request, market_price)
            check_price = market_price if fills else request.price

            self._check_balance(request, base_asset, quote_asset, check_price)

            now = datetime.now(timezone.utc)
            order = Order(
                order_id=uuid.uuid4().hex,
                client_order_id=request.client_order_id,
                exchange=self._name,
                symbol=request.symbol,
                side=request.side,
                order_type=request.order_type,
                status=OrderStatus.OPEN,
                requested_quantity=request.quantity,
                requested_price=request.price,
                created_at=now,
                updated_at=now,
            )

            if not fills:
                self._open_orders[order.order_id] = order
                logger.info(f"{self._name}: order {order.order_id} parked OPEN at {request.price}")
                return order

            order.filled_quantity = request.quantity
            order.average_price = market_price
            order.fee = order.filled_value * self._fee_percent / HUNDRED
            order.fee_currency = quote_asset
            order.status = OrderStatus.FILLED
            self._apply_fill(order, base_asset, quote_asset)
            self._order_history.append(order)

        logger.info(
            f"{self._name}: order {order.order_id} filled {order.filled_quantity} @ {order.average_price}"
        )
        return order

    @staticmethod
    def _crosses(request: OrderRequest, market_price: Decimal) -> bool:
        if request.order_type == OrderType.MARKET:
            return True
        if request.side == OrderSide.BUY:
            return request.price >= market_price
        return request.price <= market_price

    def _check_balance(
        self,
        request: OrderRequest,
        base_asset: str,
        quote_asset: str,
        price: Decimal,
    ) -> None:
        """Raise InsufficientBalanceError without touching any balance."""
        if request.side == OrderSide.BUY:
            asset = quote_asset
            required = request.quantity * price * (1 + self._fee_percent / HUNDRED)
        else:
            asset = base_asset
            required = request.quantity

        available = self._balances.get(asset, AssetBalance(asset=asset)).available
        if available < required:
            logger.warning(
                f"{self._name}: insufficient {asset} for {request.symbol}: "
                f"required {required}, available {available}"
            )
            raise InsufficientBalanceError(
                self.exchange_id, asset, required, available, symbol=request.symbol
            )

    def _adjust(self, asset: str, delta: Decimal) -> None:
        current = self._balances.get(asset, AssetBalance(asset=asset))
        self._balances[asset] = AssetBalance(
            asset=asset,
            available=current.available + delta,
            total=current.total + delta,
        )

    def _apply_fill(self, order: Order, base_asset: str, quote_asset: str) -> None:
        value = order.filled_value
        if order.side == OrderSide.BUY:
            self._adjust(base_asset, order.filled_quantity)
            self._adjust(quote_asset, -(value + order.fee))
        else:
            self._adjust(base_asset, -order.filled_quantity)
            self._adjust(quote_asset, value - order.fee)

    def _not_found(self, operation: str, symbol: str, order_id: str) -> BusinessError:
        return BusinessError(ExchangeError(
            category=ErrorCategory.ORDER_NOT_FOUND,
            code=f"{self.exchange_id.upper()}_ORDER_NOT_FOUND",
            message=f"Order not found: {order_id}",
            retry_eligible=RetryEligibility.NO_RETRY,
            exchange_id=self.exchange_id,
            operation=operation,
            symbol=symbol,
        ))

    async def cancel_order(self, symbol: str, order_id: str) -> bool:
        async with self._lock:
            order = self._open_orders.pop(order_id, None)
            if order is None:
                raise self._not_found("cancel_order", symbol, order_id)
            order.status = OrderStatus.CANCELLED
            order.updated_at = datetime.now(timezone.utc)
            self._order_history.append(order)
        logger.info(f"{self._name}: order {order_id} cancelled")
        return True

    async def get_order(self, symbol: str, order_id: str) -> Order:
        order = self._open_orders.get(order_id)
        if order is not None:
            return order
        for order in self._order_history:
            if order.order_id == order_id:
                return order
        raise self._not_found("get_order", symbol, order_id)

    async def get_open_orders(self, symbol: Optional[str] = None) -> List[Order]:
        return [
            order for order in self._open_orders.values()
            if symbol is None or order.symbol == symbol
        ]

    @property
    def order_history(self) -> List[Order]:
        return list(self._order_history)

    # --------------------------------------------------------
    # TEST HOOKS
    # --------------------------------------------------------

    def set_base_price(self, symbol: str, price: Decimal) -> None:
        self._base_prices[_price_key(symbol)] = Decimal(str(price))

    def set_balance(self, asset: str, total: Decimal, available: Optional[Decimal] = None) -> None:
        asset = asset.upper()
        total = Decimal(str(total))
        available = total if available is None else Decimal(str(available))
        self._balances[asset] = AssetBalance(asset=asset, available=available, total=total)

    def set_fee_percent(self, fee_percent: Decimal) -> None:
        self._fee_percent = Decimal(str(fee_percent))

    def set_volatility(self, volatility: Decimal) -> None:
        """Fractional half-width of the random walk (0.001 = +/-0.1%)."""
        self._volatility = Decimal(str(volatility))

    def set_fill_delay(self, delay_ms: int) -> None:
        self._fill_delay_ms = delay_ms

    def reset_balances(self) -> None:
        self._init_balances()
