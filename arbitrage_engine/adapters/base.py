"""
Exchange Adapter - Base Contract.

============================================================
PURPOSE
============================================================
Uniform capability contract implemented by every exchange adapter,
plus the shared plumbing for REST adapters.

DESIGN PRINCIPLES:
- Exchange-agnostic interface, canonical BASE/QUOTE symbols
- Adding an exchange = one subclass + one signer + one symbol rule
- Errors are logged with exchange + operation context and re-raised
- Best-effort bulk calls (open orders, multi-ticker) log and drop
- Missing credentials fail fast, before any request is sent

============================================================
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, TypeVar

import aiohttp

from ..clock import ClockProtocol, get_clock
from ..config import ExchangeConfig
from ..types import (
    ZERO,
    AccountBalance,
    AssetBalance,
    Order,
    OrderBook,
    OrderBookEntry,
    OrderRequest,
    OrderStatus,
    Ticker,
)
from .errors import (
    CredentialsMissing,
    ExchangeException,
    ResponseParseError,
)
from .logging_utils import AdapterLogger
from .metrics import AdapterMetrics, get_global_aggregator
from .transport import (
    PreparedRequest,
    RateLimiter,
    RequestSource,
    RestTransport,
    SleepFunc,
)


logger = logging.getLogger(__name__)

T = TypeVar("T")

CONNECTION_PROBE_SYMBOL = "BTC/USDT"


# ============================================================
# PARSING HELPERS
# ============================================================

def to_decimal(value: Any, default: Decimal = ZERO) -> Decimal:
    """Lenient Decimal conversion for optional numeric fields."""
    if value is None or value == "":
        return default
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return default


def parse_levels(rows: Optional[Iterable[Any]]) -> Tuple[OrderBookEntry, ...]:
    """Convert [[price, qty, ...], ...] rows into book entries."""
    entries = []
    for row in rows or ():
        if isinstance(row, dict):
            price, quantity = row.get("p") or row.get("price"), row.get("s") or row.get("size")
        elif len(row) >= 2:
            price, quantity = row[0], row[1]
        else:
            continue
        entries.append(OrderBookEntry(price=Decimal(str(price)), quantity=Decimal(str(quantity))))
    return tuple(entries)


def ms_to_datetime(value: Any) -> datetime:
    """Epoch milliseconds (int or str) to UTC datetime; now() if missing."""
    ms = to_decimal(value)
    if ms <= 0:
        return datetime.now(timezone.utc)
    return datetime.fromtimestamp(float(ms) / 1000, tz=timezone.utc)


def seconds_to_datetime(value: Any) -> datetime:
    """Epoch seconds to UTC datetime; now() if missing."""
    seconds = to_decimal(value)
    if seconds <= 0:
        return datetime.now(timezone.utc)
    return datetime.fromtimestamp(float(seconds), tz=timezone.utc)


# ============================================================
# ADAPTER CONTRACT
# ============================================================

class ExchangeAdapter(ABC):
    """
    Abstract exchange adapter.

    All operations are coroutines and honour task cancellation.
    """

    # --------------------------------------------------------
    # IDENTITY
    # --------------------------------------------------------

    @property
    @abstractmethod
    def exchange_id(self) -> str:
        """Lowercase exchange identifier."""
        pass

    @property
    def display_name(self) -> str:
        """Name shown in tickers, orders and scan results."""
        return self.exchange_id

    @property
    def is_connected(self) -> bool:
        return True

    @property
    def is_live(self) -> bool:
        """False for synthetic data sources."""
        return True

    # --------------------------------------------------------
    # CONNECTION
    # --------------------------------------------------------

    async def connect(self) -> None:
        pass

    async def disconnect(self) -> None:
        pass

    async def test_connection(self) -> bool:
        """Probe a cheap public ticker. Never raises."""
        try:
            ticker = await self.get_ticker(self.connection_probe_symbol)
            return ticker.last_price > 0 or ticker.bid_price > 0
        except Exception as e:
            logger.warning(f"{self.display_name}: connection test failed: {e}")
            return False

    @property
    def connection_probe_symbol(self) -> str:
        return CONNECTION_PROBE_SYMBOL

    async def __aenter__(self) -> "ExchangeAdapter":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

    # --------------------------------------------------------
    # MARKET DATA
    # --------------------------------------------------------

    @abstractmethod
    async def get_ticker(self, symbol: str) -> Ticker:
        pass

    @abstractmethod
    async def get_order_book(self, symbol: str, depth: int = 20) -> OrderBook:
        pass

    async def get_tickers(self, symbols: List[str]) -> Dict[str, Ticker]:
        """
        Fetch several tickers concurrently.

        Best effort: failed symbols are logged and left out.
        """
        results = await asyncio.gather(
            *(self.get_ticker(symbol) for symbol in symbols),
            return_exceptions=True,
        )
        tickers = {}
        for symbol, result in zip(symbols, results):
            if isinstance(result, Ticker):
                tickers[symbol] = result
            elif isinstance(result, asyncio.CancelledError):
                raise result
            else:
                logger.warning(f"{self.display_name}: ticker {symbol} failed: {result}")
        return tickers

    # --------------------------------------------------------
    # ACCOUNT
    # --------------------------------------------------------

    @abstractmethod
    async def get_balance(self) -> AccountBalance:
        pass

    async def get_asset_balance(self, asset: str) -> AssetBalance:
        """Balance of one asset, derived from get_balance()."""
        balance = await self.get_balance()
        return balance.get(asset)

    # --------------------------------------------------------
    # ORDERS
    # --------------------------------------------------------

    @abstractmethod
    async def place_order(self, request: OrderRequest) -> Order:
        pass

    @abstractmethod
    async def cancel_order(self, symbol: str, order_id: str) -> bool:
        pass

    @abstractmethod
    async def get_order(self, symbol: str, order_id: str) -> Order:
        pass

    async def get_open_orders(self, symbol: Optional[str] = None) -> List[Order]:
        """Open orders. Adapters without support return an empty list."""
        logger.warning(f"{self.display_name}: get_open_orders not implemented")
        return []


# ============================================================
# REST ADAPTER BASE
# ============================================================

class RestExchangeAdapter(ExchangeAdapter):
    """
    Shared implementation for HTTP adapters.

    Subclasses set EXCHANGE_ID, DISPLAY_NAME, DEFAULT_BASE_URL and
    STATUS_MAP, and implement symbol conversion, signing and parsing.
    """

    EXCHANGE_ID: str = ""
    DISPLAY_NAME: str = ""
    DEFAULT_BASE_URL: str = ""

    # Lowercase raw status -> canonical status
    STATUS_MAP: Dict[str, OrderStatus] = {}

    REQUIRES_PASSPHRASE: bool = False

    def __init__(
        self,
        config: ExchangeConfig,
        session: Optional[aiohttp.ClientSession] = None,
        sleep: Optional[SleepFunc] = None,
        rate_limiter: Optional[RateLimiter] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        """
        Initialize adapter.

        Args:
            config: Exchange configuration (immutable)
            session: Injected HTTP session, mostly for tests
            sleep: Retry backoff sleep, mostly for tests
            rate_limiter: Injected permit pool
            clock: Clock for request timestamps
        """
        self._config = config
        self._clock = clock or get_clock()
        self._base_url = config.resolve_base_url(self.DEFAULT_BASE_URL)

        self._metrics = AdapterMetrics(self.EXCHANGE_ID)
        self._logger = AdapterLogger(self.EXCHANGE_ID)
        get_global_aggregator().register(self.EXCHANGE_ID, self._metrics)

        self._transport = RestTransport(
            exchange_id=self.EXCHANGE_ID,
            base_url=self._base_url,
            config=config,
            session=session,
            sleep=sleep,
            rate_limiter=rate_limiter,
            error_extractor=self._extract_error,
            metrics=self._metrics,
            adapter_logger=self._logger,
        )

    # --------------------------------------------------------
    # PROPERTIES
    # --------------------------------------------------------

    @property
    def exchange_id(self) -> str:
        return self.EXCHANGE_ID

    @property
    def display_name(self) -> str:
        return self.DISPLAY_NAME or self.EXCHANGE_ID

    @property
    def config(self) -> ExchangeConfig:
        return self._config

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def transport(self) -> RestTransport:
        return self._transport

    @property
    def metrics(self) -> AdapterMetrics:
        return self._metrics

    @property
    def is_connected(self) -> bool:
        return self._transport.is_open

    # --------------------------------------------------------
    # CONNECTION
    # --------------------------------------------------------

    async def connect(self) -> None:
        await self._transport.open()
        self._logger.info(f"Session opened for {self._base_url}")

    async def disconnect(self) -> None:
        await self._transport.close()
        self._logger.info("Session closed")

    # --------------------------------------------------------
    # EXCHANGE SPECIFICS
    # --------------------------------------------------------

    @abstractmethod
    def to_exchange_symbol(self, symbol: str) -> str:
        """Canonical BASE/QUOTE to wire format. Must be stable."""
        pass

    @classmethod
    def map_order_status(cls, raw_status: Any) -> OrderStatus:
        """Pure mapping; unknown statuses are ERROR, never PENDING."""
        key = str(raw_status or "").strip().lower()
        return cls.STATUS_MAP.get(key, OrderStatus.ERROR)

    def _extract_error(self, status: int, payload: Any) -> Optional[Tuple[Any, str]]:
        """Exchange-level failure in payload -> (code, message)."""
        if 200 <= status < 300:
            return None
        if isinstance(payload, dict):
            code = payload.get("code", status)
            return code, payload.get("msg") or payload.get("message") or str(payload)
        return status, str(payload)[:200]

    # --------------------------------------------------------
    # HELPERS
    # --------------------------------------------------------

    def _credentials(self, operation: str) -> Tuple[str, str, str]:
        """Configured credentials, or CredentialsMissing naming the env vars."""
        api_key, api_secret, passphrase = self._config.credentials()
        if not api_key or not api_secret or (self.REQUIRES_PASSPHRASE and not passphrase):
            self._logger.error(f"{operation}: credentials not configured")
            raise CredentialsMissing(
                self.EXCHANGE_ID,
                self._config.credential_env_vars,
                operation,
            )
        return api_key, api_secret, passphrase

    def _timestamp_ms(self) -> int:
        return self._clock.timestamp_ms()

    async def _send(self, source: RequestSource, operation: str) -> Any:
        return await self._transport.send(source, operation)

    async def _public_get(self, path: str, query: str, operation: str) -> Any:
        return await self._send(PreparedRequest("GET", path, query), operation)

    def _parse(self, operation: str, payload: Any, parser: Callable[[Any], T]) -> T:
        """
        Run a response parser, turning shape errors into ResponseParseError.

        Missing required fields (KeyError, IndexError) are hard errors.
        """
        try:
            return parser(payload)
        except ResponseParseError:
            raise
        except (KeyError, IndexError, TypeError, ValueError, ArithmeticError) as e:
            self._logger.error(
                f"{operation}: unexpected response shape ({type(e).__name__}: {e}); "
                f"raw={str(payload)[:500]}"
            )
            raise ResponseParseError(
                self.EXCHANGE_ID,
                f"{operation}: unexpected response shape: {e}",
                raw=payload,
                operation=operation,
            ) from e

    def _fail(self, operation: str, error: ExchangeException, symbol: str = None) -> None:
        """Log an adapter failure with context. The caller re-raises."""
        if error.error.operation is None:
            error.error.operation = operation
        if symbol and error.error.symbol is None:
            error.error.symbol = symbol
        suffix = f" for {symbol}" if symbol else ""
        self._logger.error(f"{operation} error{suffix}: {error}")

    def _normalize_ticker(self, ticker: Ticker) -> Ticker:
        """Never emit a crossed book: zero both sides instead."""
        if not ticker.is_crossed:
            return ticker
        self._logger.warning(
            f"Crossed quote for {ticker.symbol}: bid {ticker.bid_price} > ask {ticker.ask_price}; dropping"
        )
        return Ticker(
            symbol=ticker.symbol,
            exchange=ticker.exchange,
            last_price=ticker.last_price,
            volume_24h=ticker.volume_24h,
            timestamp=ticker.timestamp,
        )

    def _ticker(self, symbol: str, **fields) -> Ticker:
        return self._normalize_ticker(Ticker(symbol=symbol, exchange=self.display_name, **fields))

    def _order_book(self, symbol: str, bids: Any, asks: Any) -> OrderBook:
        return OrderBook(
            symbol=symbol,
            exchange=self.display_name,
            bids=parse_levels(bids),
            asks=parse_levels(asks),
        )

    async def get_open_orders(self, symbol: Optional[str] = None) -> List[Order]:
        """Open orders. Best effort: failures are logged and yield []."""
        try:
            return await self._fetch_open_orders(symbol)
        except ExchangeException as e:
            self._fail("get_open_orders", e, symbol)
            return []

    async def _fetch_open_orders(self, symbol: Optional[str]) -> List[Order]:
        return await super().get_open_orders(symbol)
