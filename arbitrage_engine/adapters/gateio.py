"""
Gate.io Spot Exchange Adapter.

============================================================
PURPOSE
============================================================
Adapter for the Gate.io v4 spot REST API.

EXCHANGE SPECIFICS:
- Symbols are underscore separated: BTC/USDT -> BTC_USDT
- Signature: HMAC-SHA512 hex over
  METHOD\\npath\\nquery\\nsha512(body)\\ntimestamp
  with a timestamp in SECONDS
- Errors come back as {"label": ..., "message": ...}
- Ticker carries no top-of-book quantities
- Client order ids must be prefixed with "t-"

============================================================
API DOCUMENTATION
============================================================
https://www.gate.io/docs/developers/apiv4/

============================================================
"""

import json
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..types import (
    AccountBalance,
    AssetBalance,
    Order,
    OrderBook,
    OrderRequest,
    OrderSide,
    OrderStatus,
    OrderType,
    Ticker,
    canonical_symbol,
)
from .base import RestExchangeAdapter, seconds_to_datetime, to_decimal
from .errors import ExchangeException
from .signing import CanonicalRequest, encode_query, sign_gateio
from .transport import PreparedRequest


logger = logging.getLogger(__name__)


# ============================================================
# CONSTANTS
# ============================================================

GATEIO_REST_URL = "https://api.gateio.ws"

GATEIO_MAX_DEPTH = 100
GATEIO_TEXT_PREFIX = "t-"


# ============================================================
# GATE.IO ADAPTER
# ============================================================

class GateIOAdapter(RestExchangeAdapter):
    """Gate.io v4 spot adapter."""

    EXCHANGE_ID = "gateio"
    DISPLAY_NAME = "Gate.io"
    DEFAULT_BASE_URL = GATEIO_REST_URL

    STATUS_MAP = {
        "open": OrderStatus.PENDING,
        "closed": OrderStatus.FILLED,
        "cancelled": OrderStatus.CANCELLED,
        "canceled": OrderStatus.CANCELLED,
    }

    # --------------------------------------------------------
    # SYMBOLS / SIGNING
    # --------------------------------------------------------

    def to_exchange_symbol(self, symbol: str) -> str:
        return symbol.replace("/", "_").upper()

    def _extract_error(self, status: int, payload: Any) -> Optional[Tuple[Any, str]]:
        if isinstance(payload, dict) and "label" in payload:
            return payload["label"], payload.get("message", "")
        return super()._extract_error(status, payload)

    def _signed(
        self,
        method: str,
        path: str,
        operation: str,
        params: Dict[str, Any] = None,
        body: Dict[str, Any] = None,
    ) -> Callable[[], PreparedRequest]:
        api_key, api_secret, _ = self._credentials(operation)
        query = encode_query(params or {})
        body_str = json.dumps(body) if body else ""

        def build() -> PreparedRequest:
            timestamp = str(self._timestamp_ms() // 1000)
            signature = sign_gateio(
                api_secret, CanonicalRequest(method, path, query, body_str, timestamp)
            )
            headers = {
                "KEY": api_key,
                "SIGN": signature,
                "Timestamp": timestamp,
                "Content-Type": "application/json",
                "Accept": "application/json",
            }
            return PreparedRequest(method, path, query, body_str, headers)

        return build

    # --------------------------------------------------------
    # MARKET DATA
    # --------------------------------------------------------

    async def get_ticker(self, symbol: str) -> Ticker:
        query = encode_query({"currency_pair": self.to_exchange_symbol(symbol)})
        try:
            data = await self._public_get("/api/v4/spot/tickers", query, "get_ticker")
        except ExchangeException as e:
            self._fail("get_ticker", e, symbol)
            raise

        def parse(rows: List[Dict[str, Any]]) -> Ticker:
            row = rows[0]
            return self._ticker(
                symbol,
                bid_price=to_decimal(row.get("highest_bid")),
                ask_price=to_decimal(row.get("lowest_ask")),
                last_price=to_decimal(row.get("last")),
                volume_24h=to_decimal(row.get("base_volume")),
            )

        return self._parse("get_ticker", data, parse)

    async def get_order_book(self, symbol: str, depth: int = 20) -> OrderBook:
        query = encode_query({
            "currency_pair": self.to_exchange_symbol(symbol),
            "limit": min(depth, GATEIO_MAX_DEPTH),
        })
        try:
            data = await self._public_get("/api/v4/spot/order_book", query, "get_order_book")
        except ExchangeException as e:
            self._fail("get_order_book", e, symbol)
            raise
        return self._parse(
            "get_order_book", data,
            lambda d: self._order_book(symbol, d["bids"], d["asks"]),
        )

    # --------------------------------------------------------
    # ACCOUNT
    # --------------------------------------------------------

    async def get_balance(self) -> AccountBalance:
        try:
            data = await self._send(
                self._signed("GET", "/api/v4/spot/accounts", "get_balance"), "get_balance"
            )
        except ExchangeException as e:
            self._fail("get_balance", e)
            raise

        def parse(rows: List[Dict[str, Any]]) -> AccountBalance:
            assets = {}
            for row in rows:
                available = to_decimal(row.get("available"))
                locked = to_decimal(row.get("locked"))
                if available > 0 or locked > 0:
                    asset = row["currency"].upper()
                    assets[asset] = AssetBalance(
                        asset=asset, available=available, total=available + locked
                    )
            return AccountBalance(exchange=self.display_name, assets=assets)

        return self._parse("get_balance", data, parse)

    # --------------------------------------------------------
    # ORDERS
    # --------------------------------------------------------

    async def place_order(self, request: OrderRequest) -> Order:
        body = {
            "currency_pair": self.to_exchange_symbol(request.symbol),
            "side": "buy" if request.side == OrderSide.BUY else "sell",
            "type": "market" if request.order_type == OrderType.MARKET else "limit",
            "amount": f"{request.quantity:.8f}",
            "time_in_force": "gtc",
            "text": f"{GATEIO_TEXT_PREFIX}{request.client_order_id}",
        }
        if request.order_type == OrderType.LIMIT:
            body["price"] = f"{request.price:.8f}"
        else:
            # Market orders only accept immediate-or-cancel
            body["time_in_force"] = "ioc"

        try:
            data = await self._send(
                self._signed("POST", "/api/v4/spot/orders", "place_order", body=body),
                "place_order",
            )
        except ExchangeException as e:
            self._metrics.record_order_rejected(e.error.code)
            self._fail("place_order", e, request.symbol)
            raise

        self._metrics.record_order_placed()
        order = self._parse("place_order", data, lambda d: self._parse_order(d, request.symbol))
        order.client_order_id = request.client_order_id
        order.requested_price = request.price
        return order

    async def cancel_order(self, symbol: str, order_id: str) -> bool:
        params = {"currency_pair": self.to_exchange_symbol(symbol)}
        try:
            data = await self._send(
                self._signed("DELETE", f"/api/v4/spot/orders/{order_id}", "cancel_order", params=params),
                "cancel_order",
            )
        except ExchangeException as e:
            self._fail("cancel_order", e, symbol)
            raise
        cancelled = self._parse(
            "cancel_order", data,
            lambda d: self.map_order_status(d["status"]) == OrderStatus.CANCELLED,
        )
        if cancelled:
            self._metrics.record_order_cancelled()
        return cancelled

    async def get_order(self, symbol: str, order_id: str) -> Order:
        params = {"currency_pair": self.to_exchange_symbol(symbol)}
        try:
            data = await self._send(
                self._signed("GET", f"/api/v4/spot/orders/{order_id}", "get_order", params=params),
                "get_order",
            )
        except ExchangeException as e:
            self._fail("get_order", e, symbol)
            raise
        return self._parse("get_order", data, lambda d: self._parse_order(d, symbol))

    async def _fetch_open_orders(self, symbol: Optional[str]) -> List[Order]:
        params = {"status": "open"}
        if symbol:
            params = {"currency_pair": self.to_exchange_symbol(symbol), "status": "open"}
        data = await self._send(
            self._signed("GET", "/api/v4/spot/orders", "get_open_orders", params=params),
            "get_open_orders",
        )
        return self._parse(
            "get_open_orders", data,
            lambda rows: [self._parse_order(row, symbol) for row in rows],
        )

    def _parse_order(self, row: Dict[str, Any], symbol: Optional[str]) -> Order:
        amount = to_decimal(row.get("amount"))
        left = to_decimal(row.get("left"), amount)
        filled = amount - left
        price = to_decimal(row.get("price"))
        average = to_decimal(row.get("avg_deal_price"))
        status = self.map_order_status(row.get("status"))
        if status == OrderStatus.PENDING and filled > 0:
            status = OrderStatus.PARTIALLY_FILLED

        text = row.get("text") or ""
        client_order_id = text[len(GATEIO_TEXT_PREFIX):] if text.startswith(GATEIO_TEXT_PREFIX) else None

        return Order(
            order_id=str(row["id"]),
            client_order_id=client_order_id,
            exchange=self.display_name,
            symbol=symbol or canonical_symbol(row["currency_pair"]),
            side=OrderSide.BUY if row.get("side") == "buy" else OrderSide.SELL,
            order_type=OrderType.MARKET if row.get("type") == "market" else OrderType.LIMIT,
            status=status,
            requested_quantity=amount,
            filled_quantity=filled,
            requested_price=price if price > 0 else None,
            average_price=average if average > 0 else None,
            fee=to_decimal(row.get("fee")),
            fee_currency=row.get("fee_currency") or "USDT",
            created_at=seconds_to_datetime(row.get("create_time")),
            updated_at=seconds_to_datetime(row.get("update_time") or row.get("create_time")),
        )
