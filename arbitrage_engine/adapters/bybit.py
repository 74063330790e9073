"""
Bybit Spot Exchange Adapter.

============================================================
PURPOSE
============================================================
Adapter for the Bybit V5 unified REST API (spot category).

EXCHANGE SPECIFICS:
- Symbols are concatenated: BTC/USDT -> BTCUSDT
- Signature: HMAC-SHA256 hex of ts + apiKey + recvWindow + payload,
  payload = query string (GET) or JSON body (POST)
- Every response carries retCode/retMsg; retCode != 0 is a failure
  even on HTTP 200
- One call returns all spot tickers, used for bulk fetches

============================================================
API DOCUMENTATION
============================================================
https://bybit-exchange.github.io/docs/v5/intro

============================================================
"""

import json
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..types import (
    ZERO,
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
from .base import RestExchangeAdapter, ms_to_datetime, to_decimal
from .errors import ExchangeException
from .signing import CanonicalRequest, encode_query, sign_bybit
from .transport import PreparedRequest


logger = logging.getLogger(__name__)


# ============================================================
# CONSTANTS
# ============================================================

BYBIT_REST_URL = "https://api.bybit.com"

BYBIT_RECV_WINDOW = 5000
BYBIT_CATEGORY = "spot"
BYBIT_ACCOUNT_TYPE = "UNIFIED"

# Spot order book accepts these limits only
BYBIT_DEPTH_STEPS = (1, 25, 50, 100, 200)


def snap_depth(depth: int) -> int:
    """Smallest supported book limit >= depth (capped at 200)."""
    for step in BYBIT_DEPTH_STEPS:
        if depth <= step:
            return step
    return BYBIT_DEPTH_STEPS[-1]


# ============================================================
# BYBIT ADAPTER
# ============================================================

class BybitAdapter(RestExchangeAdapter):
    """Bybit V5 spot adapter."""

    EXCHANGE_ID = "bybit"
    DISPLAY_NAME = "Bybit"
    DEFAULT_BASE_URL = BYBIT_REST_URL

    STATUS_MAP = {
        "new": OrderStatus.OPEN,
        "created": OrderStatus.OPEN,
        "untriggered": OrderStatus.PENDING,
        "partiallyfilled": OrderStatus.PARTIALLY_FILLED,
        "partially_filled": OrderStatus.PARTIALLY_FILLED,
        "filled": OrderStatus.FILLED,
        "cancelled": OrderStatus.CANCELLED,
        "canceled": OrderStatus.CANCELLED,
        "partiallyfilledcanceled": OrderStatus.CANCELLED,
        "rejected": OrderStatus.REJECTED,
        "expired": OrderStatus.EXPIRED,
    }

    # --------------------------------------------------------
    # SYMBOLS / SIGNING
    # --------------------------------------------------------

    def to_exchange_symbol(self, symbol: str) -> str:
        return symbol.replace("/", "").replace("-", "").upper()

    def _extract_error(self, status: int, payload: Any) -> Optional[Tuple[Any, str]]:
        if isinstance(payload, dict) and "retCode" in payload:
            if payload["retCode"] != 0:
                return payload["retCode"], payload.get("retMsg", "")
            return None
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
        body_str = json.dumps(body, separators=(",", ":")) if body else ""

        def build() -> PreparedRequest:
            timestamp = str(self._timestamp_ms())
            canonical = CanonicalRequest(method, path, query, body_str, timestamp)
            headers = {
                "X-BAPI-API-KEY": api_key,
                "X-BAPI-SIGN": sign_bybit(api_secret, canonical, api_key, BYBIT_RECV_WINDOW),
                "X-BAPI-SIGN-TYPE": "2",
                "X-BAPI-TIMESTAMP": timestamp,
                "X-BAPI-RECV-WINDOW": str(BYBIT_RECV_WINDOW),
            }
            if body_str:
                headers["Content-Type"] = "application/json"
            return PreparedRequest(method, path, query, body_str, headers)

        return build

    # --------------------------------------------------------
    # CONNECTION
    # --------------------------------------------------------

    async def get_server_time_ms(self) -> int:
        """Exchange clock, for checking the recv window."""
        data = await self._public_get("/v5/market/time", "", "get_server_time")
        return self._parse(
            "get_server_time", data,
            lambda d: int(d["result"]["timeNano"]) // 1_000_000,
        )

    async def test_connection(self) -> bool:
        try:
            server_ms = await self.get_server_time_ms()
        except Exception as e:
            self._logger.warning(f"Connection test failed: {e}")
            return False
        drift = abs(server_ms - self._timestamp_ms())
        if drift > BYBIT_RECV_WINDOW:
            self._logger.warning(f"Local clock drifts {drift}ms from server; signed calls may fail")
        return True

    # --------------------------------------------------------
    # MARKET DATA
    # --------------------------------------------------------

    async def get_ticker(self, symbol: str) -> Ticker:
        query = encode_query({"category": BYBIT_CATEGORY, "symbol": self.to_exchange_symbol(symbol)})
        try:
            data = await self._public_get("/v5/market/tickers", query, "get_ticker")
        except ExchangeException as e:
            self._fail("get_ticker", e, symbol)
            raise
        return self._parse(
            "get_ticker", data,
            lambda d: self._parse_ticker(symbol, d["result"]["list"][0]),
        )

    def _parse_ticker(self, symbol: str, row: Dict[str, Any]) -> Ticker:
        if not row["symbol"]:
            raise ValueError("ticker without symbol")
        return self._ticker(
            symbol,
            bid_price=to_decimal(row.get("bid1Price")),
            ask_price=to_decimal(row.get("ask1Price")),
            bid_quantity=to_decimal(row.get("bid1Size")),
            ask_quantity=to_decimal(row.get("ask1Size")),
            last_price=to_decimal(row.get("lastPrice")),
            volume_24h=to_decimal(row.get("volume24h")),
        )

    async def get_tickers(self, symbols: List[str]) -> Dict[str, Ticker]:
        """All requested tickers from a single bulk call."""
        wanted = {self.to_exchange_symbol(s): s for s in symbols}
        try:
            data = await self._public_get(
                "/v5/market/tickers", encode_query({"category": BYBIT_CATEGORY}), "get_tickers"
            )
        except ExchangeException as e:
            self._fail("get_tickers", e)
            return {}

        def parse(payload: Dict[str, Any]) -> Dict[str, Ticker]:
            tickers = {}
            for row in payload["result"]["list"]:
                canonical = wanted.get(row.get("symbol"))
                if canonical:
                    tickers[canonical] = self._parse_ticker(canonical, row)
            return tickers

        return self._parse("get_tickers", data, parse)

    async def get_order_book(self, symbol: str, depth: int = 20) -> OrderBook:
        query = encode_query({
            "category": BYBIT_CATEGORY,
            "symbol": self.to_exchange_symbol(symbol),
            "limit": snap_depth(depth),
        })
        try:
            data = await self._public_get("/v5/market/orderbook", query, "get_order_book")
        except ExchangeException as e:
            self._fail("get_order_book", e, symbol)
            raise
        return self._parse(
            "get_order_book", data,
            lambda d: self._order_book(symbol, d["result"]["b"], d["result"]["a"]),
        )

    # --------------------------------------------------------
    # ACCOUNT
    # --------------------------------------------------------

    async def get_balance(self) -> AccountBalance:
        try:
            data = await self._send(
                self._signed(
                    "GET", "/v5/account/wallet-balance", "get_balance",
                    params={"accountType": BYBIT_ACCOUNT_TYPE},
                ),
                "get_balance",
            )
        except ExchangeException as e:
            self._fail("get_balance", e)
            raise

        def parse(payload: Dict[str, Any]) -> AccountBalance:
            assets = {}
            accounts = payload["result"]["list"]
            for coin in accounts[0].get("coin", []) if accounts else []:
                total = to_decimal(coin.get("walletBalance"))
                locked = to_decimal(coin.get("locked"))
                if total > 0:
                    asset = coin["coin"].upper()
                    assets[asset] = AssetBalance(
                        asset=asset,
                        available=max(total - locked, ZERO),
                        total=total,
                    )
            return AccountBalance(exchange=self.display_name, assets=assets)

        return self._parse("get_balance", data, parse)

    # --------------------------------------------------------
    # ORDERS
    # --------------------------------------------------------

    async def place_order(self, request: OrderRequest) -> Order:
        body = {
            "category": BYBIT_CATEGORY,
            "symbol": self.to_exchange_symbol(request.symbol),
            "side": "Buy" if request.side == OrderSide.BUY else "Sell",
            "orderType": "Market" if request.order_type == OrderType.MARKET else "Limit",
            "qty": f"{request.quantity:.8f}",
            "orderLinkId": request.client_order_id,
        }
        if request.order_type == OrderType.LIMIT:
            body["price"] = f"{request.price:.8f}"
            body["timeInForce"] = "GTC"

        try:
            data = await self._send(
                self._signed("POST", "/v5/order/create", "place_order", body=body),
                "place_order",
            )
        except ExchangeException as e:
            self._metrics.record_order_rejected(e.error.code)
            self._fail("place_order", e, request.symbol)
            raise

        self._metrics.record_order_placed()

        def parse(payload: Dict[str, Any]) -> Order:
            result = payload["result"]
            return Order(
                order_id=str(result["orderId"]),
                client_order_id=result.get("orderLinkId", request.client_order_id),
                exchange=self.display_name,
                symbol=request.symbol,
                side=request.side,
                order_type=request.order_type,
                status=OrderStatus.OPEN,
                requested_quantity=request.quantity,
                requested_price=request.price,
            )

        return self._parse("place_order", data, parse)

    async def cancel_order(self, symbol: str, order_id: str) -> bool:
        body = {
            "category": BYBIT_CATEGORY,
            "symbol": self.to_exchange_symbol(symbol),
            "orderId": order_id,
        }
        try:
            data = await self._send(
                self._signed("POST", "/v5/order/cancel", "cancel_order", body=body),
                "cancel_order",
            )
        except ExchangeException as e:
            self._fail("cancel_order", e, symbol)
            raise
        cancelled = self._parse(
            "cancel_order", data, lambda d: str(d["result"]["orderId"]) == str(order_id)
        )
        if cancelled:
            self._metrics.record_order_cancelled()
        return cancelled

    async def get_order(self, symbol: str, order_id: str) -> Order:
        params = {
            "category": BYBIT_CATEGORY,
            "symbol": self.to_exchange_symbol(symbol),
            "orderId": order_id,
        }
        try:
            data = await self._send(
                self._signed("GET", "/v5/order/realtime", "get_order", params=params),
                "get_order",
            )
        except ExchangeException as e:
            self._fail("get_order", e, symbol)
            raise
        return self._parse(
            "get_order", data,
            lambda d: self._parse_order(d["result"]["list"][0], symbol),
        )

    async def _fetch_open_orders(self, symbol: Optional[str]) -> List[Order]:
        params = {"category": BYBIT_CATEGORY, "openOnly": 0}
        if symbol:
            params["symbol"] = self.to_exchange_symbol(symbol)
        data = await self._send(
            self._signed("GET", "/v5/order/realtime", "get_open_orders", params=params),
            "get_open_orders",
        )
        return self._parse(
            "get_open_orders", data,
            lambda d: [self._parse_order(row, symbol) for row in d["result"]["list"]],
        )

    def _parse_order(self, row: Dict[str, Any], symbol: Optional[str]) -> Order:
        average = to_decimal(row.get("avgPrice"))
        price = to_decimal(row.get("price"))
        return Order(
            order_id=str(row["orderId"]),
            client_order_id=row.get("orderLinkId") or None,
            exchange=self.display_name,
            symbol=symbol or canonical_symbol(row["symbol"]),
            side=OrderSide.BUY if row.get("side") == "Buy" else OrderSide.SELL,
            order_type=OrderType.MARKET if row.get("orderType") == "Market" else OrderType.LIMIT,
            status=self.map_order_status(row.get("orderStatus")),
            requested_quantity=to_decimal(row.get("qty")),
            filled_quantity=to_decimal(row.get("cumExecQty")),
            requested_price=price if price > 0 else None,
            average_price=average if average > 0 else None,
            fee=to_decimal(row.get("cumExecFee")),
            created_at=ms_to_datetime(row.get("createdTime")),
            updated_at=ms_to_datetime(row.get("updatedTime")),
        )
