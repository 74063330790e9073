"""
Binance Spot Exchange Adapter.

============================================================
PURPOSE
============================================================
Adapter for the Binance spot REST API.

EXCHANGE SPECIFICS:
- Symbols are concatenated: BTC/USDT -> BTCUSDT
- Signed endpoints: HMAC-SHA256 hex over the sorted query string
  (timestamp + recvWindow included), signature appended as a query
  parameter, key sent in X-MBX-APIKEY
- Ticker combines bookTicker (quotes) with 24hr stats (last, volume)

============================================================
API DOCUMENTATION
============================================================
https://binance-docs.github.io/apidocs/spot/en/

============================================================
"""

import logging
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

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
from .signing import CanonicalRequest, encode_query, sign_binance
from .transport import PreparedRequest


logger = logging.getLogger(__name__)


# ============================================================
# CONSTANTS
# ============================================================

BINANCE_REST_URL = "https://api.binance.com"

BINANCE_RECV_WINDOW = 5000
BINANCE_MAX_DEPTH = 5000

# Fallback taker fee when the response carries no fills
BINANCE_DEFAULT_FEE_RATE = Decimal("0.001")


# ============================================================
# BINANCE ADAPTER
# ============================================================

class BinanceAdapter(RestExchangeAdapter):
    """Binance spot adapter."""

    EXCHANGE_ID = "binance"
    DISPLAY_NAME = "Binance"
    DEFAULT_BASE_URL = BINANCE_REST_URL

    STATUS_MAP = {
        "new": OrderStatus.PENDING,
        "partially_filled": OrderStatus.PARTIALLY_FILLED,
        "filled": OrderStatus.FILLED,
        "canceled": OrderStatus.CANCELLED,
        "cancelled": OrderStatus.CANCELLED,
        "pending_cancel": OrderStatus.PENDING,
        "rejected": OrderStatus.REJECTED,
        "expired": OrderStatus.EXPIRED,
    }

    # --------------------------------------------------------
    # SYMBOLS / SIGNING
    # --------------------------------------------------------

    def to_exchange_symbol(self, symbol: str) -> str:
        return symbol.replace("/", "").replace("-", "").upper()

    def _signed(
        self,
        method: str,
        path: str,
        params: Dict[str, Any],
        operation: str,
    ) -> Callable[[], PreparedRequest]:
        """Request factory; each attempt gets a fresh timestamp."""
        api_key, api_secret, _ = self._credentials(operation)

        def build() -> PreparedRequest:
            signed_params = dict(params)
            signed_params["recvWindow"] = BINANCE_RECV_WINDOW
            signed_params["timestamp"] = self._timestamp_ms()
            query = encode_query(signed_params, sort=True)
            signature = sign_binance(api_secret, CanonicalRequest(method, path, query))
            return PreparedRequest(
                method=method,
                path=path,
                query=f"{query}&signature={signature}",
                headers={"X-MBX-APIKEY": api_key},
            )

        return build

    # --------------------------------------------------------
    # MARKET DATA
    # --------------------------------------------------------

    async def get_ticker(self, symbol: str) -> Ticker:
        wire = self.to_exchange_symbol(symbol)
        try:
            book = await self._public_get(
                "/api/v3/ticker/bookTicker", encode_query({"symbol": wire}), "get_ticker"
            )
            stats = await self._get_24h_stats(wire)
        except ExchangeException as e:
            self._fail("get_ticker", e, symbol)
            raise

        def parse(data: Dict[str, Any]) -> Ticker:
            if data["symbol"] != wire:
                raise ValueError(f"ticker for {data['symbol']} returned for {wire}")
            bid = to_decimal(data.get("bidPrice"))
            return self._ticker(
                symbol,
                bid_price=bid,
                ask_price=to_decimal(data.get("askPrice")),
                bid_quantity=to_decimal(data.get("bidQty")),
                ask_quantity=to_decimal(data.get("askQty")),
                last_price=to_decimal(stats.get("lastPrice"), bid),
                volume_24h=to_decimal(stats.get("volume")),
            )

        return self._parse("get_ticker", book, parse)

    async def _get_24h_stats(self, wire: str) -> Dict[str, Any]:
        """24h stats are optional: the quote is still usable without them."""
        try:
            stats = await self._public_get(
                "/api/v3/ticker/24hr", encode_query({"symbol": wire}), "get_ticker_24h"
            )
        except ExchangeException as e:
            self._logger.warning(f"24hr stats unavailable for {wire}: {e}")
            return {}
        return stats if isinstance(stats, dict) else {}

    async def get_order_book(self, symbol: str, depth: int = 20) -> OrderBook:
        wire = self.to_exchange_symbol(symbol)
        query = encode_query({"symbol": wire, "limit": min(depth, BINANCE_MAX_DEPTH)})
        try:
            data = await self._public_get("/api/v3/depth", query, "get_order_book")
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
                self._signed("GET", "/api/v3/account", {}, "get_balance"), "get_balance"
            )
        except ExchangeException as e:
            self._fail("get_balance", e)
            raise

        def parse(payload: Dict[str, Any]) -> AccountBalance:
            assets = {}
            for item in payload["balances"]:
                free = to_decimal(item.get("free"))
                locked = to_decimal(item.get("locked"))
                if free > 0 or locked > 0:
                    asset = item["asset"].upper()
                    assets[asset] = AssetBalance(asset=asset, available=free, total=free + locked)
            return AccountBalance(exchange=self.display_name, assets=assets)

        return self._parse("get_balance", data, parse)

    # --------------------------------------------------------
    # ORDERS
    # --------------------------------------------------------

    async def place_order(self, request: OrderRequest) -> Order:
        params = {
            "symbol": self.to_exchange_symbol(request.symbol),
            "side": request.side.value,
            "type": request.order_type.value,
            "quantity": f"{request.quantity:.8f}",
            "newClientOrderId": request.client_order_id,
        }
        if request.order_type == OrderType.LIMIT:
            params["price"] = f"{request.price:.8f}"
            params["timeInForce"] = "GTC"

        try:
            data = await self._send(
                self._signed("POST", "/api/v3/order", params, "place_order"), "place_order"
            )
        except ExchangeException as e:
            self._metrics.record_order_rejected(e.error.code)
            self._fail("place_order", e, request.symbol)
            raise

        self._metrics.record_order_placed()
        return self._parse("place_order", data, lambda d: self._parse_placed(request, d))

    def _parse_placed(self, request: OrderRequest, data: Dict[str, Any]) -> Order:
        fills = data.get("fills") or []
        executed = to_decimal(data.get("executedQty"))
        quote_qty = to_decimal(data.get("cummulativeQuoteQty"))

        if executed > 0 and quote_qty > 0:
            average = quote_qty / executed
        else:
            average = request.price

        if fills:
            fee = sum((to_decimal(f.get("commission")) for f in fills), ZERO)
            fee_currency = fills[0].get("commissionAsset") or "USDT"
        else:
            fee = executed * (average or ZERO) * BINANCE_DEFAULT_FEE_RATE
            fee_currency = "USDT"

        created = ms_to_datetime(data.get("transactTime"))
        return Order(
            order_id=str(data["orderId"]),
            client_order_id=data.get("clientOrderId", request.client_order_id),
            exchange=self.display_name,
            symbol=request.symbol,
            side=request.side,
            order_type=request.order_type,
            status=self.map_order_status(data.get("status")),
            requested_quantity=request.quantity,
            filled_quantity=executed,
            requested_price=request.price,
            average_price=average,
            fee=fee,
            fee_currency=fee_currency,
            created_at=created,
            updated_at=created,
        )

    async def cancel_order(self, symbol: str, order_id: str) -> bool:
        params = {"symbol": self.to_exchange_symbol(symbol), "orderId": order_id}
        try:
            data = await self._send(
                self._signed("DELETE", "/api/v3/order", params, "cancel_order"), "cancel_order"
            )
        except ExchangeException as e:
            self._fail("cancel_order", e, symbol)
            raise
        cancelled = self.map_order_status(data.get("status")) == OrderStatus.CANCELLED
        if cancelled:
            self._metrics.record_order_cancelled()
        return cancelled

    async def get_order(self, symbol: str, order_id: str) -> Order:
        params = {"symbol": self.to_exchange_symbol(symbol), "orderId": order_id}
        try:
            data = await self._send(
                self._signed("GET", "/api/v3/order", params, "get_order"), "get_order"
            )
        except ExchangeException as e:
            self._fail("get_order", e, symbol)
            raise
        return self._parse("get_order", data, lambda d: self._parse_order(d, symbol))

    async def _fetch_open_orders(self, symbol: Optional[str]) -> List[Order]:
        params = {"symbol": self.to_exchange_symbol(symbol)} if symbol else {}
        data = await self._send(
            self._signed("GET", "/api/v3/openOrders", params, "get_open_orders"),
            "get_open_orders",
        )
        return self._parse(
            "get_open_orders", data,
            lambda rows: [self._parse_order(row, symbol) for row in rows],
        )

    def _parse_order(self, data: Dict[str, Any], symbol: Optional[str]) -> Order:
        executed = to_decimal(data.get("executedQty"))
        quote_qty = to_decimal(data.get("cummulativeQuoteQty"))
        price = to_decimal(data.get("price"))
        return Order(
            order_id=str(data["orderId"]),
            client_order_id=data.get("clientOrderId"),
            exchange=self.display_name,
            symbol=symbol or canonical_symbol(data["symbol"]),
            side=OrderSide.BUY if data.get("side") == "BUY" else OrderSide.SELL,
            order_type=OrderType.MARKET if data.get("type") == "MARKET" else OrderType.LIMIT,
            status=self.map_order_status(data.get("status")),
            requested_quantity=to_decimal(data.get("origQty")),
            filled_quantity=executed,
            requested_price=price if price > 0 else None,
            average_price=quote_qty / executed if executed > 0 else None,
            created_at=ms_to_datetime(data.get("time")),
            updated_at=ms_to_datetime(data.get("updateTime") or data.get("time")),
        )
