"""
Bitkub Exchange Adapter.

============================================================
PURPOSE
============================================================
Adapter for the Bitkub (Thailand) REST API. Markets are quoted
in THB.

EXCHANGE SPECIFICS:
- Symbols are quote first: BTC/THB -> THB_BTC
- Private endpoints are all POST with a JSON body carrying "ts"
  (epoch milliseconds); signature is HMAC-SHA256 hex of that body
- {"error": 0} means success, anything else is a failure even on
  HTTP 200
- Cancelling requires the order side, remembered from placement

============================================================
API DOCUMENTATION
============================================================
https://github.com/bitkub/bitkub-official-api-docs

============================================================
"""

import json
import logging
from decimal import Decimal
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
)
from .base import RestExchangeAdapter, seconds_to_datetime, to_decimal
from .errors import ExchangeException
from .signing import CanonicalRequest, encode_query, sign_bitkub
from .transport import PreparedRequest


logger = logging.getLogger(__name__)


# ============================================================
# CONSTANTS
# ============================================================

BITKUB_REST_URL = "https://api.bitkub.com"

BITKUB_MAX_DEPTH = 100
BITKUB_PROBE_SYMBOL = "BTC/THB"

# THB per USDT used when the live rate cannot be fetched
DEFAULT_THB_USDT_RATE = Decimal("35")


# ============================================================
# BITKUB ADAPTER
# ============================================================

class BitkubAdapter(RestExchangeAdapter):
    """Bitkub spot adapter (THB markets)."""

    EXCHANGE_ID = "bitkub"
    DISPLAY_NAME = "Bitkub"
    DEFAULT_BASE_URL = BITKUB_REST_URL

    STATUS_MAP = {
        "unfilled": OrderStatus.PENDING,
        "partially_filled": OrderStatus.PARTIALLY_FILLED,
        "filled": OrderStatus.FILLED,
        "cancelled": OrderStatus.CANCELLED,
        "canceled": OrderStatus.CANCELLED,
    }

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        # order id -> "buy" | "sell"
        self._order_sides: Dict[str, str] = {}

    @property
    def connection_probe_symbol(self) -> str:
        return BITKUB_PROBE_SYMBOL

    # --------------------------------------------------------
    # SYMBOLS / SIGNING
    # --------------------------------------------------------

    def to_exchange_symbol(self, symbol: str) -> str:
        parts = symbol.upper().split("/")
        if len(parts) == 2:
            return f"{parts[1]}_{parts[0]}"
        return symbol.replace("/", "_").upper()

    @staticmethod
    def from_exchange_symbol(wire: str) -> str:
        """THB_BTC -> BTC/THB."""
        quote, _, base = wire.upper().partition("_")
        return f"{base}/{quote}" if base else wire.upper()

    def _extract_error(self, status: int, payload: Any) -> Optional[Tuple[Any, str]]:
        if isinstance(payload, dict) and "error" in payload:
            if payload["error"] in (0, "0"):
                return None
            return payload["error"], payload.get("message") or f"Bitkub error {payload['error']}"
        return super()._extract_error(status, payload)

    def _signed(
        self,
        path: str,
        operation: str,
        body: Dict[str, Any] = None,
    ) -> Callable[[], PreparedRequest]:
        """POST request factory; "ts" is added to the body per attempt."""
        api_key, api_secret, _ = self._credentials(operation)

        def build() -> PreparedRequest:
            payload = dict(body or {})
            payload["ts"] = self._timestamp_ms()
            body_str = json.dumps(payload, separators=(",", ":"))
            signature = sign_bitkub(api_secret, CanonicalRequest("POST", path, "", body_str))
            headers = {
                "Accept": "application/json",
                "Content-Type": "application/json",
                "X-BTK-APIKEY": api_key,
                "X-BTK-SIGN": signature,
            }
            return PreparedRequest("POST", path, "", body_str, headers)

        return build

    # --------------------------------------------------------
    # MARKET DATA
    # --------------------------------------------------------

    async def get_ticker(self, symbol: str) -> Ticker:
        wire = self.to_exchange_symbol(symbol)
        try:
            data = await self._public_get("/api/market/ticker", encode_query({"sym": wire}), "get_ticker")
        except ExchangeException as e:
            self._fail("get_ticker", e, symbol)
            raise

        def parse(payload: Dict[str, Any]) -> Ticker:
            row = payload[wire]
            return self._ticker(
                symbol,
                bid_price=to_decimal(row.get("highestBid")),
                ask_price=to_decimal(row.get("lowestAsk")),
                last_price=to_decimal(row.get("last")),
                volume_24h=to_decimal(row.get("baseVolume")),
            )

        return self._parse("get_ticker", data, parse)

    async def get_thb_usdt_rate(self) -> Decimal:
        """THB per USDT from the THB_USDT market; falls back to 35."""
        try:
            data = await self._public_get(
                "/api/market/ticker", encode_query({"sym": "THB_USDT"}), "get_thb_usdt_rate"
            )
        except ExchangeException as e:
            self._logger.warning(f"Failed to get THB/USDT rate: {e}")
            return DEFAULT_THB_USDT_RATE

        rate = to_decimal((data.get("THB_USDT") or {}).get("last")) if isinstance(data, dict) else Decimal(0)
        return rate if rate > 0 else DEFAULT_THB_USDT_RATE

    async def get_order_book(self, symbol: str, depth: int = 20) -> OrderBook:
        query = encode_query({
            "sym": self.to_exchange_symbol(symbol),
            "lmt": min(depth, BITKUB_MAX_DEPTH),
        })
        try:
            data = await self._public_get("/api/market/books", query, "get_order_book")
        except ExchangeException as e:
            self._fail("get_order_book", e, symbol)
            raise
        return self._parse(
            "get_order_book", data,
            lambda d: self._order_book(symbol, d["result"]["bids"], d["result"]["asks"]),
        )

    # --------------------------------------------------------
    # ACCOUNT
    # --------------------------------------------------------

    async def get_balance(self) -> AccountBalance:
        try:
            data = await self._send(
                self._signed("/api/v3/market/wallet", "get_balance"), "get_balance"
            )
        except ExchangeException as e:
            self._fail("get_balance", e)
            raise

        def parse(payload: Dict[str, Any]) -> AccountBalance:
            assets = {}
            # Wallet reports available amounts only
            for asset, amount in payload["result"].items():
                available = to_decimal(amount)
                if available > 0:
                    asset = asset.upper()
                    assets[asset] = AssetBalance(asset=asset, available=available, total=available)
            return AccountBalance(exchange=self.display_name, assets=assets)

        return self._parse("get_balance", data, parse)

    # --------------------------------------------------------
    # ORDERS
    # --------------------------------------------------------

    async def place_order(self, request: OrderRequest) -> Order:
        is_buy = request.side == OrderSide.BUY
        path = "/api/v3/market/place-bid" if is_buy else "/api/v3/market/place-ask"
        body = {
            "sym": self.to_exchange_symbol(request.symbol),
            "amt": float(request.quantity),
            "rat": 0 if request.order_type == OrderType.MARKET else float(request.price),
            "typ": "market" if request.order_type == OrderType.MARKET else "limit",
            "client_id": request.client_order_id,
        }

        try:
            data = await self._send(self._signed(path, "place_order", body), "place_order")
        except ExchangeException as e:
            self._metrics.record_order_rejected(e.error.code)
            self._fail("place_order", e, request.symbol)
            raise

        self._metrics.record_order_placed()

        def parse(payload: Dict[str, Any]) -> Order:
            result = payload["result"]
            order_id = str(result["id"])
            self._order_sides[order_id] = "buy" if is_buy else "sell"
            return Order(
                order_id=order_id,
                client_order_id=request.client_order_id,
                exchange=self.display_name,
                symbol=request.symbol,
                side=request.side,
                order_type=request.order_type,
                status=OrderStatus.PENDING,
                requested_quantity=request.quantity,
                requested_price=request.price,
                fee=to_decimal(result.get("fee")),
                fee_currency="THB",
                created_at=seconds_to_datetime(result.get("ts")),
            )

        return self._parse("place_order", data, parse)

    async def cancel_order(self, symbol: str, order_id: str) -> bool:
        body = {
            "sym": self.to_exchange_symbol(symbol),
            "id": order_id,
            "sd": self._order_sides.get(order_id, "buy"),
        }
        try:
            await self._send(self._signed("/api/v3/market/cancel-order", "cancel_order", body), "cancel_order")
        except ExchangeException as e:
            self._fail("cancel_order", e, symbol)
            raise
        self._order_sides.pop(order_id, None)
        self._metrics.record_order_cancelled()
        return True

    async def get_order(self, symbol: str, order_id: str) -> Order:
        body = {
            "sym": self.to_exchange_symbol(symbol),
            "id": order_id,
            "sd": self._order_sides.get(order_id, "buy"),
        }
        try:
            data = await self._send(self._signed("/api/v3/market/order-info", "get_order", body), "get_order")
        except ExchangeException as e:
            self._fail("get_order", e, symbol)
            raise

        def parse(payload: Dict[str, Any]) -> Order:
            row = payload["result"]
            rate = to_decimal(row.get("rate"))
            return Order(
                order_id=str(row["id"]),
                exchange=self.display_name,
                symbol=symbol,
                side=OrderSide.BUY if row.get("side") == "buy" else OrderSide.SELL,
                order_type=OrderType.MARKET if row.get("type") == "market" else OrderType.LIMIT,
                status=self.map_order_status(row.get("status")),
                requested_quantity=to_decimal(row.get("amount")),
                filled_quantity=to_decimal(row.get("receive")),
                requested_price=rate if rate > 0 else None,
                average_price=rate if rate > 0 else None,
                fee=to_decimal(row.get("fee")),
                fee_currency="THB",
                created_at=seconds_to_datetime(row.get("ts")),
            )

        return self._parse("get_order", data, parse)

    async def _fetch_open_orders(self, symbol: Optional[str]) -> List[Order]:
        body = {"sym": self.to_exchange_symbol(symbol)} if symbol else {}
        data = await self._send(
            self._signed("/api/v3/market/my-open-orders", "get_open_orders", body),
            "get_open_orders",
        )

        def parse(payload: Dict[str, Any]) -> List[Order]:
            orders = []
            for row in payload["result"]:
                rate = to_decimal(row.get("rate"))
                order_id = str(row["id"])
                side = row.get("side", "buy")
                self._order_sides.setdefault(order_id, side)
                orders.append(Order(
                    order_id=order_id,
                    exchange=self.display_name,
                    symbol=symbol or self.from_exchange_symbol(row.get("sym", "")),
                    side=OrderSide.BUY if side == "buy" else OrderSide.SELL,
                    order_type=OrderType.MARKET if row.get("type") == "market" else OrderType.LIMIT,
                    status=OrderStatus.OPEN,
                    requested_quantity=to_decimal(row.get("amount")),
                    requested_price=rate if rate > 0 else None,
                    created_at=seconds_to_datetime(row.get("ts")),
                ))
            return orders

        return self._parse("get_open_orders", data, parse)
