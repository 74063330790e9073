"""
OKX Spot Exchange Adapter.

============================================================
PURPOSE
============================================================
Adapter for the OKX V5 REST API, spot instruments in cash mode.

EXCHANGE SPECIFICS:
- Symbols are dash separated: BTC/USDT -> BTC-USDT
- Signature: BASE64(HMAC-SHA256(ts + METHOD + path?query + body))
  with an ISO-8601 millisecond timestamp
- Passphrase is sent in plaintext in OK-ACCESS-PASSPHRASE
- code != "0" is a failure even on HTTP 200; order endpoints carry
  a per-item sCode/sMsg

============================================================
API DOCUMENTATION
============================================================
https://www.okx.com/docs-v5/

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
from .base import RestExchangeAdapter, ms_to_datetime, to_decimal
from .errors import ExchangeException
from .signing import CanonicalRequest, encode_query, okx_timestamp, sign_okx
from .transport import PreparedRequest


logger = logging.getLogger(__name__)


# ============================================================
# CONSTANTS
# ============================================================

OKX_REST_URL = "https://www.okx.com"

OKX_INST_SPOT = "SPOT"
OKX_TRADE_CASH = "cash"
OKX_MAX_DEPTH = 400


# ============================================================
# OKX ADAPTER
# ============================================================

class OKXAdapter(RestExchangeAdapter):
    """OKX V5 spot adapter."""

    EXCHANGE_ID = "okx"
    DISPLAY_NAME = "OKX"
    DEFAULT_BASE_URL = OKX_REST_URL
    REQUIRES_PASSPHRASE = True

    STATUS_MAP = {
        "live": OrderStatus.PENDING,
        "partially_filled": OrderStatus.PARTIALLY_FILLED,
        "filled": OrderStatus.FILLED,
        "canceled": OrderStatus.CANCELLED,
        "cancelled": OrderStatus.CANCELLED,
        "mmp_canceled": OrderStatus.CANCELLED,
    }

    # --------------------------------------------------------
    # SYMBOLS / SIGNING
    # --------------------------------------------------------

    def to_exchange_symbol(self, symbol: str) -> str:
        return symbol.replace("/", "-").upper()

    def _extract_error(self, status: int, payload: Any) -> Optional[Tuple[Any, str]]:
        if isinstance(payload, dict) and "code" in payload:
            if str(payload["code"]) == "0":
                return None
            # Batch-style endpoints put the real reason on the item
            items = payload.get("data") or []
            if items and isinstance(items[0], dict) and items[0].get("sCode") not in (None, "0"):
                return items[0]["sCode"], items[0].get("sMsg", "")
            return payload["code"], payload.get("msg", "")
        return super()._extract_error(status, payload)

    def _signed(
        self,
        method: str,
        path: str,
        operation: str,
        params: Dict[str, Any] = None,
        body: Dict[str, Any] = None,
    ) -> Callable[[], PreparedRequest]:
        api_key, api_secret, passphrase = self._credentials(operation)
        query = encode_query(params or {})
        body_str = json.dumps(body) if body else ""

        def build() -> PreparedRequest:
            timestamp = okx_timestamp(self._timestamp_ms())
            signature = sign_okx(
                api_secret, CanonicalRequest(method, path, query, body_str, timestamp)
            )
            headers = {
                "Content-Type": "application/json",
                "OK-ACCESS-KEY": api_key,
                "OK-ACCESS-SIGN": signature,
                "OK-ACCESS-TIMESTAMP": timestamp,
                "OK-ACCESS-PASSPHRASE": passphrase,
            }
            return PreparedRequest(method, path, query, body_str, headers)

        return build

    # --------------------------------------------------------
    # MARKET DATA
    # --------------------------------------------------------

    async def get_ticker(self, symbol: str) -> Ticker:
        query = encode_query({"instId": self.to_exchange_symbol(symbol)})
        try:
            data = await self._public_get("/api/v5/market/ticker", query, "get_ticker")
        except ExchangeException as e:
            self._fail("get_ticker", e, symbol)
            raise

        def parse(payload: Dict[str, Any]) -> Ticker:
            row = payload["data"][0]
            if not row["instId"]:
                raise ValueError("ticker without instId")
            return self._ticker(
                symbol,
                bid_price=to_decimal(row.get("bidPx")),
                ask_price=to_decimal(row.get("askPx")),
                bid_quantity=to_decimal(row.get("bidSz")),
                ask_quantity=to_decimal(row.get("askSz")),
                last_price=to_decimal(row.get("last")),
                volume_24h=to_decimal(row.get("vol24h")),
            )

        return self._parse("get_ticker", data, parse)

    async def get_order_book(self, symbol: str, depth: int = 20) -> OrderBook:
        query = encode_query({
            "instId": self.to_exchange_symbol(symbol),
            "sz": min(depth, OKX_MAX_DEPTH),
        })
        try:
            data = await self._public_get("/api/v5/market/books", query, "get_order_book")
        except ExchangeException as e:
            self._fail("get_order_book", e, symbol)
            raise
        return self._parse(
            "get_order_book", data,
            lambda d: self._order_book(symbol, d["data"][0]["bids"], d["data"][0]["asks"]),
        )

    # --------------------------------------------------------
    # ACCOUNT
    # --------------------------------------------------------

    async def get_balance(self) -> AccountBalance:
        try:
            data = await self._send(
                self._signed("GET", "/api/v5/account/balance", "get_balance"), "get_balance"
            )
        except ExchangeException as e:
            self._fail("get_balance", e)
            raise

        def parse(payload: Dict[str, Any]) -> AccountBalance:
            assets = {}
            accounts = payload["data"]
            for detail in accounts[0].get("details", []) if accounts else []:
                available = to_decimal(detail.get("availBal"))
                frozen = to_decimal(detail.get("frozenBal"))
                if available > 0 or frozen > 0:
                    asset = detail["ccy"].upper()
                    assets[asset] = AssetBalance(
                        asset=asset, available=available, total=available + frozen
                    )
            return AccountBalance(exchange=self.display_name, assets=assets)

        return self._parse("get_balance", data, parse)

    # --------------------------------------------------------
    # ORDERS
    # --------------------------------------------------------

    async def place_order(self, request: OrderRequest) -> Order:
        body = {
            "instId": self.to_exchange_symbol(request.symbol),
            "tdMode": OKX_TRADE_CASH,
            "side": "buy" if request.side == OrderSide.BUY else "sell",
            "ordType": "market" if request.order_type == OrderType.MARKET else "limit",
            "sz": f"{request.quantity:.8f}",
            "clOrdId": request.client_order_id,
        }
        if request.order_type == OrderType.LIMIT:
            body["px"] = f"{request.price:.8f}"

        try:
            data = await self._send(
                self._signed("POST", "/api/v5/trade/order", "place_order", body=body),
                "place_order",
            )
        except ExchangeException as e:
            self._metrics.record_order_rejected(e.error.code)
            self._fail("place_order", e, request.symbol)
            raise

        self._metrics.record_order_placed()

        def parse(payload: Dict[str, Any]) -> Order:
            item = payload["data"][0]
            return Order(
                order_id=str(item["ordId"]),
                client_order_id=item.get("clOrdId") or request.client_order_id,
                exchange=self.display_name,
                symbol=request.symbol,
                side=request.side,
                order_type=request.order_type,
                status=OrderStatus.PENDING,
                requested_quantity=request.quantity,
                requested_price=request.price,
                average_price=request.price,
            )

        return self._parse("place_order", data, parse)

    async def cancel_order(self, symbol: str, order_id: str) -> bool:
        body = {"instId": self.to_exchange_symbol(symbol), "ordId": order_id}
        try:
            data = await self._send(
                self._signed("POST", "/api/v5/trade/cancel-order", "cancel_order", body=body),
                "cancel_order",
            )
        except ExchangeException as e:
            self._fail("cancel_order", e, symbol)
            raise
        cancelled = self._parse(
            "cancel_order", data, lambda d: str(d["data"][0].get("sCode", "0")) == "0"
        )
        if cancelled:
            self._metrics.record_order_cancelled()
        return cancelled

    async def get_order(self, symbol: str, order_id: str) -> Order:
        params = {"instId": self.to_exchange_symbol(symbol), "ordId": order_id}
        try:
            data = await self._send(
                self._signed("GET", "/api/v5/trade/order", "get_order", params=params),
                "get_order",
            )
        except ExchangeException as e:
            self._fail("get_order", e, symbol)
            raise
        return self._parse(
            "get_order", data, lambda d: self._parse_order(d["data"][0], symbol)
        )

    async def _fetch_open_orders(self, symbol: Optional[str]) -> List[Order]:
        params = {"instType": OKX_INST_SPOT}
        if symbol:
            params["instId"] = self.to_exchange_symbol(symbol)
        data = await self._send(
            self._signed("GET", "/api/v5/trade/orders-pending", "get_open_orders", params=params),
            "get_open_orders",
        )
        return self._parse(
            "get_open_orders", data,
            lambda d: [self._parse_order(row, symbol) for row in d["data"]],
        )

    def _parse_order(self, row: Dict[str, Any], symbol: Optional[str]) -> Order:
        price = to_decimal(row.get("px"))
        average = to_decimal(row.get("avgPx"))
        return Order(
            order_id=str(row["ordId"]),
            client_order_id=row.get("clOrdId") or None,
            exchange=self.display_name,
            symbol=symbol or canonical_symbol(row["instId"]),
            side=OrderSide.BUY if row.get("side") == "buy" else OrderSide.SELL,
            order_type=OrderType.MARKET if row.get("ordType") == "market" else OrderType.LIMIT,
            status=self.map_order_status(row.get("state")),
            requested_quantity=to_decimal(row.get("sz")),
            filled_quantity=to_decimal(row.get("accFillSz")),
            requested_price=price if price > 0 else None,
            average_price=average if average > 0 else None,
            # OKX reports fees as negative numbers
            fee=abs(to_decimal(row.get("fee"))),
            fee_currency=row.get("feeCcy", ""),
            created_at=ms_to_datetime(row.get("cTime")),
            updated_at=ms_to_datetime(row.get("uTime")),
        )
