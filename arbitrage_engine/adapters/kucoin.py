"""
KuCoin Spot Exchange Adapter.

============================================================
PURPOSE
============================================================
Adapter for the KuCoin spot REST API.

EXCHANGE SPECIFICS:
- Symbols are dash separated: BTC/USDT -> BTC-USDT
- Signature: BASE64(HMAC-SHA256(ts + METHOD + endpoint + body))
- API key version 2: the passphrase header carries
  BASE64(HMAC-SHA256(secret, passphrase)), not the plaintext
- code "200000" means success
- Order state is not a string: it is derived from isActive,
  cancelExist and the filled size

============================================================
API DOCUMENTATION
============================================================
https://www.kucoin.com/docs/rest/

============================================================
"""

import json
import logging
from decimal import Decimal
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
from .signing import CanonicalRequest, encode_query, kucoin_passphrase, sign_kucoin
from .transport import PreparedRequest


logger = logging.getLogger(__name__)


# ============================================================
# CONSTANTS
# ============================================================

KUCOIN_REST_URL = "https://api.kucoin.com"

KUCOIN_SUCCESS = "200000"
KUCOIN_KEY_VERSION = "2"


def map_kucoin_order_state(
    is_active: bool,
    cancel_exist: bool,
    deal_size: Decimal,
    size: Decimal,
    deal_funds: Decimal = Decimal("0"),
) -> OrderStatus:
    """
    Derive the canonical status from KuCoin's order flags.

    Market orders placed by funds report size 0; once done, any
    dealt size or funds means they filled.
    """
    if is_active:
        return OrderStatus.PARTIALLY_FILLED if deal_size > 0 else OrderStatus.PENDING
    if cancel_exist:
        return OrderStatus.CANCELLED
    if size > 0 and deal_size >= size:
        return OrderStatus.FILLED
    if size <= 0 and (deal_size > 0 or deal_funds > 0):
        return OrderStatus.FILLED
    return OrderStatus.ERROR


# ============================================================
# KUCOIN ADAPTER
# ============================================================

class KuCoinAdapter(RestExchangeAdapter):
    """KuCoin spot adapter."""

    EXCHANGE_ID = "kucoin"
    DISPLAY_NAME = "KuCoin"
    DEFAULT_BASE_URL = KUCOIN_REST_URL
    REQUIRES_PASSPHRASE = True

    # Used only for string states some endpoints report
    STATUS_MAP = {
        "active": OrderStatus.PENDING,
        "done": OrderStatus.FILLED,
    }

    # --------------------------------------------------------
    # SYMBOLS / SIGNING
    # --------------------------------------------------------

    def to_exchange_symbol(self, symbol: str) -> str:
        return symbol.replace("/", "-").upper()

    def _extract_error(self, status: int, payload: Any) -> Optional[Tuple[Any, str]]:
        if isinstance(payload, dict) and "code" in payload:
            if str(payload["code"]) == KUCOIN_SUCCESS:
                return None
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
        encrypted_passphrase = kucoin_passphrase(api_secret, passphrase)

        def build() -> PreparedRequest:
            timestamp = str(self._timestamp_ms())
            signature = sign_kucoin(
                api_secret, CanonicalRequest(method, path, query, body_str, timestamp)
            )
            headers = {
                "KC-API-KEY": api_key,
                "KC-API-SIGN": signature,
                "KC-API-TIMESTAMP": timestamp,
                "KC-API-PASSPHRASE": encrypted_passphrase,
                "KC-API-KEY-VERSION": KUCOIN_KEY_VERSION,
                "Content-Type": "application/json",
            }
            return PreparedRequest(method, path, query, body_str, headers)

        return build

    # --------------------------------------------------------
    # MARKET DATA
    # --------------------------------------------------------

    async def get_ticker(self, symbol: str) -> Ticker:
        wire = self.to_exchange_symbol(symbol)
        try:
            data = await self._public_get(
                "/api/v1/market/orderbook/level1", encode_query({"symbol": wire}), "get_ticker"
            )
            volume = await self._get_volume(wire)
        except ExchangeException as e:
            self._fail("get_ticker", e, symbol)
            raise

        def parse(payload: Dict[str, Any]) -> Ticker:
            row = payload["data"]
            if row is None:
                raise ValueError(f"no level1 data for {wire}")
            return self._ticker(
                symbol,
                bid_price=to_decimal(row.get("bestBid")),
                ask_price=to_decimal(row.get("bestAsk")),
                bid_quantity=to_decimal(row.get("bestBidSize")),
                ask_quantity=to_decimal(row.get("bestAskSize")),
                last_price=to_decimal(row.get("price")),
                volume_24h=volume,
                timestamp=ms_to_datetime(row.get("time")),
            )

        return self._parse("get_ticker", data, parse)

    async def _get_volume(self, wire: str) -> Decimal:
        """24h volume from market stats; zero when unavailable."""
        try:
            stats = await self._public_get(
                "/api/v1/market/stats", encode_query({"symbol": wire}), "get_stats"
            )
        except ExchangeException as e:
            self._logger.warning(f"24h stats unavailable for {wire}: {e}")
            return ZERO
        return to_decimal((stats.get("data") or {}).get("vol"))

    async def get_order_book(self, symbol: str, depth: int = 20) -> OrderBook:
        path = "/api/v1/market/orderbook/level2_20" if depth <= 20 else "/api/v1/market/orderbook/level2_100"
        query = encode_query({"symbol": self.to_exchange_symbol(symbol)})
        try:
            data = await self._public_get(path, query, "get_order_book")
        except ExchangeException as e:
            self._fail("get_order_book", e, symbol)
            raise

        def parse(payload: Dict[str, Any]) -> OrderBook:
            book = payload["data"]
            return self._order_book(symbol, book["bids"][:depth], book["asks"][:depth])

        return self._parse("get_order_book", data, parse)

    # --------------------------------------------------------
    # ACCOUNT
    # --------------------------------------------------------

    async def get_balance(self) -> AccountBalance:
        try:
            data = await self._send(
                self._signed("GET", "/api/v1/accounts", "get_balance"), "get_balance"
            )
        except ExchangeException as e:
            self._fail("get_balance", e)
            raise

        def parse(payload: Dict[str, Any]) -> AccountBalance:
            totals: Dict[str, Decimal] = {}
            available: Dict[str, Decimal] = {}
            # One row per (currency, account type); merge them
            for row in payload["data"]:
                asset = row["currency"].upper()
                totals[asset] = totals.get(asset, ZERO) + to_decimal(row.get("balance"))
                available[asset] = available.get(asset, ZERO) + to_decimal(row.get("available"))
            assets = {
                asset: AssetBalance(asset=asset, available=available[asset], total=total)
                for asset, total in totals.items()
                if total > 0
            }
            return AccountBalance(exchange=self.display_name, assets=assets)

        return self._parse("get_balance", data, parse)

    # --------------------------------------------------------
    # ORDERS
    # --------------------------------------------------------

    async def place_order(self, request: OrderRequest) -> Order:
        body = {
            "clientOid": request.client_order_id,
            "side": "buy" if request.side == OrderSide.BUY else "sell",
            "symbol": self.to_exchange_symbol(request.symbol),
            "type": "market" if request.order_type == OrderType.MARKET else "limit",
            "size": f"{request.quantity:.8f}",
        }
        if request.order_type == OrderType.LIMIT:
            body["price"] = f"{request.price:.8f}"

        try:
            data = await self._send(
                self._signed("POST", "/api/v1/orders", "place_order", body=body),
                "place_order",
            )
        except ExchangeException as e:
            self._metrics.record_order_rejected(e.error.code)
            self._fail("place_order", e, request.symbol)
            raise

        self._metrics.record_order_placed()

        def parse(payload: Dict[str, Any]) -> Order:
            return Order(
                order_id=str(payload["data"]["orderId"]),
                client_order_id=request.client_order_id,
                exchange=self.display_name,
                symbol=request.symbol,
                side=request.side,
                order_type=request.order_type,
                status=OrderStatus.PENDING,
                requested_quantity=request.quantity,
                requested_price=request.price,
            )

        return self._parse("place_order", data, parse)

    async def cancel_order(self, symbol: str, order_id: str) -> bool:
        try:
            data = await self._send(
                self._signed("DELETE", f"/api/v1/orders/{order_id}", "cancel_order"),
                "cancel_order",
            )
        except ExchangeException as e:
            self._fail("cancel_order", e, symbol)
            raise
        cancelled = self._parse(
            "cancel_order", data,
            lambda d: order_id in (d["data"].get("cancelledOrderIds") or []),
        )
        if cancelled:
            self._metrics.record_order_cancelled()
        return cancelled

    async def get_order(self, symbol: str, order_id: str) -> Order:
        try:
            data = await self._send(
                self._signed("GET", f"/api/v1/orders/{order_id}", "get_order"), "get_order"
            )
        except ExchangeException as e:
            self._fail("get_order", e, symbol)
            raise
        return self._parse("get_order", data, lambda d: self._parse_order(d["data"], symbol))

    async def _fetch_open_orders(self, symbol: Optional[str]) -> List[Order]:
        params = {"status": "active"}
        if symbol:
            params["symbol"] = self.to_exchange_symbol(symbol)
        data = await self._send(
            self._signed("GET", "/api/v1/orders", "get_open_orders", params=params),
            "get_open_orders",
        )
        return self._parse(
            "get_open_orders", data,
            lambda d: [self._parse_order(row, symbol) for row in d["data"]["items"]],
        )

    def _parse_order(self, row: Dict[str, Any], symbol: Optional[str]) -> Order:
        size = to_decimal(row.get("size"))
        deal_size = to_decimal(row.get("dealSize"))
        deal_funds = to_decimal(row.get("dealFunds"))
        price = to_decimal(row.get("price"))
        return Order(
            order_id=str(row["id"]),
            client_order_id=row.get("clientOid") or None,
            exchange=self.display_name,
            symbol=symbol or canonical_symbol(row["symbol"]),
            side=OrderSide.BUY if row.get("side") == "buy" else OrderSide.SELL,
            order_type=OrderType.MARKET if row.get("type") == "market" else OrderType.LIMIT,
            status=map_kucoin_order_state(
                bool(row.get("isActive")), bool(row.get("cancelExist")), deal_size, size, deal_funds
            ),
            requested_quantity=size,
            filled_quantity=deal_size,
            requested_price=price if price > 0 else None,
            average_price=deal_funds / deal_size if deal_size > 0 else None,
            fee=to_decimal(row.get("fee")),
            fee_currency=row.get("feeCurrency", ""),
            created_at=ms_to_datetime(row.get("createdAt")),
            updated_at=ms_to_datetime(row.get("createdAt")),
        )
