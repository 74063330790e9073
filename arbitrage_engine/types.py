"""
Arbitrage Engine - Core Types.

============================================================
PURPOSE
============================================================
Canonical data model shared by every exchange adapter and by the
opportunity scanner.

LIFECYCLE:
- Ticker / OrderBook are snapshots: frozen, rebuilt every poll
- Order is created on placement and refreshed from exchange state
- Balances are snapshots returned by get_balance()

All prices and quantities are Decimal.

============================================================
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Dict, Optional, Tuple


ZERO = Decimal("0")
HUNDRED = Decimal("100")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================
# ENUMS
# ============================================================

class OrderSide(Enum):
    """Order side."""
    BUY = "BUY"
    SELL = "SELL"


class OrderType(Enum):
    """Order type."""
    MARKET = "MARKET"
    LIMIT = "LIMIT"


class OrderStatus(Enum):
    """
    Canonical order state machine.

    PENDING -> {OPEN, PARTIALLY_FILLED} -> {FILLED | CANCELLED | REJECTED | EXPIRED | ERROR}
    """
    PENDING = "PENDING"
    OPEN = "OPEN"
    PARTIALLY_FILLED = "PARTIALLY_FILLED"
    FILLED = "FILLED"
    CANCELLED = "CANCELLED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"
    ERROR = "ERROR"

    @property
    def is_final(self) -> bool:
        """Terminal states cannot transition further."""
        return self in _FINAL_STATUSES


_FINAL_STATUSES = frozenset({
    OrderStatus.FILLED,
    OrderStatus.CANCELLED,
    OrderStatus.REJECTED,
    OrderStatus.EXPIRED,
    OrderStatus.ERROR,
})


# ============================================================
# SYMBOLS
# ============================================================

def split_symbol(symbol: str) -> Tuple[str, str]:
    """
    Split a canonical BASE/QUOTE symbol.

    Also accepts concatenated forms ending in a common quote asset
    (BTCUSDT -> BTC, USDT).
    """
    cleaned = symbol.strip().upper().replace("-", "/").replace("_", "/")
    if "/" in cleaned:
        base, quote = cleaned.split("/", 1)
        return base, quote
    for quote in ("USDT", "USDC", "USD", "THB", "BTC", "ETH"):
        if cleaned.endswith(quote) and len(cleaned) > len(quote):
            return cleaned[: -len(quote)], quote
    return cleaned, ""


def canonical_symbol(symbol: str) -> str:
    """Normalize any supported spelling to BASE/QUOTE."""
    base, quote = split_symbol(symbol)
    return f"{base}/{quote}" if quote else base


# ============================================================
# MARKET DATA
# ============================================================

@dataclass(frozen=True)
class Ticker:
    """Top-of-book snapshot for one symbol on one exchange."""

    symbol: str
    """Canonical symbol (BASE/QUOTE)."""

    exchange: str
    """Exchange display name."""

    bid_price: Decimal = ZERO
    ask_price: Decimal = ZERO
    bid_quantity: Decimal = ZERO
    ask_quantity: Decimal = ZERO

    last_price: Decimal = ZERO
    """Last traded price."""

    volume_24h: Decimal = ZERO
    """Rolling 24h base volume."""

    timestamp: datetime = field(default_factory=_utcnow)

    @property
    def spread(self) -> Decimal:
        return self.ask_price - self.bid_price

    @property
    def spread_percentage(self) -> Decimal:
        """Spread relative to the bid, in percent."""
        if self.bid_price <= 0:
            return ZERO
        return self.spread / self.bid_price * HUNDRED

    @property
    def mid_price(self) -> Decimal:
        return (self.bid_price + self.ask_price) / 2

    @property
    def is_crossed(self) -> bool:
        """Bid above ask with both sides quoted."""
        return self.bid_price > 0 and self.ask_price > 0 and self.bid_price > self.ask_price

    @property
    def has_quotes(self) -> bool:
        return self.bid_price > 0 and self.ask_price > 0


@dataclass(frozen=True)
class OrderBookEntry:
    """Single price level."""

    price: Decimal
    quantity: Decimal

    @property
    def total(self) -> Decimal:
        """Quote value of the level."""
        return self.price * self.quantity


@dataclass(frozen=True)
class OrderBook:
    """
    Order book snapshot.

    Bids are kept in descending price order and asks in ascending
    order regardless of the order the exchange sent them in.
    """

    symbol: str
    exchange: str
    bids: Tuple[OrderBookEntry, ...] = ()
    asks: Tuple[OrderBookEntry, ...] = ()
    timestamp: datetime = field(default_factory=_utcnow)

    def __post_init__(self):
        object.__setattr__(
            self, "bids", tuple(sorted(self.bids, key=lambda e: e.price, reverse=True))
        )
        object.__setattr__(
            self, "asks", tuple(sorted(self.asks, key=lambda e: e.price))
        )

    # --------------------------------------------------------
    # TOP OF BOOK
    # --------------------------------------------------------

    @property
    def best_bid(self) -> Decimal:
        return self.bids[0].price if self.bids else ZERO

    @property
    def best_ask(self) -> Decimal:
        return self.asks[0].price if self.asks else ZERO

    @property
    def best_bid_quantity(self) -> Decimal:
        return self.bids[0].quantity if self.bids else ZERO

    @property
    def best_ask_quantity(self) -> Decimal:
        return self.asks[0].quantity if self.asks else ZERO

    @property
    def spread(self) -> Decimal:
        if not self.bids or not self.asks:
            return ZERO
        return self.best_ask - self.best_bid

    @property
    def mid_price(self) -> Decimal:
        if not self.bids or not self.asks:
            return ZERO
        return (self.best_bid + self.best_ask) / 2

    # --------------------------------------------------------
    # DEPTH
    # --------------------------------------------------------

    def get_bid_depth_quantity(self, percent: Decimal) -> Decimal:
        """Total bid quantity priced within percent% below the best bid."""
        if not self.bids:
            return ZERO
        floor = self.best_bid * (1 - Decimal(percent) / HUNDRED)
        return sum((e.quantity for e in self.bids if e.price >= floor), ZERO)

    def get_ask_depth_quantity(self, percent: Decimal) -> Decimal:
        """Total ask quantity priced within percent% above the best ask."""
        if not self.asks:
            return ZERO
        ceiling = self.best_ask * (1 + Decimal(percent) / HUNDRED)
        return sum((e.quantity for e in self.asks if e.price <= ceiling), ZERO)

    def get_average_buy_price(self, quantity: Decimal) -> Optional[Decimal]:
        """Volume-weighted price to buy quantity by walking the asks."""
        return _walk_levels(self.asks, quantity)

    def get_average_sell_price(self, quantity: Decimal) -> Optional[Decimal]:
        """Volume-weighted price to sell quantity by walking the bids."""
        return _walk_levels(self.bids, quantity)

    def has_sufficient_liquidity(self, side: OrderSide, quantity: Decimal) -> bool:
        """Whether the opposite side of the book can absorb quantity."""
        if side == OrderSide.BUY:
            return self.get_average_buy_price(quantity) is not None
        return self.get_average_sell_price(quantity) is not None


def _walk_levels(levels: Tuple[OrderBookEntry, ...], quantity: Decimal) -> Optional[Decimal]:
    if quantity <= 0:
        return None
    remaining = quantity
    cost = ZERO
    for level in levels:
        take = min(remaining, level.quantity)
        cost += take * level.price
        remaining -= take
        if remaining <= 0:
            return cost / quantity
    return None


# ============================================================
# ORDERS
# ============================================================

@dataclass
class OrderRequest:
    """Request to place an order."""

    symbol: str
    """Canonical symbol."""

    side: OrderSide
    order_type: OrderType
    quantity: Decimal

    price: Optional[Decimal] = None
    """Limit price (required for LIMIT)."""

    client_order_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    """Client order ID for idempotency."""

    def __post_init__(self):
        if self.quantity <= 0:
            raise ValueError(f"Order quantity must be positive, got {self.quantity}")
        if self.order_type == OrderType.LIMIT and (self.price is None or self.price <= 0):
            raise ValueError("Limit orders require a positive price")


@dataclass
class Order:
    """Order as last reported by the exchange."""

    order_id: str
    exchange: str
    symbol: str
    side: OrderSide
    order_type: OrderType
    status: OrderStatus

    client_order_id: Optional[str] = None

    requested_quantity: Decimal = ZERO
    filled_quantity: Decimal = ZERO
    requested_price: Optional[Decimal] = None
    average_price: Optional[Decimal] = None

    fee: Decimal = ZERO
    fee_currency: str = ""

    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    error_message: Optional[str] = None

    @property
    def remaining_quantity(self) -> Decimal:
        return max(self.requested_quantity - self.filled_quantity, ZERO)

    @property
    def filled_value(self) -> Decimal:
        """Quote value of the filled part."""
        return self.filled_quantity * (self.average_price or ZERO)

    @property
    def fill_percentage(self) -> Decimal:
        if self.requested_quantity <= 0:
            return ZERO
        return self.filled_quantity / self.requested_quantity * HUNDRED

    @property
    def is_final(self) -> bool:
        return self.status.is_final


# ============================================================
# BALANCES
# ============================================================

@dataclass(frozen=True)
class AssetBalance:
    """Balance of one asset. total >= available always."""

    asset: str
    available: Decimal = ZERO
    total: Decimal = ZERO

    def __post_init__(self):
        if self.total < self.available:
            raise ValueError(
                f"{self.asset}: total {self.total} is below available {self.available}"
            )

    @property
    def locked(self) -> Decimal:
        return self.total - self.available


@dataclass
class AccountBalance:
    """Balances for all assets on one exchange."""

    exchange: str
    assets: Dict[str, AssetBalance] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=_utcnow)

    def get(self, asset: str) -> AssetBalance:
        """Balance for asset, zero if unknown."""
        return self.assets.get(asset.upper(), AssetBalance(asset=asset.upper()))

    def get_available(self, asset: str) -> Decimal:
        return self.get(asset).available

    def get_total(self, asset: str) -> Decimal:
        return self.get(asset).total

    def has_sufficient_balance(self, asset: str, amount: Decimal) -> bool:
        return self.get_available(asset) >= amount
