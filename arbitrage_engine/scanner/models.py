"""
Scanner - Data Models.

============================================================
PURPOSE
============================================================
Types flowing through one scan cycle.

- ScanStrategy: which scoring table ranks the candidates
- ScanOptions: per-call filters (validated with pydantic)
- ExchangePrice: one exchange's quote for one symbol
- ScanResult: one ranked candidate
- CoinMarketData / CoinInfo: oracle rows

============================================================
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import List

from pydantic import BaseModel, Field, field_validator


ZERO = Decimal("0")
QUOTE_ASSET = "USDT"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================
# ENUMS
# =============================================================

class ScanStrategy(str, Enum):
    ARBITRAGE_BEST = "arbitrage_best"
    PRICE_DROP = "price_drop"
    HIGH_VOLATILITY = "high_volatility"
    VOLUME_SURGE = "volume_surge"
    MOMENTUM_UP = "momentum_up"
    MOMENTUM_DOWN = "momentum_down"
    NEW_LISTINGS = "new_listings"
    TOP_GAINERS = "top_gainers"
    TOP_LOSERS = "top_losers"


# =============================================================
# OPTIONS
# =============================================================

class ScanOptions(BaseModel):
    """Filters for one scan call."""
    min_spread_percent: float = Field(default=0.1, ge=0)
    min_volume_24h: float = Field(default=100000, ge=0)
    max_results: int = Field(default=50, ge=1)

    filter_symbols: List[str] = Field(default_factory=list)
    """Base assets to keep (e.g. ["BTC", "ETH"]). Empty keeps all."""

    filter_exchanges: List[str] = Field(default_factory=list)
    """Exchange display names to query. Empty queries all enabled."""

    include_low_volume: bool = False

    @field_validator("filter_symbols")
    @classmethod
    def _normalize_symbols(cls, value: List[str]) -> List[str]:
        symbols = []
        for item in value:
            base = item.strip().upper().split("/")[0]
            if base:
                symbols.append(base)
        return symbols

    @field_validator("filter_exchanges")
    @classmethod
    def _strip_exchanges(cls, value: List[str]) -> List[str]:
        return [item.strip() for item in value if item.strip()]


# =============================================================
# PRICES / RESULTS
# =============================================================

@dataclass(frozen=True)
class ExchangePrice:
    """Top of book for one symbol on one exchange."""

    exchange: str
    bid_price: Decimal
    ask_price: Decimal
    volume_24h: Decimal = ZERO
    update_time: datetime = field(default_factory=_utcnow)

    is_live: bool = True
    """False when the quote came from a simulated or placeholder source."""

    @property
    def spread(self) -> Decimal:
        """(ask - bid) / ask in percent."""
        if self.ask_price <= 0:
            return ZERO
        return (self.ask_price - self.bid_price) / self.ask_price * 100


@dataclass
class ScanResult:
    """One scored candidate."""

    symbol: str
    base_asset: str
    quote_asset: str = QUOTE_ASSET

    # Market data (oracle)
    current_price: Decimal = ZERO
    price_change_24h: Decimal = ZERO
    volume_24h: Decimal = ZERO
    volatility: Decimal = ZERO
    market_cap: Decimal = ZERO
    market_cap_rank: int = 0
    image_url: str = ""

    # Arbitrage
    best_buy_price: Decimal = ZERO
    best_sell_price: Decimal = ZERO
    best_buy_exchange: str = ""
    best_sell_exchange: str = ""
    spread_percent: Decimal = ZERO
    estimated_profit: Decimal = ZERO

    # Ranking
    score: Decimal = ZERO
    score_reason: str = ""
    matched_strategy: ScanStrategy = ScanStrategy.ARBITRAGE_BEST
    is_recommended: bool = False

    exchange_prices: List[ExchangePrice] = field(default_factory=list)
    scan_time: datetime = field(default_factory=_utcnow)

    @property
    def has_arbitrage(self) -> bool:
        return bool(self.best_buy_exchange) and bool(self.best_sell_exchange)


# =============================================================
# ORACLE ROWS
# =============================================================

@dataclass(frozen=True)
class CoinMarketData:
    """One row of the market-cap ranking."""

    id: str
    symbol: str
    name: str = ""
    image: str = ""
    current_price: Decimal = ZERO
    market_cap: Decimal = ZERO
    market_cap_rank: int = 0
    price_change_percentage_24h: Decimal = ZERO
    total_volume: Decimal = ZERO


@dataclass(frozen=True)
class CoinInfo:
    """Single-coin detail used by coin analysis."""

    id: str
    symbol: str
    name: str = ""
    image: str = ""
    current_price: Decimal = ZERO
    market_cap_rank: int = 0
