"""
Scanner - Arbitrage and Scoring.

============================================================
PURPOSE
============================================================
Pure functions that turn collected exchange prices into a
cross-exchange opportunity and a 0-100 strategy score.

SCORING:
- Each strategy has its own base-score table
- Bonus: market-cap rank 1-10 -> +10, 11-50 -> +5
- Bonus: >= 4 exchange prices -> +5, >= 2 -> +2
- Final score is clamped to [0, 100]

No I/O and no state; safe to call from any task.

============================================================
"""

from decimal import Decimal
from typing import List, Optional, Tuple

from ..types import Ticker
from .models import ExchangePrice, ScanResult, ScanStrategy, ZERO


DEFAULT_NOTIONAL = Decimal("1000")
DEFAULT_ROUND_TRIP_FEE_PERCENT = Decimal("0.2")

MIN_SCORE = Decimal("0")
MAX_SCORE = Decimal("100")

VOLUME_TIERS = (
    (Decimal("500000000"), Decimal("80"), "Very high volume"),
    (Decimal("100000000"), Decimal("60"), "High volume"),
    (Decimal("10000000"), Decimal("40"), "Good volume"),
)


# ============================================================
# PRICES
# ============================================================

def exchange_price_from_ticker(
    exchange: str,
    ticker: Ticker,
    is_live: bool = True,
) -> Optional[ExchangePrice]:
    """ExchangePrice for a usable ticker; None when either side is zero."""
    if ticker.bid_price <= 0 or ticker.ask_price <= 0:
        return None
    return ExchangePrice(
        exchange=exchange,
        bid_price=ticker.bid_price,
        ask_price=ticker.ask_price,
        volume_24h=ticker.volume_24h,
        is_live=is_live,
    )


# ============================================================
# ARBITRAGE
# ============================================================

def compute_best_arbitrage(
    result: ScanResult,
    notional: Decimal = DEFAULT_NOTIONAL,
    fee_percent: Decimal = DEFAULT_ROUND_TRIP_FEE_PERCENT,
) -> bool:
    """
    Fill the best buy/sell legs of a result from its exchange prices.

    Best buy is the lowest ask, best sell the highest bid. The two
    legs must be on different exchanges and at least two prices are
    required. Returns True when the result was filled in.
    """
    prices = result.exchange_prices
    if len(prices) < 2:
        return False

    asks = [p for p in prices if p.ask_price > 0]
    bids = [p for p in prices if p.bid_price > 0]
    if not asks or not bids:
        return False

    best_buy = min(asks, key=lambda p: p.ask_price)
    best_sell = max(bids, key=lambda p: p.bid_price)
    if best_buy.exchange == best_sell.exchange:
        return False

    result.best_buy_exchange = best_buy.exchange
    result.best_buy_price = best_buy.ask_price
    result.best_sell_exchange = best_sell.exchange
    result.best_sell_price = best_sell.bid_price
    result.spread_percent = spread_percent(best_buy.ask_price, best_sell.bid_price)
    result.estimated_profit = estimate_profit(result.spread_percent, notional, fee_percent)
    return True


def spread_percent(buy_ask: Decimal, sell_bid: Decimal) -> Decimal:
    """(bid - ask) / ask in percent. Negative when there is no edge."""
    if buy_ask <= 0:
        return ZERO
    return (sell_bid - buy_ask) / buy_ask * 100


def estimate_profit(
    spread: Decimal,
    notional: Decimal = DEFAULT_NOTIONAL,
    fee_percent: Decimal = DEFAULT_ROUND_TRIP_FEE_PERCENT,
) -> Decimal:
    return notional * (spread - fee_percent) / 100


# ============================================================
# SCORING
# ============================================================

def score_result(result: ScanResult, strategy: ScanStrategy) -> Tuple[Decimal, str]:
    """
    Score a result for one strategy.

    HIGH_VOLATILITY also records the absolute 24h change on the
    result as its volatility.

    Returns:
        (score in [0, 100], comma-separated reasons)
    """
    reasons: List[str] = []
    score = _base_score(result, strategy, reasons)

    rank = result.market_cap_rank
    if 1 <= rank <= 10:
        score += 10
    elif 11 <= rank <= 50:
        score += 5

    price_count = len(result.exchange_prices)
    if price_count >= 4:
        score += 5
    elif price_count >= 2:
        score += 2

    return clamp_score(score), ", ".join(reasons)


def clamp_score(score: Decimal) -> Decimal:
    return max(MIN_SCORE, min(MAX_SCORE, Decimal(score)))


def _base_score(result: ScanResult, strategy: ScanStrategy, reasons: List[str]) -> Decimal:
    change = result.price_change_24h

    if strategy == ScanStrategy.ARBITRAGE_BEST:
        spread = result.spread_percent
        if spread >= Decimal("0.3"):
            reasons.append(f"Spread {spread:.2f}%")
            return min(MAX_SCORE, 50 + spread * 100)
        if spread >= Decimal("0.1"):
            reasons.append(f"Moderate spread {spread:.2f}%")
            return 30 + spread * 100

    elif strategy == ScanStrategy.PRICE_DROP:
        if change <= -10:
            reasons.append(f"Price down {change:.1f}%")
            return min(MAX_SCORE, 50 + abs(change) * 2)
        if change <= -5:
            reasons.append(f"Significant drop {change:.1f}%")
            return 30 + abs(change) * 3

    elif strategy == ScanStrategy.HIGH_VOLATILITY:
        volatility = abs(change)
        result.volatility = volatility
        if volatility >= 15:
            reasons.append(f"High volatility {volatility:.1f}%")
            return min(MAX_SCORE, 50 + volatility * 2)
        if volatility >= 8:
            reasons.append(f"Moderate volatility {volatility:.1f}%")
            return 30 + volatility * 3

    elif strategy == ScanStrategy.VOLUME_SURGE:
        for threshold, tier_score, label in VOLUME_TIERS:
            if result.volume_24h >= threshold:
                reasons.append(f"{label} ${result.volume_24h / 1000000:.0f}M")
                return tier_score

    elif strategy == ScanStrategy.MOMENTUM_UP:
        if change >= 10:
            reasons.append(f"Strong momentum +{change:.1f}%")
            return min(MAX_SCORE, 50 + change * 2)
        if change >= 5:
            reasons.append(f"Good momentum +{change:.1f}%")
            return 30 + change * 3

    elif strategy == ScanStrategy.MOMENTUM_DOWN:
        if change <= -10:
            reasons.append(f"Strong down momentum {change:.1f}%")
            return min(MAX_SCORE, 50 + abs(change) * 2)

    elif strategy == ScanStrategy.TOP_GAINERS:
        if change > 0:
            reasons.append(f"Gainer +{change:.1f}%")
            return min(MAX_SCORE, change * 3)

    elif strategy == ScanStrategy.TOP_LOSERS:
        if change < 0:
            reasons.append(f"Loser {change:.1f}%")
            return min(MAX_SCORE, abs(change) * 3)

    # NEW_LISTINGS has no base score; ranking comes from bonuses only
    return ZERO
