"""
Scoring Tests.

============================================================
PURPOSE
============================================================
Arbitrage legs, spread and profit arithmetic and the per-strategy
score tables.

============================================================
"""

from decimal import Decimal

import pytest

from arbitrage_engine.scanner import (
    ExchangePrice,
    ScanResult,
    ScanStrategy,
    compute_best_arbitrage,
    exchange_price_from_ticker,
    score_result,
)
from arbitrage_engine.scanner.scoring import clamp_score, estimate_profit, spread_percent
from arbitrage_engine.types import Ticker


def price(exchange, bid, ask):
    return ExchangePrice(exchange=exchange, bid_price=Decimal(bid), ask_price=Decimal(ask))


def result_with(*prices, **fields):
    result = ScanResult(symbol="BTC/USDT", base_asset="BTC", **fields)
    result.exchange_prices = list(prices)
    return result


# ============================================================
# ARBITRAGE
# ============================================================

class TestBestArbitrage:
    """Tests for best buy/sell leg selection."""

    def test_lowest_ask_and_highest_bid(self):
        result = result_with(
            price("Binance", "42000", "42010"),
            price("OKX", "42020", "42030"),
            price("KuCoin", "41990", "42015"),
        )

        assert compute_best_arbitrage(result) is True

        assert result.best_buy_exchange == "Binance"
        assert result.best_buy_price == Decimal("42010")
        assert result.best_sell_exchange == "OKX"
        assert result.best_sell_price == Decimal("42020")
        assert result.has_arbitrage

    def test_spread_and_profit(self):
        result = result_with(price("Binance", "42000", "42010"), price("OKX", "42020", "42030"))

        compute_best_arbitrage(result)

        assert float(result.spread_percent) == pytest.approx(0.0238, abs=1e-4)
        # 1000 * (0.0238 - 0.2) / 100
        assert float(result.estimated_profit) == pytest.approx(-1.762, abs=1e-3)

    def test_custom_notional_and_fee(self):
        result = result_with(price("A", "100", "100"), price("B", "101", "102"))

        compute_best_arbitrage(result, notional=Decimal("500"), fee_percent=Decimal("0"))

        assert result.spread_percent == Decimal("1")
        assert result.estimated_profit == Decimal("5")

    def test_single_price_is_not_enough(self):
        result = result_with(price("Binance", "42000", "42010"))

        assert compute_best_arbitrage(result) is False
        assert not result.has_arbitrage

    def test_same_exchange_on_both_legs(self):
        result = result_with(price("Binance", "42050", "42000"), price("OKX", "41000", "43000"))

        assert compute_best_arbitrage(result) is False
        assert result.spread_percent == 0

    def test_negative_spread_is_kept(self):
        result = result_with(price("A", "98", "101"), price("B", "99", "102"))

        assert compute_best_arbitrage(result) is True
        assert result.best_buy_exchange == "A"
        assert result.best_sell_exchange == "B"
        assert result.spread_percent < 0


class TestPriceHelpers:
    """Tests for spread, profit and ticker conversion."""

    def test_spread_percent_zero_ask(self):
        assert spread_percent(Decimal("0"), Decimal("10")) == 0

    def test_estimate_profit_defaults(self):
        assert estimate_profit(Decimal("0.5")) == Decimal("3")

    def test_exchange_price_from_ticker(self):
        ticker = Ticker(
            symbol="BTC/USDT",
            exchange="Binance",
            bid_price=Decimal("42000"),
            ask_price=Decimal("42010"),
            volume_24h=Decimal("12.5"),
        )

        converted = exchange_price_from_ticker("Binance", ticker, is_live=False)

        assert converted.ask_price == Decimal("42010")
        assert converted.volume_24h == Decimal("12.5")
        assert converted.is_live is False
        assert float(converted.spread) == pytest.approx(0.0238, abs=1e-4)

    def test_zero_side_ticker_is_dropped(self):
        ticker = Ticker(symbol="BTC/USDT", exchange="Bitkub", bid_price=Decimal("0"), ask_price=Decimal("1"))
        assert exchange_price_from_ticker("Bitkub", ticker) is None


# ============================================================
# SCORING
# ============================================================

class TestStrategyScores:
    """Base score tables, without bonuses."""

    @pytest.mark.parametrize("spread,expected", [
        ("0.4", Decimal("90")),
        ("0.3", Decimal("80")),
        ("0.2", Decimal("50")),
        ("0.05", Decimal("0")),
        ("1.0", Decimal("100")),
    ])
    def test_arbitrage_best(self, spread, expected):
        result = result_with(spread_percent=Decimal(spread))

        score, _ = score_result(result, ScanStrategy.ARBITRAGE_BEST)

        assert score == expected

    @pytest.mark.parametrize("strategy,change,expected", [
        (ScanStrategy.PRICE_DROP, "-12", Decimal("74")),
        (ScanStrategy.PRICE_DROP, "-6", Decimal("48")),
        (ScanStrategy.PRICE_DROP, "-2", Decimal("0")),
        (ScanStrategy.MOMENTUM_UP, "12", Decimal("74")),
        (ScanStrategy.MOMENTUM_UP, "6", Decimal("48")),
        (ScanStrategy.MOMENTUM_DOWN, "-20", Decimal("90")),
        (ScanStrategy.MOMENTUM_DOWN, "-6", Decimal("0")),
        (ScanStrategy.TOP_GAINERS, "5", Decimal("15")),
        (ScanStrategy.TOP_GAINERS, "-5", Decimal("0")),
        (ScanStrategy.TOP_LOSERS, "-5", Decimal("15")),
        (ScanStrategy.TOP_LOSERS, "50", Decimal("0")),
    ])
    def test_change_based_strategies(self, strategy, change, expected):
        result = result_with(price_change_24h=Decimal(change))

        score, _ = score_result(result, strategy)

        assert score == expected

    def test_high_volatility_records_volatility(self):
        result = result_with(price_change_24h=Decimal("-20"))

        score, reason = score_result(result, ScanStrategy.HIGH_VOLATILITY)

        assert score == Decimal("90")
        assert result.volatility == Decimal("20")
        assert reason == "High volatility 20.0%"

    @pytest.mark.parametrize("volume,expected", [
        ("600000000", Decimal("80")),
        ("200000000", Decimal("60")),
        ("20000000", Decimal("40")),
        ("5000000", Decimal("0")),
    ])
    def test_volume_surge(self, volume, expected):
        result = result_with(volume_24h=Decimal(volume))

        score, _ = score_result(result, ScanStrategy.VOLUME_SURGE)

        assert score == expected

    def test_new_listings_has_no_base_score(self):
        result = result_with(price_change_24h=Decimal("30"), volume_24h=Decimal("1e9"))

        score, reason = score_result(result, ScanStrategy.NEW_LISTINGS)

        assert score == 0
        assert reason == ""


class TestScoreBonuses:
    """Rank and coverage bonuses, and clamping."""

    def test_top_ten_rank_and_wide_coverage(self):
        prices = [price(name, "1", "1") for name in ("A", "B", "C", "D")]
        result = result_with(*prices, spread_percent=Decimal("0.2"), market_cap_rank=5)

        score, _ = score_result(result, ScanStrategy.ARBITRAGE_BEST)

        assert score == Decimal("65")

    def test_top_fifty_rank_and_two_prices(self):
        result = result_with(
            price("A", "1", "1"), price("B", "1", "1"),
            spread_percent=Decimal("0.2"), market_cap_rank=30,
        )

        score, _ = score_result(result, ScanStrategy.ARBITRAGE_BEST)

        assert score == Decimal("57")

    def test_unranked_gets_no_rank_bonus(self):
        result = result_with(spread_percent=Decimal("0.2"), market_cap_rank=0)
        assert score_result(result, ScanStrategy.ARBITRAGE_BEST)[0] == Decimal("50")

    def test_bonuses_apply_without_base_score(self):
        result = result_with(market_cap_rank=1)
        assert score_result(result, ScanStrategy.NEW_LISTINGS)[0] == Decimal("10")

    def test_score_is_clamped(self):
        prices = [price(name, "1", "1") for name in ("A", "B", "C", "D")]
        result = result_with(*prices, spread_percent=Decimal("2"), market_cap_rank=1)

        score, reason = score_result(result, ScanStrategy.ARBITRAGE_BEST)

        assert score == Decimal("100")
        assert reason == "Spread 2.00%"

    @pytest.mark.parametrize("raw,expected", [
        (Decimal("-5"), Decimal("0")),
        (Decimal("42.5"), Decimal("42.5")),
        (Decimal("130"), Decimal("100")),
        (7, Decimal("7")),
    ])
    def test_clamp_score(self, raw, expected):
        assert clamp_score(raw) == expected


class TestScoreBounds:
    """Every strategy stays in [0, 100] for extreme inputs."""

    @pytest.mark.parametrize("strategy", list(ScanStrategy))
    @pytest.mark.parametrize("change,spread", [
        ("1000", "50"),
        ("-1000", "-50"),
        ("12.5", "0.35"),
        ("0", "0"),
    ])
    @pytest.mark.parametrize("rank,exchanges", [(1, 4), (30, 2), (0, 0)])
    def test_score_within_bounds(self, strategy, change, spread, rank, exchanges):
        prices = [price(f"X{i}", "1", "1") for i in range(exchanges)]
        result = result_with(
            *prices,
            price_change_24h=Decimal(change),
            spread_percent=Decimal(spread),
            volume_24h=Decimal("1e12"),
            market_cap_rank=rank,
        )

        score, _ = score_result(result, strategy)

        assert Decimal("0") <= score <= Decimal("100")

    @pytest.mark.parametrize("change", ["1000", "-1000", "0"])
    @pytest.mark.parametrize("rank,exchanges,expected", [
        (1, 4, Decimal("15")),
        (30, 2, Decimal("7")),
        (0, 0, Decimal("0")),
    ])
    def test_new_listings_scores_only_bonuses(self, change, rank, exchanges, expected):
        prices = [price(f"X{i}", "1", "1") for i in range(exchanges)]
        result = result_with(
            *prices,
            price_change_24h=Decimal(change),
            spread_percent=Decimal("50"),
            volume_24h=Decimal("1e12"),
            market_cap_rank=rank,
        )

        score, reason = score_result(result, ScanStrategy.NEW_LISTINGS)

        assert score == expected
        assert reason == ""
