"""
Smart Scanner Tests.

============================================================
PURPOSE
============================================================
Scan cycles against stub exchanges and a stub oracle.

TEST CATEGORIES:
- Candidate selection and filters
- Failure isolation and cooldown
- Snapshot publishing and opportunity listeners
- All-strategy merge
- Coin analysis

============================================================
"""

import asyncio
from decimal import Decimal
from unittest.mock import Mock

import pytest

from arbitrage_engine.config import ScannerConfig
from arbitrage_engine.scanner import (
    CoinGeckoOracle,
    CoinInfo,
    CoinMarketData,
    OracleError,
    POPULAR_SYMBOLS,
    ScanOptions,
    ScanStrategy,
    SmartScanner,
)
from tests.arbitrage_engine.fakes import FakeResponse, FakeSession, StubAdapter, StubFactory, StubOracle


BTC = "BTC/USDT"

# A sells cheap, B buys dear: ~0.4% spread
WIDE = {"A": (100, "100.1"), "B": ("100.5", "100.6"), "C": (100, "100.2")}

# ~0.15% spread
NARROW = {"A": (100, "100.1"), "B": ("100.25", "100.3"), "C": (100, "100.2")}


def btc_coin(**overrides):
    fields = dict(
        id="bitcoin",
        symbol="BTC",
        name="Bitcoin",
        current_price=Decimal("100"),
        market_cap=Decimal("2000000000"),
        market_cap_rank=1,
        total_volume=Decimal("900000000"),
    )
    fields.update(overrides)
    return CoinMarketData(**fields)


@pytest.fixture
def exchanges():
    return {name: StubAdapter(name, {BTC: WIDE[name]}) for name in ("A", "B", "C")}


@pytest.fixture
def oracle():
    return StubOracle([btc_coin()])


@pytest.fixture
def scanner_config():
    return ScannerConfig(enabled_exchanges=["A", "B", "C"], trading_pairs=[])


@pytest.fixture
def scanner(exchanges, oracle, scanner_config, mock_clock):
    return SmartScanner(StubFactory(list(exchanges.values())), oracle, scanner_config, mock_clock)


def btc_only(**overrides):
    return ScanOptions(filter_symbols=["BTC"], **overrides)


# ============================================================
# CANDIDATES AND FILTERS
# ============================================================

class TestCandidates:
    """Tests for candidate selection."""

    @pytest.mark.asyncio
    async def test_arbitrage_scan_finds_legs(self, scanner):
        results = await scanner.scan(ScanStrategy.ARBITRAGE_BEST, btc_only())

        assert len(results) == 1
        top = results[0]
        assert top.symbol == BTC
        assert top.best_buy_exchange == "A"
        assert top.best_sell_exchange == "B"
        assert float(top.spread_percent) == pytest.approx(0.3996, abs=1e-4)
        assert len(top.exchange_prices) == 3
        assert top.market_cap_rank == 1
        assert top.matched_strategy == ScanStrategy.ARBITRAGE_BEST
        assert top.is_recommended

    @pytest.mark.asyncio
    async def test_symbols_are_scanned_once(self, scanner, exchanges):
        await scanner.scan(options=btc_only())
        assert exchanges["A"].calls == [BTC]

    @pytest.mark.asyncio
    async def test_popular_and_configured_symbols_are_candidates(self, exchanges, oracle, mock_clock):
        config = ScannerConfig(enabled_exchanges=["A"], trading_pairs=["BTC/USDT", "ZZZ/USDT"])
        scanner = SmartScanner(StubFactory([exchanges["A"]]), oracle, config, mock_clock)

        await scanner.scan(options=ScanOptions())

        scanned = exchanges["A"].calls
        assert scanned[0] == BTC
        assert len(scanned) == len(set(scanned))
        assert set(scanned) == {f"{base}/USDT" for base in POPULAR_SYMBOLS} | {"ZZZ/USDT"}

    @pytest.mark.asyncio
    async def test_min_spread_filters_arbitrage(self, scanner):
        results = await scanner.scan(options=btc_only(min_spread_percent=0.5))
        assert results == []

    @pytest.mark.asyncio
    async def test_low_volume_coins_dropped_unless_included(self, exchanges, mock_clock, scanner_config):
        exchanges["A"].quotes["XYZ/USDT"] = (1, "1.001")
        exchanges["B"].quotes["XYZ/USDT"] = ("1.01", "1.02")
        thin = CoinMarketData(id="xyz", symbol="XYZ", total_volume=Decimal("5000"))
        scanner = SmartScanner(
            StubFactory(list(exchanges.values())), StubOracle([thin]), scanner_config, mock_clock,
        )

        assert await scanner.scan(options=ScanOptions(filter_symbols=["XYZ"])) == []

        results = await scanner.scan(options=ScanOptions(filter_symbols=["xyz/usdt"], include_low_volume=True))
        assert [r.symbol for r in results] == ["XYZ/USDT"]

    @pytest.mark.asyncio
    async def test_filter_exchanges_limits_queries(self, scanner, exchanges):
        results = await scanner.scan(options=btc_only(filter_exchanges=["a"]))

        assert exchanges["A"].calls == [BTC]
        assert exchanges["B"].calls == []
        # one price is not an arbitrage
        assert results == []

    @pytest.mark.asyncio
    async def test_max_results_truncates(self, exchanges, oracle, mock_clock, scanner_config):
        for name, (bid, ask) in WIDE.items():
            exchanges[name].quotes["ETH/USDT"] = (bid, ask)
        scanner = SmartScanner(StubFactory(list(exchanges.values())), oracle, scanner_config, mock_clock)

        results = await scanner.scan(options=ScanOptions(filter_symbols=["BTC", "ETH"], max_results=1))

        assert [r.symbol for r in results] == [BTC]

    def test_supported_lists(self, scanner):
        assert scanner.get_supported_exchanges() == ["A", "B", "C"]
        assert "BTC" in scanner.get_supported_symbols()

    @pytest.mark.asyncio
    async def test_disabled_exchange_is_not_queried(self, exchanges, oracle, scanner_config, mock_clock):
        exchanges["C"].quotes[BTC] = WIDE["B"]
        factory = StubFactory(list(exchanges.values()), disabled=["B"])
        scanner = SmartScanner(factory, oracle, scanner_config, mock_clock)

        results = await scanner.scan(options=btc_only())

        assert scanner.get_supported_exchanges() == ["A", "C"]
        assert exchanges["B"].calls == []
        assert results[0].best_sell_exchange == "C"
        assert {p.exchange for p in results[0].exchange_prices} == {"A", "C"}


# ============================================================
# FAILURE ISOLATION
# ============================================================

class TestFailureIsolation:
    """One exchange failing never fails the cycle."""

    @pytest.mark.asyncio
    async def test_failing_exchange_is_skipped(self, scanner, exchanges):
        exchanges["C"].error = ConnectionError("down")

        results = await scanner.scan(options=btc_only())

        assert len(results) == 1
        assert {p.exchange for p in results[0].exchange_prices} == {"A", "B"}

    @pytest.mark.asyncio
    async def test_failed_exchange_cools_down(self, scanner, exchanges, mock_clock):
        exchanges["C"].error = ConnectionError("down")
        await scanner.scan(options=btc_only())
        exchanges["C"].error = None

        mock_clock.advance(30)
        results = await scanner.scan(options=btc_only())
        assert exchanges["C"].calls == [BTC]
        assert len(results[0].exchange_prices) == 2

        mock_clock.advance(31)
        results = await scanner.scan(options=btc_only())
        assert exchanges["C"].calls == [BTC, BTC]
        assert len(results[0].exchange_prices) == 3

    @pytest.mark.asyncio
    async def test_unknown_exchange_counts_as_failure(self, exchanges, oracle, mock_clock):
        config = ScannerConfig(enabled_exchanges=["A", "B", "Nope"], trading_pairs=[])
        scanner = SmartScanner(StubFactory(list(exchanges.values())), oracle, config, mock_clock)

        results = await scanner.scan(options=btc_only())

        assert len(results) == 1
        assert "Nope" not in {p.exchange for p in results[0].exchange_prices}

    @pytest.mark.asyncio
    async def test_oracle_failure_degrades_to_static_list(self, scanner, oracle):
        oracle.error = OracleError("rate limited", status=429)

        results = await scanner.scan(options=btc_only())

        assert len(results) == 1
        assert results[0].market_cap_rank == 0
        assert results[0].has_arbitrage

    @pytest.mark.asyncio
    async def test_malformed_market_data_degrades_to_static_list(self, exchanges, scanner_config, mock_clock):
        session = FakeSession({"/api/v3/coins/markets": FakeResponse(200, "<html>oops")})
        oracle = CoinGeckoOracle("https://api.test/api/v3", session=session)
        scanner = SmartScanner(StubFactory(list(exchanges.values())), oracle, scanner_config, mock_clock)

        results = await scanner.scan(options=btc_only())

        assert [r.symbol for r in results] == [BTC]
        assert results[0].market_cap_rank == 0
        assert len(session.calls_to("/api/v3/coins/markets")) == 1


# ============================================================
# SNAPSHOT AND LISTENERS
# ============================================================

class TestSnapshot:
    """Tests for the published snapshot."""

    @pytest.mark.asyncio
    async def test_best_opportunity(self, scanner):
        assert scanner.get_best_opportunity() is None

        results = await scanner.scan(options=btc_only())

        assert scanner.get_best_opportunity() is results[0]
        assert scanner.last_results == results

    @pytest.mark.asyncio
    async def test_empty_scan_replaces_snapshot(self, scanner):
        await scanner.scan(options=btc_only())

        await scanner.scan(options=btc_only(min_spread_percent=5))

        assert scanner.last_results == []
        assert scanner.get_best_opportunity() is None

    @pytest.mark.asyncio
    async def test_last_results_is_a_copy(self, scanner):
        await scanner.scan(options=btc_only())

        scanner.last_results.clear()

        assert len(scanner.last_results) == 1

    @pytest.mark.asyncio
    async def test_cancelled_scan_publishes_nothing(self, scanner, exchanges):
        first = await scanner.scan(options=btc_only())

        exchanges["A"].gate = asyncio.Event()
        exchanges["A"].entered = asyncio.Event()
        task = asyncio.create_task(scanner.scan(options=btc_only(min_spread_percent=5)))
        await exchanges["A"].entered.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert scanner.last_results == first


class TestOpportunityListeners:
    """Tests for opportunity-found notification."""

    @pytest.mark.asyncio
    async def test_listener_called_at_threshold(self, scanner):
        listener = Mock()
        scanner.on_opportunity_found(listener)

        results = await scanner.scan(options=btc_only())

        assert results[0].score >= 70
        listener.assert_called_once_with(results[0])

    @pytest.mark.asyncio
    async def test_listener_not_called_below_threshold(self, exchanges, mock_clock, scanner_config):
        for name, quote in NARROW.items():
            exchanges[name].quotes[BTC] = quote
        scanner = SmartScanner(
            StubFactory(list(exchanges.values())), StubOracle(), scanner_config, mock_clock,
        )
        listener = Mock()
        scanner.on_opportunity_found(listener)

        results = await scanner.scan(options=btc_only())

        assert 0 < results[0].score < 70
        listener.assert_not_called()

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_stop_others(self, scanner):
        broken = Mock(side_effect=RuntimeError("listener bug"))
        healthy = Mock()
        scanner.on_opportunity_found(broken)
        scanner.on_opportunity_found(healthy)

        results = await scanner.scan(options=btc_only())

        broken.assert_called_once()
        healthy.assert_called_once_with(results[0])
        assert scanner.get_best_opportunity() is results[0]

    def test_register_returns_listener(self, scanner):
        def listener(result):
            pass

        assert scanner.on_opportunity_found(listener) is listener


# ============================================================
# ALL STRATEGIES
# ============================================================

class TestAllStrategies:
    """Tests for the merged all-strategy scan."""

    @pytest.mark.asyncio
    async def test_best_strategy_per_symbol(self, exchanges, mock_clock, scanner_config):
        for name, quote in NARROW.items():
            exchanges[name].quotes[BTC] = quote
        oracle = StubOracle([btc_coin(price_change_percentage_24h=Decimal("20"))])
        scanner = SmartScanner(StubFactory(list(exchanges.values())), oracle, scanner_config, mock_clock)

        results = await scanner.scan_all_strategies(btc_only())

        assert len(results) == 1
        assert results[0].score == Decimal("100")
        assert results[0].matched_strategy == ScanStrategy.HIGH_VOLATILITY
        assert results[0].volatility == Decimal("20")

    @pytest.mark.asyncio
    async def test_prices_collected_once(self, scanner, exchanges):
        await scanner.scan_all_strategies(btc_only())
        assert exchanges["B"].calls == [BTC]

    @pytest.mark.asyncio
    async def test_top_three_recommended(self, exchanges, mock_clock, scanner_config):
        bases = ["BTC", "ETH", "SOL", "XRP"]
        coins = []
        for rank, base in enumerate(bases, start=1):
            coins.append(btc_coin(id=base.lower(), symbol=base, market_cap_rank=rank,
                                  price_change_percentage_24h=Decimal(-5 * rank)))
        scanner = SmartScanner(StubFactory(list(exchanges.values())), StubOracle(coins), scanner_config, mock_clock)

        results = await scanner.scan_all_strategies(ScanOptions(filter_symbols=bases))

        assert len(results) == 4
        assert [r.is_recommended for r in results] == [True, True, True, False]
        assert results == sorted(results, key=lambda r: r.score, reverse=True)
        assert scanner.last_results == results


# ============================================================
# COIN ANALYSIS
# ============================================================

class TestAnalyzeCoin:
    """Tests for single-coin analysis."""

    @pytest.mark.asyncio
    async def test_analysis(self, scanner, oracle):
        oracle.info = CoinInfo(
            id="btc", symbol="BTC", name="Bitcoin", image="https://img/btc.png",
            current_price=Decimal("100.3"), market_cap_rank=1,
        )

        result = await scanner.analyze_coin("btc/usdt")

        assert oracle.info_requests == ["btc"]
        assert result.symbol == BTC
        assert result.current_price == Decimal("100.3")
        assert result.image_url == "https://img/btc.png"
        assert result.best_buy_exchange == "A"
        assert result.best_sell_exchange == "B"
        assert result.score > 0

    @pytest.mark.asyncio
    async def test_unknown_coin(self, scanner, oracle):
        oracle.info = None
        assert await scanner.analyze_coin("NOPE") is None

    @pytest.mark.asyncio
    async def test_oracle_error(self, scanner, oracle):
        oracle.error = OracleError("HTTP 500", status=500)
        assert await scanner.analyze_coin("BTC") is None
