"""
Scanner - Smart Scanner Service.

============================================================
PURPOSE
============================================================
Cross-exchange opportunity engine.

SCAN CYCLE:
1. Build the candidate set: oracle top coins, the static popular
   list and the configured trading pairs
2. Apply symbol and volume filters
3. Per candidate, fetch one ticker per exchange concurrently
4. Best buy = lowest ask, best sell = highest bid (different
   exchanges, at least two prices)
5. Score by strategy, keep score > 0, sort, truncate, flag top 3
6. Replace the published snapshot; notify listeners when the top
   score reaches the alert threshold

============================================================
DESIGN PRINCIPLES
============================================================
- One failing exchange never fails its siblings or the cycle
- A failing exchange is skipped for a cooldown window
- The published snapshot is immutable and replaced wholesale
- A cancelled cycle publishes nothing

============================================================
"""

import asyncio
import logging
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Tuple

from ..clock import ClockProtocol, get_clock
from ..config import ScannerConfig
from ..adapters.factory import AdapterFactory
from .models import CoinMarketData, ExchangePrice, ScanOptions, ScanResult, ScanStrategy
from .oracle import CoinGeckoOracle, OracleError
from .scoring import compute_best_arbitrage, exchange_price_from_ticker, score_result


logger = logging.getLogger(__name__)


POPULAR_SYMBOLS = [
    "BTC", "ETH", "SOL", "XRP", "DOGE", "ADA", "AVAX", "DOT", "LINK", "MATIC",
    "SHIB", "LTC", "TRX", "UNI", "ATOM", "XLM", "NEAR", "APT", "ARB", "OP",
    "AAVE", "TON", "INJ", "FIL", "ICP", "VET", "HBAR", "SUI", "SEI", "PEPE",
    "WIF", "BONK", "FLOKI", "FTM", "SAND", "MANA", "AXS", "GRT", "RUNE", "LDO",
    "MKR", "SNX", "CRV", "1INCH", "ENS", "BLUR", "STX", "IMX", "RENDER", "FET",
]

RECOMMENDED_COUNT = 3

OpportunityListener = Callable[[ScanResult], None]


class SmartScanner:
    """
    Aggregator over every enabled exchange.

    Usage:
        scanner = SmartScanner(factory, CoinGeckoOracle(), config.scanner)
        results = await scanner.scan(ScanStrategy.ARBITRAGE_BEST)
        best = scanner.get_best_opportunity()
    """

    def __init__(
        self,
        factory: AdapterFactory,
        oracle: Optional[CoinGeckoOracle] = None,
        config: Optional[ScannerConfig] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        """
        Initialize scanner.

        Args:
            factory: Source of exchange adapters
            oracle: Market-cap oracle (CoinGecko client by default)
            config: Scanner settings
            clock: Clock for failure cooldowns
        """
        self._factory = factory
        self._config = config or ScannerConfig()
        self._oracle = oracle or CoinGeckoOracle(self._config.oracle_base_url)
        self._clock = clock or get_clock()

        self._last_results: Tuple[ScanResult, ...] = ()
        self._exchange_errors: Dict[str, datetime] = {}
        self._listeners: List[OpportunityListener] = []

    @property
    def config(self) -> ScannerConfig:
        return self._config

    @property
    def last_results(self) -> List[ScanResult]:
        return list(self._last_results)

    # =========================================================
    # QUERY SURFACE
    # =========================================================

    def get_supported_exchanges(self) -> List[str]:
        """Enabled exchanges whose config has not switched them off."""
        return [name for name in self._config.enabled_exchanges if self._is_enabled(name)]

    def get_supported_symbols(self) -> List[str]:
        return list(POPULAR_SYMBOLS)

    def get_best_opportunity(self) -> Optional[ScanResult]:
        """Top result of the last completed scan."""
        snapshot = self._last_results
        return snapshot[0] if snapshot else None

    def on_opportunity_found(self, listener: OpportunityListener) -> OpportunityListener:
        """Register a listener for high-score opportunities."""
        self._listeners.append(listener)
        return listener

    async def scan(
        self,
        strategy: ScanStrategy = ScanStrategy.ARBITRAGE_BEST,
        options: Optional[ScanOptions] = None,
    ) -> List[ScanResult]:
        """
        Run one scan cycle for a single strategy.

        Returns:
            Results ranked by score, highest first
        """
        options = options or ScanOptions()
        logger.info(f"Starting scan with strategy: {strategy.value}")

        candidates = await self._collect(options)
        results = self._rank(candidates, strategy, options)
        self._publish(results)

        logger.info(f"Scan complete: {len(results)} results found")
        return results

    async def scan_all_strategies(self, options: Optional[ScanOptions] = None) -> List[ScanResult]:
        """
        Score every strategy against one price collection.

        Duplicate symbols keep their highest-scoring strategy.
        """
        options = options or ScanOptions()
        logger.info("Starting scan across all strategies")

        candidates = await self._collect(options)
        best: Dict[str, ScanResult] = {}
        for strategy in ScanStrategy:
            for result in self._rank(candidates, strategy, options):
                current = best.get(result.symbol)
                if current is None or result.score > current.score:
                    best[result.symbol] = result

        merged = sorted(best.values(), key=lambda r: r.score, reverse=True)[:options.max_results]
        for index, result in enumerate(merged):
            result.is_recommended = index < RECOMMENDED_COUNT
        self._publish(merged)

        logger.info(f"All-strategy scan complete: {len(merged)} results found")
        return merged

    async def analyze_coin(self, symbol: str) -> Optional[ScanResult]:
        """Arbitrage view of one coin across every enabled exchange."""
        base = symbol.strip().upper().split("/")[0]
        coin_id = self._oracle.get_coin_id(base)
        try:
            info = await self._oracle.get_coin_info(coin_id)
        except OracleError as e:
            logger.error(f"Error analyzing {base}: {e}")
            return None

        if info is None:
            logger.warning(f"No market data for {base} ({coin_id})")
            return None

        result = ScanResult(
            symbol=f"{base}/USDT",
            base_asset=base,
            current_price=info.current_price,
            market_cap_rank=info.market_cap_rank,
            image_url=info.image,
        )
        await self._collect_prices(result, self.get_supported_exchanges())
        result.score, result.score_reason = score_result(result, ScanStrategy.ARBITRAGE_BEST)
        return result

    # =========================================================
    # COLLECTION
    # =========================================================

    async def _collect(self, options: ScanOptions) -> List[ScanResult]:
        """Candidates with exchange prices and arbitrage legs filled in."""
        exchanges = self._exchanges_to_scan(options)
        candidates = await self._candidates(options)
        logger.debug(f"Scanning {len(candidates)} symbols on {len(exchanges)} exchanges")

        for candidate in candidates:
            await self._collect_prices(candidate, exchanges)
        return candidates

    async def _candidates(self, options: ScanOptions) -> List[ScanResult]:
        try:
            coins = await self._oracle.get_top_coins(self._config.top_coins)
        except OracleError as e:
            logger.warning(f"Market data unavailable, scanning static symbol list: {e}")
            coins = []

        wanted = set(options.filter_symbols)
        seen = set()
        candidates = []

        for coin in coins:
            if coin.symbol in seen or (wanted and coin.symbol not in wanted):
                continue
            if not options.include_low_volume and coin.total_volume < Decimal(str(options.min_volume_24h)):
                continue
            seen.add(coin.symbol)
            candidates.append(self._from_market_data(coin))

        extra = POPULAR_SYMBOLS + [pair.upper().split("/")[0] for pair in self._config.trading_pairs]
        for base in extra:
            if base in seen or (wanted and base not in wanted):
                continue
            seen.add(base)
            candidates.append(ScanResult(symbol=f"{base}/USDT", base_asset=base))

        return candidates

    @staticmethod
    def _from_market_data(coin: CoinMarketData) -> ScanResult:
        return ScanResult(
            symbol=f"{coin.symbol}/USDT",
            base_asset=coin.symbol,
            current_price=coin.current_price,
            price_change_24h=coin.price_change_percentage_24h,
            volume_24h=coin.total_volume,
            market_cap=coin.market_cap,
            market_cap_rank=coin.market_cap_rank,
            image_url=coin.image,
        )

    def _is_enabled(self, exchange: str) -> bool:
        try:
            return self._factory.is_enabled(exchange)
        except ValueError:
            # unknown names fail in create() and enter cooldown
            return True

    def _exchanges_to_scan(self, options: ScanOptions) -> List[str]:
        enabled = self.get_supported_exchanges()
        if not options.filter_exchanges:
            return list(enabled)
        wanted = {name.lower() for name in options.filter_exchanges}
        return [name for name in enabled if name.lower() in wanted]

    async def _collect_prices(self, result: ScanResult, exchanges: List[str]) -> None:
        prices = await asyncio.gather(
            *(self._fetch_price(exchange, result.symbol) for exchange in exchanges)
        )
        result.exchange_prices = [price for price in prices if price is not None]
        compute_best_arbitrage(
            result,
            notional=self._config.notional,
            fee_percent=self._config.round_trip_fee_percent,
        )

    def _in_cooldown(self, exchange: str) -> bool:
        failed_at = self._exchange_errors.get(exchange)
        if failed_at is None:
            return False
        return self._clock.seconds_since(failed_at) < self._config.failure_cooldown_seconds

    async def _fetch_price(self, exchange: str, symbol: str) -> Optional[ExchangePrice]:
        if self._in_cooldown(exchange):
            return None

        try:
            adapter = self._factory.create(exchange)
            ticker = await adapter.get_ticker(symbol)
        except Exception as e:
            logger.warning(f"Failed to fetch price from {exchange} for {symbol}: {e}")
            self._exchange_errors[exchange] = self._clock.now()
            return None

        return exchange_price_from_ticker(exchange, ticker, is_live=adapter.is_live)

    # =========================================================
    # RANKING / PUBLISHING
    # =========================================================

    def _rank(
        self,
        candidates: List[ScanResult],
        strategy: ScanStrategy,
        options: ScanOptions,
    ) -> List[ScanResult]:
        """Score copies of the candidates for one strategy."""
        min_spread = Decimal(str(options.min_spread_percent))
        ranked = []
        for candidate in candidates:
            if strategy == ScanStrategy.ARBITRAGE_BEST and candidate.spread_percent < min_spread:
                continue
            result = replace(
                candidate,
                matched_strategy=strategy,
                exchange_prices=list(candidate.exchange_prices),
            )
            result.score, result.score_reason = score_result(result, strategy)
            if result.score > 0:
                ranked.append(result)

        ranked.sort(key=lambda r: r.score, reverse=True)
        ranked = ranked[:options.max_results]
        for result in ranked[:RECOMMENDED_COUNT]:
            result.is_recommended = True
        return ranked

    def _publish(self, results: List[ScanResult]) -> None:
        self._last_results = tuple(results)
        if results and results[0].score >= self._config.alert_threshold:
            top = results[0]
            logger.info(f"Opportunity found: {top.symbol} score {top.score:.1f} ({top.score_reason})")
            for listener in list(self._listeners):
                try:
                    listener(top)
                except Exception as e:
                    logger.error(f"Opportunity listener failed: {e}", exc_info=True)
