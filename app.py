#!/usr/bin/env python3
"""
Arbitrage Scanner - Main Application Entry Point.

============================================================
SINGLE ENTRYPOINT
============================================================
Command-line front end for the smart scanner.

- Runs one scan, or polls at the configured interval
- Scans one strategy or all strategies
- Analyzes a single coin across every enabled exchange
- Simulation by default; --live talks to real exchanges

============================================================
USAGE
============================================================
One arbitrage scan:
    python app.py --once

Poll every strategy, Binance and OKX only:
    python app.py --all-strategies --exchanges Binance,OKX

Single coin:
    python app.py --analyze SOL

Environment-based configuration (.env supported):
    AUTOTRADEX_LIVE_TRADING=true python app.py --once

Exit codes: 0 success, 1 error, 130 interrupted.

============================================================
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from pydantic import ValidationError

from arbitrage_engine.adapters.factory import AdapterFactory
from arbitrage_engine.config import AppConfig
from arbitrage_engine.scanner import (
    CoinGeckoOracle,
    ScanOptions,
    ScanResult,
    ScanScheduler,
    ScanStrategy,
    SmartScanner,
)


logger = logging.getLogger(__name__)


# ============================================================
# CLI ARGUMENT PARSER
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="arbitrage-scanner",
        description="Multi-exchange crypto arbitrage scanner",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Strategies:
  arbitrage_best   - Widest cross-exchange spread
  price_drop       - Largest 24h drops
  high_volatility  - Largest absolute 24h moves
  volume_surge     - Highest 24h volume
  momentum_up      - Strong upward moves
  momentum_down    - Strong downward moves
  new_listings     - Rank and liquidity bonuses only
  top_gainers      - Best 24h performers
  top_losers       - Worst 24h performers

Examples:
  %(prog)s --once
  %(prog)s --strategy momentum_up --max-results 10
  %(prog)s --analyze BTC --live
        """
    )

    # --------------------------------------------------------
    # Scan Options
    # --------------------------------------------------------
    scan_group = parser.add_argument_group("Scan Options")

    scan_group.add_argument(
        "--strategy", "-s",
        type=str,
        choices=[s.value for s in ScanStrategy],
        default=ScanStrategy.ARBITRAGE_BEST.value,
        help="Scoring strategy (default: arbitrage_best)",
    )

    scan_group.add_argument(
        "--all-strategies",
        action="store_true",
        help="Score every strategy and keep the best per symbol",
    )

    scan_group.add_argument(
        "--analyze",
        type=str,
        metavar="SYMBOL",
        help="Analyze one coin (e.g. BTC) and exit",
    )

    scan_group.add_argument(
        "--exchanges",
        type=str,
        metavar="LIST",
        help="Comma-separated exchanges to query (default: all enabled)",
    )

    scan_group.add_argument(
        "--symbols",
        type=str,
        metavar="LIST",
        help="Comma-separated base assets to scan (default: all candidates)",
    )

    scan_group.add_argument(
        "--max-results",
        type=int,
        default=20,
        help="Maximum results to keep (default: 20)",
    )

    # --------------------------------------------------------
    # Execution Options
    # --------------------------------------------------------
    execution_group = parser.add_argument_group("Execution Options")

    execution_group.add_argument(
        "--once",
        action="store_true",
        help="Run a single scan and exit (no loop)",
    )

    execution_group.add_argument(
        "--interval-ms",
        type=int,
        metavar="MS",
        help="Polling interval override in milliseconds",
    )

    execution_group.add_argument(
        "--live",
        action="store_true",
        help="Query real exchanges instead of the simulation",
    )

    # --------------------------------------------------------
    # Logging Options
    # --------------------------------------------------------
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: AUTOTRADEX_LOG_LEVEL or INFO)",
    )

    return parser


def _split(value: Optional[str]) -> List[str]:
    return [item.strip() for item in (value or "").split(",") if item.strip()]


def validate_args(args: argparse.Namespace) -> List[str]:
    """Return a list of validation errors."""
    errors = []
    if args.max_results < 1:
        errors.append("--max-results must be at least 1")
    if args.interval_ms is not None and args.interval_ms < 1:
        errors.append("--interval-ms must be positive")
    if args.analyze and args.all_strategies:
        errors.append("--analyze cannot be combined with --all-strategies")
    return errors


def build_config(args: argparse.Namespace) -> AppConfig:
    """Environment configuration with CLI overrides applied."""
    config = AppConfig.from_env()
    if args.live:
        config.general.live_trading = True
    if args.log_level:
        config.general.log_level = args.log_level
    if args.interval_ms is not None:
        config.scanner.polling_interval_ms = args.interval_ms
    return config


def setup_logging(level: str = "INFO") -> None:
    """Configure logging."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


# ============================================================
# OUTPUT
# ============================================================

def print_banner(args: argparse.Namespace, config: AppConfig) -> None:
    """Print startup banner."""
    strategy = "all" if args.all_strategies else args.strategy
    print()
    print("=" * 60)
    print("  ARBITRAGE SCANNER")
    print("=" * 60)
    print(f"  Mode:       {'LIVE' if config.general.live_trading else 'SIMULATION'}")
    print(f"  Strategy:   {strategy}")
    print(f"  Exchanges:  {args.exchanges or ', '.join(config.scanner.enabled_exchanges)}")
    if not args.once:
        print(f"  Interval:   {config.scanner.polling_interval_ms}ms")
    print("=" * 60)
    print()


def print_results(results: List[ScanResult]) -> None:
    """Print a ranked table."""
    if not results:
        print("No opportunities found.")
        return

    header = f"{'#':>3}  {'Symbol':<12} {'Score':>6}  {'Spread%':>8}  {'Buy @':<12} {'Sell @':<12} {'Profit':>9}  Reason"
    print(header)
    print("-" * len(header))
    for rank, result in enumerate(results, start=1):
        marker = "*" if result.is_recommended else " "
        print(
            f"{rank:>3}{marker} {result.symbol:<12} {result.score:>6.1f}  "
            f"{result.spread_percent:>8.4f}  {result.best_buy_exchange or '-':<12} "
            f"{result.best_sell_exchange or '-':<12} {result.estimated_profit:>9.2f}  "
            f"{result.score_reason}"
        )
    print()


def print_analysis(result: ScanResult) -> None:
    print(f"{result.symbol}  price ${result.current_price}  rank #{result.market_cap_rank or '-'}")
    for price in sorted(result.exchange_prices, key=lambda p: p.ask_price):
        live = "" if price.is_live else " (simulated)"
        print(
            f"  {price.exchange:<12} bid {price.bid_price:<14} ask {price.ask_price:<14} "
            f"spread {price.spread:.4f}%{live}"
        )
    if result.has_arbitrage:
        print(
            f"  Buy {result.best_buy_exchange} @ {result.best_buy_price}, "
            f"sell {result.best_sell_exchange} @ {result.best_sell_price}: "
            f"{result.spread_percent:.4f}% (est. {result.estimated_profit:.2f} USDT)"
        )
    print(f"  Score {result.score:.1f}  {result.score_reason}")


# ============================================================
# MAIN FUNCTION
# ============================================================

async def run_application(args: argparse.Namespace, config: AppConfig, options: ScanOptions) -> int:
    """
    Run the scanner.

    Returns:
        Exit code
    """
    factory = AdapterFactory(config)
    oracle = CoinGeckoOracle(config.scanner.oracle_base_url)
    scanner = SmartScanner(factory, oracle, config.scanner)
    scanner.on_opportunity_found(
        lambda top: logger.info(f"Opportunity: {top.symbol} score {top.score:.1f}")
    )

    try:
        if args.analyze:
            result = await scanner.analyze_coin(args.analyze)
            if result is None:
                print(f"No data for {args.analyze}")
                return 1
            print_analysis(result)
            return 0

        strategy = None if args.all_strategies else ScanStrategy(args.strategy)
        if args.once:
            if strategy is None:
                results = await scanner.scan_all_strategies(options)
            else:
                results = await scanner.scan(strategy, options)
            print_results(results)
            return 0

        logger.info("Starting scan loop (press Ctrl+C to stop)...")
        scheduler = ScanScheduler(scanner, strategy, options, on_results=print_results)
        await scheduler.run()
        return 0

    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1
    finally:
        await oracle.close()
        await factory.close_all()


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    errors = validate_args(args)
    if errors:
        for error in errors:
            print(f"Error: {error}", file=sys.stderr)
        return 1

    try:
        options = ScanOptions(
            max_results=args.max_results,
            filter_symbols=_split(args.symbols),
            filter_exchanges=_split(args.exchanges),
        )
    except ValidationError as e:
        print(f"Error: invalid scan options: {e}", file=sys.stderr)
        return 1

    config = build_config(args)
    setup_logging(config.general.log_level)
    print_banner(args, config)

    try:
        return asyncio.run(run_application(args, config, options))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130


# ============================================================
# ENTRY POINT
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
