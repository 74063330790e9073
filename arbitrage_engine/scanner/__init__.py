"""
Arbitrage Engine - Scanner Package.

============================================================
PURPOSE
============================================================
Cross-exchange opportunity scanning on top of the adapters.

COMPONENTS:
- SmartScanner: Scan / ScanAllStrategies / AnalyzeCoin /
  GetBestOpportunity and the opportunity-found listeners
- ScanScheduler: Polling loop with an injected clock
- CoinGeckoOracle: Market-cap ranking and 24h statistics
- scoring: Arbitrage legs and strategy score tables

============================================================
"""

# Models
from .models import (
    CoinInfo,
    CoinMarketData,
    ExchangePrice,
    ScanOptions,
    ScanResult,
    ScanStrategy,
)

# Scoring
from .scoring import (
    compute_best_arbitrage,
    exchange_price_from_ticker,
    score_result,
)

# Oracle
from .oracle import (
    COIN_ID_MAP,
    CoinGeckoOracle,
    OracleError,
)

# Service
from .service import (
    POPULAR_SYMBOLS,
    SmartScanner,
)
from .scheduler import ScanScheduler


__all__ = [
    # Models
    "CoinInfo",
    "CoinMarketData",
    "ExchangePrice",
    "ScanOptions",
    "ScanResult",
    "ScanStrategy",
    # Scoring
    "compute_best_arbitrage",
    "exchange_price_from_ticker",
    "score_result",
    # Oracle
    "COIN_ID_MAP",
    "CoinGeckoOracle",
    "OracleError",
    # Service
    "POPULAR_SYMBOLS",
    "SmartScanner",
    "ScanScheduler",
]
