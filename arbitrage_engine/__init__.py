"""
Arbitrage Engine Package.

============================================================
PURPOSE
============================================================
Multi-exchange spot market access and cross-exchange
opportunity scanning.

============================================================
MODULES
============================================================
- types: Canonical tickers, order books, orders, balances
- config: Exchange, scanner and process configuration
- clock: Injectable clock (SystemClock, MockClock)
- adapters: Exchange adapters, transport, signing, factory
- scanner: Smart scanner, scoring, oracle, scheduler

============================================================
"""

# ============================================================
# TYPES
# ============================================================
from .types import (
    AccountBalance,
    AssetBalance,
    Order,
    OrderBook,
    OrderBookEntry,
    OrderRequest,
    OrderSide,
    OrderStatus,
    OrderType,
    Ticker,
)

# ============================================================
# CONFIG / CLOCK
# ============================================================
from .config import (
    AppConfig,
    ExchangeConfig,
    GeneralConfig,
    ScannerConfig,
)
from .clock import ClockProtocol, MockClock, SystemClock


__all__ = [
    # Types
    "AccountBalance",
    "AssetBalance",
    "Order",
    "OrderBook",
    "OrderBookEntry",
    "OrderRequest",
    "OrderSide",
    "OrderStatus",
    "OrderType",
    "Ticker",
    # Config
    "AppConfig",
    "ExchangeConfig",
    "GeneralConfig",
    "ScannerConfig",
    # Clock
    "ClockProtocol",
    "MockClock",
    "SystemClock",
]
