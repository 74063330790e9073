"""
Arbitrage Engine - Adapters Package.

============================================================
PURPOSE
============================================================
Exchange adapter implementations behind one capability contract.

AVAILABLE ADAPTERS:
- BinanceAdapter: Binance spot API
- BybitAdapter: Bybit V5 spot
- OKXAdapter: OKX V5 spot (cash mode)
- KuCoinAdapter: KuCoin spot (key version 2)
- GateIOAdapter: Gate.io v4 spot
- BitkubAdapter: Bitkub THB markets
- PlaceholderAdapter: Unrecognised "Exchange A / B" roles
- SimulationAdapter: Synthetic market, no network

UTILITIES:
- AdapterFactory: Name resolution and per-exchange caching
- RestTransport / RateLimiter: Rate limiting and bounded retry
- AdapterMetrics: Metrics collection
- AdapterLogger: Secure logging

ERROR HANDLING:
- ExchangeError: Unified error representation
- ExchangeException and its typed subclasses
- Error mapping per exchange

============================================================
"""

# Base types
from .base import (
    ExchangeAdapter,
    RestExchangeAdapter,
    to_decimal,
)

# Adapters
from .binance import BinanceAdapter
from .bybit import BybitAdapter
from .okx import OKXAdapter
from .kucoin import KuCoinAdapter
from .gateio import GateIOAdapter
from .bitkub import BitkubAdapter
from .placeholder import PlaceholderAdapter
from .simulation import SimulationAdapter

# Factory
from .factory import (
    AdapterFactory,
    ExchangeDisabledError,
    SUPPORTED_EXCHANGES,
    detect_exchange,
    resolve_exchange_name,
)

# Transport
from .transport import (
    PreparedRequest,
    RateLimiter,
    RestTransport,
)

# Signing
from .signing import CanonicalRequest

# Errors
from .errors import (
    BusinessError,
    CredentialsMissing,
    ErrorCategory,
    ExchangeError,
    ExchangeException,
    InsufficientBalanceError,
    ResponseParseError,
    RetryEligibility,
    TransportExhausted,
    create_network_error,
    create_timeout_error,
    map_exchange_error,
)

# Metrics
from .metrics import (
    AdapterMetrics,
    MetricsAggregator,
    get_global_aggregator,
)

# Logging
from .logging_utils import (
    AdapterLogger,
    mask_headers,
    mask_params,
    mask_value,
)


__all__ = [
    # Base
    "ExchangeAdapter",
    "RestExchangeAdapter",
    "to_decimal",
    # Adapters
    "BinanceAdapter",
    "BybitAdapter",
    "OKXAdapter",
    "KuCoinAdapter",
    "GateIOAdapter",
    "BitkubAdapter",
    "PlaceholderAdapter",
    "SimulationAdapter",
    # Factory
    "AdapterFactory",
    "ExchangeDisabledError",
    "SUPPORTED_EXCHANGES",
    "detect_exchange",
    "resolve_exchange_name",
    # Transport
    "PreparedRequest",
    "RateLimiter",
    "RestTransport",
    # Signing
    "CanonicalRequest",
    # Errors
    "BusinessError",
    "CredentialsMissing",
    "ErrorCategory",
    "ExchangeError",
    "ExchangeException",
    "InsufficientBalanceError",
    "ResponseParseError",
    "RetryEligibility",
    "TransportExhausted",
    "create_network_error",
    "create_timeout_error",
    "map_exchange_error",
    # Metrics
    "AdapterMetrics",
    "MetricsAggregator",
    "get_global_aggregator",
    # Logging
    "AdapterLogger",
    "mask_headers",
    "mask_params",
    "mask_value",
]
