"""
Exchange Adapter Factory.

============================================================
PURPOSE
============================================================
Resolve a logical exchange name to one adapter instance.

DECISION ORDER:
1. Live trading off -> SimulationAdapter (fee and price bias
   depend on the exchange role)
2. Concrete exchange name -> its REST adapter
3. Legacy "Exchange A / B" roles -> detect a known exchange in the
   configured display name, else the placeholder adapter

Adapters are cached per canonical name so each logical exchange
owns exactly one HTTP session and one rate limiter.

============================================================
"""

import logging
import random
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from ..clock import ClockProtocol
from ..config import AppConfig, ExchangeConfig
from .base import ExchangeAdapter, RestExchangeAdapter
from .binance import BINANCE_REST_URL, BinanceAdapter
from .bitkub import BITKUB_REST_URL, BitkubAdapter
from .bybit import BYBIT_REST_URL, BybitAdapter
from .gateio import GATEIO_REST_URL, GateIOAdapter
from .kucoin import KUCOIN_REST_URL, KuCoinAdapter
from .okx import OKX_REST_URL, OKXAdapter
from .placeholder import PlaceholderAdapter
from .simulation import SimulationAdapter
from .transport import SleepFunc


logger = logging.getLogger(__name__)


# ============================================================
# NAME RESOLUTION
# ============================================================

EXCHANGE_ALIASES: Dict[str, str] = {
    "binance": "binance",
    "bybit": "bybit",
    "okx": "okx",
    "kucoin": "kucoin",
    "gate": "gateio",
    "gateio": "gateio",
    "gate.io": "gateio",
    "bitkub": "bitkub",
    "exchangea": "exchange_a",
    "exchange a": "exchange_a",
    "a": "exchange_a",
    "exchangeb": "exchange_b",
    "exchange b": "exchange_b",
    "b": "exchange_b",
    "simulation": "simulation_a",
    "sim": "simulation_a",
    "simulation_a": "simulation_a",
    "sim_a": "simulation_a",
    "simulation_b": "simulation_b",
    "sim_b": "simulation_b",
}

SUPPORTED_EXCHANGES = [
    "Binance", "KuCoin", "Bybit", "OKX", "Gate.io", "Bitkub", "Simulation_A", "Simulation_B",
]

DISPLAY_NAMES: Dict[str, str] = {
    "binance": "Binance",
    "bybit": "Bybit",
    "okx": "OKX",
    "kucoin": "KuCoin",
    "gateio": "Gate.io",
    "bitkub": "Bitkub",
    "simulation_a": "Simulation_A",
    "simulation_b": "Simulation_B",
}

# Exchanges the legacy roles can be auto-detected as
DETECTABLE_EXCHANGES = ("binance", "bybit", "okx", "kucoin")

SIMULATION_BIAS_A = Decimal("1.0")
SIMULATION_BIAS_B = Decimal("1.001")

_ADAPTER_CLASSES = {
    "binance": BinanceAdapter,
    "bybit": BybitAdapter,
    "okx": OKXAdapter,
    "kucoin": KuCoinAdapter,
    "gateio": GateIOAdapter,
    "bitkub": BitkubAdapter,
}

_DEFAULT_URLS = {
    "binance": BINANCE_REST_URL,
    "bybit": BYBIT_REST_URL,
    "okx": OKX_REST_URL,
    "kucoin": KUCOIN_REST_URL,
    "gateio": GATEIO_REST_URL,
    "bitkub": BITKUB_REST_URL,
}


class ExchangeDisabledError(ValueError):
    """The exchange is switched off in its ExchangeConfig."""


def resolve_exchange_name(name: str) -> str:
    """Case-insensitive alias lookup. Raises ValueError for unknown names."""
    key = (name or "").strip().lower()
    if key not in EXCHANGE_ALIASES:
        raise ValueError(
            f"Unknown exchange: {name}. Supported: {', '.join(SUPPORTED_EXCHANGES)}"
        )
    return EXCHANGE_ALIASES[key]


def detect_exchange(display_name: str) -> Optional[str]:
    """Find a known exchange inside a free-form display name."""
    lowered = (display_name or "").lower()
    for exchange in DETECTABLE_EXCHANGES:
        if exchange in lowered:
            return exchange
    return None


# ============================================================
# FACTORY
# ============================================================

class AdapterFactory:
    """
    Creates and caches exchange adapters.

    Usage:
        factory = AdapterFactory(AppConfig.from_env())
        binance = factory.create("Binance")
        ...
        await factory.close_all()
    """

    def __init__(
        self,
        config: AppConfig,
        clock: Optional[ClockProtocol] = None,
        sleep: Optional[SleepFunc] = None,
        rng_factory: Optional[Callable[[str], random.Random]] = None,
    ):
        """
        Initialize factory.

        Args:
            config: Application configuration
            clock: Clock passed to REST adapters for request timestamps
            sleep: Sleep passed to adapters (retry backoff, fill delay)
            rng_factory: Random source per simulated exchange, by canonical name
        """
        self._config = config
        self._clock = clock
        self._sleep = sleep
        self._rng_factory = rng_factory
        self._adapters: Dict[str, ExchangeAdapter] = {}

    @property
    def live_trading(self) -> bool:
        return self._config.general.live_trading

    @staticmethod
    def list_supported() -> List[str]:
        return list(SUPPORTED_EXCHANGES)

    # --------------------------------------------------------
    # CREATION
    # --------------------------------------------------------

    def is_enabled(self, name: str) -> bool:
        """
        Whether the exchange's config allows it to be used.

        Binance follows role A, KuCoin and Bybit follow role B.
        Raises ValueError for unknown names.
        """
        canonical = resolve_exchange_name(name)
        if canonical.startswith("simulation"):
            return True
        if canonical == "exchange_a":
            return self._config.exchange_a.is_enabled
        if canonical == "exchange_b":
            return self._config.exchange_b.is_enabled
        return self._exchange_config(canonical).is_enabled

    def create(self, name: str) -> ExchangeAdapter:
        """
        Adapter for a logical exchange name, created once and cached.

        Raises:
            ValueError: Unknown name
            ExchangeDisabledError: Exchange disabled in its config
        """
        canonical = resolve_exchange_name(name)
        if not self.is_enabled(name):
            raise ExchangeDisabledError(f"Exchange {name} is disabled")
        adapter = self._adapters.get(canonical)
        if adapter is None:
            adapter = self._build(canonical)
            self._adapters[canonical] = adapter
        return adapter

    def create_many(self, names: List[str]) -> Dict[str, ExchangeAdapter]:
        """Adapters keyed by the requested names. Unknown names raise."""
        return {name: self.create(name) for name in names}

    def create_exchange_a(self) -> ExchangeAdapter:
        return self.create("exchangea")

    def create_exchange_b(self) -> ExchangeAdapter:
        return self.create("exchangeb")

    def _build(self, canonical: str) -> ExchangeAdapter:
        if canonical.startswith("simulation"):
            return self._simulation(canonical, role_a=canonical == "simulation_a")

        role_a = canonical in ("binance", "exchange_a")
        if not self.live_trading:
            logger.info(f"Creating simulation adapter for {canonical} (live trading disabled)")
            return self._simulation(canonical, role_a=role_a)

        if canonical in ("exchange_a", "exchange_b"):
            return self._build_role(canonical)

        logger.info(f"Creating {DISPLAY_NAMES[canonical]} adapter")
        return self._rest(canonical, self._exchange_config(canonical))

    def _build_role(self, canonical: str) -> ExchangeAdapter:
        role_config = self._config.exchange_a if canonical == "exchange_a" else self._config.exchange_b
        detected = detect_exchange(role_config.name)
        if detected is None:
            logger.warning(
                f"Could not detect an exchange in '{role_config.name}'; "
                f"using placeholder adapter with synthetic data"
            )
            return PlaceholderAdapter(role_config)

        logger.info(f"Creating {DISPLAY_NAMES[detected]} adapter (from {role_config.name} config)")
        return self._rest(detected, role_config.with_overrides(name=DISPLAY_NAMES[detected]))

    def _rest(self, canonical: str, exchange_config: ExchangeConfig) -> RestExchangeAdapter:
        adapter_class = _ADAPTER_CLASSES[canonical]
        return adapter_class(exchange_config, sleep=self._sleep, clock=self._clock)

    def _simulation(self, canonical: str, role_a: bool) -> SimulationAdapter:
        role_config = self._config.exchange_a if role_a else self._config.exchange_b
        if canonical in DISPLAY_NAMES:
            name = DISPLAY_NAMES[canonical]
        else:
            name = role_config.name
        rng = self._rng_factory(canonical) if self._rng_factory else None
        return SimulationAdapter(
            name=name,
            price_bias=SIMULATION_BIAS_A if role_a else SIMULATION_BIAS_B,
            fee_percent=role_config.trading_fee_percent,
            rng=rng,
            sleep=self._sleep,
        )

    # --------------------------------------------------------
    # PER-EXCHANGE CONFIG
    # --------------------------------------------------------

    def _exchange_config(self, canonical: str) -> ExchangeConfig:
        """
        Connection settings for a concrete exchange.

        Explicit entries in extra_exchanges win. Binance borrows role A's
        settings, KuCoin and Bybit borrow role B's, the rest use their
        own AUTOTRADEX_<EXCHANGE>_* credential variables.
        """
        if canonical in self._config.extra_exchanges:
            return self._config.extra_exchanges[canonical]

        a = self._config.exchange_a
        b = self._config.exchange_b
        display = DISPLAY_NAMES[canonical]
        url = _DEFAULT_URLS[canonical]

        if canonical == "binance":
            return a.with_overrides(name=display, api_base_url=a.resolve_base_url(url))
        if canonical in ("kucoin", "bybit"):
            return b.with_overrides(name=display, api_base_url=b.resolve_base_url(url))

        prefix = f"AUTOTRADEX_{canonical.upper()}"
        own = {
            "okx": (Decimal("0.1"), 10),
            "gateio": (Decimal("0.2"), 10),
            "bitkub": (Decimal("0.25"), 5),
        }
        fee, rate_limit = own[canonical]
        return ExchangeConfig(
            name=display,
            api_base_url=url,
            api_key_env_var=f"{prefix}_API_KEY",
            api_secret_env_var=f"{prefix}_API_SECRET",
            passphrase_env_var=f"{prefix}_PASSPHRASE" if canonical == "okx" else None,
            trading_fee_percent=fee,
            rate_limit_per_second=rate_limit,
            timeout_ms=b.timeout_ms,
            max_retries=b.max_retries,
        )

    # --------------------------------------------------------
    # LIFECYCLE
    # --------------------------------------------------------

    @property
    def adapters(self) -> Dict[str, ExchangeAdapter]:
        return dict(self._adapters)

    async def close_all(self) -> None:
        """Disconnect every cached adapter and forget them."""
        adapters = list(self._adapters.values())
        self._adapters.clear()
        for adapter in adapters:
            await adapter.disconnect()
        logger.info(f"Closed {len(adapters)} exchange adapter(s)")
