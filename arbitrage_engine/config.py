"""
Arbitrage Engine - Configuration.

============================================================
PURPOSE
============================================================
All configuration for the exchange adapters and the scanner.

SOURCES:
- Dataclass defaults
- Environment variables (AUTOTRADEX_*), optionally from a .env file
- Credentials are never stored here, only the NAMES of the
  environment variables holding them

============================================================
"""

import os
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from dotenv import load_dotenv


PLACEHOLDER_BASE_URL = "https://api.exchange.com"

DEFAULT_EXCHANGES = ["Binance", "KuCoin", "OKX", "Bybit", "Gate.io", "Bitkub"]


# ============================================================
# EXCHANGE CONFIGURATION
# ============================================================

@dataclass(frozen=True)
class ExchangeConfig:
    """
    Per-exchange connection settings.

    Immutable once bound to an adapter instance.
    """

    name: str = "ExchangeA"
    """Display name. For the legacy A/B roles this drives auto-detection."""

    api_base_url: str = PLACEHOLDER_BASE_URL
    """REST base URL. The placeholder value means 'use adapter default'."""

    api_key_env_var: str = "EXCHANGE_A_API_KEY"
    api_secret_env_var: str = "EXCHANGE_A_API_SECRET"

    passphrase_env_var: Optional[str] = None
    """Only OKX and KuCoin use a passphrase."""

    trading_fee_percent: Decimal = Decimal("0.1")
    """Taker fee in percent."""

    rate_limit_per_second: int = 10
    """Request initiations allowed per rolling second."""

    timeout_ms: int = 10000
    max_retries: int = 3
    is_enabled: bool = True
    """A disabled exchange is neither scanned nor built by the factory."""

    def __post_init__(self):
        if self.rate_limit_per_second < 1:
            raise ValueError("rate_limit_per_second must be >= 1")
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.timeout_ms <= 0:
            raise ValueError("timeout_ms must be positive")

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000

    @property
    def credential_env_vars(self) -> Tuple[str, ...]:
        names = [self.api_key_env_var, self.api_secret_env_var]
        if self.passphrase_env_var:
            names.append(self.passphrase_env_var)
        return tuple(names)

    def credentials(self) -> Tuple[str, str, str]:
        """Read (api_key, api_secret, passphrase) from the environment."""
        api_key = os.environ.get(self.api_key_env_var, "")
        api_secret = os.environ.get(self.api_secret_env_var, "")
        passphrase = ""
        if self.passphrase_env_var:
            passphrase = os.environ.get(self.passphrase_env_var, "")
        return api_key, api_secret, passphrase

    def resolve_base_url(self, default_url: str) -> str:
        """Fall back to the adapter default when the URL is a placeholder."""
        url = (self.api_base_url or "").strip()
        if not url or url == PLACEHOLDER_BASE_URL or "placeholder" in url.lower():
            return default_url
        return url.rstrip("/")

    def with_overrides(self, **kwargs) -> "ExchangeConfig":
        """Copy with selected fields replaced."""
        return replace(self, **kwargs)


# ============================================================
# GENERAL / SCANNER CONFIGURATION
# ============================================================

@dataclass
class GeneralConfig:
    """Process-wide switches."""

    live_trading: bool = False
    """False selects the simulation adapter for every exchange."""

    log_level: str = "INFO"


@dataclass
class ScannerConfig:
    """Opportunity scanner settings."""

    polling_interval_ms: int = 1000

    trading_pairs: List[str] = field(default_factory=lambda: ["BTC/USDT", "ETH/USDT"])
    """User-configured pairs, scanned in addition to the popular list."""

    enabled_exchanges: List[str] = field(default_factory=lambda: list(DEFAULT_EXCHANGES))

    failure_cooldown_seconds: float = 60.0
    """An exchange that errored is skipped for this long."""

    alert_threshold: Decimal = Decimal("70")
    """Top score at or above this raises OpportunityFound."""

    notional: Decimal = Decimal("1000")
    """Reference trade size for estimated profit."""

    round_trip_fee_percent: Decimal = Decimal("0.2")

    top_coins: int = 100
    """How many coins to request from the market-cap oracle."""

    oracle_base_url: str = "https://api.coingecko.com/api/v3"


# ============================================================
# APP CONFIGURATION
# ============================================================

def _default_exchange_a() -> ExchangeConfig:
    return ExchangeConfig()


def _default_exchange_b() -> ExchangeConfig:
    return ExchangeConfig(
        name="ExchangeB",
        api_key_env_var="EXCHANGE_B_API_KEY",
        api_secret_env_var="EXCHANGE_B_API_SECRET",
        passphrase_env_var="EXCHANGE_B_PASSPHRASE",
    )


@dataclass
class AppConfig:
    """Complete configuration."""

    general: GeneralConfig = field(default_factory=GeneralConfig)
    scanner: ScannerConfig = field(default_factory=ScannerConfig)

    exchange_a: ExchangeConfig = field(default_factory=_default_exchange_a)
    """Legacy role A. Also backs the Binance adapter."""

    exchange_b: ExchangeConfig = field(default_factory=_default_exchange_b)
    """Legacy role B. Also backs the KuCoin and Bybit adapters."""

    extra_exchanges: Dict[str, ExchangeConfig] = field(default_factory=dict)
    """Explicit per-exchange overrides keyed by lowercase canonical name."""

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "AppConfig":
        """
        Build configuration from environment variables.

        Loads a .env file first when present; existing variables win.
        """
        load_dotenv(dotenv_path)

        general = GeneralConfig(
            live_trading=_env_bool("AUTOTRADEX_LIVE_TRADING", False),
            log_level=os.getenv("AUTOTRADEX_LOG_LEVEL", "INFO").upper(),
        )

        scanner = ScannerConfig(
            polling_interval_ms=int(os.getenv("AUTOTRADEX_POLLING_INTERVAL_MS", "1000")),
        )
        pairs = _env_list("AUTOTRADEX_TRADING_PAIRS")
        if pairs:
            scanner.trading_pairs = pairs
        exchanges = _env_list("AUTOTRADEX_ENABLED_EXCHANGES")
        if exchanges:
            scanner.enabled_exchanges = exchanges

        return cls(
            general=general,
            scanner=scanner,
            exchange_a=_exchange_from_env("A", _default_exchange_a()),
            exchange_b=_exchange_from_env("B", _default_exchange_b()),
        )


# ============================================================
# ENV HELPERS
# ============================================================

def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str) -> List[str]:
    value = os.getenv(name, "")
    return [item.strip() for item in value.split(",") if item.strip()]


def _exchange_from_env(role: str, base: ExchangeConfig) -> ExchangeConfig:
    prefix = f"AUTOTRADEX_EXCHANGE_{role}_"
    overrides = {}
    if os.getenv(prefix + "NAME"):
        overrides["name"] = os.getenv(prefix + "NAME")
    if os.getenv(prefix + "URL"):
        overrides["api_base_url"] = os.getenv(prefix + "URL")
    if os.getenv(prefix + "FEE"):
        overrides["trading_fee_percent"] = Decimal(os.getenv(prefix + "FEE"))
    if os.getenv(prefix + "RATE_LIMIT"):
        overrides["rate_limit_per_second"] = int(os.getenv(prefix + "RATE_LIMIT"))
    if os.getenv(prefix + "TIMEOUT_MS"):
        overrides["timeout_ms"] = int(os.getenv(prefix + "TIMEOUT_MS"))
    if os.getenv(prefix + "ENABLED"):
        overrides["is_enabled"] = _env_bool(prefix + "ENABLED", True)
    if os.getenv(prefix + "MAX_RETRIES"):
        overrides["max_retries"] = int(os.getenv(prefix + "MAX_RETRIES"))
    return base.with_overrides(**overrides) if overrides else base
