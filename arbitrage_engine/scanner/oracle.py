"""
Scanner - Market Cap Oracle (CoinGecko).

============================================================
RESPONSIBILITY
============================================================
Supplies market-cap ranking, 24h change and volume for the
scanner's candidate set.

- Top coins by market cap
- Symbol -> CoinGecko id lookup
- Single-coin detail for coin analysis

============================================================
DESIGN PRINCIPLES
============================================================
- Best effort: every failure surfaces as OracleError and the
  scanner degrades to its static coin list
- Null numeric fields become zero
- One owned aiohttp session, created lazily

============================================================
API DOCUMENTATION
============================================================
https://docs.coingecko.com/reference/introduction

============================================================
"""

import asyncio
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import aiohttp

from .models import CoinInfo, CoinMarketData


logger = logging.getLogger(__name__)


COINGECKO_API_URL = "https://api.coingecko.com/api/v3"

DEFAULT_HEADERS = {
    "User-Agent": "AutoTrade-X/1.0",
    "Accept": "application/json",
}

# Symbols whose CoinGecko id is not simply the lowercase symbol
COIN_ID_MAP: Dict[str, str] = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "USDT": "tether",
    "BNB": "binancecoin",
    "SOL": "solana",
    "XRP": "ripple",
    "USDC": "usd-coin",
    "ADA": "cardano",
    "AVAX": "avalanche-2",
    "DOGE": "dogecoin",
    "TRX": "tron",
    "DOT": "polkadot",
    "LINK": "chainlink",
    "MATIC": "matic-network",
    "TON": "the-open-network",
    "SHIB": "shiba-inu",
    "LTC": "litecoin",
    "BCH": "bitcoin-cash",
    "UNI": "uniswap",
    "ATOM": "cosmos",
    "XLM": "stellar",
    "NEAR": "near",
    "APT": "aptos",
    "ARB": "arbitrum",
    "OP": "optimism",
    "FIL": "filecoin",
    "HBAR": "hedera-hashgraph",
    "VET": "vechain",
    "ICP": "internet-computer",
    "INJ": "injective-protocol",
    "AAVE": "aave",
    "KUB": "bitkub-coin",
    "THB": "thai-baht",
}


class OracleError(Exception):
    """Market data could not be fetched or parsed."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


def _decimal(value: Any) -> Decimal:
    if value is None:
        return Decimal("0")
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal("0")


def _int(value: Any) -> int:
    try:
        return int(value) if value is not None else 0
    except (TypeError, ValueError):
        return 0


# ============================================================
# COINGECKO ORACLE
# ============================================================

class CoinGeckoOracle:
    """
    CoinGecko REST client.

    Usage:
        oracle = CoinGeckoOracle()
        coins = await oracle.get_top_coins(100)
        await oracle.close()
    """

    def __init__(
        self,
        base_url: str = COINGECKO_API_URL,
        timeout_seconds: float = 15,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self._timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout, headers=DEFAULT_HEADERS)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the aiohttp session if this client created it."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _get_json(self, path: str, params: Dict[str, Any]) -> Any:
        session = await self._get_session()
        url = f"{self.base_url}{path}"
        try:
            async with session.get(url, params=params, headers=DEFAULT_HEADERS) as response:
                if response.status == 429:
                    raise OracleError("CoinGecko rate limit exceeded", status=429)
                if response.status >= 400:
                    text = await response.text()
                    raise OracleError(f"HTTP {response.status}: {text[:200]}", status=response.status)
                return await response.json()
        except aiohttp.ContentTypeError as e:
            raise OracleError(f"Non-JSON response from {path}: {e.message}", status=e.status)
        except aiohttp.ClientError as e:
            raise OracleError(f"Network error: {e}")
        except asyncio.TimeoutError:
            raise OracleError(f"Request timeout: {path}")
        except ValueError as e:
            raise OracleError(f"Malformed JSON from {path}: {e}")

    # ---------------------------------------------------------
    # QUERIES
    # ---------------------------------------------------------

    async def get_top_coins(self, limit: int = 100) -> List[CoinMarketData]:
        """Top coins by market cap, highest first."""
        data = await self._get_json("/coins/markets", {
            "vs_currency": "usd",
            "order": "market_cap_desc",
            "per_page": limit,
            "page": 1,
            "sparkline": "false",
        })
        if not isinstance(data, list):
            raise OracleError(f"Unexpected /coins/markets payload: {type(data).__name__}")

        coins = []
        for row in data:
            if not isinstance(row, dict) or not row.get("symbol"):
                continue
            coins.append(CoinMarketData(
                id=row.get("id", ""),
                symbol=row["symbol"].upper(),
                name=row.get("name") or "",
                image=row.get("image") or "",
                current_price=_decimal(row.get("current_price")),
                market_cap=_decimal(row.get("market_cap")),
                market_cap_rank=_int(row.get("market_cap_rank")),
                price_change_percentage_24h=_decimal(row.get("price_change_percentage_24h")),
                total_volume=_decimal(row.get("total_volume")),
            ))
        logger.debug(f"Fetched {len(coins)} coins from CoinGecko")
        return coins

    @staticmethod
    def get_coin_id(symbol: str) -> str:
        """CoinGecko id for a ticker symbol; unknown symbols map to lowercase."""
        base = symbol.upper().split("/")[0]
        return COIN_ID_MAP.get(base, base.lower())

    async def get_coin_info(self, coin_id: str) -> Optional[CoinInfo]:
        """Single coin detail; None when CoinGecko does not know the id."""
        try:
            data = await self._get_json(f"/coins/{coin_id}", {
                "localization": "false",
                "tickers": "false",
                "community_data": "false",
                "developer_data": "false",
            })
        except OracleError as e:
            if e.status == 404:
                return None
            raise

        if not isinstance(data, dict) or not data.get("symbol"):
            return None

        market_data = data.get("market_data") or {}
        current_price = (market_data.get("current_price") or {}).get("usd")
        return CoinInfo(
            id=data.get("id", coin_id),
            symbol=data["symbol"].upper(),
            name=data.get("name") or "",
            image=(data.get("image") or {}).get("small") or "",
            current_price=_decimal(current_price),
            market_cap_rank=_int(data.get("market_cap_rank")),
        )
