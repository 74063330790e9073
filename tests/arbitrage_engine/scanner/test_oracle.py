"""
CoinGecko Oracle Tests.

Runs the real client against FakeSession routes.
"""

import asyncio
from decimal import Decimal

import aiohttp
import pytest

from arbitrage_engine.scanner import CoinGeckoOracle, OracleError
from tests.arbitrage_engine.fakes import FakeResponse, FakeSession


BASE = "https://api.test/api/v3"
MARKETS = "/api/v3/coins/markets"


def make_oracle(routes):
    session = FakeSession(routes)
    return CoinGeckoOracle(BASE, session=session), session


MARKETS_PAYLOAD = [
    {
        "id": "bitcoin",
        "symbol": "btc",
        "name": "Bitcoin",
        "image": "https://img/btc.png",
        "current_price": 42000.5,
        "market_cap": 820000000000,
        "market_cap_rank": 1,
        "price_change_percentage_24h": -1.25,
        "total_volume": 15000000000,
    },
    {
        "id": "new-coin",
        "symbol": "new",
        "name": "New Coin",
        "image": None,
        "current_price": None,
        "market_cap": None,
        "market_cap_rank": None,
        "price_change_percentage_24h": None,
        "total_volume": None,
    },
    {"id": "broken", "symbol": ""},
]


# ============================================================
# TOP COINS
# ============================================================

class TestTopCoins:
    """Tests for the market-cap ranking."""

    @pytest.mark.asyncio
    async def test_parses_rows(self):
        oracle, session = make_oracle({MARKETS: FakeResponse(200, MARKETS_PAYLOAD)})

        coins = await oracle.get_top_coins(2)

        assert [c.symbol for c in coins] == ["BTC", "NEW"]
        btc = coins[0]
        assert btc.current_price == Decimal("42000.5")
        assert btc.price_change_percentage_24h == Decimal("-1.25")
        assert btc.market_cap_rank == 1

        params = session.calls[0].params
        assert params["per_page"] == 2
        assert params["order"] == "market_cap_desc"
        assert params["vs_currency"] == "usd"

    @pytest.mark.asyncio
    async def test_null_fields_become_zero(self):
        oracle, _ = make_oracle({MARKETS: FakeResponse(200, MARKETS_PAYLOAD)})

        coins = await oracle.get_top_coins()

        fresh = coins[1]
        assert fresh.current_price == 0
        assert fresh.total_volume == 0
        assert fresh.market_cap_rank == 0
        assert fresh.image == ""

    @pytest.mark.asyncio
    async def test_rate_limit(self):
        oracle, _ = make_oracle({MARKETS: FakeResponse(429, {"status": "throttled"})})

        with pytest.raises(OracleError) as exc_info:
            await oracle.get_top_coins()

        assert exc_info.value.status == 429

    @pytest.mark.asyncio
    async def test_server_error(self):
        oracle, _ = make_oracle({MARKETS: FakeResponse(503, "maintenance")})

        with pytest.raises(OracleError, match="HTTP 503"):
            await oracle.get_top_coins()

    @pytest.mark.asyncio
    async def test_unexpected_payload(self):
        oracle, _ = make_oracle({MARKETS: FakeResponse(200, {"error": "nope"})})

        with pytest.raises(OracleError, match="Unexpected"):
            await oracle.get_top_coins()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", ["<html>oops", "{\"truncated\": "])
    async def test_malformed_json(self, body):
        oracle, _ = make_oracle({MARKETS: FakeResponse(200, body)})

        with pytest.raises(OracleError, match="Malformed JSON"):
            await oracle.get_top_coins()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        aiohttp.ClientConnectionError("refused"),
        asyncio.TimeoutError(),
    ])
    async def test_transport_failures(self, error):
        oracle, _ = make_oracle({MARKETS: FakeResponse(error=error)})

        with pytest.raises(OracleError):
            await oracle.get_top_coins()


# ============================================================
# COIN LOOKUP
# ============================================================

class TestCoinLookup:
    """Tests for id mapping and single-coin detail."""

    @pytest.mark.parametrize("symbol,coin_id", [
        ("BTC", "bitcoin"),
        ("btc/usdt", "bitcoin"),
        ("AVAX", "avalanche-2"),
        ("KUB", "bitkub-coin"),
        ("PEPE", "pepe"),
    ])
    def test_get_coin_id(self, symbol, coin_id):
        assert CoinGeckoOracle.get_coin_id(symbol) == coin_id

    @pytest.mark.asyncio
    async def test_coin_info(self):
        payload = {
            "id": "solana",
            "symbol": "sol",
            "name": "Solana",
            "image": {"small": "https://img/sol-small.png"},
            "market_cap_rank": 5,
            "market_data": {"current_price": {"usd": 98.76}},
        }
        oracle, session = make_oracle({"/api/v3/coins/solana": FakeResponse(200, payload)})

        info = await oracle.get_coin_info("solana")

        assert info.symbol == "SOL"
        assert info.current_price == Decimal("98.76")
        assert info.market_cap_rank == 5
        assert info.image == "https://img/sol-small.png"
        assert session.calls[0].params["tickers"] == "false"

    @pytest.mark.asyncio
    async def test_unknown_coin_is_none(self):
        oracle, _ = make_oracle({})
        assert await oracle.get_coin_info("does-not-exist") is None

    @pytest.mark.asyncio
    async def test_missing_market_data(self):
        payload = {"id": "x", "symbol": "x", "market_data": None}
        oracle, _ = make_oracle({"/api/v3/coins/x": FakeResponse(200, payload)})

        info = await oracle.get_coin_info("x")

        assert info.current_price == 0
        assert info.market_cap_rank == 0

    @pytest.mark.asyncio
    async def test_other_errors_propagate(self):
        oracle, _ = make_oracle({"/api/v3/coins/bitcoin": FakeResponse(500, "boom")})

        with pytest.raises(OracleError):
            await oracle.get_coin_info("bitcoin")


class TestSessionOwnership:
    """An injected session belongs to the caller."""

    @pytest.mark.asyncio
    async def test_close_leaves_injected_session_open(self):
        oracle, session = make_oracle({})

        await oracle.close()

        assert session.closed is False
