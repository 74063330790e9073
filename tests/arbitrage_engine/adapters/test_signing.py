"""
Request Signing Tests.

Known-answer vectors where the exchange documents one, otherwise
the canonical string is rebuilt here and HMAC'd independently.
"""

import base64
import hashlib
import hmac

import pytest

from arbitrage_engine.adapters.signing import (
    CanonicalRequest,
    encode_query,
    kucoin_passphrase,
    okx_timestamp,
    sign_binance,
    sign_bitkub,
    sign_bybit,
    sign_gateio,
    sign_kucoin,
    sign_okx,
)


SECRET = "test-api-secret"


def hex_sha256(message: str, secret: str = SECRET) -> str:
    return hmac.new(secret.encode(), message.encode(), hashlib.sha256).hexdigest()


def b64_sha256(message: str, secret: str = SECRET) -> str:
    digest = hmac.new(secret.encode(), message.encode(), hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


# ============================================================
# HELPERS
# ============================================================

class TestEncodeQuery:
    """Tests for query encoding."""

    def test_keeps_insertion_order(self):
        assert encode_query({"symbol": "BTCUSDT", "limit": 5}) == "symbol=BTCUSDT&limit=5"

    def test_sorted(self):
        assert encode_query({"timestamp": 1, "recvWindow": 5000, "symbol": "X"}, sort=True) == (
            "recvWindow=5000&symbol=X&timestamp=1"
        )

    def test_drops_none_values(self):
        assert encode_query({"a": 1, "b": None}) == "a=1"

    def test_empty(self):
        assert encode_query({}) == ""


class TestOkxTimestamp:
    """Tests for ISO-8601 millisecond timestamps."""

    @pytest.mark.parametrize("epoch_ms,expected", [
        (1607418537715, "2020-12-08T09:08:57.715Z"),
        (1705320000005, "2024-01-15T12:00:00.005Z"),
        (1705320000000, "2024-01-15T12:00:00.000Z"),
    ])
    def test_format(self, epoch_ms, expected):
        assert okx_timestamp(epoch_ms) == expected


# ============================================================
# SIGNERS
# ============================================================

class TestBinanceSignature:
    """Binance HMAC-SHA256 over the query string."""

    def test_documented_vector(self):
        secret = "NhqPtmdSJYdKjVHjA7PZj4Mge3R5YNiP1e3UZjInClVN65XAbvqqM6A7H5fATj0j"
        query = (
            "symbol=LTCBTC&side=BUY&type=LIMIT&timeInForce=GTC&quantity=1"
            "&price=0.1&recvWindow=5000&timestamp=1499827319559"
        )

        signature = sign_binance(secret, CanonicalRequest("POST", "/api/v3/order", query))

        assert signature == "c8db56825ae71d6d79447849e617115f4a920fa2acdcab2b053c4b2838bd6b71"

    def test_is_deterministic(self):
        request = CanonicalRequest("GET", "/api/v3/account", "timestamp=1")
        assert sign_binance(SECRET, request) == sign_binance(SECRET, request)


class TestBybitSignature:
    """Bybit signs the query for GET and the body otherwise."""

    def test_get_signs_query(self):
        request = CanonicalRequest("GET", "/v5/order/realtime", "category=spot", "", "1705320000000")

        signature = sign_bybit(SECRET, request, "key", 5000)

        assert signature == hex_sha256("1705320000000key5000category=spot")

    def test_post_signs_body(self):
        body = '{"category":"spot","symbol":"BTCUSDT"}'
        request = CanonicalRequest("POST", "/v5/order/create", "ignored=1", body, "1705320000000")

        signature = sign_bybit(SECRET, request, "key", 5000)

        assert signature == hex_sha256(f"1705320000000key5000{body}")


class TestOkxSignature:
    """OKX base64 signature over ts + METHOD + path + body."""

    def test_get_includes_query(self):
        ts = "2020-12-08T09:08:57.715Z"
        request = CanonicalRequest("get", "/api/v5/account/balance", "ccy=BTC", "", ts)

        assert sign_okx(SECRET, request) == b64_sha256(f"{ts}GET/api/v5/account/balance?ccy=BTC")

    def test_post_includes_body(self):
        ts = "2020-12-08T09:08:57.715Z"
        body = '{"instId": "BTC-USDT"}'
        request = CanonicalRequest("POST", "/api/v5/trade/order", "", body, ts)

        assert sign_okx(SECRET, request) == b64_sha256(f"{ts}POST/api/v5/trade/order{body}")


class TestKucoinSignature:
    """KuCoin key version 2 signatures."""

    def test_signature(self):
        request = CanonicalRequest("GET", "/api/v1/orders", "status=active", "", "1705320000000")

        assert sign_kucoin(SECRET, request) == b64_sha256(
            "1705320000000GET/api/v1/orders?status=active"
        )

    def test_passphrase_is_hmac_of_passphrase(self):
        assert kucoin_passphrase(SECRET, "test-passphrase") == b64_sha256("test-passphrase")
        assert kucoin_passphrase(SECRET, "test-passphrase") != "test-passphrase"


class TestGateioSignature:
    """Gate.io HMAC-SHA512 over the newline-joined canonical string."""

    def test_empty_body_hashes_empty_string(self):
        request = CanonicalRequest("GET", "/api/v4/spot/accounts", "", "", "1705320000")
        empty_hash = hashlib.sha512(b"").hexdigest()
        message = f"GET\n/api/v4/spot/accounts\n\n{empty_hash}\n1705320000"

        expected = hmac.new(SECRET.encode(), message.encode(), hashlib.sha512).hexdigest()

        assert sign_gateio(SECRET, request) == expected
        assert len(expected) == 128

    def test_body_changes_signature(self):
        without = CanonicalRequest("POST", "/api/v4/spot/orders", "", "", "1")
        with_body = CanonicalRequest("POST", "/api/v4/spot/orders", "", '{"amount":"1"}', "1")

        assert sign_gateio(SECRET, without) != sign_gateio(SECRET, with_body)


class TestBitkubSignature:
    """Bitkub signs the raw JSON body."""

    def test_signature(self):
        body = '{"sym":"THB_BTC","ts":1705320000000}'
        request = CanonicalRequest("POST", "/api/v3/market/wallet", "", body)

        assert sign_bitkub(SECRET, request) == hex_sha256(body)
