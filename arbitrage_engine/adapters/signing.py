"""
Exchange Adapter - Request Signing.

============================================================
PURPOSE
============================================================
Pure signing functions, one per exchange family.

Each function is deterministic given the secret and a
CanonicalRequest. Adapters generate the timestamp once and pass
the same value to both the signature and the transmitted header.

============================================================
CANONICAL STRINGS
============================================================
Binance   sorted query string incl. timestamp     HMAC-SHA256 hex
Bybit     ts + apiKey + recvWindow + query|body    HMAC-SHA256 hex
OKX       ts + METHOD + path + body (ISO-8601 ms)  HMAC-SHA256 base64
KuCoin    ts + METHOD + endpoint + body            HMAC-SHA256 base64
Gate.io   METHOD\\npath\\nquery\\nsha512(body)\\nts  HMAC-SHA512 hex
Bitkub    raw JSON body                            HMAC-SHA256 hex

============================================================
"""

import base64
import hashlib
import hmac
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Tuple
from urllib.parse import urlencode


# ============================================================
# CANONICAL REQUEST
# ============================================================

@dataclass(frozen=True)
class CanonicalRequest:
    """Everything a signer may need about one request."""

    method: str = "GET"
    path: str = ""
    """Path without host and without query string."""

    query: str = ""
    """Encoded query string without leading '?'."""

    body: str = ""
    """Serialized body exactly as transmitted."""

    timestamp: str = ""

    @property
    def path_with_query(self) -> str:
        return f"{self.path}?{self.query}" if self.query else self.path


def encode_query(params: Dict[str, Any], sort: bool = False) -> str:
    """URL-encode params, optionally sorted by key."""
    if not params:
        return ""
    items: Iterable[Tuple[str, Any]] = params.items()
    if sort:
        items = sorted(items)
    return urlencode([(k, v) for k, v in items if v is not None])


def okx_timestamp(epoch_ms: int) -> str:
    """ISO-8601 UTC timestamp with millisecond precision."""
    dt = datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{epoch_ms % 1000:03d}Z"


# ============================================================
# PRIMITIVES
# ============================================================

def _hmac_sha256(secret: str, message: str) -> bytes:
    return hmac.new(secret.encode(), message.encode(), hashlib.sha256).digest()


def _hmac_sha256_hex(secret: str, message: str) -> str:
    return hmac.new(secret.encode(), message.encode(), hashlib.sha256).hexdigest()


def _hmac_sha256_b64(secret: str, message: str) -> str:
    return base64.b64encode(_hmac_sha256(secret, message)).decode()


# ============================================================
# SIGNERS
# ============================================================

def sign_binance(secret: str, request: CanonicalRequest) -> str:
    """
    Binance signature.

    The query string must already contain the timestamp parameter.
    """
    return _hmac_sha256_hex(secret, request.query)


def sign_bybit(
    secret: str,
    request: CanonicalRequest,
    api_key: str,
    recv_window: int,
) -> str:
    """Bybit v5 signature: ts + key + recvWindow + (query for GET | body)."""
    payload = request.query if request.method.upper() == "GET" else request.body
    message = f"{request.timestamp}{api_key}{recv_window}{payload}"
    return _hmac_sha256_hex(secret, message)


def sign_okx(secret: str, request: CanonicalRequest) -> str:
    """OKX v5 signature over ts + METHOD + path(+query) + body."""
    message = f"{request.timestamp}{request.method.upper()}{request.path_with_query}{request.body}"
    return _hmac_sha256_b64(secret, message)


def sign_kucoin(secret: str, request: CanonicalRequest) -> str:
    """KuCoin signature over ts + METHOD + endpoint(+query) + body."""
    message = f"{request.timestamp}{request.method.upper()}{request.path_with_query}{request.body}"
    return _hmac_sha256_b64(secret, message)


def kucoin_passphrase(secret: str, passphrase: str) -> str:
    """Encrypted passphrase for KC-API-KEY-VERSION 2."""
    return _hmac_sha256_b64(secret, passphrase)


def sign_gateio(secret: str, request: CanonicalRequest) -> str:
    """
    Gate.io v4 signature.

    An empty body hashes the empty string.
    """
    body_hash = hashlib.sha512(request.body.encode()).hexdigest()
    message = "\n".join([
        request.method.upper(),
        request.path,
        request.query,
        body_hash,
        request.timestamp,
    ])
    return hmac.new(secret.encode(), message.encode(), hashlib.sha512).hexdigest()


def sign_bitkub(secret: str, request: CanonicalRequest) -> str:
    """Bitkub signature over the raw JSON body."""
    return _hmac_sha256_hex(secret, request.body)


__all__ = [
    "CanonicalRequest",
    "encode_query",
    "okx_timestamp",
    "sign_binance",
    "sign_bybit",
    "sign_okx",
    "sign_kucoin",
    "kucoin_passphrase",
    "sign_gateio",
    "sign_bitkub",
]
