"""
Exchange Adapter - Secure Logging Utilities.

============================================================
PURPOSE
============================================================
Logging for exchange adapter operations with:
- Credential masking (API keys, signatures, passphrases)
- Structured request/response entries
- Fire-and-forget calls: a logging failure never reaches the caller

============================================================
SECURITY REQUIREMENTS
============================================================
1. NEVER log raw API keys, secrets or passphrases
2. Mask every exchange's auth headers
3. Log a hash of request bodies, not the body itself

============================================================
"""

import hashlib
import json
import logging
import re
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional


logger = logging.getLogger(__name__)


# ============================================================
# SENSITIVE DATA PATTERNS
# ============================================================

# Header names that should be masked (lowercase)
SENSITIVE_HEADERS = {
    "authorization",
    "x-mbx-apikey",
    "x-bapi-api-key",
    "x-bapi-sign",
    "ok-access-key",
    "ok-access-sign",
    "ok-access-passphrase",
    "kc-api-key",
    "kc-api-sign",
    "kc-api-passphrase",
    "key",
    "sign",
    "x-btk-apikey",
    "x-btk-sign",
}

# Parameter names that should be masked (lowercase)
SENSITIVE_PARAMS = {
    "apikey",
    "api_key",
    "secret",
    "secretkey",
    "passphrase",
    "signature",
    "sign",
    "sig",
}

# Long hex strings are almost always signatures
_HEX_SIGNATURE = re.compile(r"\b[a-f0-9]{64,128}\b", re.IGNORECASE)


# ============================================================
# MASKING FUNCTIONS
# ============================================================

def mask_value(value: str, show_chars: int = 4) -> str:
    """
    Mask a sensitive value, showing only first few chars.

    Args:
        value: Value to mask
        show_chars: Number of chars to show at start

    Returns:
        Masked value
    """
    if not value or len(value) <= show_chars:
        return "***"
    return f"{value[:show_chars]}...***"


def mask_headers(headers: Optional[Dict[str, str]]) -> Dict[str, str]:
    """Return a copy of headers with auth values masked."""
    if not headers:
        return {}
    return {
        key: mask_value(str(value)) if key.lower() in SENSITIVE_HEADERS else value
        for key, value in headers.items()
    }


def mask_params(params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Return a copy of params with sensitive values masked, recursively."""
    if not params:
        return {}

    masked = {}
    for key, value in params.items():
        if str(key).lower() in SENSITIVE_PARAMS:
            masked[key] = mask_value(str(value)) if value else value
        elif isinstance(value, dict):
            masked[key] = mask_params(value)
        elif isinstance(value, str):
            masked[key] = _HEX_SIGNATURE.sub("***HMAC***", value)
        else:
            masked[key] = value
    return masked


def mask_url(url: str) -> str:
    """Mask signature-like query parameters in a URL."""
    if not url:
        return url
    for param in SENSITIVE_PARAMS:
        url = re.sub(f"({param}=)([^&]+)", r"\1***", url, flags=re.IGNORECASE)
    return url


# ============================================================
# LOG ENTRY STRUCTURES
# ============================================================

@dataclass
class RequestLogEntry:
    """Structured log entry for requests."""

    timestamp: str
    exchange_id: str
    method: str
    endpoint: str
    request_id: str
    attempt: int = 1
    headers: Dict[str, str] = None
    body_hash: str = None

    def to_json(self) -> str:
        return json.dumps({k: v for k, v in asdict(self).items() if v is not None}, default=str)


@dataclass
class ResponseLogEntry:
    """Structured log entry for responses."""

    timestamp: str
    exchange_id: str
    request_id: str
    status_code: int
    latency_ms: float
    success: bool
    error_code: str = None
    error_message: str = None
    response_preview: str = None

    def to_json(self) -> str:
        return json.dumps({k: v for k, v in asdict(self).items() if v is not None}, default=str)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ============================================================
# ADAPTER LOGGER
# ============================================================

class AdapterLogger:
    """
    Secure logger for exchange adapter operations.

    Every method swallows its own formatting failures so that a
    logging problem can never break a request.
    """

    def __init__(self, exchange_id: str, logger_name: str = None):
        self._exchange_id = exchange_id
        self._logger = logging.getLogger(
            logger_name or f"arbitrage_engine.adapters.{exchange_id}"
        )
        self._request_counter = 0

    @property
    def name(self) -> str:
        return self._logger.name

    def _generate_request_id(self) -> str:
        self._request_counter += 1
        return f"{self._exchange_id}-{self._request_counter}"

    @staticmethod
    def _hash_body(body: Any) -> Optional[str]:
        if not body:
            return None
        if isinstance(body, (dict, list)):
            body = json.dumps(body, sort_keys=True, default=str)
        return hashlib.sha256(str(body).encode()).hexdigest()[:16]

    def log_request(
        self,
        method: str,
        endpoint: str,
        headers: Dict[str, str] = None,
        body: Any = None,
        attempt: int = 1,
    ) -> str:
        """
        Log outgoing request.

        Returns:
            Request ID for correlation
        """
        request_id = self._generate_request_id()
        try:
            entry = RequestLogEntry(
                timestamp=_now_iso(),
                exchange_id=self._exchange_id,
                method=method,
                endpoint=mask_url(endpoint),
                request_id=request_id,
                attempt=attempt,
                headers=mask_headers(headers) or None,
                body_hash=self._hash_body(body),
            )
            self._logger.debug(f"REQUEST: {entry.to_json()}")
        except (TypeError, ValueError) as e:
            logger.debug(f"Could not format request log for {self._exchange_id}: {e}")
        return request_id

    def log_response(
        self,
        request_id: str,
        status_code: int,
        latency_ms: float,
        success: bool,
        error_code: str = None,
        error_message: str = None,
        response_body: Any = None,
    ) -> None:
        """Log incoming response (preview truncated to 200 chars)."""
        try:
            preview = None
            if response_body is not None:
                if isinstance(response_body, (dict, list)):
                    preview = json.dumps(response_body, default=str)[:200]
                else:
                    preview = str(response_body)[:200]

            entry = ResponseLogEntry(
                timestamp=_now_iso(),
                exchange_id=self._exchange_id,
                request_id=request_id,
                status_code=status_code,
                latency_ms=round(latency_ms, 2),
                success=success,
                error_code=error_code,
                error_message=error_message[:200] if error_message else None,
                response_preview=preview,
            )
            if success:
                self._logger.debug(f"RESPONSE: {entry.to_json()}")
            else:
                self._logger.warning(f"RESPONSE_ERROR: {entry.to_json()}")
        except (TypeError, ValueError) as e:
            logger.debug(f"Could not format response log for {self._exchange_id}: {e}")

    def info(self, message: str) -> None:
        self._logger.info(f"[{self._exchange_id}] {message}")

    def warning(self, message: str) -> None:
        self._logger.warning(f"[{self._exchange_id}] {message}")

    def error(self, message: str, exc_info: bool = False) -> None:
        self._logger.error(f"[{self._exchange_id}] {message}", exc_info=exc_info)

    def critical(self, message: str) -> None:
        self._logger.critical(f"[{self._exchange_id}] {message}")

    def debug(self, message: str) -> None:
        self._logger.debug(f"[{self._exchange_id}] {message}")
