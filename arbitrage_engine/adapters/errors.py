"""
Exchange Adapter - Error Handling and Mapping.

============================================================
PURPOSE
============================================================
Standardized error handling for exchange adapters with:
- Unified error taxonomy across exchanges
- Exchange-specific error code mapping
- Retry eligibility classification
- Error context preservation

============================================================
ERROR FAMILIES
============================================================
1. TRANSPORT       - Timeouts, connection failures, 5xx.
                     Retried with backoff, then TransportExhausted.
2. AUTHENTICATION  - Missing or rejected credentials. Never retried.
                     Missing credentials raise CredentialsMissing
                     before any request is sent.
3. BUSINESS        - Order rejection, insufficient balance, unknown
                     order. Raised as BusinessError, never retried.
4. PARSING         - Malformed response. ResponseParseError carries
                     the raw payload for the log.

Local rate limiting is not an error: callers wait for a permit.

============================================================
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Sequence, Tuple


logger = logging.getLogger(__name__)


# ============================================================
# ERROR TAXONOMY
# ============================================================

class ErrorCategory(Enum):
    """Standardized error categories."""

    NETWORK = "NETWORK"
    TIMEOUT = "TIMEOUT"
    RATE_LIMIT = "RATE_LIMIT"
    AUTHENTICATION = "AUTHENTICATION"
    CREDENTIALS_MISSING = "CREDENTIALS_MISSING"
    INVALID_ORDER = "INVALID_ORDER"
    INVALID_QUANTITY = "INVALID_QUANTITY"
    INVALID_PRICE = "INVALID_PRICE"
    MIN_NOTIONAL = "MIN_NOTIONAL"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    ORDER_NOT_FOUND = "ORDER_NOT_FOUND"
    SYMBOL_NOT_FOUND = "SYMBOL_NOT_FOUND"
    EXCHANGE_ERROR = "EXCHANGE_ERROR"
    PARSE_ERROR = "PARSE_ERROR"
    TRANSPORT_EXHAUSTED = "TRANSPORT_EXHAUSTED"
    UNKNOWN = "UNKNOWN"


class RetryEligibility(Enum):
    """Whether error is eligible for retry."""

    RETRY = "RETRY"           # Safe to retry
    NO_RETRY = "NO_RETRY"     # Should not retry
    BACKOFF = "BACKOFF"       # Retry after backing off


BUSINESS_CATEGORIES = frozenset({
    ErrorCategory.INVALID_ORDER,
    ErrorCategory.INVALID_QUANTITY,
    ErrorCategory.INVALID_PRICE,
    ErrorCategory.MIN_NOTIONAL,
    ErrorCategory.INSUFFICIENT_FUNDS,
    ErrorCategory.ORDER_NOT_FOUND,
    ErrorCategory.SYMBOL_NOT_FOUND,
})


# ============================================================
# EXCHANGE ERROR
# ============================================================

@dataclass
class ExchangeError:
    """
    Standardized exchange error.

    Provides unified error representation across exchanges.
    """

    # Core fields
    category: ErrorCategory
    code: str               # Normalized error code
    message: str            # Human-readable message

    # Retry info
    retry_eligible: RetryEligibility = RetryEligibility.NO_RETRY

    # Original error info
    exchange_code: Optional[str] = None     # Original exchange error code
    exchange_message: Optional[str] = None  # Original exchange message
    http_status: Optional[int] = None

    # Context
    exchange_id: Optional[str] = None
    operation: Optional[str] = None
    symbol: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "category": self.category.value,
            "code": self.code,
            "message": self.message,
            "retry_eligible": self.retry_eligible.value,
            "exchange_code": self.exchange_code,
            "exchange_message": self.exchange_message,
            "http_status": self.http_status,
            "exchange_id": self.exchange_id,
            "operation": self.operation,
            "symbol": self.symbol,
        }

    def is_retryable(self) -> bool:
        """Check if error is retryable."""
        return self.retry_eligible in (RetryEligibility.RETRY, RetryEligibility.BACKOFF)

    def is_business(self) -> bool:
        return self.category in BUSINESS_CATEGORIES

    def __str__(self) -> str:
        """String representation."""
        return f"[{self.category.value}] {self.code}: {self.message}"


# ============================================================
# EXCEPTIONS
# ============================================================

class ExchangeException(Exception):
    """Exception wrapper for ExchangeError."""

    def __init__(self, error: ExchangeError):
        self.error = error
        super().__init__(str(error))

    @property
    def exchange_id(self) -> Optional[str]:
        return self.error.exchange_id

    def is_retryable(self) -> bool:
        return self.error.is_retryable()


class TransportExhausted(ExchangeException):
    """All attempts for one request failed with transient errors."""

    def __init__(
        self,
        exchange_id: str,
        endpoint: str,
        attempts: int,
        last_error: Optional[ExchangeError] = None,
    ):
        self.endpoint = endpoint
        self.attempts = attempts
        self.last_error = last_error
        detail = f": {last_error.message}" if last_error else ""
        super().__init__(ExchangeError(
            category=ErrorCategory.TRANSPORT_EXHAUSTED,
            code=f"{exchange_id.upper()}_TRANSPORT_EXHAUSTED",
            message=f"{endpoint} failed after {attempts} attempts{detail}",
            retry_eligible=RetryEligibility.NO_RETRY,
            http_status=last_error.http_status if last_error else None,
            exchange_id=exchange_id,
            operation=endpoint,
        ))


class CredentialsMissing(ExchangeException):
    """Authenticated call attempted without configured credentials."""

    def __init__(self, exchange_id: str, env_vars: Sequence[str], operation: str = None):
        self.env_vars = tuple(env_vars)
        super().__init__(ExchangeError(
            category=ErrorCategory.CREDENTIALS_MISSING,
            code=f"{exchange_id.upper()}_CREDENTIALS_MISSING",
            message=(
                f"{exchange_id} credentials not configured; "
                f"set {', '.join(self.env_vars)}"
            ),
            retry_eligible=RetryEligibility.NO_RETRY,
            exchange_id=exchange_id,
            operation=operation,
        ))


class BusinessError(ExchangeException):
    """Exchange-reported rejection (order invalid, not found, ...)."""


class InsufficientBalanceError(BusinessError):
    """Not enough available balance to place an order."""

    def __init__(
        self,
        exchange_id: str,
        asset: str,
        required: Decimal,
        available: Decimal,
        symbol: str = None,
    ):
        self.asset = asset
        self.required = required
        self.available = available
        super().__init__(ExchangeError(
            category=ErrorCategory.INSUFFICIENT_FUNDS,
            code=f"{exchange_id.upper()}_INSUFFICIENT_BALANCE",
            message=f"Insufficient {asset}: required {required}, available {available}",
            retry_eligible=RetryEligibility.NO_RETRY,
            exchange_id=exchange_id,
            operation="place_order",
            symbol=symbol,
        ))


class ResponseParseError(ExchangeException):
    """Response could not be decoded into the expected shape."""

    def __init__(
        self,
        exchange_id: str,
        message: str,
        raw: Any = None,
        operation: str = None,
    ):
        self.raw = raw
        super().__init__(ExchangeError(
            category=ErrorCategory.PARSE_ERROR,
            code=f"{exchange_id.upper()}_PARSE_ERROR",
            message=message,
            retry_eligible=RetryEligibility.NO_RETRY,
            exchange_id=exchange_id,
            operation=operation,
        ))

    def raw_preview(self, limit: int = 500) -> str:
        return str(self.raw)[:limit]


def exception_for(error: ExchangeError) -> ExchangeException:
    """Wrap an ExchangeError in the matching exception type."""
    if error.category == ErrorCategory.INSUFFICIENT_FUNDS or error.is_business():
        return BusinessError(error)
    return ExchangeException(error)


# ============================================================
# ERROR CODE MAPS
# ============================================================

ErrorMap = Dict[str, Tuple[ErrorCategory, RetryEligibility]]

# Binance spot error codes
BINANCE_ERROR_MAP: ErrorMap = {
    # Rate limiting
    "-1003": (ErrorCategory.RATE_LIMIT, RetryEligibility.BACKOFF),
    "-1015": (ErrorCategory.RATE_LIMIT, RetryEligibility.BACKOFF),

    # Authentication
    "-1002": (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    "-1022": (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    "-2014": (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    "-2015": (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),

    # Order validation
    "-1013": (ErrorCategory.INVALID_QUANTITY, RetryEligibility.NO_RETRY),
    "-1021": (ErrorCategory.TIMEOUT, RetryEligibility.RETRY),
    "-1100": (ErrorCategory.INVALID_ORDER, RetryEligibility.NO_RETRY),
    "-1102": (ErrorCategory.INVALID_ORDER, RetryEligibility.NO_RETRY),
    "-1111": (ErrorCategory.INVALID_QUANTITY, RetryEligibility.NO_RETRY),
    "-1116": (ErrorCategory.INVALID_ORDER, RetryEligibility.NO_RETRY),
    "-1121": (ErrorCategory.SYMBOL_NOT_FOUND, RetryEligibility.NO_RETRY),

    # Funds / orders
    "-2010": (ErrorCategory.INSUFFICIENT_FUNDS, RetryEligibility.NO_RETRY),
    "-2011": (ErrorCategory.ORDER_NOT_FOUND, RetryEligibility.NO_RETRY),
    "-2013": (ErrorCategory.ORDER_NOT_FOUND, RetryEligibility.NO_RETRY),

    # Exchange internal
    "-1000": (ErrorCategory.EXCHANGE_ERROR, RetryEligibility.RETRY),
    "-1001": (ErrorCategory.EXCHANGE_ERROR, RetryEligibility.RETRY),
    "-1006": (ErrorCategory.EXCHANGE_ERROR, RetryEligibility.RETRY),
    "-1007": (ErrorCategory.TIMEOUT, RetryEligibility.RETRY),
}

# OKX v5 error codes
OKX_ERROR_MAP: ErrorMap = {
    "50011": (ErrorCategory.RATE_LIMIT, RetryEligibility.BACKOFF),
    "50013": (ErrorCategory.RATE_LIMIT, RetryEligibility.BACKOFF),

    "50101": (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    "50102": (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    "50103": (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    "50104": (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    "50105": (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    "50111": (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    "50113": (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),

    "51000": (ErrorCategory.INVALID_ORDER, RetryEligibility.NO_RETRY),
    "51001": (ErrorCategory.SYMBOL_NOT_FOUND, RetryEligibility.NO_RETRY),
    "51008": (ErrorCategory.INSUFFICIENT_FUNDS, RetryEligibility.NO_RETRY),
    "51016": (ErrorCategory.INVALID_ORDER, RetryEligibility.NO_RETRY),
    "51020": (ErrorCategory.INVALID_QUANTITY, RetryEligibility.NO_RETRY),
    "51400": (ErrorCategory.ORDER_NOT_FOUND, RetryEligibility.NO_RETRY),
    "51603": (ErrorCategory.ORDER_NOT_FOUND, RetryEligibility.NO_RETRY),

    "50000": (ErrorCategory.EXCHANGE_ERROR, RetryEligibility.RETRY),
    "50001": (ErrorCategory.EXCHANGE_ERROR, RetryEligibility.RETRY),
    "50004": (ErrorCategory.TIMEOUT, RetryEligibility.RETRY),
}

# Bybit v5 error codes
BYBIT_ERROR_MAP: ErrorMap = {
    "10006": (ErrorCategory.RATE_LIMIT, RetryEligibility.BACKOFF),
    "10018": (ErrorCategory.RATE_LIMIT, RetryEligibility.BACKOFF),

    "10003": (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    "10004": (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    "10005": (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    "10002": (ErrorCategory.TIMEOUT, RetryEligibility.RETRY),

    "10001": (ErrorCategory.INVALID_ORDER, RetryEligibility.NO_RETRY),
    "170121": (ErrorCategory.SYMBOL_NOT_FOUND, RetryEligibility.NO_RETRY),
    "170131": (ErrorCategory.INSUFFICIENT_FUNDS, RetryEligibility.NO_RETRY),
    "170136": (ErrorCategory.INVALID_QUANTITY, RetryEligibility.NO_RETRY),
    "170140": (ErrorCategory.MIN_NOTIONAL, RetryEligibility.NO_RETRY),
    "170213": (ErrorCategory.ORDER_NOT_FOUND, RetryEligibility.NO_RETRY),
    "110001": (ErrorCategory.ORDER_NOT_FOUND, RetryEligibility.NO_RETRY),

    "10000": (ErrorCategory.EXCHANGE_ERROR, RetryEligibility.RETRY),
    "10016": (ErrorCategory.EXCHANGE_ERROR, RetryEligibility.RETRY),
}

# KuCoin error codes
KUCOIN_ERROR_MAP: ErrorMap = {
    "429000": (ErrorCategory.RATE_LIMIT, RetryEligibility.BACKOFF),

    "400001": (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    "400003": (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    "400004": (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    "400005": (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    "400006": (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    "400007": (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    "400002": (ErrorCategory.TIMEOUT, RetryEligibility.RETRY),

    "400100": (ErrorCategory.INVALID_ORDER, RetryEligibility.NO_RETRY),
    "200004": (ErrorCategory.INSUFFICIENT_FUNDS, RetryEligibility.NO_RETRY),
    "900001": (ErrorCategory.SYMBOL_NOT_FOUND, RetryEligibility.NO_RETRY),
    "400400": (ErrorCategory.ORDER_NOT_FOUND, RetryEligibility.NO_RETRY),

    "500000": (ErrorCategory.EXCHANGE_ERROR, RetryEligibility.RETRY),
}

# Gate.io v4 error labels
GATEIO_ERROR_MAP: ErrorMap = {
    "TOO_MANY_REQUESTS": (ErrorCategory.RATE_LIMIT, RetryEligibility.BACKOFF),

    "INVALID_KEY": (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    "INVALID_SIGNATURE": (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    "MISSING_REQUIRED_HEADER": (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    "FORBIDDEN": (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    "REQUEST_EXPIRED": (ErrorCategory.TIMEOUT, RetryEligibility.RETRY),

    "INVALID_PARAM_VALUE": (ErrorCategory.INVALID_ORDER, RetryEligibility.NO_RETRY),
    "INVALID_ARGUMENT": (ErrorCategory.INVALID_ORDER, RetryEligibility.NO_RETRY),
    "INVALID_PRECISION": (ErrorCategory.INVALID_PRICE, RetryEligibility.NO_RETRY),
    "INVALID_AMOUNT": (ErrorCategory.INVALID_QUANTITY, RetryEligibility.NO_RETRY),
    "BALANCE_NOT_ENOUGH": (ErrorCategory.INSUFFICIENT_FUNDS, RetryEligibility.NO_RETRY),
    "INVALID_CURRENCY_PAIR": (ErrorCategory.SYMBOL_NOT_FOUND, RetryEligibility.NO_RETRY),
    "ORDER_NOT_FOUND": (ErrorCategory.ORDER_NOT_FOUND, RetryEligibility.NO_RETRY),

    "SERVER_ERROR": (ErrorCategory.EXCHANGE_ERROR, RetryEligibility.RETRY),
    "INTERNAL": (ErrorCategory.EXCHANGE_ERROR, RetryEligibility.RETRY),
}

# Bitkub numeric error field
BITKUB_ERROR_MAP: ErrorMap = {
    "2": (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    "3": (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    "4": (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    "5": (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    "6": (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    "7": (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    "8": (ErrorCategory.TIMEOUT, RetryEligibility.RETRY),

    "10": (ErrorCategory.INVALID_ORDER, RetryEligibility.NO_RETRY),
    "11": (ErrorCategory.SYMBOL_NOT_FOUND, RetryEligibility.NO_RETRY),
    "12": (ErrorCategory.INVALID_QUANTITY, RetryEligibility.NO_RETRY),
    "13": (ErrorCategory.INVALID_PRICE, RetryEligibility.NO_RETRY),
    "15": (ErrorCategory.MIN_NOTIONAL, RetryEligibility.NO_RETRY),
    "18": (ErrorCategory.INSUFFICIENT_FUNDS, RetryEligibility.NO_RETRY),
    "21": (ErrorCategory.ORDER_NOT_FOUND, RetryEligibility.NO_RETRY),
    "24": (ErrorCategory.ORDER_NOT_FOUND, RetryEligibility.NO_RETRY),

    "90": (ErrorCategory.EXCHANGE_ERROR, RetryEligibility.RETRY),
}

_ERROR_MAPS: Dict[str, ErrorMap] = {
    "binance": BINANCE_ERROR_MAP,
    "okx": OKX_ERROR_MAP,
    "bybit": BYBIT_ERROR_MAP,
    "kucoin": KUCOIN_ERROR_MAP,
    "gateio": GATEIO_ERROR_MAP,
    "bitkub": BITKUB_ERROR_MAP,
}


# ============================================================
# ERROR MAPPER
# ============================================================

def _classify_http_status(http_status: Optional[int]) -> Tuple[ErrorCategory, RetryEligibility]:
    if http_status in (429, 418):
        return ErrorCategory.RATE_LIMIT, RetryEligibility.BACKOFF
    if http_status in (401, 403):
        return ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY
    if http_status == 404:
        return ErrorCategory.ORDER_NOT_FOUND, RetryEligibility.NO_RETRY
    if http_status and http_status >= 500:
        return ErrorCategory.EXCHANGE_ERROR, RetryEligibility.RETRY
    if http_status and http_status >= 400:
        return ErrorCategory.INVALID_ORDER, RetryEligibility.NO_RETRY
    return ErrorCategory.UNKNOWN, RetryEligibility.NO_RETRY


def map_exchange_error(
    exchange_id: str,
    code: Any,
    message: str,
    http_status: int = None,
    operation: str = None,
) -> ExchangeError:
    """
    Map exchange error to unified format.

    Looks the exchange's own code up first, then falls back to the
    HTTP status.

    Args:
        exchange_id: Exchange identifier
        code: Exchange error code
        message: Error message
        http_status: HTTP status code
        operation: Endpoint or operation name

    Returns:
        Unified ExchangeError
    """
    exchange_id = exchange_id.lower()
    code_str = str(code) if code is not None else ""
    error_map = _ERROR_MAPS.get(exchange_id, {})

    if code_str in error_map:
        category, retry = error_map[code_str]
    else:
        category, retry = _classify_http_status(http_status)

    return ExchangeError(
        category=category,
        code=f"{exchange_id.upper()}_{code_str or http_status or 'ERROR'}",
        message=message,
        retry_eligible=retry,
        exchange_code=code_str or None,
        exchange_message=message,
        http_status=http_status,
        exchange_id=exchange_id,
        operation=operation,
    )


# ============================================================
# TRANSPORT ERROR HELPERS
# ============================================================

def create_network_error(
    exchange_id: str,
    message: str,
    operation: str = None,
) -> ExchangeError:
    """Create network error."""
    return ExchangeError(
        category=ErrorCategory.NETWORK,
        code=f"{exchange_id.upper()}_NETWORK_ERROR",
        message=message,
        retry_eligible=RetryEligibility.RETRY,
        exchange_id=exchange_id,
        operation=operation,
    )


def create_timeout_error(
    exchange_id: str,
    timeout_ms: int,
    operation: str = None,
) -> ExchangeError:
    """Create timeout error."""
    return ExchangeError(
        category=ErrorCategory.TIMEOUT,
        code=f"{exchange_id.upper()}_TIMEOUT",
        message=f"Request timed out after {timeout_ms}ms",
        retry_eligible=RetryEligibility.RETRY,
        exchange_id=exchange_id,
        operation=operation,
    )
