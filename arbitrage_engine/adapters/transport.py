"""
Exchange Adapter - REST Transport.

============================================================
PURPOSE
============================================================
HTTP client wrapper shared by every REST adapter:
- Per-adapter rate limiting (permit pool)
- Bounded retry with linear backoff
- Exchange error mapping and typed failures
- Request/response logging and metrics

============================================================
RATE LIMITING
============================================================
A counting permit pool sized to rate_limit_per_second. One permit
is taken per send() and handed back release_interval seconds later
(1s by default) regardless of how long the call takes. This caps
request INITIATIONS per rolling second; it is not a token bucket
and a slow call does not hold its permit.

Waiters suspend in FIFO order. A waiter cancelled before it gets a
permit takes nothing; a permit already taken is always returned by
its scheduled release.

============================================================
RETRY
============================================================
Transient failures (network errors, timeouts, 5xx, 429, exchange
codes classified RETRY/BACKOFF) are retried up to max_retries more
times, sleeping 1s x attempt number in between. Exhaustion raises
TransportExhausted. Everything else is raised immediately.

============================================================
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Tuple, Union

import aiohttp

from ..config import ExchangeConfig
from .errors import (
    ExchangeError,
    ExchangeException,
    ResponseParseError,
    TransportExhausted,
    create_network_error,
    create_timeout_error,
    exception_for,
    map_exchange_error,
)
from .logging_utils import AdapterLogger
from .metrics import AdapterMetrics


logger = logging.getLogger(__name__)


SleepFunc = Callable[[float], Awaitable[None]]

# Returns (code, message) when the payload reports a failure, else None
ErrorExtractor = Callable[[int, Any], Optional[Tuple[Any, str]]]


# ============================================================
# RATE LIMITER
# ============================================================

class RateLimiter:
    """
    Permit pool releasing each permit a fixed interval after acquisition.

    Release timing runs through the injected sleep function, so tests
    can drive it without waiting on wall-clock time.

    Usage:
        await limiter.acquire()
        ... issue request ...
    """

    def __init__(
        self,
        permits_per_second: int,
        release_interval: float = 1.0,
        sleep: Optional[SleepFunc] = None,
    ):
        if permits_per_second < 1:
            raise ValueError("permits_per_second must be >= 1")
        self._permits = permits_per_second
        self._release_interval = release_interval
        self._sleep = sleep or asyncio.sleep
        self._semaphore = asyncio.Semaphore(permits_per_second)
        self._held = 0
        self._releases: Set["asyncio.Task[None]"] = set()

    @property
    def permits(self) -> int:
        return self._permits

    @property
    def release_interval(self) -> float:
        return self._release_interval

    @property
    def held(self) -> int:
        """Permits currently taken and not yet released."""
        return self._held

    async def acquire(self) -> None:
        """
        Wait for a permit and schedule its release.

        Cancellation while waiting leaves the pool untouched.
        """
        await self._semaphore.acquire()
        self._held += 1
        task = asyncio.ensure_future(self._release_later())
        self._releases.add(task)
        task.add_done_callback(self._releases.discard)

    async def _release_later(self) -> None:
        # the permit comes back even if the release task is cancelled
        try:
            await self._sleep(self._release_interval)
        finally:
            self._held -= 1
            self._semaphore.release()


# ============================================================
# REQUEST DESCRIPTION
# ============================================================

@dataclass(frozen=True)
class PreparedRequest:
    """A fully built request: path, encoded query, serialized body, headers."""

    method: str
    path: str
    query: str = ""
    body: str = ""
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def path_with_query(self) -> str:
        return f"{self.path}?{self.query}" if self.query else self.path


# Called once per attempt so signed requests get a fresh timestamp
RequestSource = Union[PreparedRequest, Callable[[], PreparedRequest]]


def _default_error_extractor(status: int, payload: Any) -> Optional[Tuple[Any, str]]:
    if 200 <= status < 300:
        return None
    if isinstance(payload, dict):
        code = payload.get("code", status)
        message = payload.get("msg") or payload.get("message") or str(payload)
        return code, message
    return status, str(payload)[:200]


# ============================================================
# REST TRANSPORT
# ============================================================

class RestTransport:
    """
    Rate-limited, retrying JSON-over-HTTP client for one exchange.

    Each adapter instance owns exactly one transport, and through it
    one aiohttp session and one rate limiter.
    """

    def __init__(
        self,
        exchange_id: str,
        base_url: str,
        config: ExchangeConfig,
        session: Optional[aiohttp.ClientSession] = None,
        sleep: Optional[SleepFunc] = None,
        rate_limiter: Optional[RateLimiter] = None,
        error_extractor: Optional[ErrorExtractor] = None,
        metrics: Optional[AdapterMetrics] = None,
        adapter_logger: Optional[AdapterLogger] = None,
        backoff_seconds: float = 1.0,
    ):
        """
        Initialize transport.

        Args:
            exchange_id: Exchange identifier used for error mapping
            base_url: Scheme and host, no trailing slash
            config: Rate limit, timeout and retry settings
            session: Injected session (not closed by this transport)
            sleep: Backoff sleep function (defaults to asyncio.sleep)
            rate_limiter: Injected limiter (defaults to one sized from config)
            error_extractor: Detects exchange-level failures in a payload
            metrics: Metrics sink
            adapter_logger: Structured request logger
            backoff_seconds: Base of the linear backoff
        """
        self._exchange_id = exchange_id
        self._base_url = base_url.rstrip("/")
        self._config = config
        self._session = session
        self._owns_session = session is None
        self._sleep = sleep or asyncio.sleep
        self._limiter = rate_limiter or RateLimiter(config.rate_limit_per_second)
        self._extract_error = error_extractor or _default_error_extractor
        self._metrics = metrics or AdapterMetrics(exchange_id)
        self._log = adapter_logger or AdapterLogger(exchange_id)
        self._backoff_seconds = backoff_seconds

    # --------------------------------------------------------
    # PROPERTIES
    # --------------------------------------------------------

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._limiter

    @property
    def metrics(self) -> AdapterMetrics:
        return self._metrics

    @property
    def max_attempts(self) -> int:
        return self._config.max_retries + 1

    @property
    def is_open(self) -> bool:
        return self._session is not None and not getattr(self._session, "closed", False)

    # --------------------------------------------------------
    # SESSION
    # --------------------------------------------------------

    async def open(self) -> None:
        """Create the owned session if needed."""
        if self._session is None or (self._owns_session and self._session.closed):
            timeout = aiohttp.ClientTimeout(total=self._config.timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True

    async def close(self) -> None:
        """Close the session if this transport created it."""
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        if self._owns_session:
            self._session = None

    # --------------------------------------------------------
    # SEND
    # --------------------------------------------------------

    async def send(self, source: RequestSource, operation: str = None) -> Any:
        """
        Send a request and return the decoded JSON payload.

        Args:
            source: Request, or a factory building it per attempt
            operation: Name used in logs and errors

        Returns:
            Decoded JSON body

        Raises:
            TransportExhausted: transient failures on every attempt
            ExchangeException / BusinessError: non-retryable failure
            ResponseParseError: 2xx response that is not JSON
        """
        await self.open()
        await self._limiter.acquire()

        endpoint = None
        last_error: Optional[ExchangeError] = None

        for attempt in range(1, self.max_attempts + 1):
            request = source() if callable(source) else source
            endpoint = request.path
            op = operation or endpoint

            try:
                return await self._attempt(request, op, attempt)
            except ExchangeException as e:
                if not e.is_retryable():
                    raise
                last_error = e.error

            if attempt < self.max_attempts:
                delay = self._backoff_seconds * attempt
                self._log.warning(
                    f"{op} failed ({last_error}), retrying in {delay:.1f}s "
                    f"(attempt {attempt}/{self.max_attempts})"
                )
                self._metrics.record_retry()
                await self._sleep(delay)

        self._log.error(f"{endpoint} failed after {self.max_attempts} attempts: {last_error}")
        raise TransportExhausted(self._exchange_id, endpoint, self.max_attempts, last_error)

    async def _attempt(self, request: PreparedRequest, operation: str, attempt: int) -> Any:
        url = f"{self._base_url}{request.path_with_query}"
        request_id = self._log.log_request(
            method=request.method,
            endpoint=request.path_with_query,
            headers=request.headers,
            body=request.body,
            attempt=attempt,
        )
        start_time = time.monotonic()

        try:
            async with self._session.request(
                request.method,
                url,
                headers=request.headers or None,
                data=request.body or None,
            ) as resp:
                status = resp.status
                text = await resp.text()
        except asyncio.TimeoutError:
            self._record_failure(request.path, start_time, None, "TIMEOUT")
            raise ExchangeException(
                create_timeout_error(self._exchange_id, self._config.timeout_ms, operation)
            )
        except aiohttp.ClientError as e:
            self._record_failure(request.path, start_time, None, "NETWORK_ERROR")
            raise ExchangeException(
                create_network_error(self._exchange_id, str(e) or type(e).__name__, operation)
            )

        latency_ms = (time.monotonic() - start_time) * 1000
        payload = self._decode(status, text, operation)

        failure = self._extract_error(status, payload)
        if failure is None and not 200 <= status < 300:
            failure = _default_error_extractor(status, payload)

        if failure is not None:
            code, message = failure
            error = map_exchange_error(self._exchange_id, code, message, status, operation)
            self._metrics.record_request(request.path, latency_ms, False, status, error.code)
            self._log.log_response(
                request_id, status, latency_ms, False,
                error_code=error.code, error_message=message,
            )
            if error.is_retryable():
                raise ExchangeException(error)
            raise exception_for(error)

        self._metrics.record_request(request.path, latency_ms, True, status)
        self._log.log_response(request_id, status, latency_ms, True, response_body=payload)
        return payload

    def _decode(self, status: int, text: str, operation: str) -> Any:
        if not text:
            return {}
        try:
            return json.loads(text)
        except ValueError:
            if 200 <= status < 300:
                self._log.error(f"{operation}: non-JSON response: {text[:500]}")
                raise ResponseParseError(
                    self._exchange_id,
                    f"{operation}: response is not valid JSON",
                    raw=text,
                    operation=operation,
                )
            return text

    def _record_failure(
        self,
        endpoint: str,
        start_time: float,
        status: Optional[int],
        error_code: str,
    ) -> None:
        latency_ms = (time.monotonic() - start_time) * 1000
        self._metrics.record_request(endpoint, latency_ms, False, status, error_code)
