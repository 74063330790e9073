"""
Exchange Adapter - Metrics.

============================================================
PURPOSE
============================================================
In-process metrics for exchange adapter performance.

METRICS TRACKED:
- Request latency (per adapter, per endpoint)
- Request success/failure counts and error codes
- Retries performed by the transport
- Orders placed, rejected and cancelled

============================================================
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict


logger = logging.getLogger(__name__)


@dataclass
class LatencyStats:
    """Latency statistics."""

    count: int = 0
    total_ms: float = 0.0
    min_ms: float = float("inf")
    max_ms: float = 0.0

    @property
    def avg_ms(self) -> float:
        return self.total_ms / self.count if self.count > 0 else 0.0

    def record(self, latency_ms: float) -> None:
        self.count += 1
        self.total_ms += latency_ms
        self.min_ms = min(self.min_ms, latency_ms)
        self.max_ms = max(self.max_ms, latency_ms)

    def to_dict(self) -> Dict[str, float]:
        return {
            "count": self.count,
            "avg_ms": self.avg_ms,
            "min_ms": self.min_ms if self.count else 0.0,
            "max_ms": self.max_ms,
        }


# ============================================================
# ADAPTER METRICS
# ============================================================

class AdapterMetrics:
    """Metrics collector for one adapter instance."""

    def __init__(self, exchange_id: str):
        self._exchange_id = exchange_id
        self.reset()

    @property
    def exchange_id(self) -> str:
        return self._exchange_id

    # --------------------------------------------------------
    # RECORDING
    # --------------------------------------------------------

    def record_request(
        self,
        endpoint: str,
        latency_ms: float,
        success: bool,
        status_code: int = None,
        error_code: str = None,
    ) -> None:
        """Record one HTTP attempt."""
        self._latency[endpoint].record(latency_ms)
        self._latency["_all"].record(latency_ms)

        if success:
            self._success += 1
        else:
            self._failure += 1
            if error_code:
                self._error_codes[error_code] += 1

    def record_retry(self) -> None:
        self._retries += 1

    def record_order_placed(self) -> None:
        self._orders["placed"] += 1

    def record_order_rejected(self, error_code: str = None) -> None:
        self._orders["rejected"] += 1
        if error_code:
            self._error_codes[error_code] += 1

    def record_order_cancelled(self) -> None:
        self._orders["cancelled"] += 1

    # --------------------------------------------------------
    # REPORTING
    # --------------------------------------------------------

    @property
    def total_requests(self) -> int:
        return self._success + self._failure

    def get_summary(self) -> Dict[str, Any]:
        """Metrics summary as a plain dict."""
        uptime = (datetime.now(timezone.utc) - self._start_time).total_seconds()
        total = self.total_requests
        return {
            "exchange_id": self._exchange_id,
            "uptime_seconds": uptime,
            "requests": {
                "total": total,
                "success": self._success,
                "failure": self._failure,
                "retries": self._retries,
                "success_rate": self._success / total if total > 0 else 1.0,
            },
            "latency": self._latency["_all"].to_dict(),
            "orders": dict(self._orders),
            "errors": dict(self._error_codes),
        }

    def get_latency_by_endpoint(self) -> Dict[str, Dict[str, float]]:
        return {
            endpoint: stats.to_dict()
            for endpoint, stats in self._latency.items()
            if endpoint != "_all"
        }

    def reset(self) -> None:
        self._start_time = datetime.now(timezone.utc)
        self._latency: Dict[str, LatencyStats] = defaultdict(LatencyStats)
        self._success = 0
        self._failure = 0
        self._retries = 0
        self._orders: Dict[str, int] = {"placed": 0, "rejected": 0, "cancelled": 0}
        self._error_codes: Dict[str, int] = defaultdict(int)


# ============================================================
# METRICS AGGREGATOR
# ============================================================

class MetricsAggregator:
    """Aggregates metrics from multiple adapters."""

    def __init__(self):
        self._adapters: Dict[str, AdapterMetrics] = {}

    def register(self, exchange_id: str, metrics: AdapterMetrics) -> None:
        self._adapters[exchange_id] = metrics

    def unregister(self, exchange_id: str) -> None:
        self._adapters.pop(exchange_id, None)

    def get(self, exchange_id: str) -> AdapterMetrics:
        return self._adapters[exchange_id]

    def get_all_summaries(self) -> Dict[str, Dict[str, Any]]:
        return {
            exchange_id: metrics.get_summary()
            for exchange_id, metrics in self._adapters.items()
        }

    def get_aggregate_summary(self) -> Dict[str, Any]:
        total_success = 0
        total_failure = 0
        for metrics in self._adapters.values():
            summary = metrics.get_summary()
            total_success += summary["requests"]["success"]
            total_failure += summary["requests"]["failure"]
        total = total_success + total_failure
        return {
            "exchanges": list(self._adapters.keys()),
            "total_requests": total,
            "total_success": total_success,
            "total_failure": total_failure,
            "success_rate": total_success / total if total > 0 else 1.0,
        }


# Global aggregator instance
_global_aggregator = MetricsAggregator()


def get_global_aggregator() -> MetricsAggregator:
    """Get global metrics aggregator."""
    return _global_aggregator
