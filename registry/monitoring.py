"""
Query Timing and Registry Gauges

Every repository call runs inside query_timer(), which keeps per-operation
timing stats in process and feeds the Prometheus query histogram. The
registry monitor pushes its audit numbers into the registry gauges via
publish_registry_metrics().

    with query_timer("company.resolve_symbol"):
        company = session.execute(stmt).scalar_one_or_none()
"""

import logging
import time
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, Any, List

from prometheus_client import Histogram, Counter, Gauge

logger = logging.getLogger(__name__)


@dataclass
class TimerSettings:
    slow_query_threshold_ms: float = 1000.0
    warning_threshold_ms: float = 500.0
    enable_prometheus: bool = True
    enable_logging: bool = True


_settings = TimerSettings()


def configure_monitoring(
    slow_query_threshold_ms: float = 1000.0,
    warning_threshold_ms: float = 500.0,
    enable_prometheus: bool = True,
    enable_logging: bool = True
) -> None:
    """
    Replace the process-wide timer settings.

    Args:
        slow_query_threshold_ms: Operations at or above this are counted and logged as slow
        warning_threshold_ms: Operations at or above this are info-logged
        enable_prometheus: Feed the query histogram and the registry gauges
        enable_logging: Log slow operations
    """
    global _settings
    _settings = TimerSettings(
        slow_query_threshold_ms=slow_query_threshold_ms,
        warning_threshold_ms=warning_threshold_ms,
        enable_prometheus=enable_prometheus,
        enable_logging=enable_logging
    )


# ============================================
# PROMETHEUS
# ============================================

QUERY_DURATION = Histogram(
    'ethiccheck_db_query_duration_seconds',
    'Registry query duration in seconds',
    ['operation', 'status'],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0)
)

QUERY_TOTAL = Counter(
    'ethiccheck_db_query_total',
    'Registry queries executed',
    ['operation', 'status']
)

SLOW_QUERY_TOTAL = Counter(
    'ethiccheck_db_slow_queries_total',
    'Registry queries over the slow threshold',
    ['operation']
)

# metric key in MonitoringReport.metrics -> gauge
REGISTRY_GAUGES = {
    'total_companies': Gauge(
        'ethiccheck_registry_companies_total',
        'Active companies in the registry'
    ),
    'ticker_coverage': Gauge(
        'ethiccheck_registry_ticker_coverage_percent',
        'Percentage of active companies holding a ticker'
    ),
    'potential_duplicates': Gauge(
        'ethiccheck_registry_potential_duplicates',
        'Groups of active companies sharing a normalized name'
    ),
    'validation_issues': Gauge(
        'ethiccheck_registry_validation_issues',
        'Ticker validation issues found by the last audit'
    ),
    'critical_issues': Gauge(
        'ethiccheck_registry_critical_alerts',
        'Critical alerts raised by the last audit'
    ),
}


def publish_registry_metrics(metrics: Dict[str, Any]) -> None:
    """Set the registry gauges from a MonitoringReport's metrics dict."""
    if not _settings.enable_prometheus:
        return

    for key, gauge in REGISTRY_GAUGES.items():
        gauge.set(metrics.get(key, 0))


# ============================================
# IN-PROCESS STATS
# ============================================

@dataclass
class OperationStats:
    operation: str
    durations_ms: List[float] = field(default_factory=list)
    errors: int = 0
    slow_queries: int = 0
    last_executed: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        count = len(self.durations_ms)
        total = sum(self.durations_ms)
        return {
            'operation': self.operation,
            'count': count,
            'total_time_ms': round(total, 2),
            'avg_time_ms': round(total / count, 2) if count else 0.0,
            'min_time_ms': round(min(self.durations_ms), 2) if count else 0.0,
            'max_time_ms': round(max(self.durations_ms), 2) if count else 0.0,
            'errors': self.errors,
            'slow_queries': self.slow_queries,
            'last_executed': self.last_executed.isoformat() if self.last_executed else None
        }


class OperationLedger:
    """Per-operation timings, safe to share between threads."""

    def __init__(self):
        self._lock = threading.Lock()
        self._operations: Dict[str, OperationStats] = {}
        self._since = datetime.now()

    def add(self, operation: str, duration_ms: float, failed: bool, slow: bool) -> None:
        with self._lock:
            stats = self._operations.setdefault(operation, OperationStats(operation))
            stats.durations_ms.append(duration_ms)
            stats.errors += int(failed)
            stats.slow_queries += int(slow)
            stats.last_executed = datetime.now()

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'uptime_seconds': (datetime.now() - self._since).total_seconds(),
                'operations': {op: s.to_dict() for op, s in self._operations.items()}
            }

    def slow_operations(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [s.to_dict() for s in self._operations.values() if s.slow_queries]

    def clear(self) -> None:
        with self._lock:
            self._operations.clear()
            self._since = datetime.now()


_ledger = OperationLedger()


def get_db_metrics() -> Dict[str, Any]:
    return _ledger.snapshot()


def get_slow_query_report() -> List[Dict[str, Any]]:
    """Stats for every operation that has crossed the slow threshold."""
    return _ledger.slow_operations()


def reset_metrics() -> None:
    _ledger.clear()


@contextmanager
def query_timer(operation: str):
    """
    Time one registry operation.

    Exceptions are recorded as errors and re-raised unchanged.

    Args:
        operation: Dotted name such as 'company.find_by_ticker'
    """
    started = time.perf_counter()
    failed = False

    try:
        yield
    except Exception:
        failed = True
        raise
    finally:
        elapsed = time.perf_counter() - started
        elapsed_ms = elapsed * 1000
        slow = elapsed_ms >= _settings.slow_query_threshold_ms

        _ledger.add(operation, elapsed_ms, failed, slow)

        if _settings.enable_prometheus:
            status = "error" if failed else "success"
            QUERY_DURATION.labels(operation=operation, status=status).observe(elapsed)
            QUERY_TOTAL.labels(operation=operation, status=status).inc()
            if slow:
                SLOW_QUERY_TOTAL.labels(operation=operation).inc()

        if _settings.enable_logging:
            if slow:
                logger.warning(
                    f"SLOW QUERY: {operation} took {elapsed_ms:.2f}ms "
                    f"(threshold: {_settings.slow_query_threshold_ms}ms)"
                )
            elif elapsed_ms >= _settings.warning_threshold_ms and not failed:
                logger.info(f"Query {operation} took {elapsed_ms:.2f}ms")
