"""
Metrics Collector - in-process orchestration metrics

Counts routed messages, transition outcomes, auxiliary failures and
dispatches, and keeps gauges/histograms for the driver loop.
"""

import time
from collections import defaultdict
from typing import Any, Dict, List, Optional


class MetricsCollector:
    """
    Metrics collector.

    Responsibilities:
    - message routing counts per type and transition outcome
    - auxiliary store failures
    - dispatch counts, failures and latency
    """

    def __init__(self, histogram_limit: int = 1000):
        """
        Args:
            histogram_limit: Samples kept per histogram
        """
        self._histogram_limit = histogram_limit
        self._counters: Dict[str, float] = defaultdict(float)
        self._gauges: Dict[str, float] = {}
        self._histograms: Dict[str, List[float]] = defaultdict(list)

    # =========================================================================
    # Counter Methods
    # =========================================================================

    def increment(
        self,
        name: str,
        value: float = 1.0,
        labels: Optional[Dict[str, str]] = None
    ) -> None:
        key = self._make_key(name, labels)
        self._counters[key] += value

    def get_counter(
        self,
        name: str,
        labels: Optional[Dict[str, str]] = None
    ) -> float:
        return self._counters.get(self._make_key(name, labels), 0.0)

    # =========================================================================
    # Gauge Methods
    # =========================================================================

    def set_gauge(
        self,
        name: str,
        value: float,
        labels: Optional[Dict[str, str]] = None
    ) -> None:
        self._gauges[self._make_key(name, labels)] = value

    def get_gauge(
        self,
        name: str,
        labels: Optional[Dict[str, str]] = None
    ) -> Optional[float]:
        return self._gauges.get(self._make_key(name, labels))

    # =========================================================================
    # Histogram Methods
    # =========================================================================

    def observe(
        self,
        name: str,
        value: float,
        labels: Optional[Dict[str, str]] = None
    ) -> None:
        values = self._histograms[self._make_key(name, labels)]
        values.append(value)
        if len(values) > self._histogram_limit:
            del values[: len(values) - self._histogram_limit]

    def get_histogram_stats(
        self,
        name: str,
        labels: Optional[Dict[str, str]] = None
    ) -> Dict[str, float]:
        values = self._histograms.get(self._make_key(name, labels), [])
        if not values:
            return {"count": 0, "min": 0, "max": 0, "avg": 0, "p50": 0, "p90": 0, "p99": 0}

        sorted_values = sorted(values)
        count = len(values)
        return {
            "count": count,
            "min": sorted_values[0],
            "max": sorted_values[-1],
            "avg": sum(values) / count,
            "p50": self._percentile(sorted_values, 50),
            "p90": self._percentile(sorted_values, 90),
            "p99": self._percentile(sorted_values, 99),
        }

    class timer:
        """Context manager recording elapsed milliseconds into a histogram."""

        def __init__(
            self,
            collector: "MetricsCollector",
            name: str,
            labels: Optional[Dict[str, str]] = None
        ):
            self.collector = collector
            self.name = name
            self.labels = labels
            self.elapsed_ms = 0.0
            self._start = 0.0

        def __enter__(self):
            self._start = time.perf_counter()
            return self

        def __exit__(self, exc_type, exc_val, exc_tb):
            self.elapsed_ms = (time.perf_counter() - self._start) * 1000
            self.collector.observe(self.name, self.elapsed_ms, self.labels)

    # =========================================================================
    # Orchestration Methods
    # =========================================================================

    def record_route(self, message_type: str, outcome: Optional[str]) -> None:
        self.increment("messages_routed_total", 1, {"message_type": message_type})
        if outcome:
            self.increment("transitions_total", 1, {"outcome": outcome})

    def record_auxiliary_error(self, step: str) -> None:
        self.increment("auxiliary_errors_total", 1, {"step": step})

    def record_dispatch(self, agent: str, elapsed_ms: float, success: bool) -> None:
        labels = {"agent": agent, "success": str(success).lower()}
        self.increment("dispatch_total", 1, labels)
        self.observe("dispatch_time_ms", elapsed_ms, {"agent": agent})

    def get_summary(self) -> Dict[str, Any]:
        return {
            "counters": dict(self._counters),
            "gauges": dict(self._gauges),
            "histograms": {
                key: self.get_histogram_stats(*self._split_key(key))
                for key in self._histograms
            },
        }

    # =========================================================================
    # Helper Methods
    # =========================================================================

    def _make_key(
        self,
        name: str,
        labels: Optional[Dict[str, str]] = None
    ) -> str:
        if not labels:
            return name

        label_str = "__".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}__{label_str}"

    @staticmethod
    def _split_key(key: str):
        name, _, rest = key.partition("__")
        if not rest:
            return name, None
        labels = dict(part.split("=", 1) for part in rest.split("__"))
        return name, labels

    @staticmethod
    def _percentile(sorted_values: List[float], percentile: int) -> float:
        if not sorted_values:
            return 0
        index = int(len(sorted_values) * percentile / 100)
        return sorted_values[min(index, len(sorted_values) - 1)]
