"""
Metrics collection for observability.

Counters and histograms tracking the latency and outcome of every public
operation.
"""

import statistics
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Deque, Dict, List, Optional


class MetricType(str, Enum):
    """Type of metric."""
    COUNTER = "counter"
    GAUGE = "gauge"
    HISTOGRAM = "histogram"


@dataclass
class MetricValue:
    """A single metric value with timestamp."""
    value: float
    timestamp: datetime = field(default_factory=datetime.now)
    labels: Dict[str, str] = field(default_factory=dict)


@dataclass
class Metric:
    """
    Represents a metric being tracked.

    Supports counters, gauges and histograms. Only the most recent
    ``max_samples`` values are kept, so sums, averages and percentiles
    describe that window.
    """

    name: str
    type: MetricType
    description: str = ""
    unit: str = ""
    values: Deque[MetricValue] = field(default_factory=deque)

    # For histograms (milliseconds)
    buckets: List[float] = field(default_factory=lambda: [5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000])

    # Values kept per metric; older ones are dropped
    max_samples: int = 10_000

    def __post_init__(self):
        self.values = deque(self.values, maxlen=self.max_samples)

    def record(self, value: float, labels: Optional[Dict[str, str]] = None) -> None:
        """Record a metric value."""
        self.values.append(MetricValue(
            value=value,
            labels=labels or {},
        ))

    def select(self, **labels: str) -> List[float]:
        """Values whose labels include all the given pairs."""
        return [
            v.value for v in self.values
            if all(v.labels.get(k) == val for k, val in labels.items())
        ]

    def get_current_value(self) -> Optional[float]:
        """Get the most recent value."""
        if self.values:
            return self.values[-1].value
        return None

    def get_sum(self, **labels: str) -> float:
        """Get sum of matching values (for counters)."""
        return sum(self.select(**labels))

    def get_average(self, **labels: str) -> Optional[float]:
        """Get average of matching values."""
        values = self.select(**labels)
        if values:
            return statistics.mean(values)
        return None

    def get_percentile(self, percentile: float, **labels: str) -> Optional[float]:
        """Get a percentile of matching values (0-100)."""
        values = sorted(self.select(**labels))
        if not values:
            return None
        index = int(len(values) * percentile / 100)
        return values[min(index, len(values) - 1)]

    def get_histogram_buckets(self) -> Dict[str, int]:
        """Get histogram bucket counts."""
        bucket_counts = {f"le_{b}": 0 for b in self.buckets}
        bucket_counts["le_inf"] = 0

        for metric_value in self.values:
            value = metric_value.value
            for bucket in self.buckets:
                if value <= bucket:
                    bucket_counts[f"le_{bucket}"] += 1
            bucket_counts["le_inf"] += 1

        return bucket_counts

    def to_dict(self) -> Dict[str, Any]:
        """Convert metric to dictionary."""
        base = {
            "name": self.name,
            "type": self.type.value,
            "description": self.description,
            "unit": self.unit,
            "value_count": len(self.values),
        }

        if self.type == MetricType.COUNTER:
            base["sum"] = self.get_sum()
        elif self.type == MetricType.GAUGE:
            base["current"] = self.get_current_value()
        elif self.type == MetricType.HISTOGRAM:
            base["buckets"] = self.get_histogram_buckets()
            base["average"] = self.get_average()
            base["p50"] = self.get_percentile(50)
            base["p95"] = self.get_percentile(95)

        return base


class MetricsCollector:
    """
    Central collector for operation metrics.

    Usage:
        collector = MetricsCollector()

        collector.record_operation("search", 12.5, success=True)
        collector.record_operation("save_note", 40.1, success=False, error_code="VECTOR_INDEX_ERROR")

        summary = collector.get_summary()
    """

    def __init__(self, prefix: str = "session_coordinator"):
        self.prefix = prefix
        self._metrics: Dict[str, Metric] = {}
        self._setup_default_metrics()

    def _setup_default_metrics(self) -> None:
        """Set up default metrics for operation monitoring."""
        self._create_metric(
            "operation_duration_ms",
            MetricType.HISTOGRAM,
            "Operation latency in milliseconds",
            "milliseconds",
        )
        self._create_metric(
            "operations_total",
            MetricType.COUNTER,
            "Total number of operations served",
        )
        self._create_metric(
            "operation_errors_total",
            MetricType.COUNTER,
            "Total number of operations that reported an error",
        )
        self._create_metric(
            "active_sessions",
            MetricType.GAUGE,
            "Number of active sessions",
        )

    def _create_metric(
        self,
        name: str,
        metric_type: MetricType,
        description: str = "",
        unit: str = "",
    ) -> Metric:
        """Create a new metric."""
        full_name = f"{self.prefix}_{name}"
        metric = Metric(
            name=full_name,
            type=metric_type,
            description=description,
            unit=unit,
        )
        self._metrics[full_name] = metric
        return metric

    def record_operation(
        self,
        operation: str,
        duration_ms: float,
        success: bool = True,
        error_code: Optional[str] = None,
    ) -> None:
        """Record the latency and outcome of one operation."""
        status = "success" if success else "error"

        self.get_metric("operation_duration_ms").record(duration_ms, {"operation": operation})
        self.get_metric("operations_total").record(1, {"operation": operation, "status": status})

        if not success:
            self.get_metric("operation_errors_total").record(
                1, {"operation": operation, "code": error_code or "INTERNAL_ERROR"}
            )

    def set_active_sessions(self, count: int) -> None:
        """Record the number of active sessions."""
        self.get_metric("active_sessions").record(count)

    def get_metric(self, name: str) -> Optional[Metric]:
        """Get a metric by name."""
        full_name = f"{self.prefix}_{name}"
        return self._metrics.get(full_name)

    def get_summary(self) -> Dict[str, Any]:
        """Get totals plus a per-operation breakdown."""
        durations = self.get_metric("operation_duration_ms")
        operations = self.get_metric("operations_total")
        errors = self.get_metric("operation_errors_total")

        total_operations = operations.get_sum()
        total_errors = errors.get_sum()

        by_operation = {}
        for name in sorted({v.labels.get("operation") for v in operations.values}):
            count = operations.get_sum(operation=name)
            failed = errors.get_sum(operation=name)
            by_operation[name] = {
                "count": int(count),
                "errors": int(failed),
                "avg_duration_ms": durations.get_average(operation=name) or 0,
                "p95_duration_ms": durations.get_percentile(95, operation=name) or 0,
            }

        return {
            "total_operations": int(total_operations),
            "total_errors": int(total_errors),
            "success_rate": (total_operations - total_errors) / total_operations * 100 if total_operations > 0 else 0,
            "avg_duration_ms": durations.get_average() or 0,
            "operations": by_operation,
        }

    def clear(self) -> None:
        """Clear all metric values."""
        for metric in self._metrics.values():
            metric.values.clear()
