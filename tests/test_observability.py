"""Tests for the observability module."""

import json
import logging
from datetime import datetime
from io import StringIO

import pytest

from session_coordinator.observability.context import (
    ContextManager,
    ContextScope,
    SessionContext,
)
from session_coordinator.observability.logging import (
    LogLevel,
    LogRecord,
    StructuredFormatter,
    configure_logging,
)
from session_coordinator.observability.metrics import (
    Metric,
    MetricsCollector,
    MetricType,
)


class TestMetricsCollector:
    """Tests for the MetricsCollector class."""

    def test_default_metrics(self):
        """Test default metrics are created with the prefix."""
        collector = MetricsCollector()

        assert collector.get_metric("operation_duration_ms").name == "session_coordinator_operation_duration_ms"
        assert collector.get_metric("operations_total").type == MetricType.COUNTER
        assert collector.get_metric("active_sessions").type == MetricType.GAUGE

    def test_record_operation(self):
        """Test successes and failures are counted per operation."""
        collector = MetricsCollector()

        collector.record_operation("search", 10.0, success=True)
        collector.record_operation("search", 30.0, success=False, error_code="VECTOR_INDEX_ERROR")
        collector.record_operation("save_note", 20.0)

        summary = collector.get_summary()

        assert summary["total_operations"] == 3
        assert summary["total_errors"] == 1
        assert summary["success_rate"] == pytest.approx(200 / 3)
        assert summary["operations"]["search"]["count"] == 2
        assert summary["operations"]["search"]["errors"] == 1
        assert summary["operations"]["search"]["avg_duration_ms"] == pytest.approx(20.0)
        errors = collector.get_metric("operation_errors_total")
        assert errors.get_sum(code="VECTOR_INDEX_ERROR") == 1

    def test_empty_summary(self):
        summary = MetricsCollector().get_summary()

        assert summary["total_operations"] == 0
        assert summary["success_rate"] == 0
        assert summary["operations"] == {}

    def test_active_sessions_gauge(self):
        collector = MetricsCollector()

        collector.set_active_sessions(1)
        collector.set_active_sessions(0)

        assert collector.get_metric("active_sessions").get_current_value() == 0

    def test_clear(self):
        collector = MetricsCollector()
        collector.record_operation("search", 10.0)

        collector.clear()

        assert collector.get_summary()["total_operations"] == 0


class TestMetric:
    """Tests for the Metric class."""

    def test_histogram(self):
        """Test histogram buckets are cumulative."""
        metric = Metric(name="latency", type=MetricType.HISTOGRAM, buckets=[10, 100])
        for value in (5, 50, 500):
            metric.record(value)

        buckets = metric.get_histogram_buckets()

        assert buckets == {"le_10": 1, "le_100": 2, "le_inf": 3}
        assert metric.to_dict()["average"] == pytest.approx(185)

    def test_percentile_with_labels(self):
        """Test percentiles only consider matching labels."""
        metric = Metric(name="latency", type=MetricType.HISTOGRAM)
        for value in range(1, 101):
            metric.record(value, {"operation": "search"})
        metric.record(10_000, {"operation": "save_note"})

        assert metric.get_percentile(95, operation="search") == 96
        assert metric.get_percentile(50, operation="save_note") == 10_000
        assert metric.get_percentile(50, operation="missing") is None

    def test_keeps_most_recent_samples(self):
        """Test old values are dropped once max_samples is reached."""
        metric = Metric(name="ops", type=MetricType.COUNTER, max_samples=3)
        for value in (1, 2, 3, 4, 5):
            metric.record(value)

        assert [v.value for v in metric.values] == [3, 4, 5]
        assert metric.get_sum() == 12
        assert metric.to_dict()["value_count"] == 3


class TestSessionContext:
    """Tests for session context propagation."""

    def test_create_context(self):
        context = ContextManager.create_context(session_id="s1", operation="search", limit=5)

        assert context.session_id == "s1"
        assert context.operation == "search"
        assert context.attributes == {"limit": 5}
        assert len(context.request_id) == 16

    def test_context_scope(self):
        """Test the previous context is restored on exit."""
        outer = SessionContext(session_id="outer")
        inner = SessionContext(session_id="inner")

        with ContextScope(outer):
            with ContextScope(inner) as current:
                assert ContextManager.get_current() is current
            assert ContextManager.get_current() is outer

    def test_to_dict(self):
        data = SessionContext(session_id="s1", project_path="/p").to_dict()

        assert data["session_id"] == "s1"
        assert data["project_path"] == "/p"
        assert "start_time" in data


class TestStructuredLogging:
    """Tests for structured log output."""

    def test_log_record_to_dict(self):
        record = LogRecord(
            level=LogLevel.WARNING,
            message="Stuck pattern detected",
            logger_name="session_coordinator.stuck.detector",
            session_id="s1",
            operation="check_stuck_pattern",
        )

        data = record.to_dict()

        assert data["level"] == "WARNING"
        assert data["session_id"] == "s1"
        assert "exception" not in data

    def test_log_record_to_text(self):
        record = LogRecord(
            timestamp=datetime(2025, 11, 9, 10, 0, 0),
            message="Session started",
            logger_name="session_coordinator.session",
            session_id="s1",
            operation="start_session",
        )

        text = record.to_text()

        assert text.startswith("2025-11-09 10:00:00.000 [INFO]")
        assert "(session=s1 op=start_session)" in text

    def test_log_level_conversion(self):
        assert LogLevel.DEBUG.to_python_level() == logging.DEBUG
        assert LogLevel("ERROR").to_python_level() == logging.ERROR

    def test_json_output_carries_context(self, restore_package_logger):
        """Test records logged inside a scope carry its session and operation."""
        stream = StringIO()
        configure_logging(level="debug", json_output=True, output=stream)
        logger = logging.getLogger("session_coordinator.test")

        with ContextScope(ContextManager.create_context(session_id="s1", operation="search")):
            logger.info("searching")

        record = json.loads(stream.getvalue().strip())
        assert record["message"] == "searching"
        assert record["session_id"] == "s1"
        assert record["operation"] == "search"
        assert record["logger"] == "session_coordinator.test"

    def test_reconfigure_replaces_handler(self, restore_package_logger):
        """Test configuring twice leaves a single structured handler."""
        configure_logging(output=StringIO())
        logger = configure_logging(level=LogLevel.WARNING, output=StringIO())

        structured = [h for h in logger.handlers if isinstance(h.formatter, StructuredFormatter)]
        assert len(structured) == 1
        assert logger.level == logging.WARNING
        assert logger.propagate is False

    def test_exception_included(self, restore_package_logger):
        stream = StringIO()
        configure_logging(output=stream)
        logger = logging.getLogger("session_coordinator.test")

        try:
            raise RuntimeError("boom")
        except RuntimeError:
            logger.exception("failed")

        output = stream.getvalue()
        assert "failed" in output
        assert "RuntimeError: boom" in output
