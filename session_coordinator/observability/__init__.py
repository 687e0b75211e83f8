"""
Observability: structured logging with session context, and operation metrics.
"""

from .context import (
    SessionContext,
    ContextManager,
    ContextScope,
)
from .logging import (
    LogLevel,
    StructuredFormatter,
    configure_logging,
)
from .metrics import (
    MetricsCollector,
    MetricType,
    Metric,
)

__all__ = [
    # Context
    "SessionContext",
    "ContextManager",
    "ContextScope",
    # Logging
    "LogLevel",
    "StructuredFormatter",
    "configure_logging",
    # Metrics
    "MetricsCollector",
    "MetricType",
    "Metric",
]
