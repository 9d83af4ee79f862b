"""
Observability Module for the Mapping Tool

Provides:
- Structured logging with correlation IDs (session, item, property, source key)
- Metrics collection (remote calls, cache hits, reconciliation outcomes, timings)
"""

from core.observability.metrics import (
    MetricsCollector,
    get_metrics,
    record_remote_call,
    record_remote_failure,
    record_cache_hit,
    record_cache_miss,
    record_outcome,
    record_processing_time,
)

from core.observability.logging import (
    get_logger,
    configure_logging,
    CorrelationContext,
    with_correlation,
)

__all__ = [
    # Metrics
    "MetricsCollector",
    "get_metrics",
    "record_remote_call",
    "record_remote_failure",
    "record_cache_hit",
    "record_cache_miss",
    "record_outcome",
    "record_processing_time",
    # Logging
    "get_logger",
    "configure_logging",
    "CorrelationContext",
    "with_correlation",
]
