"""
Observability components for the Agent Status monitor.

This module provides structured logging, Prometheus metrics and
OpenTelemetry tracing for the monitoring loop and its collaborators.
"""

from agent_status.observability.logger import configure_logging, get_logger
from agent_status.observability.metrics import (
    GuardedMetricsSink,
    MetricsSink,
    PrometheusMetricsSink,
    configure_metrics,
    get_metrics_sink,
    guard_metrics,
)
from agent_status.observability.tracer import configure_tracing, get_tracer

__all__ = [
    "get_logger",
    "configure_logging",
    "get_tracer",
    "configure_tracing",
    "MetricsSink",
    "GuardedMetricsSink",
    "guard_metrics",
    "PrometheusMetricsSink",
    "configure_metrics",
    "get_metrics_sink",
]
