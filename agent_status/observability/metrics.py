"""
Metrics publication for the Agent Status monitor.

Republishes agent presence, call status and ticket counts as Prometheus
gauges, together with failure and backoff telemetry of the monitor itself.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Protocol, Tuple, runtime_checkable

import prometheus_client
from prometheus_client import CollectorRegistry, Counter, Gauge, start_http_server

from agent_status.config import ObservabilitySettings
from agent_status.observability.logger import get_logger

# Global metrics configuration
_metrics_registry: Optional[CollectorRegistry] = None
_metrics_sink: Optional["PrometheusMetricsSink"] = None
_metrics_server_port: Optional[int] = None

AGENT_LABELS = ("agent_id", "agent_name")


@dataclass(frozen=True)
class MetricDefinition:
    """Name, type, help text and label names of a published metric."""

    kind: str
    description: str
    labels: Tuple[str, ...] = ()


METRIC_DEFINITIONS: Dict[str, MetricDefinition] = {
    # Agent availability
    "zendesk_agent_state": MetricDefinition(
        "gauge", "Current agent state (0=offline, 1=away, 2=transfers_only, 3=online, -1=unknown)", AGENT_LABELS
    ),
    "zendesk_agent_call_status": MetricDefinition(
        "gauge", "Current call status (0=no_call, 1=on_call, 2=wrap_up, -1=unknown)", AGENT_LABELS
    ),
    # Tickets
    "zendesk_view_tickets_total": MetricDefinition(
        "gauge", "Total number of tickets in the monitored Zendesk view", ("view_id",)
    ),
    "zendesk_agent_tickets": MetricDefinition(
        "gauge", "Number of tickets assigned to each agent in the monitored view", AGENT_LABELS
    ),
    "zendesk_agent_tickets_api_calls_total": MetricDefinition(
        "counter", "Total number of agent tickets API calls made", ("status",)
    ),
    # Monitor telemetry
    "zendesk_presence_checks_total": MetricDefinition(
        "counter", "Total number of agent presence checks by outcome", ("status",)
    ),
    "zendesk_monitor_cycles_total": MetricDefinition(
        "counter", "Total number of monitoring cycles by outcome", ("outcome",)
    ),
    "zendesk_monitor_consecutive_failures": MetricDefinition(
        "gauge", "Consecutive monitoring cycles in which every presence check failed"
    ),
    "zendesk_monitor_backoff_seconds": MetricDefinition(
        "gauge", "Current backoff delay before the next polling attempt"
    ),
    "zendesk_monitor_poll_interval_seconds": MetricDefinition(
        "gauge", "Adaptive interval until the next monitoring cycle"
    ),
    "zendesk_monitor_configuration_valid": MetricDefinition(
        "gauge", "Whether the Zendesk configuration is valid (1) or not (0)"
    ),
    "zendesk_api_requests_total": MetricDefinition(
        "counter", "Total number of Zendesk API requests by operation and status", ("operation", "status")
    ),
}


class MetricsSink(Protocol):
    """Destination for gauge and counter updates."""

    def set_gauge(self, name: str, labels: Optional[Dict[str, str]], value: float) -> None:
        ...

    def increment_counter(self, name: str, labels: Optional[Dict[str, str]] = None) -> None:
        ...


@runtime_checkable
class SeriesRemover(Protocol):
    """Sink that can drop a single labelled gauge series."""

    def remove_series(self, name: str, labels: Dict[str, str]) -> None:
        ...


class GuardedMetricsSink:
    """
    Wraps any MetricsSink so that updates are fire-and-forget.

    A sink that raises is logged and ignored; callers never see the error.
    """

    def __init__(self, sink: MetricsSink):
        self.sink = sink
        self.logger = get_logger("metrics.guard")

    def set_gauge(self, name: str, labels: Optional[Dict[str, str]], value: float) -> None:
        try:
            self.sink.set_gauge(name, labels, value)
        except Exception as e:
            self.logger.warning("Metrics sink failed to set gauge", metric=name, labels=labels, error=repr(e))

    def increment_counter(self, name: str, labels: Optional[Dict[str, str]] = None) -> None:
        try:
            self.sink.increment_counter(name, labels)
        except Exception as e:
            self.logger.warning("Metrics sink failed to increment counter", metric=name, labels=labels, error=repr(e))

    def remove_series(self, name: str, labels: Dict[str, str]) -> None:
        if not isinstance(self.sink, SeriesRemover):
            return
        try:
            self.sink.remove_series(name, labels)
        except Exception as e:
            self.logger.warning("Metrics sink failed to remove series", metric=name, labels=labels, error=repr(e))


def guard_metrics(sink: MetricsSink) -> GuardedMetricsSink:
    """Wrap a sink for fire-and-forget use, unless it is already wrapped."""
    if isinstance(sink, GuardedMetricsSink):
        return sink
    return GuardedMetricsSink(sink)


class PrometheusMetricsSink:
    """
    Metrics sink backed by prometheus_client.

    Updates are fire-and-forget: a failing update is logged and dropped so
    it can never affect the caller.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """
        Initialize the sink and register all known metrics.

        Args:
            registry: Registry to register metrics in; a private one if None
        """
        self.registry = registry if registry is not None else CollectorRegistry()
        self.logger = get_logger("metrics.sink")
        self._gauges: Dict[str, Gauge] = {}
        self._counters: Dict[str, Counter] = {}

        for name, definition in METRIC_DEFINITIONS.items():
            if definition.kind == "gauge":
                self._gauges[name] = Gauge(
                    name, definition.description, list(definition.labels), registry=self.registry
                )
            else:
                self._counters[name] = Counter(
                    name, definition.description, list(definition.labels), registry=self.registry
                )

    def set_gauge(self, name: str, labels: Optional[Dict[str, str]], value: float) -> None:
        """
        Set a gauge value.

        Args:
            name: Metric name
            labels: Label values keyed by label name
            value: New gauge value
        """
        try:
            gauge = self._gauges[name]
            (gauge.labels(**labels) if labels else gauge).set(value)
        except Exception as e:
            self.logger.warning("Failed to set gauge", metric=name, labels=labels, error=str(e))

    def increment_counter(self, name: str, labels: Optional[Dict[str, str]] = None) -> None:
        """
        Increment a counter by one.

        Args:
            name: Metric name
            labels: Label values keyed by label name
        """
        try:
            counter = self._counters[name]
            (counter.labels(**labels) if labels else counter).inc()
        except Exception as e:
            self.logger.warning("Failed to increment counter", metric=name, labels=labels, error=str(e))

    def remove_series(self, name: str, labels: Dict[str, str]) -> None:
        """Drop one labelled series of a gauge, if present."""
        try:
            gauge = self._gauges[name]
            gauge.remove(*[labels[label] for label in METRIC_DEFINITIONS[name].labels])
        except KeyError:
            return
        except Exception as e:
            self.logger.warning("Failed to remove series", metric=name, labels=labels, error=str(e))


def configure_metrics(settings: Optional[ObservabilitySettings] = None) -> PrometheusMetricsSink:
    """
    Configure metrics publication and start the exposition server.

    Args:
        settings: Observability settings

    Returns:
        The process-wide metrics sink
    """
    global _metrics_registry, _metrics_sink, _metrics_server_port

    settings = settings or ObservabilitySettings()
    logger = get_logger("metrics")

    if _metrics_sink is None:
        _metrics_registry = prometheus_client.CollectorRegistry()
        _metrics_sink = PrometheusMetricsSink(_metrics_registry)

    if settings.metrics_enabled and _metrics_server_port is None:
        try:
            start_http_server(settings.metrics_port, registry=_metrics_registry)
            _metrics_server_port = settings.metrics_port
            logger.info("Metrics server started", port=settings.metrics_port)
        except Exception as e:
            logger.warning("Failed to start metrics server", port=settings.metrics_port, error=str(e))

    return _metrics_sink


def get_metrics_sink() -> PrometheusMetricsSink:
    """Get the process-wide metrics sink, creating it without a server if needed."""
    global _metrics_registry, _metrics_sink

    if _metrics_sink is None:
        _metrics_registry = prometheus_client.CollectorRegistry()
        _metrics_sink = PrometheusMetricsSink(_metrics_registry)
    return _metrics_sink
