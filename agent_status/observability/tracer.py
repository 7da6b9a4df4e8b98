"""
Tracing for the Agent Status monitor.

Wraps OpenTelemetry so each monitoring cycle and presence check runs in a
span. Spans are only exported when tracing is enabled in configuration.
"""

from typing import Optional

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

from agent_status.config import ObservabilitySettings
from agent_status.observability.logger import get_logger

_tracer_configured = False
_tracer_provider: Optional[TracerProvider] = None


def configure_tracing(settings: Optional[ObservabilitySettings] = None, version: str = "0.1.0") -> None:
    """
    Configure tracing.

    Args:
        settings: Observability settings
        version: Service version recorded on the tracing resource
    """
    global _tracer_configured, _tracer_provider

    settings = settings or ObservabilitySettings()
    if _tracer_configured or not settings.tracing_enabled:
        return

    resource = Resource.create({
        "service.name": "agent-status-monitor",
        "service.version": version,
    })
    _tracer_provider = TracerProvider(resource=resource)
    _tracer_provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(_tracer_provider)

    _tracer_configured = True
    get_logger("tracer").info("Tracing configured", exporter="console")


def get_tracer(name: str) -> trace.Tracer:
    """
    Get a tracer instance.

    Without configuration this is OpenTelemetry's no-op tracer.

    Args:
        name: Tracer name (typically component name)
    """
    return trace.get_tracer(name)


def shutdown_tracing() -> None:
    """Flush and shut down the tracer provider, if configured."""
    global _tracer_configured, _tracer_provider

    if _tracer_provider is not None:
        _tracer_provider.shutdown()
    _tracer_provider = None
    _tracer_configured = False
