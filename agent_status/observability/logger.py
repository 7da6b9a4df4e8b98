"""
Structured logging for the Agent Status monitor.

Provides structured logging through structlog on top of the standard
library, rendered either for the console or as JSON lines.
"""

import logging
import sys
from typing import Any, Dict, Optional

import structlog
from structlog.stdlib import LoggerFactory

from agent_status.config import ObservabilitySettings

# Global logger configuration
_logger_configured = False
_current_config: Optional[Dict[str, Any]] = None

_SENSITIVE_KEYS = ("password", "token", "secret", "auth")


def configure_logging(settings: Optional[ObservabilitySettings] = None) -> None:
    """
    Configure structured logging.

    Args:
        settings: Observability settings; defaults to console output at INFO
    """
    global _logger_configured, _current_config

    observability_config = (settings or ObservabilitySettings()).model_dump()

    # Don't reconfigure if already configured with the same settings
    if _logger_configured and _current_config == observability_config:
        return

    level = observability_config["log_level"].upper()

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="ISO"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if observability_config["log_format"] == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level, logging.INFO))

    # Clear existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(console_handler)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)

    _logger_configured = True
    _current_config = observability_config


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically component name)

    Returns:
        Structured logger instance
    """
    if not _logger_configured:
        configure_logging()

    return structlog.get_logger(name)


def sanitize_log_data(data: Any, max_length: int = 1000) -> Any:
    """
    Sanitize data for logging by redacting secrets and limiting size.

    Args:
        data: Data to sanitize
        max_length: Maximum string length

    Returns:
        Sanitized data
    """
    if data is None:
        return None

    if isinstance(data, str):
        if len(data) > max_length:
            return data[:max_length] + "..."
        return data

    if isinstance(data, dict):
        sanitized = {}
        for key, value in data.items():
            if any(sensitive in str(key).lower() for sensitive in _SENSITIVE_KEYS):
                sanitized[key] = "[REDACTED]" if value else value
            else:
                sanitized[key] = sanitize_log_data(value, max_length)
        return sanitized

    if isinstance(data, (list, tuple)):
        return [sanitize_log_data(item, max_length) for item in data[:10]]

    if isinstance(data, (int, float, bool)):
        return data

    str_data = str(data)
    if len(str_data) > max_length:
        return str_data[:max_length] + "..."
    return str_data
