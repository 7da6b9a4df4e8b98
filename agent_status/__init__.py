"""
Agent Status monitor - Core Module

Polls Zendesk for agent presence and view ticket counts and republishes
them as Prometheus metrics.
"""

__version__ = "0.1.0"

from agent_status.config import Config, ConfigurationStore, load_config
from agent_status.exceptions import (
    AgentStatusError,
    AuthError,
    ConfigurationError,
    DirectoryError,
    ParseError,
    RateLimitedError,
    TransientError,
)

__all__ = [
    "Config",
    "ConfigurationStore",
    "load_config",
    "AgentStatusError",
    "AuthError",
    "ConfigurationError",
    "DirectoryError",
    "ParseError",
    "RateLimitedError",
    "TransientError",
]
