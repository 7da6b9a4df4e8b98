"""
Gateway components for the Agent Status monitor.

This module provides the Zendesk directory client and the backoff
controller protecting it from repeated total failures.
"""

from agent_status.gateway.backoff import BackoffController
from agent_status.gateway.zendesk_client import DirectoryClient, ZendeskDirectoryClient

__all__ = [
    "BackoffController",
    "DirectoryClient",
    "ZendeskDirectoryClient",
]
