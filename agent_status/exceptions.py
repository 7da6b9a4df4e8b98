"""
Core exceptions for the Agent Status monitor.
"""

from typing import Optional


class AgentStatusError(Exception):
    """Base exception for all Agent Status monitor errors."""

    pass


class ConfigurationError(AgentStatusError):
    """Raised when configuration cannot be loaded, parsed or saved."""

    pass


class ObservabilityError(AgentStatusError):
    """Raised when there's an error with observability components."""

    pass


class DirectoryError(AgentStatusError):
    """Raised when a request to the remote directory fails."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TransientError(DirectoryError):
    """Raised on timeouts, transport failures and 5xx responses."""

    pass


class RateLimitedError(DirectoryError):
    """Raised when the directory throttles the caller (HTTP 429)."""

    def __init__(self, message: str, retry_after: float = 60.0, status_code: Optional[int] = 429):
        super().__init__(message, status_code=status_code)
        self.retry_after = retry_after


class AuthError(DirectoryError):
    """Raised when the directory rejects the credentials (HTTP 401/403)."""

    pass


class NotFoundError(DirectoryError):
    """Raised when the requested agent or view does not exist (HTTP 404)."""

    pass


class ParseError(DirectoryError):
    """Raised when a directory response is malformed or missing fields."""

    pass
