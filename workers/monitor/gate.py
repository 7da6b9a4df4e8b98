"""
Configuration gate for the monitoring loop.

Polling only happens while Zendesk credentials are present and not left at
their placeholder values. A valid configuration is re-checked at most every
few minutes; an invalid one is re-checked on every call so that a fix made
by an operator is picked up promptly.
"""

import time
from typing import Callable, Optional

from agent_status.config import ConfigurationStore
from agent_status.models import ConfigurationState
from agent_status.observability import get_logger


class ConfigurationGate:
    """Caches and re-validates Zendesk configuration validity."""

    def __init__(
        self,
        store: ConfigurationStore,
        check_interval: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.check_interval = check_interval
        self.clock = clock
        self.state = ConfigurationState()
        self.logger = get_logger("monitor.gate")
        # None until the first check so the first result is always logged
        self._last_validity: Optional[bool] = None
        self._last_reload_error: Optional[str] = None

    def is_valid(self) -> bool:
        """Return whether polling may proceed, re-checking when due."""
        now = self.clock()
        if (
            self.state.valid
            and self.state.last_checked_at is not None
            and now - self.state.last_checked_at < self.check_interval
        ):
            return True

        self._check(now)
        return self.state.valid

    def _check(self, now: float) -> None:
        self.store.reload_if_changed()
        if self.store.last_error and self.store.last_error != self._last_reload_error:
            self.logger.error("Failed to reload configuration, keeping previous values", error=self.store.last_error)
        self._last_reload_error = self.store.last_error

        credentials = self.store.get_credentials()
        validity = credentials.field_validity() if credentials is not None else {
            "subdomain": False,
            "email": False,
            "api_token": False,
        }
        is_valid = all(validity.values())

        if is_valid != self._last_validity:
            if is_valid:
                self.logger.info("Zendesk configuration is now valid, resuming API monitoring")
            else:
                self.logger.warning(
                    "Zendesk configuration is invalid or contains placeholder values",
                    subdomain_valid=validity["subdomain"],
                    email_valid=validity["email"],
                    api_token_valid=validity["api_token"],
                )
        self._last_validity = is_valid

        self.state = ConfigurationState(
            valid=is_valid,
            last_checked_at=now,
            selected_agents=self.store.get_selected_agents() if is_valid else set(),
        )
