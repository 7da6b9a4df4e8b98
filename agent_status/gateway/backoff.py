"""
Exponential backoff for Zendesk API outages.

Tracks consecutive cycles in which every presence check failed and computes
how long the monitor should wait before polling again. This is an
all-or-nothing breaker: a single flaky agent never throttles the monitor,
while a total outage backs off quickly to avoid hammering the API.
"""

import time
from typing import Any, Callable, Dict, Optional

from agent_status.models import BackoffState
from agent_status.observability import get_logger


class BackoffController:
    """
    Backoff controller for total polling failures.

    Delay formula: ``min(base * 2 ** (failures - 1), max)``, zero when there
    are no consecutive failures.
    """

    def __init__(
        self,
        base_delay: float = 10.0,
        max_delay: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize backoff controller.

        Args:
            base_delay: Delay in seconds after the first total failure
            max_delay: Upper bound on the delay in seconds
            clock: Monotonic clock used to timestamp failures
        """
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.clock = clock
        self.state = BackoffState()
        self.logger = get_logger("backoff")

    def next_delay(self, consecutive_failures: Optional[int] = None) -> float:
        """
        Compute the delay for a number of consecutive failures.

        Args:
            consecutive_failures: Failure count; the current count if None

        Returns:
            Delay in seconds
        """
        failures = self.state.consecutive_failures if consecutive_failures is None else consecutive_failures
        if failures <= 0:
            return 0.0
        return min(self.base_delay * 2 ** (failures - 1), self.max_delay)

    @property
    def consecutive_failures(self) -> int:
        return self.state.consecutive_failures

    @property
    def is_backing_off(self) -> bool:
        return self.state.consecutive_failures > 0

    def record_failure(self) -> float:
        """
        Record a cycle in which every presence check failed.

        Returns:
            The delay to wait before the next attempt
        """
        self.state.consecutive_failures += 1
        self.state.last_failure_at = self.clock()
        delay = self.next_delay()
        self.logger.warning(
            "All presence checks failed, backing off",
            consecutive_failures=self.state.consecutive_failures,
            delay_seconds=delay,
        )
        return delay

    def record_success(self) -> None:
        """Record a cycle in which at least one presence check succeeded."""
        if self.state.consecutive_failures > 0:
            self.logger.info(
                "Presence check succeeded, resetting failure count",
                previous_failures=self.state.consecutive_failures,
            )
        self.state.consecutive_failures = 0

    def reset(self) -> None:
        """Manually reset the controller."""
        self.state = BackoffState()

    def get_stats(self) -> Dict[str, Any]:
        """Get backoff statistics."""
        return {
            "consecutive_failures": self.state.consecutive_failures,
            "last_failure_at": self.state.last_failure_at,
            "next_delay_seconds": self.next_delay(),
            "base_delay": self.base_delay,
            "max_delay": self.max_delay,
        }
