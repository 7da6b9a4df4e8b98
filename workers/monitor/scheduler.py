"""
Change detection and adaptive polling cadence.

Bursts of agent activity are polled closely, quiet periods progressively
less often, up to a fixed ceiling so metric staleness stays bounded.
"""

from typing import Iterable, Mapping, Optional, Sequence, Tuple

from agent_status.models import AgentSnapshot
from agent_status.observability import get_logger

DEFAULT_QUIET_STEPS: Tuple[Tuple[int, float], ...] = ((5, 15.0), (10, 30.0), (20, 60.0))


def detect_change(before: Mapping[int, AgentSnapshot], after: Mapping[int, AgentSnapshot]) -> bool:
    """
    Compare two snapshots of the agent-state mapping.

    Args:
        before: Snapshot taken immediately before a cycle
        after: Snapshot taken immediately after the cycle

    Returns:
        True if membership changed or any agent's presence or call status differs
    """
    if before.keys() != after.keys():
        return True

    for agent_id, current in after.items():
        if not current.same_state(before[agent_id]):
            return True

    return False


class AdaptiveScheduler:
    """Derives the next poll interval from whether the last cycle saw a change."""

    def __init__(
        self,
        changed_interval: float = 10.0,
        quiet_steps: Optional[Iterable[Tuple[int, float]]] = None,
        max_interval: float = 120.0,
    ):
        """
        Initialize the scheduler.

        Args:
            changed_interval: Interval used right after a change
            quiet_steps: (threshold, interval) pairs; the interval applies while
                fewer than `threshold` quiet cycles preceded this one
            max_interval: Interval once every threshold has been passed
        """
        self.changed_interval = changed_interval
        self.quiet_steps: Sequence[Tuple[int, float]] = tuple(quiet_steps or DEFAULT_QUIET_STEPS)
        self.max_interval = max_interval
        self.consecutive_no_change = 0
        self.last_interval: Optional[float] = None
        self.logger = get_logger("monitor.scheduler")

    def next_interval(self, changed: bool) -> float:
        """
        Compute the interval to sleep before the next cycle.

        Args:
            changed: Whether the cycle just completed observed a change

        Returns:
            Interval in seconds
        """
        if changed:
            self.consecutive_no_change = 0
            interval = self.changed_interval
            self.logger.debug("Changes detected, using faster polling interval", interval=interval)
        else:
            interval = self._quiet_interval(self.consecutive_no_change)
            self.consecutive_no_change += 1
            self.logger.debug(
                "No changes detected",
                consecutive=self.consecutive_no_change,
                interval=interval,
            )

        self.last_interval = interval
        return interval

    def _quiet_interval(self, quiet_cycles: int) -> float:
        for threshold, interval in self.quiet_steps:
            if quiet_cycles < threshold:
                return interval
        return self.max_interval

    def reset(self) -> None:
        self.consecutive_no_change = 0
        self.last_interval = None
