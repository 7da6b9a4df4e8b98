"""
Agent status monitoring loop.

A single long-running driver that, on every iteration, checks the
configuration gate, refreshes the name cache when due, waits out any
pending backoff, fans out the presence and ticket checks, and sleeps for
an interval derived from whether anything changed.
"""

import asyncio
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from agent_status.config import ConfigurationStore, MonitorSettings
from agent_status.gateway.backoff import BackoffController
from agent_status.gateway.zendesk_client import DirectoryClient
from agent_status.models import AgentSnapshot, CycleSummary
from agent_status.observability import MetricsSink, get_logger, get_tracer, guard_metrics
from workers.monitor.fanout import BoundedFanout
from workers.monitor.gate import ConfigurationGate
from workers.monitor.name_cache import NameCache
from workers.monitor.scheduler import AdaptiveScheduler, detect_change


class LoopState(Enum):
    """Where the monitoring loop currently is."""

    STARTING = "starting"
    GATED = "gated"
    BACKING_OFF = "backing_off"
    POLLING = "polling"
    SCHEDULED = "scheduled"
    STOPPED = "stopped"


class MonitorWorker:
    """
    Monitoring loop for Zendesk agent presence and view tickets.

    All mutable monitoring state (agent snapshots, name cache, backoff and
    scheduler counters) is owned by the instance.
    """

    def __init__(
        self,
        store: ConfigurationStore,
        directory: DirectoryClient,
        metrics: MetricsSink,
        settings: Optional[MonitorSettings] = None,
        view_id: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        """
        Initialize the monitoring loop.

        Args:
            store: Configuration store supplying credentials and selection
            directory: Client for the Zendesk API
            metrics: Sink for agent and loop metrics
            settings: Loop settings; taken from the store's configuration if None
            view_id: View whose tickets are counted; from configuration if None
            clock: Monotonic clock shared by the gate, caches and backoff
            sleep: Replacement for the interruptible sleep (used by tests)
        """
        self.store = store
        self.directory = directory
        self.metrics = guard_metrics(metrics)
        self.settings = settings or store.config.monitor
        self.view_id = view_id if view_id is not None else store.config.zendesk.view_id
        self.logger = get_logger("monitor.worker")
        self.tracer = get_tracer("monitor.worker")

        self.gate = ConfigurationGate(store, self.settings.config_check_interval, clock)
        self.backoff = BackoffController(self.settings.backoff_base, self.settings.backoff_max, clock)
        self.name_cache = NameCache(
            directory,
            store,
            refresh_interval=self.settings.name_refresh_interval,
            positive_ttl=self.settings.name_positive_ttl,
            negative_ttl=self.settings.name_negative_ttl,
            clock=clock,
        )
        self.scheduler = AdaptiveScheduler(
            changed_interval=self.settings.changed_interval,
            quiet_steps=[(step.below, step.interval) for step in self.settings.quiet_steps],
            max_interval=self.settings.quiet_max_interval,
        )
        self.fanout = BoundedFanout(
            directory,
            self.name_cache,
            self.metrics,
            view_id=self.view_id,
            max_concurrency=self.settings.max_concurrency,
        )

        self.agent_states: Dict[int, AgentSnapshot] = {}
        self.state = LoopState.STARTING
        self.cycle_count = 0
        self.last_summary: Optional[CycleSummary] = None
        self.last_changed = False

        self._stop_event = asyncio.Event()
        self._sleep_override = sleep
        # Failure count whose backoff delay has already been waited out
        self._backoff_served_for: Optional[int] = None
        self._absent_cycles: Dict[int, int] = {}

    @property
    def is_stopping(self) -> bool:
        return self._stop_event.is_set()

    def stop(self) -> None:
        """Request the loop to stop; any in-progress sleep returns immediately."""
        if not self._stop_event.is_set():
            self.logger.info("Stop requested for agent status monitor")
        self._stop_event.set()

    async def run(self) -> None:
        """Run the monitoring loop until stopped or cancelled."""
        self.logger.info(
            "Agent status monitor starting",
            view_id=self.view_id,
            max_concurrency=self.settings.max_concurrency,
        )
        try:
            while not self._stop_event.is_set():
                try:
                    await self._iteration()
                except Exception:
                    self.logger.error(
                        "Unexpected error in monitoring loop, retrying",
                        retry_seconds=self.settings.error_retry,
                        exc_info=True,
                    )
                    self.metrics.increment_counter("zendesk_monitor_cycles_total", {"outcome": "error"})
                    await self._sleep(self.settings.error_retry)
        except asyncio.CancelledError:
            self.logger.info("Agent status monitor cancelled")
            raise
        finally:
            self.state = LoopState.STOPPED
            self.logger.info("Agent status monitor stopped", cycles=self.cycle_count)

    async def _iteration(self) -> None:
        valid = self.gate.is_valid()
        self.metrics.set_gauge("zendesk_monitor_configuration_valid", None, 1 if valid else 0)
        if not valid:
            self.state = LoopState.GATED
            await self._sleep(self.settings.invalid_config_retry)
            return

        await self.name_cache.refresh_if_due()

        failures = self.backoff.consecutive_failures
        if failures > 0 and self._backoff_served_for != failures:
            delay = self.backoff.next_delay()
            self.state = LoopState.BACKING_OFF
            self.metrics.set_gauge("zendesk_monitor_backoff_seconds", None, delay)
            self.logger.info("Waiting before next polling attempt", consecutive_failures=failures, delay_seconds=delay)
            self._backoff_served_for = failures
            await self._sleep(delay)
            return

        summary = await self.run_cycle_once()
        if summary.is_total_failure:
            # Next iteration re-checks the gate and waits out the backoff
            return

        interval = self.scheduler.next_interval(self.last_changed)
        self.metrics.set_gauge("zendesk_monitor_poll_interval_seconds", None, interval)
        self.state = LoopState.SCHEDULED
        await self._sleep(interval)

    async def run_cycle_once(self) -> CycleSummary:
        """
        Run a single polling cycle and update backoff accounting.

        Returns:
            Summary of the cycle
        """
        self.state = LoopState.POLLING
        self.store.reload_if_changed()
        selected = self.store.get_selected_agents()
        before = dict(self.agent_states)

        with self.tracer.start_as_current_span("monitor_cycle") as span:
            span.set_attribute("cycle", self.cycle_count + 1)
            span.set_attribute("agents", len(selected))
            summary = await self.fanout.run_cycle(selected, self.agent_states)
            span.set_attribute("success_count", summary.success_count)
            span.set_attribute("failure_count", summary.failure_count)

        self.cycle_count += 1
        self.last_summary = summary
        self.last_changed = detect_change(before, self.agent_states)
        self._prune_stale(selected)

        if summary.success_count > 0:
            self.backoff.record_success()
            self._backoff_served_for = None
        elif summary.is_total_failure:
            self.backoff.record_failure()

        self.metrics.increment_counter("zendesk_monitor_cycles_total", {"outcome": _cycle_outcome(summary)})
        self.metrics.set_gauge("zendesk_monitor_consecutive_failures", None, self.backoff.consecutive_failures)
        self.metrics.set_gauge("zendesk_monitor_backoff_seconds", None, self.backoff.next_delay())
        return summary

    def _prune_stale(self, selected: Set[int]) -> None:
        limit = self.settings.prune_stale_after_cycles
        if limit <= 0:
            return

        for agent_id in selected:
            self._absent_cycles.pop(agent_id, None)

        for agent_id in [agent_id for agent_id in self.agent_states if agent_id not in selected]:
            absent = self._absent_cycles.get(agent_id, 0) + 1
            if absent < limit:
                self._absent_cycles[agent_id] = absent
                continue

            snapshot = self.agent_states.pop(agent_id)
            self._absent_cycles.pop(agent_id, None)
            self._remove_agent_series(snapshot)
            self.logger.info("Stopped tracking deselected agent", agent_id=agent_id, agent_name=snapshot.name)

    def _remove_agent_series(self, snapshot: AgentSnapshot) -> None:
        labels = {"agent_id": str(snapshot.id), "agent_name": snapshot.name}
        for name in ("zendesk_agent_state", "zendesk_agent_call_status", "zendesk_agent_tickets"):
            self.metrics.remove_series(name, labels)

    async def _sleep(self, seconds: float) -> bool:
        """
        Sleep until the timeout elapses or a stop is requested.

        Returns:
            True if the loop should stop
        """
        if self._stop_event.is_set():
            return True

        if self._sleep_override is not None:
            await self._sleep_override(seconds)
            return self._stop_event.is_set()

        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True

    def status(self) -> Dict[str, Any]:
        """Report the loop's current state for the control plane."""
        return {
            "state": self.state.value,
            "cycle_count": self.cycle_count,
            "configuration_valid": self.gate.state.valid,
            "selected_agents": sorted(self.gate.state.selected_agents),
            "backoff": self.backoff.get_stats(),
            "last_interval": self.scheduler.last_interval,
            "consecutive_no_change": self.scheduler.consecutive_no_change,
            "name_cache": {
                "roster_size": self.name_cache.roster_size,
                "last_refresh": self.name_cache.last_refresh,
            },
            "last_cycle": self.last_summary.to_dict() if self.last_summary else None,
        }


def _cycle_outcome(summary: CycleSummary) -> str:
    if not summary.results:
        return "empty"
    if summary.is_total_failure:
        return "total_failure"
    if summary.failure_count:
        return "partial"
    return "success"
