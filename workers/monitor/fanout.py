"""
Bounded fan-out over monitored agents.

Runs one presence check per agent with at most a fixed number of requests
in flight, then collects the view ticket counts. Every check is isolated:
a failing agent never cancels or blocks its siblings, and ticket checks
never affect presence accounting.
"""

import asyncio
from typing import Dict, Iterable, List, Optional

from agent_status.exceptions import AuthError
from agent_status.gateway.zendesk_client import DirectoryClient
from agent_status.models import (
    UNASSIGNED_AGENT_ID,
    AgentSnapshot,
    CheckResult,
    CycleSummary,
    ErrorKind,
    PresenceReading,
    TicketAggregate,
)
from agent_status.observability import MetricsSink, get_logger, get_tracer, guard_metrics
from workers.monitor.name_cache import NameCache

UNASSIGNED_LABEL = "Unassigned"

_TICKET_FAILURE_STATUS = {
    ErrorKind.RATE_LIMITED: "rate_limited",
    ErrorKind.AUTH: "auth_failed",
    ErrorKind.NOT_FOUND: "not_found",
    ErrorKind.PARSE: "parse_error",
    ErrorKind.TRANSIENT: "http_error",
    ErrorKind.UNEXPECTED: "error",
}


class BoundedFanout:
    """Executes the per-cycle presence and ticket checks."""

    def __init__(
        self,
        directory: DirectoryClient,
        name_cache: NameCache,
        metrics: MetricsSink,
        view_id: int,
        max_concurrency: int = 5,
    ):
        """
        Initialize the executor.

        Args:
            directory: Client used for presence and ticket requests
            name_cache: Resolves agent ids to metric label names
            metrics: Sink receiving gauge and counter updates
            view_id: Zendesk view whose tickets are counted
            max_concurrency: Maximum presence requests in flight
        """
        self.directory = directory
        self.name_cache = name_cache
        self.metrics = guard_metrics(metrics)
        self.view_id = view_id
        self.max_concurrency = max_concurrency
        self.logger = get_logger("monitor.fanout")
        self.tracer = get_tracer("monitor.fanout")

        self._permits = asyncio.Semaphore(max_concurrency)
        self._in_flight = 0
        self.peak_in_flight = 0

    async def run_cycle(self, agent_ids: Iterable[int], states: Dict[int, AgentSnapshot]) -> CycleSummary:
        """
        Run presence checks for every agent, then the view ticket checks.

        Args:
            agent_ids: Agents selected for monitoring
            states: Agent-state mapping updated in place for successful checks

        Returns:
            Summary of the cycle's presence results and ticket counts
        """
        ids = sorted(set(agent_ids))
        if not ids:
            self.logger.info("No agents are configured for monitoring")
            return CycleSummary()

        self.logger.debug("Checking availability for configured agents", count=len(ids))
        summary = CycleSummary(results=await self.run_presence_checks(ids, states))
        summary.tickets = await self.run_ticket_checks(ids)

        self.logger.info(
            "Completed monitoring cycle",
            successful=summary.success_count,
            failed=summary.failure_count,
            total=len(ids),
        )
        return summary

    async def run_presence_checks(self, agent_ids: List[int], states: Dict[int, AgentSnapshot]) -> List[CheckResult]:
        """Run all presence checks concurrently under the permit pool."""
        outcomes = await asyncio.gather(
            *(self._check_agent(agent_id, states) for agent_id in agent_ids),
            return_exceptions=True,
        )

        results: List[CheckResult] = []
        for agent_id, outcome in zip(agent_ids, outcomes):
            if isinstance(outcome, CheckResult):
                results.append(outcome)
            elif isinstance(outcome, (Exception, asyncio.CancelledError)):
                self.logger.warning("Presence check aborted", agent_id=agent_id, error=repr(outcome))
                results.append(CheckResult.failure(outcome, agent_id))
            else:
                raise outcome
        return results

    async def _check_agent(self, agent_id: int, states: Dict[int, AgentSnapshot]) -> CheckResult:
        async with self._permits:
            self._in_flight += 1
            self.peak_in_flight = max(self.peak_in_flight, self._in_flight)
            try:
                with self.tracer.start_as_current_span("presence_check") as span:
                    span.set_attribute("agent_id", agent_id)
                    reading = await self.directory.get_presence(agent_id)
            except Exception as e:
                return self._presence_failure(agent_id, e)
            finally:
                self._in_flight -= 1

        snapshot = self._apply_reading(agent_id, reading, states)
        self.metrics.increment_counter("zendesk_presence_checks_total", {"status": "success"})
        return CheckResult.success(snapshot, agent_id)

    def _presence_failure(self, agent_id: int, error: Exception) -> CheckResult:
        result: CheckResult = CheckResult.failure(error, agent_id)
        self.metrics.increment_counter("zendesk_presence_checks_total", {"status": result.error.value})

        if isinstance(error, AuthError):
            self.logger.error("Failed to get availability for agent", agent_id=agent_id, error=str(error))
        elif result.error is ErrorKind.UNEXPECTED:
            self.logger.warning("Failed to get availability for agent", agent_id=agent_id, exc_info=error)
        else:
            self.logger.warning(
                "Failed to get availability for agent",
                agent_id=agent_id,
                kind=result.error.value,
                error=str(error),
            )
        return result

    def _apply_reading(
        self, agent_id: int, reading: PresenceReading, states: Dict[int, AgentSnapshot]
    ) -> AgentSnapshot:
        name = self.name_cache.lookup(agent_id)
        previous = states.get(agent_id)

        if previous is not None and previous.presence != reading.presence:
            self.logger.info(
                "Agent state changed",
                agent_id=agent_id,
                agent_name=name,
                previous=previous.presence.value,
                current=reading.presence.value,
            )
        if previous is not None and previous.call_status != reading.call_status:
            self.logger.info(
                "Agent call status changed",
                agent_id=agent_id,
                agent_name=name,
                previous=previous.call_status.value,
                current=reading.call_status.value,
            )

        snapshot = AgentSnapshot(
            id=agent_id,
            presence=reading.presence,
            call_status=reading.call_status,
            name=name,
        )
        states[agent_id] = snapshot

        labels = {"agent_id": str(agent_id), "agent_name": name}
        self.metrics.set_gauge("zendesk_agent_state", labels, snapshot.presence.ordinal)
        self.metrics.set_gauge("zendesk_agent_call_status", labels, snapshot.call_status.ordinal)
        return snapshot

    async def run_ticket_checks(self, agent_ids: List[int]) -> TicketAggregate:
        """
        Collect the view ticket total and the per-agent ticket counts.

        The two checks run one after the other and fail independently.
        """
        aggregate = TicketAggregate(view_id=self.view_id)
        aggregate.total_in_view = await self._check_view_total()
        aggregate.per_agent = await self._check_tickets_by_agent(agent_ids)
        return aggregate

    async def _check_view_total(self) -> Optional[int]:
        try:
            total = await self.directory.get_view_ticket_total(self.view_id)
        except Exception as e:
            self._log_ticket_failure("view ticket count", e)
            return None

        self.metrics.set_gauge("zendesk_view_tickets_total", {"view_id": str(self.view_id)}, total)
        self.logger.debug("Updated view tickets count", view_id=self.view_id, count=total)
        return total

    async def _check_tickets_by_agent(self, agent_ids: List[int]) -> Optional[Dict[int, int]]:
        try:
            per_agent = await self.directory.get_view_tickets_by_agent(self.view_id)
        except Exception as e:
            kind = self._log_ticket_failure("agent tickets", e)
            status = "forbidden" if getattr(e, "status_code", None) == 403 else _TICKET_FAILURE_STATUS[kind]
            self.metrics.increment_counter("zendesk_agent_tickets_api_calls_total", {"status": status})
            return None

        # Selected agents without tickets report zero rather than a stale count
        for agent_id in agent_ids:
            if agent_id not in per_agent:
                self.metrics.set_gauge(
                    "zendesk_agent_tickets",
                    {"agent_id": str(agent_id), "agent_name": self.name_cache.lookup(agent_id)},
                    0,
                )

        for agent_id, count in per_agent.items():
            name = UNASSIGNED_LABEL if agent_id == UNASSIGNED_AGENT_ID else self.name_cache.lookup(agent_id)
            self.metrics.set_gauge("zendesk_agent_tickets", {"agent_id": str(agent_id), "agent_name": name}, count)

        self.metrics.increment_counter("zendesk_agent_tickets_api_calls_total", {"status": "success"})
        self.logger.debug("Updated agent tickets metrics", agents=len(per_agent))
        return per_agent

    def _log_ticket_failure(self, check: str, error: Exception) -> ErrorKind:
        kind = ErrorKind.from_exception(error)
        if kind in (ErrorKind.AUTH, ErrorKind.NOT_FOUND):
            self.logger.error(f"Failed to fetch {check}", kind=kind.value, error=str(error))
        elif kind is ErrorKind.UNEXPECTED:
            self.logger.error(f"Unexpected error when fetching {check}", exc_info=error)
        else:
            self.logger.warning(f"Failed to fetch {check}", kind=kind.value, error=str(error))
        return kind
