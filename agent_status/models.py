"""
Domain models for the Agent Status monitor.

Covers agent presence and call status as reported by Zendesk Talk, the
per-agent snapshots tracked between monitoring cycles, ticket aggregates
for a view, and the result type used to report individual checks.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, Set, TypeVar

from pydantic import BaseModel, Field

from agent_status.exceptions import (
    AuthError,
    DirectoryError,
    NotFoundError,
    ParseError,
    RateLimitedError,
    TransientError,
)

# Reserved assignee id for unassigned tickets in per-agent aggregation.
UNASSIGNED_AGENT_ID = 0


class PresenceState(Enum):
    """Agent availability state (agent_state in the availability API)."""

    OFFLINE = "offline"
    AWAY = "away"
    TRANSFERS_ONLY = "transfers_only"
    ONLINE = "online"
    UNKNOWN = "unknown"

    @property
    def ordinal(self) -> int:
        """Numeric value published as the agent state gauge."""
        return _PRESENCE_ORDINALS[self]

    @classmethod
    def parse(cls, value: Optional[str]) -> "PresenceState":
        """Parse a textual agent state, accepting known synonyms."""
        if value is None:
            return cls.UNKNOWN
        return _PRESENCE_SYNONYMS.get(value.strip().lower(), cls.UNKNOWN)


_PRESENCE_ORDINALS = {
    PresenceState.OFFLINE: 0,
    PresenceState.AWAY: 1,
    PresenceState.TRANSFERS_ONLY: 2,
    PresenceState.ONLINE: 3,
    PresenceState.UNKNOWN: -1,
}

_PRESENCE_SYNONYMS = {
    "offline": PresenceState.OFFLINE,
    "away": PresenceState.AWAY,
    "transfers_only": PresenceState.TRANSFERS_ONLY,
    "transfers only": PresenceState.TRANSFERS_ONLY,
    "online": PresenceState.ONLINE,
    "available": PresenceState.ONLINE,
}


class CallStatus(Enum):
    """Agent call status (call_status in the availability API)."""

    NO_CALL = "null"
    ON_CALL = "on_call"
    WRAP_UP = "wrap_up"
    UNKNOWN = "unknown"

    @property
    def ordinal(self) -> int:
        """Numeric value published as the call status gauge."""
        return _CALL_STATUS_ORDINALS[self]

    @classmethod
    def parse(cls, value: Optional[str]) -> "CallStatus":
        """Parse a call status; a JSON null means the agent is not on a call."""
        if value is None:
            return cls.NO_CALL
        normalized = value.strip().lower()
        for status in (cls.NO_CALL, cls.ON_CALL, cls.WRAP_UP):
            if normalized == status.value:
                return status
        return cls.UNKNOWN


_CALL_STATUS_ORDINALS = {
    CallStatus.NO_CALL: 0,
    CallStatus.ON_CALL: 1,
    CallStatus.WRAP_UP: 2,
    CallStatus.UNKNOWN: -1,
}


class PresenceReading(BaseModel):
    """Presence and call status for one agent as returned by the directory."""

    presence: PresenceState = PresenceState.UNKNOWN
    call_status: CallStatus = CallStatus.NO_CALL


class AgentSnapshot(BaseModel):
    """Last observed state of a monitored agent."""

    id: int
    presence: PresenceState
    call_status: CallStatus
    name: str
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def same_state(self, other: "AgentSnapshot") -> bool:
        """Check whether presence and call status match another snapshot."""
        return self.presence == other.presence and self.call_status == other.call_status


class AgentRecord(BaseModel):
    """Roster entry for an agent or admin user."""

    id: int
    name: str
    email: Optional[str] = None
    role: Optional[str] = None
    role_type: Optional[int] = None
    active: bool = True


class TicketAggregate(BaseModel):
    """Ticket counts collected from a view during one cycle."""

    view_id: int
    total_in_view: Optional[int] = None
    per_agent: Optional[Dict[int, int]] = None


class NameCacheEntry(BaseModel):
    """Cached display name; a None name is a negative entry."""

    agent_id: int
    name: Optional[str] = None
    expires_at: float

    def is_expired(self, now: float) -> bool:
        """Check whether this entry has expired at the given clock reading."""
        return now >= self.expires_at


class BackoffState(BaseModel):
    """Consecutive total-failure tracking for the backoff controller."""

    consecutive_failures: int = 0
    last_failure_at: Optional[float] = None


class ConfigurationState(BaseModel):
    """Result of the most recent configuration validity check."""

    valid: bool = False
    last_checked_at: Optional[float] = None
    selected_agents: Set[int] = Field(default_factory=set)


class ErrorKind(Enum):
    """Classification of a failed check."""

    TRANSIENT = "transient"
    RATE_LIMITED = "rate_limited"
    AUTH = "auth"
    NOT_FOUND = "not_found"
    PARSE = "parse"
    UNEXPECTED = "unexpected"

    @classmethod
    def from_exception(cls, error: BaseException) -> "ErrorKind":
        """Map an exception raised by a check to its error kind."""
        if isinstance(error, RateLimitedError):
            return cls.RATE_LIMITED
        if isinstance(error, AuthError):
            return cls.AUTH
        if isinstance(error, NotFoundError):
            return cls.NOT_FOUND
        if isinstance(error, ParseError):
            return cls.PARSE
        if isinstance(error, (TransientError, DirectoryError)):
            return cls.TRANSIENT
        return cls.UNEXPECTED


T = TypeVar("T")


@dataclass
class CheckResult(Generic[T]):
    """Outcome of a single check: either a value or a classified error."""

    agent_id: Optional[int] = None
    value: Optional[T] = None
    error: Optional[ErrorKind] = None
    message: Optional[str] = None

    @classmethod
    def success(cls, value: T, agent_id: Optional[int] = None) -> "CheckResult[T]":
        return cls(agent_id=agent_id, value=value)

    @classmethod
    def failure(cls, error: BaseException, agent_id: Optional[int] = None) -> "CheckResult[T]":
        return cls(
            agent_id=agent_id,
            error=ErrorKind.from_exception(error),
            message=str(error) or error.__class__.__name__,
        )

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class CycleSummary:
    """Aggregated outcome of one monitoring cycle."""

    results: List[CheckResult] = field(default_factory=list)
    tickets: Optional[TicketAggregate] = None

    @property
    def success_count(self) -> int:
        return sum(1 for result in self.results if result.ok)

    @property
    def failure_count(self) -> int:
        return sum(1 for result in self.results if not result.ok)

    @property
    def is_total_failure(self) -> bool:
        """True only when every presence check in the cycle failed."""
        return self.failure_count > 0 and self.success_count == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "total_failure": self.is_total_failure,
            "failures": {
                str(result.agent_id): result.error.value
                for result in self.results
                if not result.ok and result.error is not None
            },
            "tickets": self.tickets.model_dump() if self.tickets else None,
        }
