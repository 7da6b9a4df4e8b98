from datetime import timedelta

import pytest

from agent_status.exceptions import (
    AuthError,
    DirectoryError,
    NotFoundError,
    ParseError,
    RateLimitedError,
    TransientError,
)
from agent_status.models import (
    AgentSnapshot,
    CallStatus,
    CheckResult,
    CycleSummary,
    ErrorKind,
    PresenceState,
    TicketAggregate,
)


@pytest.mark.parametrize(
    "text, expected",
    [
        ("online", PresenceState.ONLINE),
        ("Available", PresenceState.ONLINE),
        ("AWAY", PresenceState.AWAY),
        ("transfers_only", PresenceState.TRANSFERS_ONLY),
        ("Transfers Only", PresenceState.TRANSFERS_ONLY),
        (" offline ", PresenceState.OFFLINE),
        ("busy", PresenceState.UNKNOWN),
        (None, PresenceState.UNKNOWN),
    ],
)
def test_presence_parse_accepts_synonyms(text, expected):
    assert PresenceState.parse(text) is expected


def test_presence_ordinals():
    assert [state.ordinal for state in PresenceState] == [0, 1, 2, 3, -1]


def test_call_status_parse():
    assert CallStatus.parse(None) is CallStatus.NO_CALL
    assert CallStatus.parse("null") is CallStatus.NO_CALL
    assert CallStatus.parse("ON_CALL") is CallStatus.ON_CALL
    assert CallStatus.parse("wrap_up") is CallStatus.WRAP_UP
    assert CallStatus.parse("ringing") is CallStatus.UNKNOWN
    assert [status.ordinal for status in CallStatus] == [0, 1, 2, -1]


@pytest.mark.parametrize(
    "error, kind",
    [
        (RateLimitedError("slow down", retry_after=5), ErrorKind.RATE_LIMITED),
        (AuthError("denied", status_code=401), ErrorKind.AUTH),
        (NotFoundError("gone", status_code=404), ErrorKind.NOT_FOUND),
        (ParseError("bad json"), ErrorKind.PARSE),
        (TransientError("timeout"), ErrorKind.TRANSIENT),
        (DirectoryError("teapot", status_code=418), ErrorKind.TRANSIENT),
        (RuntimeError("boom"), ErrorKind.UNEXPECTED),
    ],
)
def test_error_kind_from_exception(error, kind):
    assert ErrorKind.from_exception(error) is kind


def test_check_result_failure_keeps_message():
    result = CheckResult.failure(TransientError("connection reset"), agent_id=7)

    assert not result.ok
    assert result.agent_id == 7
    assert result.error is ErrorKind.TRANSIENT
    assert result.message == "connection reset"


def test_cycle_summary_total_failure_only_when_nothing_succeeded():
    ok = CheckResult.success("value", agent_id=1)
    failed = CheckResult.failure(TransientError("x"), agent_id=2)

    assert CycleSummary(results=[failed, failed]).is_total_failure
    assert not CycleSummary(results=[ok, failed]).is_total_failure
    assert not CycleSummary(results=[ok]).is_total_failure
    assert not CycleSummary().is_total_failure


def test_cycle_summary_to_dict():
    summary = CycleSummary(
        results=[CheckResult.success("value", agent_id=1), CheckResult.failure(AuthError("no"), agent_id=2)],
        tickets=TicketAggregate(view_id=5, total_in_view=3, per_agent={1: 3}),
    )

    data = summary.to_dict()

    assert data["success_count"] == 1
    assert data["failure_count"] == 1
    assert data["total_failure"] is False
    assert data["failures"] == {"2": "auth"}
    assert data["tickets"]["total_in_view"] == 3


def test_snapshot_same_state_ignores_name():
    a = AgentSnapshot(id=1, presence=PresenceState.ONLINE, call_status=CallStatus.NO_CALL, name="Ann")
    b = AgentSnapshot(id=1, presence=PresenceState.ONLINE, call_status=CallStatus.NO_CALL, name="1")
    c = AgentSnapshot(id=1, presence=PresenceState.ONLINE, call_status=CallStatus.ON_CALL, name="Ann")

    assert a.same_state(b)
    assert not a.same_state(c)


def test_snapshot_timestamp_is_timezone_aware():
    snapshot = AgentSnapshot(id=1, presence=PresenceState.ONLINE, call_status=CallStatus.NO_CALL, name="Ann")

    assert snapshot.updated_at.utcoffset() == timedelta(0)
