import asyncio

import pytest

from agent_status.exceptions import TransientError
from agent_status.models import PresenceState
from tests.fakes import (
    FakeDirectory,
    FakeSleeper,
    ManualClock,
    RaisingSink,
    RecordingSink,
    make_config,
    make_store,
    reading,
)
from workers.monitor.worker import LoopState, MonitorWorker


def build_worker(directory, config=None, stop_after=None, on_sleep=None, sink=None, **config_kwargs):
    clock = ManualClock()
    sink = sink if sink is not None else RecordingSink()
    store = make_store(config or make_config(**config_kwargs))
    worker = None

    def handle_sleep(count):
        if on_sleep is not None:
            on_sleep(count)
        if stop_after is not None and count >= stop_after:
            worker.stop()

    sleeper = FakeSleeper(clock=clock, on_sleep=handle_sleep)
    worker = MonitorWorker(store, directory, sink, clock=clock, sleep=sleeper)
    return worker, sink, sleeper


def test_cycle_with_one_transient_failure_does_not_back_off():
    directory = FakeDirectory(presence={1: reading("online"), 2: reading("away"), 3: TransientError("timeout")})
    worker, sink, _ = build_worker(directory, names={1: "Ann", 2: "Bob", 3: "Cid"}, selected={1, 2, 3})
    worker.gate.is_valid()

    summary = asyncio.run(worker.run_cycle_once())

    assert (summary.success_count, summary.failure_count) == (2, 1)
    assert worker.backoff.consecutive_failures == 0
    assert sink.gauge("zendesk_agent_state", agent_id="1", agent_name="Ann") == 3
    assert sink.gauge("zendesk_agent_state", agent_id="2", agent_name="Bob") == 1
    assert sink.gauge("zendesk_agent_state", agent_id="3", agent_name="Cid") is None
    assert sink.counter("zendesk_monitor_cycles_total", outcome="partial") == 1
    assert worker.last_changed is True


def test_total_failures_back_off_exponentially():
    directory = FakeDirectory(presence={1: TransientError("down"), 2: TransientError("down")})
    worker, sink, sleeper = build_worker(directory, selected={1, 2}, stop_after=4)

    asyncio.run(worker.run())

    assert sleeper.calls == [10, 20, 40, 80]
    assert worker.cycle_count == 4
    assert len(directory.presence_calls) == 8
    assert worker.backoff.consecutive_failures == 4
    assert sink.gauge("zendesk_monitor_consecutive_failures") == 4
    assert sink.counter("zendesk_monitor_cycles_total", outcome="total_failure") == 4
    assert worker.state is LoopState.STOPPED


def test_recovery_resets_backoff():
    directory = FakeDirectory(presence={1: TransientError("down")})

    def recover(count):
        directory.presence = {1: reading("online")}

    worker, sink, sleeper = build_worker(directory, selected={1}, stop_after=2, on_sleep=recover)

    asyncio.run(worker.run())

    assert sleeper.calls == [10, 10]
    assert worker.backoff.consecutive_failures == 0
    assert worker.agent_states[1].presence is PresenceState.ONLINE
    assert sink.gauge("zendesk_monitor_backoff_seconds") == 0


def test_quiet_cycles_slow_down_polling():
    directory = FakeDirectory(presence={1: reading("online")})
    worker, sink, sleeper = build_worker(directory, selected={1}, stop_after=8)

    asyncio.run(worker.run())

    assert sleeper.calls == [10, 15, 15, 15, 15, 15, 30, 30]
    assert sink.gauge("zendesk_monitor_poll_interval_seconds") == 30
    assert worker.scheduler.consecutive_no_change == 7


def test_state_change_returns_to_fast_polling():
    directory = FakeDirectory(presence={1: reading("online")})

    def flip(count):
        if count == 3:
            directory.presence = {1: reading("online", "on_call")}

    worker, _, sleeper = build_worker(directory, selected={1}, stop_after=5, on_sleep=flip)

    asyncio.run(worker.run())

    assert sleeper.calls == [10, 15, 15, 10, 15]


def test_invalid_configuration_gates_polling():
    directory = FakeDirectory()
    worker, sink, sleeper = build_worker(directory, selected={1}, api_token="your_api_token", stop_after=3)

    asyncio.run(worker.run())

    assert sleeper.calls == [60, 60, 60]
    assert directory.presence_calls == []
    assert directory.roster_calls == 0
    assert sink.gauge("zendesk_monitor_configuration_valid") == 0


def test_empty_selection_polls_nothing():
    directory = FakeDirectory()
    worker, sink, sleeper = build_worker(directory, stop_after=2)

    asyncio.run(worker.run())

    assert directory.presence_calls == []
    assert directory.ticket_calls == 0
    assert worker.backoff.consecutive_failures == 0
    assert sleeper.calls == [15, 15]
    assert sink.counter("zendesk_monitor_cycles_total", outcome="empty") == 2


def test_unexpected_error_is_retried():
    directory = FakeDirectory(presence={1: reading("online")})
    worker, sink, sleeper = build_worker(directory, selected={1}, stop_after=2)

    async def broken_cycle(agent_ids, states):
        raise RuntimeError("boom")

    worker.fanout.run_cycle = broken_cycle

    asyncio.run(worker.run())

    assert sleeper.calls == [10, 10]
    assert sink.counter("zendesk_monitor_cycles_total", outcome="error") == 2
    assert worker.state is LoopState.STOPPED


def test_roster_names_are_used_for_labels():
    from agent_status.models import AgentRecord

    directory = FakeDirectory(presence={1: reading("online")}, roster=[AgentRecord(id=1, name="Ann Roster")])
    worker, sink, _ = build_worker(directory, selected={1}, stop_after=1)

    asyncio.run(worker.run())

    assert directory.roster_calls == 1
    assert worker.agent_states[1].name == "Ann Roster"
    assert sink.gauge("zendesk_agent_state", agent_id="1", agent_name="Ann Roster") == 3


def stop_while_in(worker, state):
    """Run the real loop until it sleeps in `state`, then stop it."""

    async def scenario():
        task = asyncio.create_task(worker.run())
        for _ in range(100):
            if worker.state is state:
                break
            await asyncio.sleep(0.01)
        assert worker.state is state
        worker.stop()
        await asyncio.wait_for(task, timeout=1)

    asyncio.run(scenario())


def test_stop_interrupts_adaptive_sleep():
    worker = MonitorWorker(make_store(selected={1}), FakeDirectory(presence={1: reading("online")}), RecordingSink())

    stop_while_in(worker, LoopState.SCHEDULED)

    assert worker.state is LoopState.STOPPED
    assert worker.cycle_count == 1


def test_stop_interrupts_backoff_sleep():
    directory = FakeDirectory(presence={1: TransientError("down")})
    worker = MonitorWorker(make_store(selected={1}), directory, RecordingSink())

    stop_while_in(worker, LoopState.BACKING_OFF)

    assert worker.state is LoopState.STOPPED
    assert worker.cycle_count == 1
    assert worker.backoff.consecutive_failures == 1


def test_stop_interrupts_gated_sleep():
    directory = FakeDirectory()
    worker = MonitorWorker(make_store(selected={1}, api_token="your_api_token"), directory, RecordingSink())

    stop_while_in(worker, LoopState.GATED)

    assert worker.state is LoopState.STOPPED
    assert worker.cycle_count == 0
    assert directory.presence_calls == []


def test_failing_sink_does_not_affect_scheduling():
    directory = FakeDirectory(presence={1: reading("online"), 2: reading("away")})
    worker, _, sleeper = build_worker(directory, selected={1, 2}, stop_after=2, sink=RaisingSink())

    asyncio.run(worker.run())

    assert worker.cycle_count == 2
    assert worker.last_summary.success_count == 2
    assert worker.backoff.consecutive_failures == 0
    assert sleeper.calls == [10, 15]
    assert worker.agent_states[2].presence is PresenceState.AWAY


def test_cancellation_stops_the_loop():
    directory = FakeDirectory(presence={1: reading("online")})
    worker = MonitorWorker(make_store(selected={1}), directory, RecordingSink())

    async def scenario():
        task = asyncio.create_task(worker.run())
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(scenario())

    assert worker.state is LoopState.STOPPED


def test_deselected_agents_are_kept_by_default():
    directory = FakeDirectory(presence={1: reading("online"), 2: reading("online")})
    worker, sink, _ = build_worker(directory, selected={1, 2})
    worker.gate.is_valid()
    asyncio.run(worker.run_cycle_once())

    worker.store.config.zendesk.agents[2].is_selected = False
    for _ in range(3):
        asyncio.run(worker.run_cycle_once())

    assert set(worker.agent_states) == {1, 2}
    assert sink.removed == []


def test_deselected_agents_are_pruned_when_configured():
    directory = FakeDirectory(presence={1: reading("online"), 2: reading("online")})
    worker, sink, _ = build_worker(
        directory, names={1: "Ann", 2: "Bob"}, selected={1, 2}, prune_stale_after_cycles=2
    )
    worker.gate.is_valid()
    asyncio.run(worker.run_cycle_once())

    worker.store.config.zendesk.agents[2].is_selected = False
    asyncio.run(worker.run_cycle_once())
    assert set(worker.agent_states) == {1, 2}

    asyncio.run(worker.run_cycle_once())
    assert set(worker.agent_states) == {1}
    assert ("zendesk_agent_state", (("agent_id", "2"), ("agent_name", "Bob"))) in sink.removed


def test_status_report():
    directory = FakeDirectory(presence={1: reading("online")})
    worker, _, _ = build_worker(directory, selected={1}, stop_after=1)

    asyncio.run(worker.run())
    status = worker.status()

    assert status["state"] == "stopped"
    assert status["cycle_count"] == 1
    assert status["configuration_valid"] is True
    assert status["selected_agents"] == [1]
    assert status["last_interval"] == 10
    assert status["backoff"]["consecutive_failures"] == 0
    assert status["last_cycle"]["success_count"] == 1
