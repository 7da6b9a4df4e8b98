import pytest

from agent_status.gateway.backoff import BackoffController
from tests.fakes import ManualClock


@pytest.mark.parametrize("failures", range(0, 12))
def test_next_delay_formula(failures):
    controller = BackoffController()
    expected = 0 if failures == 0 else min(10 * 2 ** (failures - 1), 300)

    assert controller.next_delay(failures) == expected


def test_record_failure_escalates_delay():
    clock = ManualClock(start=50.0)
    controller = BackoffController(clock=clock)

    assert controller.record_failure() == 10
    clock.advance(10)
    assert controller.record_failure() == 20
    assert controller.record_failure() == 40

    assert controller.consecutive_failures == 3
    assert controller.is_backing_off
    assert controller.state.last_failure_at == 60.0


def test_record_success_resets_failures():
    controller = BackoffController()
    for _ in range(6):
        controller.record_failure()

    controller.record_success()

    assert controller.consecutive_failures == 0
    assert not controller.is_backing_off
    assert controller.next_delay() == 0


def test_delay_is_capped():
    controller = BackoffController(base_delay=10, max_delay=300)
    for _ in range(20):
        delay = controller.record_failure()

    assert delay == 300


def test_get_stats():
    controller = BackoffController(base_delay=5, max_delay=60)
    controller.record_failure()
    controller.record_failure()

    stats = controller.get_stats()

    assert stats["consecutive_failures"] == 2
    assert stats["next_delay_seconds"] == 10
    assert stats["max_delay"] == 60
