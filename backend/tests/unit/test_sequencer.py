"""Unit tests: ReconciliationLoop (timer ticks, change triggers, coalescing, failures)."""
import asyncio
import threading

import pytest

from fleet_core.notifications import ChangeNotifier, EntityType
from fleet_core.sequencer import ReconciliationLoop, Trigger

pytestmark = pytest.mark.unit


async def _wait_for(predicate, timeout=2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


def test_post_before_start_returns_false():
    loop = ReconciliationLoop(lambda: None)
    assert loop.running is False
    assert loop.post(Trigger.MANUAL) is False


@pytest.mark.asyncio
async def test_timer_runs_initial_and_periodic_passes():
    calls = []
    loop = ReconciliationLoop(lambda: calls.append(1), interval_s=0.03, initial_delay_s=0.01)
    loop.start()
    try:
        await _wait_for(lambda: loop.passes >= 3)
    finally:
        await loop.stop()
    assert len(calls) >= 3
    assert loop.running is False


@pytest.mark.asyncio
async def test_change_signal_triggers_pass():
    """A published change schedules a pass without waiting for the timer."""
    notifier = ChangeNotifier()
    loop = ReconciliationLoop(lambda: None, interval_s=60, initial_delay_s=60)
    loop.start()
    loop.attach(notifier)
    try:
        notifier.publish(EntityType.UNIT)
        await _wait_for(lambda: loop.passes == 1)
    finally:
        await loop.stop()
    assert notifier.subscriber_count(EntityType.UNIT) == 0


@pytest.mark.asyncio
async def test_post_from_other_thread():
    loop = ReconciliationLoop(lambda: None, interval_s=60, initial_delay_s=60)
    loop.start()
    try:
        results = []
        thread = threading.Thread(target=lambda: results.append(loop.post(Trigger.CHANGE)))
        thread.start()
        thread.join()
        assert results == [True]
        await _wait_for(lambda: loop.passes == 1)
    finally:
        await loop.stop()


@pytest.mark.asyncio
async def test_triggers_during_pass_coalesce_into_one_follow_up():
    """Passes never overlap; signals arriving mid-pass collapse into one more pass."""
    started = threading.Event()
    release = threading.Event()
    active = []
    overlap = []

    def run_pass():
        if active:
            overlap.append(True)
        active.append(1)
        started.set()
        release.wait(timeout=2)
        active.pop()

    loop = ReconciliationLoop(run_pass, interval_s=60, initial_delay_s=60)
    loop.start()
    try:
        loop.post(Trigger.MANUAL)
        await _wait_for(started.is_set)
        for _ in range(5):
            loop.post(Trigger.CHANGE)
        release.set()
        await _wait_for(lambda: loop.passes == 2)
        await asyncio.sleep(0.05)
    finally:
        await loop.stop()
    assert loop.passes == 2
    assert overlap == []


@pytest.mark.asyncio
async def test_failed_pass_is_counted_and_loop_continues():
    outcomes = iter([RuntimeError("store down"), None])

    def run_pass():
        outcome = next(outcomes)
        if outcome is not None:
            raise outcome

    loop = ReconciliationLoop(run_pass, interval_s=60, initial_delay_s=60)
    loop.start()
    try:
        loop.post(Trigger.MANUAL)
        await _wait_for(lambda: loop.passes == 1)
        loop.post(Trigger.MANUAL)
        await _wait_for(lambda: loop.passes == 2)
    finally:
        await loop.stop()
    assert loop.failures == 1


@pytest.mark.asyncio
async def test_stop_is_idempotent():
    loop = ReconciliationLoop(lambda: None, interval_s=60, initial_delay_s=60)
    loop.start()
    await loop.stop()
    await loop.stop()
    assert loop.post(Trigger.TICK) is False


@pytest.mark.asyncio
async def test_restart_after_stop_uses_fresh_mailbox():
    """A stopped loop can be started again and serves triggers with its new worker."""
    loop = ReconciliationLoop(lambda: None, interval_s=60, initial_delay_s=60)
    loop.start()
    await loop.stop()
    loop.start()
    try:
        assert loop.post(Trigger.MANUAL) is True
        await _wait_for(lambda: loop.passes == 1)
    finally:
        await loop.stop()
    assert loop.running is False
