"""RetryScheduler tests — timer, single-flight, bounded retries over MemoryStorage.

Invariants:
    - retry_count is persisted before the forwarder sees the entry
    - Entries at the cap are never attempted again, and never removed
    - At most one timer per queue, across scheduler instances sharing storage
    - A pass reschedules only while a retryable entry remains

Design Decisions:
    - delay_seconds=0 + join(): the real asyncio timer runs, without waiting 60s
"""

import pytest

from quotedesk.core.domain_types import (
    DeliverySource, RETRY_SCHEDULED_KEY, SchedulerState,
)
from quotedesk.core.fallback_queue import LocalFallbackQueue
from quotedesk.infrastructure.key_value_storage import MemoryStorage
from quotedesk.services.retry_scheduler import RetryScheduler

from tests.fakes import FAIL, OK, TIMEOUT, FailingStorage, FakeForwarder


def _payload(n=1):
    return {"email": f"customer{n}@example.com", "quoteId": f"q-{n}"}


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def queue(storage):
    return LocalFallbackQueue(storage)


def _scheduler(queue, forwarder, delay=0, on_delivered=None):
    return RetryScheduler(
        queue, forwarder, delay_seconds=delay, on_delivered=on_delivered,
    )


# --- pass semantics -----------------------------------------------------------

async def test_successful_retry_removes_entry(queue):
    forwarder = FakeForwarder(OK)
    scheduler = _scheduler(queue, forwarder)
    queue.enqueue(_payload())

    result = await scheduler.run_pass()

    assert result.attempted == 1
    assert result.delivered == 1
    assert queue.list() == []
    assert scheduler.state == SchedulerState.IDLE
    assert not queue.is_retry_scheduled()


async def test_retry_uses_retry_source(queue):
    forwarder = FakeForwarder(OK)
    queue.enqueue(_payload())

    await _scheduler(queue, forwarder).run_pass()

    assert forwarder.calls == [(_payload(), DeliverySource.RETRY)]


async def test_retry_count_persisted_before_attempt(queue):
    seen = []

    class InspectingForwarder(FakeForwarder):
        async def deliver(self, payload, source=DeliverySource.INTAKE):
            seen.append([e.retry_count for e in queue.list()])
            return await super().deliver(payload, source)

    queue.enqueue(_payload())
    scheduler = _scheduler(queue, InspectingForwarder(FAIL))

    await scheduler.run_pass()
    await scheduler.shutdown()

    assert seen == [[1]]
    entry = queue.list()[0]
    assert entry.retry_count == 1
    assert entry.last_retry_timestamp is not None


async def test_failed_retry_keeps_entry(queue):
    queue.enqueue(_payload())
    scheduler = _scheduler(queue, FakeForwarder(TIMEOUT), delay=3600)

    result = await scheduler.run_pass()

    assert result.failed == 1
    assert len(queue.list()) == 1
    assert result.rescheduled is True
    assert scheduler.state == SchedulerState.SCHEDULED
    await scheduler.shutdown()


async def test_entries_processed_in_insertion_order(queue):
    forwarder = FakeForwarder(OK)
    for n in range(1, 4):
        queue.enqueue(_payload(n))

    await _scheduler(queue, forwarder).run_pass()

    assert forwarder.delivered_ids == ["q-1", "q-2", "q-3"]


async def test_mixed_outcomes_only_remove_successes(queue):
    forwarder = FakeForwarder(OK, FAIL, OK)
    for n in range(1, 4):
        queue.enqueue(_payload(n))
    scheduler = _scheduler(queue, forwarder, delay=3600)

    result = await scheduler.run_pass()
    await scheduler.shutdown()

    assert (result.delivered, result.failed) == (2, 1)
    assert [e.quote_id for e in queue.list()] == ["q-2"]


async def test_forwarder_exception_counts_as_failure(queue):
    queue.enqueue(_payload())
    scheduler = _scheduler(queue, FakeForwarder(RuntimeError("boom")), delay=3600)

    result = await scheduler.run_pass()
    await scheduler.shutdown()

    assert result.failed == 1
    assert queue.list()[0].retry_count == 1


async def test_state_is_running_during_attempt(queue):
    states = []

    class StateForwarder(FakeForwarder):
        async def deliver(self, payload, source=DeliverySource.INTAKE):
            states.append((scheduler.state, queue.is_retry_scheduled()))
            return OK

    queue.enqueue(_payload())
    scheduler = _scheduler(queue, StateForwarder())
    await scheduler.run_pass()

    assert states == [(SchedulerState.RUNNING, True)]


async def test_delivery_hook_receives_payload(queue):
    delivered = []

    async def hook(payload):
        delivered.append(payload["quoteId"])

    queue.enqueue(_payload())
    await _scheduler(queue, FakeForwarder(OK), on_delivered=hook).run_pass()

    assert delivered == ["q-1"]


async def test_delivery_hook_failure_does_not_requeue(queue):
    async def hook(payload):
        raise RuntimeError("db down")

    queue.enqueue(_payload())
    result = await _scheduler(queue, FakeForwarder(OK), on_delivered=hook).run_pass()

    assert result.delivered == 1
    assert queue.list() == []


async def test_unrecordable_attempt_is_skipped():
    storage = FailingStorage()
    queue = LocalFallbackQueue(storage)
    queue.enqueue(_payload())
    storage.fail_set = True
    forwarder = FakeForwarder(OK)

    scheduler = _scheduler(queue, forwarder, delay=3600)

    result = await scheduler.run_pass()
    await scheduler.shutdown()

    assert forwarder.calls == []
    assert result.attempted == 0


# --- dead-letter --------------------------------------------------------------

async def test_dead_entries_never_attempted(queue):
    dead = queue.enqueue(_payload(1))
    queue.update(dead.correlation_id, {"retryCount": 5})
    forwarder = FakeForwarder(OK)

    result = await _scheduler(queue, forwarder).run_pass()

    assert forwarder.calls == []
    assert result.skipped_dead == 1
    assert queue.get(dead.correlation_id).retry_count == 5
    assert not queue.is_retry_scheduled()


async def test_entry_retried_exactly_max_times_then_dead_lettered(queue):
    forwarder = FakeForwarder(FAIL)
    scheduler = _scheduler(queue, forwarder)

    scheduler.enqueue(_payload())
    await scheduler.join()

    assert len(forwarder.calls) == 5
    assert [e.retry_count for e in queue.list_dead_lettered()] == [5]
    assert scheduler.state == SchedulerState.IDLE
    assert not queue.is_retry_scheduled()


async def test_pass_after_cap_changes_nothing(queue):
    forwarder = FakeForwarder(FAIL)
    scheduler = _scheduler(queue, forwarder)
    scheduler.enqueue(_payload())
    await scheduler.join()
    before = queue.list()

    result = await scheduler.run_pass()

    assert len(forwarder.calls) == 5
    assert result.attempted == 0
    assert queue.list() == before


async def test_only_dead_entries_means_no_reschedule(queue):
    dead = queue.enqueue(_payload())
    queue.update(dead.correlation_id, {"retryCount": 5})
    scheduler = _scheduler(queue, FakeForwarder(OK))

    result = await scheduler.run_pass()

    assert result.rescheduled is False
    assert scheduler.state == SchedulerState.IDLE


# --- scheduling ---------------------------------------------------------------

async def test_enqueue_arms_timer_and_timer_delivers(queue):
    forwarder = FakeForwarder(OK)
    scheduler = _scheduler(queue, forwarder)

    entry = scheduler.enqueue(_payload())
    assert entry is not None
    assert scheduler.state == SchedulerState.SCHEDULED
    assert queue.is_retry_scheduled()

    await scheduler.join()

    assert forwarder.delivered_ids == ["q-1"]
    assert queue.list() == []
    assert scheduler.state == SchedulerState.IDLE


async def test_failure_reschedules_until_success(queue):
    forwarder = FakeForwarder(FAIL, FAIL, OK)
    scheduler = _scheduler(queue, forwarder)

    scheduler.enqueue(_payload())
    await scheduler.join()

    assert len(forwarder.calls) == 3
    assert queue.list() == []


async def test_success_on_second_attempt_stops_retrying(queue):
    forwarder = FakeForwarder(FAIL, OK)
    scheduler = _scheduler(queue, forwarder)

    scheduler.enqueue(_payload())
    await scheduler.join()

    assert len(forwarder.calls) == 2
    assert queue.list() == []
    assert scheduler.state == SchedulerState.IDLE


async def test_schedule_is_single_flight(queue):
    scheduler = _scheduler(queue, FakeForwarder(OK), delay=3600)

    assert scheduler.schedule() is True
    assert scheduler.schedule() is False
    scheduler.enqueue(_payload())
    assert scheduler.state == SchedulerState.SCHEDULED

    await scheduler.shutdown()


async def test_persisted_flag_blocks_second_scheduler(storage, queue):
    first = _scheduler(queue, FakeForwarder(OK), delay=3600)
    second = _scheduler(LocalFallbackQueue(storage), FakeForwarder(OK), delay=3600)

    assert first.schedule() is True
    assert second.schedule() is False
    assert second.state == SchedulerState.IDLE

    await first.shutdown()


async def test_enqueue_storage_failure_arms_nothing():
    queue = LocalFallbackQueue(FailingStorage(fail_set=True))
    scheduler = _scheduler(queue, FakeForwarder(OK), delay=3600)

    assert scheduler.enqueue(_payload()) is None
    assert scheduler.state == SchedulerState.IDLE


async def test_direct_pass_replaces_armed_timer(queue):
    forwarder = FakeForwarder(OK)
    scheduler = _scheduler(queue, forwarder, delay=3600)
    scheduler.enqueue(_payload())

    await scheduler.run_pass()

    assert forwarder.delivered_ids == ["q-1"]
    assert scheduler.state == SchedulerState.IDLE
    assert not queue.is_retry_scheduled()


# --- lifecycle ----------------------------------------------------------------

async def test_resume_clears_stale_flag_and_rearms(storage, queue):
    queue.enqueue(_payload())
    storage.set_item(RETRY_SCHEDULED_KEY, "true")
    forwarder = FakeForwarder(OK)
    scheduler = _scheduler(queue, forwarder)

    assert scheduler.resume() is True
    await scheduler.join()

    assert forwarder.delivered_ids == ["q-1"]
    assert not queue.is_retry_scheduled()


async def test_resume_with_empty_queue_stays_idle(storage, queue):
    storage.set_item(RETRY_SCHEDULED_KEY, "true")
    scheduler = _scheduler(queue, FakeForwarder(OK))

    assert scheduler.resume() is False
    assert scheduler.state == SchedulerState.IDLE
    assert not queue.is_retry_scheduled()


async def test_shutdown_cancels_timer_and_releases_flag(queue):
    forwarder = FakeForwarder(OK)
    scheduler = _scheduler(queue, forwarder, delay=3600)
    scheduler.enqueue(_payload())

    await scheduler.shutdown()

    assert scheduler.state == SchedulerState.IDLE
    assert not queue.is_retry_scheduled()
    assert forwarder.calls == []
    assert len(queue.list()) == 1
