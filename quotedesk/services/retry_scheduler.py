"""Retry Scheduler — single-flight, delayed, bounded re-delivery of queued quotes.

Invariants:
    - States: IDLE -> SCHEDULED (timer armed) -> RUNNING (one pass) -> SCHEDULED | IDLE
    - At most one timer or pass per queue: the persisted flag is checked before
      arming, and held for the whole pass
    - Entries processed sequentially in insertion order — never concurrently
    - retry_count incremented and persisted BEFORE each attempt (a crash
      mid-attempt still counts against the cap)
    - Entries at max_retries are skipped: no increment, no delivery attempt
    - Success removes the entry; failure leaves the incremented entry in place
    - Reschedule after a pass only while some entry is below the cap

Design Decisions:
    - asyncio task + sleep as the timer: runs on the API's own event loop, so
      queue mutation needs no locks
    - A stale persisted flag (process died with a timer armed) is cleared by
      resume() at startup, not by schedule(): schedule() must keep honouring a
      flag another live process may own
    - No exactly-once guarantee: a delivery whose response is lost is retried
"""

import asyncio
import logging
from dataclasses import dataclass

from quotedesk.core.domain_types import (
    RETRY_DELAY_SECONDS, DeliverySource, SchedulerState,
)
from quotedesk.core.fallback_queue import (
    LocalFallbackQueue, PendingQueueEntry, utc_now_iso,
)
from quotedesk.core.repository_protocols import (
    DeliveredHook, DeliveryResult, Forwarder,
)

logger = logging.getLogger(__name__)


@dataclass
class RetryPassResult:
    """Counters for one RUNNING pass."""
    attempted: int = 0
    delivered: int = 0
    failed: int = 0
    skipped_dead: int = 0
    rescheduled: bool = False


class RetryScheduler:
    """Owns the fallback queue's retry timer."""

    def __init__(
        self,
        queue: LocalFallbackQueue,
        forwarder: Forwarder,
        delay_seconds: float = RETRY_DELAY_SECONDS,
        on_delivered: DeliveredHook | None = None,
    ):
        self.queue = queue
        self._forwarder = forwarder
        self.delay_seconds = delay_seconds
        self._on_delivered = on_delivered
        self._state = SchedulerState.IDLE
        self._task: asyncio.Task | None = None

    @property
    def state(self) -> SchedulerState:
        return self._state

    # ─── Scheduling ──────────────────────────────────────────────

    def enqueue(self, payload: dict) -> PendingQueueEntry | None:
        """Queue a failed delivery and make sure a retry timer is armed."""
        entry = self.queue.enqueue(payload)
        if entry is not None:
            self.schedule()
        return entry

    def schedule(self) -> bool:
        """Arm the retry timer unless one is already armed or running.

        Must be called from a running event loop. Returns True if a new
        timer was armed.
        """
        if self._state != SchedulerState.IDLE:
            return False
        if self.queue.is_retry_scheduled():
            logger.debug("Retry already scheduled (persisted flag set)")
            return False

        self.queue.set_retry_scheduled(True)
        self._state = SchedulerState.SCHEDULED
        self._task = asyncio.create_task(self._run_after_delay())
        logger.info(
            f"Scheduled retry for pending quotes in {self.delay_seconds}s",
            extra={"scheduler_state": self._state.value},
        )
        return True

    def resume(self) -> bool:
        """Startup recovery: drop a stale flag and re-arm if work remains."""
        if self._task is None and self.queue.is_retry_scheduled():
            logger.warning("Clearing stale retry flag left by a previous process")
            self.queue.set_retry_scheduled(False)
        if self.queue.has_retryable():
            return self.schedule()
        return False

    async def shutdown(self) -> None:
        """Cancel the armed timer (or running pass) and release the flag."""
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait({task})
        self._task = None
        if self._state != SchedulerState.IDLE:
            self.queue.set_retry_scheduled(False)
        self._state = SchedulerState.IDLE

    async def join(self) -> None:
        """Wait until no timer is armed (follows reschedules)."""
        while self._task is not None and not self._task.done():
            await asyncio.wait({self._task})

    async def _run_after_delay(self) -> None:
        await asyncio.sleep(self.delay_seconds)
        try:
            await self.run_pass()
        except Exception:
            logger.error("Retry pass crashed", exc_info=True)

    # ─── Pass ────────────────────────────────────────────────────

    async def run_pass(self) -> RetryPassResult:
        """Run one full pass over the queue, then reschedule or go idle."""
        result = RetryPassResult()
        if self._state == SchedulerState.RUNNING:
            logger.warning("Retry pass already running, skipping")
            return result

        current = asyncio.current_task()
        if self._task is not None and self._task is not current:
            # Pass triggered directly while a timer is armed: the pass replaces it
            self._task.cancel()
        self._task = current

        self._state = SchedulerState.RUNNING
        self.queue.set_retry_scheduled(True)
        try:
            entries = self.queue.list()
            if entries:
                logger.info(f"Attempting to retry {len(entries)} pending quotes")
            for entry in entries:
                if self.queue.is_dead(entry):
                    result.skipped_dead += 1
                    continue
                await self._retry_entry(entry, result)
        finally:
            self._state = SchedulerState.IDLE
            self._task = None
            self.queue.set_retry_scheduled(False)

        if self.queue.has_retryable():
            result.rescheduled = self.schedule()
        logger.info(
            f"Retry pass done: {result.delivered} delivered, {result.failed} failed, "
            f"{result.skipped_dead} dead-lettered",
            extra={"scheduler_state": self._state.value},
        )
        return result

    async def _retry_entry(
        self, entry: PendingQueueEntry, result: RetryPassResult,
    ) -> None:
        updated = self.queue.update(
            entry.correlation_id,
            {
                "retry_count": entry.retry_count + 1,
                "last_retry_timestamp": utc_now_iso(),
            },
        )
        if updated is None:
            # Gone, or the attempt could not be recorded: never attempt uncounted
            return

        result.attempted += 1
        log_extra = {
            "correlation_id": updated.correlation_id,
            "quote_id": updated.quote_id,
            "retry_count": updated.retry_count,
        }
        outcome = await self._attempt(updated)

        if outcome.success:
            self.queue.remove(updated.correlation_id)
            result.delivered += 1
            logger.info("Successfully retried pending quote", extra=log_extra)
            await self._notify_delivered(updated)
            return

        result.failed += 1
        if self.queue.is_dead(updated):
            logger.error(
                f"Pending quote dead-lettered after {updated.retry_count} attempts: "
                f"{outcome.error}",
                extra=log_extra,
            )
        else:
            logger.warning(f"Retry failed: {outcome.error}", extra=log_extra)

    async def _attempt(self, entry: PendingQueueEntry) -> DeliveryResult:
        try:
            return await self._forwarder.deliver(entry.payload, DeliverySource.RETRY)
        except Exception as e:
            logger.error(
                f"Unexpected delivery error: {e}", exc_info=True,
                extra={"correlation_id": entry.correlation_id},
            )
            return DeliveryResult(False, error=str(e))

    async def _notify_delivered(self, entry: PendingQueueEntry) -> None:
        if self._on_delivered is None:
            return
        try:
            await self._on_delivered(entry.payload)
        except Exception as e:
            logger.error(
                f"Delivery hook failed: {e}", exc_info=True,
                extra={"quote_id": entry.quote_id},
            )
