"""Background scheduler for ``EventBus.process_outbox``.

The bus never schedules itself; this worker runs one batch every
``poll_interval`` seconds.  One active worker per deployment is assumed:
two workers can deliver the same row twice (at-least-once), so handlers
must be idempotent on ``event_id``.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import datetime

from marketplace_core.core.clock import IClock, WallClock
from marketplace_core.infrastructure.event_bus import EventBus, OutboxBatchResult
from marketplace_core.infrastructure.outbox import DEFAULT_BATCH_SIZE
from marketplace_core.observability.metrics import record_outbox_batch

logger = logging.getLogger(__name__)


class OutboxWorker:
    """Periodic outbox drain.

    Parameters
    ----------
    bus:
        Bus with an outbox store attached.
    poll_interval:
        Seconds to sleep between batches.
    batch_size:
        Maximum rows per batch.
    """

    def __init__(
        self,
        bus: EventBus,
        *,
        poll_interval: float = 5.0,
        batch_size: int = DEFAULT_BATCH_SIZE,
        clock: IClock | None = None,
    ) -> None:
        if poll_interval <= 0:
            raise ValueError(f"poll_interval must be positive, got {poll_interval}")
        self._bus = bus
        self._poll_interval = poll_interval
        self._batch_size = batch_size
        self._clock: IClock = clock or WallClock()
        self._task: asyncio.Task | None = None
        self._running = False

        self._batches_run = 0
        self._records_processed = 0
        self._records_failed = 0
        self._error_count = 0
        self._last_run_at: datetime | None = None
        self._last_error: str | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            logger.warning("Outbox worker is already running")
            return
        self._running = True
        self._task = asyncio.create_task(self._loop(), name="outbox-worker")
        logger.info(
            "Outbox worker started (interval=%.1fs, batch_size=%d)",
            self._poll_interval,
            self._batch_size,
        )

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        logger.info(
            "Outbox worker stopped (batches=%d, processed=%d, failed=%d)",
            self._batches_run,
            self._records_processed,
            self._records_failed,
        )

    # ------------------------------------------------------------------
    # Work
    # ------------------------------------------------------------------

    async def run_once(self) -> OutboxBatchResult:
        """Process a single batch and update counters."""
        result = await self._bus.process_outbox(self._batch_size)
        self._batches_run += 1
        self._records_processed += result.processed
        self._records_failed += result.failed
        self._last_run_at = self._clock.now()
        record_outbox_batch(result.processed, result.failed)
        return result

    async def drain(self, max_batches: int = 100) -> OutboxBatchResult:
        """Run batches until the outbox has no pending rows left."""
        total = OutboxBatchResult()
        for _ in range(max_batches):
            result = await self.run_once()
            total.processed += result.processed
            total.failed += result.failed
            total.failed_ids.extend(result.failed_ids)
            if result.total < self._batch_size:
                break
        return total

    async def _loop(self) -> None:
        while self._running:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self._error_count += 1
                self._last_error = str(exc)
                logger.exception(
                    "Outbox batch failed (errors=%d)",
                    self._error_count,
                )
            await asyncio.sleep(self._poll_interval)

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    @property
    def batches_run(self) -> int:
        return self._batches_run

    @property
    def records_processed(self) -> int:
        return self._records_processed

    @property
    def records_failed(self) -> int:
        return self._records_failed

    @property
    def error_count(self) -> int:
        return self._error_count

    @property
    def last_run_at(self) -> datetime | None:
        return self._last_run_at

    @property
    def last_error(self) -> str | None:
        return self._last_error
