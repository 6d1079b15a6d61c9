"""Event bus with in-process fan-out and outbox persistence.

Design goals
------------
1.  **Type-routed dispatching**: subscribers register for an event type
    name (``"ApplicationAccepted"``).  ``publish()`` routes the event to
    every handler registered for ``event.type``, in registration order.
2.  **Handler isolation**: handlers run concurrently and each failure is
    caught individually.  One failing handler never stops the others and
    never reaches the caller of ``publish()``.
3.  **Outbox persistence (best-effort)**: if an ``IOutboxStore`` is
    attached, every published event is inserted as a ``pending`` row
    before dispatch.  A storage failure is reported and swallowed; live
    delivery is never blocked by the audit log.
4.  **Observable failures**: every absorbed error goes to the injected
    ``DeliveryErrorSink`` and is counted in ``get_error_counts()`` /
    ``dead_letters``.
5.  **Explicit lifecycle**: handlers are registered at startup
    (``subscribe_all``) and all removed by ``stop()``.

This module provides:

*  ``DeliveryErrorSink``: the error-reporting protocol.
*  ``LoggingErrorSink``: default sink (module logger).
*  ``OutboxBatchResult``: outcome of one ``process_outbox()`` run.
*  ``EventBus``: the bus.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Protocol, Union, runtime_checkable

from marketplace_core.core.clock import IClock, WallClock
from marketplace_core.core.errors import DeliveryError, OutboxNotConfiguredError
from marketplace_core.domain.events import DomainEvent
from marketplace_core.infrastructure.outbox import (
    DEFAULT_BATCH_SIZE,
    IOutboxStore,
    OutboxRecord,
    event_from_record,
    record_from_event,
)

logger = logging.getLogger(__name__)

# Handlers may be coroutine functions or plain callables.
EventHandler = Callable[[DomainEvent], Union[Awaitable[None], None]]


# ---------------------------------------------------------------------------
# Error reporting
# ---------------------------------------------------------------------------

@runtime_checkable
class DeliveryErrorSink(Protocol):
    """Receives every delivery error the bus absorbs."""

    def handler_failed(self, event: DomainEvent, handler_name: str, exc: BaseException) -> None:
        ...

    def outbox_write_failed(self, event: DomainEvent, exc: BaseException) -> None:
        ...

    def outbox_record_failed(self, record: OutboxRecord, error: str) -> None:
        ...


class LoggingErrorSink:
    """Report delivery errors through the module logger."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._log = log or logger

    def handler_failed(self, event: DomainEvent, handler_name: str, exc: BaseException) -> None:
        self._log.error(
            "Handler %s failed on %s (event_id=%s): %s",
            handler_name,
            event.type,
            event.event_id,
            exc,
            exc_info=exc,
        )

    def outbox_write_failed(self, event: DomainEvent, exc: BaseException) -> None:
        self._log.error(
            "Outbox insert failed for %s (event_id=%s): %s",
            event.type,
            event.event_id,
            exc,
            exc_info=exc,
        )

    def outbox_record_failed(self, record: OutboxRecord, error: str) -> None:
        self._log.warning(
            "Outbox record %s (%s) marked failed: %s",
            record.id,
            record.event_type,
            error,
        )


@dataclass
class DeadLetter:
    """A handler failure kept for inspection."""

    event: DomainEvent
    handler_name: str
    error: str


@dataclass
class OutboxBatchResult:
    processed: int = 0
    failed: int = 0
    failed_ids: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.processed + self.failed


# ---------------------------------------------------------------------------
# Subscription registry
# ---------------------------------------------------------------------------

class _SubscriptionRegistry:
    """``event type -> [handler, ...]``.  Not deduplicated."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)

    def add(self, event_type: str, handler: EventHandler) -> None:
        self._handlers[event_type].append(handler)

    def remove(self, event_type: str, handler: EventHandler) -> bool:
        handlers = self._handlers.get(event_type)
        if not handlers or handler not in handlers:
            return False
        handlers.remove(handler)
        if not handlers:
            del self._handlers[event_type]
        return True

    def snapshot(self, event_type: str) -> list[EventHandler]:
        return list(self._handlers.get(event_type, ()))

    def count(self, event_type: str | None = None) -> int:
        if event_type is not None:
            return len(self._handlers.get(event_type, ()))
        return sum(len(h) for h in self._handlers.values())

    def clear(self) -> int:
        removed = self.count()
        self._handlers.clear()
        return removed


def _handler_name(handler: EventHandler) -> str:
    return getattr(handler, "__qualname__", None) or repr(handler)


# ---------------------------------------------------------------------------
# Bus
# ---------------------------------------------------------------------------

class EventBus:
    """In-process publish/subscribe bus backed by an optional outbox.

    Parameters
    ----------
    outbox
        Optional ``IOutboxStore``.  When set, ``publish()`` inserts a
        pending row per event and ``process_outbox()`` becomes available.
    error_sink
        Receives every absorbed failure.  Defaults to ``LoggingErrorSink``.
    clock
        Time source for outbox status timestamps.
    keep_history
        Record every published event (testing helper).
    """

    def __init__(
        self,
        *,
        outbox: IOutboxStore | None = None,
        error_sink: DeliveryErrorSink | None = None,
        clock: IClock | None = None,
        keep_history: bool = False,
        _registry: _SubscriptionRegistry | None = None,
    ) -> None:
        self._registry = _registry or _SubscriptionRegistry()
        self._outbox = outbox
        self._sink: DeliveryErrorSink = error_sink or LoggingErrorSink()
        self._clock: IClock = clock or WallClock()
        self._keep_history = keep_history
        self._history: list[DomainEvent] = []
        self._error_counts: dict[str, int] = defaultdict(int)
        self._dead_letters: list[DeadLetter] = []
        self._messages_processed = 0
        self._events_published = 0
        self._outbox_lock = asyncio.Lock()
        self._running = False

    # -- Lifecycle ---------------------------------------------------------

    async def start(self) -> None:
        self._running = True

    async def stop(self) -> None:
        """Unsubscribe every handler."""
        removed = self._registry.clear()
        self._running = False
        if removed:
            logger.info("Event bus stopped, %d handler(s) unsubscribed", removed)

    @property
    def is_running(self) -> bool:
        return self._running

    # -- Subscriptions -----------------------------------------------------

    def on(self, event_type: str, handler: EventHandler) -> None:
        """Register *handler* for *event_type*.  Duplicates run twice."""
        self._registry.add(event_type, handler)

    def off(self, event_type: str, handler: EventHandler) -> bool:
        """Remove one registration of *handler*.  Returns ``False`` if absent."""
        return self._registry.remove(event_type, handler)

    def subscribe_all(
        self,
        subscriptions: Mapping[str, EventHandler | Iterable[EventHandler]],
    ) -> None:
        """Register a startup table of ``{event_type: handler(s)}``."""
        for event_type, handlers in subscriptions.items():
            if callable(handlers):
                self.on(event_type, handlers)
                continue
            for handler in handlers:
                self.on(event_type, handler)

    def handler_count(self, event_type: str | None = None) -> int:
        return self._registry.count(event_type)

    def bind_outbox(self, outbox: IOutboxStore) -> EventBus:
        """Return a bus sharing these subscriptions but writing to *outbox*.

        Typical use: an outbox store bound to the caller's database
        session, so the outbox insert commits with the aggregate save.
        """
        return EventBus(
            outbox=outbox,
            error_sink=self._sink,
            clock=self._clock,
            keep_history=self._keep_history,
            _registry=self._registry,
        )

    @property
    def outbox(self) -> IOutboxStore | None:
        return self._outbox

    # -- Publishing --------------------------------------------------------

    async def publish(self, event: DomainEvent) -> None:
        """Persist *event* to the outbox, then deliver it to subscribers.

        Never raises because of outbox or handler failures.
        """
        self._events_published += 1
        if self._keep_history:
            self._history.append(event)

        if self._outbox is not None:
            try:
                await self._outbox.insert(record_from_event(event))
            except Exception as exc:
                self._error_counts["outbox"] += 1
                self._report(self._sink.outbox_write_failed, event, exc)

        await self._dispatch(event)

    async def publish_all(self, events: Iterable[DomainEvent]) -> None:
        """Publish *events* one after another, in order."""
        for event in events:
            await self.publish(event)

    async def _dispatch(self, event: DomainEvent) -> list[str]:
        """Run every handler for *event*; return ``"name: error"`` per failure."""
        handlers = self._registry.snapshot(event.type)
        if not handlers:
            return []

        results = await asyncio.gather(
            *(self._invoke(handler, event) for handler in handlers),
            return_exceptions=True,
        )

        failures: list[str] = []
        for handler, result in zip(handlers, results):
            if not isinstance(result, BaseException):
                self._messages_processed += 1
                continue
            if not isinstance(result, Exception):
                raise result
            name = _handler_name(handler)
            failures.append(f"{name}: {result}")
            self._error_counts[event.type] += 1
            self._dead_letters.append(DeadLetter(event=event, handler_name=name, error=str(result)))
            self._report(self._sink.handler_failed, event, name, result)
        return failures

    @staticmethod
    async def _invoke(handler: EventHandler, event: DomainEvent) -> None:
        result = handler(event)
        if inspect.isawaitable(result):
            await result

    def _report(self, method: Callable[..., None], *args: object) -> None:
        try:
            method(*args)
        except Exception:
            logger.warning("Delivery error sink failed", exc_info=True)

    # -- Outbox processing -------------------------------------------------

    async def process_outbox(self, batch_size: int = DEFAULT_BATCH_SIZE) -> OutboxBatchResult:
        """Redeliver up to *batch_size* pending outbox rows, oldest first.

        Each row is rebuilt into its event and dispatched to the current
        subscribers (no new outbox row is written).  The row is marked
        ``processed`` when every handler succeeds, ``failed`` with the
        error message otherwise.  Rows are handled one at a time; a failed
        row does not stop the batch.

        Raises
        ------
        OutboxNotConfiguredError
            If the bus has no outbox store.
        """
        if self._outbox is None:
            raise OutboxNotConfiguredError("process_outbox requires an outbox store")

        result = OutboxBatchResult()
        async with self._outbox_lock:
            records = await self._outbox.fetch_pending(batch_size)
            for record in records:
                try:
                    await self._redeliver(record)
                except Exception as exc:
                    error = str(exc) or type(exc).__name__
                    await self._mark_failed(record, error)
                    result.failed += 1
                    result.failed_ids.append(record.id)
                else:
                    result.processed += 1

        if result.total:
            logger.info(
                "Outbox batch done: %d processed, %d failed",
                result.processed,
                result.failed,
            )
        return result

    async def _redeliver(self, record: OutboxRecord) -> None:
        event = event_from_record(record)
        failures = await self._dispatch(event)
        if failures:
            raise DeliveryError(event.type, failures)
        await self._outbox.mark_processed(record.id, self._clock.now())

    async def _mark_failed(self, record: OutboxRecord, error: str) -> None:
        self._error_counts["outbox"] += 1
        try:
            await self._outbox.mark_failed(record.id, error, self._clock.now())
        except Exception:
            logger.exception("Could not mark outbox record %s failed", record.id)
        self._report(self._sink.outbox_record_failed, record, error)

    # -- Observability -----------------------------------------------------

    def get_error_counts(self) -> dict[str, int]:
        """Return ``{event_type or "outbox": error_count}``."""
        return dict(self._error_counts)

    @property
    def dead_letters(self) -> list[DeadLetter]:
        return list(self._dead_letters)

    def clear_dead_letters(self) -> list[DeadLetter]:
        """Drain and return dead letters."""
        drained = self._dead_letters[:]
        self._dead_letters.clear()
        return drained

    @property
    def messages_processed(self) -> int:
        """Successful handler invocations."""
        return self._messages_processed

    @property
    def events_published(self) -> int:
        return self._events_published

    def get_history(self, event_type: str | None = None) -> list[DomainEvent]:
        """Published events, optionally filtered (needs ``keep_history``)."""
        if event_type is None:
            return list(self._history)
        return [e for e in self._history if e.type == event_type]

    def clear_history(self) -> None:
        self._history.clear()
