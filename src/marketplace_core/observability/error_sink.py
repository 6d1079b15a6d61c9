"""Delivery error sink that logs and counts failures in Prometheus."""

from __future__ import annotations

from marketplace_core.domain.events import DomainEvent
from marketplace_core.infrastructure.event_bus import LoggingErrorSink
from marketplace_core.infrastructure.outbox import OutboxRecord
from marketplace_core.observability.metrics import (
    record_handler_failure,
    record_outbox_write_failure,
)


class PrometheusErrorSink(LoggingErrorSink):
    """``LoggingErrorSink`` plus failure counters.

    Failed outbox rows are counted per batch by the outbox worker, so
    ``outbox_record_failed`` only logs.
    """

    def handler_failed(self, event: DomainEvent, handler_name: str, exc: BaseException) -> None:
        super().handler_failed(event, handler_name, exc)
        record_handler_failure(event.type, handler_name)

    def outbox_write_failed(self, event: DomainEvent, exc: BaseException) -> None:
        super().outbox_write_failed(event, exc)
        record_outbox_write_failure(event.type)
