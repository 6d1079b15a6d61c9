"""Transactional outbox: durable record of every published event.

Design invariants
-----------------
1.  A record is created ``pending`` at publish time and moves at most
    once, to ``processed`` or ``failed``.  It never moves backward.
2.  The event bus only inserts; the outbox processor only updates status.
3.  ``payload`` and ``metadata`` are JSON-safe (datetimes as ISO strings,
    enums as values, tuples/sets as lists) so any store can persist them
    as JSON without a custom encoder.
4.  ``metadata["event_id"]`` carries the original event identity, so
    redelivered events keep the idempotency key consumers dedupe on.

This module provides:

*  ``OutboxRecord``: the row.
*  ``record_from_event`` / ``event_from_record``: conversions.
*  ``IOutboxStore``: the protocol.
*  ``InMemoryOutboxStore``: dict-backed store for tests and local runs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from marketplace_core.core.enums import OutboxStatus
from marketplace_core.core.errors import NotFoundError
from marketplace_core.core.ids import new_id, parse_timestamp, utc_now
from marketplace_core.domain.events import DomainEvent, json_safe

DEFAULT_BATCH_SIZE = 100


class OutboxTransitionError(ValueError):
    """Raised when a record that already left ``pending`` is updated again."""


# ---------------------------------------------------------------------------
# Record
# ---------------------------------------------------------------------------

@dataclass
class OutboxRecord:
    event_type: str
    payload: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=new_id)
    status: OutboxStatus = OutboxStatus.PENDING
    error_message: str | None = None
    created_at: datetime = field(default_factory=utc_now)
    processed_at: datetime | None = None
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def is_pending(self) -> bool:
        return self.status == OutboxStatus.PENDING

    def mark_processed(self, now: datetime | None = None) -> None:
        self._leave_pending(OutboxStatus.PROCESSED)
        self.processed_at = self.updated_at = now or utc_now()

    def mark_failed(self, error: str, now: datetime | None = None) -> None:
        self._leave_pending(OutboxStatus.FAILED)
        self.error_message = error or "unknown error"
        self.updated_at = now or utc_now()

    def _leave_pending(self, target: OutboxStatus) -> None:
        if self.status != OutboxStatus.PENDING:
            raise OutboxTransitionError(
                f"Outbox record {self.id} is {self.status.value}; cannot mark {target.value}"
            )
        self.status = target


def record_from_event(event: DomainEvent) -> OutboxRecord:
    """Build a pending outbox record for *event*."""
    return OutboxRecord(
        event_type=event.type,
        payload=json_safe(dict(event.payload)),
        metadata={
            "event_id": event.event_id,
            "aggregate_id": event.aggregate_id,
            "occurred_at": event.occurred_at.isoformat(),
        },
    )


def event_from_record(record: OutboxRecord) -> DomainEvent:
    """Rebuild the event a record was written for."""
    meta = record.metadata or {}
    kwargs: dict[str, Any] = {
        "type": record.event_type,
        "payload": record.payload or {},
        "occurred_at": parse_timestamp(meta.get("occurred_at")) or record.created_at,
        "aggregate_id": meta.get("aggregate_id", ""),
    }
    if meta.get("event_id"):
        kwargs["event_id"] = meta["event_id"]
    return DomainEvent(**kwargs)


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------

@runtime_checkable
class IOutboxStore(Protocol):
    """Durable queue of outbox records."""

    async def insert(self, record: OutboxRecord) -> None:
        ...

    async def fetch_pending(self, limit: int = DEFAULT_BATCH_SIZE) -> list[OutboxRecord]:
        """Pending records, oldest ``created_at`` first."""
        ...

    async def fetch_failed(self, limit: int = DEFAULT_BATCH_SIZE) -> list[OutboxRecord]:
        """Failed records, oldest first, for inspection or manual replay."""
        ...

    async def get(self, record_id: str) -> OutboxRecord | None:
        ...

    async def mark_processed(self, record_id: str, processed_at: datetime) -> None:
        ...

    async def mark_failed(self, record_id: str, error_message: str, failed_at: datetime) -> None:
        ...


# ---------------------------------------------------------------------------
# In-memory implementation
# ---------------------------------------------------------------------------

class InMemoryOutboxStore:
    """Dict-backed outbox.  No persistence across restarts.

    Good for: unit tests and local development.
    """

    def __init__(self) -> None:
        self._records: dict[str, OutboxRecord] = {}

    async def insert(self, record: OutboxRecord) -> None:
        self._records[record.id] = record

    async def fetch_pending(self, limit: int = DEFAULT_BATCH_SIZE) -> list[OutboxRecord]:
        return self._by_status(OutboxStatus.PENDING, limit)

    async def fetch_failed(self, limit: int = DEFAULT_BATCH_SIZE) -> list[OutboxRecord]:
        return self._by_status(OutboxStatus.FAILED, limit)

    async def get(self, record_id: str) -> OutboxRecord | None:
        return self._records.get(record_id)

    async def mark_processed(self, record_id: str, processed_at: datetime) -> None:
        self._require(record_id).mark_processed(processed_at)

    async def mark_failed(self, record_id: str, error_message: str, failed_at: datetime) -> None:
        self._require(record_id).mark_failed(error_message, failed_at)

    def _by_status(self, status: OutboxStatus, limit: int) -> list[OutboxRecord]:
        rows = [r for r in self._records.values() if r.status == status]
        rows.sort(key=lambda r: r.created_at)
        return rows[:limit]

    def _require(self, record_id: str) -> OutboxRecord:
        record = self._records.get(record_id)
        if record is None:
            raise NotFoundError(f"Outbox record {record_id!r} not found")
        return record

    # -- Testing helpers ---------------------------------------------------

    @property
    def records(self) -> list[OutboxRecord]:
        return list(self._records.values())

    def clear(self) -> None:
        self._records.clear()

    def __len__(self) -> int:
        return len(self._records)
