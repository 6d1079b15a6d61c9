"""Outbox records, event conversion and the in-memory store."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from marketplace_core.core.enums import ApplicationStatus, OutboxStatus
from marketplace_core.core.errors import NotFoundError
from marketplace_core.domain.events import DomainEvent
from marketplace_core.infrastructure.outbox import (
    InMemoryOutboxStore,
    IOutboxStore,
    OutboxRecord,
    OutboxTransitionError,
    event_from_record,
    record_from_event,
)

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


class TestOutboxRecord:
    def test_new_record_is_pending(self):
        record = OutboxRecord(event_type="UserSuspended")
        assert record.is_pending
        assert record.processed_at is None
        assert record.error_message is None

    def test_mark_processed(self):
        record = OutboxRecord(event_type="UserSuspended")
        record.mark_processed(T0)
        assert record.status == OutboxStatus.PROCESSED
        assert record.processed_at == T0
        assert record.updated_at == T0

    def test_mark_failed_keeps_message(self):
        record = OutboxRecord(event_type="UserSuspended")
        record.mark_failed("handler exploded", T0)
        assert record.status == OutboxStatus.FAILED
        assert record.error_message == "handler exploded"
        assert record.processed_at is None

    def test_empty_error_message_is_replaced(self):
        record = OutboxRecord(event_type="UserSuspended")
        record.mark_failed("")
        assert record.error_message == "unknown error"

    @pytest.mark.parametrize("first", ["processed", "failed"])
    def test_no_second_transition(self, first):
        record = OutboxRecord(event_type="UserSuspended")
        if first == "processed":
            record.mark_processed()
        else:
            record.mark_failed("x")
        with pytest.raises(OutboxTransitionError):
            record.mark_processed()
        with pytest.raises(OutboxTransitionError):
            record.mark_failed("again")
        assert record.status == OutboxStatus(first)


class TestConversion:
    def test_record_from_event(self, sample_event: DomainEvent):
        record = record_from_event(sample_event)
        assert record.event_type == "UserSuspended"
        assert record.status == OutboxStatus.PENDING
        assert record.metadata == {
            "event_id": sample_event.event_id,
            "aggregate_id": "user-1",
            "occurred_at": T0.isoformat(),
        }

    def test_payload_is_json_safe(self):
        event = DomainEvent(
            type="ApplicationAccepted",
            payload={"status": ApplicationStatus.ACCEPTED, "at": T0, "tags": ("a", "b")},
        )
        record = record_from_event(event)
        assert record.payload == {"status": "accepted", "at": T0.isoformat(), "tags": ["a", "b"]}

    def test_event_from_record_keeps_identity(self, sample_event: DomainEvent):
        rebuilt = event_from_record(record_from_event(sample_event))
        assert rebuilt.event_id == sample_event.event_id
        assert rebuilt.type == sample_event.type
        assert rebuilt.aggregate_id == sample_event.aggregate_id
        assert rebuilt.occurred_at == T0
        assert dict(rebuilt.payload) == dict(sample_event.payload)

    def test_event_from_bare_record(self):
        record = OutboxRecord(event_type="Tick", created_at=T0)
        event = event_from_record(record)
        assert event.occurred_at == T0
        assert event.aggregate_id == ""
        assert event.event_id


class TestInMemoryOutboxStore:
    def test_satisfies_protocol(self):
        assert isinstance(InMemoryOutboxStore(), IOutboxStore)

    @pytest.mark.asyncio
    async def test_fetch_pending_oldest_first(self):
        store = InMemoryOutboxStore()
        late = OutboxRecord(event_type="Late", created_at=T0 + timedelta(minutes=1))
        early = OutboxRecord(event_type="Early", created_at=T0)
        await store.insert(late)
        await store.insert(early)
        pending = await store.fetch_pending()
        assert [r.event_type for r in pending] == ["Early", "Late"]
        assert [r.event_type for r in await store.fetch_pending(limit=1)] == ["Early"]

    @pytest.mark.asyncio
    async def test_status_filters(self):
        store = InMemoryOutboxStore()
        a = OutboxRecord(event_type="A")
        b = OutboxRecord(event_type="B")
        await store.insert(a)
        await store.insert(b)
        await store.mark_failed(a.id, "boom", T0)
        await store.mark_processed(b.id, T0)
        assert await store.fetch_pending() == []
        assert [r.id for r in await store.fetch_failed()] == [a.id]

    @pytest.mark.asyncio
    async def test_get(self):
        store = InMemoryOutboxStore()
        record = OutboxRecord(event_type="A")
        await store.insert(record)
        assert await store.get(record.id) is record
        assert await store.get("missing") is None

    @pytest.mark.asyncio
    async def test_unknown_id_raises(self):
        store = InMemoryOutboxStore()
        with pytest.raises(NotFoundError):
            await store.mark_processed("missing", T0)

    @pytest.mark.asyncio
    async def test_clear(self):
        store = InMemoryOutboxStore()
        await store.insert(OutboxRecord(event_type="A"))
        assert len(store) == 1
        store.clear()
        assert len(store) == 0
