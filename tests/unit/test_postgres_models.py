"""ORM models and row conversions for the PostgreSQL stores (no database)."""

from __future__ import annotations

from datetime import datetime, timezone

from marketplace_core.core.enums import OutboxStatus
from marketplace_core.infrastructure.feature_flags import IFeatureFlagStore
from marketplace_core.infrastructure.outbox import IOutboxStore, OutboxRecord
from marketplace_core.storage.postgres.models import Base, FeatureFlagRow, OutboxRecordRow
from marketplace_core.storage.postgres.repos import (
    PostgresFeatureFlagStore,
    PostgresOutboxStore,
    _record_to_row,
    _row_to_flag,
    _row_to_record,
)

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


class TestSchema:
    def test_tables_registered(self):
        assert {"outbox", "feature_flags"} <= set(Base.metadata.tables)

    def test_outbox_metadata_column_name(self):
        columns = OutboxRecordRow.__table__.columns
        assert "metadata" in columns
        assert "metadata_json" not in columns

    def test_outbox_indexes(self):
        names = {index.name for index in OutboxRecordRow.__table__.indexes}
        assert "ix_outbox_status_created_at" in names

    def test_flag_name_is_unique(self):
        assert FeatureFlagRow.__table__.columns["name"].unique


class TestConversions:
    def test_outbox_record_round_trip(self):
        record = OutboxRecord(
            event_type="UserSuspended",
            payload={"user_id": "u1"},
            metadata={"event_id": "e1"},
            created_at=T0,
            updated_at=T0,
        )
        record.mark_failed("boom", T0)
        row = _record_to_row(record)
        assert row.status == "failed"
        assert row.metadata_json == {"event_id": "e1"}

        back = _row_to_record(row)
        assert back.id == record.id
        assert back.status == OutboxStatus.FAILED
        assert back.error_message == "boom"
        assert back.payload == {"user_id": "u1"}

    def test_flag_row(self):
        row = FeatureFlagRow(
            name="beta",
            enabled=True,
            rollout_percentage=25,
            target_users=["u1"],
            target_roles=None,
            description=None,
        )
        flag = _row_to_flag(row)
        assert flag.rollout_percentage == 25
        assert flag.target_users == frozenset({"u1"})
        assert flag.target_roles == frozenset()
        assert flag.description == ""


def test_stores_satisfy_protocols():
    assert isinstance(PostgresOutboxStore(), IOutboxStore)
    assert isinstance(PostgresFeatureFlagStore(), IFeatureFlagStore)
