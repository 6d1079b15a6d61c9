"""PostgreSQL implementations of the outbox and feature flag stores.

Each store accepts an optional :class:`AsyncSession`.  With a session it
joins the caller's transaction (flush only, the caller commits); this is
how an outbox insert commits atomically with the aggregate save.
Without one, every call runs in its own
:func:`marketplace_core.storage.postgres.connection.get_session` scope.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace_core.core.enums import OutboxStatus
from marketplace_core.infrastructure.feature_flags import FeatureFlag
from marketplace_core.infrastructure.outbox import (
    DEFAULT_BATCH_SIZE,
    OutboxRecord,
    OutboxTransitionError,
)

from .connection import get_session
from .models import FeatureFlagRow, OutboxRecordRow

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Conversion helpers
# ---------------------------------------------------------------------------

def _record_to_row(record: OutboxRecord) -> OutboxRecordRow:
    return OutboxRecordRow(
        id=record.id,
        event_type=record.event_type,
        payload=record.payload,
        metadata_json=record.metadata,
        status=record.status.value,
        error_message=record.error_message,
        created_at=record.created_at,
        processed_at=record.processed_at,
        updated_at=record.updated_at,
    )


def _row_to_record(row: OutboxRecordRow) -> OutboxRecord:
    return OutboxRecord(
        id=str(row.id),
        event_type=row.event_type,
        payload=dict(row.payload or {}),
        metadata=dict(row.metadata_json or {}),
        status=OutboxStatus(row.status),
        error_message=row.error_message,
        created_at=row.created_at,
        processed_at=row.processed_at,
        updated_at=row.updated_at,
    )


def _row_to_flag(row: FeatureFlagRow) -> FeatureFlag:
    return FeatureFlag(
        name=row.name,
        enabled=row.enabled,
        rollout_percentage=row.rollout_percentage,
        target_users=frozenset(row.target_users or ()),
        target_roles=frozenset(row.target_roles or ()),
        description=row.description or "",
    )


class _SessionScoped:
    def __init__(self, session: AsyncSession | None = None) -> None:
        self._session = session

    @asynccontextmanager
    async def _scope(self) -> AsyncIterator[AsyncSession]:
        if self._session is not None:
            yield self._session
            await self._session.flush()
            return
        async with get_session() as session:
            yield session


# ---------------------------------------------------------------------------
# PostgresOutboxStore
# ---------------------------------------------------------------------------

class PostgresOutboxStore(_SessionScoped):
    """``IOutboxStore`` over the ``outbox`` table."""

    async def insert(self, record: OutboxRecord) -> None:
        async with self._scope() as session:
            session.add(_record_to_row(record))
        logger.debug("Inserted outbox record %s (%s)", record.id, record.event_type)

    async def fetch_pending(self, limit: int = DEFAULT_BATCH_SIZE) -> list[OutboxRecord]:
        return await self._fetch(OutboxStatus.PENDING, limit)

    async def fetch_failed(self, limit: int = DEFAULT_BATCH_SIZE) -> list[OutboxRecord]:
        return await self._fetch(OutboxStatus.FAILED, limit)

    async def get(self, record_id: str) -> OutboxRecord | None:
        async with self._scope() as session:
            row = await session.get(OutboxRecordRow, record_id)
            return _row_to_record(row) if row is not None else None

    async def mark_processed(self, record_id: str, processed_at: datetime) -> None:
        await self._leave_pending(
            record_id,
            status=OutboxStatus.PROCESSED.value,
            processed_at=processed_at,
            updated_at=processed_at,
        )

    async def mark_failed(self, record_id: str, error_message: str, failed_at: datetime) -> None:
        await self._leave_pending(
            record_id,
            status=OutboxStatus.FAILED.value,
            error_message=error_message or "unknown error",
            updated_at=failed_at,
        )

    async def _fetch(self, status: OutboxStatus, limit: int) -> list[OutboxRecord]:
        stmt = (
            select(OutboxRecordRow)
            .where(OutboxRecordRow.status == status.value)
            .order_by(OutboxRecordRow.created_at.asc())
            .limit(limit)
        )
        async with self._scope() as session:
            result = await session.execute(stmt)
            rows: Sequence[OutboxRecordRow] = result.scalars().all()
            return [_row_to_record(r) for r in rows]

    async def _leave_pending(self, record_id: str, **values: object) -> None:
        # The status guard in the WHERE clause keeps transitions one-way.
        stmt = (
            update(OutboxRecordRow)
            .where(
                OutboxRecordRow.id == record_id,
                OutboxRecordRow.status == OutboxStatus.PENDING.value,
            )
            .values(**values)
        )
        async with self._scope() as session:
            result = await session.execute(stmt)
        if result.rowcount == 0:
            raise OutboxTransitionError(
                f"Outbox record {record_id} is missing or no longer pending"
            )


# ---------------------------------------------------------------------------
# PostgresFeatureFlagStore
# ---------------------------------------------------------------------------

class PostgresFeatureFlagStore(_SessionScoped):
    """``IFeatureFlagStore`` over the ``feature_flags`` table."""

    async def get_flag(self, name: str) -> FeatureFlag | None:
        stmt = select(FeatureFlagRow).where(FeatureFlagRow.name == name)
        async with self._scope() as session:
            result = await session.execute(stmt)
            row = result.scalar_one_or_none()
            return _row_to_flag(row) if row is not None else None

    async def list_flags(self) -> list[FeatureFlag]:
        stmt = select(FeatureFlagRow).order_by(FeatureFlagRow.name)
        async with self._scope() as session:
            result = await session.execute(stmt)
            return [_row_to_flag(r) for r in result.scalars().all()]

    async def upsert(self, flag: FeatureFlag) -> None:
        stmt = select(FeatureFlagRow).where(FeatureFlagRow.name == flag.name)
        async with self._scope() as session:
            result = await session.execute(stmt)
            row = result.scalar_one_or_none()
            if row is None:
                row = FeatureFlagRow(name=flag.name)
                session.add(row)
            row.description = flag.description or None
            row.enabled = flag.enabled
            row.rollout_percentage = flag.rollout_percentage
            row.target_users = sorted(flag.target_users)
            row.target_roles = sorted(flag.target_roles)
        logger.info(
            "Upserted feature flag %s (enabled=%s, rollout=%d%%)",
            flag.name,
            flag.enabled,
            flag.rollout_percentage,
        )
