"""SQLAlchemy ORM models for the outbox and feature flag tables.

Both tables use UUID primary keys and timezone-aware UTC timestamps,
with indexes for the hot queries: pending outbox rows by age, and flag
lookup by name.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_uuid() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Declarative base
# ---------------------------------------------------------------------------

class Base(DeclarativeBase):
    """Shared declarative base for all ORM models."""

    pass


# ---------------------------------------------------------------------------
# OutboxRecordRow
# ---------------------------------------------------------------------------

class OutboxRecordRow(Base):
    """One published domain event awaiting (or done with) redelivery.

    Maps from :class:`marketplace_core.infrastructure.outbox.OutboxRecord`.
    Rows are inserted ``pending`` and updated once, to ``processed`` or
    ``failed``.
    """

    __tablename__ = "outbox"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), primary_key=True, default=_new_uuid,
    )
    event_type: Mapped[str] = mapped_column(String(128), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    metadata_json: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSONB, nullable=False, default=dict,
    )
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow,
    )
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow,
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'processed', 'failed')", name="ck_outbox_status",
        ),
        Index("ix_outbox_status", "status"),
        Index("ix_outbox_created_at", "created_at"),
        Index("ix_outbox_status_created_at", "status", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<OutboxRecordRow {self.event_type} {self.status} id={self.id}>"


# ---------------------------------------------------------------------------
# FeatureFlagRow
# ---------------------------------------------------------------------------

class FeatureFlagRow(Base):
    """Administratively managed flag rule."""

    __tablename__ = "feature_flags"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), primary_key=True, default=_new_uuid,
    )
    name: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    rollout_percentage: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    target_users: Mapped[list[str]] = mapped_column(ARRAY(String), nullable=False, default=list)
    target_roles: Mapped[list[str]] = mapped_column(ARRAY(String), nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow,
    )

    __table_args__ = (
        CheckConstraint(
            "rollout_percentage BETWEEN 0 AND 100", name="ck_feature_flags_rollout",
        ),
        Index("ix_feature_flags_name", "name"),
        Index("ix_feature_flags_enabled", "enabled"),
    )

    def __repr__(self) -> str:
        return f"<FeatureFlagRow {self.name} enabled={self.enabled} rollout={self.rollout_percentage}>"
