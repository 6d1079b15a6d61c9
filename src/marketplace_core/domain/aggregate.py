"""Aggregate root base class.

An aggregate owns a consistency boundary: all state changes go through its
own methods, and every accepted change records exactly one ``DomainEvent``
in a private buffer.  The buffer is only reachable through
``pull_domain_events()``, which hands the whole batch over and empties it.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Any, ClassVar

from marketplace_core.core.errors import ValidationError
from marketplace_core.core.ids import ensure_utc, utc_now
from marketplace_core.domain.events import DomainEvent


class AggregateRoot:
    """Base for every aggregate: identity, timestamps, pending events."""

    aggregate_name: ClassVar[str] = "Aggregate"

    def __init__(
        self,
        *,
        id: str,
        created_at: datetime | None = None,
        updated_at: datetime | None = None,
    ) -> None:
        require_fields(self.aggregate_name, id=id)
        now = utc_now()
        self._id = id
        self.created_at = ensure_utc(created_at) if created_at else now
        self.updated_at = ensure_utc(updated_at) if updated_at else self.created_at
        self._pending_events: list[DomainEvent] = []

    @property
    def id(self) -> str:
        return self._id

    # -- Events --------------------------------------------------------------

    def pull_domain_events(self) -> list[DomainEvent]:
        """Return all pending events in emission order and clear the buffer."""
        events, self._pending_events = self._pending_events, []
        return events

    @property
    def pending_event_count(self) -> int:
        return len(self._pending_events)

    def _record_event(self, event_type: str, payload: Mapping[str, Any]) -> DomainEvent:
        event = DomainEvent(
            type=event_type,
            payload=payload,
            occurred_at=utc_now(),
            aggregate_id=self._id,
        )
        self._pending_events.append(event)
        return event

    def _touch(self, now: datetime | None = None) -> datetime:
        self.updated_at = ensure_utc(now) if now else utc_now()
        return self.updated_at

    # -- Identity ------------------------------------------------------------

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, self.__class__):
            return NotImplemented
        return self._id == other._id

    def __hash__(self) -> int:
        return hash((self.__class__, self._id))

    def __repr__(self) -> str:
        status = getattr(self, "status", None)
        suffix = f", status={status.value!r}" if status is not None else ""
        return f"<{self.__class__.__name__}(id={self._id!r}{suffix})>"


def require_fields(aggregate: str, **fields: Any) -> None:
    """Raise ``ValidationError`` naming every empty required field."""
    missing = [name for name, value in fields.items() if value is None or value == ""]
    if missing:
        raise ValidationError(
            f"{aggregate} is missing required field(s): {', '.join(missing)}"
        )


def pick(data: Mapping[str, Any], snake: str, camel: str | None = None, default: Any = None) -> Any:
    """Read *snake* (or its camelCase spelling) from a plain data bag."""
    if snake in data:
        return data[snake]
    if camel is None:
        head, *rest = snake.split("_")
        camel = head + "".join(part.title() for part in rest)
    return data.get(camel, default)


def is_filled(value: Any) -> bool:
    """Completion check: ``None`` and blank strings count as empty."""
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True
