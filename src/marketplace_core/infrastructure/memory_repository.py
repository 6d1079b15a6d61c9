"""Dict-backed repository for tests and local development.

Aggregates are stored as ``to_dict()`` snapshots and rebuilt through
``from_dict()`` on every read, so callers never share an instance with
the store and pending events are never persisted.
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
from typing import Any, Generic

from marketplace_core.core.errors import AggregateNotFoundError
from marketplace_core.domain.repository import Pagination, T


class InMemoryRepository(Generic[T]):
    """``Repository[T]`` over a plain dict keyed by aggregate id."""

    def __init__(self, aggregate_cls: type[T]) -> None:
        self._cls = aggregate_cls
        self._rows: dict[str, dict[str, Any]] = {}

    @property
    def aggregate_name(self) -> str:
        return self._cls.aggregate_name

    async def find_by_id(self, aggregate_id: str) -> T:
        row = self._rows.get(aggregate_id)
        if row is None:
            raise AggregateNotFoundError(self.aggregate_name, aggregate_id)
        return self._cls.from_dict(row)

    async def save(self, aggregate: T) -> None:
        self._rows[aggregate.id] = aggregate.to_dict()

    async def delete(self, aggregate_id: str) -> None:
        if self._rows.pop(aggregate_id, None) is None:
            raise AggregateNotFoundError(self.aggregate_name, aggregate_id)

    async def search(
        self,
        filters: Mapping[str, Any] | None = None,
        pagination: Pagination | None = None,
    ) -> list[T]:
        page = pagination or Pagination()
        wanted = {k: _plain(v) for k, v in (filters or {}).items()}
        matches = [
            row
            for row in self._rows.values()
            if all(row.get(key) == value for key, value in wanted.items())
        ]
        matches.sort(key=lambda row: (row.get("created_at") or "", row["id"]))
        window = matches[page.offset:page.offset + page.limit]
        return [self._cls.from_dict(row) for row in window]

    # -- Testing helpers ---------------------------------------------------

    def __len__(self) -> int:
        return len(self._rows)

    def __contains__(self, aggregate_id: object) -> bool:
        return aggregate_id in self._rows


def _plain(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value
