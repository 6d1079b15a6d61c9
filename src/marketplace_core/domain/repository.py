"""Repository protocol consumed by the application layer.

Repositories store aggregates as current-state snapshots.  They never
touch the pending-event buffer; use cases pull events after ``save``.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Protocol, TypeVar

from marketplace_core.domain.aggregate import AggregateRoot

T = TypeVar("T", bound=AggregateRoot)


@dataclass(frozen=True)
class Pagination:
    limit: int = 20
    offset: int = 0

    def __post_init__(self) -> None:
        if self.limit < 1:
            raise ValueError(f"Pagination.limit must be >= 1, got {self.limit}")
        if self.offset < 0:
            raise ValueError(f"Pagination.offset must be >= 0, got {self.offset}")


class Repository(Protocol[T]):
    """Async CRUD over one aggregate type."""

    async def find_by_id(self, aggregate_id: str) -> T:
        """Return the aggregate.  Raises ``AggregateNotFoundError``."""
        ...

    async def save(self, aggregate: T) -> None:
        """Insert or replace the aggregate snapshot."""
        ...

    async def delete(self, aggregate_id: str) -> None:
        """Remove the aggregate.  Raises ``AggregateNotFoundError``."""
        ...

    async def search(
        self,
        filters: Mapping[str, Any] | None = None,
        pagination: Pagination | None = None,
    ) -> list[T]:
        """Return aggregates whose attributes equal every filter value."""
        ...
