"""Explicit state-transition tables for aggregate lifecycles.

Each aggregate declares its lifecycle as a ``StateMachine`` built from
``Transition`` rows (current state x action -> next state).  Aggregates ask
the machine before mutating anything, so a rejected action never leaves a
half-applied change behind.

A ``Transition`` with ``target=None`` permits the action without changing
status (e.g. editing a cover letter while the application is pending).
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

from marketplace_core.core.errors import InvalidStateError

S = TypeVar("S", bound=Enum)


@dataclass(frozen=True)
class Transition(Generic[S]):
    """One row of a transition table."""

    action: str
    sources: frozenset[S]
    target: S | None = None


class StateMachine(Generic[S]):
    """Lookup table of permitted actions per state.

    Parameters
    ----------
    name:
        Aggregate name used in error messages (``"JobApplication"``).
    transitions:
        The table rows.  Each action may appear only once.
    """

    def __init__(self, name: str, transitions: Iterable[Transition[S]]) -> None:
        self._name = name
        self._table: dict[str, Transition[S]] = {}
        for transition in transitions:
            if transition.action in self._table:
                raise ValueError(
                    f"{name}: duplicate transition for action {transition.action!r}"
                )
            self._table[transition.action] = transition

    @property
    def name(self) -> str:
        return self._name

    @property
    def actions(self) -> tuple[str, ...]:
        return tuple(self._table)

    def can(self, current: S, action: str) -> bool:
        transition = self._table.get(action)
        return transition is not None and current in transition.sources

    def allowed_actions(self, current: S) -> list[str]:
        """Actions permitted from *current*, in declaration order."""
        return [a for a, t in self._table.items() if current in t.sources]

    def next_state(self, current: S, action: str, *, aggregate_id: str = "") -> S:
        """Return the state reached by *action* from *current*.

        Raises
        ------
        InvalidStateError
            If the action is unknown or not permitted from *current*.
        """
        transition = self._table.get(action)
        if transition is None:
            raise InvalidStateError(
                f"{self._name} has no action {action!r}",
                aggregate=self._name,
                aggregate_id=aggregate_id,
                current_state=current.value,
                action=action,
            )
        if current not in transition.sources:
            subject = f"{self._name} {aggregate_id}" if aggregate_id else self._name
            raise InvalidStateError(
                f"Cannot {action} {subject} in state {current.value!r}",
                aggregate=self._name,
                aggregate_id=aggregate_id,
                current_state=current.value,
                action=action,
            )
        return transition.target if transition.target is not None else current
