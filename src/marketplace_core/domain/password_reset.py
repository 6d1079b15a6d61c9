"""Password reset token aggregate.

Lifecycle::

    pending -> used | expired | cancelled

``is_valid()`` is deliberately not a pure query: asking an overdue pending
reset whether it is valid expires it and records ``PasswordResetExpired``.
"""

from __future__ import annotations

import hmac
from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import Any

from marketplace_core.core.enums import PasswordResetStatus
from marketplace_core.core.errors import InvalidTokenError, ValidationError
from marketplace_core.core.ids import ensure_utc, new_id, new_token, parse_timestamp, utc_now
from marketplace_core.domain import events as ev
from marketplace_core.domain.aggregate import AggregateRoot, pick, require_fields
from marketplace_core.domain.state_machine import StateMachine, Transition

DEFAULT_TTL_MINUTES = 60

_PENDING = frozenset({PasswordResetStatus.PENDING})

PASSWORD_RESET_LIFECYCLE: StateMachine[PasswordResetStatus] = StateMachine(
    "PasswordReset",
    [
        Transition("expire", _PENDING, PasswordResetStatus.EXPIRED),
        Transition("mark_as_used", _PENDING, PasswordResetStatus.USED),
        Transition("cancel", _PENDING, PasswordResetStatus.CANCELLED),
    ],
)


class PasswordReset(AggregateRoot):
    """A single-use, time-limited password reset token."""

    aggregate_name = "PasswordReset"

    def __init__(
        self,
        *,
        id: str,
        user_id: str,
        email: str,
        token: str,
        expires_at: datetime,
        status: PasswordResetStatus = PasswordResetStatus.PENDING,
        used_at: datetime | None = None,
        cancellation_reason: str | None = None,
        created_at: datetime | None = None,
        updated_at: datetime | None = None,
    ) -> None:
        super().__init__(id=id, created_at=created_at, updated_at=updated_at)
        require_fields(
            self.aggregate_name, user_id=user_id, email=email, token=token, expires_at=expires_at
        )
        self.user_id = user_id
        self.email = email
        self._token = token
        self.expires_at = ensure_utc(expires_at)
        self._status = PasswordResetStatus(status)
        self.used_at = ensure_utc(used_at) if used_at else None
        self.cancellation_reason = cancellation_reason

    @classmethod
    def request(
        cls,
        *,
        user_id: str,
        email: str,
        ttl_minutes: int = DEFAULT_TTL_MINUTES,
        now: datetime | None = None,
    ) -> PasswordReset:
        """Issue a fresh reset token valid for *ttl_minutes*."""
        if ttl_minutes <= 0:
            raise ValidationError("PasswordReset ttl_minutes must be positive")
        issued_at = now or utc_now()
        reset = cls(
            id=new_id(),
            user_id=user_id,
            email=email,
            token=new_token(),
            expires_at=issued_at + timedelta(minutes=ttl_minutes),
            created_at=issued_at,
        )
        reset._record_event(
            ev.PASSWORD_RESET_REQUESTED,
            {
                "reset_id": reset.id,
                "user_id": user_id,
                "email": email,
                "expires_at": reset.expires_at.isoformat(),
            },
        )
        return reset

    @property
    def status(self) -> PasswordResetStatus:
        return self._status

    @property
    def token(self) -> str:
        return self._token

    def matches_token(self, candidate: str) -> bool:
        return hmac.compare_digest(self._token.encode(), candidate.encode())

    # -- Queries -------------------------------------------------------------

    def is_valid(self, now: datetime | None = None) -> bool:
        """True while pending and unexpired.  Expires an overdue reset."""
        if self._status != PasswordResetStatus.PENDING:
            return False
        if (now or utc_now()) > self.expires_at:
            self.expire(now)
            return False
        return True

    def is_approaching_expiry(
        self, threshold_minutes: int = 10, now: datetime | None = None
    ) -> bool:
        remaining = self.expires_at - (now or utc_now())
        return timedelta(0) < remaining <= timedelta(minutes=threshold_minutes)

    # -- Transitions ---------------------------------------------------------

    def expire(self, now: datetime | None = None) -> None:
        self._status = PASSWORD_RESET_LIFECYCLE.next_state(
            self._status, "expire", aggregate_id=self.id
        )
        self._touch(now)
        self._record_event(
            ev.PASSWORD_RESET_EXPIRED,
            {"reset_id": self.id, "user_id": self.user_id, "email": self.email},
        )

    def mark_as_used(self, now: datetime | None = None) -> None:
        if not self.is_valid(now):
            raise InvalidTokenError(
                f"Password reset {self.id} is {self._status.value} and cannot be used"
            )
        self._status = PASSWORD_RESET_LIFECYCLE.next_state(
            self._status, "mark_as_used", aggregate_id=self.id
        )
        self.used_at = self._touch(now)
        self._record_event(
            ev.PASSWORD_RESET_USED,
            {
                "reset_id": self.id,
                "user_id": self.user_id,
                "email": self.email,
                "used_at": self.used_at.isoformat(),
            },
        )

    def redeem(self, token: str, now: datetime | None = None) -> None:
        """Check *token* and consume the reset in one step."""
        if not self.matches_token(token):
            raise InvalidTokenError(f"Token does not match password reset {self.id}")
        self.mark_as_used(now)

    def cancel(self, reason: str) -> None:
        self._status = PASSWORD_RESET_LIFECYCLE.next_state(
            self._status, "cancel", aggregate_id=self.id
        )
        self.cancellation_reason = reason
        self._touch()
        self._record_event(
            ev.PASSWORD_RESET_CANCELLED,
            {"reset_id": self.id, "user_id": self.user_id, "reason": reason},
        )

    # -- Serialization -------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "email": self.email,
            "token": self._token,
            "expires_at": self.expires_at.isoformat(),
            "status": self._status.value,
            "used_at": self.used_at.isoformat() if self.used_at else None,
            "cancellation_reason": self.cancellation_reason,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PasswordReset:
        return cls(
            id=pick(data, "id"),
            user_id=pick(data, "user_id"),
            email=pick(data, "email"),
            token=pick(data, "token"),
            expires_at=parse_timestamp(pick(data, "expires_at")),
            status=PasswordResetStatus(
                pick(data, "status", default=PasswordResetStatus.PENDING.value)
            ),
            used_at=parse_timestamp(pick(data, "used_at")),
            cancellation_reason=pick(data, "cancellation_reason"),
            created_at=parse_timestamp(pick(data, "created_at")),
            updated_at=parse_timestamp(pick(data, "updated_at")),
        )
