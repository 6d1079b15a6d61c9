"""User account aggregate.

Lifecycle::

    active <-> suspended
       \\         /
        deleted

Email and phone verification are independent flags, not states.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Any

from marketplace_core.core.enums import UserRole, UserStatus
from marketplace_core.core.errors import AlreadyVerifiedError, ValidationError
from marketplace_core.core.ids import new_id, parse_timestamp
from marketplace_core.domain import events as ev
from marketplace_core.domain.aggregate import AggregateRoot, pick, require_fields
from marketplace_core.domain.state_machine import StateMachine, Transition

_ANY = frozenset(UserStatus)

USER_LIFECYCLE: StateMachine[UserStatus] = StateMachine(
    "User",
    [
        Transition("verify_email", _ANY),
        Transition("verify_phone", _ANY),
        Transition(
            "suspend",
            frozenset({UserStatus.ACTIVE, UserStatus.SUSPENDED}),
            UserStatus.SUSPENDED,
        ),
        Transition("reactivate", frozenset({UserStatus.SUSPENDED}), UserStatus.ACTIVE),
        Transition(
            "delete",
            frozenset({UserStatus.ACTIVE, UserStatus.SUSPENDED}),
            UserStatus.DELETED,
        ),
    ],
)


class User(AggregateRoot):
    """A marketplace account (maid, sponsor, agency or admin)."""

    aggregate_name = "User"

    def __init__(
        self,
        *,
        id: str,
        email: str,
        role: UserRole = UserRole.SPONSOR,
        phone_number: str | None = None,
        email_verified: bool = False,
        phone_verified: bool = False,
        status: UserStatus = UserStatus.ACTIVE,
        suspension_reason: str | None = None,
        created_at: datetime | None = None,
        updated_at: datetime | None = None,
    ) -> None:
        super().__init__(id=id, created_at=created_at, updated_at=updated_at)
        require_fields(self.aggregate_name, email=email)
        if "@" not in email:
            raise ValidationError(f"User {id}: invalid email {email!r}")
        self.email = email
        self.role = UserRole(role)
        self.phone_number = phone_number
        self._email_verified = bool(email_verified)
        self._phone_verified = bool(phone_verified)
        self._status = UserStatus(status)
        self.suspension_reason = suspension_reason

    @classmethod
    def register(
        cls,
        *,
        email: str,
        role: UserRole = UserRole.SPONSOR,
        phone_number: str | None = None,
        id: str | None = None,
    ) -> User:
        """Create a new active, unverified account."""
        user = cls(id=id or new_id(), email=email, role=role, phone_number=phone_number)
        user._record_event(
            ev.USER_REGISTERED,
            {"user_id": user.id, "email": user.email, "role": user.role.value},
        )
        return user

    # -- Read-only state -----------------------------------------------------

    @property
    def status(self) -> UserStatus:
        return self._status

    @property
    def email_verified(self) -> bool:
        return self._email_verified

    @property
    def phone_verified(self) -> bool:
        return self._phone_verified

    @property
    def is_active(self) -> bool:
        return self._status == UserStatus.ACTIVE

    @property
    def is_verified(self) -> bool:
        return self._email_verified and self._phone_verified

    # -- Transitions ---------------------------------------------------------

    def verify_email(self) -> None:
        if self._email_verified:
            raise AlreadyVerifiedError(
                f"Email already verified for user {self.id}",
                aggregate=self.aggregate_name,
                aggregate_id=self.id,
                current_state=self._status.value,
                action="verify_email",
            )
        USER_LIFECYCLE.next_state(self._status, "verify_email", aggregate_id=self.id)
        self._email_verified = True
        self._touch()
        self._record_event(ev.USER_EMAIL_VERIFIED, {"user_id": self.id, "email": self.email})

    def verify_phone(self, phone_number: str) -> None:
        # No already-verified guard: re-verifying replaces the number.
        require_fields(self.aggregate_name, phone_number=phone_number)
        USER_LIFECYCLE.next_state(self._status, "verify_phone", aggregate_id=self.id)
        self.phone_number = phone_number
        self._phone_verified = True
        self._touch()
        self._record_event(
            ev.USER_PHONE_VERIFIED,
            {"user_id": self.id, "phone_number": phone_number},
        )

    def suspend(self, reason: str) -> None:
        """Suspend the account.  Suspending twice is allowed."""
        self._status = USER_LIFECYCLE.next_state(self._status, "suspend", aggregate_id=self.id)
        self.suspension_reason = reason
        self._touch()
        self._record_event(ev.USER_SUSPENDED, {"user_id": self.id, "reason": reason})

    def reactivate(self) -> None:
        self._status = USER_LIFECYCLE.next_state(self._status, "reactivate", aggregate_id=self.id)
        self.suspension_reason = None
        self._touch()
        self._record_event(ev.USER_REACTIVATED, {"user_id": self.id})

    def delete(self, reason: str = "") -> None:
        self._status = USER_LIFECYCLE.next_state(self._status, "delete", aggregate_id=self.id)
        self._touch()
        self._record_event(ev.USER_DELETED, {"user_id": self.id, "reason": reason})

    # -- Serialization -------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "role": self.role.value,
            "phone_number": self.phone_number,
            "email_verified": self._email_verified,
            "phone_verified": self._phone_verified,
            "status": self._status.value,
            "suspension_reason": self.suspension_reason,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> User:
        return cls(
            id=pick(data, "id"),
            email=pick(data, "email"),
            role=UserRole(pick(data, "role", default=UserRole.SPONSOR.value)),
            phone_number=pick(data, "phone_number"),
            email_verified=bool(pick(data, "email_verified", default=False)),
            phone_verified=bool(pick(data, "phone_verified", default=False)),
            status=UserStatus(pick(data, "status", default=UserStatus.ACTIVE.value)),
            suspension_reason=pick(data, "suspension_reason"),
            created_at=parse_timestamp(pick(data, "created_at")),
            updated_at=parse_timestamp(pick(data, "updated_at")),
        )
