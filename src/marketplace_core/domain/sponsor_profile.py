"""Sponsor profile aggregate.

Lifecycle::

    draft -> under_review -> active
                  |
                  +-------> rejected

    (any non-archived state) -> archived

``completion_percentage`` is recomputed after every field-mutating call
from ``REQUIRED_FIELDS``.  A profile can only be submitted for
verification once it is 100% complete.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Any

from marketplace_core.core.enums import SponsorDocumentType, SponsorProfileStatus
from marketplace_core.core.errors import IncompleteProfileError, ValidationError
from marketplace_core.core.ids import ensure_utc, new_id, parse_timestamp
from marketplace_core.domain import events as ev
from marketplace_core.domain.aggregate import AggregateRoot, is_filled, pick, require_fields
from marketplace_core.domain.state_machine import StateMachine, Transition

_S = SponsorProfileStatus
_EDITABLE = frozenset(SponsorProfileStatus) - {_S.ARCHIVED}

SPONSOR_PROFILE_LIFECYCLE: StateMachine[SponsorProfileStatus] = StateMachine(
    "SponsorProfile",
    [
        Transition("update_basic_info", _EDITABLE),
        Transition("update_household_info", _EDITABLE),
        Transition("update_preferences", _EDITABLE),
        Transition("upload_document", _EDITABLE),
        Transition("submit_for_verification", frozenset({_S.DRAFT}), _S.UNDER_REVIEW),
        Transition("verify", frozenset({_S.UNDER_REVIEW}), _S.ACTIVE),
        Transition("reject", frozenset({_S.UNDER_REVIEW}), _S.REJECTED),
        Transition("archive", _EDITABLE, _S.ARCHIVED),
    ],
)

REQUIRED_FIELDS: tuple[str, ...] = (
    "name",
    "phone",
    "country",
    "city",
    "address",
    "household_size",
    "id_document",
    "proof_of_residence",
)

_BASIC_FIELDS = ("name", "phone", "country", "city", "address")


class SponsorProfile(AggregateRoot):
    """Household profile a sponsor must complete before hiring."""

    aggregate_name = "SponsorProfile"

    def __init__(
        self,
        *,
        id: str,
        user_id: str,
        name: str | None = None,
        phone: str | None = None,
        country: str | None = None,
        city: str | None = None,
        address: str | None = None,
        household_size: int | None = None,
        number_of_children: int = 0,
        has_pets: bool = False,
        preferences: Mapping[str, Any] | None = None,
        documents: Mapping[str, str] | None = None,
        status: SponsorProfileStatus = SponsorProfileStatus.DRAFT,
        verified_at: datetime | None = None,
        verified_by: str | None = None,
        rejection_reason: str | None = None,
        rejected_by: str | None = None,
        archive_reason: str | None = None,
        created_at: datetime | None = None,
        updated_at: datetime | None = None,
    ) -> None:
        super().__init__(id=id, created_at=created_at, updated_at=updated_at)
        require_fields(self.aggregate_name, user_id=user_id)
        self.user_id = user_id
        self.name = name
        self.phone = phone
        self.country = country
        self.city = city
        self.address = address
        self.household_size = household_size
        self.number_of_children = number_of_children or 0
        self.has_pets = bool(has_pets)
        self.preferences: dict[str, Any] = dict(preferences or {})
        self.documents: dict[str, str] = {
            SponsorDocumentType(k).value: v for k, v in (documents or {}).items()
        }
        self._status = SponsorProfileStatus(status)
        self.verified_at = ensure_utc(verified_at) if verified_at else None
        self.verified_by = verified_by
        self.rejection_reason = rejection_reason
        self.rejected_by = rejected_by
        self.archive_reason = archive_reason
        self._completion = self._compute_completion()

    @classmethod
    def create(cls, *, user_id: str, name: str | None = None, id: str | None = None) -> SponsorProfile:
        profile = cls(id=id or new_id(), user_id=user_id, name=name)
        profile._record_event(
            ev.SPONSOR_PROFILE_CREATED,
            {"profile_id": profile.id, "user_id": user_id},
        )
        return profile

    @property
    def status(self) -> SponsorProfileStatus:
        return self._status

    @property
    def is_verified(self) -> bool:
        return self._status == _S.ACTIVE and self.verified_at is not None

    @property
    def completion_percentage(self) -> int:
        return self._completion

    @property
    def id_document(self) -> str | None:
        return self.documents.get(SponsorDocumentType.ID_DOCUMENT.value)

    @property
    def proof_of_residence(self) -> str | None:
        return self.documents.get(SponsorDocumentType.PROOF_OF_RESIDENCE.value)

    def missing_fields(self) -> list[str]:
        return [f for f in REQUIRED_FIELDS if not is_filled(getattr(self, f))]

    def _compute_completion(self) -> int:
        filled = len(REQUIRED_FIELDS) - len(self.missing_fields())
        return round(filled / len(REQUIRED_FIELDS) * 100)

    def _next(self, action: str) -> SponsorProfileStatus:
        return SPONSOR_PROFILE_LIFECYCLE.next_state(self._status, action, aggregate_id=self.id)

    def _after_edit(self, event_type: str, payload: dict[str, Any]) -> None:
        self._completion = self._compute_completion()
        self._touch()
        payload["completion_percentage"] = self._completion
        self._record_event(event_type, payload)

    # -- Edits ---------------------------------------------------------------

    def update_basic_info(self, **fields: Any) -> None:
        """Update any of ``name``, ``phone``, ``country``, ``city``, ``address``."""
        unknown = set(fields) - set(_BASIC_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown basic info field(s): {', '.join(sorted(unknown))}")
        self._next("update_basic_info")
        for key, value in fields.items():
            setattr(self, key, value)
        self._after_edit(
            ev.SPONSOR_BASIC_INFO_UPDATED,
            {"profile_id": self.id, "updated_fields": sorted(fields)},
        )

    def update_household_info(
        self,
        *,
        household_size: int | None = None,
        number_of_children: int | None = None,
        has_pets: bool | None = None,
    ) -> None:
        if household_size is not None and household_size < 1:
            raise ValidationError("household_size must be at least 1")
        self._next("update_household_info")
        if household_size is not None:
            self.household_size = household_size
        if number_of_children is not None:
            self.number_of_children = number_of_children
        if has_pets is not None:
            self.has_pets = has_pets
        self._after_edit(
            ev.SPONSOR_HOUSEHOLD_INFO_UPDATED,
            {
                "profile_id": self.id,
                "household_size": self.household_size,
                "number_of_children": self.number_of_children,
                "has_pets": self.has_pets,
            },
        )

    def update_preferences(self, preferences: Mapping[str, Any]) -> None:
        self._next("update_preferences")
        self.preferences.update(preferences)
        self._after_edit(
            ev.SPONSOR_PREFERENCES_UPDATED,
            {"profile_id": self.id, "preferences": dict(self.preferences)},
        )

    def upload_document(self, document_type: SponsorDocumentType | str, url: str) -> None:
        try:
            doc_type = SponsorDocumentType(document_type)
        except ValueError:
            raise ValidationError(f"Unsupported document type: {document_type!r}") from None
        if not url:
            raise ValidationError("Document url must not be empty")
        self._next("upload_document")
        self.documents[doc_type.value] = url
        self._after_edit(
            ev.SPONSOR_DOCUMENT_UPLOADED,
            {"profile_id": self.id, "document_type": doc_type.value, "url": url},
        )

    # -- Review workflow -----------------------------------------------------

    def submit_for_verification(self) -> None:
        if self._completion < 100:
            raise IncompleteProfileError(
                f"SponsorProfile {self.id} is {self._completion}% complete; "
                f"missing: {', '.join(self.missing_fields())}"
            )
        self._status = self._next("submit_for_verification")
        self._touch()
        self._record_event(
            ev.SPONSOR_PROFILE_SUBMITTED,
            {"profile_id": self.id, "user_id": self.user_id},
        )

    def verify(self, verified_by: str) -> None:
        self._status = self._next("verify")
        self.verified_by = verified_by
        self.verified_at = self._touch()
        self._record_event(
            ev.SPONSOR_PROFILE_VERIFIED,
            {"profile_id": self.id, "user_id": self.user_id, "verified_by": verified_by},
        )

    def reject(self, reason: str, rejected_by: str) -> None:
        self._status = self._next("reject")
        self.rejection_reason = reason
        self.rejected_by = rejected_by
        self._touch()
        self._record_event(
            ev.SPONSOR_PROFILE_REJECTED,
            {
                "profile_id": self.id,
                "user_id": self.user_id,
                "reason": reason,
                "rejected_by": rejected_by,
            },
        )

    def archive(self, reason: str) -> None:
        self._status = self._next("archive")
        self.archive_reason = reason
        self._touch()
        self._record_event(
            ev.SPONSOR_PROFILE_ARCHIVED,
            {"profile_id": self.id, "user_id": self.user_id, "reason": reason},
        )

    # -- Serialization -------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "name": self.name,
            "phone": self.phone,
            "country": self.country,
            "city": self.city,
            "address": self.address,
            "household_size": self.household_size,
            "number_of_children": self.number_of_children,
            "has_pets": self.has_pets,
            "preferences": dict(self.preferences),
            "documents": dict(self.documents),
            "status": self._status.value,
            "completion_percentage": self._completion,
            "verified_at": self.verified_at.isoformat() if self.verified_at else None,
            "verified_by": self.verified_by,
            "rejection_reason": self.rejection_reason,
            "rejected_by": self.rejected_by,
            "archive_reason": self.archive_reason,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SponsorProfile:
        return cls(
            id=pick(data, "id"),
            user_id=pick(data, "user_id"),
            name=pick(data, "name"),
            phone=pick(data, "phone"),
            country=pick(data, "country"),
            city=pick(data, "city"),
            address=pick(data, "address"),
            household_size=pick(data, "household_size"),
            number_of_children=pick(data, "number_of_children", default=0),
            has_pets=pick(data, "has_pets", default=False),
            preferences=pick(data, "preferences"),
            documents=pick(data, "documents"),
            status=SponsorProfileStatus(pick(data, "status", default=_S.DRAFT.value)),
            verified_at=parse_timestamp(pick(data, "verified_at")),
            verified_by=pick(data, "verified_by"),
            rejection_reason=pick(data, "rejection_reason"),
            rejected_by=pick(data, "rejected_by"),
            archive_reason=pick(data, "archive_reason"),
            created_at=parse_timestamp(pick(data, "created_at")),
            updated_at=parse_timestamp(pick(data, "updated_at")),
        )
