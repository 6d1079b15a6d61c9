"""Agency profile aggregate: a recruitment agency that places maids.

Lifecycle::

    draft -> under_review -> active
                  |
                  +-------> rejected

    (any non-archived state) -> archived

Edits and the operational counters (``add_maid``, ``remove_maid``,
``record_placement``, ``update_rating``) are allowed in every state but
``archived``.  Submitting for verification needs a 100% complete profile
and a license that has not expired.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any

from marketplace_core.core.enums import AgencyDocumentType, AgencyProfileStatus
from marketplace_core.core.errors import IncompleteProfileError, ValidationError
from marketplace_core.core.ids import ensure_utc, new_id, parse_timestamp, utc_now
from marketplace_core.domain import events as ev
from marketplace_core.domain.aggregate import AggregateRoot, is_filled, pick, require_fields
from marketplace_core.domain.events import json_safe
from marketplace_core.domain.state_machine import StateMachine, Transition

_S = AgencyProfileStatus
_EDITABLE = frozenset(AgencyProfileStatus) - {_S.ARCHIVED}

AGENCY_PROFILE_LIFECYCLE: StateMachine[AgencyProfileStatus] = StateMachine(
    "AgencyProfile",
    [
        Transition("update_basic_info", _EDITABLE),
        Transition("update_license_info", _EDITABLE),
        Transition("update_business_info", _EDITABLE),
        Transition("upload_document", _EDITABLE),
        Transition("add_maid", _EDITABLE),
        Transition("remove_maid", _EDITABLE),
        Transition("record_placement", _EDITABLE),
        Transition("update_rating", _EDITABLE),
        Transition("submit_for_verification", frozenset({_S.DRAFT}), _S.UNDER_REVIEW),
        Transition("verify", frozenset({_S.UNDER_REVIEW}), _S.ACTIVE),
        Transition("reject", frozenset({_S.UNDER_REVIEW}), _S.REJECTED),
        Transition("archive", _EDITABLE, _S.ARCHIVED),
    ],
)

REQUIRED_FIELDS: tuple[str, ...] = (
    "full_name",
    "license_number",
    "license_expiry",
    "registration_number",
    "phone",
    "email",
    "country",
    "city",
    "address",
    "business_license",
    "tax_certificate",
)

DEFAULT_COUNTRY = "ET"
MAX_RATING = 5.0

_BASIC_FIELDS = ("full_name", "phone", "email", "website", "country", "city", "address")


class AgencyProfile(AggregateRoot):
    """Licensed agency profile with placement statistics."""

    aggregate_name = "AgencyProfile"

    def __init__(
        self,
        *,
        id: str,
        user_id: str,
        full_name: str | None = None,
        license_number: str | None = None,
        license_expiry: datetime | None = None,
        registration_number: str | None = None,
        phone: str | None = None,
        email: str | None = None,
        website: str | None = None,
        country: str | None = DEFAULT_COUNTRY,
        city: str | None = None,
        address: str | None = None,
        year_established: int | None = None,
        services_offered: Sequence[str] = (),
        operating_countries: Sequence[str] = (),
        specializations: Sequence[str] = (),
        documents: Mapping[str, str] | None = None,
        total_placements: int = 0,
        active_maids: int = 0,
        rating: float = 0.0,
        total_reviews: int = 0,
        status: AgencyProfileStatus = AgencyProfileStatus.DRAFT,
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
        self.full_name = full_name
        self.license_number = license_number
        self.license_expiry = ensure_utc(license_expiry) if license_expiry else None
        self.registration_number = registration_number
        self.phone = phone
        self.email = email
        self.website = website
        self.country = country
        self.city = city
        self.address = address
        self.year_established = year_established
        self.services_offered = list(services_offered)
        self.operating_countries = list(operating_countries)
        self.specializations = list(specializations)
        self.documents: dict[str, str] = {
            AgencyDocumentType(k).value: v for k, v in (documents or {}).items()
        }
        self.total_placements = total_placements or 0
        self.active_maids = active_maids or 0
        self.rating = float(rating or 0.0)
        self.total_reviews = total_reviews or 0
        self._status = AgencyProfileStatus(status)
        self.verified_at = ensure_utc(verified_at) if verified_at else None
        self.verified_by = verified_by
        self.rejection_reason = rejection_reason
        self.rejected_by = rejected_by
        self.archive_reason = archive_reason
        self._completion = self._compute_completion()

    @classmethod
    def create(
        cls,
        *,
        user_id: str,
        full_name: str | None = None,
        id: str | None = None,
    ) -> AgencyProfile:
        profile = cls(id=id or new_id(), user_id=user_id, full_name=full_name)
        profile._record_event(
            ev.AGENCY_PROFILE_CREATED,
            {"profile_id": profile.id, "user_id": user_id},
        )
        return profile

    # -- Queries -------------------------------------------------------------

    @property
    def status(self) -> AgencyProfileStatus:
        return self._status

    @property
    def is_verified(self) -> bool:
        return self._status == _S.ACTIVE and self.verified_at is not None

    @property
    def completion_percentage(self) -> int:
        return self._completion

    @property
    def is_complete(self) -> bool:
        return self._completion >= 100

    @property
    def business_license(self) -> str | None:
        return self.documents.get(AgencyDocumentType.BUSINESS_LICENSE.value)

    @property
    def tax_certificate(self) -> str | None:
        return self.documents.get(AgencyDocumentType.TAX_CERTIFICATE.value)

    @property
    def insurance_certificate(self) -> str | None:
        return self.documents.get(AgencyDocumentType.INSURANCE_CERTIFICATE.value)

    def is_license_valid(self, now: datetime | None = None) -> bool:
        """A license number is on file and its expiry is still ahead of *now*."""
        if not self.license_number or self.license_expiry is None:
            return False
        return self.license_expiry > (ensure_utc(now) if now else utc_now())

    def missing_fields(self) -> list[str]:
        return [f for f in REQUIRED_FIELDS if not is_filled(getattr(self, f))]

    def _compute_completion(self) -> int:
        filled = len(REQUIRED_FIELDS) - len(self.missing_fields())
        return round(filled / len(REQUIRED_FIELDS) * 100)

    def _next(self, action: str) -> AgencyProfileStatus:
        return AGENCY_PROFILE_LIFECYCLE.next_state(self._status, action, aggregate_id=self.id)

    def _after_edit(self, event_type: str, payload: dict[str, Any]) -> None:
        self._completion = self._compute_completion()
        self._touch()
        payload["completion_percentage"] = self._completion
        self._record_event(event_type, payload)

    # -- Edits ---------------------------------------------------------------

    def update_basic_info(self, **fields: Any) -> None:
        """Update any of ``full_name``, ``phone``, ``email``, ``website``,
        ``country``, ``city``, ``address``."""
        unknown = set(fields) - set(_BASIC_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown basic info field(s): {', '.join(sorted(unknown))}")
        email = fields.get("email")
        if email and "@" not in email:
            raise ValidationError(f"Invalid email address: {email!r}")
        self._next("update_basic_info")
        for key, value in fields.items():
            setattr(self, key, value)
        self._after_edit(
            ev.AGENCY_PROFILE_UPDATED,
            {"profile_id": self.id, "updated_fields": sorted(fields)},
        )

    def update_license_info(
        self,
        *,
        license_number: str | None = None,
        license_expiry: datetime | str | None = None,
        registration_number: str | None = None,
        now: datetime | None = None,
    ) -> None:
        expiry = parse_timestamp(license_expiry)
        self._next("update_license_info")
        if license_number is not None:
            self.license_number = license_number
        if expiry is not None:
            self.license_expiry = expiry
        if registration_number is not None:
            self.registration_number = registration_number
        self._after_edit(
            ev.AGENCY_LICENSE_UPDATED,
            {
                "profile_id": self.id,
                "license_number": self.license_number,
                "license_expiry": self.license_expiry.isoformat() if self.license_expiry else None,
                "registration_number": self.registration_number,
                "is_license_valid": self.is_license_valid(now),
            },
        )

    def update_business_info(
        self,
        *,
        year_established: int | None = None,
        services_offered: Sequence[str] | None = None,
        operating_countries: Sequence[str] | None = None,
        specializations: Sequence[str] | None = None,
    ) -> None:
        if year_established is not None and year_established > utc_now().year:
            raise ValidationError(f"year_established {year_established} is in the future")
        self._next("update_business_info")
        updated: dict[str, Any] = {}
        if year_established is not None:
            self.year_established = updated["year_established"] = year_established
        if services_offered is not None:
            self.services_offered = updated["services_offered"] = list(services_offered)
        if operating_countries is not None:
            self.operating_countries = updated["operating_countries"] = list(operating_countries)
        if specializations is not None:
            self.specializations = updated["specializations"] = list(specializations)
        self._after_edit(
            ev.AGENCY_BUSINESS_INFO_UPDATED,
            {"profile_id": self.id, "business_info": json_safe(updated)},
        )

    def upload_document(self, document_type: AgencyDocumentType | str, url: str) -> None:
        try:
            doc_type = AgencyDocumentType(document_type)
        except ValueError:
            raise ValidationError(f"Unsupported document type: {document_type!r}") from None
        if not url:
            raise ValidationError("Document url must not be empty")
        self._next("upload_document")
        self.documents[doc_type.value] = url
        self._after_edit(
            ev.AGENCY_DOCUMENT_UPLOADED,
            {"profile_id": self.id, "document_type": doc_type.value, "url": url},
        )

    # -- Operations ----------------------------------------------------------

    def add_maid(self, maid_id: str) -> None:
        require_fields(self.aggregate_name, maid_id=maid_id)
        self._next("add_maid")
        self.active_maids += 1
        self._touch()
        self._record_event(
            ev.MAID_ADDED_TO_AGENCY,
            {"agency_id": self.id, "maid_id": maid_id, "active_maids": self.active_maids},
        )

    def remove_maid(self, maid_id: str) -> None:
        """Release a maid.  The active count never drops below zero."""
        require_fields(self.aggregate_name, maid_id=maid_id)
        self._next("remove_maid")
        self.active_maids = max(self.active_maids - 1, 0)
        self._touch()
        self._record_event(
            ev.MAID_REMOVED_FROM_AGENCY,
            {"agency_id": self.id, "maid_id": maid_id, "active_maids": self.active_maids},
        )

    def record_placement(self) -> None:
        self._next("record_placement")
        self.total_placements += 1
        self._touch()
        self._record_event(
            ev.AGENCY_PLACEMENT_RECORDED,
            {"agency_id": self.id, "total_placements": self.total_placements},
        )

    def update_rating(self, new_rating: float) -> None:
        """Fold one review score into the running average."""
        if isinstance(new_rating, bool) or not 0 <= new_rating <= MAX_RATING:
            raise ValidationError(f"Rating must be between 0 and {MAX_RATING:g}, got {new_rating!r}")
        self._next("update_rating")
        total_points = self.rating * self.total_reviews
        self.total_reviews += 1
        self.rating = (total_points + new_rating) / self.total_reviews
        self._touch()
        self._record_event(
            ev.AGENCY_RATING_UPDATED,
            {"agency_id": self.id, "rating": self.rating, "total_reviews": self.total_reviews},
        )

    # -- Review workflow -----------------------------------------------------

    def submit_for_verification(self, now: datetime | None = None) -> None:
        if self._completion < 100:
            raise IncompleteProfileError(
                f"AgencyProfile {self.id} is {self._completion}% complete; "
                f"missing: {', '.join(self.missing_fields())}"
            )
        target = self._next("submit_for_verification")
        if not self.is_license_valid(now):
            raise ValidationError(
                f"AgencyProfile {self.id}: license {self.license_number} expired "
                f"on {self.license_expiry.isoformat()}"
            )
        self._status = target
        self._touch(now)
        self._record_event(
            ev.AGENCY_PROFILE_SUBMITTED,
            {"profile_id": self.id, "user_id": self.user_id},
        )

    def verify(self, verified_by: str) -> None:
        self._status = self._next("verify")
        self.verified_by = verified_by
        self.verified_at = self._touch()
        self._record_event(
            ev.AGENCY_PROFILE_VERIFIED,
            {"profile_id": self.id, "user_id": self.user_id, "verified_by": verified_by},
        )

    def reject(self, reason: str, rejected_by: str) -> None:
        self._status = self._next("reject")
        self.rejection_reason = reason
        self.rejected_by = rejected_by
        self._touch()
        self._record_event(
            ev.AGENCY_PROFILE_REJECTED,
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
            ev.AGENCY_PROFILE_ARCHIVED,
            {"profile_id": self.id, "user_id": self.user_id, "reason": reason},
        )

    # -- Serialization -------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "full_name": self.full_name,
            "license_number": self.license_number,
            "license_expiry": self.license_expiry.isoformat() if self.license_expiry else None,
            "registration_number": self.registration_number,
            "phone": self.phone,
            "email": self.email,
            "website": self.website,
            "country": self.country,
            "city": self.city,
            "address": self.address,
            "year_established": self.year_established,
            "services_offered": list(self.services_offered),
            "operating_countries": list(self.operating_countries),
            "specializations": list(self.specializations),
            "documents": dict(self.documents),
            "total_placements": self.total_placements,
            "active_maids": self.active_maids,
            "rating": self.rating,
            "total_reviews": self.total_reviews,
            "status": self._status.value,
            "completion_percentage": self._completion,
            "is_license_valid": self.is_license_valid(),
            "verified_at": self.verified_at.isoformat() if self.verified_at else None,
            "verified_by": self.verified_by,
            "rejection_reason": self.rejection_reason,
            "rejected_by": self.rejected_by,
            "archive_reason": self.archive_reason,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> AgencyProfile:
        return cls(
            id=pick(data, "id"),
            user_id=pick(data, "user_id"),
            full_name=pick(data, "full_name"),
            license_number=pick(data, "license_number"),
            license_expiry=parse_timestamp(pick(data, "license_expiry")),
            registration_number=pick(data, "registration_number"),
            phone=pick(data, "phone"),
            email=pick(data, "email"),
            website=pick(data, "website"),
            country=pick(data, "country", default=DEFAULT_COUNTRY),
            city=pick(data, "city"),
            address=pick(data, "address"),
            year_established=pick(data, "year_established"),
            services_offered=pick(data, "services_offered") or (),
            operating_countries=pick(data, "operating_countries") or (),
            specializations=pick(data, "specializations") or (),
            documents=pick(data, "documents"),
            total_placements=pick(data, "total_placements", default=0),
            active_maids=pick(data, "active_maids", default=0),
            rating=pick(data, "rating", default=0.0),
            total_reviews=pick(data, "total_reviews", default=0),
            status=AgencyProfileStatus(pick(data, "status", default=_S.DRAFT.value)),
            verified_at=parse_timestamp(pick(data, "verified_at")),
            verified_by=pick(data, "verified_by"),
            rejection_reason=pick(data, "rejection_reason"),
            rejected_by=pick(data, "rejected_by"),
            archive_reason=pick(data, "archive_reason"),
            created_at=parse_timestamp(pick(data, "created_at")),
            updated_at=parse_timestamp(pick(data, "updated_at")),
        )
