"""Domain events emitted by marketplace aggregates.

Design invariants
-----------------
1.  Every event is **immutable** (``frozen=True``, read-only payload).
2.  ``type`` is the event name (``"ApplicationAccepted"``); subscribers and
    the outbox route on it.
3.  ``event_id`` is a UUID4 generated at creation time; consumers use it
    as the idempotency key under at-least-once redelivery.
4.  Events are created by aggregate methods only and leave the aggregate
    through ``pull_domain_events()``.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any

from marketplace_core.core.ids import new_id, parse_timestamp, utc_now

# ---------------------------------------------------------------------------
# Event type names
# ---------------------------------------------------------------------------

USER_REGISTERED = "UserRegistered"
USER_EMAIL_VERIFIED = "UserEmailVerified"
USER_PHONE_VERIFIED = "UserPhoneVerified"
USER_SUSPENDED = "UserSuspended"
USER_REACTIVATED = "UserReactivated"
USER_DELETED = "UserDeleted"

PASSWORD_RESET_REQUESTED = "PasswordResetRequested"
PASSWORD_RESET_USED = "PasswordResetUsed"
PASSWORD_RESET_EXPIRED = "PasswordResetExpired"
PASSWORD_RESET_CANCELLED = "PasswordResetCancelled"

APPLICATION_SUBMITTED = "ApplicationSubmitted"
APPLICATION_UPDATED = "ApplicationUpdated"
APPLICATION_REVIEWED = "ApplicationReviewed"
INTERVIEW_SCHEDULED = "InterviewScheduled"
INTERVIEW_COMPLETED = "InterviewCompleted"
APPLICATION_ACCEPTED = "ApplicationAccepted"
APPLICATION_REJECTED = "ApplicationRejected"
APPLICATION_WITHDRAWN = "ApplicationWithdrawn"

SPONSOR_PROFILE_CREATED = "SponsorProfileCreated"
SPONSOR_BASIC_INFO_UPDATED = "SponsorBasicInfoUpdated"
SPONSOR_HOUSEHOLD_INFO_UPDATED = "SponsorHouseholdInfoUpdated"
SPONSOR_PREFERENCES_UPDATED = "SponsorPreferencesUpdated"
SPONSOR_DOCUMENT_UPLOADED = "SponsorDocumentUploaded"
SPONSOR_PROFILE_SUBMITTED = "SponsorProfileSubmitted"
SPONSOR_PROFILE_VERIFIED = "SponsorProfileVerified"
SPONSOR_PROFILE_REJECTED = "SponsorProfileRejected"
SPONSOR_PROFILE_ARCHIVED = "SponsorProfileArchived"

AGENCY_PROFILE_CREATED = "AgencyProfileCreated"
AGENCY_PROFILE_UPDATED = "AgencyProfileUpdated"
AGENCY_LICENSE_UPDATED = "AgencyLicenseUpdated"
AGENCY_BUSINESS_INFO_UPDATED = "AgencyBusinessInfoUpdated"
AGENCY_DOCUMENT_UPLOADED = "AgencyDocumentUploaded"
AGENCY_PROFILE_SUBMITTED = "AgencyProfileSubmitted"
AGENCY_PROFILE_VERIFIED = "AgencyProfileVerified"
AGENCY_PROFILE_REJECTED = "AgencyProfileRejected"
AGENCY_PROFILE_ARCHIVED = "AgencyProfileArchived"
MAID_ADDED_TO_AGENCY = "MaidAddedToAgency"
MAID_REMOVED_FROM_AGENCY = "MaidRemovedFromAgency"
AGENCY_PLACEMENT_RECORDED = "AgencyPlacementRecorded"
AGENCY_RATING_UPDATED = "AgencyRatingUpdated"

JOB_POSTING_CREATED = "JobPostingCreated"
JOB_POSTING_UPDATED = "JobPostingUpdated"
JOB_COMPENSATION_UPDATED = "JobCompensationUpdated"
JOB_POSTING_PUBLISHED = "JobPostingPublished"
JOB_POSTING_CLOSED = "JobPostingClosed"
JOB_POSTING_FILLED = "JobPostingFilled"
JOB_POSTING_CANCELLED = "JobPostingCancelled"

USER_EVENTS: tuple[str, ...] = (
    USER_REGISTERED,
    USER_EMAIL_VERIFIED,
    USER_PHONE_VERIFIED,
    USER_SUSPENDED,
    USER_REACTIVATED,
    USER_DELETED,
)
PASSWORD_RESET_EVENTS: tuple[str, ...] = (
    PASSWORD_RESET_REQUESTED,
    PASSWORD_RESET_USED,
    PASSWORD_RESET_EXPIRED,
    PASSWORD_RESET_CANCELLED,
)
APPLICATION_EVENTS: tuple[str, ...] = (
    APPLICATION_SUBMITTED,
    APPLICATION_UPDATED,
    APPLICATION_REVIEWED,
    INTERVIEW_SCHEDULED,
    INTERVIEW_COMPLETED,
    APPLICATION_ACCEPTED,
    APPLICATION_REJECTED,
    APPLICATION_WITHDRAWN,
)
SPONSOR_PROFILE_EVENTS: tuple[str, ...] = (
    SPONSOR_PROFILE_CREATED,
    SPONSOR_BASIC_INFO_UPDATED,
    SPONSOR_HOUSEHOLD_INFO_UPDATED,
    SPONSOR_PREFERENCES_UPDATED,
    SPONSOR_DOCUMENT_UPLOADED,
    SPONSOR_PROFILE_SUBMITTED,
    SPONSOR_PROFILE_VERIFIED,
    SPONSOR_PROFILE_REJECTED,
    SPONSOR_PROFILE_ARCHIVED,
)
AGENCY_PROFILE_EVENTS: tuple[str, ...] = (
    AGENCY_PROFILE_CREATED,
    AGENCY_PROFILE_UPDATED,
    AGENCY_LICENSE_UPDATED,
    AGENCY_BUSINESS_INFO_UPDATED,
    AGENCY_DOCUMENT_UPLOADED,
    AGENCY_PROFILE_SUBMITTED,
    AGENCY_PROFILE_VERIFIED,
    AGENCY_PROFILE_REJECTED,
    AGENCY_PROFILE_ARCHIVED,
    MAID_ADDED_TO_AGENCY,
    MAID_REMOVED_FROM_AGENCY,
    AGENCY_PLACEMENT_RECORDED,
    AGENCY_RATING_UPDATED,
)
JOB_POSTING_EVENTS: tuple[str, ...] = (
    JOB_POSTING_CREATED,
    JOB_POSTING_UPDATED,
    JOB_COMPENSATION_UPDATED,
    JOB_POSTING_PUBLISHED,
    JOB_POSTING_CLOSED,
    JOB_POSTING_FILLED,
    JOB_POSTING_CANCELLED,
)

ALL_EVENT_TYPES: frozenset[str] = frozenset(
    USER_EVENTS
    + PASSWORD_RESET_EVENTS
    + APPLICATION_EVENTS
    + SPONSOR_PROFILE_EVENTS
    + AGENCY_PROFILE_EVENTS
    + JOB_POSTING_EVENTS
)


# ---------------------------------------------------------------------------
# Event record
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DomainEvent:
    """Immutable fact about something that happened to an aggregate.

    Fields
    ~~~~~~
    type            Event name, e.g. ``"UserSuspended"``.
    payload         Read-only mapping of event data.
    occurred_at     UTC creation time.
    aggregate_id    Identity of the aggregate that emitted the event.
    event_id        Unique identity (UUID4).  Idempotency key.
    """

    type: str
    payload: Mapping[str, Any] = field(default_factory=dict, hash=False)
    occurred_at: datetime = field(default_factory=utc_now)
    aggregate_id: str = ""
    event_id: str = field(default_factory=new_id)

    def __post_init__(self) -> None:
        if not self.type:
            raise ValueError("DomainEvent.type must be a non-empty string")
        object.__setattr__(self, "payload", MappingProxyType(dict(self.payload)))

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe representation (timestamps as ISO strings)."""
        return {
            "event_id": self.event_id,
            "type": self.type,
            "aggregate_id": self.aggregate_id,
            "occurred_at": self.occurred_at.isoformat(),
            "payload": json_safe(dict(self.payload)),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> DomainEvent:
        occurred_at = parse_timestamp(data.get("occurred_at")) or utc_now()
        kwargs: dict[str, Any] = {
            "type": data["type"],
            "payload": data.get("payload") or {},
            "occurred_at": occurred_at,
            "aggregate_id": data.get("aggregate_id", ""),
        }
        if data.get("event_id"):
            kwargs["event_id"] = data["event_id"]
        return cls(**kwargs)


def json_safe(value: Any) -> Any:
    """Convert a payload value into JSON-serializable primitives."""
    if isinstance(value, Mapping):
        return {str(k): json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        items = sorted(value, key=str) if isinstance(value, (set, frozenset)) else value
        return [json_safe(v) for v in items]
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value
