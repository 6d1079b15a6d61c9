"""Job posting aggregate: a sponsor's advertised position.

Lifecycle::

    draft -> open -> filled
      |       |
      +-------+--> closed | cancelled

Only ``draft`` and ``open`` postings are editable.  Publishing requires a
complete posting; reaching ``max_applications`` closes the posting.
"""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from marketplace_core.core.enums import JobPostingStatus
from marketplace_core.core.errors import IncompleteProfileError, InvalidStateError, ValidationError
from marketplace_core.core.ids import ensure_utc, new_id, parse_timestamp, utc_now
from marketplace_core.domain import events as ev
from marketplace_core.domain.aggregate import AggregateRoot, pick, require_fields
from marketplace_core.domain.state_machine import StateMachine, Transition

_S = JobPostingStatus
_EDITABLE = frozenset({_S.DRAFT, _S.OPEN})

JOB_POSTING_LIFECYCLE: StateMachine[JobPostingStatus] = StateMachine(
    "JobPosting",
    [
        Transition("update_details", _EDITABLE),
        Transition("update_compensation", _EDITABLE),
        Transition("publish", frozenset({_S.DRAFT}), _S.OPEN),
        Transition("record_application", frozenset({_S.OPEN})),
        Transition("close", frozenset(JobPostingStatus) - {_S.CLOSED, _S.FILLED}, _S.CLOSED),
        Transition("mark_as_filled", frozenset({_S.OPEN}), _S.FILLED),
        Transition("cancel", frozenset(JobPostingStatus) - {_S.FILLED}, _S.CANCELLED),
    ],
)

DEFAULT_EXPIRY_DAYS = 30
DEFAULT_MAX_APPLICATIONS = 50

# Match score weights; they sum to 100.
SKILLS_WEIGHT = 30
LANGUAGES_WEIGHT = 25
EXPERIENCE_WEIGHT = 20
NATIONALITY_WEIGHT = 15
COMPLETENESS_WEIGHT = 10


@dataclass(frozen=True)
class Salary:
    """Offered pay.  ``amount`` is per ``period`` in ``currency``."""

    amount: float
    currency: str = "USD"
    period: str = "monthly"

    def __post_init__(self) -> None:
        if self.amount <= 0:
            raise ValidationError(f"Salary amount must be positive, got {self.amount}")
        if not self.currency:
            raise ValidationError("Salary currency must not be empty")

    def to_dict(self) -> dict[str, Any]:
        return {"amount": self.amount, "currency": self.currency, "period": self.period}

    @classmethod
    def coerce(cls, value: Salary | Mapping[str, Any] | None) -> Salary | None:
        if value is None or isinstance(value, Salary):
            return value
        return cls(
            amount=value["amount"],
            currency=value.get("currency", "USD"),
            period=value.get("period", "monthly"),
        )


@dataclass(frozen=True)
class MaidMatchProfile:
    """The parts of a maid profile that job matching looks at."""

    skills: frozenset[str] = frozenset()
    languages: frozenset[str] = frozenset()
    experience_years: float = 0.0
    nationality: str | None = None
    completion_percentage: float = 0.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "skills", frozenset(self.skills))
        object.__setattr__(self, "languages", frozenset(self.languages))


class JobPosting(AggregateRoot):
    aggregate_name = "JobPosting"

    def __init__(
        self,
        *,
        id: str,
        sponsor_id: str,
        title: str,
        description: str = "",
        required_skills: Sequence[str] = (),
        required_languages: Sequence[str] = (),
        experience_years: int = 0,
        preferred_nationality: str | None = None,
        country: str | None = None,
        city: str | None = None,
        contract_duration_months: int | None = None,
        salary: Salary | Mapping[str, Any] | None = None,
        benefits: Sequence[str] = (),
        working_hours: str | None = None,
        days_off: str | None = None,
        accommodation_type: str | None = None,
        status: JobPostingStatus = JobPostingStatus.DRAFT,
        application_count: int = 0,
        max_applications: int = DEFAULT_MAX_APPLICATIONS,
        view_count: int = 0,
        posted_at: datetime | None = None,
        expires_at: datetime | None = None,
        created_at: datetime | None = None,
        updated_at: datetime | None = None,
    ) -> None:
        super().__init__(id=id, created_at=created_at, updated_at=updated_at)
        require_fields(self.aggregate_name, sponsor_id=sponsor_id, title=title)
        if max_applications < 1:
            raise ValidationError("max_applications must be at least 1")
        self.sponsor_id = sponsor_id
        self.title = title
        self.description = description or ""
        self.required_skills = list(required_skills)
        self.required_languages = list(required_languages)
        self.experience_years = experience_years or 0
        self.preferred_nationality = preferred_nationality
        self.country = country
        self.city = city
        self.contract_duration_months = contract_duration_months
        self.salary = Salary.coerce(salary)
        self.benefits = list(benefits)
        self.working_hours = working_hours
        self.days_off = days_off
        self.accommodation_type = accommodation_type
        self._status = JobPostingStatus(status)
        self.application_count = application_count
        self.max_applications = max_applications
        self.view_count = view_count
        self.posted_at = ensure_utc(posted_at) if posted_at else None
        self.expires_at = ensure_utc(expires_at) if expires_at else None

    @classmethod
    def create(cls, *, sponsor_id: str, title: str, id: str | None = None, **details: Any) -> JobPosting:
        posting = cls(id=id or new_id(), sponsor_id=sponsor_id, title=title, **details)
        posting._record_event(
            ev.JOB_POSTING_CREATED,
            {"job_id": posting.id, "sponsor_id": sponsor_id, "title": title},
        )
        return posting

    @property
    def status(self) -> JobPostingStatus:
        return self._status

    @property
    def is_open(self) -> bool:
        return self._status == _S.OPEN

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or utc_now()) > self.expires_at

    def missing_fields(self) -> list[str]:
        checks = {
            "title": bool(self.title),
            "description": bool(self.description),
            "required_skills": bool(self.required_skills),
            "required_languages": bool(self.required_languages),
            "country": bool(self.country),
            "city": bool(self.city),
            "salary": self.salary is not None,
            "accommodation_type": bool(self.accommodation_type),
        }
        return [name for name, ok in checks.items() if not ok]

    def calculate_match_score(self, maid: MaidMatchProfile) -> int:
        """Score *maid* against this posting, 0 to 100.

        Weighted parts: share of required skills held (30), share of
        required languages spoken (25), experience against
        ``experience_years`` capped at full marks (20), preferred
        nationality (15, or full marks when there is no preference) and
        profile completeness (10).  An empty requirement scores full marks.
        Halves round up.
        """
        score = SKILLS_WEIGHT * _share(self.required_skills, maid.skills)
        score += LANGUAGES_WEIGHT * _share(self.required_languages, maid.languages)
        if self.experience_years <= 0 or maid.experience_years >= self.experience_years:
            score += EXPERIENCE_WEIGHT
        else:
            score += EXPERIENCE_WEIGHT * max(maid.experience_years, 0) / self.experience_years
        if not self.preferred_nationality or maid.nationality == self.preferred_nationality:
            score += NATIONALITY_WEIGHT
        completion = min(max(maid.completion_percentage, 0), 100)
        score += COMPLETENESS_WEIGHT * completion / 100
        return math.floor(score + 0.5)

    def _next(self, action: str) -> JobPostingStatus:
        return JOB_POSTING_LIFECYCLE.next_state(self._status, action, aggregate_id=self.id)

    # -- Edits ---------------------------------------------------------------

    def update_details(
        self,
        *,
        title: str | None = None,
        description: str | None = None,
        required_skills: Sequence[str] | None = None,
        required_languages: Sequence[str] | None = None,
        experience_years: int | None = None,
    ) -> None:
        self._next("update_details")
        updated: dict[str, Any] = {}
        if title:
            self.title = updated["title"] = title
        if description is not None:
            self.description = updated["description"] = description
        if required_skills is not None:
            self.required_skills = list(required_skills)
            updated["required_skills"] = self.required_skills
        if required_languages is not None:
            self.required_languages = list(required_languages)
            updated["required_languages"] = self.required_languages
        if experience_years is not None:
            self.experience_years = updated["experience_years"] = experience_years
        self._touch()
        self._record_event(
            ev.JOB_POSTING_UPDATED,
            {"job_id": self.id, "updated_fields": updated},
        )

    def update_compensation(
        self,
        *,
        salary: Salary | Mapping[str, Any] | None = None,
        benefits: Sequence[str] | None = None,
    ) -> None:
        self._next("update_compensation")
        new_salary = Salary.coerce(salary)
        if new_salary is not None:
            self.salary = new_salary
        if benefits is not None:
            self.benefits = list(benefits)
        self._touch()
        self._record_event(
            ev.JOB_COMPENSATION_UPDATED,
            {
                "job_id": self.id,
                "salary": self.salary.to_dict() if self.salary else None,
                "benefits": list(self.benefits),
            },
        )

    # -- Lifecycle -----------------------------------------------------------

    def publish(self, expiry_days: int = DEFAULT_EXPIRY_DAYS, now: datetime | None = None) -> None:
        target = self._next("publish")
        missing = self.missing_fields()
        if missing:
            raise IncompleteProfileError(
                f"JobPosting {self.id} is incomplete; missing: {', '.join(missing)}"
            )
        self._status = target
        self.posted_at = now or utc_now()
        self.expires_at = self.posted_at + timedelta(days=expiry_days)
        self._touch()
        self._record_event(
            ev.JOB_POSTING_PUBLISHED,
            {
                "job_id": self.id,
                "sponsor_id": self.sponsor_id,
                "posted_at": self.posted_at.isoformat(),
                "expires_at": self.expires_at.isoformat(),
            },
        )

    def record_application(self) -> None:
        """Count an incoming application; closes the posting at the cap."""
        self._next("record_application")
        if self.application_count >= self.max_applications:
            raise InvalidStateError(
                f"JobPosting {self.id} has reached its maximum of {self.max_applications} applications",
                aggregate=self.aggregate_name,
                aggregate_id=self.id,
                current_state=self._status.value,
                action="record_application",
            )
        self.application_count += 1
        self._touch()
        if self.application_count >= self.max_applications:
            self.close("Maximum applications reached")

    def record_view(self) -> None:
        self.view_count += 1
        self._touch()

    def close(self, reason: str) -> None:
        self._status = self._next("close")
        self._touch()
        self._record_event(
            ev.JOB_POSTING_CLOSED,
            {"job_id": self.id, "reason": reason, "closed_at": self.updated_at.isoformat()},
        )

    def mark_as_filled(self, maid_id: str, contract_id: str) -> None:
        self._status = self._next("mark_as_filled")
        self._touch()
        self._record_event(
            ev.JOB_POSTING_FILLED,
            {
                "job_id": self.id,
                "sponsor_id": self.sponsor_id,
                "maid_id": maid_id,
                "contract_id": contract_id,
                "filled_at": self.updated_at.isoformat(),
            },
        )

    def cancel(self, reason: str) -> None:
        self._status = self._next("cancel")
        self._touch()
        self._record_event(
            ev.JOB_POSTING_CANCELLED,
            {"job_id": self.id, "reason": reason, "cancelled_at": self.updated_at.isoformat()},
        )

    # -- Serialization -------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "sponsor_id": self.sponsor_id,
            "title": self.title,
            "description": self.description,
            "required_skills": list(self.required_skills),
            "required_languages": list(self.required_languages),
            "experience_years": self.experience_years,
            "preferred_nationality": self.preferred_nationality,
            "country": self.country,
            "city": self.city,
            "contract_duration_months": self.contract_duration_months,
            "salary": self.salary.to_dict() if self.salary else None,
            "benefits": list(self.benefits),
            "working_hours": self.working_hours,
            "days_off": self.days_off,
            "accommodation_type": self.accommodation_type,
            "status": self._status.value,
            "application_count": self.application_count,
            "max_applications": self.max_applications,
            "view_count": self.view_count,
            "posted_at": self.posted_at.isoformat() if self.posted_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> JobPosting:
        location = pick(data, "location") or {}
        return cls(
            id=pick(data, "id"),
            sponsor_id=pick(data, "sponsor_id"),
            title=pick(data, "title"),
            description=pick(data, "description", default=""),
            required_skills=pick(data, "required_skills") or (),
            required_languages=pick(data, "required_languages") or (),
            experience_years=pick(data, "experience_years", default=0),
            preferred_nationality=pick(data, "preferred_nationality"),
            country=pick(data, "country") or location.get("country"),
            city=pick(data, "city") or location.get("city"),
            contract_duration_months=pick(data, "contract_duration_months", "contractDuration"),
            salary=pick(data, "salary"),
            benefits=pick(data, "benefits") or (),
            working_hours=pick(data, "working_hours"),
            days_off=pick(data, "days_off"),
            accommodation_type=pick(data, "accommodation_type"),
            status=JobPostingStatus(pick(data, "status", default=_S.DRAFT.value)),
            application_count=pick(data, "application_count", default=0),
            max_applications=pick(data, "max_applications", default=DEFAULT_MAX_APPLICATIONS),
            view_count=pick(data, "view_count", default=0),
            posted_at=parse_timestamp(pick(data, "posted_at")),
            expires_at=parse_timestamp(pick(data, "expires_at")),
            created_at=parse_timestamp(pick(data, "created_at")),
            updated_at=parse_timestamp(pick(data, "updated_at")),
        )


def _share(required: Sequence[str], held: frozenset[str]) -> float:
    if not required:
        return 1.0
    return sum(1 for item in required if item in held) / len(required)
