"""Job application aggregate: a maid applying to a sponsor's job posting.

Lifecycle::

    pending -> reviewed -> interviewing -> accepted | rejected
       |           |            |
       +-----------+------------+--> withdrawn (by the maid)

Sponsor-side actions require the acting sponsor to own the application;
``withdraw`` requires the acting maid to be the applicant.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Any

from marketplace_core.core.enums import ApplicationStatus
from marketplace_core.core.errors import AlreadyProcessedError, UnauthorizedError
from marketplace_core.core.ids import ensure_utc, new_id, parse_timestamp
from marketplace_core.domain import events as ev
from marketplace_core.domain.aggregate import AggregateRoot, pick, require_fields
from marketplace_core.domain.state_machine import StateMachine, Transition

_S = ApplicationStatus
_OPEN = frozenset({_S.PENDING, _S.REVIEWED, _S.INTERVIEWING})
_FINAL_DECISIONS = frozenset({_S.ACCEPTED, _S.REJECTED})

APPLICATION_LIFECYCLE: StateMachine[ApplicationStatus] = StateMachine(
    "JobApplication",
    [
        Transition("update_cover_letter", frozenset({_S.PENDING})),
        Transition("mark_as_reviewed", frozenset({_S.PENDING}), _S.REVIEWED),
        Transition("schedule_interview", frozenset({_S.PENDING, _S.REVIEWED}), _S.INTERVIEWING),
        Transition("complete_interview", frozenset({_S.INTERVIEWING})),
        Transition("accept", _OPEN, _S.ACCEPTED),
        Transition("reject", _OPEN, _S.REJECTED),
        Transition("withdraw", _OPEN | {_S.REJECTED}, _S.WITHDRAWN),
    ],
)


class JobApplication(AggregateRoot):
    """A maid's application to a job posting owned by a sponsor."""

    aggregate_name = "JobApplication"

    def __init__(
        self,
        *,
        id: str,
        job_id: str,
        maid_id: str,
        sponsor_id: str,
        cover_letter: str = "",
        status: ApplicationStatus = ApplicationStatus.PENDING,
        reviewed_at: datetime | None = None,
        interview_scheduled_at: datetime | None = None,
        interview_completed_at: datetime | None = None,
        sponsor_notes: str | None = None,
        rejection_reason: str | None = None,
        withdrawal_reason: str | None = None,
        decided_at: datetime | None = None,
        created_at: datetime | None = None,
        updated_at: datetime | None = None,
    ) -> None:
        super().__init__(id=id, created_at=created_at, updated_at=updated_at)
        require_fields(self.aggregate_name, job_id=job_id, maid_id=maid_id, sponsor_id=sponsor_id)
        self.job_id = job_id
        self.maid_id = maid_id
        self.sponsor_id = sponsor_id
        self.cover_letter = cover_letter or ""
        self._status = ApplicationStatus(status)
        self.reviewed_at = _utc_or_none(reviewed_at)
        self.interview_scheduled_at = _utc_or_none(interview_scheduled_at)
        self.interview_completed_at = _utc_or_none(interview_completed_at)
        self.sponsor_notes = sponsor_notes
        self.rejection_reason = rejection_reason
        self.withdrawal_reason = withdrawal_reason
        self.decided_at = _utc_or_none(decided_at)

    @classmethod
    def submit(
        cls,
        *,
        job_id: str,
        maid_id: str,
        sponsor_id: str,
        cover_letter: str = "",
        id: str | None = None,
    ) -> JobApplication:
        application = cls(
            id=id or new_id(),
            job_id=job_id,
            maid_id=maid_id,
            sponsor_id=sponsor_id,
            cover_letter=cover_letter,
        )
        application._record_event(
            ev.APPLICATION_SUBMITTED,
            {
                "application_id": application.id,
                "job_id": job_id,
                "maid_id": maid_id,
                "sponsor_id": sponsor_id,
            },
        )
        return application

    @property
    def status(self) -> ApplicationStatus:
        return self._status

    @property
    def is_active(self) -> bool:
        return self._status not in {_S.REJECTED, _S.WITHDRAWN, _S.ACCEPTED}

    # -- Guards --------------------------------------------------------------

    def _authorize_sponsor(self, sponsor_id: str, action: str) -> None:
        if sponsor_id != self.sponsor_id:
            raise UnauthorizedError(
                f"Sponsor {sponsor_id} may not {action} application {self.id}",
                actor_id=sponsor_id,
                action=action,
            )

    def _authorize_maid(self, maid_id: str, action: str) -> None:
        if maid_id != self.maid_id:
            raise UnauthorizedError(
                f"Maid {maid_id} may not {action} application {self.id}",
                actor_id=maid_id,
                action=action,
            )

    def _reject_if_decided(self, action: str) -> None:
        if self._status in _FINAL_DECISIONS:
            raise AlreadyProcessedError(
                f"Application {self.id} has already been {self._status.value}",
                aggregate=self.aggregate_name,
                aggregate_id=self.id,
                current_state=self._status.value,
                action=action,
            )

    def _next(self, action: str) -> ApplicationStatus:
        return APPLICATION_LIFECYCLE.next_state(self._status, action, aggregate_id=self.id)

    # -- Transitions ---------------------------------------------------------

    def update_cover_letter(self, text: str) -> None:
        self._next("update_cover_letter")
        self.cover_letter = text
        self._touch()
        self._record_event(
            ev.APPLICATION_UPDATED,
            {"application_id": self.id, "cover_letter": text},
        )

    def mark_as_reviewed(self, sponsor_id: str) -> None:
        self._authorize_sponsor(sponsor_id, "review")
        self._status = self._next("mark_as_reviewed")
        self.reviewed_at = self._touch()
        self._record_event(
            ev.APPLICATION_REVIEWED,
            {"application_id": self.id, "sponsor_id": sponsor_id, "maid_id": self.maid_id},
        )

    def schedule_interview(self, date: datetime, sponsor_id: str) -> None:
        self._authorize_sponsor(sponsor_id, "schedule an interview for")
        self._status = self._next("schedule_interview")
        self.interview_scheduled_at = ensure_utc(date)
        self._touch()
        self._record_event(
            ev.INTERVIEW_SCHEDULED,
            {
                "application_id": self.id,
                "sponsor_id": sponsor_id,
                "maid_id": self.maid_id,
                "interview_date": self.interview_scheduled_at.isoformat(),
            },
        )

    def complete_interview(self, notes: str) -> None:
        self._next("complete_interview")
        self.sponsor_notes = notes
        self.interview_completed_at = self._touch()
        self._record_event(
            ev.INTERVIEW_COMPLETED,
            {
                "application_id": self.id,
                "completed_at": self.interview_completed_at.isoformat(),
                "notes": notes,
            },
        )

    def accept(self, sponsor_id: str, notes: str | None = None) -> None:
        self._authorize_sponsor(sponsor_id, "accept")
        self._reject_if_decided("accept")
        self._status = self._next("accept")
        if notes is not None:
            self.sponsor_notes = notes
        self.decided_at = self._touch()
        self._record_event(
            ev.APPLICATION_ACCEPTED,
            {
                "application_id": self.id,
                "job_id": self.job_id,
                "sponsor_id": sponsor_id,
                "maid_id": self.maid_id,
                "notes": notes,
            },
        )

    def reject(self, sponsor_id: str, reason: str) -> None:
        self._authorize_sponsor(sponsor_id, "reject")
        self._reject_if_decided("reject")
        self._status = self._next("reject")
        self.rejection_reason = reason
        self.decided_at = self._touch()
        self._record_event(
            ev.APPLICATION_REJECTED,
            {
                "application_id": self.id,
                "job_id": self.job_id,
                "sponsor_id": sponsor_id,
                "maid_id": self.maid_id,
                "reason": reason,
            },
        )

    def withdraw(self, maid_id: str, reason: str) -> None:
        self._authorize_maid(maid_id, "withdraw")
        self._status = self._next("withdraw")
        self.withdrawal_reason = reason
        self._touch()
        self._record_event(
            ev.APPLICATION_WITHDRAWN,
            {
                "application_id": self.id,
                "job_id": self.job_id,
                "maid_id": maid_id,
                "reason": reason,
            },
        )

    # -- Serialization -------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "job_id": self.job_id,
            "maid_id": self.maid_id,
            "sponsor_id": self.sponsor_id,
            "cover_letter": self.cover_letter,
            "status": self._status.value,
            "reviewed_at": _iso(self.reviewed_at),
            "interview_scheduled_at": _iso(self.interview_scheduled_at),
            "interview_completed_at": _iso(self.interview_completed_at),
            "sponsor_notes": self.sponsor_notes,
            "rejection_reason": self.rejection_reason,
            "withdrawal_reason": self.withdrawal_reason,
            "decided_at": _iso(self.decided_at),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> JobApplication:
        return cls(
            id=pick(data, "id"),
            job_id=pick(data, "job_id"),
            maid_id=pick(data, "maid_id"),
            sponsor_id=pick(data, "sponsor_id"),
            cover_letter=pick(data, "cover_letter", default=""),
            status=ApplicationStatus(pick(data, "status", default=_S.PENDING.value)),
            reviewed_at=parse_timestamp(pick(data, "reviewed_at")),
            interview_scheduled_at=parse_timestamp(pick(data, "interview_scheduled_at")),
            interview_completed_at=parse_timestamp(pick(data, "interview_completed_at")),
            sponsor_notes=pick(data, "sponsor_notes"),
            rejection_reason=pick(data, "rejection_reason"),
            withdrawal_reason=pick(data, "withdrawal_reason"),
            decided_at=parse_timestamp(pick(data, "decided_at")),
            created_at=parse_timestamp(pick(data, "created_at")),
            updated_at=parse_timestamp(pick(data, "updated_at")),
        )


def _utc_or_none(value: datetime | None) -> datetime | None:
    return ensure_utc(value) if value is not None else None


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None
