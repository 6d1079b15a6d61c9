"""JobApplication: authorization, decision finality, withdrawal."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from marketplace_core.core.enums import ApplicationStatus
from marketplace_core.core.errors import (
    AlreadyProcessedError,
    InvalidStateError,
    UnauthorizedError,
)
from marketplace_core.domain import events as ev
from marketplace_core.domain.job_application import JobApplication

INTERVIEW_AT = datetime(2024, 2, 1, 10, 0, tzinfo=timezone.utc)


class TestSubmit:
    def test_submit_emits(self) -> None:
        app = JobApplication.submit(
            job_id="job-1", maid_id="maid-1", sponsor_id="sponsor-1", cover_letter="Hello"
        )
        assert app.status == ApplicationStatus.PENDING
        (event,) = app.pull_domain_events()
        assert event.type == ev.APPLICATION_SUBMITTED
        assert event.payload["maid_id"] == "maid-1"
        assert event.aggregate_id == app.id


class TestCoverLetter:
    def test_update_while_pending(self, application: JobApplication) -> None:
        application.update_cover_letter("Updated letter")
        assert application.cover_letter == "Updated letter"
        (event,) = application.pull_domain_events()
        assert event.type == ev.APPLICATION_UPDATED

    def test_update_after_review_fails(self, application: JobApplication) -> None:
        application.mark_as_reviewed("sponsor-1")
        with pytest.raises(InvalidStateError):
            application.update_cover_letter("too late")
        assert application.cover_letter == "I have five years of experience."


class TestSponsorActions:
    def test_review(self, application: JobApplication) -> None:
        application.mark_as_reviewed("sponsor-1")
        assert application.status == ApplicationStatus.REVIEWED
        assert application.reviewed_at is not None

    def test_wrong_sponsor_is_unauthorized(self, application: JobApplication) -> None:
        with pytest.raises(UnauthorizedError) as excinfo:
            application.mark_as_reviewed("sponsor-2")
        assert excinfo.value.actor_id == "sponsor-2"
        assert application.status == ApplicationStatus.PENDING
        assert application.pending_event_count == 0

    def test_authorization_checked_before_decision(self, application: JobApplication) -> None:
        application.accept("sponsor-1")
        with pytest.raises(UnauthorizedError):
            application.reject("sponsor-2", "nope")

    def test_schedule_from_pending(self, application: JobApplication) -> None:
        application.schedule_interview(INTERVIEW_AT, "sponsor-1")
        assert application.status == ApplicationStatus.INTERVIEWING
        assert application.interview_scheduled_at == INTERVIEW_AT
        (event,) = application.pull_domain_events()
        assert event.payload["interview_date"] == INTERVIEW_AT.isoformat()

    def test_complete_interview_requires_interviewing(self, application: JobApplication) -> None:
        with pytest.raises(InvalidStateError):
            application.complete_interview("notes")
        assert application.sponsor_notes is None

    def test_reject_records_reason(self, application: JobApplication) -> None:
        application.reject("sponsor-1", "position filled")
        assert application.status == ApplicationStatus.REJECTED
        assert application.rejection_reason == "position filled"
        assert application.decided_at is not None
        assert not application.is_active


class TestDecisionFinality:
    def test_interview_then_accept_sequence(self, application: JobApplication) -> None:
        application.schedule_interview(INTERVIEW_AT, "sponsor-1")
        application.complete_interview("good candidate")
        application.accept("sponsor-1")

        assert application.status == ApplicationStatus.ACCEPTED
        assert application.sponsor_notes == "good candidate"
        assert application.interview_completed_at is not None
        events = application.pull_domain_events()
        assert [e.type for e in events] == [
            ev.INTERVIEW_SCHEDULED,
            ev.INTERVIEW_COMPLETED,
            ev.APPLICATION_ACCEPTED,
        ]
        assert application.pull_domain_events() == []

    def test_reject_after_accept_is_already_processed(self, application: JobApplication) -> None:
        application.accept("sponsor-1")
        application.pull_domain_events()
        with pytest.raises(AlreadyProcessedError):
            application.reject("sponsor-1", "changed mind")
        assert application.status == ApplicationStatus.ACCEPTED
        assert application.rejection_reason is None
        assert application.pending_event_count == 0

    def test_accept_after_reject_is_already_processed(self, application: JobApplication) -> None:
        application.reject("sponsor-1", "no")
        with pytest.raises(AlreadyProcessedError):
            application.accept("sponsor-1")

    def test_accept_after_withdraw_is_invalid_state(self, application: JobApplication) -> None:
        application.withdraw("maid-1", "found another job")
        with pytest.raises(InvalidStateError) as excinfo:
            application.accept("sponsor-1")
        assert not isinstance(excinfo.value, AlreadyProcessedError)

    def test_accept_keeps_notes_when_none_given(self, application: JobApplication) -> None:
        application.schedule_interview(INTERVIEW_AT, "sponsor-1")
        application.complete_interview("punctual")
        application.accept("sponsor-1")
        assert application.sponsor_notes == "punctual"


class TestWithdraw:
    def test_withdraw_by_applicant(self, application: JobApplication) -> None:
        application.withdraw("maid-1", "relocating")
        assert application.status == ApplicationStatus.WITHDRAWN
        assert application.withdrawal_reason == "relocating"

    def test_withdraw_after_rejection_allowed(self, application: JobApplication) -> None:
        application.reject("sponsor-1", "no")
        application.withdraw("maid-1", "ok")
        assert application.status == ApplicationStatus.WITHDRAWN

    def test_withdraw_after_accept_fails(self, application: JobApplication) -> None:
        application.accept("sponsor-1")
        with pytest.raises(InvalidStateError):
            application.withdraw("maid-1", "changed mind")

    def test_other_maid_cannot_withdraw(self, application: JobApplication) -> None:
        with pytest.raises(UnauthorizedError):
            application.withdraw("maid-2", "mischief")
        assert application.status == ApplicationStatus.PENDING


class TestSerialization:
    def test_round_trip(self, application: JobApplication) -> None:
        application.schedule_interview(INTERVIEW_AT, "sponsor-1")
        rebuilt = JobApplication.from_dict(application.to_dict())
        assert rebuilt.status == ApplicationStatus.INTERVIEWING
        assert rebuilt.interview_scheduled_at == INTERVIEW_AT
        assert rebuilt.sponsor_id == "sponsor-1"
