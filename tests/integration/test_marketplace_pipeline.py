"""Integration test: use case -> bus -> outbox -> worker.

Wires the runtime the way ``main.build_runtime`` does for production,
with in-memory repositories and stores in place of PostgreSQL.
"""

from datetime import datetime, timezone

import pytest

from marketplace_core.application.use_cases import (
    JobApplicationUseCases,
    JobPostingUseCases,
    UserAccountUseCases,
)
from marketplace_core.core.config import Settings
from marketplace_core.core.enums import ApplicationStatus, JobPostingStatus, OutboxStatus
from marketplace_core.core.errors import FeatureDisabledError
from marketplace_core.domain import events as ev
from marketplace_core.domain.job_application import JobApplication
from marketplace_core.domain.job_posting import JobPosting
from marketplace_core.domain.user import User
from marketplace_core.infrastructure.feature_flags import FeatureFlag, InMemoryFeatureFlagStore
from marketplace_core.infrastructure.memory_repository import InMemoryRepository
from marketplace_core.main import build_runtime

INTERVIEW_AT = datetime(2024, 2, 1, 10, 0, tzinfo=timezone.utc)


class FlakyNotifier:
    """Fails the first ``failures`` deliveries, then succeeds."""

    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.delivered: list[str] = []

    async def __call__(self, event) -> None:
        if self.failures > 0:
            self.failures -= 1
            raise ConnectionError("push gateway unavailable")
        self.delivered.append(event.event_id)


@pytest.fixture
def flag_store():
    return InMemoryFeatureFlagStore(
        [FeatureFlag(name="interview_scheduling", enabled=True, target_roles={"sponsor"})]
    )


@pytest.mark.asyncio
async def test_hiring_flow_end_to_end(outbox, flag_store, clock):
    notifier = FlakyNotifier(failures=1)
    runtime = build_runtime(
        Settings(environment="test"),
        outbox=outbox,
        flag_store=flag_store,
        subscriptions={ev.APPLICATION_ACCEPTED: notifier},
        clock=clock,
    )
    postings = InMemoryRepository(JobPosting)
    applications = InMemoryRepository(JobApplication)
    posting_cases = JobPostingUseCases(postings, runtime.bus)
    application_cases = JobApplicationUseCases(
        applications,
        runtime.bus,
        postings=postings,
        flags=runtime.flags,
        gates={"schedule_interview": "interview_scheduling"},
    )

    posting = await posting_cases.create(
        sponsor_id="sponsor-1",
        title="Live-in nanny",
        description="Two toddlers",
        required_skills=["childcare"],
        required_languages=["en"],
        country="AE",
        city="Abu Dhabi",
        salary={"amount": 2200, "currency": "AED"},
        accommodation_type="live-in",
    )
    await posting_cases.publish(posting.id)
    application = await application_cases.submit(job_id=posting.id, maid_id="maid-1")
    await application_cases.schedule_interview(application.id, INTERVIEW_AT, "sponsor-1")
    await application_cases.complete_interview(application.id, "good candidate")
    await application_cases.accept(application.id, "sponsor-1")

    # Live delivery failed once; the outbox still holds every event as pending.
    assert notifier.delivered == []
    assert runtime.bus.get_error_counts() == {ev.APPLICATION_ACCEPTED: 1}
    types = [r.event_type for r in outbox.records]
    assert types == [
        ev.JOB_POSTING_CREATED,
        ev.JOB_POSTING_PUBLISHED,
        ev.APPLICATION_SUBMITTED,
        ev.INTERVIEW_SCHEDULED,
        ev.INTERVIEW_COMPLETED,
        ev.APPLICATION_ACCEPTED,
    ]
    assert all(r.status == OutboxStatus.PENDING for r in outbox.records)

    result = await runtime.worker.drain()

    assert result.processed == 6
    assert result.failed == 0
    accepted = next(r for r in outbox.records if r.event_type == ev.APPLICATION_ACCEPTED)
    assert notifier.delivered == [accepted.metadata["event_id"]]
    assert all(r.status == OutboxStatus.PROCESSED for r in outbox.records)

    stored = await applications.find_by_id(application.id)
    assert stored.status == ApplicationStatus.ACCEPTED
    assert (await postings.find_by_id(posting.id)).application_count == 1


@pytest.mark.asyncio
async def test_persistent_failure_ends_in_failed_row(outbox, clock):
    async def broken(event) -> None:
        raise RuntimeError("mailer misconfigured")

    runtime = build_runtime(
        Settings(),
        outbox=outbox,
        subscriptions={ev.USER_SUSPENDED: broken},
        clock=clock,
    )
    users = InMemoryRepository(User)
    cases = UserAccountUseCases(users, runtime.bus)
    user = await cases.register(email="maid@example.com", role="maid")
    await cases.suspend(user.id, "document fraud")

    result = await runtime.worker.drain()

    assert result.processed == 1
    assert result.failed == 1
    (failed,) = await outbox.fetch_failed()
    assert failed.event_type == ev.USER_SUSPENDED
    assert "mailer misconfigured" in failed.error_message
    assert failed.updated_at == clock.now()

    again = await runtime.worker.drain()
    assert again.total == 0


@pytest.mark.asyncio
async def test_flag_gate_blocks_before_any_write(outbox, clock):
    runtime = build_runtime(
        Settings(),
        outbox=outbox,
        flag_store=InMemoryFeatureFlagStore([FeatureFlag(name="self_signup", enabled=False)]),
        clock=clock,
    )
    users = InMemoryRepository(User)
    cases = UserAccountUseCases(
        users, runtime.bus, flags=runtime.flags, gates={"register": "self_signup"}
    )

    with pytest.raises(FeatureDisabledError):
        await cases.register(email="a@example.com")

    assert len(users) == 0
    assert len(outbox) == 0


@pytest.mark.asyncio
async def test_posting_closes_at_capacity(outbox, clock):
    runtime = build_runtime(Settings(), outbox=outbox, subscriptions={}, clock=clock)
    postings = InMemoryRepository(JobPosting)
    applications = InMemoryRepository(JobApplication)
    posting = JobPosting(
        id="job-9",
        sponsor_id="sponsor-9",
        title="Driver",
        description="School runs",
        required_skills=["driving"],
        required_languages=["ar"],
        country="SA",
        city="Riyadh",
        salary={"amount": 3000, "currency": "SAR"},
        accommodation_type="live-out",
        max_applications=2,
    )
    posting.publish()
    await postings.save(posting)
    cases = JobApplicationUseCases(applications, runtime.bus, postings=postings)

    await cases.submit(job_id="job-9", maid_id="maid-1")
    await cases.submit(job_id="job-9", maid_id="maid-2")

    assert (await postings.find_by_id("job-9")).status == JobPostingStatus.CLOSED
    assert [r.event_type for r in outbox.records][-1] == ev.JOB_POSTING_CLOSED
