"""Shared fixtures for the marketplace-core test suite."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from marketplace_core.core.clock import SimClock
from marketplace_core.domain.agency_profile import AgencyProfile
from marketplace_core.domain.events import DomainEvent
from marketplace_core.domain.job_application import JobApplication
from marketplace_core.domain.job_posting import JobPosting
from marketplace_core.domain.password_reset import PasswordReset
from marketplace_core.domain.sponsor_profile import SponsorProfile
from marketplace_core.domain.user import User
from marketplace_core.infrastructure.event_bus import EventBus
from marketplace_core.infrastructure.memory_repository import InMemoryRepository
from marketplace_core.infrastructure.outbox import InMemoryOutboxStore

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Time
# ---------------------------------------------------------------------------

@pytest.fixture
def clock() -> SimClock:
    return SimClock(T0)


# ---------------------------------------------------------------------------
# Aggregates
# ---------------------------------------------------------------------------

@pytest.fixture
def user() -> User:
    """An active, unverified sponsor account (no pending events)."""
    return User(id="user-1", email="amina@example.com", phone_number="+971500000001")


@pytest.fixture
def reset() -> PasswordReset:
    """A pending reset that expires one hour after ``T0``."""
    return PasswordReset(
        id="reset-1",
        user_id="user-1",
        email="amina@example.com",
        token="tok-abc",
        expires_at=T0 + timedelta(hours=1),
    )


@pytest.fixture
def application() -> JobApplication:
    """A pending application from maid-1 to sponsor-1 (no pending events)."""
    return JobApplication(
        id="app-1",
        job_id="job-1",
        maid_id="maid-1",
        sponsor_id="sponsor-1",
        cover_letter="I have five years of experience.",
    )


@pytest.fixture
def draft_profile() -> SponsorProfile:
    return SponsorProfile(id="profile-1", user_id="sponsor-1")


@pytest.fixture
def complete_profile() -> SponsorProfile:
    """A draft profile with every required field filled."""
    return SponsorProfile(
        id="profile-2",
        user_id="sponsor-2",
        name="Fatima Al Mansoori",
        phone="+971500000002",
        country="AE",
        city="Dubai",
        address="Villa 12, Street 4",
        household_size=5,
        documents={
            "id_document": "s3://docs/id.pdf",
            "proof_of_residence": "s3://docs/ejari.pdf",
        },
    )


@pytest.fixture
def complete_agency() -> AgencyProfile:
    """A draft agency with every required field and a license valid for a year after ``T0``."""
    return AgencyProfile(
        id="agency-1",
        user_id="agency-user-1",
        full_name="Habesha Placement Services",
        license_number="LIC-2231",
        license_expiry=T0 + timedelta(days=365),
        registration_number="REG-88",
        phone="+251911000000",
        email="ops@habesha.example.com",
        city="Addis Ababa",
        address="Bole Road 14",
        documents={
            "business_license": "s3://docs/business.pdf",
            "tax_certificate": "s3://docs/tax.pdf",
        },
    )


@pytest.fixture
def complete_posting() -> JobPosting:
    """A draft posting that satisfies every publish requirement."""
    return JobPosting(
        id="job-1",
        sponsor_id="sponsor-1",
        title="Live-in housekeeper",
        description="Family of four, two children.",
        required_skills=["cleaning", "cooking"],
        required_languages=["en"],
        country="AE",
        city="Dubai",
        salary={"amount": 2500, "currency": "AED"},
        accommodation_type="live-in",
        max_applications=3,
    )


# ---------------------------------------------------------------------------
# Infrastructure
# ---------------------------------------------------------------------------

@pytest.fixture
def outbox() -> InMemoryOutboxStore:
    return InMemoryOutboxStore()


@pytest.fixture
def bus(outbox: InMemoryOutboxStore, clock: SimClock) -> EventBus:
    return EventBus(outbox=outbox, clock=clock, keep_history=True)


@pytest.fixture
def users() -> InMemoryRepository[User]:
    return InMemoryRepository(User)


@pytest.fixture
def applications() -> InMemoryRepository[JobApplication]:
    return InMemoryRepository(JobApplication)


@pytest.fixture
def postings() -> InMemoryRepository[JobPosting]:
    return InMemoryRepository(JobPosting)


@pytest.fixture
def sample_event() -> DomainEvent:
    return DomainEvent(
        type="UserSuspended",
        payload={"user_id": "user-1", "reason": "spam"},
        occurred_at=T0,
        aggregate_id="user-1",
    )
