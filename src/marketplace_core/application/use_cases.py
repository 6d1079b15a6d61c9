"""Application use cases.

Every operation follows the same steps::

    aggregate = await repo.find_by_id(id)     # AggregateNotFoundError propagates
    aggregate.<transition>(...)               # domain errors propagate
    await repo.save(aggregate)
    await bus.publish_all(aggregate.pull_domain_events())

Publishing never raises (delivery errors are absorbed by the bus).  To
commit the outbox rows with the aggregate snapshot, build the use case
with a session-bound repository and ``bus.bind_outbox(store)`` sharing
the same session.

Entry operations (``register``, ``request_reset``, ``submit``,
``schedule_interview``, the ``create`` methods) may be gated behind
feature flags.  ``gates`` maps an operation name to the flag guarding it,
so each operation is checked against its own flag with its own actor and
role.  When the flag is off, ``FeatureDisabledError`` is raised before
anything is loaded or changed.  Operations absent from ``gates`` are
never gated.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any, Generic

from marketplace_core.core.enums import AgencyDocumentType, SponsorDocumentType, UserRole
from marketplace_core.core.errors import FeatureDisabledError, ValidationError
from marketplace_core.domain.agency_profile import AgencyProfile
from marketplace_core.domain.aggregate import AggregateRoot
from marketplace_core.domain.job_application import JobApplication
from marketplace_core.domain.job_posting import JobPosting, MaidMatchProfile, Salary
from marketplace_core.domain.password_reset import DEFAULT_TTL_MINUTES, PasswordReset
from marketplace_core.domain.repository import Repository, T
from marketplace_core.domain.sponsor_profile import SponsorProfile
from marketplace_core.domain.user import User
from marketplace_core.infrastructure.event_bus import EventBus
from marketplace_core.infrastructure.feature_flags import FeatureFlagService, FlagContext
from marketplace_core.observability.metrics import record_event_published

logger = logging.getLogger(__name__)


class _UseCases(Generic[T]):
    def __init__(
        self,
        repository: Repository[T],
        bus: EventBus,
        *,
        flags: FeatureFlagService | None = None,
        gates: Mapping[str, str] | None = None,
    ) -> None:
        self._repo = repository
        self._bus = bus
        self._flags = flags
        self._gates: dict[str, str] = dict(gates or {})

    async def _ensure_enabled(
        self,
        operation: str,
        actor_id: str | None = None,
        role: str | None = None,
    ) -> None:
        flag_name = self._gates.get(operation)
        if flag_name is None:
            return
        context = FlagContext(user_id=actor_id, role=role)
        enabled = self._flags is not None and await self._flags.is_enabled(flag_name, context)
        if not enabled:
            logger.info("%s blocked by feature flag %s", operation, flag_name)
            raise FeatureDisabledError(flag_name)

    async def _commit(self, aggregate: AggregateRoot) -> None:
        await self._commit_all(aggregate)

    async def _commit_all(self, *aggregates: AggregateRoot) -> None:
        """Save every aggregate, then publish their events in order."""
        for aggregate in aggregates:
            await self._save(aggregate)
        for aggregate in aggregates:
            events = aggregate.pull_domain_events()
            await self._bus.publish_all(events)
            for event in events:
                record_event_published(event.type)
            logger.debug(
                "%s %s saved, %d event(s) published",
                aggregate.aggregate_name,
                aggregate.id,
                len(events),
            )

    async def _save(self, aggregate: AggregateRoot) -> None:
        await self._repo.save(aggregate)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

class UserAccountUseCases(_UseCases[User]):
    async def register(
        self,
        *,
        email: str,
        role: UserRole | str = UserRole.SPONSOR,
        phone_number: str | None = None,
    ) -> User:
        role = UserRole(role)
        await self._ensure_enabled("register", None, role.value)
        user = User.register(email=email, role=role, phone_number=phone_number)
        await self._commit(user)
        return user

    async def verify_email(self, user_id: str) -> User:
        user = await self._repo.find_by_id(user_id)
        user.verify_email()
        await self._commit(user)
        return user

    async def verify_phone(self, user_id: str, phone_number: str) -> User:
        user = await self._repo.find_by_id(user_id)
        user.verify_phone(phone_number)
        await self._commit(user)
        return user

    async def suspend(self, user_id: str, reason: str) -> User:
        user = await self._repo.find_by_id(user_id)
        user.suspend(reason)
        await self._commit(user)
        return user

    async def reactivate(self, user_id: str) -> User:
        user = await self._repo.find_by_id(user_id)
        user.reactivate()
        await self._commit(user)
        return user

    async def delete(self, user_id: str, reason: str = "") -> User:
        user = await self._repo.find_by_id(user_id)
        user.delete(reason)
        await self._commit(user)
        return user


# ---------------------------------------------------------------------------
# Password resets
# ---------------------------------------------------------------------------

class PasswordResetUseCases(_UseCases[PasswordReset]):
    async def request_reset(
        self,
        *,
        user_id: str,
        email: str,
        ttl_minutes: int = DEFAULT_TTL_MINUTES,
    ) -> PasswordReset:
        await self._ensure_enabled("request_reset", user_id)
        reset = PasswordReset.request(user_id=user_id, email=email, ttl_minutes=ttl_minutes)
        await self._commit(reset)
        return reset

    async def redeem(self, reset_id: str, token: str, now: datetime | None = None) -> PasswordReset:
        """Consume the reset.  An overdue reset is saved as expired before failing."""
        reset = await self._repo.find_by_id(reset_id)
        try:
            reset.redeem(token, now=now)
        finally:
            if reset.pending_event_count:
                await self._commit(reset)
        return reset

    async def cancel(self, reset_id: str, reason: str) -> PasswordReset:
        reset = await self._repo.find_by_id(reset_id)
        reset.cancel(reason)
        await self._commit(reset)
        return reset

    async def check_valid(self, reset_id: str, now: datetime | None = None) -> bool:
        """``is_valid`` with its expiry side effect persisted."""
        reset = await self._repo.find_by_id(reset_id)
        valid = reset.is_valid(now=now)
        if reset.pending_event_count:
            await self._commit(reset)
        return valid


# ---------------------------------------------------------------------------
# Job applications
# ---------------------------------------------------------------------------

class JobApplicationUseCases(_UseCases[JobApplication]):
    """Application workflow.

    With a ``postings`` repository, ``submit`` also counts the application
    on its job posting (which must be open) and takes the sponsor from
    the posting.
    """

    def __init__(
        self,
        repository: Repository[JobApplication],
        bus: EventBus,
        *,
        postings: Repository[JobPosting] | None = None,
        flags: FeatureFlagService | None = None,
        gates: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(repository, bus, flags=flags, gates=gates)
        self._postings = postings

    async def submit(
        self,
        *,
        job_id: str,
        maid_id: str,
        sponsor_id: str | None = None,
        cover_letter: str = "",
    ) -> JobApplication:
        await self._ensure_enabled("submit", maid_id, UserRole.MAID.value)
        posting: JobPosting | None = None
        if self._postings is not None:
            posting = await self._postings.find_by_id(job_id)
            if sponsor_id is not None and sponsor_id != posting.sponsor_id:
                raise ValidationError(
                    f"Job {job_id} belongs to sponsor {posting.sponsor_id}, not {sponsor_id}"
                )
            sponsor_id = posting.sponsor_id
            posting.record_application()
        if not sponsor_id:
            raise ValidationError("sponsor_id is required when no posting repository is configured")

        application = JobApplication.submit(
            job_id=job_id,
            maid_id=maid_id,
            sponsor_id=sponsor_id,
            cover_letter=cover_letter,
        )
        if posting is None:
            await self._commit(application)
        else:
            await self._commit_all(application, posting)
        return application

    async def _save(self, aggregate: AggregateRoot) -> None:
        if isinstance(aggregate, JobPosting):
            await self._postings.save(aggregate)
        else:
            await self._repo.save(aggregate)

    async def update_cover_letter(self, application_id: str, text: str) -> JobApplication:
        application = await self._repo.find_by_id(application_id)
        application.update_cover_letter(text)
        await self._commit(application)
        return application

    async def mark_as_reviewed(self, application_id: str, sponsor_id: str) -> JobApplication:
        application = await self._repo.find_by_id(application_id)
        application.mark_as_reviewed(sponsor_id)
        await self._commit(application)
        return application

    async def schedule_interview(
        self,
        application_id: str,
        date: datetime,
        sponsor_id: str,
    ) -> JobApplication:
        await self._ensure_enabled("schedule_interview", sponsor_id, UserRole.SPONSOR.value)
        application = await self._repo.find_by_id(application_id)
        application.schedule_interview(date, sponsor_id)
        await self._commit(application)
        return application

    async def complete_interview(self, application_id: str, notes: str) -> JobApplication:
        application = await self._repo.find_by_id(application_id)
        application.complete_interview(notes)
        await self._commit(application)
        return application

    async def accept(
        self,
        application_id: str,
        sponsor_id: str,
        notes: str | None = None,
    ) -> JobApplication:
        application = await self._repo.find_by_id(application_id)
        application.accept(sponsor_id, notes)
        await self._commit(application)
        return application

    async def reject(self, application_id: str, sponsor_id: str, reason: str) -> JobApplication:
        application = await self._repo.find_by_id(application_id)
        application.reject(sponsor_id, reason)
        await self._commit(application)
        return application

    async def withdraw(self, application_id: str, maid_id: str, reason: str) -> JobApplication:
        application = await self._repo.find_by_id(application_id)
        application.withdraw(maid_id, reason)
        await self._commit(application)
        return application


# ---------------------------------------------------------------------------
# Sponsor profiles
# ---------------------------------------------------------------------------

class SponsorProfileUseCases(_UseCases[SponsorProfile]):
    async def create(self, *, user_id: str, name: str | None = None) -> SponsorProfile:
        await self._ensure_enabled("create", user_id, UserRole.SPONSOR.value)
        profile = SponsorProfile.create(user_id=user_id, name=name)
        await self._commit(profile)
        return profile

    async def update_basic_info(self, profile_id: str, **fields: Any) -> SponsorProfile:
        profile = await self._repo.find_by_id(profile_id)
        profile.update_basic_info(**fields)
        await self._commit(profile)
        return profile

    async def update_household_info(
        self,
        profile_id: str,
        *,
        household_size: int | None = None,
        number_of_children: int | None = None,
        has_pets: bool | None = None,
    ) -> SponsorProfile:
        profile = await self._repo.find_by_id(profile_id)
        profile.update_household_info(
            household_size=household_size,
            number_of_children=number_of_children,
            has_pets=has_pets,
        )
        await self._commit(profile)
        return profile

    async def update_preferences(self, profile_id: str, preferences: Mapping[str, Any]) -> SponsorProfile:
        profile = await self._repo.find_by_id(profile_id)
        profile.update_preferences(preferences)
        await self._commit(profile)
        return profile

    async def upload_document(
        self,
        profile_id: str,
        document_type: SponsorDocumentType | str,
        url: str,
    ) -> SponsorProfile:
        profile = await self._repo.find_by_id(profile_id)
        profile.upload_document(document_type, url)
        await self._commit(profile)
        return profile

    async def submit_for_verification(self, profile_id: str) -> SponsorProfile:
        profile = await self._repo.find_by_id(profile_id)
        profile.submit_for_verification()
        await self._commit(profile)
        return profile

    async def verify(self, profile_id: str, verified_by: str) -> SponsorProfile:
        profile = await self._repo.find_by_id(profile_id)
        profile.verify(verified_by)
        await self._commit(profile)
        return profile

    async def reject(self, profile_id: str, reason: str, rejected_by: str) -> SponsorProfile:
        profile = await self._repo.find_by_id(profile_id)
        profile.reject(reason, rejected_by)
        await self._commit(profile)
        return profile

    async def archive(self, profile_id: str, reason: str) -> SponsorProfile:
        profile = await self._repo.find_by_id(profile_id)
        profile.archive(reason)
        await self._commit(profile)
        return profile


# ---------------------------------------------------------------------------
# Agency profiles
# ---------------------------------------------------------------------------

class AgencyProfileUseCases(_UseCases[AgencyProfile]):
    async def create(self, *, user_id: str, full_name: str | None = None) -> AgencyProfile:
        await self._ensure_enabled("create", user_id, UserRole.AGENCY.value)
        profile = AgencyProfile.create(user_id=user_id, full_name=full_name)
        await self._commit(profile)
        return profile

    async def update_basic_info(self, profile_id: str, **fields: Any) -> AgencyProfile:
        profile = await self._repo.find_by_id(profile_id)
        profile.update_basic_info(**fields)
        await self._commit(profile)
        return profile

    async def update_license_info(
        self,
        profile_id: str,
        *,
        license_number: str | None = None,
        license_expiry: datetime | str | None = None,
        registration_number: str | None = None,
    ) -> AgencyProfile:
        profile = await self._repo.find_by_id(profile_id)
        profile.update_license_info(
            license_number=license_number,
            license_expiry=license_expiry,
            registration_number=registration_number,
        )
        await self._commit(profile)
        return profile

    async def update_business_info(self, profile_id: str, **info: Any) -> AgencyProfile:
        profile = await self._repo.find_by_id(profile_id)
        profile.update_business_info(**info)
        await self._commit(profile)
        return profile

    async def upload_document(
        self,
        profile_id: str,
        document_type: AgencyDocumentType | str,
        url: str,
    ) -> AgencyProfile:
        profile = await self._repo.find_by_id(profile_id)
        profile.upload_document(document_type, url)
        await self._commit(profile)
        return profile

    async def submit_for_verification(
        self, profile_id: str, now: datetime | None = None
    ) -> AgencyProfile:
        profile = await self._repo.find_by_id(profile_id)
        profile.submit_for_verification(now)
        await self._commit(profile)
        return profile

    async def verify(self, profile_id: str, verified_by: str) -> AgencyProfile:
        profile = await self._repo.find_by_id(profile_id)
        profile.verify(verified_by)
        await self._commit(profile)
        return profile

    async def reject(self, profile_id: str, reason: str, rejected_by: str) -> AgencyProfile:
        profile = await self._repo.find_by_id(profile_id)
        profile.reject(reason, rejected_by)
        await self._commit(profile)
        return profile

    async def archive(self, profile_id: str, reason: str) -> AgencyProfile:
        profile = await self._repo.find_by_id(profile_id)
        profile.archive(reason)
        await self._commit(profile)
        return profile

    async def add_maid(self, profile_id: str, maid_id: str) -> AgencyProfile:
        profile = await self._repo.find_by_id(profile_id)
        profile.add_maid(maid_id)
        await self._commit(profile)
        return profile

    async def remove_maid(self, profile_id: str, maid_id: str) -> AgencyProfile:
        profile = await self._repo.find_by_id(profile_id)
        profile.remove_maid(maid_id)
        await self._commit(profile)
        return profile

    async def record_placement(self, profile_id: str) -> AgencyProfile:
        profile = await self._repo.find_by_id(profile_id)
        profile.record_placement()
        await self._commit(profile)
        return profile

    async def update_rating(self, profile_id: str, rating: float) -> AgencyProfile:
        profile = await self._repo.find_by_id(profile_id)
        profile.update_rating(rating)
        await self._commit(profile)
        return profile


# ---------------------------------------------------------------------------
# Job postings
# ---------------------------------------------------------------------------

class JobPostingUseCases(_UseCases[JobPosting]):
    async def create(self, *, sponsor_id: str, title: str, **details: Any) -> JobPosting:
        await self._ensure_enabled("create", sponsor_id, UserRole.SPONSOR.value)
        posting = JobPosting.create(sponsor_id=sponsor_id, title=title, **details)
        await self._commit(posting)
        return posting

    async def match_score(self, job_id: str, maid: MaidMatchProfile) -> int:
        """Read-only: score *maid* against the stored posting."""
        posting = await self._repo.find_by_id(job_id)
        return posting.calculate_match_score(maid)

    async def update_details(self, job_id: str, **changes: Any) -> JobPosting:
        posting = await self._repo.find_by_id(job_id)
        posting.update_details(**changes)
        await self._commit(posting)
        return posting

    async def update_compensation(
        self,
        job_id: str,
        *,
        salary: Salary | Mapping[str, Any] | None = None,
        benefits: Sequence[str] | None = None,
    ) -> JobPosting:
        posting = await self._repo.find_by_id(job_id)
        posting.update_compensation(salary=salary, benefits=benefits)
        await self._commit(posting)
        return posting

    async def publish(self, job_id: str, expiry_days: int = 30) -> JobPosting:
        posting = await self._repo.find_by_id(job_id)
        posting.publish(expiry_days)
        await self._commit(posting)
        return posting

    async def record_view(self, job_id: str) -> JobPosting:
        posting = await self._repo.find_by_id(job_id)
        posting.record_view()
        await self._commit(posting)
        return posting

    async def close(self, job_id: str, reason: str) -> JobPosting:
        posting = await self._repo.find_by_id(job_id)
        posting.close(reason)
        await self._commit(posting)
        return posting

    async def mark_as_filled(self, job_id: str, maid_id: str, contract_id: str) -> JobPosting:
        posting = await self._repo.find_by_id(job_id)
        posting.mark_as_filled(maid_id, contract_id)
        await self._commit(posting)
        return posting

    async def cancel(self, job_id: str, reason: str) -> JobPosting:
        posting = await self._repo.find_by_id(job_id)
        posting.cancel(reason)
        await self._commit(posting)
        return posting
