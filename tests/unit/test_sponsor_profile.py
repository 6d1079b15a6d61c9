"""SponsorProfile: completion tracking and the verification workflow."""

from __future__ import annotations

import pytest

from marketplace_core.core.enums import SponsorDocumentType, SponsorProfileStatus
from marketplace_core.core.errors import (
    IncompleteProfileError,
    InvalidStateError,
    ValidationError,
)
from marketplace_core.domain import events as ev
from marketplace_core.domain.sponsor_profile import REQUIRED_FIELDS, SponsorProfile


class TestCompletion:
    def test_empty_draft_is_zero(self, draft_profile: SponsorProfile) -> None:
        assert draft_profile.completion_percentage == 0
        assert draft_profile.missing_fields() == list(REQUIRED_FIELDS)

    def test_complete_profile_is_hundred(self, complete_profile: SponsorProfile) -> None:
        assert complete_profile.completion_percentage == 100
        assert complete_profile.missing_fields() == []

    def test_basic_info_counts_five_of_eight(self, draft_profile: SponsorProfile) -> None:
        draft_profile.update_basic_info(
            name="Omar", phone="+1", country="AE", city="Dubai", address="Villa 1"
        )
        assert draft_profile.completion_percentage == round(5 / 8 * 100)
        (event,) = draft_profile.pull_domain_events()
        assert event.type == ev.SPONSOR_BASIC_INFO_UPDATED
        assert event.payload["completion_percentage"] == 62
        assert list(event.payload["updated_fields"]) == ["address", "city", "country", "name", "phone"]

    def test_blank_string_does_not_count(self, draft_profile: SponsorProfile) -> None:
        draft_profile.update_basic_info(name="   ")
        assert "name" in draft_profile.missing_fields()
        assert draft_profile.completion_percentage == 0

    def test_documents_count_individually(self, draft_profile: SponsorProfile) -> None:
        draft_profile.upload_document(SponsorDocumentType.ID_DOCUMENT, "s3://id.pdf")
        assert draft_profile.id_document == "s3://id.pdf"
        assert draft_profile.proof_of_residence is None
        assert draft_profile.completion_percentage == round(1 / 8 * 100)

    def test_household_info(self, draft_profile: SponsorProfile) -> None:
        draft_profile.update_household_info(household_size=4, number_of_children=2, has_pets=True)
        assert draft_profile.household_size == 4
        assert draft_profile.has_pets
        (event,) = draft_profile.pull_domain_events()
        assert event.payload["number_of_children"] == 2
        assert event.payload["completion_percentage"] == round(1 / 8 * 100)

    def test_preferences_merge(self, draft_profile: SponsorProfile) -> None:
        draft_profile.update_preferences({"language": "ar"})
        draft_profile.update_preferences({"live_in": True})
        assert draft_profile.preferences == {"language": "ar", "live_in": True}


class TestEditValidation:
    def test_unknown_basic_field(self, draft_profile: SponsorProfile) -> None:
        with pytest.raises(ValidationError, match="salary"):
            draft_profile.update_basic_info(name="Omar", salary=100)
        assert draft_profile.name is None
        assert draft_profile.pending_event_count == 0

    def test_household_size_must_be_positive(self, draft_profile: SponsorProfile) -> None:
        with pytest.raises(ValidationError):
            draft_profile.update_household_info(household_size=0)

    def test_unknown_document_type(self, draft_profile: SponsorProfile) -> None:
        with pytest.raises(ValidationError):
            draft_profile.upload_document("passport_selfie", "s3://x")

    def test_empty_document_url(self, draft_profile: SponsorProfile) -> None:
        with pytest.raises(ValidationError):
            draft_profile.upload_document("id_document", "")

    def test_archived_profile_is_frozen(self, draft_profile: SponsorProfile) -> None:
        draft_profile.archive("account closed")
        with pytest.raises(InvalidStateError):
            draft_profile.update_basic_info(name="Late")
        assert draft_profile.name is None


class TestVerificationWorkflow:
    def test_incomplete_cannot_submit(self, draft_profile: SponsorProfile) -> None:
        with pytest.raises(IncompleteProfileError, match="missing"):
            draft_profile.submit_for_verification()
        assert draft_profile.status == SponsorProfileStatus.DRAFT
        assert draft_profile.pending_event_count == 0

    def test_submit_verify(self, complete_profile: SponsorProfile) -> None:
        complete_profile.submit_for_verification()
        assert complete_profile.status == SponsorProfileStatus.UNDER_REVIEW
        assert not complete_profile.is_verified
        complete_profile.verify("admin-1")
        assert complete_profile.status == SponsorProfileStatus.ACTIVE
        assert complete_profile.is_verified
        assert complete_profile.verified_by == "admin-1"
        assert [e.type for e in complete_profile.pull_domain_events()] == [
            ev.SPONSOR_PROFILE_SUBMITTED,
            ev.SPONSOR_PROFILE_VERIFIED,
        ]

    def test_submit_twice_fails(self, complete_profile: SponsorProfile) -> None:
        complete_profile.submit_for_verification()
        with pytest.raises(InvalidStateError):
            complete_profile.submit_for_verification()

    def test_reject(self, complete_profile: SponsorProfile) -> None:
        complete_profile.submit_for_verification()
        complete_profile.reject("blurry document", "admin-2")
        assert complete_profile.status == SponsorProfileStatus.REJECTED
        assert complete_profile.rejection_reason == "blurry document"
        assert complete_profile.rejected_by == "admin-2"

    def test_verify_requires_review(self, complete_profile: SponsorProfile) -> None:
        with pytest.raises(InvalidStateError):
            complete_profile.verify("admin-1")
        assert complete_profile.verified_at is None

    def test_archive_twice_fails(self, complete_profile: SponsorProfile) -> None:
        complete_profile.archive("duplicate")
        with pytest.raises(InvalidStateError):
            complete_profile.archive("again")


class TestFactoryAndSerialization:
    def test_create_emits(self) -> None:
        profile = SponsorProfile.create(user_id="sponsor-9", name="Layla")
        (event,) = profile.pull_domain_events()
        assert event.type == ev.SPONSOR_PROFILE_CREATED
        assert profile.completion_percentage == round(1 / 8 * 100)

    def test_round_trip(self, complete_profile: SponsorProfile) -> None:
        complete_profile.submit_for_verification()
        data = complete_profile.to_dict()
        rebuilt = SponsorProfile.from_dict(data)
        assert rebuilt.status == SponsorProfileStatus.UNDER_REVIEW
        assert rebuilt.completion_percentage == 100
        assert rebuilt.documents == complete_profile.documents
        assert data["completion_percentage"] == 100
