"""PasswordReset: validity side effect, expiry window, single use."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from marketplace_core.core.enums import PasswordResetStatus
from marketplace_core.core.errors import InvalidStateError, InvalidTokenError, ValidationError
from marketplace_core.domain import events as ev
from marketplace_core.domain.password_reset import PasswordReset


T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
BEFORE_EXPIRY = T0 + timedelta(minutes=30)
AFTER_EXPIRY = T0 + timedelta(hours=2)


class TestRequest:
    def test_request_issues_token(self) -> None:
        reset = PasswordReset.request(user_id="u1", email="u1@example.com", ttl_minutes=15, now=T0)
        assert reset.status == PasswordResetStatus.PENDING
        assert reset.expires_at == T0 + timedelta(minutes=15)
        assert len(reset.token) >= 32
        (event,) = reset.pull_domain_events()
        assert event.type == ev.PASSWORD_RESET_REQUESTED
        assert "token" not in event.payload

    def test_tokens_are_unique(self) -> None:
        a = PasswordReset.request(user_id="u1", email="u1@example.com")
        b = PasswordReset.request(user_id="u1", email="u1@example.com")
        assert a.token != b.token

    def test_non_positive_ttl_rejected(self) -> None:
        with pytest.raises(ValidationError):
            PasswordReset.request(user_id="u1", email="u1@example.com", ttl_minutes=0)

    def test_matches_token(self, reset: PasswordReset) -> None:
        assert reset.matches_token("tok-abc")
        assert not reset.matches_token("tok-abd")


class TestIsValid:
    def test_valid_before_expiry(self, reset: PasswordReset) -> None:
        assert reset.is_valid(now=BEFORE_EXPIRY)
        assert reset.pending_event_count == 0

    def test_expiry_side_effect(self, reset: PasswordReset) -> None:
        assert reset.is_valid(now=AFTER_EXPIRY) is False
        assert reset.status == PasswordResetStatus.EXPIRED
        (event,) = reset.pull_domain_events()
        assert event.type == ev.PASSWORD_RESET_EXPIRED
        assert dict(event.payload) == {
            "reset_id": "reset-1",
            "user_id": "user-1",
            "email": "amina@example.com",
        }

    def test_second_check_after_expiry_emits_nothing(self, reset: PasswordReset) -> None:
        reset.is_valid(now=AFTER_EXPIRY)
        reset.pull_domain_events()
        assert reset.is_valid(now=AFTER_EXPIRY) is False
        assert reset.pending_event_count == 0

    def test_exact_expiry_instant_is_still_valid(self, reset: PasswordReset) -> None:
        assert reset.is_valid(now=reset.expires_at)

    def test_cancelled_is_invalid(self, reset: PasswordReset) -> None:
        reset.cancel("user remembered password")
        assert not reset.is_valid(now=BEFORE_EXPIRY)


class TestApproachingExpiry:
    @pytest.mark.parametrize(
        "minutes_left, expected",
        [(30, False), (10, True), (1, True), (0, False), (-5, False)],
    )
    def test_window(self, reset: PasswordReset, minutes_left: int, expected: bool) -> None:
        now = reset.expires_at - timedelta(minutes=minutes_left)
        assert reset.is_approaching_expiry(now=now) is expected

    def test_custom_threshold(self, reset: PasswordReset) -> None:
        now = reset.expires_at - timedelta(minutes=20)
        assert reset.is_approaching_expiry(threshold_minutes=30, now=now)

    def test_is_pure(self, reset: PasswordReset) -> None:
        reset.is_approaching_expiry(now=AFTER_EXPIRY)
        assert reset.status == PasswordResetStatus.PENDING
        assert reset.pending_event_count == 0


class TestTransitions:
    def test_mark_as_used(self, reset: PasswordReset) -> None:
        reset.mark_as_used(now=BEFORE_EXPIRY)
        assert reset.status == PasswordResetStatus.USED
        assert reset.used_at is not None
        (event,) = reset.pull_domain_events()
        assert event.type == ev.PASSWORD_RESET_USED

    def test_used_at_follows_supplied_now(self, reset: PasswordReset) -> None:
        reset.mark_as_used(now=BEFORE_EXPIRY)
        assert reset.used_at == BEFORE_EXPIRY
        assert reset.updated_at == BEFORE_EXPIRY
        (event,) = reset.pull_domain_events()
        assert event.payload["used_at"] == BEFORE_EXPIRY.isoformat()

    def test_expiry_stamped_with_supplied_now(self, reset: PasswordReset) -> None:
        assert not reset.is_valid(now=AFTER_EXPIRY)
        assert reset.updated_at == AFTER_EXPIRY

    def test_used_twice_fails(self, reset: PasswordReset) -> None:
        reset.mark_as_used(now=BEFORE_EXPIRY)
        with pytest.raises(InvalidTokenError):
            reset.mark_as_used(now=BEFORE_EXPIRY)
        assert reset.pending_event_count == 1

    def test_mark_as_used_after_expiry(self, reset: PasswordReset) -> None:
        with pytest.raises(InvalidTokenError):
            reset.mark_as_used(now=AFTER_EXPIRY)
        assert reset.status == PasswordResetStatus.EXPIRED
        assert [e.type for e in reset.pull_domain_events()] == [ev.PASSWORD_RESET_EXPIRED]

    def test_redeem_wrong_token(self, reset: PasswordReset) -> None:
        with pytest.raises(InvalidTokenError):
            reset.redeem("nope", now=BEFORE_EXPIRY)
        assert reset.status == PasswordResetStatus.PENDING
        assert reset.pending_event_count == 0

    def test_redeem(self, reset: PasswordReset) -> None:
        reset.redeem("tok-abc", now=BEFORE_EXPIRY)
        assert reset.status == PasswordResetStatus.USED

    def test_expire_requires_pending(self, reset: PasswordReset) -> None:
        reset.expire()
        with pytest.raises(InvalidStateError):
            reset.expire()

    def test_cancel(self, reset: PasswordReset) -> None:
        reset.cancel("duplicate request")
        assert reset.status == PasswordResetStatus.CANCELLED
        (event,) = reset.pull_domain_events()
        assert dict(event.payload) == {
            "reset_id": "reset-1",
            "user_id": "user-1",
            "reason": "duplicate request",
        }

    def test_cancel_after_use_fails(self, reset: PasswordReset) -> None:
        reset.mark_as_used(now=BEFORE_EXPIRY)
        reset.pull_domain_events()
        with pytest.raises(InvalidStateError):
            reset.cancel("too late")
        assert reset.cancellation_reason is None
        assert reset.pending_event_count == 0


class TestSerialization:
    def test_round_trip(self, reset: PasswordReset) -> None:
        reset.cancel("duplicate")
        rebuilt = PasswordReset.from_dict(reset.to_dict())
        assert rebuilt.status == PasswordResetStatus.CANCELLED
        assert rebuilt.token == "tok-abc"
        assert rebuilt.expires_at == reset.expires_at
        assert rebuilt.cancellation_reason == "duplicate"
