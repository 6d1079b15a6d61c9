"""Test WallClock and SimClock."""

from datetime import datetime, timedelta, timezone

import pytest

from marketplace_core.core.clock import SimClock, WallClock


class TestWallClock:
    def test_now_returns_utc(self):
        now = WallClock().now()
        assert now.tzinfo == timezone.utc

    def test_now_is_recent(self):
        diff = abs((datetime.now(timezone.utc) - WallClock().now()).total_seconds())
        assert diff < 1.0


class TestSimClock:
    def test_default_start(self):
        assert SimClock().now() == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_time_stands_still(self, clock):
        assert clock.now() == clock.now()

    def test_set_time_forward(self, clock):
        target = clock.now() + timedelta(hours=1)
        clock.set_time(target)
        assert clock.now() == target

    def test_cannot_go_backwards(self, clock):
        with pytest.raises(ValueError, match="backwards"):
            clock.set_time(clock.now() - timedelta(seconds=1))

    def test_advance(self, clock):
        start = clock.now()
        clock.advance(minutes=5, seconds=30)
        assert clock.now() - start == timedelta(minutes=5, seconds=30)
