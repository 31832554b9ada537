"""Unit tests for the per-user admission controller.

WHY: The admission window is the only thing standing between a user who
forwards a voice note twice and two Gemini calls plus two replies. The
arrival-based window, the retry hint, and idle expiry all need pinning.

HOW: Each test builds its own AdmissionController with explicit `now`
values (or a FakeClock), so no test depends on wall-clock time.

RULES:
- Window is 15 000 ms unless a test says otherwise
- Times are seconds as floats
"""

from __future__ import annotations

import threading

import pytest

from conftest import FakeClock
from voicenote_relay.core.admission import AdmissionController, AdmissionDecision


def _controller(window_ms: int = 15000, clock=None) -> AdmissionController:
    return AdmissionController(window_ms, clock=clock)


class TestTryAdmit:
    def test_first_request_is_admitted(self):
        ctl = _controller()
        decision = ctl.try_admit("u1", now=100.0)
        assert decision.admitted is True
        assert bool(decision) is True

    def test_second_request_inside_window_is_rejected(self):
        ctl = _controller()
        ctl.try_admit("u1", now=100.0)
        decision = ctl.try_admit("u1", now=110.0)
        assert decision.admitted is False
        assert not decision

    def test_retry_hint_is_remaining_window(self):
        ctl = _controller()
        ctl.try_admit("u1", now=100.0)
        decision = ctl.try_admit("u1", now=110.0)
        assert decision.retry_after_ms == 5000

    def test_request_after_window_is_admitted(self):
        ctl = _controller()
        ctl.try_admit("u1", now=100.0)
        assert ctl.try_admit("u1", now=115.5).admitted is True

    def test_request_exactly_at_window_is_admitted(self):
        ctl = _controller()
        ctl.try_admit("u1", now=100.0)
        assert ctl.try_admit("u1", now=115.0).admitted is True

    def test_rejection_does_not_extend_window(self):
        ctl = _controller()
        ctl.try_admit("u1", now=100.0)
        assert ctl.try_admit("u1", now=114.0).admitted is False
        assert ctl.try_admit("u1", now=115.0).admitted is True

    def test_users_are_independent(self):
        ctl = _controller()
        ctl.try_admit("u1", now=100.0)
        assert ctl.try_admit("u2", now=100.1).admitted is True

    def test_uses_injected_clock_by_default(self):
        clock = FakeClock(start=50.0)
        ctl = _controller(clock=clock)
        assert ctl.try_admit("u1").admitted is True
        clock.advance(14.9)
        assert ctl.try_admit("u1").admitted is False
        clock.advance(0.1)
        assert ctl.try_admit("u1").admitted is True

    def test_custom_window(self):
        ctl = _controller(window_ms=500)
        ctl.try_admit("u1", now=1.0)
        assert ctl.try_admit("u1", now=1.4).admitted is False
        assert ctl.try_admit("u1", now=1.5).admitted is True

    def test_non_positive_window_rejected(self):
        with pytest.raises(ValueError):
            AdmissionController(0)


class TestRelease:
    def test_release_does_not_move_the_window(self):
        """Throttling is measured from arrival, not completion."""
        ctl = _controller()
        ctl.try_admit("u1", now=100.0)
        ctl.release("u1", now=112.0)
        assert ctl.try_admit("u1", now=115.0).admitted is True

    def test_release_unknown_user_is_noop(self):
        ctl = _controller()
        ctl.release("ghost", now=1.0)
        assert "ghost" not in ctl


class TestSweep:
    def test_removes_entries_idle_for_twice_the_window(self):
        ctl = _controller()
        ctl.try_admit("u1", now=100.0)
        assert ctl.sweep(now=130.1) == 1
        assert "u1" not in ctl
        assert len(ctl) == 0

    def test_keeps_entries_within_twice_the_window(self):
        ctl = _controller()
        ctl.try_admit("u1", now=100.0)
        assert ctl.sweep(now=130.0) == 0
        assert "u1" in ctl

    def test_release_postpones_expiry(self):
        ctl = _controller()
        ctl.try_admit("u1", now=100.0)
        ctl.release("u1", now=125.0)
        assert ctl.sweep(now=140.0) == 0
        assert ctl.sweep(now=155.1) == 1

    def test_swept_user_is_admitted_again(self):
        ctl = _controller()
        ctl.try_admit("u1", now=100.0)
        ctl.sweep(now=200.0)
        assert ctl.try_admit("u1", now=200.0).admitted is True


class TestConcurrency:
    def test_racing_requests_admit_exactly_one(self):
        ctl = _controller()
        results = []
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            results.append(ctl.try_admit("u1", now=100.0))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sum(1 for d in results if d.admitted) == 1
        assert all(isinstance(d, AdmissionDecision) for d in results)
