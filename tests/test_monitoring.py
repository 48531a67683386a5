"""Tests for the YouTube quota tracker and the circuit breaker."""

import asyncio

import pytest

from bandhub_worker.errors import CircuitOpenError
from bandhub_worker.monitoring.quota_tracker import QuotaStatus, QuotaTracker
from bandhub_worker.services.circuit_breaker import CircuitBreaker, CircuitState


class TestQuotaTracker:

    def test_operation_costs(self, clock):
        tracker = QuotaTracker(daily_limit_units=10_000, clock=clock)
        assert tracker.log_usage("search").units == 100
        assert tracker.log_usage("videos").units == 1
        assert tracker.log_usage("somethingElse").units == 1
        assert tracker.daily_used() == 102

    @pytest.mark.parametrize("searches, status", [
        (6, QuotaStatus.OK),
        (7, QuotaStatus.WARNING),
        (9, QuotaStatus.CRITICAL),
        (10, QuotaStatus.EXCEEDED),
    ])
    def test_status_thresholds(self, clock, searches, status):
        tracker = QuotaTracker(daily_limit_units=1_000, clock=clock)
        for _ in range(searches):
            tracker.log_usage("search")
        check = tracker.check_quota()
        assert check.status == status
        assert check.daily_remaining == max(0, 1_000 - searches * 100)

    def test_usage_resets_at_utc_midnight(self, clock):
        tracker = QuotaTracker(daily_limit_units=1_000, clock=clock)
        tracker.log_usage("search", band_id="b")
        clock.advance(days=1)
        assert tracker.daily_used() == 0
        summary = tracker.get_usage_summary(days=7)
        assert summary["total_units"] == 100
        assert summary["by_operation"]["search"] == {"calls": 1, "units": 100}


class FakeTime:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


async def _ok():
    return "ok"


async def _boom():
    raise RuntimeError("boom")


def _breaker(timer, **kwargs):
    defaults = dict(
        error_threshold_percent=50,
        reset_timeout_seconds=30,
        rolling_window_seconds=60,
        minimum_requests=4,
        clock=timer,
    )
    defaults.update(kwargs)
    return CircuitBreaker("youtube", **defaults)


async def _calls(breaker, funcs):
    outcomes = []
    for func in funcs:
        try:
            outcomes.append(await breaker.call(func))
        except CircuitOpenError:
            outcomes.append("rejected")
        except RuntimeError:
            outcomes.append("error")
    return outcomes


class TestCircuitBreaker:

    def test_stays_closed_below_minimum_requests(self):
        breaker = _breaker(FakeTime())
        asyncio.run(_calls(breaker, [_boom, _boom, _boom]))
        assert breaker.state == CircuitState.CLOSED

    def test_opens_at_error_threshold_and_rejects(self):
        breaker = _breaker(FakeTime())
        outcomes = asyncio.run(_calls(breaker, [_ok, _ok, _boom, _boom, _ok]))
        assert outcomes == ["ok", "ok", "error", "error", "rejected"]
        assert breaker.state == CircuitState.OPEN
        assert breaker.metrics()["rejected_requests"] == 1

    def test_half_open_trial_success_closes(self):
        timer = FakeTime()
        breaker = _breaker(timer)
        asyncio.run(_calls(breaker, [_boom] * 4))
        timer.now += 31
        assert asyncio.run(_calls(breaker, [_ok])) == ["ok"]
        assert breaker.state == CircuitState.CLOSED

    def test_half_open_trial_failure_reopens(self):
        timer = FakeTime()
        breaker = _breaker(timer)
        asyncio.run(_calls(breaker, [_boom] * 4))
        timer.now += 31
        assert asyncio.run(_calls(breaker, [_boom, _ok])) == ["error", "rejected"]
        assert breaker.state == CircuitState.OPEN

    def test_old_outcomes_leave_the_window(self):
        timer = FakeTime()
        breaker = _breaker(timer)
        asyncio.run(_calls(breaker, [_boom, _boom, _boom]))
        timer.now += 61
        asyncio.run(_calls(breaker, [_ok, _ok, _ok, _boom]))
        assert breaker.state == CircuitState.CLOSED
        assert breaker.error_rate == 25

    def test_cancelled_half_open_trial_releases_the_circuit(self):
        timer = FakeTime()
        breaker = _breaker(timer)
        asyncio.run(_calls(breaker, [_boom] * 4))
        timer.now += 31

        async def hang():
            await asyncio.sleep(10)

        with pytest.raises(asyncio.TimeoutError):
            asyncio.run(asyncio.wait_for(breaker.call(hang), 0.01))

        assert breaker.state == CircuitState.OPEN
        assert asyncio.run(_calls(breaker, [_ok])) == ["rejected"]
        timer.now += 31
        assert asyncio.run(_calls(breaker, [_ok])) == ["ok"]
        assert breaker.state == CircuitState.CLOSED

    def test_cancelled_call_while_closed_records_nothing(self):
        breaker = _breaker(FakeTime())

        async def hang():
            await asyncio.sleep(10)

        with pytest.raises(asyncio.TimeoutError):
            asyncio.run(asyncio.wait_for(breaker.call(hang), 0.01))

        assert breaker.state == CircuitState.CLOSED
        assert breaker.error_rate == 0
        assert breaker.metrics()["failed_requests"] == 0
