"""Tests for ExecutionTimer."""

from sentinel.scheduling import ExecutionTimer


class TestExecutionTimer:
    def test_budget_is_biased_max_execution(self, monotonic):
        assert ExecutionTimer(60, 75, clock=monotonic).budget == 45.0

    def test_bias_clamped(self, monotonic):
        assert ExecutionTimer(60, 5, clock=monotonic).bias == 10
        assert ExecutionTimer(60, 250, clock=monotonic).bias == 100

    def test_time_left_decreases(self, monotonic):
        timer = ExecutionTimer(10, 100, clock=monotonic)
        monotonic.advance(4)
        assert timer.elapsed() == 4
        assert timer.time_left() == 6

    def test_reset(self, monotonic):
        timer = ExecutionTimer(10, 100, clock=monotonic)
        monotonic.advance(9)
        timer.reset()
        assert timer.time_left() == 10
