"""Wall-clock budget for one scheduler invocation."""

from __future__ import annotations

import time
from collections.abc import Callable


class ExecutionTimer:
    """Tracks how much of the invocation's time budget is left.

    The budget is ``max_exec_time * bias / 100`` seconds; ``bias`` is
    clamped to 10–100 so a misconfiguration can neither starve the runner
    nor let it overrun the host's own process limit.

    Example:
        >>> timer = ExecutionTimer(60, 75)
        >>> timer.budget
        45.0
    """

    def __init__(
        self,
        max_exec_time: float = 60,
        bias: int = 75,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_exec_time = max(0.0, float(max_exec_time))
        self.bias = max(10, min(100, int(bias)))
        self._clock = clock
        self._start = clock()

    @property
    def budget(self) -> float:
        return self.max_exec_time * self.bias / 100

    def elapsed(self) -> float:
        return self._clock() - self._start

    def time_left(self) -> float:
        return self.budget - self.elapsed()

    def reset(self) -> None:
        self._start = self._clock()

    def __repr__(self) -> str:
        return f"ExecutionTimer(budget={self.budget:.2f}s, left={self.time_left():.2f}s)"


__all__ = ["ExecutionTimer"]
