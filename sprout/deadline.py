"""Wall-clock budget shared by every phase of one grow run."""

from __future__ import annotations

import time
from collections.abc import Callable

from sprout.errors import BuildTimeoutError


class Deadline:
    """Seconds left until a fixed point in time."""

    def __init__(self, seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.seconds = seconds
        self._clock = clock
        self._expires = clock() + seconds

    def remaining(self) -> float:
        """Seconds left.

        Raises:
            BuildTimeoutError: If the budget is already spent.
        """
        left = self._expires - self._clock()
        if left <= 0:
            raise BuildTimeoutError(self.seconds)
        return left


def start_deadline(timeout: float | None) -> Deadline | None:
    """Deadline for ``timeout`` seconds, or None for no limit."""
    return None if timeout is None else Deadline(timeout)


__all__ = ["Deadline", "start_deadline"]
