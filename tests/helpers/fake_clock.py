"""
FakeClock for deterministic time in tests.
"""

from typing import List


class FakeClock:
    """Fake monotonic clock with an awaitable sleep that advances it."""

    def __init__(self, start: float = 0.0):
        self.t = float(start)
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.t

    def time(self) -> float:
        """Return current fake time."""
        return self.t

    def tick(self, dt: float) -> None:
        """Advance fake time by dt seconds (rounded to ns to avoid float drift)."""
        self.t = round(self.t + float(dt), 9)

    def set(self, t: float) -> None:
        """Set fake time to specific value."""
        self.t = float(t)

    async def sleep(self, seconds: float) -> None:
        """Record the sleep and advance time instead of waiting."""
        self.sleeps.append(float(seconds))
        self.tick(seconds)

    @property
    def slept_ms(self) -> List[int]:
        return [round(s * 1000) for s in self.sleeps]
