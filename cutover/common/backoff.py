"""
Backoff helpers for rollout polling loops.

- LinearBackoff: delay = base * attempt (stability / traffic retry loops)
- AdaptiveTimeout: per-request timeout that grows on failure, capped
- retry_check_async: retry a boolean async check with a bounded budget
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Tuple


@dataclass
class LinearBackoff:
    """Linearly growing delay between retries."""

    base_delay_ms: int = 3000  # Delay after the first failed attempt
    max_attempts: int = 3      # Total attempts, including the first

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.base_delay_ms < 0:
            raise ValueError(f"base_delay_ms must be >= 0, got {self.base_delay_ms}")

    def compute_delay_ms(self, attempt: int) -> int:
        """
        Compute delay after a failed attempt.

        Args:
            attempt: Failed attempt number (1-indexed)

        Returns:
            Delay in milliseconds
        """
        return self.base_delay_ms * max(1, attempt)


@dataclass
class AdaptiveTimeout:
    """Request timeout that grows by `factor` on every failed batch, up to `max_ms`."""

    base_ms: float = 300.0
    factor: float = 1.5
    max_ms: float = 2000.0
    current_ms: float = field(init=False)

    def __post_init__(self) -> None:
        if self.base_ms <= 0 or self.max_ms < self.base_ms:
            raise ValueError(f"invalid timeout bounds: base={self.base_ms} max={self.max_ms}")
        self.current_ms = float(self.base_ms)

    def grow(self) -> float:
        self.current_ms = min(self.current_ms * self.factor, self.max_ms)
        return self.current_ms

    def reset(self) -> None:
        self.current_ms = float(self.base_ms)


async def retry_check_async(
    check: Callable[..., Awaitable[Any]],
    *args,
    policy: Optional[LinearBackoff] = None,
    is_success: Callable[[Any], bool] = bool,
    on_retry: Optional[Callable[[int, int, int], None]] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    **kwargs
) -> Tuple[Any, int]:
    """
    Retry an async check until it succeeds or the attempt budget is spent.

    Unlike exception-driven retries, a failed check is a value: the last
    result is returned either way and the caller decides what it means.

    Args:
        check: Async callable returning a verdict
        policy: Attempt cap and delay schedule (default: LinearBackoff())
        is_success: Predicate applied to each result
        on_retry: Callback (attempt, max_attempts, delay_ms) before each sleep
        sleep: Awaitable sleep in seconds (injectable for tests)

    Returns:
        (last_result, attempts_used)
    """
    policy = policy or LinearBackoff()
    result: Any = None

    for attempt in range(1, policy.max_attempts + 1):
        result = await check(*args, **kwargs)
        if is_success(result):
            return result, attempt

        # No sleep after the final attempt
        if attempt >= policy.max_attempts:
            break

        delay_ms = policy.compute_delay_ms(attempt)
        if on_retry:
            on_retry(attempt, policy.max_attempts, delay_ms)
        await sleep(delay_ms / 1000.0)

    return result, policy.max_attempts
