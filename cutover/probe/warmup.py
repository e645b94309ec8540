"""
Multi-path warmup with per-path attempt budgets and a global deadline.

Each round probes every pending path concurrently, then folds the results into
the per-path state in one sequential step. A path that answered 2xx is never
probed again; a path that spent its attempts is failed. When the deadline
passes, pending required paths are failed and the others are left remaining.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, FrozenSet, Iterable, List, Optional, Set

from cutover.common.backoff import AdaptiveTimeout
from cutover.common.logging import RateLimitedLogger

from .http import Endpoint, HttpProbe, ProbeResult

logger = logging.getLogger(__name__)

FAST_SLEEP_MS = 100
SLOW_SLEEP_MS = 200
FAST_SUCCESS_RATIO = 0.7


@dataclass
class PathAttemptState:
    attempts_used: int = 0
    succeeded: bool = False


@dataclass(frozen=True)
class WarmupProgress:
    """Snapshot passed to on_progress after each round."""

    round: int
    completed: int
    total: int
    succeeded: int
    request_timeout_ms: float


@dataclass(frozen=True)
class WarmupVerdict:
    successful_paths: FrozenSet[str]
    failed_paths: FrozenSet[str]
    remaining_paths: FrozenSet[str]
    required_paths_satisfied: bool
    elapsed_ms: float
    timed_out: bool

    @property
    def overall(self) -> bool:
        return self.required_paths_satisfied and not self.failed_paths

    def summary(self) -> str:
        return (
            f"succeeded={len(self.successful_paths)} failed={len(self.failed_paths)} "
            f"remaining={len(self.remaining_paths)} elapsed={self.elapsed_ms:.0f}ms"
            + (" (timed out)" if self.timed_out else "")
        )


class WarmupEngine:
    """Concurrent warmup driver. Clock and sleep are injectable."""

    def __init__(
        self,
        probe: HttpProbe,
        base_timeout_ms: float = 300,
        max_timeout_ms: float = 2000,
        growth_factor: float = 1.5,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.probe = probe
        self.base_timeout_ms = base_timeout_ms
        self.max_timeout_ms = max_timeout_ms
        self.growth_factor = growth_factor
        self._clock = clock
        self._sleep = sleep
        self._failures = RateLimitedLogger(logger, rate_limit_seconds=10.0, clock=clock)

    async def warmup(
        self,
        endpoint: Endpoint,
        paths: Iterable[str],
        attempts_per_path: int,
        global_timeout_ms: float,
        required_paths: Iterable[str] = ("/",),
        on_progress: Optional[Callable[[WarmupProgress], None]] = None,
    ) -> WarmupVerdict:
        """
        Warm up `paths` on `endpoint`.

        Args:
            endpoint: Base endpoint; each path is probed via endpoint.with_path()
            paths: Paths to warm up
            attempts_per_path: Probes allowed per path (>= 1)
            global_timeout_ms: Wall-clock budget for starting new rounds
            required_paths: Paths that must succeed; added to the probed set
            on_progress: Optional observer called after each round

        Raises:
            ValueError: invalid attempt count or timeout
        """
        if attempts_per_path < 1:
            raise ValueError(f"attempts_per_path must be >= 1, got {attempts_per_path}")
        if global_timeout_ms <= 0:
            raise ValueError(f"global_timeout_ms must be positive, got {global_timeout_ms}")

        required: List[str] = list(dict.fromkeys(required_paths))
        ordered: List[str] = list(dict.fromkeys([*paths, *required]))
        states: Dict[str, PathAttemptState] = {p: PathAttemptState() for p in ordered}
        failed: Set[str] = set()
        timeout = AdaptiveTimeout(
            base_ms=self.base_timeout_ms, factor=self.growth_factor, max_ms=self.max_timeout_ms,
        )

        started = self._clock()
        deadline = started + global_timeout_ms / 1000.0
        timed_out = False
        round_no = 0

        logger.info("Warming up %d path(s) on %s", len(ordered), endpoint.url)

        while True:
            pending = self._pending(ordered, states, failed, attempts_per_path)
            if not pending:
                break
            if self._clock() >= deadline:
                timed_out = True
                break

            round_no += 1
            request_timeout_ms = timeout.current_ms
            results = await asyncio.gather(
                *(self.probe.probe(endpoint.with_path(p), request_timeout_ms) for p in pending)
            )

            if self._aggregate(pending, results, states, failed, attempts_per_path):
                timeout.grow()

            succeeded = sum(1 for s in states.values() if s.succeeded)
            progress = WarmupProgress(
                round=round_no,
                completed=succeeded + len(failed),
                total=len(ordered),
                succeeded=succeeded,
                request_timeout_ms=request_timeout_ms,
            )
            logger.info(
                "Warmup progress: %d/%d completed (%d succeeded)",
                progress.completed, progress.total, progress.succeeded,
            )
            if on_progress is not None:
                on_progress(progress)

            if not self._pending(ordered, states, failed, attempts_per_path):
                break

            sleep_ms = FAST_SLEEP_MS if succeeded / len(ordered) > FAST_SUCCESS_RATIO else SLOW_SLEEP_MS
            remaining_ms = (deadline - self._clock()) * 1000.0
            sleep_ms = min(sleep_ms, max(0.0, remaining_ms))
            if sleep_ms > 0:
                await self._sleep(sleep_ms / 1000.0)

        successful = frozenset(p for p, s in states.items() if s.succeeded)
        remaining = set(self._pending(ordered, states, failed, attempts_per_path))
        for path in required:
            if path in remaining:
                remaining.discard(path)
                failed.add(path)

        verdict = WarmupVerdict(
            successful_paths=successful,
            failed_paths=frozenset(failed),
            remaining_paths=frozenset(remaining),
            required_paths_satisfied=all(p in successful for p in required),
            elapsed_ms=(self._clock() - started) * 1000.0,
            timed_out=timed_out,
        )
        if verdict.overall:
            logger.info("Warmup complete: %s", verdict.summary())
        else:
            logger.warning("Warmup incomplete: %s", verdict.summary())
            if verdict.failed_paths:
                logger.warning("Failed paths: %s", ", ".join(sorted(verdict.failed_paths)))
        return verdict

    @staticmethod
    def _pending(
        ordered: List[str],
        states: Dict[str, PathAttemptState],
        failed: Set[str],
        attempts_per_path: int,
    ) -> List[str]:
        return [
            p for p in ordered
            if not states[p].succeeded
            and p not in failed
            and states[p].attempts_used < attempts_per_path
        ]

    def _aggregate(
        self,
        batch: List[str],
        results: List[ProbeResult],
        states: Dict[str, PathAttemptState],
        failed: Set[str],
        attempts_per_path: int,
    ) -> bool:
        """Fold one round into the path state. Returns True if any probe failed."""
        any_failed = False
        for path, result in zip(batch, results):
            state = states[path]
            state.attempts_used += 1
            if result.ok:
                state.succeeded = True
                logger.debug("Warmup %s ok (%s, %.0fms)", path, result.describe(), result.elapsed_ms)
                continue

            any_failed = True
            self._failures.warn_once(f"Warmup {path} failed: {result.describe()}")
            if state.attempts_used >= attempts_per_path:
                failed.add(path)
        return any_failed
