"""Poll an endpoint until it answers 2xx or a redirect."""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from .http import Endpoint, HttpProbe

logger = logging.getLogger(__name__)

PROGRESS_EVERY = 5


class ReadinessWaiter:
    """
    Attempt-capped readiness polling.

    The per-request timeout is fixed and independent of the polling interval,
    so a hung server costs at most `request_timeout_ms` per attempt.
    """

    def __init__(
        self,
        probe: HttpProbe,
        request_timeout_ms: float = 500,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.probe = probe
        self.request_timeout_ms = request_timeout_ms
        self._sleep = sleep

    async def wait_until_ready(
        self,
        endpoint: Endpoint,
        max_attempts: Optional[int],
        interval_ms: float,
    ) -> bool:
        """
        Returns True on the first ready answer, False after max_attempts probes.

        Raises:
            ValueError: max_attempts missing or below 1
        """
        if max_attempts is None or max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts!r}")

        logger.debug("Waiting for %s (max %d attempts)", endpoint.url, max_attempts)
        last = None
        for attempt in range(1, max_attempts + 1):
            last = await self.probe.probe(endpoint, self.request_timeout_ms)
            if last.ready:
                logger.info("%s is ready after %d attempt(s) (%s)", endpoint.url, attempt, last.describe())
                return True

            if attempt % PROGRESS_EVERY == 0:
                logger.info("Waiting for %s... attempt %d/%d (%s)", endpoint.url, attempt, max_attempts, last.describe())

            if attempt < max_attempts and interval_ms > 0:
                await self._sleep(interval_ms / 1000.0)

        logger.warning(
            "%s not ready after %d attempts (last: %s)",
            endpoint.url, max_attempts, last.describe() if last else "no probe",
        )
        return False
