"""
Stability verdict for the running instance.

Checks, in order, stopping at the first failure:
1. process manager reports the process online
2. every configured path passes a short readiness check
3. front-end resources validate (when enabled)
4. one timed probe of / (slow only warns)
5. settle delay
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Sequence

from cutover.common.config import ResourceValidationSettings
from cutover.common.errors import ProcessManagerError
from cutover.common.process_manager import ProcessManager
from cutover.probe.http import Endpoint, HttpProbe
from cutover.probe.readiness import ReadinessWaiter
from cutover.probe.resources import ResourceValidator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StabilityVerdict:
    process_online: bool = False
    restart_count: int = 0
    endpoints_accessible: bool = False
    resources_valid: bool = False
    response_time_ms: Optional[float] = None
    slow_response: bool = False
    overall: bool = False
    reason: str = ""


class StabilityVerifier:
    def __init__(
        self,
        process_manager: ProcessManager,
        probe: HttpProbe,
        readiness: ReadinessWaiter,
        resources: ResourceValidator,
        settings: Optional[ResourceValidationSettings] = None,
        settle_delay_ms: float = 3000,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.process_manager = process_manager
        self.probe = probe
        self.readiness = readiness
        self.resources = resources
        self.settings = settings or ResourceValidationSettings()
        self.settle_delay_ms = settle_delay_ms
        self._sleep = sleep

    async def verify_stability(
        self,
        process_name: str,
        endpoint: Endpoint,
        configured_paths: Sequence[str],
    ) -> StabilityVerdict:
        s = self.settings
        logger.info("Checking stability of %s (%s)", process_name, endpoint.url)

        try:
            status = self.process_manager.status(process_name)
        except ProcessManagerError as e:
            logger.warning("Process status query failed: %s", e.message)
            return StabilityVerdict(reason=f"status query failed: {e.message}")

        if not status.online:
            logger.warning("Process %s is not online: %s", process_name, status.status)
            return StabilityVerdict(
                restart_count=status.restarts,
                reason=f"process {status.status}",
            )
        logger.info(
            "Process %s: status=%s uptime=%s restarts=%d memory=%s",
            process_name, status.status, status.uptime or "?", status.restarts, status.memory or "?",
        )

        for path in configured_paths:
            ready = await self.readiness.wait_until_ready(
                endpoint.with_path(path), s.endpoint_attempts, s.endpoint_interval_ms,
            )
            if not ready:
                logger.warning("Path %s is not accessible; service may not be fully initialized", path)
                return StabilityVerdict(
                    process_online=True,
                    restart_count=status.restarts,
                    reason=f"path {path} not accessible",
                )

        if s.enabled:
            if not await self.resources.validate(endpoint):
                logger.warning("Resource validation failed; application may not be fully loaded")
                return StabilityVerdict(
                    process_online=True,
                    restart_count=status.restarts,
                    endpoints_accessible=True,
                    reason="resource validation failed",
                )
        else:
            logger.info("Resource validation disabled")

        timed = await self.probe.probe(endpoint.with_path("/"), s.response_probe_timeout_ms)
        response_time_ms = timed.elapsed_ms
        if not timed.ready:
            logger.warning("Timed probe of / did not succeed: %s", timed.describe())
        slow = response_time_ms > s.response_time_warning_ms
        if slow:
            logger.warning("Main page response is slow (%.0fms); possible performance issue", response_time_ms)
        else:
            logger.info("Main page response time: %.0fms", response_time_ms)

        if self.settle_delay_ms > 0:
            logger.info("Waiting %.0fms for final settle", self.settle_delay_ms)
            await self._sleep(self.settle_delay_ms / 1000.0)

        logger.info("%s is stable", process_name)
        return StabilityVerdict(
            process_online=True,
            restart_count=status.restarts,
            endpoints_accessible=True,
            # Skipped validation is not a failure
            resources_valid=True,
            response_time_ms=response_time_ms,
            slow_response=slow,
            overall=True,
        )
