"""
Simple Dependency Injection context for one rollout run.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TYPE_CHECKING

from .config import DeployConfig
from .process_manager import ProcessManager

if TYPE_CHECKING:
    from cutover.deploy.builder import Builder
    from cutover.deploy.stability import StabilityVerifier
    from cutover.deploy.staging import Stager
    from cutover.deploy.traffic import TrafficSplitVerifier
    from cutover.metrics.timing import PhaseTimer
    from cutover.probe.http import HttpProbe
    from cutover.probe.readiness import ReadinessWaiter
    from cutover.probe.warmup import WarmupEngine


@dataclass
class RolloutContext:
    cfg: DeployConfig
    probe: 'HttpProbe'
    process_manager: ProcessManager
    builder: 'Builder'
    stager: 'Stager'
    timer: Optional['PhaseTimer'] = None

    # Time sources; tests substitute a fake clock
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    clock: Callable[[], float] = time.monotonic

    # Built from the fields above when not supplied
    readiness: Optional['ReadinessWaiter'] = None
    warmup: Optional['WarmupEngine'] = None
    stability: Optional['StabilityVerifier'] = None
    traffic: Optional['TrafficSplitVerifier'] = None

    def __post_init__(self) -> None:
        from cutover.deploy.stability import StabilityVerifier
        from cutover.deploy.traffic import TrafficSplitVerifier
        from cutover.metrics.timing import PhaseTimer
        from cutover.probe.readiness import ReadinessWaiter
        from cutover.probe.resources import ResourceValidator
        from cutover.probe.warmup import WarmupEngine

        cfg = self.cfg
        if self.timer is None:
            self.timer = PhaseTimer(clock=self.clock)
        if self.readiness is None:
            self.readiness = ReadinessWaiter(
                self.probe, request_timeout_ms=cfg.readiness.request_timeout_ms, sleep=self.sleep,
            )
        if self.warmup is None:
            self.warmup = WarmupEngine(
                self.probe,
                base_timeout_ms=cfg.warmup.base_timeout_ms,
                max_timeout_ms=cfg.warmup.max_timeout_ms,
                clock=self.clock,
                sleep=self.sleep,
            )
        if self.stability is None:
            self.stability = StabilityVerifier(
                self.process_manager,
                self.probe,
                self.readiness,
                ResourceValidator(self.probe, cfg.resources),
                settings=cfg.resources,
                settle_delay_ms=cfg.rollout.settle_delay_ms,
                sleep=self.sleep,
            )
        if self.traffic is None:
            self.traffic = TrafficSplitVerifier(self.probe, cfg.traffic, sleep=self.sleep)
