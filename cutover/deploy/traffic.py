"""
Traffic split estimation through the public entry point.

Each sample asks the identity endpoint which instance answered; the share of
answers from the new instance decides whether the proxy has switched over.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

import orjson

from cutover.common.config import TrafficSettings
from cutover.probe.http import Endpoint, HttpProbe, ProbeResult

logger = logging.getLogger(__name__)


class SplitLevel(str, Enum):
    CONFIRMED = "confirmed"
    CONFIRMED_WITH_WARNING = "confirmed-with-warning"
    NOT_CONFIRMED = "not-confirmed"


@dataclass(frozen=True)
class TrafficSplitVerdict:
    new_instance_hits: int
    old_instance_hits: int
    failed_samples: int
    sample_size: int
    routed_fraction: float
    level: SplitLevel

    @property
    def overall(self) -> bool:
        return self.level is not SplitLevel.NOT_CONFIRMED


def classify_split(fraction: float, confirm_ratio: float = 0.9, warn_ratio: float = 0.5) -> SplitLevel:
    if fraction >= confirm_ratio:
        return SplitLevel.CONFIRMED
    if fraction >= warn_ratio:
        return SplitLevel.CONFIRMED_WITH_WARNING
    return SplitLevel.NOT_CONFIRMED


def identity_of(result: ProbeResult) -> Optional[str]:
    """Instance tag from an identity response, or None when unusable."""
    if not result.ok or not result.body:
        return None
    try:
        payload = orjson.loads(result.body)
    except orjson.JSONDecodeError:
        return None
    if not isinstance(payload, dict):
        return None
    tag = payload.get("id")
    return tag if isinstance(tag, str) else None


class TrafficSplitVerifier:
    def __init__(
        self,
        probe: HttpProbe,
        settings: Optional[TrafficSettings] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.probe = probe
        self.settings = settings or TrafficSettings()
        self._sleep = sleep

    async def verify_split(self, external_endpoint: Endpoint, sample_size: Optional[int] = None) -> TrafficSplitVerdict:
        """
        Sample the identity endpoint sequentially and classify the routed fraction.

        Raises:
            ValueError: sample_size below 1
        """
        s = self.settings
        n = s.sample_size if sample_size is None else sample_size
        if n < 1:
            raise ValueError(f"sample_size must be >= 1, got {n}")

        logger.info("Sampling %s%s %d time(s)", external_endpoint.url.rstrip("/"), s.identity_path, n)
        new_hits = old_hits = failed = 0
        for i in range(n):
            target = external_endpoint.with_path(f"{s.identity_path}?_={uuid.uuid4().hex}")
            result = await self.probe.probe(target, s.request_timeout_ms, keep_body=True)
            tag = identity_of(result)
            if tag == s.new_tag:
                new_hits += 1
            elif tag == s.old_tag:
                old_hits += 1
            else:
                failed += 1
                logger.debug("Identity sample %d failed: %s tag=%r", i + 1, result.describe(), tag)

            if i < n - 1 and s.sample_delay_ms > 0:
                await self._sleep(s.sample_delay_ms / 1000.0)

        fraction = new_hits / n
        verdict = TrafficSplitVerdict(
            new_instance_hits=new_hits,
            old_instance_hits=old_hits,
            failed_samples=failed,
            sample_size=n,
            routed_fraction=fraction,
            level=classify_split(fraction, s.confirm_ratio, s.warn_ratio),
        )

        logger.info("New instance hits: %d/%d", new_hits, n)
        logger.info("Old instance hits: %d/%d", old_hits, n)
        logger.info("Failed samples: %d/%d", failed, n)
        if verdict.level is SplitLevel.CONFIRMED:
            logger.info("Proxy routes most traffic to the new instance (%.1f%%)", fraction * 100)
        elif verdict.level is SplitLevel.CONFIRMED_WITH_WARNING:
            logger.warning("Proxy routes only part of the traffic to the new instance (%.1f%%)", fraction * 100)
        else:
            logger.error("Proxy is not routing traffic to the new instance (%.1f%%)", fraction * 100)
        return verdict
