"""
HTTP signal gathering: single probes, readiness polling, warmup and resource checks.
"""

from .http import Endpoint, HttpProbe, ProbeFailure, ProbeResult
from .readiness import ReadinessWaiter
from .resources import ResourceValidator
from .warmup import WarmupEngine, WarmupVerdict

__all__ = [
    "Endpoint",
    "HttpProbe",
    "ProbeFailure",
    "ProbeResult",
    "ReadinessWaiter",
    "ResourceValidator",
    "WarmupEngine",
    "WarmupVerdict",
]
