"""
Blue-green rollout: stability and traffic checks, staging, build and the state machine.
"""

from .stability import StabilityVerdict, StabilityVerifier
from .traffic import SplitLevel, TrafficSplitVerdict, TrafficSplitVerifier

__all__ = [
    "SplitLevel",
    "StabilityVerdict",
    "StabilityVerifier",
    "TrafficSplitVerdict",
    "TrafficSplitVerifier",
]
