"""
Cutover - blue-green (main/running) rollout for a single-host web application.
"""

__version__ = "1.0.0"
__author__ = "Cutover Team"

__all__ = [
    "__version__",
]
