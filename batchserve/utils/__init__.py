"""
Utility modules for BatchServe.
"""

from .timers import Timer, TimingResult, time_operation

__all__ = [
    "Timer",
    "TimingResult",
    "time_operation",
]
