"""
roster_kernel.domain -- Pure kernel abstractions (ZERO I/O).
"""

from roster_kernel.domain.clock import Clock, DeterministicClock, SystemClock

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
]
