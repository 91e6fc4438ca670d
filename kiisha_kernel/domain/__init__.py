"""
Pure kernel domain layer.

No dependencies on the ORM, the database, or I/O (SystemClock is the single
sanctioned time boundary).
"""

from kiisha_kernel.domain.clock import Clock, DeterministicClock, SystemClock

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
]
