"""
kiisha_jobs.services -- Stateful services over the job tables.

None of these commit; callers own the transaction boundary, except the
CronScheduler which opens and commits one session per tick.
"""

from kiisha_jobs.services.access import JobAccessGuard, JobPage
from kiisha_jobs.services.capability import (
    CapabilityDecision,
    CapabilityRegistry,
    StaticCapabilityRegistry,
)
from kiisha_jobs.services.job_log import JobLog
from kiisha_jobs.services.lifecycle import JobLifecycleManager
from kiisha_jobs.services.scheduler import CronScheduler

__all__ = [
    "CapabilityDecision",
    "CapabilityRegistry",
    "CronScheduler",
    "JobAccessGuard",
    "JobLifecycleManager",
    "JobLog",
    "JobPage",
    "StaticCapabilityRegistry",
]
