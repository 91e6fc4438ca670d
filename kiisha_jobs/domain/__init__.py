"""
kiisha_jobs.domain -- Pure types and functions for the job subsystem.

ZERO I/O.  All types are frozen dataclasses.
"""

from kiisha_jobs.domain.access import Caller, can_access
from kiisha_jobs.domain.cron import CronSpec, is_due, matches_cron, next_fire_time, parse_cron
from kiisha_jobs.domain.status import JobStatusView, project_status
from kiisha_jobs.domain.types import (
    BulkRetryResult,
    Job,
    JobCounts,
    JobLogEntry,
    JobLogLevel,
    JobPriority,
    JobStatus,
    ScheduledTask,
    ScheduleRunStatus,
    TickResult,
)

__all__ = [
    "BulkRetryResult",
    "Caller",
    "CronSpec",
    "Job",
    "JobCounts",
    "JobLogEntry",
    "JobLogLevel",
    "JobPriority",
    "JobStatus",
    "JobStatusView",
    "ScheduledTask",
    "ScheduleRunStatus",
    "TickResult",
    "can_access",
    "is_due",
    "matches_cron",
    "next_fire_time",
    "parse_cron",
    "project_status",
]
