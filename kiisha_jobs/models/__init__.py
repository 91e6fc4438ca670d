"""
kiisha_jobs.models -- ORM models for job persistence.

Architecture: kiisha_jobs/models. Imports from kiisha_kernel.db.base only.
"""

from kiisha_jobs.models.job import JobLogModel, JobModel
from kiisha_jobs.models.schedule import ScheduledTaskModel

__all__ = [
    "JobLogModel",
    "JobModel",
    "ScheduledTaskModel",
]
