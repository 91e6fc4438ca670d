"""
JobAccessGuard -- the caller-facing job surface.

Contract:
    Every method takes the ``Caller`` built by the identity provider and
    applies ownership before delegating to the lifecycle manager.  Results
    are projected through ``project_status`` so callers never see storage
    rows.

Guarantees:
    - A job that exists but belongs to someone else is indistinguishable
      from a missing job: single reads return None, and logs and mutations
      raise JobNotFoundError("Job not found").
    - List reads for non-admins are always filtered by owner.
    - The admin surface raises AdminRequiredError for everyone else.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable
from uuid import UUID

from kiisha_kernel.exceptions import AdminRequiredError, JobNotFoundError
from kiisha_kernel.logging_config import LogContext, get_logger

from kiisha_jobs.domain.access import Caller, can_access
from kiisha_jobs.domain.status import JobStatusView, project_status
from kiisha_jobs.domain.types import (
    BulkRetryResult,
    Job,
    JobCounts,
    JobLogEntry,
    JobStatus,
)
from kiisha_jobs.services.job_log import JobLog
from kiisha_jobs.services.lifecycle import JobLifecycleManager

logger = get_logger("jobs.access")


@dataclass(frozen=True)
class JobPage:
    """One page of the admin job listing plus the unpaged total."""

    jobs: tuple[JobStatusView, ...]
    total: int


class JobAccessGuard:
    """Ownership-enforcing facade over JobLifecycleManager and JobLog."""

    def __init__(self, lifecycle: JobLifecycleManager, job_log: JobLog | None = None):
        self._lifecycle = lifecycle
        self._job_log = job_log or lifecycle.job_log

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_status(self, caller: Caller, job_id: UUID) -> JobStatusView | None:
        job = self._visible(caller, self._lifecycle.find_job(job_id))
        return project_status(job) if job is not None else None

    def get_by_correlation(
        self, caller: Caller, correlation_id: str,
    ) -> JobStatusView | None:
        job = self._visible(caller, self._lifecycle.find_by_correlation(correlation_id))
        return project_status(job) if job is not None else None

    def get_by_entity(
        self, caller: Caller, entity_type: str, entity_id: Any,
    ) -> tuple[JobStatusView, ...]:
        owner = None if caller.is_admin else caller.user_id
        jobs = self._lifecycle.list_by_entity(entity_type, entity_id, owner_user_id=owner)
        return tuple(project_status(job) for job in jobs)

    def get_user_jobs(
        self,
        caller: Caller,
        *,
        status: JobStatus | str | None = None,
        job_type: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[JobStatusView, ...]:
        """The caller's own jobs, newest first.  Admins are not widened."""
        jobs = self._lifecycle.list_jobs(
            status=status,
            job_type=job_type,
            owner_user_id=caller.user_id,
            limit=limit,
            offset=offset,
        )
        return tuple(project_status(job) for job in jobs)

    def get_logs(self, caller: Caller, job_id: UUID) -> tuple[JobLogEntry, ...]:
        self._require_visible(caller, job_id)
        return self._job_log.entries(job_id)

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def cancel(self, caller: Caller, job_id: UUID) -> JobStatusView:
        with LogContext.bind(job_id=str(job_id), actor_id=str(caller.user_id)):
            self._require_visible(caller, job_id)
            logger.info("job_cancel_requested")
            job = self._lifecycle.cancel_job(job_id)
        return project_status(job)

    def retry(self, caller: Caller, job_id: UUID) -> JobStatusView:
        with LogContext.bind(actor_id=str(caller.user_id)):
            return project_status(self._lifecycle.retry(job_id, caller))

    def bulk_retry(self, caller: Caller, job_ids: Iterable[UUID]) -> BulkRetryResult:
        with LogContext.bind(actor_id=str(caller.user_id)):
            return self._lifecycle.bulk_retry(job_ids, caller)

    # -------------------------------------------------------------------------
    # Admin surface
    # -------------------------------------------------------------------------

    def get_all_jobs(
        self,
        caller: Caller,
        *,
        status: JobStatus | str | None = None,
        job_type: str | None = None,
        owner_user_id: UUID | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> JobPage:
        self._require_admin(caller, "get_all_jobs")
        jobs = self._lifecycle.list_jobs(
            status=status,
            job_type=job_type,
            owner_user_id=owner_user_id,
            limit=limit,
            offset=offset,
        )
        total = self._lifecycle.count_jobs(
            status=status, job_type=job_type, owner_user_id=owner_user_id,
        )
        return JobPage(jobs=tuple(project_status(job) for job in jobs), total=total)

    def get_jobs_count(
        self,
        caller: Caller,
        *,
        job_type: str | None = None,
        owner_user_id: UUID | None = None,
    ) -> JobCounts:
        self._require_admin(caller, "get_jobs_count")
        return self._lifecycle.count_by_status(
            job_type=job_type, owner_user_id=owner_user_id,
        )

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    @staticmethod
    def _visible(caller: Caller, job: Job | None) -> Job | None:
        if job is None or not can_access(caller, job.owner_user_id):
            return None
        return job

    def _require_visible(self, caller: Caller, job_id: UUID) -> Job:
        job = self._visible(caller, self._lifecycle.find_job(job_id))
        if job is None:
            raise JobNotFoundError(str(job_id))
        return job

    @staticmethod
    def _require_admin(caller: Caller, operation: str) -> None:
        if not caller.is_admin:
            logger.warning(
                "admin_access_denied",
                extra={"actor_id": str(caller.user_id), "operation": operation},
            )
            raise AdminRequiredError(operation)
