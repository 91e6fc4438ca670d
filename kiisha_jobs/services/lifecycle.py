"""
JobLifecycleManager -- create, transition, retry and query jobs.

Contract:
    Owns every write to the ``jobs`` table: creation, the worker-facing
    transitions (start / complete / fail / progress), cancellation and
    manual retry.  Also provides the unguarded queries the access guard
    builds on.

Architecture: kiisha_jobs/services.  Imports from kiisha_jobs.domain,
    kiisha_jobs.models, kiisha_jobs.services.job_log and the kernel.

Invariants enforced:
    - Every transition is a compare-and-set UPDATE conditioned on the
      expected status.  A lost race surfaces as InvalidStateTransitionError
      instead of silently overwriting a concurrent writer.
    - attempts never exceeds max_attempts: ``start_job`` only claims a job
      whose attempts are below the limit.
    - Terminal statuses (completed, failed, cancelled) are never left.
      Manual retry inserts a NEW job linked by ``parent_job_id``.
    - correlation_id is unique and never rewritten.  A lookup miss that
      loses the insert race still raises DuplicateCorrelationIdError.
    - A requeued job is not offered by ``next_queued_jobs()`` before its
      ``next_retry_at``, nor a delayed job before its ``scheduled_for``.
    - All timestamps come from the injected Clock.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta
from typing import Any, Iterable
from uuid import UUID, uuid4

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from kiisha_kernel.config import JobQueueSettings
from kiisha_kernel.domain.clock import Clock, SystemClock
from kiisha_kernel.exceptions import (
    DuplicateCorrelationIdError,
    InvalidJobOptionsError,
    InvalidStateTransitionError,
    JobError,
    JobNotFoundError,
)
from kiisha_kernel.logging_config import LogContext, get_logger

from kiisha_jobs.domain.access import Caller, can_access
from kiisha_jobs.domain.status import sanitize_error
from kiisha_jobs.domain.types import (
    BulkRetryResult,
    Job,
    JobCounts,
    JobLogEntry,
    JobLogLevel,
    JobPriority,
    JobStatus,
)
from kiisha_jobs.models.job import JobModel
from kiisha_jobs.services.job_log import JobLog

logger = get_logger("jobs.lifecycle")

# Recorded as creator for jobs that have no owning user.
SYSTEM_ACTOR_ID = UUID("00000000-0000-0000-0000-000000000000")


def generate_correlation_id(now: datetime) -> str:
    """``job_<epoch millis>_<9 lowercase alphanumerics>``."""
    return f"job_{int(now.timestamp() * 1000)}_{uuid4().hex[:9]}"


def retry_delay(attempts: int, base_seconds: int = 1) -> timedelta:
    """Backoff before attempt ``attempts + 1``: base, 2x base, 4x base, ..."""
    return timedelta(seconds=base_seconds * 2 ** max(0, attempts - 1))


def _coerce_priority(priority: JobPriority | str) -> JobPriority:
    if isinstance(priority, JobPriority):
        return priority
    try:
        return JobPriority(str(priority).lower())
    except ValueError:
        raise InvalidJobOptionsError(
            "priority",
            priority,
            f"must be one of {', '.join(p.value for p in JobPriority)}",
        ) from None


class JobLifecycleManager:
    """Job lifecycle state machine over the ``jobs`` table.

    Contract:
        - ``create_job()`` inserts a queued job.
        - ``start_job()`` / ``complete_job()`` / ``fail_job()`` /
          ``report_progress()`` are called by workers.
        - ``cancel_job()`` / ``retry()`` / ``bulk_retry()`` are called on
          behalf of users (through the access guard).
        - ``get_job()`` and friends are unguarded queries.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT execute jobs -- workers live out of process.
        - Does NOT enforce ownership except in ``retry()``, whose
          read-check-insert must be atomic.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        job_log: JobLog | None = None,
        settings: JobQueueSettings | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._settings = settings or JobQueueSettings()
        self._job_log = job_log or JobLog(session, clock=self._clock)

    @property
    def job_log(self) -> JobLog:
        return self._job_log

    # -------------------------------------------------------------------------
    # Create
    # -------------------------------------------------------------------------

    def create_job(
        self,
        job_type: str,
        payload: dict[str, Any] | None = None,
        *,
        priority: JobPriority | str = JobPriority.NORMAL,
        owner_user_id: UUID | None = None,
        correlation_id: str | None = None,
        max_attempts: int | None = None,
        entity_type: str | None = None,
        entity_id: Any = None,
        parent_job_id: UUID | None = None,
        created_by: UUID | None = None,
        scheduled_for: datetime | None = None,
    ) -> Job:
        """Insert a new queued job.

        ``scheduled_for`` delays pick-up: ``next_queued_jobs()`` skips the
        job until the clock reaches it.

        Raises:
            InvalidJobOptionsError: Empty type, unknown priority,
                ``max_attempts < 1`` or a non-datetime ``scheduled_for``.
            DuplicateCorrelationIdError: ``correlation_id`` already used.
        """
        if not job_type:
            raise InvalidJobOptionsError("job_type", job_type, "must not be empty")
        job_priority = _coerce_priority(priority)

        if max_attempts is None:
            max_attempts = self._settings.default_max_attempts
        if isinstance(max_attempts, bool) or not isinstance(max_attempts, int):
            raise InvalidJobOptionsError(
                "max_attempts", max_attempts, "must be an integer",
            )
        if max_attempts < 1:
            raise InvalidJobOptionsError("max_attempts", max_attempts, "must be >= 1")
        if scheduled_for is not None and not isinstance(scheduled_for, datetime):
            raise InvalidJobOptionsError(
                "scheduled_for", scheduled_for, "must be a datetime",
            )

        now = self._clock.now()

        if correlation_id is None:
            correlation_id = generate_correlation_id(now)
        else:
            existing = self._existing_correlation(correlation_id)
            if existing is not None:
                raise DuplicateCorrelationIdError(correlation_id, str(existing))

        dto = Job(
            job_id=uuid4(),
            job_type=job_type,
            status=JobStatus.QUEUED,
            correlation_id=correlation_id,
            payload=dict(payload or {}),
            priority=job_priority,
            attempts=0,
            max_attempts=max_attempts,
            owner_user_id=owner_user_id,
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id is not None else None,
            parent_job_id=parent_job_id,
            created_at=now,
            scheduled_for=scheduled_for,
        )

        model = JobModel.from_dto(
            dto, created_by_id=created_by or owner_user_id or SYSTEM_ACTOR_ID,
        )
        model.created_at = now
        model.updated_at = now

        # A concurrent writer can claim the correlation id between the check
        # above and this insert; the unique constraint decides.
        try:
            with self._session.begin_nested():
                self._session.add(model)
                self._session.flush()
        except IntegrityError as exc:
            if "correlation_id" not in str(exc.orig):
                raise
            existing = self._existing_correlation(correlation_id)
            raise DuplicateCorrelationIdError(
                correlation_id, str(existing) if existing else "unknown",
            ) from exc

        with LogContext.bind(job_id=str(dto.job_id), correlation_id=correlation_id):
            self._job_log.append(
                dto.job_id,
                JobLogLevel.INFO,
                "Job created",
                {"type": job_type, "priority": job_priority.value},
            )
            logger.info(
                "job_created",
                extra={
                    "job_type": job_type,
                    "priority": job_priority.value,
                    "parent_job_id": str(parent_job_id) if parent_job_id else None,
                    "scheduled_for": scheduled_for,
                },
            )
        return model.to_dto()

    # -------------------------------------------------------------------------
    # Worker-facing transitions
    # -------------------------------------------------------------------------

    def start_job(self, job_id: UUID) -> Job:
        """queued -> processing; counts one attempt."""
        now = self._clock.now()
        model = self._transition(
            job_id,
            "start",
            (JobStatus.QUEUED,),
            {
                "status": JobStatus.PROCESSING.value,
                "started_at": now,
                "attempts": JobModel.attempts + 1,
                "next_retry_at": None,
                "updated_at": now,
            },
            JobModel.attempts < JobModel.max_attempts,
        )
        with self._log_context(model):
            self._job_log.append(
                job_id,
                JobLogLevel.INFO,
                f"Job started (attempt {model.attempts}/{model.max_attempts})",
            )
            logger.info(
                "job_started",
                extra={"attempt": model.attempts, "max_attempts": model.max_attempts},
            )
        return model.to_dto()

    def complete_job(self, job_id: UUID, result: Any = None) -> Job:
        """processing -> completed; ``result`` is stored verbatim."""
        now = self._clock.now()
        model = self._transition(
            job_id,
            "complete",
            (JobStatus.PROCESSING,),
            {
                "status": JobStatus.COMPLETED.value,
                "completed_at": now,
                "result": result,
                "updated_at": now,
            },
        )
        with self._log_context(model):
            self._job_log.append(job_id, JobLogLevel.INFO, "Job completed")
            logger.info("job_completed")
        return model.to_dto()

    def fail_job(self, job_id: UUID, error_message: str) -> bool:
        """Record a failed attempt.

        Returns True when the job went back to queued for another attempt,
        False when attempts are exhausted and the job is now failed.  A
        requeued job waits ``retry_backoff_seconds * 2**(attempts - 1)``
        before ``next_queued_jobs()`` offers it again.
        """
        row = self._session.execute(
            select(JobModel.status, JobModel.attempts, JobModel.max_attempts)
            .where(JobModel.id == job_id)
        ).one_or_none()
        if row is None:
            raise JobNotFoundError(str(job_id))
        if row.status != JobStatus.PROCESSING.value:
            raise InvalidStateTransitionError(str(job_id), row.status, "fail")

        now = self._clock.now()
        will_retry = row.attempts < row.max_attempts
        values: dict[str, Any] = {"error": error_message, "updated_at": now}
        next_retry_at = None
        if will_retry:
            next_retry_at = now + retry_delay(
                row.attempts, self._settings.retry_backoff_seconds,
            )
            values["status"] = JobStatus.QUEUED.value
            values["next_retry_at"] = next_retry_at
        else:
            values["status"] = JobStatus.FAILED.value
            values["failed_at"] = now

        # Conditioning on attempts too means a concurrent start/fail pair
        # cannot apply a stale retry decision.
        model = self._transition(
            job_id,
            "fail",
            (JobStatus.PROCESSING,),
            values,
            JobModel.attempts == row.attempts,
        )

        summary = sanitize_error(error_message) or "unknown error"
        with self._log_context(model):
            if will_retry:
                self._job_log.append(
                    job_id,
                    JobLogLevel.WARN,
                    f"Attempt {row.attempts}/{row.max_attempts} failed, "
                    f"will retry: {summary}",
                    {"next_retry_at": next_retry_at.isoformat()},
                )
                logger.warning(
                    "job_attempt_failed",
                    extra={
                        "attempt": row.attempts,
                        "max_attempts": row.max_attempts,
                        "next_retry_at": next_retry_at,
                        "error": summary,
                    },
                )
            else:
                self._job_log.append(
                    job_id,
                    JobLogLevel.ERROR,
                    f"Job failed after {row.attempts} attempts: {summary}",
                )
                logger.error(
                    "job_failed",
                    extra={"attempts": row.attempts, "error": summary},
                )
        return will_retry

    def report_progress(
        self,
        job_id: UUID,
        progress: int | float,
        message: str | None = None,
    ) -> Job:
        """Write the progress side channel of a processing job's payload."""
        if (
            isinstance(progress, bool)
            or not isinstance(progress, (int, float))
            or not math.isfinite(progress)
        ):
            raise InvalidJobOptionsError(
                "progress", progress, "must be a finite number",
            )

        model = self._load(job_id)
        if model is None:
            raise JobNotFoundError(str(job_id))

        clamped = max(0, min(100, int(progress)))
        payload = dict(model.payload or {})
        payload["progress"] = clamped
        if message is not None:
            payload["progressMessage"] = message
        else:
            payload.pop("progressMessage", None)

        model = self._transition(
            job_id,
            "report progress for",
            (JobStatus.PROCESSING,),
            {"payload": payload, "updated_at": self._clock.now()},
        )
        with self._log_context(model):
            self._job_log.append(
                job_id,
                JobLogLevel.DEBUG,
                f"Progress {clamped}%" + (f": {message}" if message else ""),
            )
        return model.to_dto()

    # -------------------------------------------------------------------------
    # User-facing transitions
    # -------------------------------------------------------------------------

    def cancel_job(self, job_id: UUID) -> Job:
        """queued or processing -> cancelled.

        Cancelling a processing job only records the request; the worker
        finds out when its own complete/fail is rejected.
        """
        now = self._clock.now()
        model = self._transition(
            job_id,
            "cancel",
            (JobStatus.QUEUED, JobStatus.PROCESSING),
            {
                "status": JobStatus.CANCELLED.value,
                "cancelled_at": now,
                "next_retry_at": None,
                "updated_at": now,
            },
        )
        with self._log_context(model):
            self._job_log.append(job_id, JobLogLevel.WARN, "Job cancelled")
            logger.info("job_cancelled")
        return model.to_dto()

    def retry(self, job_id: UUID, caller: Caller) -> Job:
        """Create a new queued job from a failed one.

        The original row is never modified.  The new job copies type,
        payload, priority, max_attempts, owner and entity link, and points
        back through ``parent_job_id``.

        Raises:
            JobNotFoundError: Missing, or not visible to ``caller``.
            InvalidStateTransitionError: The job is not failed.
        """
        with (
            LogContext.bind(job_id=str(job_id), actor_id=str(caller.user_id)),
            self._session.begin_nested(),
        ):
            original = self._load(job_id, for_update=True)
            if original is None or not can_access(caller, original.owner_user_id):
                raise JobNotFoundError(str(job_id))
            if original.status != JobStatus.FAILED.value:
                raise InvalidStateTransitionError(
                    str(job_id),
                    original.status,
                    "retry",
                    "job is not in a failed state",
                )

            new_job = self.create_job(
                original.job_type,
                dict(original.payload or {}),
                priority=original.priority,
                owner_user_id=original.owner_user_id,
                max_attempts=original.max_attempts,
                entity_type=original.entity_type,
                entity_id=original.entity_id,
                parent_job_id=original.id,
                created_by=caller.user_id,
            )
            self._job_log.append(
                original.id,
                JobLogLevel.INFO,
                "Manual retry requested",
                {"new_job_id": str(new_job.job_id), "retried_by": str(caller.user_id)},
            )
            self._job_log.append(
                new_job.job_id,
                JobLogLevel.INFO,
                "Created as manual retry",
                {"parent_job_id": str(original.id)},
            )
            logger.info(
                "job_retried",
                extra={
                    "correlation_id": original.correlation_id,
                    "new_job_id": str(new_job.job_id),
                },
            )
        return new_job

    def bulk_retry(self, job_ids: Iterable[UUID], caller: Caller) -> BulkRetryResult:
        """Retry each id independently; one rejection never aborts the rest.

        Duplicate ids are retried once.  Ids are processed in sorted order
        so concurrent bulk retries lock shared jobs in the same sequence.
        Storage errors still propagate.
        """
        successful = 0
        failed = 0
        new_job_ids: list[UUID] = []
        errors: list[tuple[UUID, str]] = []

        with LogContext.bind(actor_id=str(caller.user_id)):
            for job_id in sorted(set(job_ids), key=str):
                try:
                    new_job = self.retry(job_id, caller)
                except JobError as exc:
                    failed += 1
                    errors.append((job_id, exc.code))
                    logger.info(
                        "bulk_retry_item_rejected",
                        extra={"job_id": str(job_id), "error_code": exc.code},
                    )
                    continue
                successful += 1
                new_job_ids.append(new_job.job_id)

            logger.info(
                "bulk_retry_completed",
                extra={"successful": successful, "failed": failed},
            )
        return BulkRetryResult(
            successful=successful,
            failed=failed,
            new_job_ids=tuple(new_job_ids),
            errors=tuple(errors),
        )

    # -------------------------------------------------------------------------
    # Job log
    # -------------------------------------------------------------------------

    def log_job_message(
        self,
        job_id: UUID,
        level: JobLogLevel | str,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> JobLogEntry:
        return self._job_log.append(job_id, level, message, data)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_job(self, job_id: UUID) -> Job:
        """Raises JobNotFoundError when absent."""
        model = self._load(job_id)
        if model is None:
            raise JobNotFoundError(str(job_id))
        return model.to_dto()

    def find_job(self, job_id: UUID) -> Job | None:
        model = self._load(job_id)
        return model.to_dto() if model is not None else None

    def find_by_correlation(self, correlation_id: str) -> Job | None:
        model = self._session.execute(
            select(JobModel).where(JobModel.correlation_id == correlation_id)
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def list_by_entity(
        self,
        entity_type: str,
        entity_id: Any,
        owner_user_id: UUID | None = None,
    ) -> tuple[Job, ...]:
        """Jobs linked to an entity, newest first."""
        stmt = select(JobModel).where(
            JobModel.entity_type == entity_type,
            JobModel.entity_id == str(entity_id),
        )
        if owner_user_id is not None:
            stmt = stmt.where(JobModel.owner_user_id == owner_user_id)
        models = self._session.execute(
            stmt.order_by(JobModel.created_at.desc(), JobModel.id)
        ).scalars().all()
        return tuple(m.to_dto() for m in models)

    def list_jobs(
        self,
        *,
        status: JobStatus | str | None = None,
        job_type: str | None = None,
        owner_user_id: UUID | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[Job, ...]:
        """Filtered jobs, newest first."""
        stmt = select(JobModel).where(*self._filters(status, job_type, owner_user_id))
        models = self._session.execute(
            stmt.order_by(JobModel.created_at.desc(), JobModel.id)
            .limit(max(0, limit))
            .offset(max(0, offset))
        ).scalars().all()
        return tuple(m.to_dto() for m in models)

    def count_jobs(
        self,
        *,
        status: JobStatus | str | None = None,
        job_type: str | None = None,
        owner_user_id: UUID | None = None,
    ) -> int:
        return self._session.execute(
            select(func.count(JobModel.id)).where(
                *self._filters(status, job_type, owner_user_id)
            )
        ).scalar_one()

    def count_by_status(
        self,
        *,
        job_type: str | None = None,
        owner_user_id: UUID | None = None,
    ) -> JobCounts:
        rows = self._session.execute(
            select(JobModel.status, func.count(JobModel.id))
            .where(*self._filters(None, job_type, owner_user_id))
            .group_by(JobModel.status)
        ).all()
        return JobCounts(**{status: count for status, count in rows})

    def next_queued_jobs(self, limit: int = 1) -> tuple[Job, ...]:
        """Queued jobs that are due now, in pick-up order: priority first,
        then oldest.  A job waiting out its retry backoff or its
        ``scheduled_for`` time is not due.
        """
        not_before = func.coalesce(JobModel.next_retry_at, JobModel.scheduled_for)
        models = self._session.execute(
            select(JobModel)
            .where(
                JobModel.status == JobStatus.QUEUED.value,
                or_(not_before.is_(None), not_before <= self._clock.now()),
            )
            .order_by(
                JobModel.priority_rank.desc(),
                JobModel.created_at,
                JobModel.id,
            )
            .limit(max(0, limit))
        ).scalars().all()
        return tuple(m.to_dto() for m in models)

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _existing_correlation(self, correlation_id: str) -> UUID | None:
        return self._session.execute(
            select(JobModel.id).where(JobModel.correlation_id == correlation_id)
        ).scalar_one_or_none()

    @staticmethod
    def _log_context(model: JobModel):
        return LogContext.bind(
            job_id=str(model.id), correlation_id=model.correlation_id,
        )

    def _load(self, job_id: UUID, *, for_update: bool = False) -> JobModel | None:
        stmt = (
            select(JobModel)
            .where(JobModel.id == job_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update()
        return self._session.execute(stmt).scalar_one_or_none()

    def _transition(
        self,
        job_id: UUID,
        operation: str,
        expected: tuple[JobStatus, ...],
        values: dict[str, Any],
        *conditions: Any,
    ) -> JobModel:
        """Compare-and-set UPDATE; returns the refreshed row."""
        result = self._session.execute(
            update(JobModel)
            .where(
                JobModel.id == job_id,
                JobModel.status.in_([s.value for s in expected]),
                *conditions,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            current = self._session.execute(
                select(JobModel.status).where(JobModel.id == job_id)
            ).scalar_one_or_none()
            if current is None:
                raise JobNotFoundError(str(job_id))
            logger.info(
                "job_transition_rejected",
                extra={
                    "job_id": str(job_id),
                    "operation": operation,
                    "current_status": current,
                },
            )
            raise InvalidStateTransitionError(str(job_id), current, operation)

        model = self._load(job_id)
        assert model is not None
        return model

    @staticmethod
    def _filters(
        status: JobStatus | str | None,
        job_type: str | None,
        owner_user_id: UUID | None,
    ) -> list[Any]:
        clauses: list[Any] = []
        if status is not None:
            try:
                status_value = JobStatus(status).value
            except ValueError:
                raise InvalidJobOptionsError(
                    "status",
                    status,
                    f"must be one of {', '.join(s.value for s in JobStatus)}",
                ) from None
            clauses.append(JobModel.status == status_value)
        if job_type is not None:
            clauses.append(JobModel.job_type == job_type)
        if owner_user_id is not None:
            clauses.append(JobModel.owner_user_id == owner_user_id)
        return clauses
