"""
JobLog -- append-only per-job event stream.

Contract:
    ``append()`` records one entry against an existing job; ``entries()``
    returns a job's entries in creation order.

Architecture: kiisha_jobs/services.  Imports from kiisha_jobs.domain,
    kiisha_jobs.models and the kernel clock.

Invariants enforced:
    - Entries are only ever inserted.  There is no update or delete path.
    - Creation order is the per-job ``seq`` taken from the job row's own
      counter, never the timestamp, so two entries written in the same clock
      tick still sort deterministically.  Appends lock only their own job
      row; there is no table-wide counter.
    - Levels are restricted to JobLogLevel.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from kiisha_kernel.domain.clock import Clock, SystemClock
from kiisha_kernel.exceptions import InvalidLogLevelError, JobNotFoundError
from kiisha_kernel.logging_config import get_logger

from kiisha_jobs.domain.types import JobLogEntry, JobLogLevel
from kiisha_jobs.models.job import JobLogModel, JobModel

logger = get_logger("jobs.log")

_ALLOWED_LEVELS = tuple(level.value for level in JobLogLevel)


def coerce_level(level: JobLogLevel | str) -> JobLogLevel:
    """Return ``level`` as a JobLogLevel or raise InvalidLogLevelError."""
    if isinstance(level, JobLogLevel):
        return level
    try:
        return JobLogLevel(str(level).lower())
    except ValueError:
        raise InvalidLogLevelError(str(level), _ALLOWED_LEVELS) from None


class JobLog:
    """Append-only job log.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT enforce visibility -- the access guard does.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()

    def append(
        self,
        job_id: UUID,
        level: JobLogLevel | str,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> JobLogEntry:
        """Append one entry to ``job_id``'s log.

        Raises:
            InvalidLogLevelError: If ``level`` is not a JobLogLevel.
            JobNotFoundError: If the job does not exist.
        """
        log_level = coerce_level(level)

        seq = self._next_seq(job_id)

        model = JobLogModel(
            id=uuid4(),
            job_id=job_id,
            seq=seq,
            level=log_level.value,
            message=message,
            data=data,
            created_at=self._clock.now(),
        )
        self._session.add(model)
        self._session.flush()

        logger.debug(
            "job_log_appended",
            extra={
                "job_id": str(job_id),
                "log_level": log_level.value,
                "seq": model.seq,
            },
        )
        return model.to_dto()

    def entries(self, job_id: UUID) -> tuple[JobLogEntry, ...]:
        """All entries for ``job_id`` in creation order."""
        models = self._session.execute(
            select(JobLogModel)
            .where(JobLogModel.job_id == job_id)
            .order_by(JobLogModel.seq)
        ).scalars().all()
        return tuple(m.to_dto() for m in models)

    def _next_seq(self, job_id: UUID) -> int:
        # Bumping the counter doubles as the existence check.  updated_at is
        # pinned so a log line does not count as a change to the job.
        result = self._session.execute(
            update(JobModel)
            .where(JobModel.id == job_id)
            .values(
                log_seq=JobModel.log_seq + 1,
                updated_at=JobModel.updated_at,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise JobNotFoundError(str(job_id))
        return self._session.execute(
            select(JobModel.log_seq).where(JobModel.id == job_id)
        ).scalar_one()
