"""
kiisha_jobs.domain.types -- Pure frozen dataclasses for the job subsystem.

ZERO I/O.  Frozen dataclasses with enum status fields and tuples for
immutable collections.  ORM models convert to these via ``to_dto()``; no
caller outside the services ever sees a live ORM row.

Invariants carried by the types:
    - Job.attempts <= Job.max_attempts at rest.
    - TERMINAL_STATUSES are never left once entered.
    - Job.correlation_id is assigned once at creation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID


# =============================================================================
# Status enums
# =============================================================================


class JobStatus(str, Enum):
    """Job lifecycle status."""

    QUEUED = "queued"  # Waiting for a worker (fresh or after in-place retry)
    PROCESSING = "processing"  # A worker has started it
    COMPLETED = "completed"
    FAILED = "failed"  # Attempts exhausted; eligible for manual retry only
    CANCELLED = "cancelled"


TERMINAL_STATUSES: frozenset[JobStatus] = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}
)

CANCELLABLE_STATUSES: frozenset[JobStatus] = frozenset(
    {JobStatus.QUEUED, JobStatus.PROCESSING}
)


class JobPriority(str, Enum):
    """Queue priority.  ``rank`` orders workers' pick-up (higher first)."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    JobPriority.LOW: 0,
    JobPriority.NORMAL: 1,
    JobPriority.HIGH: 2,
    JobPriority.CRITICAL: 3,
}


class JobLogLevel(str, Enum):
    INFO = "info"
    DEBUG = "debug"
    WARN = "warn"
    ERROR = "error"


class ScheduleRunStatus(str, Enum):
    """Outcome of the scheduler's last handoff for a ScheduledTask."""

    SUCCESS = "success"
    FAILED = "failed"


# =============================================================================
# Job DTOs
# =============================================================================


@dataclass(frozen=True)
class Job:
    """Immutable snapshot of a job row."""

    job_id: UUID
    job_type: str  # Open namespace owned by callers (e.g. "document_ingestion")
    status: JobStatus
    correlation_id: str
    payload: dict[str, Any] = field(default_factory=dict)
    priority: JobPriority = JobPriority.NORMAL
    attempts: int = 0
    max_attempts: int = 3
    owner_user_id: UUID | None = None
    entity_type: str | None = None
    entity_id: str | None = None
    parent_job_id: UUID | None = None
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    failed_at: datetime | None = None
    cancelled_at: datetime | None = None
    result: dict[str, Any] | None = None
    error: str | None = None
    scheduled_for: datetime | None = None  # Not picked up before this
    next_retry_at: datetime | None = None  # Backoff after a failed attempt

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass(frozen=True)
class JobLogEntry:
    """Immutable job log entry.  There is no update or delete counterpart."""

    entry_id: UUID
    job_id: UUID
    seq: int
    level: JobLogLevel
    message: str
    data: dict[str, Any] | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class BulkRetryResult:
    """Result of ``bulk_retry``: per-id outcomes never abort the batch."""

    successful: int
    failed: int
    new_job_ids: tuple[UUID, ...] = ()
    errors: tuple[tuple[UUID, str], ...] = ()  # (job_id, error code)


@dataclass(frozen=True)
class JobCounts:
    """Per-status job counts for the admin dashboard."""

    queued: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0

    @property
    def total(self) -> int:
        return (
            self.queued
            + self.processing
            + self.completed
            + self.failed
            + self.cancelled
        )


# =============================================================================
# Schedule DTOs
# =============================================================================


@dataclass(frozen=True)
class ScheduledTask:
    """Immutable snapshot of a cron-triggered task definition.

    Owned by an external collaborator; the scheduler only updates the
    run-bookkeeping fields.
    """

    task_id: UUID
    schedule_id: str
    name: str
    cron_expression: str
    organization_id: UUID
    created_by: UUID
    capability_id: str
    task_spec: dict[str, Any] = field(default_factory=dict)
    is_active: bool = True
    is_paused: bool = False
    last_run_at: datetime | None = None
    last_run_status: ScheduleRunStatus | None = None
    last_run_error: str | None = None
    consecutive_failures: int = 0
    total_runs: int = 0


@dataclass(frozen=True)
class TickResult:
    """Counts from one scheduler tick."""

    evaluated: int = 0
    fired: int = 0
    denied: int = 0
    failed: int = 0
    paused: int = 0
    skipped: int = 0  # Due but debounced
