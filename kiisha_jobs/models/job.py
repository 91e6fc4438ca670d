"""
ORM models for the job store and job log.

Contract:
    JobModel persists the job lifecycle row; JobLogModel persists the
    append-only per-job event stream.  Each has ``to_dto()`` and JobModel
    has ``from_dto()`` for round-trips.

Architecture: kiisha_jobs/models.  Imports from kiisha_kernel.db.base only.

Invariants enforced:
    - ``correlation_id`` is UNIQUE and never updated after insert.
    - JobLogModel rows are only ever inserted (no service issues UPDATE or
      DELETE against ``job_logs``).
    - ``(job_id, seq)`` is UNIQUE; ``seq`` is drawn from the owning job's
      ``log_seq`` counter.
    - Job rows are only mutated through the lifecycle manager's conditional
      updates.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from kiisha_kernel.db.base import Base, TrackedBase, UUIDString

if TYPE_CHECKING:
    from kiisha_jobs.domain.types import Job, JobLogEntry


class JobModel(TrackedBase):
    """Persistent job row."""

    __tablename__ = "jobs"

    __table_args__ = (
        Index("ix_jobs_status_priority", "status", "priority_rank", "created_at"),
        Index("ix_jobs_owner_user_id", "owner_user_id"),
        Index("ix_jobs_entity", "entity_type", "entity_id"),
        Index("ix_jobs_type", "type"),
    )

    job_type: Mapped[str] = mapped_column("type", String(100), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    priority: Mapped[str] = mapped_column(String(20), nullable=False)
    # Denormalized for ORDER BY in next_queued_jobs()
    priority_rank: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    payload: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_attempts: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    correlation_id: Mapped[str] = mapped_column(
        String(100), nullable=False, unique=True,
    )
    owner_user_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    entity_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    parent_job_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("jobs.id"), nullable=True,
    )
    started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    failed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    cancelled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    result: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    scheduled_for: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    next_retry_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    # Last seq handed to this job's log entries
    log_seq: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    def to_dto(self) -> Job:
        from kiisha_jobs.domain.types import Job, JobPriority, JobStatus

        return Job(
            job_id=self.id,
            job_type=self.job_type,
            status=JobStatus(self.status),
            correlation_id=self.correlation_id,
            payload=self.payload or {},
            priority=JobPriority(self.priority),
            attempts=self.attempts,
            max_attempts=self.max_attempts,
            owner_user_id=self.owner_user_id,
            entity_type=self.entity_type,
            entity_id=self.entity_id,
            parent_job_id=self.parent_job_id,
            created_at=self.created_at,
            started_at=self.started_at,
            completed_at=self.completed_at,
            failed_at=self.failed_at,
            cancelled_at=self.cancelled_at,
            result=self.result,
            error=self.error,
            scheduled_for=self.scheduled_for,
            next_retry_at=self.next_retry_at,
        )

    @classmethod
    def from_dto(cls, dto: Job, created_by_id: UUID) -> JobModel:
        return cls(
            id=dto.job_id,
            job_type=dto.job_type,
            status=dto.status.value,
            priority=dto.priority.value,
            priority_rank=dto.priority.rank,
            payload=dto.payload,
            attempts=dto.attempts,
            max_attempts=dto.max_attempts,
            correlation_id=dto.correlation_id,
            owner_user_id=dto.owner_user_id,
            entity_type=dto.entity_type,
            entity_id=dto.entity_id,
            parent_job_id=dto.parent_job_id,
            started_at=dto.started_at,
            completed_at=dto.completed_at,
            failed_at=dto.failed_at,
            cancelled_at=dto.cancelled_at,
            result=dto.result,
            error=dto.error,
            scheduled_for=dto.scheduled_for,
            next_retry_at=dto.next_retry_at,
            log_seq=0,
            created_by_id=created_by_id,
            updated_by_id=None,
        )


class JobLogModel(Base):
    """Append-only job log entry."""

    __tablename__ = "job_logs"

    __table_args__ = (
        UniqueConstraint("job_id", "seq", name="uq_job_logs_job_seq"),
    )

    job_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("jobs.id"),
        nullable=False,
    )
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    level: Mapped[str] = mapped_column(String(10), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )

    def to_dto(self) -> JobLogEntry:
        from kiisha_jobs.domain.types import JobLogEntry, JobLogLevel

        return JobLogEntry(
            entry_id=self.id,
            job_id=self.job_id,
            seq=self.seq,
            level=JobLogLevel(self.level),
            message=self.message,
            data=self.data,
            created_at=self.created_at,
        )
