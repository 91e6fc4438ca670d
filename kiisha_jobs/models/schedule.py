"""
ORM model for cron-triggered scheduled tasks.

Contract:
    Rows are created and edited by the task-management surface outside this
    package.  The cron scheduler reads them and writes only the
    run-bookkeeping columns (last_run_at, last_run_status, last_run_error,
    consecutive_failures, total_runs, is_paused).

Architecture: kiisha_jobs/models.  Imports from kiisha_kernel.db.base only.
    ``created_by_id`` (from TrackedBase) is the task's creator and is the
    actor passed to the capability gate.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import JSON, Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from kiisha_kernel.db.base import TrackedBase, UUIDString

if TYPE_CHECKING:
    from kiisha_jobs.domain.types import ScheduledTask


class ScheduledTaskModel(TrackedBase):
    """Scheduled task definition plus scheduler run bookkeeping."""

    __tablename__ = "scheduled_tasks"

    __table_args__ = (
        Index("ix_scheduled_tasks_runnable", "is_active", "is_paused"),
        Index("ix_scheduled_tasks_organization", "organization_id"),
    )

    schedule_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    cron_expression: Mapped[str] = mapped_column(String(100), nullable=False)
    organization_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    capability_id: Mapped[str] = mapped_column(String(100), nullable=False)
    task_spec: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_paused: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_run_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    last_run_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    last_run_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    consecutive_failures: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_runs: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    def to_dto(self) -> ScheduledTask:
        from kiisha_jobs.domain.types import ScheduledTask, ScheduleRunStatus

        return ScheduledTask(
            task_id=self.id,
            schedule_id=self.schedule_id,
            name=self.name,
            cron_expression=self.cron_expression,
            organization_id=self.organization_id,
            created_by=self.created_by_id,
            capability_id=self.capability_id,
            task_spec=self.task_spec or {},
            is_active=self.is_active,
            is_paused=self.is_paused,
            last_run_at=self.last_run_at,
            last_run_status=(
                ScheduleRunStatus(self.last_run_status)
                if self.last_run_status
                else None
            ),
            last_run_error=self.last_run_error,
            consecutive_failures=self.consecutive_failures or 0,
            total_runs=self.total_runs or 0,
        )

    @classmethod
    def from_dto(cls, dto: ScheduledTask) -> ScheduledTaskModel:
        return cls(
            id=dto.task_id,
            schedule_id=dto.schedule_id,
            name=dto.name,
            cron_expression=dto.cron_expression,
            organization_id=dto.organization_id,
            capability_id=dto.capability_id,
            task_spec=dto.task_spec or None,
            is_active=dto.is_active,
            is_paused=dto.is_paused,
            last_run_at=dto.last_run_at,
            last_run_status=(
                dto.last_run_status.value if dto.last_run_status else None
            ),
            last_run_error=dto.last_run_error,
            consecutive_failures=dto.consecutive_failures,
            total_runs=dto.total_runs,
            created_by_id=dto.created_by,
            updated_by_id=None,
        )
