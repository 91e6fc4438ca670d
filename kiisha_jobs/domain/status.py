"""
Status projection -- the caller-facing view of a job.

Contract:
    ``project_status(job)`` turns a ``Job`` snapshot into a
    ``JobStatusView``: the stable contract that routers, notification bells
    and dashboards render.  Storage fields can change without changing this
    view.

    PURE.  Progress is read opportunistically from the payload side channel
    because the work itself happens out of process.

Guarantees:
    - ``is_retryable`` is exactly ``status == failed``.  A terminally failed
      job is always eligible for manual retry even though it will never be
      retried in place again.
    - ``user_friendly_error`` never contains the stored error text; it is a
      category message chosen by pattern.
    - ``error`` carries only the first line of the stored message, capped at
      ``MAX_ERROR_LENGTH`` characters, so tracebacks never reach callers.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping
from uuid import UUID

from kiisha_jobs.domain.types import Job, JobStatus

MAX_ERROR_LENGTH = 500

JOB_DISPLAY_NAMES: dict[str, str] = {
    "document_ingestion": "Document Upload",
    "ai_extraction": "AI Analysis",
    "document_categorization": "Document Categorization",
    "file_processing": "File Processing",
    "file_conversion": "File Conversion",
    "email_send": "Email Delivery",
    "notification_send": "Notification",
    "webhook_delivery": "Webhook Delivery",
    "whatsapp_ingestion": "WhatsApp Attachment",
    "email_ingestion": "Email Attachment",
    "report_generation": "Report Generation",
    "data_export": "Data Export",
}

GENERIC_ERROR_MESSAGE = (
    "Something went wrong while processing this job. You can retry it."
)

# First match wins; patterns are checked against the lower-cased error.
_ERROR_CATEGORIES: tuple[tuple[re.Pattern[str], str], ...] = (
    (
        re.compile(r"timed? ?out|timeout|deadline exceeded"),
        "The operation took too long to complete. Please try again.",
    ),
    (
        re.compile(r"connection|network|unreachable|econn|dns"),
        "A network problem interrupted processing. Please try again.",
    ),
    (
        re.compile(r"rate limit|too many requests|\b429\b|quota"),
        "The service is busy right now. Please try again in a few minutes.",
    ),
    (
        re.compile(r"permission|forbidden|unauthori[sz]ed|access denied|\b40[13]\b"),
        "Processing was not permitted. Check your access and try again.",
    ),
    (
        re.compile(r"not found|no such|missing|\b404\b"),
        "A file or record needed for this job could not be found.",
    ),
    (
        re.compile(r"invalid|malformed|unsupported|corrupt|parse"),
        "The input could not be processed. Check the file or data and try again.",
    ),
    (
        re.compile(r"database|sql|storage|disk|deadlock"),
        "A temporary storage problem occurred. Please try again.",
    ),
)


@dataclass(frozen=True)
class JobStatusView:
    """Caller-facing job snapshot."""

    id: UUID
    type: str
    status: JobStatus
    priority: str
    display_status: str
    display_name: str
    correlation_id: str
    attempts: int
    max_attempts: int
    progress: int
    progress_message: str | None
    is_retryable: bool
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    failed_at: datetime | None = None
    cancelled_at: datetime | None = None
    result: dict[str, Any] | None = None
    error: str | None = None
    user_friendly_error: str | None = None
    owner_user_id: UUID | None = None
    entity_type: str | None = None
    entity_id: str | None = None
    parent_job_id: UUID | None = None
    scheduled_for: datetime | None = None
    next_retry_at: datetime | None = None


def display_name(job_type: str) -> str:
    """Human label for a job type; unknown types are title-cased."""
    known = JOB_DISPLAY_NAMES.get(job_type)
    if known is not None:
        return known
    return job_type.replace("_", " ").replace(".", " ").strip().title() or job_type


def display_status(status: JobStatus, attempts: int, max_attempts: int) -> str:
    if status == JobStatus.QUEUED:
        if attempts == 0:
            return "Waiting in queue"
        return f"Retrying ({attempts + 1}/{max_attempts})"
    if status == JobStatus.PROCESSING:
        if attempts <= 1:
            return "Processing..."
        return f"Processing (attempt {attempts}/{max_attempts})"
    if status == JobStatus.COMPLETED:
        return "Completed"
    if status == JobStatus.FAILED:
        return "Failed"
    return "Cancelled"


def progress_percent(status: JobStatus, payload: Mapping[str, Any] | None) -> int:
    """0-100 progress.  Processing jobs report the payload value, else 50."""
    if status == JobStatus.COMPLETED:
        return 100
    if status != JobStatus.PROCESSING:
        return 0
    raw = (payload or {}).get("progress")
    if (
        isinstance(raw, bool)
        or not isinstance(raw, (int, float))
        or not math.isfinite(raw)
    ):
        return 50
    return max(0, min(100, int(raw)))


def sanitize_error(error: str | None) -> str | None:
    """First line of the stored error, capped at MAX_ERROR_LENGTH."""
    if not error:
        return None
    first_line = error.strip().splitlines()[0] if error.strip() else ""
    if len(first_line) > MAX_ERROR_LENGTH:
        first_line = first_line[: MAX_ERROR_LENGTH - 3] + "..."
    return first_line or None


def user_friendly_error(error: str | None) -> str | None:
    if not error:
        return None
    lowered = error.lower()
    for pattern, message in _ERROR_CATEGORIES:
        if pattern.search(lowered):
            return message
    return GENERIC_ERROR_MESSAGE


def project_status(job: Job) -> JobStatusView:
    """Build the caller-facing view of ``job``."""
    payload = job.payload or {}
    progress_message = None
    if job.status == JobStatus.PROCESSING:
        msg = payload.get("progressMessage")
        progress_message = str(msg) if msg is not None else None

    return JobStatusView(
        id=job.job_id,
        type=job.job_type,
        status=job.status,
        priority=job.priority.value,
        display_status=display_status(job.status, job.attempts, job.max_attempts),
        display_name=display_name(job.job_type),
        correlation_id=job.correlation_id,
        attempts=job.attempts,
        max_attempts=job.max_attempts,
        progress=progress_percent(job.status, payload),
        progress_message=progress_message,
        is_retryable=job.status == JobStatus.FAILED,
        created_at=job.created_at,
        started_at=job.started_at,
        completed_at=job.completed_at,
        failed_at=job.failed_at,
        cancelled_at=job.cancelled_at,
        result=job.result,
        error=sanitize_error(job.error),
        user_friendly_error=user_friendly_error(job.error),
        owner_user_id=job.owner_user_id,
        entity_type=job.entity_type,
        entity_id=job.entity_id,
        parent_job_id=job.parent_job_id,
        scheduled_for=job.scheduled_for,
        next_retry_at=job.next_retry_at,
    )
