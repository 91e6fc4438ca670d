"""
CronScheduler -- in-process cron trigger for scheduled tasks.

Contract:
    Once per tick, evaluates every active, unpaused ScheduledTask against
    local wall-clock time, asks the capability gate for permission, and
    hands authorized runs to the job queue as ordinary jobs.

Architecture: kiisha_jobs/services.  Uses kiisha_jobs.domain.cron for pure
    evaluation, kiisha_jobs.services.capability for authorization and
    kiisha_jobs.services.lifecycle for enqueueing.

Invariants enforced:
    - All timestamps from the injected Clock.
    - A task fires at most once per debounce window.
    - A denial or enqueue failure is recorded on the task and never stops
      the scan; the run counts as failed.
    - ``consecutive_failures`` reaching the auto-pause threshold pauses the
      task.  Only an outside actor unpauses it.
    - Ticks never overlap.
    - Graceful shutdown: the stop signal is checked between tasks.
"""

from __future__ import annotations

import hashlib
import threading
from datetime import datetime
from typing import Callable
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.orm import Session

from kiisha_kernel.config import JobQueueSettings
from kiisha_kernel.domain.clock import Clock, SystemClock
from kiisha_kernel.exceptions import CapabilityDeniedError, DuplicateCorrelationIdError
from kiisha_kernel.logging_config import LogContext, get_logger

from kiisha_jobs.domain.cron import is_due
from kiisha_jobs.domain.types import ScheduleRunStatus, TickResult
from kiisha_jobs.models.schedule import ScheduledTaskModel
from kiisha_jobs.services.capability import CapabilityRegistry
from kiisha_jobs.services.lifecycle import JobLifecycleManager

logger = get_logger("jobs.scheduler")

SCHEDULED_TASK_ENTITY = "scheduled_task"

_MAX_ERROR_LENGTH = 2000


def _elapsed_seconds(now: datetime, then: datetime) -> float:
    # SQLite hands back naive datetimes; compare in the clock's frame.
    if then.tzinfo is None and now.tzinfo is not None:
        then = then.replace(tzinfo=now.tzinfo)
    elif then.tzinfo is not None and now.tzinfo is None:
        then = then.replace(tzinfo=None)
    return (now - then).total_seconds()


def run_correlation_id(schedule_id: str, local_now: datetime) -> str:
    """Correlation id shared by every attempt to fire ``schedule_id`` in
    the same minute, so a second scheduler process cannot double-enqueue.
    """
    minute = local_now.replace(second=0, microsecond=0)
    digest = hashlib.sha1(schedule_id.encode("utf-8")).hexdigest()[:9]
    return f"job_{int(minute.timestamp() * 1000)}_{digest}"


class CronScheduler:
    """Polling cron scheduler for ScheduledTask rows.

    Contract:
        - ``tick()`` evaluates all runnable tasks once and commits the run
          bookkeeping.  Public for testing and ``--once`` runs.
        - ``start()`` / ``stop()`` for background thread operation.

    Non-goals:
        - NOT a distributed scheduler (no leader election).
        - Does NOT run the enqueued work -- workers pick up the jobs.
        - Does NOT catch up missed minutes.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        lifecycle_factory: Callable[[Session], JobLifecycleManager],
        capability_registry: CapabilityRegistry,
        clock: Clock | None = None,
        settings: JobQueueSettings | None = None,
    ):
        self._session_factory = session_factory
        self._lifecycle_factory = lifecycle_factory
        self._capabilities = capability_registry
        self._clock = clock or SystemClock()
        self._settings = settings or JobQueueSettings()
        self._tz = (
            ZoneInfo(self._settings.scheduler_timezone)
            if self._settings.scheduler_timezone
            else None
        )
        self._stop_event = threading.Event()
        self._tick_lock = threading.Lock()
        self._thread: threading.Thread | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def tick(self) -> TickResult:
        """Evaluate and fire due tasks.

        A storage failure rolls the whole tick back and returns an empty
        TickResult; the next tick tries again.
        """
        with self._tick_lock:
            session = self._session_factory()
            try:
                result = self._evaluate_tasks(session)
                session.commit()
                return result
            except Exception:
                session.rollback()
                logger.exception("scheduler_tick_failed")
                return TickResult()
            finally:
                session.close()

    def start(self) -> None:
        """Start the scheduler in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="cron-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info(
            "scheduler_started",
            extra={"tick_interval": self._settings.tick_interval_seconds},
        )

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the current tick to finish.

        Args:
            timeout: Max seconds to wait for the thread to finish.
        """
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("scheduler_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("scheduler_tick_exception")
            self._stop_event.wait(timeout=self._settings.tick_interval_seconds)

    def _local_time(self, now: datetime) -> datetime:
        if now.tzinfo is None:
            return now
        return now.astimezone(self._tz)

    def _evaluate_tasks(self, session: Session) -> TickResult:
        now = self._clock.now()
        local_now = self._local_time(now)

        tasks = session.execute(
            select(ScheduledTaskModel)
            .where(
                ScheduledTaskModel.is_active == True,  # noqa: E712
                ScheduledTaskModel.is_paused == False,  # noqa: E712
            )
            .order_by(ScheduledTaskModel.created_at, ScheduledTaskModel.id)
        ).scalars().all()

        counts = {
            "evaluated": 0,
            "fired": 0,
            "denied": 0,
            "failed": 0,
            "paused": 0,
            "skipped": 0,
        }

        for task in tasks:
            if self._stop_event.is_set():
                break

            counts["evaluated"] += 1
            if not is_due(task.cron_expression, local_now):
                continue

            if (
                task.last_run_at is not None
                and _elapsed_seconds(now, task.last_run_at)
                < self._settings.debounce_seconds
            ):
                counts["skipped"] += 1
                logger.debug(
                    "schedule_debounced",
                    extra={"schedule_id": task.schedule_id},
                )
                continue

            with LogContext.bind(
                schedule_id=task.schedule_id, actor_id=str(task.created_by_id),
            ):
                outcome = self._fire(session, task, now, local_now)
            counts[outcome] += 1
            if task.is_paused:
                counts["paused"] += 1

        result = TickResult(**counts)
        logger.info(
            "scheduler_tick_completed",
            extra={
                "evaluated": result.evaluated,
                "fired": result.fired,
                "denied": result.denied,
                "failed": result.failed,
                "paused": result.paused,
                "skipped": result.skipped,
            },
        )
        return result

    def _fire(
        self,
        session: Session,
        task: ScheduledTaskModel,
        now: datetime,
        local_now: datetime,
    ) -> str:
        """Gate and enqueue one due task.  Returns the TickResult counter."""
        try:
            decision = self._capabilities.check(
                task.organization_id, task.created_by_id, task.capability_id,
            )
        except Exception as exc:
            logger.exception(
                "schedule_capability_check_failed",
                extra={"schedule_id": task.schedule_id},
            )
            self._record_failure(task, now, f"Capability check failed: {exc}")
            return "failed"

        if not decision.allowed:
            denial = CapabilityDeniedError(
                task.schedule_id, task.capability_id, decision.reason,
            )
            logger.warning(
                "schedule_capability_denied",
                extra={
                    "schedule_id": task.schedule_id,
                    "capability_id": task.capability_id,
                    "reason": decision.reason,
                    "error_code": denial.code,
                },
            )
            self._record_failure(task, now, str(denial))
            return "denied"

        savepoint = session.begin_nested()
        try:
            lifecycle = self._lifecycle_factory(session)
            job = lifecycle.create_job(
                self._settings.scheduled_job_type,
                self._build_payload(task),
                owner_user_id=task.created_by_id,
                correlation_id=run_correlation_id(task.schedule_id, local_now),
                entity_type=SCHEDULED_TASK_ENTITY,
                entity_id=task.schedule_id,
                created_by=task.created_by_id,
            )
            savepoint.commit()
        except DuplicateCorrelationIdError:
            savepoint.rollback()
            logger.info(
                "schedule_already_fired",
                extra={"schedule_id": task.schedule_id},
            )
            return "skipped"
        except Exception as exc:
            savepoint.rollback()
            logger.exception(
                "schedule_enqueue_failed",
                extra={"schedule_id": task.schedule_id},
            )
            self._record_failure(task, now, str(exc) or type(exc).__name__)
            return "failed"

        task.last_run_at = now
        task.last_run_status = ScheduleRunStatus.SUCCESS.value
        task.last_run_error = None
        task.total_runs = (task.total_runs or 0) + 1
        task.consecutive_failures = 0

        logger.info(
            "schedule_fired",
            extra={
                "schedule_id": task.schedule_id,
                "job_id": str(job.job_id),
                "correlation_id": job.correlation_id,
            },
        )
        return "fired"

    def _record_failure(
        self, task: ScheduledTaskModel, now: datetime, message: str,
    ) -> None:
        task.last_run_at = now
        task.last_run_status = ScheduleRunStatus.FAILED.value
        task.last_run_error = message[:_MAX_ERROR_LENGTH]
        task.consecutive_failures = (task.consecutive_failures or 0) + 1

        if task.consecutive_failures >= self._settings.auto_pause_threshold:
            task.is_paused = True
            logger.warning(
                "schedule_auto_paused",
                extra={
                    "schedule_id": task.schedule_id,
                    "consecutive_failures": task.consecutive_failures,
                },
            )

    @staticmethod
    def _build_payload(task: ScheduledTaskModel) -> dict:
        return {
            "user_id": str(task.created_by_id),
            "type": SCHEDULED_TASK_ENTITY,
            "title": f"Scheduled: {task.name}",
            "message": f"Scheduled task '{task.name}' is due",
            "data": {
                "organization_id": str(task.organization_id),
                "schedule_id": task.schedule_id,
                "task_spec": task.task_spec or {},
            },
        }
