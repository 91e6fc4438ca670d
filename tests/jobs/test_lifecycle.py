"""
Tests for kiisha_jobs.services.lifecycle -- JobLifecycleManager.

Validates creation defaults, the compare-and-set transitions, in-place
retry via fail_job, manual retry / bulk retry, progress reporting and the
queries.  Uses in-memory SQLite with real ORM models.
"""

import re
from datetime import datetime, timedelta
from uuid import uuid4

import pytest
from sqlalchemy import select

from kiisha_kernel.config import JobQueueSettings
from kiisha_kernel.exceptions import (
    DuplicateCorrelationIdError,
    InvalidJobOptionsError,
    InvalidLogLevelError,
    InvalidStateTransitionError,
    JobNotFoundError,
)

from kiisha_jobs.domain.types import JobLogLevel, JobPriority, JobStatus
from kiisha_jobs.models.job import JobModel
from kiisha_jobs.services.lifecycle import (
    SYSTEM_ACTOR_ID,
    JobLifecycleManager,
    generate_correlation_id,
)

CORRELATION_RE = re.compile(r"^job_\d+_[a-z0-9]+$")


def _failed_job(lifecycle, owner_user_id=None, max_attempts=1):
    job = lifecycle.create_job(
        "ai_extraction",
        {"documentId": 7},
        owner_user_id=owner_user_id,
        max_attempts=max_attempts,
    )
    for _ in range(max_attempts):
        lifecycle.start_job(job.job_id)
        lifecycle.fail_job(job.job_id, "Model timeout")
    return lifecycle.get_job(job.job_id)


# =============================================================================
# create_job
# =============================================================================


class TestCreateJob:
    def test_defaults(self, lifecycle, clock):
        job = lifecycle.create_job("document_ingestion", {"fileUploadId": 123})
        assert job.status == JobStatus.QUEUED
        assert job.priority == JobPriority.NORMAL
        assert job.attempts == 0
        assert job.max_attempts == 3
        assert job.payload == {"fileUploadId": 123}
        assert job.created_at == clock.now()
        assert CORRELATION_RE.match(job.correlation_id)

    def test_options(self, lifecycle, owner):
        job = lifecycle.create_job(
            "report_generation",
            priority="critical",
            owner_user_id=owner.user_id,
            correlation_id="report-2026-02",
            max_attempts=5,
            entity_type="project",
            entity_id=42,
        )
        assert job.priority == JobPriority.CRITICAL
        assert job.owner_user_id == owner.user_id
        assert job.correlation_id == "report-2026-02"
        assert job.max_attempts == 5
        assert job.entity_type == "project"
        assert job.entity_id == "42"

    def test_default_max_attempts_from_settings(self, db_session, clock):
        lifecycle = JobLifecycleManager(
            db_session, clock=clock, settings=JobQueueSettings(default_max_attempts=7),
        )
        assert lifecycle.create_job("email_send").max_attempts == 7

    def test_correlation_ids_unique(self, lifecycle):
        a = lifecycle.create_job("email_send")
        b = lifecycle.create_job("email_send")
        assert a.correlation_id != b.correlation_id

    def test_duplicate_correlation_rejected(self, lifecycle):
        lifecycle.create_job("email_send", correlation_id="dup-1")
        with pytest.raises(DuplicateCorrelationIdError):
            lifecycle.create_job("email_send", correlation_id="dup-1")

    @pytest.mark.parametrize("max_attempts", [0, -1, True, "3"])
    def test_invalid_max_attempts(self, lifecycle, max_attempts):
        with pytest.raises(InvalidJobOptionsError):
            lifecycle.create_job("email_send", max_attempts=max_attempts)

    def test_unknown_priority(self, lifecycle):
        with pytest.raises(InvalidJobOptionsError):
            lifecycle.create_job("email_send", priority="urgent")

    def test_empty_type(self, lifecycle):
        with pytest.raises(InvalidJobOptionsError):
            lifecycle.create_job("")

    def test_creator_defaults(self, lifecycle, db_session, owner):
        system_job = lifecycle.create_job("webhook_delivery")
        owned_job = lifecycle.create_job("webhook_delivery", owner_user_id=owner.user_id)
        assert db_session.get(JobModel, system_job.job_id).created_by_id == SYSTEM_ACTOR_ID
        assert db_session.get(JobModel, owned_job.job_id).created_by_id == owner.user_id

    def test_logs_creation(self, lifecycle, job_log, captured_logs):
        job = lifecycle.create_job("email_send")
        entries = job_log.entries(job.job_id)
        assert [e.message for e in entries] == ["Job created"]
        assert any(
            r["message"] == "job_created" and r["job_id"] == str(job.job_id)
            for r in captured_logs()
        )

    def test_generate_correlation_id_format(self, clock):
        assert CORRELATION_RE.match(generate_correlation_id(clock.now()))

    def test_scheduled_for_stored(self, lifecycle, clock):
        later = datetime(2026, 2, 1, 13, 0, 0)
        job = lifecycle.create_job("report_generation", scheduled_for=later)
        assert job.scheduled_for == later
        assert lifecycle.get_job(job.job_id).scheduled_for == later

    def test_scheduled_for_must_be_datetime(self, lifecycle):
        with pytest.raises(InvalidJobOptionsError) as exc_info:
            lifecycle.create_job("report_generation", scheduled_for="tomorrow")
        assert exc_info.value.option == "scheduled_for"

    def test_correlation_race_lost_at_insert(self, lifecycle, monkeypatch):
        first = lifecycle.create_job("email_send", correlation_id="job_1_race")
        # The pre-insert lookup misses, as when another writer commits
        # between the lookup and the insert.
        monkeypatch.setattr(lifecycle, "_existing_correlation", lambda cid: None)

        with pytest.raises(DuplicateCorrelationIdError) as exc_info:
            lifecycle.create_job("email_send", correlation_id="job_1_race")
        assert exc_info.value.correlation_id == "job_1_race"
        assert lifecycle.count_jobs() == 1
        assert lifecycle.get_job(first.job_id).status == JobStatus.QUEUED

    def test_log_context_bound_during_creation(self, lifecycle, captured_logs):
        job = lifecycle.create_job("email_send")
        appended = [r for r in captured_logs() if r["message"] == "job_log_appended"]
        assert appended
        assert appended[0]["job_id"] == str(job.job_id)
        assert appended[0]["correlation_id"] == job.correlation_id


# =============================================================================
# start / complete / fail
# =============================================================================


class TestTransitions:
    def test_start(self, lifecycle, clock):
        job = lifecycle.create_job("email_send")
        clock.advance(5)
        started = lifecycle.start_job(job.job_id)
        assert started.status == JobStatus.PROCESSING
        assert started.attempts == 1
        assert started.started_at == clock.now()

    def test_start_twice_rejected(self, lifecycle):
        job = lifecycle.create_job("email_send")
        lifecycle.start_job(job.job_id)
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            lifecycle.start_job(job.job_id)
        assert exc_info.value.current_status == "processing"

    def test_start_missing(self, lifecycle):
        with pytest.raises(JobNotFoundError):
            lifecycle.start_job(uuid4())

    def test_complete_round_trips_result(self, lifecycle, clock):
        result = {"pages": 12, "fields": [{"name": "total", "value": "10.50"}], "ok": True}
        job = lifecycle.create_job("ai_extraction")
        lifecycle.start_job(job.job_id)
        completed = lifecycle.complete_job(job.job_id, result)
        assert completed.status == JobStatus.COMPLETED
        assert completed.completed_at == clock.now()
        assert lifecycle.get_job(job.job_id).result == result

    def test_complete_requires_processing(self, lifecycle):
        job = lifecycle.create_job("email_send")
        with pytest.raises(InvalidStateTransitionError):
            lifecycle.complete_job(job.job_id, {})

    def test_fail_with_attempts_left_requeues(self, lifecycle):
        job = lifecycle.create_job("email_send")
        lifecycle.start_job(job.job_id)
        assert lifecycle.fail_job(job.job_id, "SMTP 421") is True
        reloaded = lifecycle.get_job(job.job_id)
        assert reloaded.job_id == job.job_id
        assert reloaded.status == JobStatus.QUEUED
        assert reloaded.error == "SMTP 421"
        assert reloaded.failed_at is None

    def test_requeue_backs_off_exponentially(self, lifecycle, clock):
        job = lifecycle.create_job("email_send", max_attempts=4)
        delays = []
        for _ in range(3):
            lifecycle.start_job(job.job_id)
            lifecycle.fail_job(job.job_id, "SMTP 421")
            delay = lifecycle.get_job(job.job_id).next_retry_at - clock.now()
            delays.append(delay.total_seconds())
            clock.advance(10)
        assert delays == [1, 2, 4]

    def test_backoff_base_configurable(self, db_session, clock):
        manager = JobLifecycleManager(
            db_session, clock=clock,
            settings=JobQueueSettings(retry_backoff_seconds=30),
        )
        job = manager.create_job("email_send")
        manager.start_job(job.job_id)
        manager.fail_job(job.job_id, "busy")
        assert manager.get_job(job.job_id).next_retry_at == clock.now() + timedelta(seconds=30)

    def test_start_clears_next_retry_at(self, lifecycle, clock):
        job = lifecycle.create_job("email_send")
        lifecycle.start_job(job.job_id)
        lifecycle.fail_job(job.job_id, "busy")
        clock.advance(5)
        assert lifecycle.start_job(job.job_id).next_retry_at is None

    def test_terminal_failure_has_no_retry_time(self, lifecycle):
        job = lifecycle.create_job("email_send", max_attempts=1)
        lifecycle.start_job(job.job_id)
        lifecycle.fail_job(job.job_id, "bounced")
        assert lifecycle.get_job(job.job_id).next_retry_at is None

    def test_transition_logs_carry_job_context(self, lifecycle, captured_logs):
        job = lifecycle.create_job("email_send")
        lifecycle.start_job(job.job_id)
        started = next(r for r in captured_logs() if r["message"] == "job_started")
        assert started["job_id"] == str(job.job_id)
        assert started["correlation_id"] == job.correlation_id

    def test_fail_exhausted_is_terminal(self, lifecycle, clock):
        job = lifecycle.create_job("email_send", max_attempts=1)
        lifecycle.start_job(job.job_id)
        assert lifecycle.fail_job(job.job_id, "bounced") is False
        reloaded = lifecycle.get_job(job.job_id)
        assert reloaded.status == JobStatus.FAILED
        assert reloaded.failed_at == clock.now()

    def test_fail_requires_processing(self, lifecycle):
        job = lifecycle.create_job("email_send")
        with pytest.raises(InvalidStateTransitionError):
            lifecycle.fail_job(job.job_id, "nope")

    def test_fail_missing(self, lifecycle):
        with pytest.raises(JobNotFoundError):
            lifecycle.fail_job(uuid4(), "nope")

    def test_attempts_never_exceed_max(self, lifecycle, db_session):
        job = lifecycle.create_job("email_send", max_attempts=2)
        for _ in range(2):
            lifecycle.start_job(job.job_id)
            lifecycle.fail_job(job.job_id, "boom")
        for model in db_session.execute(select(JobModel)).scalars():
            assert model.attempts <= model.max_attempts

    def test_stale_fail_after_complete_rejected(self, lifecycle):
        job = lifecycle.create_job("email_send")
        lifecycle.start_job(job.job_id)
        lifecycle.complete_job(job.job_id, {"sent": True})
        with pytest.raises(InvalidStateTransitionError):
            lifecycle.fail_job(job.job_id, "late failure")
        assert lifecycle.get_job(job.job_id).status == JobStatus.COMPLETED

    def test_transition_log_levels(self, lifecycle, job_log):
        job = lifecycle.create_job("email_send", max_attempts=2)
        lifecycle.start_job(job.job_id)
        lifecycle.fail_job(job.job_id, "first")
        lifecycle.start_job(job.job_id)
        lifecycle.fail_job(job.job_id, "second")
        levels = [e.level for e in job_log.entries(job.job_id)]
        assert levels == [
            JobLogLevel.INFO,
            JobLogLevel.INFO,
            JobLogLevel.WARN,
            JobLogLevel.INFO,
            JobLogLevel.ERROR,
        ]


# =============================================================================
# cancel
# =============================================================================


class TestCancel:
    def test_cancel_queued(self, lifecycle, clock):
        job = lifecycle.create_job("data_export")
        cancelled = lifecycle.cancel_job(job.job_id)
        assert cancelled.status == JobStatus.CANCELLED
        assert cancelled.cancelled_at == clock.now()

    def test_cancel_processing(self, lifecycle):
        job = lifecycle.create_job("data_export")
        lifecycle.start_job(job.job_id)
        assert lifecycle.cancel_job(job.job_id).status == JobStatus.CANCELLED

    def test_worker_cannot_complete_cancelled_job(self, lifecycle):
        job = lifecycle.create_job("data_export")
        lifecycle.start_job(job.job_id)
        lifecycle.cancel_job(job.job_id)
        with pytest.raises(InvalidStateTransitionError):
            lifecycle.complete_job(job.job_id, {})

    @pytest.mark.parametrize("final", ["complete", "fail", "cancel"])
    def test_cancel_terminal_rejected(self, lifecycle, final):
        job = lifecycle.create_job("data_export", max_attempts=1)
        if final == "cancel":
            lifecycle.cancel_job(job.job_id)
        else:
            lifecycle.start_job(job.job_id)
            if final == "complete":
                lifecycle.complete_job(job.job_id, {})
            else:
                lifecycle.fail_job(job.job_id, "x")
        with pytest.raises(InvalidStateTransitionError):
            lifecycle.cancel_job(job.job_id)

    def test_cancelled_attempts_untouched(self, lifecycle):
        job = lifecycle.create_job("data_export")
        lifecycle.start_job(job.job_id)
        assert lifecycle.cancel_job(job.job_id).attempts == 1


# =============================================================================
# retry / bulk_retry
# =============================================================================


class TestRetry:
    def test_retry_creates_new_job(self, lifecycle, owner):
        original = _failed_job(lifecycle, owner_user_id=owner.user_id)
        new_job = lifecycle.retry(original.job_id, owner)
        assert new_job.job_id != original.job_id
        assert new_job.correlation_id != original.correlation_id
        assert new_job.status == JobStatus.QUEUED
        assert new_job.attempts == 0
        assert new_job.job_type == original.job_type
        assert new_job.payload == original.payload
        assert new_job.max_attempts == original.max_attempts
        assert new_job.owner_user_id == owner.user_id
        assert new_job.parent_job_id == original.job_id

    def test_original_left_failed(self, lifecycle, owner):
        original = _failed_job(lifecycle, owner_user_id=owner.user_id)
        lifecycle.retry(original.job_id, owner)
        after = lifecycle.get_job(original.job_id)
        assert after.status == JobStatus.FAILED
        assert after.attempts == original.attempts
        assert after.error == original.error

    def test_retry_not_failed_rejected(self, lifecycle, owner):
        job = lifecycle.create_job("email_send", owner_user_id=owner.user_id)
        with pytest.raises(InvalidStateTransitionError, match="not in a failed state"):
            lifecycle.retry(job.job_id, owner)

    def test_retry_other_users_job_is_not_found(self, lifecycle, owner, other_user):
        original = _failed_job(lifecycle, owner_user_id=owner.user_id)
        with pytest.raises(JobNotFoundError, match="Job not found"):
            lifecycle.retry(original.job_id, other_user)

    def test_admin_can_retry(self, lifecycle, owner, admin, db_session):
        original = _failed_job(lifecycle, owner_user_id=owner.user_id)
        new_job = lifecycle.retry(original.job_id, admin)
        assert new_job.owner_user_id == owner.user_id
        assert db_session.get(JobModel, new_job.job_id).created_by_id == admin.user_id

    def test_retry_missing(self, lifecycle, admin):
        with pytest.raises(JobNotFoundError):
            lifecycle.retry(uuid4(), admin)

    def test_retry_logged_on_both_jobs(self, lifecycle, job_log, owner):
        original = _failed_job(lifecycle, owner_user_id=owner.user_id)
        new_job = lifecycle.retry(original.job_id, owner)
        assert job_log.entries(original.job_id)[-1].data["new_job_id"] == str(new_job.job_id)
        assert job_log.entries(new_job.job_id)[-1].data["parent_job_id"] == str(original.job_id)

    def test_rejected_retry_leaves_no_new_job(self, lifecycle, db_session, owner):
        job = lifecycle.create_job("email_send", owner_user_id=owner.user_id)
        with pytest.raises(InvalidStateTransitionError):
            lifecycle.retry(job.job_id, owner)
        assert lifecycle.count_jobs() == 1


class TestBulkRetry:
    def test_all_failed(self, lifecycle, owner):
        j1 = _failed_job(lifecycle, owner_user_id=owner.user_id)
        j2 = _failed_job(lifecycle, owner_user_id=owner.user_id)
        result = lifecycle.bulk_retry([j1.job_id, j2.job_id], owner)
        assert result.successful == 2
        assert result.failed == 0
        assert len(result.new_job_ids) == 2
        assert not {j1.job_id, j2.job_id} & set(result.new_job_ids)
        for new_id in result.new_job_ids:
            assert lifecycle.get_job(new_id).status == JobStatus.QUEUED

    def test_partial_failure_continues(self, lifecycle, owner, other_user):
        mine = _failed_job(lifecycle, owner_user_id=owner.user_id)
        theirs = _failed_job(lifecycle, owner_user_id=other_user.user_id)
        queued = lifecycle.create_job("email_send", owner_user_id=owner.user_id)
        missing = uuid4()

        result = lifecycle.bulk_retry(
            [theirs.job_id, queued.job_id, missing, mine.job_id], owner,
        )
        assert result.successful == 1
        assert result.failed == 3
        assert dict(result.errors) == {
            theirs.job_id: "JOB_NOT_FOUND",
            queued.job_id: "INVALID_STATE_TRANSITION",
            missing: "JOB_NOT_FOUND",
        }

    def test_duplicate_ids_retried_once(self, lifecycle, owner):
        job = _failed_job(lifecycle, owner_user_id=owner.user_id)
        result = lifecycle.bulk_retry([job.job_id, job.job_id], owner)
        assert result.successful == 1
        assert result.failed == 0

    def test_empty(self, lifecycle, owner):
        result = lifecycle.bulk_retry([], owner)
        assert (result.successful, result.failed) == (0, 0)

    def test_processed_in_stable_order(self, lifecycle, owner):
        j1 = _failed_job(lifecycle, owner_user_id=owner.user_id)
        j2 = _failed_job(lifecycle, owner_user_id=owner.user_id)
        ordered = sorted([j1.job_id, j2.job_id], key=str)

        result = lifecycle.bulk_retry(list(reversed(ordered)), owner)
        parents = [lifecycle.get_job(n).parent_job_id for n in result.new_job_ids]
        assert parents == ordered


# =============================================================================
# progress
# =============================================================================


class TestReportProgress:
    def test_progress_written_to_payload(self, lifecycle):
        job = lifecycle.create_job("file_processing", {"fileId": 1})
        lifecycle.start_job(job.job_id)
        updated = lifecycle.report_progress(job.job_id, 40, "Converting page 2")
        assert updated.payload == {
            "fileId": 1,
            "progress": 40,
            "progressMessage": "Converting page 2",
        }

    def test_progress_clamped(self, lifecycle):
        job = lifecycle.create_job("file_processing")
        lifecycle.start_job(job.job_id)
        assert lifecycle.report_progress(job.job_id, 140).payload["progress"] == 100

    def test_progress_requires_processing(self, lifecycle):
        job = lifecycle.create_job("file_processing")
        with pytest.raises(InvalidStateTransitionError):
            lifecycle.report_progress(job.job_id, 10)

    def test_progress_must_be_numeric(self, lifecycle):
        job = lifecycle.create_job("file_processing")
        lifecycle.start_job(job.job_id)
        with pytest.raises(InvalidJobOptionsError):
            lifecycle.report_progress(job.job_id, "half")

    @pytest.mark.parametrize("value", [float("nan"), float("inf"), float("-inf")])
    def test_progress_must_be_finite(self, lifecycle, value):
        job = lifecycle.create_job("file_processing", {"progress": 20})
        lifecycle.start_job(job.job_id)
        with pytest.raises(InvalidJobOptionsError):
            lifecycle.report_progress(job.job_id, value)
        assert lifecycle.get_job(job.job_id).payload["progress"] == 20


# =============================================================================
# queries
# =============================================================================


class TestQueries:
    def test_find_missing_returns_none(self, lifecycle):
        assert lifecycle.find_job(uuid4()) is None
        assert lifecycle.find_by_correlation("job_0_nothing") is None

    def test_get_missing_raises(self, lifecycle):
        with pytest.raises(JobNotFoundError):
            lifecycle.get_job(uuid4())

    def test_find_by_correlation(self, lifecycle):
        job = lifecycle.create_job("email_send")
        assert lifecycle.find_by_correlation(job.correlation_id).job_id == job.job_id

    def test_list_by_entity(self, lifecycle, owner, other_user):
        lifecycle.create_job("ai_extraction", entity_type="document", entity_id=9,
                             owner_user_id=owner.user_id)
        lifecycle.create_job("ai_extraction", entity_type="document", entity_id=9,
                             owner_user_id=other_user.user_id)
        lifecycle.create_job("ai_extraction", entity_type="document", entity_id=10)
        assert len(lifecycle.list_by_entity("document", 9)) == 2
        assert len(lifecycle.list_by_entity("document", "9", owner_user_id=owner.user_id)) == 1

    def test_list_and_count_filters(self, lifecycle, clock, owner):
        for _ in range(3):
            lifecycle.create_job("email_send", owner_user_id=owner.user_id)
            clock.advance(1)
        lifecycle.create_job("data_export")
        assert lifecycle.count_jobs() == 4
        assert lifecycle.count_jobs(job_type="email_send") == 3
        assert lifecycle.count_jobs(owner_user_id=owner.user_id, status="queued") == 3
        assert len(lifecycle.list_jobs(limit=2)) == 2
        assert len(lifecycle.list_jobs(limit=2, offset=3)) == 1
        newest = lifecycle.list_jobs(limit=1)[0]
        assert newest.job_type == "data_export"

    def test_invalid_status_filter(self, lifecycle):
        with pytest.raises(InvalidJobOptionsError):
            lifecycle.list_jobs(status="running")

    def test_count_by_status(self, lifecycle):
        lifecycle.create_job("email_send")
        started = lifecycle.create_job("email_send")
        lifecycle.start_job(started.job_id)
        counts = lifecycle.count_by_status()
        assert counts.queued == 1
        assert counts.processing == 1
        assert counts.total == 2

    def test_next_queued_jobs_priority_then_age(self, lifecycle, clock):
        low = lifecycle.create_job("email_send", priority="low")
        clock.advance(1)
        normal_old = lifecycle.create_job("email_send")
        clock.advance(1)
        critical = lifecycle.create_job("email_send", priority="critical")
        clock.advance(1)
        normal_new = lifecycle.create_job("email_send")
        started = lifecycle.create_job("email_send", priority="critical")
        lifecycle.start_job(started.job_id)

        order = [j.job_id for j in lifecycle.next_queued_jobs(limit=10)]
        assert order == [critical.job_id, normal_old.job_id, normal_new.job_id, low.job_id]

    def test_next_queued_jobs_waits_for_scheduled_for(self, lifecycle, clock):
        delayed = lifecycle.create_job(
            "report_generation", scheduled_for=clock.now() + timedelta(minutes=10),
        )
        ready = lifecycle.create_job("report_generation")
        assert [j.job_id for j in lifecycle.next_queued_jobs(limit=10)] == [ready.job_id]

        clock.advance(600)
        due = {j.job_id for j in lifecycle.next_queued_jobs(limit=10)}
        assert due == {delayed.job_id, ready.job_id}

    def test_next_queued_jobs_waits_out_backoff(self, lifecycle, clock):
        job = lifecycle.create_job("email_send")
        lifecycle.start_job(job.job_id)
        lifecycle.fail_job(job.job_id, "SMTP 421")
        assert lifecycle.next_queued_jobs() == ()

        clock.advance(1)
        assert [j.job_id for j in lifecycle.next_queued_jobs()] == [job.job_id]

    def test_backoff_takes_precedence_over_scheduled_for(self, lifecycle, clock):
        job = lifecycle.create_job(
            "email_send", scheduled_for=clock.now() - timedelta(hours=1),
        )
        lifecycle.start_job(job.job_id)
        lifecycle.fail_job(job.job_id, "SMTP 421")
        assert lifecycle.next_queued_jobs() == ()

    def test_log_job_message(self, lifecycle, job_log):
        job = lifecycle.create_job("email_send")
        entry = lifecycle.log_job_message(job.job_id, "debug", "connected", {"host": "smtp"})
        assert entry.level == JobLogLevel.DEBUG
        assert job_log.entries(job.job_id)[-1].data == {"host": "smtp"}

    def test_log_job_message_bad_level(self, lifecycle):
        job = lifecycle.create_job("email_send")
        with pytest.raises(InvalidLogLevelError):
            lifecycle.log_job_message(job.job_id, "fatal", "nope")


# =============================================================================
# End-to-end scenario
# =============================================================================


class TestEndToEndScenario:
    def test_document_ingestion_lifecycle(self, lifecycle, admin):
        job = lifecycle.create_job("document_ingestion", {"fileUploadId": 123})
        assert (job.status, job.attempts, job.max_attempts) == (JobStatus.QUEUED, 0, 3)

        started = lifecycle.start_job(job.job_id)
        assert (started.status, started.attempts) == (JobStatus.PROCESSING, 1)

        assert lifecycle.fail_job(job.job_id, "Connection timeout") is True
        after_first = lifecycle.get_job(job.job_id)
        assert after_first.status == JobStatus.QUEUED
        assert after_first.error == "Connection timeout"

        assert lifecycle.start_job(job.job_id).attempts == 2
        assert lifecycle.fail_job(job.job_id, "Connection timeout") is True
        assert lifecycle.get_job(job.job_id).status == JobStatus.QUEUED

        assert lifecycle.start_job(job.job_id).attempts == 3
        assert lifecycle.fail_job(job.job_id, "Connection timeout") is False
        failed = lifecycle.get_job(job.job_id)
        assert failed.status == JobStatus.FAILED
        assert failed.failed_at is not None

        retried = lifecycle.retry(job.job_id, admin)
        assert retried.job_id != job.job_id
        assert retried.status == JobStatus.QUEUED
        assert retried.attempts == 0
        assert lifecycle.get_job(job.job_id).status == JobStatus.FAILED
