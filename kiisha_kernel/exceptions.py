"""
Typed Exception Hierarchy for the KIISHA job subsystem.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the job queue (API routers, webhooks, workers, the scheduler)
must react to failures precisely.  Matching on message text is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (job_id, status, ...)

Example:
    try:
        guard.retry(caller, job_id)
    except JobNotFoundError as e:
        api_response(status=404, code=e.code)
    except InvalidStateTransitionError as e:
        api_response(status=409, code=e.code, current=e.current_status)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    KiishaError (base)
    |
    +-- JobError
    |   +-- JobNotFoundError
    |   +-- InvalidStateTransitionError
    |   +-- DuplicateCorrelationIdError
    |   +-- InvalidJobOptionsError
    |   +-- InvalidLogLevelError
    |
    +-- AccessError
    |   +-- AdminRequiredError
    |
    +-- ScheduleError
        +-- InvalidCronExpressionError
        +-- CapabilityDeniedError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category   | Code                       | When Raised
-----------|----------------------------|------------------------------------------
Job        | JOB_NOT_FOUND              | Job absent OR not visible to the caller
           | INVALID_STATE_TRANSITION   | Transition not allowed from current status
           | DUPLICATE_CORRELATION_ID   | Caller-supplied correlation id already used
           | INVALID_JOB_OPTIONS        | Bad priority / max_attempts on create
           | INVALID_LOG_LEVEL          | Log level not in {info, debug, warn, error}
-----------|----------------------------|------------------------------------------
Access     | ADMIN_REQUIRED             | Privileged listing by a non-admin
-----------|----------------------------|------------------------------------------
Schedule   | INVALID_CRON_EXPRESSION    | Cron expression cannot be parsed
           | CAPABILITY_DENIED          | Capability gate refused a scheduled run

JobNotFoundError deliberately carries the same message whether the job does
not exist or belongs to someone else, so the error shape never reveals the
existence of another user's job.
"""


class KiishaError(Exception):
    """
    Base exception for all KIISHA job subsystem errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "KIISHA_ERROR"


# Job-related exceptions


class JobError(KiishaError):
    """Base exception for job lifecycle errors."""

    code: str = "JOB_ERROR"


class JobNotFoundError(JobError):
    """Job does not exist, or exists but is not visible to the caller."""

    code: str = "JOB_NOT_FOUND"

    def __init__(self, job_id: str | None = None):
        self.job_id = job_id
        super().__init__("Job not found")


class InvalidStateTransitionError(JobError):
    """Requested lifecycle transition is not valid from the current status."""

    code: str = "INVALID_STATE_TRANSITION"

    def __init__(
        self,
        job_id: str,
        current_status: str | None,
        operation: str,
        message: str | None = None,
    ):
        self.job_id = job_id
        self.current_status = current_status
        self.operation = operation
        super().__init__(
            message
            or f"Cannot {operation} job {job_id} in status '{current_status}'"
        )


class DuplicateCorrelationIdError(JobError):
    """Caller supplied a correlation id that is already assigned."""

    code: str = "DUPLICATE_CORRELATION_ID"

    def __init__(self, correlation_id: str, existing_job_id: str):
        self.correlation_id = correlation_id
        self.existing_job_id = existing_job_id
        super().__init__(
            f"Correlation id '{correlation_id}' already assigned to job "
            f"{existing_job_id}"
        )


class InvalidJobOptionsError(JobError):
    """Job creation options are invalid."""

    code: str = "INVALID_JOB_OPTIONS"

    def __init__(self, option: str, value: object, reason: str):
        self.option = option
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid job option {option}={value!r}: {reason}")


class InvalidLogLevelError(JobError):
    """Job log level is not one of the supported levels."""

    code: str = "INVALID_LOG_LEVEL"

    def __init__(self, level: str, allowed: tuple[str, ...]):
        self.level = level
        self.allowed = allowed
        super().__init__(
            f"Invalid job log level '{level}'. Allowed: {', '.join(allowed)}"
        )


# Access-related exceptions


class AccessError(KiishaError):
    """Base exception for access control errors."""

    code: str = "ACCESS_ERROR"


class AdminRequiredError(AccessError):
    """Privileged operation attempted by a non-admin caller."""

    code: str = "ADMIN_REQUIRED"

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__("Admin access required")


# Schedule-related exceptions


class ScheduleError(KiishaError):
    """Base exception for scheduler errors."""

    code: str = "SCHEDULE_ERROR"


class InvalidCronExpressionError(ScheduleError):
    """Cron expression is malformed."""

    code: str = "INVALID_CRON_EXPRESSION"

    def __init__(self, expression: str, reason: str):
        self.expression = expression
        self.reason = reason
        super().__init__(f"Invalid cron expression '{expression}': {reason}")


class CapabilityDeniedError(ScheduleError):
    """Capability gate refused to authorize a scheduled run.

    Recorded against the ScheduledTask by the scheduler; never raised to an
    API caller because the scheduler runs unattended.
    """

    code: str = "CAPABILITY_DENIED"

    def __init__(self, schedule_id: str, capability_id: str, reason: str):
        self.schedule_id = schedule_id
        self.capability_id = capability_id
        self.reason = reason
        super().__init__(f"Capability denied: {reason}")
