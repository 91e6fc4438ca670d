"""
kiisha_jobs -- Job queue lifecycle, access control and cron scheduler.

Provides the durable job store and its state machine, an ownership-
enforcing facade for user-facing reads and mutations, an append-only
per-job log, the caller-facing status projection, and an in-process cron
scheduler that gates scheduled tasks through a capability registry before
enqueueing them.

Architecture:
    kiisha_jobs/ depends on kiisha_kernel/ (db, clock, logging, config,
    exceptions).  Nothing in kiisha_kernel/ imports from kiisha_jobs,
    except ``create_tables()`` registering the models.

Invariants:
    - Transitions are compare-and-set on status.
    - Terminal statuses are never left; manual retry creates a new job.
    - Jobs not owned by a non-admin caller are indistinguishable from
      missing ones.
    - Clock injection (no datetime.now() calls in services).
"""
