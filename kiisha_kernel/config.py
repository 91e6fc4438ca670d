"""
Settings Loader (``kiisha_kernel.config``).

Responsibility
--------------
Builds the single ``JobQueueSettings`` value used by the job lifecycle
manager, the cron scheduler and the runner script.  Values come from, in
increasing precedence:

1. dataclass defaults,
2. an optional YAML file (top-level mapping, keys = field names),
3. ``KIISHA_<FIELD>`` environment variables.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown keys, wrong types or out-of-range values -> ``ValueError``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Mapping

import yaml

ENV_PREFIX = "KIISHA_"


@dataclass(frozen=True)
class JobQueueSettings:
    """Runtime settings for the job queue and cron scheduler."""

    database_url: str = "sqlite:///kiisha_jobs.db"
    default_max_attempts: int = 3
    # First in-place retry waits this long; each later one doubles it.
    retry_backoff_seconds: int = 1
    tick_interval_seconds: int = 60
    # Slightly under one tick so a late tick still fires, but two ticks in
    # the same minute do not.
    debounce_seconds: int = 55
    auto_pause_threshold: int = 5
    scheduler_timezone: str | None = None
    scheduled_job_type: str = "notification_send"
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.default_max_attempts < 1:
            raise ValueError("default_max_attempts must be >= 1")
        if self.retry_backoff_seconds < 0:
            raise ValueError("retry_backoff_seconds must be >= 0")
        if self.tick_interval_seconds < 1:
            raise ValueError("tick_interval_seconds must be >= 1")
        if self.debounce_seconds < 0:
            raise ValueError("debounce_seconds must be >= 0")
        if self.auto_pause_threshold < 1:
            raise ValueError("auto_pause_threshold must be >= 1")
        if not self.scheduled_job_type:
            raise ValueError("scheduled_job_type must not be empty")


_INT_FIELDS = frozenset(
    f.name for f in fields(JobQueueSettings) if f.type in ("int", int)
)


def _coerce(name: str, value: Any) -> Any:
    if name in _INT_FIELDS:
        if isinstance(value, bool):
            raise ValueError(f"{name} must be an integer, got {value!r}")
        try:
            return int(value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"{name} must be an integer, got {value!r}") from exc
    if value is None:
        return None
    return str(value)


def load_settings(
    path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
) -> JobQueueSettings:
    """Load settings from an optional YAML file and the environment."""
    env = os.environ if env is None else env
    known = {f.name for f in fields(JobQueueSettings)}
    values: dict[str, Any] = {}

    if path is not None:
        with open(path, encoding="utf-8") as fh:
            data = yaml.safe_load(fh) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Settings file {path} must contain a mapping")
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown settings in {path}: {', '.join(unknown)}")
        for key, val in data.items():
            values[key] = _coerce(key, val)

    for name in known:
        env_key = f"{ENV_PREFIX}{name.upper()}"
        if env_key in env:
            values[name] = _coerce(name, env[env_key])

    return replace(JobQueueSettings(), **values)
