"""Datetime helpers."""

from __future__ import annotations

import os
from datetime import datetime, timezone

import pendulum

DEFAULT_TZ = "Africa/Johannesburg"


def timezone_name() -> str:
    return os.environ.get("TIMEZONE", DEFAULT_TZ)


def sweep_hour() -> int:
    return int(os.environ.get("SWEEP_HOUR", "2"))


def sweep_minute() -> int:
    return int(os.environ.get("SWEEP_MINUTE", "0"))


def frequent_interval_minutes() -> int:
    return int(os.environ.get("FREQUENT_INTERVAL_MINUTES", "10"))


def now_in_tz() -> pendulum.DateTime:
    tz = pendulum.timezone(timezone_name())
    return pendulum.now(tz)


def utc_now() -> datetime:
    """Timezone-aware UTC timestamp for SQL parameters."""
    return datetime.now(timezone.utc)


def next_daily_sweep(now: pendulum.DateTime | None = None) -> pendulum.DateTime:
    current = now or now_in_tz()
    scheduled = current.set(hour=sweep_hour(), minute=sweep_minute(), second=0, microsecond=0)
    if scheduled <= current:
        scheduled = scheduled.add(days=1)
    return scheduled


def epoch_millis(value: datetime | None = None) -> int:
    moment = value or utc_now()
    return int(moment.timestamp() * 1000)
