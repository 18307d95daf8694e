"""Celery configuration for scheduled jobs."""

from __future__ import annotations

import os

from celery import Celery
from celery.schedules import crontab

from vascatalog.utils.dates import frequent_interval_minutes, sweep_hour, sweep_minute, timezone_name

broker_url = os.environ.get("REDIS_URL", "redis://redis:6379/0")
backend_url = os.environ.get("REDIS_URL", "redis://redis:6379/0")

celery_app = Celery("vascatalog", broker=broker_url, backend=backend_url, include=["vascatalog.jobs.sweep"])
celery_app.conf.timezone = timezone_name()
celery_app.conf.beat_schedule = {
    "catalog-daily-sweep": {
        "task": "vascatalog.jobs.sweep.run_daily_sweep",
        "schedule": crontab(hour=sweep_hour(), minute=sweep_minute()),
    },
    "catalog-frequent-refresh": {
        "task": "vascatalog.jobs.sweep.run_frequent_refresh",
        "schedule": frequent_interval_minutes() * 60.0,
    },
}


@celery_app.task(name="vascatalog.jobs.sweep.run_daily_sweep")
def run_daily_sweep_task():  # pragma: no cover - executed by worker
    from vascatalog.jobs.sweep import run_daily_sweep

    run_daily_sweep()


@celery_app.task(name="vascatalog.jobs.sweep.run_frequent_refresh")
def run_frequent_refresh_task():  # pragma: no cover - executed by worker
    from vascatalog.jobs.sweep import run_frequent_refresh

    run_frequent_refresh()


@celery_app.task(name="vascatalog.jobs.sweep.deliver_notification")
def deliver_notification_task(event: dict):  # pragma: no cover - executed by worker
    import asyncio

    from vascatalog.logic.notifications import deliver

    asyncio.run(deliver(event))
