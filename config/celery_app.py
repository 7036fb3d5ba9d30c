"""Celery app for the background SessionLog sweeps.

The realtime server closes sessions for connections it sees drop; the worker
catches what it cannot see (server restarts, other processes) and prunes rows
past retention. Schedules are registered here and mirrored into
django-celery-beat's database scheduler at beat start.
"""

import os

from celery import Celery
from celery.schedules import crontab
from celery.signals import setup_logging

# Tests and local dev set DJANGO_SETTINGS_MODULE explicitly (pytest uses
# config.settings.test via --ds), so setdefault won't override those.
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings.production")

app = Celery("event_analytics")

# namespace='CELERY': every celery key in Django settings is CELERY_-prefixed
app.config_from_object("django.conf:settings", namespace="CELERY")


@setup_logging.connect
def config_loggers(*args, **kwargs):
    from logging.config import dictConfig  # noqa: PLC0415

    from django.conf import settings  # noqa: PLC0415

    dictConfig(settings.LOGGING)


@app.on_after_configure.connect
def setup_periodic_tasks(sender, **kwargs):
    from django.conf import settings  # noqa: PLC0415

    # Run the stale sweep a few times per timeout so an orphaned row is closed
    # within roughly 1.25x the inactivity timeout.
    stale_every = max(settings.TRACKING_INACTIVITY_TIMEOUT_SECONDS // 4, 30)
    sender.add_periodic_task(
        stale_every,
        sender.signature("tracking.close_stale_sessions"),
        name="tracking-close-stale-sessions",
    )
    sender.add_periodic_task(
        crontab(hour=3, minute=15),
        sender.signature("tracking.purge_expired_sessions"),
        name="tracking-purge-expired-sessions",
    )


app.autodiscover_tasks()
