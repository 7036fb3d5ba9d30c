from celery import shared_task

from event_analytics.tracking.services import close_stale_sessions
from event_analytics.tracking.services import purge_expired_sessions


@shared_task(name="tracking.close_stale_sessions")
def close_stale_sessions_task() -> int:
    """Close SessionLog rows left active by connections this process never saw end.

    Returns:
        Number of sessions closed.
    """
    return close_stale_sessions()


@shared_task(name="tracking.purge_expired_sessions")
def purge_expired_sessions_task() -> int:
    """Delete SessionLog rows past ``TRACKING_RETENTION_DAYS``."""
    return purge_expired_sessions()
