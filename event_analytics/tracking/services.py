"""SessionLog lifecycle: start/resume, interaction recording, close, sweeps.

Every mutation runs inside ``transaction.atomic()`` on a row locked with
``select_for_update()``. Scalars are last-write-wins; the JSON collections are
appended, max-merged or accumulated, so racing writers never lose a sample
they both observed.

Callers validate the event (``events.lookup``) before calling in here.
"""

import logging
from collections.abc import Callable
from datetime import datetime
from datetime import timedelta
from typing import Any

from django.conf import settings
from django.db import IntegrityError
from django.db import transaction
from django.utils import timezone

from event_analytics.tracking.models import SessionLog

logger = logging.getLogger(__name__)

DEVICE_FIELDS = ("device_type", "os", "browser", "screen_width", "screen_height")
CONTEXT_FIELDS = (
    "user_agent",
    "ip_address",
    "country",
    "region",
    "city",
    "time_zone",
    *DEVICE_FIELDS,
)


def _clean_context(context: dict[str, Any] | None) -> dict[str, Any]:
    if not context:
        return {}
    return {
        key: context[key]
        for key in CONTEXT_FIELDS
        if context.get(key) not in (None, "")
    }


def _locked_active(event_id: int, session_id: str) -> SessionLog | None:
    return (
        SessionLog.objects.select_for_update()
        .filter(event_id=event_id, session_id=session_id, is_active=True)
        .first()
    )


def _create_active(
    event_id: int,
    session_id: str,
    *,
    user_id: int | None,
    context: dict[str, Any],
    now: datetime,
) -> tuple[SessionLog, bool]:
    """Insert a new active row, or return the row a concurrent writer won with."""
    try:
        with transaction.atomic():
            log = SessionLog.objects.create(
                event_id=event_id,
                session_id=session_id,
                user_id=user_id,
                start_time=now,
                last_activity=now,
                **context,
            )
    except IntegrityError:
        log = _locked_active(event_id, session_id)
        if log is None:
            raise
        return log, False
    logger.info("Session %s started for event %s", session_id, event_id)
    return log, True


def start_or_resume_session(
    event_id: int,
    session_id: str,
    *,
    user_id: int | None = None,
    context: dict[str, Any] | None = None,
) -> tuple[SessionLog, bool]:
    """Return the active row for the pair, creating it when none exists.

    Resuming only refreshes device fields from ``context``; the rest of the
    snapshot taken at creation is kept. Returns ``(log, created)``.
    """
    snapshot = _clean_context(context)
    now = timezone.now()
    with transaction.atomic():
        log = _locked_active(event_id, session_id)
        if log is None:
            return _create_active(
                event_id, session_id, user_id=user_id, context=snapshot, now=now
            )
        update_fields = ["last_activity", "updated_at"]
        for key in DEVICE_FIELDS:
            if key in snapshot:
                setattr(log, key, snapshot[key])
                update_fields.append(key)
        if user_id is not None and log.user_id is None:
            log.user_id = user_id
            update_fields.append("user")
        log.touch(now)
        log.save(update_fields=update_fields)
    return log, False


def _mutate_active(
    event_id: int,
    session_id: str,
    mutate: Callable[[SessionLog, datetime], None],
    update_fields: list[str],
    *,
    user_id: int | None = None,
) -> SessionLog:
    now = timezone.now()
    with transaction.atomic():
        log = _locked_active(event_id, session_id)
        if log is None:
            log, _ = _create_active(
                event_id, session_id, user_id=user_id, context={}, now=now
            )
        mutate(log, now)
        log.touch(now)
        log.save(update_fields=[*update_fields, "last_activity", "updated_at"])
    return log


def record_movement(
    event_id: int,
    session_id: str,
    *,
    x: float,
    y: float,
    page: str,
    element: str | None = None,
    action: str = SessionLog.Action.MOVE,
    user_id: int | None = None,
) -> SessionLog:
    def mutate(log: SessionLog, now: datetime) -> None:
        log.add_cursor_sample(x, y, page, element=element, action=action, at=now)

    fields = ["cursor_data"]
    if action == SessionLog.Action.CLICK:
        fields += ["heatmap_clicks", "total_clicks"]
    return _mutate_active(event_id, session_id, mutate, fields, user_id=user_id)


def record_click(
    event_id: int,
    session_id: str,
    *,
    x: float,
    y: float,
    page: str,
    element: str | None = None,
    user_id: int | None = None,
) -> SessionLog:
    return record_movement(
        event_id,
        session_id,
        x=x,
        y=y,
        page=page,
        element=element,
        action=SessionLog.Action.CLICK,
        user_id=user_id,
    )


def record_hover(
    event_id: int,
    session_id: str,
    *,
    x: float,
    y: float,
    page: str,
    duration_ms: int = 0,
    user_id: int | None = None,
) -> SessionLog:
    def mutate(log: SessionLog, now: datetime) -> None:
        log.add_hover(x, y, page, duration_ms=duration_ms, at=now)

    return _mutate_active(
        event_id, session_id, mutate, ["heatmap_hovers"], user_id=user_id
    )


def record_scroll(
    event_id: int,
    session_id: str,
    *,
    page: str,
    depth: float,
    user_id: int | None = None,
) -> SessionLog:
    def mutate(log: SessionLog, now: datetime) -> None:
        log.update_scroll_depth(page, depth, at=now)

    return _mutate_active(
        event_id,
        session_id,
        mutate,
        ["scroll_depth", "total_scrolls"],
        user_id=user_id,
    )


def record_page_visit(
    event_id: int,
    session_id: str,
    *,
    page: str,
    time_spent: int = 0,
    user_id: int | None = None,
) -> SessionLog:
    def mutate(log: SessionLog, now: datetime) -> None:
        log.add_page_visit(page, time_spent, at=now)

    return _mutate_active(
        event_id, session_id, mutate, ["pages_visited"], user_id=user_id
    )


def end_session(event_id: int, session_id: str) -> SessionLog | None:
    """Close the active row for the pair.

    Idempotent: with no active row the most recent closed one is returned
    unchanged (so its duration is stable), or ``None`` if the pair was never
    seen.
    """
    with transaction.atomic():
        log = _locked_active(event_id, session_id)
        if log is not None:
            log.end_session()
            log.save(
                update_fields=["end_time", "duration", "is_active", "updated_at"]
            )
            logger.info(
                "Session %s closed for event %s after %ss",
                session_id,
                event_id,
                log.duration,
            )
            return log
    return latest_session(event_id, session_id)


def latest_session(event_id: int, session_id: str) -> SessionLog | None:
    return (
        SessionLog.objects.filter(event_id=event_id, session_id=session_id)
        .order_by("-start_time", "-pk")
        .first()
    )


def close_stale_sessions(
    now: datetime | None = None,
    timeout_seconds: int | None = None,
) -> int:
    """Close active rows with no activity inside the inactivity timeout.

    Orphaned rows are closed at their ``last_activity``, the last moment the
    session was known to be alive.
    """
    now = now or timezone.now()
    if timeout_seconds is None:
        timeout_seconds = settings.TRACKING_INACTIVITY_TIMEOUT_SECONDS
    cutoff = now - timedelta(seconds=timeout_seconds)
    stale_ids = list(
        SessionLog.objects.filter(is_active=True, last_activity__lt=cutoff)
        .values_list("pk", flat=True)
    )
    closed = 0
    for pk in stale_ids:
        with transaction.atomic():
            log = (
                SessionLog.objects.select_for_update()
                .filter(pk=pk, is_active=True, last_activity__lt=cutoff)
                .first()
            )
            if log is None:
                continue
            log.end_session(at=log.last_activity)
            log.save(
                update_fields=["end_time", "duration", "is_active", "updated_at"]
            )
            closed += 1
    if closed:
        logger.info("Closed %s stale tracking sessions", closed)
    return closed


def purge_expired_sessions(
    now: datetime | None = None,
    retention_days: int | None = None,
) -> int:
    """Delete rows that started before the retention horizon."""
    now = now or timezone.now()
    if retention_days is None:
        retention_days = settings.TRACKING_RETENTION_DAYS
    horizon = now - timedelta(days=retention_days)
    deleted, _ = SessionLog.objects.filter(start_time__lt=horizon).delete()
    if deleted:
        logger.info("Purged %s session logs older than %s days", deleted, retention_days)
    return deleted
