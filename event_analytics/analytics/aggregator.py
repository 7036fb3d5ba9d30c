"""Read-side queries over SessionLog rows.

Nothing here writes. Empty result sets come back as zero-valued, well-formed
structures. Date ranges filter on ``start_time`` and are inclusive.
"""

from __future__ import annotations

import csv
import io
import math
from collections import Counter
from collections.abc import Iterable
from datetime import datetime
from datetime import timedelta
from typing import Any

from django.conf import settings
from django.db.models import Avg
from django.db.models import Count
from django.db.models import Q
from django.db.models import QuerySet
from django.db.models import Sum
from django.db.models.functions import ExtractHour
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from event_analytics.realtime.registry import ConnectionEntry
from event_analytics.realtime.registry import identity_payload
from event_analytics.tracking.models import SessionLog

CSV_HEADERS = [
    "Session ID",
    "User ID",
    "Start Time",
    "End Time",
    "Duration (seconds)",
    "Total Clicks",
    "Total Scrolls",
    "Pages Visited",
    "Device Type",
    "Browser",
    "OS",
    "City",
    "Country",
]


def _round(value: float | None) -> float:
    return round(float(value or 0), 2)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def sessions_for(
    event_id: int,
    start: datetime | None = None,
    end: datetime | None = None,
) -> QuerySet[SessionLog]:
    qs = SessionLog.objects.filter(event_id=event_id)
    if start is not None:
        qs = qs.filter(start_time__gte=start)
    if end is not None:
        qs = qs.filter(start_time__lte=end)
    return qs


def active_sessions(
    event_id: int,
    live_entries: Iterable[ConnectionEntry],
    now: datetime | None = None,
) -> list[dict[str, Any]]:
    """Live connections in the room plus recently active persisted sessions.

    Deduplicated by session id; a live entry wins over its stored row.
    """
    now = now or timezone.now()
    window = timedelta(seconds=settings.TRACKING_ACTIVE_WINDOW_SECONDS)
    items: dict[str, dict[str, Any]] = {}
    for entry in live_entries:
        if entry.current_room != event_id or entry.session_id is None:
            continue
        items[entry.session_id] = {
            "sessionId": entry.session_id,
            "userId": entry.user_id,
            "identity": identity_payload(entry.identity),
            "startTime": _iso(entry.connected_at),
            "lastActivity": _iso(entry.last_activity),
            "source": "live",
        }
    rows = (
        SessionLog.objects.filter(
            event_id=event_id, is_active=True, last_activity__gte=now - window
        )
        .select_related("user")
        .order_by("-last_activity")
    )
    for log in rows:
        if log.session_id in items:
            continue
        identity = None
        if log.user is not None:
            identity = {
                "userId": log.user_id,
                "name": log.user.display_name,
                "avatar": log.user.avatar,
            }
        items[log.session_id] = {
            "sessionId": log.session_id,
            "userId": log.user_id,
            "identity": identity,
            "startTime": _iso(log.start_time),
            "lastActivity": _iso(log.last_activity),
            "source": "store",
        }
    return list(items.values())


def session_analytics(
    event_id: int,
    start: datetime | None = None,
    end: datetime | None = None,
    page: str | None = None,
) -> dict[str, Any]:
    qs = sessions_for(event_id, start, end)
    agg = qs.aggregate(
        total_sessions=Count("id"),
        total_clicks=Sum("total_clicks"),
        total_scrolls=Sum("total_scrolls"),
        avg_duration=Avg("duration"),
        unique_users=Count("user", distinct=True),
        anonymous_sessions=Count("id", filter=Q(user__isnull=True)),
    )
    total_sessions = agg["total_sessions"] or 0
    total_clicks = agg["total_clicks"] or 0
    total_scrolls = agg["total_scrolls"] or 0

    total_page_views = 0
    page_visits = 0
    page_time = 0
    for pages in qs.values_list("pages_visited", flat=True):
        pages = pages or []
        total_page_views += len(pages)
        if page is None:
            continue
        for entry in pages:
            if entry.get("page") == page:
                page_visits += 1
                page_time += entry.get("timeSpent", 0) or 0

    result: dict[str, Any] = {
        "totalSessions": total_sessions,
        "totalClicks": total_clicks,
        "totalScrolls": total_scrolls,
        "avgDuration": _round(agg["avg_duration"]),
        "uniqueUsers": agg["unique_users"] or 0,
        "anonymousSessions": agg["anonymous_sessions"] or 0,
        "totalPageViews": total_page_views,
        "avgClicksPerSession": _round(
            total_clicks / total_sessions if total_sessions else 0
        ),
        "avgScrollsPerSession": _round(
            total_scrolls / total_sessions if total_sessions else 0
        ),
    }
    if page is not None:
        result["pageAnalytics"] = {
            "page": page,
            "totalVisits": page_visits,
            "totalTimeSpent": page_time,
            "avgTimeSpent": _round(page_time / page_visits if page_visits else 0),
        }
    return result


def heatmap(
    event_id: int,
    page: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    resolution: int = 10,
) -> list[dict[str, Any]]:
    """Bucket recorded clicks on a ``resolution``-sized grid per page.

    Each bucket carries its click count and centroid; buckets are ordered by
    count, then grid position.
    """
    if resolution < 1:
        msg = "resolution must be a positive integer"
        raise ValueError(msg)
    buckets: dict[tuple[int, int, str], list[float]] = {}
    for clicks in sessions_for(event_id, start, end).values_list(
        "heatmap_clicks", flat=True
    ):
        for click in clicks or []:
            click_page = click.get("page") or ""
            if page is not None and click_page != page:
                continue
            x, y = float(click["x"]), float(click["y"])
            key = (math.floor(x / resolution), math.floor(y / resolution), click_page)
            bucket = buckets.setdefault(key, [0, 0.0, 0.0])
            bucket[0] += 1
            bucket[1] += x
            bucket[2] += y
    ordered = sorted(buckets.items(), key=lambda kv: (-kv[1][0], kv[0]))
    return [
        {
            "gridX": gx,
            "gridY": gy,
            "page": bucket_page,
            "count": int(count),
            "x": _round(sum_x / count),
            "y": _round(sum_y / count),
        }
        for (gx, gy, bucket_page), (count, sum_x, sum_y) in ordered
    ]


def device_distribution(
    event_id: int,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[dict[str, Any]]:
    rows = (
        sessions_for(event_id, start, end)
        .order_by()
        .values("device_type")
        .annotate(count=Count("id"), avg_duration=Avg("duration"))
        .order_by("-count", "device_type")
    )
    return [
        {
            "deviceType": row["device_type"],
            "count": row["count"],
            "avgDuration": _round(row["avg_duration"]),
        }
        for row in rows
    ]


def hourly_distribution(
    event_id: int,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[dict[str, Any]]:
    """Sessions per hour of day of ``start_time`` (in ``TIME_ZONE``)."""
    rows = (
        sessions_for(event_id, start, end)
        .order_by()
        .annotate(hour=ExtractHour("start_time"))
        .values("hour")
        .annotate(count=Count("id"), avg_duration=Avg("duration"))
        .order_by("hour")
    )
    return [
        {
            "hour": row["hour"],
            "count": row["count"],
            "avgDuration": _round(row["avg_duration"]),
        }
        for row in rows
    ]


def export_rows(
    event_id: int,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[dict[str, Any]]:
    """One flat row per session; both export formats are built from this list."""
    qs = sessions_for(event_id, start, end).order_by("start_time", "pk")
    return [
        {
            "sessionId": log.session_id,
            "userId": log.user_id,
            "startTime": _iso(log.start_time),
            "endTime": _iso(log.end_time),
            "duration": log.duration,
            "isActive": log.is_active,
            "totalClicks": log.total_clicks,
            "totalScrolls": log.total_scrolls,
            "pagesVisited": len(log.pages_visited or []),
            "deviceType": log.device_type,
            "browser": log.browser,
            "os": log.os,
            "city": log.city,
            "country": log.country,
        }
        for log in qs
    ]


def render_csv(rows: list[dict[str, Any]]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL)
    writer.writerow(CSV_HEADERS)
    for row in rows:
        still_open = row["isActive"]
        writer.writerow(
            [
                row["sessionId"],
                row["userId"] if row["userId"] is not None else "Anonymous",
                row["startTime"] or "",
                "Active" if still_open else (row["endTime"] or ""),
                "Active" if still_open else (row["duration"] or 0),
                row["totalClicks"],
                row["totalScrolls"],
                row["pagesVisited"],
                row["deviceType"],
                row["browser"],
                row["os"],
                row["city"],
                row["country"],
            ]
        )
    return buffer.getvalue()


def render_structured(rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [
        {
            "sessionId": row["sessionId"],
            "userId": row["userId"],
            "timing": {
                "startTime": row["startTime"],
                "endTime": row["endTime"],
                "duration": row["duration"],
                "isActive": row["isActive"],
            },
            "engagement": {
                "totalClicks": row["totalClicks"],
                "totalScrolls": row["totalScrolls"],
                "pagesVisited": row["pagesVisited"],
            },
            "device": {
                "type": row["deviceType"],
                "browser": row["browser"],
                "os": row["os"],
            },
            "location": {"city": row["city"], "country": row["country"]},
        }
        for row in rows
    ]


def _sessions_across(
    events: list[Any],
    start: datetime | None,
    end: datetime | None,
) -> QuerySet[SessionLog]:
    qs = SessionLog.objects.filter(event__in=events)
    if start is not None:
        qs = qs.filter(start_time__gte=start)
    if end is not None:
        qs = qs.filter(start_time__lte=end)
    return qs


def host_overview(
    events: Iterable[Any],
    start: datetime | None = None,
    end: datetime | None = None,
) -> dict[str, Any]:
    """Roll up sessions across a host's events."""
    events = list(events)
    qs = _sessions_across(events, start, end)
    per_event = {
        row["event"]: row
        for row in qs.order_by()
        .values("event")
        .annotate(
            sessions=Count("id"),
            clicks=Sum("total_clicks"),
            scrolls=Sum("total_scrolls"),
            avg_duration=Avg("duration"),
            active=Count("id", filter=Q(is_active=True)),
        )
    }
    items = []
    for event in events:
        row = per_event.get(event.pk, {})
        items.append(
            {
                "eventId": event.pk,
                "title": event.title,
                "totalSessions": row.get("sessions", 0) or 0,
                "activeSessions": row.get("active", 0) or 0,
                "totalClicks": row.get("clicks", 0) or 0,
                "totalScrolls": row.get("scrolls", 0) or 0,
                "avgDuration": _round(row.get("avg_duration")),
            }
        )
    return {
        "totalEvents": len(items),
        "totalSessions": sum(item["totalSessions"] for item in items),
        "totalClicks": sum(item["totalClicks"] for item in items),
        "totalScrolls": sum(item["totalScrolls"] for item in items),
        "events": items,
    }


def compare_events(
    events: Iterable[Any],
    start: datetime | None = None,
    end: datetime | None = None,
) -> dict[str, Any]:
    """Side-by-side engagement for a chosen set of events, in the given order.

    Interactions are clicks, scrolls and hovers. ``avgDuration`` covers closed
    sessions only, per event and across the whole set.
    """
    events = list(events)
    qs = _sessions_across(events, start, end)
    per_event = {
        row["event"]: row
        for row in qs.order_by()
        .values("event")
        .annotate(
            sessions=Count("id"),
            users=Count("user", distinct=True),
            clicks=Sum("total_clicks"),
            scrolls=Sum("total_scrolls"),
            avg_duration=Avg("duration"),
        )
    }
    hovers: Counter[int] = Counter()
    for event_pk, samples in qs.values_list("event", "heatmap_hovers"):
        hovers[event_pk] += len(samples or [])

    items = []
    for event in events:
        row = per_event.get(event.pk, {})
        clicks = row.get("clicks") or 0
        scrolls = row.get("scrolls") or 0
        items.append(
            {
                "eventId": event.pk,
                "title": event.title,
                "status": event.status,
                "startDate": _iso(event.start_date),
                "totalSessions": row.get("sessions", 0) or 0,
                "uniqueUsers": row.get("users", 0) or 0,
                "totalClicks": clicks,
                "totalScrolls": scrolls,
                "totalHovers": hovers[event.pk],
                "totalInteractions": clicks + scrolls + hovers[event.pk],
                "avgDuration": _round(row.get("avg_duration")),
            }
        )

    overall = qs.aggregate(
        users=Count("user", distinct=True), avg_duration=Avg("duration")
    )
    total_sessions = sum(item["totalSessions"] for item in items)
    most_engaged = max(
        items,
        key=lambda item: (item["totalInteractions"], item["totalSessions"]),
        default=None,
    )
    return {
        "events": items,
        "summary": {
            "totalEvents": len(items),
            "totalSessions": total_sessions,
            "totalInteractions": sum(item["totalInteractions"] for item in items),
            "uniqueUsers": overall["users"] or 0,
            "avgSessionsPerEvent": _round(
                total_sessions / len(items) if items else 0
            ),
            "avgDuration": _round(overall["avg_duration"]),
            "mostEngagedEventId": (
                most_engaged["eventId"]
                if most_engaged and most_engaged["totalInteractions"]
                else None
            ),
        },
    }


def _since(item: dict[str, Any], cutoff: datetime) -> bool:
    stamp = parse_datetime(str(item.get("timestamp") or ""))
    return stamp is not None and stamp >= cutoff


def recent_interactions(
    event_id: int, now: datetime | None = None
) -> list[dict[str, Any]]:
    """Interaction counts by type over the last few minutes, busiest first.

    Cursor samples count under their action and hovers as ``hover``. Scroll
    depth keeps one entry per page, so a page counts once as ``scroll`` when
    its deepest point was reached inside the window.
    """
    now = now or timezone.now()
    cutoff = now - timedelta(seconds=settings.TRACKING_RECENT_INTERACTIONS_SECONDS)
    counts: Counter[str] = Counter()
    rows = SessionLog.objects.filter(
        event_id=event_id, last_activity__gte=cutoff
    ).values_list("cursor_data", "heatmap_hovers", "scroll_depth")
    for cursor, hovers, scrolls in rows:
        for sample in cursor or []:
            if _since(sample, cutoff):
                counts[sample.get("action") or SessionLog.Action.MOVE.value] += 1
        for hover in hovers or []:
            if _since(hover, cutoff):
                counts[SessionLog.Action.HOVER.value] += 1
        for scroll in scrolls or []:
            if _since(scroll, cutoff):
                counts[SessionLog.Action.SCROLL.value] += 1
    return [
        {"type": kind, "count": count}
        for kind, count in sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
    ]


def realtime_snapshot(
    event_id: int,
    live_entries: Iterable[ConnectionEntry],
    now: datetime | None = None,
) -> dict[str, Any]:
    """What is happening in the event right now, for the host's live view."""
    now = now or timezone.now()
    sessions = active_sessions(event_id, live_entries, now)
    stored = {
        row["session_id"]: row
        for row in SessionLog.objects.filter(
            event_id=event_id,
            is_active=True,
            session_id__in=[s["sessionId"] for s in sessions],
        ).values("session_id", "device_type", "city", "country")
    }
    details = []
    for session in sessions:
        row = stored.get(session["sessionId"], {})
        details.append(
            {
                "sessionId": session["sessionId"],
                "userId": session["userId"],
                "identity": session["identity"],
                "startTime": session["startTime"],
                "lastActivity": session["lastActivity"],
                "deviceType": row.get("device_type")
                or SessionLog.DeviceType.UNKNOWN.value,
                "city": row.get("city") or "Unknown",
                "country": row.get("country") or "Unknown",
            }
        )
    users = {s["userId"] for s in sessions if s["userId"] is not None}
    return {
        "eventId": event_id,
        "timestamp": now.isoformat(),
        "activeSessions": len(sessions),
        "activeUsers": len(users),
        "anonymousSessions": sum(1 for s in sessions if s["userId"] is None),
        "recentInteractions": recent_interactions(event_id, now),
        "sessionDetails": details,
    }
