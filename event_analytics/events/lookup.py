"""Existence, joinability and ownership checks for events.

Tracking and analytics code only ever asks these three questions about an
event, so they are the single seam to the event catalogue.
"""

from __future__ import annotations

from typing import Any

from event_analytics.events.exceptions import EventNotFound
from event_analytics.events.exceptions import EventNotJoinable
from event_analytics.events.models import Event


def get_event(event_id: Any) -> Event:
    try:
        return Event.objects.get(pk=int(event_id))
    except (TypeError, ValueError, Event.DoesNotExist) as exc:
        raise EventNotFound from exc


def get_joinable_event(event_id: Any) -> Event:
    event = get_event(event_id)
    if not event.is_joinable:
        raise EventNotJoinable
    return event


def is_event_host(user, event: Event) -> bool:
    if not (user and getattr(user, "is_authenticated", False)):
        return False
    if getattr(user, "is_staff", False):
        return True
    return event.host_id == user.pk
