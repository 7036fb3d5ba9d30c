from rest_framework.permissions import BasePermission

from event_analytics.events.lookup import is_event_host


class IsEventHostOrStaff(BasePermission):
    """Analytics are readable by the event's host and by staff."""

    message = "Only the event host can view its analytics"

    def has_permission(self, request, view) -> bool:
        u = getattr(request, "user", None)
        return bool(u and getattr(u, "is_authenticated", False))

    def has_object_permission(self, request, view, obj) -> bool:
        return is_event_host(request.user, obj)
