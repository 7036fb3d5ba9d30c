from rest_framework.exceptions import NotFound
from rest_framework.exceptions import PermissionDenied


class EventNotFound(NotFound):
    default_detail = "Event not found"
    default_code = "event_not_found"


class EventNotJoinable(PermissionDenied):
    default_detail = "Event is not open for tracking"
    default_code = "event_not_joinable"
