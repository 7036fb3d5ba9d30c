from drf_spectacular.utils import OpenApiParameter
from drf_spectacular.utils import OpenApiTypes
from drf_spectacular.utils import extend_schema
from rest_framework import status
from rest_framework.decorators import action
from rest_framework.exceptions import NotFound
from rest_framework.exceptions import PermissionDenied
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.viewsets import GenericViewSet

from event_analytics.events.lookup import get_event
from event_analytics.events.lookup import get_joinable_event
from event_analytics.events.lookup import is_event_host
from event_analytics.tracking import services
from event_analytics.tracking.api.serializers import ClickSerializer
from event_analytics.tracking.api.serializers import CursorSampleSerializer
from event_analytics.tracking.api.serializers import EndSessionResultSerializer
from event_analytics.tracking.api.serializers import EndSessionSerializer
from event_analytics.tracking.api.serializers import HoverSerializer
from event_analytics.tracking.api.serializers import PageVisitSerializer
from event_analytics.tracking.api.serializers import ScrollSerializer
from event_analytics.tracking.api.serializers import SessionLogDetailSerializer
from event_analytics.tracking.api.serializers import SessionLogSerializer
from event_analytics.tracking.api.serializers import StartSessionSerializer
from event_analytics.tracking.models import SessionLog


def _get_remote_ip(request) -> str | None:
    """Best-effort remote client IP extraction.

    Prefers `X-Forwarded-For` (first hop) when present, otherwise falls back to
    `REMOTE_ADDR`.
    """
    meta = getattr(request, "META", {}) or {}
    xff = meta.get("HTTP_X_FORWARDED_FOR")
    if xff:
        # XFF format: client, proxy1, proxy2
        first = str(xff).split(",")[0].strip()
        return first or None
    real_ip = meta.get("HTTP_X_REAL_IP")
    if real_ip:
        return str(real_ip).strip() or None
    ra = meta.get("REMOTE_ADDR")
    return str(ra).strip() if ra else None


def _request_user_id(request) -> int | None:
    user = getattr(request, "user", None)
    if user is not None and getattr(user, "is_authenticated", False):
        return user.pk
    return None


def _require_host(request, event) -> None:
    if not is_event_host(request.user, event):
        msg = "Only the event host can read its sessions"
        raise PermissionDenied(msg)


class TrackingViewSet(GenericViewSet):
    """HTTP ingestion for clients that cannot hold a Socket.IO connection.

    Writes always persist (no move sampling) and share the SessionLog services
    with the realtime pipeline. Reads are limited to the event host.
    """

    permission_classes = [AllowAny]
    serializer_class = SessionLogSerializer
    queryset = SessionLog.objects.select_related("event")

    def _validated(self, serializer_class):
        ser = serializer_class(data=self.request.data)
        ser.is_valid(raise_exception=True)
        vd = dict(ser.validated_data)
        get_joinable_event(vd["event_id"])
        return vd

    @action(detail=False, methods=["post"], url_path="sessions")
    @extend_schema(
        tags=["Tracking"],
        request=StartSessionSerializer,
        responses={200: SessionLogSerializer, 201: SessionLogSerializer},
    )
    def start_session(self, request):
        vd = self._validated(StartSessionSerializer)
        context = dict(vd.get("context") or {})
        context.setdefault("ip_address", _get_remote_ip(request) or "")
        context.setdefault("user_agent", request.META.get("HTTP_USER_AGENT", ""))
        log, created = services.start_or_resume_session(
            vd["event_id"],
            vd["session_id"],
            user_id=_request_user_id(request),
            context=context,
        )
        return Response(
            SessionLogSerializer(log).data,
            status=status.HTTP_201_CREATED if created else status.HTTP_200_OK,
        )

    @action(detail=False, methods=["post"], url_path="movement")
    @extend_schema(
        tags=["Tracking"],
        request=CursorSampleSerializer,
        responses=SessionLogSerializer,
    )
    def movement(self, request):
        vd = self._validated(CursorSampleSerializer)
        log = services.record_movement(
            vd.pop("event_id"),
            vd.pop("session_id"),
            user_id=_request_user_id(request),
            **vd,
        )
        return Response(SessionLogSerializer(log).data)

    @action(detail=False, methods=["post"], url_path="click")
    @extend_schema(
        tags=["Tracking"], request=ClickSerializer, responses=SessionLogSerializer
    )
    def click(self, request):
        vd = self._validated(ClickSerializer)
        log = services.record_click(
            vd.pop("event_id"),
            vd.pop("session_id"),
            user_id=_request_user_id(request),
            **vd,
        )
        return Response(SessionLogSerializer(log).data)

    @action(detail=False, methods=["post"], url_path="hover")
    @extend_schema(
        tags=["Tracking"], request=HoverSerializer, responses=SessionLogSerializer
    )
    def hover(self, request):
        vd = self._validated(HoverSerializer)
        log = services.record_hover(
            vd.pop("event_id"),
            vd.pop("session_id"),
            user_id=_request_user_id(request),
            **vd,
        )
        return Response(SessionLogSerializer(log).data)

    @action(detail=False, methods=["post"], url_path="scroll")
    @extend_schema(
        tags=["Tracking"], request=ScrollSerializer, responses=SessionLogSerializer
    )
    def scroll(self, request):
        vd = self._validated(ScrollSerializer)
        log = services.record_scroll(
            vd.pop("event_id"),
            vd.pop("session_id"),
            user_id=_request_user_id(request),
            **vd,
        )
        return Response(SessionLogSerializer(log).data)

    @action(detail=False, methods=["post"], url_path="page-visit")
    @extend_schema(
        tags=["Tracking"], request=PageVisitSerializer, responses=SessionLogSerializer
    )
    def page_visit(self, request):
        vd = self._validated(PageVisitSerializer)
        log = services.record_page_visit(
            vd.pop("event_id"),
            vd.pop("session_id"),
            user_id=_request_user_id(request),
            **vd,
        )
        return Response(SessionLogSerializer(log).data)

    @action(detail=False, methods=["post"], url_path="end-session")
    @extend_schema(
        tags=["Tracking"],
        request=EndSessionSerializer,
        responses=EndSessionResultSerializer,
    )
    def end_session(self, request):
        ser = EndSessionSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        vd = ser.validated_data
        event = get_event(vd["event_id"])
        # Closing is idempotent: an unknown or already closed session succeeds
        log = services.end_session(event.pk, vd["session_id"])
        return Response(
            {
                "eventId": event.pk,
                "sessionId": vd["session_id"],
                "duration": log.duration if log is not None else None,
                "isActive": bool(log and log.is_active),
            }
        )

    @action(
        detail=False,
        methods=["get"],
        url_path=r"sessions/(?P<session_id>[^/]+)",
    )
    @extend_schema(
        tags=["Tracking"],
        parameters=[
            OpenApiParameter(
                name="eventId",
                type=OpenApiTypes.INT,
                location=OpenApiParameter.QUERY,
                required=True,
            ),
        ],
        responses=SessionLogDetailSerializer,
    )
    def session_detail(self, request, session_id=None):
        event_id = request.query_params.get("eventId")
        if not event_id:
            raise ValidationError({"eventId": "This query parameter is required."})
        event = get_event(event_id)
        _require_host(request, event)
        log = services.latest_session(event.pk, session_id)
        if log is None:
            msg = "Session not found"
            raise NotFound(msg)
        return Response(SessionLogDetailSerializer(log).data)

    @action(
        detail=False,
        methods=["get"],
        url_path=r"events/(?P<event_id>\d+)/sessions",
    )
    @extend_schema(
        tags=["Tracking"],
        parameters=[
            OpenApiParameter(
                name="active",
                type=OpenApiTypes.BOOL,
                location=OpenApiParameter.QUERY,
                required=False,
                description="Only sessions that are still open",
            ),
        ],
        responses=SessionLogSerializer(many=True),
    )
    def event_sessions(self, request, event_id=None):
        event = get_event(event_id)
        _require_host(request, event)
        qs = self.get_queryset().filter(event=event).order_by("-start_time", "-pk")
        if request.query_params.get("active", "").lower() in {"1", "true", "yes"}:
            qs = qs.filter(is_active=True)
        page = self.paginate_queryset(qs)
        if page is not None:
            return self.get_paginated_response(SessionLogSerializer(page, many=True).data)
        return Response(SessionLogSerializer(qs, many=True).data)

