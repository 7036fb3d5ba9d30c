from django.http import HttpResponse
from drf_spectacular.utils import OpenApiParameter
from drf_spectacular.utils import OpenApiTypes
from drf_spectacular.utils import extend_schema
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView
from rest_framework.viewsets import GenericViewSet

from event_analytics.analytics import aggregator
from event_analytics.analytics.api.permissions import IsEventHostOrStaff
from event_analytics.analytics.api.serializers import CompareEventsQuerySerializer
from event_analytics.analytics.api.serializers import DateRangeQuerySerializer
from event_analytics.analytics.api.serializers import HeatmapBucketSerializer
from event_analytics.analytics.api.serializers import HeatmapQuerySerializer
from event_analytics.analytics.api.serializers import SessionAnalyticsQuerySerializer
from event_analytics.analytics.api.serializers import SessionAnalyticsSerializer
from event_analytics.events.lookup import get_event
from event_analytics.events.models import Event
from event_analytics.realtime.socketio import registry as live_registry

DATE_RANGE_PARAMETERS = [
    OpenApiParameter(
        name="startDate",
        type=OpenApiTypes.STR,
        location=OpenApiParameter.QUERY,
        required=False,
        description="ISO date or datetime; filters on session start",
    ),
    OpenApiParameter(
        name="endDate",
        type=OpenApiTypes.STR,
        location=OpenApiParameter.QUERY,
        required=False,
        description="ISO date or datetime (a bare date covers the whole day)",
    ),
]
PAGE_PARAMETER = OpenApiParameter(
    name="page",
    type=OpenApiTypes.STR,
    location=OpenApiParameter.QUERY,
    required=False,
    description="Restrict to one page path",
)


def _query(serializer_class, request) -> dict:
    ser = serializer_class(data=request.query_params)
    ser.is_valid(raise_exception=True)
    return ser.validated_data


class EventAnalyticsViewSet(GenericViewSet):
    """Dashboard reads for one event, restricted to its host and staff."""

    queryset = Event.objects.all()
    permission_classes = [IsEventHostOrStaff]
    lookup_value_regex = r"\d+"
    # The `page` query parameter filters by page path, not pagination
    pagination_class = None

    def _hosted_event(self, event_id):
        event = get_event(event_id)
        self.check_object_permissions(self.request, event)
        return event

    def get_object(self):
        return self._hosted_event(self.kwargs[self.lookup_field])

    @action(detail=True, methods=["get"], url_path="active-sessions")
    @extend_schema(tags=["Analytics"])
    def active_sessions(self, request, pk=None):
        event = self.get_object()
        items = aggregator.active_sessions(
            event.pk, live_registry.list_by_room(event.pk)
        )
        return Response({"eventId": event.pk, "count": len(items), "sessions": items})

    @action(detail=True, methods=["get"], url_path="realtime")
    @extend_schema(tags=["Analytics"])
    def realtime(self, request, pk=None):
        event = self.get_object()
        snapshot = aggregator.realtime_snapshot(
            event.pk, live_registry.list_by_room(event.pk)
        )
        return Response({**snapshot, "eventTitle": event.title})

    @action(detail=False, methods=["get"], url_path="compare")
    @extend_schema(
        tags=["Analytics"],
        parameters=[
            OpenApiParameter(
                name="eventIds",
                type=OpenApiTypes.STR,
                location=OpenApiParameter.QUERY,
                required=True,
                description="Comma separated event ids (or the parameter repeated)",
            ),
            *DATE_RANGE_PARAMETERS,
        ],
    )
    def compare(self, request):
        q = _query(CompareEventsQuerySerializer, request)
        events = [self._hosted_event(event_id) for event_id in q["eventIds"]]
        return Response(
            aggregator.compare_events(events, q.get("startDate"), q.get("endDate"))
        )

    @action(detail=True, methods=["get"], url_path="sessions")
    @extend_schema(
        tags=["Analytics"],
        parameters=[*DATE_RANGE_PARAMETERS, PAGE_PARAMETER],
        responses=SessionAnalyticsSerializer,
    )
    def sessions(self, request, pk=None):
        event = self.get_object()
        q = _query(SessionAnalyticsQuerySerializer, request)
        data = aggregator.session_analytics(
            event.pk, q.get("startDate"), q.get("endDate"), q.get("page")
        )
        return Response(data)

    @action(detail=True, methods=["get"], url_path="heatmap")
    @extend_schema(
        tags=["Analytics"],
        parameters=[
            *DATE_RANGE_PARAMETERS,
            PAGE_PARAMETER,
            OpenApiParameter(
                name="resolution",
                type=OpenApiTypes.INT,
                location=OpenApiParameter.QUERY,
                required=False,
                description="Grid cell size in pixels (default 10)",
            ),
        ],
        responses=HeatmapBucketSerializer(many=True),
    )
    def heatmap(self, request, pk=None):
        event = self.get_object()
        q = _query(HeatmapQuerySerializer, request)
        buckets = aggregator.heatmap(
            event.pk,
            page=q.get("page"),
            start=q.get("startDate"),
            end=q.get("endDate"),
            resolution=q["resolution"],
        )
        return Response(
            {
                "eventId": event.pk,
                "resolution": q["resolution"],
                "totalClicks": sum(b["count"] for b in buckets),
                "buckets": buckets,
            }
        )

    @action(detail=True, methods=["get"], url_path="devices")
    @extend_schema(tags=["Analytics"], parameters=DATE_RANGE_PARAMETERS)
    def devices(self, request, pk=None):
        event = self.get_object()
        q = _query(DateRangeQuerySerializer, request)
        return Response(
            aggregator.device_distribution(
                event.pk, q.get("startDate"), q.get("endDate")
            )
        )

    @action(detail=True, methods=["get"], url_path="hourly")
    @extend_schema(tags=["Analytics"], parameters=DATE_RANGE_PARAMETERS)
    def hourly(self, request, pk=None):
        event = self.get_object()
        q = _query(DateRangeQuerySerializer, request)
        return Response(
            aggregator.hourly_distribution(
                event.pk, q.get("startDate"), q.get("endDate")
            )
        )

    @action(
        detail=True,
        methods=["get"],
        url_path=r"export/(?P<export_format>csv|json)",
    )
    @extend_schema(
        tags=["Analytics"],
        parameters=DATE_RANGE_PARAMETERS,
        responses={
            (200, "text/csv"): OpenApiTypes.STR,
            (200, "application/json"): OpenApiTypes.OBJECT,
        },
    )
    def export(self, request, pk=None, export_format=None):
        event = self.get_object()
        q = _query(DateRangeQuerySerializer, request)
        rows = aggregator.export_rows(event.pk, q.get("startDate"), q.get("endDate"))
        if export_format == "csv":
            resp = HttpResponse(
                aggregator.render_csv(rows), content_type="text/csv; charset=utf-8"
            )
            resp["Content-Disposition"] = (
                f'attachment; filename="event-{event.pk}-sessions.csv"'
            )
            return resp
        return Response(
            {
                "eventId": event.pk,
                "title": event.title,
                "totalSessions": len(rows),
                "sessions": aggregator.render_structured(rows),
            }
        )


class HostOverviewView(APIView):
    """Roll-up across every event hosted by the requesting user."""

    permission_classes = [IsAuthenticated]

    @extend_schema(tags=["Analytics"], parameters=DATE_RANGE_PARAMETERS)
    def get(self, request):
        q = _query(DateRangeQuerySerializer, request)
        events = Event.objects.filter(host=request.user).order_by("-created_at")
        return Response(
            aggregator.host_overview(events, q.get("startDate"), q.get("endDate"))
        )
