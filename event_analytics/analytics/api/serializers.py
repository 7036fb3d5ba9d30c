from datetime import datetime
from datetime import time

from django.conf import settings
from django.utils import timezone
from django.utils.dateparse import parse_date
from django.utils.dateparse import parse_datetime
from rest_framework import serializers


def _parse_bound(value: str, *, end_of_day: bool) -> datetime:
    parsed = parse_datetime(value)
    if parsed is None:
        day = parse_date(value)
        if day is None:
            msg = "Use an ISO date (YYYY-MM-DD) or datetime."
            raise serializers.ValidationError(msg)
        parsed = datetime.combine(day, time.max if end_of_day else time.min)
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed, timezone.get_current_timezone())
    return parsed


class DateRangeQuerySerializer(serializers.Serializer):
    startDate = serializers.CharField(required=False, allow_blank=True)
    endDate = serializers.CharField(required=False, allow_blank=True)

    def validate_startDate(self, value):  # noqa: N802
        return _parse_bound(value, end_of_day=False) if value else None

    def validate_endDate(self, value):  # noqa: N802
        return _parse_bound(value, end_of_day=True) if value else None

    def validate(self, attrs):
        start, end = attrs.get("startDate"), attrs.get("endDate")
        if start and end and start > end:
            raise serializers.ValidationError(
                {"endDate": "endDate must not be before startDate."}
            )
        return attrs


MAX_COMPARED_EVENTS = 20


class CompareEventsQuerySerializer(DateRangeQuerySerializer):
    # ?eventIds=1,2 or ?eventIds=1&eventIds=2
    eventIds = serializers.ListField(child=serializers.CharField(), allow_empty=False)

    def validate_eventIds(self, value):  # noqa: N802
        ids: list[int] = []
        for chunk in value:
            for raw in chunk.split(","):
                part = raw.strip()
                if not part:
                    continue
                if not part.isdigit():
                    msg = f"Invalid event id: {part}"
                    raise serializers.ValidationError(msg)
                if int(part) not in ids:
                    ids.append(int(part))
        if not ids:
            msg = "At least one event id is required."
            raise serializers.ValidationError(msg)
        if len(ids) > MAX_COMPARED_EVENTS:
            msg = f"Compare at most {MAX_COMPARED_EVENTS} events at a time."
            raise serializers.ValidationError(msg)
        return ids


class SessionAnalyticsQuerySerializer(DateRangeQuerySerializer):
    page = serializers.CharField(required=False, allow_blank=False, max_length=512)


class HeatmapQuerySerializer(SessionAnalyticsQuerySerializer):
    resolution = serializers.IntegerField(
        required=False,
        default=10,
        min_value=1,
        max_value=settings.TRACKING_HEATMAP_MAX_RESOLUTION,
    )


class SessionAnalyticsSerializer(serializers.Serializer):
    totalSessions = serializers.IntegerField()
    totalClicks = serializers.IntegerField()
    totalScrolls = serializers.IntegerField()
    avgDuration = serializers.FloatField()
    uniqueUsers = serializers.IntegerField()
    anonymousSessions = serializers.IntegerField()
    totalPageViews = serializers.IntegerField()
    avgClicksPerSession = serializers.FloatField()
    avgScrollsPerSession = serializers.FloatField()
    pageAnalytics = serializers.DictField(required=False)


class HeatmapBucketSerializer(serializers.Serializer):
    gridX = serializers.IntegerField()
    gridY = serializers.IntegerField()
    page = serializers.CharField()
    count = serializers.IntegerField()
    x = serializers.FloatField()
    y = serializers.FloatField()


class RealtimeAnalyticsRequestSerializer(serializers.Serializer):
    """Socket.IO ``request-analytics`` payload."""

    eventId = serializers.IntegerField(source="event_id", min_value=1)
