"""Wire formats for tracking.

Inbound payloads are camelCase on the wire and land in ``validated_data`` under
the snake_case names the services take. The same serializers validate
Socket.IO messages, where ``sessionId`` may be omitted in favour of the
session bound to the connection (``context={"session_optional": True}``).
"""

from rest_framework import serializers

from event_analytics.tracking.models import SessionLog


class SessionContextSerializer(serializers.Serializer):
    userAgent = serializers.CharField(
        source="user_agent", required=False, allow_blank=True, max_length=512
    )
    ipAddress = serializers.CharField(
        source="ip_address", required=False, allow_blank=True, max_length=64
    )
    country = serializers.CharField(required=False, allow_blank=True, max_length=100)
    region = serializers.CharField(required=False, allow_blank=True, max_length=100)
    city = serializers.CharField(required=False, allow_blank=True, max_length=100)
    timezone = serializers.CharField(
        source="time_zone", required=False, allow_blank=True, max_length=64
    )
    deviceType = serializers.ChoiceField(
        source="device_type",
        choices=SessionLog.DeviceType.choices,
        required=False,
    )
    os = serializers.CharField(required=False, allow_blank=True, max_length=100)
    browser = serializers.CharField(required=False, allow_blank=True, max_length=100)
    screenWidth = serializers.IntegerField(
        source="screen_width", required=False, min_value=0
    )
    screenHeight = serializers.IntegerField(
        source="screen_height", required=False, min_value=0
    )
    # "1920x1080", as older clients send it
    screenResolution = serializers.CharField(
        source="screen_resolution", required=False, allow_blank=True, write_only=True
    )

    def validate(self, attrs):
        resolution = attrs.pop("screen_resolution", "")
        if resolution and "screen_width" not in attrs:
            width, sep, height = resolution.lower().partition("x")
            if not (sep and width.strip().isdigit() and height.strip().isdigit()):
                raise serializers.ValidationError(
                    {"screenResolution": "Expected WIDTHxHEIGHT"}
                )
            attrs["screen_width"] = int(width)
            attrs["screen_height"] = int(height)
        return attrs


class TrackedPayloadSerializer(serializers.Serializer):
    eventId = serializers.IntegerField(source="event_id", min_value=1)
    sessionId = serializers.CharField(source="session_id", max_length=128)

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        if self.context.get("session_optional"):
            self.fields["sessionId"].required = False


class StartSessionSerializer(TrackedPayloadSerializer):
    context = SessionContextSerializer(required=False)


class JoinRoomSerializer(StartSessionSerializer):
    pass


class CursorSampleSerializer(TrackedPayloadSerializer):
    x = serializers.FloatField()
    y = serializers.FloatField()
    page = serializers.CharField(max_length=512)
    element = serializers.CharField(
        required=False, allow_blank=True, allow_null=True, max_length=512
    )
    action = serializers.ChoiceField(
        choices=SessionLog.Action.choices, default=SessionLog.Action.MOVE
    )


class ClickSerializer(TrackedPayloadSerializer):
    x = serializers.FloatField()
    y = serializers.FloatField()
    page = serializers.CharField(max_length=512)
    element = serializers.CharField(
        required=False, allow_blank=True, allow_null=True, max_length=512
    )


class HoverSerializer(TrackedPayloadSerializer):
    x = serializers.FloatField()
    y = serializers.FloatField()
    page = serializers.CharField(max_length=512)
    duration = serializers.IntegerField(source="duration_ms", min_value=0, default=0)


class ScrollSerializer(TrackedPayloadSerializer):
    page = serializers.CharField(max_length=512)
    scrollDepth = serializers.FloatField(source="depth", min_value=0, max_value=100)


class PageVisitSerializer(TrackedPayloadSerializer):
    page = serializers.CharField(max_length=512)
    timeSpent = serializers.IntegerField(source="time_spent", min_value=0, default=0)


class EndSessionSerializer(TrackedPayloadSerializer):
    pass


class LeaveRoomSerializer(serializers.Serializer):
    pass


class SessionLogSerializer(serializers.ModelSerializer[SessionLog]):
    sessionId = serializers.CharField(source="session_id", read_only=True)
    eventId = serializers.IntegerField(source="event_id", read_only=True)
    userId = serializers.IntegerField(source="user_id", read_only=True, allow_null=True)
    startTime = serializers.DateTimeField(source="start_time", read_only=True)
    lastActivity = serializers.DateTimeField(source="last_activity", read_only=True)
    endTime = serializers.DateTimeField(source="end_time", read_only=True)
    isActive = serializers.BooleanField(source="is_active", read_only=True)
    totalClicks = serializers.IntegerField(source="total_clicks", read_only=True)
    totalScrolls = serializers.IntegerField(source="total_scrolls", read_only=True)
    deviceType = serializers.CharField(source="device_type", read_only=True)
    screenResolution = serializers.CharField(source="screen_resolution", read_only=True)
    timezone = serializers.CharField(source="time_zone", read_only=True)
    pagesVisited = serializers.JSONField(source="pages_visited", read_only=True)
    scrollDepth = serializers.JSONField(source="scroll_depth", read_only=True)

    class Meta:
        model = SessionLog
        fields = [
            "id",
            "sessionId",
            "eventId",
            "userId",
            "startTime",
            "lastActivity",
            "endTime",
            "duration",
            "isActive",
            "totalClicks",
            "totalScrolls",
            "deviceType",
            "os",
            "browser",
            "screenResolution",
            "country",
            "region",
            "city",
            "timezone",
            "pagesVisited",
            "scrollDepth",
        ]
        read_only_fields = fields


class SessionLogDetailSerializer(SessionLogSerializer):
    userAgent = serializers.CharField(source="user_agent", read_only=True)
    ipAddress = serializers.CharField(source="ip_address", read_only=True)
    cursorData = serializers.JSONField(source="cursor_data", read_only=True)
    heatmapClicks = serializers.JSONField(source="heatmap_clicks", read_only=True)
    heatmapHovers = serializers.JSONField(source="heatmap_hovers", read_only=True)

    class Meta(SessionLogSerializer.Meta):
        fields = [
            *SessionLogSerializer.Meta.fields,
            "userAgent",
            "ipAddress",
            "cursorData",
            "heatmapClicks",
            "heatmapHovers",
        ]
        read_only_fields = fields


class EndSessionResultSerializer(serializers.Serializer):
    eventId = serializers.IntegerField()
    sessionId = serializers.CharField()
    duration = serializers.IntegerField(allow_null=True)
    isActive = serializers.BooleanField()
