from django.contrib import admin

from event_analytics.tracking import models


@admin.register(models.SessionLog)
class SessionLogAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "session_id",
        "event",
        "user",
        "is_active",
        "start_time",
        "duration",
        "total_clicks",
        "total_scrolls",
    ]
    search_fields = ["session_id", "user__username", "ip_address", "city", "country"]
    list_filter = ["is_active", "device_type", "start_time", "created_at"]
    raw_id_fields = ["event", "user"]
    readonly_fields = [
        "cursor_data",
        "heatmap_clicks",
        "heatmap_hovers",
        "scroll_depth",
        "pages_visited",
        "created_at",
        "updated_at",
    ]
