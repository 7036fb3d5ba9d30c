from django.contrib import admin

from event_analytics.events import models


@admin.register(models.Event)
class EventAdmin(admin.ModelAdmin):
    list_display = ["id", "title", "host", "status", "is_public", "start_date"]
    search_fields = ["title", "host__username", "host__email"]
    list_filter = ["status", "is_public", "start_date", "created_at"]
    raw_id_fields = ["host"]
