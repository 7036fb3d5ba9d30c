import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("events", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="SessionLog",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("session_id", models.CharField(max_length=128)),
                ("user_agent", models.CharField(blank=True, default="", max_length=512)),
                ("ip_address", models.CharField(blank=True, default="", max_length=64)),
                ("country", models.CharField(blank=True, default="", max_length=100)),
                ("region", models.CharField(blank=True, default="", max_length=100)),
                ("city", models.CharField(blank=True, default="", max_length=100)),
                ("time_zone", models.CharField(blank=True, default="", max_length=64)),
                ("device_type", models.CharField(choices=[("desktop", "Desktop"), ("mobile", "Mobile"), ("tablet", "Tablet"), ("unknown", "Unknown")], default="unknown", max_length=16)),
                ("os", models.CharField(blank=True, default="", max_length=100)),
                ("browser", models.CharField(blank=True, default="", max_length=100)),
                ("screen_width", models.PositiveIntegerField(blank=True, null=True)),
                ("screen_height", models.PositiveIntegerField(blank=True, null=True)),
                ("start_time", models.DateTimeField(default=django.utils.timezone.now)),
                ("last_activity", models.DateTimeField(default=django.utils.timezone.now)),
                ("end_time", models.DateTimeField(blank=True, null=True)),
                ("duration", models.PositiveIntegerField(blank=True, null=True)),
                ("is_active", models.BooleanField(default=True)),
                ("total_clicks", models.PositiveIntegerField(default=0)),
                ("total_scrolls", models.PositiveIntegerField(default=0)),
                ("cursor_data", models.JSONField(blank=True, default=list)),
                ("heatmap_clicks", models.JSONField(blank=True, default=list)),
                ("heatmap_hovers", models.JSONField(blank=True, default=list)),
                ("scroll_depth", models.JSONField(blank=True, default=list)),
                ("pages_visited", models.JSONField(blank=True, default=list)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("event", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="session_logs", to="events.event")),
                ("user", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="session_logs", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "ordering": ["-start_time"],
                "indexes": [
                    models.Index(fields=["event", "start_time"], name="tracking_se_event_i_6b1f0e_idx"),
                    models.Index(fields=["event", "is_active", "last_activity"], name="tracking_se_event_i_a24c7d_idx"),
                    models.Index(fields=["session_id", "start_time"], name="tracking_se_session_3e9d51_idx"),
                    models.Index(fields=["user", "event"], name="tracking_se_user_id_c80a2f_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(condition=models.Q(("is_active", True)), fields=("session_id", "event"), name="tracking_one_active_session_per_event"),
                ],
            },
        ),
    ]
