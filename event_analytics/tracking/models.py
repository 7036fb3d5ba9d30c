import math
from datetime import datetime

from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils import timezone


def _stamp(at: datetime) -> str:
    return at.isoformat()


class SessionLog(models.Model):
    """One tracking session: a single browser context visiting one event.

    - Identified by (session_id, event); at most one active row per pair
    - Context snapshot (agent, IP, location, device) written at creation
    - Bounded JSON buffers; scroll depth and page time are merged in place
    - ``duration`` stays null until the session is closed
    """

    class DeviceType(models.TextChoices):
        DESKTOP = "desktop", "Desktop"
        MOBILE = "mobile", "Mobile"
        TABLET = "tablet", "Tablet"
        UNKNOWN = "unknown", "Unknown"

    class Action(models.TextChoices):
        MOVE = "move", "Move"
        CLICK = "click", "Click"
        HOVER = "hover", "Hover"
        SCROLL = "scroll", "Scroll"
        FOCUS = "focus", "Focus"
        BLUR = "blur", "Blur"

    session_id = models.CharField(max_length=128)
    event = models.ForeignKey(
        "events.Event",
        on_delete=models.CASCADE,
        related_name="session_logs",
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="session_logs",
    )

    # Context snapshot
    user_agent = models.CharField(max_length=512, blank=True, default="")
    ip_address = models.CharField(max_length=64, blank=True, default="")
    country = models.CharField(max_length=100, blank=True, default="")
    region = models.CharField(max_length=100, blank=True, default="")
    city = models.CharField(max_length=100, blank=True, default="")
    time_zone = models.CharField(max_length=64, blank=True, default="")
    device_type = models.CharField(
        max_length=16, choices=DeviceType.choices, default=DeviceType.UNKNOWN
    )
    os = models.CharField(max_length=100, blank=True, default="")
    browser = models.CharField(max_length=100, blank=True, default="")
    screen_width = models.PositiveIntegerField(null=True, blank=True)
    screen_height = models.PositiveIntegerField(null=True, blank=True)

    # Lifecycle
    start_time = models.DateTimeField(default=timezone.now)
    last_activity = models.DateTimeField(default=timezone.now)
    end_time = models.DateTimeField(null=True, blank=True)
    duration = models.PositiveIntegerField(null=True, blank=True)
    is_active = models.BooleanField(default=True)

    total_clicks = models.PositiveIntegerField(default=0)
    total_scrolls = models.PositiveIntegerField(default=0)

    cursor_data = models.JSONField(default=list, blank=True)
    heatmap_clicks = models.JSONField(default=list, blank=True)
    heatmap_hovers = models.JSONField(default=list, blank=True)
    scroll_depth = models.JSONField(default=list, blank=True)
    pages_visited = models.JSONField(default=list, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-start_time"]
        constraints = [
            models.UniqueConstraint(
                fields=["session_id", "event"],
                condition=Q(is_active=True),
                name="tracking_one_active_session_per_event",
            ),
        ]
        indexes = [
            models.Index(
                fields=["event", "start_time"], name="tracking_se_event_i_6b1f0e_idx"
            ),
            models.Index(
                fields=["event", "is_active", "last_activity"],
                name="tracking_se_event_i_a24c7d_idx",
            ),
            models.Index(
                fields=["session_id", "start_time"],
                name="tracking_se_session_3e9d51_idx",
            ),
            models.Index(
                fields=["user", "event"], name="tracking_se_user_id_c80a2f_idx"
            ),
        ]

    def __str__(self) -> str:  # pragma: no cover - simple repr
        return f"SessionLog({self.session_id}@{self.event_id})"

    @property
    def screen_resolution(self) -> str:
        if self.screen_width and self.screen_height:
            return f"{self.screen_width}x{self.screen_height}"
        return ""

    @property
    def elapsed_seconds(self) -> int:
        """Closed duration, or time elapsed so far for an open session."""
        if self.duration is not None:
            return self.duration
        return max(0, math.floor((timezone.now() - self.start_time).total_seconds()))

    def touch(self, at: datetime | None = None) -> None:
        self.last_activity = at or timezone.now()

    def add_cursor_sample(
        self,
        x: float,
        y: float,
        page: str,
        *,
        element: str | None = None,
        action: str = Action.MOVE,
        at: datetime | None = None,
        buffer_size: int | None = None,
    ) -> None:
        """Append a raw sample, keeping only the most recent ``buffer_size``.

        Click samples also land in the click heatmap and the click counter,
        whichever channel delivered them.
        """
        at = at or timezone.now()
        limit = buffer_size or settings.TRACKING_CURSOR_BUFFER_SIZE
        self.cursor_data.append(
            {
                "x": x,
                "y": y,
                "timestamp": _stamp(at),
                "page": page,
                "element": element,
                "action": str(action),
            }
        )
        if len(self.cursor_data) > limit:
            self.cursor_data = self.cursor_data[-limit:]
        if action == self.Action.CLICK:
            self.heatmap_clicks.append(
                {"x": x, "y": y, "page": page, "timestamp": _stamp(at)}
            )
            self.total_clicks += 1

    def add_hover(
        self,
        x: float,
        y: float,
        page: str,
        *,
        duration_ms: int = 0,
        at: datetime | None = None,
    ) -> None:
        at = at or timezone.now()
        self.heatmap_hovers.append(
            {
                "x": x,
                "y": y,
                "durationMs": duration_ms,
                "page": page,
                "timestamp": _stamp(at),
            }
        )

    def update_scroll_depth(
        self, page: str, depth: float, at: datetime | None = None
    ) -> None:
        """Keep only the deepest scroll seen per page."""
        at = at or timezone.now()
        self.total_scrolls += 1
        for entry in self.scroll_depth:
            if entry.get("page") == page:
                if depth > entry.get("maxDepth", 0):
                    entry["maxDepth"] = depth
                    entry["timestamp"] = _stamp(at)
                return
        self.scroll_depth.append(
            {"page": page, "maxDepth": depth, "timestamp": _stamp(at)}
        )

    def add_page_visit(
        self, page: str, time_spent: int = 0, at: datetime | None = None
    ) -> None:
        """Accumulate time per page; first visit inserts the entry."""
        at = at or timezone.now()
        for entry in self.pages_visited:
            if entry.get("page") == page:
                entry["timeSpent"] = entry.get("timeSpent", 0) + time_spent
                return
        self.pages_visited.append(
            {"page": page, "timeSpent": time_spent, "visitedAt": _stamp(at)}
        )

    def end_session(self, at: datetime | None = None) -> bool:
        """Close the session once. Returns False when it was already closed."""
        if not self.is_active:
            return False
        at = at or timezone.now()
        at = max(at, self.start_time)
        self.end_time = at
        self.duration = math.floor((at - self.start_time).total_seconds())
        self.is_active = False
        return True
