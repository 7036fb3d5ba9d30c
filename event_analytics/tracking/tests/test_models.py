from datetime import timedelta

import pytest
from django.utils import timezone

from event_analytics.tracking.models import SessionLog


@pytest.fixture
def log() -> SessionLog:
    return SessionLog(session_id="s1", event_id=1, start_time=timezone.now())


class TestSessionLogBuffers:
    def test_cursor_buffer_keeps_most_recent_samples(self, log):
        for i in range(5):
            log.add_cursor_sample(i, i, "/", buffer_size=3)
        assert [sample["x"] for sample in log.cursor_data] == [2, 3, 4]
        assert log.total_clicks == 0

    def test_click_sample_feeds_heatmap(self, log):
        log.add_cursor_sample(12, 18, "/agenda", element="#cta", action="click")
        assert log.total_clicks == 1
        assert log.heatmap_clicks[0]["x"] == 12
        assert log.heatmap_clicks[0]["page"] == "/agenda"
        assert log.cursor_data[0]["element"] == "#cta"
        assert log.cursor_data[0]["action"] == "click"

    def test_hover_records_duration(self, log):
        log.add_hover(3, 4, "/", duration_ms=250)
        assert log.heatmap_hovers[0]["durationMs"] == 250

    def test_scroll_depth_keeps_maximum_per_page(self, log):
        log.update_scroll_depth("/", 30)
        log.update_scroll_depth("/", 20)
        log.update_scroll_depth("/faq", 10)
        depths = {entry["page"]: entry["maxDepth"] for entry in log.scroll_depth}
        assert depths == {"/": 30, "/faq": 10}
        assert log.total_scrolls == 3

    def test_page_time_accumulates(self, log):
        log.add_page_visit("/", 10)
        log.add_page_visit("/", 15)
        log.add_page_visit("/speakers", 4)
        assert log.pages_visited[0]["timeSpent"] == 25
        assert len(log.pages_visited) == 2


class TestSessionLogLifecycle:
    def test_end_session_sets_whole_second_duration(self, log):
        closed_at = log.start_time + timedelta(seconds=90, milliseconds=700)
        assert log.end_session(closed_at) is True
        assert log.duration == 90
        assert log.end_time == closed_at
        assert log.is_active is False

    def test_end_session_is_idempotent(self, log):
        log.end_session(log.start_time + timedelta(seconds=5))
        assert log.end_session(log.start_time + timedelta(seconds=500)) is False
        assert log.duration == 5

    def test_end_before_start_clamps_to_zero(self, log):
        log.end_session(log.start_time - timedelta(seconds=3))
        assert log.duration == 0

    def test_screen_resolution(self, log):
        assert log.screen_resolution == ""
        log.screen_width, log.screen_height = 1920, 1080
        assert log.screen_resolution == "1920x1080"

    def test_elapsed_seconds_for_open_session(self, log):
        log.start_time = timezone.now() - timedelta(seconds=30)
        assert 29 <= log.elapsed_seconds <= 31
