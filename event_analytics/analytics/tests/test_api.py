import pytest
from rest_framework import status

from event_analytics.events.tests.factories import create_event
from event_analytics.realtime.socketio import registry as live_registry
from event_analytics.tracking.tests.factories import clicks
from event_analytics.tracking.tests.factories import create_session_log
from event_analytics.users.tests.factories import create_user

pytestmark = pytest.mark.django_db


def url(event, action):
    return f"/api/v1/analytics/events/{event.pk}/{action}/"


@pytest.fixture
def host_client(api_client, host):
    api_client.force_authenticate(user=host)
    return api_client


class TestPermissions:
    @pytest.mark.parametrize(
        "action",
        [
            "sessions",
            "heatmap",
            "devices",
            "hourly",
            "active-sessions",
            "realtime",
            "export/csv",
        ],
    )
    def test_non_host_is_forbidden(self, api_client, event, user, action):
        api_client.force_authenticate(user=user)
        res = api_client.get(url(event, action))
        assert res.status_code == status.HTTP_403_FORBIDDEN

    def test_anonymous_is_rejected(self, api_client, event):
        res = api_client.get(url(event, "sessions"))
        assert res.status_code == status.HTTP_401_UNAUTHORIZED

    def test_staff_can_read_any_event(self, api_client, event):
        api_client.force_authenticate(user=create_user("ops", is_staff=True))
        assert api_client.get(url(event, "sessions")).status_code == status.HTTP_200_OK

    def test_unknown_event_is_404(self, host_client, db):
        res = host_client.get("/api/v1/analytics/events/424242/sessions/")
        assert res.status_code == status.HTTP_404_NOT_FOUND


class TestEndpoints:
    def test_sessions_with_page_filter(self, host_client, event):
        create_session_log(
            event, "a", total_clicks=2, pages_visited=[{"page": "/", "timeSpent": 8}]
        )
        res = host_client.get(url(event, "sessions"), {"page": "/"})
        assert res.status_code == status.HTTP_200_OK
        assert res.data["totalSessions"] == 1
        assert res.data["totalClicks"] == 2
        assert res.data["pageAnalytics"]["totalTimeSpent"] == 8

    def test_invalid_date_range(self, host_client, event):
        res = host_client.get(
            url(event, "sessions"),
            {"startDate": "2025-03-02", "endDate": "2025-03-01"},
        )
        assert res.status_code == status.HTTP_400_BAD_REQUEST
        assert "endDate" in res.data

        res = host_client.get(url(event, "sessions"), {"startDate": "yesterday"})
        assert res.status_code == status.HTTP_400_BAD_REQUEST

    def test_heatmap(self, host_client, event):
        create_session_log(event, "a", heatmap_clicks=clicks((12, 18), (14, 19)))
        res = host_client.get(url(event, "heatmap"), {"resolution": 10})
        assert res.status_code == status.HTTP_200_OK
        assert res.data["totalClicks"] == 2
        assert res.data["buckets"][0]["x"] == 13.0

        res = host_client.get(url(event, "heatmap"), {"resolution": 0})
        assert res.status_code == status.HTTP_400_BAD_REQUEST

    def test_devices_and_hourly(self, host_client, event):
        create_session_log(event, "a", device_type="tablet")
        devices = host_client.get(url(event, "devices"))
        assert devices.data[0]["deviceType"] == "tablet"
        hourly = host_client.get(url(event, "hourly"))
        assert sum(row["count"] for row in hourly.data) == 1

    def test_active_sessions_merges_live_connections(self, host_client, event):
        create_session_log(event, "stored")
        live_registry.register("sid-live")
        live_registry.set_room("sid-live", event.pk)
        live_registry.bind_session("sid-live", "live-session")
        try:
            res = host_client.get(url(event, "active-sessions"))
        finally:
            live_registry.remove("sid-live")
        assert res.status_code == status.HTTP_200_OK
        assert res.data["count"] == 2
        sources = {s["sessionId"]: s["source"] for s in res.data["sessions"]}
        assert sources == {"live-session": "live", "stored": "store"}

    def test_realtime_snapshot(self, host_client, event):
        create_session_log(event, "stored", city="Lagos")
        live_registry.register("sid-live")
        live_registry.set_room("sid-live", event.pk)
        live_registry.bind_session("sid-live", "live-session")
        try:
            res = host_client.get(url(event, "realtime"))
        finally:
            live_registry.remove("sid-live")
        assert res.status_code == status.HTTP_200_OK
        assert res.data["eventTitle"] == event.title
        assert res.data["activeSessions"] == 2
        assert res.data["activeUsers"] == 0
        assert res.data["recentInteractions"] == []
        cities = {d["sessionId"]: d["city"] for d in res.data["sessionDetails"]}
        assert cities == {"live-session": "Unknown", "stored": "Lagos"}

    def test_csv_export(self, host_client, event):
        create_session_log(event, "a")
        res = host_client.get(url(event, "export/csv"))
        assert res.status_code == status.HTTP_200_OK
        assert res["Content-Type"].startswith("text/csv")
        assert "attachment" in res["Content-Disposition"]
        lines = res.content.decode().strip().splitlines()
        assert lines[0].startswith('"Session ID"')
        assert len(lines) == 2

    def test_json_export(self, host_client, event):
        create_session_log(event, "a", city="Nairobi")
        res = host_client.get(url(event, "export/json"))
        assert res.status_code == status.HTTP_200_OK
        assert res.data["totalSessions"] == 1
        assert res.data["title"] == event.title
        assert res.data["sessions"][0]["location"]["city"] == "Nairobi"

    def test_unsupported_export_format(self, host_client, event):
        res = host_client.get(url(event, "export/xml"))
        assert res.status_code == status.HTTP_404_NOT_FOUND


def test_host_overview_lists_own_events_only(api_client, host, event):
    other_host = create_user("someone-else")
    create_event(other_host, title="Not mine")
    create_session_log(event, "a")
    api_client.force_authenticate(user=host)

    res = api_client.get("/api/v1/analytics/overview/")
    assert res.status_code == status.HTTP_200_OK
    assert [item["title"] for item in res.data["events"]] == [event.title]
    assert res.data["totalSessions"] == 1


class TestCompare:
    compare_url = "/api/v1/analytics/events/compare/"

    def test_compares_own_events_in_requested_order(self, host_client, host, event):
        workshop = create_event(host, title="Workshop")
        create_session_log(event, "a", total_clicks=2)
        res = host_client.get(self.compare_url, {"eventIds": f"{workshop.pk},{event.pk}"})
        assert res.status_code == status.HTTP_200_OK
        assert [e["eventId"] for e in res.data["events"]] == [workshop.pk, event.pk]
        assert res.data["summary"]["totalSessions"] == 1
        assert res.data["summary"]["mostEngagedEventId"] == event.pk

    def test_accepts_repeated_parameter(self, host_client, host, event):
        workshop = create_event(host, title="Workshop")
        res = host_client.get(self.compare_url, {"eventIds": [event.pk, workshop.pk]})
        assert res.status_code == status.HTTP_200_OK
        assert res.data["summary"]["totalEvents"] == 2

    def test_someone_elses_event_is_forbidden(self, host_client, event):
        theirs = create_event(create_user("someone-else"), title="Not mine")
        res = host_client.get(self.compare_url, {"eventIds": f"{event.pk},{theirs.pk}"})
        assert res.status_code == status.HTTP_403_FORBIDDEN

    def test_unknown_event_is_404(self, host_client, event):
        res = host_client.get(self.compare_url, {"eventIds": f"{event.pk},424242"})
        assert res.status_code == status.HTTP_404_NOT_FOUND

    @pytest.mark.parametrize("query", [{}, {"eventIds": "abc"}, {"eventIds": ","}])
    def test_invalid_ids(self, host_client, event, query):
        res = host_client.get(self.compare_url, query)
        assert res.status_code == status.HTTP_400_BAD_REQUEST
        assert "eventIds" in res.data
