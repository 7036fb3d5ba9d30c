from django.conf import settings
from django.urls import path
from rest_framework.routers import DefaultRouter
from rest_framework.routers import SimpleRouter

from event_analytics.analytics.api.views import EventAnalyticsViewSet
from event_analytics.analytics.api.views import HostOverviewView
from event_analytics.tracking.api.views import TrackingViewSet
from event_analytics.users.api.views import UserViewSet

router = DefaultRouter() if settings.DEBUG else SimpleRouter()

router.register("users", UserViewSet)
# Ingestion endpoints are collection actions: /tracking/<action>/
router.register("tracking", TrackingViewSet, basename="tracking")
router.register(
    "analytics/events",
    EventAnalyticsViewSet,
    basename="event-analytics",
)


app_name = "api"
urlpatterns = [
    path(
        "analytics/overview/",
        HostOverviewView.as_view(),
        name="analytics-overview",
    ),
    *router.urls,
]
