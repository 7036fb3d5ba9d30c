import pytest
from rest_framework.test import APIClient

from event_analytics.events.models import Event
from event_analytics.events.tests.factories import create_event
from event_analytics.users.models import User
from event_analytics.users.tests.factories import create_user


@pytest.fixture
def api_client() -> APIClient:
    return APIClient()


@pytest.fixture
def user(db) -> User:
    return create_user("attendee", first_name="Ada", last_name="Lovelace")


@pytest.fixture
def host(db) -> User:
    return create_user("host")


@pytest.fixture
def event(host) -> Event:
    return create_event(host)
