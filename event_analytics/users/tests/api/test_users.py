import pytest
from rest_framework import status
from rest_framework.test import APIClient

from event_analytics.users.tests.factories import TEST_PASSWORD
from event_analytics.users.tests.factories import create_user

pytestmark = pytest.mark.django_db


def test_me_returns_profile(user):
    client = APIClient()
    client.force_authenticate(user=user)
    res = client.get("/api/v1/users/me/")
    assert res.status_code == status.HTTP_200_OK
    assert res.data["username"] == "attendee"
    assert res.data["displayName"] == "Ada Lovelace"
    assert res.data["hostedEvents"] == []


def test_me_lists_hosted_events(host, event):
    client = APIClient()
    client.force_authenticate(user=host)
    res = client.get("/api/v1/users/me/")
    assert res.data["displayName"] == "host"
    assert res.data["hostedEvents"] == [
        {
            "id": event.pk,
            "title": event.title,
            "status": "published",
            "is_public": True,
            "isJoinable": True,
        }
    ]


def test_me_requires_authentication():
    res = APIClient().get("/api/v1/users/me/")
    assert res.status_code == status.HTTP_401_UNAUTHORIZED


def test_non_staff_only_sees_themselves(user, host):
    client = APIClient()
    client.force_authenticate(user=user)
    res = client.get("/api/v1/users/")
    assert [row["username"] for row in res.data] == ["attendee"]
    assert client.get("/api/v1/users/host/").status_code == status.HTTP_404_NOT_FOUND


def test_staff_lists_everyone(user, host):
    client = APIClient()
    client.force_authenticate(user=create_user("admin", is_staff=True))
    res = client.get("/api/v1/users/")
    assert {row["username"] for row in res.data} == {"attendee", "host", "admin"}


def test_identity_fields_are_immutable(user):
    client = APIClient()
    client.force_authenticate(user=user)
    res = client.patch(
        "/api/v1/users/attendee/",
        {"username": "renamed", "email": "new@example.com", "first_name": "Augusta"},
        format="json",
    )
    assert res.status_code == status.HTTP_200_OK
    user.refresh_from_db()
    assert user.username == "attendee"
    assert user.email == "attendee@example.com"
    assert user.first_name == "Augusta"


def test_jwt_create_and_verify(host):
    client = APIClient()
    res = client.post(
        "/api/v1/auth/jwt/create/",
        {"username": "host", "password": TEST_PASSWORD},
        format="json",
    )
    assert res.status_code == status.HTTP_200_OK, res.content
    access = res.data["access"]

    ok = client.post("/api/v1/auth/jwt/verify/", {"token": access}, format="json")
    assert ok.status_code == status.HTTP_200_OK
    bad = client.post(
        "/api/v1/auth/jwt/verify/", {"token": access[:-2] + "ab"}, format="json"
    )
    assert bad.status_code == status.HTTP_401_UNAUTHORIZED


def test_openapi_schema_groups_tags(db):
    client = APIClient()
    # schema is served to admins only
    client.force_authenticate(user=create_user("admin", is_staff=True))
    res = client.get("/api/v1/schema/", {"format": "json"})
    assert res.status_code == status.HTTP_200_OK
    tags = {tag["name"] for tag in res.json().get("tags", [])}
    assert {"Tracking", "Analytics"} <= tags
