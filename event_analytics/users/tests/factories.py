from __future__ import annotations

from django.contrib.auth import get_user_model

User = get_user_model()

TEST_PASSWORD = "TestPass123!"  # noqa: S105


def create_user(
    username: str,
    *,
    is_staff: bool = False,
    first_name: str = "",
    last_name: str = "",
    avatar: str = "",
) -> User:
    user = User.objects.create_user(
        username=username,
        email=f"{username}@example.com",
        password=TEST_PASSWORD,
        first_name=first_name,
        last_name=last_name,
        avatar=avatar,
    )
    if is_staff:
        user.is_staff = True
        user.save(update_fields=["is_staff"])
    return user
