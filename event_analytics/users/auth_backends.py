from django.contrib.auth import get_user_model
from django.contrib.auth.backends import ModelBackend
from django.db.models import Q


class UsernameOrEmailBackend(ModelBackend):
    """Let hosts sign in to the dashboard with either username or email.

    An email match wins over a username that happens to look the same.
    """

    def authenticate(self, request, username=None, password=None, **kwargs):
        user_model = get_user_model()
        login = username or kwargs.get(user_model.USERNAME_FIELD)
        if not login or password is None:
            return None

        candidates = user_model.objects.filter(
            Q(email__iexact=login) | Q(username__iexact=login)
        )
        user = next(
            (u for u in candidates if u.email.lower() == login.lower()),
            None,
        ) or candidates.first()
        if user is None:
            # Same hashing cost as a real attempt, so lookups can't be timed
            user_model().set_password(password)
            return None

        if user.check_password(password) and self.user_can_authenticate(user):
            return user
        return None
