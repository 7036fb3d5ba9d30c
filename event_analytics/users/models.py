from django.contrib.auth.models import AbstractUser
from django.db import models
from django.utils.translation import gettext_lazy as _


class User(AbstractUser):
    """Account for event hosts and signed-in attendees.

    Hosts own events and read their analytics. Attendees can also track
    anonymously; a signed-in attendee's cursor is labelled for peers with
    ``display_name`` and ``avatar``.
    """

    # Optional override for how the cursor label reads, e.g. a stage name
    name = models.CharField(_("Display name"), blank=True, max_length=255)
    email = models.EmailField(_("email address"), unique=True)
    avatar = models.URLField(_("Avatar URL"), blank=True, max_length=500)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    @property
    def display_name(self) -> str:
        return self.name or self.get_full_name() or self.username
