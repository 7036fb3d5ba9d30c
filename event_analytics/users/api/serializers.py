from rest_framework import serializers

from event_analytics.events.models import Event
from event_analytics.users.models import User


class UserSerializer(serializers.ModelSerializer[User]):
    displayName = serializers.CharField(source="display_name", read_only=True)

    class Meta:
        model = User
        fields = [
            "id",
            "username",
            "email",
            "name",
            "first_name",
            "last_name",
            "displayName",
            "avatar",
        ]
        # Identity fields are fixed once the account exists
        read_only_fields = ["id", "username", "email"]


class HostedEventSerializer(serializers.ModelSerializer[Event]):
    isJoinable = serializers.BooleanField(source="is_joinable", read_only=True)

    class Meta:
        model = Event
        fields = ["id", "title", "status", "is_public", "isJoinable"]
        read_only_fields = fields


class HostProfileSerializer(UserSerializer):
    hostedEvents = HostedEventSerializer(
        source="hosted_events", many=True, read_only=True
    )

    class Meta(UserSerializer.Meta):
        fields = [*UserSerializer.Meta.fields, "hostedEvents"]
