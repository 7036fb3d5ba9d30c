import logging

from drf_spectacular.utils import extend_schema
from drf_spectacular.utils import extend_schema_view
from rest_framework import status
from rest_framework.decorators import action
from rest_framework.mixins import ListModelMixin
from rest_framework.mixins import RetrieveModelMixin
from rest_framework.mixins import UpdateModelMixin
from rest_framework.response import Response
from rest_framework.viewsets import GenericViewSet

from event_analytics.users.models import User

from .serializers import HostProfileSerializer
from .serializers import UserSerializer

logger = logging.getLogger(__name__)


@extend_schema_view(
    list=extend_schema(tags=["Users"]),
    retrieve=extend_schema(tags=["Users"]),
    partial_update=extend_schema(tags=["Users"]),
    update=extend_schema(tags=["Users"]),
)
class UserViewSet(RetrieveModelMixin, ListModelMixin, UpdateModelMixin, GenericViewSet):
    serializer_class = UserSerializer
    queryset = User.objects.all()
    lookup_field = "username"
    pagination_class = None

    def get_queryset(self, *args, **kwargs):  # type: ignore[override]
        user = self.request.user
        if getattr(user, "is_staff", False):
            return User.objects.order_by("username")
        return User.objects.filter(pk=user.pk)

    @extend_schema(tags=["Users"], responses=HostProfileSerializer)
    @action(detail=False)
    def me(self, request):
        """Current account plus the events it hosts, for the dashboard header."""
        serializer = HostProfileSerializer(request.user, context={"request": request})
        return Response(status=status.HTTP_200_OK, data=serializer.data)

    def perform_update(self, serializer):  # type: ignore[override]
        instance = serializer.save()
        logger.info(
            "User %s updated profile fields: %s",
            instance.username,
            ", ".join(sorted(serializer.validated_data)) or "-",
        )
