from django.utils.dateparse import parse_datetime
from rest_framework import viewsets
from rest_framework.permissions import IsAuthenticated

from common.permissions import RoleCapabilityPermission, user_has_capability
from core.models import AuditLog
from core.serializers import AuditLogSerializer


def scoped_queryset_for_user(queryset, user, *, field="location", capability="inventory.view.all_locations"):
    """Limit ``queryset`` to the user's home location unless they may see every location."""
    if not user.is_authenticated:
        return queryset.none()

    if user.is_superuser or user_has_capability(user, capability):
        return queryset

    if getattr(user, "location", ""):
        return queryset.filter(**{field: user.location})

    return queryset.none()


class AuditLogViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = AuditLog.objects.select_related("actor")
    serializer_class = AuditLogSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"list": "admin.records.manage", "retrieve": "admin.records.manage"}

    def get_queryset(self):
        qs = self.queryset.order_by("-created_at")

        start_date = self.request.query_params.get("start_date")
        end_date = self.request.query_params.get("end_date")
        actor_id = self.request.query_params.get("actor_id")
        action = self.request.query_params.get("action")
        entity = self.request.query_params.get("entity")
        location = self.request.query_params.get("location")

        if start_date:
            dt = parse_datetime(start_date)
            if dt:
                qs = qs.filter(created_at__gte=dt)
        if end_date:
            dt = parse_datetime(end_date)
            if dt:
                qs = qs.filter(created_at__lte=dt)
        if actor_id:
            qs = qs.filter(actor_id=actor_id)
        if action:
            qs = qs.filter(action=action)
        if entity:
            qs = qs.filter(entity=entity)
        if location:
            qs = qs.filter(location=location)

        return qs
