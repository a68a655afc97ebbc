from django.db.models import Q
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from common.permissions import RoleCapabilityPermission
from sync.models import SyncOutbox
from sync.permissions import get_permitted_location, validation_failed_response
from sync.serializers import SyncPullSerializer


class SyncPullView(APIView):
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"post": "sync.view"}

    def post(self, request):
        serializer = SyncPullSerializer(data=request.data)
        if not serializer.is_valid():
            return validation_failed_response(serializer.errors)

        cursor = serializer.validated_data["cursor"]
        limit = serializer.validated_data["limit"]
        entity = serializer.validated_data.get("entity")

        location, error_response = get_permitted_location(request.user, serializer.validated_data.get("location"))
        if error_response is not None:
            return error_response

        updates_qs = SyncOutbox.objects.filter(id__gt=cursor).order_by("id")
        if location:
            # Rows without a location (policy changes) are visible to every subscriber.
            updates_qs = updates_qs.filter(Q(location=location) | Q(location=""))
        if entity:
            updates_qs = updates_qs.filter(entity=entity)

        updates = list(updates_qs[: limit + 1])
        has_more = len(updates) > limit
        updates = updates[:limit]
        server_cursor = updates[-1].id if updates else cursor

        return Response(
            {
                "server_cursor": server_cursor,
                "updates": [
                    {
                        "cursor": update.id,
                        "entity": (update.payload or {}).get("entity", update.entity),
                        "op": (update.payload or {}).get("op", update.op),
                        "entity_id": (update.payload or {}).get("entity_id", str(update.entity_id)),
                        "payload": (update.payload or {}).get("payload", update.payload),
                    }
                    for update in updates
                ],
                "has_more": has_more,
            }
        )
