from rest_framework import serializers

from core.models import AuditLog


class AuditLogSerializer(serializers.ModelSerializer):
    actor_username = serializers.CharField(source="actor.username", read_only=True)

    class Meta:
        model = AuditLog
        fields = [
            "id",
            "actor",
            "actor_username",
            "location",
            "action",
            "entity",
            "entity_id",
            "before_snapshot",
            "after_snapshot",
            "request_id",
            "created_at",
        ]
        read_only_fields = fields
