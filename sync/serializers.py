from rest_framework import serializers

OUTBOX_ENTITIES = ["stock", "sale", "transfer_request", "ledger_entry", "approval_policy"]


class SyncPullSerializer(serializers.Serializer):
    cursor = serializers.IntegerField(min_value=0)
    limit = serializers.IntegerField(min_value=1, max_value=1000, default=500)
    location = serializers.CharField(required=False, allow_blank=True, max_length=64)
    entity = serializers.ChoiceField(choices=OUTBOX_ENTITIES, required=False)
