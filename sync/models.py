from django.db import models


class SyncOutbox(models.Model):
    """Append-only change feed; the auto-increment id is the subscriber cursor."""

    id = models.BigAutoField(primary_key=True)
    location = models.CharField(max_length=64, blank=True, default="")
    entity = models.CharField(max_length=64)
    entity_id = models.CharField(max_length=64)
    op = models.CharField(max_length=16)
    payload = models.JSONField()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=["location", "id"], name="sync_outbox_location_idx"),
            models.Index(fields=["entity", "id"], name="sync_outbox_entity_idx"),
        ]
