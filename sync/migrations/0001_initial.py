from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="SyncOutbox",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                ("location", models.CharField(blank=True, default="", max_length=64)),
                ("entity", models.CharField(max_length=64)),
                ("entity_id", models.CharField(max_length=64)),
                ("op", models.CharField(max_length=16)),
                ("payload", models.JSONField()),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "indexes": [
                    models.Index(fields=["location", "id"], name="sync_outbox_location_idx"),
                    models.Index(fields=["entity", "id"], name="sync_outbox_entity_idx"),
                ],
            },
        ),
    ]
