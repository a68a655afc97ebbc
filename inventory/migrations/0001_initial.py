import uuid

import django.core.serializers.json
import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models
from django.db.models import Q


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="StockRecord",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("item_code", models.CharField(max_length=64)),
                ("location", models.CharField(max_length=64)),
                ("brand", models.CharField(max_length=128)),
                ("model_name", models.CharField(max_length=128)),
                ("storage", models.CharField(blank=True, default="", max_length=64)),
                ("color", models.CharField(blank=True, default="", max_length=64)),
                ("quantity", models.PositiveIntegerField(default=0)),
                ("order_price", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("sale_price", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("discount_percentage", models.DecimalField(decimal_places=2, default=0, max_digits=5)),
                (
                    "last_transfer",
                    models.JSONField(blank=True, encoder=django.core.serializers.json.DjangoJSONEncoder, null=True),
                ),
                (
                    "last_restock",
                    models.JSONField(blank=True, encoder=django.core.serializers.json.DjangoJSONEncoder, null=True),
                ),
                ("last_sold_at", models.DateTimeField(blank=True, null=True)),
                ("transferred_from", models.CharField(blank=True, default="", max_length=64)),
                ("added_by_name", models.CharField(blank=True, default="", max_length=255)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "added_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="stock_intakes",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "original_stock",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="transfer_copies",
                        to="inventory.stockrecord",
                    ),
                ),
            ],
            options={
                "indexes": [
                    models.Index(fields=["location", "item_code"], name="inv_stock_location_idx"),
                    models.Index(fields=["updated_at"], name="inv_stock_updated_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(fields=("item_code", "location"), name="uniq_stock_item_location"),
                    models.CheckConstraint(condition=Q(quantity__gte=0), name="stock_quantity_non_negative"),
                    models.CheckConstraint(
                        condition=Q(discount_percentage__gte=0) & Q(discount_percentage__lte=100),
                        name="stock_discount_percentage_range",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="TransferRequest",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("item_code", models.CharField(max_length=64)),
                ("quantity", models.PositiveIntegerField()),
                ("from_location", models.CharField(max_length=64)),
                ("to_location", models.CharField(max_length=64)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("approved", "Approved"),
                            ("rejected", "Rejected"),
                            ("failed", "Failed"),
                        ],
                        default="pending",
                        max_length=16,
                    ),
                ),
                ("requested_by_name", models.CharField(blank=True, default="", max_length=255)),
                ("requested_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("approved_by_name", models.CharField(blank=True, default="", max_length=255)),
                ("approved_at", models.DateTimeField(blank=True, null=True)),
                ("rejected_by_name", models.CharField(blank=True, default="", max_length=255)),
                ("rejected_at", models.DateTimeField(blank=True, null=True)),
                ("rejection_reason", models.TextField(blank=True, default="")),
                ("failed_at", models.DateTimeField(blank=True, null=True)),
                ("error", models.TextField(blank=True, default="")),
                ("processed_at", models.DateTimeField(blank=True, null=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "approved_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="approved_transfer_requests",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "rejected_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="rejected_transfer_requests",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "requested_by",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="transfer_requests",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "source_stock",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="outgoing_transfer_requests",
                        to="inventory.stockrecord",
                    ),
                ),
            ],
            options={
                "indexes": [
                    models.Index(fields=["status", "requested_at"], name="inv_transfer_status_idx"),
                    models.Index(fields=["item_code", "from_location"], name="inv_transfer_item_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(condition=Q(quantity__gt=0), name="transfer_quantity_positive"),
                ],
            },
        ),
        migrations.CreateModel(
            name="LedgerEntry",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                (
                    "entry_type",
                    models.CharField(
                        choices=[
                            ("approved_transfer", "Approved Transfer"),
                            ("rejected_transfer", "Rejected Transfer"),
                            ("sale", "Sale"),
                        ],
                        max_length=32,
                    ),
                ),
                ("item_code", models.CharField(max_length=64)),
                ("brand", models.CharField(blank=True, default="", max_length=128)),
                ("model_name", models.CharField(blank=True, default="", max_length=128)),
                ("quantity", models.PositiveIntegerField()),
                ("from_location", models.CharField(max_length=64)),
                ("to_location", models.CharField(blank=True, default="", max_length=64)),
                ("actor_name", models.CharField(blank=True, default="", max_length=255)),
                ("occurred_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("rejection_reason", models.TextField(blank=True, default="")),
                ("sale_id", models.UUIDField(blank=True, null=True)),
                (
                    "actor",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="ledger_entries",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "transfer",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="ledger_entries",
                        to="inventory.transferrequest",
                    ),
                ),
            ],
            options={
                "indexes": [
                    models.Index(fields=["occurred_at"], name="inv_ledger_occurred_idx"),
                    models.Index(fields=["entry_type", "occurred_at"], name="inv_ledger_type_idx"),
                    models.Index(fields=["from_location", "occurred_at"], name="inv_ledger_from_idx"),
                    models.Index(fields=["to_location", "occurred_at"], name="inv_ledger_to_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="ApprovalPolicy",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                ("key", models.CharField(default="default", max_length=32, unique=True)),
                ("require_approval", models.BooleanField(default=True)),
                ("auto_approve_below", models.PositiveIntegerField(default=10)),
                ("allowed_locations", models.JSONField(blank=True, default=list)),
                ("version", models.PositiveIntegerField(default=1)),
                ("updated_by_name", models.CharField(blank=True, default="", max_length=255)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "updated_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "constraints": [
                    models.CheckConstraint(condition=Q(auto_approve_below__gte=1), name="policy_threshold_positive"),
                ],
            },
        ),
    ]
