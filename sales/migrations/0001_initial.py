import uuid

import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models
from django.db.models import Q


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
        ("inventory", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="SaleRecord",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("item_code", models.CharField(max_length=64)),
                ("brand", models.CharField(blank=True, default="", max_length=128)),
                ("model_name", models.CharField(blank=True, default="", max_length=128)),
                ("storage", models.CharField(blank=True, default="", max_length=64)),
                ("color", models.CharField(blank=True, default="", max_length=64)),
                ("quantity", models.PositiveIntegerField()),
                ("original_price", models.DecimalField(decimal_places=2, max_digits=12)),
                ("final_sale_price", models.DecimalField(decimal_places=2, max_digits=12)),
                ("custom_price", models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ("discount_percentage", models.DecimalField(decimal_places=2, default=0, max_digits=5)),
                ("location", models.CharField(max_length=64)),
                ("sold_by_name", models.CharField(blank=True, default="", max_length=255)),
                ("sold_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "sale_type",
                    models.CharField(
                        choices=[("standard", "Standard"), ("custom_price", "Custom Price")],
                        default="standard",
                        max_length=16,
                    ),
                ),
                (
                    "status",
                    models.CharField(choices=[("completed", "Completed")], default="completed", max_length=16),
                ),
                (
                    "sold_by",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="sales",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "stock",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="sales",
                        to="inventory.stockrecord",
                    ),
                ),
            ],
            options={
                "indexes": [
                    models.Index(fields=["location", "sold_at"], name="sales_location_sold_idx"),
                    models.Index(fields=["item_code", "location"], name="sales_item_location_idx"),
                    models.Index(fields=["sold_by", "sold_at"], name="sales_seller_sold_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(condition=Q(quantity__gt=0), name="sale_quantity_positive"),
                ],
            },
        ),
    ]
