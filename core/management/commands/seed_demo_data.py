from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand

from inventory.models import StockRecord
from inventory.policy import load_policy
from inventory.services import receive_stock
from inventory.transfers import request_transfer

DEMO_STOCK = [
    {
        "item_code": "SAM-A15-128-BLK",
        "location": "Lilongwe",
        "quantity": 10,
        "brand": "Samsung",
        "model_name": "Galaxy A15",
        "storage": "128GB",
        "color": "Black",
        "order_price": Decimal("180000.00"),
        "sale_price": Decimal("230000.00"),
        "discount_percentage": Decimal("0"),
    },
    {
        "item_code": "TEC-SPK10-256-BLU",
        "location": "Lilongwe",
        "quantity": 6,
        "brand": "Tecno",
        "model_name": "Spark 10",
        "storage": "256GB",
        "color": "Blue",
        "order_price": Decimal("150000.00"),
        "sale_price": Decimal("195000.00"),
        "discount_percentage": Decimal("5"),
    },
    {
        "item_code": "APL-IP13-128-WHT",
        "location": "Blantyre",
        "quantity": 3,
        "brand": "Apple",
        "model_name": "iPhone 13",
        "storage": "128GB",
        "color": "White",
        "order_price": Decimal("850000.00"),
        "sale_price": Decimal("990000.00"),
        "discount_percentage": Decimal("0"),
    },
]


class Command(BaseCommand):
    help = "Seed demo users, stock and a pending transfer request for local development."

    def _user(self, username, password, **defaults):
        User = get_user_model()
        user, created = User.objects.get_or_create(username=username, defaults={"is_active": True, **defaults})
        if created:
            user.set_password(password)
            user.save(update_fields=["password"])
        return user

    def handle(self, *args, **options):
        User = get_user_model()

        admin_user = self._user(
            "admin",
            "admin1234",
            email="admin@example.com",
            role=User.Role.ADMIN,
            is_staff=True,
            is_superuser=True,
        )
        self._user("supervisor", "supervisor1234", email="supervisor@example.com", role=User.Role.SUPERVISOR)
        cashier_user = self._user(
            "cashier",
            "cashier1234",
            email="cashier@example.com",
            role=User.Role.CASHIER,
            location="Lilongwe",
        )

        policy = load_policy()

        for row in DEMO_STOCK:
            if StockRecord.objects.filter(item_code=row["item_code"], location=row["location"]).exists():
                continue
            receive_stock(actor=admin_user, **row)

        if not cashier_user.transfer_requests.exists():
            request_transfer(
                item_code="SAM-A15-128-BLK",
                quantity=3,
                from_location="Lilongwe",
                to_location="Blantyre",
                requester=cashier_user,
                policy=policy,
            )

        self.stdout.write(self.style.SUCCESS("Demo data seeded successfully."))
        self.stdout.write("Credentials: admin/admin1234, supervisor/supervisor1234, cashier/cashier1234")
        self.stdout.write(f"Approval policy v{policy.version}: auto-approve up to {policy.auto_approve_below} units.")
