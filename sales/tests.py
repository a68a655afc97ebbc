from decimal import Decimal
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.test import TestCase
from rest_framework.test import APIClient

from common.exceptions import InsufficientStock, InvalidInput, InvalidPrice, RecordNotFound
from inventory.models import LedgerEntry, StockRecord
from sales.models import SaleRecord
from sales.services import sell
from sync.models import SyncOutbox


class SaleProcessorTests(TestCase):
    def setUp(self):
        self.cashier = get_user_model().objects.create_user(
            username="pos-cashier",
            password="pass1234",
            role="cashier",
            location="Blantyre",
        )
        self.stock = StockRecord.objects.create(
            item_code="APL-IP13",
            location="Blantyre",
            brand="Apple",
            model_name="iPhone 13",
            storage="128GB",
            color="White",
            quantity=5,
            order_price=Decimal("800.00"),
            sale_price=Decimal("1000.00"),
            discount_percentage=Decimal("10.00"),
        )

    def test_standard_sale_applies_discount_and_debits_stock(self):
        sale = sell(item_code="APL-IP13", location="Blantyre", quantity=2, actor=self.cashier)

        self.assertEqual(sale.final_sale_price, Decimal("1800.00"))
        self.assertEqual(sale.original_price, Decimal("1000.00"))
        self.assertEqual(sale.sale_type, SaleRecord.SaleType.STANDARD)
        self.assertEqual(sale.status, SaleRecord.Status.COMPLETED)
        self.assertIsNone(sale.custom_price)
        self.assertEqual(sale.brand, "Apple")
        self.assertEqual(sale.sold_by_name, "pos-cashier")

        self.stock.refresh_from_db()
        self.assertEqual(self.stock.quantity, 3)
        self.assertEqual(self.stock.last_sold_at, sale.sold_at)

        entry = LedgerEntry.objects.get(sale_id=sale.id)
        self.assertEqual(entry.entry_type, LedgerEntry.EntryType.SALE)
        self.assertEqual(entry.from_location, "Blantyre")
        self.assertEqual(entry.quantity, 2)
        self.assertTrue(SyncOutbox.objects.filter(entity="sale", entity_id=str(sale.id)).exists())

    def test_standard_price_rounds_half_up_to_cents(self):
        self.stock.sale_price = Decimal("10.01")
        self.stock.discount_percentage = Decimal("50.00")
        self.stock.save(update_fields=["sale_price", "discount_percentage"])

        sale = sell(item_code="APL-IP13", location="Blantyre", quantity=1, actor=self.cashier)

        self.assertEqual(sale.final_sale_price, Decimal("5.01"))

    def test_custom_price_is_the_whole_sale_total(self):
        sale = sell(item_code="APL-IP13", location="Blantyre", quantity=2, actor=self.cashier, custom_price="1500")

        self.assertEqual(sale.final_sale_price, Decimal("1500.00"))
        self.assertEqual(sale.custom_price, Decimal("1500.00"))
        self.assertEqual(sale.sale_type, SaleRecord.SaleType.CUSTOM_PRICE)

    def test_invalid_custom_price_is_rejected_before_any_read(self):
        for bad_price in ("-5", "0", "abc", "NaN"):
            with self.assertRaises(InvalidPrice):
                sell(item_code="APL-IP13", location="Blantyre", quantity=1, actor=self.cashier, custom_price=bad_price)

        with self.assertRaises(InvalidPrice):
            sell(item_code="MISSING", location="Blantyre", quantity=1, actor=self.cashier, custom_price="-1")

        self.stock.refresh_from_db()
        self.assertEqual(self.stock.quantity, 5)
        self.assertFalse(SaleRecord.objects.exists())

    def test_custom_price_outside_money_range_is_rejected(self):
        for bad_price in ("1e30", "10000000000", "0.001", "0.004", "Infinity"):
            with self.assertRaises(InvalidPrice):
                sell(item_code="APL-IP13", location="Blantyre", quantity=1, actor=self.cashier, custom_price=bad_price)

        self.stock.refresh_from_db()
        self.assertEqual(self.stock.quantity, 5)
        self.assertFalse(SaleRecord.objects.exists())

    def test_sub_cent_custom_price_rounds_half_up_to_a_cent(self):
        sale = sell(item_code="APL-IP13", location="Blantyre", quantity=1, actor=self.cashier, custom_price="0.005")

        self.assertEqual(sale.final_sale_price, Decimal("0.01"))

    def test_quantity_must_be_positive(self):
        with self.assertRaises(InvalidInput):
            sell(item_code="APL-IP13", location="Blantyre", quantity=0, actor=self.cashier)

    def test_missing_stock_raises_not_found(self):
        with self.assertRaises(RecordNotFound):
            sell(item_code="APL-IP13", location="Zomba", quantity=1, actor=self.cashier)

    def test_insufficient_stock_leaves_no_trace(self):
        outbox_before = SyncOutbox.objects.count()

        with self.assertRaises(InsufficientStock):
            sell(item_code="APL-IP13", location="Blantyre", quantity=6, actor=self.cashier)

        self.stock.refresh_from_db()
        self.assertEqual(self.stock.quantity, 5)
        self.assertIsNone(self.stock.last_sold_at)
        self.assertFalse(SaleRecord.objects.exists())
        self.assertFalse(LedgerEntry.objects.exists())
        self.assertEqual(SyncOutbox.objects.count(), outbox_before)

    def test_failure_after_debit_rolls_back_everything(self):
        with patch("sales.services.ledger.record_entry", side_effect=RuntimeError("ledger down")):
            with self.assertRaises(RuntimeError):
                sell(item_code="APL-IP13", location="Blantyre", quantity=1, actor=self.cashier)

        self.stock.refresh_from_db()
        self.assertEqual(self.stock.quantity, 5)
        self.assertFalse(SaleRecord.objects.exists())

    def test_sale_records_are_append_only(self):
        sale = sell(item_code="APL-IP13", location="Blantyre", quantity=1, actor=self.cashier)

        sale.final_sale_price = Decimal("1.00")
        with self.assertRaises(InvalidInput):
            sale.save()
        with self.assertRaises(InvalidInput):
            sale.delete()
        self.assertEqual(SaleRecord.objects.get(pk=sale.pk).final_sale_price, Decimal("900.00"))


class SaleApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        user_model = get_user_model()
        self.cashier = user_model.objects.create_user(
            username="api-cashier",
            password="pass1234",
            role="cashier",
            location="Blantyre",
        )
        self.other_cashier = user_model.objects.create_user(
            username="zomba-cashier",
            password="pass1234",
            role="cashier",
            location="Zomba",
        )
        for location in ("Blantyre", "Zomba"):
            StockRecord.objects.create(
                item_code="TEC-SPK10",
                location=location,
                brand="Tecno",
                model_name="Spark 10",
                quantity=3,
                sale_price=Decimal("195.00"),
            )

    def test_cashier_sells_at_home_location(self):
        self.client.force_authenticate(user=self.cashier)

        response = self.client.post("/api/v1/sales/", {"item_code": "TEC-SPK10", "quantity": 2}, format="json")

        self.assertEqual(response.status_code, 201)
        payload = response.json()
        self.assertEqual(payload["location"], "Blantyre")
        self.assertEqual(payload["final_sale_price"], "390.00")
        self.assertEqual(payload["model"], "Spark 10")
        self.assertEqual(StockRecord.objects.get(item_code="TEC-SPK10", location="Blantyre").quantity, 1)

    def test_cashier_cannot_sell_at_other_location(self):
        self.client.force_authenticate(user=self.cashier)

        response = self.client.post("/api/v1/sales/", {"item_code": "TEC-SPK10", "quantity": 1, "location": "Zomba"}, format="json")

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["code"], "policy_violation")
        self.assertEqual(StockRecord.objects.get(item_code="TEC-SPK10", location="Zomba").quantity, 3)

    def test_business_errors_use_standard_envelope(self):
        self.client.force_authenticate(user=self.cashier)

        short = self.client.post("/api/v1/sales/", {"item_code": "TEC-SPK10", "quantity": 4}, format="json")
        bad_price = self.client.post("/api/v1/sales/", {"item_code": "TEC-SPK10", "quantity": 1, "custom_price": -10}, format="json")
        missing = self.client.post("/api/v1/sales/", {"item_code": "NOPE", "quantity": 1}, format="json")

        self.assertEqual(short.status_code, 409)
        self.assertEqual(short.json()["code"], "insufficient_stock")
        self.assertEqual(short.json()["status"], 409)
        self.assertEqual(bad_price.status_code, 400)
        self.assertEqual(bad_price.json()["code"], "invalid_price")
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.json()["code"], "not_found")

    def test_out_of_range_custom_price_is_invalid_price_not_server_error(self):
        self.client.force_authenticate(user=self.cashier)

        huge = self.client.post("/api/v1/sales/", {"item_code": "TEC-SPK10", "quantity": 1, "custom_price": "1e30"}, format="json")
        tiny = self.client.post("/api/v1/sales/", {"item_code": "TEC-SPK10", "quantity": 1, "custom_price": "0.001"}, format="json")

        self.assertEqual(huge.status_code, 400)
        self.assertEqual(huge.json()["code"], "invalid_price")
        self.assertEqual(tiny.status_code, 400)
        self.assertEqual(tiny.json()["code"], "invalid_price")
        self.assertFalse(SaleRecord.objects.exists())

    def test_sales_list_is_scoped_to_location(self):
        sell(item_code="TEC-SPK10", location="Blantyre", quantity=1, actor=self.cashier)
        other = sell(item_code="TEC-SPK10", location="Zomba", quantity=1, actor=self.other_cashier)
        self.client.force_authenticate(user=self.other_cashier)

        response = self.client.get("/api/v1/sales/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual([item["id"] for item in response.json()["results"]], [str(other.id)])

    def test_sales_cannot_be_modified_through_api(self):
        sale = sell(item_code="TEC-SPK10", location="Blantyre", quantity=1, actor=self.cashier)
        self.client.force_authenticate(user=self.cashier)

        patch_res = self.client.patch(f"/api/v1/sales/{sale.id}/", {"quantity": 5}, format="json")
        delete_res = self.client.delete(f"/api/v1/sales/{sale.id}/")

        self.assertEqual(patch_res.status_code, 405)
        self.assertEqual(delete_res.status_code, 405)
