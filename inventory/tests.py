from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.test import TestCase, override_settings
from django.utils import timezone
from rest_framework.test import APIClient

from common.exceptions import (
    AlreadyProcessing,
    AlreadyResolved,
    InsufficientStock,
    InvalidInput,
    PartialFailure,
    PolicyConflict,
    RecordNotFound,
)
from core.models import AuditLog
from inventory import ledger
from inventory.approvals import auto_approve, bulk_resolve
from inventory.models import ApprovalPolicy, LedgerEntry, StockRecord, TransferRequest
from inventory.policy import PolicySnapshot, decide, load_policy, save_policy
from inventory.services import adjust_quantity, find_stock, get_stock, receive_stock, update_stock_details, upsert_at_destination
from inventory.transfers import request_transfer, resolve, single_flight
from sync.models import SyncOutbox


def make_stock(item_code="ITM-001", location="Lilongwe", quantity=10, **extra):
    defaults = {
        "brand": "Samsung",
        "model_name": "Galaxy A15",
        "storage": "128GB",
        "color": "Black",
        "order_price": Decimal("180.00"),
        "sale_price": Decimal("230.00"),
    }
    defaults.update(extra)
    return StockRecord.objects.create(item_code=item_code, location=location, quantity=quantity, **defaults)


class InventoryUsersMixin:
    def create_users(self):
        user_model = get_user_model()
        self.cashier = user_model.objects.create_user(
            username="cashier-lil",
            password="pass1234",
            role="cashier",
            location="Lilongwe",
        )
        self.supervisor = user_model.objects.create_user(
            username="supervisor",
            password="pass1234",
            role="supervisor",
            first_name="Grace",
            last_name="Banda",
        )
        self.admin = user_model.objects.create_user(
            username="admin",
            password="pass1234",
            role="admin",
        )


class StockStoreTests(InventoryUsersMixin, TestCase):
    def setUp(self):
        self.create_users()

    def test_adjust_quantity_refuses_negative_balance(self):
        stock = make_stock(quantity=2)

        with self.assertRaises(InsufficientStock):
            adjust_quantity(stock.item_code, stock.location, -3)

        stock.refresh_from_db()
        self.assertEqual(stock.quantity, 2)

    def test_adjust_quantity_rejects_unknown_metadata(self):
        stock = make_stock()

        with self.assertRaises(InvalidInput):
            adjust_quantity(stock.item_code, stock.location, 1, {"price": "1.00"})

    def test_adjust_quantity_stores_metadata_and_emits_outbox(self):
        stock = make_stock()
        sold_at = timezone.now()

        adjust_quantity(stock.item_code, stock.location, -1, {"last_sold_at": sold_at})

        stock.refresh_from_db()
        self.assertEqual(stock.quantity, 9)
        self.assertEqual(stock.last_sold_at, sold_at)
        row = SyncOutbox.objects.filter(entity="stock").latest("id")
        self.assertEqual(row.location, "Lilongwe")
        self.assertEqual(row.payload["payload"]["quantity"], 9)

    def test_get_stock_missing_raises_not_found(self):
        with self.assertRaises(RecordNotFound):
            get_stock("NOPE", "Lilongwe")

    def test_receive_stock_creates_then_increments(self):
        stock, created = receive_stock(
            item_code="TEC-SPK10",
            location="Zomba",
            quantity=4,
            actor=self.admin,
            brand="Tecno",
            model_name="Spark 10",
            sale_price="195.50",
        )
        self.assertTrue(created)
        self.assertEqual(stock.added_by, self.admin)
        self.assertEqual(stock.sale_price, Decimal("195.50"))

        stock, created = receive_stock(item_code="TEC-SPK10", location="Zomba", quantity=2, actor=self.admin)

        self.assertFalse(created)
        self.assertEqual(stock.quantity, 6)
        self.assertEqual(stock.last_restock["quantity"], 2)
        self.assertIsNone(stock.last_restock["from_location"])
        self.assertEqual(StockRecord.objects.filter(item_code="TEC-SPK10").count(), 1)

    def test_receive_stock_requires_brand_and_model_for_new_record(self):
        with self.assertRaises(InvalidInput):
            receive_stock(item_code="NEW-1", location="Zomba", quantity=1, actor=self.admin)

        self.assertFalse(StockRecord.objects.filter(item_code="NEW-1").exists())

    def test_update_stock_details_rejects_quantity(self):
        stock = make_stock()

        with self.assertRaises(InvalidInput):
            update_stock_details(stock, actor=self.admin, quantity=99)

        updated = update_stock_details(stock, actor=self.admin, color="Blue", discount_percentage="12.5")
        self.assertEqual(updated.color, "Blue")
        self.assertEqual(updated.discount_percentage, Decimal("12.50"))
        self.assertEqual(updated.quantity, 10)

    def test_upsert_at_destination_creates_record_with_provenance(self):
        source = make_stock()

        created = upsert_at_destination(source.item_code, "Blantyre", 3, source, "Lilongwe", actor=self.admin)
        again = upsert_at_destination(source.item_code, "Blantyre", 2, source, "Lilongwe", actor=self.admin)

        self.assertEqual(created.pk, again.pk)
        self.assertEqual(again.quantity, 5)
        self.assertEqual(again.transferred_from, "Lilongwe")
        self.assertEqual(again.original_stock, source)
        self.assertEqual(again.brand, source.brand)
        self.assertEqual(again.last_restock["from_location"], "Lilongwe")


class TransferWorkflowTests(InventoryUsersMixin, TestCase):
    def setUp(self):
        self.create_users()
        self.source = make_stock(item_code="SAM-A15", location="Lilongwe", quantity=10)
        self.policy = load_policy()

    def _request(self, quantity=3, to_location="Blantyre", item_code="SAM-A15"):
        return request_transfer(
            item_code=item_code,
            quantity=quantity,
            from_location="Lilongwe",
            to_location=to_location,
            requester=self.cashier,
        )

    def test_request_transfer_validates_input(self):
        with self.assertRaises(InvalidInput):
            self._request(quantity=0)
        with self.assertRaises(InvalidInput):
            self._request(to_location="Lilongwe")
        with self.assertRaises(InvalidInput):
            self._request(item_code="")

        self.assertEqual(TransferRequest.objects.count(), 0)

    def test_request_transfer_is_pending_and_leaves_stock_alone(self):
        transfer = self._request()

        self.assertEqual(transfer.status, TransferRequest.Status.PENDING)
        self.assertEqual(transfer.requested_by_name, "cashier-lil")
        self.source.refresh_from_db()
        self.assertEqual(self.source.quantity, 10)
        self.assertFalse(LedgerEntry.objects.exists())

    def test_approve_moves_stock_and_creates_destination(self):
        transfer = self._request(quantity=3)

        transfer = resolve(transfer.id, "approve", self.supervisor, policy=self.policy)

        self.assertEqual(transfer.status, TransferRequest.Status.APPROVED)
        self.assertEqual(transfer.approved_by, self.supervisor)
        self.assertEqual(transfer.approved_by_name, "Grace Banda")
        self.assertEqual(transfer.source_stock, self.source)
        self.assertIsNotNone(transfer.processed_at)

        self.source.refresh_from_db()
        self.assertEqual(self.source.quantity, 7)
        self.assertEqual(self.source.last_transfer["to_location"], "Blantyre")
        self.assertEqual(self.source.last_transfer["quantity"], 3)

        destination = StockRecord.objects.get(item_code="SAM-A15", location="Blantyre")
        self.assertEqual(destination.quantity, 3)
        self.assertEqual(destination.transferred_from, "Lilongwe")
        self.assertEqual(destination.original_stock, self.source)

        entries = LedgerEntry.objects.filter(transfer=transfer)
        self.assertEqual(entries.count(), 1)
        entry = entries.get()
        self.assertEqual(entry.entry_type, LedgerEntry.EntryType.APPROVED_TRANSFER)
        self.assertEqual(entry.brand, "Samsung")
        self.assertEqual(entry.quantity, 3)

    def test_approvals_in_opposite_directions_lock_rows_in_the_same_order(self):
        make_stock(item_code="SAM-A15", location="Blantyre", quantity=5)
        outbound = self._request(quantity=3, to_location="Blantyre")
        inbound = request_transfer(
            item_code="SAM-A15",
            quantity=2,
            from_location="Blantyre",
            to_location="Lilongwe",
            requester=self.supervisor,
        )

        with patch("inventory.transfers.find_stock", wraps=find_stock) as locking:
            resolve(outbound.id, "approve", self.supervisor, policy=self.policy)
            outbound_order = [call.args[1] for call in locking.call_args_list]
            locking.reset_mock()
            resolve(inbound.id, "approve", self.supervisor, policy=self.policy)
            inbound_order = [call.args[1] for call in locking.call_args_list]

        self.assertEqual(outbound_order, ["Blantyre", "Lilongwe"])
        self.assertEqual(inbound_order, ["Blantyre", "Lilongwe"])
        self.assertTrue(all(call.kwargs == {"for_update": True} for call in locking.call_args_list))
        self.source.refresh_from_db()
        self.assertEqual(self.source.quantity, 9)
        self.assertEqual(StockRecord.objects.get(item_code="SAM-A15", location="Blantyre").quantity, 6)

    def test_second_approval_increments_existing_destination(self):
        resolve(self._request(quantity=3).id, "approve", self.supervisor, policy=self.policy)
        resolve(self._request(quantity=2).id, "approve", self.supervisor, policy=self.policy)

        records = StockRecord.objects.filter(item_code="SAM-A15", location="Blantyre")
        self.assertEqual(records.count(), 1)
        self.assertEqual(records.get().quantity, 5)
        self.source.refresh_from_db()
        self.assertEqual(self.source.quantity, 5)

    def test_reject_records_reason_and_ledger_entry(self):
        transfer = self._request()

        transfer = resolve(transfer.id, "reject", self.supervisor, reason="Out of stock")

        self.assertEqual(transfer.status, TransferRequest.Status.REJECTED)
        self.assertEqual(transfer.rejection_reason, "Out of stock")
        self.assertEqual(transfer.rejected_by, self.supervisor)
        self.assertIsNotNone(transfer.rejected_at)
        entry = LedgerEntry.objects.get(transfer=transfer)
        self.assertEqual(entry.entry_type, LedgerEntry.EntryType.REJECTED_TRANSFER)
        self.assertEqual(entry.rejection_reason, "Out of stock")
        self.source.refresh_from_db()
        self.assertEqual(self.source.quantity, 10)

    def test_reject_without_reason_uses_default(self):
        transfer = resolve(self._request().id, "reject", self.supervisor)

        self.assertEqual(transfer.rejection_reason, "No reason provided")

    def test_approve_with_missing_source_rejects(self):
        transfer = self._request(item_code="UNKNOWN")

        transfer = resolve(transfer.id, "approve", self.supervisor, policy=self.policy)

        self.assertEqual(transfer.status, TransferRequest.Status.REJECTED)
        self.assertEqual(transfer.rejection_reason, "Item not found in source location")
        self.assertEqual(LedgerEntry.objects.get(transfer=transfer).entry_type, LedgerEntry.EntryType.REJECTED_TRANSFER)

    def test_approve_with_insufficient_stock_rejects(self):
        transfer = self._request(quantity=11)

        transfer = resolve(transfer.id, "approve", self.supervisor, policy=self.policy)

        self.assertEqual(transfer.status, TransferRequest.Status.REJECTED)
        self.assertEqual(transfer.rejection_reason, "Insufficient stock in source location")
        self.source.refresh_from_db()
        self.assertEqual(self.source.quantity, 10)
        self.assertFalse(StockRecord.objects.filter(location="Blantyre").exists())

    def test_approve_to_destination_outside_whitelist_rejects(self):
        policy = PolicySnapshot(require_approval=True, auto_approve_below=10, allowed_locations=frozenset({"Lilongwe", "Blantyre"}))
        transfer = self._request(to_location="Karonga")

        transfer = resolve(transfer.id, "approve", self.supervisor, policy=policy)

        self.assertEqual(transfer.status, TransferRequest.Status.REJECTED)
        self.assertEqual(transfer.rejection_reason, "Destination location not allowed")
        self.source.refresh_from_db()
        self.assertEqual(self.source.quantity, 10)

    def test_resolve_twice_never_reapplies(self):
        transfer = self._request(quantity=3)
        resolve(transfer.id, "approve", self.supervisor, policy=self.policy)

        with self.assertRaises(AlreadyResolved):
            resolve(transfer.id, "approve", self.supervisor, policy=self.policy)
        with self.assertRaises(AlreadyResolved):
            resolve(transfer.id, "reject", self.supervisor)

        self.source.refresh_from_db()
        self.assertEqual(self.source.quantity, 7)
        self.assertEqual(LedgerEntry.objects.filter(transfer=transfer).count(), 1)

    def test_resolve_unknown_request_raises_not_found(self):
        with self.assertRaises(RecordNotFound):
            resolve("00000000-0000-0000-0000-000000000000", "approve", self.supervisor)

    def test_resolve_unknown_decision_raises_invalid_input(self):
        transfer = self._request()

        with self.assertRaises(InvalidInput):
            resolve(transfer.id, "maybe", self.supervisor)

        transfer.refresh_from_db()
        self.assertEqual(transfer.status, TransferRequest.Status.PENDING)

    def test_failure_after_checks_rolls_back_and_marks_failed(self):
        transfer = self._request(quantity=3)
        outbox_before = SyncOutbox.objects.count()

        with patch("inventory.transfers.upsert_at_destination", side_effect=RuntimeError("disk full")):
            with self.assertRaises(PartialFailure):
                resolve(transfer.id, "approve", self.supervisor, policy=self.policy)

        transfer.refresh_from_db()
        self.assertEqual(transfer.status, TransferRequest.Status.FAILED)
        self.assertIn("disk full", transfer.error)
        self.assertIsNotNone(transfer.failed_at)
        self.source.refresh_from_db()
        self.assertEqual(self.source.quantity, 10)
        self.assertIsNone(self.source.last_transfer)
        self.assertFalse(LedgerEntry.objects.exists())
        # Only the failed transition itself reaches the outbox.
        self.assertEqual(SyncOutbox.objects.count(), outbox_before + 1)
        self.assertEqual(SyncOutbox.objects.latest("id").entity, "transfer_request")

    def test_single_flight_guard_refuses_concurrent_resolution(self):
        transfer = self._request()

        with single_flight(transfer.id):
            with self.assertRaises(AlreadyProcessing):
                resolve(transfer.id, "approve", self.supervisor, policy=self.policy)

        transfer.refresh_from_db()
        self.assertEqual(transfer.status, TransferRequest.Status.PENDING)
        resolve(transfer.id, "approve", self.supervisor, policy=self.policy)
        transfer.refresh_from_db()
        self.assertEqual(transfer.status, TransferRequest.Status.APPROVED)

    def test_auto_resolve_on_request_when_under_threshold(self):
        transfer = request_transfer(
            item_code="SAM-A15",
            quantity=2,
            from_location="Lilongwe",
            to_location="Zomba",
            requester=self.cashier,
            policy=self.policy,
            auto_resolve=True,
        )
        self.assertEqual(transfer.status, TransferRequest.Status.APPROVED)
        self.assertEqual(transfer.approved_by, self.cashier)
        self.assertEqual(transfer.approved_by_name, "Auto-approval (cashier-lil)")

        self.source.quantity = 50
        self.source.save(update_fields=["quantity"])
        large = request_transfer(
            item_code="SAM-A15",
            quantity=20,
            from_location="Lilongwe",
            to_location="Zomba",
            requester=self.cashier,
            policy=self.policy,
            auto_resolve=True,
        )
        self.assertEqual(large.status, TransferRequest.Status.PENDING)


class ApprovalPolicyTests(InventoryUsersMixin, TestCase):
    def setUp(self):
        self.create_users()

    def test_load_policy_uses_settings_defaults(self):
        policy = load_policy()

        self.assertTrue(policy.require_approval)
        self.assertEqual(policy.auto_approve_below, 10)
        self.assertIn("Lilongwe", policy.allowed_locations)
        self.assertEqual(policy.version, 1)
        self.assertEqual(ApprovalPolicy.objects.count(), 1)

    def test_decide_uses_threshold_and_require_approval(self):
        policy = load_policy()
        small = TransferRequest(quantity=10)
        large = TransferRequest(quantity=11)

        self.assertTrue(decide(small, policy).auto_approvable)
        self.assertFalse(decide(large, policy).auto_approvable)

        relaxed = PolicySnapshot(require_approval=False, auto_approve_below=1, allowed_locations=frozenset())
        self.assertTrue(decide(large, relaxed).auto_approvable)

    def test_save_policy_bumps_version_and_writes_audit_log(self):
        load_policy()

        snapshot = save_policy(
            actor=self.admin,
            expected_version=1,
            require_approval=True,
            auto_approve_below=5,
            allowed_locations=["Lilongwe", " Blantyre ", "Lilongwe"],
            request_id="req-policy",
        )

        self.assertEqual(snapshot.version, 2)
        self.assertEqual(snapshot.auto_approve_below, 5)
        self.assertEqual(snapshot.allowed_locations, frozenset({"Lilongwe", "Blantyre"}))
        log = AuditLog.objects.get(action="approval_policy.update")
        self.assertEqual(log.before_snapshot["auto_approve_below"], 10)
        self.assertEqual(log.after_snapshot["auto_approve_below"], 5)
        self.assertEqual(log.request_id, "req-policy")
        self.assertTrue(SyncOutbox.objects.filter(entity="approval_policy").exists())

    def test_save_policy_with_stale_version_conflicts(self):
        load_policy()
        save_policy(actor=self.admin, expected_version=1, require_approval=True, auto_approve_below=5, allowed_locations=["Lilongwe"])

        with self.assertRaises(PolicyConflict):
            save_policy(actor=self.admin, expected_version=1, require_approval=False, auto_approve_below=50, allowed_locations=["Zomba"])

        policy = load_policy()
        self.assertEqual(policy.version, 2)
        self.assertEqual(policy.auto_approve_below, 5)

    def test_save_policy_rejects_bad_threshold(self):
        with self.assertRaises(InvalidInput):
            save_policy(actor=self.admin, expected_version=1, require_approval=True, auto_approve_below=0, allowed_locations=[])
        with self.assertRaises(InvalidInput):
            save_policy(actor=self.admin, expected_version=1, require_approval=True, auto_approve_below=5, allowed_locations=[""])

    def test_save_policy_requires_at_least_one_destination(self):
        load_policy()

        with self.assertRaises(InvalidInput):
            save_policy(actor=self.admin, expected_version=1, require_approval=True, auto_approve_below=5, allowed_locations=[])

        self.assertEqual(load_policy().version, 1)


class BulkApprovalTests(InventoryUsersMixin, TestCase):
    def setUp(self):
        self.create_users()
        self.source = make_stock(item_code="SAM-A15", location="Lilongwe", quantity=40)

    def _request(self, quantity):
        return request_transfer(
            item_code="SAM-A15",
            quantity=quantity,
            from_location="Lilongwe",
            to_location="Blantyre",
            requester=self.cashier,
        )

    def test_auto_approve_only_touches_requests_under_threshold(self):
        small = self._request(5)
        large = self._request(15)

        results = auto_approve(self.admin)

        self.assertEqual([result.request_id for result in results], [str(small.id)])
        small.refresh_from_db()
        large.refresh_from_db()
        self.assertEqual(small.status, TransferRequest.Status.APPROVED)
        self.assertEqual(large.status, TransferRequest.Status.PENDING)

    def test_bulk_resolve_continues_after_failure(self):
        first = self._request(2)
        already_rejected = self._request(4)
        resolve(already_rejected.id, "reject", self.supervisor, reason="Duplicate")
        last = self._request(3)

        results = bulk_resolve([first, already_rejected, last], "approve", self.admin, policy=load_policy())

        self.assertEqual([result.ok for result in results], [True, False, True])
        self.assertEqual(results[1].error_code, "already_resolved")
        self.assertEqual(results[1].status, TransferRequest.Status.REJECTED)
        self.assertEqual(results[2].status, TransferRequest.Status.APPROVED)
        self.source.refresh_from_db()
        self.assertEqual(self.source.quantity, 35)

    def test_auto_approve_command(self):
        pending = self._request(3)

        call_command("auto_approve_transfers", username=self.admin.username)

        pending.refresh_from_db()
        self.assertEqual(pending.status, TransferRequest.Status.APPROVED)
        self.assertEqual(pending.approved_by, self.admin)


class LedgerTests(InventoryUsersMixin, TestCase):
    def setUp(self):
        self.create_users()

    def test_record_entry_requires_structural_fields(self):
        with self.assertRaises(InvalidInput):
            ledger.record_entry(
                entry_type=LedgerEntry.EntryType.APPROVED_TRANSFER,
                item_code="ITM",
                quantity=1,
                from_location="Lilongwe",
                actor=self.admin,
            )
        with self.assertRaises(InvalidInput):
            ledger.record_entry(entry_type="sale", item_code="", quantity=1, from_location="Lilongwe", actor=self.admin)

    def test_ledger_entries_are_append_only(self):
        entry = ledger.record_entry(entry_type="sale", item_code="ITM", quantity=1, from_location="Lilongwe", actor=self.admin)

        entry.quantity = 5
        with self.assertRaises(InvalidInput):
            entry.save()
        with self.assertRaises(InvalidInput):
            entry.delete()
        self.assertEqual(LedgerEntry.objects.get(pk=entry.pk).quantity, 1)

    def test_query_entries_matches_either_side_in_time_order(self):
        now = timezone.now()
        later = ledger.record_entry(
            entry_type="approved_transfer",
            item_code="A",
            quantity=1,
            from_location="Zomba",
            to_location="Lilongwe",
            actor=self.admin,
            occurred_at=now,
        )
        earlier = ledger.record_entry(
            entry_type="sale",
            item_code="B",
            quantity=1,
            from_location="Lilongwe",
            actor=self.admin,
            occurred_at=now - timedelta(hours=1),
        )
        ledger.record_entry(entry_type="sale", item_code="C", quantity=1, from_location="Mzuzu", actor=self.admin, occurred_at=now)

        self.assertEqual(list(ledger.query_entries(location="Lilongwe")), [earlier, later])
        self.assertEqual(list(ledger.query_entries(location="Lilongwe", entry_type="sale")), [earlier])
        self.assertEqual(list(ledger.query_entries(start=now)), list(LedgerEntry.objects.filter(occurred_at__gte=now).order_by("occurred_at", "id")))


class StockApiTests(InventoryUsersMixin, TestCase):
    def setUp(self):
        self.client = APIClient()
        self.create_users()
        self.lilongwe = make_stock(item_code="SAM-A15", location="Lilongwe", quantity=10)
        self.blantyre = make_stock(item_code="SAM-A15", location="Blantyre", quantity=4)

    def test_cashier_only_sees_own_location(self):
        self.client.force_authenticate(user=self.cashier)

        response = self.client.get("/api/v1/stocks/")

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(sorted(payload.keys()), ["count", "next", "previous", "results"])
        ids = {item["id"] for item in payload["results"]}
        self.assertEqual(ids, {str(self.lilongwe.id)})

    def test_supervisor_filters_by_location(self):
        self.client.force_authenticate(user=self.supervisor)

        response = self.client.get("/api/v1/stocks/", {"location": "Blantyre"})

        self.assertEqual(response.status_code, 200)
        results = response.json()["results"]
        self.assertEqual([item["id"] for item in results], [str(self.blantyre.id)])
        self.assertEqual(results[0]["model"], "Galaxy A15")

    def test_cashier_cannot_use_admin_intake(self):
        self.client.force_authenticate(user=self.cashier)

        response = self.client.post("/api/v1/admin/stocks/", {"item_code": "X", "location": "Lilongwe", "quantity": 1}, format="json")

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["code"], "permission_denied")

    def test_admin_intake_creates_then_restocks_with_audit_log(self):
        self.client.force_authenticate(user=self.admin)
        body = {
            "item_code": "TEC-SPK10",
            "location": "Mzuzu",
            "quantity": 3,
            "brand": "Tecno",
            "model": "Spark 10",
            "sale_price": "195.00",
        }

        created = self.client.post("/api/v1/admin/stocks/", body, format="json", HTTP_X_REQUEST_ID="req-intake")
        restocked = self.client.post("/api/v1/admin/stocks/", {**body, "quantity": 2}, format="json")

        self.assertEqual(created.status_code, 201)
        self.assertEqual(restocked.status_code, 200)
        self.assertEqual(restocked.json()["quantity"], 5)
        self.assertTrue(AuditLog.objects.filter(action="stock.create", entity="stock", request_id="req-intake").exists())
        self.assertTrue(AuditLog.objects.filter(action="stock.restock", location="Mzuzu").exists())

    def test_admin_details_edit_refuses_quantity(self):
        self.client.force_authenticate(user=self.admin)

        bad = self.client.patch(f"/api/v1/admin/stocks/{self.lilongwe.id}/", {"quantity": 99}, format="json")
        good = self.client.patch(f"/api/v1/admin/stocks/{self.lilongwe.id}/", {"sale_price": "250.00"}, format="json")

        self.assertEqual(bad.status_code, 400)
        self.assertEqual(bad.json()["code"], "validation_error")
        self.assertEqual(good.status_code, 200)
        self.assertEqual(good.json()["sale_price"], "250.00")
        self.assertEqual(good.json()["quantity"], 10)
        log = AuditLog.objects.get(action="stock.update")
        self.assertEqual(log.before_snapshot["sale_price"], "230.00")

    def test_stock_records_cannot_be_deleted_through_api(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.delete(f"/api/v1/admin/stocks/{self.lilongwe.id}/")

        self.assertEqual(response.status_code, 405)
        self.assertTrue(StockRecord.objects.filter(pk=self.lilongwe.pk).exists())


class TransferRequestApiTests(InventoryUsersMixin, TestCase):
    def setUp(self):
        self.client = APIClient()
        self.create_users()
        self.source = make_stock(item_code="SAM-A15", location="Lilongwe", quantity=10)

    def _create(self, quantity=3, from_location="Lilongwe", to_location="Blantyre"):
        self.client.force_authenticate(user=self.cashier)
        return self.client.post(
            "/api/v1/transfer-requests/",
            {"item_code": "SAM-A15", "quantity": quantity, "from_location": from_location, "to_location": to_location},
            format="json",
        )

    def test_cashier_creates_pending_request(self):
        response = self._create()

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["status"], "pending")
        self.assertEqual(response.json()["requested_by_name"], "cashier-lil")

    def test_cashier_cannot_request_from_other_location(self):
        response = self._create(from_location="Zomba", to_location="Blantyre")

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["code"], "policy_violation")
        self.assertFalse(TransferRequest.objects.exists())

    def test_invalid_request_uses_standard_envelope(self):
        response = self._create(quantity=0)

        self.assertEqual(response.status_code, 400)
        payload = response.json()
        self.assertEqual(payload["code"], "validation_error")
        self.assertIn("quantity", payload["errors"])
        self.assertEqual(payload["status"], 400)

    @override_settings(INVENTORY_AUTO_APPROVE_ON_REQUEST=True)
    def test_request_under_threshold_is_approved_immediately_when_enabled(self):
        response = self._create(quantity=3)

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["status"], "approved")

    def test_cashier_cannot_approve_and_denial_is_logged(self):
        transfer_id = self._create().json()["id"]

        with self.assertLogs("security.authorization", level="WARNING") as cm:
            response = self.client.post(f"/api/v1/transfer-requests/{transfer_id}/approve/", {}, format="json")

        self.assertEqual(response.status_code, 403)
        self.assertTrue(any("permission_denied" in message for message in cm.output))

    def test_supervisor_approves_once(self):
        transfer_id = self._create().json()["id"]
        self.client.force_authenticate(user=self.supervisor)

        first = self.client.post(f"/api/v1/transfer-requests/{transfer_id}/approve/", {}, format="json")
        second = self.client.post(f"/api/v1/transfer-requests/{transfer_id}/approve/", {}, format="json")

        self.assertEqual(first.status_code, 200)
        self.assertEqual(first.json()["status"], "approved")
        self.assertEqual(second.status_code, 409)
        self.assertEqual(second.json()["code"], "already_resolved")
        self.source.refresh_from_db()
        self.assertEqual(self.source.quantity, 7)

    def test_approval_writes_outbox_rows(self):
        transfer_id = self._create().json()["id"]
        self.client.force_authenticate(user=self.supervisor)
        cursor = SyncOutbox.objects.latest("id").id

        self.client.post(f"/api/v1/transfer-requests/{transfer_id}/approve/", {}, format="json")

        entities = list(SyncOutbox.objects.filter(id__gt=cursor).values_list("entity", flat=True))
        self.assertEqual(entities.count("stock"), 2)
        self.assertIn("transfer_request", entities)
        self.assertIn("ledger_entry", entities)

    def test_supervisor_rejects_with_reason(self):
        transfer_id = self._create().json()["id"]
        self.client.force_authenticate(user=self.supervisor)

        response = self.client.post(f"/api/v1/transfer-requests/{transfer_id}/reject/", {"reason": "Out of stock"}, format="json")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "rejected")
        self.assertEqual(response.json()["rejection_reason"], "Out of stock")

    def test_list_filters_by_status(self):
        pending_id = self._create().json()["id"]
        rejected_id = self._create().json()["id"]
        self.client.force_authenticate(user=self.supervisor)
        self.client.post(f"/api/v1/transfer-requests/{rejected_id}/reject/", {}, format="json")

        response = self.client.get("/api/v1/transfer-requests/", {"status": "pending"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual([item["id"] for item in response.json()["results"]], [pending_id])

    def test_bulk_resolve_requires_admin_and_reports_each_item(self):
        first = self._create(quantity=2).json()["id"]
        second = self._create(quantity=50).json()["id"]

        self.client.force_authenticate(user=self.supervisor)
        denied = self.client.post("/api/v1/transfer-requests/bulk-resolve/", {"request_ids": [first], "decision": "approve"}, format="json")
        self.assertEqual(denied.status_code, 403)

        self.client.force_authenticate(user=self.admin)
        response = self.client.post(
            "/api/v1/transfer-requests/bulk-resolve/",
            {"request_ids": [first, second, first], "decision": "approve"},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["succeeded"], 2)
        self.assertEqual(payload["failed"], 1)
        self.assertEqual([item["status"] for item in payload["results"]], ["approved", "rejected", "approved"])
        self.assertEqual(payload["results"][2]["error_code"], "already_resolved")

    def test_auto_approve_endpoint(self):
        small = self._create(quantity=3).json()["id"]
        large = self._create(quantity=11).json()["id"]
        self.client.force_authenticate(user=self.admin)

        response = self.client.post("/api/v1/transfer-requests/auto-approve/", {}, format="json")

        self.assertEqual(response.status_code, 200)
        self.assertEqual([item["request_id"] for item in response.json()["results"]], [small])
        self.assertEqual(TransferRequest.objects.get(pk=large).status, TransferRequest.Status.PENDING)

    def test_partial_failure_uses_standard_envelope(self):
        transfer_id = self._create().json()["id"]
        self.client.force_authenticate(user=self.supervisor)

        with patch("inventory.transfers.upsert_at_destination", side_effect=RuntimeError("disk full")):
            response = self.client.post(f"/api/v1/transfer-requests/{transfer_id}/approve/", {}, format="json")

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()["code"], "partial_failure")
        self.assertEqual(TransferRequest.objects.get(pk=transfer_id).status, TransferRequest.Status.FAILED)


class LedgerAndPolicyApiTests(InventoryUsersMixin, TestCase):
    def setUp(self):
        self.client = APIClient()
        self.create_users()
        make_stock(item_code="SAM-A15", location="Lilongwe", quantity=10)

    def test_ledger_lists_entries_for_managers_only(self):
        transfer = request_transfer(item_code="SAM-A15", quantity=2, from_location="Lilongwe", to_location="Zomba", requester=self.cashier)
        resolve(transfer.id, "approve", self.supervisor, policy=load_policy())

        self.client.force_authenticate(user=self.cashier)
        self.assertEqual(self.client.get("/api/v1/ledger/").status_code, 403)

        self.client.force_authenticate(user=self.supervisor)
        response = self.client.get("/api/v1/ledger/", {"location": "Zomba", "entry_type": "approved_transfer"})

        self.assertEqual(response.status_code, 200)
        results = response.json()["results"]
        self.assertEqual(len(results), 1)
        self.assertEqual(results[0]["transfer"], str(transfer.id))
        self.assertEqual(results[0]["to_location"], "Zomba")

    def test_ledger_rejects_inverted_range(self):
        self.client.force_authenticate(user=self.supervisor)

        response = self.client.get("/api/v1/ledger/", {"start": "2026-02-01T00:00:00Z", "end": "2026-01-01T00:00:00Z"})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "validation_error")

    def test_policy_get_and_put_with_version(self):
        self.client.force_authenticate(user=self.admin)
        current = self.client.get("/api/v1/approval-policy/").json()

        response = self.client.put(
            "/api/v1/approval-policy/",
            {"require_approval": True, "auto_approve_below": 4, "allowed_locations": ["Lilongwe", "Zomba"], "version": current["version"]},
            format="json",
        )
        stale = self.client.put(
            "/api/v1/approval-policy/",
            {"require_approval": False, "auto_approve_below": 99, "allowed_locations": ["Lilongwe"], "version": current["version"]},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["version"], current["version"] + 1)
        self.assertEqual(response.json()["allowed_locations"], ["Lilongwe", "Zomba"])
        self.assertEqual(stale.status_code, 409)
        self.assertEqual(stale.json()["code"], "policy_conflict")

    def test_policy_put_with_empty_destination_list_is_refused(self):
        self.client.force_authenticate(user=self.admin)
        current = self.client.get("/api/v1/approval-policy/").json()

        response = self.client.put(
            "/api/v1/approval-policy/",
            {"require_approval": True, "auto_approve_below": 4, "allowed_locations": [], "version": current["version"]},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "validation_error")
        self.assertIn("allowed_locations", response.json()["errors"])
        self.assertEqual(self.client.get("/api/v1/approval-policy/").json()["version"], current["version"])

    def test_supervisor_can_read_but_not_edit_policy(self):
        self.client.force_authenticate(user=self.supervisor)

        read = self.client.get("/api/v1/approval-policy/")
        write = self.client.put(
            "/api/v1/approval-policy/",
            {"require_approval": True, "auto_approve_below": 4, "allowed_locations": [], "version": 1},
            format="json",
        )

        self.assertEqual(read.status_code, 200)
        self.assertEqual(write.status_code, 403)
