from io import StringIO

from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.db import IntegrityError
from django.test import TestCase
from rest_framework.test import APIClient

from common.audit import create_audit_log
from core.models import AuditLog
from core.views import scoped_queryset_for_user
from inventory.models import StockRecord, TransferRequest


class UserModelTests(TestCase):
    def test_save_normalises_email_and_location(self):
        user = get_user_model().objects.create_user(
            username="norm-user",
            email="  Mixed@Example.COM ",
            password="pass1234",
            location="  Zomba ",
        )

        user.refresh_from_db()
        self.assertEqual(user.email, "mixed@example.com")
        self.assertEqual(user.location, "Zomba")

    def test_email_is_unique_case_insensitively(self):
        user_model = get_user_model()
        user_model.objects.create_user(username="first", email="dup@example.com", password="pass1234")

        with self.assertRaises(IntegrityError):
            user_model.objects.create_user(username="second", email="DUP@example.com", password="pass1234")


class TokenTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        get_user_model().objects.create_user(username="token-user", password="pass1234", role="cashier", location="Salima")

    def test_token_obtain_and_use(self):
        response = self.client.post("/api/v1/token/", {"username": "token-user", "password": "pass1234"}, format="json")

        self.assertEqual(response.status_code, 200)
        access = response.json()["access"]
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {access}")
        self.assertEqual(self.client.get("/api/v1/stocks/").status_code, 200)

    def test_bad_credentials_use_standard_envelope(self):
        response = self.client.post("/api/v1/token/", {"username": "token-user", "password": "wrong"}, format="json")

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["code"], "authentication_failed")


class LocationScopeTests(TestCase):
    def setUp(self):
        user_model = get_user_model()
        self.cashier = user_model.objects.create_user(username="scope-cashier", password="pass1234", role="cashier", location="Chitipa")
        self.homeless = user_model.objects.create_user(username="scope-none", password="pass1234", role="cashier")
        self.supervisor = user_model.objects.create_user(username="scope-super", password="pass1234", role="supervisor")
        for location in ("Chitipa", "Salima"):
            StockRecord.objects.create(item_code="SCOPE", location=location, brand="Itel", model_name="A70", quantity=1)

    def test_cashier_sees_home_location_only(self):
        qs = scoped_queryset_for_user(StockRecord.objects.all(), self.cashier)

        self.assertEqual(list(qs.values_list("location", flat=True)), ["Chitipa"])

    def test_user_without_location_sees_nothing(self):
        self.assertFalse(scoped_queryset_for_user(StockRecord.objects.all(), self.homeless).exists())

    def test_managers_see_every_location(self):
        self.assertEqual(scoped_queryset_for_user(StockRecord.objects.all(), self.supervisor).count(), 2)


class AuditLogTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        user_model = get_user_model()
        self.admin = user_model.objects.create_user(username="audit-admin", password="pass1234", role="admin")
        self.supervisor = user_model.objects.create_user(username="audit-super", password="pass1234", role="supervisor")

    def test_audit_logs_are_admin_only_and_denial_is_logged(self):
        self.client.force_authenticate(user=self.supervisor)

        with self.assertLogs("security.authorization", level="WARNING") as cm:
            response = self.client.get("/api/v1/admin/audit-logs/")

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["code"], "permission_denied")
        self.assertTrue(any("permission_denied" in message for message in cm.output))

    def test_admin_filters_audit_logs(self):
        create_audit_log(actor=self.admin, action="stock.update", entity="stock", entity_id="s-1", location="Zomba")
        create_audit_log(actor=self.admin, action="approval_policy.update", entity="approval_policy", entity_id=1)
        self.client.force_authenticate(user=self.admin)

        response = self.client.get("/api/v1/admin/audit-logs/", {"action": "stock.update"})

        self.assertEqual(response.status_code, 200)
        results = response.json()["results"]
        self.assertEqual(len(results), 1)
        self.assertEqual(results[0]["actor_username"], "audit-admin")
        self.assertEqual(results[0]["location"], "Zomba")

    def test_audit_logs_are_read_only(self):
        self.client.force_authenticate(user=self.admin)
        log = AuditLog.objects.create(action="test.action", entity="test", actor=self.admin)

        patch_res = self.client.patch(f"/api/v1/admin/audit-logs/{log.id}/", {"action": "changed"}, format="json")
        delete_res = self.client.delete(f"/api/v1/admin/audit-logs/{log.id}/")

        self.assertEqual(patch_res.status_code, 405)
        self.assertEqual(delete_res.status_code, 405)

    def test_policy_update_through_api_is_audited_with_request_id(self):
        self.client.force_authenticate(user=self.admin)
        current = self.client.get("/api/v1/approval-policy/").json()

        response = self.client.put(
            "/api/v1/approval-policy/",
            {"require_approval": False, "auto_approve_below": 3, "allowed_locations": ["Zomba"], "version": current["version"]},
            format="json",
            HTTP_X_REQUEST_ID="req-456",
        )

        self.assertEqual(response.status_code, 200)
        self.assertTrue(AuditLog.objects.filter(action="approval_policy.update", request_id="req-456").exists())


class SeedDemoDataCommandTests(TestCase):
    def test_seed_is_idempotent(self):
        call_command("seed_demo_data", stdout=StringIO())
        call_command("seed_demo_data", stdout=StringIO())

        self.assertEqual(StockRecord.objects.filter(item_code="SAM-A15-128-BLK").count(), 1)
        self.assertEqual(TransferRequest.objects.count(), 1)
        self.assertEqual(get_user_model().objects.filter(username__in=["admin", "supervisor", "cashier"]).count(), 3)
