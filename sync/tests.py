from django.contrib.auth import get_user_model
from django.test import TestCase
from rest_framework.test import APIClient

from common.utils import emit_outbox
from sync.models import SyncOutbox


class SyncErrorEnvelopeTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = get_user_model().objects.create_user(
            username="sync-user",
            password="pass1234",
            role="cashier",
            location="Mzuzu",
        )

    def test_unauthenticated_error_uses_standard_envelope(self):
        response = self.client.post("/api/v1/sync/pull", {"cursor": 0, "limit": 5}, format="json")

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["code"], "not_authenticated")
        self.assertIn("message", response.json())
        self.assertIn("errors", response.json())
        self.assertEqual(response.json()["status"], 401)

    def test_sync_validation_error_uses_standard_envelope(self):
        self.client.force_authenticate(user=self.user)

        response = self.client.post("/api/v1/sync/pull", {"cursor": -1, "limit": 5}, format="json")

        self.assertEqual(response.status_code, 422)
        payload = response.json()
        self.assertEqual(payload["code"], "validation_error")
        self.assertEqual(payload["message"], "Validation failed.")
        self.assertEqual(payload["status"], 422)
        self.assertIn("cursor", payload["errors"])

    def test_sync_forbidden_location_uses_standard_envelope(self):
        self.client.force_authenticate(user=self.user)

        response = self.client.post("/api/v1/sync/pull", {"cursor": 0, "location": "Salima"}, format="json")

        self.assertEqual(response.status_code, 403)
        payload = response.json()
        self.assertEqual(payload["code"], "forbidden_location")
        self.assertEqual(payload["status"], 403)
        self.assertIn("location", payload["errors"])

    def test_user_without_location_is_refused(self):
        homeless = get_user_model().objects.create_user(username="no-home", password="pass1234", role="cashier")
        self.client.force_authenticate(user=homeless)

        response = self.client.post("/api/v1/sync/pull", {"cursor": 0}, format="json")

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["code"], "forbidden_location")


class SyncPullTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        user_model = get_user_model()
        self.cashier = user_model.objects.create_user(
            username="pull-cashier",
            password="pass1234",
            role="cashier",
            location="Mzuzu",
        )
        self.supervisor = user_model.objects.create_user(username="pull-supervisor", password="pass1234", role="supervisor")

        self.mzuzu_stock = emit_outbox("Mzuzu", "stock", "s-1", "upsert", {"quantity": 4})
        self.salima_stock = emit_outbox("Salima", "stock", "s-2", "upsert", {"quantity": 1})
        self.policy = emit_outbox("", "approval_policy", 1, "upsert", {"version": 2})
        self.mzuzu_sale = emit_outbox("Mzuzu", "sale", "sale-1", "insert", {"quantity": 1})

    def test_cashier_receives_own_location_and_global_rows(self):
        self.client.force_authenticate(user=self.cashier)

        response = self.client.post("/api/v1/sync/pull", {"cursor": 0}, format="json")

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(
            [update["cursor"] for update in payload["updates"]],
            [self.mzuzu_stock.id, self.policy.id, self.mzuzu_sale.id],
        )
        self.assertEqual(payload["server_cursor"], self.mzuzu_sale.id)
        self.assertFalse(payload["has_more"])
        first = payload["updates"][0]
        self.assertEqual(first["entity"], "stock")
        self.assertEqual(first["entity_id"], "s-1")
        self.assertEqual(first["payload"], {"quantity": 4, "location": "Mzuzu"})

    def test_cursor_and_limit_page_through_the_stream(self):
        self.client.force_authenticate(user=self.supervisor)

        first_page = self.client.post("/api/v1/sync/pull", {"cursor": 0, "limit": 2}, format="json").json()
        second_page = self.client.post(
            "/api/v1/sync/pull",
            {"cursor": first_page["server_cursor"], "limit": 2},
            format="json",
        ).json()

        self.assertTrue(first_page["has_more"])
        self.assertEqual([update["cursor"] for update in first_page["updates"]], [self.mzuzu_stock.id, self.salima_stock.id])
        self.assertFalse(second_page["has_more"])
        self.assertEqual([update["cursor"] for update in second_page["updates"]], [self.policy.id, self.mzuzu_sale.id])

    def test_entity_and_location_filters(self):
        self.client.force_authenticate(user=self.supervisor)

        response = self.client.post("/api/v1/sync/pull", {"cursor": 0, "entity": "stock", "location": "Salima"}, format="json")

        self.assertEqual(response.status_code, 200)
        self.assertEqual([update["cursor"] for update in response.json()["updates"]], [self.salima_stock.id])

    def test_empty_page_keeps_cursor(self):
        self.client.force_authenticate(user=self.supervisor)
        latest = SyncOutbox.objects.latest("id").id

        response = self.client.post("/api/v1/sync/pull", {"cursor": latest}, format="json")

        self.assertEqual(response.json(), {"server_cursor": latest, "updates": [], "has_more": False})
