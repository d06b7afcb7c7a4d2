from io import StringIO

from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.test import TestCase
from rest_framework.test import APIClient

from core.models import AuditLog, Garage


class TokenCookieAuthTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.garage = Garage.objects.create(code="TK", name="Token Garage")
        self.user = self.user_model.objects.create_user(
            username="cookie-advisor",
            email="advisor@example.com",
            password="pass1234",
            garage=self.garage,
            role="advisor",
        )

    def test_login_sets_cookie_and_cookie_authenticates(self):
        response = self.client.post("/api/token/", {"username": "cookie-advisor", "password": "pass1234"}, format="json")

        self.assertEqual(response.status_code, 200)
        self.assertIn("access", response.json())
        cookie = response.cookies[settings.AUTH_COOKIE_NAME]
        self.assertEqual(cookie.value, response.json()["access"])
        self.assertTrue(cookie["httponly"])

        me = self.client.get("/api/me/")

        self.assertEqual(me.status_code, 200)
        self.assertEqual(me.json()["username"], "cookie-advisor")
        self.assertEqual(me.json()["garage"], str(self.garage.id))
        self.assertIn("bookings.manage", me.json()["capabilities"])
        self.assertNotIn("stock.adjust", me.json()["capabilities"])

    def test_login_accepts_email(self):
        response = self.client.post("/api/token/", {"username": "ADVISOR@example.com", "password": "pass1234"}, format="json")

        self.assertEqual(response.status_code, 200)

    def test_bearer_header_is_accepted(self):
        access = self.client.post("/api/token/", {"username": "cookie-advisor", "password": "pass1234"}, format="json").json()["access"]
        fresh = APIClient()
        fresh.credentials(HTTP_AUTHORIZATION=f"Bearer {access}")

        response = fresh.get("/api/me/")

        self.assertEqual(response.status_code, 200)

    def test_bad_credentials_use_error_envelope(self):
        response = self.client.post("/api/token/", {"username": "cookie-advisor", "password": "wrong"}, format="json")

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["code"], "authentication_failed")
        self.assertEqual(response.json()["status"], 401)

    def test_logout_clears_cookie(self):
        self.client.post("/api/token/", {"username": "cookie-advisor", "password": "pass1234"}, format="json")

        response = self.client.post("/api/logout/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.cookies[settings.AUTH_COOKIE_NAME].value, "")
        self.assertEqual(self.client.get("/api/me/").status_code, 401)

    def test_cookie_writes_require_csrf_token(self):
        self.user.role = "admin"
        self.user.save(update_fields=["role"])
        client = APIClient(enforce_csrf_checks=True)
        login = client.post("/api/token/", {"username": "cookie-advisor", "password": "pass1234"}, format="json")
        csrf_token = login.cookies[settings.CSRF_COOKIE_NAME].value

        without_token = client.post("/api/garages/", {"code": "CS1", "name": "No Token"}, format="json")
        with_token = client.post("/api/garages/", {"code": "CS2", "name": "With Token"}, format="json", HTTP_X_CSRFTOKEN=csrf_token)
        bearer = APIClient(enforce_csrf_checks=True)
        bearer.credentials(HTTP_AUTHORIZATION=f"Bearer {login.json()['access']}")
        with_header = bearer.post("/api/garages/", {"code": "CS3", "name": "Bearer"}, format="json")

        self.assertEqual(without_token.status_code, 403)
        self.assertIn("CSRF", without_token.json()["message"])
        self.assertEqual(with_token.status_code, 201)
        self.assertEqual(with_header.status_code, 201)
        self.assertEqual(client.get("/api/me/").status_code, 200)

    def test_anonymous_request_is_rejected(self):
        response = self.client.get("/api/me/")

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["code"], "not_authenticated")


class GarageScopeTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.garage_a = Garage.objects.create(code="CA", name="Core A")
        self.garage_b = Garage.objects.create(code="CB", name="Core B")
        self.technician = self.user_model.objects.create_user(username="core-tech", password="pass1234", garage=self.garage_a, role="technician")
        self.advisor = self.user_model.objects.create_user(username="core-advisor", password="pass1234", garage=self.garage_a, role="advisor")
        self.admin = self.user_model.objects.create_user(username="core-admin", password="pass1234", garage=self.garage_a, role="admin")
        self.superuser = self.user_model.objects.create_superuser(username="root", password="pass1234")

    def test_staff_only_see_their_garage(self):
        self.client.force_authenticate(user=self.technician)

        response = self.client.get("/api/garages/")
        other = self.client.get(f"/api/garages/{self.garage_b.id}/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(sorted(response.json().keys()), ["count", "next", "previous", "results"])
        self.assertEqual([item["id"] for item in response.json()["results"]], [str(self.garage_a.id)])
        self.assertEqual(other.status_code, 404)

    def test_superuser_sees_every_garage(self):
        self.client.force_authenticate(user=self.superuser)

        response = self.client.get("/api/garages/")

        self.assertEqual(response.json()["count"], 2)

    def test_staff_listing_filters_by_role(self):
        self.client.force_authenticate(user=self.advisor)

        response = self.client.get(f"/api/garages/{self.garage_a.id}/staff/", {"role": "technician"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual([item["username"] for item in response.json()], ["core-tech"])

    def test_only_admin_creates_garages_and_denial_is_logged(self):
        self.client.force_authenticate(user=self.advisor)
        with self.assertLogs("security.authorization", level="WARNING") as captured:
            denied = self.client.post("/api/garages/", {"code": "NEW", "name": "New Garage"}, format="json")

        self.client.force_authenticate(user=self.admin)
        created = self.client.post("/api/garages/", {"code": "NEW", "name": "New Garage", "bay_count": 4}, format="json", HTTP_X_REQUEST_ID="req-123")

        self.assertEqual(denied.status_code, 403)
        self.assertEqual(denied.json()["code"], "permission_denied")
        self.assertTrue(any("permission_denied" in line for line in captured.output))
        self.assertEqual(created.status_code, 201)
        self.assertTrue(AuditLog.objects.filter(action="garage.create", entity="garage", request_id="req-123").exists())


class AuditLogApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.garage = Garage.objects.create(code="AL", name="Audit")
        self.other_garage = Garage.objects.create(code="AO", name="Audit Other")
        self.manager = self.user_model.objects.create_user(username="audit-manager", password="pass1234", garage=self.garage, role="manager")
        self.technician = self.user_model.objects.create_user(username="audit-tech", password="pass1234", garage=self.garage, role="technician")
        self.log = AuditLog.objects.create(action="booking.create", entity="booking", garage=self.garage, actor=self.manager)
        AuditLog.objects.create(action="booking.create", entity="booking", garage=self.other_garage)

    def test_manager_reads_own_garage_logs(self):
        self.client.force_authenticate(user=self.manager)

        response = self.client.get("/api/admin/audit-logs/", {"action": "booking.create"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual([item["id"] for item in response.json()["results"]], [str(self.log.id)])

    def test_audit_logs_are_read_only(self):
        self.client.force_authenticate(user=self.manager)

        patch_res = self.client.patch(f"/api/admin/audit-logs/{self.log.id}/", {"action": "changed"}, format="json")
        delete_res = self.client.delete(f"/api/admin/audit-logs/{self.log.id}/")

        self.assertEqual(patch_res.status_code, 405)
        self.assertEqual(delete_res.status_code, 405)

    def test_technician_cannot_read_audit_logs(self):
        self.client.force_authenticate(user=self.technician)

        response = self.client.get("/api/admin/audit-logs/")

        self.assertEqual(response.status_code, 403)

    def test_export_is_csv(self):
        self.client.force_authenticate(user=self.manager)

        response = self.client.get("/api/admin/audit-logs/export/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response["Content-Type"], "text/csv")
        self.assertIn("booking.create", response.content.decode())


class HealthEndpointTests(TestCase):
    def test_healthz_echoes_request_id(self):
        response = APIClient().get("/api/healthz/", HTTP_X_REQUEST_ID="probe-1")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok", "request_id": "probe-1"})
        self.assertEqual(response["X-Request-ID"], "probe-1")


class SeedDemoDataTests(TestCase):
    def test_seed_is_repeatable(self):
        call_command("seed_demo_data", stdout=StringIO())
        call_command("seed_demo_data", stdout=StringIO())

        garage = Garage.objects.get(code="MAIN")
        self.assertEqual(get_user_model().objects.filter(garage=garage).count(), 4)
        self.assertEqual(garage.services.count(), 9)
        self.assertEqual(garage.inventory_items.count(), 9)
        self.assertEqual(garage.stock_movements.count(), 9)
        self.assertEqual(garage.bookings.count(), 1)
