import datetime
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.test import TestCase
from rest_framework.test import APIClient

from bookings.models import Booking, BookingService, Service
from bookings.services import can_transition_booking, set_booking_status
from common.exceptions import InvalidTransition
from core.models import AuditLog, Garage


def booking_payload(**overrides):
    payload = {
        "serviceId": "service-1",
        "serviceName": "Oil Change",
        "customer": {"name": "Jamie Rivers", "phone": "07700 900123", "email": "jamie@example.com"},
        "car": {"make": "Ford", "model": "Focus", "year": 2019, "registration": "ab12 cde"},
        "date": "2024-06-03",
        "startTime": "09:00",
        "endTime": "10:00",
        "bay": "Bay 1",
    }
    payload.update(overrides)
    return payload


class BookingStatusTransitionTests(TestCase):
    def setUp(self):
        self.garage = Garage.objects.create(code="BS", name="Status Garage")
        self.booking = Booking.objects.create(
            garage=self.garage,
            customer_name="Sam",
            date=datetime.date(2024, 6, 3),
            start_time=datetime.time(9, 0),
            end_time=datetime.time(10, 0),
            bay="Bay 2",
        )

    def test_transition_table(self):
        self.assertTrue(can_transition_booking(Booking.Status.PENDING, Booking.Status.IN_PROGRESS))
        self.assertTrue(can_transition_booking(Booking.Status.CONFIRMED, Booking.Status.CANCELLED))
        self.assertFalse(can_transition_booking(Booking.Status.PENDING, Booking.Status.COMPLETED))
        self.assertFalse(can_transition_booking(Booking.Status.COMPLETED, Booking.Status.CANCELLED))

    def test_lenient_move_ignores_illegal_target(self):
        changed = set_booking_status(self.booking, Booking.Status.COMPLETED)

        self.assertFalse(changed)
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, Booking.Status.PENDING)

    def test_strict_move_raises_on_illegal_target(self):
        with self.assertRaises(InvalidTransition):
            set_booking_status(self.booking, Booking.Status.COMPLETED, strict=True)


class GarageBookingsApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.garage_a = Garage.objects.create(code="GA", name="Garage A")
        self.garage_b = Garage.objects.create(code="GB", name="Garage B")
        self.advisor = self.user_model.objects.create_user(username="advisor-a", password="pass1234", garage=self.garage_a, role="advisor")
        self.technician = self.user_model.objects.create_user(username="tech-a", password="pass1234", garage=self.garage_a, role="technician")
        self.service = Service.objects.create(
            garage=self.garage_a,
            code="service-1",
            name="Oil Change",
            duration_minutes=45,
            price=Decimal("59.00"),
        )

    def test_create_booking_snapshots_service_line(self):
        self.client.force_authenticate(user=self.advisor)

        response = self.client.post(
            f"/api/garages/{self.garage_a.id}/bookings/",
            booking_payload(technicianId=str(self.technician.id)),
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        payload = response.json()
        self.assertEqual(payload["status"], "pending")
        self.assertEqual(payload["vehicle_license"], "AB12 CDE")
        self.assertEqual(payload["technician"], str(self.technician.id))
        self.assertEqual(len(payload["services"]), 1)
        self.assertEqual(payload["services"][0]["service_code"], "service-1")
        self.assertEqual(payload["services"][0]["price"], "59.00")
        self.assertEqual(payload["services"][0]["source"], BookingService.Source.BOOKED)
        self.assertTrue(AuditLog.objects.filter(action="booking.create", entity_id=payload["id"]).exists())

    def test_missing_required_field_names_the_field(self):
        self.client.force_authenticate(user=self.advisor)
        payload = booking_payload()
        del payload["bay"]

        response = self.client.post(f"/api/garages/{self.garage_a.id}/bookings/", payload, format="json")

        self.assertEqual(response.status_code, 400)
        body = response.json()
        self.assertEqual(body["code"], "validation_error")
        self.assertEqual(body["message"], "Missing required field: bay")
        self.assertIn("bay", body["errors"])
        self.assertEqual(Booking.objects.count(), 0)

    def test_end_time_must_follow_start_time(self):
        self.client.force_authenticate(user=self.advisor)

        response = self.client.post(
            f"/api/garages/{self.garage_a.id}/bookings/",
            booking_payload(startTime="11:00", endTime="10:00"),
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertIn("endTime", response.json()["errors"])

    def test_other_garage_is_not_found(self):
        self.client.force_authenticate(user=self.advisor)

        response = self.client.post(f"/api/garages/{self.garage_b.id}/bookings/", booking_payload(), format="json")

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["code"], "not_found")

    def test_technician_cannot_create_booking(self):
        self.client.force_authenticate(user=self.technician)

        response = self.client.post(f"/api/garages/{self.garage_a.id}/bookings/", booking_payload(), format="json")

        self.assertEqual(response.status_code, 403)

    def test_list_garage_bookings(self):
        Booking.objects.create(
            garage=self.garage_a,
            customer_name="Listed",
            date=datetime.date(2024, 6, 4),
            start_time=datetime.time(9, 0),
            end_time=datetime.time(9, 30),
            bay="Bay 1",
        )
        Booking.objects.create(
            garage=self.garage_b,
            customer_name="Hidden",
            date=datetime.date(2024, 6, 4),
            start_time=datetime.time(9, 0),
            end_time=datetime.time(9, 30),
            bay="Bay 1",
        )
        self.client.force_authenticate(user=self.technician)

        response = self.client.get(f"/api/garages/{self.garage_a.id}/bookings/")

        self.assertEqual(response.status_code, 200)
        names = [item["customer_name"] for item in response.json()["results"]]
        self.assertEqual(names, ["Listed"])

    def test_malformed_date_filter_is_a_validation_error(self):
        self.client.force_authenticate(user=self.technician)

        by_word = self.client.get(f"/api/garages/{self.garage_a.id}/bookings/", {"date": "tomorrow"})
        by_range = self.client.get("/api/bookings/", {"dateFrom": "2024-02-30"})

        self.assertEqual(by_word.status_code, 400)
        self.assertEqual(by_word.json()["code"], "validation_error")
        self.assertIn("date", by_word.json()["errors"])
        self.assertEqual(by_range.status_code, 400)
        self.assertIn("dateFrom", by_range.json()["errors"])


class BookingViewSetTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.garage = Garage.objects.create(code="BV", name="Booking Views")
        self.advisor = self.user_model.objects.create_user(username="advisor-bv", password="pass1234", garage=self.garage, role="advisor")
        self.booking = Booking.objects.create(
            garage=self.garage,
            customer_name="Alex",
            date=datetime.date(2024, 6, 5),
            start_time=datetime.time(13, 0),
            end_time=datetime.time(14, 0),
            bay="Bay 3",
            requires_diagnosis=True,
        )

    def test_confirm_then_illegal_complete(self):
        self.client.force_authenticate(user=self.advisor)

        confirmed = self.client.post(f"/api/bookings/{self.booking.id}/status/", {"status": "confirmed"}, format="json")
        illegal = self.client.post(f"/api/bookings/{self.booking.id}/status/", {"status": "completed"}, format="json")

        self.assertEqual(confirmed.status_code, 200)
        self.assertEqual(confirmed.json()["status"], "confirmed")
        self.assertEqual(illegal.status_code, 409)
        self.assertEqual(illegal.json()["code"], "invalid_transition")

    def test_open_job_sheet_once(self):
        self.client.force_authenticate(user=self.advisor)

        first = self.client.post(f"/api/bookings/{self.booking.id}/job-sheet/", {}, format="json")
        second = self.client.post(f"/api/bookings/{self.booking.id}/job-sheet/", {}, format="json")

        self.assertEqual(first.status_code, 201)
        self.assertEqual(first.json()["number"], "JB-0001")
        self.assertEqual(first.json()["status"], "PENDING")
        self.assertTrue(first.json()["requires_diagnosis"])
        self.assertEqual(second.status_code, 400)

        detail = self.client.get(f"/api/bookings/{self.booking.id}/")
        self.assertEqual(detail.json()["job_sheet_id"], first.json()["id"])


class ServiceCatalogApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.garage = Garage.objects.create(code="SC", name="Catalog Garage")
        self.manager = self.user_model.objects.create_user(username="catalog-manager", password="pass1234", garage=self.garage, role="manager")
        self.advisor = self.user_model.objects.create_user(username="catalog-advisor", password="pass1234", garage=self.garage, role="advisor")

    def test_manager_creates_service_and_duplicate_code_is_rejected(self):
        self.client.force_authenticate(user=self.manager)
        body = {"code": "service-21", "name": "Battery Replacement", "duration_minutes": 30, "price": "120.00"}

        created = self.client.post("/api/services/", body, format="json")
        duplicate = self.client.post("/api/services/", body, format="json")

        self.assertEqual(created.status_code, 201)
        self.assertEqual(Service.objects.get(id=created.json()["id"]).garage_id, self.garage.id)
        self.assertEqual(duplicate.status_code, 400)

    def test_advisor_cannot_manage_catalog(self):
        self.client.force_authenticate(user=self.advisor)

        response = self.client.post("/api/services/", {"code": "x", "name": "X", "price": "1.00"}, format="json")

        self.assertEqual(response.status_code, 403)
