import datetime
from decimal import Decimal
from io import StringIO
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import SimpleTestCase, TestCase, override_settings
from rest_framework.test import APIClient

from billing import services
from billing.models import Invoice
from billing.pricing import calculate_pricing
from bookings.models import Booking
from common.exceptions import InvalidTransition
from core.models import AuditLog, Garage
from workshop.services import create_job_sheet


class PricingTests(SimpleTestCase):
    def test_vat_applies_to_subtotal_plus_service_charge(self):
        pricing = calculate_pricing([50, 30])

        self.assertEqual(pricing.subtotal, Decimal("80.00"))
        self.assertEqual(pricing.service_charge, Decimal("15.00"))
        self.assertEqual(pricing.vat, Decimal("19.00"))
        self.assertEqual(pricing.total, Decimal("114.00"))

    def test_amounts_round_half_up(self):
        pricing = calculate_pricing(["10.005"], service_charge="0", vat_rate="0.2")

        self.assertEqual(pricing.subtotal, Decimal("10.01"))
        self.assertEqual(pricing.vat, Decimal("2.00"))

    @override_settings(WORKSHOP_SERVICE_CHARGE=Decimal("0.00"), WORKSHOP_VAT_RATE=Decimal("0"))
    def test_defaults_come_from_settings(self):
        pricing = calculate_pricing([])

        self.assertEqual(pricing.as_dict(), {"subtotal": "0.00", "service_charge": "0.00", "vat": "0.00", "total": "0.00"})

    def test_invoice_number_format(self):
        number = services.generate_invoice_number(datetime.date(2024, 6, 3))

        self.assertRegex(number, r"^INV-240603-\d{4}$")


class InvoiceFixtureMixin:
    def setUpGarage(self):
        self.user_model = get_user_model()
        self.garage = Garage.objects.create(code="BL", name="Billing Garage")
        self.advisor = self.user_model.objects.create_user(username="bill-advisor", password="pass1234", garage=self.garage, role="advisor")
        self.technician = self.user_model.objects.create_user(username="bill-tech", password="pass1234", garage=self.garage, role="technician")
        self._bookings = 0

    def make_job_sheet(self, customer_name="Casey Jordan", garage=None):
        self._bookings += 1
        booking = Booking.objects.create(
            garage=garage or self.garage,
            customer_name=customer_name,
            customer_phone="07700 900456",
            vehicle_make="Toyota",
            vehicle_model="Yaris",
            vehicle_year=2020,
            vehicle_license=f"YR20 AA{self._bookings}",
            date=datetime.date(2024, 6, 3),
            start_time=datetime.time(9, 0),
            end_time=datetime.time(10, 0),
            bay="Bay 1",
        )
        return create_job_sheet(booking=booking)

    def make_invoice(self, *, prices=("50.00",), status=Invoice.Status.DRAFT, issued_date=datetime.date(2024, 6, 3), **kwargs):
        job_sheet = self.make_job_sheet(**kwargs)
        lines = [{"id": str(index), "name": f"Line {index}", "price": price} for index, price in enumerate(prices)]
        invoice = services.create_invoice_for_job_sheet(job_sheet, lines, issued_date=issued_date)
        if status != Invoice.Status.DRAFT:
            Invoice.objects.filter(pk=invoice.pk).update(status=status)
            invoice.refresh_from_db()
        return invoice


class InvoiceServiceTests(InvoiceFixtureMixin, TestCase):
    def setUp(self):
        self.setUpGarage()

    def test_invoice_snapshots_booking_and_prices_lines(self):
        invoice = self.make_invoice(prices=("50.00", "30.00"))

        self.assertEqual(invoice.status, Invoice.Status.DRAFT)
        self.assertEqual(invoice.total_amount, Decimal("114.00"))
        self.assertEqual(invoice.due_date, datetime.date(2024, 7, 3))
        self.assertEqual(invoice.customer["name"], "Casey Jordan")
        self.assertEqual(invoice.vehicle["make"], "Toyota")
        self.assertEqual([line["price"] for line in invoice.services], ["50.00", "30.00"])
        self.assertTrue(invoice.invoice_number.startswith("INV-240603-"))

    def test_second_call_returns_existing_invoice(self):
        job_sheet = self.make_job_sheet()
        first = services.create_invoice_for_job_sheet(job_sheet, [{"name": "Oil", "price": "50"}])
        second = services.create_invoice_for_job_sheet(job_sheet, [{"name": "Other", "price": "999"}])

        self.assertEqual(first.pk, second.pk)
        self.assertEqual(Invoice.objects.count(), 1)

    def test_number_collision_is_retried(self):
        existing = self.make_invoice()
        job_sheet = self.make_job_sheet()

        with patch("billing.services.generate_invoice_number", side_effect=[existing.invoice_number, "INV-240603-4242"]):
            with self.assertLogs("billing.services", level="WARNING") as captured:
                invoice = services.create_invoice_for_job_sheet(job_sheet, [{"name": "Oil", "price": "50"}])

        self.assertEqual(invoice.invoice_number, "INV-240603-4242")
        self.assertTrue(any("invoice_number_collision" in line for line in captured.output))

    @override_settings(INVOICE_NUMBER_MAX_ATTEMPTS=2)
    def test_exhausted_number_attempts_raise(self):
        existing = self.make_invoice()
        job_sheet = self.make_job_sheet()

        with patch("billing.services.generate_invoice_number", return_value=existing.invoice_number):
            with self.assertRaises(services.InvoiceNumberUnavailable):
                services.create_invoice_for_job_sheet(job_sheet, [{"name": "Oil", "price": "50"}])

    def test_overdue_predicate(self):
        invoice = self.make_invoice(status=Invoice.Status.SENT)

        self.assertFalse(services.is_overdue(invoice, today=datetime.date(2024, 7, 3)))
        self.assertTrue(services.is_overdue(invoice, today=datetime.date(2024, 7, 4)))
        invoice.status = Invoice.Status.PAID
        self.assertFalse(services.is_overdue(invoice, today=datetime.date(2024, 7, 4)))

    def test_lifecycle_paid_is_final(self):
        invoice = self.make_invoice()

        sent = services.change_invoice_status(invoice, Invoice.Status.SENT)
        paid = services.mark_as_paid(sent, payment_method=Invoice.PaymentMethod.CARD, paid_date=datetime.date(2024, 6, 10))

        self.assertEqual(paid.status, Invoice.Status.PAID)
        self.assertEqual(paid.paid_date, datetime.date(2024, 6, 10))
        self.assertEqual(paid.payment_method, "card")
        with self.assertRaises(InvalidTransition):
            services.change_invoice_status(paid, Invoice.Status.CANCELLED)

    def test_draft_cannot_become_overdue_directly(self):
        invoice = self.make_invoice()

        with self.assertRaises(InvalidTransition):
            services.change_invoice_status(invoice, Invoice.Status.OVERDUE)

    def test_summary_and_revenue(self):
        self.make_invoice(prices=("50.00",), status=Invoice.Status.PAID)
        self.make_invoice(prices=("50.00",), status=Invoice.Status.SENT)
        self.make_invoice(prices=("50.00",), status=Invoice.Status.DRAFT, issued_date=datetime.date(2024, 6, 20))
        self.make_invoice(prices=("50.00",), status=Invoice.Status.CANCELLED)

        summary = services.build_invoice_summary(Invoice.objects.all(), today=datetime.date(2024, 7, 10))

        self.assertEqual(summary["total_invoices"], 4)
        self.assertEqual(summary["total_amount"], "312.00")
        self.assertEqual(summary["paid_amount"], "78.00")
        self.assertEqual(summary["pending_amount"], "156.00")
        self.assertEqual(summary["overdue_amount"], "78.00")
        self.assertEqual(
            services.revenue_by_period(Invoice.objects.all(), datetime.date(2024, 6, 1), datetime.date(2024, 6, 30)),
            Decimal("78.00"),
        )
        self.assertEqual(
            services.revenue_by_period(Invoice.objects.all(), datetime.date(2024, 7, 1), datetime.date(2024, 7, 31)),
            Decimal("0.00"),
        )


class MarkOverdueCommandTests(InvoiceFixtureMixin, TestCase):
    def setUp(self):
        self.setUpGarage()

    def test_sweep_marks_only_sent_invoices_past_due(self):
        sent = self.make_invoice(status=Invoice.Status.SENT)
        draft = self.make_invoice(status=Invoice.Status.DRAFT)
        not_due = self.make_invoice(status=Invoice.Status.SENT, issued_date=datetime.date(2024, 7, 20))
        out = StringIO()

        call_command("mark_overdue_invoices", "--date", "2024-08-01", stdout=out)

        sent.refresh_from_db()
        draft.refresh_from_db()
        not_due.refresh_from_db()
        self.assertEqual(sent.status, Invoice.Status.OVERDUE)
        self.assertEqual(draft.status, Invoice.Status.DRAFT)
        self.assertEqual(not_due.status, Invoice.Status.SENT)
        self.assertIn("Total invoices marked: 1.", out.getvalue())

    def test_invalid_date_is_rejected(self):
        with self.assertRaises(CommandError):
            call_command("mark_overdue_invoices", "--date", "01/08/2024", stdout=StringIO())


class InvoiceApiTests(InvoiceFixtureMixin, TestCase):
    def setUp(self):
        self.client = APIClient()
        self.setUpGarage()
        self.other_garage = Garage.objects.create(code="BX", name="Elsewhere")
        self.first = self.make_invoice(customer_name="Casey Jordan")
        self.second = self.make_invoice(customer_name="Riley Shaw", issued_date=datetime.date(2024, 6, 15))
        self.hidden = self.make_invoice(customer_name="Casey Hidden", garage=self.other_garage)

    def test_list_scopes_and_filters(self):
        self.client.force_authenticate(user=self.advisor)

        everything = self.client.get("/api/billings/")
        by_name = self.client.get("/api/billings/", {"customerName": "casey"})
        by_date = self.client.get("/api/billings/", {"dateFrom": "2024-06-10", "dateTo": "2024-06-30"})
        all_status = self.client.get("/api/billings/", {"status": "ALL"})

        self.assertEqual(everything.status_code, 200)
        self.assertEqual(everything.json()["count"], 2)
        self.assertEqual([item["customer_name"] for item in by_name.json()["results"]], ["Casey Jordan"])
        self.assertEqual([item["customer_name"] for item in by_date.json()["results"]], ["Riley Shaw"])
        self.assertEqual(all_status.json()["count"], 2)

    def test_send_then_mark_paid(self):
        self.client.force_authenticate(user=self.advisor)

        sent = self.client.post(f"/api/billings/{self.first.id}/send/", {}, format="json")
        paid = self.client.post(
            f"/api/billings/{self.first.id}/mark-paid/",
            {"payment_method": "cash", "paid_date": "2024-06-12"},
            format="json",
        )
        cancel = self.client.post(f"/api/billings/{self.first.id}/cancel/", {}, format="json")

        self.assertEqual(sent.status_code, 200)
        self.assertEqual(sent.json()["status"], "SENT")
        self.assertEqual(paid.status_code, 200)
        self.assertEqual(paid.json()["status"], "PAID")
        self.assertEqual(paid.json()["paid_date"], "2024-06-12")
        self.assertEqual(cancel.status_code, 409)
        self.assertEqual(cancel.json()["code"], "invalid_transition")
        self.assertTrue(AuditLog.objects.filter(action="invoice.paid", entity_id=str(self.first.id)).exists())

    def test_mark_paid_requires_known_method(self):
        self.client.force_authenticate(user=self.advisor)

        response = self.client.post(f"/api/billings/{self.first.id}/mark-paid/", {"payment_method": "barter"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("payment_method", response.json()["errors"])

    def test_summary_with_revenue_range(self):
        Invoice.objects.filter(pk=self.second.pk).update(status=Invoice.Status.PAID)
        self.client.force_authenticate(user=self.advisor)

        response = self.client.get("/api/billings/summary/", {"startDate": "2024-06-01", "endDate": "2024-06-30"})
        partial = self.client.get("/api/billings/summary/", {"startDate": "2024-06-01"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["total_invoices"], 2)
        self.assertEqual(response.json()["paid_amount"], "78.00")
        self.assertEqual(response.json()["revenue"], "78.00")
        self.assertEqual(partial.status_code, 400)

    def test_malformed_dates_are_validation_errors(self):
        self.client.force_authenticate(user=self.advisor)

        listing = self.client.get("/api/billings/", {"dateFrom": "not-a-date"})
        revenue = self.client.get("/api/billings/summary/", {"startDate": "2024-06-01", "endDate": "06/30/2024"})

        self.assertEqual(listing.status_code, 400)
        self.assertEqual(listing.json()["code"], "validation_error")
        self.assertIn("dateFrom", listing.json()["errors"])
        self.assertEqual(revenue.status_code, 400)
        self.assertIn("endDate", revenue.json()["errors"])

    def test_technician_cannot_view_billing(self):
        self.client.force_authenticate(user=self.technician)

        response = self.client.get("/api/billings/")

        self.assertEqual(response.status_code, 403)

    def test_other_garage_invoice_is_not_found(self):
        self.client.force_authenticate(user=self.advisor)

        response = self.client.get(f"/api/billings/{self.hidden.id}/")

        self.assertEqual(response.status_code, 404)
