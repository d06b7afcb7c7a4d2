import csv
import datetime
import io
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.test import SimpleTestCase, TestCase
from django.utils import timezone
from rest_framework.test import APIClient

from billing.models import Invoice
from billing.pricing import calculate_pricing
from bookings.models import Booking, BookingService, Service
from bookings.services import add_booking_line
from core.models import Garage
from inventory.models import StockMovement
from inventory.services import create_inventory_item
from workshop import services, transitions
from workshop.duration import calculate_work_duration
from workshop.models import Approval, JobSheet, TimeLog


class TransitionTableTests(SimpleTestCase):
    LEGAL = {
        (transitions.PENDING, transitions.START),
        (transitions.IN_PROGRESS, transitions.PAUSE),
        (transitions.PAUSED, transitions.RESUME),
        (transitions.HALTED, transitions.RESUME),
        (transitions.IN_PROGRESS, transitions.HALT),
        (transitions.PAUSED, transitions.HALT),
        (transitions.IN_PROGRESS, transitions.COMPLETE),
        (transitions.PENDING, transitions.CANCEL),
        (transitions.IN_PROGRESS, transitions.CANCEL),
        (transitions.PAUSED, transitions.CANCEL),
        (transitions.HALTED, transitions.CANCEL),
    }

    def test_every_status_action_pair(self):
        for status in transitions.STATUSES:
            for action in transitions.ACTIONS:
                result = transitions.evaluate_transition(status, action)
                self.assertEqual(result.ok, (status, action) in self.LEGAL, f"{status} {action}")
                if result.ok:
                    self.assertIsNone(result.error)
                else:
                    self.assertIsNone(result.to_status)
                    self.assertTrue(result.error)

    def test_terminal_states_allow_nothing(self):
        self.assertEqual(transitions.allowed_actions(transitions.COMPLETED), [])
        self.assertEqual(transitions.allowed_actions(transitions.CANCELLED), [])
        self.assertEqual(
            transitions.allowed_actions(transitions.PAUSED),
            [transitions.RESUME, transitions.HALT, transitions.CANCEL],
        )

    def test_unknown_action_fails(self):
        self.assertFalse(transitions.evaluate_transition(transitions.PENDING, "teleport").ok)


class WorkDurationTests(SimpleTestCase):
    def setUp(self):
        self.t0 = datetime.datetime(2024, 6, 3, 9, 0, tzinfo=datetime.timezone.utc)

    def at(self, minutes):
        return self.t0 + datetime.timedelta(minutes=minutes)

    def test_sums_closed_intervals(self):
        logs = [
            {"action": "start", "timestamp": self.at(0)},
            {"action": "pause", "timestamp": self.at(30)},
            {"action": "resume", "timestamp": self.at(45)},
            {"action": "halt", "timestamp": self.at(60)},
            {"action": "resume", "timestamp": self.at(90)},
            {"action": "complete", "timestamp": self.at(100)},
        ]
        self.assertEqual(calculate_work_duration(logs), 55)

    def test_open_interval_only_counts_when_live(self):
        logs = [
            {"action": "start", "timestamp": self.at(0)},
            {"action": "pause", "timestamp": self.at(10)},
            {"action": "resume", "timestamp": self.at(20)},
        ]
        self.assertEqual(calculate_work_duration(logs), 10)
        self.assertEqual(calculate_work_duration(logs, live=True, now=self.at(35)), 25)

    def test_rounds_to_whole_minutes(self):
        logs = [
            {"action": "start", "timestamp": self.t0},
            {"action": "pause", "timestamp": self.t0 + datetime.timedelta(seconds=90)},
        ]
        self.assertEqual(calculate_work_duration(logs), 2)

    def test_repeated_opener_restarts_interval(self):
        logs = [
            {"action": "start", "timestamp": self.at(0)},
            {"action": "resume", "timestamp": self.at(20)},
            {"action": "complete", "timestamp": self.at(30)},
        ]
        self.assertEqual(calculate_work_duration(logs), 10)

    def test_empty_log(self):
        self.assertEqual(calculate_work_duration([]), 0)


class WorkshopFixtureMixin:
    def build_fixtures(self, *, requires_diagnosis=False):
        self.user_model = get_user_model()
        self.garage = Garage.objects.create(code="WS", name="Workshop Garage")
        self.technician = self.user_model.objects.create_user(username="ws-tech", password="pass1234", garage=self.garage, role="technician")
        self.advisor = self.user_model.objects.create_user(username="ws-advisor", password="pass1234", garage=self.garage, role="advisor")
        self.service = Service.objects.create(garage=self.garage, code="service-1", name="Oil Change", price=Decimal("50.00"))
        self.booking = Booking.objects.create(
            garage=self.garage,
            customer_name="Morgan Lee",
            customer_email="morgan@example.com",
            vehicle_make="VW",
            vehicle_model="Golf",
            vehicle_year=2018,
            vehicle_license="MN18 OPQ",
            date=datetime.date(2024, 6, 3),
            start_time=datetime.time(9, 0),
            end_time=datetime.time(11, 0),
            bay="Bay 1",
            technician=self.technician,
            requires_diagnosis=requires_diagnosis,
        )
        self.booked_line = add_booking_line(
            self.booking,
            name="Oil Change",
            service=self.service,
            price=Decimal("50.00"),
            duration_minutes=45,
        )
        self.oil_filter = create_inventory_item(
            garage_id=self.garage.id,
            sku="oil-filter-001",
            name="Oil Filter",
            quantity=Decimal("10"),
            reorder_level=Decimal("2"),
        )
        self.engine_oil = create_inventory_item(
            garage_id=self.garage.id,
            sku="engine-oil-5w30",
            name="Engine Oil 5W-30",
            unit="litre",
            quantity=Decimal("3"),
            reorder_level=Decimal("5"),
        )
        self.job = services.create_job_sheet(booking=self.booking, technician=self.technician, performed_by=self.advisor)

    def job_movements(self):
        return StockMovement.objects.filter(job_sheet_id=self.job.id)


class JobLifecycleServiceTests(WorkshopFixtureMixin, TestCase):
    def setUp(self):
        self.build_fixtures()

    def test_start_deducts_once_and_moves_booking(self):
        result = services.start_job(self.job, performed_by=self.technician)

        self.assertTrue(result.ok)
        self.job.refresh_from_db()
        self.booking.refresh_from_db()
        self.assertEqual(self.job.status, JobSheet.Status.IN_PROGRESS)
        self.assertTrue(self.job.inventory_deducted)
        self.assertIsNotNone(self.job.started_at)
        self.assertEqual(self.booking.status, Booking.Status.IN_PROGRESS)
        self.assertEqual(self.job_movements().count(), 2)
        self.assertEqual(set(self.job_movements().values_list("reference", flat=True)), {"JB-0001"})
        self.assertEqual(set(self.job_movements().values_list("reference_type", flat=True)), {"JOB_SHEET"})

        second = services.start_job(self.job, performed_by=self.technician)

        self.assertFalse(second.ok)
        self.assertTrue(second.conflict)
        self.assertEqual(self.job_movements().count(), 2)

    def test_start_returns_shortages_as_warnings(self):
        result = services.start_job(self.job, performed_by=self.technician)

        self.assertTrue(result.ok)
        self.assertEqual(len(result.warnings), 1)
        self.assertIn("engine-oil-5w30", result.warnings[0])
        self.engine_oil.refresh_from_db()
        self.assertEqual(self.engine_oil.quantity, Decimal("0.00"))

    def test_halt_and_resume_do_not_deduct_again(self):
        services.start_job(self.job, performed_by=self.technician)
        services.halt_job(self.job, performed_by=self.technician, reason="Waiting for parts")
        services.resume_job(self.job, performed_by=self.technician)

        self.job.refresh_from_db()
        self.assertEqual(self.job.status, JobSheet.Status.IN_PROGRESS)
        self.assertEqual(self.job.halt_reason, "Waiting for parts")
        self.assertEqual(self.job.halted_by, self.technician)
        self.assertEqual(self.job_movements().count(), 2)

    def test_pause_and_halt_require_reason(self):
        services.start_job(self.job, performed_by=self.technician)

        paused = services.pause_job(self.job, performed_by=self.technician, reason=" ")
        halted = services.halt_job(self.job, performed_by=self.technician, reason="")

        self.assertFalse(paused.ok)
        self.assertFalse(paused.conflict)
        self.assertIn("reason", paused.errors)
        self.assertIn("reason", halted.errors)
        self.job.refresh_from_db()
        self.assertEqual(self.job.status, JobSheet.Status.IN_PROGRESS)

    def test_complete_requires_in_progress(self):
        result = services.complete_job(self.job, performed_by=self.technician, completed_services=[self.booked_line.id])

        self.assertFalse(result.ok)
        self.assertTrue(result.conflict)
        self.assertFalse(Invoice.objects.exists())

        services.start_job(self.job, performed_by=self.technician)
        services.pause_job(self.job, performed_by=self.technician, reason="Lunch")
        paused = services.complete_job(self.job, performed_by=self.technician, completed_services=[self.booked_line.id])

        self.assertTrue(paused.conflict)

    def test_complete_requires_full_checklist(self):
        services.start_job(self.job, performed_by=self.technician)

        result = services.complete_job(self.job, performed_by=self.technician, completed_services=[])

        self.assertFalse(result.ok)
        self.assertFalse(result.conflict)
        self.assertIn("completed_services", result.errors)
        self.job.refresh_from_db()
        self.assertEqual(self.job.status, JobSheet.Status.IN_PROGRESS)

    def test_complete_issues_invoice_and_closes_booking(self):
        services.start_job(self.job, performed_by=self.technician)

        result = services.complete_job(self.job, performed_by=self.technician, completed_services=[str(self.booked_line.id)])

        self.assertTrue(result.ok)
        self.job.refresh_from_db()
        self.booking.refresh_from_db()
        self.assertEqual(self.job.status, JobSheet.Status.COMPLETED)
        self.assertEqual(self.booking.status, Booking.Status.COMPLETED)
        self.assertEqual(result.invoice.total_amount, Decimal("78.00"))
        self.assertEqual(result.invoice.status, Invoice.Status.DRAFT)
        self.assertEqual(result.invoice.due_date - result.invoice.issued_date, datetime.timedelta(days=30))
        self.assertEqual(
            list(self.job.time_logs.values_list("action", flat=True)),
            [TimeLog.Action.START, TimeLog.Action.COMPLETE],
        )

    def test_cancel_from_terminal_state_fails(self):
        cancelled = services.cancel_job(self.job, performed_by=self.advisor, reason="Customer no-show")
        again = services.cancel_job(self.job, performed_by=self.advisor)

        self.assertTrue(cancelled.ok)
        self.assertFalse(again.ok)
        self.assertTrue(again.conflict)
        self.job.refresh_from_db()
        self.assertEqual(self.job.cancellation_reason, "Customer no-show")
        self.assertFalse(self.job.time_logs.exists())

    def test_job_number_is_sequential_per_garage(self):
        other = Booking.objects.create(
            garage=self.garage,
            customer_name="Second",
            date=datetime.date(2024, 6, 4),
            start_time=datetime.time(9, 0),
            end_time=datetime.time(10, 0),
            bay="Bay 2",
        )

        job = services.create_job_sheet(booking=other)

        self.assertEqual(job.number, "JB-0002")


class DiagnosisWorkflowServiceTests(WorkshopFixtureMixin, TestCase):
    def setUp(self):
        self.build_fixtures(requires_diagnosis=True)
        self.manager = self.user_model.objects.create_user(username="ws-manager", password="pass1234", garage=self.garage, role="manager")

    def submit(self):
        return services.submit_diagnosis(
            self.job,
            [
                {"service_code": "service-1", "name": "Oil Change", "price": "50"},
                {"name": "Brake inspection", "price": "30", "duration_minutes": 20},
            ],
            "Oil dark, pads worn",
            submitted_by=self.technician,
        )

    def test_empty_diagnosis_is_a_failed_result(self):
        result = services.submit_diagnosis(self.job, [], "", submitted_by=self.technician)

        self.assertFalse(result.ok)
        self.assertIn("services", result.errors)
        self.assertIn("notes", result.errors)
        self.assertFalse(Approval.objects.exists())

    def test_submission_prices_approval(self):
        result = self.submit()

        self.assertTrue(result.ok)
        self.assertEqual(result.approval.subtotal, Decimal("80.00"))
        self.assertEqual(result.approval.service_charge, Decimal("15.00"))
        self.assertEqual(result.approval.vat, Decimal("19.00"))
        self.assertEqual(result.approval.total_amount, Decimal("114.00"))
        self.job.refresh_from_db()
        self.booking.refresh_from_db()
        self.assertEqual(self.job.approval_status, JobSheet.ApprovalStatus.PENDING)
        self.assertEqual(self.booking.diagnosis_notes, "Oil dark, pads worn")

    def test_resubmission_updates_pending_approval(self):
        self.submit()
        self.submit()

        self.assertEqual(Approval.objects.count(), 1)
        self.assertEqual(self.job.diagnosed_services.count(), 2)

    def test_pending_diagnosis_does_not_block_start(self):
        self.submit()

        result = services.start_job(self.job, performed_by=self.technician)

        self.assertTrue(result.ok)
        self.assertIn("Diagnosis is awaiting approval.", result.warnings)
        self.job.refresh_from_db()
        self.assertEqual(self.job.status, JobSheet.Status.IN_PROGRESS)
        self.assertEqual(self.job.approval_status, JobSheet.ApprovalStatus.PENDING)

    def test_unapproved_required_diagnosis_is_a_warning(self):
        result = services.start_job(self.job, performed_by=self.technician)

        self.assertTrue(result.ok)
        self.assertIn("Work started without an approved diagnosis.", result.warnings)
        self.assertTrue(self.job_movements().exists())

    def test_cannot_approve_after_job_is_cancelled(self):
        self.submit()
        services.cancel_job(self.job, performed_by=self.advisor, reason="Customer withdrew")

        result = services.approve_diagnosis(self.job, reviewer=self.manager)

        self.assertTrue(result.conflict)
        self.job.refresh_from_db()
        self.assertEqual(self.job.approval_status, JobSheet.ApprovalStatus.PENDING)
        self.assertFalse(self.booking.services.filter(source=BookingService.Source.DIAGNOSED).exists())

    def test_approval_flows_to_booking_and_invoice_matches(self):
        self.submit()
        approved = services.approve_diagnosis(self.job, reviewer=self.manager, notes="Go ahead")

        self.assertTrue(approved.ok)
        self.assertEqual(approved.approval.status, Approval.Status.APPROVED)
        diagnosed_lines = self.booking.services.filter(source=BookingService.Source.DIAGNOSED)
        self.assertEqual(list(diagnosed_lines.values_list("name", flat=True)), ["Oil Change", "Brake inspection"])

        services.start_job(self.job, performed_by=self.technician)
        checklist = [service["id"] for service in services.job_services(self.job)]
        completed = services.complete_job(self.job, performed_by=self.technician, completed_services=checklist)

        self.assertTrue(completed.ok)
        self.assertEqual(completed.invoice.total_amount, approved.approval.total_amount)
        self.assertEqual(completed.invoice.total_amount, calculate_pricing([50, 30]).total)
        self.assertEqual(len(completed.invoice.services), 2)

    def test_approve_requires_pending_diagnosis(self):
        result = services.approve_diagnosis(self.job, reviewer=self.manager)

        self.assertFalse(result.ok)
        self.assertTrue(result.conflict)

    def test_reject_requires_reason_and_falls_back_to_booked_services(self):
        self.submit()

        missing_reason = services.reject_diagnosis(self.job, reviewer=self.manager, reason="")
        rejected = services.reject_diagnosis(self.job, reviewer=self.manager, reason="Too expensive")

        self.assertIn("reason", missing_reason.errors)
        self.assertTrue(rejected.ok)
        self.job.refresh_from_db()
        self.assertEqual(self.job.approval_status, JobSheet.ApprovalStatus.REJECTED)
        self.assertEqual([service["name"] for service in services.job_services(self.job)], ["Oil Change"])
        self.assertFalse(self.booking.services.filter(source=BookingService.Source.DIAGNOSED).exists())

    def test_diagnosis_on_cancelled_job_is_a_conflict(self):
        services.cancel_job(self.job, performed_by=self.advisor)

        result = self.submit()

        self.assertTrue(result.conflict)


class JobSheetApiTests(WorkshopFixtureMixin, TestCase):
    def setUp(self):
        self.client = APIClient()
        self.build_fixtures()
        self.manager = self.user_model.objects.create_user(username="api-manager", password="pass1234", garage=self.garage, role="manager")
        self.other_garage = Garage.objects.create(code="OT", name="Other")
        self.outsider = self.user_model.objects.create_user(username="outsider", password="pass1234", garage=self.other_garage, role="manager")

    def test_list_filters_and_scopes(self):
        self.client.force_authenticate(user=self.technician)

        pending = self.client.get("/api/job-sheet/", {"status": "PENDING"})
        in_progress = self.client.get("/api/job-sheet/", {"status": "IN_PROGRESS"})
        by_tech = self.client.get("/api/job-sheet/", {"technicianId": str(self.technician.id)})

        self.assertEqual(pending.json()["count"], 1)
        self.assertEqual(pending.json()["results"][0]["customer_name"], "Morgan Lee")
        self.assertEqual(in_progress.json()["count"], 0)
        self.assertEqual(by_tech.json()["count"], 1)

        self.client.force_authenticate(user=self.outsider)
        self.assertEqual(self.client.get("/api/job-sheet/").json()["count"], 0)
        self.assertEqual(self.client.get(f"/api/job-sheet/{self.job.id}/").status_code, 404)

    def test_start_and_illegal_transition_envelope(self):
        self.client.force_authenticate(user=self.technician)

        started = self.client.post(f"/api/job-sheet/{self.job.id}/start/", {}, format="json")
        again = self.client.post(f"/api/job-sheet/{self.job.id}/start/", {}, format="json")

        self.assertEqual(started.status_code, 200)
        self.assertEqual(started.json()["job_sheet"]["status"], "IN_PROGRESS")
        self.assertEqual(len(started.json()["warnings"]), 1)
        self.assertEqual(again.status_code, 409)
        self.assertEqual(again.json()["code"], "invalid_transition")
        self.assertEqual(again.json()["status"], 409)

    def test_pause_without_reason_is_validation_error(self):
        self.client.force_authenticate(user=self.technician)
        self.client.post(f"/api/job-sheet/{self.job.id}/start/", {}, format="json")

        response = self.client.post(f"/api/job-sheet/{self.job.id}/pause/", {}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("reason", response.json()["errors"])

    def test_complete_returns_invoice(self):
        self.client.force_authenticate(user=self.technician)
        self.client.post(f"/api/job-sheet/{self.job.id}/start/", {}, format="json")

        response = self.client.post(
            f"/api/job-sheet/{self.job.id}/complete/",
            {"completed_services": [str(self.booked_line.id)]},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["job_sheet"]["status"], "COMPLETED")
        self.assertEqual(payload["invoice"]["total_amount"], "78.00")
        self.assertTrue(payload["invoice"]["invoice_number"].startswith("INV-"))

    def test_technician_cannot_cancel_or_approve(self):
        self.client.force_authenticate(user=self.technician)

        cancel = self.client.post(f"/api/job-sheet/{self.job.id}/cancel/", {}, format="json")
        approve = self.client.post(f"/api/job-sheet/{self.job.id}/approve/", {}, format="json")

        self.assertEqual(cancel.status_code, 403)
        self.assertEqual(approve.status_code, 403)

    def test_diagnosis_submit_and_approve_via_api(self):
        self.client.force_authenticate(user=self.technician)
        empty = self.client.post(f"/api/job-sheet/{self.job.id}/diagnosis/", {"services": [], "notes": ""}, format="json")
        submitted = self.client.post(
            f"/api/job-sheet/{self.job.id}/diagnosis/",
            {"services": [{"name": "Oil Change", "price": "50.00"}, {"name": "Wipers", "price": "30.00"}], "notes": "Found issues"},
            format="json",
        )

        self.assertEqual(empty.status_code, 400)
        self.assertEqual(empty.json()["code"], "validation_error")
        self.assertEqual(submitted.status_code, 200)
        self.assertEqual(submitted.json()["approval"]["total_amount"], "114.00")
        self.assertEqual(submitted.json()["job_sheet"]["approval_status"], "pending")

        self.client.force_authenticate(user=self.advisor)
        approved = self.client.post(f"/api/job-sheet/{self.job.id}/approve/", {"notes": "ok"}, format="json")
        again = self.client.post(f"/api/job-sheet/{self.job.id}/approve/", {}, format="json")

        self.assertEqual(approved.status_code, 200)
        self.assertEqual(approved.json()["job_sheet"]["approval_status"], "approved")
        self.assertEqual(again.status_code, 409)

    def test_duration_endpoint(self):
        start = timezone.now() - datetime.timedelta(minutes=40)
        TimeLog.objects.create(job_sheet=self.job, action="start", timestamp=start)
        TimeLog.objects.create(job_sheet=self.job, action="pause", timestamp=start + datetime.timedelta(minutes=15))
        TimeLog.objects.create(job_sheet=self.job, action="resume", timestamp=start + datetime.timedelta(minutes=20))
        self.client.force_authenticate(user=self.technician)

        response = self.client.get(f"/api/job-sheet/{self.job.id}/duration/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["total_work_duration"], 15)
        self.assertEqual(response.json()["live_work_duration"], 35)


class ApprovalApiTests(WorkshopFixtureMixin, TestCase):
    def setUp(self):
        self.client = APIClient()
        self.build_fixtures()
        services.submit_diagnosis(self.job, [{"name": "Oil Change", "price": "50"}], "Needs oil", submitted_by=self.technician)

    def test_list_stats_and_export(self):
        self.client.force_authenticate(user=self.advisor)

        listing = self.client.get("/api/approvals/", {"status": "pending", "customerName": "morgan"})
        stats = self.client.get("/api/approvals/stats/")
        export = self.client.get("/api/approvals/export/")

        self.assertEqual(listing.status_code, 200)
        self.assertEqual(listing.json()["count"], 1)
        self.assertEqual(listing.json()["results"][0]["job_sheet_number"], "JB-0001")
        self.assertEqual(stats.json()["pending"], 1)
        self.assertEqual(stats.json()["approved"], 0)
        self.assertEqual(stats.json()["total_value"], "78.00")
        self.assertEqual(export.status_code, 200)
        rows = list(csv.reader(io.StringIO(export.content.decode())))
        self.assertEqual(rows[0][:3], ["ID", "Job Sheet ID", "Customer Name"])
        self.assertEqual(rows[1][2], "Morgan Lee")

    def test_technician_cannot_view_approvals(self):
        self.client.force_authenticate(user=self.technician)

        response = self.client.get("/api/approvals/")

        self.assertEqual(response.status_code, 403)
