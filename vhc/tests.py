from django.contrib.auth import get_user_model
from django.test import SimpleTestCase, TestCase
from rest_framework.exceptions import ValidationError
from rest_framework.test import APIClient

from common.exceptions import InvalidTransition
from core.models import Garage
from vhc import scoring, services
from vhc.models import VHCResponse, VHCTemplate

SECTIONS = [
    {
        "id": "brakes",
        "title": "Brakes",
        "weight": 2,
        "items": [{"id": "brake_pads", "weight": 1}, {"id": "brake_discs", "weight": 3}],
    },
    {
        "id": "engine",
        "title": "Engine",
        "applicable_to": ["ice", "hybrid"],
        "items": [{"id": "oil_level"}],
    },
    {
        "id": "battery",
        "title": "High Voltage Battery",
        "applicable_to": ["ev", "hybrid"],
        "items": [{"id": "hv_battery"}],
    },
    {"id": "lights", "title": "Lights", "items": [{"id": "headlights"}]},
]


class ScoringTests(SimpleTestCase):
    def test_weighted_section_and_total_scores(self):
        answers = [
            {"item_id": "brake_pads", "value": 5},
            {"item_id": "brake_discs", "value": 3},
            {"item_id": "headlights", "value": True},
        ]

        score = scoring.score_answers(SECTIONS, "ice", answers)

        self.assertAlmostEqual(score.sections["brakes"], 0.625)
        self.assertEqual(score.sections["lights"], 0.0)
        self.assertEqual(score.sections["engine"], 0.0)
        self.assertNotIn("battery", score.sections)
        # brakes weight 2 and lights weight 1 count, unanswered engine does not
        self.assertAlmostEqual(score.total, 1.25 / 3)
        self.assertEqual(score.progress, {"answered": 3, "total": 4})

    def test_powertrain_selects_sections(self):
        score = scoring.score_answers(SECTIONS, "ev", [{"item_id": "hv_battery", "value": 1}])

        self.assertEqual(set(score.sections), {"brakes", "battery", "lights"})
        self.assertEqual(score.sections["battery"], 0.0)
        self.assertEqual(score.total, 0.0)
        self.assertEqual(score.total_items, 4)

    def test_no_answers_scores_zero(self):
        score = scoring.score_answers(SECTIONS, "hybrid", [])

        self.assertEqual(score.total, 0.0)
        self.assertEqual(score.progress, {"answered": 0, "total": 5})

    def test_title_mapping(self):
        self.assertEqual(scoring.title_for_value(4), "Good Condition")
        self.assertEqual(scoring.value_for_title("Critical/Unsafe"), 1)
        self.assertEqual(scoring.title_for_value(True), True)
        self.assertEqual(scoring.value_for_title("Unknown"), "Unknown")
        self.assertEqual(
            scoring.convert_answers_for_storage([{"item_id": "a", "value": "Acceptable"}, {"item_id": "b", "value": None}]),
            [{"item_id": "a", "value": 3}, {"item_id": "b", "value": None}],
        )


class HealthCheckServiceTests(TestCase):
    def setUp(self):
        self.garage = Garage.objects.create(code="VS", name="VHC Services")
        self.template = VHCTemplate.objects.create(title="Standard check", version=1, sections=SECTIONS)
        self.response = services.create_response(
            garage=self.garage,
            template=self.template,
            powertrain=VHCResponse.Powertrain.ICE,
            vehicle_id="AB12 CDE",
        )

    def test_answers_merge_by_item_and_rescore(self):
        services.update_answers(self.response, [{"itemId": "brake_pads", "value": "Optimal/Like New", "notes": "new pads"}])
        updated = services.update_answers(self.response, [{"item_id": "brake_pads", "value": 5}, {"item_id": "brake_discs", "value": 3}])

        self.assertEqual(len(updated.answers), 2)
        pads = next(answer for answer in updated.answers if answer["item_id"] == "brake_pads")
        self.assertEqual(pads, {"item_id": "brake_pads", "value": 5, "notes": "new pads"})
        self.assertAlmostEqual(updated.section_scores["brakes"], 0.625)
        self.assertAlmostEqual(updated.total_score, 0.625)
        self.assertEqual(updated.progress, {"answered": 2, "total": 4})

    def test_inactive_template_cannot_start_a_check(self):
        self.template.is_active = False
        self.template.save()

        with self.assertRaises(ValidationError) as raised:
            services.create_response(garage=self.garage, template=self.template, powertrain="ice", vehicle_id="X")

        self.assertIn("template_id", raised.exception.detail)

    def test_submitted_check_is_read_only_until_void(self):
        submitted = services.submit_response(self.response)

        self.assertEqual(submitted.status, VHCResponse.Status.SUBMITTED)
        self.assertIsNotNone(submitted.submitted_at)
        with self.assertRaises(InvalidTransition):
            services.update_answers(submitted, [{"item_id": "oil_level", "value": 2}])

        voided = services.void_response(submitted)

        self.assertEqual(voided.status, VHCResponse.Status.VOID)
        with self.assertRaises(InvalidTransition):
            services.approve_response(voided)


class HealthCheckApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.garage = Garage.objects.create(code="VA", name="VHC Garage")
        self.other_garage = Garage.objects.create(code="VB", name="Other VHC Garage")
        self.technician = self.user_model.objects.create_user(username="vhc-tech", password="pass1234", garage=self.garage, role="technician")
        self.manager = self.user_model.objects.create_user(username="vhc-manager", password="pass1234", garage=self.garage, role="manager")
        self.outsider = self.user_model.objects.create_user(username="vhc-outsider", password="pass1234", garage=self.other_garage, role="technician")
        self.global_template = VHCTemplate.objects.create(title="Standard check", version=1, sections=SECTIONS)
        self.garage_template = VHCTemplate.objects.create(garage=self.garage, title="Garage check", version=2, sections=SECTIONS)
        self.foreign_template = VHCTemplate.objects.create(garage=self.other_garage, title="Foreign", version=7, sections=SECTIONS)
        VHCTemplate.objects.create(title="Retired", version=9, is_active=False, sections=SECTIONS)

    def create_check(self, **overrides):
        body = {"template_id": str(self.global_template.id), "powertrain": "ice", "vehicle_id": "AB12 CDE"}
        body.update(overrides)
        return self.client.post("/api/vhc/responses/", body, format="json")

    def test_active_template_is_latest_visible_version(self):
        self.client.force_authenticate(user=self.technician)

        response = self.client.get("/api/vhc/templates/active/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["id"], str(self.garage_template.id))

    def test_full_check_lifecycle(self):
        self.client.force_authenticate(user=self.technician)

        created = self.create_check(assigned_to=str(self.technician.id))
        self.assertEqual(created.status_code, 201)
        check_id = created.json()["id"]
        self.assertEqual(created.json()["status"], "in_progress")
        self.assertEqual(created.json()["progress"], {"answered": 0, "total": 4})

        answered = self.client.patch(
            f"/api/vhc/responses/{check_id}/answers/",
            {"answers": [{"item_id": "brake_pads", "value": "Optimal/Like New"}, {"item_id": "headlights", "value": 1}]},
            format="json",
        )
        self.assertEqual(answered.status_code, 200)
        self.assertEqual(answered.json()["answer_titles"]["brake_pads"], "Optimal/Like New")
        self.assertEqual(answered.json()["progress"]["answered"], 2)
        self.assertEqual(answered.json()["scores"]["section"]["brakes"], 1.0)

        submitted = self.client.post(f"/api/vhc/responses/{check_id}/submit/", {}, format="json")
        late_edit = self.client.patch(
            f"/api/vhc/responses/{check_id}/answers/",
            {"answers": [{"item_id": "oil_level", "value": 4}]},
            format="json",
        )
        tech_approve = self.client.post(f"/api/vhc/responses/{check_id}/approve/", {}, format="json")

        self.assertEqual(submitted.json()["status"], "submitted")
        self.assertEqual(late_edit.status_code, 409)
        self.assertEqual(tech_approve.status_code, 403)

        self.client.force_authenticate(user=self.manager)
        approved = self.client.post(f"/api/vhc/responses/{check_id}/approve/", {}, format="json")
        void = self.client.post(f"/api/vhc/responses/{check_id}/void/", {}, format="json")

        self.assertEqual(approved.status_code, 200)
        self.assertEqual(approved.json()["status"], "approved")
        self.assertEqual(approved.json()["approved_by"], str(self.manager.id))
        self.assertEqual(void.status_code, 409)

    def test_create_rejects_foreign_template_and_assignee(self):
        self.client.force_authenticate(user=self.technician)

        foreign_template = self.create_check(template_id=str(self.foreign_template.id))
        foreign_assignee = self.create_check(assigned_to=str(self.outsider.id))

        self.assertEqual(foreign_template.status_code, 400)
        self.assertIn("template_id", foreign_template.json()["errors"])
        self.assertEqual(foreign_assignee.status_code, 400)
        self.assertIn("assigned_to", foreign_assignee.json()["errors"])

    def test_list_filters_and_scoping(self):
        self.client.force_authenticate(user=self.technician)
        self.create_check(vehicle_id="AB12 CDE")
        self.create_check(vehicle_id="XY99 ZZZ", powertrain="ev")
        self.client.force_authenticate(user=self.outsider)
        self.client.post(
            "/api/vhc/responses/",
            {"template_id": str(self.global_template.id), "powertrain": "ice", "vehicle_id": "AB12 OUT"},
            format="json",
        )

        self.client.force_authenticate(user=self.technician)
        by_vehicle = self.client.get("/api/vhc/responses/", {"vehicleId": "ab12"})
        by_powertrain = self.client.get("/api/vhc/responses/", {"powertrain": "ev"})
        by_creator = self.client.get("/api/vhc/responses/", {"createdBy": "vhc-tech"})

        self.assertEqual([item["vehicle_id"] for item in by_vehicle.json()["results"]], ["AB12 CDE"])
        self.assertEqual([item["vehicle_id"] for item in by_powertrain.json()["results"]], ["XY99 ZZZ"])
        self.assertEqual(by_creator.json()["count"], 2)
