from decimal import Decimal

from django.contrib.auth import get_user_model
from django.test import SimpleTestCase, TestCase
from rest_framework.exceptions import ValidationError
from rest_framework.test import APIClient

from core.models import Garage
from inventory import ledger
from inventory.models import InventoryItem, LedgerImmutableError, StockMovement
from inventory.requirements import get_inventory_requirements_for_services
from inventory.services import (
    adjust_stock,
    check_inventory_availability,
    create_inventory_item,
    deduct_inventory_for_services,
    replay_item_ledger,
)


class StockStatusDerivationTests(SimpleTestCase):
    def test_status_thresholds(self):
        self.assertEqual(ledger.derive_stock_status(Decimal("0"), Decimal("5")), ledger.OUT)
        self.assertEqual(ledger.derive_stock_status(Decimal("5"), Decimal("5")), ledger.LOW)
        self.assertEqual(ledger.derive_stock_status(Decimal("3"), Decimal("5")), ledger.LOW)
        self.assertEqual(ledger.derive_stock_status(Decimal("6"), Decimal("5")), ledger.IN_STOCK)

    def test_decrease_clamps_and_reports_shortfall(self):
        outcome = ledger.apply_movement(Decimal("3"), ledger.DECREASE, Decimal("10"))
        self.assertEqual(outcome.quantity, Decimal("0"))
        self.assertEqual(outcome.shortfall, Decimal("7"))

    def test_replay_matches_sequence(self):
        movements = [
            (ledger.SET, Decimal("10")),
            (ledger.DECREASE, Decimal("7")),
            (ledger.INCREASE, Decimal("2.5")),
            (ledger.DECREASE, Decimal("20")),
            (ledger.INCREASE, Decimal("1")),
        ]
        self.assertEqual(ledger.replay_movements(movements), Decimal("1"))

    def test_negative_quantity_is_rejected(self):
        with self.assertRaises(ValueError):
            ledger.apply_movement(Decimal("1"), ledger.INCREASE, Decimal("-1"))


class RequirementConsolidationTests(SimpleTestCase):
    def test_requirements_are_consolidated_by_sku(self):
        requirements = {req.sku: req for req in get_inventory_requirements_for_services(["service-18", "service-19"])}

        self.assertEqual(requirements["brake-fluid-001"].quantity, Decimal("1.0"))
        self.assertEqual(requirements["brake-fluid-001"].service_codes, ["service-18", "service-19"])
        self.assertIn("brake-pads-front-001", requirements)
        self.assertIn("brake-pads-rear-001", requirements)

    def test_unknown_service_has_no_requirements(self):
        self.assertEqual(get_inventory_requirements_for_services(["service-999"]), [])


class StockLedgerServiceTests(TestCase):
    def setUp(self):
        self.garage = Garage.objects.create(code="LG", name="Ledger Garage")
        self.user = get_user_model().objects.create_user(username="ledger-manager", password="pass1234", garage=self.garage, role="manager")
        self.item = create_inventory_item(
            garage_id=self.garage.id,
            performed_by=self.user,
            sku="oil-filter-001",
            name="Oil Filter",
            quantity=Decimal("10"),
            reorder_level=Decimal("5"),
        )

    def test_opening_balance_is_recorded_as_system_set(self):
        movement = self.item.movements.get()
        self.assertEqual(movement.type, ledger.SET)
        self.assertEqual(movement.reference_type, StockMovement.ReferenceType.SYSTEM)
        self.assertEqual(movement.resulting_quantity, Decimal("10.00"))
        self.assertEqual(movement.reason, "Opening balance")

    def test_decrease_sequence_moves_through_low_to_out(self):
        first = adjust_stock(item=self.item, mode=ledger.DECREASE, quantity=7, reason="Fitted", performed_by=self.user)
        self.assertEqual(first.item.quantity, Decimal("3.00"))
        self.assertEqual(first.item.status, ledger.LOW)
        self.assertFalse(first.clamped)

        with self.assertLogs("inventory.services", level="WARNING") as cm:
            second = adjust_stock(item=self.item, mode=ledger.DECREASE, quantity=10, reason="Fitted", performed_by=self.user)

        self.assertEqual(second.item.quantity, Decimal("0.00"))
        self.assertEqual(second.item.status, ledger.OUT)
        self.assertEqual(second.shortfall, Decimal("7.00"))
        self.assertEqual(second.movement.quantity, Decimal("10.00"))
        self.assertEqual(second.movement.resulting_quantity, Decimal("0.00"))
        self.assertTrue(any("stock_shortfall" in line for line in cm.output))

    def test_ledger_replay_matches_stored_quantity(self):
        adjust_stock(item=self.item, mode=ledger.INCREASE, quantity="4.5", reason="Delivery")
        adjust_stock(item=self.item, mode=ledger.DECREASE, quantity="20", reason="Write off")
        adjust_stock(item=self.item, mode=ledger.SET, quantity="8", reason="Stock take")
        adjust_stock(item=self.item, mode=ledger.DECREASE, quantity="1.25", reason="Fitted")

        self.item.refresh_from_db()
        self.assertEqual(replay_item_ledger(self.item), self.item.quantity)
        self.assertEqual(self.item.quantity, Decimal("6.75"))
        self.assertEqual(list(self.item.movements.values_list("resulting_quantity", flat=True))[-1], self.item.quantity)

    def test_reference_type_precedence(self):
        job_result = adjust_stock(
            item=self.item,
            mode=ledger.DECREASE,
            quantity=1,
            reason="Job",
            job_sheet_id="7f1d7d1e-4a7c-4b53-9a62-3f2f5e1b3c11",
            booking_id="0b8c7d55-1111-4c55-8d3b-7777a6b2e001",
        )
        manual_result = adjust_stock(item=self.item, mode=ledger.INCREASE, quantity=1, reason="Found")

        self.assertEqual(job_result.movement.reference_type, StockMovement.ReferenceType.JOB_SHEET)
        self.assertEqual(manual_result.movement.reference_type, StockMovement.ReferenceType.MANUAL)

    def test_movements_are_immutable(self):
        movement = self.item.movements.get()
        movement.reason = "Edited"
        with self.assertRaises(LedgerImmutableError):
            movement.save()
        with self.assertRaises(LedgerImmutableError):
            movement.delete()
        with self.assertRaises(LedgerImmutableError):
            StockMovement.objects.filter(pk=movement.pk).update(reason="Edited")
        with self.assertRaises(LedgerImmutableError):
            StockMovement.objects.filter(pk=movement.pk).delete()

    def test_adjustment_requires_reason(self):
        with self.assertRaises(ValidationError):
            adjust_stock(item=self.item, mode=ledger.INCREASE, quantity=1, reason="  ")

    def test_availability_reports_shortages_and_missing_items(self):
        requirements = get_inventory_requirements_for_services(["service-1"])
        report = check_inventory_availability(self.garage.id, requirements)

        self.assertFalse(report.available)
        shortages = {shortage["sku"]: shortage for shortage in report.shortages}
        self.assertNotIn("oil-filter-001", shortages)
        self.assertTrue(shortages["engine-oil-5w30"]["missing"])

    def test_deduction_skips_unstocked_items(self):
        results = deduct_inventory_for_services(
            garage_id=self.garage.id,
            service_codes=["service-1"],
            performed_by=self.user,
            reference="JB-0001",
        )

        self.assertEqual(len(results), 1)
        self.assertEqual(results[0].item.quantity, Decimal("9.00"))
        self.assertEqual(results[0].movement.reason, "Job JB-0001 - Oil Filter")
        self.assertEqual(results[0].movement.service_code, "service-1")


class InventoryApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.garage_a = Garage.objects.create(code="IA", name="Inventory A")
        self.garage_b = Garage.objects.create(code="IB", name="Inventory B")
        self.manager = self.user_model.objects.create_user(username="inv-manager", password="pass1234", garage=self.garage_a, role="manager")
        self.technician = self.user_model.objects.create_user(username="inv-tech", password="pass1234", garage=self.garage_a, role="technician")

        self.item_a = create_inventory_item(
            garage_id=self.garage_a.id,
            sku="brake-fluid-001",
            name="Brake Fluid",
            category="Fluids",
            unit=InventoryItem.Unit.LITRE,
            quantity=Decimal("2"),
            reorder_level=Decimal("3"),
            supplier="Fluids Ltd",
        )
        self.item_b = create_inventory_item(
            garage_id=self.garage_b.id,
            sku="brake-fluid-001",
            name="Other Brake Fluid",
            quantity=Decimal("50"),
        )

    def test_list_is_scoped_to_garage_and_paginated(self):
        self.client.force_authenticate(user=self.technician)

        response = self.client.get("/api/inventory/")

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(sorted(payload.keys()), ["count", "next", "previous", "results"])
        ids = {item["id"] for item in payload["results"]}
        self.assertEqual(ids, {str(self.item_a.id)})
        self.assertEqual(payload["results"][0]["status"], ledger.LOW)

    def test_status_filter_uses_derived_status(self):
        self.client.force_authenticate(user=self.technician)

        low = self.client.get("/api/inventory/", {"status": "LOW"})
        in_stock = self.client.get("/api/inventory/", {"status": "IN_STOCK"})

        self.assertEqual(low.json()["count"], 1)
        self.assertEqual(in_stock.json()["count"], 0)

    def test_create_records_opening_movement_and_ignores_injected_garage(self):
        self.client.force_authenticate(user=self.manager)

        response = self.client.post(
            "/api/inventory/",
            {
                "garage": str(self.garage_b.id),
                "sku": "wiper-blades-001",
                "name": "Wiper Blades",
                "unit": "set",
                "quantity": "12",
                "reorder_level": "4",
                "price": "19.99",
            },
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        created = InventoryItem.objects.get(id=response.json()["id"])
        self.assertEqual(created.garage_id, self.garage_a.id)
        self.assertEqual(created.quantity, Decimal("12.00"))
        self.assertEqual(created.movements.get().reference_type, StockMovement.ReferenceType.SYSTEM)

    def test_duplicate_sku_in_same_garage_is_rejected(self):
        self.client.force_authenticate(user=self.manager)

        response = self.client.post(
            "/api/inventory/",
            {"sku": "brake-fluid-001", "name": "Duplicate", "quantity": "1"},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "validation_error")
        self.assertIn("sku", response.json()["errors"])

    def test_patch_cannot_change_quantity(self):
        self.client.force_authenticate(user=self.manager)

        response = self.client.patch(f"/api/inventory/{self.item_a.id}/", {"quantity": "100"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.item_a.refresh_from_db()
        self.assertEqual(self.item_a.quantity, Decimal("2.00"))

    def test_patch_updates_descriptive_fields(self):
        self.client.force_authenticate(user=self.manager)

        response = self.client.patch(f"/api/inventory/{self.item_a.id}/", {"location": "Shelf B2"}, format="json")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["location"], "Shelf B2")

    def test_stock_movement_post_adjusts_item(self):
        self.client.force_authenticate(user=self.manager)

        response = self.client.post(
            "/api/stock-movement/",
            {"item": str(self.item_a.id), "type": "INCREASE", "quantity": "5", "reason": "Delivery"},
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        payload = response.json()
        self.assertEqual(payload["item"]["quantity"], "7.00")
        self.assertEqual(payload["item"]["status"], ledger.IN_STOCK)
        self.assertEqual(payload["movement"]["resulting_quantity"], "7.00")
        self.assertEqual(payload["movement"]["reference_type"], "MANUAL")

    def test_stock_movement_for_other_garage_item_is_not_found(self):
        self.client.force_authenticate(user=self.manager)

        response = self.client.post(
            "/api/stock-movement/",
            {"item": str(self.item_b.id), "type": "DECREASE", "quantity": "1", "reason": "Theft"},
            format="json",
        )

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["code"], "not_found")

    def test_technician_cannot_adjust_stock_and_denial_is_logged(self):
        self.client.force_authenticate(user=self.technician)

        with self.assertLogs("security.authorization", level="WARNING") as cm:
            response = self.client.post(
                "/api/stock-movement/",
                {"item": str(self.item_a.id), "type": "INCREASE", "quantity": "1", "reason": "Found"},
                format="json",
            )

        self.assertEqual(response.status_code, 403)
        self.assertTrue(any("permission_denied" in message for message in cm.output))

    def test_movement_history_filters(self):
        adjust_stock(item=self.item_a, mode=ledger.DECREASE, quantity=1, reason="Fitted to car", reference="JB-0009")
        self.client.force_authenticate(user=self.technician)

        response = self.client.get(f"/api/inventory/{self.item_a.id}/movements/", {"type": "DECREASE"})

        self.assertEqual(response.status_code, 200)
        results = response.json()["results"]
        self.assertEqual(len(results), 1)
        self.assertEqual(results[0]["reference"], "JB-0009")

    def test_alerts_and_filter_options(self):
        self.client.force_authenticate(user=self.technician)

        alerts = self.client.get("/api/inventory/alerts/").json()
        options = self.client.get("/api/inventory/filter-options/").json()

        self.assertEqual(alerts["low_count"], 1)
        self.assertEqual(alerts["out_count"], 0)
        self.assertEqual(alerts["items"][0]["sku"], "brake-fluid-001")
        self.assertEqual(options["categories"], ["Fluids"])
        self.assertEqual(options["suppliers"], ["Fluids Ltd"])
        self.assertIn("litre", options["units"])

    def test_requirements_endpoint_reports_shortages(self):
        self.client.force_authenticate(user=self.technician)

        response = self.client.get("/api/inventory/requirements/", {"services": "service-17,service-15"})

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertFalse(payload["available"])
        self.assertEqual([req["sku"] for req in payload["requirements"]], ["brake-fluid-001", "coolant-001"])
        self.assertEqual(len(payload["shortages"]), 1)
        self.assertEqual(payload["shortages"][0]["sku"], "coolant-001")
        self.assertTrue(payload["shortages"][0]["missing"])

    def test_requirements_endpoint_requires_services(self):
        self.client.force_authenticate(user=self.technician)

        response = self.client.get("/api/inventory/requirements/")

        self.assertEqual(response.status_code, 400)

    def test_deactivate_hides_item_from_default_list(self):
        self.client.force_authenticate(user=self.manager)

        response = self.client.post(f"/api/inventory/{self.item_a.id}/deactivate/")
        listing = self.client.get("/api/inventory/").json()

        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.json()["is_active"])
        self.assertEqual(listing["count"], 0)

    def test_unauthenticated_request_is_rejected(self):
        response = self.client.get("/api/inventory/")

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["code"], "not_authenticated")
