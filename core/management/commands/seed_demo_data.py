from datetime import time, timedelta
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand
from django.utils import timezone

from bookings.models import Booking, Service
from bookings.services import add_booking_line
from core.models import Garage
from inventory.models import InventoryItem
from inventory.services import create_inventory_item
from vhc.models import VHCTemplate

CATALOG = [
    ("service-1", "Oil Change", "Oil", 45, "59.00"),
    ("service-13", "Oil Filter Replacement", "Oil", 20, "25.00"),
    ("service-14", "Cabin Air Filter", "Filters", 20, "35.00"),
    ("service-15", "Coolant Flush", "Fluids", 60, "79.00"),
    ("service-17", "Brake Fluid Change", "Brakes", 45, "55.00"),
    ("service-18", "Front Brake Pads", "Brakes", 90, "149.00"),
    ("service-21", "Battery Replacement", "Electrical", 30, "120.00"),
    ("service-24", "Wiper Blades", "Wear items", 10, "29.00"),
    ("service-25", "Engine Air Filter", "Filters", 15, "30.00"),
]

STOCK = [
    ("oil-filter-001", "Oil Filter", "Filters", "pc", "24", "5"),
    ("engine-oil-5w30", "Engine Oil 5W-30", "Fluids", "litre", "60", "20"),
    ("cabin-air-filter-001", "Cabin Air Filter", "Filters", "pc", "6", "3"),
    ("air-filter-001", "Engine Air Filter", "Filters", "pc", "2", "3"),
    ("coolant-001", "Coolant", "Fluids", "litre", "20", "10"),
    ("brake-fluid-001", "Brake Fluid DOT4", "Brakes", "litre", "8", "4"),
    ("brake-pads-front-001", "Front Brake Pads", "Brakes", "set", "4", "2"),
    ("battery-001", "12V Battery", "Electrical", "pc", "0", "2"),
    ("wiper-blades-001", "Wiper Blade Set", "Wear items", "set", "10", "4"),
]

VHC_SECTIONS = [
    {
        "id": "tyres",
        "title": "Tyres",
        "weight": 2,
        "items": [
            {"id": "tyre_tread_front", "label": "Front tread depth", "weight": 2},
            {"id": "tyre_tread_rear", "label": "Rear tread depth", "weight": 2},
            {"id": "tyre_pressure", "label": "Pressures", "weight": 1},
        ],
    },
    {
        "id": "brakes",
        "title": "Brakes",
        "weight": 3,
        "items": [
            {"id": "brake_pads", "label": "Pad wear", "weight": 2},
            {"id": "brake_discs", "label": "Disc condition", "weight": 1},
            {"id": "brake_fluid", "label": "Fluid level", "weight": 1},
        ],
    },
    {
        "id": "engine",
        "title": "Engine bay",
        "weight": 1,
        "applicable_to": ["ice", "hybrid"],
        "items": [
            {"id": "oil_level", "label": "Oil level", "weight": 1},
            {"id": "coolant_level", "label": "Coolant level", "weight": 1},
        ],
    },
    {
        "id": "hv_system",
        "title": "High voltage system",
        "weight": 2,
        "applicable_to": ["ev", "hybrid"],
        "items": [
            {"id": "hv_battery_health", "label": "Battery state of health", "weight": 2},
            {"id": "charge_port", "label": "Charge port", "weight": 1},
        ],
    },
    {
        "id": "visibility",
        "title": "Lights and visibility",
        "weight": 1,
        "items": [
            {"id": "headlights", "label": "Headlights", "weight": 1},
            {"id": "wipers", "label": "Wiper blades", "weight": 1},
        ],
    },
]


class Command(BaseCommand):
    help = "Seed a demo garage with staff, a service catalog, stock and a health check template."

    def handle(self, *args, **options):
        User = get_user_model()

        garage, _ = Garage.objects.get_or_create(
            code="MAIN",
            defaults={"name": "Main Street Garage", "timezone": "Europe/London", "bay_count": 4, "is_active": True},
        )

        credentials = [
            ("admin", User.Role.ADMIN, {"is_staff": True, "is_superuser": True}),
            ("manager", User.Role.MANAGER, {}),
            ("advisor", User.Role.ADVISOR, {}),
            ("technician", User.Role.TECHNICIAN, {}),
        ]
        users = {}
        for username, role, extra in credentials:
            user, created = User.objects.get_or_create(
                username=username,
                defaults={
                    "email": f"{username}@example.com",
                    "role": role,
                    "garage": garage,
                    "is_active": True,
                    **extra,
                },
            )
            if created:
                user.set_password(f"{username}1234")
                user.save(update_fields=["password"])
            users[username] = user

        services = {}
        for code, name, category, duration, price in CATALOG:
            services[code], _ = Service.objects.get_or_create(
                garage=garage,
                code=code,
                defaults={"name": name, "category": category, "duration_minutes": duration, "price": Decimal(price)},
            )

        for sku, name, category, unit, quantity, reorder_level in STOCK:
            if InventoryItem.objects.filter(garage=garage, sku=sku).exists():
                continue
            create_inventory_item(
                garage_id=garage.id,
                performed_by=users["manager"],
                quantity=Decimal(quantity),
                sku=sku,
                name=name,
                category=category,
                unit=unit,
                reorder_level=Decimal(reorder_level),
            )

        template, _ = VHCTemplate.objects.get_or_create(
            garage=None,
            version=1,
            defaults={"title": "Standard Vehicle Health Check", "sections": VHC_SECTIONS, "is_active": True},
        )

        tomorrow = timezone.localdate() + timedelta(days=1)
        booking, booking_created = Booking.objects.get_or_create(
            garage=garage,
            vehicle_license="AB12 CDE",
            date=tomorrow,
            defaults={
                "customer_name": "Jamie Rivers",
                "customer_phone": "07700 900123",
                "customer_email": "jamie@example.com",
                "vehicle_make": "Ford",
                "vehicle_model": "Focus",
                "vehicle_year": 2019,
                "start_time": time(9, 0),
                "end_time": time(10, 0),
                "bay": "Bay 1",
                "technician": users["technician"],
                "status": Booking.Status.CONFIRMED,
                "created_by": users["advisor"],
            },
        )
        if booking_created:
            oil_change = services["service-1"]
            add_booking_line(
                booking,
                name=oil_change.name,
                service=oil_change,
                duration_minutes=oil_change.duration_minutes,
                price=oil_change.price,
            )

        self.stdout.write(self.style.SUCCESS("Demo data seeded successfully."))
        self.stdout.write("Credentials: admin/admin1234, manager/manager1234, advisor/advisor1234, technician/technician1234")
        self.stdout.write(f"Garage: {garage.code} | Services: {len(services)} | VHC template: {template.id} | Booking: {booking.id}")
