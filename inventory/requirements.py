"""Consumables each catalog service draws from stock.

Keys are service codes from the garage catalog; item keys are inventory SKUs.
"""

from dataclasses import dataclass, field
from decimal import Decimal


@dataclass(frozen=True)
class ItemRequirement:
    sku: str
    quantity: Decimal
    unit: str


@dataclass
class ConsolidatedRequirement:
    sku: str
    quantity: Decimal
    unit: str
    service_codes: list = field(default_factory=list)

    def as_dict(self):
        return {
            "sku": self.sku,
            "quantity": str(self.quantity),
            "unit": self.unit,
            "service_codes": list(self.service_codes),
        }


def _req(sku, quantity, unit="pc"):
    return ItemRequirement(sku=sku, quantity=Decimal(quantity), unit=unit)


SERVICE_INVENTORY_MAP = {
    # Oil services
    "service-1": (_req("oil-filter-001", "1"), _req("engine-oil-5w30", "5", "litre")),
    "service-11": (_req("oil-filter-001", "1"), _req("engine-oil-synthetic-5w30", "5", "litre")),
    "service-12": (_req("oil-filter-001", "1"), _req("engine-oil-conventional-10w30", "5", "litre")),
    "service-13": (_req("oil-filter-001", "1"),),
    # Filters
    "service-14": (_req("cabin-air-filter-001", "1"),),
    "service-25": (_req("air-filter-001", "1"),),
    # Brakes
    "service-17": (_req("brake-fluid-001", "1", "litre"),),
    "service-18": (_req("brake-pads-front-001", "1", "set"), _req("brake-fluid-001", "0.5", "litre")),
    "service-19": (_req("brake-pads-rear-001", "1", "set"), _req("brake-fluid-001", "0.5", "litre")),
    "service-20": (_req("brake-rotors-front-001", "2"), _req("brake-pads-front-001", "1", "set")),
    # Electrical and ignition
    "service-21": (_req("battery-001", "1"),),
    "service-22": (_req("spark-plugs-4cyl-001", "4"),),
    "service-23": (_req("spark-plugs-6cyl-001", "6"),),
    # Wear items
    "service-24": (_req("wiper-blades-001", "1", "set"),),
    "service-26": (_req("serpentine-belt-001", "1"),),
    # Fluids
    "service-15": (_req("coolant-001", "5", "litre"),),
    "service-16": (_req("transmission-fluid-001", "4", "litre"),),
    # Cleaning treatments
    "service-27": (_req("degreaser-001", "0.5", "litre"),),
    "service-28": (_req("throttle-cleaner-001", "0.25", "litre"),),
    "service-29": (_req("fuel-injector-cleaner-001", "0.5", "litre"),),
    "service-30": (_req("ac-cleaner-001", "0.5", "litre"),),
}


def get_service_requirements(service_code):
    return list(SERVICE_INVENTORY_MAP.get(service_code, ()))


def get_inventory_requirements_for_services(service_codes):
    """Sum requirements across services, one entry per SKU in first-seen order."""
    consolidated = {}
    for code in service_codes:
        for requirement in SERVICE_INVENTORY_MAP.get(code, ()):
            entry = consolidated.get(requirement.sku)
            if entry is None:
                entry = ConsolidatedRequirement(sku=requirement.sku, quantity=Decimal("0"), unit=requirement.unit)
                consolidated[requirement.sku] = entry
            entry.quantity += requirement.quantity
            if code not in entry.service_codes:
                entry.service_codes.append(code)
    return list(consolidated.values())
