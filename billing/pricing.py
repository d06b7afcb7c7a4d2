from dataclasses import dataclass
from decimal import Decimal

from django.conf import settings

from common.utils import to_money


@dataclass(frozen=True)
class PricingBreakdown:
    subtotal: Decimal
    service_charge: Decimal
    vat: Decimal
    total: Decimal

    def as_dict(self):
        return {
            "subtotal": str(self.subtotal),
            "service_charge": str(self.service_charge),
            "vat": str(self.vat),
            "total": str(self.total),
        }


def calculate_pricing(prices, service_charge=None, vat_rate=None):
    """Price a list of service lines.

    VAT is charged on the subtotal plus the fixed service charge. Every
    amount is rounded half-up to pence.
    """
    if service_charge is None:
        service_charge = settings.WORKSHOP_SERVICE_CHARGE
    if vat_rate is None:
        vat_rate = settings.WORKSHOP_VAT_RATE

    subtotal = to_money(sum((Decimal(str(price)) for price in prices), Decimal("0")))
    service_charge = to_money(service_charge)
    vat = to_money((subtotal + service_charge) * Decimal(str(vat_rate)))
    return PricingBreakdown(
        subtotal=subtotal,
        service_charge=service_charge,
        vat=vat,
        total=to_money(subtotal + service_charge + vat),
    )
