"""Pure stock arithmetic shared by the write path and the consistency checks."""

from dataclasses import dataclass
from decimal import Decimal

IN_STOCK = "IN_STOCK"
LOW = "LOW"
OUT = "OUT"

INCREASE = "INCREASE"
DECREASE = "DECREASE"
SET = "SET"

MOVEMENT_TYPES = (INCREASE, DECREASE, SET)
ZERO = Decimal("0")


def derive_stock_status(quantity, reorder_level):
    quantity = Decimal(quantity or 0)
    if quantity <= 0:
        return OUT
    if quantity <= Decimal(reorder_level or 0):
        return LOW
    return IN_STOCK


@dataclass(frozen=True)
class MovementOutcome:
    quantity: Decimal
    shortfall: Decimal = ZERO


def apply_movement(current, movement_type, quantity):
    """Return the quantity after applying one movement.

    DECREASE clamps at zero; the part of the request the clamp absorbed is
    reported as `shortfall`.
    """
    current = Decimal(current)
    quantity = Decimal(quantity)
    if quantity < 0:
        raise ValueError("Movement quantity must be zero or greater.")

    if movement_type == INCREASE:
        return MovementOutcome(quantity=current + quantity)
    if movement_type == DECREASE:
        remaining = current - quantity
        if remaining < 0:
            return MovementOutcome(quantity=ZERO, shortfall=-remaining)
        return MovementOutcome(quantity=remaining)
    if movement_type == SET:
        return MovementOutcome(quantity=quantity)
    raise ValueError(f"Unknown movement type: {movement_type}")


def replay_movements(movements, initial=ZERO):
    """Rebuild a quantity from (type, quantity) pairs or movement records."""
    quantity = Decimal(initial)
    for movement in movements:
        if isinstance(movement, (tuple, list)):
            movement_type, amount = movement
        else:
            movement_type, amount = movement.type, movement.quantity
        quantity = apply_movement(quantity, movement_type, amount).quantity
    return quantity
