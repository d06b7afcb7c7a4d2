import datetime
import decimal
import uuid
from decimal import Decimal, ROUND_HALF_UP

from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime
from rest_framework.exceptions import ValidationError

MONEY_QUANT = Decimal("0.01")
QUANTITY_QUANT = Decimal("0.01")


def to_money(value):
    return Decimal(str(value)).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def to_quantity(value):
    try:
        return Decimal(str(value)).quantize(QUANTITY_QUANT, rounding=ROUND_HALF_UP)
    except decimal.InvalidOperation as exc:
        raise ValidationError({"quantity": "A valid number is required."}) from exc


def to_json_compatible(value):
    if isinstance(value, dict):
        return {key: to_json_compatible(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_json_compatible(item) for item in value]
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, decimal.Decimal):
        return str(value)
    if isinstance(value, (datetime.date, datetime.datetime, datetime.time)):
        return value.isoformat()
    return value


def parse_uuid(value):
    if not value:
        return None
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError):
        return None


def parse_date_param(value, *, end_of_day=False):
    """Parse a date or datetime query parameter into an aware datetime.

    Bare dates map to the start of the day, or to its last microsecond when
    `end_of_day` is set so that `?endDate=2024-05-01` includes the whole day.
    Unparseable values are ignored.
    """
    if not value:
        return None
    try:
        parsed = parse_datetime(value)
        day = None if parsed is not None else parse_date(value)
    except ValueError:
        return None
    if parsed is not None:
        if timezone.is_naive(parsed):
            parsed = timezone.make_aware(parsed)
        return parsed
    if day is None:
        return None
    moment = datetime.time.max if end_of_day else datetime.time.min
    return timezone.make_aware(datetime.datetime.combine(day, moment))


def apply_sorting(queryset, params, allowed, default):
    """Order a queryset by `sortBy`/`sortOrder` restricted to an allow-list.

    `allowed` maps public sort keys to model field paths; unknown keys fall
    back to `default`.
    """
    sort_by = params.get("sortBy")
    sort_order = (params.get("sortOrder") or "desc").lower()
    field = allowed.get(sort_by)
    if field is None:
        return queryset.order_by(*default)
    prefix = "" if sort_order == "asc" else "-"
    return queryset.order_by(f"{prefix}{field}", "-pk" if prefix else "pk")


def parse_day_param(params, name):
    """Read a `YYYY-MM-DD` query parameter as a date; malformed values are a 400."""
    value = params.get(name)
    if not value:
        return None
    try:
        day = parse_date(value)
    except ValueError:
        day = None
    if day is None:
        raise ValidationError({name: "Enter a valid date in YYYY-MM-DD format."})
    return day
