from decimal import Decimal, ROUND_HALF_UP

from django.utils import timezone

OPENING_ACTIONS = frozenset({"start", "resume"})
CLOSING_ACTIONS = frozenset({"pause", "halt", "complete"})


def _read(entry, name):
    if isinstance(entry, dict):
        return entry.get(name)
    return getattr(entry, name)


def calculate_work_duration(time_logs, live=False, now=None):
    """Total worked minutes across a job's time log.

    Each `start` or `resume` opens an interval (a repeated opener restarts
    it) and the next `pause`, `halt` or `complete` closes it. An interval
    still open at the end only counts when `live` is set, measured up to
    `now`.
    """
    entries = sorted(time_logs, key=lambda entry: _read(entry, "timestamp"))
    total_seconds = 0.0
    opened_at = None

    for entry in entries:
        action = _read(entry, "action")
        timestamp = _read(entry, "timestamp")
        if action in OPENING_ACTIONS:
            opened_at = timestamp
        elif action in CLOSING_ACTIONS and opened_at is not None:
            total_seconds += max((timestamp - opened_at).total_seconds(), 0)
            opened_at = None

    if live and opened_at is not None:
        now = now or timezone.now()
        total_seconds += max((now - opened_at).total_seconds(), 0)

    minutes = Decimal(str(total_seconds)) / Decimal("60")
    return int(minutes.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
