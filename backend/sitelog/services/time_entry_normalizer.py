"""
time_entry_normalizer.py — Worked-duration normalisation for visit records.

Covers:
  - "HH:MM" clock parsing to minutes since midnight
  - Break duration as decimal hours, numeric string, or "HH:MM"
  - totalHours = max(0, (end − arrival) / 60 − break), rounded to 2 dp
  - Non-fatal flagging of malformed and inverted entries
  - Display helpers (7.5 → "7h30", 510 → "08:30")

departureTime is kept on the record for display and round-trip only; it does
not take part in the hour formula.
"""

from typing import List, Optional, Tuple, Union

from sitelog.config import HOURS_PRECISION
from sitelog.models.visit_models import NormalizedEntry, TimeTracking, VisitRecord

MINUTES_PER_DAY = 24 * 60

# Warning codes carried on NormalizedEntry.warnings
WARN_MISSING_TIME = "MISSING_TIME"
WARN_MALFORMED_TIME = "MALFORMED_TIME"
WARN_MALFORMED_BREAK = "MALFORMED_BREAK"
WARN_INVERTED_RANGE = "INVERTED_RANGE"
WARN_BREAK_EXCEEDS_SHIFT = "BREAK_EXCEEDS_SHIFT"


def parse_clock_minutes(value: Optional[str]) -> int:
    """
    Parse a 24-hour "HH:MM" string into minutes since midnight.

    Raises ValueError for anything else; callers in this module turn that into
    an invalid entry rather than letting it escape.
    """
    if value is None:
        raise ValueError("time value is missing")
    text = str(value).strip()
    if text.count(":") != 1:
        raise ValueError(f"'{value}' is not HH:MM")
    hours_txt, minutes_txt = text.split(":")
    if not (hours_txt.isdigit() and minutes_txt.isdigit()):
        raise ValueError(f"'{value}' is not HH:MM")
    hours, minutes = int(hours_txt), int(minutes_txt)
    if hours > 23 or minutes > 59:
        raise ValueError(f"'{value}' is outside 00:00–23:59")
    return hours * 60 + minutes


def parse_break_hours(value: Union[float, int, str, None]) -> float:
    """
    Normalise a break duration to decimal hours.

    Accepts a number of hours (1.5), a numeric string ("1.5"), or a duration
    string ("01:30"). None / "" mean no break. Negative values are rejected.
    """
    if value is None or value == "":
        return 0.0
    if isinstance(value, bool):
        raise ValueError("break duration must be numeric or HH:MM")
    if isinstance(value, (int, float)):
        hours = float(value)
    else:
        text = str(value).strip()
        if ":" in text:
            hours_txt, _, minutes_txt = text.partition(":")
            if not (hours_txt.isdigit() and minutes_txt.isdigit()) or int(minutes_txt) > 59:
                raise ValueError(f"'{value}' is not a valid HH:MM duration")
            hours = int(hours_txt) + int(minutes_txt) / 60.0
        else:
            hours = float(text.replace(",", "."))
    if hours != hours or hours < 0:  # NaN or negative
        raise ValueError(f"break duration {value!r} must be a non-negative number")
    return hours


def compute_total_hours(tracking: TimeTracking, visit_id: str = "") -> NormalizedEntry:
    """
    Derive totalHours for one set of timeTracking fields.

    Never raises. Malformed or inverted inputs resolve to 0 hours with
    is_valid=False so the visit still counts in visit totals. Problems are
    returned as warning codes; ReportAggregator.screen_visits logs them once
    per visit.
    """
    warnings: List[str] = []

    if not tracking.arrival_time or not tracking.end_time:
        return NormalizedEntry(visit_id=visit_id, total_hours=0.0, is_valid=False, warnings=(WARN_MISSING_TIME,))

    try:
        arrival = parse_clock_minutes(tracking.arrival_time)
        end = parse_clock_minutes(tracking.end_time)
    except ValueError:
        return NormalizedEntry(visit_id=visit_id, total_hours=0.0, is_valid=False, warnings=(WARN_MALFORMED_TIME,))

    try:
        break_hours = parse_break_hours(tracking.break_duration)
    except ValueError:
        return NormalizedEntry(visit_id=visit_id, total_hours=0.0, is_valid=False, warnings=(WARN_MALFORMED_BREAK,))

    if end < arrival:
        return NormalizedEntry(visit_id=visit_id, total_hours=0.0, is_valid=False, warnings=(WARN_INVERTED_RANGE,))

    raw_hours = (end - arrival) / 60.0
    if break_hours > raw_hours:
        warnings.append(WARN_BREAK_EXCEEDS_SHIFT)

    total = round(max(0.0, raw_hours - break_hours), HOURS_PRECISION)
    return NormalizedEntry(visit_id=visit_id, total_hours=total, is_valid=True, warnings=tuple(warnings))


class TimeEntryNormalizer:
    """
    Re-derives totalHours for visit records.

    The cached ``total_hours`` on a record is ignored on the way in; the
    timeTracking fields are the source of truth.
    """

    def normalize(self, record: VisitRecord) -> NormalizedEntry:
        return compute_total_hours(record.time_tracking, visit_id=record.id)

    def normalize_all(self, records) -> Tuple[NormalizedEntry, ...]:
        return tuple(self.normalize(r) for r in records)

    def refresh_cached_total(self, record: VisitRecord) -> VisitRecord:
        """Return a copy of ``record`` whose cached total matches the derived value."""
        entry = self.normalize(record)
        if record.time_tracking.total_hours == entry.total_hours:
            return record
        return record.with_time_tracking(total_hours=entry.total_hours)


# ---------------------------------------------------------------------------
# Display helpers
# ---------------------------------------------------------------------------

def format_hours(hours: float) -> str:
    """7.5 → "7h30"."""
    total_minutes = int(round(max(0.0, hours) * 60))
    return f"{total_minutes // 60}h{total_minutes % 60:02d}"


def format_minutes_as_clock(minutes: int) -> str:
    """510 → "08:30". Wraps past midnight."""
    minutes = int(minutes) % MINUTES_PER_DAY
    return f"{minutes // 60:02d}:{minutes % 60:02d}"
