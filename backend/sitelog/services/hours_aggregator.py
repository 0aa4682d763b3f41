"""
hours_aggregator.py — Hour roll-ups across projects, teams, personnel and periods.

Two distinct metrics, never conflated:
  - team-hours       totalHours × personnel multiplier (crew labour)
  - personnel hours  each listed person credited the full totalHours of the visit

Period keys:
  - week   ISO week, Monday start     "2026-W42"
  - month  local calendar month       "2026-10"
  - year                              "2026"

Unlinked ("blank") visits and visits whose project cannot be resolved are left
out of project- and team-keyed groups but always count in the global total.
"""

from datetime import date, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from sitelog.config import HOURS_PRECISION
from sitelog.models.visit_models import (
    PERIOD_MONTH,
    PERIOD_WEEK,
    PERIOD_YEAR,
    MonthlyPoint,
    NormalizedEntry,
    Project,
    VisitRecord,
)
from sitelog.services.time_entry_normalizer import TimeEntryNormalizer


# ---------------------------------------------------------------------------
# Calendar helpers
# ---------------------------------------------------------------------------

def week_key(d: date) -> str:
    iso_year, iso_week, _ = d.isocalendar()
    return f"{iso_year}-W{iso_week:02d}"


def month_key(d: date) -> str:
    return f"{d.year}-{d.month:02d}"


def year_key(d: date) -> str:
    return str(d.year)


PERIOD_KEY_FUNCS: Dict[str, Callable[[date], str]] = {
    PERIOD_WEEK: week_key,
    PERIOD_MONTH: month_key,
    PERIOD_YEAR: year_key,
}


def period_key(d: date, granularity: str) -> str:
    try:
        return PERIOD_KEY_FUNCS[granularity](d)
    except KeyError:
        raise ValueError(f"Unknown period granularity '{granularity}'") from None


def week_bounds(d: date) -> Tuple[date, date]:
    """Monday..Sunday of the ISO week containing ``d``."""
    start = d - timedelta(days=d.weekday())
    return start, start + timedelta(days=6)


def month_bounds(d: date) -> Tuple[date, date]:
    start = d.replace(day=1)
    if start.month == 12:
        next_start = start.replace(year=start.year + 1, month=1)
    else:
        next_start = start.replace(month=start.month + 1)
    return start, next_start - timedelta(days=1)


def year_bounds(d: date) -> Tuple[date, date]:
    return date(d.year, 1, 1), date(d.year, 12, 31)


def period_bounds(d: date, granularity: str) -> Tuple[date, date]:
    if granularity == PERIOD_WEEK:
        return week_bounds(d)
    if granularity == PERIOD_MONTH:
        return month_bounds(d)
    if granularity == PERIOD_YEAR:
        return year_bounds(d)
    raise ValueError(f"Unknown period granularity '{granularity}'")


def prior_period_anchor(d: date, granularity: str) -> date:
    """A date inside the period immediately before the one containing ``d``."""
    start, _ = period_bounds(d, granularity)
    return start - timedelta(days=1)


# ---------------------------------------------------------------------------
# HoursAggregator
# ---------------------------------------------------------------------------

class HoursAggregator:
    """
    Sums normalised visit hours over arbitrary grouping keys.

    Stateless apart from the normaliser it delegates to; every method returns
    freshly built dicts whose key order follows first appearance in the input,
    so repeated calls over the same input are equal.
    """

    def __init__(self, normalizer: Optional[TimeEntryNormalizer] = None) -> None:
        self.normalizer = normalizer or TimeEntryNormalizer()

    # -----------------------------------------------------------------------
    # Per-visit measures
    # -----------------------------------------------------------------------

    def entry(self, record: VisitRecord) -> NormalizedEntry:
        return self.normalizer.normalize(record)

    def site_hours(self, record: VisitRecord) -> float:
        return self.entry(record).total_hours

    def team_hours(self, record: VisitRecord) -> float:
        """totalHours × personnel multiplier: 2 people × 4 h = 8 team-hours."""
        return self.entry(record).total_hours * record.personnel_multiplier

    # -----------------------------------------------------------------------
    # Global totals
    # -----------------------------------------------------------------------

    def total_site_hours(self, records: Iterable[VisitRecord]) -> float:
        return round(sum(self.site_hours(r) for r in records), HOURS_PRECISION)

    def total_team_hours(self, records: Iterable[VisitRecord]) -> float:
        return round(sum(self.team_hours(r) for r in records), HOURS_PRECISION)

    # -----------------------------------------------------------------------
    # Generic grouping
    # -----------------------------------------------------------------------

    def group(
        self,
        records: Iterable[VisitRecord],
        key_func: Callable[[VisitRecord], Optional[str]],
        measure: str = "team",
    ) -> Dict[str, float]:
        """
        Sum hours per key. ``key_func`` returning None leaves the record out.

        ``measure`` is "team" for team-hours or "site" for raw totalHours.
        """
        if measure not in ("team", "site"):
            raise ValueError(f"Unknown measure '{measure}'")
        value = self.team_hours if measure == "team" else self.site_hours

        totals: Dict[str, float] = {}
        for record in records:
            key = key_func(record)
            if key is None:
                continue
            totals[key] = totals.get(key, 0.0) + value(record)
        return {k: round(v, HOURS_PRECISION) for k, v in totals.items()}

    # -----------------------------------------------------------------------
    # Dimensions
    # -----------------------------------------------------------------------

    def by_project(
        self,
        records: Iterable[VisitRecord],
        projects: Optional[Dict[str, Project]] = None,
        measure: str = "team",
    ) -> Dict[str, float]:
        """Blank visits are skipped; with ``projects`` given, unresolved ids are too."""
        def key(record: VisitRecord) -> Optional[str]:
            pid = record.project_id
            if pid is None:
                return None
            if projects is not None and pid not in projects:
                return None
            return pid
        return self.group(records, key, measure)

    def by_team(
        self,
        records: Iterable[VisitRecord],
        projects: Dict[str, Project],
        measure: str = "team",
    ) -> Dict[str, float]:
        """Team is resolved through the visit's project; unlinked visits are skipped."""
        return self.group(records, lambda r: team_of(r, projects), measure)

    def by_personnel(self, records: Iterable[VisitRecord]) -> Dict[str, float]:
        """
        Credit every listed person with the full totalHours of the visit.

        [A, B, C] on a 4 h visit → 4 h each (12 team-hours for the crew).
        """
        totals: Dict[str, float] = {}
        for record in records:
            hours = self.site_hours(record)
            for person in dict.fromkeys(record.personnel):
                totals[person] = totals.get(person, 0.0) + hours
        return {k: round(v, HOURS_PRECISION) for k, v in totals.items()}

    def by_period(
        self,
        records: Iterable[VisitRecord],
        granularity: str,
        measure: str = "team",
    ) -> Dict[str, float]:
        key_func = PERIOD_KEY_FUNCS.get(granularity)
        if key_func is None:
            raise ValueError(f"Unknown period granularity '{granularity}'")
        return self.group(records, lambda r: key_func(r.date), measure)

    # -----------------------------------------------------------------------
    # Filters and series
    # -----------------------------------------------------------------------

    @staticmethod
    def in_window(records: Iterable[VisitRecord], start: date, end: date) -> List[VisitRecord]:
        """Records dated within [start, end], inclusive, in input order."""
        return [r for r in records if start <= r.date <= end]

    def monthly_series(
        self,
        records: Sequence[VisitRecord],
        year: int,
        project_id: Optional[str] = None,
    ) -> Tuple[MonthlyPoint, ...]:
        """Twelve month buckets of visit count and site hours for ``year``."""
        visits = [0] * 12
        hours = [0.0] * 12
        for record in records:
            if record.date.year != year:
                continue
            if project_id is not None and record.project_id != project_id:
                continue
            idx = record.date.month - 1
            visits[idx] += 1
            hours[idx] += self.site_hours(record)
        return tuple(
            MonthlyPoint(month=i + 1, visits=visits[i], hours=round(hours[i], HOURS_PRECISION))
            for i in range(12)
        )


def team_of(record: VisitRecord, projects: Dict[str, Project]) -> Optional[str]:
    pid = record.project_id
    if pid is None:
        return None
    project = projects.get(pid)
    if project is None or not project.team:
        return None
    return project.team
