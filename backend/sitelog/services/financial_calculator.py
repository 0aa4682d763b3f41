"""
financial_calculator.py — Cost, invoicing and overdue figures for visit records.

Covers:
  - Visit cost = totalHours × personnel multiplier × hourly rate
    (default rate when the record carries none)
  - Invoiced / pending amounts and invoicing rate (0 % on an empty set)
  - Overdue predicate: not invoiced and dated more than 30 days ago
  - Signed-quote amounts for unlinked worksheets

All amounts are in the company currency; rounding happens once, on output.
"""

from datetime import date
from typing import Iterable, List, Optional, Sequence

from sitelog.config import DEFAULT_HOURLY_RATE, MONEY_PRECISION, OVERDUE_INVOICE_DAYS, PERCENT_PRECISION
from sitelog.models.visit_models import FinancialSummary, VisitRecord
from sitelog.services.time_entry_normalizer import TimeEntryNormalizer


def percent(part: float, whole: float) -> float:
    """part / whole × 100, or 0.0 when ``whole`` is 0."""
    if whole <= 0:
        return 0.0
    return part / whole * 100.0


def growth_percent(current: float, prior: float) -> float:
    """(current − prior) / prior × 100; 0.0 when there is no prior figure."""
    if prior <= 0:
        return 0.0
    return (current - prior) / prior * 100.0


def days_since(d: date, today: date) -> int:
    return (today - d).days


class FinancialCalculator:
    """
    Converts normalised hours into money.

    ``default_hourly_rate`` comes from settings; a record's own rate wins
    whenever it is set and positive.
    """

    def __init__(
        self,
        default_hourly_rate: float = DEFAULT_HOURLY_RATE,
        overdue_after_days: int = OVERDUE_INVOICE_DAYS,
        normalizer: Optional[TimeEntryNormalizer] = None,
    ) -> None:
        if default_hourly_rate <= 0:
            raise ValueError(f"Default hourly rate must be positive; received {default_hourly_rate}")
        self.default_hourly_rate = float(default_hourly_rate)
        self.overdue_after_days = int(overdue_after_days)
        self.normalizer = normalizer or TimeEntryNormalizer()

    # -----------------------------------------------------------------------
    # Per-visit
    # -----------------------------------------------------------------------

    def rate_for(self, record: VisitRecord) -> float:
        if record.hourly_rate is not None and record.hourly_rate > 0:
            return float(record.hourly_rate)
        return self.default_hourly_rate

    def cost(self, record: VisitRecord) -> float:
        hours = self.normalizer.normalize(record).total_hours
        return hours * record.personnel_multiplier * self.rate_for(record)

    def person_cost(self, record: VisitRecord) -> float:
        """One crew member's share: totalHours × rate."""
        return self.normalizer.normalize(record).total_hours * self.rate_for(record)

    def is_overdue(self, record: VisitRecord, today: date) -> bool:
        """Pure predicate: uninvoiced and older than the overdue threshold."""
        return (not record.invoiced) and days_since(record.date, today) > self.overdue_after_days

    # -----------------------------------------------------------------------
    # Collections
    # -----------------------------------------------------------------------

    def total_cost(self, records: Iterable[VisitRecord]) -> float:
        return round(sum(self.cost(r) for r in records), MONEY_PRECISION)

    def invoiced_amount(self, records: Iterable[VisitRecord]) -> float:
        return round(sum(self.cost(r) for r in records if r.invoiced), MONEY_PRECISION)

    def pending_amount(self, records: Sequence[VisitRecord]) -> float:
        return round(self.total_cost(records) - self.invoiced_amount(records), MONEY_PRECISION)

    def invoicing_rate(self, records: Sequence[VisitRecord]) -> float:
        """Invoiced visits / all visits × 100; 0.0 for an empty set."""
        invoiced = sum(1 for r in records if r.invoiced)
        return round(percent(invoiced, len(records)), PERCENT_PRECISION)

    def overdue_records(self, records: Iterable[VisitRecord], today: date) -> List[VisitRecord]:
        return [r for r in records if self.is_overdue(r, today)]

    def summarize(self, records: Sequence[VisitRecord], today: Optional[date] = None) -> FinancialSummary:
        """
        Full money picture for a record set.

        ``today`` is only needed for the overdue count; without it the count is 0.
        """
        total = 0.0
        invoiced_total = 0.0
        invoiced_count = 0
        for record in records:
            c = self.cost(record)
            total += c
            if record.invoiced:
                invoiced_total += c
                invoiced_count += 1

        overdue = len(self.overdue_records(records, today)) if today is not None else 0
        return FinancialSummary(
            visit_count=len(records),
            invoiced_count=invoiced_count,
            total_cost=round(total, MONEY_PRECISION),
            invoiced_amount=round(invoiced_total, MONEY_PRECISION),
            pending_amount=round(total - invoiced_total, MONEY_PRECISION),
            invoicing_rate_percent=round(percent(invoiced_count, len(records)), PERCENT_PRECISION),
            overdue_count=overdue,
        )

    # -----------------------------------------------------------------------
    # Signed quotes (unlinked worksheets)
    # -----------------------------------------------------------------------

    @staticmethod
    def quoted_amounts(records: Iterable[VisitRecord]) -> tuple:
        """(invoiced, not yet invoiced) totals of signed quote amounts."""
        invoiced = 0.0
        pending = 0.0
        for record in records:
            amount = record.signed_quote_amount or 0.0
            if record.invoiced:
                invoiced += amount
            else:
                pending += amount
        return round(invoiced, MONEY_PRECISION), round(pending, MONEY_PRECISION)
