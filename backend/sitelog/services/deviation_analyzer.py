"""
deviation_analyzer.py — Contractual vs. actual visit duration per project.

deviation = project.visit_duration − average totalHours per visit

  positive  → crew finishing faster than planned (under budget)
  negative  → visits running long

Classification:
  NO_HISTORY        no visits to average (never divides by zero)
  NO_TARGET         project has no contractual duration
  NO_DEVIATION      deviation is exactly 0
  WITHIN_TOLERANCE  |deviation| ≤ 10 % of the contractual duration, either sign
  AHEAD / BEHIND    outside the band, by sign

Hours are summed as integer hundredths so that adding or removing one visit
from a running accumulator gives exactly the from-scratch result.
"""

import logging
from typing import Iterable, List, Optional

from sitelog.config import DEVIATION_TOLERANCE_RATIO
from sitelog.models.visit_models import (
    AHEAD,
    BEHIND,
    NO_DEVIATION,
    NO_HISTORY,
    NO_TARGET,
    WITHIN_TOLERANCE,
    DeviationResult,
    Project,
    ProjectDeviationSummary,
    VisitRecord,
)
from sitelog.services.time_entry_normalizer import TimeEntryNormalizer

logger = logging.getLogger("sitelog-analytics")

_EPSILON = 1e-9


def classify_deviation(
    deviation_hours: float,
    visit_duration: float,
    tolerance_ratio: float = DEVIATION_TOLERANCE_RATIO,
) -> str:
    if abs(deviation_hours) < _EPSILON:
        return NO_DEVIATION
    if abs(deviation_hours) <= tolerance_ratio * visit_duration + _EPSILON:
        return WITHIN_TOLERANCE
    return AHEAD if deviation_hours > 0 else BEHIND


def _has_target(project: Project) -> bool:
    return project.visit_duration is not None and project.visit_duration > 0


class DeviationAccumulator:
    """
    Running count / hour total for one project's visit history.

    Used by the edit form: remove the visit being edited, add the new values,
    read ``result()`` — identical to re-analysing the full history.
    """

    def __init__(
        self,
        project: Project,
        normalizer: Optional[TimeEntryNormalizer] = None,
        tolerance_ratio: float = DEVIATION_TOLERANCE_RATIO,
    ) -> None:
        self.project = project
        self.normalizer = normalizer or TimeEntryNormalizer()
        self.tolerance_ratio = tolerance_ratio
        self._count = 0
        self._hundredths = 0

    @property
    def count(self) -> int:
        return self._count

    def add(self, record: VisitRecord) -> "DeviationAccumulator":
        self._count += 1
        self._hundredths += self.normalizer.normalize(record).hundredths
        return self

    def remove(self, record: VisitRecord) -> "DeviationAccumulator":
        if self._count == 0:
            raise ValueError("Cannot remove a visit from an empty history")
        self._count -= 1
        self._hundredths -= self.normalizer.normalize(record).hundredths
        return self

    def result(self) -> DeviationResult:
        if self._count == 0:
            return DeviationResult(classification=NO_HISTORY)

        average = self._hundredths / 100.0 / self._count
        if not _has_target(self.project):
            return DeviationResult(
                classification=NO_TARGET,
                number_of_visits=self._count,
                average_hours_per_visit=average,
            )

        deviation = self.project.visit_duration - average
        return DeviationResult(
            classification=classify_deviation(deviation, self.project.visit_duration, self.tolerance_ratio),
            number_of_visits=self._count,
            average_hours_per_visit=average,
            deviation_hours=deviation,
        )


class DeviationAnalyzer:
    """Per-project historical deviation against the contracted visit duration."""

    def __init__(
        self,
        normalizer: Optional[TimeEntryNormalizer] = None,
        tolerance_ratio: float = DEVIATION_TOLERANCE_RATIO,
    ) -> None:
        self.normalizer = normalizer or TimeEntryNormalizer()
        self.tolerance_ratio = tolerance_ratio

    def accumulator(self, project: Project) -> DeviationAccumulator:
        return DeviationAccumulator(project, self.normalizer, self.tolerance_ratio)

    def history_for(
        self,
        project: Project,
        records: Iterable[VisitRecord],
        exclude_visit_id: Optional[str] = None,
    ) -> List[VisitRecord]:
        """The project's visits, minus the one currently being edited."""
        return [
            r for r in records
            if r.project_id == project.id and r.id != exclude_visit_id
        ]

    def analyze(
        self,
        project: Project,
        records: Iterable[VisitRecord],
        exclude_visit_id: Optional[str] = None,
    ) -> DeviationResult:
        """
        Average each visit's own totalHours (not team-hours) and compare to
        ``project.visit_duration``. Visits for other projects are ignored.
        """
        acc = self.accumulator(project)
        for record in self.history_for(project, records, exclude_visit_id):
            acc.add(record)
        result = acc.result()
        if result.classification == NO_TARGET:
            logger.info(
                f"Project {project.id} has history but no contractual visit duration",
                extra={"project_id": project.id},
            )
        return result

    def summarize(
        self,
        project: Project,
        records: Iterable[VisitRecord],
        exclude_visit_id: Optional[str] = None,
    ) -> ProjectDeviationSummary:
        result = self.analyze(project, records, exclude_visit_id)
        return ProjectDeviationSummary(
            project_id=project.id,
            average_hours_per_visit=_round_opt(result.average_hours_per_visit),
            deviation_hours=_round_opt(result.deviation_hours),
            classification=result.classification,
            number_of_visits=result.number_of_visits,
            visit_duration=project.visit_duration,
        )

    def compare_entry(self, project: Project, total_hours: float) -> DeviationResult:
        """
        Classify a single in-progress entry against the contracted duration,
        using the same sign convention and tolerance band as the history.
        """
        if not _has_target(project):
            return DeviationResult(
                classification=NO_TARGET,
                number_of_visits=1,
                average_hours_per_visit=total_hours,
            )
        deviation = project.visit_duration - total_hours
        return DeviationResult(
            classification=classify_deviation(deviation, project.visit_duration, self.tolerance_ratio),
            number_of_visits=1,
            average_hours_per_visit=total_hours,
            deviation_hours=deviation,
        )


def _round_opt(value: Optional[float], ndigits: int = 2) -> Optional[float]:
    return None if value is None else round(value, ndigits)


def format_deviation(result: DeviationResult) -> str:
    """Short label for the edit form: "+0.8h", "-1.5h", "no deviation", "no history"."""
    if result.classification == NO_HISTORY:
        return "no history"
    if result.classification == NO_TARGET:
        return "no target duration"
    if result.classification == NO_DEVIATION:
        return "no deviation"
    sign = "+" if result.deviation_hours > 0 else ""
    return f"{sign}{result.deviation_hours:.1f}h"
