"""
report_aggregator.py — Dashboard and export reports over visit snapshots.

Covers:
  - Visit screening (data-quality counters, optional rejection of unstaffed visits)
  - Period reports and current-vs-prior comparisons (ISO week, month, year)
  - Ranked team / personnel / project breakdowns
  - Project deviation summaries
  - Project-linked vs. blank visit category summaries, kept separate
  - Team completion table (planned vs. completed hours)
  - Year-over-year monthly comparison
  - Project inactivity alerts
  - One-shot dashboard summary composing all of the above

Every method is a pure function of its arguments. ``today`` is always passed
in explicitly; nothing here reads the clock.
"""

import logging
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sitelog.config import (
    HOURS_PRECISION,
    INACTIVITY_CRITICAL_DAYS,
    INACTIVITY_DANGER_DAYS,
    INACTIVITY_WARNING_DAYS,
    MONEY_PRECISION,
    PERCENT_PRECISION,
    EngineSettings,
    load_settings,
)
from sitelog.models.visit_models import (
    CATEGORY_BLANK,
    CATEGORY_LINKED,
    PERIOD_MONTH,
    PERIOD_WEEK,
    URGENCY_CRITICAL,
    URGENCY_DANGER,
    URGENCY_WARNING,
    CategorySummary,
    DashboardSummary,
    DataQualityReport,
    DimensionBreakdown,
    InactivityAlert,
    PeriodComparison,
    PeriodReport,
    Project,
    ProjectDeviationSummary,
    Team,
    TeamCompletion,
    UnknownProjectError,
    UnstaffedVisitError,
    VisitRecord,
    YearComparison,
)
from sitelog.services.deviation_analyzer import DeviationAnalyzer
from sitelog.services.financial_calculator import FinancialCalculator, days_since, growth_percent, percent
from sitelog.services.hours_aggregator import (
    HoursAggregator,
    period_bounds,
    period_key,
    prior_period_anchor,
    team_of,
)
from sitelog.services.perf_monitor import timed
from sitelog.services.time_entry_normalizer import TimeEntryNormalizer

logger = logging.getLogger("sitelog-analytics")

GLOBAL_TEAM_ID = "all"
GLOBAL_TEAM_LABEL = "All teams"
TOP_PERSONNEL_LIMIT = 5

_URGENCY_RANK = {URGENCY_CRITICAL: 3, URGENCY_DANGER: 2, URGENCY_WARNING: 1}


def _rank(items: Iterable[DimensionBreakdown]) -> Tuple[DimensionBreakdown, ...]:
    # sorted() is stable with reverse=True, so ties keep input order
    return tuple(sorted(items, key=lambda b: b.hours, reverse=True))


def inactivity_urgency(days: int) -> Optional[str]:
    if days > INACTIVITY_CRITICAL_DAYS:
        return URGENCY_CRITICAL
    if days > INACTIVITY_DANGER_DAYS:
        return URGENCY_DANGER
    if days > INACTIVITY_WARNING_DAYS:
        return URGENCY_WARNING
    return None


class ReportAggregator:
    """
    Composes the normaliser, hours aggregator, deviation analyser and
    financial calculator into the report shapes consumed by the dashboard
    and the PDF export.
    """

    def __init__(self, settings: Optional[EngineSettings] = None) -> None:
        self.settings = settings or load_settings()
        self.normalizer = TimeEntryNormalizer()
        self.hours = HoursAggregator(self.normalizer)
        self.deviation = DeviationAnalyzer(self.normalizer, self.settings.tolerance_ratio)
        self.finance = FinancialCalculator(
            default_hourly_rate=self.settings.default_hourly_rate,
            overdue_after_days=self.settings.overdue_after_days,
            normalizer=self.normalizer,
        )

    # -----------------------------------------------------------------------
    # 1. Screening
    # -----------------------------------------------------------------------

    def screen_visits(
        self,
        visits: Sequence[VisitRecord],
        projects: Optional[Dict[str, Project]] = None,
        raise_on_reject: bool = False,
    ) -> Tuple[List[VisitRecord], DataQualityReport]:
        """
        Split visits into those fit for aggregation and a data-quality report.

        Unstaffed visits stay in (multiplier 1) unless the settings ask for
        rejection, in which case they are listed in ``rejected_visit_ids``.
        ``raise_on_reject`` turns the first rejection into UnstaffedVisitError.
        """
        accepted: List[VisitRecord] = []
        rejected: List[str] = []
        invalid = 0
        unstaffed = 0
        unresolved = 0

        for visit in visits:
            if not visit.personnel:
                unstaffed += 1
                logger.warning(f"Visit {visit.id} has no personnel", extra={"visit_id": visit.id})
                if self.settings.reject_unstaffed_visits:
                    if raise_on_reject:
                        raise UnstaffedVisitError(visit.id)
                    rejected.append(visit.id)
                    continue

            entry = self.normalizer.normalize(visit)
            if not entry.is_valid:
                invalid += 1
                tracking = visit.time_tracking
                logger.warning(
                    f"Visit {visit.id}: unusable time entry {','.join(entry.warnings)} "
                    f"(arrival {tracking.arrival_time}, end {tracking.end_time}, break {tracking.break_duration})",
                    extra={"visit_id": visit.id},
                )

            pid = visit.project_id
            if projects is not None and pid is not None and pid not in projects:
                unresolved += 1
                logger.warning(
                    f"Visit {visit.id} references unknown project {pid}",
                    extra={"visit_id": visit.id, "project_id": pid},
                )
            accepted.append(visit)

        return accepted, DataQualityReport(
            visit_count=len(visits),
            invalid_time_entries=invalid,
            unstaffed_visits=unstaffed,
            unresolved_project_refs=unresolved,
            rejected_visit_ids=tuple(rejected),
        )

    # -----------------------------------------------------------------------
    # 2. Periods
    # -----------------------------------------------------------------------

    def period_report(self, visits: Sequence[VisitRecord], key: str) -> PeriodReport:
        """Totals for ``visits`` labelled with ``key``; no date filtering here."""
        summary = self.finance.summarize(visits)
        invalid = sum(1 for v in visits if not self.normalizer.normalize(v).is_valid)
        return PeriodReport(
            period_key=key,
            total_hours=self.hours.total_team_hours(visits),
            total_cost=summary.total_cost,
            invoiced_amount=summary.invoiced_amount,
            pending_amount=summary.pending_amount,
            invoicing_rate_percent=summary.invoicing_rate_percent,
            visit_count=summary.visit_count,
            site_hours=self.hours.total_site_hours(visits),
            invalid_entry_count=invalid,
        )

    @timed("period_reports")
    def period_reports(self, visits: Sequence[VisitRecord], granularity: str) -> Tuple[PeriodReport, ...]:
        """One report per period that has visits, oldest first."""
        buckets: Dict[str, List[VisitRecord]] = {}
        for visit in visits:
            buckets.setdefault(period_key(visit.date, granularity), []).append(visit)
        return tuple(self.period_report(buckets[k], k) for k in sorted(buckets))

    def window_report(self, visits: Sequence[VisitRecord], anchor: date, granularity: str) -> PeriodReport:
        start, end = period_bounds(anchor, granularity)
        return self.period_report(self.hours.in_window(visits, start, end), period_key(anchor, granularity))

    @timed("period_comparison")
    def compare_periods(self, visits: Sequence[VisitRecord], granularity: str, today: date) -> PeriodComparison:
        """This week vs. last week, this month vs. last month, ..."""
        current = self.window_report(visits, today, granularity)
        prior = self.window_report(visits, prior_period_anchor(today, granularity), granularity)
        return PeriodComparison(
            granularity=granularity,
            current=current,
            prior=prior,
            hours_growth_percent=round(growth_percent(current.total_hours, prior.total_hours), PERCENT_PRECISION),
            visit_growth_percent=round(growth_percent(current.visit_count, prior.visit_count), PERCENT_PRECISION),
        )

    # -----------------------------------------------------------------------
    # 3. Breakdowns
    # -----------------------------------------------------------------------

    def _breakdown(self, dimension_id: str, label: str, visits: List[VisitRecord], hours: float, cost: float) -> DimensionBreakdown:
        return DimensionBreakdown(
            dimension_id=dimension_id,
            label=label,
            hours=round(hours, HOURS_PRECISION),
            cost=round(cost, MONEY_PRECISION),
            invoicing_rate_percent=self.finance.invoicing_rate(visits),
            visit_count=len(visits),
        )

    @timed("team_breakdown")
    def team_breakdown(
        self,
        visits: Sequence[VisitRecord],
        projects: Dict[str, Project],
        teams: Sequence[Team],
    ) -> Tuple[DimensionBreakdown, ...]:
        """
        Team-hours and crew cost per team, busiest first.

        Every known team appears, including idle ones. Teams referenced by a
        project but missing from the team list are appended, labelled by id.
        """
        labels: Dict[str, str] = {t.id: t.name for t in teams}
        for project in projects.values():
            if project.team and project.team not in labels:
                labels[project.team] = project.team

        grouped: Dict[str, List[VisitRecord]] = {tid: [] for tid in labels}
        for visit in visits:
            tid = team_of(visit, projects)
            if tid is not None:
                grouped[tid].append(visit)

        return _rank(
            self._breakdown(
                tid,
                labels[tid],
                group,
                sum(self.hours.team_hours(v) for v in group),
                sum(self.finance.cost(v) for v in group),
            )
            for tid, group in grouped.items()
        )

    @timed("personnel_breakdown")
    def personnel_breakdown(self, visits: Sequence[VisitRecord]) -> Tuple[DimensionBreakdown, ...]:
        """
        Hours per person, each credited the full visit duration, busiest first.
        Cost is the person's own share (hours × rate).
        """
        grouped: Dict[str, List[VisitRecord]] = {}
        for visit in visits:
            for person in dict.fromkeys(visit.personnel):
                grouped.setdefault(person, []).append(visit)

        return _rank(
            self._breakdown(
                person,
                person,
                group,
                sum(self.hours.site_hours(v) for v in group),
                sum(self.finance.person_cost(v) for v in group),
            )
            for person, group in grouped.items()
        )

    @timed("project_breakdown")
    def project_breakdown(
        self,
        visits: Sequence[VisitRecord],
        projects: Dict[str, Project],
    ) -> Tuple[DimensionBreakdown, ...]:
        grouped: Dict[str, List[VisitRecord]] = {pid: [] for pid in projects}
        for visit in visits:
            pid = visit.project_id
            if pid in grouped:
                grouped[pid].append(visit)

        return _rank(
            self._breakdown(
                pid,
                projects[pid].name or pid,
                group,
                sum(self.hours.team_hours(v) for v in group),
                sum(self.finance.cost(v) for v in group),
            )
            for pid, group in grouped.items()
        )

    # -----------------------------------------------------------------------
    # 4. Deviation
    # -----------------------------------------------------------------------

    @timed("project_deviations")
    def project_deviations(
        self,
        visits: Sequence[VisitRecord],
        projects: Iterable[Project],
    ) -> Tuple[ProjectDeviationSummary, ...]:
        by_project: Dict[str, List[VisitRecord]] = {}
        for visit in visits:
            if visit.project_id is not None:
                by_project.setdefault(visit.project_id, []).append(visit)
        return tuple(
            self.deviation.summarize(project, by_project.get(project.id, ()))
            for project in projects
        )

    def project_deviation(
        self,
        project_id: str,
        visits: Sequence[VisitRecord],
        projects: Dict[str, Project],
        exclude_visit_id: Optional[str] = None,
    ) -> ProjectDeviationSummary:
        project = projects.get(project_id)
        if project is None:
            raise UnknownProjectError(project_id)
        return self.deviation.summarize(project, visits, exclude_visit_id)

    # -----------------------------------------------------------------------
    # 5. Visit categories
    # -----------------------------------------------------------------------

    def category_summary(self, category: str, visits: Sequence[VisitRecord]) -> CategorySummary:
        summary = self.finance.summarize(visits)
        quoted_invoiced, quoted_pending = self.finance.quoted_amounts(visits)

        assignments: Dict[str, int] = {}
        for visit in visits:
            for person in dict.fromkeys(visit.personnel):
                assignments[person] = assignments.get(person, 0) + 1
        top = sorted(assignments.items(), key=lambda kv: kv[1], reverse=True)[:TOP_PERSONNEL_LIMIT]

        return CategorySummary(
            category=category,
            visit_count=summary.visit_count,
            site_hours=self.hours.total_site_hours(visits),
            team_hours=self.hours.total_team_hours(visits),
            total_cost=summary.total_cost,
            invoiced_amount=summary.invoiced_amount,
            pending_amount=summary.pending_amount,
            invoicing_rate_percent=summary.invoicing_rate_percent,
            quoted_invoiced_amount=quoted_invoiced,
            quoted_pending_amount=quoted_pending,
            top_personnel=tuple(top),
        )

    @timed("category_summaries")
    def category_summaries(self, visits: Sequence[VisitRecord]) -> Tuple[CategorySummary, CategorySummary]:
        """(project-linked, blank) — two independent summaries, same rules."""
        linked = [v for v in visits if not v.project.is_blank]
        blank = [v for v in visits if v.project.is_blank]
        return self.category_summary(CATEGORY_LINKED, linked), self.category_summary(CATEGORY_BLANK, blank)

    # -----------------------------------------------------------------------
    # 6. Planned vs. completed
    # -----------------------------------------------------------------------

    @staticmethod
    def _completion_rate(completed: float, planned: float) -> int:
        return int(round(percent(completed, planned)))

    @timed("team_completion")
    def team_completion(
        self,
        visits: Sequence[VisitRecord],
        projects: Dict[str, Project],
        teams: Sequence[Team],
    ) -> Tuple[TeamCompletion, ...]:
        """
        Planned annual visits/hours against completed site hours, per team,
        preceded by a company-wide row. The global row counts every visit,
        linked or not.
        """
        rows: List[TeamCompletion] = []
        all_projects = list(projects.values())
        all_planned = sum(p.annual_total_hours for p in all_projects)
        all_completed = self.hours.total_site_hours(visits)
        rows.append(TeamCompletion(
            team_id=GLOBAL_TEAM_ID,
            team_name=GLOBAL_TEAM_LABEL,
            project_count=len(all_projects),
            annual_visits=sum(p.annual_visits for p in all_projects),
            annual_hours=round(all_planned, HOURS_PRECISION),
            completed_hours=all_completed,
            completion_rate_percent=self._completion_rate(all_completed, all_planned),
        ))

        completed_by_team = self.hours.by_team(visits, projects, measure="site")
        for team in teams:
            team_projects = [p for p in all_projects if p.team == team.id]
            planned = sum(p.annual_total_hours for p in team_projects)
            completed = completed_by_team.get(team.id, 0.0)
            rows.append(TeamCompletion(
                team_id=team.id,
                team_name=team.name,
                project_count=len(team_projects),
                annual_visits=sum(p.annual_visits for p in team_projects),
                annual_hours=round(planned, HOURS_PRECISION),
                completed_hours=completed,
                completion_rate_percent=self._completion_rate(completed, planned),
            ))
        return tuple(rows)

    def global_progress_percent(self, visits: Sequence[VisitRecord], projects: Iterable[Project]) -> int:
        """Completed site hours over planned annual hours, capped at 100."""
        planned = sum(p.annual_total_hours for p in projects)
        return min(100, self._completion_rate(self.hours.total_site_hours(visits), planned))

    # -----------------------------------------------------------------------
    # 7. Year comparison
    # -----------------------------------------------------------------------

    @timed("year_comparison")
    def year_comparison(
        self,
        visits: Sequence[VisitRecord],
        year: int,
        compare_year: Optional[int] = None,
        project_id: Optional[str] = None,
    ) -> YearComparison:
        """Month-by-month visits and site hours for ``year`` against ``compare_year``."""
        compare_year = compare_year if compare_year is not None else year - 1
        current = self.hours.monthly_series(visits, year, project_id)
        previous = self.hours.monthly_series(visits, compare_year, project_id)

        visits_now = sum(p.visits for p in current)
        visits_then = sum(p.visits for p in previous)
        hours_now = round(sum(p.hours for p in current), HOURS_PRECISION)
        hours_then = round(sum(p.hours for p in previous), HOURS_PRECISION)

        return YearComparison(
            year=year,
            compare_year=compare_year,
            months=tuple(zip(current, previous)),
            visits=visits_now,
            compare_visits=visits_then,
            hours=hours_now,
            compare_hours=hours_then,
            visits_growth_percent=round(growth_percent(visits_now, visits_then), PERCENT_PRECISION),
            hours_growth_percent=round(growth_percent(hours_now, hours_then), PERCENT_PRECISION),
        )

    # -----------------------------------------------------------------------
    # 8. Inactivity
    # -----------------------------------------------------------------------

    @timed("inactivity_alerts")
    def inactivity_alerts(
        self,
        visits: Sequence[VisitRecord],
        projects: Dict[str, Project],
        today: date,
    ) -> Tuple[InactivityAlert, ...]:
        """
        Projects whose last visit is more than 14 days old, most urgent first,
        then longest gap first. Projects without any visit are not alerted.
        """
        last_seen: Dict[str, date] = {}
        counts: Dict[str, int] = {}
        for visit in visits:
            pid = visit.project_id
            if pid is None or pid not in projects:
                continue
            counts[pid] = counts.get(pid, 0) + 1
            if pid not in last_seen or visit.date > last_seen[pid]:
                last_seen[pid] = visit.date

        alerts: List[InactivityAlert] = []
        for pid, last in last_seen.items():
            days = days_since(last, today)
            urgency = inactivity_urgency(days)
            if urgency is None:
                continue
            alerts.append(InactivityAlert(
                project_id=pid,
                project_name=projects[pid].name or pid,
                last_visit_date=last,
                days_since_last_visit=days,
                visit_count=counts[pid],
                urgency=urgency,
            ))
        alerts.sort(key=lambda a: (_URGENCY_RANK[a.urgency], a.days_since_last_visit), reverse=True)
        return tuple(alerts)

    # -----------------------------------------------------------------------
    # 9. Dashboard
    # -----------------------------------------------------------------------

    @timed("dashboard")
    def dashboard(
        self,
        visits: Sequence[VisitRecord],
        projects: Sequence[Project],
        teams: Sequence[Team],
        today: date,
    ) -> DashboardSummary:
        project_index = {p.id: p for p in projects}
        accepted, quality = self.screen_visits(visits, project_index)
        linked, blank = self.category_summaries(accepted)

        return DashboardSummary(
            reference_date=today,
            totals=self.finance.summarize(accepted, today),
            team_hours=self.hours.total_team_hours(accepted),
            site_hours=self.hours.total_site_hours(accepted),
            global_progress_percent=self.global_progress_percent(accepted, projects),
            week=self.compare_periods(accepted, PERIOD_WEEK, today),
            month=self.compare_periods(accepted, PERIOD_MONTH, today),
            teams=self.team_breakdown(accepted, project_index, teams),
            personnel=self.personnel_breakdown(accepted),
            linked_visits=linked,
            blank_visits=blank,
            data_quality=quality,
        )
