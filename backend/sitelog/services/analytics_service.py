"""
Analytics service — repository snapshot → ReportAggregator → ReportCache.

The HTTP layer talks to this class only. Each call takes one atomic snapshot
of the repository, so a report never mixes collections from two versions.
"""
import logging
import threading
from datetime import date
from typing import Optional, Tuple

from sitelog.models.visit_models import (
    DIMENSION_PERSONNEL,
    DIMENSION_PROJECT,
    DIMENSION_TEAM,
    PERIOD_GRANULARITIES,
    CategorySummary,
    DashboardSummary,
    DataQualityReport,
    DimensionBreakdown,
    InactivityAlert,
    PeriodComparison,
    PeriodReport,
    ProjectDeviationSummary,
    TeamCompletion,
    YearComparison,
)
from sitelog.services.report_aggregator import ReportAggregator
from sitelog.services.report_cache import ReportCache, snapshot_fingerprint
from sitelog.services.repositories import RepositorySnapshot

logger = logging.getLogger("sitelog-analytics")

BREAKDOWN_DIMENSIONS = (DIMENSION_TEAM, DIMENSION_PERSONNEL, DIMENSION_PROJECT)


class AnalyticsService:

    def __init__(self, repository, cache: Optional[ReportCache] = None) -> None:
        self.repository = repository
        settings = repository.get_settings()
        self.cache = cache or ReportCache(enabled=settings.cache_enabled)
        self._aggregator = ReportAggregator(settings)
        self._settings_generation = 0
        self._lock = threading.Lock()

        subscribe = getattr(repository, "subscribe", None)
        if subscribe is not None:
            subscribe(self.cache.invalidate)
        else:
            logger.info("Repository has no change feed; caching by content fingerprint")

    # -----------------------------------------------------------------------
    # Plumbing
    # -----------------------------------------------------------------------

    def _current(self) -> Tuple[ReportAggregator, int]:
        """
        Aggregator for the repository's current settings, plus a generation
        counter that moves whenever those settings change.

        A settings change drops the cache; the generation is part of every
        cache token.
        """
        settings = self.repository.get_settings()
        with self._lock:
            if settings != self._aggregator.settings:
                self._aggregator = ReportAggregator(settings)
                self._settings_generation += 1
                self.cache.enabled = settings.cache_enabled
                self.cache.invalidate()
            return self._aggregator, self._settings_generation

    def _snapshot(self) -> Tuple[RepositorySnapshot, object]:
        take = getattr(self.repository, "snapshot", None)
        if take is not None:
            snap = take()
            return snap, ("v", snap.version)
        snap = RepositorySnapshot(
            version=-1,
            projects=tuple(self.repository.list_projects()),
            visits=tuple(self.repository.list_all_visits()),
            teams=tuple(self.repository.list_teams()),
        )
        return snap, ("f", snapshot_fingerprint(snap.visits, snap.projects, snap.teams))

    def _cached(self, report: str, params, compute):
        snap, token = self._snapshot()
        agg, generation = self._current()
        return self.cache.get_or_compute(report, params, (generation, token), lambda: compute(agg, snap))

    # -----------------------------------------------------------------------
    # Reports
    # -----------------------------------------------------------------------

    def dashboard(self, today: date) -> DashboardSummary:
        return self._cached(
            "dashboard", (today,),
            lambda agg, s: agg.dashboard(s.visits, s.projects, s.teams, today),
        )

    def data_quality(self) -> DataQualityReport:
        return self._cached(
            "data_quality", (),
            lambda agg, s: agg.screen_visits(s.visits, s.project_index())[1],
        )

    def period_reports(self, granularity: str) -> Tuple[PeriodReport, ...]:
        if granularity not in PERIOD_GRANULARITIES:
            raise ValueError(f"Unknown period granularity '{granularity}'")
        return self._cached(
            "period_reports", (granularity,),
            lambda agg, s: agg.period_reports(agg.screen_visits(s.visits)[0], granularity),
        )

    def compare_periods(self, granularity: str, today: date) -> PeriodComparison:
        if granularity not in PERIOD_GRANULARITIES:
            raise ValueError(f"Unknown period granularity '{granularity}'")
        return self._cached(
            "period_comparison", (granularity, today),
            lambda agg, s: agg.compare_periods(agg.screen_visits(s.visits)[0], granularity, today),
        )

    def breakdown(self, dimension: str) -> Tuple[DimensionBreakdown, ...]:
        if dimension not in BREAKDOWN_DIMENSIONS:
            raise ValueError(f"Unknown breakdown dimension '{dimension}'")

        def compute(agg: ReportAggregator, s: RepositorySnapshot):
            visits = agg.screen_visits(s.visits)[0]
            if dimension == DIMENSION_TEAM:
                return agg.team_breakdown(visits, s.project_index(), s.teams)
            if dimension == DIMENSION_PERSONNEL:
                return agg.personnel_breakdown(visits)
            return agg.project_breakdown(visits, s.project_index())

        return self._cached("breakdown", (dimension,), compute)

    def project_deviations(self) -> Tuple[ProjectDeviationSummary, ...]:
        return self._cached(
            "project_deviations", (),
            lambda agg, s: agg.project_deviations(agg.screen_visits(s.visits)[0], s.projects),
        )

    def project_deviation(self, project_id: str, exclude_visit_id: Optional[str] = None) -> ProjectDeviationSummary:
        return self._cached(
            "project_deviation", (project_id, exclude_visit_id),
            lambda agg, s: agg.project_deviation(
                project_id, agg.screen_visits(s.visits)[0], s.project_index(), exclude_visit_id,
            ),
        )

    def category_summaries(self) -> Tuple[CategorySummary, CategorySummary]:
        return self._cached(
            "category_summaries", (),
            lambda agg, s: agg.category_summaries(agg.screen_visits(s.visits)[0]),
        )

    def team_completion(self) -> Tuple[TeamCompletion, ...]:
        return self._cached(
            "team_completion", (),
            lambda agg, s: agg.team_completion(agg.screen_visits(s.visits)[0], s.project_index(), s.teams),
        )

    def year_comparison(self, year: int, compare_year: Optional[int] = None,
                        project_id: Optional[str] = None) -> YearComparison:
        return self._cached(
            "year_comparison", (year, compare_year, project_id),
            lambda agg, s: agg.year_comparison(agg.screen_visits(s.visits)[0], year, compare_year, project_id),
        )

    def inactivity_alerts(self, today: date) -> Tuple[InactivityAlert, ...]:
        return self._cached(
            "inactivity_alerts", (today,),
            lambda agg, s: agg.inactivity_alerts(agg.screen_visits(s.visits)[0], s.project_index(), today),
        )
