"""
test_report_aggregator.py — Unit tests for dashboard and export reports.

Tests cover:
  - screen_visits: data-quality counters, optional unstaffed rejection
  - Period reports and week/month comparisons around a fixed ``today``
  - Team / personnel / project rankings (idle teams included, stable ties)
  - Linked vs. blank category summaries
  - Team completion table and capped global progress
  - Year comparison and inactivity alerts
  - Dashboard composition

All figures trace back to the reference data documented in conftest.py.
"""

import logging
from datetime import date

import pytest

from sitelog.config import EngineSettings
from sitelog.models.visit_models import (
    AHEAD,
    NO_TARGET,
    URGENCY_CRITICAL,
    URGENCY_DANGER,
    URGENCY_WARNING,
    WITHIN_TOLERANCE,
    Project,
    UnknownProjectError,
    UnstaffedVisitError,
)
from sitelog.services.perf_monitor import tracker
from sitelog.services.report_aggregator import GLOBAL_TEAM_ID, ReportAggregator, inactivity_urgency
from conftest import TODAY, make_visit


# ===========================================================================
# Class 1: Screening
# ===========================================================================

class TestScreening:

    def test_reference_quality(self, report_aggregator, visits, project_index):
        accepted, quality = report_aggregator.screen_visits(visits, project_index)
        assert len(accepted) == 5
        assert quality.visit_count == 5
        assert quality.invalid_time_entries == 1
        assert quality.unstaffed_visits == 0
        assert quality.unresolved_project_refs == 0

    def test_unresolved_and_unstaffed_kept_by_default(self, report_aggregator, project_index):
        records = [make_visit("x", "P404"), make_visit("y", "P1", personnel=())]
        accepted, quality = report_aggregator.screen_visits(records, project_index)
        assert [v.id for v in accepted] == ["x", "y"]
        assert quality.unresolved_project_refs == 1
        assert quality.unstaffed_visits == 1
        assert quality.rejected_visit_ids == ()

    def test_unstaffed_rejected_when_configured(self):
        aggregator = ReportAggregator(EngineSettings(reject_unstaffed_visits=True))
        records = [make_visit("x", "P1"), make_visit("y", "P1", personnel=())]
        accepted, quality = aggregator.screen_visits(records)
        assert [v.id for v in accepted] == ["x"]
        assert quality.rejected_visit_ids == ("y",)
        with pytest.raises(UnstaffedVisitError):
            aggregator.screen_visits(records, raise_on_reject=True)


# ===========================================================================
# Class 2: Periods
# ===========================================================================

class TestPeriods:

    def test_weekly_reports_oldest_first(self, report_aggregator, visits):
        reports = report_aggregator.period_reports(visits, "week")
        assert [r.period_key for r in reports] == ["2026-W27", "2026-W41", "2026-W42"]
        w42 = reports[-1]
        assert w42.total_hours == 26.5
        assert w42.site_hours == 12.5
        assert w42.visit_count == 3
        assert w42.total_cost == 1245.0

    def test_invalid_entry_still_counted(self, report_aggregator, visits):
        """v5 has end < arrival: 0 h, flagged, but still one visit in its week."""
        w27 = report_aggregator.period_reports(visits, "week")[0]
        assert w27.visit_count == 1
        assert w27.total_hours == 0.0
        assert w27.invalid_entry_count == 1

    def test_week_comparison(self, report_aggregator, visits):
        """This week 26.5 team-hours over 3 visits, last week 4.0 over 1 → +562.5 %, +200 %."""
        comparison = report_aggregator.compare_periods(visits, "week", TODAY)
        assert comparison.current.period_key == "2026-W42"
        assert comparison.prior.period_key == "2026-W41"
        assert comparison.hours_growth_percent == 562.5
        assert comparison.visit_growth_percent == 200.0

    def test_month_comparison_without_prior(self, report_aggregator, visits):
        comparison = report_aggregator.compare_periods(visits, "month", TODAY)
        assert comparison.current.total_hours == 30.5
        assert comparison.prior.visit_count == 0
        assert comparison.prior.invoicing_rate_percent == 0.0
        assert comparison.hours_growth_percent == 0.0

    def test_timing_recorded(self, report_aggregator, visits):
        report_aggregator.period_reports(visits, "month")
        assert tracker.get_metrics()["reports_computed"] == 1
        assert "period_reports" in tracker.get_metrics()["report_avg_ms"]


# ===========================================================================
# Class 3: Breakdowns
# ===========================================================================

class TestBreakdowns:

    def test_team_breakdown_includes_idle_team(self, report_aggregator, visits, project_index, teams):
        rows = report_aggregator.team_breakdown(visits, project_index, teams)
        assert [r.dimension_id for r in rows] == ["T1", "T2", "T3"]
        t1, t2, t3 = rows
        assert (t1.hours, t1.cost, t1.visit_count, t1.invoicing_rate_percent) == (18.0, 810.0, 3, 33.33)
        assert (t2.hours, t2.cost, t2.label) == (10.5, 525.0, "South crew")
        assert (t3.hours, t3.visit_count, t3.invoicing_rate_percent) == (0.0, 0, 0.0)

    def test_personnel_ranking(self, report_aggregator, visits):
        rows = report_aggregator.personnel_breakdown(visits)
        assert [(r.label, r.hours) for r in rows] == [
            ("Alice", 11.0), ("Bob", 10.5), ("Carol", 5.5), ("Dan", 3.5),
        ]
        assert rows[0].cost == 495.0

    def test_ties_keep_input_order(self, report_aggregator):
        records = [make_visit("a", "P1", personnel=("Zoe",)), make_visit("b", "P1", personnel=("Adam",))]
        assert [r.label for r in report_aggregator.personnel_breakdown(records)] == ["Zoe", "Adam"]

    def test_project_breakdown(self, report_aggregator, visits, project_index):
        rows = report_aggregator.project_breakdown(visits, project_index)
        assert [(r.dimension_id, r.label, r.hours) for r in rows] == [
            ("P1", "Riverside Gardens", 18.0), ("P2", "Hilltop Park", 10.5), ("P3", "Old Mill", 0.0),
        ]


# ===========================================================================
# Class 4: Deviation
# ===========================================================================

class TestDeviationReports:

    def test_project_deviations(self, report_aggregator, visits, projects):
        rows = report_aggregator.project_deviations(visits, projects)
        assert [r.classification for r in rows] == [WITHIN_TOLERANCE, AHEAD, NO_TARGET]

    def test_single_project_with_exclusion(self, report_aggregator, visits, project_index):
        """Without v2 (4 h) P1 averages 7 h against 5 h → −2.0."""
        row = report_aggregator.project_deviation("P1", visits, project_index, exclude_visit_id="v2")
        assert row.number_of_visits == 1
        assert row.deviation_hours == -2.0

    def test_unknown_project(self, report_aggregator, visits, project_index):
        with pytest.raises(UnknownProjectError) as exc:
            report_aggregator.project_deviation("P404", visits, project_index)
        assert exc.value.project_id == "P404"


# ===========================================================================
# Class 5: Categories
# ===========================================================================

class TestCategories:

    def test_linked_and_blank_kept_apart(self, report_aggregator, visits):
        linked, blank = report_aggregator.category_summaries(visits)
        assert linked.visit_count == 4
        assert linked.site_hours == 14.5
        assert linked.team_hours == 28.5
        assert linked.total_cost == 1335.0
        assert linked.invoicing_rate_percent == 25.0
        assert linked.top_personnel == (("Alice", 3), ("Bob", 2), ("Carol", 1), ("Dan", 1))

        assert blank.visit_count == 1
        assert blank.total_cost == 90.0
        assert blank.quoted_pending_amount == 300.0
        assert blank.quoted_invoiced_amount == 0.0

    def test_empty_category(self, report_aggregator):
        linked, blank = report_aggregator.category_summaries([make_visit("a", "P1")])
        assert blank.visit_count == 0
        assert blank.invoicing_rate_percent == 0.0
        assert blank.top_personnel == ()


# ===========================================================================
# Class 6: Completion and progress
# ===========================================================================

class TestCompletion:

    def test_team_completion(self, report_aggregator, visits, project_index, teams):
        """
        Global: 16.5 of 120 planned hours → 13.75 % → 14.
        T1: 11.0 of 60 → 18. T2: 3.5 of 60 → 6. T3: nothing planned → 0.
        """
        rows = report_aggregator.team_completion(visits, project_index, teams)
        assert [r.team_id for r in rows] == [GLOBAL_TEAM_ID, "T1", "T2", "T3"]
        assert [r.completion_rate_percent for r in rows] == [14, 18, 6, 0]
        assert rows[0].annual_visits == 18
        assert rows[1].project_count == 2
        assert rows[3].annual_hours == 0.0

    def test_global_progress_capped(self, report_aggregator):
        projects = [Project("P1", annual_total_hours=4.0)]
        records = [make_visit("a", "P1"), make_visit("b", "P1")]
        assert report_aggregator.global_progress_percent(records, projects) == 100

    def test_global_progress_without_plan(self, report_aggregator, visits):
        assert report_aggregator.global_progress_percent(visits, []) == 0


# ===========================================================================
# Class 7: Year comparison and inactivity
# ===========================================================================

class TestYearComparison:

    def test_defaults_to_previous_year(self, report_aggregator, visits):
        result = report_aggregator.year_comparison(visits, 2026)
        assert result.compare_year == 2025
        assert (result.visits, result.compare_visits) == (5, 0)
        assert result.hours == 16.5
        assert result.visits_growth_percent == 0.0
        assert len(result.months) == 12
        october_now, october_then = result.months[9]
        assert (october_now.visits, october_then.visits) == (4, 0)

    def test_growth_against_explicit_year(self, report_aggregator):
        records = [
            make_visit("a", "P1", on=date(2025, 3, 2)),
            make_visit("b", "P1", on=date(2026, 3, 2)),
            make_visit("c", "P1", on=date(2026, 4, 2)),
        ]
        result = report_aggregator.year_comparison(records, 2026, compare_year=2025)
        assert result.visits_growth_percent == 100.0
        assert result.hours_growth_percent == 100.0


class TestInactivity:

    @pytest.mark.parametrize("days,expected", [
        (14, None), (15, URGENCY_WARNING), (30, URGENCY_WARNING),
        (31, URGENCY_DANGER), (90, URGENCY_DANGER), (91, URGENCY_CRITICAL),
    ])
    def test_urgency_bands(self, days, expected):
        assert inactivity_urgency(days) == expected

    def test_reference_alerts(self, report_aggregator, visits, project_index):
        alerts = report_aggregator.inactivity_alerts(visits, project_index, TODAY)
        assert len(alerts) == 1
        assert alerts[0].project_id == "P3"
        assert alerts[0].days_since_last_visit == 105
        assert alerts[0].urgency == URGENCY_CRITICAL

    def test_most_urgent_first(self, report_aggregator, project_index):
        records = [
            make_visit("a", "P1", on=date(2026, 9, 20)),
            make_visit("b", "P2", on=date(2026, 6, 1)),
        ]
        alerts = report_aggregator.inactivity_alerts(records, project_index, TODAY)
        assert [a.project_id for a in alerts] == ["P2", "P1"]
        assert [a.urgency for a in alerts] == [URGENCY_CRITICAL, URGENCY_WARNING]


# ===========================================================================
# Class 8: Dashboard
# ===========================================================================

class TestDashboard:

    def test_reference_dashboard(self, report_aggregator, visits, projects, teams):
        dash = report_aggregator.dashboard(visits, projects, teams, TODAY)
        assert dash.reference_date == TODAY
        assert dash.team_hours == 30.5
        assert dash.site_hours == 16.5
        assert dash.totals.total_cost == 1425.0
        assert dash.totals.overdue_count == 1
        assert dash.global_progress_percent == 14
        assert dash.week.current.period_key == "2026-W42"
        assert dash.month.current.period_key == "2026-10"
        assert dash.teams[0].dimension_id == "T1"
        assert dash.personnel[0].label == "Alice"
        assert dash.linked_visits.visit_count + dash.blank_visits.visit_count == 5
        assert dash.data_quality.invalid_time_entries == 1

    def test_repeatable(self, report_aggregator, visits, projects, teams):
        first = report_aggregator.dashboard(tuple(visits), projects, teams, TODAY)
        second = report_aggregator.dashboard(tuple(visits), projects, teams, TODAY)
        assert first == second

    def test_bad_entry_logged_once(self, report_aggregator, visits, projects, teams, caplog):
        with caplog.at_level(logging.WARNING, logger="sitelog-analytics"):
            report_aggregator.dashboard(visits, projects, teams, TODAY)
        v5 = [r for r in caplog.records if getattr(r, "visit_id", None) == "v5"]
        assert len(v5) == 1
        assert "INVERTED_RANGE" in v5[0].getMessage()

    def test_empty_inputs(self, report_aggregator):
        dash = report_aggregator.dashboard([], [], [], TODAY)
        assert dash.totals.invoicing_rate_percent == 0.0
        assert dash.week.hours_growth_percent == 0.0
        assert dash.teams == ()
        assert dash.global_progress_percent == 0
