from datetime import date
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field


class ProjectDeviationSummaryOut(BaseModel):
    """Historical average vs. contractual duration for one project."""
    project_id: str
    average_hours_per_visit: Optional[float] = Field(None, description="None when the project has no history")
    deviation_hours: Optional[float] = Field(None, description="Positive = faster than planned")
    classification: str = Field(..., description="NO_HISTORY | NO_TARGET | NO_DEVIATION | WITHIN_TOLERANCE | AHEAD | BEHIND")
    number_of_visits: int = 0
    visit_duration: Optional[float] = None


class PeriodReportOut(BaseModel):
    period_key: str = Field(..., description="e.g. 2026-W42, 2026-10, 2026")
    total_hours: float = Field(..., description="Team-hours (hours × personnel)")
    total_cost: float
    invoiced_amount: float
    pending_amount: float
    invoicing_rate_percent: float
    visit_count: int
    site_hours: float = 0.0
    invalid_entry_count: int = 0


class DimensionBreakdownOut(BaseModel):
    dimension_id: str
    label: str
    hours: float
    cost: float
    invoicing_rate_percent: float
    visit_count: int = 0


class PeriodComparisonOut(BaseModel):
    granularity: str
    current: PeriodReportOut
    prior: PeriodReportOut
    hours_growth_percent: float
    visit_growth_percent: float


class FinancialSummaryOut(BaseModel):
    visit_count: int
    invoiced_count: int
    total_cost: float
    invoiced_amount: float
    pending_amount: float
    invoicing_rate_percent: float
    overdue_count: int = 0


class CategorySummaryOut(BaseModel):
    category: str
    visit_count: int
    site_hours: float
    team_hours: float
    total_cost: float
    invoiced_amount: float
    pending_amount: float
    invoicing_rate_percent: float
    quoted_invoiced_amount: float = 0.0
    quoted_pending_amount: float = 0.0
    top_personnel: List[Tuple[str, int]] = Field(default_factory=list)


class CategorySummariesOut(BaseModel):
    linked_visits: CategorySummaryOut
    blank_visits: CategorySummaryOut


class MonthlyPointOut(BaseModel):
    month: int
    visits: int
    hours: float


class YearComparisonOut(BaseModel):
    year: int
    compare_year: int
    months: List[Tuple[MonthlyPointOut, MonthlyPointOut]]
    visits: int
    compare_visits: int
    hours: float
    compare_hours: float
    visits_growth_percent: float
    hours_growth_percent: float


class TeamCompletionOut(BaseModel):
    team_id: str
    team_name: str
    project_count: int
    annual_visits: int
    annual_hours: float
    completed_hours: float
    completion_rate_percent: int


class InactivityAlertOut(BaseModel):
    project_id: str
    project_name: str
    last_visit_date: date
    days_since_last_visit: int
    visit_count: int
    urgency: str


class DataQualityOut(BaseModel):
    visit_count: int
    invalid_time_entries: int = 0
    unstaffed_visits: int = 0
    unresolved_project_refs: int = 0
    rejected_visit_ids: List[str] = Field(default_factory=list)


class DashboardOut(BaseModel):
    reference_date: date
    totals: FinancialSummaryOut
    team_hours: float
    site_hours: float
    global_progress_percent: int
    week: PeriodComparisonOut
    month: PeriodComparisonOut
    teams: List[DimensionBreakdownOut]
    personnel: List[DimensionBreakdownOut]
    linked_visits: CategorySummaryOut
    blank_visits: CategorySummaryOut
    data_quality: DataQualityOut


class MetricsOut(BaseModel):
    uptime_seconds: float
    cached_reports: int
    reports_computed: int
    report_avg_ms: Dict[str, float]
    report_max_ms: Dict[str, float]
    slowest_report: Optional[str]
    slowest_report_ms: float
    cache_hits: int
    cache_misses: int
    cache_hit_rate_pct: float
    cache_invalidations: int
