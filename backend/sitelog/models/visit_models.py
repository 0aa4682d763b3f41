"""
Domain records for the site-visit analytics engine.

Input records (VisitRecord, Project, Team) are frozen snapshots handed over by
the repository layer. Everything else in this module is a derived value built
fresh on each engine call and never persisted.
"""
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Optional, Union

from sitelog.config import BLANK_ID_PREFIXES


# ---------------------------------------------------------------------------
# Codes
# ---------------------------------------------------------------------------

# ProjectLink.kind
LINK_LINKED = "LINKED"
LINK_BLANK = "BLANK"

# DeviationResult.classification
NO_HISTORY = "NO_HISTORY"            # no visits recorded yet, nothing to compare
NO_TARGET = "NO_TARGET"              # project has no contractual visit duration
NO_DEVIATION = "NO_DEVIATION"
WITHIN_TOLERANCE = "WITHIN_TOLERANCE"
AHEAD = "AHEAD"                      # finishing faster than planned
BEHIND = "BEHIND"                    # visits running long

# Period granularities
PERIOD_WEEK = "week"
PERIOD_MONTH = "month"
PERIOD_YEAR = "year"
PERIOD_GRANULARITIES = (PERIOD_WEEK, PERIOD_MONTH, PERIOD_YEAR)

# Breakdown dimensions
DIMENSION_TEAM = "team"
DIMENSION_PERSONNEL = "personnel"
DIMENSION_PROJECT = "project"

# Visit categories
CATEGORY_LINKED = "project_linked"
CATEGORY_BLANK = "blank"

# Inactivity urgency levels, most urgent first
URGENCY_CRITICAL = "critical"
URGENCY_DANGER = "danger"
URGENCY_WARNING = "warning"


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class AnalyticsError(ValueError):
    """Caller contract violation the engine cannot recover from."""


class UnknownProjectError(AnalyticsError):
    def __init__(self, project_id: str):
        super().__init__(f"Project '{project_id}' cannot be resolved")
        self.project_id = project_id


class UnstaffedVisitError(AnalyticsError):
    def __init__(self, visit_id: str):
        super().__init__(f"Visit '{visit_id}' has no personnel and strict screening is enabled")
        self.visit_id = visit_id


# ---------------------------------------------------------------------------
# Input records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ProjectLink:
    """Explicit discriminant for project-linked vs. unlinked ("blank") visits."""
    kind: str
    project_id: Optional[str] = None

    @property
    def is_blank(self) -> bool:
        return self.kind == LINK_BLANK

    @classmethod
    def linked(cls, project_id: str) -> "ProjectLink":
        return cls(kind=LINK_LINKED, project_id=project_id)

    @classmethod
    def blank(cls) -> "ProjectLink":
        return cls(kind=LINK_BLANK)


def project_link_from_identifier(
    project_id: Optional[str],
    blank_prefixes: tuple = BLANK_ID_PREFIXES,
) -> ProjectLink:
    """
    Translate a legacy ``projectId`` string into a ProjectLink.

    Empty ids and ids carrying a blank-worksheet prefix become BLANK links.
    """
    if not project_id:
        return ProjectLink.blank()
    if any(project_id.startswith(prefix) for prefix in blank_prefixes):
        return ProjectLink.blank()
    return ProjectLink.linked(project_id)


@dataclass(frozen=True)
class TimeTracking:
    departure_time: Optional[str] = None     # display only
    arrival_time: Optional[str] = None
    end_time: Optional[str] = None
    break_duration: Union[float, int, str, None] = 0.0   # decimal hours or "HH:MM"
    total_hours: Optional[float] = None      # cached, re-derived by the normalizer


@dataclass(frozen=True)
class VisitRecord:
    id: str
    project: ProjectLink
    date: date
    personnel: tuple = ()
    time_tracking: TimeTracking = field(default_factory=TimeTracking)
    hourly_rate: Optional[float] = None
    invoiced: bool = False
    signed_quote_amount: Optional[float] = None
    tasks_performed: Optional[dict] = field(default=None, compare=False, hash=False)

    @property
    def project_id(self) -> Optional[str]:
        return None if self.project.is_blank else self.project.project_id

    @property
    def personnel_multiplier(self) -> int:
        # Unstaffed rows keep their hours; screening reports them separately
        return max(1, len(set(self.personnel)))

    def with_time_tracking(self, **changes) -> "VisitRecord":
        """Explicit update path; returns a new record."""
        return replace(self, time_tracking=replace(self.time_tracking, **changes))


@dataclass(frozen=True)
class Project:
    id: str
    name: str = ""
    team: Optional[str] = None
    visit_duration: Optional[float] = None   # contractual hours per visit
    annual_visits: int = 0
    annual_total_hours: float = 0.0


@dataclass(frozen=True)
class Team:
    id: str
    name: str


# ---------------------------------------------------------------------------
# Derived values
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class NormalizedEntry:
    visit_id: str
    total_hours: float
    is_valid: bool = True
    warnings: tuple = ()

    @property
    def hundredths(self) -> int:
        """Total hours as an exact integer count of hundredths of an hour."""
        return int(round(self.total_hours * 100))


@dataclass(frozen=True)
class DeviationResult:
    classification: str
    number_of_visits: int = 0
    average_hours_per_visit: Optional[float] = None
    deviation_hours: Optional[float] = None

    @property
    def has_history(self) -> bool:
        return self.classification != NO_HISTORY


@dataclass(frozen=True)
class ProjectDeviationSummary:
    project_id: str
    average_hours_per_visit: Optional[float]
    deviation_hours: Optional[float]
    classification: str
    number_of_visits: int = 0
    visit_duration: Optional[float] = None


@dataclass(frozen=True)
class PeriodReport:
    period_key: str
    total_hours: float                 # team-hours (hours × personnel)
    total_cost: float
    invoiced_amount: float
    pending_amount: float
    invoicing_rate_percent: float
    visit_count: int
    site_hours: float = 0.0            # sum of per-visit totalHours
    invalid_entry_count: int = 0


@dataclass(frozen=True)
class DimensionBreakdown:
    dimension_id: str
    label: str
    hours: float
    cost: float
    invoicing_rate_percent: float
    visit_count: int = 0


@dataclass(frozen=True)
class PeriodComparison:
    granularity: str
    current: PeriodReport
    prior: PeriodReport
    hours_growth_percent: float
    visit_growth_percent: float


@dataclass(frozen=True)
class FinancialSummary:
    visit_count: int
    invoiced_count: int
    total_cost: float
    invoiced_amount: float
    pending_amount: float
    invoicing_rate_percent: float
    overdue_count: int = 0


@dataclass(frozen=True)
class CategorySummary:
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
    top_personnel: tuple = ()          # ((name, assignment_count), ...)


@dataclass(frozen=True)
class MonthlyPoint:
    month: int
    visits: int
    hours: float


@dataclass(frozen=True)
class YearComparison:
    year: int
    compare_year: int
    months: tuple                      # ((MonthlyPoint current, MonthlyPoint compare), ...)
    visits: int
    compare_visits: int
    hours: float
    compare_hours: float
    visits_growth_percent: float
    hours_growth_percent: float


@dataclass(frozen=True)
class TeamCompletion:
    team_id: str
    team_name: str
    project_count: int
    annual_visits: int
    annual_hours: float
    completed_hours: float
    completion_rate_percent: int


@dataclass(frozen=True)
class InactivityAlert:
    project_id: str
    project_name: str
    last_visit_date: date
    days_since_last_visit: int
    visit_count: int
    urgency: str


@dataclass(frozen=True)
class DataQualityReport:
    visit_count: int
    invalid_time_entries: int = 0
    unstaffed_visits: int = 0
    unresolved_project_refs: int = 0
    rejected_visit_ids: tuple = ()


@dataclass(frozen=True)
class DashboardSummary:
    reference_date: date
    totals: FinancialSummary
    team_hours: float
    site_hours: float
    global_progress_percent: int
    week: PeriodComparison
    month: PeriodComparison
    teams: tuple
    personnel: tuple
    linked_visits: CategorySummary
    blank_visits: CategorySummary
    data_quality: DataQualityReport
