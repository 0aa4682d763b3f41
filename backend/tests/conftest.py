"""
conftest.py — Shared pytest fixtures for the site-visit analytics test suite.

No database or external service fixtures are defined here. Engine tests are
pure unit tests over frozen records; API tests drive the FastAPI app through
an InMemoryRepository.

Import-path bootstrapping:
    The ``backend/`` directory is inserted into sys.path so that all
    ``sitelog.*`` imports resolve correctly regardless of where pytest is invoked.

Reference data (``today`` = Wednesday 2026-10-14, ISO week 2026-W42):

    Teams    T1 North crew, T2 South crew, T3 Idle crew (no projects)
    Projects P1 Riverside Gardens  T1  5.0 h/visit  12 visits  60 h/yr
             P2 Hilltop Park       T2 10.0 h/visit   6 visits  60 h/yr
             P3 Old Mill           T1  no target     0 visits   0 h/yr

    id  project  date        crew               times               hours  team-h  rate  cost  invoiced
    v1  P1       2026-10-12  Alice, Bob         08:00-16:00 −1.0h   7.0    14.0    45    630   yes
    v2  P1       2026-10-06  Alice              08:00-12:00         4.0     4.0    45    180   no
    v3  P2       2026-10-13  Bob, Carol, Dan    09:00-13:00 −00:30  3.5    10.5    50    525   no
    v4  blank    2026-10-14  Carol              10:00-12:00         2.0     2.0    45     90   no  (quote 300)
    v5  P3       2026-07-01  Alice              16:00-08:00 (bad)   0.0     0.0    45      0   no
"""

import sys
import os
from datetime import date

import pytest

# ---------------------------------------------------------------------------
# Ensure ``backend/`` is on the import path before any sitelog imports occur.
# ---------------------------------------------------------------------------
_BACKEND_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _BACKEND_DIR not in sys.path:
    sys.path.insert(0, _BACKEND_DIR)

from sitelog.config import EngineSettings  # noqa: E402
from sitelog.models.visit_models import ProjectLink, Project, Team, TimeTracking, VisitRecord  # noqa: E402

TODAY = date(2026, 10, 14)


def make_visit(
    visit_id,
    project_id=None,
    on=TODAY,
    personnel=("Alice",),
    arrival="08:00",
    end="16:00",
    break_duration=0.0,
    **kwargs,
):
    """Build a VisitRecord; ``project_id=None`` gives a blank worksheet."""
    link = ProjectLink.linked(project_id) if project_id else ProjectLink.blank()
    return VisitRecord(
        id=visit_id,
        project=link,
        date=on,
        personnel=tuple(personnel),
        time_tracking=TimeTracking(
            departure_time="07:30",
            arrival_time=arrival,
            end_time=end,
            break_duration=break_duration,
        ),
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Reference records
# ---------------------------------------------------------------------------

@pytest.fixture
def teams():
    return [Team("T1", "North crew"), Team("T2", "South crew"), Team("T3", "Idle crew")]


@pytest.fixture
def projects():
    return [
        Project("P1", "Riverside Gardens", team="T1", visit_duration=5.0, annual_visits=12, annual_total_hours=60.0),
        Project("P2", "Hilltop Park", team="T2", visit_duration=10.0, annual_visits=6, annual_total_hours=60.0),
        Project("P3", "Old Mill", team="T1"),
    ]


@pytest.fixture
def project_index(projects):
    return {p.id: p for p in projects}


@pytest.fixture
def visits():
    return [
        make_visit("v1", "P1", date(2026, 10, 12), ("Alice", "Bob"), break_duration=1.0, invoiced=True),
        make_visit("v2", "P1", date(2026, 10, 6), ("Alice",), end="12:00"),
        make_visit("v3", "P2", date(2026, 10, 13), ("Bob", "Carol", "Dan"),
                   arrival="09:00", end="13:00", break_duration="00:30", hourly_rate=50.0),
        make_visit("v4", None, date(2026, 10, 14), ("Carol",), arrival="10:00", end="12:00",
                   signed_quote_amount=300.0),
        make_visit("v5", "P3", date(2026, 7, 1), ("Alice",), arrival="16:00", end="08:00"),
    ]


# ---------------------------------------------------------------------------
# Engine fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def settings():
    """Defaults: 45/h, 10 % tolerance, overdue after 30 days, unstaffed kept."""
    return EngineSettings()


@pytest.fixture
def normalizer():
    from sitelog.services.time_entry_normalizer import TimeEntryNormalizer
    return TimeEntryNormalizer()


@pytest.fixture
def hours_aggregator(normalizer):
    from sitelog.services.hours_aggregator import HoursAggregator
    return HoursAggregator(normalizer)


@pytest.fixture
def deviation_analyzer(normalizer):
    from sitelog.services.deviation_analyzer import DeviationAnalyzer
    return DeviationAnalyzer(normalizer)


@pytest.fixture
def financial_calculator(normalizer):
    from sitelog.services.financial_calculator import FinancialCalculator
    return FinancialCalculator(default_hourly_rate=45.0, normalizer=normalizer)


@pytest.fixture
def report_aggregator(settings):
    from sitelog.services.report_aggregator import ReportAggregator
    return ReportAggregator(settings)


@pytest.fixture
def repository(projects, visits, teams, settings):
    from sitelog.services.repositories import InMemoryRepository
    return InMemoryRepository(projects=projects, visits=visits, teams=teams, settings=settings)


@pytest.fixture(autouse=True)
def reset_perf_tracker():
    """Counters are process-wide; start every test from zero."""
    from sitelog.services.perf_monitor import tracker
    tracker.reset()
    yield
    tracker.reset()
