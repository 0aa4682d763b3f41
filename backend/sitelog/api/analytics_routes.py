"""
Analytics routes — read-only reports over site-visit worksheets.

Every handler is a thin shell over AnalyticsService; dataclass results are
flattened with dataclasses.asdict and validated by the response models.
Handlers are plain functions so report computation runs in the threadpool,
not on the event loop.
"""
import logging
from dataclasses import asdict
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query

from sitelog.api.deps import get_analytics_service, get_reference_date
from sitelog.models.report_schemas import (
    CategorySummariesOut,
    DashboardOut,
    DataQualityOut,
    DimensionBreakdownOut,
    InactivityAlertOut,
    PeriodComparisonOut,
    PeriodReportOut,
    ProjectDeviationSummaryOut,
    TeamCompletionOut,
    YearComparisonOut,
)
from sitelog.models.visit_models import UnknownProjectError
from sitelog.services.analytics_service import AnalyticsService

router = APIRouter(prefix="/api/analytics", tags=["Analytics"])
logger = logging.getLogger("sitelog-api")


def _unprocessable(exc: Exception) -> HTTPException:
    logger.info(f"Rejected analytics request: {exc}")
    return HTTPException(status_code=422, detail=str(exc))


@router.get("/dashboard", response_model=DashboardOut)
def get_dashboard(
    today: date = Depends(get_reference_date),
    service: AnalyticsService = Depends(get_analytics_service),
):
    """Headline totals, week/month comparisons, rankings and category split."""
    return asdict(service.dashboard(today))


@router.get("/data-quality", response_model=DataQualityOut)
def get_data_quality(service: AnalyticsService = Depends(get_analytics_service)):
    return asdict(service.data_quality())


@router.get("/periods", response_model=List[PeriodReportOut])
def get_period_reports(
    granularity: str = Query("week", description="week | month | year"),
    service: AnalyticsService = Depends(get_analytics_service),
):
    try:
        return [asdict(r) for r in service.period_reports(granularity)]
    except ValueError as e:
        raise _unprocessable(e)


@router.get("/periods/compare", response_model=PeriodComparisonOut)
def compare_periods(
    granularity: str = Query("week", description="week | month | year"),
    today: date = Depends(get_reference_date),
    service: AnalyticsService = Depends(get_analytics_service),
):
    """Current period containing `today` vs. the one immediately before it."""
    try:
        return asdict(service.compare_periods(granularity, today))
    except ValueError as e:
        raise _unprocessable(e)


@router.get("/breakdown/{dimension}", response_model=List[DimensionBreakdownOut])
def get_breakdown(
    dimension: str = Path(..., description="team | personnel | project"),
    service: AnalyticsService = Depends(get_analytics_service),
):
    """Ranked by hours, descending. Ties keep input order."""
    try:
        return [asdict(r) for r in service.breakdown(dimension)]
    except ValueError as e:
        raise _unprocessable(e)


@router.get("/projects/deviations", response_model=List[ProjectDeviationSummaryOut])
def get_project_deviations(service: AnalyticsService = Depends(get_analytics_service)):
    return [asdict(r) for r in service.project_deviations()]


@router.get("/projects/{project_id}/deviation", response_model=ProjectDeviationSummaryOut)
def get_project_deviation(
    project_id: str,
    exclude_visit_id: Optional[str] = Query(None, description="Leave this visit out of the history (editing a visit)"),
    service: AnalyticsService = Depends(get_analytics_service),
):
    try:
        return asdict(service.project_deviation(project_id, exclude_visit_id))
    except UnknownProjectError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/categories", response_model=CategorySummariesOut)
def get_category_summaries(service: AnalyticsService = Depends(get_analytics_service)):
    """Project-linked vs. blank worksheets."""
    linked, blank = service.category_summaries()
    return {"linked_visits": asdict(linked), "blank_visits": asdict(blank)}


@router.get("/teams/completion", response_model=List[TeamCompletionOut])
def get_team_completion(service: AnalyticsService = Depends(get_analytics_service)):
    return [asdict(r) for r in service.team_completion()]


@router.get("/yearly", response_model=YearComparisonOut)
def get_year_comparison(
    year: int = Query(..., ge=1, le=9999),
    compare_year: Optional[int] = Query(None, ge=1, le=9999, description="Defaults to year - 1"),
    project_id: Optional[str] = Query(None),
    service: AnalyticsService = Depends(get_analytics_service),
):
    return asdict(service.year_comparison(year, compare_year, project_id))


@router.get("/alerts/inactivity", response_model=List[InactivityAlertOut])
def get_inactivity_alerts(
    today: date = Depends(get_reference_date),
    service: AnalyticsService = Depends(get_analytics_service),
):
    """Projects whose last visit is 14+ days old, most stale first."""
    return [asdict(r) for r in service.inactivity_alerts(today)]
