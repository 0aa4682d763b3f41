"""FastAPI dependency injection — analytics service and reference date."""
from datetime import date
from typing import Optional

from fastapi import HTTPException, Query, Request, status

from sitelog.services.analytics_service import AnalyticsService


def get_analytics_service(request: Request) -> AnalyticsService:
    service = getattr(request.app.state, "analytics", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Analytics service not configured",
        )
    return service


def get_reference_date(
    today: Optional[date] = Query(None, description="Reference date (YYYY-MM-DD); defaults to the server's local date"),
) -> date:
    """The only place a report's 'today' is read from the clock."""
    return today or date.today()
