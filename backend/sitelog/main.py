"""
Site-visit analytics API.
FastAPI shell over the reporting engine: dashboard totals, period and
breakdown reports, project deviation, team completion and inactivity alerts.
"""
import os
import logging
import time
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI

from sitelog.api.analytics_routes import router as analytics_router
from sitelog.models.report_schemas import MetricsOut
from sitelog.services.analytics_service import AnalyticsService
from sitelog.services.logging_config import setup_logging
from sitelog.services.middleware import RequestTimingMiddleware
from sitelog.services.perf_monitor import tracker as perf_tracker
from sitelog.services.repositories import InMemoryRepository

load_dotenv()

_log_level = os.getenv("LOG_LEVEL", "INFO")
_json_logs = os.getenv("LOG_FORMAT", "json").lower() != "text"
setup_logging(level=_log_level, json_output=_json_logs, engine_level=os.getenv("SITELOG_ENGINE_LOG_LEVEL"))
logger = logging.getLogger("sitelog-api")

_PROCESS_START = time.monotonic()

VERSION = "1.0.0"


def create_app(repository=None) -> FastAPI:
    """
    Build the API around ``repository``.

    Any object satisfying the read contracts in services.repositories works;
    with none given, an empty InMemoryRepository is used (dev mode).
    """
    if repository is None:
        logger.warning("No repository supplied — serving an empty in-memory store (dev mode)")
        repository = InMemoryRepository()

    app = FastAPI(
        title="Site Visit Analytics API",
        version=VERSION,
        description="Hours, cost, invoicing and deviation reports over site-visit worksheets",
    )
    app.state.analytics = AnalyticsService(repository)

    app.add_middleware(RequestTimingMiddleware)
    app.include_router(analytics_router)

    @app.get("/health")
    async def health_check():
        return {
            "status": "active",
            "version": VERSION,
            "cache_enabled": app.state.analytics.cache.enabled,
        }

    @app.get("/metrics", response_model=MetricsOut)
    async def metrics():
        """
        Report timings and cache effectiveness, from the in-process tracker.
        """
        snapshot = perf_tracker.get_metrics()
        snapshot["uptime_seconds"] = round(time.monotonic() - _PROCESS_START, 1)
        snapshot["cached_reports"] = len(app.state.analytics.cache)
        return snapshot

    return app


app = create_app()
