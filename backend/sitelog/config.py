"""
Analytics engine configuration — single source of truth for rates,
tolerance bands, overdue/inactivity thresholds and legacy identifier rules.

Import from here in all services rather than hardcoding values.
"""
from __future__ import annotations

import os
from typing import Any, Optional

from pydantic import BaseModel, Field


# ── Rates ──────────────────────────────────────────────────────────────────────

# Applied when a visit record carries no hourly rate of its own
DEFAULT_HOURLY_RATE: float = 45.0


# ── Deviation ──────────────────────────────────────────────────────────────────

# |deviation| <= ratio × contractual visit duration counts as within tolerance
DEVIATION_TOLERANCE_RATIO: float = 0.10


# ── Invoicing & activity thresholds (days) ─────────────────────────────────────

OVERDUE_INVOICE_DAYS: int = 30

INACTIVITY_WARNING_DAYS: int = 14
INACTIVITY_DANGER_DAYS: int = 30
INACTIVITY_CRITICAL_DAYS: int = 90


# ── Precision ──────────────────────────────────────────────────────────────────

HOURS_PRECISION: int = 2
MONEY_PRECISION: int = 2
PERCENT_PRECISION: int = 2


# ── Request tracing ────────────────────────────────────────────────────────────

SLOW_REPORT_MS: float = 500.0


# ── Report cache ───────────────────────────────────────────────────────────────

REPORT_CACHE_MAX_ENTRIES: int = 256


# ── Legacy identifiers ─────────────────────────────────────────────────────────
# Older rows mark unlinked ("blank") worksheets by an id prefix instead of a
# discriminant. Only project_link_from_identifier() reads these.
BLANK_ID_PREFIXES: tuple[str, ...] = ("blank-", "DZFV")


# ── Environment variable names ─────────────────────────────────────────────────

ENV_DEFAULT_HOURLY_RATE = "SITELOG_DEFAULT_HOURLY_RATE"
ENV_TOLERANCE_RATIO = "SITELOG_TOLERANCE_RATIO"
ENV_OVERDUE_DAYS = "SITELOG_OVERDUE_DAYS"
ENV_REJECT_UNSTAFFED = "SITELOG_REJECT_UNSTAFFED"
ENV_CACHE_ENABLED = "SITELOG_CACHE_ENABLED"

_TRUTHY = {"1", "true", "yes", "on"}


class EngineSettings(BaseModel):
    """
    Process-wide settings consumed by the analytics services.

    ``custom_tasks`` is carried for the settings screen and is opaque here.
    """
    default_hourly_rate: float = Field(DEFAULT_HOURLY_RATE, gt=0, description="Rate used when a visit has none")
    tolerance_ratio: float = Field(DEVIATION_TOLERANCE_RATIO, ge=0, le=1)
    overdue_after_days: int = Field(OVERDUE_INVOICE_DAYS, ge=0)
    blank_id_prefixes: tuple[str, ...] = BLANK_ID_PREFIXES
    reject_unstaffed_visits: bool = False
    cache_enabled: bool = True
    custom_tasks: list[Any] = Field(default_factory=list)


def _env_flag(name: str) -> Optional[bool]:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return None
    return raw.strip().lower() in _TRUTHY


def load_settings(**overrides: Any) -> EngineSettings:
    """
    Build EngineSettings from defaults, then environment, then explicit overrides.

    Malformed values raise pydantic.ValidationError; a bad rate in the
    environment is a deployment error, not something to paper over.
    """
    values: dict[str, Any] = {}

    if os.getenv(ENV_DEFAULT_HOURLY_RATE):
        values["default_hourly_rate"] = os.getenv(ENV_DEFAULT_HOURLY_RATE)
    if os.getenv(ENV_TOLERANCE_RATIO):
        values["tolerance_ratio"] = os.getenv(ENV_TOLERANCE_RATIO)
    if os.getenv(ENV_OVERDUE_DAYS):
        values["overdue_after_days"] = os.getenv(ENV_OVERDUE_DAYS)

    reject = _env_flag(ENV_REJECT_UNSTAFFED)
    if reject is not None:
        values["reject_unstaffed_visits"] = reject
    cache = _env_flag(ENV_CACHE_ENABLED)
    if cache is not None:
        values["cache_enabled"] = cache

    values.update(overrides)
    return EngineSettings(**values)
