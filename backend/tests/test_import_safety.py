"""
test_import_safety.py — Import hygiene and layering checks.

Verifies that:
  1. Every engine and API module imports cleanly (no circular imports).
  2. Engine modules stay framework-free: no FastAPI / Starlette imports and no
     clock reads, so reports remain pure functions of their inputs.
  3. Tunable thresholds live in sitelog.config and are positive.

No database, network, or external services are required.
"""

import importlib
import inspect

import pytest


_ENGINE_MODULES = [
    "sitelog.config",
    "sitelog.models.visit_models",
    "sitelog.services.time_entry_normalizer",
    "sitelog.services.hours_aggregator",
    "sitelog.services.deviation_analyzer",
    "sitelog.services.financial_calculator",
    "sitelog.services.report_aggregator",
    "sitelog.services.report_cache",
    "sitelog.services.repositories",
    "sitelog.services.perf_monitor",
    "sitelog.services.analytics_service",
]

_API_MODULES = [
    "sitelog.models.report_schemas",
    "sitelog.services.logging_config",
    "sitelog.services.middleware",
    "sitelog.api.deps",
    "sitelog.api.analytics_routes",
    "sitelog.main",
]


class TestModuleImports:

    @pytest.mark.parametrize("module_path", _ENGINE_MODULES + _API_MODULES)
    def test_module_imports(self, module_path):
        mod = importlib.import_module(module_path)
        assert mod is not None, f"Module {module_path} is None after import"


class TestEngineIsStandalone:
    """Engine modules must not reach for the web framework or the clock."""

    @pytest.mark.parametrize("module_path", _ENGINE_MODULES)
    def test_no_web_framework(self, module_path):
        src = inspect.getsource(importlib.import_module(module_path))
        assert "fastapi" not in src, f"{module_path} must not depend on FastAPI"
        assert "starlette" not in src, f"{module_path} must not depend on Starlette"

    @pytest.mark.parametrize("module_path", _ENGINE_MODULES)
    def test_no_clock_reads(self, module_path):
        src = inspect.getsource(importlib.import_module(module_path))
        assert "date.today(" not in src, f"{module_path} must take 'today' as an argument"
        assert "datetime.now(" not in src, f"{module_path} must take 'today' as an argument"


class TestConfigConstants:

    def test_thresholds_positive_and_ordered(self):
        from sitelog import config
        assert config.DEFAULT_HOURLY_RATE > 0
        assert 0 < config.DEVIATION_TOLERANCE_RATIO < 1
        assert config.INACTIVITY_WARNING_DAYS < config.INACTIVITY_DANGER_DAYS < config.INACTIVITY_CRITICAL_DAYS

    def test_blank_prefixes_only_read_by_link_translation(self):
        """Prefix sniffing stays in project_link_from_identifier."""
        for module_path in ("sitelog.services.hours_aggregator", "sitelog.services.report_aggregator"):
            src = inspect.getsource(importlib.import_module(module_path))
            assert "BLANK_ID_PREFIXES" not in src
            assert "startswith" not in src
