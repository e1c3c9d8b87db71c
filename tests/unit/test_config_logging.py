# tests/unit/test_config_logging.py
"""
Tests for ForgeSettings, logging configuration and Prometheus metrics.
"""
import logging
from unittest.mock import MagicMock

import pytest
import structlog
from prometheus_client import CollectorRegistry
from pydantic import ValidationError

pytestmark = pytest.mark.unit

from forge_engine.config import ForgeSettings
from forge_engine.logging_config import (
    WORKFLOW_LOGGER,
    RunIdFilter,
    add_run_id,
    configure_logging,
    new_run_id,
    run_id_var,
)
from forge_engine.metrics import ForgeMetrics

ENV_KEYS = (
    "BASE_URL", "ALERTS_URL", "LOG_LEVEL", "ALERTS_ONLY", "LOG_MODE", "MASTRA_LOG_MODE",
    "GITHUB_TOKEN", "GITHUB_PAT", "FORGE_WORKDIR", "FORGE_MAX_ATTEMPTS", "FORGE_MODEL",
)


@pytest.fixture
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    workflow_level = logging.getLogger(WORKFLOW_LOGGER).level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    logging.getLogger(WORKFLOW_LOGGER).setLevel(workflow_level)
    structlog.reset_defaults()


# ============================================================================
# 1. Settings
# ============================================================================


class TestForgeSettings:

    def test_defaults(self, clean_env):
        s = ForgeSettings.from_env()
        assert s.backend_base_url == "http://localhost:3000"
        assert s.alerts_url == "http://localhost:3000/api/alerts"
        assert s.github_token == ""
        assert s.max_attempts == 3
        assert s.alerts_only is False
        assert s.context_path == "/app/agent.context.json"
        assert s.plan_path == "/app/agent.plan.json"

    def test_base_url_from_env(self, clean_env):
        clean_env.setenv("BASE_URL", "http://dashboard:4000/")
        s = ForgeSettings.from_env()
        assert s.backend_base_url == "http://dashboard:4000"
        assert s.alerts_url == "http://dashboard:4000/api/alerts"

    def test_alerts_url_override(self, clean_env):
        clean_env.setenv("ALERTS_URL", "http://hooks.test/alerts")
        assert ForgeSettings.from_env().alerts_url == "http://hooks.test/alerts"

    def test_github_token_aliases(self, clean_env):
        clean_env.setenv("GITHUB_PAT", "ghp_from_pat")
        assert ForgeSettings.from_env().github_token == "ghp_from_pat"

    @pytest.mark.parametrize("env", [
        {"ALERTS_ONLY": "true"},
        {"LOG_MODE": "alerts_only"},
        {"MASTRA_LOG_MODE": "ALERTS_ONLY"},
    ])
    def test_alerts_only_switches(self, clean_env, env):
        for key, value in env.items():
            clean_env.setenv(key, value)
        assert ForgeSettings.from_env().alerts_only is True

    def test_workdir_moves_artifact_paths(self, clean_env):
        clean_env.setenv("FORGE_WORKDIR", "/work")
        s = ForgeSettings.from_env()
        assert s.context_path == "/work/agent.context.json"
        assert s.plan_path == "/work/agent.plan.json"

    def test_invalid_url_rejected(self, clean_env):
        clean_env.setenv("BASE_URL", "ftp://nope")
        with pytest.raises(ValidationError):
            ForgeSettings.from_env()

    def test_invalid_attempts_rejected(self, clean_env):
        clean_env.setenv("FORGE_MAX_ATTEMPTS", "0")
        with pytest.raises(ValidationError):
            ForgeSettings.from_env()

    def test_invalid_log_level(self):
        with pytest.raises(ValidationError):
            ForgeSettings(log_level="CHATTY")

    def test_constructor_by_field_name(self):
        s = ForgeSettings(backend_base_url="http://b.test", github_token="t")
        assert s.backend_base_url == "http://b.test"
        assert s.github_token == "t"


# ============================================================================
# 2. Logging
# ============================================================================


class TestLogging:

    def test_new_run_id_unique(self):
        assert new_run_id() != new_run_id()

    def test_add_run_id_processor(self):
        token = run_id_var.set("run-42")
        try:
            assert add_run_id(None, "info", {"event": "x"}) == {"event": "x", "run_id": "run-42"}
        finally:
            run_id_var.reset(token)
        assert add_run_id(None, "info", {"event": "x"}) == {"event": "x"}

    def test_run_id_filter(self):
        record = logging.LogRecord("forge", logging.INFO, __file__, 1, "msg", None, None)
        assert RunIdFilter().filter(record)
        assert record.run_id == "-"

        token = run_id_var.set("abc")
        try:
            RunIdFilter().filter(record)
            assert record.run_id == "abc"
        finally:
            run_id_var.reset(token)

    def test_configure_sets_level(self, restore_logging):
        configure_logging("debug")
        assert logging.getLogger().level == logging.DEBUG
        assert logging.getLogger(WORKFLOW_LOGGER).level == logging.NOTSET

    def test_alerts_only_mutes_workflow_loggers(self, restore_logging):
        configure_logging(logging.INFO, alerts_only=True)
        workflow = logging.getLogger(WORKFLOW_LOGGER + ".setup")
        assert not workflow.isEnabledFor(logging.INFO)
        assert workflow.isEnabledFor(logging.WARNING)
        assert logging.getLogger("forge.engine.pipeline").isEnabledFor(logging.INFO)


# ============================================================================
# 3. Metrics
# ============================================================================


@pytest.fixture
def registry():
    return CollectorRegistry()


@pytest.fixture
def metrics(registry):
    return ForgeMetrics(reg=registry)


class TestForgeMetrics:

    def test_record_step(self, metrics, registry):
        metrics.record_step("clone", "success", 1.5)
        assert registry.get_sample_value(
            "forge_step_runs_total", {"step": "clone", "status": "success"}
        ) == 1.0
        assert registry.get_sample_value("forge_step_duration_seconds_sum", {"step": "clone"}) == 1.5

    def test_record_retry_and_parse(self, metrics, registry):
        metrics.record_retry("analyze_codebase")
        metrics.record_retry("analyze_codebase")
        metrics.record_parse("recovered")
        assert registry.get_sample_value("forge_step_retries_total", {"step": "analyze_codebase"}) == 2.0
        assert registry.get_sample_value("forge_parse_outcomes_total", {"outcome": "recovered"}) == 1.0

    def test_record_tool_call(self, metrics, registry):
        metrics.record_tool_call()
        assert registry.get_sample_value("forge_tool_calls_total") == 1.0

    def test_recording_never_raises(self, metrics):
        metrics.step_runs = MagicMock()
        metrics.step_runs.labels.side_effect = RuntimeError("registry broken")
        metrics.record_step("clone", "failed", 0.1)
