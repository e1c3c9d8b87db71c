"""
Prometheus metrics for testforge.

Usage:
    from forge_engine.metrics import METRICS

    METRICS.step_runs.labels(step="analyze_repository", status="success").inc()

Recording helpers never raise: metrics are a side channel and must not
change how a pipeline run ends.
"""
import logging

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Histogram

logger = logging.getLogger("forge.engine.metrics")


class ForgeMetrics:
    """All testforge metrics in one place."""

    def __init__(self, reg: CollectorRegistry = REGISTRY):
        self.step_runs = Counter(
            "forge_step_runs_total",
            "Pipeline step executions by final status",
            ["step", "status"],
            registry=reg,
        )

        self.step_duration = Histogram(
            "forge_step_duration_seconds",
            "Pipeline step duration in seconds",
            ["step"],
            buckets=[0.1, 0.5, 1.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0, 900.0],
            registry=reg,
        )

        self.step_retries = Counter(
            "forge_step_retries_total",
            "Retries performed inside a step",
            ["step"],
            registry=reg,
        )

        self.parse_outcomes = Counter(
            "forge_parse_outcomes_total",
            "Structured-response parse outcomes",
            ["outcome"],
            registry=reg,
        )

        self.tool_calls = Counter(
            "forge_tool_calls_total",
            "Command shim invocations",
            registry=reg,
        )

    def record_step(self, step: str, status: str, seconds: float) -> None:
        try:
            self.step_runs.labels(step=step, status=status).inc()
            self.step_duration.labels(step=step).observe(seconds)
        except Exception as e:  # noqa: BLE001
            logger.debug("Failed to record step metric: %s", e)

    def record_retry(self, step: str) -> None:
        try:
            self.step_retries.labels(step=step).inc()
        except Exception as e:  # noqa: BLE001
            logger.debug("Failed to record retry metric: %s", e)

    def record_parse(self, outcome: str) -> None:
        try:
            self.parse_outcomes.labels(outcome=outcome).inc()
        except Exception as e:  # noqa: BLE001
            logger.debug("Failed to record parse metric: %s", e)

    def record_tool_call(self) -> None:
        try:
            self.tool_calls.inc()
        except Exception as e:  # noqa: BLE001
            logger.debug("Failed to record tool-call metric: %s", e)


METRICS = ForgeMetrics()
