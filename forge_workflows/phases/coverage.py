# forge_workflows/phases/coverage.py
"""
Phase 5 — measure and report test coverage.

run_coverage → post_coverage
"""
import logging

from forge_engine.alerts import AlertLevel, AlertStatus
from forge_engine.collaborator import ask_structured
from forge_engine.exceptions import ForgeError, RetryExhaustedError, error_message
from forge_engine.steps import StepContext, carry, step, to_wire
from forge_workflows import prompts
from forge_workflows.resources import ForgeResources
from forge_workflows.schemas import CoverageReport, CoverageStats, Record

logger = logging.getLogger("forge.workflows.coverage")

UNAVAILABLE = "unavailable"
COVERAGE_MAX_STEPS = 100


class CoverageInput(Record):
    container_id: str
    project_id: str
    repo_path: str | None = None
    pr_url: str | None = None
    context_path: str | None = None
    result: str | None = None
    success: bool | None = None
    tool_call_count: int | None = None


class CoverageOutput(CoverageInput):
    coverage: CoverageReport


class InvalidProjectError(ForgeError):
    """The collaborator reported that coverage cannot be measured."""


def clamp_report(report: CoverageReport, repo_path: str | None = None) -> CoverageReport:
    """Coverage forced into 0..1 with stats filled in when missing."""
    coverage = min(1.0, max(0.0, report.coverage))
    return report.model_copy(update={
        "coverage": coverage,
        "repo_path": report.repo_path or repo_path or "",
        "stats": report.stats or CoverageStats.from_ratio(coverage),
    })


@step("run_coverage", input_model=CoverageInput, output_model=CoverageOutput)
async def run_coverage(ctx: StepContext, data: CoverageInput) -> CoverageOutput:
    """Run the suite with coverage through the collaborator."""
    res: ForgeResources = ctx.resources
    ctx.alert(
        AlertStatus.STARTING,
        "Run coverage",
        subtitle=data.repo_path or "repository",
        container_id=data.container_id,
    )
    prompt = prompts.coverage(data.container_id, data.repo_path or res.settings.workdir)

    async def _measure() -> CoverageReport:
        report = await ask_structured(
            res.agent("coverage"), prompt, CoverageReport, max_steps=COVERAGE_MAX_STEPS, max_retries=2,
        )
        if not report.is_valid:
            raise InvalidProjectError(f"Coverage cannot be measured: {report.reason or 'unknown reason'}")
        return report

    try:
        report = clamp_report(
            await ctx.retry(_measure, title="Coverage retry", container_id=data.container_id),
            data.repo_path,
        )
    except RetryExhaustedError as e:
        logger.warning("Coverage unavailable: %s", error_message(e))
        ctx.alert(
            AlertStatus.FAILED,
            "Coverage unavailable",
            subtitle=error_message(e),
            level=AlertLevel.WARNING,
            container_id=data.container_id,
        )
        report = CoverageReport(
            is_valid=False,
            repo_path=data.repo_path or "",
            coverage=0.0,
            method=UNAVAILABLE,
            stats=CoverageStats(),
            reason=error_message(e),
        )
        summary = "coverage unavailable"
    else:
        summary = f"coverage {report.coverage * 100:.2f}% via {report.method} ({report.files} files)"
        ctx.alert(AlertStatus.COMPLETED, "Coverage calculated", subtitle=summary, container_id=data.container_id)

    return carry(
        data,
        CoverageOutput,
        result=f"{data.result}; {summary}" if data.result else summary.capitalize(),
        tool_call_count=ctx.tool_calls.value,
        coverage=report,
    )


@step("post_coverage", input_model=CoverageOutput, output_model=CoverageOutput)
async def post_coverage(ctx: StepContext, data: CoverageOutput) -> CoverageOutput:
    """Report coverage to the dashboard (best effort, skipped when unavailable)."""
    res: ForgeResources = ctx.resources
    report = data.coverage
    if report.method == UNAVAILABLE:
        logger.info("Skipping coverage post; nothing was measured")
        return carry(data, CoverageOutput, tool_call_count=ctx.tool_calls.value)

    payload = to_wire(report)
    payload = {key: payload[key] for key in ("coverage", "language", "framework", "method", "stats", "files")}
    posted = await res.backend.post_coverage(data.project_id, payload)
    ctx.alert(
        AlertStatus.COMPLETED,
        "Coverage posted" if posted else "Coverage post failed",
        subtitle=f"{report.coverage * 100:.2f}% ({report.files} files, {report.method} method)",
        container_id=data.container_id,
        level=None if posted else AlertLevel.WARNING,
    )
    return carry(data, CoverageOutput, tool_call_count=ctx.tool_calls.value)


STAGES = [
    run_coverage,
    post_coverage,
]
