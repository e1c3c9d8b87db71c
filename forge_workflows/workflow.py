# forge_workflows/workflow.py
"""
Pipeline definitions: one per phase, plus the full end-to-end run.

    output = await run_full_pipeline({
        "projectId": "p1",
        "repositoryUrl": "https://github.com/acme/widgets",
    })
"""
import logging
from typing import Any

from pydantic import BaseModel

from forge_engine.config import ForgeSettings
from forge_engine.exceptions import ContractDefectError, PipelineError, error_message
from forge_engine.pipeline import Pipeline, PipelineBuilder, PipelineRun
from forge_engine.steps import StepContext, step
from forge_workflows.phases import context, coverage, generation, publish, setup
from forge_workflows.resources import ForgeResources
from forge_workflows.schemas import (
    ContextSavedOutput,
    PipelineInput,
    PipelineOutput,
    PipelineOutputDraft,
)

logger = logging.getLogger("forge.workflows.workflow")

# id -> (input model, output model, stages, description)
PHASES: dict[str, tuple[type[BaseModel], type[BaseModel], list, str]] = {
    "docker_setup": (
        PipelineInput, ContextSavedOutput, setup.STAGES,
        "Start the sandbox, clone the repository and describe the project",
    ),
    "context_gathering": (
        ContextSavedOutput, context.SynthesizedOutput, context.STAGES,
        "Parallel repository analysis saved to agent.context.json",
    ),
    "unit_test_generation": (
        ContextSavedOutput, generation.UnitTestOutput, generation.STAGES,
        "Plan and write unit tests inside the sandbox",
    ),
    "github_pr": (
        generation.UnitTestOutput, publish.PullRequestOutput, publish.STAGES,
        "Commit generated tests to a branch and open a pull request",
    ),
    "coverage_analysis": (
        coverage.CoverageInput, coverage.CoverageOutput, coverage.STAGES,
        "Measure test coverage and report it",
    ),
}

FULL_PIPELINE_ID = "full_pipeline"


@step("normalize_output", input_model=PipelineOutputDraft, output_model=PipelineOutput)
async def normalize_output(ctx: StepContext, data: PipelineOutputDraft) -> PipelineOutput:
    """Fill defaults so the caller always gets the full output shape."""
    return PipelineOutput.from_draft(data)


def _compose(builder: PipelineBuilder, stages: list) -> PipelineBuilder:
    for stage in stages:
        if isinstance(stage, list):
            builder.parallel(stage)
        else:
            builder.then(stage)
    return builder


def build_phase_pipeline(phase_id: str) -> Pipeline:
    """Committed pipeline for a single phase (see ``PHASES``)."""
    try:
        input_model, output_model, stages, description = PHASES[phase_id]
    except KeyError:
        raise PipelineError(f"Unknown phase '{phase_id}'; expected one of {sorted(PHASES)}") from None
    builder = PipelineBuilder(phase_id, input_model=input_model, output_model=output_model, description=description)
    return _compose(builder, stages).commit()


def build_full_pipeline() -> Pipeline:
    """All phases in order, ending with output normalization."""
    builder = PipelineBuilder(
        FULL_PIPELINE_ID,
        input_model=PipelineInput,
        output_model=PipelineOutput,
        description="Setup, context, test generation, pull request and coverage",
    )
    for _, _, stages, _ in PHASES.values():
        _compose(builder, stages)
    return builder.then(normalize_output).commit()


def failed_output(run: PipelineRun) -> PipelineOutput:
    """``success: false`` output carrying the best partial context of ``run``."""
    draft = PipelineOutputDraft.model_validate({
        **run.context,
        "result": error_message(run.error) if run.error else "Pipeline failed",
        "success": False,
        "toolCallCount": run.tool_call_count,
    })
    return PipelineOutput.from_draft(draft)


def should_propagate(run: PipelineRun) -> bool:
    """Errors that must reach the caller instead of a failed output."""
    if isinstance(run.error, (ContractDefectError, PipelineError)):
        return True
    return run.failed_step is not None and run.failed_step.fatal


async def run_full_pipeline(
    raw_input: dict[str, Any] | PipelineInput,
    *,
    resources: ForgeResources | None = None,
    settings: ForgeSettings | None = None,
    pipeline: Pipeline | None = None,
) -> PipelineOutput:
    """
    Run every phase end to end.

    Args:
        raw_input: ``PipelineInput`` or its camelCase dict.
        resources: Services to use; created (and closed) here when omitted.
        settings: Settings for created resources.
        pipeline: Committed pipeline to run (the full pipeline by default).

    Returns:
        The normalized output; ``success`` is False when a non-fatal step
        failed.

    Raises:
        ContractDefectError: The composition or a step's output is invalid.
        PipelineError: The input does not satisfy ``PipelineInput``.
        ForgeError: A fatal step (push or PR creation) failed.
    """
    owned = resources is None
    resources = resources or ForgeResources.create(settings)
    pipeline = pipeline or build_full_pipeline()
    try:
        run = await pipeline.run(
            raw_input,
            resources=resources,
            notifier=resources.notifier,
            counter=resources.counter,
            max_attempts=resources.settings.max_attempts,
            raise_on_error=False,
        )
    finally:
        await resources.notifier.drain()
        if owned:
            await resources.aclose()

    if run.error is None:
        return run.output

    failed_at = run.failed_step.id if run.failed_step else "input"
    if should_propagate(run):
        logger.error("Run %s aborted at %s: %s", run.run_id, failed_at, error_message(run.error))
        raise run.error
    logger.warning("Run %s failed at %s: %s", run.run_id, failed_at, error_message(run.error))
    return failed_output(run)
