# forge_workflows/phases/generation.py
"""
Phase 3 — unit test generation.

check_saved_plan → load_context_and_plan → generate_test_code → finalize

A plan saved by an earlier run (``agent.plan.json``) is reused instead of
asking the collaborator again.
"""
import json
import logging

from pydantic import Field, ValidationError

from forge_engine.alerts import AlertLevel, AlertStatus
from forge_engine.collaborator import ask_structured
from forge_engine.exceptions import ForgeError, RetryExhaustedError, error_message
from forge_engine.steps import StepContext, carry, step, to_wire
from forge_workflows import prompts
from forge_workflows.resources import ForgeResources
from forge_workflows.schemas import (
    ContextSavedOutput,
    TestFileResult,
    TestGenerationResult,
    TestGenerationSummary,
    TestPlan,
)

logger = logging.getLogger("forge.workflows.generation")

MAX_RECOMMENDATIONS = 5


class PlanCheckOutput(ContextSavedOutput):
    saved_plan: TestPlan | None = None


class PlanOutput(ContextSavedOutput):
    plan: TestPlan
    plan_source: str = "collaborator"


class GenerationOutput(PlanOutput):
    test_generation: TestGenerationResult


class UnitTestOutput(GenerationOutput):
    recommendations: list[str] = Field(default_factory=list)


@step("check_saved_plan", input_model=ContextSavedOutput, output_model=PlanCheckOutput)
async def check_saved_plan(ctx: StepContext, data: ContextSavedOutput) -> PlanCheckOutput:
    """Load a plan persisted by a previous run, if any."""
    res: ForgeResources = ctx.resources
    plan_path = res.settings.plan_path
    saved = None
    if await res.docker.file_exists(data.container_id, plan_path):
        raw = await res.docker.read_file(data.container_id, plan_path)
        try:
            saved = TestPlan.model_validate_json(raw)
        except ValidationError as e:
            logger.warning("Ignoring unreadable saved plan at %s: %s", plan_path, e.error_count())
        else:
            if saved.is_empty:
                saved = None

    ctx.alert(
        AlertStatus.COMPLETED,
        "Saved plan found" if saved else "No saved plan",
        subtitle=plan_path,
        container_id=data.container_id,
    )
    return carry(data, PlanCheckOutput, tool_call_count=ctx.tool_calls.value, saved_plan=saved)


@step("load_context_and_plan", input_model=PlanCheckOutput, output_model=PlanOutput)
async def load_context_and_plan(ctx: StepContext, data: PlanCheckOutput) -> PlanOutput:
    """Plan which source files and functions to test."""
    res: ForgeResources = ctx.resources
    if data.saved_plan is not None:
        logger.info("Reusing saved plan (%d specs)", len(data.saved_plan.specs))
        return carry(
            data,
            PlanOutput,
            result="Reused saved test plan",
            success=True,
            tool_call_count=ctx.tool_calls.value,
            plan=data.saved_plan,
            plan_source="saved",
        )

    ctx.alert(AlertStatus.STARTING, "Planning unit tests", container_id=data.container_id)
    prompt = prompts.test_plan(data.container_id, data.repo_path, data.context_path)
    try:
        plan = await ctx.retry(
            lambda: ask_structured(
                res.agent("unit_test"), prompt, TestPlan, max_steps=res.settings.agent_max_steps,
            ),
            title="Planning retry",
            container_id=data.container_id,
        )
        source = "collaborator"
    except RetryExhaustedError as e:
        logger.warning("Test planning failed; continuing with an empty plan: %s", error_message(e))
        ctx.alert(
            AlertStatus.FAILED,
            "Planning failed",
            subtitle=error_message(e),
            level=AlertLevel.WARNING,
            container_id=data.container_id,
        )
        plan, source = TestPlan(), "fallback"

    if not plan.is_empty:
        try:
            await res.docker.write_file(
                data.container_id, res.settings.plan_path, json.dumps(to_wire(plan), indent=2),
            )
        except ForgeError as e:
            logger.warning("Could not persist plan: %s", error_message(e))

    ctx.alert(
        AlertStatus.COMPLETED,
        "Test plan ready",
        subtitle=f"{len(plan.specs)} source files",
        container_id=data.container_id,
    )
    return carry(
        data,
        PlanOutput,
        result=f"Planned tests for {len(plan.specs)} source files",
        success=source != "fallback",
        tool_call_count=ctx.tool_calls.value,
        plan=plan,
        plan_source=source,
    )


@step("generate_test_code", input_model=PlanOutput, output_model=GenerationOutput)
async def generate_test_code(ctx: StepContext, data: PlanOutput) -> GenerationOutput:
    """Have the collaborator write the planned test files."""
    res: ForgeResources = ctx.resources
    plan = data.plan
    if plan.is_empty:
        logger.info("Empty plan; no tests to generate")
        return carry(
            data,
            GenerationOutput,
            result="No tests planned",
            success=False,
            tool_call_count=ctx.tool_calls.value,
            test_generation=TestGenerationResult(),
        )

    ctx.alert(
        AlertStatus.STARTING,
        "Generating unit tests",
        subtitle=f"{len(plan.specs)} source files",
        container_id=data.container_id,
    )
    prompt = prompts.test_generation(data.container_id, data.repo_path, to_wire(plan))
    try:
        generated = await ctx.retry(
            lambda: ask_structured(
                res.agent("unit_test"), prompt, TestGenerationResult, max_steps=res.settings.agent_max_steps,
            ),
            title="Test generation retry",
            container_id=data.container_id,
        )
    except RetryExhaustedError as e:
        logger.warning("Test generation failed: %s", error_message(e))
        ctx.alert(
            AlertStatus.FAILED,
            "Test generation failed",
            subtitle=error_message(e),
            level=AlertLevel.ERROR,
            container_id=data.container_id,
        )
        failed = [
            TestFileResult(source_file=spec.source_file, test_file="", error=error_message(e))
            for spec in plan.specs
        ]
        generated = TestGenerationResult(test_files=failed)

    # The collaborator's own totals are not trusted
    generated.summary = TestGenerationSummary.from_files(generated.test_files)
    summary = generated.summary
    ctx.alert(
        AlertStatus.COMPLETED if summary.successful_files else AlertStatus.FAILED,
        "Tests generated",
        subtitle=f"{summary.successful_files} files, {summary.total_test_cases} cases",
        container_id=data.container_id,
        level=None if summary.successful_files else AlertLevel.WARNING,
    )
    return carry(
        data,
        GenerationOutput,
        result=f"Generated {summary.total_test_files} test files",
        success=summary.successful_files > 0,
        tool_call_count=ctx.tool_calls.value,
        test_generation=generated,
    )


def recommendations_for(result: TestGenerationResult) -> list[str]:
    """Follow-up suggestions derived from a generation result."""
    notes = []
    summary, quality = result.summary, result.quality
    if summary.failed_files:
        notes.append(f"Review {summary.failed_files} source file(s) whose tests could not be generated")
    if result.test_files and not quality.syntax_valid:
        notes.append("Run the linter on the generated tests; syntax was not confirmed valid")
    if result.test_files and not quality.follows_best_practices:
        notes.append("Refactor generated tests towards arrange-act-assert structure")
    if quality.coverage_score < 50:
        notes.append("Add cases for error paths and edge conditions to raise coverage")
    if not result.test_files:
        notes.append("No tests were generated; check the saved context and plan")
    return notes[:MAX_RECOMMENDATIONS]


@step("finalize", input_model=GenerationOutput, output_model=UnitTestOutput)
async def finalize(ctx: StepContext, data: GenerationOutput) -> UnitTestOutput:
    """Summarize the generation phase."""
    summary = data.test_generation.summary
    ok = summary.successful_files > 0
    result = (
        f"Generated {summary.total_test_cases} test cases for {summary.total_functions} functions "
        f"across {summary.total_test_files} files"
        if ok else "Unit test generation produced no test files"
    )
    ctx.alert(
        AlertStatus.COMPLETED if ok else AlertStatus.FAILED,
        "Unit test generation finished",
        subtitle=result,
        container_id=data.container_id,
        level=None if ok else AlertLevel.WARNING,
    )
    return carry(
        data,
        UnitTestOutput,
        result=result,
        success=ok,
        tool_call_count=ctx.tool_calls.value,
        recommendations=recommendations_for(data.test_generation),
    )


STAGES = [
    check_saved_plan,
    load_context_and_plan,
    generate_test_code,
    finalize,
]
