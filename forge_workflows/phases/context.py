# forge_workflows/phases/context.py
"""
Phase 2 — repository context gathering.

gather_start → [analyze_repository, analyze_codebase, analyze_build_deployment]
→ synthesize_context → save_context → validate_context

The three analyses fall back to their minimal valid structures when the
collaborator keeps failing, so later phases always get a context to work
with, even a low-confidence one.
"""
import json
import logging
import os
import tempfile
from typing import Callable, TypeVar

from pydantic import BaseModel

from forge_engine.alerts import AlertLevel, AlertStatus
from forge_engine.collaborator import ask_structured
from forge_engine.exceptions import ForgeError, RetryExhaustedError, error_message
from forge_engine.steps import StepContext, carry, step, to_wire
from forge_workflows import prompts
from forge_workflows.resources import ForgeResources
from forge_workflows.schemas import (
    BuildDeployAnalysis,
    CodebaseAnalysis,
    Confidence,
    ContextSavedOutput,
    Insights,
    RepoContext,
    RepositoryAnalysis,
    SynthesisResponse,
)

logger = logging.getLogger("forge.workflows.context")

NOT_SAVED = "not-saved"
TESTING_KEYWORDS = ("test", "ci", "error")

T = TypeVar("T", bound=BaseModel)


class RepositoryStepOutput(ContextSavedOutput):
    repository: RepositoryAnalysis


class CodebaseStepOutput(ContextSavedOutput):
    codebase: CodebaseAnalysis


class BuildDeployStepOutput(ContextSavedOutput):
    build_deploy: BuildDeployAnalysis


class AnalysisJoin(BaseModel):
    """Fan-in of the three concurrent analyses."""
    analyze_repository: RepositoryStepOutput
    analyze_codebase: CodebaseStepOutput
    analyze_build_deployment: BuildDeployStepOutput


class SynthesizedOutput(ContextSavedOutput):
    repo_context: RepoContext


async def _analyze(
    ctx: StepContext,
    data: ContextSavedOutput,
    schema: type[T],
    prompt: str,
    label: str,
    fallback: Callable[[], T],
) -> tuple[T, bool]:
    """Ask the context collaborator for ``schema``; fall back after the budget."""
    res: ForgeResources = ctx.resources
    agent = res.agent("context")
    ctx.alert(AlertStatus.STARTING, f"Analyze {label}", container_id=data.container_id)

    try:
        value = await ctx.retry(
            lambda: ask_structured(agent, prompt, schema, max_steps=res.settings.agent_max_steps),
            title=f"Analyze {label} retry",
            container_id=data.container_id,
        )
    except RetryExhaustedError as e:
        logger.warning("Using fallback %s analysis: %s", label, error_message(e))
        ctx.alert(
            AlertStatus.FAILED,
            f"Analyze {label} failed",
            subtitle=f"Using fallback: {error_message(e)}",
            level=AlertLevel.WARNING,
            container_id=data.container_id,
        )
        return fallback(), False

    ctx.alert(AlertStatus.COMPLETED, f"Analyze {label} completed", container_id=data.container_id)
    return value, True


@step("gather_start", input_model=ContextSavedOutput, output_model=ContextSavedOutput)
async def gather_start(ctx: StepContext, data: ContextSavedOutput) -> ContextSavedOutput:
    """Announce the context-gathering plan."""
    ctx.alert(
        AlertStatus.STARTING,
        "Gather workflow start",
        subtitle="Repository, codebase and build scans run concurrently",
        container_id=data.container_id,
    )
    logger.info("Context gathering for %s (container %s)", data.repo_path, data.container_id[:12])
    ctx.alert(AlertStatus.COMPLETED, "Gather workflow initialized", container_id=data.container_id)
    return carry(data, ContextSavedOutput, tool_call_count=ctx.tool_calls.value)


@step("analyze_repository", input_model=ContextSavedOutput, output_model=RepositoryStepOutput)
async def analyze_repository(ctx: StepContext, data: ContextSavedOutput) -> RepositoryStepOutput:
    """Repository layout, packages, git status and languages."""
    repository, ok = await _analyze(
        ctx, data, RepositoryAnalysis,
        prompts.repository_analysis(data.container_id, data.repo_path),
        "repository",
        lambda: RepositoryAnalysis.fallback(data.repo_path),
    )
    return carry(
        data,
        RepositoryStepOutput,
        result="Repository analyzed" if ok else "Repository analysis fell back to defaults",
        success=ok,
        tool_call_count=ctx.tool_calls.value,
        repository=repository,
    )


@step("analyze_codebase", input_model=ContextSavedOutput, output_model=CodebaseStepOutput)
async def analyze_codebase(ctx: StepContext, data: ContextSavedOutput) -> CodebaseStepOutput:
    """Architecture, dependencies and code quality."""
    codebase, ok = await _analyze(
        ctx, data, CodebaseAnalysis,
        prompts.codebase_analysis(data.container_id, data.repo_path),
        "codebase",
        CodebaseAnalysis.fallback,
    )
    return carry(
        data,
        CodebaseStepOutput,
        result="Codebase analyzed" if ok else "Codebase analysis fell back to defaults",
        success=ok,
        tool_call_count=ctx.tool_calls.value,
        codebase=codebase,
    )


@step("analyze_build_deployment", input_model=ContextSavedOutput, output_model=BuildDeployStepOutput)
async def analyze_build_deployment(ctx: StepContext, data: ContextSavedOutput) -> BuildDeployStepOutput:
    """Build system, package management, testing and deployment."""
    build_deploy, ok = await _analyze(
        ctx, data, BuildDeployAnalysis,
        prompts.build_deployment_analysis(data.container_id, data.repo_path),
        "build and deployment",
        BuildDeployAnalysis.fallback,
    )
    return carry(
        data,
        BuildDeployStepOutput,
        result="Build and deployment analyzed" if ok else "Build analysis fell back to defaults",
        success=ok,
        tool_call_count=ctx.tool_calls.value,
        build_deploy=build_deploy,
    )


@step("synthesize_context", input_model=AnalysisJoin, output_model=SynthesizedOutput)
async def synthesize_context(ctx: StepContext, data: AnalysisJoin) -> SynthesizedOutput:
    """Combine the analyses into insights, confidence and a summary."""
    res: ForgeResources = ctx.resources
    base = data.analyze_repository
    repository = data.analyze_repository.repository
    codebase = data.analyze_codebase.codebase
    build_deploy = data.analyze_build_deployment.build_deploy
    ctx.alert(AlertStatus.STARTING, "Synthesize context", container_id=base.container_id)

    prompt = prompts.synthesis(to_wire(repository), to_wire(codebase), to_wire(build_deploy))
    try:
        synthesis = await ctx.retry(
            lambda: ask_structured(res.agent("context"), prompt, SynthesisResponse, max_steps=1),
            title="Synthesize context retry",
            container_id=base.container_id,
        )
        insights, confidence, summary = synthesis.insights, synthesis.confidence, synthesis.executive_summary
        ok = True
    except RetryExhaustedError as e:
        logger.warning("Using fallback insights and summary: %s", error_message(e))
        ctx.alert(
            AlertStatus.FAILED,
            "Synthesize context failed",
            subtitle=error_message(e),
            level=AlertLevel.ERROR,
            container_id=base.container_id,
        )
        insights, confidence, summary = Insights.fallback(), Confidence.fallback(), RepoContext.fallback_summary()
        ok = False

    repo_context = RepoContext(
        repository=repository,
        codebase=codebase,
        build_deploy=build_deploy,
        insights=insights,
        confidence=confidence,
        executive_summary=summary,
    )
    if ok:
        ctx.alert(
            AlertStatus.COMPLETED,
            "Context synthesized",
            subtitle=f"Overall confidence {confidence.overall:.2f}",
            container_id=base.container_id,
        )
    return carry(
        base,
        SynthesizedOutput,
        result="Context synthesized" if ok else "Context synthesized from fallbacks",
        success=ok,
        tool_call_count=ctx.tool_calls.value,
        repo_context=repo_context,
    )


def unit_test_context(context: RepoContext) -> dict:
    """The document test generation reads from ``agent.context.json``."""
    repository, codebase, build_deploy, insights = (
        context.repository, context.codebase, context.build_deploy, context.insights,
    )
    packages = repository.structure.packages
    return {
        "metadata": {
            "projectName": (packages[0].name if packages else None) or "unknown",
            "projectType": repository.type,
            "primaryLanguage": repository.languages[0].language if repository.languages else "unknown",
            "rootPath": repository.root_path,
            "isGitRepo": repository.git_status.is_git_repo,
            "confidence": context.confidence.overall,
        },
        "structure": {
            "sourceDirectories": repository.structure.key_directories,
            "packages": [to_wire(p) for p in packages],
            "testingFramework": (build_deploy.testing.frameworks or ["unknown"])[0],
            "entryPoints": codebase.architecture.entry_points,
        },
        "dependencies": {
            "keyLibraries": [to_wire(k) for k in codebase.architecture.dependencies.key_libraries],
            "external": codebase.architecture.dependencies.external,
            "packageManager": (build_deploy.package_management.managers or ["unknown"])[0],
        },
        "testingStrategy": {
            "architecturePattern": codebase.architecture.pattern,
            "complexity": insights.complexity,
            "hasExistingTests": codebase.code_quality.has_tests,
            "testCommands": build_deploy.testing.test_commands,
            "recommendedApproach": "unit-focused" if insights.complexity == "simple" else "integration-included",
        },
        "testingRecommendations": [
            rec for rec in insights.recommendations
            if any(word in rec.lower() for word in TESTING_KEYWORDS)
        ],
        "fullAnalysis": to_wire(context),
    }


@step("save_context", input_model=SynthesizedOutput, output_model=SynthesizedOutput)
async def save_context(ctx: StepContext, data: SynthesizedOutput) -> SynthesizedOutput:
    """Copy the unit-test context into the container (best effort)."""
    res: ForgeResources = ctx.resources
    context_path = res.settings.context_path
    ctx.alert(AlertStatus.STARTING, "Save unit test context", subtitle=context_path, container_id=data.container_id)

    document = json.dumps(unit_test_context(data.repo_context), indent=2)
    fd, local_path = tempfile.mkstemp(prefix="forge-context-", suffix=".json")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(document)
        await res.docker.copy_to(data.container_id, local_path, context_path)
        if not await res.docker.file_exists(data.container_id, context_path):
            raise ForgeError(f"{context_path} missing after copy")
    except ForgeError as e:
        logger.error("Failed to save context file: %s", error_message(e))
        ctx.alert(
            AlertStatus.FAILED,
            "Save unit test context failed",
            subtitle=error_message(e),
            level=AlertLevel.ERROR,
            container_id=data.container_id,
        )
        return carry(data, SynthesizedOutput, tool_call_count=ctx.tool_calls.value, context_path=NOT_SAVED)
    finally:
        os.unlink(local_path)

    logger.info("Context saved to %s (%d bytes)", context_path, len(document))
    ctx.alert(AlertStatus.COMPLETED, "Saved unit test context", subtitle=context_path, container_id=data.container_id)
    return carry(data, SynthesizedOutput, tool_call_count=ctx.tool_calls.value, context_path=context_path)


@step("validate_context", input_model=SynthesizedOutput, output_model=SynthesizedOutput)
async def validate_context(ctx: StepContext, data: SynthesizedOutput) -> SynthesizedOutput:
    """Summarize the gathered context for the run record."""
    context = data.repo_context
    saved = data.context_path != NOT_SAVED
    result = (
        f"Context gathered: {context.repository.type} repository, "
        f"{context.codebase.architecture.pattern} architecture, "
        f"confidence {context.confidence.overall:.2f}"
        + ("" if saved else " (context file not saved)")
    )
    ctx.alert(AlertStatus.COMPLETED, "Context validated", subtitle=result, container_id=data.container_id)
    return carry(
        data,
        SynthesizedOutput,
        result=result,
        success=saved,
        tool_call_count=ctx.tool_calls.value,
    )


STAGES = [
    gather_start,
    [analyze_repository, analyze_codebase, analyze_build_deployment],
    synthesize_context,
    save_context,
    validate_context,
]
