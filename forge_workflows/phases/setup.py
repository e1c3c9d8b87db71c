# forge_workflows/phases/setup.py
"""
Phase 1 — sandbox setup.

docker_setup → github_clone → [post_project_description, post_project_stack]
→ docker_save_context
"""
import json
import logging
import shlex
from pathlib import PurePosixPath

from pydantic import BaseModel

from forge_engine.alerts import AlertLevel, AlertStatus
from forge_engine.collaborator import ask_structured
from forge_engine.exceptions import ForgeError, MissingRepositoryCoordinatesError, error_message
from forge_engine.steps import StepContext, carry, step, to_wire
from forge_workflows import heuristics, prompts
from forge_workflows.context import resolve_repository
from forge_workflows.resources import ForgeResources
from forge_workflows.schemas import (
    CloneOutput,
    ContextSavedOutput,
    DescriptionResponse,
    DockerOutput,
    PipelineInput,
    TechStackResponse,
)

logger = logging.getLogger("forge.workflows.setup")

DESCRIPTION_MAX_STEPS = 15
STACK_MAX_STEPS = 15


class SetupJoin(BaseModel):
    """Fan-in of the two project-metadata posts."""
    post_project_description: CloneOutput
    post_project_stack: CloneOutput


@step("docker_setup", input_model=PipelineInput, output_model=DockerOutput)
async def docker_setup(ctx: StepContext, data: PipelineInput) -> DockerOutput:
    """Build the sandbox image and start a fresh container."""
    res: ForgeResources = ctx.resources
    settings = res.settings
    ctx.alert(
        AlertStatus.STARTING,
        "Docker setup",
        subtitle="Building image and starting container",
        project_id=data.project_id,
        metadata={"contextDataPresent": data.context_data is not None},
    )
    try:
        container_id = await ctx.retry(
            lambda: res.docker.start_sandbox(settings.docker_image, settings.container_name, settings.workdir),
            title="Retrying docker setup",
        )
    except ForgeError as e:
        ctx.alert(AlertStatus.FAILED, "Docker setup failed", subtitle=error_message(e), level=AlertLevel.ERROR)
        raise

    logger.info("Sandbox container ready: %s", container_id[:12])
    ctx.alert(
        AlertStatus.COMPLETED,
        "Docker setup completed",
        subtitle=f"Container ready ({container_id[:12]})",
        container_id=container_id,
    )
    return carry(
        data,
        DockerOutput,
        result=f"Container {container_id[:12]} ready",
        success=True,
        tool_call_count=ctx.tool_calls.value,
        container_id=container_id,
    )


@step("github_clone", input_model=DockerOutput, output_model=CloneOutput)
async def github_clone(ctx: StepContext, data: DockerOutput) -> CloneOutput:
    """Clone the repository into the sandbox work directory."""
    res: ForgeResources = ctx.resources
    coords = resolve_repository(data.repository_url, data.context_data)
    repo_path = str(PurePosixPath(res.settings.workdir) / coords.repo)
    branch = data.context_data.default_branch if data.context_data else None
    branch_arg = f" --branch {shlex.quote(branch)}" if branch else ""

    ctx.alert(
        AlertStatus.STARTING,
        "Cloning repository",
        subtitle=coords.full_name,
        container_id=data.container_id,
    )

    async def _clone() -> str:
        reset = f"rm -rf {shlex.quote(repo_path)}; cd {shlex.quote(res.settings.workdir)}"
        if res.settings.github_token:
            return await res.docker.exec_with_secret(
                data.container_id,
                f"set -e; {reset}; git clone{branch_arg} "
                f"{coords.shell_url('GITHUB_PAT')} {shlex.quote(coords.repo)}",
                name="GITHUB_PAT",
                value=res.settings.github_token,
            )
        return await res.docker.exec(
            data.container_id,
            f"set -e; {reset}; git clone{branch_arg} {coords.shell_url()} {shlex.quote(coords.repo)}",
        )

    try:
        await ctx.retry(_clone, title="Retrying clone", container_id=data.container_id)
    except ForgeError as e:
        ctx.alert(
            AlertStatus.FAILED,
            "Clone failed",
            subtitle=error_message(e),
            level=AlertLevel.ERROR,
            container_id=data.container_id,
        )
        raise

    ctx.alert(
        AlertStatus.COMPLETED,
        "Repository cloned",
        subtitle=repo_path,
        container_id=data.container_id,
    )
    return carry(
        data,
        CloneOutput,
        result=f"Cloned {coords.full_name} into {repo_path}",
        success=True,
        tool_call_count=ctx.tool_calls.value,
        repo_path=repo_path,
    )


async def _list_files(res: ForgeResources, data: CloneOutput) -> list[str]:
    out = await res.docker.exec_in(
        data.container_id, data.repo_path, "(git ls-files || find . -type f) | head -5000", check=False,
    )
    return [line.strip() for line in out.splitlines() if line.strip()]


async def _read_manifest(res: ForgeResources, data: CloneOutput) -> dict | None:
    out = await res.docker.exec_in(data.container_id, data.repo_path, "cat package.json 2>/dev/null", check=False)
    return heuristics.parse_manifest(out)


async def _github_about(res: ForgeResources, data: CloneOutput) -> dict:
    try:
        coords = resolve_repository(data.repository_url, data.context_data)
    except MissingRepositoryCoordinatesError:
        return {}
    return await res.github.repository_about(coords.owner, coords.repo)


async def _fallback_description(res: ForgeResources, data: CloneOutput) -> str:
    names = " ".join(shlex.quote(n) for n in heuristics.README_CANDIDATES)
    readme = await res.docker.exec_in(
        data.container_id,
        data.repo_path,
        f'for f in {names}; do if [ -f "$f" ]; then cat "$f"; break; fi; done',
        check=False,
    )
    files = await _list_files(res, data)
    about = await _github_about(res, data)
    context = data.context_data
    return heuristics.synthesize_description(
        (context.repo or context.name if context else None) or PurePosixPath(data.repo_path).name,
        about=about.get("about", "") or (context.description if context and context.description else ""),
        readme=readme,
        manifest=await _read_manifest(res, data),
        languages=heuristics.languages_from_files(files),
        features=heuristics.features_from_files(files),
        topics=about.get("topics") or (context.topics if context else None),
    )


@step("post_project_description", input_model=CloneOutput, output_model=CloneOutput)
async def post_project_description(ctx: StepContext, data: CloneOutput) -> CloneOutput:
    """Describe the project and post it to the dashboard (best effort)."""
    res: ForgeResources = ctx.resources
    ctx.alert(AlertStatus.STARTING, "Describing project", container_id=data.container_id)

    description = ""
    hints = data.context_data.model_dump(exclude={"extras"}, exclude_none=True) if data.context_data else {}
    try:
        response = await ask_structured(
            res.agent("description"),
            prompts.project_description(data.container_id, data.repo_path, hints),
            DescriptionResponse,
            max_steps=DESCRIPTION_MAX_STEPS,
        )
        description = response.description.strip()
    except ForgeError as e:
        logger.warning("Agent description failed; using fallback: %s", error_message(e))

    if not description:
        description = await _fallback_description(res, data)

    posted = await res.backend.post_description(data.project_id, description)
    ctx.alert(
        AlertStatus.COMPLETED if posted else AlertStatus.FAILED,
        "Description posted" if posted else "Description post failed",
        subtitle=f"Posted to project {data.project_id}" if posted else "Failed to post description",
        container_id=data.container_id,
        level=None if posted else AlertLevel.WARNING,
    )
    return carry(data, CloneOutput, tool_call_count=ctx.tool_calls.value)


@step("post_project_stack", input_model=CloneOutput, output_model=CloneOutput)
async def post_project_stack(ctx: StepContext, data: CloneOutput) -> CloneOutput:
    """Detect the technology stack and post it item by item (best effort)."""
    res: ForgeResources = ctx.resources
    ctx.alert(AlertStatus.STARTING, "Detecting tech stack", container_id=data.container_id)

    items = []
    try:
        response = await ask_structured(
            res.agent("description"),
            prompts.project_stack(data.container_id, data.repo_path),
            TechStackResponse,
            max_steps=STACK_MAX_STEPS,
        )
        items = response.tech_stack
    except ForgeError as e:
        logger.warning("Agent stack detection failed; using fallback: %s", error_message(e))

    if not items:
        about = await _github_about(res, data)
        items = heuristics.detect_stack(
            await _list_files(res, data),
            await _read_manifest(res, data),
            github_language=about.get("language", ""),
            topics=about.get("topics"),
        )
    items = heuristics.dedupe_stack(items)

    accepted = await res.backend.post_stack(data.project_id, [to_wire(i) for i in items])
    ok = accepted > 0
    ctx.alert(
        AlertStatus.COMPLETED if ok else AlertStatus.FAILED,
        "Stack posted" if ok else "Stack post failed",
        subtitle=f"Posted {accepted}/{len(items)} technologies",
        container_id=data.container_id,
        level=None if ok else AlertLevel.WARNING,
    )
    return carry(data, CloneOutput, tool_call_count=ctx.tool_calls.value)


@step("docker_save_context", input_model=SetupJoin, output_model=ContextSavedOutput)
async def docker_save_context(ctx: StepContext, data: SetupJoin) -> ContextSavedOutput:
    """Persist the incoming context data inside the sandbox."""
    res: ForgeResources = ctx.resources
    base = data.post_project_description
    context_path = res.settings.context_path
    payload = {
        "projectId": base.project_id,
        "repositoryUrl": base.repository_url,
        "repoPath": base.repo_path,
        "contextData": to_wire(base.context_data) if base.context_data else {},
    }

    await ctx.retry(
        lambda: res.docker.write_file(base.container_id, context_path, json.dumps(payload, indent=2)),
        title="Retrying context save",
        container_id=base.container_id,
    )
    ctx.alert(
        AlertStatus.COMPLETED,
        "Context saved",
        subtitle=context_path,
        container_id=base.container_id,
    )
    return carry(
        base,
        ContextSavedOutput,
        result=f"Context saved to {context_path}",
        success=True,
        tool_call_count=ctx.tool_calls.value,
        context_path=context_path,
    )


STAGES = [
    docker_setup,
    github_clone,
    [post_project_description, post_project_stack],
    docker_save_context,
]
