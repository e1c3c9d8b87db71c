# forge_workflows/phases/publish.py
"""
Phase 4 — commit the generated tests and open a pull request.

prepare_commit_and_push → create_pull_request → post_pr_url

Push and PR creation are fatal: a run that silently skipped them would
report tests that nobody can see.
"""
import logging
import re
import shlex
import time

from forge_engine.alerts import AlertLevel, AlertStatus
from forge_engine.collaborator import ask_structured
from forge_engine.exceptions import ForgeError, MissingRepositoryCoordinatesError, error_message
from forge_engine.steps import StepContext, carry, step
from forge_workflows import prompts
from forge_workflows.context import RepositoryCoordinates, parse_remote_url, resolve_repository
from forge_workflows.phases.generation import UnitTestOutput
from forge_workflows.resources import ForgeResources
from forge_workflows.schemas import PrPlan, TestGenerationSummary
from forge_workflows.shims.github import GitHubError

logger = logging.getLogger("forge.workflows.publish")

BASE_BRANCH_PRIORITY = ("dev", "develop", "main", "master")
DEFAULT_BASE_BRANCH = "main"
BRANCH_PREFIX = "testforge/unit-tests-"
BOT_EMAIL = "testforge-bot@local"
BOT_NAME = "TestForge Bot"
PLAN_MAX_STEPS = 20

_UNSAFE_BRANCH_CHARS = re.compile(r"[^A-Za-z0-9._/-]+")


class PushOutput(UnitTestOutput):
    branch_name: str
    base_branch: str
    repo_owner: str
    repo_name: str
    commit_message: str


class PullRequestOutput(PushOutput):
    pr_url: str
    pr_number: int | None = None


def pick_base_branch(available: list[str], remote_head: str = "") -> str:
    """dev > develop > main > master > the remote HEAD > ``main``."""
    for name in BASE_BRANCH_PRIORITY:
        if name in available:
            return name
    return remote_head.strip() or DEFAULT_BASE_BRANCH


def sanitize_branch(name: str | None) -> str:
    """A git-safe branch name, or "" when nothing usable remains."""
    cleaned = _UNSAFE_BRANCH_CHARS.sub("-", (name or "").strip()).strip("-/.")
    return cleaned.replace("..", ".")


def commit_message_for(summary: TestGenerationSummary) -> str:
    return f"Add unit tests ({summary.total_functions} functions, {summary.total_test_cases} cases)"


def pr_body(data: PushOutput) -> str:
    generation = data.test_generation
    summary, quality = generation.summary, generation.quality
    files = "\n".join(
        f"- `{f.source_file}` → `{f.test_file}` ({f.test_cases_count} cases)"
        for f in generation.test_files if f.success
    ) or "- none"
    functions = "\n".join(
        f"- {fn.name}: {len(fn.test_cases)} cases"
        for spec in data.plan.specs for fn in spec.functions
    ) or "- plan not available"
    return "\n\n".join([
        "## What\nAutomatically generated unit tests for the modules listed below.",
        f"## Scope\n- Functions covered: {summary.total_functions}\n"
        f"- Test cases: {summary.total_test_cases}\n"
        f"- Estimated coverage score: {quality.coverage_score:g}",
        f"## Files\n{files}",
        f"## Planned functions\n{functions}",
        f"## Quality\n- Syntax valid: {'yes' if quality.syntax_valid else 'needs follow-up'}\n"
        f"- Best practices: {'adhered' if quality.follows_best_practices else 'partial'}",
    ])


def _token_url(coords: RepositoryCoordinates) -> str:
    # $GITHUB_PAT is expanded inside the container, see DockerShell.exec_with_secret
    return coords.shell_url("GITHUB_PAT")


async def _push(
    res: ForgeResources,
    container_id: str,
    repo_path: str,
    coords: RepositoryCoordinates,
    branch: str,
    *,
    force_only: bool = False,
) -> None:
    url, ref = _token_url(coords), shlex.quote(f"HEAD:refs/heads/{branch}")
    push = f"git push {url} {ref} --force"
    if not force_only:
        push = f"git push {url} {ref} --force-with-lease || {push}"
    await res.docker.exec_with_secret(
        container_id,
        f"cd {shlex.quote(repo_path)} && ({push})",
        name="GITHUB_PAT",
        value=res.settings.github_token,
    )


def _require_token(res: ForgeResources) -> None:
    if not res.settings.github_token:
        raise ForgeError("GitHub token not found (set GITHUB_TOKEN or GITHUB_PAT); cannot push")


async def _ask_pr_plan(ctx: StepContext, data: UnitTestOutput, base: str) -> PrPlan:
    res: ForgeResources = ctx.resources
    try:
        return await ask_structured(
            res.agent("github_pr"),
            prompts.pr_plan(data.container_id, data.repo_path, base),
            PrPlan,
            max_steps=PLAN_MAX_STEPS,
            max_retries=1,
        )
    except ForgeError as e:
        logger.info("No PR plan from collaborator, using defaults: %s", error_message(e))
        return PrPlan()


@step("prepare_commit_and_push", input_model=UnitTestOutput, output_model=PushOutput, fatal=True)
async def prepare_commit_and_push(ctx: StepContext, data: UnitTestOutput) -> PushOutput:
    """Commit the generated tests on a fresh branch and push it."""
    res: ForgeResources = ctx.resources
    _require_token(res)
    cid, path = data.container_id, data.repo_path

    async def sh(cmd: str, *, check: bool = True) -> str:
        return await res.docker.exec_in(cid, path, cmd, check=check)

    ctx.alert(
        AlertStatus.STARTING,
        "Prepare commit & push",
        subtitle="Creating branch and committing tests",
        container_id=cid,
        project_id=data.project_id,
    )

    await sh(f"git config user.email {shlex.quote(BOT_EMAIL)} && git config user.name {shlex.quote(BOT_NAME)}")
    await sh("git fetch origin --prune", check=False)

    heads = await sh(
        "git ls-remote --heads origin " + " ".join(BASE_BRANCH_PRIORITY) + " | awk -F'/' '{print $NF}'",
        check=False,
    )
    available = [line.strip() for line in heads.splitlines() if line.strip()]
    remote_head = ""
    if not any(name in available for name in BASE_BRANCH_PRIORITY):
        remote_head = await sh(
            "git symbolic-ref refs/remotes/origin/HEAD | sed 's@^refs/remotes/origin/@@'", check=False,
        )
    base = pick_base_branch(available, remote_head)
    branch = f"{BRANCH_PREFIX}{int(time.time() * 1000)}"
    message = commit_message_for(data.test_generation.summary)

    plan = await _ask_pr_plan(ctx, data, base)
    base = sanitize_branch(plan.base_branch) or base
    branch = sanitize_branch(plan.branch_name) or branch
    message = (plan.commit_message or "").strip() or message

    coords = parse_remote_url(await sh("git remote get-url origin", check=False))
    if coords is None and plan.repo_owner and plan.repo_name:
        try:
            coords = RepositoryCoordinates(plan.repo_owner, plan.repo_name)
        except MissingRepositoryCoordinatesError as e:
            logger.warning("Ignoring planned repository: %s", e)
    if coords is None:
        coords = resolve_repository(data.repository_url, data.context_data)

    await sh(f"git checkout {shlex.quote(base)}", check=False)
    await sh(f"git pull origin {shlex.quote(base)}", check=False)
    await sh(f"git checkout -B {shlex.quote(branch)}")
    await sh("git add -A")
    changed = (await sh("git status --porcelain")).strip()
    await sh(f"git commit -m {shlex.quote(message)} --no-verify" + ("" if changed else " --allow-empty"))

    try:
        await ctx.retry(lambda: _push(res, cid, path, coords, branch), title="Push retry", container_id=cid)
    except ForgeError as e:
        ctx.alert(AlertStatus.FAILED, "Push failed", subtitle=error_message(e), level=AlertLevel.ERROR, container_id=cid)
        raise

    logger.info("Pushed %s to %s (base %s)", branch, coords.full_name, base)
    ctx.alert(
        AlertStatus.COMPLETED,
        "Branch pushed",
        subtitle=f"{branch} -> {base}",
        container_id=cid,
        project_id=data.project_id,
    )
    return carry(
        data,
        PushOutput,
        tool_call_count=ctx.tool_calls.value,
        branch_name=branch,
        base_branch=base,
        repo_owner=coords.owner,
        repo_name=coords.repo,
        commit_message=message,
    )


@step("create_pull_request", input_model=PushOutput, output_model=PullRequestOutput, fatal=True)
async def create_pull_request(ctx: StepContext, data: PushOutput) -> PullRequestOutput:
    """Open the pull request for the pushed branch."""
    res: ForgeResources = ctx.resources
    _require_token(res)
    coords = RepositoryCoordinates(data.repo_owner, data.repo_name)
    title = commit_message_for(data.test_generation.summary)
    body = pr_body(data)
    ctx.alert(
        AlertStatus.STARTING,
        "Create pull request",
        subtitle=f"{data.branch_name} -> {data.base_branch}",
        container_id=data.container_id,
        project_id=data.project_id,
    )

    async def _open():
        return await res.github.create_pull_request(
            coords.owner, coords.repo, title=title, head=data.branch_name, base=data.base_branch, body=body,
        )

    try:
        pr = await _open()
    except GitHubError as e:
        if not e.no_commits:
            ctx.alert(
                AlertStatus.FAILED, "PR creation failed", subtitle=error_message(e),
                level=AlertLevel.ERROR, container_id=data.container_id,
            )
            raise
        logger.warning("Branch has no commits ahead of %s; pushing an empty commit", data.base_branch)
        await res.docker.exec_in(
            data.container_id,
            data.repo_path,
            "git commit --allow-empty -m 'chore: initialize PR branch' --no-verify",
        )
        await _push(res, data.container_id, data.repo_path, coords, data.branch_name, force_only=True)
        pr = await _open()

    if pr.number:
        await res.github.comment(
            coords.owner, coords.repo, pr.number,
            f"{title}.\n\nGenerated automatically; review test names first for intent.",
        )

    ctx.alert(
        AlertStatus.COMPLETED,
        "PR created",
        subtitle=pr.url,
        container_id=data.container_id,
        project_id=data.project_id,
    )
    return carry(
        data,
        PullRequestOutput,
        result=f"Opened {pr.url}",
        success=True,
        tool_call_count=ctx.tool_calls.value,
        pr_url=pr.url,
        pr_number=pr.number,
    )


@step("post_pr_url", input_model=PullRequestOutput, output_model=PullRequestOutput)
async def post_pr_url(ctx: StepContext, data: PullRequestOutput) -> PullRequestOutput:
    """Report the PR URL to the dashboard (best effort)."""
    res: ForgeResources = ctx.resources
    posted = await res.backend.post_pr_url(data.project_id, data.pr_url)
    ctx.alert(
        AlertStatus.COMPLETED,
        "PR URL reported" if posted else "PR URL not reported",
        subtitle=data.pr_url,
        container_id=data.container_id,
        project_id=data.project_id,
        level=None if posted else AlertLevel.WARNING,
    )
    return carry(data, PullRequestOutput, tool_call_count=ctx.tool_calls.value)


STAGES = [
    prepare_commit_and_push,
    create_pull_request,
    post_pr_url,
]
