"""
TestForge Test Suite — Shared Fixtures

Everything here is in-process: alerts are recorded instead of POSTed,
docker commands are answered from a script, and collaborators replay
canned responses. No network, no docker daemon, no LLM.
"""
import json
from unittest.mock import AsyncMock

import pytest

from forge_engine.alerts import Alert, Notifier
from forge_engine.collaborator import AgentResult
from forge_engine.config import ForgeSettings
from forge_engine.counter import ToolCallCounter
from forge_engine.exceptions import CollaboratorError, CommandError
from forge_workflows.resources import AGENT_ROLES, ForgeResources
from forge_workflows.shims.github import PullRequestInfo

CONTAINER_ID = "c0ffee" * 10 + "abcd"


# ── Pytest Configuration ──────────────────────────────────────────────────────

def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests with no external services")


# ── Fakes ─────────────────────────────────────────────────────────────────────

class RecordingNotifier(Notifier):
    """Keeps alerts in memory instead of delivering them."""

    def __init__(self):
        super().__init__(url=None)
        self.alerts: list[Alert] = []

    def notify(self, alert: Alert) -> None:
        self.alerts.append(alert)

    def for_step(self, step_id: str) -> list[Alert]:
        return [a for a in self.alerts if a.step_id == step_id]


class FakeAgent:
    """
    Collaborator replaying scripted responses (str, dict or exception).

    ``on(marker, ...)`` scripts answers for prompts containing ``marker``,
    which keeps concurrent steps sharing one agent deterministic. Anything
    else is answered from the plain ``queue`` in order.
    """

    def __init__(self, *responses):
        self.responses = list(responses)
        self.routes: dict[str, list] = {}
        self.prompts: list[str] = []

    def queue(self, *responses) -> "FakeAgent":
        self.responses.extend(responses)
        return self

    def on(self, marker: str, *responses) -> "FakeAgent":
        self.routes.setdefault(marker, []).extend(responses)
        return self

    def _next(self, prompt: str):
        for marker, queued in self.routes.items():
            if marker in prompt and queued:
                return queued.pop(0)
        if not self.responses:
            raise AssertionError(f"FakeAgent has no scripted response for: {prompt[:80]!r}")
        return self.responses.pop(0)

    async def generate(self, prompt, *, max_steps=None, max_retries=None) -> AgentResult:
        self.prompts.append(prompt)
        response = self._next(prompt)
        if isinstance(response, BaseException):
            raise response
        if isinstance(response, dict):
            response = json.dumps(response)
        return AgentResult(text=response)


class FakeDocker:
    """
    Scripted stand-in for ``DockerShell``.

    ``outputs`` maps a command substring to its stdout; ``fail_on`` maps a
    substring to how many times a matching command should fail.
    """

    def __init__(self, counter: ToolCallCounter):
        self.counter = counter
        self.commands: list[str] = []
        self.files: dict[str, str] = {}
        self.outputs: dict[str, str] = {}
        self.fail_on: dict[str, int] = {}
        self.secrets: list[tuple[str, str]] = []

    def _record(self, cmd: str) -> str:
        self.counter.increment()
        self.commands.append(cmd)
        for needle, remaining in self.fail_on.items():
            if needle in cmd and remaining > 0:
                self.fail_on[needle] = remaining - 1
                raise CommandError(cmd, 1, f"{needle} failed")
        for needle, out in self.outputs.items():
            if needle in cmd:
                return out
        return ""

    async def run(self, argv, *, stdin=None, check=True) -> str:
        return await self._checked(" ".join(argv), check)

    async def _checked(self, cmd: str, check: bool) -> str:
        try:
            return self._record(cmd)
        except CommandError:
            if check:
                raise
            return ""

    async def exec(self, container_id, cmd, *, check=True) -> str:
        return await self._checked(cmd, check)

    async def exec_in(self, container_id, workdir, cmd, *, check=True) -> str:
        return await self._checked(f"cd {workdir} && {cmd}", check)

    async def file_exists(self, container_id, path) -> bool:
        self._record(f"test -f {path}")
        return path in self.files

    async def read_file(self, container_id, path) -> str:
        self._record(f"cat {path}")
        return self.files[path]

    async def write_file(self, container_id, path, text) -> None:
        self._record(f"write {path}")
        self.files[path] = text

    async def copy_to(self, container_id, local_path, remote_path) -> None:
        self._record(f"docker cp {remote_path}")
        with open(local_path, encoding="utf-8") as f:
            self.files[remote_path] = f.read()

    async def exec_with_secret(self, container_id, cmd, *, name, value, check=True) -> str:
        self.secrets.append((name, value))
        return await self._checked(cmd, check)

    async def start_sandbox(self, image, name, workdir) -> str:
        self._record(f"start {image} as {name}")
        return CONTAINER_ID


# ── Fixtures ──────────────────────────────────────────────────────────────────

@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def counter() -> ToolCallCounter:
    return ToolCallCounter()


@pytest.fixture
def settings() -> ForgeSettings:
    """Settings independent of the caller's environment."""
    return ForgeSettings(
        backend_base_url="http://backend.test",
        alerts_url_override="",
        github_token="ghp_test",
        workdir="/app",
        max_attempts=3,
        agent_max_steps=5,
    )


@pytest.fixture
def agents() -> dict[str, FakeAgent]:
    return {role: FakeAgent() for role in AGENT_ROLES}


@pytest.fixture
def docker(counter) -> FakeDocker:
    return FakeDocker(counter)


@pytest.fixture
def backend() -> AsyncMock:
    client = AsyncMock()
    client.post_description.return_value = True
    client.post_stack.side_effect = lambda project_id, items: len(items)
    client.post_pr_url.return_value = True
    client.post_coverage.return_value = True
    return client


@pytest.fixture
def github() -> AsyncMock:
    client = AsyncMock()
    client.create_pull_request.return_value = PullRequestInfo(
        url="https://github.com/acme/widgets/pull/7", number=7,
    )
    client.comment.return_value = True
    client.repository_about.return_value = {}
    return client


@pytest.fixture
def resources(settings, counter, docker, backend, github, notifier, agents) -> ForgeResources:
    return ForgeResources(
        settings=settings,
        counter=counter,
        docker=docker,
        backend=backend,
        github=github,
        notifier=notifier,
        agents=agents,
    )


# ── Scripted collaborator replies ─────────────────────────────────────────────

REPOSITORY_REPLY = {
    "type": "Mono",
    "rootPath": "/app/widgets",
    "gitStatus": {"isGitRepo": True, "defaultBranch": "main", "hasRemote": True},
    "structure": {
        "packages": [{"path": "packages/api", "name": "widgets-api", "type": "App"}],
        "keyDirectories": ["packages", "src"],
    },
    "languages": [{"language": "Python", "percentage": 92, "fileCount": 40}],
}

CODEBASE_REPLY = {
    "architecture": {
        "pattern": "layered",
        "entryPoints": ["src/app.py"],
        "dependencies": {"keyLibraries": [{"name": "fastapi", "purpose": "HTTP API"}]},
    },
    "codeQuality": {"hasTests": True, "documentation": {"codeComments": "Minimal"}},
}

BUILD_REPLY = {
    "buildSystem": {"type": "pip"},
    "packageManagement": {"managers": ["pip"]},
    "testing": {"frameworks": ["pytest"], "testCommands": ["pytest -q"]},
}

SYNTHESIS_REPLY = {
    "insights": {
        "complexity": "Simple",
        "maturity": "prod",
        "maintainability": "good",
        "recommendations": ["Add CI test stage", "Split the settings module"],
    },
    "confidence": {"repository": 0.9, "codebase": 0.8, "buildDeploy": 0.7, "overall": 0.8},
    "executiveSummary": "A small layered Python service.",
}

PLAN_REPLY = {
    "analysis": {
        "sourceModules": [{"modulePath": "src", "sourceFiles": ["src/app.py"], "priority": "high"}],
        "testingFramework": "pytest",
        "totalFiles": 1,
    },
    "specs": [
        {"sourceFile": "src/app.py", "functions": [{"name": "add", "testCases": ["adds", "negatives"]}]},
    ],
}

GENERATION_REPLY = {
    "testFiles": [
        {"sourceFile": "src/app.py", "testFile": "tests/test_app.py",
         "functionsCount": 1, "testCasesCount": 2, "success": True},
    ],
    "summary": {"totalFunctions": 99, "totalTestCases": 99, "successfulFiles": 99},
    "quality": {"syntaxValid": True, "followsBestPractices": True, "coverageScore": 70},
}

COVERAGE_REPLY = {
    "isValid": True,
    "language": "Python",
    "framework": "pytest",
    "coverage": 0.42,
    "method": "json",
    "files": 3,
}

REMOTE_URL = "https://github.com/acme/widgets.git\n"

# First line of each prompt; see forge_workflows.prompts
DESCRIBE = "Describe this project"
STACK = "List the technologies"
ANALYZE_REPOSITORY = "Analyze the repository structure"
ANALYZE_CODEBASE = "Analyze the codebase architecture"
ANALYZE_BUILD = "Analyze how the repository is built"
SYNTHESIZE = "Synthesize the three analyses"
PLAN = "Plan unit tests"
GENERATE = "Write the unit tests"
PR_PLAN = "Suggest a branch name"
COVERAGE = "Measure unit-test coverage"


def script_happy_path(agents: dict, docker: FakeDocker) -> None:
    """Script every collaborator and git query for a clean end-to-end run."""
    agents["description"].on(DESCRIBE, {"description": "Widgets as a service"})
    agents["description"].on(STACK, {"techStack": [{"title": "Python"}, {"title": "python"}, {"title": "Docker"}]})
    agents["context"].on(ANALYZE_REPOSITORY, REPOSITORY_REPLY)
    agents["context"].on(ANALYZE_CODEBASE, CODEBASE_REPLY)
    agents["context"].on(ANALYZE_BUILD, BUILD_REPLY)
    agents["context"].on(SYNTHESIZE, SYNTHESIS_REPLY)
    agents["unit_test"].on(PLAN, PLAN_REPLY)
    agents["unit_test"].on(GENERATE, GENERATION_REPLY)
    agents["github_pr"].on(PR_PLAN, CollaboratorError("no plan"))
    agents["coverage"].on(COVERAGE, COVERAGE_REPLY)
    docker.outputs.update({
        "git ls-remote": "main\ndevelop\n",
        "git remote get-url origin": REMOTE_URL,
        "git status --porcelain": "A  tests/test_app.py\n",
    })
