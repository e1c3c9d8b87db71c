# forge_workflows/resources.py
"""Per-run services handed to steps as ``ctx.resources``."""
import logging
from dataclasses import dataclass, field

from forge_engine.alerts import Notifier
from forge_engine.collaborator import Collaborator, LiteLLMAgent
from forge_engine.config import ForgeSettings
from forge_engine.counter import ToolCallCounter
from forge_workflows import prompts
from forge_workflows.shims.backend import BackendClient
from forge_workflows.shims.docker import DockerShell, docker_exec_tool
from forge_workflows.shims.github import GitHubClient

logger = logging.getLogger("forge.workflows.resources")

AGENT_ROLES = ("context", "description", "unit_test", "github_pr", "coverage")


@dataclass
class ForgeResources:
    """
    Everything one pipeline run talks to.

    Attributes:
        settings: Runtime settings.
        counter: Tool-call counter shared by shims and the engine.
        docker: Docker command shim (bumps ``counter``).
        backend: Dashboard backend client.
        github: GitHub REST client.
        notifier: Alert sink.
        agents: Collaborators by role (see ``AGENT_ROLES``).
    """
    settings: ForgeSettings
    counter: ToolCallCounter
    docker: DockerShell
    backend: BackendClient
    github: GitHubClient
    notifier: Notifier
    agents: dict[str, Collaborator] = field(default_factory=dict)

    def agent(self, role: str) -> Collaborator:
        try:
            return self.agents[role]
        except KeyError:
            raise KeyError(f"No collaborator registered for role '{role}'") from None

    @classmethod
    def create(cls, settings: ForgeSettings | None = None) -> "ForgeResources":
        """Wire real shims and litellm agents for one run."""
        settings = settings or ForgeSettings.from_env()
        counter = ToolCallCounter()
        docker = DockerShell(counter, timeout=settings.command_timeout)
        tools = [docker_exec_tool(docker)]
        agents: dict[str, Collaborator] = {
            role: LiteLLMAgent(
                settings,
                name=role,
                instructions=prompts.INSTRUCTIONS[role],
                tools=tools,
            )
            for role in AGENT_ROLES
        }
        return cls(
            settings=settings,
            counter=counter,
            docker=docker,
            backend=BackendClient(settings.backend_base_url, timeout=settings.http_timeout),
            github=GitHubClient(settings.github_token, api_url=settings.github_api_url),
            notifier=Notifier(settings.alerts_url, timeout=settings.http_timeout),
            agents=agents,
        )

    async def aclose(self) -> None:
        await self.notifier.aclose()
        await self.backend.aclose()
        await self.github.aclose()
