"""I/O shims around docker, the dashboard backend and GitHub."""
from forge_workflows.shims.backend import BackendClient
from forge_workflows.shims.docker import DockerShell, docker_exec_tool
from forge_workflows.shims.github import GitHubClient, GitHubError, PullRequestInfo

__all__ = ["BackendClient", "DockerShell", "docker_exec_tool", "GitHubClient", "GitHubError", "PullRequestInfo"]
