# forge_workflows/shims/github.py
"""GitHub REST calls used by the pull-request phase."""
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from forge_engine.exceptions import ForgeError

logger = logging.getLogger("forge.workflows.shims.github")


class GitHubError(ForgeError):
    """GitHub API returned an error response."""

    def __init__(self, message: str, status_code: int, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body

    @property
    def no_commits(self) -> bool:
        return self.status_code == 422 and "no commits" in self.body.lower()


@dataclass
class PullRequestInfo:
    url: str
    number: int | None = None


class GitHubClient:
    def __init__(
        self,
        token: str,
        *,
        api_url: str = "https://api.github.com",
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.token = token
        self.api_url = api_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    @property
    def headers(self) -> dict[str, str]:
        headers = {"Accept": "application/vnd.github+json"}
        if self.token:
            headers["Authorization"] = f"token {self.token}"
        return headers

    async def create_pull_request(
        self,
        owner: str,
        repo: str,
        *,
        title: str,
        head: str,
        base: str,
        body: str,
    ) -> PullRequestInfo:
        """Open a PR. Raises ``GitHubError`` on any non-2xx answer."""
        response = await self._client.post(
            f"{self.api_url}/repos/{owner}/{repo}/pulls",
            headers=self.headers,
            json={
                "title": title,
                "head": head,
                "base": base,
                "body": body,
                "maintainer_can_modify": True,
            },
        )
        if not response.is_success:
            raise GitHubError(
                f"GitHub PR creation failed ({response.status_code})",
                response.status_code,
                response.text[:1000],
            )
        data = response.json()
        return PullRequestInfo(
            url=data.get("html_url") or f"https://github.com/{owner}/{repo}/pulls",
            number=data.get("number"),
        )

    async def comment(self, owner: str, repo: str, number: int, body: str) -> bool:
        """Best-effort issue comment."""
        try:
            response = await self._client.post(
                f"{self.api_url}/repos/{owner}/{repo}/issues/{number}/comments",
                headers=self.headers,
                json={"body": body},
            )
            return response.is_success
        except Exception as e:  # noqa: BLE001
            logger.debug("PR comment failed: %s", e)
            return False

    async def repository_about(self, owner: str, repo: str) -> dict[str, Any]:
        """Description and topics of a repository; empty dict when unavailable."""
        try:
            response = await self._client.get(f"{self.api_url}/repos/{owner}/{repo}", headers=self.headers)
            if not response.is_success:
                return {}
            data = response.json()
            return {
                "about": data.get("description") or "",
                "topics": data.get("topics") or [],
                "language": data.get("language") or "",
            }
        except Exception as e:  # noqa: BLE001
            logger.debug("Repository lookup failed: %s", e)
            return {}

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
