# forge_workflows/shims/backend.py
"""Best-effort POSTs to the project dashboard backend. Never raises."""
import logging
from typing import Any

import httpx

logger = logging.getLogger("forge.workflows.shims.backend")


class BackendClient:
    """
    Thin client for ``{BASE_URL}/api/projects/{project_id}/...``.

    Every method returns True when the backend answered 2xx and False on
    any other outcome (non-2xx, network error, timeout).
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    def project_url(self, project_id: str, suffix: str) -> str:
        return f"{self.base_url}/api/projects/{project_id}/{suffix}"

    async def _post(self, url: str, payload: dict[str, Any]) -> bool:
        try:
            response = await self._client.post(url, json=payload)
        except Exception as e:  # noqa: BLE001
            logger.warning("POST %s failed: %s", url, e)
            return False
        if response.is_success:
            return True
        logger.warning("POST %s returned %d: %s", url, response.status_code, response.text[:500])
        return False

    async def post_description(self, project_id: str, description: str) -> bool:
        return await self._post(self.project_url(project_id, "description"), {"description": description})

    async def post_stack(self, project_id: str, items: list[dict[str, Any]]) -> int:
        """POST each tech-stack item separately; return how many were accepted."""
        url = self.project_url(project_id, "stack")
        accepted = 0
        for item in items:
            payload = {
                "title": item.get("title", ""),
                "description": item.get("description", ""),
                "icon": item.get("icon"),
            }
            if await self._post(url, payload):
                accepted += 1
        return accepted

    async def post_pr_url(self, project_id: str, pr_url: str) -> bool:
        return await self._post(self.project_url(project_id, "pr-url"), {"prUrl": pr_url})

    async def post_coverage(self, project_id: str, payload: dict[str, Any]) -> bool:
        return await self._post(self.project_url(project_id, "test-coverage"), payload)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
