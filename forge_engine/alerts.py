# forge_engine/alerts.py
"""
Step lifecycle alerts — fire-and-forget POSTs to the dashboard.

``Notifier.notify`` schedules delivery and returns immediately. Delivery
failures are logged at debug level and dropped: never retried, never
surfaced, never able to change how a pipeline run ends.
"""
import asyncio
import logging
from enum import Enum
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

logger = logging.getLogger("forge.engine.alerts")


class AlertStatus(str, Enum):
    STARTING = "starting"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class AlertLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class Alert(BaseModel):
    """Wire shape of one step-status notification."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    step_id: str
    status: AlertStatus
    run_id: str
    title: str
    container_id: str | None = None
    project_id: str | None = None
    subtitle: str | None = None
    level: AlertLevel | None = None
    tool_call_count: int | None = None
    metadata: dict[str, Any] | None = None

    def payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Notifier:
    """
    Delivers alerts without ever blocking or failing the caller.

    Usage:
        notifier = Notifier("http://localhost:3000/api/alerts")
        notifier.notify(Alert(step_id="docker_setup", status="starting", ...))
        ...
        await notifier.aclose()   # waits for in-flight deliveries
    """

    def __init__(
        self,
        url: str | None = None,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.url = url
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None
        self._pending: set[asyncio.Future] = set()
        self.sent: int = 0
        self.dropped: int = 0

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    def notify(self, alert: Alert) -> None:
        """Schedule delivery of ``alert`` and return immediately."""
        logger.debug("Alert %s/%s: %s", alert.step_id, alert.status.value, alert.title)
        if not self.url:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as e:
            # No running loop: nothing to schedule on
            self.dropped += 1
            logger.debug("Alert dropped (%s): %s", alert.step_id, e)
            return
        task = loop.create_task(self._deliver(alert))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, alert: Alert) -> None:
        """POST one alert. Never raises."""
        try:
            response = await self._get_client().post(self.url, json=alert.payload())
            if response.status_code >= 400:
                self.dropped += 1
                logger.debug("Alert endpoint returned %d for %s", response.status_code, alert.step_id)
            else:
                self.sent += 1
        except Exception as e:  # noqa: BLE001
            self.dropped += 1
            logger.debug("Alert delivery failed for %s: %s", alert.step_id, e)

    async def drain(self) -> None:
        """Wait for all in-flight deliveries (used at shutdown and in tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def aclose(self) -> None:
        await self.drain()
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None


