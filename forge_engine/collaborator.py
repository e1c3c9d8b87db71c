"""
Text-generation collaborator — litellm agent with an OpenAI-style tool loop.

The engine only relies on ``generate(prompt, max_steps, max_retries)``
returning an ``AgentResult`` whose ``text`` is free-form. Everything else
(usage, finish reason, tool-call count) is informational.

Features:
- Direct litellm.acompletion() calls with a per-call timeout
- Tool calling loop bounded by ``max_steps``
- Transport retries bounded by ``max_retries``
- Circuit breaker after repeated consecutive failures
"""
import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Protocol, TypeVar

import litellm
from litellm import acompletion
from pydantic import BaseModel

from forge_engine.config import ForgeSettings
from forge_engine.exceptions import CollaboratorError, RetryExhaustedError, error_message
from forge_engine.parsing import parse_structured_response
from forge_engine.retry import with_retry

logger = logging.getLogger("forge.engine.collaborator")

T = TypeVar("T", bound=BaseModel)

BUDGET_EXHAUSTED_PROMPT = (
    "Your tool budget is exhausted. Reply now with your final answer only."
)


@dataclass
class AgentResult:
    """What a collaborator returns for one prompt."""
    text: str
    finish_reason: str = ""
    usage: dict[str, int] = field(default_factory=dict)
    tool_calls: int = 0


class Collaborator(Protocol):
    async def generate(
        self,
        prompt: str,
        *,
        max_steps: int | None = None,
        max_retries: int | None = None,
    ) -> AgentResult:
        ...


@dataclass
class AgentTool:
    """A tool the model may call during ``generate``."""
    name: str
    description: str
    parameters: dict[str, Any]
    handler: Callable[..., Awaitable[str]]

    def to_llm(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


class LiteLLMAgent:
    """
    Collaborator backed by litellm.

    Usage:
        agent = LiteLLMAgent(settings, name="context", instructions="...", tools=[docker_tool])
        result = await agent.generate("Analyze /app/repo", max_steps=30)
    """

    def __init__(
        self,
        settings: ForgeSettings,
        *,
        name: str = "agent",
        instructions: str = "",
        tools: list[AgentTool] | None = None,
        model: str | None = None,
    ):
        self.settings = settings
        self.name = name
        self.instructions = instructions
        self.model = model or settings.model
        self._tools = {t.name: t for t in tools or []}
        self._circuit_failures = 0
        self._circuit_threshold = 5
        self._circuit_reset_after = 30.0
        self._circuit_opened_at: float | None = None
        litellm.drop_params = True  # Don't fail on unsupported params

    def _is_circuit_open(self) -> bool:
        if self._circuit_failures < self._circuit_threshold or self._circuit_opened_at is None:
            return False
        if time.monotonic() - self._circuit_opened_at > self._circuit_reset_after:
            # Half-open: allow a probe
            self._circuit_failures = 0
            self._circuit_opened_at = None
            return False
        return True

    def _record_failure(self) -> None:
        self._circuit_failures += 1
        if self._circuit_failures >= self._circuit_threshold:
            self._circuit_opened_at = time.monotonic()

    async def _complete(self, messages: list[dict[str, Any]], use_tools: bool) -> Any:
        if self._is_circuit_open():
            raise CollaboratorError(f"Circuit breaker open for agent '{self.name}'")

        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": self.settings.temperature,
            "max_tokens": self.settings.max_tokens,
            "drop_params": True,
        }
        if use_tools and self._tools:
            kwargs["tools"] = [t.to_llm() for t in self._tools.values()]
            kwargs["tool_choice"] = "auto"

        try:
            response = await asyncio.wait_for(acompletion(**kwargs), timeout=self.settings.llm_timeout)
        except asyncio.TimeoutError:
            self._record_failure()
            raise CollaboratorError(
                f"Agent '{self.name}' timed out after {self.settings.llm_timeout}s"
            )
        except Exception as e:
            self._record_failure()
            raise CollaboratorError(f"Agent '{self.name}' completion failed: {e}") from e

        self._circuit_failures = 0
        return response

    async def _call_tool(self, name: str, arguments: str | dict[str, Any]) -> str:
        tool = self._tools.get(name)
        if tool is None:
            return json.dumps({"error": f"Unknown tool: {name}"})
        try:
            args = json.loads(arguments) if isinstance(arguments, str) else dict(arguments or {})
        except json.JSONDecodeError as e:
            return json.dumps({"error": f"Invalid tool arguments: {e}"})
        try:
            return await tool.handler(**args)
        except Exception as e:  # noqa: BLE001
            # Tool failures are reported back to the model, not raised
            logger.debug("Tool %s failed: %s", name, e)
            return json.dumps({"error": error_message(e)})

    async def generate(
        self,
        prompt: str,
        *,
        max_steps: int | None = None,
        max_retries: int | None = None,
    ) -> AgentResult:
        """Run the tool loop for ``prompt`` and return the final text."""
        steps = max_steps or self.settings.agent_max_steps
        retries = 2 if max_retries is None else max_retries
        messages: list[dict[str, Any]] = []
        if self.instructions:
            messages.append({"role": "system", "content": self.instructions})
        messages.append({"role": "user", "content": prompt})

        usage = {"prompt_tokens": 0, "completion_tokens": 0}
        tool_calls_made = 0

        async def complete(use_tools: bool) -> Any:
            try:
                return await with_retry(
                    lambda: self._complete(messages, use_tools),
                    max_attempts=retries + 1,
                    label=f"Agent '{self.name}' completion",
                )
            except RetryExhaustedError as e:
                raise CollaboratorError(error_message(e.last_error)) from e.last_error

        for _ in range(steps):
            response = await complete(use_tools=True)
            choice = response.choices[0]
            message = choice.message
            raw_usage = getattr(response, "usage", None)
            usage["prompt_tokens"] += getattr(raw_usage, "prompt_tokens", 0) or 0
            usage["completion_tokens"] += getattr(raw_usage, "completion_tokens", 0) or 0

            calls = getattr(message, "tool_calls", None)
            if not calls:
                return AgentResult(
                    text=message.content or "",
                    finish_reason=choice.finish_reason or "",
                    usage=usage,
                    tool_calls=tool_calls_made,
                )

            messages.append({
                "role": "assistant",
                "content": message.content or "",
                "tool_calls": [
                    {
                        "id": tc.id,
                        "type": "function",
                        "function": {"name": tc.function.name, "arguments": tc.function.arguments},
                    }
                    for tc in calls
                ],
            })
            for tc in calls:
                tool_calls_made += 1
                content = await self._call_tool(tc.function.name, tc.function.arguments)
                messages.append({
                    "role": "tool",
                    "tool_call_id": tc.id,
                    "name": tc.function.name,
                    "content": content,
                })

        logger.warning("Agent '%s' hit its step budget (%d); forcing a final answer", self.name, steps)
        messages.append({"role": "user", "content": BUDGET_EXHAUSTED_PROMPT})
        response = await complete(use_tools=False)
        choice = response.choices[0]
        return AgentResult(
            text=choice.message.content or "",
            finish_reason=choice.finish_reason or "length",
            usage=usage,
            tool_calls=tool_calls_made,
        )


async def ask_structured(
    agent: Collaborator,
    prompt: str,
    schema: type[T],
    *,
    max_steps: int | None = None,
    max_retries: int | None = None,
    recover: bool = True,
) -> T:
    """One collaborator call parsed into ``schema`` (one retry attempt's worth)."""
    result = await agent.generate(prompt, max_steps=max_steps, max_retries=max_retries)
    return parse_structured_response(result.text, schema, recover=recover, prompt=prompt)
