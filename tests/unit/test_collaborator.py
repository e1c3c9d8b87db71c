# tests/unit/test_collaborator.py
"""
Tests for forge_engine.collaborator — the litellm agent and ask_structured.

litellm.acompletion is patched; no model is ever contacted.
"""
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

pytestmark = pytest.mark.unit

from forge_engine.collaborator import (
    BUDGET_EXHAUSTED_PROMPT,
    AgentTool,
    LiteLLMAgent,
    ask_structured,
)
from forge_engine.exceptions import CollaboratorError, ExtractionQualityError
from forge_workflows.schemas import DescriptionResponse


def _response(content="", tool_calls=None, finish_reason="stop", prompt_tokens=10, completion_tokens=5):
    message = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(
        choices=[SimpleNamespace(message=message, finish_reason=finish_reason)],
        usage=SimpleNamespace(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens),
    )


def _tool_call(name, arguments, id="call_1"):
    return SimpleNamespace(id=id, function=SimpleNamespace(name=name, arguments=arguments))


def _exec_tool(handler=None) -> AgentTool:
    return AgentTool(
        name="docker_exec",
        description="Run a shell command in the sandbox",
        parameters={"type": "object", "properties": {"command": {"type": "string"}}},
        handler=handler or AsyncMock(return_value="README.md\nsetup.py"),
    )


# ============================================================================
# 1. Tool definitions
# ============================================================================


class TestAgentTool:

    def test_to_llm(self):
        spec = _exec_tool().to_llm()
        assert spec["type"] == "function"
        assert spec["function"]["name"] == "docker_exec"
        assert spec["function"]["parameters"]["properties"]["command"]["type"] == "string"


# ============================================================================
# 2. Generation
# ============================================================================


class TestGenerate:

    @pytest.mark.asyncio
    async def test_plain_answer(self, settings):
        agent = LiteLLMAgent(settings, name="description", instructions="Be brief.")
        with patch("forge_engine.collaborator.acompletion", AsyncMock(return_value=_response("hello"))) as mock:
            result = await agent.generate("Describe the repo")

        assert result.text == "hello"
        assert result.finish_reason == "stop"
        assert result.usage == {"prompt_tokens": 10, "completion_tokens": 5}
        assert result.tool_calls == 0
        kwargs = mock.call_args.kwargs
        assert kwargs["model"] == settings.model
        assert kwargs["messages"][0] == {"role": "system", "content": "Be brief."}
        assert kwargs["messages"][1] == {"role": "user", "content": "Describe the repo"}
        assert "tools" not in kwargs

    @pytest.mark.asyncio
    async def test_tool_loop(self, settings):
        handler = AsyncMock(return_value="README.md\nsetup.py")
        agent = LiteLLMAgent(settings, name="context", tools=[_exec_tool(handler)])
        responses = [
            _response(tool_calls=[_tool_call("docker_exec", '{"command": "ls"}')], finish_reason="tool_calls"),
            _response('{"description": "done"}'),
        ]
        with patch("forge_engine.collaborator.acompletion", AsyncMock(side_effect=responses)) as mock:
            result = await agent.generate("Inspect", max_steps=5)

        handler.assert_awaited_once_with(command="ls")
        assert result.text == '{"description": "done"}'
        assert result.tool_calls == 1
        assert result.usage["prompt_tokens"] == 20
        first_kwargs = mock.call_args_list[0].kwargs
        assert first_kwargs["tools"][0]["function"]["name"] == "docker_exec"
        assert first_kwargs["tool_choice"] == "auto"
        messages = mock.call_args_list[1].kwargs["messages"]
        tool_message = messages[-1]
        assert tool_message["role"] == "tool"
        assert tool_message["tool_call_id"] == "call_1"
        assert tool_message["content"] == "README.md\nsetup.py"

    @pytest.mark.asyncio
    async def test_unknown_tool_reported_to_model(self, settings):
        agent = LiteLLMAgent(settings, tools=[_exec_tool()])
        responses = [
            _response(tool_calls=[_tool_call("rm_rf", "{}")]),
            _response("final"),
        ]
        with patch("forge_engine.collaborator.acompletion", AsyncMock(side_effect=responses)) as mock:
            await agent.generate("Go")
        content = mock.call_args_list[1].kwargs["messages"][-1]["content"]
        assert json.loads(content) == {"error": "Unknown tool: rm_rf"}

    @pytest.mark.asyncio
    async def test_tool_failure_reported_to_model(self, settings):
        handler = AsyncMock(side_effect=RuntimeError("container gone"))
        agent = LiteLLMAgent(settings, tools=[_exec_tool(handler)])
        responses = [
            _response(tool_calls=[_tool_call("docker_exec", '{"command": "ls"}')]),
            _response("final"),
        ]
        with patch("forge_engine.collaborator.acompletion", AsyncMock(side_effect=responses)) as mock:
            result = await agent.generate("Go")
        assert result.text == "final"
        content = mock.call_args_list[1].kwargs["messages"][-1]["content"]
        assert json.loads(content) == {"error": "container gone"}

    @pytest.mark.asyncio
    async def test_invalid_tool_arguments(self, settings):
        handler = AsyncMock()
        agent = LiteLLMAgent(settings, tools=[_exec_tool(handler)])
        responses = [
            _response(tool_calls=[_tool_call("docker_exec", "{not json")]),
            _response("final"),
        ]
        with patch("forge_engine.collaborator.acompletion", AsyncMock(side_effect=responses)) as mock:
            await agent.generate("Go")
        handler.assert_not_awaited()
        content = json.loads(mock.call_args_list[1].kwargs["messages"][-1]["content"])
        assert content["error"].startswith("Invalid tool arguments")

    @pytest.mark.asyncio
    async def test_step_budget_forces_final_answer(self, settings):
        agent = LiteLLMAgent(settings, tools=[_exec_tool()])
        looping = _response(tool_calls=[_tool_call("docker_exec", '{"command": "ls"}')])
        final = _response("forced answer", finish_reason=None)
        with patch("forge_engine.collaborator.acompletion", AsyncMock(side_effect=[looping, looping, final])) as mock:
            result = await agent.generate("Go", max_steps=2)

        assert result.text == "forced answer"
        assert result.finish_reason == "length"
        assert result.tool_calls == 2
        last_kwargs = mock.call_args_list[-1].kwargs
        assert "tools" not in last_kwargs
        assert last_kwargs["messages"][-1] == {"role": "user", "content": BUDGET_EXHAUSTED_PROMPT}


# ============================================================================
# 3. Transport failures and circuit breaker
# ============================================================================


class TestTransportFailures:

    @pytest.mark.asyncio
    async def test_transient_failure_retried(self, settings):
        agent = LiteLLMAgent(settings)
        mock = AsyncMock(side_effect=[ConnectionError("reset"), _response("ok")])
        with patch("forge_engine.collaborator.acompletion", mock):
            result = await agent.generate("Go", max_retries=1)
        assert result.text == "ok"
        assert mock.await_count == 2

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_collaborator_error(self, settings):
        agent = LiteLLMAgent(settings)
        mock = AsyncMock(side_effect=ConnectionError("reset"))
        with patch("forge_engine.collaborator.acompletion", mock):
            with pytest.raises(CollaboratorError, match="reset"):
                await agent.generate("Go", max_retries=2)
        assert mock.await_count == 3

    @pytest.mark.asyncio
    async def test_circuit_opens_after_threshold(self, settings):
        agent = LiteLLMAgent(settings)
        mock = AsyncMock(side_effect=ConnectionError("down"))
        with patch("forge_engine.collaborator.acompletion", mock):
            for _ in range(5):
                with pytest.raises(CollaboratorError):
                    await agent.generate("Go", max_retries=0)
            assert mock.await_count == 5

            with pytest.raises(CollaboratorError, match="Circuit breaker open"):
                await agent.generate("Go", max_retries=0)
            assert mock.await_count == 5

    @pytest.mark.asyncio
    async def test_circuit_half_opens_after_reset_window(self, settings):
        agent = LiteLLMAgent(settings)
        agent._circuit_failures = 5
        agent._circuit_opened_at = 0.0
        agent._circuit_reset_after = 0.0
        with patch("forge_engine.collaborator.acompletion", AsyncMock(return_value=_response("back"))):
            result = await agent.generate("Go", max_retries=0)
        assert result.text == "back"
        assert agent._circuit_failures == 0


# ============================================================================
# 4. ask_structured
# ============================================================================


class TestAskStructured:

    @pytest.mark.asyncio
    async def test_parses_into_schema(self, settings):
        agent = LiteLLMAgent(settings)
        reply = _response('```json\n{"description": "A widget service"}\n```')
        with patch("forge_engine.collaborator.acompletion", AsyncMock(return_value=reply)):
            value = await ask_structured(agent, "Describe", DescriptionResponse)
        assert value.description == "A widget service"

    @pytest.mark.asyncio
    async def test_forwards_budgets(self):
        agent = AsyncMock()
        agent.generate.return_value = SimpleNamespace(text='{"description": "forwarded"}')
        await ask_structured(agent, "p", DescriptionResponse, max_steps=3, max_retries=1)
        agent.generate.assert_awaited_once_with("p", max_steps=3, max_retries=1)

    @pytest.mark.asyncio
    async def test_unparseable_reply(self, settings):
        agent = LiteLLMAgent(settings)
        with patch("forge_engine.collaborator.acompletion", AsyncMock(return_value=_response("I cannot help with that."))):
            with pytest.raises(ExtractionQualityError):
                await ask_structured(agent, "Describe", DescriptionResponse)
