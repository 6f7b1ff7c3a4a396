import asyncio
import json
import time
from datetime import UTC, datetime
from typing import Any

import pytest

from gravity_claw.exceptions import ToolTimeoutError
from gravity_claw.tools import GetCurrentTimeTool, ToolRegistry, ToolResult, create_default_registry
from gravity_claw.tools.registry import Tool


class EchoTool(Tool):
    name = "echo"
    description = "Echo a message."
    parameters = {
        "type": "object",
        "properties": {"message": {"type": "string"}},
        "required": ["message"],
    }

    def __init__(self):
        self.calls = 0

    async def execute(self, message: str, **kwargs: Any) -> Any:
        self.calls += 1
        return {"echo": message}


class HangingTool(Tool):
    name = "hang"
    description = "Never finishes."
    timeout_seconds = 0.05

    async def execute(self, **kwargs: Any) -> Any:
        await asyncio.Event().wait()


class ExplodingTool(Tool):
    name = "boom"
    description = "Always raises."

    async def execute(self, **kwargs: Any) -> Any:
        raise RuntimeError("kaboom")


class ErrorDictTool(Tool):
    name = "soft_fail"
    description = "Reports failure as a payload."

    async def execute(self, **kwargs: Any) -> Any:
        return {"error": "upstream said no"}


def _registry(*tools: Tool) -> ToolRegistry:
    registry = ToolRegistry()
    for tool in tools:
        registry.register(tool)
    return registry


def test_tool_result_failure_always_has_error() -> None:
    failed = ToolResult(success=False)
    assert failed.error == "Tool execution failed"
    assert failed.content is None
    assert failed.to_payload() == {"error": "Tool execution failed"}

    ok = ToolResult(success=True, content={"a": 1}, error="ignored")
    assert ok.error is None
    assert json.loads(ok.to_message_content()) == {"a": 1}


def test_timeout_message_formats_whole_seconds() -> None:
    assert str(ToolTimeoutError("slow", 30.0)) == 'Tool "slow" timed out after 30s'


def test_registry_lists_definitions() -> None:
    registry = _registry(EchoTool())

    assert registry.list_tools() == ["echo"]
    assert registry.has_tool("echo")
    definition = registry.get_definitions()[0]
    assert definition.name == "echo"
    assert definition.parameters["required"] == ["message"]

    registry.unregister("echo")
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_execute_returns_payload() -> None:
    result = await _registry(EchoTool()).execute("echo", {"message": "hi"})

    assert result.success
    assert result.content == {"echo": "hi"}


@pytest.mark.asyncio
async def test_hanging_tool_times_out() -> None:
    registry = _registry(HangingTool())

    started = time.monotonic()
    result = await registry.execute("hang", {})

    assert time.monotonic() - started < 1.0
    assert not result.success
    assert result.error == 'Tool "hang" timed out after 0.05s'


@pytest.mark.asyncio
async def test_registry_default_timeout_applies() -> None:
    class SlowTool(Tool):
        name = "slow"
        description = "Sleeps."

        async def execute(self, **kwargs: Any) -> Any:
            await asyncio.sleep(5)

    registry = ToolRegistry(default_timeout_seconds=0.02)
    registry.register(SlowTool())

    result = await registry.execute("slow")

    assert result.error == 'Tool "slow" timed out after 0.02s'


@pytest.mark.asyncio
async def test_tool_exception_becomes_error_result() -> None:
    result = await _registry(ExplodingTool()).execute("boom", {})

    assert not result.success
    assert result.error == 'Tool "boom" failed: kaboom'


@pytest.mark.asyncio
async def test_error_dict_is_treated_as_failure() -> None:
    result = await _registry(ErrorDictTool()).execute("soft_fail", {})

    assert not result.success
    assert result.error == "upstream said no"


@pytest.mark.asyncio
async def test_unknown_tool_is_an_error_result() -> None:
    result = await _registry().execute("nope", {})

    assert not result.success
    assert result.error == "Unknown tool: nope"


@pytest.mark.asyncio
async def test_invalid_arguments_never_reach_the_tool() -> None:
    tool = EchoTool()
    registry = _registry(tool)

    missing = await registry.execute("echo", {})
    wrong_type = await registry.execute("echo", {"message": 5})

    assert tool.calls == 0
    assert "'message' is a required property" in missing.error
    assert wrong_type.error.startswith('Invalid arguments for tool "echo": message:')


def _fixed_clock() -> datetime:
    return datetime(2026, 3, 5, 14, 7, 9, tzinfo=UTC)


@pytest.mark.asyncio
async def test_current_time_defaults_to_utc() -> None:
    registry = _registry(GetCurrentTimeTool(clock=_fixed_clock))

    result = await registry.execute("get_current_time", {})

    assert result.success
    assert result.content == {
        "time": "Thursday, March 5, 2026 at 2:07:09 PM UTC",
        "timezone": "UTC",
        "iso": "2026-03-05T14:07:09Z",
    }


@pytest.mark.asyncio
async def test_current_time_in_named_zone() -> None:
    registry = _registry(GetCurrentTimeTool(clock=_fixed_clock))

    result = await registry.execute("get_current_time", {"timezone": "Asia/Kolkata"})

    assert result.content["time"] == "Thursday, March 5, 2026 at 7:37:09 PM IST"
    assert result.content["timezone"] == "Asia/Kolkata"
    assert result.content["iso"] == "2026-03-05T14:07:09Z"


@pytest.mark.asyncio
async def test_current_time_rejects_unknown_zone() -> None:
    registry = _registry(GetCurrentTimeTool(clock=_fixed_clock))

    result = await registry.execute("get_current_time", {"timezone": "Mars/Olympus"})

    assert not result.success
    assert result.error == 'Invalid timezone: "Mars/Olympus"'


def test_default_registry_holds_builtin_tools() -> None:
    registry = create_default_registry(default_timeout_seconds=10)

    assert registry.list_tools() == ["get_current_time"]
    assert registry.default_timeout_seconds == 10.0
