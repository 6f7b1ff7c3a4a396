"""Tool registry, base tool class and execution sandbox."""

import asyncio
import json
from abc import ABC, abstractmethod
from typing import Any

from jsonschema import Draft7Validator
from pydantic import BaseModel, model_validator

from gravity_claw.exceptions import (
    ToolExecutionError,
    ToolNotFoundError,
    ToolTimeoutError,
    ToolValidationError,
)
from gravity_claw.llm import ToolDefinition
from gravity_claw.logging import get_logger

log = get_logger(__name__)

DEFAULT_TOOL_TIMEOUT_SECONDS = 30.0


class ToolResult(BaseModel):
    """Result from tool execution: a payload on success or an error message."""

    success: bool = True
    content: Any = None
    error: str | None = None

    @model_validator(mode="after")
    def _exactly_one_outcome(self) -> "ToolResult":
        """Failed results always carry an error and never a payload."""
        if self.success:
            self.error = None
            return self
        if not (self.error or "").strip():
            fallback = str(self.content or "").strip()
            self.error = fallback or "Tool execution failed"
        self.content = None
        return self

    @classmethod
    def ok(cls, content: Any) -> "ToolResult":
        return cls(success=True, content=content)

    @classmethod
    def fail(cls, error: str) -> "ToolResult":
        return cls(success=False, error=error)

    def to_payload(self) -> Any:
        """Shape sent back to the model: the raw payload or ``{"error": ...}``."""
        if self.success:
            return self.content
        return {"error": self.error}

    def to_message_content(self) -> str:
        payload = self.to_payload()
        if isinstance(payload, str):
            return payload
        return json.dumps(payload, ensure_ascii=False, default=str)


class Tool(ABC):
    """Base class for all tools."""

    name: str = ""
    description: str = ""
    parameters: dict[str, Any] = {"type": "object", "properties": {}, "required": []}
    timeout_seconds: float | None = None

    @abstractmethod
    async def execute(self, **kwargs: Any) -> Any:
        """Execute the tool.

        Args:
            **kwargs: Tool-specific arguments, already validated against ``parameters``

        Returns:
            Any JSON-serializable payload, or a ``ToolResult``
        """
        pass

    def get_definition(self) -> ToolDefinition:
        """Get the tool definition for LLM."""
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters=self.parameters,
        )

    def validate_arguments(self, arguments: dict[str, Any]) -> None:
        """Validate tool arguments against the JSON schema.

        Raises:
            ToolValidationError if invalid
        """
        validator = Draft7Validator(self.parameters or {"type": "object"})
        errors = sorted(validator.iter_errors(arguments), key=lambda err: list(err.path))
        if errors:
            first = errors[0]
            location = ".".join(str(part) for part in first.path)
            detail = f"{location}: {first.message}" if location else first.message
            raise ToolValidationError(self.name, detail)


class ToolRegistry:
    """Registry for managing available tools."""

    def __init__(self, default_timeout_seconds: float = DEFAULT_TOOL_TIMEOUT_SECONDS):
        self._tools: dict[str, Tool] = {}
        self.default_timeout_seconds = float(default_timeout_seconds)

    def register(self, tool: Tool) -> None:
        """Register a tool.

        Args:
            tool: Tool instance to register
        """
        if not tool.name:
            raise ValueError("Tool must have a name")

        log.debug("Registering tool", tool=tool.name)
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> None:
        self._tools.pop(name, None)

    def has_tool(self, name: str) -> bool:
        """Return whether a tool name is currently registered."""
        return name in self._tools

    def get(self, name: str) -> Tool:
        """Get a tool by name.

        Raises:
            ToolNotFoundError if not found
        """
        if name not in self._tools:
            raise ToolNotFoundError(name)
        return self._tools[name]

    def list_tools(self) -> list[str]:
        return list(self._tools.keys())

    def get_definitions(self) -> list[ToolDefinition]:
        """Get all tool definitions for LLM."""
        return [tool.get_definition() for tool in self._tools.values()]

    def __len__(self) -> int:
        return len(self._tools)

    @staticmethod
    def _discard_task_result(task: asyncio.Task[Any]) -> None:
        """Retrieve an abandoned task's outcome so the loop never warns about it."""
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            log.debug("Abandoned tool task finished with error", error=str(error))

    def _timeout_for(self, tool: Tool) -> float:
        value = tool.timeout_seconds if tool.timeout_seconds is not None else self.default_timeout_seconds
        return max(0.001, float(value))

    async def _run_with_timeout(self, tool: Tool, arguments: dict[str, Any]) -> Any:
        timeout_seconds = self._timeout_for(tool)
        task = asyncio.ensure_future(tool.execute(**arguments))
        try:
            done, _ = await asyncio.wait({task}, timeout=timeout_seconds)
        except asyncio.CancelledError:
            task.cancel()
            raise
        if task in done:
            return task.result()

        # The tool may ignore cancellation; the caller moves on either way.
        task.add_done_callback(self._discard_task_result)
        task.cancel()
        raise ToolTimeoutError(tool.name, timeout_seconds)

    async def execute(self, name: str, arguments: dict[str, Any] | None = None) -> ToolResult:
        """Execute a tool by name.

        Every failure (unknown tool, invalid arguments, timeout, exception raised
        by the tool) comes back as a failed ``ToolResult``; nothing is raised.
        """
        args = dict(arguments or {})
        try:
            tool = self.get(name)
            tool.validate_arguments(args)
            log.info("Executing tool", tool=name, args=args)
            raw = await self._run_with_timeout(tool, args)
        except asyncio.CancelledError:
            raise
        except ToolTimeoutError as e:
            log.warning("Tool timed out", tool=name, timeout_seconds=e.timeout_seconds)
            return ToolResult.fail(str(e))
        except (ToolNotFoundError, ToolValidationError) as e:
            log.warning("Tool call rejected", tool=name, error=str(e))
            return ToolResult.fail(str(e))
        except Exception as e:
            log.error("Tool execution failed", tool=name, error=str(e))
            return ToolResult.fail(str(ToolExecutionError(name, str(e) or e.__class__.__name__)))

        result = raw if isinstance(raw, ToolResult) else ToolResult.ok(raw)
        if isinstance(raw, dict) and set(raw.keys()) == {"error"}:
            result = ToolResult.fail(str(raw["error"]))
        log.info("Tool executed", tool=name, success=result.success)
        return result


# Global registry
_registry: ToolRegistry | None = None


def get_tool_registry() -> ToolRegistry:
    """Get the global tool registry."""
    global _registry
    if _registry is None:
        _registry = ToolRegistry()
    return _registry


def set_tool_registry(registry: ToolRegistry) -> None:
    """Set the global tool registry."""
    global _registry
    _registry = registry
