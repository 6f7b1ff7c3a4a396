"""Tools package for Gravity Claw."""

from gravity_claw.tools.registry import (
    Tool,
    ToolRegistry,
    ToolResult,
    get_tool_registry,
    set_tool_registry,
)
from gravity_claw.tools.get_current_time import GetCurrentTimeTool


def create_default_registry(default_timeout_seconds: float | None = None) -> ToolRegistry:
    """Build a registry holding the built-in tools."""
    if default_timeout_seconds is None:
        from gravity_claw.config import get_config

        default_timeout_seconds = get_config().agent.tool_timeout_seconds
    registry = ToolRegistry(default_timeout_seconds=default_timeout_seconds)
    registry.register(GetCurrentTimeTool())
    return registry


__all__ = [
    "Tool",
    "ToolRegistry",
    "ToolResult",
    "get_tool_registry",
    "set_tool_registry",
    "create_default_registry",
    "GetCurrentTimeTool",
]
