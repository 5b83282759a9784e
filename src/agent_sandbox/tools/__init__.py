"""Tooling layer for schema-validated browser actions."""

from agent_sandbox.tools.gateway import ToolExecutor
from agent_sandbox.tools.registry import (
    ToolDefinition,
    ToolSpec,
    build_registry,
    get_tool,
    list_tools,
    tool_catalog,
)

__all__ = [
    "ToolDefinition",
    "ToolExecutor",
    "ToolSpec",
    "build_registry",
    "get_tool",
    "list_tools",
    "tool_catalog",
]
