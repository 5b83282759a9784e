"""Exception types shared across the sandbox service."""

from __future__ import annotations


class AgentSandboxError(Exception):
    """Base class for service errors."""


class TaskValidationError(AgentSandboxError, ValueError):
    """Submitted task text or identifier is malformed."""


class InvalidTransitionError(AgentSandboxError):
    """A task status change is not permitted by the lifecycle."""

    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Invalid task transition: {current} -> {target}")
        self.current = current
        self.target = target


class PolicyConfigurationError(AgentSandboxError):
    """Capability policy and tool registry disagree at startup."""


class UnknownToolError(AgentSandboxError, KeyError):
    """Caller asked for a tool that is not registered."""

    def __init__(self, tool_name: str) -> None:
        super().__init__(f"Unknown tool: {tool_name}")
        self.tool_name = tool_name

    def __str__(self) -> str:
        return f"Unknown tool: {self.tool_name}"


class ToolNotPermittedError(AgentSandboxError):
    """Tool exercises an action the capability policy does not allow."""


class ModelInvocationError(AgentSandboxError):
    """Language-model call failed or returned an unusable response."""


class ExecutionTimeoutError(AgentSandboxError):
    """Task execution ran past its time budget."""


class StorageUnavailableError(AgentSandboxError):
    """Persistence store could not be reached."""
