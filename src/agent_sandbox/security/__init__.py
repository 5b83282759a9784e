"""Classification, redaction and capability restriction for submitted tasks."""

from agent_sandbox.security.classifier import (
    RESTRICTED_CONTENT_PATTERNS,
    RESTRICTED_DESTINATIONS,
    SecurityDecision,
    classify,
    validate_task_security,
)
from agent_sandbox.security.context import (
    MAX_DURATION_MS,
    MAX_RETRIES,
    ExecutionContext,
    create_execution_context,
)
from agent_sandbox.security.policy import DEFAULT_POLICY, CapabilityPolicy, validate_policy
from agent_sandbox.security.redactor import redact, sanitize_task

__all__ = [
    "DEFAULT_POLICY",
    "MAX_DURATION_MS",
    "MAX_RETRIES",
    "RESTRICTED_CONTENT_PATTERNS",
    "RESTRICTED_DESTINATIONS",
    "CapabilityPolicy",
    "ExecutionContext",
    "SecurityDecision",
    "classify",
    "create_execution_context",
    "redact",
    "sanitize_task",
    "validate_policy",
    "validate_task_security",
]
