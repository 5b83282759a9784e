"""Schema-enforcing tool execution gateway with policy, timeout and retry controls."""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor, TimeoutError
from typing import Any

from pydantic import ValidationError

from agent_sandbox.errors import ToolNotPermittedError
from agent_sandbox.security.context import ExecutionContext
from agent_sandbox.security.policy import DEFAULT_POLICY, CapabilityPolicy
from agent_sandbox.tools.registry import ToolSpec, build_registry, get_tool

logger = logging.getLogger(__name__)


class ToolExecutor:
    """Execute registered tools with strict validation and retry/timeout controls."""

    def __init__(
        self,
        *,
        registry: Mapping[str, ToolSpec] | None = None,
        tool_timeout_s: float = 2.0,
        max_retries: int = 0,
        backoff_s: float = 0.0,
    ) -> None:
        self.registry = registry or build_registry()
        self.tool_timeout_s = tool_timeout_s
        self.max_retries = max_retries
        self.backoff_s = backoff_s

    def execute(
        self,
        tool_name: str,
        args: dict[str, Any],
        *,
        context: ExecutionContext | None = None,
    ) -> dict[str, Any]:
        """Run one tool call.

        Unknown tool names and policy violations raise; validation errors and
        tool failures are reported in the returned payload.
        """
        spec = get_tool(self.registry, tool_name)
        policy = context.restrictions if context is not None else DEFAULT_POLICY
        _ensure_permitted(spec, policy)

        started_at = time.perf_counter()
        try:
            payload = spec.input_model.model_validate(args)
        except ValidationError as exc:
            return {
                "tool": tool_name,
                "status": "failed",
                "error": f"Invalid arguments for '{tool_name}': {exc.error_count()} error(s)",
                "attempts": 0,
                "duration_ms": _duration_ms(started_at),
            }

        url = getattr(payload, "url", None)
        if isinstance(url, str) and policy.is_url_restricted(url):
            raise ToolNotPermittedError(f"Tool '{tool_name}' may not open a restricted destination")

        attempts = 0
        final_error = "unknown error"
        for attempt in range(self.max_retries + 1):
            attempts = attempt + 1
            try:
                output = self._execute_once(spec, payload)
                return {
                    "tool": tool_name,
                    "status": "ok",
                    "output": output,
                    "attempts": attempts,
                    "duration_ms": _duration_ms(started_at),
                }
            except Exception as exc:  # noqa: BLE001
                final_error = str(exc)
                logger.warning(
                    "tool_call event=attempt_failed tool=%s attempt=%d/%d reason=%s",
                    tool_name,
                    attempts,
                    self.max_retries + 1,
                    exc,
                )
                if attempt < self.max_retries and self.backoff_s > 0:
                    time.sleep(self.backoff_s)

        return {
            "tool": tool_name,
            "status": "failed",
            "error": final_error,
            "attempts": attempts,
            "duration_ms": _duration_ms(started_at),
        }

    def _execute_once(self, spec: ToolSpec, payload: Any) -> dict[str, Any]:
        # Shut down without joining; a hung tool must not outlast tool_timeout_s.
        pool = ThreadPoolExecutor(max_workers=1)
        try:
            future = pool.submit(spec.fn, payload)
            raw_output = future.result(timeout=self.tool_timeout_s)
        except TimeoutError as exc:
            raise TimeoutError(
                f"Tool '{spec.name}' timed out after {self.tool_timeout_s:.2f}s"
            ) from exc
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        validated_output = spec.output_model.model_validate(raw_output)
        return validated_output.model_dump(mode="json")


def _ensure_permitted(spec: ToolSpec, policy: CapabilityPolicy) -> None:
    for action in spec.actions:
        if not policy.is_action_allowed(action):
            raise ToolNotPermittedError(
                f"Tool '{spec.name}' requires action '{action}' which the sandbox does not allow"
            )


def _duration_ms(started_at: float) -> float:
    return round((time.perf_counter() - started_at) * 1000.0, 2)
