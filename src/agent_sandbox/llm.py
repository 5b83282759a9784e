"""Language-model clients used to drive task execution."""

from __future__ import annotations

import json
import logging
from typing import Any, Literal, Protocol
from urllib import error, request

from pydantic import BaseModel

from agent_sandbox.config.settings import Settings
from agent_sandbox.errors import ModelInvocationError

logger = logging.getLogger(__name__)


class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class ModelClient(Protocol):
    """Interface for free-text chat completions."""

    def complete(self, messages: list[ChatMessage], *, timeout_s: float) -> str: ...


class OpenAIChatCompletionsClient:
    """Small OpenAI client using the chat completions REST API."""

    def __init__(
        self,
        *,
        api_key: str,
        model: str = "gpt-4o-mini",
        base_url: str = "https://api.openai.com/v1",
        request_timeout_s: float = 20.0,
    ) -> None:
        if not api_key:
            raise RuntimeError("OPENAI_API_KEY is missing")
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.request_timeout_s = request_timeout_s

    def complete(self, messages: list[ChatMessage], *, timeout_s: float) -> str:
        payload = {
            "model": self.model,
            "temperature": 0,
            "messages": [message.model_dump() for message in messages],
        }
        # timeout_s is the remaining task budget; request_timeout_s caps one call.
        response_json = self._request(payload, timeout_s=min(timeout_s, self.request_timeout_s))
        return self._extract_content(response_json)

    def _request(self, payload: dict[str, Any], timeout_s: float) -> dict[str, Any]:
        url = f"{self.base_url}/chat/completions"
        req = request.Request(
            url=url,
            data=json.dumps(payload).encode("utf-8"),
            method="POST",
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
        )
        try:
            with request.urlopen(req, timeout=timeout_s) as response:
                body = response.read().decode("utf-8")
        except error.HTTPError as exc:
            message = exc.read().decode("utf-8", errors="replace")
            raise ModelInvocationError(
                f"Model request failed with status {exc.code}: {message[:400]}"
            ) from exc
        except error.URLError as exc:
            raise ModelInvocationError(f"Model request failed: {exc.reason}") from exc
        except TimeoutError as exc:
            raise ModelInvocationError(f"Model request timed out after {timeout_s:.1f}s") from exc

        try:
            return json.loads(body)
        except json.JSONDecodeError as exc:
            raise ModelInvocationError("Model returned non-JSON response") from exc

    @staticmethod
    def _extract_content(response_json: dict[str, Any]) -> str:
        choices = response_json.get("choices", [])
        if not choices:
            raise ModelInvocationError("Model response did not contain choices")

        message = choices[0].get("message", {})
        content = message.get("content", "")
        if isinstance(content, list):
            content = "".join(
                item["text"]
                for item in content
                if isinstance(item, dict) and isinstance(item.get("text"), str)
            )
        if not isinstance(content, str) or not content.strip():
            raise ModelInvocationError("Model response content is empty")
        return content.strip()


class SimulatedModelClient:
    """Offline stand-in that acknowledges the task without calling a provider."""

    def complete(self, messages: list[ChatMessage], *, timeout_s: float) -> str:
        task_text = ""
        for message in reversed(messages):
            if message.role == "user":
                task_text = message.content.split("\n", 1)[0].removeprefix("Task: ").strip()
                break
        return f"Successfully processed: {task_text}"


def build_model_client(settings: Settings) -> ModelClient:
    provider = settings.llm_provider.lower().strip()
    api_key = settings.resolved_openai_api_key()
    if provider == "openai" and api_key:
        return OpenAIChatCompletionsClient(
            api_key=api_key,
            model=settings.llm_model,
            base_url=settings.llm_base_url,
            request_timeout_s=settings.llm_timeout_s,
        )
    logger.warning(
        "model_client event=fallback provider=%s reason=%s",
        provider,
        "missing api key" if provider == "openai" else "unsupported provider",
    )
    return SimulatedModelClient()
