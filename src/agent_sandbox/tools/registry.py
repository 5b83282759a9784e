"""Registry of browser tools the agent may call."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Callable

from pydantic import BaseModel

from agent_sandbox.errors import UnknownToolError
from agent_sandbox.tools import browser
from agent_sandbox.tools.schemas import (
    ClickInput,
    ExtractTextInput,
    NavigateInput,
    ScreenshotInput,
    ScrollInput,
    SearchInput,
    ToolAck,
    TypeInput,
    WaitInput,
)


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    input_model: type[BaseModel]
    output_model: type[BaseModel]
    fn: Callable[[BaseModel], BaseModel]
    # Capability-policy actions this tool exercises; empty for passive tools.
    actions: frozenset[str] = frozenset()


class ToolDefinition(BaseModel):
    """Outward description of a tool; the executable body is not exposed."""

    name: str
    description: str
    parameters: dict[str, Any]


def build_registry() -> dict[str, ToolSpec]:
    specs = [
        ToolSpec(
            name="navigate",
            description="Open a web page by URL.",
            input_model=NavigateInput,
            output_model=ToolAck,
            fn=browser.navigate,
            actions=frozenset({"navigate"}),
        ),
        ToolSpec(
            name="search",
            description="Run a web search for the given query.",
            input_model=SearchInput,
            output_model=ToolAck,
            fn=browser.search,
            actions=frozenset({"search"}),
        ),
        ToolSpec(
            name="click",
            description="Click an element on the current page.",
            input_model=ClickInput,
            output_model=ToolAck,
            fn=browser.click,
            actions=frozenset({"click_element"}),
        ),
        ToolSpec(
            name="type",
            description="Type non-sensitive text into a form field.",
            input_model=TypeInput,
            output_model=ToolAck,
            fn=browser.type_text,
            actions=frozenset({"fill_form"}),
        ),
        ToolSpec(
            name="scroll",
            description="Scroll the current page up or down.",
            input_model=ScrollInput,
            output_model=ToolAck,
            fn=browser.scroll,
            actions=frozenset({"scroll"}),
        ),
        ToolSpec(
            name="screenshot",
            description="Capture a screenshot of the current page.",
            input_model=ScreenshotInput,
            output_model=ToolAck,
            fn=browser.screenshot,
            actions=frozenset({"take_screenshot"}),
        ),
        ToolSpec(
            name="extract_text",
            description="Read visible text from the page or from one element.",
            input_model=ExtractTextInput,
            output_model=ToolAck,
            fn=browser.extract_text,
            actions=frozenset({"extract_text", "read_content"}),
        ),
        ToolSpec(
            name="wait",
            description="Pause before the next step, for example while a page loads.",
            input_model=WaitInput,
            output_model=ToolAck,
            fn=browser.wait,
        ),
    ]
    return {spec.name: spec for spec in specs}


def get_tool(registry: Mapping[str, ToolSpec], tool_name: str) -> ToolSpec:
    spec = registry.get(tool_name)
    if spec is None:
        raise UnknownToolError(tool_name)
    return spec


def tool_catalog(registry: Mapping[str, ToolSpec]) -> list[ToolDefinition]:
    return [
        ToolDefinition(
            name=spec.name,
            description=spec.description,
            parameters=spec.input_model.model_json_schema(),
        )
        for spec in registry.values()
    ]


def list_tools() -> list[str]:
    return sorted(build_registry().keys())
