"""Strict Pydantic schemas for browser tool inputs and outputs."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class StrictModel(BaseModel):
    """Base model for strict schema validation."""

    model_config = ConfigDict(extra="forbid")


class NavigateInput(StrictModel):
    url: str = Field(min_length=1, description="Absolute URL to open")


class SearchInput(StrictModel):
    query: str = Field(min_length=1, description="Search terms")


class ClickInput(StrictModel):
    selector: str = Field(min_length=1, description="CSS selector of the element to click")


class TypeInput(StrictModel):
    selector: str = Field(min_length=1, description="CSS selector of the input field")
    text: str = Field(description="Text to type into the field")


ScrollDirection = Literal["up", "down"]


class ScrollInput(StrictModel):
    direction: ScrollDirection = "down"
    amount: int = Field(default=500, ge=1, le=10_000, description="Pixels to scroll")


class ScreenshotInput(StrictModel):
    full_page: bool = False


class ExtractTextInput(StrictModel):
    selector: str | None = Field(
        default=None,
        description="CSS selector to read; whole page when omitted",
    )


class WaitInput(StrictModel):
    duration_ms: int = Field(ge=0, le=30_000, description="Milliseconds to wait")


class ToolAck(StrictModel):
    """Acknowledgment returned by every stubbed browser tool."""

    success: bool = True
    tool: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)
