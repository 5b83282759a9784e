"""Stand-in browser tool bodies.

Page control belongs to the external browser driver; these functions only
acknowledge validated input so the agent loop and the audit trail can be
exercised end to end.
"""

from __future__ import annotations

from urllib.parse import urlparse

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


def navigate(payload: NavigateInput) -> ToolAck:
    parsed = urlparse(payload.url)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(f"navigate requires an http(s) URL, got: {payload.url!r}")
    return ToolAck(
        tool="navigate",
        message=f"Navigation to {parsed.netloc} acknowledged",
        details={"url": payload.url},
    )


def search(payload: SearchInput) -> ToolAck:
    return ToolAck(
        tool="search",
        message="Search acknowledged",
        details={"query": payload.query},
    )


def click(payload: ClickInput) -> ToolAck:
    return ToolAck(
        tool="click",
        message="Click acknowledged",
        details={"selector": payload.selector},
    )


def type_text(payload: TypeInput) -> ToolAck:
    # The typed value is not echoed back.
    return ToolAck(
        tool="type",
        message="Typing acknowledged",
        details={"selector": payload.selector, "length": len(payload.text)},
    )


def scroll(payload: ScrollInput) -> ToolAck:
    return ToolAck(
        tool="scroll",
        message=f"Scroll {payload.direction} acknowledged",
        details={"direction": payload.direction, "amount": payload.amount},
    )


def screenshot(payload: ScreenshotInput) -> ToolAck:
    return ToolAck(
        tool="screenshot",
        message="Screenshot acknowledged",
        details={"full_page": payload.full_page},
    )


def extract_text(payload: ExtractTextInput) -> ToolAck:
    return ToolAck(
        tool="extract_text",
        message="Text extraction acknowledged",
        details={"selector": payload.selector or "body"},
    )


def wait(payload: WaitInput) -> ToolAck:
    return ToolAck(
        tool="wait",
        message="Wait acknowledged",
        details={"duration_ms": payload.duration_ms},
    )
