"""Classify node: reject restricted content before anything else runs."""

from __future__ import annotations

from agent_sandbox.graph.state import ScreeningState
from agent_sandbox.security.classifier import classify


def run(state: ScreeningState) -> ScreeningState:
    decision = classify(state.get("task", ""))
    return {"security_check": decision, "blocked": not decision.safe}
