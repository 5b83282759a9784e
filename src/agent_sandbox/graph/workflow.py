"""LangGraph workflow for screening a submitted task."""

from langgraph.graph import END, StateGraph

from agent_sandbox.graph.nodes import classify, redact
from agent_sandbox.graph.state import ScreeningState
from agent_sandbox.security.context import (
    MAX_DURATION_MS,
    MAX_RETRIES,
    create_execution_context,
)
from agent_sandbox.security.policy import DEFAULT_POLICY, CapabilityPolicy


def build_screening_graph(
    *,
    policy: CapabilityPolicy = DEFAULT_POLICY,
    max_duration_ms: int = MAX_DURATION_MS,
    max_retries: int = MAX_RETRIES,
):
    def _route_after_classify(state: ScreeningState) -> str:
        return "blocked" if state.get("blocked", False) else "allowed"

    def _build_context(state: ScreeningState) -> ScreeningState:
        context = create_execution_context(
            state["task_id"],
            state.get("sanitized_task", ""),
            state["user_id"],
            policy=policy,
            max_duration_ms=max_duration_ms,
            max_retries=max_retries,
        )
        return {"execution_context": context}

    graph = StateGraph(ScreeningState)

    graph.add_node("classify", classify.run)
    graph.add_node("redact", redact.run)
    graph.add_node("build_context", _build_context)

    graph.set_entry_point("classify")
    graph.add_conditional_edges(
        "classify",
        _route_after_classify,
        {"blocked": END, "allowed": "redact"},
    )
    graph.add_edge("redact", "build_context")
    graph.add_edge("build_context", END)

    return graph.compile()
