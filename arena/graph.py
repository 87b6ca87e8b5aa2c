"""
LangGraph wiring for one decision cycle.

Graph structure:
  [START]
    -> [analyze]      (parallel analyst fan-out)
    -> [tournament?]  (skipped when disabled or fewer than two opinions)
    -> [arbitrate]    (judge picks the winner and final action)
    -> [safety]       (circuit breaker gate, may force CLOSE / HOLD)
    -> [synthesize]   (risk normalizer builds the order)
    -> [execute]      (place the order unless dry run)
  [END]

Node bodies live on ``DecisionPipeline``; this module only owns the state
shape and the edges.
"""

from __future__ import annotations

import operator
from typing import TYPE_CHECKING, Annotated, Any, TypedDict

from langgraph.graph import END, START, StateGraph

if TYPE_CHECKING:
    from .pipeline import DecisionPipeline


# =============================================================================
# STATE DEFINITION
# =============================================================================


class CycleState(TypedDict, total=False):
    """State that flows through one decision cycle."""

    # --- Inputs (set once at invocation) ---
    context: Any  # TradingContext
    agent_ids: list
    weights: dict

    # --- Stage outputs ---
    analysis: Any  # AnalysisResult
    bracket: Any  # TournamentBracket | None
    decision: Any  # ArbitratedDecision
    safety: Any  # SafetyCaps
    order: Any  # Order | None
    receipt: Any  # OrderReceipt | None
    rationale: str

    # --- Accumulated across stages (append-only) ---
    warnings: Annotated[list, operator.add]


# =============================================================================
# ROUTING
# =============================================================================


def should_run_tournament(state: CycleState, enabled: bool = True) -> str:
    analysis = state.get("analysis")
    if not enabled or analysis is None or len(analysis.opinions) < 2:
        return "arbitrate"
    return "tournament"


# =============================================================================
# GRAPH BUILDER
# =============================================================================


def build_cycle_graph(pipeline: DecisionPipeline) -> StateGraph:
    """Build the (uncompiled) cycle graph around *pipeline*'s stage nodes."""
    graph = StateGraph(CycleState)

    graph.add_node("analyze", pipeline.analyze_node)
    graph.add_node("tournament", pipeline.tournament_node)
    graph.add_node("arbitrate", pipeline.arbitrate_node)
    graph.add_node("safety", pipeline.safety_node)
    graph.add_node("synthesize", pipeline.synthesize_node)
    graph.add_node("execute", pipeline.execute_node)

    enabled = pipeline.config.tournament.enabled
    graph.add_edge(START, "analyze")
    graph.add_conditional_edges(
        "analyze",
        lambda state: should_run_tournament(state, enabled),
        {"tournament": "tournament", "arbitrate": "arbitrate"},
    )
    graph.add_edge("tournament", "arbitrate")
    graph.add_edge("arbitrate", "safety")
    graph.add_edge("safety", "synthesize")
    graph.add_edge("synthesize", "execute")
    graph.add_edge("execute", END)

    return graph


def compile_cycle_graph(pipeline: DecisionPipeline):
    """Build and compile the cycle graph, ready for ``ainvoke``."""
    return build_cycle_graph(pipeline).compile()
