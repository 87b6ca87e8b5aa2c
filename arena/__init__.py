"""
Analyst Arena: multi-model analyst debate -> arbitrated, risk-bounded orders.
  - Model pool with per-cycle assignment and failure-isolated fallback
  - Parallel analyst fan-out with retry and schema-validated opinions
  - Single-elimination bull/bear debate tournament
  - Judge arbitration with HOLD degradation
  - Risk normalizer enforcing leverage, sizing and stop-loss bounds
"""

from .config import DEFAULT_ROSTER, AnalystProfile, get_profile
from .judge import Arbitrator
from .model_pool import ModelPool
from .orchestrator import ParallelOrchestrator, calculate_consensus
from .pipeline import DecisionPipeline, build_pipeline
from .risk import RiskNormalizer
from .runner import AgentRunner
from .tournament import TournamentEngine

__all__ = [
    "AnalystProfile", "DEFAULT_ROSTER", "get_profile",
    "ModelPool", "AgentRunner", "ParallelOrchestrator", "calculate_consensus",
    "TournamentEngine", "Arbitrator", "RiskNormalizer",
    "DecisionPipeline", "build_pipeline",
]
