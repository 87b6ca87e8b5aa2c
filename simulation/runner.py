"""Async cycle runner: the main loop behind ``run_arena.py``.

Lifecycle:
    1. Create the run directory and copy the config.
    2. Wire collaborators: paper exchange, context source, circuit breaker,
       JSON audit sink, then build the decision pipeline.
    3. For each cycle:
        - Build the trading context (live positions from the paper book).
        - Run the decision pipeline.
        - Write ``cycles/cycle_XXX.json``.
    4. Finalise and write ``summary.json``.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from pathlib import Path
from typing import Any, Awaitable, Callable

from api_client.llm.client import LLMClient
from arena.pipeline import DecisionPipeline, build_pipeline
from models.config import ArenaConfig
from models.log import RunLog
from simulation.audit import JsonAuditSink
from simulation.context import StaticContextSource
from simulation.exchange import PaperExchange
from simulation.safety import build_circuit_breaker
from simulation.sim_logging import RunLogger, run_name_from_config_path

logger = logging.getLogger(__name__)


class CycleRunner:
    """Drives N decision cycles against a static context file."""

    def __init__(
        self,
        config: ArenaConfig,
        context_path: str | Path,
        config_yaml_path: str | None = None,
        output_dir: str | Path = "results",
        client: LLMClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._config = config
        self._config_yaml_path = config_yaml_path
        self._run_name = run_name_from_config_path(config_yaml_path)
        self._run_logger = RunLogger(output_dir, config, self._run_name)

        self.exchange = PaperExchange(config.exchange)
        self._source = StaticContextSource.from_file(context_path, self.exchange.account_state)
        self.pipeline: DecisionPipeline = build_pipeline(
            config,
            client=client,
            exchange=self.exchange,
            safety=build_circuit_breaker(config.safety),
            audit=JsonAuditSink(self._run_logger.run_dir / "audit"),
            sleep=sleep,
        )

    @property
    def run_dir(self) -> Path:
        return self._run_logger.run_dir

    async def run(self, cycles: int = 1) -> RunLog:
        """Execute *cycles* decision cycles and return the run log."""
        self._run_logger.init_run(self._config_yaml_path)
        logger.info(
            "Starting run '%s': %d cycle(s) on %s with %d analyst(s)%s.",
            self._run_name,
            cycles,
            self._config.symbol,
            len(self._config.agents),
            " (dry run)" if self._config.dry_run else "",
        )

        try:
            for index in range(1, cycles + 1):
                cycle_id = f"{self._run_name}-{index:03d}"
                try:
                    context = await self._source.build_context(self._config.symbol)
                    context = context.model_copy(update={"cycle_id": cycle_id})
                    result = await self.pipeline.run_cycle(context)
                    self._run_logger.write_cycle(index, result)
                except Exception as exc:
                    msg = f"Cycle '{cycle_id}' failed: {exc}"
                    logger.exception(msg)
                    self._run_logger.record_error(msg)
        finally:
            self.pipeline.pool.shutdown()

        self._run_logger.finalize(self._build_summary())
        logger.info("Run '%s' complete. Output: %s", self._run_name, self.run_dir)
        return self._run_logger.run_log

    # ------------------------------------------------------------------
    # Summary
    # ------------------------------------------------------------------

    def _build_summary(self) -> dict[str, Any]:
        run_log = self._run_logger.run_log
        cycles = run_log.cycles
        actions = Counter(c.decision.final_action.value for c in cycles)
        winners = Counter(c.decision.winner_agent_id for c in cycles)
        accepted = sum(1 for c in cycles if c.receipt is not None and c.receipt.status == "accepted")
        return {
            "run_name": run_log.run_name,
            "symbol": self._config.symbol,
            "dry_run": self._config.dry_run,
            "num_cycles": len(cycles),
            "num_errors": len(run_log.errors),
            "actions": dict(actions),
            "winners": dict(winners),
            "orders_built": sum(1 for c in cycles if c.order is not None),
            "orders_accepted": accepted,
            "analyst_failures": sum(len(c.analysis.errors) for c in cycles),
            "final_positions": [p.model_dump() for p in self.exchange.positions],
            "avg_cycle_seconds": (
                round(sum(c.elapsed_seconds for c in cycles) / len(cycles), 3) if cycles else 0.0
            ),
        }
