#!/usr/bin/env python3
"""CLI entrypoint for the analyst arena.

Usage::

    python run_arena.py --config config/example.yaml --context config/context_btc.json
    python run_arena.py --config config/example.yaml --context config/context_btc.json \\
        --cycles 3 --output-dir results/

Loads a YAML configuration file and a trading context file, then runs the
decision pipeline for the requested number of cycles.  The run name is derived
from the config file name (e.g. ``example.yaml`` -> ``example``).
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from models.config import ArenaConfig
from simulation.runner import CycleRunner


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run analyst debate cycles and build risk-bounded orders.",
    )
    parser.add_argument(
        "--config",
        required=True,
        type=str,
        help="Path to the YAML configuration file.",
    )
    parser.add_argument(
        "--context",
        required=True,
        type=str,
        help="Path to a JSON / YAML / JSONL trading context file.",
    )
    parser.add_argument(
        "--cycles",
        default=1,
        type=int,
        help="Number of decision cycles to run (default: 1).",
    )
    parser.add_argument(
        "--output-dir",
        default="results",
        type=str,
        help="Directory where run results will be written (default: results/).",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (default: INFO).",
    )
    return parser.parse_args()


def _setup_logging(level: str) -> None:
    """Configure root logger with a clean format."""
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )


async def _main() -> None:
    args = _parse_args()
    _setup_logging(args.log_level)

    logger = logging.getLogger(__name__)
    logger.info("Loading config from '%s'...", args.config)

    config = ArenaConfig.from_yaml(args.config)
    logger.info(
        "Config loaded: provider='%s', %d analyst(s), tournament %s",
        config.llm.provider,
        len(config.agents),
        "on" if config.tournament.enabled else "off",
    )

    runner = CycleRunner(
        config,
        context_path=args.context,
        config_yaml_path=args.config,
        output_dir=args.output_dir,
    )
    await runner.run(args.cycles)


def main() -> None:
    asyncio.run(_main())


if __name__ == "__main__":
    main()
