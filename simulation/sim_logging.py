"""Run output logging: persists RunLog, per-cycle results and audit entries.

Layout of one run::

    {output_dir}/{run_name}/
    ├── config.yaml
    ├── run_log.json
    ├── cycles/
    │   ├── cycle_001.json
    │   └── ...
    ├── audit/
    │   ├── 0001_analysis.json
    │   ├── 0002_tournament.json
    │   └── ...
    └── summary.json
"""

from __future__ import annotations

import itertools
import json
import logging
import shutil
from pathlib import Path
from typing import Any

from models.config import ArenaConfig
from models.log import CycleResult, RunLog

logger = logging.getLogger(__name__)


def run_name_from_config_path(config_path: str | Path | None) -> str:
    """``configs/btc_fast.yaml`` -> ``btc_fast``; ``arena`` when no config file was given."""
    if config_path is None:
        return "arena"
    return Path(config_path).stem


class RunLogger:
    """Manages on-disk output for a multi-cycle run.

    ``init_run`` before the first cycle, ``write_cycle`` after each one and
    ``finalize`` once the run is over.
    """

    def __init__(self, output_dir: str | Path, config: ArenaConfig, run_name: str) -> None:
        self._run_dir = _unique_run_dir(Path(output_dir), run_name)
        self._cycles_dir = self._run_dir / "cycles"
        self._run_log = RunLog(run_name=self._run_dir.name, config=config)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def init_run(self, config_yaml_path: str | None = None) -> None:
        """Create the run and cycles directories; copy the YAML config when given."""
        self._run_dir.mkdir(parents=True, exist_ok=True)
        self._cycles_dir.mkdir(exist_ok=True)
        if config_yaml_path is not None:
            dest = self._run_dir / "config.yaml"
            shutil.copy2(config_yaml_path, dest)
            logger.info("Copied config to %s", dest)

    def write_cycle(self, index: int, result: CycleResult) -> Path:
        """Persist one cycle's result and accumulate it in the run log."""
        path = self._cycles_dir / f"cycle_{index:03d}.json"
        _write_json(path, result.model_dump(mode="json"))
        self._run_log.cycles.append(result)
        logger.info("Wrote cycle %s to %s", result.cycle_id, path)
        return path

    def record_error(self, message: str) -> None:
        self._run_log.errors.append(message)
        logger.error("Run error: %s", message)

    def finalize(self, summary: dict[str, Any] | None = None) -> None:
        """Write the run-level log and optional summary."""
        _write_json(self._run_dir / "run_log.json", self._run_log.model_dump(mode="json"))
        if summary is not None:
            _write_json(self._run_dir / "summary.json", summary)
        logger.info("Run log finalized at %s", self._run_dir)

    @property
    def run_log(self) -> RunLog:
        return self._run_log

    @property
    def run_dir(self) -> Path:
        return self._run_dir


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def _unique_run_dir(output_dir: Path, run_name: str) -> Path:
    """First free directory among run_name, run_name_001, run_name_002, ..."""
    for idx in itertools.count():
        name = run_name if idx == 0 else f"{run_name}_{idx:03d}"
        if not (output_dir / name).exists():
            return output_dir / name


def _write_json(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2, default=str), encoding="utf-8")
