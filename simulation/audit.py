"""Audit sinks: one trace entry per pipeline stage (analysis, tournament,
judge, order)."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from api_client.llm.tracing import build_trace_entry
from simulation.sim_logging import _write_json

logger = logging.getLogger(__name__)


class MemoryAuditSink:
    """Keeps entries in a list; handy for tests and dry runs."""

    def __init__(self) -> None:
        self.entries: list[dict[str, Any]] = []

    def log(self, stage: str, model: str, input: Any, output: Any, explanation: str = "") -> None:
        self.entries.append(build_trace_entry(stage, model, input, output, explanation))

    def stages(self) -> list[str]:
        return [entry["stage"] for entry in self.entries]


class JsonAuditSink:
    """Writes each entry to ``{directory}/{seq:04d}_{stage}.json``."""

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)
        self._seq = 0

    def log(self, stage: str, model: str, input: Any, output: Any, explanation: str = "") -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        self._seq += 1
        path = self.directory / f"{self._seq:04d}_{stage}.json"
        _write_json(path, build_trace_entry(stage, model, input, output, explanation))
        logger.debug("Audit entry written to %s", path)
