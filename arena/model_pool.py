"""
Model pool: per-cycle backend assignment, failure tracking and fallback.

The pool is the only mutable state shared across concurrent agent runs.  All
writes go through its own methods (single writer); runners only read the
current assignment and ask for fallbacks.
"""

from __future__ import annotations

import logging
import random
import time
from collections import OrderedDict
from typing import Callable, Iterable, Sequence

from models.backend import CycleAssignment, ModelBackend
from models.config import ModelPoolConfig
from models.errors import ConfigurationFailure, UpstreamUnavailable

logger = logging.getLogger(__name__)


class BoundedCounter:
    """Counter map with a fixed capacity; the oldest key is evicted first."""

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self._counts: OrderedDict[str, int] = OrderedDict()

    def get(self, key: str) -> int:
        return self._counts.get(key, 0)

    def increment(self, key: str) -> int:
        if key not in self._counts and len(self._counts) >= self.capacity:
            evicted, _ = self._counts.popitem(last=False)
            logger.debug("Failure map full, evicting '%s'", evicted)
        self._counts[key] = self._counts.get(key, 0) + 1
        return self._counts[key]

    def clear(self) -> None:
        self._counts.clear()

    def __len__(self) -> int:
        return len(self._counts)

    def __contains__(self, key: object) -> bool:
        return key in self._counts

    def snapshot(self) -> dict[str, int]:
        return dict(self._counts)


def fisher_yates(items: Iterable[ModelBackend], rng: random.Random) -> list[ModelBackend]:
    """Return an unbiased random permutation of *items*."""
    shuffled = list(items)
    for i in range(len(shuffled) - 1, 0, -1):
        j = rng.randint(0, i)
        shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
    return shuffled


class ModelPool:
    """Catalog of interchangeable backends with failure isolation.

    Args:
        backends: static catalog; priority 0 is the most reliable.
        max_failures: a backend is eligible iff its failure count is below this.
        failure_reset_seconds: counters are cleared lazily once this much
            time has passed since the last reset.
        max_tracked: capacity of the failure map.
        min_eligible: fewer eligible backends than this resets all counters.
        pinned_backend: single-model mode; every agent gets this backend.
        rng / clock: injectable for deterministic tests.
    """

    def __init__(
        self,
        backends: Sequence[ModelBackend],
        *,
        max_failures: int = 3,
        failure_reset_seconds: float = 300.0,
        max_tracked: int = 20,
        min_eligible: int = 1,
        pinned_backend: str | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not backends:
            raise ConfigurationFailure("Model pool needs at least one backend")
        ids = [b.id for b in backends]
        if len(set(ids)) != len(ids):
            raise ConfigurationFailure(f"Duplicate backend ids in model pool: {ids}")

        self._catalog = sorted(backends, key=lambda b: b.priority)
        self._by_id = {b.id: b for b in self._catalog}
        self.max_failures = max_failures
        self.failure_reset_seconds = failure_reset_seconds
        self.min_eligible = min_eligible
        self._rng = rng or random.Random()
        self._clock = clock
        self._failures = BoundedCounter(max_tracked)
        self._last_reset = clock()
        self._assignment: CycleAssignment | None = None

        self._pinned: ModelBackend | None = None
        if pinned_backend is not None:
            self._pinned = self._by_id.get(pinned_backend) or ModelBackend(
                id=pinned_backend, name=pinned_backend
            )
            logger.info("Model pool pinned to '%s' (single-model mode)", self._pinned.id)

    @classmethod
    def from_config(cls, config: ModelPoolConfig, **kwargs) -> ModelPool:
        rng = kwargs.pop("rng", None) or random.Random(config.seed)
        return cls(
            config.backends,
            max_failures=config.max_failures,
            failure_reset_seconds=config.failure_reset_seconds,
            max_tracked=config.max_tracked,
            min_eligible=config.min_eligible,
            pinned_backend=config.pinned_backend,
            rng=rng,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def catalog(self) -> list[ModelBackend]:
        return list(self._catalog)

    @property
    def pinned(self) -> bool:
        return self._pinned is not None

    @property
    def last_assignment(self) -> CycleAssignment | None:
        return self._assignment

    def failure_count(self, backend_id: str) -> int:
        self._maybe_auto_reset()
        return self._failures.get(backend_id)

    def failure_snapshot(self) -> dict[str, int]:
        self._maybe_auto_reset()
        return self._failures.snapshot()

    def is_eligible(self, backend_id: str) -> bool:
        return self.failure_count(backend_id) < self.max_failures

    def eligible_backends(self) -> list[ModelBackend]:
        """Backends below the failure threshold, in priority order."""
        self._maybe_auto_reset()
        return [b for b in self._catalog if self._failures.get(b.id) < self.max_failures]

    def backend_for(self, agent_id: str) -> ModelBackend:
        """Backend assigned to *agent_id* this cycle (highest priority if unassigned)."""
        if self._pinned is not None:
            return self._pinned
        if self._assignment is not None and agent_id in self._assignment.assignments:
            return self._assignment.assignments[agent_id]
        return self._catalog[0]

    def get(self, backend_id: str) -> ModelBackend | None:
        return self._by_id.get(backend_id)

    # ------------------------------------------------------------------
    # Mutations (single writer)
    # ------------------------------------------------------------------

    def assign_for_cycle(self, cycle_id: str, agent_ids: Sequence[str]) -> CycleAssignment:
        """Build and store a fresh assignment for one decision cycle."""
        if self._pinned is not None:
            assignment = CycleAssignment(
                cycle_id=cycle_id,
                assignments={agent_id: self._pinned for agent_id in agent_ids},
            )
            self._assignment = assignment
            return assignment

        eligible = self.eligible_backends()
        if len(eligible) < self.min_eligible:
            logger.warning(
                "Only %d eligible backend(s) (need %d); resetting all failure counters",
                len(eligible),
                self.min_eligible,
            )
            self.reset_failures()
            eligible = list(self._catalog)

        shuffled = fisher_yates(eligible, self._rng)
        assignment = CycleAssignment(
            cycle_id=cycle_id,
            assignments={
                agent_id: shuffled[index % len(shuffled)]
                for index, agent_id in enumerate(agent_ids)
            },
        )
        self._assignment = assignment
        logger.info(
            "Cycle %s assignment: %s",
            cycle_id,
            ", ".join(f"{a}->{b.label}" for a, b in assignment.assignments.items()),
        )
        return assignment

    def fallback_for(self, failed_backend_id: str) -> ModelBackend | None:
        """Next backend after *failed_backend_id* fails, or None.

        The failed backend's counter is only incremented when a fallback
        exists.
        """
        self._maybe_auto_reset()
        candidates = [
            b
            for b in self._catalog
            if b.id != failed_backend_id and self._failures.get(b.id) < self.max_failures
        ]
        if not candidates:
            logger.warning("No fallback available for '%s'", failed_backend_id)
            return None

        count = self._failures.increment(failed_backend_id)
        fallback = candidates[0]
        logger.warning(
            "Backend '%s' failed (%d/%d); falling back to '%s'",
            failed_backend_id,
            count,
            self.max_failures,
            fallback.id,
        )
        return fallback

    def record_failure(self, backend_id: str) -> int:
        self._maybe_auto_reset()
        return self._failures.increment(backend_id)

    def reset_failures(self) -> None:
        """Clear every failure counter.  Idempotent."""
        self._failures.clear()
        self._last_reset = self._clock()

    def shutdown(self) -> None:
        self.reset_failures()
        self._assignment = None

    def require_backend(self) -> ModelBackend:
        """Highest-priority eligible backend, or raise ``UpstreamUnavailable``."""
        if self._pinned is not None:
            return self._pinned
        eligible = self.eligible_backends()
        if not eligible:
            raise UpstreamUnavailable("All model backends are past their failure threshold")
        return eligible[0]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _maybe_auto_reset(self) -> None:
        if self._clock() - self._last_reset >= self.failure_reset_seconds:
            if len(self._failures):
                logger.info("Auto-resetting model failure counters")
            self.reset_failures()
