"""
Retry state for the agent runner.

``RetryState`` is an immutable value threaded through the retry loop: each
failure produces a new state instead of mutating counters on the runner.
"""

from __future__ import annotations

from dataclasses import dataclass, replace

from models.backend import ModelBackend


@dataclass(frozen=True)
class RetryState:
    """
    Where an agent's retry loop stands.

      - attempt: failed attempts on the current backend
      - backoff: seconds to wait before the next attempt (linear in attempt)
      - last_error: message of the most recent failure
      - backend: backend the next attempt goes to
      - fallbacks_used: how many times the backend has been switched
      - total_attempts: failed attempts across all backends
    """

    backend: ModelBackend
    attempt: int = 0
    backoff: float = 0.0
    last_error: str | None = None
    fallbacks_used: int = 0
    total_attempts: int = 0

    def record_failure(self, error: BaseException | str, backoff_unit: float) -> RetryState:
        attempt = self.attempt + 1
        return replace(
            self,
            attempt=attempt,
            backoff=backoff_unit * attempt,
            last_error=str(error),
            total_attempts=self.total_attempts + 1,
        )

    def exhausted(self, max_retries: int) -> bool:
        """True once the current backend has used up its attempts."""
        return self.attempt >= max_retries

    def switch_backend(self, backend: ModelBackend) -> RetryState:
        return replace(
            self,
            backend=backend,
            attempt=0,
            backoff=0.0,
            fallbacks_used=self.fallbacks_used + 1,
        )
