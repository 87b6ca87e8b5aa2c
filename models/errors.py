"""Error taxonomy shared by every stage of the decision pipeline.

Retryable failures (``TransportFailure``, ``ValidationFailure``) are absorbed
by the agent runner and the judge; everything else either fails fast
(``ConfigurationFailure``, ``InvalidInput``) or aborts only the stage that
raised it (``RiskViolation``).
"""

from __future__ import annotations


class ArenaError(Exception):
    """Base class for all pipeline errors."""


class TransportFailure(ArenaError):
    """Network error or timeout talking to an inference backend. Retryable."""


class ValidationFailure(ArenaError):
    """Model output parsed but was semantically wrong. Retryable."""


class ConfigurationFailure(ArenaError):
    """Missing credentials, unknown model id, bad config. Never retried."""


class RiskViolation(ArenaError):
    """Computed order parameters are unsafe; no order may be emitted."""


RiskError = RiskViolation


class UpstreamUnavailable(ArenaError):
    """Every inference backend has been exhausted."""


class AgentFailure(ArenaError):
    """Terminal failure for one agent in one cycle."""

    def __init__(self, agent_id: str, reason: str, cause: BaseException | None = None) -> None:
        super().__init__(f"Agent '{agent_id}' failed: {reason}")
        self.agent_id = agent_id
        self.reason = reason
        self.cause = cause


class InvalidInput(ArenaError, ValueError):
    """Caller error: empty agent list, duplicate ids, malformed context."""
