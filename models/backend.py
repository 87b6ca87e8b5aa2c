"""Inference backend catalog entries and per-cycle assignments."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ModelBackend(BaseModel):
    """One interchangeable inference endpoint in the model pool.

    ``priority`` 0 is the most reliable backend; fallback candidates are
    tried in ascending priority order.
    """

    id: str = Field(description="Provider model id, e.g. 'deepseek/deepseek-chat'.")
    name: str = ""
    priority: int = Field(default=0, ge=0)
    timeout_seconds: float = Field(default=60.0, gt=0)
    max_tokens: int = Field(default=2000, gt=0)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)

    model_config = {"frozen": True}

    @property
    def label(self) -> str:
        return self.name or self.id


class CycleAssignment(BaseModel):
    """Backend chosen for each agent in one decision cycle."""

    cycle_id: str
    assignments: dict[str, ModelBackend]

    model_config = {"frozen": True}
