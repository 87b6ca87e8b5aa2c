from typing import Any, Literal

from pydantic import BaseModel


class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class LLMRequest(BaseModel):
    """One generation request against a single backend.

    ``json_schema`` asks the provider for schema-constrained JSON output.
    ``metadata`` is never sent to the provider; it identifies the call for
    logging and for the mock client.
    """

    messages: list[ChatMessage]
    model: str
    temperature: float = 0.7
    max_tokens: int | None = None
    timeout_seconds: float | None = None
    json_schema: dict[str, Any] | None = None
    schema_name: str = "response"
    metadata: dict[str, Any] = {}


class LLMResponse(BaseModel):
    text: str
    finish_reason: str = "stop"
    model: str = ""
