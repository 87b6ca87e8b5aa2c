"""LangChain-backed inference client.

One client serves every backend in the model pool: the backend id travels on
``LLMRequest.model``, so a fresh chat model is built per request.  OpenAI and
OpenRouter (OpenAI-compatible) get native ``json_schema`` response formats;
Anthropic gets the schema appended to the system prompt.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from api_client.llm.models import ChatMessage, LLMRequest, LLMResponse
from models.errors import ConfigurationFailure, TransportFailure

logger = logging.getLogger(__name__)

_FINISH_ALIASES = {
    "end_turn": "stop",
    "stop_sequence": "stop",
    "max_tokens": "length",
}

_AUTH_STATUS_CODES = (401, 403)


class ChatModelClient:
    """Async ``LLMClient`` over ``ChatOpenAI`` or ``ChatAnthropic``."""

    def __init__(self, provider: str, api_key: str, base_url: str | None = None) -> None:
        if provider not in ("openai", "openrouter", "anthropic"):
            raise ConfigurationFailure(f"Unsupported chat provider: {provider!r}")
        self.provider = provider
        self._api_key = api_key
        self._base_url = base_url

    async def generate(self, request: LLMRequest) -> LLMResponse:
        if not request.model:
            raise ConfigurationFailure("LLMRequest.model is empty")

        chat = self._build_chat(request)
        messages = self._to_messages(request)
        try:
            response = await chat.ainvoke(messages)
        except Exception as exc:
            if getattr(exc, "status_code", None) in _AUTH_STATUS_CODES:
                raise ConfigurationFailure(
                    f"{self.provider} rejected credentials for model {request.model}: {exc}"
                ) from exc
            raise TransportFailure(f"{type(exc).__name__}: {exc}") from exc

        metadata = getattr(response, "response_metadata", None) or {}
        finish = metadata.get("finish_reason") or metadata.get("stop_reason") or "stop"
        return LLMResponse(
            text=_content_text(response.content),
            finish_reason=_FINISH_ALIASES.get(finish, finish),
            model=request.model,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _build_chat(self, request: LLMRequest) -> Any:
        if self.provider == "anthropic":
            from langchain_anthropic import ChatAnthropic

            return ChatAnthropic(
                model=request.model,
                temperature=request.temperature,
                max_tokens=request.max_tokens or 2000,
                timeout=request.timeout_seconds,
                max_retries=0,
                api_key=self._api_key,
            )

        from langchain_openai import ChatOpenAI

        chat = ChatOpenAI(
            model=request.model,
            temperature=request.temperature,
            max_tokens=request.max_tokens,
            timeout=request.timeout_seconds,
            max_retries=0,
            api_key=self._api_key,
            base_url=self._base_url,
        )
        if request.json_schema is not None:
            return chat.bind(
                response_format={
                    "type": "json_schema",
                    "json_schema": {
                        "name": request.schema_name,
                        "schema": request.json_schema,
                        "strict": False,
                    },
                }
            )
        return chat

    def _to_messages(self, request: LLMRequest) -> list[BaseMessage]:
        messages = list(request.messages)
        if self.provider == "anthropic" and request.json_schema is not None:
            messages = _append_schema_instructions(messages, request.json_schema)
        return [_to_langchain(m) for m in messages]


def _to_langchain(message: ChatMessage) -> BaseMessage:
    if message.role == "system":
        return SystemMessage(content=message.content)
    if message.role == "assistant":
        return AIMessage(content=message.content)
    return HumanMessage(content=message.content)


def _append_schema_instructions(
    messages: list[ChatMessage], schema: dict[str, Any]
) -> list[ChatMessage]:
    instructions = (
        "Respond with a single JSON object only, no prose, matching this JSON schema:\n"
        + json.dumps(schema, indent=2)
    )
    if messages and messages[0].role == "system":
        head = ChatMessage(role="system", content=messages[0].content + "\n\n" + instructions)
        return [head] + messages[1:]
    return [ChatMessage(role="system", content=instructions)] + messages


def _content_text(content: Any) -> str:
    """Flatten LangChain message content (str or list of content blocks)."""
    if isinstance(content, str):
        return content
    parts = []
    for block in content or []:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)
