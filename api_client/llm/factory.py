"""Build an ``LLMClient`` for a provider name.

API keys are read from the environment; ``load_dotenv`` picks up a local
``.env`` file first.
"""

from __future__ import annotations

import os

from dotenv import load_dotenv

from api_client.llm.chat_client import ChatModelClient
from api_client.llm.client import LLMClient
from api_client.llm.mock import MockLLMClient
from models.errors import ConfigurationFailure

load_dotenv()  # auto-load .env file if present

_PROVIDER_DEFAULTS: dict[str, tuple[str, str | None]] = {
    "openrouter": ("OPENROUTER_API_KEY", "https://openrouter.ai/api/v1"),
    "openai": ("OPENAI_API_KEY", None),
    "anthropic": ("ANTHROPIC_API_KEY", None),
}


def get_client(
    provider: str,
    *,
    base_url: str | None = None,
    api_key_env: str | None = None,
) -> LLMClient:
    """Return a client for *provider* ('openrouter', 'openai', 'anthropic', 'mock').

    Raises ``ConfigurationFailure`` for unknown providers or a missing API key.
    """
    provider = provider.lower()
    if provider == "mock":
        return MockLLMClient()

    if provider not in _PROVIDER_DEFAULTS:
        raise ConfigurationFailure(
            f"Unknown LLM provider '{provider}'. Available: {sorted(_PROVIDER_DEFAULTS) + ['mock']}"
        )

    default_env, default_url = _PROVIDER_DEFAULTS[provider]
    env_name = api_key_env or default_env
    api_key = os.environ.get(env_name)
    if not api_key:
        raise ConfigurationFailure(f"{env_name} is not set; cannot use provider '{provider}'.")

    return ChatModelClient(provider, api_key=api_key, base_url=base_url or default_url)
