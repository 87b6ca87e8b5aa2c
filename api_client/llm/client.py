from typing import Protocol

from api_client.llm.models import LLMRequest, LLMResponse


class LLMClient(Protocol):
    async def generate(self, request: LLMRequest) -> LLMResponse:
        ...
