"""Together AI provider adapter."""

from __future__ import annotations

from typing import Any

from llm_gateway.errors import ConfigurationError
from llm_gateway.providers.base import ModelCapabilities, ProviderAdapter
from llm_gateway.providers.transport import ChatTransport, OpenAICompatibleTransport

_DEFAULT_BASE_URL = "https://api.together.xyz"


class TogetherAdapter(ProviderAdapter):
    """Together's OpenAI-compatible endpoint; ``tool_choice`` is always ``auto``."""

    name = "together"

    def __init__(
        self,
        *,
        api_key: str | None,
        base_url: str | None = None,
        timeout_s: float = 60.0,
        transport: ChatTransport | None = None,
        **kwargs: Any,
    ) -> None:
        if transport is None:
            if not api_key:
                raise ConfigurationError(self.name, "an API key is required")
            transport = OpenAICompatibleTransport(
                provider=self.name,
                base_url=base_url or _DEFAULT_BASE_URL,
                api_key=api_key,
                timeout_s=timeout_s,
            )
        super().__init__(transport=transport, **kwargs)

    def capabilities(self, model: str) -> ModelCapabilities:
        return ModelCapabilities(streaming=True, forced_tool_choice=False)
