"""OpenAI provider adapter."""

from __future__ import annotations

import logging
from typing import Any

from llm_gateway.errors import ConfigurationError
from llm_gateway.providers.base import ModelCapabilities, ProviderAdapter
from llm_gateway.providers.transport import ChatTransport, OpenAICompatibleTransport

_DEFAULT_BASE_URL = "https://api.openai.com"
_DEFAULT_MODELS = ("gpt-4o", "gpt-4o-mini", "gpt-4.1", "gpt-4.1-mini", "gpt-4")


class OpenAIAdapter(ProviderAdapter):
    """OpenAI Chat Completions; streamed SSE bytes are passed through unchanged."""

    name = "openai"
    _logger = logging.getLogger(__name__)

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
        kwargs.setdefault("models", _DEFAULT_MODELS)
        super().__init__(transport=transport, **kwargs)

    def capabilities(self, model: str) -> ModelCapabilities:
        return ModelCapabilities(streaming=True, forced_tool_choice=True)

    def serves(self, model: str) -> bool:
        return super().serves(model) or model.startswith(("gpt-", "o1", "o3", "o4"))
