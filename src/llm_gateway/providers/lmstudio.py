"""LM Studio (local, OpenAI-compatible) provider adapter."""

from __future__ import annotations

import logging
from typing import Any

from llm_gateway.errors import ConfigurationError, GatewayError
from llm_gateway.normalizer import FrameDecode
from llm_gateway.providers.base import ModelCapabilities, ProviderAdapter
from llm_gateway.providers.transport import OpenAICompatibleTransport

DEFAULT_BASE_URL = "http://localhost:1234"


class LMStudioAdapter(ProviderAdapter):
    """Local LM Studio server.

    Models are discovered from ``/v1/models`` at :meth:`initialize` and exposed
    as ``lmstudio/<id>``. Streamed responses are forwarded as raw text rather
    than SSE frames. There is no forced tool selection.
    """

    name = "lmstudio"
    _logger = logging.getLogger(__name__)

    def __init__(
        self,
        *,
        base_url: str | None = DEFAULT_BASE_URL,
        timeout_s: float = 60.0,
        transport: OpenAICompatibleTransport | None = None,
        **kwargs: Any,
    ) -> None:
        if transport is None:
            if not base_url:
                raise ConfigurationError(self.name, "a base URL is required")
            # local servers accept any key
            transport = OpenAICompatibleTransport(
                provider=self.name, base_url=base_url, api_key="empty", timeout_s=timeout_s
            )
        self._lmstudio = transport
        self._available = True
        super().__init__(transport=transport, **kwargs)

    async def initialize(self) -> None:
        try:
            discovered = await self._lmstudio.list_models()
        except (GatewayError, ValueError) as exc:
            self._models = []
            self._available = False
            self._logger.warning(
                "LM Studio service is not available, the provider will be disabled: %s", exc
            )
            return

        self._available = True
        self._models = [f"{self.name}/{model_id}" for model_id in discovered]
        self._logger.info("Discovered %d LM Studio model(s): %s", len(self._models), self._models)

    def capabilities(self, model: str) -> ModelCapabilities:
        return ModelCapabilities(streaming=True, forced_tool_choice=False)

    def serves(self, model: str) -> bool:
        return self._available and super().serves(model)

    def encode_stream_chunk(self, chunk: bytes, frames: list[FrameDecode]) -> bytes:
        return "".join(frame.text for frame in frames).encode()
