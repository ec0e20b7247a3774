"""Provider registry: model resolution and request dispatch."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping

from pydantic import BaseModel, ConfigDict

from llm_gateway.errors import UnsupportedProviderError
from llm_gateway.providers.base import ModelCapabilities, ProviderAdapter, ProviderResult
from llm_gateway.types import ProviderRequest


class ModelAlias(BaseModel):
    """Public model name mapped onto a concrete provider model."""

    model_config = ConfigDict(frozen=True)

    provider: str
    model: str


class ResolvedModel(BaseModel):
    model_config = ConfigDict(frozen=True)

    provider_id: str
    actual_model: str


class ProviderRegistry:
    """Holds the configured adapters; passed explicitly to whoever needs them."""

    _logger = logging.getLogger(__name__)

    def __init__(
        self,
        providers: Iterable[ProviderAdapter] = (),
        *,
        aliases: Mapping[str, ModelAlias] | None = None,
    ) -> None:
        self._providers: dict[str, ProviderAdapter] = {}
        self._aliases = dict(aliases or {})
        for provider in providers:
            self.register(provider)

    def register(self, provider: ProviderAdapter) -> None:
        self._providers[provider.name] = provider

    @property
    def providers(self) -> tuple[ProviderAdapter, ...]:
        return tuple(self._providers.values())

    def get_provider(self, name: str) -> ProviderAdapter:
        """Return a provider by its registered name."""
        try:
            return self._providers[name]
        except KeyError as exc:
            raise UnsupportedProviderError(name) from exc

    def capabilities(self, provider: str, model: str) -> ModelCapabilities:
        """Return model capability info for a provider."""
        return self.get_provider(provider).capabilities(model)

    def resolve(self, model: str) -> ResolvedModel:
        """Map a requested model name to ``(provider_id, actual_model)``."""
        alias = self._aliases.get(model)
        if alias is not None:
            return ResolvedModel(provider_id=alias.provider, actual_model=alias.model)

        for provider in self._providers.values():
            if provider.serves(model):
                return ResolvedModel(provider_id=provider.name, actual_model=model)

        raise UnsupportedProviderError(model)

    async def initialize(self) -> None:
        for provider in self._providers.values():
            await provider.initialize()

    async def aclose(self) -> None:
        for provider in self._providers.values():
            await provider.aclose()

    async def execute(self, provider_id: str, req: ProviderRequest) -> ProviderResult:
        """Run a request against one provider."""
        provider = self.get_provider(provider_id)
        self._logger.info("Using provider: %s, model: %s", provider_id, req.model)
        return await provider.execute(req)
