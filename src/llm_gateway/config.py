"""Gateway settings and registry construction."""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Mapping

from pydantic import BaseModel, Field

from llm_gateway.costs import CostTable
from llm_gateway.errors import ConfigurationError
from llm_gateway.loop import MAX_TOOL_ITERATIONS
from llm_gateway.providers import LMStudioAdapter, OpenAIAdapter, ProviderAdapter, TogetherAdapter
from llm_gateway.providers.lmstudio import DEFAULT_BASE_URL as LMSTUDIO_DEFAULT_URL
from llm_gateway.registry import ModelAlias, ProviderRegistry
from llm_gateway.tools import ToolRegistry

_logger = logging.getLogger(__name__)


class GatewaySettings(BaseModel):
    """Backend endpoints plus request defaults."""

    openai_api_key: str | None = None
    openai_base_url: str | None = None
    together_api_key: str | None = None
    together_base_url: str | None = None
    lmstudio_base_url: str | None = LMSTUDIO_DEFAULT_URL
    timeout_s: float = Field(default=60.0, gt=0)
    default_temperature: float = 0.7
    default_max_tokens: int = Field(default=8192, gt=0)
    max_tool_iterations: int = Field(default=MAX_TOOL_ITERATIONS, ge=1)
    aliases: dict[str, ModelAlias] = Field(default_factory=dict)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> GatewaySettings:
        env = os.environ if environ is None else environ
        values: dict[str, object] = {
            "openai_api_key": env.get("OPENAI_API_KEY"),
            "openai_base_url": env.get("OPENAI_BASE_URL"),
            "together_api_key": env.get("TOGETHER_API_KEY"),
            "together_base_url": env.get("TOGETHER_BASE_URL"),
        }
        if "LMSTUDIO_BASE_URL" in env:
            values["lmstudio_base_url"] = env["LMSTUDIO_BASE_URL"]
        if "LLM_GATEWAY_TIMEOUT_S" in env:
            values["timeout_s"] = env["LLM_GATEWAY_TIMEOUT_S"]
        if "LLM_GATEWAY_MAX_TOOL_ITERATIONS" in env:
            values["max_tool_iterations"] = env["LLM_GATEWAY_MAX_TOOL_ITERATIONS"]
        return cls.model_validate(values)


def build_registry(
    settings: GatewaySettings,
    tool_registry: ToolRegistry,
    *,
    costs: CostTable | None = None,
) -> ProviderRegistry:
    """Create every adapter whose configuration is complete.

    Adapters that raise :class:`ConfigurationError` are left out with a
    warning; the rest of the gateway keeps working.
    """
    costs = costs or CostTable()
    shared = {
        "tool_registry": tool_registry,
        "costs": costs,
        "timeout_s": settings.timeout_s,
        "max_tool_iterations": settings.max_tool_iterations,
    }
    factories: list[tuple[str, Callable[[], ProviderAdapter]]] = [
        (
            "openai",
            lambda: OpenAIAdapter(
                api_key=settings.openai_api_key, base_url=settings.openai_base_url, **shared
            ),
        ),
        (
            "together",
            lambda: TogetherAdapter(
                api_key=settings.together_api_key, base_url=settings.together_base_url, **shared
            ),
        ),
        ("lmstudio", lambda: LMStudioAdapter(base_url=settings.lmstudio_base_url, **shared)),
    ]

    registry = ProviderRegistry(aliases=settings.aliases)
    for name, factory in factories:
        try:
            registry.register(factory())
        except ConfigurationError as exc:
            _logger.warning("Provider %s disabled: %s", name, exc)
    return registry
