"""Canonical streaming events and bounded tool-calling loops over LLM backends."""

from llm_gateway.config import GatewaySettings, build_registry
from llm_gateway.costs import CostTable, ModelRates
from llm_gateway.errors import (
    ConfigurationError,
    GatewayError,
    ProviderError,
    ProviderRequestError,
    UnsupportedProviderError,
)
from llm_gateway.events import CanonicalEvent, ChatIdEvent, ContentEvent, DoneEvent, ErrorEvent
from llm_gateway.loop import MAX_TOOL_ITERATIONS, ToolExecutionLoop
from llm_gateway.normalizer import StreamNormalizer, normalize_stream
from llm_gateway.registry import ModelAlias, ProviderRegistry
from llm_gateway.service import GatewayResponse, GatewayService
from llm_gateway.streaming import StreamingExecution
from llm_gateway.tools import InMemoryToolRegistry, ToolDispatcher, ToolRegistry, ToolResult
from llm_gateway.types import Message, ProviderRequest, ProviderResponse, ToolDef

__all__ = [
    "MAX_TOOL_ITERATIONS",
    "CanonicalEvent",
    "ChatIdEvent",
    "ConfigurationError",
    "ContentEvent",
    "CostTable",
    "DoneEvent",
    "ErrorEvent",
    "GatewayError",
    "GatewayResponse",
    "GatewayService",
    "GatewaySettings",
    "InMemoryToolRegistry",
    "Message",
    "ModelAlias",
    "ModelRates",
    "ProviderError",
    "ProviderRegistry",
    "ProviderRequest",
    "ProviderRequestError",
    "ProviderResponse",
    "StreamNormalizer",
    "StreamingExecution",
    "ToolDef",
    "ToolDispatcher",
    "ToolExecutionLoop",
    "ToolRegistry",
    "ToolResult",
    "UnsupportedProviderError",
    "build_registry",
    "normalize_stream",
]
