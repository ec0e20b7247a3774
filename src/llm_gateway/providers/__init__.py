"""Provider adapters for llm_gateway."""

from .base import ModelCapabilities, ProviderAdapter, ProviderResult
from .lmstudio import LMStudioAdapter
from .openai import OpenAIAdapter
from .together import TogetherAdapter
from .transport import ChatTransport, OpenAICompatibleTransport

__all__ = [
    "ChatTransport",
    "LMStudioAdapter",
    "ModelCapabilities",
    "OpenAIAdapter",
    "OpenAICompatibleTransport",
    "ProviderAdapter",
    "ProviderResult",
    "TogetherAdapter",
]
