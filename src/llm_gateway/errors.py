"""Package specific exception hierarchy."""

from __future__ import annotations

from typing import Any


class GatewayError(Exception):
    """Base exception for llm_gateway package."""


class ConfigurationError(GatewayError):
    """Raised when a provider adapter is missing required configuration."""

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class UnsupportedProviderError(GatewayError):
    """Raised when a provider has not been configured."""

    def __init__(self, provider: str) -> None:
        super().__init__(f"Provider '{provider}' is not available.")
        self.provider = provider


class ProviderError(GatewayError):
    """Represents provider-specific HTTP, API or connection errors."""

    def __init__(self, provider: str, message: str, status_code: int | None = None) -> None:
        suffix = f" (status {status_code})" if status_code is not None else ""
        super().__init__(f"{provider}: {message}{suffix}")
        self.provider = provider
        self.status_code = status_code


class ProviderRequestError(GatewayError):
    """A batch request failed; carries the timing span observed before the failure."""

    def __init__(self, message: str, timing: dict[str, Any]) -> None:
        super().__init__(message)
        self.timing = timing


class ToolInvocationError(GatewayError):
    """A single tool call failed or reported failure."""

    def __init__(self, tool: str, message: str) -> None:
        super().__init__(f"{tool}: {message}")
        self.tool = tool
        self.reason = message


class EventDecodeError(GatewayError):
    """Raised when a canonical SSE frame does not match any known event."""
