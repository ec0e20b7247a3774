"""HTTP transport for OpenAI-compatible chat completion backends."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import AsyncExitStack
from typing import Any, Protocol, cast

import httpx

from llm_gateway.errors import ProviderError

_CHAT_PATH = "/v1/chat/completions"
_MODELS_PATH = "/v1/models"


class ChatTransport(Protocol):
    """Anything that can create chat completions from a normalized payload."""

    async def create_chat_completion(self, payload: dict[str, Any]) -> dict[str, Any]:
        ...

    async def open_chat_stream(self, payload: dict[str, Any]) -> AsyncGenerator[bytes, None]:
        """Start a streamed completion and return the response body as it arrives."""
        ...

    async def aclose(self) -> None:
        ...


class OpenAICompatibleTransport:
    """Async wrapper over ``/v1/chat/completions`` and ``/v1/models``."""

    _logger = logging.getLogger(__name__)

    def __init__(
        self,
        *,
        provider: str,
        base_url: str,
        api_key: str | None = None,
        timeout_s: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._provider = provider
        self._client = client or httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout_s)
        self._headers = {"Content-Type": "application/json"}
        if api_key:
            self._headers["Authorization"] = f"Bearer {api_key}"

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def create_chat_completion(self, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self._client.post(_CHAT_PATH, headers=self._headers, json=payload)
        except httpx.HTTPError as exc:
            raise ProviderError(self._provider, str(exc) or type(exc).__name__) from exc
        return self._json_or_error(response)

    async def list_models(self) -> list[str]:
        try:
            response = await self._client.get(_MODELS_PATH, headers=self._headers)
        except httpx.HTTPError as exc:
            raise ProviderError(self._provider, str(exc) or type(exc).__name__) from exc
        data = self._json_or_error(response)
        return [str(entry["id"]) for entry in data.get("data", []) if "id" in entry]

    async def open_chat_stream(self, payload: dict[str, Any]) -> AsyncGenerator[bytes, None]:
        """Send the request now; status and connection errors raise here, not mid-stream."""
        stack = AsyncExitStack()
        try:
            response = await stack.enter_async_context(
                self._client.stream("POST", _CHAT_PATH, headers=self._headers, json=payload)
            )
            if response.status_code >= 400:
                body = await response.aread()
                raise ProviderError(
                    self._provider,
                    body.decode() or response.reason_phrase,
                    status_code=response.status_code,
                )
        except httpx.HTTPError as exc:
            await stack.aclose()
            raise ProviderError(self._provider, str(exc) or type(exc).__name__) from exc
        except BaseException:
            await stack.aclose()
            raise
        self._logger.debug("Opened %s stream: status=%d", self._provider, response.status_code)
        return self._iter_bytes(response, stack)

    async def _iter_bytes(
        self, response: httpx.Response, stack: AsyncExitStack
    ) -> AsyncGenerator[bytes, None]:
        # framing is left to the caller; the body is passed on byte for byte
        async with stack:
            try:
                async for chunk in response.aiter_bytes():
                    yield chunk
            except httpx.HTTPError as exc:
                raise ProviderError(self._provider, str(exc) or type(exc).__name__) from exc

    def _json_or_error(self, response: httpx.Response) -> dict[str, Any]:
        if response.status_code >= 400:
            raise ProviderError(
                self._provider,
                response.text or response.reason_phrase,
                status_code=response.status_code,
            )
        return cast(dict[str, Any], response.json())
