"""Chat-completions provider over plain HTTP.

Serves the local inference server variant and the regional API family:
both speak the OpenAI-compatible ``POST {endpoint}/chat/completions``
protocol with images embedded as base64 data URLs.
"""

from __future__ import annotations

import logging
from typing import AsyncIterator

import httpx

from daytrace.errors import (
    ProviderConnectionError,
    ProviderTimeoutError,
    classify_http_status,
)
from daytrace.providers.base import LLMProvider
from daytrace.providers.retry import Sleep
from daytrace.providers.wire import ChatRequest, ChatResponse, decode_stream_line

logger = logging.getLogger(__name__)


class ChatCompletionsProvider(LLMProvider):
    """Provider for any OpenAI-compatible chat-completions endpoint."""

    def __init__(
        self,
        name: str,
        endpoint: str,
        model: str,
        api_key: str | None = None,
        timeout: float = 120.0,
        max_attempts: int = 3,
        supports_vision: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
        **kwargs,
    ) -> None:
        super().__init__(
            name=name, model=model, max_attempts=max_attempts,
            supports_vision=supports_vision, **kwargs,
        )
        self._endpoint = endpoint.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def endpoint(self) -> str:
        return self._endpoint

    def _ensure_client(self) -> httpx.AsyncClient:
        """Lazily create the HTTP client."""
        if self._client is None:
            headers = {"Content-Type": "application/json"}
            if self._api_key:
                headers["Authorization"] = f"Bearer {self._api_key}"
            self._client = httpx.AsyncClient(
                base_url=self._endpoint,
                headers=headers,
                timeout=self._timeout,
                transport=self._transport,
            )
            logger.info("Initialized %s client (model=%s, endpoint=%s)", self._name, self._model, self._endpoint)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _send(self, request: ChatRequest) -> ChatResponse:
        client = self._ensure_client()
        try:
            resp = await client.post("/chat/completions", json=request.to_wire())
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(
                f"{self._name} request timed out: {e}", provider=self._name
            ) from e
        except httpx.TransportError as e:
            raise ProviderConnectionError(
                f"{self._name} connection failed: {e}", provider=self._name
            ) from e

        if resp.status_code >= 400:
            logger.warning("%s HTTP %d: %s", self._name, resp.status_code, resp.text[:200])
            raise classify_http_status(resp.status_code, resp.text, provider=self._name)
        return ChatResponse.from_wire(resp.text, provider=self._name)

    async def _stream(self, request: ChatRequest) -> AsyncIterator[str]:
        client = self._ensure_client()
        try:
            async with client.stream("POST", "/chat/completions", json=request.to_wire(stream=True)) as resp:
                if resp.status_code >= 400:
                    body = (await resp.aread()).decode("utf-8", errors="replace")
                    raise classify_http_status(resp.status_code, body, provider=self._name)
                async for line in resp.aiter_lines():
                    chunk = decode_stream_line(line)
                    if chunk is None:
                        break
                    if chunk:
                        yield chunk
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(
                f"{self._name} stream timed out: {e}", provider=self._name
            ) from e
        except httpx.TransportError as e:
            raise ProviderConnectionError(
                f"{self._name} stream connection failed: {e}", provider=self._name
            ) from e
