"""Direct hosted API provider.

Uses the ``openai`` SDK against an OpenAI-compatible hosted endpoint
(Gemini by default). The SDK's own retries are disabled so the shared
backoff policy applies; SDK exceptions are translated into the provider
error taxonomy here and never escape.
"""

from __future__ import annotations

import logging
from typing import AsyncIterator

from daytrace.errors import (
    ProviderConnectionError,
    ProviderError,
    ProviderParseError,
    ProviderTimeoutError,
    classify_http_status,
)
from daytrace.providers.base import LLMProvider
from daytrace.providers.wire import ChatRequest, ChatResponse, Usage

logger = logging.getLogger(__name__)


class HostedApiProvider(LLMProvider):
    """Provider using the OpenAI SDK's async chat completions client."""

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.5-flash",
        base_url: str | None = None,
        timeout: float = 120.0,
        name: str = "hosted",
        http_client: object | None = None,
        **kwargs,
    ) -> None:
        super().__init__(name=name, model=model, **kwargs)
        self._api_key = api_key
        self._base_url = base_url
        self._timeout = timeout
        self._http_client = http_client
        self._client = None

    def _ensure_client(self):
        """Lazily initialize the OpenAI async client."""
        if self._client is not None:
            return self._client
        from openai import AsyncOpenAI

        kwargs = {"api_key": self._api_key, "max_retries": 0, "timeout": self._timeout}
        if self._base_url:
            kwargs["base_url"] = self._base_url
        if self._http_client is not None:
            kwargs["http_client"] = self._http_client
        self._client = AsyncOpenAI(**kwargs)
        logger.info("Initialized hosted client (model=%s, base_url=%s)", self._model, self._base_url)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None

    def _translate(self, e: Exception) -> ProviderError:
        import openai

        if isinstance(e, openai.APITimeoutError):
            return ProviderTimeoutError(f"Request timed out: {e}", provider=self._name)
        if isinstance(e, openai.APIConnectionError):
            return ProviderConnectionError(f"Connection failed: {e}", provider=self._name)
        if isinstance(e, openai.APIStatusError):
            return classify_http_status(e.status_code, e.response.text, provider=self._name)
        if isinstance(e, openai.APIResponseValidationError):
            return ProviderParseError(f"Malformed response: {e}", provider=self._name)
        return ProviderError(str(e), provider=self._name)

    async def _send(self, request: ChatRequest) -> ChatResponse:
        import openai

        client = self._ensure_client()
        body = request.to_wire()
        try:
            response = await client.chat.completions.create(**body)
        except openai.OpenAIError as e:
            raise self._translate(e) from e

        try:
            text = response.choices[0].message.content
        except (AttributeError, IndexError, TypeError) as e:
            raise ProviderParseError(
                f"Malformed chat completion response: {e}", provider=self._name
            ) from e
        if not isinstance(text, str):
            raise ProviderParseError("Chat completion has no text content", provider=self._name)

        usage = None
        if getattr(response, "usage", None) is not None:
            usage = Usage(
                prompt_tokens=response.usage.prompt_tokens or 0,
                completion_tokens=response.usage.completion_tokens or 0,
                total_tokens=response.usage.total_tokens or 0,
            )
        return ChatResponse(text=text, usage=usage)

    async def _stream(self, request: ChatRequest) -> AsyncIterator[str]:
        import openai

        client = self._ensure_client()
        try:
            stream = await client.chat.completions.create(**request.to_wire(stream=True))
            async for chunk in stream:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta.content
                if delta:
                    yield delta
        except openai.OpenAIError as e:
            raise self._translate(e) from e
