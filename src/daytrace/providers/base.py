"""Abstract base class for LLM providers.

Every backend variant implements one primitive, ``_send`` (a single
chat-completions attempt), and inherits the full provider contract on
top of it: retries, audit records, frame description, batch
transcription, activity card generation and text generation. Wire
types never leave this package; callers see domain models and strings.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime
from typing import AsyncIterator, Sequence

from daytrace.domain.models import (
    ActivityGenerationContext,
    LLMCall,
    Observation,
    Screenshot,
    TimelineCard,
)
from daytrace.errors import ProviderError, VisionUnsupportedError
from daytrace.pipeline.cards import build_card_prompt, parse_cards
from daytrace.pipeline.segments import SegmentPolicy
from daytrace.pipeline.transcription import transcribe
from daytrace.providers.retry import Sleep, call_with_retries
from daytrace.providers.wire import ChatMessage, ChatRequest, ChatResponse
from daytrace.utils.imaging import load_image_data_url

logger = logging.getLogger(__name__)


class LLMProvider(ABC):
    """Uniform interface over interchangeable LLM backends."""

    def __init__(
        self,
        name: str,
        model: str,
        max_attempts: int = 3,
        supports_vision: bool = True,
        max_tokens: int | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._name = name
        self._model = model
        self._max_attempts = max_attempts
        self._supports_vision = supports_vision
        self._max_tokens = max_tokens
        self._sleep = sleep

    @property
    def name(self) -> str:
        return self._name

    @property
    def model(self) -> str:
        return self._model

    @property
    def supports_vision(self) -> bool:
        return self._supports_vision

    @abstractmethod
    async def _send(self, request: ChatRequest) -> ChatResponse:
        """Perform one chat-completions attempt.

        Raises:
            ProviderError: A classified failure; ``retryable`` decides
                whether the caller tries again.
        """
        ...

    async def _stream(self, request: ChatRequest) -> AsyncIterator[str]:
        """Yield text chunks for ``request``.

        Backends without native streaming yield the whole completion once.
        """
        response = await self._send(request)
        yield response.text

    async def aclose(self) -> None:
        """Release network clients or other resources."""

    async def __aenter__(self) -> LLMProvider:
        return self

    async def __aexit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Primitive calls
    # ------------------------------------------------------------------

    def _request(self, messages: list[ChatMessage]) -> ChatRequest:
        return ChatRequest(model=self._model, messages=messages, max_tokens=self._max_tokens)

    async def complete(
        self,
        messages: list[ChatMessage],
        operation: str,
        max_attempts: int | None = None,
    ) -> tuple[str, LLMCall]:
        """Send a chat request under the retry policy and audit it."""
        request = self._request(messages)
        started = datetime.now()
        clock = time.perf_counter()
        response = await call_with_retries(
            lambda: self._send(request),
            max_attempts=max_attempts or self._max_attempts,
            sleep=self._sleep,
            operation=f"{self._name}:{operation}",
        )
        log = LLMCall(
            timestamp=started,
            latency=time.perf_counter() - clock,
            operation=operation,
            provider=self._name,
            model=self._model,
            input=request.describe(),
            output=response.text,
        )
        logger.debug("%s %s -> %d chars in %.2fs", self._name, operation, len(response.text), log.latency)
        return response.text, log

    async def complete_text(self, prompt: str, operation: str) -> tuple[str, LLMCall]:
        return await self.complete([ChatMessage.user_text(prompt)], operation)

    async def describe_frame(self, screenshot: Screenshot, prompt: str) -> tuple[str, LLMCall]:
        """Ask for a short factual description of one screenshot.

        Raises:
            VisionUnsupportedError: If the backend cannot read images.
            OSError: If the screenshot file cannot be read.
        """
        if not self._supports_vision:
            raise VisionUnsupportedError(
                f"{self._name} does not support image input", provider=self._name
            )
        data_url = load_image_data_url(screenshot.file_path)
        return await self.complete(
            [ChatMessage.user_image(prompt, data_url)], operation="describe_frame"
        )

    # ------------------------------------------------------------------
    # Provider contract
    # ------------------------------------------------------------------

    async def transcribe_screenshots(
        self,
        screenshots: Sequence[Screenshot],
        batch_start_ts: int,
        batch_end_ts: int | None = None,
        policy: SegmentPolicy | None = None,
        batch_id: int | None = None,
    ) -> tuple[list[Observation], LLMCall]:
        """Transcribe a batch's screenshots into observations."""
        return await transcribe(
            self, screenshots, batch_start_ts, batch_end_ts, policy=policy, batch_id=batch_id
        )

    async def generate_activity_cards(
        self,
        observations: Sequence[Observation],
        context: ActivityGenerationContext,
        min_card_seconds: int = 12,
    ) -> tuple[list[TimelineCard], LLMCall]:
        """Synthesize the replacement card set for a window."""
        prompt = build_card_prompt(observations, context)
        raw, log = await self.complete_text(prompt, operation="generate_cards")
        cards = parse_cards(raw, observations, context, min_card_seconds, provider=self._name)
        return cards, log

    async def generate_text(self, prompt: str) -> tuple[str, LLMCall]:
        return await self.complete_text(prompt, operation="generate_text")

    async def stream_text(self, prompt: str) -> AsyncIterator[str]:
        """Yield incremental text chunks for ``prompt``."""
        request = self._request([ChatMessage.user_text(prompt)])
        async for chunk in self._stream(request):
            if chunk:
                yield chunk

    async def health_check(self) -> bool:
        """Check if the backend is reachable and authenticated."""
        try:
            await self.complete_text("Reply with OK.", operation="health_check")
            return True
        except ProviderError as e:
            logger.warning("Health check failed: %s", e)
            return False
