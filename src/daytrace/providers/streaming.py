"""Cancellable text streaming channel.

``TextStream`` runs a provider's chunk iterator in a producer task and
hands events to the consumer through a queue. The consumer sees zero or
more ``TextDelta`` events followed by exactly one terminal event,
``StreamCompleted`` or ``StreamFailed``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Literal, Union

from pydantic import BaseModel, ConfigDict

from daytrace.errors import DaytraceError

logger = logging.getLogger(__name__)


class TextDelta(BaseModel):
    model_config = ConfigDict(frozen=True)

    event: Literal["delta"] = "delta"
    text: str


class StreamCompleted(BaseModel):
    model_config = ConfigDict(frozen=True)

    event: Literal["completed"] = "completed"
    text: str


class StreamFailed(BaseModel):
    model_config = ConfigDict(frozen=True)

    event: Literal["failed"] = "failed"
    message: str


StreamEvent = Union[TextDelta, StreamCompleted, StreamFailed]


class TextStream:
    """Producer/consumer channel over an async iterator of text chunks.

    Example usage::

        stream = TextStream(provider.stream_text("Summarize my morning"))
        async for event in stream:
            if isinstance(event, TextDelta):
                print(event.text, end="")
    """

    def __init__(self, chunks: AsyncIterator[str], max_buffer: int = 64) -> None:
        self._chunks = chunks
        self._queue: asyncio.Queue[StreamEvent] = asyncio.Queue(maxsize=max_buffer)
        self._task: asyncio.Task | None = None
        self._finished = False

    def _start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._produce())

    async def _produce(self) -> None:
        parts: list[str] = []
        try:
            async for chunk in self._chunks:
                parts.append(chunk)
                await self._queue.put(TextDelta(text=chunk))
        except asyncio.CancelledError:
            raise
        except DaytraceError as e:
            logger.warning("Text stream failed: %s", e)
            await self._queue.put(StreamFailed(message=str(e)))
            return
        except Exception as e:
            logger.exception("Text stream failed unexpectedly")
            await self._queue.put(StreamFailed(message=str(e) or type(e).__name__))
            return
        finally:
            aclose = getattr(self._chunks, "aclose", None)
            if aclose is not None:
                await aclose()
        await self._queue.put(StreamCompleted(text="".join(parts)))

    def __aiter__(self) -> TextStream:
        self._start()
        return self

    async def __anext__(self) -> StreamEvent:
        if self._finished:
            raise StopAsyncIteration
        self._start()
        event = await self._queue.get()
        if not isinstance(event, TextDelta):
            self._finished = True
        return event

    async def cancel(self) -> None:
        """Stop the producer; the stream ends without a terminal event."""
        self._finished = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

    async def collect(self) -> str:
        """Drain the stream and return the full text.

        Raises:
            DaytraceError: If the stream ended with ``StreamFailed``.
        """
        async for event in self:
            if isinstance(event, StreamCompleted):
                return event.text
            if isinstance(event, StreamFailed):
                raise DaytraceError(event.message)
        return ""
