"""Tests for the chat-completions provider over HTTP."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Callable

import httpx
import pytest

from daytrace.domain.models import Screenshot
from daytrace.errors import (
    ProviderAuthError,
    ProviderConnectionError,
    ProviderParseError,
    VisionUnsupportedError,
)
from daytrace.providers.http import ChatCompletionsProvider


def completion(text: str) -> dict:
    return {
        "choices": [{"index": 0, "message": {"role": "assistant", "content": text}}],
        "usage": {"prompt_tokens": 5, "completion_tokens": 2, "total_tokens": 7},
    }


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def scripted_transport(*responses: httpx.Response) -> tuple[httpx.MockTransport, list[httpx.Request]]:
    queue = list(responses)
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return queue.pop(0)

    return httpx.MockTransport(handler), seen


def make_provider(transport: httpx.MockTransport, sleep: RecordingSleep | None = None, **kwargs) -> ChatCompletionsProvider:
    return ChatCompletionsProvider(
        name="local",
        endpoint="http://inference.test/v1/",
        model="qwen2.5vl:3b",
        transport=transport,
        sleep=sleep or RecordingSleep(),
        **kwargs,
    )


class TestChatCompletionsProvider:
    @pytest.mark.asyncio
    async def test_posts_chat_completion(self) -> None:
        transport, seen = scripted_transport(httpx.Response(200, json=completion("hello")))
        provider = make_provider(transport, api_key="secret")
        text, log = await provider.generate_text("Say hello")
        await provider.aclose()

        assert text == "hello"
        assert seen[0].url == "http://inference.test/v1/chat/completions"
        assert seen[0].headers["Authorization"] == "Bearer secret"
        body = json.loads(seen[0].content)
        assert body["model"] == "qwen2.5vl:3b"
        assert body["messages"] == [{"role": "user", "content": "Say hello"}]
        assert log.operation == "generate_text"
        assert log.provider == "local"
        assert log.output == "hello"

    @pytest.mark.asyncio
    async def test_rate_limit_retried_twice_then_succeeds(self) -> None:
        sleep = RecordingSleep()
        transport, seen = scripted_transport(
            httpx.Response(429, text="slow down"),
            httpx.Response(429, text="slow down"),
            httpx.Response(200, json=completion("finally")),
        )
        provider = make_provider(transport, sleep)
        text, _ = await provider.generate_text("hi")
        assert text == "finally"
        assert len(seen) == 3
        assert sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_server_error_retried(self) -> None:
        sleep = RecordingSleep()
        transport, seen = scripted_transport(
            httpx.Response(503, text="unavailable"),
            httpx.Response(200, json=completion("ok")),
        )
        text, _ = await make_provider(transport, sleep).generate_text("hi")
        assert text == "ok"
        assert sleep.delays == [1.0]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [401, 403])
    async def test_auth_failure_not_retried(self, status: int) -> None:
        sleep = RecordingSleep()
        transport, seen = scripted_transport(httpx.Response(status, text="bad key"))
        with pytest.raises(ProviderAuthError) as exc_info:
            await make_provider(transport, sleep).generate_text("hi")
        assert exc_info.value.status_code == status
        assert len(seen) == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_malformed_body_not_retried(self) -> None:
        sleep = RecordingSleep()
        transport, seen = scripted_transport(httpx.Response(200, text="<html>oops</html>"))
        with pytest.raises(ProviderParseError):
            await make_provider(transport, sleep).generate_text("hi")
        assert len(seen) == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_connection_error_translated(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        sleep = RecordingSleep()
        provider = make_provider(httpx.MockTransport(handler), sleep)
        with pytest.raises(ProviderConnectionError):
            await provider.generate_text("hi")
        assert sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_describe_frame_sends_data_url(self, make_image: Callable[..., Path]) -> None:
        path = make_image("frame.png")
        transport, seen = scripted_transport(httpx.Response(200, json=completion("Terminal open")))
        provider = make_provider(transport)
        text, _ = await provider.describe_frame(Screenshot(file_path=str(path), captured_at=0), "Describe")
        assert text == "Terminal open"
        content = json.loads(seen[0].content)["messages"][0]["content"]
        assert content[0] == {"type": "text", "text": "Describe"}
        assert content[1]["image_url"]["url"].startswith("data:image/jpeg;base64,")

    @pytest.mark.asyncio
    async def test_describe_frame_without_vision(self) -> None:
        transport, seen = scripted_transport()
        provider = make_provider(transport, supports_vision=False)
        with pytest.raises(VisionUnsupportedError):
            await provider.describe_frame(Screenshot(file_path="/nope.png", captured_at=0), "Describe")
        assert seen == []

    @pytest.mark.asyncio
    async def test_stream_decodes_server_sent_events(self) -> None:
        events = "\n".join([
            'data: {"choices": [{"delta": {"role": "assistant"}}]}',
            'data: {"choices": [{"delta": {"content": "Hel"}}]}',
            "",
            'data: {"choices": [{"delta": {"content": "lo"}}]}',
            "data: [DONE]",
            "",
        ])
        transport, seen = scripted_transport(
            httpx.Response(200, text=events, headers={"Content-Type": "text/event-stream"})
        )
        provider = make_provider(transport)
        chunks = [chunk async for chunk in provider.stream_text("hi")]
        assert chunks == ["Hel", "lo"]
        assert json.loads(seen[0].content)["stream"] is True

    @pytest.mark.asyncio
    async def test_stream_auth_failure(self) -> None:
        transport, _ = scripted_transport(httpx.Response(401, text="nope"))
        provider = make_provider(transport)
        with pytest.raises(ProviderAuthError):
            async for _ in provider.stream_text("hi"):
                pass

    @pytest.mark.asyncio
    async def test_health_check(self) -> None:
        transport, _ = scripted_transport(
            httpx.Response(200, json=completion("OK")),
            httpx.Response(401, text="nope"),
        )
        provider = make_provider(transport)
        assert await provider.health_check() is True
        assert await provider.health_check() is False
