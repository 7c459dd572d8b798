"""Command-line assistant provider.

Runs a locally installed assistant CLI (``codex`` or ``claude``) as a
subprocess per call. Screenshots are handed over by file path rather
than as data URLs.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Literal

from daytrace.domain.models import LLMCall, Screenshot
from daytrace.errors import (
    NoProviderConfiguredError,
    ProviderAuthError,
    ProviderError,
    ProviderRateLimitedError,
    ProviderTimeoutError,
)
from daytrace.providers.base import LLMProvider
from daytrace.providers.wire import ChatMessage, ChatRequest, ChatResponse

logger = logging.getLogger(__name__)

ChatCLITool = Literal["codex", "claude"]

AUTH_MARKERS = ("not logged in", "please login", "please log in", "unauthorized", "invalid api key", "401")
RATE_MARKERS = ("rate limit", "too many requests", "429", "usage limit")


class ChatCLIProvider(LLMProvider):
    """Provider backed by an assistant CLI subprocess."""

    def __init__(
        self,
        tool: ChatCLITool = "codex",
        timeout: float = 300.0,
        executable: str | None = None,
        **kwargs,
    ) -> None:
        super().__init__(name=f"cli:{tool}", model=tool, **kwargs)
        self._tool = tool
        self._timeout = timeout
        self._executable = executable or tool

    def build_command(self, prompt: str, image_paths: list[str] | None = None) -> list[str]:
        """Build the argv for one invocation."""
        image_paths = image_paths or []
        if self._tool == "codex":
            argv = [self._executable, "exec", "--skip-git-repo-check"]
            for path in image_paths:
                argv += ["-i", path]
            return argv + [prompt]
        if image_paths:
            listing = "\n".join(f"- {p}" for p in image_paths)
            prompt = f"{prompt}\n\nRead the screenshot image file(s) below before answering:\n{listing}"
            return [self._executable, "-p", prompt, "--output-format", "text", "--allowedTools", "Read"]
        return [self._executable, "-p", prompt, "--output-format", "text"]

    async def _spawn(self, argv: list[str]) -> asyncio.subprocess.Process:
        try:
            return await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise NoProviderConfiguredError(
                f"Assistant CLI '{self._executable}' is not installed"
            ) from e

    def _classify_failure(self, returncode: int, stderr: str) -> ProviderError:
        lowered = stderr.lower()
        message = f"{self._tool} exited with status {returncode}: {stderr.strip()[:300]}"
        if any(marker in lowered for marker in AUTH_MARKERS):
            return ProviderAuthError(message, provider=self._name, raw_response=stderr)
        if any(marker in lowered for marker in RATE_MARKERS):
            return ProviderRateLimitedError(message, provider=self._name, raw_response=stderr)
        return ProviderError(message, provider=self._name, raw_response=stderr)

    async def _run(self, argv: list[str]) -> str:
        proc = await self._spawn(argv)
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self._timeout)
        except asyncio.TimeoutError as e:
            proc.kill()
            await proc.wait()
            raise ProviderTimeoutError(
                f"{self._tool} did not finish within {self._timeout:.0f}s", provider=self._name
            ) from e
        out = stdout.decode("utf-8", errors="replace")
        err = stderr.decode("utf-8", errors="replace")
        if proc.returncode != 0:
            raise self._classify_failure(proc.returncode, err)
        return out.strip()

    @staticmethod
    def _prompt_of(request: ChatRequest) -> str:
        return "\n\n".join(m.text for m in request.messages if m.text)

    async def _send(self, request: ChatRequest) -> ChatResponse:
        image_paths = [url for m in request.messages for url in m.image_urls if not url.startswith("data:")]
        text = await self._run(self.build_command(self._prompt_of(request), image_paths))
        return ChatResponse(text=text)

    async def describe_frame(self, screenshot: Screenshot, prompt: str) -> tuple[str, LLMCall]:
        """Hand the screenshot to the CLI by path instead of inlining it."""
        message = ChatMessage.user_image(prompt, screenshot.file_path)
        return await self.complete([message], operation="describe_frame")

    async def _stream(self, request: ChatRequest) -> AsyncIterator[str]:
        proc = await self._spawn(self.build_command(self._prompt_of(request)))
        assert proc.stdout is not None
        try:
            while True:
                line = await asyncio.wait_for(proc.stdout.readline(), timeout=self._timeout)
                if not line:
                    break
                yield line.decode("utf-8", errors="replace")
            await proc.wait()
        except asyncio.TimeoutError as e:
            raise ProviderTimeoutError(
                f"{self._tool} stream stalled for {self._timeout:.0f}s", provider=self._name
            ) from e
        finally:
            # consumer stopped early or the CLI stalled
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
        if proc.returncode != 0:
            stderr = (await proc.stderr.read()).decode("utf-8", errors="replace") if proc.stderr else ""
            raise self._classify_failure(proc.returncode, stderr)
