"""Shared test fixtures for the daytrace test suite.

Provides common fixtures used across unit tests: a temporary timeline
store, real screenshot files, a scripted LLM provider, and seeded
batches.
"""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Callable

import pytest
from PIL import Image

from daytrace.domain.models import CategoryDescriptor
from daytrace.providers.base import LLMProvider
from daytrace.providers.wire import ChatRequest, ChatResponse
from daytrace.storage.database import TimelineStore

# 10:00 local time; batches in tests span [10:00, 10:15]
BASE_TS = int(datetime(2025, 1, 6, 10, 0, 0).timestamp())
BATCH_SECONDS = 15 * 60

DEFAULT_MERGE = json.dumps([
    {"startTimestamp": "00:00", "endTimestamp": "07:30", "description": "Editing pipeline.py in VS Code"},
    {"startTimestamp": "07:30", "endTimestamp": "15:00", "description": "Reviewing a pull request on GitHub"},
])

# Offsets are from the window start (batch end - 1h): 45:00 is 10:00.
DEFAULT_CARDS = json.dumps([
    {
        "startTimestamp": "45:00",
        "endTimestamp": "52:30",
        "title": "Pipeline refactor",
        "summary": "Refactored the batch pipeline.",
        "category": "work",
    },
    {
        "startTimestamp": "52:30",
        "endTimestamp": "60:00",
        "title": "Code review",
        "summary": "Reviewed a teammate's pull request.",
        "category": "WORK",
        "appSites": {"primary": "github.com"},
    },
])

CATEGORIES = [
    CategoryDescriptor(name="Work", description="Focused work"),
    CategoryDescriptor(name="Personal"),
    CategoryDescriptor(name="Idle", is_idle=True),
]


async def _no_sleep(delay: float) -> None:
    return None


class ScriptedProvider(LLMProvider):
    """Provider whose replies are scripted per request kind.

    Each of ``frame``, ``merge`` and ``cards`` is a reply string, an
    exception to raise, a callable taking the request, or a list of
    those consumed in order.
    """

    def __init__(
        self,
        frame: object = "VS Code open with pipeline.py, editing a function.",
        merge: object = DEFAULT_MERGE,
        cards: object = DEFAULT_CARDS,
        name: str = "scripted",
        **kwargs,
    ) -> None:
        kwargs.setdefault("sleep", _no_sleep)
        super().__init__(name=name, model="scripted-model", **kwargs)
        self.frame = frame
        self.merge = merge
        self.cards = cards
        self.requests: list[ChatRequest] = []
        self.closed = 0

    @staticmethod
    def kind_of(request: ChatRequest) -> str:
        message = request.messages[-1]
        if message.image_urls:
            return "frame"
        if "coherent activity segments" in message.text:
            return "merge"
        return "cards"

    def calls(self, kind: str) -> list[ChatRequest]:
        return [r for r in self.requests if self.kind_of(r) == kind]

    async def _send(self, request: ChatRequest) -> ChatResponse:
        self.requests.append(request)
        reply = getattr(self, self.kind_of(request))
        if isinstance(reply, list):
            reply = reply.pop(0)
        if callable(reply):
            reply = reply(request)
        if isinstance(reply, BaseException):
            raise reply
        return ChatResponse(text=reply)

    async def aclose(self) -> None:
        self.closed += 1


# ---------------------------------------------------------------------------
# Storage Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store(tmp_path: Path) -> TimelineStore:
    """A fresh WAL-mode store in a temporary directory."""
    timeline = TimelineStore(tmp_path / "daytrace.sqlite")
    yield timeline
    timeline.close()


@pytest.fixture
def make_image(tmp_path: Path) -> Callable[..., Path]:
    """Factory writing small PNG screenshots to disk."""
    shots = tmp_path / "shots"
    shots.mkdir(exist_ok=True)

    def _make(name: str, color: tuple[int, int, int] = (40, 80, 120)) -> Path:
        path = shots / name
        Image.new("RGB", (64, 48), color).save(path)
        return path

    return _make


@pytest.fixture
def seed_batch(store: TimelineStore, make_image: Callable[..., Path]) -> Callable[..., int]:
    """Factory creating a pending batch backed by real screenshot files."""

    def _seed(start_ts: int = BASE_TS, duration: int = BATCH_SECONDS, count: int = 8) -> int:
        spacing = duration // count
        ids = []
        for i in range(count):
            captured = start_ts + i * spacing
            path = make_image(f"shot-{captured}.png", (i * 20 % 255, 90, 160))
            ids.append(store.add_screenshot(str(path), captured))
        return store.create_batch(start_ts, start_ts + duration, ids)

    return _seed


@pytest.fixture
def categories() -> list[CategoryDescriptor]:
    return list(CATEGORIES)


@pytest.fixture
def provider() -> ScriptedProvider:
    """A healthy scripted provider."""
    return ScriptedProvider()
