"""Chat-completions wire format.

Message content on the wire is either a plain string or a list of typed
parts. Internally it is a tagged variant (``TextContent`` or
``PartsContent``) that is encoded and decoded explicitly for each case.
None of these types leave the providers package.
"""

from __future__ import annotations

import json
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from daytrace.errors import ProviderParseError


# ---------------------------------------------------------------------------
# Content parts
# ---------------------------------------------------------------------------


class ImageURL(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str


class TextPart(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["text"] = "text"
    text: str


class ImagePart(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["image_url"] = "image_url"
    image_url: ImageURL


ContentPart = Annotated[Union[TextPart, ImagePart], Field(discriminator="type")]


# ---------------------------------------------------------------------------
# Message content variants
# ---------------------------------------------------------------------------


class TextContent(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["text"] = "text"
    text: str


class PartsContent(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["parts"] = "parts"
    parts: list[ContentPart]


MessageContent = Annotated[Union[TextContent, PartsContent], Field(discriminator="kind")]


class ChatMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["system", "user", "assistant"]
    content: MessageContent

    @classmethod
    def user_text(cls, text: str) -> ChatMessage:
        return cls(role="user", content=TextContent(text=text))

    @classmethod
    def user_image(cls, prompt: str, data_url: str) -> ChatMessage:
        return cls(
            role="user",
            content=PartsContent(parts=[
                TextPart(text=prompt),
                ImagePart(image_url=ImageURL(url=data_url)),
            ]),
        )

    @property
    def text(self) -> str:
        """Concatenated text of the message, ignoring image parts."""
        if isinstance(self.content, TextContent):
            return self.content.text
        return "\n".join(p.text for p in self.content.parts if isinstance(p, TextPart))

    @property
    def image_urls(self) -> list[str]:
        if isinstance(self.content, TextContent):
            return []
        return [p.image_url.url for p in self.content.parts if isinstance(p, ImagePart)]

    def to_wire(self) -> dict[str, Any]:
        if isinstance(self.content, TextContent):
            content: Any = self.content.text
        else:
            content = [p.model_dump(exclude_none=True) for p in self.content.parts]
        return {"role": self.role, "content": content}

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> ChatMessage:
        raw = data.get("content")
        if isinstance(raw, str):
            content: TextContent | PartsContent = TextContent(text=raw)
        elif isinstance(raw, list):
            content = PartsContent.model_validate({"parts": raw})
        else:
            raise ValueError(f"Unsupported message content: {type(raw).__name__}")
        return cls(role=data.get("role", "assistant"), content=content)


class ChatRequest(BaseModel):
    model: str
    messages: list[ChatMessage]
    max_tokens: int | None = None

    def to_wire(self, stream: bool = False) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": self.model,
            "messages": [m.to_wire() for m in self.messages],
        }
        if self.max_tokens is not None:
            body["max_tokens"] = self.max_tokens
        if stream:
            body["stream"] = True
        return body

    def describe(self) -> str:
        """Short text rendering used for the audit log."""
        lines = []
        for m in self.messages:
            images = len(m.image_urls)
            suffix = f" [+{images} image(s)]" if images else ""
            lines.append(f"{m.role}: {m.text}{suffix}")
        return "\n".join(lines)


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChatResponse(BaseModel):
    text: str
    usage: Usage | None = None

    @classmethod
    def from_wire(cls, payload: Any, provider: str = "") -> ChatResponse:
        """Decode a chat-completions response body.

        Raises:
            ProviderParseError: If the body does not carry a first choice
                with string content.
        """
        raw = payload if isinstance(payload, str) else json.dumps(payload)[:2000]
        try:
            if isinstance(payload, str):
                payload = json.loads(payload)
            choice = payload["choices"][0]
            message = ChatMessage.from_wire(choice["message"])
            usage = Usage.model_validate(payload["usage"]) if payload.get("usage") else None
        except (ValueError, KeyError, IndexError, TypeError, ValidationError) as e:
            raise ProviderParseError(
                f"Malformed chat completion response: {e}",
                provider=provider,
                raw_response=raw,
            ) from e
        return cls(text=message.text, usage=usage)


def decode_stream_line(line: str) -> str | None:
    """Decode one server-sent-event line of a streaming completion.

    Returns the text delta, an empty string for lines without content,
    or None once the ``[DONE]`` sentinel is reached.
    """
    line = line.strip()
    if not line.startswith("data:"):
        return ""
    data = line[len("data:"):].strip()
    if data == "[DONE]":
        return None
    try:
        chunk = json.loads(data)
        delta = chunk["choices"][0].get("delta") or {}
    except (ValueError, KeyError, IndexError, TypeError, AttributeError):
        return ""
    content = delta.get("content")
    return content if isinstance(content, str) else ""
