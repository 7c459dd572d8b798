"""LLM provider module for daytrace.

Provides a backend-agnostic interface for transcribing screenshots and
synthesizing activity cards with multimodal LLMs.

Public API:
    LLMProvider -- Abstract base class
    HostedApiProvider -- Direct hosted API via the OpenAI SDK
    ChatCompletionsProvider -- Local server / regional family over HTTP
    ChatCLIProvider -- Assistant CLI subprocess
    build_provider, ProviderResolver -- Configuration-driven selection
"""

from daytrace.providers.base import LLMProvider

__all__ = [
    "LLMProvider",
    "ChatCLIProvider",
    "ChatCompletionsProvider",
    "HostedApiProvider",
    "ProviderResolver",
    "build_provider",
]


def __getattr__(name: str) -> object:
    """Lazy import for concrete implementations that require external deps."""
    if name == "HostedApiProvider":
        from daytrace.providers.hosted import HostedApiProvider
        return HostedApiProvider
    if name == "ChatCompletionsProvider":
        from daytrace.providers.http import ChatCompletionsProvider
        return ChatCompletionsProvider
    if name == "ChatCLIProvider":
        from daytrace.providers.cli_tool import ChatCLIProvider
        return ChatCLIProvider
    if name in ("ProviderResolver", "build_provider"):
        from daytrace.providers import factory
        return getattr(factory, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
