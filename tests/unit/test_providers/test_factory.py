"""Tests for provider selection."""

from __future__ import annotations

import pytest

from daytrace.config.credentials import StaticCredentialStore
from daytrace.config.settings import (
    ChatCLIProviderConfig,
    HostedProviderConfig,
    LocalProviderConfig,
    PipelineConfig,
    RegionalProviderConfig,
)
from daytrace.errors import NoProviderConfiguredError
from daytrace.providers.cli_tool import ChatCLIProvider
from daytrace.providers.factory import REGIONAL_FAMILIES, ProviderResolver, build_provider
from daytrace.providers.hosted import HostedApiProvider
from daytrace.providers.http import ChatCompletionsProvider


class TestBuildProvider:
    def test_no_configuration(self) -> None:
        with pytest.raises(NoProviderConfiguredError):
            build_provider(None, StaticCredentialStore())

    def test_hosted_requires_key(self) -> None:
        with pytest.raises(NoProviderConfiguredError, match="gemini"):
            build_provider(HostedProviderConfig(), StaticCredentialStore())

    def test_hosted(self) -> None:
        provider = build_provider(HostedProviderConfig(), StaticCredentialStore({"gemini": "k"}))
        assert isinstance(provider, HostedApiProvider)
        assert provider.name == "gemini"
        assert provider.model == "gemini-2.5-flash"

    def test_local_needs_no_key(self) -> None:
        provider = build_provider(LocalProviderConfig(model="llava:7b"), StaticCredentialStore())
        assert isinstance(provider, ChatCompletionsProvider)
        assert provider.name == "local"
        assert provider.model == "llava:7b"
        assert provider.endpoint == "http://localhost:11434/v1"

    def test_cli(self) -> None:
        provider = build_provider(ChatCLIProviderConfig(tool="claude"), StaticCredentialStore())
        assert isinstance(provider, ChatCLIProvider)
        assert provider.name == "cli:claude"

    @pytest.mark.parametrize("family", sorted(REGIONAL_FAMILIES))
    def test_regional_defaults(self, family: str) -> None:
        info = REGIONAL_FAMILIES[family]
        provider = build_provider(
            RegionalProviderConfig(family=family),
            StaticCredentialStore({info.credential_name: "key"}),
        )
        assert isinstance(provider, ChatCompletionsProvider)
        assert provider.name == family
        assert provider.model == info.default_model
        assert provider.endpoint == info.default_endpoint.rstrip("/")

    def test_regional_overrides(self) -> None:
        provider = build_provider(
            RegionalProviderConfig(family="zhipu", endpoint="https://proxy.test/v4/", model="glm-4v-plus"),
            StaticCredentialStore({"zhipu": "key"}),
        )
        assert provider.endpoint == "https://proxy.test/v4"
        assert provider.model == "glm-4v-plus"

    def test_regional_requires_key(self) -> None:
        with pytest.raises(NoProviderConfiguredError, match="Alibaba Qwen"):
            build_provider(RegionalProviderConfig(family="alibaba"), StaticCredentialStore())


class TestProviderResolver:
    def test_builds_fresh_provider_per_call(self) -> None:
        resolver = ProviderResolver(LocalProviderConfig(), StaticCredentialStore(), PipelineConfig(max_attempts=5))
        first, second = resolver(), resolver()
        assert first is not second
        assert first.name == "local"

    def test_propagates_missing_configuration(self) -> None:
        resolver = ProviderResolver(None, StaticCredentialStore())
        with pytest.raises(NoProviderConfiguredError):
            resolver()
