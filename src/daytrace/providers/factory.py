"""Provider selection from stored configuration.

The backend set is closed: ``hosted``, ``local``, ``cli`` and
``regional``. ``build_provider`` resolves one configuration value to a
concrete provider; ``ProviderResolver`` is the injectable callable the
orchestrator invokes once per batch.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, ConfigDict

from daytrace.config.credentials import CredentialStore
from daytrace.config.settings import (
    ChatCLIProviderConfig,
    HostedProviderConfig,
    LocalProviderConfig,
    PipelineConfig,
    RegionalProviderConfig,
)
from daytrace.errors import NoProviderConfiguredError
from daytrace.providers.base import LLMProvider

logger = logging.getLogger(__name__)


class RegionalFamily(BaseModel):
    model_config = ConfigDict(frozen=True)

    display_name: str
    default_endpoint: str
    default_model: str
    credential_name: str
    supports_vision: bool = True


REGIONAL_FAMILIES: dict[str, RegionalFamily] = {
    "deepseek": RegionalFamily(
        display_name="DeepSeek",
        default_endpoint="https://api.deepseek.com",
        default_model="deepseek-chat",
        credential_name="deepseek",
    ),
    "zhipu": RegionalFamily(
        display_name="Zhipu GLM",
        default_endpoint="https://open.bigmodel.cn/api/paas/v4",
        default_model="glm-4v",
        credential_name="zhipu",
    ),
    "alibaba": RegionalFamily(
        display_name="Alibaba Qwen",
        default_endpoint="https://dashscope.aliyuncs.com/compatible-mode/v1",
        default_model="qwen-vl-max",
        credential_name="alibaba",
    ),
}


def _require_key(credentials: CredentialStore, name: str, label: str) -> str:
    key = credentials.retrieve(name)
    if not key:
        raise NoProviderConfiguredError(
            f"No LLM provider configured: missing {label} API key. Please configure in settings."
        )
    return key


def build_provider(
    config: BaseModel | None,
    credentials: CredentialStore,
    pipeline: PipelineConfig | None = None,
) -> LLMProvider:
    """Instantiate the provider described by ``config``.

    Raises:
        NoProviderConfiguredError: If no provider is configured or its
            credential is missing.
    """
    pipeline = pipeline or PipelineConfig()
    common = {"max_attempts": pipeline.max_attempts}

    if config is None:
        raise NoProviderConfiguredError("No LLM provider configured. Please configure in settings.")

    if isinstance(config, HostedProviderConfig):
        from daytrace.providers.hosted import HostedApiProvider

        key = _require_key(credentials, config.credential_name, config.credential_name)
        return HostedApiProvider(
            api_key=key,
            model=config.model,
            base_url=config.base_url,
            timeout=pipeline.request_timeout,
            name=config.credential_name,
            **common,
        )

    if isinstance(config, LocalProviderConfig):
        from daytrace.providers.http import ChatCompletionsProvider

        return ChatCompletionsProvider(
            name="local",
            endpoint=config.endpoint,
            model=config.model,
            timeout=pipeline.request_timeout,
            **common,
        )

    if isinstance(config, ChatCLIProviderConfig):
        from daytrace.providers.cli_tool import ChatCLIProvider

        return ChatCLIProvider(tool=config.tool, timeout=config.timeout, **common)

    if isinstance(config, RegionalProviderConfig):
        from daytrace.providers.http import ChatCompletionsProvider

        family = REGIONAL_FAMILIES[config.family]
        key = _require_key(credentials, family.credential_name, family.display_name)
        return ChatCompletionsProvider(
            name=config.family,
            endpoint=config.endpoint or family.default_endpoint,
            model=config.model or family.default_model,
            api_key=key,
            supports_vision=family.supports_vision,
            timeout=pipeline.request_timeout,
            **common,
        )

    raise NoProviderConfiguredError(f"Unknown provider configuration: {type(config).__name__}")


class ProviderResolver:
    """Resolves the configured provider at call time."""

    def __init__(
        self,
        config: BaseModel | None,
        credentials: CredentialStore,
        pipeline: PipelineConfig | None = None,
    ) -> None:
        self._config = config
        self._credentials = credentials
        self._pipeline = pipeline

    def __call__(self) -> LLMProvider:
        provider = build_provider(self._config, self._credentials, self._pipeline)
        logger.debug("Resolved provider %s (model=%s)", provider.name, provider.model)
        return provider
