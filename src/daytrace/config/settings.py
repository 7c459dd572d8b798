"""Configuration management for daytrace.

Loads settings from a YAML configuration file with environment variable
overrides for sensitive values (API keys). Supports .env files.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Annotated, Literal, Union

import yaml
from pydantic import BaseModel, Field, SecretStr
from pydantic_settings import BaseSettings

from daytrace.domain.models import CategoryDescriptor

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config/daytrace.yaml")


# ---------------------------------------------------------------------------
# Provider variants (closed set, discriminated on ``kind``)
# ---------------------------------------------------------------------------


class HostedProviderConfig(BaseModel):
    """Direct hosted API reached through an OpenAI-compatible endpoint."""

    kind: Literal["hosted"] = "hosted"
    base_url: str | None = Field(default="https://generativelanguage.googleapis.com/v1beta/openai/")
    model: str = Field(default="gemini-2.5-flash")
    credential_name: str = Field(default="gemini")


class LocalProviderConfig(BaseModel):
    """Local inference server speaking the chat-completions protocol."""

    kind: Literal["local"] = "local"
    endpoint: str = Field(default="http://localhost:11434/v1")
    model: str = Field(default="qwen2.5vl:3b")


class ChatCLIProviderConfig(BaseModel):
    """Command-line assistant invoked as a subprocess."""

    kind: Literal["cli"] = "cli"
    tool: Literal["codex", "claude"] = Field(default="codex")
    timeout: float = Field(default=300.0, gt=0)


class RegionalProviderConfig(BaseModel):
    """Regional API family; endpoint and model default per family."""

    kind: Literal["regional"] = "regional"
    family: Literal["deepseek", "zhipu", "alibaba"] = Field(default="deepseek")
    endpoint: str | None = Field(default=None)
    model: str | None = Field(default=None)


ProviderConfig = Annotated[
    Union[HostedProviderConfig, LocalProviderConfig, ChatCLIProviderConfig, RegionalProviderConfig],
    Field(discriminator="kind"),
]


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


class PipelineConfig(BaseModel):
    target_samples: int = Field(default=15, gt=0, description="Frames described per batch")
    window_minutes: int = Field(default=60, gt=0, description="Trailing synthesis window")
    max_attempts: int = Field(default=3, gt=0)
    request_timeout: float = Field(default=120.0, gt=0)
    min_segment_seconds: int = Field(default=12, ge=0)
    max_segment_seconds: int = Field(default=60, gt=0)
    idle_threshold_seconds: int = Field(default=30, gt=0)
    poll_interval: float = Field(default=60.0, gt=0)
    max_concurrent_batches: int = Field(default=2, gt=0)


class BatchingConfig(BaseModel):
    target_duration_minutes: float = Field(default=15.0, gt=0)
    max_gap_minutes: float = Field(default=2.0, gt=0)
    capture_interval_seconds: int = Field(
        default=10, gt=0, description="Seconds between captures; a batch covers its last one this long"
    )

    @classmethod
    def for_provider(cls, provider: BaseModel | None) -> BatchingConfig:
        """Hosted backends are rate limited, so they get longer batches."""
        if isinstance(provider, HostedProviderConfig):
            return cls(target_duration_minutes=30.0, max_gap_minutes=5.0)
        return cls()


class StorageConfig(BaseModel):
    database_path: str = Field(default="data/daytrace.sqlite")


class ServerConfig(BaseModel):
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8765, ge=1, le=65535)
    run_analysis_loop: bool = Field(
        default=True, description="Process pending batches inside the server process"
    )


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO")
    format: str = Field(
        default="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    file: str | None = Field(default=None)


DEFAULT_CATEGORIES = [
    CategoryDescriptor(name="Work", description="Focused, productive work"),
    CategoryDescriptor(name="Personal", description="Personal tasks, errands, communication"),
    CategoryDescriptor(name="Distraction", description="Entertainment and aimless browsing"),
    CategoryDescriptor(name="Idle", is_idle=True),
]


class Settings(BaseSettings):
    """Root configuration for the daytrace system.

    Loads from YAML file and supports environment variable overrides.
    Reads .env files automatically.
    """

    model_config = {
        "env_prefix": "DAYTRACE_",
        "env_nested_delimiter": "__",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    # API Keys
    gemini_api_key: SecretStr = Field(default=SecretStr(""))
    openai_api_key: SecretStr = Field(default=SecretStr(""))
    deepseek_api_key: SecretStr = Field(default=SecretStr(""))
    zhipu_api_key: SecretStr = Field(default=SecretStr(""))
    alibaba_api_key: SecretStr = Field(default=SecretStr(""))

    # Configuration sections
    provider: ProviderConfig | None = Field(default_factory=HostedProviderConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    batching: BatchingConfig | None = Field(default=None)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    categories: list[CategoryDescriptor] = Field(default_factory=lambda: list(DEFAULT_CATEGORIES))
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def effective_batching(self) -> BatchingConfig:
        return self.batching or BatchingConfig.for_provider(self.provider)


def load_settings(config_path: Path | str | None = None) -> Settings:
    """Load settings from YAML + .env + environment variables.

    Priority: env vars > .env file > YAML file > defaults
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    # Load .env file manually for non-prefixed vars
    _load_dotenv()

    yaml_data = {}
    if path.exists():
        with open(path) as f:
            yaml_data = yaml.safe_load(f) or {}
        logger.info("Loaded configuration from %s", path)
    else:
        logger.warning("Config file %s not found, using defaults + env vars", path)

    # Apply .env overrides into yaml_data for non-prefixed env vars
    _apply_env_overrides(yaml_data)

    return Settings(**yaml_data)


def _load_dotenv() -> None:
    """Load .env file into os.environ if it exists."""
    env_path = Path(".env")
    if not env_path.exists():
        return
    with open(env_path) as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if "=" in line:
                key, _, value = line.partition("=")
                key = key.strip()
                value = value.strip()
                if not os.environ.get(key):
                    os.environ[key] = value


def _apply_env_overrides(yaml_data: dict) -> None:
    """Apply environment variable overrides for non-prefixed vars."""
    gemini_key = os.environ.get("GEMINI_API_KEY", "")
    ollama_host = os.environ.get("OLLAMA_HOST", "")

    if gemini_key and not yaml_data.get("gemini_api_key"):
        yaml_data["gemini_api_key"] = gemini_key

    provider = yaml_data.get("provider")
    if ollama_host and isinstance(provider, dict) and provider.get("kind") == "local":
        if not provider.get("endpoint"):
            provider["endpoint"] = ollama_host.rstrip("/") + "/v1"
