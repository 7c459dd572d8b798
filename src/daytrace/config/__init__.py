"""Configuration loading and validation for daytrace."""

from daytrace.config.credentials import (
    CredentialStore,
    SettingsCredentialStore,
    StaticCredentialStore,
)
from daytrace.config.settings import Settings, load_settings

__all__ = [
    "CredentialStore",
    "Settings",
    "SettingsCredentialStore",
    "StaticCredentialStore",
    "load_settings",
]
