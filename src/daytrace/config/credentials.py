"""Credential lookup by provider name.

The pipeline never reads keys directly; it asks a ``CredentialStore``
for the secret registered under a provider's credential name.
"""

from __future__ import annotations

from typing import Protocol

from daytrace.config.settings import Settings


class CredentialStore(Protocol):
    def retrieve(self, name: str) -> str | None:
        """Return the secret stored under ``name``, or None."""
        ...


class SettingsCredentialStore:
    """Resolves ``<name>_api_key`` fields on ``Settings``."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def retrieve(self, name: str) -> str | None:
        secret = getattr(self._settings, f"{name}_api_key", None)
        if secret is None:
            return None
        value = secret.get_secret_value()
        return value or None


class StaticCredentialStore:
    """In-memory credential store."""

    def __init__(self, secrets: dict[str, str] | None = None) -> None:
        self._secrets = dict(secrets or {})

    def retrieve(self, name: str) -> str | None:
        return self._secrets.get(name) or None
