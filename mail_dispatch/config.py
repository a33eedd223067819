"""Configuration providers and backend spec validation.

Dispatchers never read process-wide state directly.  They are handed a
``ConfigProvider`` which resolves dotted group names such as
``"mailer.default"`` or ``"mailer-lists.staff"`` to plain mappings.

Environment variables used:

* ``MAIL_DISPATCH_CONFIG``: path to a JSON file loaded by
  :func:`default_config_provider`.  When unset the default provider is
  empty, so every named group lookup fails.

Example JSON file::

    {
      "mailer": {
        "default": {"driver": "sendmail", "sender": {"email": "noreply@example.com"}},
        "backup": {"driver": "mailgun", "api_key": "key-123", "domain": "mg.example.com"}
      },
      "mailer-lists": {
        "staff": {"recipient": [{"email": "ops@example.com", "name": "Ops"}]}
      }
    }
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Mapping, Optional, Protocol, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from mail_dispatch.errors import ConfigurationError
from mail_dispatch.models import Credentials, EmailAddress

LOGGER = logging.getLogger(__name__)

CONFIG_ENV = "MAIL_DISPATCH_CONFIG"


class ConfigProvider(Protocol):
    """Resolve a dotted group name to a configuration mapping."""

    def load(self, group: str) -> Optional[Mapping[str, Any]]:
        """Return the mapping for ``group`` or ``None`` when undefined."""


class MappingConfigProvider:
    """Serve configuration groups out of a nested mapping."""

    def __init__(self, groups: Optional[Mapping[str, Any]] = None) -> None:
        self._groups: Mapping[str, Any] = groups or {}

    def load(self, group: str) -> Optional[Mapping[str, Any]]:
        node: Any = self._groups
        for part in group.split("."):
            if not isinstance(node, Mapping) or part not in node:
                return None
            node = node[part]
        return node if isinstance(node, Mapping) else None


class JsonConfigProvider(MappingConfigProvider):
    """``MappingConfigProvider`` backed by a JSON document on disk."""

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)
        try:
            groups = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise ConfigurationError(
                f"Cannot load configuration file {self.path}: {exc}"
            ) from exc
        if not isinstance(groups, Mapping):
            raise ConfigurationError(
                f"Configuration file {self.path} must hold a JSON object"
            )
        super().__init__(groups)


def default_config_provider() -> ConfigProvider:
    """Return the provider named by ``MAIL_DISPATCH_CONFIG`` (or an empty one)."""
    path = os.environ.get(CONFIG_ENV, "").strip()
    if not path:
        return MappingConfigProvider()
    LOGGER.debug("Loading configuration from %s", path)
    return JsonConfigProvider(path)


def load_group(provider: ConfigProvider, group: str) -> Mapping[str, Any]:
    """Fetch ``group`` from ``provider`` or raise ``ConfigurationError``."""
    config = provider.load(group)
    if config is None:
        raise ConfigurationError(
            f"Cannot load configuration. Configuration group {group} is undefined."
        )
    return config


class BackendSpec(BaseModel):
    """One backend entry of a dispatcher configuration.

    Only ``driver`` is required.  ``credentials``, ``sender`` and
    ``reply_to`` are wrapped into value objects; every other key is kept
    as a driver-specific option and read with :meth:`option`.
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    driver: str = Field(min_length=1)
    credentials: Optional[Credentials] = None
    sender: Optional[EmailAddress] = None
    reply_to: Optional[EmailAddress] = Field(
        default=None, validation_alias=AliasChoices("reply_to", "reply-to")
    )

    @field_validator("driver")
    @classmethod
    def _normalize_driver(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("sender", "reply_to", mode="before")
    @classmethod
    def _wrap_address(cls, value: Any) -> Any:
        if value is None or isinstance(value, EmailAddress):
            return value
        return EmailAddress.from_config(value)

    def option(self, key: str, default: Any = None) -> Any:
        """Return a driver-specific option (``api_key`` also matches ``api-key``)."""
        extra = self.model_extra or {}
        for candidate in (key, key.replace("_", "-")):
            if candidate in extra:
                return extra[candidate]
        return default

    @classmethod
    def parse(cls, config: Any) -> "BackendSpec":
        """Validate an inline config, raising ``ConfigurationError`` on failure."""
        if isinstance(config, cls):
            return config
        if not isinstance(config, Mapping) or not config:
            raise ConfigurationError(
                f"Cannot load configuration. Invalid configuration: {config!r}"
            )
        try:
            return cls.model_validate(dict(config))
        except (ValidationError, ValueError) as exc:
            raise ConfigurationError(
                f"Cannot load configuration. Invalid backend spec: {exc}"
            ) from exc


def env_option(spec: BackendSpec, key: str, *env_names: str, default: Any = None) -> Any:
    """Read a driver option, falling back to the first set environment variable."""
    value = spec.option(key)
    if value not in (None, ""):
        return value
    for env_name in env_names:
        value = os.environ.get(env_name)
        if value:
            return value
    return default


__all__ = [
    "BackendSpec",
    "ConfigProvider",
    "JsonConfigProvider",
    "MappingConfigProvider",
    "default_config_provider",
    "env_option",
    "load_group",
]
