"""
Configuration collaborators.

A ConfigSource hands out whole snapshots of externally managed key/value
settings. The pipeline pulls a snapshot at start and again whenever the
endpoint is invalidated; it never queries a host for capabilities at runtime.
"""

from __future__ import annotations

import json
import threading
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Protocol, runtime_checkable

from loguru import logger

from .errors import ConfigurationError

# Recognized snapshot keys
WEBHOOK_URL = "webhook_url"
USERNAME = "username"
ICON_URL = "icon_url"
ICON_EMOJI = "icon_emoji"
MESSAGE_FIELD = "message_field"
USERNAME_FIELD = "username_field"
ICON_URL_FIELD = "icon_url_field"
ICON_EMOJI_FIELD = "icon_emoji_field"

FIELD_OVERRIDE_KEYS = {
    "text": MESSAGE_FIELD,
    "username": USERNAME_FIELD,
    "icon_url": ICON_URL_FIELD,
    "icon_emoji": ICON_EMOJI_FIELD,
}

EMPTY_SNAPSHOT: Mapping[str, str] = MappingProxyType({})

# Slack operator key names; the canonical key wins when both are present
KEY_ALIASES = {
    "slackUrl": WEBHOOK_URL,
    "messageAttribute": MESSAGE_FIELD,
    "usernameAttribute": USERNAME_FIELD,
    "iconUrlAttribute": ICON_URL_FIELD,
    "iconEmojiAttribute": ICON_EMOJI_FIELD,
}


def normalize_snapshot(snapshot: Mapping[str, str]) -> Mapping[str, str]:
    """Rewrite alias keys onto their canonical names."""
    if not any(alias in snapshot for alias in KEY_ALIASES):
        return snapshot
    values = dict(snapshot)
    for alias, key in KEY_ALIASES.items():
        if alias in values:
            value = values.pop(alias)
            if not values.get(key):
                values[key] = value
    return MappingProxyType(values)


@runtime_checkable
class ConfigSource(Protocol):
    """Pull-based accessor for a named configuration snapshot."""

    def get_snapshot(self, name: str) -> Mapping[str, str]: ...


def freeze_snapshot(values: Mapping[str, object]) -> Mapping[str, str]:
    """Copy a snapshot into a read-only mapping of str -> str."""
    return MappingProxyType({str(k): str(v) for k, v in values.items() if v is not None})


class InMemoryConfigSource:
    """Mutable in-process source; hosts push updates with ``set``/``update``.

    Each named configuration is replaced as a whole so readers never observe
    a half-applied change.
    """

    def __init__(self, configs: Mapping[str, Mapping[str, str]] | None = None):
        self._lock = threading.Lock()
        self._configs: dict[str, Mapping[str, str]] = {
            name: freeze_snapshot(values) for name, values in (configs or {}).items()
        }
        self.reads = 0

    def get_snapshot(self, name: str) -> Mapping[str, str]:
        with self._lock:
            self.reads += 1
            return self._configs.get(name, EMPTY_SNAPSHOT)

    def set(self, name: str, values: Mapping[str, str]) -> None:
        """Replace the named configuration."""
        frozen = freeze_snapshot(values)
        with self._lock:
            self._configs[name] = frozen
        logger.debug(f"Configuration '{name}' replaced ({len(frozen)} keys)")

    def update(self, name: str, **values: str) -> None:
        """Replace the named configuration with the current one plus ``values``."""
        with self._lock:
            merged = {**self._configs.get(name, EMPTY_SNAPSHOT), **values}
            self._configs[name] = freeze_snapshot(merged)

    def delete(self, name: str) -> None:
        with self._lock:
            self._configs.pop(name, None)


class JsonFileConfigSource:
    """Reads snapshots from a JSON file on every call.

    The file holds an object of named configurations::

        {"alerts": {"webhook_url": "https://hooks.example.com/T000/B000/XXX"}}

    A missing file yields an empty snapshot; a malformed file raises
    ConfigurationError so the caller keeps its previous state.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def get_snapshot(self, name: str) -> Mapping[str, str]:
        if not self.path.exists():
            return EMPTY_SNAPSHOT
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigurationError(f"Unreadable configuration file {self.path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration file {self.path} must hold a JSON object")
        section = data.get(name) or {}
        if not isinstance(section, dict):
            raise ConfigurationError(f"Configuration '{name}' in {self.path} must be an object")
        return freeze_snapshot(section)
