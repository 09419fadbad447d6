"""
Endpoint resolver.

Holds the current webhook destination and re-derives it from the
configuration snapshot on demand. The (endpoint, snapshot) pair is swapped
as one immutable object, so readers never see a URL from one snapshot with
display overrides from another.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

from loguru import logger
from pydantic import ValidationError

from . import config_source as keys
from .config_source import EMPTY_SNAPSHOT, ConfigSource, normalize_snapshot
from .errors import ConfigurationError
from .metrics import metrics_registry
from .models import Endpoint

RefreshListener = Callable[[Mapping[str, str]], None]


@dataclass(frozen=True)
class _Resolved:
    endpoint: Endpoint
    snapshot: Mapping[str, str]


class EndpointResolver:
    """Resolves the webhook endpoint from configuration with a fallback URL.

    Precedence on every refresh: the snapshot's ``webhook_url`` wins and
    replaces the endpoint unconditionally; otherwise the URL given at
    construction is used. If neither exists, ConfigurationError is raised.

    Args:
        fallback_url: URL supplied at construction
        config_source: Optional external configuration collaborator
        config_name: Name of the snapshot to pull from ``config_source``
        username, icon_url, icon_emoji: Display defaults (snapshot keys win)
        pipeline_id: Label for logs and metrics
    """

    def __init__(
        self,
        fallback_url: Optional[str] = None,
        *,
        config_source: Optional[ConfigSource] = None,
        config_name: Optional[str] = None,
        username: Optional[str] = None,
        icon_url: Optional[str] = None,
        icon_emoji: Optional[str] = None,
        pipeline_id: str = "relay",
    ):
        if config_source is not None and not config_name:
            raise ConfigurationError("config_name is required when a config_source is supplied")

        self._fallback_url = fallback_url
        self._defaults = {
            keys.USERNAME: username,
            keys.ICON_URL: icon_url,
            keys.ICON_EMOJI: icon_emoji,
        }
        self._source = config_source
        self._config_name = config_name
        self._pipeline_id = pipeline_id

        self._state: Optional[_Resolved] = None
        self._stale = True
        self._refresh_lock = threading.Lock()
        self._listeners: list[RefreshListener] = []
        self.refresh_count = 0

    # ---------- read side ----------

    @property
    def stale(self) -> bool:
        return self._stale

    @property
    def snapshot(self) -> Mapping[str, str]:
        state = self._state
        return state.snapshot if state is not None else EMPTY_SNAPSHOT

    @property
    def cached(self) -> Optional[Endpoint]:
        """Last resolved endpoint without triggering a refresh."""
        state = self._state
        return state.endpoint if state is not None else None

    def current(self) -> Endpoint:
        """Current endpoint, refreshing first if invalidated.

        After the first successful resolution, a failed refresh keeps the
        previous endpoint rather than stalling delivery, and the source is
        not consulted again until the next ``invalidate()``.
        """
        state = self._state
        if state is None:
            return self.refresh(trigger="initial")
        if self._stale:
            try:
                return self.refresh(trigger="invalidated")
            except ConfigurationError as exc:
                logger.error(
                    f"[{self._pipeline_id}] Endpoint refresh failed, keeping {redact_url(state.endpoint.url)}: {exc}"
                )
                return state.endpoint
        return state.endpoint

    # ---------- write side ----------

    def invalidate(self) -> None:
        """Force the next ``current()`` to pull a fresh snapshot."""
        self._stale = True

    def add_listener(self, listener: RefreshListener) -> None:
        """Call ``listener(snapshot)`` after each successful refresh."""
        if listener not in self._listeners:
            self._listeners.append(listener)

    def refresh(self, trigger: str = "manual") -> Endpoint:
        """Pull the snapshot, resolve the endpoint and swap it in."""
        with self._refresh_lock:
            try:
                snapshot = self._pull()
                endpoint = self._resolve(snapshot)
            except ConfigurationError:
                if self._state is not None:
                    # serve the last good endpoint until the next invalidate
                    self._stale = False
                raise
            previous = self._state
            self._state = _Resolved(endpoint, snapshot)
            self._stale = False
            self.refresh_count += 1

        metrics_registry.endpoint_refresh_total.labels(self._pipeline_id, trigger).inc()
        if previous is None:
            logger.info(f"[{self._pipeline_id}] Endpoint resolved: {redact_url(endpoint.url)}")
        elif previous.endpoint.url != endpoint.url:
            logger.warning(
                f"[{self._pipeline_id}] Endpoint rotated: "
                f"{redact_url(previous.endpoint.url)} -> {redact_url(endpoint.url)} (trigger={trigger})"
            )
        else:
            logger.debug(f"[{self._pipeline_id}] Endpoint refreshed, unchanged (trigger={trigger})")

        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as exc:
                logger.error(
                    f"[{self._pipeline_id}] Refresh listener failed: {type(exc).__name__}: {exc}"
                )
        return endpoint

    # ---------- internals ----------

    def _pull(self) -> Mapping[str, str]:
        if self._source is None:
            return EMPTY_SNAPSHOT
        try:
            return normalize_snapshot(self._source.get_snapshot(self._config_name))
        except ConfigurationError:
            raise
        except Exception as exc:
            raise ConfigurationError(
                f"Configuration '{self._config_name}' unavailable: {type(exc).__name__}: {exc}"
            ) from exc

    def _resolve(self, snapshot: Mapping[str, str]) -> Endpoint:
        url = snapshot.get(keys.WEBHOOK_URL) or self._fallback_url
        if not url:
            raise ConfigurationError(
                f"{keys.WEBHOOK_URL} can't be found in configuration "
                f"'{self._config_name}' or in the pipeline's parameters"
            )
        display = {k: snapshot.get(k) or v for k, v in self._defaults.items()}
        try:
            return Endpoint(url=url, **display)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid endpoint configuration: {exc}") from exc


def redact_url(url: str) -> str:
    """Hide the secret path of webhook URLs in logs."""
    scheme, sep, rest = url.partition("://")
    host = rest.split("/", 1)[0]
    return f"{scheme}{sep}{host}/***" if "/" in rest else url
