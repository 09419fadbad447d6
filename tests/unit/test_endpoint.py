"""
Unit tests for EndpointResolver and configuration sources.
"""

import json
import threading

import pytest

from webhook_relay import (
    ConfigurationError,
    EndpointResolver,
    InMemoryConfigSource,
    JsonFileConfigSource,
)
from webhook_relay.endpoint import redact_url


def test_fallback_url_used_without_config(webhook_url):
    resolver = EndpointResolver(webhook_url)
    assert resolver.current().url == webhook_url
    assert resolver.refresh_count == 1


def test_no_destination_is_fatal():
    resolver = EndpointResolver()
    with pytest.raises(ConfigurationError):
        resolver.refresh()


def test_config_source_requires_name(config_source):
    with pytest.raises(ConfigurationError):
        EndpointResolver(config_source=config_source)


def test_snapshot_url_wins_over_fallback(rotated_url, webhook_url):
    source = InMemoryConfigSource({"alerts": {"webhook_url": rotated_url}})
    resolver = EndpointResolver(webhook_url, config_source=source, config_name="alerts")
    assert resolver.refresh().url == rotated_url


def test_fallback_when_snapshot_lacks_url(webhook_url):
    source = InMemoryConfigSource({"alerts": {"username": "ops-bot"}})
    resolver = EndpointResolver(webhook_url, config_source=source, config_name="alerts")
    endpoint = resolver.refresh()
    assert endpoint.url == webhook_url
    assert endpoint.username == "ops-bot"


def test_display_defaults_precedence(webhook_url):
    source = InMemoryConfigSource({"alerts": {"icon_emoji": ":bell:"}})
    resolver = EndpointResolver(
        webhook_url,
        config_source=source,
        config_name="alerts",
        username="param-bot",
        icon_emoji=":x:",
    )
    endpoint = resolver.refresh()
    assert endpoint.username == "param-bot"
    assert endpoint.icon_emoji == ":bell:"


def test_current_is_cached_until_invalidated(config_source, rotated_url, webhook_url):
    resolver = EndpointResolver(config_source=config_source, config_name="alerts")
    assert resolver.current().url == webhook_url
    reads = config_source.reads

    config_source.set("alerts", {"webhook_url": rotated_url})
    assert resolver.current().url == webhook_url  # not re-read yet
    assert config_source.reads == reads

    resolver.invalidate()
    assert resolver.stale
    assert resolver.current().url == rotated_url
    assert not resolver.stale
    assert resolver.refresh_count == 2


def test_failed_refresh_keeps_previous_endpoint(config_source, webhook_url):
    resolver = EndpointResolver(config_source=config_source, config_name="alerts")
    resolver.refresh()

    config_source.set("alerts", {"webhook_url": "ftp://not-http"})
    resolver.invalidate()
    assert resolver.current().url == webhook_url
    with pytest.raises(ConfigurationError):
        resolver.refresh()


def test_source_errors_become_configuration_errors():
    class BrokenSource:
        def get_snapshot(self, name):
            raise OSError("store unreachable")

    resolver = EndpointResolver(config_source=BrokenSource(), config_name="alerts")
    with pytest.raises(ConfigurationError, match="unreachable"):
        resolver.refresh()


def test_listeners_receive_whole_snapshot(config_source):
    seen = []
    resolver = EndpointResolver(config_source=config_source, config_name="alerts")
    resolver.add_listener(lambda snap: seen.append(dict(snap)))
    resolver.add_listener(lambda snap: 1 / 0)  # isolated

    config_source.update("alerts", message_field="body")
    resolver.refresh()
    assert seen[-1]["message_field"] == "body"
    assert "webhook_url" in seen[-1]


def test_concurrent_refresh_and_read_is_consistent(webhook_url, rotated_url):
    """Readers only ever see a fully-formed endpoint from one snapshot."""
    source = InMemoryConfigSource(
        {"alerts": {"webhook_url": webhook_url, "username": "first"}}
    )
    resolver = EndpointResolver(config_source=source, config_name="alerts")
    resolver.refresh()
    pairs = {(webhook_url, "first"), (rotated_url, "second")}
    bad = []

    def writer():
        for i in range(300):
            if i % 2:
                source.set("alerts", {"webhook_url": rotated_url, "username": "second"})
            else:
                source.set("alerts", {"webhook_url": webhook_url, "username": "first"})
            resolver.refresh()

    def reader():
        for _ in range(2000):
            ep = resolver.cached
            if (ep.url, ep.username) not in pairs:
                bad.append(ep)

    threads = [threading.Thread(target=writer), threading.Thread(target=reader)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert not bad


def test_json_file_source(tmp_path, webhook_url):
    path = tmp_path / "relay.json"
    source = JsonFileConfigSource(path)
    assert dict(source.get_snapshot("alerts")) == {}

    path.write_text(json.dumps({"alerts": {"webhook_url": webhook_url, "retries": 3}}))
    snapshot = source.get_snapshot("alerts")
    assert snapshot["webhook_url"] == webhook_url
    assert snapshot["retries"] == "3"

    path.write_text("{broken")
    with pytest.raises(ConfigurationError):
        source.get_snapshot("alerts")


def test_in_memory_snapshot_is_read_only(config_source):
    snapshot = config_source.get_snapshot("alerts")
    with pytest.raises(TypeError):
        snapshot["webhook_url"] = "https://elsewhere"  # type: ignore[index]


def test_redact_url_hides_secret_path():
    assert redact_url("https://hooks.example.com/services/T/B/secret") == "https://hooks.example.com/***"
    assert redact_url("https://hooks.example.com") == "https://hooks.example.com"


@pytest.mark.parametrize(
    "url",
    ["https://hooks.example.com:abc/x", "https://", "ftp://hooks.example.com/x"],
)
def test_malformed_url_rejected_at_refresh(url):
    resolver = EndpointResolver(url)
    with pytest.raises(ConfigurationError):
        resolver.refresh()


def test_failed_refresh_does_not_reread_until_invalidated(config_source, webhook_url, rotated_url):
    resolver = EndpointResolver(config_source=config_source, config_name="alerts")
    resolver.refresh()

    config_source.set("alerts", {"webhook_url": "https://hooks.example.com:abc/x"})
    resolver.invalidate()
    assert resolver.current().url == webhook_url
    assert not resolver.stale

    reads = config_source.reads
    for _ in range(5):
        assert resolver.current().url == webhook_url
    assert config_source.reads == reads

    config_source.set("alerts", {"webhook_url": rotated_url})
    resolver.invalidate()
    assert resolver.current().url == rotated_url


def test_legacy_key_aliases(webhook_url, rotated_url):
    source = InMemoryConfigSource(
        {"alerts": {"slackUrl": webhook_url, "messageAttribute": "body", "iconEmojiAttribute": "emoji"}}
    )
    resolver = EndpointResolver(config_source=source, config_name="alerts")
    assert resolver.refresh().url == webhook_url
    snapshot = resolver.snapshot
    assert snapshot["message_field"] == "body"
    assert snapshot["icon_emoji_field"] == "emoji"
    assert "slackUrl" not in snapshot

    source.set("alerts", {"slackUrl": webhook_url, "webhook_url": rotated_url})
    assert resolver.refresh().url == rotated_url
