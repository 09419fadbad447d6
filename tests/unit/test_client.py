"""
Unit tests for WebhookClient outcome classification (httpx.MockTransport).
"""

import json

import httpx
import pytest

from webhook_relay import Endpoint, OutcomeKind, WebhookClient, classify_status


@pytest.fixture
def endpoint(webhook_url):
    return Endpoint(url=webhook_url)


def make_client(handler, **kwargs) -> WebhookClient:
    return WebhookClient(transport=httpx.MockTransport(handler), **kwargs)


def test_classify_status():
    assert classify_status(200).kind is OutcomeKind.SUCCESS
    assert classify_status(404).kind is OutcomeKind.ENDPOINT_INVALID
    for code in (201, 204, 400, 403, 429, 500, 503):
        assert classify_status(code).kind is OutcomeKind.RETRYABLE


@pytest.mark.asyncio
async def test_post_shape(endpoint, webhook_url):
    """POST carries a JSON content type and a UTF-8 body."""
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["url"] = str(request.url)
        seen["content_type"] = request.headers.get("content-type")
        seen["body"] = request.content
        return httpx.Response(200, text="ok")

    client = make_client(handler)
    outcome = await client.send(endpoint, json.dumps({"text": "héllo"}, ensure_ascii=False))
    await client.aclose()

    assert outcome.ok
    assert seen["method"] == "POST"
    assert seen["url"] == webhook_url
    assert seen["content_type"] == "application/json"
    assert json.loads(seen["body"].decode("utf-8")) == {"text": "héllo"}


@pytest.mark.asyncio
async def test_not_found_is_endpoint_invalid(endpoint):
    client = make_client(lambda request: httpx.Response(404, text="no_service"))
    outcome = await client.send(endpoint, '{"text": "x"}')
    await client.aclose()
    assert outcome.kind is OutcomeKind.ENDPOINT_INVALID
    assert outcome.status_code == 404
    assert "no_service" in outcome.detail


@pytest.mark.asyncio
async def test_server_error_is_retryable(endpoint):
    client = make_client(lambda request: httpx.Response(500, text="boom"))
    outcome = await client.send(endpoint, '{"text": "x"}')
    await client.aclose()
    assert outcome.kind is OutcomeKind.RETRYABLE
    assert outcome.status_code == 500


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "exc",
    [
        httpx.ConnectError("connection refused"),
        httpx.ReadTimeout("read timed out"),
        httpx.RemoteProtocolError("connection reset"),
    ],
)
async def test_transport_failures_are_retryable(endpoint, exc):
    def handler(request):
        raise exc

    client = make_client(handler)
    outcome = await client.send(endpoint, '{"text": "x"}')
    await client.aclose()
    assert outcome.kind is OutcomeKind.RETRYABLE
    assert outcome.status_code is None


@pytest.mark.asyncio
async def test_start_and_close_are_idempotent(endpoint):
    client = make_client(lambda request: httpx.Response(200))
    await client.start()
    await client.start()
    assert client.started

    await client.aclose()
    await client.aclose()
    assert not client.started

    # send lazily re-opens the pool
    assert (await client.send(endpoint, '{"text": "x"}')).ok
    await client.aclose()


def test_invalid_timeout():
    with pytest.raises(ValueError):
        WebhookClient(timeout=0)


@pytest.mark.asyncio
async def test_invalid_url_is_retryable_not_raised():
    """A URL httpx cannot parse yields an outcome instead of an exception."""
    bad = Endpoint.model_construct(url="https://hooks.example.com:abc/x")
    client = make_client(lambda request: httpx.Response(200))
    outcome = await client.send(bad, '{"text": "x"}')
    await client.aclose()
    assert outcome.kind is OutcomeKind.RETRYABLE
    assert "invalid url" in outcome.detail


@pytest.mark.asyncio
async def test_unexpected_error_is_retryable(endpoint):
    def handler(request):
        raise RuntimeError("transport bug")

    client = make_client(handler)
    outcome = await client.send(endpoint, '{"text": "x"}')
    await client.aclose()
    assert outcome.kind is OutcomeKind.RETRYABLE
    assert "RuntimeError" in outcome.detail
