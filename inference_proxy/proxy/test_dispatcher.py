"""
Tests for request forwarding through the full app.

Tests cover:
- Method classification (empty body means GET)
- Status code and JSON passthrough
- Header passthrough in both directions
- Streaming relay
- Error mapping (unavailable, timeout, malformed body, unexpected errors)
"""

import json
import socket
import time
from dataclasses import replace
from unittest.mock import AsyncMock, Mock

import httpx
import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from starlette.requests import ClientDisconnect

from inference_proxy.context import UpstreamConfig
from inference_proxy.proxy.dispatcher import dispatch, error_response, forward
from inference_proxy.proxy.models import ProxyRequest
from inference_proxy.errors import (
    MalformedUpstreamBody,
    UpstreamTimeout,
    UpstreamUnavailable,
)
from inference_proxy.server import create_app
from inference_proxy.upstream.client import UpstreamClient
from inference_proxy.utils_tests.mock_upstream import MockUpstream, chunked


def _raise(exc):
    def handler(request):
        raise exc

    return handler


class TestForwarding:
    """Buffered forwarding through passthrough routes."""

    def test_post_body_forwarded_verbatim(self, proxy_client):
        upstream = MockUpstream(json_body={"object": "list", "data": []})
        client = proxy_client(upstream)
        body = b'{"model": "m", "input": ["a", "b"]}'

        r = client.post(
            "/v1/embeddings", content=body, headers={"content-type": "application/json"}
        )

        assert r.status_code == 200
        assert r.json() == {"object": "list", "data": []}
        assert upstream.last_request.method == "POST"
        assert upstream.last_request.url.path == "/v1/embeddings"
        assert upstream.last_request.content == body

    def test_empty_post_is_sent_as_get(self, proxy_client):
        upstream = MockUpstream(json_body={"ok": True})
        client = proxy_client(upstream)

        r = client.post("/v1/completions")

        assert r.status_code == 200
        assert upstream.last_request.method == "GET"
        assert upstream.last_request.content == b""

    @pytest.mark.parametrize("status_code", [200, 201, 400, 401, 404, 422, 500])
    def test_upstream_status_and_json_passed_through(self, proxy_client, status_code):
        payload = {"object": "error", "message": "upstream said so", "code": status_code}
        client = proxy_client(MockUpstream(status_code=status_code, json_body=payload))

        r = client.post("/tokenize", json={"prompt": "hello"})

        assert r.status_code == status_code
        assert r.json() == payload

    def test_custom_upstream_header_survives(self, proxy_client):
        upstream = MockUpstream(
            json_body={"ok": True},
            headers={
                "x-ratelimit-remaining-requests": "41",
                "x-ratelimit-limit-requests": "42",
            },
        )
        client = proxy_client(upstream)

        r = client.post("/v1/chat/completions", json={"messages": []})

        assert r.headers["x-ratelimit-remaining-requests"] == "41"
        assert r.headers["x-ratelimit-limit-requests"] == "42"
        assert r.headers["content-type"] == "application/json"

    def test_repeated_upstream_headers_survive(self, proxy_client):
        upstream = MockUpstream(
            handler=lambda request: httpx.Response(
                200,
                json={"ok": True},
                headers=[("set-cookie", "a=1"), ("set-cookie", "b=2")],
            )
        )
        client = proxy_client(upstream)

        r = client.post("/score", json={"text_1": "a", "text_2": "b"})

        assert r.headers.get_list("set-cookie") == ["a=1", "b=2"]

    def test_inbound_headers_forwarded(self, proxy_client):
        upstream = MockUpstream(json_body={"ok": True})
        client = proxy_client(upstream)

        client.post(
            "/rerank",
            json={"query": "q", "documents": ["d"]},
            headers={"authorization": "Bearer abc", "x-custom-header": "custom-value"},
        )

        headers = upstream.last_request.headers
        assert headers["authorization"] == "Bearer abc"
        assert headers["x-custom-header"] == "custom-value"
        assert headers["x-forwarded-host"] == "testserver"
        assert headers["host"] == "upstream.test:8000"

    def test_query_string_preserved(self, proxy_client):
        upstream = MockUpstream(json_body={"data": []})
        client = proxy_client(upstream)

        client.get("/v1/models?owned_by=me")

        assert upstream.last_request.url.query == b"owned_by=me"

    def test_empty_upstream_body_keeps_status(self, proxy_client):
        client = proxy_client(MockUpstream(status_code=204, content=b""))

        r = client.post("/invocations", json={"x": 1})

        assert r.status_code == 204
        assert r.content == b""

    def test_empty_upstream_body_with_200(self, proxy_client):
        client = proxy_client(MockUpstream(status_code=200, content=b""))

        r = client.post("/detokenize", json={"tokens": [1, 2]})

        assert r.status_code == 200
        assert r.content == b""


class TestStreaming:
    """Streaming requests are relayed without buffering or parsing."""

    def test_stream_bytes_equal_upstream_chunks(self, proxy_client):
        chunks = [
            b'data: {"choices": [{"delta": {"content": "Hel"}}]}\n\n',
            b'data: {"choices": [{"delta": {"content": "lo"}}]}\n\n',
            b"data: [DONE]\n\n",
        ]
        upstream = MockUpstream(
            handler=lambda request: httpx.Response(
                200,
                content=chunked(chunks),
                headers={"content-type": "text/event-stream", "x-request-id": "r-1"},
            )
        )
        client = proxy_client(upstream)

        with client.stream(
            "POST", "/v1/chat/completions", json={"messages": [], "stream": True}
        ) as r:
            received = b"".join(r.iter_bytes())

        assert r.status_code == 200
        assert received == b"".join(chunks)
        assert r.headers["content-type"].startswith("text/event-stream")
        assert r.headers["x-request-id"] == "r-1"

    def test_stream_of_non_json_is_not_parsed(self, proxy_client):
        upstream = MockUpstream(
            handler=lambda request: httpx.Response(
                200, content=chunked([b"not ", b"json"]), headers={"content-type": "text/plain"}
            )
        )
        client = proxy_client(upstream)

        r = client.post("/v1/completions", json={"prompt": "x", "stream": True})

        assert r.status_code == 200
        assert r.content == b"not json"

    def test_streaming_error_status_passed_through(self, proxy_client):
        upstream = MockUpstream(
            handler=lambda request: httpx.Response(
                400, content=chunked([b'{"error": "bad request"}'])
            )
        )
        client = proxy_client(upstream)

        r = client.post("/v1/chat/completions", json={"stream": True})

        assert r.status_code == 400
        assert r.json() == {"error": "bad request"}


class TestErrorMapping:
    """Transport failures become JSON error responses."""

    def test_connection_refused_is_503(self, proxy_client):
        client = proxy_client(
            MockUpstream(handler=_raise(httpx.ConnectError("Connection refused")))
        )

        r = client.post("/v1/chat/completions", json={"messages": []})

        assert r.status_code == 503
        assert r.json()["error"] == "Upstream service unavailable"
        assert r.json()["path"] == "/v1/chat/completions"

    def test_timeout_is_504(self, proxy_client):
        client = proxy_client(MockUpstream(handler=_raise(httpx.ReadTimeout("timed out"))))

        r = client.get("/v1/models")

        assert r.status_code == 504
        assert r.json() == {"error": "Upstream request timed out", "path": "/v1/models"}

    def test_streaming_connect_failure_is_503(self, proxy_client):
        client = proxy_client(
            MockUpstream(handler=_raise(httpx.ConnectError("Connection refused")))
        )

        r = client.post("/v1/completions", json={"stream": True})

        assert r.status_code == 503

    def test_malformed_body_is_fixed_500(self, proxy_client):
        client = proxy_client(MockUpstream(status_code=200, content=b"definitely not json"))

        r = client.post("/v1/score", json={"text_1": "a", "text_2": "b"})

        assert r.status_code == 500
        assert r.json()["error"] == "Failed to parse upstream response"
        assert r.json()["path"] == "/v1/score"


@pytest.mark.asyncio
async def test_transform_failure_is_500_with_message():
    upstream = MockUpstream(json_body={"a": 1})
    client = UpstreamClient(UpstreamConfig(host="upstream.test", port=8000), transport=upstream.transport)

    def broken_transform(payload):
        raise ValueError("transform exploded")

    response = await dispatch(
        client,
        ProxyRequest(method="GET", target_path="/version"),
        transform=broken_transform,
    )
    await client.aclose()

    assert response.status_code == 500
    assert json.loads(response.body) == {"error": "transform exploded", "path": "/version"}


@pytest.mark.asyncio
async def test_concurrent_requests_are_independent():
    import asyncio

    def handler(request):
        return httpx.Response(200, json={"echo": request.content.decode()})

    client = UpstreamClient(
        UpstreamConfig(host="upstream.test", port=8000),
        transport=MockUpstream(handler=handler).transport,
    )
    requests = [
        ProxyRequest.build("/v1/completions", json.dumps({"n": i}).encode()) for i in range(10)
    ]

    responses = await asyncio.gather(*(dispatch(client, r) for r in requests))
    await client.aclose()

    assert [json.loads(json.loads(r.body)["echo"])["n"] for r in responses] == list(range(10))


class TestErrorResponse:
    def test_unavailable(self):
        r = error_response(UpstreamUnavailable("/x", "refused"), "/x")
        assert r.status_code == 503
        assert json.loads(r.body)["detail"] == "refused"

    def test_timeout(self):
        assert error_response(UpstreamTimeout("/x"), "/x").status_code == 504

    def test_malformed(self):
        assert error_response(MalformedUpstreamBody("/x", "bad"), "/x").status_code == 500

    def test_unexpected(self):
        r = error_response(RuntimeError("kaboom"), "/x")
        assert r.status_code == 500
        assert json.loads(r.body) == {"error": "kaboom", "path": "/x"}


@pytest.mark.asyncio
async def test_inbound_read_failure_is_json_500():
    request = Mock(spec=Request)
    request.body = AsyncMock(side_effect=ClientDisconnect())
    client = Mock(spec=UpstreamClient)

    response = await forward(request, "/v1/completions", client)

    assert response.status_code == 500
    assert json.loads(response.body) == {"error": "ClientDisconnect", "path": "/v1/completions"}
    client.send.assert_not_called()


@pytest.fixture
def silent_upstream():
    """A port that accepts connections but never answers."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    sock.listen(16)
    yield sock.getsockname()[1]
    sock.close()


@pytest.mark.parametrize(
    "payload", [{"prompt": "x"}, {"prompt": "x", "stream": True}], ids=["buffered", "streaming"]
)
def test_silent_upstream_is_answered_within_timeout(process_context, silent_upstream, payload):
    context = replace(
        process_context,
        upstream=UpstreamConfig(host="127.0.0.1", port=silent_upstream, timeout=0.3),
    )

    with TestClient(create_app(context)) as client:
        start = time.monotonic()
        r = client.post("/v1/completions", json=payload)
        elapsed = time.monotonic() - start

    assert r.status_code == 504
    assert r.json() == {"error": "Upstream request timed out", "path": "/v1/completions"}
    assert elapsed < 2.0
