# Shared fixtures for the tests that live beside the code in inference_proxy/.
import pytest
from fastapi.testclient import TestClient

from inference_proxy.context import ListenerConfig, ProcessContext, UpstreamConfig
from inference_proxy.server import create_app
from inference_proxy.utils_tests.mock_upstream import MockUpstream


@pytest.fixture
def process_context():
    return ProcessContext(
        upstream=UpstreamConfig(
            host="upstream.test", port=8000, timeout=5.0, health_timeout=0.5
        ),
        listener=ListenerConfig(
            plain_port=8080,
            secure_port=8443,
            certificate_path="/nonexistent/server.crt",
            key_path="/nonexistent/server.key",
            use_encryption=False,
            host="127.0.0.1",
        ),
        service_name="inference-proxy-test",
        version="9.9.9",
        model_id="test-model",
        max_tokens=64,
    )


@pytest.fixture
def proxy_client(process_context):
    """Factory: ``proxy_client(upstream)`` returns a started TestClient for the full app."""
    clients = []

    def _make(upstream: MockUpstream) -> TestClient:
        client = TestClient(create_app(process_context, transport=upstream.transport))
        client.__enter__()
        clients.append(client)
        return client

    yield _make

    for client in clients:
        client.__exit__(None, None, None)
