"""
Process-wide, read-only configuration shared by every request.

The context is built once at startup and attached to each FastAPI app as
``app.state.context``. Request handlers receive it through ``get_context``.
"""

from dataclasses import dataclass

from fastapi import Request

from inference_proxy import vars as proxy_vars


@dataclass(frozen=True)
class UpstreamConfig:
    host: str
    port: int
    timeout: float = 300.0
    health_timeout: float = 5.0

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"


@dataclass(frozen=True)
class ListenerConfig:
    plain_port: int
    secure_port: int
    certificate_path: str
    key_path: str
    use_encryption: bool = False
    host: str = "0.0.0.0"


@dataclass(frozen=True)
class ProcessContext:
    upstream: UpstreamConfig
    listener: ListenerConfig
    service_name: str = "inference-proxy"
    version: str = "1.0.0"
    model_id: str = "default-model"
    max_tokens: int = 512
    log_level: str = "info"

    @classmethod
    def from_env(cls) -> "ProcessContext":
        """Build the context from the environment defaults in ``vars``."""
        return cls(
            upstream=UpstreamConfig(
                host=proxy_vars.UPSTREAM_HOST,
                port=proxy_vars.UPSTREAM_PORT,
                timeout=proxy_vars.PROXY_TIMEOUT,
                health_timeout=proxy_vars.HEALTH_TIMEOUT,
            ),
            listener=ListenerConfig(
                plain_port=proxy_vars.HTTP_PORT,
                secure_port=proxy_vars.HTTPS_PORT,
                certificate_path=proxy_vars.SSL_CERT_PATH,
                key_path=proxy_vars.SSL_KEY_PATH,
                use_encryption=proxy_vars.USE_HTTPS,
                host=proxy_vars.BIND_HOST,
            ),
            service_name=proxy_vars.SERVICE_NAME,
            version=proxy_vars.PROXY_VERSION,
            model_id=proxy_vars.MODEL_ID,
            max_tokens=proxy_vars.MAX_TOKENS,
            log_level=proxy_vars.LOG_LEVEL,
        )


def get_context(request: Request) -> ProcessContext:
    return request.app.state.context
