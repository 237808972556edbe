"""
Application factories for the two kinds of listeners.

``create_app`` serves every route. ``create_redirect_app`` is used for the
plaintext listener next to an HTTPS listener: it answers ``/health`` directly
and permanently redirects everything else to HTTPS.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import RedirectResponse

from inference_proxy.context import ProcessContext
from inference_proxy.routes import health_router, router
from inference_proxy.security import SecurityHeadersMiddleware
from inference_proxy.telemetry import instrument_app
from inference_proxy.upstream.client import UpstreamClient

logger = logging.getLogger("uvicorn.error")


def _lifespan(context: ProcessContext, transport: Optional[httpx.AsyncBaseTransport]):
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.upstream = UpstreamClient(context.upstream, transport=transport)
        try:
            yield
        finally:
            await app.state.upstream.aclose()

    return lifespan


def create_app(
    context: ProcessContext,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Build the full proxy app; ``transport`` replaces the network for tests."""
    app = FastAPI(
        title="Inference Proxy",
        version=context.version,
        lifespan=_lifespan(context, transport),
    )
    app.state.context = context
    app.add_middleware(SecurityHeadersMiddleware)
    instrument_app(app, context.service_name)
    app.include_router(health_router)
    app.include_router(router)
    return app


def https_url(request: Request, secure_port: int) -> str:
    """The HTTPS equivalent of the request URL on the secure port."""
    hostname = request.url.hostname or request.headers.get("host", "localhost").split(":")[0]
    netloc = hostname if secure_port == 443 else f"{hostname}:{secure_port}"
    url = f"https://{netloc}{request.url.path}"
    if request.url.query:
        url = f"{url}?{request.url.query}"
    return url


def create_redirect_app(
    context: ProcessContext,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Build the plaintext companion app of an HTTPS listener."""
    app = FastAPI(
        title="Inference Proxy (HTTP redirect)",
        version=context.version,
        lifespan=_lifespan(context, transport),
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.context = context
    app.add_middleware(SecurityHeadersMiddleware)
    app.include_router(health_router)

    secure_port = context.listener.secure_port

    @app.api_route(
        "/{path:path}",
        methods=["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"],
        include_in_schema=False,
    )
    async def redirect_to_https(request: Request, path: str):
        target = https_url(request, secure_port)
        logger.debug(f"[Listener] Redirecting {request.url} -> {target}")
        return RedirectResponse(url=target, status_code=301)

    return app
