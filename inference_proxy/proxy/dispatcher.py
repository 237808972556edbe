import logging
from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse, Response
from opentelemetry import trace

from inference_proxy.errors import (
    MalformedUpstreamBody,
    UpstreamError,
    UpstreamTimeout,
    UpstreamUnavailable,
)
from inference_proxy.proxy.headers import prepare_headers
from inference_proxy.proxy.models import ProxyRequest, TransformFn
from inference_proxy.proxy.relay import relay_buffered, relay_stream
from inference_proxy.upstream.client import UpstreamClient
from inference_proxy.utils.exception_logging import (
    find_exception_in_exception_groups,
    format_exception_message,
    log_exception_with_details,
)
from inference_proxy.utils.traced_requests import traced_request

tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")


def error_response(exception: BaseException, path: str) -> JSONResponse:
    """Map a per-request failure to its JSON error response."""
    upstream_error = find_exception_in_exception_groups(exception, UpstreamError)

    if isinstance(upstream_error, UpstreamUnavailable):
        return JSONResponse(
            status_code=503,
            content={
                "error": "Upstream service unavailable",
                "path": path,
                "detail": upstream_error.message,
            },
        )
    if isinstance(upstream_error, UpstreamTimeout):
        return JSONResponse(
            status_code=504,
            content={"error": "Upstream request timed out", "path": path},
        )
    if isinstance(upstream_error, MalformedUpstreamBody):
        return JSONResponse(
            status_code=500,
            content={
                "error": "Failed to parse upstream response",
                "path": path,
                "detail": upstream_error.message,
            },
        )
    return JSONResponse(
        status_code=500,
        content={"error": format_exception_message(exception), "path": path},
    )


async def send_upstream(
    client: UpstreamClient,
    proxy_request: ProxyRequest,
    transform: Optional[TransformFn] = None,
) -> Response:
    """
    Send a classified request and relay the upstream response.

    Upstream errors propagate; ``dispatch`` turns them into responses.
    """
    path = proxy_request.target_path
    response = await client.send(proxy_request)

    if proxy_request.is_streaming:
        # Ownership of the open upstream response moves to the streaming body
        return relay_stream(response, path)

    try:
        return await relay_buffered(response, path, transform)
    finally:
        await response.aclose()


async def dispatch(
    client: UpstreamClient,
    proxy_request: ProxyRequest,
    transform: Optional[TransformFn] = None,
    inbound_method: str = "",
) -> Response:
    """
    Run one proxied exchange and map every failure to a JSON error response.

    Errors are answered exactly once and never retried.
    """
    path = proxy_request.target_path
    with traced_request(
        tracer=tracer,
        operation="proxy_request",
        path=path,
        method=inbound_method or proxy_request.method,
        start_message=f"[Proxy] Forwarding {proxy_request.method} {path} (stream={proxy_request.is_streaming})",
        extra_attrs={
            "proxy.upstream_method": proxy_request.method,
            "proxy.streaming": proxy_request.is_streaming,
        },
    ) as span:
        try:
            response = await send_upstream(client, proxy_request, transform)
        except Exception as e:
            level = logging.WARNING if isinstance(e, UpstreamError) else logging.ERROR
            log_exception_with_details(
                logger, f"[Proxy] Request to {path} failed", e, level=level
            )
            response = error_response(e, path)
            span.set_attribute("proxy.error", type(e).__name__)

        span.set_attribute("proxy.status_code", response.status_code)
        return response


async def forward(
    request: Request,
    path: str,
    client: UpstreamClient,
    transform: Optional[TransformFn] = None,
) -> Response:
    """
    Forward an inbound request to the given upstream path.

    The upstream method is derived from the body (empty means GET, otherwise
    POST), never from the inbound method.
    """
    try:
        body = await request.body()
        proxy_request = ProxyRequest.build(
            target_path=path,
            body=body,
            headers=prepare_headers(request),
            query=str(request.url.query),
        )
    except Exception as e:
        log_exception_with_details(
            logger, f"[Proxy] Could not read inbound request for {path}", e
        )
        return error_response(e, path)

    return await dispatch(client, proxy_request, transform, inbound_method=request.method)
