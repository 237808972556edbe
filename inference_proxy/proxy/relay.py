"""
Relay an upstream response back to the caller.

The dispatcher picks exactly one of the two paths below before the first chunk
is read. Switching paths after bytes were written would corrupt the framing
of the outbound response, so neither function falls back to the other.
"""

import json
import logging
from typing import AsyncIterator, Optional

import httpx
from fastapi.responses import JSONResponse, Response, StreamingResponse
from starlette.background import BackgroundTask

from inference_proxy.errors import MalformedUpstreamBody
from inference_proxy.proxy.headers import apply_headers, upstream_response_headers
from inference_proxy.proxy.models import TransformFn
from inference_proxy.upstream.client import UpstreamClient
from inference_proxy.utils.exception_logging import log_exception_with_details

logger = logging.getLogger("uvicorn.error")


async def stream_chunks(response: httpx.Response, path: str) -> AsyncIterator[bytes]:
    """
    Yield upstream chunks one by one, closing the upstream when done.

    The generator is consumed by the server one chunk at a time, so a slow
    client holds back further upstream reads. If the client disconnects the
    generator is cancelled and the ``finally`` tears down the upstream
    connection. A failure after the first byte cannot be reported as JSON;
    it is logged and re-raised so the server aborts the connection.
    """
    try:
        async for chunk in UpstreamClient.iter_body(response, path, raw=True):
            yield chunk
    except Exception as e:
        log_exception_with_details(logger, f"[Proxy] Stream for {path} aborted", e)
        raise
    finally:
        await response.aclose()


def relay_stream(response: httpx.Response, path: str) -> StreamingResponse:
    content_type = response.headers.get("content-type")
    streaming_response = StreamingResponse(
        stream_chunks(response, path),
        status_code=response.status_code,
        media_type=content_type,
        background=BackgroundTask(response.aclose),
    )
    return apply_headers(
        streaming_response,
        upstream_response_headers(response.headers, decoded_body=False),
    )


async def read_body(response: httpx.Response, path: str) -> bytes:
    chunks = [chunk async for chunk in UpstreamClient.iter_body(response, path)]
    return b"".join(chunks)


async def relay_buffered(
    response: httpx.Response, path: str, transform: Optional[TransformFn] = None
) -> Response:
    """
    Buffer the whole upstream body, parse it as JSON and optionally transform it.

    An empty body is relayed as-is with the upstream status code. A body that
    is not valid JSON raises ``MalformedUpstreamBody``.
    """
    body = await read_body(response, path)
    headers = upstream_response_headers(response.headers, decoded_body=True)

    if not body:
        return apply_headers(Response(status_code=response.status_code), headers)

    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MalformedUpstreamBody(path, str(e)) from e

    if transform is not None:
        payload = transform(payload)

    return apply_headers(
        JSONResponse(content=payload, status_code=response.status_code), headers
    )
