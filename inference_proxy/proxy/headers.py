"""
Header handling for both hops of the proxy.

Headers are kept as ordered lists of ``(name, value)`` pairs with lowercase
names. HTTP header names are case-insensitive, so lowercasing never changes
meaning, and a list (unlike a dict) keeps repeated headers such as multiple
``set-cookie`` lines.
"""

from typing import Iterable, List, Tuple

import httpx
from fastapi import Request
from starlette.responses import Response

HeaderList = List[Tuple[str, str]]

# Hop-by-hop headers that should NOT be forwarded (RFC 2616)
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
}

# Framing headers are recomputed for the hop they belong to
FRAMING_HEADERS = {"content-length", "transfer-encoding"}

# Never forwarded upstream: httpx sets host and content-length for the new hop
REQUEST_EXCLUDED_HEADERS = HOP_BY_HOP_HEADERS | {"host", "content-length"}


def prepare_headers(request: Request) -> HeaderList:
    """
    Prepare headers for forwarding to the upstream.
    Removes hop-by-hop headers and adds X-Forwarded-* headers.
    """
    headers: HeaderList = [
        (name.lower(), value)
        for name, value in request.headers.items()
        if name.lower() not in REQUEST_EXCLUDED_HEADERS
        and not name.lower().startswith("x-forwarded-")
        and name.lower() != "x-real-ip"
    ]

    client_ip = request.client.host if request.client else "unknown"
    existing_xff = request.headers.get("x-forwarded-for", "")
    headers.append(("x-forwarded-for", f"{existing_xff}, {client_ip}".strip(", ")))
    headers.append(("x-forwarded-host", request.headers.get("host", "")))
    headers.append(("x-forwarded-proto", request.url.scheme))
    headers.append(("x-real-ip", client_ip))

    return headers


def upstream_response_headers(
    upstream_headers: httpx.Headers, *, decoded_body: bool
) -> HeaderList:
    """
    Select the upstream response headers to relay, preserving order and duplicates.

    Hop-by-hop and framing headers are dropped. When the body was decoded and
    re-serialized, ``content-encoding`` no longer describes it and is dropped too.
    """
    skip = HOP_BY_HOP_HEADERS | FRAMING_HEADERS
    if decoded_body:
        skip = skip | {"content-encoding"}
    return [
        (name.lower(), value)
        for name, value in upstream_headers.multi_items()
        if name.lower() not in skip
    ]


def apply_headers(response: Response, headers: Iterable[Tuple[str, str]]) -> Response:
    """
    Copy headers onto a Starlette response.

    A header name supplied here replaces every header of the same name the
    response already carries (e.g. the default ``content-type``); repeated
    names in ``headers`` are all kept.
    """
    headers = list(headers)
    replaced = {name.lower() for name, _ in headers}
    raw_headers = [
        (key, value)
        for key, value in response.raw_headers
        if key.decode("latin-1") not in replaced
    ]
    raw_headers.extend(
        (name.lower().encode("latin-1"), value.encode("latin-1"))
        for name, value in headers
    )
    response.raw_headers[:] = raw_headers
    return response
