import json
from typing import Callable, List, Optional, Union

import httpx


class MockUpstream:
    """In-process upstream built on httpx.MockTransport.

    Records every request and answers with either a fixed response or a
    per-request handler.
    """

    def __init__(
        self,
        status_code: int = 200,
        json_body: Optional[Union[dict, list]] = None,
        content: Optional[bytes] = None,
        headers: Optional[dict] = None,
        handler: Optional[Callable[[httpx.Request], httpx.Response]] = None,
    ):
        self.requests: List[httpx.Request] = []
        self.status_code = status_code
        self.json_body = json_body
        self.content = content
        self.headers = headers or {}
        self.handler = handler

    def _handle(self, request: httpx.Request):
        self.requests.append(request)
        if self.handler is not None:
            return self.handler(request)
        if self.json_body is not None:
            return httpx.Response(
                self.status_code, json=self.json_body, headers=self.headers
            )
        return httpx.Response(
            self.status_code, content=self.content or b"", headers=self.headers
        )

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self._handle)

    @property
    def last_request(self) -> httpx.Request:
        return self.requests[-1]

    def last_json(self):
        return json.loads(self.last_request.content)


async def chunked(chunks: List[bytes]):
    for chunk in chunks:
        yield chunk
