import json
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from inference_proxy.proxy.headers import HeaderList

TransformFn = Callable[[Any], Any]


@dataclass(frozen=True)
class ProxyRequest:
    """One outbound request to the upstream, derived from one inbound request."""

    method: str
    target_path: str
    headers: HeaderList = field(default_factory=list)
    body: Optional[bytes] = None
    is_streaming: bool = False
    query: str = ""

    @property
    def url(self) -> str:
        return f"{self.target_path}?{self.query}" if self.query else self.target_path

    @classmethod
    def build(
        cls,
        target_path: str,
        body: Optional[bytes],
        headers: Optional[HeaderList] = None,
        query: str = "",
    ) -> "ProxyRequest":
        """
        Classify an inbound request.

        An empty or absent body means GET, anything else is POST. Only a POST
        whose JSON body carries a truthy ``stream`` flag is streamed.
        """
        if not body:
            return cls(
                method="GET",
                target_path=target_path,
                headers=list(headers or []),
                query=query,
            )
        return cls(
            method="POST",
            target_path=target_path,
            headers=list(headers or []),
            body=body,
            is_streaming=declares_streaming(body),
            query=query,
        )


def declares_streaming(body: bytes) -> bool:
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return False
    return isinstance(payload, dict) and bool(payload.get("stream"))
