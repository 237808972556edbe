"""
Translation for the legacy ``/api/infer`` endpoint.

Legacy callers post ``{"data": "..."}`` and expect
``{"input", "result", "timestamp", "model"}`` back. Requests are repackaged
into an OpenAI chat completion for the upstream and the reply is unwrapped.
"""

import json
from datetime import datetime, timezone
from functools import partial
from typing import Any, Dict, Optional

from pydantic import BaseModel

from inference_proxy.context import ProcessContext
from inference_proxy.proxy.models import ProxyRequest

CHAT_COMPLETIONS_PATH = "/v1/chat/completions"


class LegacyInferRequest(BaseModel):
    data: str


class LegacyInferResponse(BaseModel):
    input: str
    result: Optional[str] = None
    timestamp: str
    model: str


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp with millisecond precision and a ``Z`` suffix."""
    return (
        datetime.now(timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


def build_chat_request(request: LegacyInferRequest, context: ProcessContext) -> Dict[str, Any]:
    return {
        "model": context.model_id,
        "messages": [{"role": "user", "content": request.data}],
        "max_tokens": context.max_tokens,
    }


def build_proxy_request(request: LegacyInferRequest, context: ProcessContext) -> ProxyRequest:
    body = json.dumps(build_chat_request(request, context)).encode("utf-8")
    return ProxyRequest(
        method="POST",
        target_path=CHAT_COMPLETIONS_PATH,
        headers=[("content-type", "application/json")],
        body=body,
    )


def _first_choice_content(payload: Dict[str, Any]) -> Optional[str]:
    choices = payload.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return None
    message = choices[0].get("message") or {}
    content = message.get("content")
    if content is None:
        # completions-style choices carry text instead of a message
        content = choices[0].get("text")
    return content


def unwrap_chat_response(payload: Any, input_text: str, model: str) -> Any:
    """
    Convert an upstream chat completion into the legacy response shape.

    Payloads without ``choices`` (upstream error bodies) are returned unchanged.
    """
    if not isinstance(payload, dict) or "choices" not in payload:
        return payload
    return LegacyInferResponse(
        input=input_text,
        result=_first_choice_content(payload),
        timestamp=utc_timestamp(),
        model=payload.get("model") or model,
    ).model_dump()


def legacy_transform(request: LegacyInferRequest, context: ProcessContext):
    return partial(unwrap_chat_response, input_text=request.data, model=context.model_id)
