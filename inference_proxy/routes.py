import logging
from typing import Any, Callable, Dict

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, Response

from inference_proxy.context import ProcessContext, get_context
from inference_proxy.health import HealthMonitor
from inference_proxy.legacy import (
    LegacyInferRequest,
    build_proxy_request,
    legacy_transform,
    utc_timestamp,
)
from inference_proxy.proxy.dispatcher import dispatch, forward
from inference_proxy.upstream.client import UpstreamClient

router = APIRouter()
health_router = APIRouter()
logger = logging.getLogger("uvicorn.error")

# Upstream paths relayed unchanged under the same name
PASSTHROUGH_POST_PATHS = [
    "/v1/chat/completions",
    "/v1/completions",
    "/v1/embeddings",
    "/tokenize",
    "/detokenize",
    "/score",
    "/v1/score",
    "/rerank",
    "/v1/rerank",
    "/v2/rerank",
    "/invocations",
]


def get_upstream(request: Request) -> UpstreamClient:
    return request.app.state.upstream


def add_proxy_version(version: str) -> Callable[[Any], Any]:
    def transform(payload: Any) -> Any:
        if isinstance(payload, dict):
            return {**payload, "proxy_version": version}
        return payload

    return transform


@health_router.get("/health")
async def health(
    client: UpstreamClient = Depends(get_upstream),
    context: ProcessContext = Depends(get_context),
):
    monitor = HealthMonitor(client, timeout=context.upstream.health_timeout)
    verdict = await monitor.probe()
    return JSONResponse(status_code=verdict.http_status, content=verdict.to_dict())


@router.get("/")
async def root(context: ProcessContext = Depends(get_context)) -> Dict[str, Any]:
    return {
        "message": "Hello from the Inference API!",
        "version": context.version,
        "model": context.model_id,
        "timestamp": utc_timestamp(),
    }


@router.get("/v1/models")
async def list_models(request: Request, client: UpstreamClient = Depends(get_upstream)):
    return await forward(request, "/v1/models", client)


@router.get("/version")
async def version(
    request: Request,
    client: UpstreamClient = Depends(get_upstream),
    context: ProcessContext = Depends(get_context),
):
    return await forward(request, "/version", client, transform=add_proxy_version(context.version))


@router.post("/api/infer")
async def legacy_infer(
    body: LegacyInferRequest,
    client: UpstreamClient = Depends(get_upstream),
    context: ProcessContext = Depends(get_context),
) -> Response:
    """Legacy endpoint: wraps ``data`` into a chat completion and unwraps the reply."""
    logger.info(f"[Legacy] Inference request with {len(body.data)} chars")
    return await dispatch(
        client,
        build_proxy_request(body, context),
        transform=legacy_transform(body, context),
        inbound_method="POST",
    )


def _passthrough(path: str):
    async def endpoint(request: Request, client: UpstreamClient = Depends(get_upstream)):
        return await forward(request, path, client)

    endpoint.__name__ = "proxy_" + path.strip("/").replace("/", "_")
    return endpoint


for _path in PASSTHROUGH_POST_PATHS:
    router.add_api_route(_path, _passthrough(_path), methods=["POST"])
