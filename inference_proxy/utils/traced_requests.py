import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from opentelemetry.trace import Span, Tracer

logger = logging.getLogger("uvicorn.error")


@contextmanager
def traced_request(
    tracer: Tracer,
    operation: str,
    path: str,
    method: str,
    start_message: str,
    extra_attrs: Optional[Dict[str, Any]] = None,
) -> Iterator[Span]:
    """Open a span tagged with the proxied path and method, then log ``start_message``."""
    with tracer.start_as_current_span(operation) as span:
        span.set_attributes({"proxy.path": path, "proxy.method": method, **(extra_attrs or {})})
        logger.debug(start_message)
        yield span
