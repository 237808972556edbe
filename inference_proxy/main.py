import sys

from inference_proxy import vars as proxy_vars
from inference_proxy.context import ProcessContext
from inference_proxy.listeners import ListenerManager
from inference_proxy.telemetry import configure_tracing


def main() -> int:
    context = ProcessContext.from_env()
    configure_tracing(
        context.service_name, proxy_vars.OTLP_ENDPOINT, proxy_vars.OTLP_HEADERS
    )
    return ListenerManager(context).run()


if __name__ == "__main__":
    sys.exit(main())
