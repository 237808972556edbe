"""
Error taxonomy for the proxy.

Per-request errors (``UpstreamUnavailable``, ``UpstreamTimeout``,
``MalformedUpstreamBody``) are converted to JSON responses by the dispatcher.
Process-level errors (``CertificateLoadFailure``, ``ListenerBindFailure``) are
handled once by the listener manager at startup.
"""


class ProxyError(Exception):
    """Base class for all proxy errors."""


class UpstreamError(ProxyError):
    def __init__(self, path: str, message: str = ""):
        self.path = path
        self.message = message
        super().__init__(f"{path}: {message}" if message else path)


class UpstreamUnavailable(UpstreamError):
    """Connection refused, DNS failure, reset or protocol error."""


class UpstreamTimeout(UpstreamError):
    """No response from the upstream within the configured wait."""


class MalformedUpstreamBody(UpstreamError):
    """The upstream returned a non-JSON body where JSON was expected."""


class CertificateLoadFailure(ProxyError):
    def __init__(self, certificate_path: str, key_path: str, reason: str):
        self.certificate_path = certificate_path
        self.key_path = key_path
        self.reason = reason
        super().__init__(
            f"Failed to load certificate {certificate_path} / key {key_path}: {reason}"
        )


class ListenerBindFailure(ProxyError):
    def __init__(self, host: str, port: int, reason: str):
        self.host = host
        self.port = port
        self.reason = reason
        super().__init__(f"Failed to bind {host}:{port}: {reason}")
