"""
Lifecycle of the network listeners.

State machine::

    unstarted --(encryption off)-----------------------------> plain_only
    unstarted --(cert ok, both ports bound)------------------> dual_with_redirect
    unstarted --(cert fails or secure port busy)--> fallback -> plain_only
    any attempt --(plaintext port cannot be bound)-----------> failed

The manager binds every socket itself before any server starts, so a bind
failure is reported as ``ListenerBindFailure`` instead of uvicorn exiting
the process from inside ``serve()``.
"""

import asyncio
import logging
import socket
import ssl
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List

import uvicorn
from fastapi import FastAPI

from inference_proxy.context import ListenerConfig, ProcessContext
from inference_proxy.errors import CertificateLoadFailure, ListenerBindFailure
from inference_proxy.server import create_app, create_redirect_app
from inference_proxy.utils.exception_logging import log_exception_with_details

logger = logging.getLogger("uvicorn.error")

AppFactory = Callable[[ProcessContext], FastAPI]


class ListenerState(str, Enum):
    UNSTARTED = "unstarted"
    PLAIN_ONLY = "plain_only"
    DUAL_WITH_REDIRECT = "dual_with_redirect"
    FAILED = "failed"


@dataclass
class Listener:
    name: str
    app: FastAPI
    sock: socket.socket
    port: int
    secure: bool = False


def validate_certificate(config: ListenerConfig) -> None:
    """
    Check that the certificate pair loads before the secure port is bound.

    uvicorn loads the same two files again when the HTTPS server starts.

    Raises:
        CertificateLoadFailure: when either file is missing or the pair is invalid
    """
    try:
        ssl_context = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
        ssl_context.load_cert_chain(
            certfile=config.certificate_path, keyfile=config.key_path
        )
    except (OSError, ssl.SSLError, ValueError) as e:
        raise CertificateLoadFailure(config.certificate_path, config.key_path, str(e)) from e


def bind_socket(host: str, port: int) -> socket.socket:
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
    except OSError as e:
        sock.close()
        raise ListenerBindFailure(host, port, str(e)) from e
    sock.set_inheritable(True)
    return sock


class ListenerManager:
    """Opens one or two listeners for the process and runs them until shutdown."""

    def __init__(
        self,
        context: ProcessContext,
        app_factory: AppFactory = create_app,
        redirect_app_factory: AppFactory = create_redirect_app,
        bind: Callable[[str, int], socket.socket] = bind_socket,
    ):
        self.context = context
        self.config = context.listener
        self.app_factory = app_factory
        self.redirect_app_factory = redirect_app_factory
        self.bind = bind
        self.state = ListenerState.UNSTARTED
        self.listeners: List[Listener] = []
        self.servers: List[uvicorn.Server] = []

    def start(self) -> ListenerState:
        """
        Bind the listener sockets according to the configuration.

        Raises:
            ListenerBindFailure: when not even the plaintext listener can be bound
        """
        if self.state != ListenerState.UNSTARTED:
            return self.state

        if self.config.use_encryption and self._start_dual():
            self.state = ListenerState.DUAL_WITH_REDIRECT
            return self.state

        try:
            sock = self.bind(self.config.host, self.config.plain_port)
        except ListenerBindFailure:
            self.state = ListenerState.FAILED
            raise
        self.listeners = [
            Listener("http", self.app_factory(self.context), sock, self.config.plain_port)
        ]
        self.state = ListenerState.PLAIN_ONLY
        logger.info(
            f"[Listener] Serving all routes over HTTP on {self.config.host}:{self.config.plain_port}"
        )
        return self.state

    def _start_dual(self) -> bool:
        try:
            validate_certificate(self.config)
            secure_sock = self.bind(self.config.host, self.config.secure_port)
        except (CertificateLoadFailure, ListenerBindFailure) as e:
            log_exception_with_details(
                logger,
                "[Listener] HTTPS unavailable, falling back to HTTP only.",
                e,
                level=logging.WARNING,
            )
            return False

        try:
            plain_sock = self.bind(self.config.host, self.config.plain_port)
        except ListenerBindFailure:
            secure_sock.close()
            self.state = ListenerState.FAILED
            raise

        self.listeners = [
            Listener(
                "https",
                self.app_factory(self.context),
                secure_sock,
                self.config.secure_port,
                secure=True,
            ),
            Listener(
                "http-redirect",
                self.redirect_app_factory(self.context),
                plain_sock,
                self.config.plain_port,
            ),
        ]
        logger.info(
            f"[Listener] Serving HTTPS on {self.config.host}:{self.config.secure_port}, "
            f"redirecting HTTP on port {self.config.plain_port}"
        )
        return True

    def _server_for(self, listener: Listener) -> uvicorn.Server:
        config = uvicorn.Config(
            listener.app,
            host=self.config.host,
            port=listener.port,
            log_level=self.context.log_level,
            ssl_certfile=self.config.certificate_path if listener.secure else None,
            ssl_keyfile=self.config.key_path if listener.secure else None,
        )
        return uvicorn.Server(config)

    async def serve(self) -> None:
        """Run every bound listener; when one stops, stop the others."""
        self.servers = [self._server_for(listener) for listener in self.listeners]
        tasks = [
            asyncio.create_task(server.serve(sockets=[listener.sock]))
            for server, listener in zip(self.servers, self.listeners)
        ]
        try:
            _, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for server in self.servers:
                server.should_exit = True
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        # Surface a crash of the first finished server
        for task in tasks:
            if task.done() and not task.cancelled() and task.exception() is not None:
                raise task.exception()

    def close(self) -> None:
        for listener in self.listeners:
            listener.sock.close()

    def run(self) -> int:
        """Start and serve until shutdown. Returns the process exit code."""
        try:
            self.start()
        except ListenerBindFailure as e:
            log_exception_with_details(logger, "[Listener] Cannot bind any listener.", e)
            return 1

        try:
            asyncio.run(self.serve())
        except KeyboardInterrupt:
            logger.info("[Listener] Interrupted, shutting down")
        finally:
            self.close()
        return 0
