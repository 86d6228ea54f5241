"""Run the proxy on a local threaded HTTP server.

The server has two phases: running, one thread per request; and draining,
entered by shutdown(), where no new connections are accepted and requests
already in flight get a grace period to finish before the listener closes.
"""
import logging
import os
import threading
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any

from flask import Flask
from werkzeug.serving import BaseWSGIServer, make_server
from werkzeug.wsgi import ClosingIterator

from pklproxy.util import (
    advertised_address,
    join_listen_address,
    split_listen_address,
)

if TYPE_CHECKING:
    from _typeshed.wsgi import StartResponse, WSGIApplication, WSGIEnvironment

_logger = logging.getLogger(__name__)

# tells launched processes where the proxy listens
LISTEN_ADDRESS_ENV = "PKL_PROXY_LISTEN_ADDRESS"


def proxy_environ(
    listen_address: str, environ: Mapping[str, str] | None = None
) -> dict[str, str]:
    """Environment for a process launched next to the proxy."""
    env = dict(os.environ if environ is None else environ)
    env[LISTEN_ADDRESS_ENV] = advertised_address(listen_address)
    return env


class InFlightRequests:
    """WSGI middleware counting requests whose response isn't done yet.

    A request counts from the moment it reaches the app until the server
    closes its response iterable, so streamed bodies are included.
    """

    def __init__(self, app: "WSGIApplication") -> None:
        self.app = app
        self._count = 0
        self._idle = threading.Condition()

    def __call__(
        self, environ: "WSGIEnvironment", start_response: "StartResponse"
    ) -> Iterable[bytes]:
        with self._idle:
            self._count += 1
        try:
            response = self.app(environ, start_response)
        except BaseException:
            self._done()
            raise
        return ClosingIterator(response, self._done)

    @property
    def count(self) -> int:
        with self._idle:
            return self._count

    def _done(self) -> None:
        with self._idle:
            self._count -= 1
            if self._count == 0:
                self._idle.notify_all()

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until no request is in flight; False if timed out."""
        with self._idle:
            return self._idle.wait_for(lambda: self._count == 0, timeout)


class ProxyServer:
    """Threaded werkzeug server running the proxy app in the background."""

    def __init__(
        self,
        app: Flask,
        listen_address: str | None = None,
        grace_period: float | None = None,
    ) -> None:
        if listen_address is None:
            listen_address = app.config["LISTEN_ADDRESS"]
        if grace_period is None:
            grace_period = float(app.config["SHUTDOWN_GRACE_PERIOD"])
        self.listen_address = listen_address
        self.grace_period = grace_period
        self.in_flight = InFlightRequests(app.wsgi_app)
        app.wsgi_app = self.in_flight  # type: ignore[method-assign]
        self._app = app
        self._server: BaseWSGIServer | None = None
        self._thread: threading.Thread | None = None

    @property
    def address(self) -> str:
        """Address the server is reachable at, with the actual port."""
        if self._server is None:
            return advertised_address(self.listen_address)
        host, _ = split_listen_address(self.listen_address)
        return advertised_address(
            join_listen_address(host, self._server.server_port)
        )

    def start(self) -> "ProxyServer":
        host, port = split_listen_address(self.listen_address)
        self._server = make_server(
            host or "0.0.0.0", port, self._app, threaded=True  # noqa: S104
        )
        self._thread = threading.Thread(
            target=self._server.serve_forever,
            name="pkl-proxy-server",
            daemon=True,
        )
        self._thread.start()
        _logger.info(f"Started local HTTP server on {self.listen_address}")
        return self

    def shutdown(self) -> bool:
        """Stop accepting requests, let in-flight ones finish, close.

        Returns False when the grace period ran out with requests still
        in flight; those are cut off when the listener closes.
        """
        if self._server is None:
            return True
        _logger.info("Shutting down the local HTTP server")
        self._server.shutdown()
        drained = self.in_flight.wait_idle(self.grace_period)
        if not drained:
            _logger.warning(
                f"{self.in_flight.count} request(s) still in flight after "
                f"{self.grace_period}s, closing anyway"
            )
        self._server.server_close()
        if self._thread is not None:
            self._thread.join()
        self._server = None
        self._thread = None
        return drained

    def __enter__(self) -> "ProxyServer":
        return self.start()

    def __exit__(self, *_exc: Any) -> None:
        self.shutdown()
