"""Tests for the local HTTP server."""
import threading
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from typing import Any

import flask
import pytest
import requests

from pklproxy import server as server_module
from pklproxy.server import (
    LISTEN_ADDRESS_ENV,
    InFlightRequests,
    ProxyServer,
    proxy_environ,
)
from pklproxy.util import (
    advertised_address,
    join_listen_address,
    split_listen_address,
)


def _blocking_app(
    release: threading.Event, started: threading.Event
) -> flask.Flask:
    app = flask.Flask(__name__)

    @app.route("/slow")
    def slow() -> str:
        started.set()
        release.wait(5)
        return "done"

    return app


def test_proxy_environ() -> None:
    env = proxy_environ(":9443", {"PATH": "/usr/bin"})
    assert env == {"PATH": "/usr/bin", LISTEN_ADDRESS_ENV: "localhost:9443"}

    env = proxy_environ("127.0.0.1:8080", {})
    assert env[LISTEN_ADDRESS_ENV] == "127.0.0.1:8080"


def test_in_flight_requests_counts_until_closed() -> None:
    def app(environ: Any, start_response: Any) -> Iterable[bytes]:
        start_response("200 OK", [])
        return [b"a", b"b"]

    in_flight = InFlightRequests(app)
    body = in_flight({}, lambda *_: None)

    assert in_flight.count == 1
    assert not in_flight.wait_idle(0)
    assert b"".join(body) == b"ab"
    body.close()  # type: ignore[attr-defined]
    assert in_flight.count == 0
    assert in_flight.wait_idle(0)


def test_in_flight_requests_app_error() -> None:
    def app(environ: Any, start_response: Any) -> Iterable[bytes]:
        raise RuntimeError("boom")

    in_flight = InFlightRequests(app)
    with pytest.raises(RuntimeError):
        in_flight({}, lambda *_: None)
    assert in_flight.count == 0


def test_server_serves_and_stops(app: flask.Flask) -> None:
    server = ProxyServer(app, "127.0.0.1:0", grace_period=1)

    with server:
        response = requests.get(f"http://{server.address}/acme", timeout=5)
        assert response.status_code == 404
        assert response.headers["Content-Type"].startswith("text/plain")

    assert server.in_flight.count == 0


def test_server_drains_in_flight_requests() -> None:
    release, started = threading.Event(), threading.Event()
    server = ProxyServer(
        _blocking_app(release, started), "127.0.0.1:0", grace_period=5
    ).start()
    url = f"http://{server.address}/slow"

    with ThreadPoolExecutor(max_workers=2) as executor:
        pending = executor.submit(requests.get, url, timeout=10)
        assert started.wait(5)
        stopped = executor.submit(server.shutdown)
        threading.Timer(0.2, release.set).start()

        assert stopped.result(timeout=10) is True
        assert pending.result().text == "done"


def test_server_grace_period_runs_out() -> None:
    release, started = threading.Event(), threading.Event()
    server = ProxyServer(
        _blocking_app(release, started), "127.0.0.1:0", grace_period=0.1
    ).start()
    url = f"http://{server.address}/slow"

    with ThreadPoolExecutor(max_workers=1) as executor:
        pending = executor.submit(requests.get, url, timeout=10)
        assert started.wait(5)
        try:
            assert server.shutdown() is False
        finally:
            release.set()
        # the handler thread still finishes its response
        pending.result()


class _IdleServer:
    """Stands in for the werkzeug server, without binding a socket."""

    server_port = 9443

    def __init__(self) -> None:
        self._stopped = threading.Event()

    def serve_forever(self) -> None:
        self._stopped.wait(5)

    def shutdown(self) -> None:
        self._stopped.set()

    def server_close(self) -> None:
        pass


def test_server_address_ipv6(
    app: flask.Flask, monkeypatch: pytest.MonkeyPatch
) -> None:
    bound: list[tuple[str, int]] = []

    def make_server(host: str, port: int, *_: Any, **__: Any) -> _IdleServer:
        bound.append((host, port))
        return _IdleServer()

    monkeypatch.setattr(server_module, "make_server", make_server)

    with ProxyServer(app, "[::1]:0", grace_period=0) as server:
        assert server.address == "[::1]:9443"

    assert bound == [("::1", 0)]


def test_listen_address_helpers() -> None:
    assert split_listen_address("[::1]:8080") == ("::1", 8080)
    assert join_listen_address("::1", 8080) == "[::1]:8080"
    assert join_listen_address("127.0.0.1", 8080) == "127.0.0.1:8080"
    assert advertised_address(":8080") == "localhost:8080"
