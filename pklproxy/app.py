"""Main Flask application initialization code."""
import logging
import os

from flask import Flask

from pklproxy import config, view
from pklproxy.auth import github
from pklproxy.error_handling import ApiErrorHandler
from pklproxy.releases import ReleaseProxy
from pklproxy.transport import AuthenticatingTransport
from pklproxy.util import as_dict, get_callable


def init_app(
    app: Flask | None = None,
    additional_config: dict | None = None,
    token_manager: github.TokenManager | None = None,
) -> Flask:
    """Flask app initialization.

    Unless a token manager is handed in, one is built from the GITHUB_APP
    configuration; that's where a broken or ambiguous GitHub App setup
    stops the app from being created at all.
    """
    if app is None:
        # no static files; every path belongs to the asset routes
        app = Flask(__name__, static_folder=None)

    config.configure(app, additional_config=additional_config)

    # Configure logging
    if os.environ.get("PKL_PROXY_DEBUG"):
        level = logging.DEBUG
    else:
        level = logging.INFO
    logging.basicConfig(
        format="%(asctime)-15s %(name)-15s %(levelname)s %(message)s",
        level=level,
    )

    # Load middleware
    _load_middleware(app)

    ApiErrorHandler(app)

    if token_manager is None:
        token_manager = github.factory(**as_dict(app.config["GITHUB_APP"]))

    cfg = token_manager.cfg
    transport = AuthenticatingTransport(
        token_manager, timeout=cfg.api_timeout, api_version=cfg.api_version
    )
    proxy = ReleaseProxy(transport, cfg.api_url)
    view.ReleaseAssetView.register(app, init_argument=proxy)

    return app


def _load_middleware(flask_app: Flask) -> None:
    """Load WSGI middleware classes from configuration."""
    log = logging.getLogger(__name__)
    wsgi_app = flask_app.wsgi_app
    middleware_config = flask_app.config["MIDDLEWARE"]

    for spec in middleware_config:
        klass = get_callable(spec["class"])
        args = spec.get("args", [])
        kwargs = spec.get("kwargs", {})
        wsgi_app = klass(wsgi_app, *args, **kwargs)
        log.debug("Loaded middleware: %s(*%s, **%s)", klass, args, kwargs)

    flask_app.wsgi_app = wsgi_app  # type: ignore[method-assign]
