"""Flask-Classful View Classes."""
import logging
from typing import Any

from flask import Flask, Response, request
from flask_classful import FlaskView, route
from werkzeug.exceptions import HTTPException
from werkzeug.wsgi import ClosingIterator

from pklproxy.releases import AssetRequest, ReleaseProxy
from pklproxy.util import safe_filename

_logger = logging.getLogger(__name__)

# bytes read from GitHub per chunk sent to the caller
STREAM_CHUNK_SIZE = 64 * 1024


class ReleaseAssetView(FlaskView):
    """Serves assets of (private) GitHub releases.

    The routes mirror GitHub's own download links, so a tool can be pointed
    at the proxy by swapping the host name.
    """

    route_base = "/"
    trailing_slash = False

    def __init__(self, proxy: ReleaseProxy) -> None:
        self.proxy = proxy

    def before_request(self, name: str, *args: Any, **kwargs: Any) -> None:
        _logger.info(f"Received request {request.method} {request.path}")

    @route("/<owner>/<repo>/<tag>", methods=["GET"])
    def tagged(self, owner: str, repo: str, tag: str) -> Response:
        """Serve the asset named like the tag itself."""
        return self._serve(AssetRequest(owner, repo, tag))

    @route("/<owner>/<repo>/<tag>/<file>", methods=["GET"])
    @route("/<owner>/<repo>/releases/download/<tag>/<file>", methods=["GET"])
    def tagged_file(
        self, owner: str, repo: str, tag: str, file: str
    ) -> Response:
        """Serve a named asset of the tagged release."""
        return self._serve(AssetRequest(owner, repo, tag, file))

    def _serve(self, asset_request: AssetRequest) -> Response:
        asset = self.proxy.asset(asset_request)
        upstream = self.proxy.download(asset_request.tenant, asset)

        headers = {
            "Content-Disposition": (
                f'attachment; filename="{safe_filename(asset.name)}"'
            )
        }
        # iter_content() undoes any transfer encoding, so the upstream length
        # only holds for identity encoded bodies
        length = upstream.headers.get("Content-Length")
        if length and "Content-Encoding" not in upstream.headers:
            headers["Content-Length"] = length

        # closed by the WSGI server once the body is sent or the client left;
        # direct_passthrough hands this iterable to the server unwrapped
        body = ClosingIterator(
            upstream.iter_content(STREAM_CHUNK_SIZE), upstream.close
        )
        return Response(
            body,
            status=200,
            headers=headers,
            content_type=asset.content_type or "application/octet-stream",
            direct_passthrough=True,
        )


def parse_release_path(app: Flask, path: str) -> AssetRequest | None:
    """Match a path against the asset routes registered on `app`."""
    adapter = app.url_map.bind("localhost")
    try:
        endpoint, args = adapter.match(path, method="GET")
    except HTTPException:
        return None
    if not endpoint.startswith(ReleaseAssetView.__name__):
        return None
    return AssetRequest(
        args["owner"], args["repo"], args["tag"], args.get("file")
    )
