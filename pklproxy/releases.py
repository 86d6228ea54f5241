"""Release asset lookup and download through the GitHub API."""
import dataclasses
import logging
from typing import cast
from urllib.parse import quote

import marshmallow as ma
import requests

from pklproxy.exc import NotFoundError, UpstreamError
from pklproxy.schema import Release, ReleaseAsset, release_schema
from pklproxy.transport import AuthenticatingTransport, RepoTenant

_logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class AssetRequest:
    """A release asset as addressed by an inbound request path."""

    owner: str
    repo: str
    tag: str
    file: str | None = None

    @property
    def tenant(self) -> RepoTenant:
        return RepoTenant(self.owner, self.repo)

    @property
    def asset_name(self) -> str:
        """Name of the asset to serve; a bare tag names an asset too."""
        return self.file if self.file is not None else self.tag


class ReleaseProxy:
    """Fetches private release assets on behalf of unauthenticated callers.

    Nothing is cached: each request looks the release up again and
    downloads the asset afresh.
    """

    def __init__(
        self, transport: AuthenticatingTransport, api_url: str
    ) -> None:
        self._transport = transport
        self._api_url = api_url.rstrip("/")

    def release(self, tenant: RepoTenant, tag: str) -> Release:
        url = "/".join(
            (
                self._api_url,
                "repos",
                quote(tenant.owner, safe=""),
                quote(tenant.repo, safe=""),
                "releases",
                "tags",
                quote(tag, safe=""),
            )
        )
        _logger.info(f"Fetching release {tag} of {tenant}")
        try:
            response = self._transport.get(url, tenant)
        except requests.exceptions.RequestException as e:
            raise _upstream_error(url, tenant, e) from None
        with response:
            if not response.ok:
                raise _status_error(url, tenant, response)
            try:
                return cast(Release, release_schema.load(response.json()))
            except (ValueError, ma.ValidationError) as e:
                msg = f"Unexpected release response from {url}: {e}"
                _logger.warning(msg)
                raise UpstreamError(msg, endpoint=url) from None

    def asset(self, request: AssetRequest) -> ReleaseAsset:
        release = self.release(request.tenant, request.tag)
        asset = release.find_asset(request.asset_name)
        if asset is None:
            _logger.info(
                f"No asset {request.asset_name} in release {request.tag} "
                f"of {request.tenant}"
            )
            raise NotFoundError()
        _logger.info(f"Found matching asset {asset.name} ({asset.api_url})")
        return asset

    def download(
        self, tenant: RepoTenant, asset: ReleaseAsset
    ) -> requests.Response:
        """Open a streaming download of the asset; caller must close it."""
        try:
            response = self._transport.get(
                asset.api_url,
                tenant,
                headers={"Accept": "application/octet-stream"},
                stream=True,
            )
        except requests.exceptions.RequestException as e:
            raise _upstream_error(asset.api_url, tenant, e) from None
        if not response.ok:
            response.close()
            raise _status_error(asset.api_url, tenant, response)
        return response


def _status_error(
    url: str, tenant: RepoTenant, response: requests.Response
) -> UpstreamError:
    msg = (
        f"GitHub API returned {response.status_code} {response.reason} "
        f"for {url} ({tenant})"
    )
    _logger.warning(msg)
    return UpstreamError(msg, endpoint=url, status=response.status_code)


def _upstream_error(
    url: str, tenant: RepoTenant, error: requests.exceptions.RequestException
) -> UpstreamError:
    msg = f"GitHub API request for {url} ({tenant}) failed: {error}"
    _logger.warning(msg)
    return UpstreamError(msg, endpoint=url)
