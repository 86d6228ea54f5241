"""Outbound GitHub API calls authorized as the repository's installation.

Every call names the repository it is made for. The installation token is
attached by a `requests` auth handler while the request is prepared, so a
call whose token can't be obtained is never sent.
"""
import dataclasses
import logging
from typing import Protocol

import requests
from requests.auth import AuthBase

from pklproxy.exc import AuthorizationError

_logger = logging.getLogger(__name__)


class RepoTokens(Protocol):
    def token_for_repo(self, owner: str, repo: str) -> str:
        ...


@dataclasses.dataclass(frozen=True)
class RepoTenant:
    """The repository an outbound request is made on behalf of."""

    owner: str
    repo: str

    def __str__(self) -> str:
        return f"{self.owner}/{self.repo}"


class InstallationAuth(AuthBase):
    """Attaches the installation token covering a repository."""

    def __init__(self, tokens: RepoTokens, tenant: RepoTenant) -> None:
        self.tokens = tokens
        self.tenant = tenant

    def __call__(
        self, r: requests.PreparedRequest
    ) -> requests.PreparedRequest:
        # raises AuthenticationError (or UpstreamError when discovery fails)
        token = self.tokens.token_for_repo(self.tenant.owner, self.tenant.repo)
        r.headers["Authorization"] = f"token {token}"
        return r


class AuthenticatingTransport:
    """Sends GitHub requests for a given repository, authorized with the
    token of the installation covering it.
    """

    def __init__(
        self,
        tokens: RepoTokens,
        *,
        timeout: float | tuple[float, float] | None = None,
        api_version: str | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self._tokens = tokens
        self._timeout = timeout
        self._session = session or requests.Session()
        self._api_headers = {"Accept": "application/vnd.github+json"}
        if api_version:
            self._api_headers["X-GitHub-Api-Version"] = api_version

    def get(
        self,
        url: str,
        tenant: RepoTenant | None,
        *,
        headers: dict[str, str] | None = None,
        stream: bool = False,
    ) -> requests.Response:
        if tenant is None:
            raise AuthorizationError(
                "no tenant context bound to outbound request"
            )
        _logger.debug(f"GET {url} for {tenant}")
        return self._session.get(
            url,
            headers={**self._api_headers, **(headers or {})},
            auth=InstallationAuth(self._tokens, tenant),
            stream=stream,
            timeout=self._timeout,
        )
