"""Installation access tokens minted from the App's own token."""
import logging
from threading import Lock

import marshmallow as ma
import requests

from pklproxy.auth import Token, TokenSource
from pklproxy.exc import AuthenticationError
from pklproxy.schema import access_token_schema

_logger = logging.getLogger(__name__)


class InstallationTokenSource:
    """Token source for one installation of the App.

    Holds the current installation token and exchanges the app token for a
    new one once it expires. Concurrent callers wait for a single refresh.
    """

    def __init__(
        self,
        installation_id: int,
        app_tokens: TokenSource,
        *,
        api_url: str,
        api_version: str | None = None,
        timeout: float | tuple[float, float] | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.installation_id = installation_id
        self._app_tokens = app_tokens
        self._url = (
            f"{api_url}/app/installations/{installation_id}/access_tokens"
        )
        self._headers = {"Accept": "application/vnd.github+json"}
        if api_version:
            self._headers["X-GitHub-Api-Version"] = api_version
        self._timeout = timeout
        self._session = session or requests.Session()
        self._token: Token | None = None
        self._lock = Lock()

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} id:{self.installation_id}>"

    def token(self) -> Token:
        with self._lock:
            if self._token is None or not self._token.valid():
                self._token = self._exchange()
            return self._token

    def _exchange(self) -> Token:
        _logger.debug(
            f"Requesting a new token for installation {self.installation_id}"
        )
        app_token = self._app_tokens.token()
        try:
            response = self._session.post(
                self._url,
                headers={
                    **self._headers,
                    "Authorization": f"Bearer {app_token.access_token}",
                },
                timeout=self._timeout,
            )
            response.raise_for_status()
            data = access_token_schema.load(response.json())
        except requests.exceptions.RequestException as e:
            msg = (
                f"Failed to get a token for installation "
                f"{self.installation_id}: {e}"
            )
            _logger.warning(msg)
            raise AuthenticationError(msg) from None
        except (ValueError, ma.ValidationError) as e:
            msg = (
                f"Unexpected token response for installation "
                f"{self.installation_id}: {e}"
            )
            _logger.warning(msg)
            raise AuthenticationError(msg) from None

        _logger.info(
            f"Minted a token for installation {self.installation_id}, "
            f"expires at {data.expires_at}"
        )
        return Token(data.token, data.expires_at)
