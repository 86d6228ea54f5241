"""GitHub App identity and the self-signed JWT it authenticates with.

See https://docs.github.com/en/apps/creating-github-apps/authenticating-with-a-github-app/generating-a-json-web-token-jwt-for-a-github-app
"""
import dataclasses
import logging
from datetime import datetime, timedelta, timezone
from threading import Lock

import jwt
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

from pklproxy.auth import Token
from pklproxy.exc import ConfigurationError

_logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True, kw_only=True)
class AppIdentity:
    """Who the App is: a numeric App ID or a Client ID, plus its key.

    When both identifiers are present, the App ID is authoritative.
    """

    app_id: int | None = None
    client_id: str | None = None
    private_key: bytes = dataclasses.field(repr=False)

    @property
    def issuer(self) -> str:
        if self.app_id is not None:
            return str(self.app_id)
        if self.client_id:
            return self.client_id
        raise ConfigurationError("config must set either appId or clientId")


def load_private_key(pem: bytes) -> RSAPrivateKey:
    """Load a PEM encoded RSA private key, as downloaded from GitHub."""
    try:
        key = serialization.load_pem_private_key(pem, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise ConfigurationError(
            f"Malformed GitHub App private key: {e}"
        ) from None
    if not isinstance(key, RSAPrivateKey):
        raise ConfigurationError(
            "GitHub App private key must be an RSA key, "
            f"got {type(key).__name__}"
        )
    return key


class ApplicationTokenSource:
    """Token source for the App itself, signing a fresh RS256 JWT whenever
    the previous one is about to expire.

    GitHub rejects app JWTs with an expiry more than 10 minutes out; the
    issue time is backdated a minute to tolerate clock drift.
    """

    ALGORITHM = "RS256"
    DEFAULT_LIFETIME = 9 * 60
    CLOCK_DRIFT = 60

    def __init__(
        self, identity: AppIdentity, lifetime: int = DEFAULT_LIFETIME
    ) -> None:
        self.issuer = identity.issuer
        self.lifetime = lifetime
        self._key = load_private_key(identity.private_key)
        self._token: Token | None = None
        self._lock = Lock()

    def token(self) -> Token:
        with self._lock:
            if self._token is None or not self._token.valid():
                self._token = self._sign()
            return self._token

    def _sign(self) -> Token:
        now = datetime.now(tz=timezone.utc)
        expires_at = now + timedelta(seconds=self.lifetime)
        payload = {
            "iat": now - timedelta(seconds=self.CLOCK_DRIFT),
            "exp": expires_at,
            "iss": self.issuer,
        }
        _logger.debug(f"Signing a new GitHub App token for {self.issuer}")
        encoded = jwt.encode(payload, self._key, algorithm=self.ALGORITHM)
        return Token(encoded, expires_at)
