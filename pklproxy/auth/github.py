"""GitHub App installation discovery and per-owner token caching."""
import dataclasses
import logging
from collections.abc import Callable, Generator, Mapping, MutableMapping
from contextlib import AbstractContextManager
from enum import Enum
from pathlib import Path
from threading import Lock, RLock
from typing import Any, Protocol, cast
from urllib.parse import parse_qs, quote, urlparse

import marshmallow as ma
import marshmallow.validate
import requests

from pklproxy.auth import TokenSource
from pklproxy.auth.app import ApplicationTokenSource, AppIdentity
from pklproxy.auth.installation import InstallationTokenSource
from pklproxy.exc import (
    AuthenticationError,
    ConfigurationError,
    DiscoveryAmbiguityError,
    UpstreamError,
)
from pklproxy.schema import (
    Installation,
    installation_list_schema,
    installation_schema,
)

_logger = logging.getLogger(__name__)


# THREAD SAFE CACHING UTILS
class _LockType(AbstractContextManager, Protocol):
    """Generic type for threading.Lock and RLock."""

    def acquire(self, blocking: bool = ..., timeout: float = ...) -> bool:
        ...

    def release(self) -> None:
        ...


@dataclasses.dataclass(kw_only=True)
class SingleCallContext:
    """Thread-safety context for one pending token source creation."""

    # reentrant lock guarding the factory call for one key
    rlock: _LockType = dataclasses.field(default_factory=RLock)
    start_call: bool = True
    result: Any = None
    error: BaseException | None = None


class TenantTokenCache:
    """Process-lifetime mapping of tenant keys (repository owners) to their
    installation token sources.

    At most one source is ever created per key: concurrent callers racing
    on a missing key agree on a single factory call and all get its result.
    The map lock only guards inserting the pending call and publishing its
    result; the factory itself (which may talk to GitHub) runs under a lock
    private to that key, so other tenants are never held up by it.
    Entries are never evicted, sources refresh their own tokens.
    """

    def __init__(self) -> None:
        self._sources: dict[str, InstallationTokenSource] = {}
        self._pending: dict[str, SingleCallContext] = {}
        self._lock = Lock()

    def __len__(self) -> int:
        return len(self._sources)

    def __contains__(self, tenant_key: object) -> bool:
        return tenant_key in self._sources

    def token_for(
        self,
        tenant_key: str,
        factory: Callable[[], InstallationTokenSource],
    ) -> InstallationTokenSource:
        # entries are only ever added, so a plain lookup is a safe fast path
        source = self._sources.get(tenant_key)
        if source is not None:
            return source

        with self._lock:
            source = self._sources.get(tenant_key)
            if source is not None:
                return source
            try:
                ctx = self._pending[tenant_key]
            except KeyError:
                self._pending[tenant_key] = ctx = SingleCallContext()
                # start locked for the current thread, so the following
                # gap won't let other threads populate the result
                ctx.rlock.acquire()

        with ctx.rlock:
            if not ctx.start_call:
                # another thread did the call, reuse its outcome
                if ctx.error:
                    raise ctx.error
                return cast(InstallationTokenSource, ctx.result)

            ctx.start_call = False
            ctx.rlock.release()  # unlock the starting lock
            try:
                source = factory()
            except BaseException as e:
                ctx.error = e
                # drop the pending call so the next request starts afresh
                with self._lock:
                    del self._pending[tenant_key]
                raise

            with self._lock:
                self._sources[tenant_key] = source
                del self._pending[tenant_key]
            ctx.result = source
            _logger.debug(f"Cached {source} for {tenant_key}")
            return source


# MODULE CONFIGURATION OPTIONS (and their validation)
class RequestsTimeout(ma.fields.Field):
    """Marshmallow Field validating a requests library timeout."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        pos_float = ma.fields.Float(validate=ma.validate.Range(min=0))
        self.possible_fields = (
            ma.fields.Tuple((pos_float, pos_float)),
            pos_float,
        )

    def _deserialize(
        self,
        value: Any,
        attr: str | None,
        data: Mapping[str, Any] | None,
        **kwargs: Any,
    ) -> Any:  # float | tuple[float, float]
        errors = {}
        for field in self.possible_fields:
            try:
                return field.deserialize(value, **kwargs)
            except ma.ValidationError as error:  # noqa: PERF203
                if error.valid_data is not None:
                    # parsing partially successful, don't bother with the rest
                    raise
                errors.update({field.__class__.__name__: error.messages})
        raise ma.ValidationError(errors)


class Discovery(Enum):
    """How to find the installation when none is configured."""

    # list the installations once; exactly one must exist
    STARTUP = "startup"
    # look up the installation of each repository owner on first use
    REPOSITORY = "repository"


@dataclasses.dataclass(frozen=True, kw_only=True)
class Config:
    """GitHub App configuration.
    Create this class using from_dict() method that applies schema validation
    and proper default values.
    """

    # numeric App ID, takes precedence over client_id
    app_id: int | None
    # App Client ID ("Iv1.xxxx")
    client_id: str | None
    # fixed installation, disables discovery
    installation_id: int | None
    # PEM private key inline or in a file
    private_key: str | None = dataclasses.field(repr=False)
    private_key_file: str | None
    # base URL for the GitHub API
    # (enterprise server has API at <hostname>/api/v3/)
    api_url: str
    # GitHub API version to target (set to None for the default latest)
    api_version: str | None
    # GitHub API requests timeout
    api_timeout: float | tuple[float, float]
    discovery: Discovery

    class Schema(ma.Schema):
        app_id = ma.fields.Int(
            load_default=None,
            allow_none=True,
            validate=ma.validate.Range(min=1),
        )
        client_id = ma.fields.String(load_default=None, allow_none=True)
        installation_id = ma.fields.Int(
            load_default=None,
            allow_none=True,
            validate=ma.validate.Range(min=1),
        )
        private_key = ma.fields.String(load_default=None, allow_none=True)
        private_key_file = ma.fields.String(load_default=None, allow_none=True)
        api_url = ma.fields.Url(
            load_default="https://api.github.com", require_tld=False
        )
        api_version = ma.fields.String(
            load_default="2022-11-28", allow_none=True
        )
        api_timeout = RequestsTimeout(load_default=(5.0, 10.0))
        discovery = ma.fields.Enum(
            Discovery, by_value=True, load_default=Discovery.STARTUP
        )

        @ma.validates_schema
        def validate_credentials(
            self, data: Mapping[str, Any], **_kwargs: Any
        ) -> None:
            if data.get("app_id") is None and not data.get("client_id"):
                raise ma.ValidationError(
                    "config must set either app_id or client_id"
                )
            if (data.get("private_key") is None) == (
                data.get("private_key_file") is None
            ):
                raise ma.ValidationError(
                    "config must set exactly one of private_key or "
                    "private_key_file"
                )

        @ma.post_load
        def make_object(
            self, data: MutableMapping[str, Any], **_kwargs: Mapping
        ) -> "Config":
            data["api_url"] = data["api_url"].rstrip("/")
            return Config(**data)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Config":
        try:
            return cast(Config, cls.Schema().load(data, unknown=ma.RAISE))
        except ma.ValidationError as e:
            raise ConfigurationError(
                f"Invalid GitHub App configuration: {e.messages}"
            ) from None

    def identity(self) -> AppIdentity:
        """Build the App identity, reading the private key if needed."""
        if self.private_key is not None:
            key = self.private_key.encode()
        else:
            try:
                key = Path(cast(str, self.private_key_file)).read_bytes()
            except OSError as e:
                raise ConfigurationError(
                    f"Reading private key file: {e}"
                ) from None
        if self.app_id is not None and self.client_id:
            _logger.info(
                f"Both app_id and client_id are set, using app_id "
                f"{self.app_id}"
            )
        return AppIdentity(
            app_id=self.app_id, client_id=self.client_id, private_key=key
        )


# DISCOVERY
class InstallationDiscoverer:
    """Finds the App's installations, authenticated as the App itself."""

    def __init__(
        self,
        cfg: Config,
        app_tokens: TokenSource,
        session: requests.Session | None = None,
    ) -> None:
        self._cfg = cfg
        self._app_tokens = app_tokens
        self._session = session or requests.Session()
        self._api_headers = {"Accept": "application/vnd.github+json"}
        if cfg.api_version:
            self._api_headers["X-GitHub-Api-Version"] = cfg.api_version

    def _headers(self) -> dict[str, str]:
        token = self._app_tokens.token()
        return {
            **self._api_headers,
            "Authorization": f"Bearer {token.access_token}",
        }

    def api_get(self, uri: str) -> Any:
        response = self._session.get(
            f"{self._cfg.api_url}{uri}",
            headers=self._headers(),
            timeout=self._cfg.api_timeout,
        )
        response.raise_for_status()
        return response.json()

    def api_get_paginated(
        self, uri: str, *, per_page: int = 30
    ) -> Generator[dict[str, Any], None, None]:
        per_page = min(max(per_page, 1), 100)
        next_page = 1
        while next_page > 0:
            response = self._session.get(
                f"{self._cfg.api_url}{uri}",
                params={"per_page": per_page, "page": next_page},
                headers=self._headers(),
                timeout=self._cfg.api_timeout,
            )
            response.raise_for_status()
            yield from response.json()

            # check the 'link' header for the 'next' page URL
            if next_url := response.links.get("next", {}).get("url"):
                # extract the page number from the URL that looks like
                # https://api.github.com/some/collections?page=4
                next_page = int(
                    parse_qs(urlparse(next_url).query).get("page", ["0"])[0]
                )
            else:
                next_page = 0

    def list_installations(self) -> list[Installation]:
        uri = "/app/installations"
        _logger.debug("Listing GitHub App installations")
        try:
            items = list(self.api_get_paginated(uri, per_page=100))
            return cast(
                list[Installation], installation_list_schema.load(items)
            )
        except requests.exceptions.RequestException as e:
            raise _upstream_error(uri, e) from None
        except (ma.ValidationError, TypeError) as e:
            raise _malformed_response(uri, e) from None

    def resolve_installation_for_repo(self, owner: str, repo: str) -> int:
        uri = "/repos/{}/{}/installation".format(
            quote(owner, safe=""), quote(repo, safe="")
        )
        _logger.debug(f"Looking up the installation for {owner}/{repo}")
        try:
            installation = cast(
                Installation, installation_schema.load(self.api_get(uri))
            )
        except requests.exceptions.RequestException as e:
            raise _upstream_error(uri, e) from None
        except ma.ValidationError as e:
            raise _malformed_response(uri, e) from None

        _logger.info(
            f"Discovered installation {installation.id} "
            f"({installation.owner_login}) for {owner}/{repo}"
        )
        return installation.id


def _upstream_error(
    uri: str, error: requests.exceptions.RequestException
) -> UpstreamError:
    status = None
    if error.response is not None:
        status = error.response.status_code
        msg = (
            f"GitHub API returned {status} {error.response.reason} "
            f"for {uri}"
        )
    else:
        msg = f"GitHub API request for {uri} failed: {error}"
    _logger.warning(msg)
    return UpstreamError(msg, endpoint=uri, status=status)


def _malformed_response(uri: str, error: Exception) -> UpstreamError:
    msg = f"Unexpected GitHub API response for {uri}: {error}"
    _logger.warning(msg)
    return UpstreamError(msg, endpoint=uri)


# CORE
class TokenManager:
    """Main service object handing out installation tokens per repository.

    Tokens are cached per repository owner, since an App is installed per
    account. With a configured (or the single discovered) installation,
    every owner maps to that installation; otherwise the installation of
    each owner is discovered from the first repository requested for it.
    """

    def __init__(
        self,
        cfg: Config,
        *,
        app_tokens: TokenSource | None = None,
        discoverer: InstallationDiscoverer | None = None,
        cache: TenantTokenCache | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.cfg = cfg
        self._session = session or requests.Session()
        if app_tokens is None:
            app_tokens = ApplicationTokenSource(cfg.identity())
        self._app_tokens = app_tokens
        if discoverer is None:
            discoverer = InstallationDiscoverer(
                cfg, app_tokens, session=self._session
            )
        self._discoverer = discoverer
        self._cache = cache if cache is not None else TenantTokenCache()
        self._installation_id = cfg.installation_id

    @property
    def installation_id(self) -> int | None:
        """Installation used for all owners, if any."""
        return self._installation_id

    def select_installation(self) -> None:
        """Decide at startup which installation(s) tokens come from."""
        if self._installation_id is not None:
            _logger.info(
                f"Using installation {self._installation_id} for all "
                f"repositories"
            )
            return

        repository_discovery = self.cfg.discovery is Discovery.REPOSITORY
        try:
            installations = self._discoverer.list_installations()
        except UpstreamError as e:
            if not repository_discovery:
                raise
            _logger.warning(f"Could not list installations: {e.description}")
            return

        if not installations:
            raise ConfigurationError(
                "No installations found; install the GitHub App on an "
                "account first"
            )
        _logger.info("Available installations:")
        for inst in installations:
            _logger.info(
                f"  - {inst.owner_login} (installation ID: {inst.id})"
            )

        if repository_discovery:
            _logger.info("Installations will be discovered per repository")
        elif len(installations) == 1:
            self._installation_id = installations[0].id
            _logger.info(
                f"Using installation {self._installation_id} for all "
                f"repositories"
            )
        else:
            raise DiscoveryAmbiguityError(installations)

    def token_source_for_repo(
        self, owner: str, repo: str
    ) -> InstallationTokenSource:
        installation_id = self._installation_id
        if installation_id is not None:
            return self._cache.token_for(
                owner, lambda: self._new_source(installation_id)
            )

        def discover() -> InstallationTokenSource:
            return self._new_source(
                self._discoverer.resolve_installation_for_repo(owner, repo)
            )

        return self._cache.token_for(owner, discover)

    def token_for_repo(self, owner: str, repo: str) -> str:
        """Return a currently valid installation token for owner/repo."""
        source = self.token_source_for_repo(owner, repo)
        try:
            return source.token().access_token
        except AuthenticationError as e:
            raise AuthenticationError(
                f"{e.description} (for {owner}/{repo})"
            ) from None

    def _new_source(self, installation_id: int) -> InstallationTokenSource:
        return InstallationTokenSource(
            installation_id,
            self._app_tokens,
            api_url=self.cfg.api_url,
            api_version=self.cfg.api_version,
            timeout=self.cfg.api_timeout,
            session=self._session,
        )


def factory(**options: Any) -> TokenManager:
    """Build the token manager from supplied options and pick installations."""
    config = Config.from_dict(options)
    manager = TokenManager(config)
    manager.select_installation()
    return manager
