"""Map Werkzeug exceptions to domain specific exceptions.

These exceptions should be used in all domain (non-Flask specific) code
to avoid tying in to Flask / Werkzeug where it is not needed. Errors that
can only happen while starting up are plain exceptions; they never reach
an HTTP client.
"""
from collections.abc import Sequence
from typing import TYPE_CHECKING

from werkzeug.exceptions import InternalServerError, NotFound

if TYPE_CHECKING:
    from pklproxy.schema import Installation


class ConfigurationError(ValueError):
    """Malformed or contradictory GitHub App configuration."""


class DiscoveryAmbiguityError(ConfigurationError):
    """The App is installed more than once and nothing picks one."""

    def __init__(self, installations: Sequence["Installation"]) -> None:
        self.installations = list(installations)
        listing = ", ".join(
            f"{i.owner_login} (installation ID: {i.id})"
            for i in self.installations
        )
        super().__init__(
            f"Found {len(self.installations)} installations of the GitHub "
            f"App: {listing}. Set 'installation_id' to pick one or set "
            f"'discovery' to 'repository' to discover them per repository."
        )


class UpstreamError(InternalServerError):
    """GitHub API call failed or returned something we can't use."""

    def __init__(
        self,
        description: str,
        *,
        endpoint: str | None = None,
        status: int | None = None,
    ) -> None:
        super().__init__(description)
        self.endpoint = endpoint
        self.status = status


class AuthenticationError(InternalServerError):
    """Failed to obtain or refresh an installation token."""


class AuthorizationError(InternalServerError):
    """An outbound call was attempted without a tenant to authorize it."""


class NotFoundError(NotFound):
    """No release asset matches the requested name."""

    description = "asset not found"


__all__ = [
    "ConfigurationError",
    "DiscoveryAmbiguityError",
    "UpstreamError",
    "AuthenticationError",
    "AuthorizationError",
    "NotFoundError",
]
