"""GitHub App credentials: signed app tokens and installation tokens."""
import dataclasses
from datetime import datetime, timedelta, timezone

from typing_extensions import Protocol

# consider tokens expired this long before they actually do, so a token
# handed out is still valid by the time its request reaches GitHub
EXPIRY_LEEWAY = timedelta(seconds=60)


@dataclasses.dataclass(frozen=True)
class Token:
    """A bearer credential and the moment it stops being accepted."""

    access_token: str
    expires_at: datetime | None = None

    def valid(self, now: datetime | None = None) -> bool:
        if not self.access_token:
            return False
        if self.expires_at is None:
            return True
        if now is None:
            now = datetime.now(tz=timezone.utc)
        return now + EXPIRY_LEEWAY < self.expires_at

    def __repr__(self) -> str:
        # never leak the credential into logs or tracebacks
        return f"<{self.__class__.__name__} expires_at:{self.expires_at}>"


class TokenSource(Protocol):
    """Token sources are objects that hand out a currently valid token,
    refreshing it behind the scenes when needed.
    """

    def token(self) -> Token:
        raise NotImplementedError(
            "This is a protocol definition;"
            " it should not be called directly."
        )
