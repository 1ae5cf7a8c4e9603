"""Authentication providers shared by platform adapters.

Two credential shapes exist across platforms:
- a long-lived static token sent in a header
- an OAuth2 token issued by a token endpoint, cached with an expiry and
  refreshed lazily (see connectors/ebay/auth.py)
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict

from core.errors import ConfigError


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class AccessToken:
    """OAuth2 access token with expiration tracking."""
    access_token: str
    token_type: str = "Bearer"
    expires_in: int = 3600
    obtained_at: datetime = field(default_factory=_utc_now)

    @property
    def expires_at(self) -> datetime:
        """When the token expires."""
        return self.obtained_at + timedelta(seconds=self.expires_in)

    @property
    def is_expired(self) -> bool:
        """Check if token is expired (with 5-minute buffer)."""
        buffer = timedelta(minutes=5)
        return _utc_now() >= (self.expires_at - buffer)


class AuthProvider(ABC):
    """Supplies request headers and keeps them valid."""

    @abstractmethod
    async def ensure_valid_token(self) -> None:
        """Obtain or renew the token if needed.

        Raises:
            AuthError: Token could not be obtained
        """
        pass

    @abstractmethod
    async def refresh(self) -> None:
        """Force a new token after the platform rejected the current one."""
        pass

    @abstractmethod
    def get_headers(self) -> Dict[str, str]:
        """Headers that authenticate a request."""
        pass


class StaticTokenAuth(AuthProvider):
    """A long-lived token placed in a header.

    Usage:
        auth = StaticTokenAuth(token, header_name="X-Shopify-Access-Token", prefix="")
    """

    def __init__(self, token: str, header_name: str = "Authorization", prefix: str = "Bearer"):
        if not token:
            raise ConfigError(f"Missing access token for {header_name}")
        self._token = token
        self.header_name = header_name
        self.prefix = prefix

    async def ensure_valid_token(self) -> None:
        return None

    async def refresh(self) -> None:
        # A static token cannot be renewed; the retried request surfaces the AuthError.
        return None

    def get_headers(self) -> Dict[str, str]:
        value = f"{self.prefix} {self._token}" if self.prefix else self._token
        return {self.header_name: value}
