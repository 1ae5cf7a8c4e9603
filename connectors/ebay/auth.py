"""eBay Authentication Provider.

Two credential modes:
- Auth'n'Auth / user token configured statically (never refreshed)
- OAuth2 application token from the identity endpoint, using the
  refresh_token grant when a refresh token is configured and the
  client_credentials grant otherwise

OAuth tokens are cached process-wide per application id and renewed on the
first use after expiry, or when the Trading API rejects them.
"""

from dataclasses import dataclass
from typing import Dict, Optional
import asyncio

import aiohttp

from connectors.auth import AccessToken, AuthProvider
from core.config import StoreConfig
from core.errors import AuthError, ConfigError, TransportError
from core.observability import get_logger

logger = get_logger(__name__)

TOKEN_ENDPOINT = "https://api.ebay.com/identity/v1/oauth2/token"
DEFAULT_SCOPE = "https://api.ebay.com/oauth/api_scope"

# Process-wide cache: "<app_id>:<grant_type>" -> token
_token_cache: Dict[str, AccessToken] = {}


def clear_token_cache() -> None:
    """Drop every cached OAuth token."""
    _token_cache.clear()


@dataclass
class EbayAuthConfig:
    """Configuration for eBay authentication.

    Attributes:
        app_id: Application (client) ID
        client_secret: Cert ID / client secret
        static_token: Auth'n'Auth token; when set no token exchange happens
        refresh_token: User refresh token for the refresh_token grant
        scope: OAuth2 scope
    """
    app_id: str = ""
    client_secret: str = ""
    static_token: Optional[str] = None
    refresh_token: Optional[str] = None
    scope: str = DEFAULT_SCOPE
    token_endpoint: str = TOKEN_ENDPOINT

    @property
    def grant_type(self) -> str:
        return "refresh_token" if self.refresh_token else "client_credentials"

    @property
    def cache_key(self) -> str:
        return f"{self.app_id}:{self.grant_type}"

    @classmethod
    def from_store(cls, store: StoreConfig) -> "EbayAuthConfig":
        """Build from store credentials.

        Raises:
            ConfigError: Neither a static token nor app id + secret is configured
        """
        creds = store.credentials
        config = cls(
            app_id=creds.get("app_id", ""),
            client_secret=creds.get("client_secret", ""),
            static_token=creds.get("static_token") or None,
            refresh_token=creds.get("refresh_token") or None,
        )
        if not config.static_token and not (config.app_id and config.client_secret):
            raise ConfigError(
                f"{store.label}: set EBAY_AUTHN_AUTH_TOKEN, or EBAY_APP_ID and EBAY_CLIENT_SECRET"
            )
        return config


class EbayAuthProvider(AuthProvider):
    """Authentication provider for eBay.

    Usage:
        auth = EbayAuthProvider(EbayAuthConfig(app_id="...", client_secret="..."))
        await auth.ensure_valid_token()
        headers = auth.get_headers()
    """

    def __init__(self, config: EbayAuthConfig, timeout_seconds: int = 30):
        self.config = config
        self.timeout_seconds = timeout_seconds

    @property
    def static_token(self) -> Optional[str]:
        """Token that goes into RequesterCredentials, if in static mode."""
        return self.config.static_token

    def get_token(self) -> Optional[AccessToken]:
        """Get the cached OAuth token if still valid."""
        token = _token_cache.get(self.config.cache_key)
        if token and not token.is_expired:
            return token
        return None

    async def ensure_valid_token(self) -> None:
        if self.static_token:
            return
        if self.get_token() is None:
            await self._fetch_token()

    async def refresh(self) -> None:
        if self.static_token:
            logger.warning("eBay static token was rejected and cannot be refreshed")
            return
        _token_cache.pop(self.config.cache_key, None)
        await self._fetch_token()

    def get_headers(self) -> Dict[str, str]:
        if self.static_token:
            # Sent in the XML body as RequesterCredentials
            return {}
        token = _token_cache.get(self.config.cache_key)
        if token is None:
            raise AuthError("Not authenticated")
        return {"X-EBAY-API-IAF-TOKEN": token.access_token}

    async def _fetch_token(self) -> AccessToken:
        """Exchange credentials for an access token and cache it.

        Raises:
            AuthError: The identity endpoint refused the request
            TransportError: Network failure or malformed response
        """
        data = {"grant_type": self.config.grant_type, "scope": self.config.scope}
        if self.config.refresh_token:
            data["refresh_token"] = self.config.refresh_token

        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(
                    self.config.token_endpoint,
                    data=data,
                    auth=aiohttp.BasicAuth(self.config.app_id, self.config.client_secret),
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                ) as response:
                    body = await response.text()
                    if response.status != 200:
                        raise AuthError(
                            f"Token request failed: {response.status} - {body[:200]}",
                            response.status,
                            body,
                        )
                    try:
                        token_data = await response.json(content_type=None)
                    except ValueError as e:
                        raise TransportError(f"Malformed token response: {e}", response.status, body[:500])
        except (asyncio.TimeoutError, aiohttp.ClientError) as e:
            raise TransportError(f"Token request failed: {type(e).__name__}: {e}", transient=True) from e

        if not isinstance(token_data, dict) or "access_token" not in token_data:
            raise TransportError("Malformed token response: no access_token")

        token = AccessToken(
            access_token=token_data["access_token"],
            token_type=token_data.get("token_type", "Bearer"),
            expires_in=int(token_data.get("expires_in", 7200)),
        )
        _token_cache[self.config.cache_key] = token
        logger.info(
            "Obtained eBay OAuth token",
            extra_fields={"grant_type": self.config.grant_type, "expires_in": token.expires_in},
        )
        return token
