"""Runtime configuration.

Settings and store credentials are read from the environment. A ``.env``
file at the repository root is loaded first if it exists; variables already
present in the process environment take precedence.

Store discovery:
- eBay (first): EBAY_AUTHN_AUTH_TOKEN / EBAY_USER_TOKEN / OAUTH_TOKEN for a
  static token, or EBAY_APP_ID + EBAY_CLIENT_SECRET (+ EBAY_REFRESH_TOKEN)
  for OAuth. Store name from EBAY_STORE_NAME (default "eBay").
- Shopify: one store per ``<NAME>_STORE=<shop domain>`` variable, with its
  Admin API token in ``<NAME>_ACCESS_TOKEN``.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from dotenv import load_dotenv

from core.errors import ConfigError

REPO_ROOT = Path(__file__).resolve().parents[1]

env_path = REPO_ROOT / ".env"
if env_path.exists():
    load_dotenv(env_path)

DEFAULT_DB_PATH = REPO_ROOT / "commerce.db"

EBAY_STATIC_TOKEN_VARS = ("EBAY_AUTHN_AUTH_TOKEN", "EBAY_USER_TOKEN", "OAUTH_TOKEN")

# <NAME>_STORE variables that are not Shopify shop domains
_RESERVED_STORE_VARS = {"EBAY_STORE"}


@dataclass
class StoreConfig:
    """Configuration for one store on one platform.

    Attributes:
        platform_type: Registered adapter type ("shopify", "ebay")
        platform_name: Human store name, unique per platform type
        credentials: Tokens / keys the adapter needs
        options: Platform-specific settings (shop domain, page size, ...)
    """
    platform_type: str
    platform_name: str
    credentials: Dict[str, str] = field(default_factory=dict)
    options: Dict[str, str] = field(default_factory=dict)

    @property
    def label(self) -> str:
        return f"{self.platform_type}:{self.platform_name}"


@dataclass
class Settings:
    """Process-wide settings."""
    db_path: Path = DEFAULT_DB_PATH
    sync_interval_seconds: int = 86400
    scheduler_enabled: bool = True
    initial_sync_days: int = 60
    incremental_window_hours: int = 24
    http_timeout_seconds: int = 30
    max_retries: int = 3
    store_timeout_seconds: int = 1800
    log_level: str = "INFO"
    log_json: bool = False
    stores: List[StoreConfig] = field(default_factory=list)


def _get_int(env: Mapping[str, str], name: str, default: int, minimum: int = 0) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


def _get_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _clean(value: Optional[str]) -> str:
    """Strip whitespace and surrounding quotes copied into env files."""
    if not value:
        return ""
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        value = value[1:-1]
    return value


def discover_stores(env: Optional[Mapping[str, str]] = None) -> List[StoreConfig]:
    """Build the ordered store list from environment variables.

    Returns:
        eBay store first (if configured), then Shopify stores sorted by name
    """
    env = os.environ if env is None else env
    stores: List[StoreConfig] = []

    static_token = next((_clean(env.get(k)) for k in EBAY_STATIC_TOKEN_VARS if _clean(env.get(k))), "")
    app_id = _clean(env.get("EBAY_APP_ID"))
    client_secret = _clean(env.get("EBAY_CLIENT_SECRET"))
    if static_token or (app_id and client_secret):
        credentials = {"app_id": app_id, "client_secret": client_secret}
        if static_token:
            credentials["static_token"] = static_token
        refresh_token = _clean(env.get("EBAY_REFRESH_TOKEN"))
        if refresh_token:
            credentials["refresh_token"] = refresh_token
        stores.append(StoreConfig(
            platform_type="ebay",
            platform_name=_clean(env.get("EBAY_STORE_NAME")) or "eBay",
            credentials=credentials,
        ))

    shop_names = sorted(
        key[: -len("_STORE")]
        for key in env.keys()
        if key.endswith("_STORE") and key not in _RESERVED_STORE_VARS and len(key) > len("_STORE")
    )
    for name in shop_names:
        domain = _clean(env.get(f"{name}_STORE"))
        if not domain:
            continue
        stores.append(StoreConfig(
            platform_type="shopify",
            platform_name=name.replace("_", " ").title(),
            credentials={"access_token": _clean(env.get(f"{name}_ACCESS_TOKEN"))},
            options={"shop_domain": domain},
        ))

    return stores


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Read settings and stores from the environment.

    Raises:
        ConfigError: If a numeric setting is malformed
    """
    env = os.environ if env is None else env
    db_path = _clean(env.get("COMMERCE_DB_PATH"))

    return Settings(
        db_path=Path(db_path) if db_path else DEFAULT_DB_PATH,
        sync_interval_seconds=_get_int(env, "SYNC_INTERVAL_SECONDS", 86400, minimum=1),
        scheduler_enabled=_get_bool(env, "SYNC_SCHEDULER_ENABLED", True),
        initial_sync_days=_get_int(env, "INITIAL_SYNC_DAYS", 60, minimum=1),
        incremental_window_hours=_get_int(env, "INCREMENTAL_WINDOW_HOURS", 24, minimum=1),
        http_timeout_seconds=_get_int(env, "HTTP_TIMEOUT_SECONDS", 30, minimum=1),
        max_retries=_get_int(env, "HTTP_MAX_RETRIES", 3),
        store_timeout_seconds=_get_int(env, "STORE_SYNC_TIMEOUT_SECONDS", 1800, minimum=1),
        log_level=_clean(env.get("LOG_LEVEL")) or "INFO",
        log_json=_get_bool(env, "LOG_JSON", False),
        stores=discover_stores(env),
    )
