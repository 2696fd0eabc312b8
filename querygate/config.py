"""
Application configuration loaded from environment variables.

Uses pydantic-settings to define typed configuration that automatically reads
from environment variables (and a local .env file). All configuration is
collected into one frozen Settings object, built once at startup and passed
explicitly to each component's constructor. No other module reads the
environment.

Environment names are unprefixed so existing deployments keep working:
OAUTH_ENABLED, OAUTH_MODE, OAUTH_PROVIDER, JWT_SECRET, OIDC_ISSUER,
OIDC_AUDIENCE, OIDC_CLIENT_ID, OIDC_CLIENT_SECRET, OAUTH_ALLOWED_REDIRECT_URIS,
TRINO_* and the three TRINO_ALLOWED_* allowlists.
"""

import logging
from enum import Enum

from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings

from querygate.errors import ConfigError, ConfigErrorKind

logger = logging.getLogger(__name__)

VERSION = "0.1.0"
DEFAULT_QUERY_TIMEOUT = 30


class ProviderKind(str, Enum):
    """Closed set of token trust models."""

    HMAC = "hmac"
    OIDC = "oidc"


class OAuthMode(str, Enum):
    """native: clients talk to the provider directly. proxy: we mediate the flow."""

    NATIVE = "native"
    PROXY = "proxy"


# Provider tags accepted from older deployments; they all validate via OIDC.
_PROVIDER_ALIASES = {
    "hmac": ProviderKind.HMAC,
    "oidc": ProviderKind.OIDC,
    "okta": ProviderKind.OIDC,
    "google": ProviderKind.OIDC,
    "azure": ProviderKind.OIDC,
}


def parse_list(value: str) -> tuple[str, ...]:
    """Split a comma-separated value, dropping blanks and surrounding spaces."""
    if not value:
        return ()
    return tuple(item.strip() for item in value.split(",") if item.strip())


class Settings(BaseSettings):
    """
    Gateway configuration with environment variable bindings.

    Field names map one-to-one to environment variables (case-insensitive),
    e.g. `jwt_secret` reads JWT_SECRET and `trino_allowed_tables` reads
    TRINO_ALLOWED_TABLES.
    """

    # --- Server settings ---
    mcp_host: str = "0.0.0.0"
    mcp_port: int = 8080
    # Public URL of this server; used as the protected resource identifier
    # and as the issuer of our own metadata in proxy mode.
    mcp_url: str = ""
    log_level: str = "info"

    # --- OAuth / token validation ---
    oauth_enabled: bool = False
    oauth_mode: str = "native"
    oauth_provider: str = "hmac"
    jwt_secret: SecretStr = SecretStr("")
    oidc_issuer: str = ""
    oidc_audience: str = ""
    oidc_client_id: str = ""
    oidc_client_secret: SecretStr = SecretStr("")
    # Single URI: fixed redirect registered with the provider (proxy callback).
    # Several URIs: allowlist of client redirect URIs.
    oauth_allowed_redirect_uris: str = ""
    # Deprecated single-URI form of the above.
    oauth_redirect_uri: str = ""
    # Timeout in seconds for discovery, JWKS and token-exchange calls.
    oauth_http_timeout: float = 10.0
    jwks_cache_ttl: int = 300

    # --- Trino engine ---
    trino_host: str = "localhost"
    trino_port: int = 8080
    trino_user: str = "trino"
    trino_password: SecretStr = SecretStr("")
    trino_catalog: str = "memory"
    trino_schema: str = "default"
    trino_scheme: str = "https"
    trino_ssl_insecure: bool = False
    trino_allow_write_queries: bool = False
    trino_query_timeout: int = DEFAULT_QUERY_TIMEOUT

    # --- Allowlists (comma-separated, dot-delimited qualified names) ---
    trino_allowed_catalogs: str = ""
    trino_allowed_schemas: str = ""
    trino_allowed_tables: str = ""

    model_config = {
        "env_prefix": "",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        # Built once at startup and shared read-only by every component.
        "frozen": True,
    }

    @field_validator("trino_query_timeout", mode="before")
    @classmethod
    def _fallback_timeout(cls, value):
        try:
            timeout = int(value)
        except (TypeError, ValueError):
            logger.warning(
                "Invalid TRINO_QUERY_TIMEOUT %r: not an integer. Using default of %d seconds",
                value,
                DEFAULT_QUERY_TIMEOUT,
            )
            return DEFAULT_QUERY_TIMEOUT
        if timeout <= 0:
            logger.warning(
                "Invalid TRINO_QUERY_TIMEOUT %d: must be positive. Using default of %d seconds",
                timeout,
                DEFAULT_QUERY_TIMEOUT,
            )
            return DEFAULT_QUERY_TIMEOUT
        return timeout

    @property
    def provider_kind(self) -> ProviderKind:
        try:
            return _PROVIDER_ALIASES[self.oauth_provider.strip().lower()]
        except KeyError:
            raise ConfigError(
                ConfigErrorKind.INVALID_PROVIDER,
                f"Unsupported OAUTH_PROVIDER '{self.oauth_provider}' "
                f"(expected one of: {', '.join(sorted(_PROVIDER_ALIASES))})",
            ) from None

    @property
    def mode(self) -> OAuthMode:
        try:
            return OAuthMode(self.oauth_mode.strip().lower())
        except ValueError:
            raise ConfigError(
                ConfigErrorKind.INVALID_MODE,
                f"Unsupported OAUTH_MODE '{self.oauth_mode}' (expected 'native' or 'proxy')",
            ) from None

    @property
    def redirect_uris(self) -> tuple[str, ...]:
        uris = parse_list(self.oauth_allowed_redirect_uris)
        if not uris and self.oauth_redirect_uri:
            logger.warning(
                "OAUTH_REDIRECT_URI is deprecated. Use OAUTH_ALLOWED_REDIRECT_URIS instead."
            )
            uris = parse_list(self.oauth_redirect_uri)
        return uris

    @property
    def public_url(self) -> str:
        if self.mcp_url:
            return self.mcp_url.rstrip("/")
        return f"http://{self.mcp_host}:{self.mcp_port}"

    @property
    def allowed_catalogs(self) -> tuple[str, ...]:
        return parse_list(self.trino_allowed_catalogs)

    @property
    def allowed_schemas(self) -> tuple[str, ...]:
        return parse_list(self.trino_allowed_schemas)

    @property
    def allowed_tables(self) -> tuple[str, ...]:
        return parse_list(self.trino_allowed_tables)
