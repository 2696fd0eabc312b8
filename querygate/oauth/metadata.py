"""
OAuth discovery documents.

- /.well-known/oauth-authorization-server (RFC 8414)
- /.well-known/oauth-protected-resource (RFC 9728)
- /.well-known/oauth-metadata (legacy summary used by older MCP clients)

In native mode the authorization server document points at the identity
provider; in proxy mode it points at the gateway's own /oauth/* endpoints.
"""

from querygate.config import VERSION, OAuthMode, ProviderKind, Settings
from querygate.oidc import ProviderMetadata, fallback_metadata


def _provider_metadata(settings: Settings, provider: ProviderMetadata | None) -> ProviderMetadata:
    return provider or fallback_metadata(settings.oidc_issuer)


def authorization_server_metadata(
    settings: Settings, provider: ProviderMetadata | None = None
) -> dict:
    """RFC 8414 document for the authorization server clients should use."""
    if settings.mode is OAuthMode.PROXY:
        base = settings.public_url
        issuer = base
        authorization_endpoint = f"{base}/oauth/authorize"
        token_endpoint = f"{base}/oauth/token"
        registration_endpoint = f"{base}/oauth/register"
    else:
        upstream = _provider_metadata(settings, provider)
        issuer = upstream.issuer
        authorization_endpoint = upstream.authorization_endpoint
        token_endpoint = upstream.token_endpoint
        registration_endpoint = upstream.registration_endpoint

    document = {
        "issuer": issuer,
        "authorization_endpoint": authorization_endpoint,
        "token_endpoint": token_endpoint,
        "response_types_supported": ["code"],
        "response_modes_supported": ["query"],
        "grant_types_supported": ["authorization_code", "refresh_token"],
        "token_endpoint_auth_methods_supported": [
            "client_secret_basic",
            "client_secret_post",
            "none",
        ],
        "code_challenge_methods_supported": ["plain", "S256"],
        "scopes_supported": ["openid", "profile", "email"],
    }
    if registration_endpoint:
        document["registration_endpoint"] = registration_endpoint
    return document


def protected_resource_metadata(settings: Settings) -> dict:
    """RFC 9728 document describing this server as a protected resource."""
    if settings.mode is OAuthMode.PROXY or not settings.oidc_issuer:
        authorization_server = settings.public_url
    else:
        authorization_server = settings.oidc_issuer.rstrip("/")
    return {
        "resource": settings.public_url,
        "authorization_servers": [authorization_server],
        "bearer_methods_supported": ["header"],
        "resource_signing_alg_values_supported": ["RS256"],
    }


def legacy_metadata(settings: Settings, provider: ProviderMetadata | None = None) -> dict:
    """Summary of the auth configuration, served at /.well-known/oauth-metadata."""
    if not settings.oauth_enabled:
        return {
            "oauth_enabled": False,
            "authentication_methods": ["none"],
            "mcp_version": "1.0.0",
        }

    kind = settings.provider_kind
    document = {
        "oauth_enabled": True,
        "authentication_methods": ["bearer_token"],
        "token_types": ["JWT"],
        "token_validation": "server_side",
        "mcp_version": "1.0.0",
        "server_version": VERSION,
        "provider": settings.oauth_provider,
        "mode": settings.mode.value,
        "authorization_endpoint": f"{settings.public_url}/oauth/authorize",
    }
    if provider is not None or settings.oidc_issuer:
        upstream = _provider_metadata(settings, provider)
        if settings.mode is OAuthMode.NATIVE:
            document["authorization_endpoint"] = upstream.authorization_endpoint
        document["token_endpoint"] = upstream.token_endpoint

    if kind is ProviderKind.HMAC:
        document.update(
            validation_method="hmac_sha256",
            signature_algorithm="HS256",
            requires_secret=True,
        )
    else:
        document.update(
            validation_method="oidc_jwks",
            signature_algorithm="RS256",
            requires_secret=False,
        )
        if settings.oidc_issuer:
            document["issuer"] = settings.oidc_issuer
            document["jwks_uri"] = _provider_metadata(settings, provider).jwks_uri
    if settings.oidc_audience:
        document["audience"] = settings.oidc_audience
    return document
