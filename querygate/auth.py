"""
Bearer token validation for the two supported trust models.

This module handles the Authentication (AuthN) layer:
- Extracts Bearer tokens from the HTTP Authorization header
- Validates the JWT signature against either a shared secret (HMAC) or the
  signing keys published by an external OIDC provider (JWKS)
- Checks token expiration, issuer and audience
- Turns the verified claims into an immutable IdentityClaims value

Audience binding is mandatory for both trust models: a token minted for
another service that happens to share our secret or our identity provider
must not be accepted here.

Token structure (JWT payload):
    {
        "sub": "user-or-agent-id",          # Who is making the request
        "aud": "querygate" | ["querygate"], # Which service the token is for
        "iss": "https://idp.example.com",   # Who issued it (OIDC)
        "exp": 1738800000                   # When this token expires
    }
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone

import httpx
import jwt

from querygate.config import ProviderKind, Settings
from querygate.errors import AuthError, AuthErrorKind, ConfigError, ConfigErrorKind
from querygate.oidc import JWKSCache, KeySetError, ProviderMetadata, resolve_provider

logger = logging.getLogger(__name__)

HMAC_ALGORITHMS = ["HS256"]
OIDC_ALGORITHMS = ["RS256", "RS384", "RS512"]


@dataclass(frozen=True)
class Credentials:
    """
    Everything a validator needs, taken from Settings once at startup.

    Attributes:
        provider: Which trust model to build a validator for
        secret: Shared HMAC signing secret (HMAC only)
        issuer: OIDC issuer URL (OIDC only)
        audience: Expected "aud" value; required by both trust models
        client_id: Our OAuth client id at the provider (OIDC, proxy mode)
        http_timeout: Seconds allowed for discovery and JWKS calls
        jwks_cache_ttl: Seconds a fetched key set stays fresh
    """

    provider: ProviderKind
    secret: str = ""
    issuer: str = ""
    audience: str = ""
    client_id: str = ""
    http_timeout: float = 10.0
    jwks_cache_ttl: int = 300

    @classmethod
    def from_settings(cls, settings: Settings) -> "Credentials":
        return cls(
            provider=settings.provider_kind,
            secret=settings.jwt_secret.get_secret_value(),
            issuer=settings.oidc_issuer,
            audience=settings.oidc_audience,
            client_id=settings.oidc_client_id,
            http_timeout=settings.oauth_http_timeout,
            jwks_cache_ttl=settings.jwks_cache_ttl,
        )


@dataclass(frozen=True)
class IdentityClaims:
    """
    Validated identity extracted from a token.

    Frozen: once validation produced it, nothing downstream can alter the
    claims. Lives for the duration of one request.
    """

    subject: str
    audience: tuple[str, ...]
    issuer: str = ""
    expires_at: datetime | None = None
    issued_at: datetime | None = None
    email: str | None = None
    name: str | None = None
    scopes: tuple[str, ...] = ()


def extract_bearer_token(authorization_header: str | None) -> str:
    """
    Extract the token from an "Authorization: Bearer <token>" header.

    The scheme comparison is case-insensitive (RFC 6750).

    Raises:
        AuthError: MISSING_TOKEN when there is no header, MALFORMED_TOKEN
            when it is not a Bearer credential.
    """
    if not authorization_header:
        raise AuthError(AuthErrorKind.MISSING_TOKEN, "Missing Authorization header")

    parts = authorization_header.strip().split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1].strip():
        raise AuthError(
            AuthErrorKind.MALFORMED_TOKEN,
            "Invalid Authorization header format, expected 'Bearer <token>'",
        )
    return parts[1].strip()


def check_audience(payload: dict, expected: str) -> tuple[str, ...]:
    """
    Verify the "aud" claim and return it normalised to a tuple.

    A string claim must equal `expected`; a list claim must contain it.

    Raises:
        AuthError: AUDIENCE_MISMATCH for a missing, wrong or ill-typed claim.
    """
    if "aud" not in payload or payload["aud"] is None:
        raise AuthError(
            AuthErrorKind.AUDIENCE_MISMATCH,
            "audience validation failed: missing audience claim",
        )

    aud = payload["aud"]
    if isinstance(aud, str):
        if aud != expected:
            raise AuthError(
                AuthErrorKind.AUDIENCE_MISMATCH,
                f"audience validation failed: invalid audience: expected {expected}, got {aud}",
            )
        return (aud,)

    if isinstance(aud, list) and all(isinstance(item, str) for item in aud):
        if expected not in aud:
            raise AuthError(
                AuthErrorKind.AUDIENCE_MISMATCH,
                f"audience validation failed: invalid audience: "
                f"expected {expected} not found in audience list",
            )
        return tuple(aud)

    raise AuthError(
        AuthErrorKind.AUDIENCE_MISMATCH,
        "audience validation failed: invalid audience claim type",
    )


def _extract_scopes(payload: dict) -> tuple[str, ...]:
    # OAuth servers send "scope" as a space-delimited string; some providers
    # (Okta) send "scp" as a list.
    for claim in ("scope", "scp"):
        value = payload.get(claim)
        if isinstance(value, str):
            return tuple(value.split())
        if isinstance(value, list):
            return tuple(item for item in value if isinstance(item, str))
    return ()


def _timestamp(value) -> datetime | None:
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    return None


def _optional_str(value) -> str | None:
    return value if isinstance(value, str) and value else None


def _decode(token: str, key, algorithms: list[str]) -> dict:
    """
    Run PyJWT's signature and expiry checks, mapping its errors to AuthError.

    Audience is verified separately by check_audience so that the error
    detail distinguishes a missing claim from a wrong one.
    """
    try:
        return jwt.decode(
            token,
            key,
            algorithms=algorithms,
            options={"require": ["exp", "sub"], "verify_aud": False},
        )
    except jwt.ExpiredSignatureError:
        raise AuthError(AuthErrorKind.EXPIRED, "Token has expired") from None
    except jwt.InvalidSignatureError:
        raise AuthError(AuthErrorKind.BAD_SIGNATURE, "Token signature is invalid") from None
    except jwt.InvalidTokenError as e:
        # Malformed structure, missing required claims, bad "iat"/"nbf", etc.
        raise AuthError(AuthErrorKind.MALFORMED_TOKEN, f"Invalid token: {e}") from None


def _claims_from_payload(payload: dict, audience: tuple[str, ...]) -> IdentityClaims:
    return IdentityClaims(
        subject=str(payload["sub"]),
        audience=audience,
        issuer=payload.get("iss", "") if isinstance(payload.get("iss"), str) else "",
        expires_at=_timestamp(payload.get("exp")),
        issued_at=_timestamp(payload.get("iat")),
        email=_optional_str(payload.get("email")),
        name=_optional_str(payload.get("name")),
        scopes=_extract_scopes(payload),
    )


class TokenValidator(ABC):
    """Common interface of the trust models: token in, IdentityClaims or AuthError out."""

    kind: ProviderKind

    @abstractmethod
    def validate_token(self, token: str) -> IdentityClaims:
        """Verify `token` and return its claims. Raises AuthError."""


class HMACValidator(TokenValidator):
    """
    Validates HS256 tokens signed with a shared secret.

    The signing secret and the expected audience are both required: without an
    audience any token signed with the same secret, for any service, would be
    accepted.
    """

    kind = ProviderKind.HMAC

    def __init__(self, secret: str, audience: str):
        if not secret:
            raise ConfigError(
                ConfigErrorKind.MISSING_SECRET, "JWT_SECRET is required for HMAC provider"
            )
        if not audience:
            raise ConfigError(
                ConfigErrorKind.MISSING_AUDIENCE, "JWT audience is required for HMAC provider"
            )
        self._secret = secret
        self.audience = audience

    def validate_token(self, token: str) -> IdentityClaims:
        payload = _decode(token, self._secret, HMAC_ALGORITHMS)
        audience = check_audience(payload, self.audience)
        return _claims_from_payload(payload, audience)


class OIDCValidator(TokenValidator):
    """
    Validates RS256/RS384/RS512 tokens issued by an external OIDC provider.

    Construction discovers the provider (with the conventional fallback
    layout) and sets up the JWKS cache. Keys are fetched lazily on the first
    validation.
    """

    kind = ProviderKind.OIDC

    def __init__(
        self,
        issuer: str,
        audience: str,
        http_client: httpx.Client | None = None,
        http_timeout: float = 10.0,
        jwks_cache_ttl: int = 300,
        jwks_min_refresh_interval: float = 10,
    ):
        if not issuer:
            raise ConfigError(
                ConfigErrorKind.MISSING_ISSUER, "OIDC_ISSUER is required for OIDC provider"
            )
        if not audience:
            raise ConfigError(
                ConfigErrorKind.MISSING_AUDIENCE, "OIDC_AUDIENCE is required for OIDC provider"
            )
        self.issuer = issuer.rstrip("/")
        self.audience = audience
        self._http = http_client or httpx.Client(timeout=http_timeout)
        self.provider: ProviderMetadata = resolve_provider(self.issuer, self._http)
        self.jwks = JWKSCache(
            self.provider.jwks_uri,
            self._http,
            ttl=jwks_cache_ttl,
            min_refresh_interval=jwks_min_refresh_interval,
        )

    def validate_token(self, token: str) -> IdentityClaims:
        try:
            header = jwt.get_unverified_header(token)
        except jwt.InvalidTokenError as e:
            raise AuthError(AuthErrorKind.MALFORMED_TOKEN, f"Invalid token: {e}") from None

        algorithm = header.get("alg")
        if algorithm not in OIDC_ALGORITHMS:
            raise AuthError(
                AuthErrorKind.BAD_SIGNATURE, f"Unsupported signing algorithm: {algorithm}"
            )

        try:
            signing_key = self.jwks.get_signing_key(header.get("kid"))
        except KeySetError as e:
            logger.error("Signing keys unavailable: %s", e)
            raise AuthError(AuthErrorKind.KEYS_UNAVAILABLE, str(e)) from None
        if signing_key is None:
            raise AuthError(
                AuthErrorKind.BAD_SIGNATURE, f"No signing key found for kid {header.get('kid')!r}"
            )

        payload = _decode(token, signing_key.key, [algorithm])

        token_issuer = payload.get("iss")
        if not isinstance(token_issuer, str) or token_issuer.rstrip("/") != self.issuer:
            raise AuthError(
                AuthErrorKind.ISSUER_MISMATCH,
                f"issuer validation failed: expected {self.issuer}, got {token_issuer}",
            )

        audience = check_audience(payload, self.audience)
        return _claims_from_payload(payload, audience)


def create_validator(
    credentials: Credentials, http_client: httpx.Client | None = None
) -> TokenValidator:
    """
    Build the validator for the configured trust model.

    Raises:
        ConfigError: If fields required by the chosen model are missing.
    """
    if credentials.provider is ProviderKind.HMAC:
        validator: TokenValidator = HMACValidator(credentials.secret, credentials.audience)
    else:
        validator = OIDCValidator(
            credentials.issuer,
            credentials.audience,
            http_client=http_client,
            http_timeout=credentials.http_timeout,
            jwks_cache_ttl=credentials.jwks_cache_ttl,
        )
    logger.info(
        "Token validator configured: provider=%s, audience=%s",
        credentials.provider.value,
        credentials.audience,
    )
    return validator
