"""
OIDC provider discovery and JWKS key-set caching.

Discovery reads `{issuer}/.well-known/openid-configuration` to learn the
authorization, token and JWKS endpoints. When discovery fails we fall back to
the conventional Okta-style layout and log a warning instead of failing
startup, so a resource server can still validate tokens against a statically
known JWKS.

The key-set cache is the only shared mutable state in the gateway. Readers
take the current `_KeySetSnapshot` reference without locking; a refresh builds
a brand-new immutable snapshot and swaps the reference in one assignment, so
concurrent validations never observe a half-updated key set.
"""

import logging
import threading
import time
from dataclasses import dataclass

import httpx
import jwt

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderMetadata:
    """Endpoints of an OIDC provider, discovered or derived from the issuer."""

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    jwks_uri: str
    registration_endpoint: str = ""
    discovered: bool = False


class DiscoveryError(Exception):
    """Discovery document could not be fetched or is incomplete."""


class KeySetError(Exception):
    """The JWKS could not be fetched or contained no usable keys."""


def fallback_metadata(issuer: str) -> ProviderMetadata:
    """Conventional endpoint layout used when discovery is unavailable."""
    base = issuer.rstrip("/")
    return ProviderMetadata(
        issuer=base,
        authorization_endpoint=f"{base}/oauth2/v1/authorize",
        token_endpoint=f"{base}/oauth2/v1/token",
        jwks_uri=f"{base}/.well-known/jwks.json",
        registration_endpoint=f"{base}/oauth2/v1/clients",
    )


def discover_provider(issuer: str, client: httpx.Client) -> ProviderMetadata:
    """
    Fetch the provider's OpenID configuration.

    Raises:
        DiscoveryError: On network failure, timeout, non-2xx status, or a
            document missing the endpoints we need.
    """
    url = issuer.rstrip("/") + "/.well-known/openid-configuration"
    try:
        response = client.get(url)
        response.raise_for_status()
        document = response.json()
    except (httpx.HTTPError, ValueError) as exc:
        raise DiscoveryError(f"failed to discover OIDC provider at {url}: {exc}") from exc

    if not isinstance(document, dict):
        raise DiscoveryError(f"discovery document at {url} is not a JSON object")

    missing = [
        key
        for key in ("authorization_endpoint", "token_endpoint", "jwks_uri")
        if not isinstance(document.get(key), str) or not document.get(key)
    ]
    if missing:
        raise DiscoveryError(f"discovery document missing {', '.join(missing)}")

    return ProviderMetadata(
        issuer=str(document.get("issuer") or issuer).rstrip("/"),
        authorization_endpoint=document["authorization_endpoint"],
        token_endpoint=document["token_endpoint"],
        jwks_uri=document["jwks_uri"],
        registration_endpoint=document.get("registration_endpoint") or "",
        discovered=True,
    )


def resolve_provider(issuer: str, client: httpx.Client) -> ProviderMetadata:
    """Discovery with fallback: never raises, logs a warning on failure."""
    try:
        metadata = discover_provider(issuer, client)
    except DiscoveryError as exc:
        logger.warning("OIDC discovery failed, using fallback endpoints: %s", exc)
        return fallback_metadata(issuer)
    logger.info(
        "OIDC provider discovered: issuer=%s, jwks_uri=%s",
        metadata.issuer,
        metadata.jwks_uri,
    )
    return metadata


@dataclass(frozen=True)
class _KeySetSnapshot:
    keys: dict[str, jwt.PyJWK]
    fetched_at: float


class JWKSCache:
    """
    Caches the provider's signing keys with a time-to-live.

    `get_signing_key(kid)` serves from the current snapshot while it is fresh.
    An unknown kid forces one refresh (key rotation), but never more often
    than `min_refresh_interval` seconds to bound the load an attacker can put
    on the provider with random kids.
    """

    def __init__(
        self,
        jwks_uri: str,
        client: httpx.Client,
        ttl: float = 300,
        min_refresh_interval: float = 10,
    ):
        self.jwks_uri = jwks_uri
        self._client = client
        self._ttl = ttl
        self._min_refresh_interval = min_refresh_interval
        self._snapshot: _KeySetSnapshot | None = None
        self._refresh_lock = threading.Lock()

    def _fetch(self) -> _KeySetSnapshot:
        try:
            response = self._client.get(self.jwks_uri)
            response.raise_for_status()
            key_set = jwt.PyJWKSet.from_dict(response.json())
        except (httpx.HTTPError, ValueError, jwt.PyJWKSetError) as exc:
            raise KeySetError(f"failed to fetch JWKS from {self.jwks_uri}: {exc}") from exc

        keys = {key.key_id or "": key for key in key_set.keys}
        logger.info("JWKS refreshed: %d keys from %s", len(keys), self.jwks_uri)
        return _KeySetSnapshot(keys=keys, fetched_at=time.monotonic())

    def _refresh(self, stale: _KeySetSnapshot | None) -> _KeySetSnapshot:
        with self._refresh_lock:
            current = self._snapshot
            # Another thread refreshed while we waited for the lock.
            if current is not stale and current is not None:
                return current
            snapshot = self._fetch()
            self._snapshot = snapshot
            return snapshot

    def _current(self) -> _KeySetSnapshot:
        snapshot = self._snapshot
        if snapshot is None or time.monotonic() - snapshot.fetched_at > self._ttl:
            snapshot = self._refresh(snapshot)
        return snapshot

    def get_signing_key(self, kid: str | None) -> jwt.PyJWK | None:
        """
        Return the key for `kid`, or None if the provider does not publish it.

        A token without a kid is accepted only when the key set has exactly
        one key.

        Raises:
            KeySetError: If the key set cannot be fetched.
        """
        snapshot = self._current()
        key = self._lookup(snapshot, kid)
        if key is not None:
            return key

        if time.monotonic() - snapshot.fetched_at < self._min_refresh_interval:
            return None
        logger.info("Signing key %r not in cached JWKS, refreshing", kid)
        return self._lookup(self._refresh(snapshot), kid)

    @staticmethod
    def _lookup(snapshot: _KeySetSnapshot, kid: str | None) -> jwt.PyJWK | None:
        if kid:
            return snapshot.keys.get(kid)
        if len(snapshot.keys) == 1:
            return next(iter(snapshot.keys.values()))
        return None
