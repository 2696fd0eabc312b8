"""
Shared test fixtures for the querygate test suite.

Key fixtures:
- make_token / make_auth_header: HS256 tokens with any claims
- rsa_key, jwks, make_rsa_token: an RSA signing key, its published JWKS and
  RS256 tokens signed with it (OIDC trust model)
- oidc_provider: a fake identity provider served through httpx.MockTransport,
  recording every request it receives
- make_settings: Settings built from keyword arguments, never from the
  environment or a .env file

Testing approach:
- Unit tests (test_auth, test_oidc, test_sql_safety, test_access, test_gate,
  test_oauth_*) call the components directly.
- HTTP tests (test_http_auth, test_oauth_routes) drive Starlette apps with
  TestClient.
- test_tools exercises the MCP tools through FastMCP's in-memory Client and
  the full HTTP stack through the ASGI app.
"""

import datetime

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from jwt.algorithms import RSAAlgorithm

from querygate.config import Settings

TEST_SECRET = "test-secret-key-that-is-long-enough-for-hs256"
TEST_AUDIENCE = "test-service-audience"
TEST_ISSUER = "https://idp.example.com"
TEST_KID = "test-kid"


# ---------------------------------------------------------------------------
# Settings factory
# ---------------------------------------------------------------------------
@pytest.fixture
def make_settings():
    """
    Factory fixture for Settings.

    Usage in tests:
        def test_something(make_settings):
            settings = make_settings(oauth_enabled=True, jwt_secret="s3cret")
    """

    def _make_settings(**overrides) -> Settings:
        return Settings(_env_file=None, **overrides)

    return _make_settings


# ---------------------------------------------------------------------------
# HMAC token factory fixture
# ---------------------------------------------------------------------------
@pytest.fixture
def make_token():
    """
    Factory fixture to generate HS256 tokens for testing.

    Usage in tests:
        def test_something(make_token):
            token = make_token(sub="alice", aud=["other", "test-service-audience"])
            # token is a raw JWT string (not "Bearer ..." prefixed)
    """

    def _make_token(
        sub: str = "test-user",
        aud=TEST_AUDIENCE,
        secret: str = TEST_SECRET,
        algorithm: str = "HS256",
        exp_hours: float = 1.0,
        extra_claims: dict | None = None,
        include_exp: bool = True,
        include_sub: bool = True,
        include_aud: bool = True,
    ) -> str:
        """
        Generate a signed JWT token with the given claims.

        Args:
            sub: Subject claim (who the token identifies)
            aud: Audience claim, a string or a list
            secret: Signing key
            algorithm: JWT algorithm
            exp_hours: Hours until expiration (negative = already expired)
            extra_claims: Additional claims to include in the payload
            include_exp: Whether to include the exp claim
            include_sub: Whether to include the sub claim
            include_aud: Whether to include the aud claim
        """
        now = datetime.datetime.now(datetime.timezone.utc)
        payload: dict = {"iat": now}
        if include_sub:
            payload["sub"] = sub
        if include_aud:
            payload["aud"] = aud
        if include_exp:
            payload["exp"] = now + datetime.timedelta(hours=exp_hours)
        if extra_claims:
            payload.update(extra_claims)

        return jwt.encode(payload, secret, algorithm=algorithm)

    return _make_token


@pytest.fixture
def make_auth_header(make_token):
    """Convenience fixture that returns a full "Bearer <token>" string."""

    def _make_auth_header(**kwargs) -> str:
        return f"Bearer {make_token(**kwargs)}"

    return _make_auth_header


# ---------------------------------------------------------------------------
# RSA keys and OIDC tokens
# ---------------------------------------------------------------------------
@pytest.fixture(scope="session")
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def other_rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def public_jwk(private_key, kid: str) -> dict:
    jwk = RSAAlgorithm.to_jwk(private_key.public_key(), as_dict=True)
    jwk.update({"kid": kid, "alg": "RS256", "use": "sig"})
    return jwk


@pytest.fixture
def jwks(rsa_key):
    return {"keys": [public_jwk(rsa_key, TEST_KID)]}


@pytest.fixture
def make_rsa_token(rsa_key):
    """Factory for RS256 tokens issued by TEST_ISSUER for TEST_AUDIENCE."""

    def _make_rsa_token(
        sub: str = "test-user",
        aud=TEST_AUDIENCE,
        iss: str = TEST_ISSUER,
        kid: str | None = TEST_KID,
        key=None,
        algorithm: str = "RS256",
        exp_hours: float = 1.0,
        extra_claims: dict | None = None,
    ) -> str:
        now = datetime.datetime.now(datetime.timezone.utc)
        payload = {
            "sub": sub,
            "aud": aud,
            "iss": iss,
            "iat": now,
            "exp": now + datetime.timedelta(hours=exp_hours),
        }
        if extra_claims:
            payload.update(extra_claims)
        headers = {"kid": kid} if kid else None
        return jwt.encode(payload, key or rsa_key, algorithm=algorithm, headers=headers)

    return _make_rsa_token


# ---------------------------------------------------------------------------
# Fake OIDC provider
# ---------------------------------------------------------------------------
class FakeProvider:
    """
    Serves discovery and JWKS documents for TEST_ISSUER.

    `jwks` can be replaced between requests to simulate key rotation,
    `discovery_status` set to a non-200 code to make discovery fail, and
    `jwks_status` to make the key set unavailable.
    """

    def __init__(self, jwks: dict):
        self.jwks = jwks
        self.discovery_status = 200
        self.jwks_status = 200
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/.well-known/openid-configuration":
            if self.discovery_status != 200:
                return httpx.Response(self.discovery_status)
            return httpx.Response(
                200,
                json={
                    "issuer": TEST_ISSUER,
                    "authorization_endpoint": f"{TEST_ISSUER}/v1/authorize",
                    "token_endpoint": f"{TEST_ISSUER}/v1/token",
                    "jwks_uri": f"{TEST_ISSUER}/v1/keys",
                },
            )
        if path in ("/v1/keys", "/.well-known/jwks.json"):
            if self.jwks_status != 200:
                return httpx.Response(self.jwks_status)
            return httpx.Response(200, json=self.jwks)
        return httpx.Response(404)

    def count(self, path: str) -> int:
        return sum(1 for request in self.requests if request.url.path == path)

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def oidc_provider(jwks):
    return FakeProvider(jwks)
