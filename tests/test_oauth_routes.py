"""
HTTP tests for the discovery documents and the proxy-mode relay endpoints
(querygate/oauth/routes.py, querygate/oauth/metadata.py).
"""

from urllib.parse import parse_qs, urlsplit

import httpx
import pytest
from starlette.applications import Starlette
from starlette.testclient import TestClient

from querygate.oauth.relay import OAuthRelay
from querygate.oauth.routes import oauth_routes
from querygate.oauth.state import FlowState
from querygate.oidc import ProviderMetadata

from conftest import TEST_ISSUER

PUBLIC_URL = "https://gateway.example.com"
PROVIDER = ProviderMetadata(
    issuer=TEST_ISSUER,
    authorization_endpoint=f"{TEST_ISSUER}/v1/authorize",
    token_endpoint=f"{TEST_ISSUER}/v1/token",
    jwks_uri=f"{TEST_ISSUER}/v1/keys",
    discovered=True,
)


def _token_handler(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={"access_token": "at", "expires_in": 60})


@pytest.fixture
def make_client(make_settings):
    def _make_client(mode="proxy", redirect_uris="", **overrides) -> TestClient:
        settings = make_settings(
            oauth_enabled=True,
            oauth_mode=mode,
            oauth_provider="oidc",
            oidc_issuer=TEST_ISSUER,
            oidc_audience="querygate",
            oidc_client_id="gateway-client-id",
            oauth_allowed_redirect_uris=redirect_uris,
            mcp_url=PUBLIC_URL,
            **overrides,
        )
        relay = OAuthRelay(
            PROVIDER,
            client_id="gateway-client-id",
            redirect_uris=settings.redirect_uris,
            transport=httpx.MockTransport(_token_handler),
        )
        app = Starlette(routes=oauth_routes(settings, relay=relay, provider=PROVIDER))
        return TestClient(app)

    return _make_client


class TestDiscoveryDocuments:
    def test_proxy_mode_points_at_gateway(self, make_client):
        response = make_client().get("/.well-known/oauth-authorization-server")

        assert response.status_code == 200
        assert response.headers["cache-control"] == "public, max-age=300"
        body = response.json()
        assert body["issuer"] == PUBLIC_URL
        assert body["authorization_endpoint"] == f"{PUBLIC_URL}/oauth/authorize"
        assert body["token_endpoint"] == f"{PUBLIC_URL}/oauth/token"
        assert body["registration_endpoint"] == f"{PUBLIC_URL}/oauth/register"
        assert "S256" in body["code_challenge_methods_supported"]

    def test_native_mode_points_at_provider(self, make_client):
        body = make_client(mode="native").get("/.well-known/oauth-authorization-server").json()

        assert body["issuer"] == TEST_ISSUER
        assert body["authorization_endpoint"] == PROVIDER.authorization_endpoint
        assert body["token_endpoint"] == PROVIDER.token_endpoint
        assert "registration_endpoint" not in body

    def test_protected_resource(self, make_client):
        native = make_client(mode="native").get("/.well-known/oauth-protected-resource").json()
        proxy = make_client().get("/.well-known/oauth-protected-resource").json()

        assert native["resource"] == PUBLIC_URL
        assert native["authorization_servers"] == [TEST_ISSUER]
        assert proxy["authorization_servers"] == [PUBLIC_URL]
        assert proxy["bearer_methods_supported"] == ["header"]

    def test_legacy_metadata(self, make_client):
        body = make_client().get("/.well-known/oauth-metadata").json()

        assert body["oauth_enabled"] is True
        assert body["validation_method"] == "oidc_jwks"
        assert body["jwks_uri"] == PROVIDER.jwks_uri
        assert body["audience"] == "querygate"

    def test_legacy_metadata_authorization_endpoint_follows_mode(self, make_client):
        native = make_client(mode="native").get("/.well-known/oauth-metadata").json()
        proxy = make_client().get("/.well-known/oauth-metadata").json()

        # Native mode has no /oauth/authorize route on the gateway.
        assert native["authorization_endpoint"] == PROVIDER.authorization_endpoint
        assert native["token_endpoint"] == PROVIDER.token_endpoint
        assert proxy["authorization_endpoint"] == f"{PUBLIC_URL}/oauth/authorize"

    def test_legacy_metadata_when_disabled(self, make_settings):
        settings = make_settings(oauth_enabled=False)
        client = TestClient(Starlette(routes=oauth_routes(settings)))

        body = client.get("/.well-known/oauth-metadata").json()
        assert body["oauth_enabled"] is False
        assert body["authentication_methods"] == ["none"]


class TestNativeMode:
    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/oauth/authorize"),
            ("GET", "/oauth/callback"),
            ("POST", "/oauth/token"),
            ("POST", "/oauth/register"),
            ("GET", "/callback"),
        ],
    )
    def test_relay_endpoints_do_not_exist(self, make_client, method, path):
        response = make_client(mode="native").request(method, path)
        assert response.status_code == 404


class TestAuthorizeEndpoint:
    def test_redirects_to_provider(self, make_client):
        response = make_client().get(
            "/oauth/authorize",
            params={
                "client_id": "mcp",
                "redirect_uri": "http://localhost:3000/cb",
                "state": "xyz",
                "code_challenge": "challenge",
                "code_challenge_method": "S256",
            },
            follow_redirects=False,
        )

        assert response.status_code == 307
        location = response.headers["location"]
        assert location.startswith(PROVIDER.authorization_endpoint)
        params = parse_qs(urlsplit(location).query)
        assert params["client_id"] == ["gateway-client-id"]
        assert params["code_challenge"] == ["challenge"]

    def test_rejected_redirect(self, make_client):
        client = make_client(redirect_uris="http://localhost:3000/cb,https://app.example.com/cb")

        response = client.get(
            "/oauth/authorize",
            params={"redirect_uri": "https://evil.example.com/cb", "state": "s"},
            follow_redirects=False,
        )
        assert response.status_code == 400


class TestCallbackEndpoint:
    def test_proxies_back_to_client(self, make_client):
        client = make_client(redirect_uris=f"{PUBLIC_URL}/oauth/callback")
        state = FlowState("xyz", "http://localhost:3000/cb").encode()

        response = client.get(
            "/oauth/callback", params={"code": "c0de", "state": state}, follow_redirects=False
        )

        assert response.status_code == 302
        assert response.headers["location"] == "http://localhost:3000/cb?code=c0de&state=xyz"

    def test_success_page(self, make_client):
        response = make_client().get("/oauth/callback", params={"code": "c0de", "state": "s"})

        assert response.status_code == 200
        assert "Authentication Successful" in response.text
        assert response.headers["cache-control"] == "no-store"
        assert response.headers["x-content-type-options"] == "nosniff"

    def test_provider_error(self, make_client):
        response = make_client().get(
            "/oauth/callback",
            params={"error": "access_denied", "error_description": "denied by user"},
        )

        assert response.status_code == 400
        assert response.text == "Authorization failed: denied by user"

    def test_missing_code(self, make_client):
        response = make_client().get("/oauth/callback", params={"state": "s"})
        assert response.status_code == 400

    def test_root_callback_shim(self, make_client):
        response = make_client().get(
            "/callback", params={"code": "c0de", "state": "s"}, follow_redirects=False
        )

        assert response.status_code == 302
        assert response.headers["location"] == "/oauth/callback?code=c0de&state=s"


class TestTokenEndpoint:
    def test_exchange(self, make_client):
        response = make_client().post(
            "/oauth/token",
            data={"grant_type": "authorization_code", "code": "c0de", "code_verifier": "v"},
        )

        assert response.status_code == 200
        assert response.headers["cache-control"] == "no-store"
        assert response.headers["pragma"] == "no-cache"
        body = response.json()
        assert body["access_token"] == "at"
        assert body["token_type"] == "Bearer"

    def test_unsupported_grant(self, make_client):
        response = make_client().post("/oauth/token", data={"grant_type": "password"})

        assert response.status_code == 400
        assert response.text == "Unsupported grant type"


class TestRegisterEndpoint:
    def test_register(self, make_client):
        response = make_client().post(
            "/oauth/register",
            json={"client_name": "Claude", "redirect_uris": ["http://localhost:3000/cb"]},
        )

        assert response.status_code == 201
        assert response.json()["client_id"] == "gateway-client-id"

    def test_invalid_json(self, make_client):
        response = make_client().post(
            "/oauth/register",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400

    def test_non_object_body(self, make_client):
        response = make_client().post("/oauth/register", json=["a"])
        assert response.status_code == 400
