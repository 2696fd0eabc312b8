"""
OAuth 2.0 authorization-code + PKCE relay (proxy mode).

In proxy mode the gateway stands between the MCP client and the identity
provider, using its own client id/secret with the provider:

    client --/oauth/authorize--> relay --307--> provider
    provider --/oauth/callback--> relay --302--> client redirect (code, state)
    client --/oauth/token--> relay --POST token endpoint--> provider

One login attempt moves through the FlowPhase values below. The relay keeps
no per-attempt state between requests: the client's context rides inside the
encoded `state` parameter, and the PKCE verifier arrives with the token
request.
"""

import logging
import time
from dataclasses import asdict, dataclass
from enum import Enum
from urllib.parse import urlencode, urlsplit, urlunsplit

import httpx

from querygate.errors import FlowError, FlowErrorKind
from querygate.logs import fingerprint, preview
from querygate.oauth.pkce import PKCETransport
from querygate.oauth.state import FlowState, parse_state
from querygate.oidc import ProviderMetadata

logger = logging.getLogger(__name__)

AUTHORIZATION_SCOPES = "openid profile email"


class FlowPhase(str, Enum):
    IDLE = "idle"
    AUTHORIZATION_ISSUED = "authorization_issued"
    CALLBACK_RECEIVED = "callback_received"
    TOKEN_EXCHANGED = "token_exchanged"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class AuthorizeResult:
    url: str
    phase: FlowPhase = FlowPhase.AUTHORIZATION_ISSUED


@dataclass(frozen=True)
class CallbackResult:
    """`redirect_url` is set when the code is proxied back to the client; None means show the completion page."""

    phase: FlowPhase
    redirect_url: str | None = None


@dataclass(frozen=True)
class TokenResponse:
    access_token: str
    token_type: str = "Bearer"
    expires_in: int = 0
    refresh_token: str | None = None
    id_token: str | None = None
    scope: str | None = None
    phase: FlowPhase = FlowPhase.TOKEN_EXCHANGED

    def to_dict(self) -> dict:
        body = asdict(self)
        body.pop("phase")
        return {key: value for key, value in body.items() if value is not None}


def is_absolute_http_url(value: str) -> bool:
    parts = urlsplit(value)
    return parts.scheme in ("http", "https") and bool(parts.netloc)


def append_query(url: str, params: dict[str, str]) -> str:
    """Add `params` to `url`, keeping any query it already has."""
    parts = urlsplit(url)
    encoded = urlencode(params)
    query = f"{parts.query}&{encoded}" if parts.query else encoded
    return urlunsplit(parts._replace(query=query))


class OAuthRelay:
    """
    The three relay operations plus dynamic client registration.

    Redirect URI configuration (OAUTH_ALLOWED_REDIRECT_URIS):
    - exactly one URI: the fixed redirect registered with the provider. The
      client's redirect is carried in the state and restored at callback.
    - several URIs: an allowlist the client's redirect must belong to.
    - none: the client's redirect is passed through.
    """

    def __init__(
        self,
        provider: ProviderMetadata,
        client_id: str,
        client_secret: str = "",
        redirect_uris: tuple[str, ...] = (),
        http_timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.provider = provider
        self.client_id = client_id
        self._client_secret = client_secret
        self.redirect_uris = tuple(redirect_uris)
        self._http_timeout = http_timeout
        self._transport = transport

    @property
    def fixed_redirect_uri(self) -> str:
        return self.redirect_uris[0] if len(self.redirect_uris) == 1 else ""

    @property
    def allowed_redirect_uris(self) -> tuple[str, ...]:
        return self.redirect_uris if len(self.redirect_uris) > 1 else ()

    def _check_redirect(self, redirect_uri: str) -> None:
        allowed = self.allowed_redirect_uris
        if allowed and redirect_uri not in allowed:
            logger.warning("Rejected redirect URI not in allowlist: %s", redirect_uri)
            raise FlowError(
                FlowErrorKind.INVALID_REDIRECT, f"redirect_uri not allowed: {redirect_uri}"
            )

    # --- Authorize ---

    def authorize(
        self,
        client_id: str,
        redirect_uri: str,
        state: str,
        code_challenge: str = "",
        code_challenge_method: str = "",
    ) -> AuthorizeResult:
        """
        Build the provider authorization URL for a client's request.

        Raises:
            FlowError: INVALID_REDIRECT if the client's redirect URI is not
                in the configured allowlist.
        """
        logger.info(
            "Authorization request: client_id=%s, redirect_uri=%s, code_challenge=%s",
            client_id,
            redirect_uri,
            preview(code_challenge),
        )
        self._check_redirect(redirect_uri)

        outgoing_redirect = redirect_uri
        outgoing_state = state
        if self.fixed_redirect_uri:
            outgoing_redirect = self.fixed_redirect_uri
            outgoing_state = FlowState(state=state, redirect=redirect_uri).encode()
            logger.info(
                "Using fixed redirect URI %s (client asked for %s), encoded state length %d",
                outgoing_redirect,
                redirect_uri,
                len(outgoing_state),
            )

        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": outgoing_redirect,
            "scope": AUTHORIZATION_SCOPES,
            "state": outgoing_state,
            "access_type": "offline",
        }
        if code_challenge:
            params["code_challenge"] = code_challenge
            params["code_challenge_method"] = code_challenge_method

        return AuthorizeResult(url=append_query(self.provider.authorization_endpoint, params))

    # --- Callback ---

    def callback(
        self, code: str, state: str, error: str = "", error_description: str = ""
    ) -> CallbackResult:
        """
        Handle the provider's redirect back to us.

        Raises:
            FlowError: PROVIDER_DENIED when the provider reported an error,
                MISSING_CODE without a code, INVALID_REDIRECT when the decoded
                client redirect is not an allowed absolute http(s) URL.
        """
        logger.info(
            "Callback received: code=%s, state=%s, error=%s", preview(code), preview(state), error
        )
        if error:
            logger.warning("Authorization error from provider: %s - %s", error, error_description)
            raise FlowError(
                FlowErrorKind.PROVIDER_DENIED,
                f"Authorization failed: {error_description or error}",
            )
        if not code:
            raise FlowError(FlowErrorKind.MISSING_CODE, "No authorization code received")

        if self.fixed_redirect_uri:
            flow_state = parse_state(state)
            if flow_state is not None:
                if not is_absolute_http_url(flow_state.redirect):
                    raise FlowError(
                        FlowErrorKind.INVALID_REDIRECT,
                        f"invalid client redirect in state: {flow_state.redirect}",
                    )
                self._check_redirect(flow_state.redirect)
                logger.info("Proxying callback to original client: %s", flow_state.redirect)
                return CallbackResult(
                    phase=FlowPhase.CALLBACK_RECEIVED,
                    redirect_url=append_query(
                        flow_state.redirect, {"code": code, "state": flow_state.state}
                    ),
                )
            logger.info("State could not be decoded, showing completion page")

        logger.info("Authorization successful: code=%s", preview(code))
        return CallbackResult(phase=FlowPhase.SUCCEEDED)

    # --- Token exchange ---

    def _client(self, code_verifier: str) -> httpx.AsyncClient:
        base = self._transport or httpx.AsyncHTTPTransport()
        transport = PKCETransport(code_verifier, base) if code_verifier else base
        return httpx.AsyncClient(transport=transport, timeout=self._http_timeout)

    async def exchange(
        self,
        grant_type: str,
        code: str,
        redirect_uri: str = "",
        client_id: str = "",
        code_verifier: str = "",
    ) -> TokenResponse:
        """
        Exchange an authorization code at the provider's token endpoint.

        Raises:
            FlowError: UNSUPPORTED_GRANT, MISSING_CODE (400) or
                EXCHANGE_FAILED (500) on any provider or transport failure.
        """
        logger.info(
            "Token request: grant_type=%s, client_id=%s, redirect_uri=%s, code=%s",
            grant_type,
            client_id,
            redirect_uri,
            preview(code),
        )
        if grant_type != "authorization_code":
            raise FlowError(FlowErrorKind.UNSUPPORTED_GRANT, "Unsupported grant type")
        if not code:
            raise FlowError(FlowErrorKind.MISSING_CODE, "Missing authorization code")

        form = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.fixed_redirect_uri or redirect_uri,
            "client_id": self.client_id,
        }
        if self._client_secret:
            form["client_secret"] = self._client_secret

        try:
            async with self._client(code_verifier) as client:
                response = await client.post(
                    self.provider.token_endpoint,
                    data=form,
                    headers={"Accept": "application/json"},
                )
            received_at = time.monotonic()
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Token exchange failed: %s", exc)
            raise FlowError(
                FlowErrorKind.EXCHANGE_FAILED, "Token exchange failed", status_code=500
            ) from exc

        if not isinstance(payload, dict) or not payload.get("access_token"):
            logger.error("Token exchange failed: provider response has no access_token")
            raise FlowError(FlowErrorKind.EXCHANGE_FAILED, "Token exchange failed", status_code=500)

        token = TokenResponse(
            access_token=payload["access_token"],
            token_type=payload.get("token_type") or "Bearer",
            expires_in=_remaining_seconds(payload.get("expires_in"), received_at),
            refresh_token=payload.get("refresh_token") or None,
            id_token=payload.get("id_token") or None,
            scope=payload.get("scope") or None,
        )
        logger.info(
            "Token exchange successful",
            extra={
                "auth_data": {
                    "access_token_fingerprint": fingerprint(token.access_token),
                    "has_refresh_token": token.refresh_token is not None,
                    "has_id_token": token.id_token is not None,
                }
            },
        )
        return token

    # --- Dynamic client registration ---

    def register_client(self, body) -> dict:
        """
        Answer a dynamic registration request with our own public client id.

        Raises:
            FlowError: INVALID_REQUEST if the body is not a JSON object.
        """
        if not isinstance(body, dict):
            raise FlowError(FlowErrorKind.INVALID_REQUEST, "Invalid request body")

        logger.info("Client registration request: client_name=%s", body.get("client_name"))
        response = {
            "client_id": self.client_id,
            "client_secret": "",
            "client_id_issued_at": int(time.time()),
            "grant_types": ["authorization_code", "refresh_token"],
            "response_types": ["code"],
            "token_endpoint_auth_method": "none",
            "application_type": "native",
            "client_name": body.get("client_name"),
        }
        if self.fixed_redirect_uri:
            response["redirect_uris"] = [self.fixed_redirect_uri]
        else:
            response["redirect_uris"] = body.get("redirect_uris")
        return response


def _remaining_seconds(expires_in, received_at: float) -> int:
    if isinstance(expires_in, bool) or not isinstance(expires_in, (int, float)):
        return 0
    elapsed = time.monotonic() - received_at
    return max(0, round(expires_in - elapsed))
