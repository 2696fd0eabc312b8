"""
HTTP surface of the OAuth relay and the discovery documents.

The discovery documents are always served. The relay endpoints (authorize,
callback, token, register and the /callback shim) are only mounted in proxy
mode: in native mode they do not exist and answer 404.
"""

import logging

from starlette.requests import Request
from starlette.responses import (
    HTMLResponse,
    JSONResponse,
    PlainTextResponse,
    RedirectResponse,
    Response,
)
from starlette.routing import Route

from querygate.config import OAuthMode, Settings
from querygate.errors import FlowError
from querygate.oauth import metadata
from querygate.oauth.relay import OAuthRelay
from querygate.oidc import ProviderMetadata

logger = logging.getLogger(__name__)

METADATA_HEADERS = {"Cache-Control": "public, max-age=300"}
TOKEN_HEADERS = {"Cache-Control": "no-store", "Pragma": "no-cache"}
PAGE_HEADERS = {"Cache-Control": "no-store", "X-Content-Type-Options": "nosniff"}

SUCCESS_PAGE = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1">
    <title>OAuth2 Success</title>
</head>
<body>
    <h2>Authentication Successful!</h2>
    <p>You have been successfully authenticated.</p>
    <p>You can now close this window and return to your application.</p>
</body>
</html>"""


def _flow_error_response(error: FlowError) -> Response:
    return PlainTextResponse(error.message, status_code=error.status_code)


def discovery_routes(settings: Settings, provider: ProviderMetadata | None) -> list[Route]:
    async def authorization_server(request: Request) -> Response:
        return JSONResponse(
            metadata.authorization_server_metadata(settings, provider), headers=METADATA_HEADERS
        )

    async def protected_resource(request: Request) -> Response:
        return JSONResponse(metadata.protected_resource_metadata(settings), headers=METADATA_HEADERS)

    async def legacy(request: Request) -> Response:
        return JSONResponse(metadata.legacy_metadata(settings, provider), headers=METADATA_HEADERS)

    return [
        Route("/.well-known/oauth-authorization-server", authorization_server, methods=["GET"]),
        Route("/.well-known/oauth-protected-resource", protected_resource, methods=["GET"]),
        Route("/.well-known/oauth-metadata", legacy, methods=["GET"]),
    ]


def relay_routes(relay: OAuthRelay) -> list[Route]:
    async def authorize(request: Request) -> Response:
        params = request.query_params
        try:
            result = relay.authorize(
                client_id=params.get("client_id", ""),
                redirect_uri=params.get("redirect_uri", ""),
                state=params.get("state", ""),
                code_challenge=params.get("code_challenge", ""),
                code_challenge_method=params.get("code_challenge_method", ""),
            )
        except FlowError as e:
            return _flow_error_response(e)
        return RedirectResponse(result.url, status_code=307)

    async def callback(request: Request) -> Response:
        params = request.query_params
        try:
            result = relay.callback(
                code=params.get("code", ""),
                state=params.get("state", ""),
                error=params.get("error", ""),
                error_description=params.get("error_description", ""),
            )
        except FlowError as e:
            return _flow_error_response(e)
        if result.redirect_url:
            return RedirectResponse(result.redirect_url, status_code=302)
        return HTMLResponse(SUCCESS_PAGE, headers=PAGE_HEADERS)

    async def token(request: Request) -> Response:
        form = await request.form()
        try:
            result = await relay.exchange(
                grant_type=str(form.get("grant_type", "")),
                code=str(form.get("code", "")),
                redirect_uri=str(form.get("redirect_uri", "")),
                client_id=str(form.get("client_id", "")),
                code_verifier=str(form.get("code_verifier", "")),
            )
        except FlowError as e:
            return _flow_error_response(e)
        return JSONResponse(result.to_dict(), headers=TOKEN_HEADERS)

    async def register(request: Request) -> Response:
        try:
            body = await request.json()
        except ValueError:
            return PlainTextResponse("Invalid request body", status_code=400)
        try:
            registration = relay.register_client(body)
        except FlowError as e:
            return _flow_error_response(e)
        return JSONResponse(registration, status_code=201)

    async def callback_shim(request: Request) -> Response:
        target = "/oauth/callback"
        if request.url.query:
            target += "?" + request.url.query
        return RedirectResponse(target, status_code=302)

    return [
        Route("/oauth/authorize", authorize, methods=["GET"]),
        Route("/oauth/callback", callback, methods=["GET"]),
        Route("/oauth/token", token, methods=["POST"]),
        Route("/oauth/register", register, methods=["POST"]),
        Route("/callback", callback_shim, methods=["GET"]),
    ]


def oauth_routes(
    settings: Settings,
    relay: OAuthRelay | None = None,
    provider: ProviderMetadata | None = None,
) -> list[Route]:
    """All OAuth routes for the configured mode."""
    routes = discovery_routes(settings, provider)
    if settings.oauth_enabled and settings.mode is OAuthMode.PROXY and relay is not None:
        routes.extend(relay_routes(relay))
        logger.info("OAuth proxy endpoints mounted under /oauth")
    return routes
