"""
HTTP-layer bearer token guard for the MCP endpoint.

Token failures must reach the client as a real HTTP 401 with a
`WWW-Authenticate: Bearer` challenge (that is how MCP clients discover they
need to start the OAuth flow), so validation happens in an ASGI middleware
wrapped around the FastMCP app rather than inside the MCP protocol layer.

On success the validated IdentityClaims are stored in the request state
(`request.state.identity`), where the tool middleware picks them up.
"""

import logging

from starlette.concurrency import run_in_threadpool
from starlette.responses import JSONResponse

from querygate.errors import AuthError
from querygate.gate import AuthorizationGate
from querygate.logs import new_request_id

logger = logging.getLogger(__name__)


def www_authenticate_header(resource_metadata_url: str) -> str:
    return (
        'Bearer realm="querygate", error="invalid_token", '
        f'resource_metadata="{resource_metadata_url}"'
    )


class BearerAuthMiddleware:
    """
    ASGI middleware that authenticates every request under `protected_prefix`.

    Other paths (health checks, discovery documents, the OAuth relay) pass
    through untouched: the kubelet and a client that has not logged in yet
    have no token to present.
    """

    def __init__(
        self,
        app,
        gate: AuthorizationGate,
        resource_metadata_url: str,
        protected_prefix: str = "/mcp",
    ):
        self.app = app
        self.gate = gate
        self.challenge = www_authenticate_header(resource_metadata_url)
        self.protected_prefix = protected_prefix

    async def __call__(self, scope, receive, send) -> None:
        if scope.get("type") != "http" or not scope.get("path", "").startswith(
            self.protected_prefix
        ):
            await self.app(scope, receive, send)
            return

        request_id = new_request_id()
        header = None
        for name, value in scope.get("headers", []):
            if name == b"authorization":
                header = value.decode("latin-1")
                break

        try:
            # Validation may fetch signing keys over the network.
            identity = await run_in_threadpool(self.gate.authenticate, header)
        except AuthError as e:
            logger.warning(
                "Authentication failed",
                extra={
                    "auth_data": {
                        "request_id": request_id,
                        "decision": "rejected",
                        "reason": e.kind.value,
                        "detail": e.message,
                        "path": scope.get("path"),
                    }
                },
            )
            response = JSONResponse(
                {"error": "invalid_token", "error_description": "Authentication required"},
                status_code=e.status_code,
                headers={"WWW-Authenticate": self.challenge},
            )
            await response(scope, receive, send)
            return

        logger.info(
            "Authentication successful",
            extra={
                "auth_data": {
                    "request_id": request_id,
                    "subject": identity.subject,
                    "decision": "authenticated",
                }
            },
        )
        scope.setdefault("state", {})["identity"] = identity
        await self.app(scope, receive, send)
