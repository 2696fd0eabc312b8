"""
MCP server: Trino tools behind the authorization gate, built with FastMCP v2.

This module assembles the application:
- Six tools: execute_query, explain_query, list_catalogs, list_schemas,
  list_tables, get_table_schema
- Bearer token authentication for the /mcp endpoint (http_auth.py)
- A tool middleware that only exposes registered tools and logs every decision
- OAuth discovery documents, plus the OAuth relay endpoints in proxy mode
- Health and readiness HTTP endpoints (for Kubernetes health checks)
- Structured JSON logging for all auth and access decisions

Architecture:
    The flow for every MCP request:

    1. Client sends HTTP request with "Authorization: Bearer <jwt>" header
    2. BearerAuthMiddleware validates the token; failures get a 401 with a
       WWW-Authenticate challenge before FastMCP ever sees the request
    3. FastMCP's RequestContextMiddleware stores the HTTP request in a ContextVar
    4. GateMiddleware reads the validated identity from the request state and
       checks the tool against TOOL_KINDS
    5. The tool consults the AuthorizationGate: query tools are classified as
       read-only or rejected, metadata tools are filtered by the allowlists
    6. Denials come back to the MCP client as tool errors (isError: true)

Running the server:
    python -m querygate.server

    This starts the server on http://0.0.0.0:8080 with:
    - MCP endpoint at /mcp (Streamable HTTP)
    - Health check at /health
    - Readiness check at /ready
"""

import logging
import sys
import time
from contextlib import asynccontextmanager
from typing import Any, Sequence

import httpx
import uvicorn
from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from fastmcp.server.dependencies import get_http_request
from fastmcp.server.middleware import CallNext, Middleware, MiddlewareContext
from fastmcp.tools.tool import Tool, ToolResult
from mcp.types import CallToolRequestParams, ListToolsRequest
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from querygate.auth import (
    Credentials,
    IdentityClaims,
    OIDCValidator,
    TokenValidator,
    create_validator,
)
from querygate.config import OAuthMode, Settings
from querygate.engine import QueryEngine, TrinoClient, build_explain
from querygate.errors import AuthError, ConfigError, ConfigErrorKind, EngineError, GateDenial
from querygate.gate import AuthorizationGate
from querygate.http_auth import BearerAuthMiddleware
from querygate.logs import configure_logging, new_request_id
from querygate.oauth.relay import OAuthRelay
from querygate.oauth.routes import oauth_routes
from querygate.oidc import ProviderMetadata, fallback_metadata
from querygate.tools import TOOL_KINDS

logger = logging.getLogger("querygate.server")

INSTRUCTIONS = (
    "Read-only access to a Trino SQL engine. Use list_catalogs, list_schemas and "
    "list_tables to discover data, get_table_schema to inspect columns, and "
    "execute_query or explain_query to run SELECT, SHOW, DESCRIBE, EXPLAIN or WITH "
    "statements. Only allowlisted catalogs, schemas and tables are visible."
)


# ---------------------------------------------------------------------------
# Tool middleware
# ---------------------------------------------------------------------------


def _current_request() -> Request | None:
    # None outside an HTTP transport (e.g. the in-memory client).
    try:
        return get_http_request()
    except RuntimeError:
        return None


def _remote_addr(request: Request | None) -> str | None:
    if request is None or request.client is None:
        return None
    return f"{request.client.host}:{request.client.port}"


class GateMiddleware(Middleware):
    """
    Tool-level access control on top of HTTP authentication.

    - tools/list responses only include tools registered in TOOL_KINDS
    - tools/call requests for unregistered tools are denied (fail closed)

    The identity normally comes from BearerAuthMiddleware via the request
    state. When the server runs without it (e.g. another transport) and auth
    is enabled, the token is validated here from the Authorization header.
    """

    def __init__(self, gate: AuthorizationGate):
        self.gate = gate

    def _identity(self, request_id: str) -> IdentityClaims | None:
        request = _current_request()

        identity = getattr(request.state, "identity", None) if request is not None else None
        if identity is not None or not self.gate.auth_enabled:
            return identity

        header = request.headers.get("authorization") if request is not None else None
        try:
            return self.gate.authenticate(header)
        except AuthError as e:
            logger.warning(
                "Authentication failed",
                extra={
                    "auth_data": {
                        "request_id": request_id,
                        "decision": "rejected",
                        "reason": e.kind.value,
                        "detail": e.message,
                    }
                },
            )
            raise PermissionError("Authentication required") from None

    async def on_list_tools(
        self,
        context: MiddlewareContext[ListToolsRequest],
        call_next: CallNext[ListToolsRequest, Sequence[Tool]],
    ) -> Sequence[Tool]:
        request_id = new_request_id()
        identity = self._identity(request_id)

        all_tools = await call_next(context)
        registered = [tool for tool in all_tools if tool.name in TOOL_KINDS]

        logger.info(
            "Tool list filtered by registry",
            extra={
                "auth_data": {
                    "request_id": request_id,
                    "subject": identity.subject if identity else None,
                    "total_tools": len(all_tools),
                    "listed_tools": [tool.name for tool in registered],
                    "decision": "filtered",
                }
            },
        )
        return registered

    async def on_call_tool(
        self,
        context: MiddlewareContext[CallToolRequestParams],
        call_next: CallNext[CallToolRequestParams, ToolResult],
    ) -> ToolResult:
        request_id = new_request_id()
        tool_name = context.message.name
        identity = self._identity(request_id)
        subject = identity.subject if identity else None

        kind = TOOL_KINDS.get(tool_name)
        if kind is None:
            logger.warning(
                "Tool call denied: tool not registered",
                extra={
                    "auth_data": {
                        "request_id": request_id,
                        "subject": subject,
                        "tool": tool_name,
                        "decision": "denied",
                        "reason": "unregistered_tool",
                    }
                },
            )
            raise PermissionError(f"Access denied: tool '{tool_name}' is not registered")

        logger.info(
            "Tool call authorized",
            extra={
                "auth_data": {
                    "request_id": request_id,
                    "subject": subject,
                    "tool": tool_name,
                    "kind": kind.value,
                    "decision": "allowed",
                }
            },
        )

        access = {
            "request_id": request_id,
            "subject": subject,
            "tool": tool_name,
            "args": context.message.arguments or {},
            "remote_addr": _remote_addr(_current_request()),
        }
        started = time.monotonic()
        try:
            result = await call_next(context)
        except Exception as e:
            access["duration_ms"] = round((time.monotonic() - started) * 1000, 2)
            access["error"] = str(e)
            logger.warning("TOOL_ERROR", extra={"auth_data": access})
            raise
        access["duration_ms"] = round((time.monotonic() - started) * 1000, 2)
        logger.info("TOOL_SUCCESS", extra={"auth_data": access})
        return result


# ---------------------------------------------------------------------------
# MCP server and tools
# ---------------------------------------------------------------------------


def create_server(gate: AuthorizationGate, engine: QueryEngine) -> FastMCP:
    """Build the FastMCP server with the Trino tools wired through `gate`."""
    mcp = FastMCP(
        name="querygate",
        instructions=INSTRUCTIONS,
        middleware=[GateMiddleware(gate)],
    )

    async def run_query(sql: str) -> list[dict[str, Any]]:
        try:
            gate.check_query(sql)
            return await engine.execute(sql)
        except (GateDenial, EngineError) as e:
            raise ToolError(str(e)) from None

    @mcp.tool(description="Execute a read-only SQL query against Trino and return the rows.")
    async def execute_query(query: str) -> list[dict[str, Any]]:
        return await run_query(query)

    @mcp.tool(
        description=(
            "Show the execution plan of a SQL query. format may be LOGICAL, "
            "DISTRIBUTED, VALIDATE or IO."
        )
    )
    async def explain_query(query: str, format: str = "") -> list[dict[str, Any]]:
        try:
            sql = build_explain(query, format)
        except ValueError as e:
            raise ToolError(str(e)) from None
        return await run_query(sql)

    @mcp.tool(description="List the catalogs you are allowed to see.")
    async def list_catalogs() -> list[str]:
        try:
            return gate.filter_catalogs(await engine.list_catalogs())
        except EngineError as e:
            raise ToolError(str(e)) from None

    @mcp.tool(description="List the schemas of a catalog (default catalog if omitted).")
    async def list_schemas(catalog: str = "") -> list[str]:
        catalog = catalog or gate.access.default_catalog
        try:
            gate.check_catalog(catalog)
            return gate.filter_schemas(catalog, await engine.list_schemas(catalog))
        except (GateDenial, EngineError) as e:
            raise ToolError(str(e)) from None

    @mcp.tool(description="List the tables of a schema (default catalog/schema if omitted).")
    async def list_tables(catalog: str = "", schema: str = "") -> list[str]:
        catalog = catalog or gate.access.default_catalog
        schema = schema or gate.access.default_schema
        try:
            gate.check_catalog(catalog)
            return gate.filter_tables(catalog, schema, await engine.list_tables(catalog, schema))
        except (GateDenial, EngineError) as e:
            raise ToolError(str(e)) from None

    @mcp.tool(
        description=(
            "Describe the columns of a table. table may be 'table', 'schema.table' "
            "or 'catalog.schema.table'."
        )
    )
    async def get_table_schema(
        table: str, catalog: str = "", schema: str = ""
    ) -> list[dict[str, Any]]:
        ref = gate.resolve_table(catalog, schema, table)
        try:
            gate.check_catalog(ref.catalog)
            gate.check_table(ref)
            return await engine.describe_table(ref)
        except (GateDenial, EngineError) as e:
            raise ToolError(str(e)) from None

    # -----------------------------------------------------------------------
    # Health and readiness endpoints
    # -----------------------------------------------------------------------
    # Plain HTTP endpoints (not MCP protocol) for Kubernetes health checks. They do
    # NOT require authentication: the kubelet has no token.

    @mcp.custom_route("/health", methods=["GET"])
    async def health_check(request: Request) -> Response:
        """Liveness check: is the server process alive and responsive?"""
        return JSONResponse({"status": "healthy"})

    @mcp.custom_route("/ready", methods=["GET"])
    async def readiness_check(request: Request) -> Response:
        """Readiness check: can the engine answer a trivial query?"""
        try:
            await engine.execute("SELECT 1")
        except EngineError as e:
            logger.warning("Readiness check failed: %s", e)
            return JSONResponse(
                {"status": "not_ready", "reason": "engine unavailable"},
                status_code=503,
            )
        return JSONResponse({"status": "ready"})

    return mcp


# ---------------------------------------------------------------------------
# Application assembly
# ---------------------------------------------------------------------------


def _provider_for(settings: Settings, validator: TokenValidator | None) -> ProviderMetadata | None:
    if isinstance(validator, OIDCValidator):
        return validator.provider
    if settings.oidc_issuer:
        return fallback_metadata(settings.oidc_issuer)
    return None


def build_relay(
    settings: Settings,
    provider: ProviderMetadata | None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> OAuthRelay | None:
    """The OAuth relay, or None unless OAuth runs in proxy mode."""
    if not settings.oauth_enabled or settings.mode is not OAuthMode.PROXY:
        return None
    if provider is None:
        raise ConfigError(
            ConfigErrorKind.MISSING_ISSUER, "OIDC_ISSUER is required for OAuth proxy mode"
        )
    if not settings.oidc_client_id:
        logger.warning("OAuth proxy mode without OIDC_CLIENT_ID: provider calls will be rejected")
    return OAuthRelay(
        provider,
        client_id=settings.oidc_client_id,
        client_secret=settings.oidc_client_secret.get_secret_value(),
        redirect_uris=settings.redirect_uris,
        http_timeout=settings.oauth_http_timeout,
        transport=transport,
    )


def _closing_engine(lifespan, engine: QueryEngine):
    """Wrap the MCP app's lifespan so the engine client is closed on shutdown."""

    @asynccontextmanager
    async def _lifespan(app):
        try:
            async with lifespan(app) as state:
                yield state
        finally:
            await engine.aclose()
            logger.info("Query engine client closed")

    return _lifespan


def create_app(
    settings: Settings,
    engine: QueryEngine | None = None,
    validator: TokenValidator | None = None,
    http_client: httpx.Client | None = None,
    relay_transport: httpx.AsyncBaseTransport | None = None,
):
    """
    Build the ASGI application.

    Raises:
        ConfigError: If the auth or allowlist configuration is invalid.
    """
    mode = settings.mode
    if settings.oauth_enabled and validator is None:
        validator = create_validator(Credentials.from_settings(settings), http_client)
    if not settings.oauth_enabled:
        validator = None
        logger.warning("OAuth is disabled: the MCP endpoint accepts unauthenticated requests")

    gate = AuthorizationGate.from_settings(settings, validator)
    engine = engine or TrinoClient.from_settings(settings)
    mcp = create_server(gate, engine)

    provider = _provider_for(settings, validator)
    relay = build_relay(settings, provider, relay_transport)

    app = mcp.http_app(path="/mcp", transport="streamable-http")
    app.routes.extend(oauth_routes(settings, relay, provider))
    app.router.lifespan_context = _closing_engine(app.router.lifespan_context, engine)

    logger.info(
        "Application assembled",
        extra={
            "auth_data": {
                "oauth_enabled": settings.oauth_enabled,
                "mode": mode.value,
                "provider": validator.kind.value if validator else None,
                "write_queries_enabled": gate.allow_write_queries,
            }
        },
    )

    if validator is None:
        return app
    return BearerAuthMiddleware(
        app,
        gate,
        resource_metadata_url=f"{settings.public_url}/.well-known/oauth-protected-resource",
    )


# ---------------------------------------------------------------------------
# Server entry point
# ---------------------------------------------------------------------------


def main() -> None:
    settings = Settings()
    configure_logging(settings.log_level)
    try:
        app = create_app(settings)
    except ConfigError as e:
        logger.critical(
            "Invalid configuration: %s", e.message, extra={"auth_data": {"kind": e.kind.value}}
        )
        sys.exit(1)

    logger.info(
        "Starting querygate on %s:%d (transport=streamable-http, auth=%s)",
        settings.mcp_host,
        settings.mcp_port,
        "enabled" if settings.oauth_enabled else "disabled",
    )
    uvicorn.run(app, host=settings.mcp_host, port=settings.mcp_port, log_level=settings.log_level)


if __name__ == "__main__":
    main()
