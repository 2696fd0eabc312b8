"""
Error taxonomy for the gateway.

Each error family maps to one place where it is handled:

- ConfigError: raised while building components at startup. The process must
  not start with a broken auth or allowlist configuration.
- AuthError: per-request token failure. Surfaced as HTTP 401 with a generic
  body; the detailed reason is only logged server-side.
- FlowError: OAuth relay failure. Surfaced as a 4xx/5xx to the participant
  of the authorization flow, never fatal to the process.
- GateDenial (QueryRejected, AccessDenied): ordinary, expected outcomes of a
  tool call. Turned into a tool-level error result for the MCP client.
- EngineError: the SQL engine rejected or failed a statement.
"""

from enum import Enum


class ConfigErrorKind(str, Enum):
    MISSING_SECRET = "missing_secret"
    MISSING_AUDIENCE = "missing_audience"
    MISSING_ISSUER = "missing_issuer"
    INVALID_PROVIDER = "invalid_provider"
    INVALID_MODE = "invalid_mode"
    INVALID_ALLOWLIST = "invalid_allowlist"


class AuthErrorKind(str, Enum):
    MISSING_TOKEN = "missing_token"
    MALFORMED_TOKEN = "malformed_token"
    EXPIRED = "expired"
    BAD_SIGNATURE = "bad_signature"
    AUDIENCE_MISMATCH = "audience_mismatch"
    ISSUER_MISMATCH = "issuer_mismatch"
    KEYS_UNAVAILABLE = "keys_unavailable"


class FlowErrorKind(str, Enum):
    PROVIDER_DENIED = "provider_denied"
    MISSING_CODE = "missing_code"
    UNSUPPORTED_GRANT = "unsupported_grant"
    EXCHANGE_FAILED = "exchange_failed"
    INVALID_REDIRECT = "invalid_redirect"
    INVALID_REQUEST = "invalid_request"


class QueryRejectedKind(str, Enum):
    WRITE_KEYWORD_DETECTED = "write_keyword_detected"
    MULTI_STATEMENT = "multi_statement"
    UNRECOGNIZED_STATEMENT = "unrecognized_statement"


class AccessDeniedKind(str, Enum):
    CATALOG_NOT_ALLOWED = "catalog_not_allowed"
    SCHEMA_NOT_ALLOWED = "schema_not_allowed"
    TABLE_NOT_ALLOWED = "table_not_allowed"


class ConfigError(Exception):
    """Invalid startup configuration. Always fatal."""

    def __init__(self, kind: ConfigErrorKind, message: str):
        self.kind = kind
        self.message = message
        super().__init__(message)


class AuthError(Exception):
    """
    Raised when token validation fails for any reason.

    The kind tells operators which check failed (expiry, signature, audience...)
    but it is never echoed to the client: the HTTP layer returns a generic 401
    and the message is logged server-side.

    Attributes:
        kind: Which validation step rejected the token
        message: Human-readable error description (logged server-side)
        status_code: HTTP status code to return (401 for auth failures)
    """

    def __init__(self, kind: AuthErrorKind, message: str, status_code: int = 401):
        self.kind = kind
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class FlowError(Exception):
    """An OAuth relay step failed; carries the HTTP status for the flow participant."""

    def __init__(self, kind: FlowErrorKind, message: str, status_code: int = 400):
        self.kind = kind
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class GateDenial(Exception):
    """Base for expected, structured denials returned to the tool caller."""

    def __init__(self, kind: Enum, message: str):
        self.kind = kind
        self.message = message
        super().__init__(message)


class QueryRejected(GateDenial):
    """The statement is not read-only and write queries are disabled."""

    def __init__(self, kind: QueryRejectedKind, message: str, keyword: str | None = None):
        self.keyword = keyword
        super().__init__(kind, message)


class AccessDenied(GateDenial):
    """A catalog, schema or table is outside the configured allowlists."""

    def __init__(self, kind: AccessDeniedKind, qualified_name: str):
        self.qualified_name = qualified_name
        level = kind.value.split("_", 1)[0]
        super().__init__(kind, f"{level} access denied: {qualified_name} not in allowlist")


class EngineError(Exception):
    """The SQL engine returned an error or could not be reached."""
