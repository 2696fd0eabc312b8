"""
The authorization gate: the single object tool handlers consult.

It composes the three decisions that guard the SQL engine:

    authenticate(header) -> IdentityClaims   (token validator)
    check_query(sql)                          (read-only classifier)
    filter_* / check_table                    (allowlists)

The gate owns the credentials and allowlists for the life of the process and
never mutates them, so one instance is shared by all concurrent requests.
"""

import logging
from typing import Iterable

from querygate.access import AccessFilter, TableRef
from querygate.auth import IdentityClaims, TokenValidator, extract_bearer_token
from querygate.config import Settings
from querygate.errors import QueryRejected
from querygate.sql_safety import classify_query

logger = logging.getLogger(__name__)

READ_ONLY_MESSAGE = (
    "security restriction: only SELECT, SHOW, DESCRIBE, and EXPLAIN queries are allowed. "
    "Set TRINO_ALLOW_WRITE_QUERIES=true to enable write operations (at your own risk)"
)


class AuthorizationGate:
    def __init__(
        self,
        validator: TokenValidator | None,
        access: AccessFilter,
        allow_write_queries: bool = False,
    ):
        self.validator = validator
        self.access = access
        self.allow_write_queries = allow_write_queries
        if allow_write_queries:
            logger.warning(
                "Write queries are enabled (TRINO_ALLOW_WRITE_QUERIES=true). "
                "SQL injection protection is bypassed."
            )

    @classmethod
    def from_settings(
        cls, settings: Settings, validator: TokenValidator | None
    ) -> "AuthorizationGate":
        return cls(
            validator,
            AccessFilter.from_settings(settings),
            allow_write_queries=settings.trino_allow_write_queries,
        )

    @property
    def auth_enabled(self) -> bool:
        return self.validator is not None

    # --- Authentication ---

    def validate(self, token: str) -> IdentityClaims:
        """Validate a raw bearer token. Raises AuthError."""
        if self.validator is None:
            raise RuntimeError("token validation requested but OAuth is disabled")
        return self.validator.validate_token(token)

    def authenticate(self, authorization_header: str | None) -> IdentityClaims:
        """Extract and validate the bearer token from an Authorization header."""
        return self.validate(extract_bearer_token(authorization_header))

    # --- Query safety ---

    def check_query(self, sql: str) -> None:
        """
        Reject statements that are not read-only.

        Raises:
            QueryRejected: Unless the statement is read-only or write queries
                are enabled.
        """
        if self.allow_write_queries:
            return
        verdict = classify_query(sql)
        if verdict.read_only:
            return
        logger.info(
            "Query rejected",
            extra={
                "auth_data": {
                    "decision": "rejected",
                    "reason": verdict.reason.value,
                    "keyword": verdict.keyword,
                }
            },
        )
        raise QueryRejected(verdict.reason, READ_ONLY_MESSAGE, keyword=verdict.keyword)

    # --- Allowlists ---

    def filter_catalogs(self, catalogs: Iterable[str]) -> list[str]:
        return self.access.filter_catalogs(catalogs)

    def filter_schemas(self, catalog: str, schemas: Iterable[str]) -> list[str]:
        return self.access.filter_schemas(catalog, schemas)

    def filter_tables(self, catalog: str, schema: str, tables: Iterable[str]) -> list[str]:
        return self.access.filter_tables(catalog, schema, tables)

    def resolve_table(self, catalog: str | None, schema: str | None, table: str) -> TableRef:
        return self.access.resolve_table(catalog, schema, table)

    def check_catalog(self, catalog: str) -> None:
        """Raises AccessDenied if the catalog is outside the catalog allowlist."""
        self.access.check_catalog(catalog)

    def check_table(self, ref: TableRef) -> None:
        """Raises AccessDenied if the resolved table is outside the allowlist."""
        self.access.check_table(ref)
