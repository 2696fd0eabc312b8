"""
Catalog / schema / table allowlists.

Three independent granularities, each configured as a comma-separated list of
dot-delimited qualified names:

    TRINO_ALLOWED_CATALOGS = "hive,postgresql"
    TRINO_ALLOWED_SCHEMAS  = "hive.analytics,postgresql.public"
    TRINO_ALLOWED_TABLES   = "hive.analytics.users"

An empty list leaves its granularity unrestricted. A non-empty schema list
only restricts the catalogs it mentions, and a non-empty table list only
restricts the schemas it mentions: with the table list above, listing
`hive.analytics` yields just `users`, while `hive.staging` is untouched.

Matching is case-insensitive on the fully qualified name.
"""

import logging
from dataclasses import dataclass
from typing import Iterable

from querygate.config import Settings
from querygate.errors import AccessDenied, AccessDeniedKind, ConfigError, ConfigErrorKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TableRef:
    """A table reference after resolution against the configured defaults."""

    catalog: str
    schema: str
    table: str

    @property
    def qualified_name(self) -> str:
        return f"{self.catalog}.{self.schema}.{self.table}"


def validate_entries(env_var: str, entries: Iterable[str], expected_dots: int) -> None:
    """
    Check that every entry has exactly `expected_dots` separators.

    Raises:
        ConfigError: INVALID_ALLOWLIST naming the offending entry.
    """
    for entry in entries:
        dots = entry.count(".")
        if dots != expected_dots:
            raise ConfigError(
                ConfigErrorKind.INVALID_ALLOWLIST,
                f"invalid format in {env_var}: '{entry}' "
                f"(expected {expected_dots} dots, found {dots})",
            )


class AccessFilter:
    """Allowlist predicates, list filters and table-reference resolution."""

    def __init__(
        self,
        catalogs: Iterable[str] = (),
        schemas: Iterable[str] = (),
        tables: Iterable[str] = (),
        default_catalog: str = "",
        default_schema: str = "",
    ):
        self.catalogs = tuple(catalogs)
        self.schemas = tuple(schemas)
        self.tables = tuple(tables)
        validate_entries("TRINO_ALLOWED_SCHEMAS", self.schemas, 1)
        validate_entries("TRINO_ALLOWED_TABLES", self.tables, 2)

        self.default_catalog = default_catalog
        self.default_schema = default_schema

        self._catalogs = frozenset(c.lower() for c in self.catalogs)
        self._schemas = frozenset(s.lower() for s in self.schemas)
        self._tables = frozenset(t.lower() for t in self.tables)
        # Parents that have at least one entry at the next granularity.
        self._schema_scoped_catalogs = frozenset(s.split(".", 1)[0] for s in self._schemas)
        self._table_scoped_schemas = frozenset(t.rsplit(".", 1)[0] for t in self._tables)

    @classmethod
    def from_settings(cls, settings: Settings) -> "AccessFilter":
        access = cls(
            settings.allowed_catalogs,
            settings.allowed_schemas,
            settings.allowed_tables,
            default_catalog=settings.trino_catalog,
            default_schema=settings.trino_schema,
        )
        access.log_configuration()
        return access

    @property
    def unrestricted(self) -> bool:
        return not (self.catalogs or self.schemas or self.tables)

    def log_configuration(self) -> None:
        if self.unrestricted:
            logger.info(
                "No Trino allowlists configured - all catalogs, schemas, and tables are accessible"
            )
            return
        logger.info(
            "Trino allowlist configuration",
            extra={
                "auth_data": {
                    "allowed_catalogs": list(self.catalogs),
                    "allowed_schemas": list(self.schemas),
                    "allowed_tables": list(self.tables),
                }
            },
        )

    # --- Predicates ---

    def is_catalog_allowed(self, catalog: str) -> bool:
        if not self._catalogs:
            return True
        return catalog.lower() in self._catalogs

    def is_schema_allowed(self, catalog: str, schema: str) -> bool:
        if catalog.lower() not in self._schema_scoped_catalogs:
            return True
        return f"{catalog}.{schema}".lower() in self._schemas

    def is_table_allowed(self, catalog: str, schema: str, table: str) -> bool:
        if f"{catalog}.{schema}".lower() not in self._table_scoped_schemas:
            return True
        return f"{catalog}.{schema}.{table}".lower() in self._tables

    # --- Filters (input order preserved) ---

    def filter_catalogs(self, catalogs: Iterable[str]) -> list[str]:
        return [c for c in catalogs if self.is_catalog_allowed(c)]

    def filter_schemas(self, catalog: str, schemas: Iterable[str]) -> list[str]:
        return [s for s in schemas if self.is_schema_allowed(catalog, s)]

    def filter_tables(self, catalog: str, schema: str, tables: Iterable[str]) -> list[str]:
        return [t for t in tables if self.is_table_allowed(catalog, schema, t)]

    # --- Resolution and checks ---

    def resolve_table(self, catalog: str | None, schema: str | None, table: str) -> TableRef:
        """
        Resolve a possibly partially qualified table reference.

        `table` may be `table`, `schema.table` or `catalog.schema.table`; the
        qualified form overrides the `catalog`/`schema` arguments, and missing
        parts fall back to the arguments and then to the configured defaults.
        """
        parts = table.split(".")
        if len(parts) == 3:
            return TableRef(parts[0], parts[1], parts[2])
        if len(parts) == 2:
            return TableRef(catalog or self.default_catalog, parts[0], parts[1])
        return TableRef(
            catalog or self.default_catalog,
            schema or self.default_schema,
            table,
        )

    def check_catalog(self, catalog: str) -> None:
        if not self.is_catalog_allowed(catalog):
            raise AccessDenied(AccessDeniedKind.CATALOG_NOT_ALLOWED, catalog)

    def check_schema(self, catalog: str, schema: str) -> None:
        if not self.is_schema_allowed(catalog, schema):
            raise AccessDenied(AccessDeniedKind.SCHEMA_NOT_ALLOWED, f"{catalog}.{schema}")

    def check_table(self, ref: TableRef) -> None:
        if not self.is_table_allowed(ref.catalog, ref.schema, ref.table):
            raise AccessDenied(AccessDeniedKind.TABLE_NOT_ALLOWED, ref.qualified_name)
