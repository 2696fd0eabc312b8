"""
SQL engine adapter: a small async Trino REST client.

The gateway only needs "run a statement" and a handful of metadata listings,
so instead of a DB-API driver this speaks the Trino client protocol directly
with httpx:

    POST /v1/statement  (body: SQL)     -> first result page
    GET  <nextUri>                      -> following pages, until no nextUri

Rows are returned as dicts keyed by column name.
"""

import logging
import time
from typing import Any, Protocol

import httpx

from querygate.access import TableRef
from querygate.config import Settings
from querygate.errors import EngineError

logger = logging.getLogger(__name__)

EXPLAIN_TYPES = ("LOGICAL", "DISTRIBUTED", "VALIDATE", "IO")

Row = dict[str, Any]


class QueryEngine(Protocol):
    async def execute(self, sql: str) -> list[Row]: ...

    async def list_catalogs(self) -> list[str]: ...

    async def list_schemas(self, catalog: str) -> list[str]: ...

    async def list_tables(self, catalog: str, schema: str) -> list[str]: ...

    async def describe_table(self, ref: TableRef) -> list[Row]: ...

    async def aclose(self) -> None: ...


def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def build_explain(query: str, explain_type: str = "") -> str:
    """
    Prefix `query` with EXPLAIN, optionally `EXPLAIN (TYPE <explain_type>)`.

    Raises:
        ValueError: If `explain_type` is not one of EXPLAIN_TYPES.
    """
    kind = (explain_type or "").strip().upper()
    if not kind:
        return f"EXPLAIN {query}"
    if kind not in EXPLAIN_TYPES:
        raise ValueError(
            f"invalid EXPLAIN format: {explain_type!r} (allowed: {', '.join(EXPLAIN_TYPES)})"
        )
    return f"EXPLAIN (TYPE {kind}) {query}"


class TrinoClient:
    """QueryEngine backed by the Trino HTTP protocol."""

    def __init__(
        self,
        host: str,
        port: int,
        user: str,
        catalog: str,
        schema: str,
        scheme: str = "https",
        password: str = "",
        verify_tls: bool = True,
        query_timeout: float = 30,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.catalog = catalog
        self.schema = schema
        self.query_timeout = query_timeout
        self._client = httpx.AsyncClient(
            base_url=f"{scheme}://{host}:{port}",
            headers={
                "X-Trino-User": user,
                "X-Trino-Catalog": catalog,
                "X-Trino-Schema": schema,
                "X-Trino-Source": "querygate",
            },
            auth=httpx.BasicAuth(user, password) if password else None,
            verify=verify_tls,
            timeout=query_timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "TrinoClient":
        if settings.trino_ssl_insecure:
            logger.warning("TLS certificate verification for Trino is disabled")
        return cls(
            host=settings.trino_host,
            port=settings.trino_port,
            user=settings.trino_user,
            catalog=settings.trino_catalog,
            schema=settings.trino_schema,
            scheme=settings.trino_scheme,
            password=settings.trino_password.get_secret_value(),
            verify_tls=not settings.trino_ssl_insecure,
            query_timeout=settings.trino_query_timeout,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _fetch(self, method: str, url: str, **kwargs) -> dict:
        try:
            response = await self._client.request(method, url, **kwargs)
            response.raise_for_status()
            return response.json()
        except httpx.TimeoutException as exc:
            raise EngineError(f"query timed out after {self.query_timeout}s") from exc
        except httpx.HTTPStatusError as exc:
            raise EngineError(
                f"query execution failed: HTTP {exc.response.status_code}"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise EngineError(f"query execution failed: {exc}") from exc

    async def execute(self, sql: str) -> list[Row]:
        """
        Run one statement and collect every result page.

        Raises:
            EngineError: On transport failure, timeout or a Trino query error.
        """
        deadline = time.monotonic() + self.query_timeout
        page = await self._fetch("POST", "/v1/statement", content=sql.encode("utf-8"))
        columns: list[str] = []
        rows: list[Row] = []

        while True:
            error = page.get("error")
            if error:
                message = error.get("message", "unknown error") if isinstance(error, dict) else error
                raise EngineError(f"query execution failed: {message}")
            if not columns and page.get("columns"):
                columns = [column["name"] for column in page["columns"]]
            for values in page.get("data") or []:
                rows.append(dict(zip(columns, values)))

            next_uri = page.get("nextUri")
            if not next_uri:
                return rows
            if time.monotonic() > deadline:
                raise EngineError(f"query timed out after {self.query_timeout}s")
            page = await self._fetch("GET", next_uri)

    async def _column(self, sql: str, column: str) -> list[str]:
        return [row[column] for row in await self.execute(sql) if isinstance(row.get(column), str)]

    async def list_catalogs(self) -> list[str]:
        return await self._column("SHOW CATALOGS", "Catalog")

    async def list_schemas(self, catalog: str) -> list[str]:
        return await self._column(f"SHOW SCHEMAS FROM {quote_identifier(catalog)}", "Schema")

    async def list_tables(self, catalog: str, schema: str) -> list[str]:
        return await self._column(
            f"SHOW TABLES FROM {quote_identifier(catalog)}.{quote_identifier(schema)}", "Table"
        )

    async def describe_table(self, ref: TableRef) -> list[Row]:
        return await self.execute(
            "DESCRIBE "
            + ".".join(quote_identifier(part) for part in (ref.catalog, ref.schema, ref.table))
        )
