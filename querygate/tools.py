"""
Tool registry: which MCP tools exist and what kind of access each one needs.

The MCP server registers the actual tool functions (in server.py); the tool
middleware imports TOOL_KINDS from here to decide whether a tool may be
listed or called at all. A tool missing from this registry is hidden from
tools/list and every call to it is denied.

Kinds:
- query: runs caller-supplied SQL, gated by the read-only classifier
- metadata: lists or describes catalogs/schemas/tables, gated by the allowlists
"""

from enum import Enum


class ToolKind(str, Enum):
    QUERY = "query"
    METADATA = "metadata"


TOOL_KINDS: dict[str, ToolKind] = {
    "execute_query": ToolKind.QUERY,
    "explain_query": ToolKind.QUERY,
    "list_catalogs": ToolKind.METADATA,
    "list_schemas": ToolKind.METADATA,
    "list_tables": ToolKind.METADATA,
    "get_table_schema": ToolKind.METADATA,
}
