"""
Lexical read-only classifier for SQL statements.

This is a keyword heuristic, not a SQL parser. A statement is read-only when,
after literals, quoted identifiers and comments are neutralised:

1. it contains no semicolon (no statement stacking),
2. none of the write/DDL/DCL/session keywords appears as a whole word
   anywhere (so a write hidden in a subquery or CTE is still caught),
3. it starts with select, show, describe, explain or with.

Rule 3 is a plain prefix match: "SELECTid FROM t" counts as a select.
Word boundaries are ASCII-only, so a keyword glued to a non-ASCII letter
("éupdate") is still a write keyword. Anything else fails closed.
"""

import re
from dataclasses import dataclass

from querygate.errors import QueryRejectedKind

WRITE_KEYWORDS = (
    "insert", "update", "delete", "drop", "create", "alter", "truncate",
    "merge", "copy", "grant", "revoke", "commit", "rollback",
    "call", "execute", "refresh", "set", "reset",
)

READ_ONLY_PREFIXES = ("select", "show", "describe", "explain", "with")

_SINGLE_QUOTED = re.compile(r"'(?:[^']|'')*'")
_DOUBLE_QUOTED = re.compile(r'"(?:[^"]|"")*"')
_BACKTICK_QUOTED = re.compile(r"`[^`]*`")
_LINE_COMMENT = re.compile(r"--[^\r\n]*")
_BLOCK_COMMENT = re.compile(r"/\*[^*]*\*+(?:[^/*][^*]*\*+)*/")

_WRITE_PATTERN = re.compile(r"\b(" + "|".join(WRITE_KEYWORDS) + r")\b", re.ASCII)
_READ_ONLY_PATTERN = re.compile(r"^\s*(" + "|".join(READ_ONLY_PREFIXES) + ")", re.ASCII)


@dataclass(frozen=True)
class QueryVerdict:
    """Outcome of classifying one statement; `reason` and `keyword` are set on rejection."""

    read_only: bool
    reason: QueryRejectedKind | None = None
    keyword: str | None = None


def sanitize(query: str) -> str:
    """Replace literals and quoted identifiers with placeholders and drop comments."""
    query = _SINGLE_QUOTED.sub("'LITERAL'", query)
    query = _DOUBLE_QUOTED.sub('"IDENTIFIER"', query)
    query = _BACKTICK_QUOTED.sub("`IDENTIFIER`", query)
    query = _LINE_COMMENT.sub("", query)
    query = _BLOCK_COMMENT.sub("", query)
    return query


def classify_query(query: str) -> QueryVerdict:
    """Classify `query` and explain why it was rejected."""
    normalized = query.strip().lower().replace("\n", " ").replace("\r", " ")
    normalized = sanitize(normalized)

    if ";" in normalized:
        return QueryVerdict(False, QueryRejectedKind.MULTI_STATEMENT)

    match = _WRITE_PATTERN.search(normalized)
    if match:
        return QueryVerdict(False, QueryRejectedKind.WRITE_KEYWORD_DETECTED, match.group(1))

    if _READ_ONLY_PATTERN.match(normalized):
        return QueryVerdict(True)

    return QueryVerdict(False, QueryRejectedKind.UNRECOGNIZED_STATEMENT)


def is_read_only(query: str) -> bool:
    return classify_query(query).read_only
