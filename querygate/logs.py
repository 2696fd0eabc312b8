"""
Structured JSON logging and helpers for logging secret material safely.

In production, logs go to stdout and are collected by the cluster's logging
agent, which indexes JSON fields. Auth and access decisions attach their
structured data via `extra={"auth_data": {...}}`.

Tokens, authorization codes and client secrets must never be logged in full:
use `preview()` (first characters only) or `fingerprint()` (short hash).
"""

import hashlib
import json
import logging
import sys
import uuid


class JSONLogFormatter(logging.Formatter):
    """
    Formats log records as single-line JSON objects.

    Example output:

        {"timestamp": "2026-02-06 10:30:00,123", "level": "INFO",
         "logger": "querygate.server", "message": "Tool call authorized",
         "subject": "alice", "tool": "execute_query"}
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if hasattr(record, "auth_data"):
            log_entry.update(record.auth_data)
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


def configure_logging(level: str) -> None:
    """Install the JSON formatter on the root logger. Call once at startup."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONLogFormatter())
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        handlers=[handler],
        force=True,
    )


def new_request_id() -> str:
    """Short id for correlating the log lines of one request."""
    return str(uuid.uuid4())[:8]


def preview(value: str | None, max_len: int = 10) -> str:
    """First `max_len` characters of a secret-bearing value, for diagnostics."""
    if not value:
        return ""
    if len(value) <= max_len:
        return value
    return value[:max_len] + "..."


def fingerprint(value: str | None) -> str:
    """Stable, non-reversible identifier for a token (sha256 prefix)."""
    if not value:
        return ""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:12]
