"""
Tests for the JSON log formatter and the secret-safe helpers (querygate/logs.py).
"""

import json
import logging

from querygate.logs import JSONLogFormatter, fingerprint, new_request_id, preview


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("querygate.test", logging.INFO, __file__, 1, "hello %s", ("x",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formats_single_line_json():
    line = JSONLogFormatter().format(_record())

    entry = json.loads(line)
    assert entry["level"] == "INFO"
    assert entry["logger"] == "querygate.test"
    assert entry["message"] == "hello x"
    assert "\n" not in line


def test_merges_auth_data():
    entry = json.loads(
        JSONLogFormatter().format(_record(auth_data={"subject": "alice", "decision": "allowed"}))
    )
    assert entry["subject"] == "alice"
    assert entry["decision"] == "allowed"


def test_preview():
    assert preview("") == ""
    assert preview(None) == ""
    assert preview("short") == "short"
    assert preview("abcdefghijklmnop") == "abcdefghij..."


def test_fingerprint_is_stable_and_short():
    assert fingerprint("token") == fingerprint("token")
    assert fingerprint("token") != fingerprint("other")
    assert len(fingerprint("token")) == 12
    assert fingerprint("") == ""


def test_request_id_length():
    assert len(new_request_id()) == 8
