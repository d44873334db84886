from __future__ import annotations

import json

import jsonschema
import pytest

from bulk_invoicer.logging.error_log import ErrorLogBuffer
from bulk_invoicer.models import ErrorRecord

"""Error log JSON Lines contract: fixed key set, no extras."""

ERROR_LOG_SCHEMA = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "additionalProperties": False,
    "required": ["timestamp", "source", "profile", "row", "field", "error_type", "message"],
    "properties": {
        "timestamp": {"type": "string", "pattern": r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d+)?Z$"},
        "source": {"type": "string"},
        "profile": {"type": "string"},
        "row": {"type": "integer", "minimum": -1},
        "field": {"type": "string"},
        "error_type": {"type": "string", "pattern": "^[A-Z][A-Z_]*$"},
        "message": {"type": "string"},
    },
}


def test_flushed_lines_match_schema(tmp_path):
    buffer = ErrorLogBuffer(logs_dir=tmp_path)
    buffer.append(ErrorRecord.create("chubb.xlsx", "chubb", 7, "amount", "INVALID_VALUE", "amount 'n/a' is not a number"))
    buffer.append(ErrorRecord.create("chubb.xlsx", "chubb", -1, "OTROS", "FAILED_TRANSIENT", "gateway timeout"))
    path = buffer.flush()
    for line in path.read_text(encoding="utf-8").splitlines():
        jsonschema.validate(json.loads(line), ERROR_LOG_SCHEMA)


def test_schema_rejects_extra_key():
    record = json.loads(ErrorRecord.create("a.xlsx", "axa", 2, "invoice", "MISSING_VALUE", "empty").to_json_line())
    record["extra"] = "not allowed"
    with pytest.raises(jsonschema.exceptions.ValidationError):
        jsonschema.validate(record, ERROR_LOG_SCHEMA)


def test_non_ascii_kept_verbatim():
    record = ErrorRecord.create("retención.xlsx", "chubb", 3, "adjustment", "INVALID_VALUE", "Retención inválida")
    assert "Retención inválida" in record.to_json_line()
