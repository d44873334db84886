from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

"""ErrorRecord model for the structured error log.

Each record is one JSON Lines entry with a fixed key set. row=-1 marks
file-level problems (unreadable file, unresolved schema) and emission failures,
where no single source row is responsible.
"""

__all__ = [
    "ErrorRecord",
]


@dataclass(frozen=True)
class ErrorRecord:
    """Structured error record for JSON Lines logging.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        source: file name (or upload name) being processed
        profile: counterparty profile name
        row: 1-based sheet row, -1 when not row specific
        field: canonical field or group key label the error refers to
        error_type: Error classification in UPPER_SNAKE_CASE format
        message: human readable description
    """
    timestamp: str  # ISO8601 UTC
    source: str
    profile: str
    row: int
    field: str
    error_type: str  # UPPER_SNAKE
    message: str

    @staticmethod
    def create(source: str, profile: str, row: int, field: str, error_type: str, message: str) -> ErrorRecord:
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ErrorRecord(
            timestamp=ts,
            source=source,
            profile=profile,
            row=row,
            field=field,
            error_type=error_type,
            message=message,
        )

    def to_json_line(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False)
