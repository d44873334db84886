from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

"""RawRecord and SchemaMapping models.

A RawRecord is one imported spreadsheet row keyed by the *original* header text.
A SchemaMapping translates canonical field names (amount, category, ...) into the
header actually used by a given file. Records are only ever read through a
mapping; positional access is intentionally not offered.
"""

__all__ = [
    "RawRecord",
    "SchemaMapping",
    "CANONICAL_FIELDS",
]

# Canonical fields understood by the engine. Profiles may add identity-only
# fields (e.g. invoice / order / folio numbers) on top of these.
CANONICAL_FIELDS = ("case_number", "category", "amount", "adjustment")


@dataclass(frozen=True)
class RawRecord:
    """One imported row (header -> cell value), immutable once parsed.

    row_number is the 1-based sheet row (header is row 1, first record row 2),
    which is what users see in their spreadsheet program.
    """
    row_number: int
    cells: tuple[tuple[str, Any], ...]

    @classmethod
    def from_mapping(cls, row_number: int, values: Mapping[str, Any]) -> RawRecord:
        return cls(row_number=row_number, cells=tuple(values.items()))

    @property
    def headers(self) -> list[str]:
        return [h for h, _ in self.cells]

    def value(self, header: str | None) -> Any:
        """Return the cell under header, or None when header is None/unknown."""
        if header is None:
            return None
        for h, v in self.cells:
            if h == header:
                return v
        return None

    def as_dict(self) -> dict[str, Any]:
        return dict(self.cells)


@dataclass(frozen=True)
class SchemaMapping:
    """Canonical field -> resolved header for one import (built once, read-only)."""
    fields: Mapping[str, str]

    def __post_init__(self) -> None:
        # freeze the underlying dict so nobody mutates the mapping after resolution
        object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))

    def header_for(self, field: str) -> str | None:
        """Header for field, or None when the (optional) field was not resolved."""
        return self.fields.get(field)

    def has(self, field: str) -> bool:
        return field in self.fields

    def get(self, record: RawRecord, field: str) -> Any:
        """Look up a record value by canonical field (None when unresolved or blank)."""
        return record.value(self.fields.get(field))

    def __iter__(self) -> Iterator[str]:
        return iter(self.fields)

    def __len__(self) -> int:
        return len(self.fields)
