from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence

from ..models.records import SchemaMapping

"""Schema resolution: canonical field -> actual header.

Per canonical field (in alias-table order):
1. exact, case-sensitive match of an alias against the headers, aliases tried
   in priority order;
2. otherwise case-insensitive substring match in either direction
   (header contains alias, or alias contains header), aliases again in priority
   order, headers in sheet order.
First hit wins; there is no scoring. A header already claimed by an earlier
field is not offered to later fields.
"""

__all__ = [
    "SchemaResolutionError",
    "resolve_schema",
]

logger = logging.getLogger(__name__)


class SchemaResolutionError(Exception):
    """Required canonical fields could not be matched to any header."""

    def __init__(self, missing_fields: Sequence[str], headers: Sequence[str] | None = None) -> None:
        self.missing_fields = tuple(missing_fields)
        self.headers = tuple(headers or ())
        super().__init__(f"missing required columns: {', '.join(self.missing_fields)}")


def _match_exact(aliases: Sequence[str], headers: Sequence[str]) -> str | None:
    for alias in aliases:
        if alias in headers:
            return alias
    return None


def _match_substring(aliases: Sequence[str], headers: Sequence[str]) -> str | None:
    for alias in aliases:
        token = alias.strip().lower()
        if not token:
            continue
        for header in headers:
            h = header.strip().lower()
            if not h:
                continue
            if token in h or h in token:
                return header
    return None


def resolve_schema(
    headers: Sequence[str],
    alias_table: Mapping[str, Sequence[str]],
    required_fields: Iterable[str],
) -> SchemaMapping:
    """Build the SchemaMapping for one import (pure).

    Raises:
        SchemaResolutionError: when any required field stays unresolved
    """
    required = list(required_fields)
    resolved: dict[str, str] = {}
    available = [h for h in headers if isinstance(h, str)]

    for field, aliases in alias_table.items():
        candidates = [h for h in available if h not in resolved.values()]
        header = _match_exact(aliases, candidates)
        if header is None:
            header = _match_substring(aliases, candidates)
        if header is not None:
            resolved[field] = header
            logger.debug(f"schema: {field} -> '{header}'")

    missing = [f for f in required if f not in resolved]
    if missing:
        logger.warning(f"schema: unresolved required fields {missing} in headers {list(headers)}")
        raise SchemaResolutionError(missing, headers)

    optional_missing = [f for f in alias_table if f not in resolved]
    if optional_missing:
        logger.info(f"schema: optional fields absent: {', '.join(optional_missing)}")
    return SchemaMapping(resolved)
