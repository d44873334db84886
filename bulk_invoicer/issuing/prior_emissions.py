from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any

import psycopg2
from psycopg2 import sql

from ..models.groups import IssuedDocument

"""PriorEmissions lookup: (counterparty, fingerprint) -> issued document.

InMemoryPriorEmissions serves tests and single-process hosts.
PostgresPriorEmissions keeps the record in a `prior_emissions` table so a
re-upload after a process restart is still caught.
"""

__all__ = [
    "PriorEmissions",
    "InMemoryPriorEmissions",
    "PostgresPriorEmissions",
    "PriorEmissionsError",
]


class PriorEmissionsError(Exception):
    pass


class PriorEmissions(ABC):
    @abstractmethod
    def find(self, counterparty_ref: str | None, fingerprint: str) -> IssuedDocument | None:
        ...

    @abstractmethod
    def record(self, counterparty_ref: str | None, fingerprint: str, issued: IssuedDocument) -> None:
        ...


class InMemoryPriorEmissions(PriorEmissions):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[tuple[str, str], IssuedDocument] = {}

    def find(self, counterparty_ref: str | None, fingerprint: str) -> IssuedDocument | None:
        with self._lock:
            return self._entries.get((counterparty_ref or "", fingerprint))

    def record(self, counterparty_ref: str | None, fingerprint: str, issued: IssuedDocument) -> None:
        with self._lock:
            self._entries.setdefault((counterparty_ref or "", fingerprint), issued)

    def __len__(self) -> int:  # pragma: no cover (trivial)
        return len(self._entries)


class PostgresPriorEmissions(PriorEmissions):
    """psycopg2-backed store.

    Parameters
    ----------
    connection: psycopg2 connection (caller owns its lifetime)
    table: table name (validated by the config schema)
    """

    def __init__(self, connection: Any, table: str = "prior_emissions") -> None:
        self.connection = connection
        self.table = sql.Identifier(table)

    def ensure_table(self) -> None:
        stmt = sql.SQL(
            "CREATE TABLE IF NOT EXISTS {} ("
            " counterparty_ref TEXT NOT NULL,"
            " fingerprint CHAR(64) NOT NULL,"
            " document_id TEXT NOT NULL,"
            " document_number TEXT NOT NULL,"
            " total NUMERIC(14, 2) NOT NULL,"
            " created_at TIMESTAMPTZ NOT NULL DEFAULT now(),"
            " PRIMARY KEY (counterparty_ref, fingerprint))"
        ).format(self.table)
        self._execute(stmt, ())

    def find(self, counterparty_ref: str | None, fingerprint: str) -> IssuedDocument | None:
        stmt = sql.SQL(
            "SELECT document_id, document_number, total FROM {} WHERE counterparty_ref = %s AND fingerprint = %s"
        ).format(self.table)
        row = self._execute(stmt, (counterparty_ref or "", fingerprint), fetch=True)
        if row is None:
            return None
        return IssuedDocument(id=str(row[0]), number=str(row[1]), total=Decimal(row[2]))

    def record(self, counterparty_ref: str | None, fingerprint: str, issued: IssuedDocument) -> None:
        stmt = sql.SQL(
            "INSERT INTO {} (counterparty_ref, fingerprint, document_id, document_number, total)"
            " VALUES (%s, %s, %s, %s, %s) ON CONFLICT (counterparty_ref, fingerprint) DO NOTHING"
        ).format(self.table)
        self._execute(stmt, (counterparty_ref or "", fingerprint, issued.id, issued.number, issued.total))

    def _execute(self, stmt: Any, params: tuple[Any, ...], fetch: bool = False) -> Any:
        try:
            with self.connection:  # commit on success, rollback on error
                with self.connection.cursor() as cur:
                    cur.execute(stmt, params)
                    return cur.fetchone() if fetch else None
        except psycopg2.Error as e:
            raise PriorEmissionsError(f"prior emissions lookup failed: {e}") from e
