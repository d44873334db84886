from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Iterable, Sequence
from decimal import Decimal

from ..issuing.prior_emissions import PriorEmissions
from ..models.groups import IssuedDocument, SynthesizedDocument
from ..models.records import RawRecord, SchemaMapping
from .money import AmountParseError, is_blank, parse_decimal, to_cents

"""Anti-duplicate guard.

A document's fingerprint is SHA-256 over its group key label and the *sorted*
identity strings of its source records. Row order, session object and upload
time do not matter, so re-uploading the same spreadsheet after a crash yields
the same fingerprint.
The guard is consulted synchronously right before every issuance call.
"""

__all__ = [
    "DuplicateEmissionError",
    "AntiDuplicateGuard",
    "record_identity",
    "fingerprint_records",
    "stable_hash",
    "normalize_cell",
]

logger = logging.getLogger(__name__)


class DuplicateEmissionError(Exception):
    """An identical batch was already issued for this counterparty."""

    def __init__(self, existing: IssuedDocument, fingerprint: str, group_label: str | None = None) -> None:
        self.existing_document_ref = existing
        self.fingerprint = fingerprint
        self.group_label = group_label
        where = f" for group {group_label}" if group_label else ""
        super().__init__(f"already issued{where} as document {existing.number} (id={existing.id})")


def normalize_cell(value: object) -> str:
    if is_blank(value):
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, Decimal):
        return format(value.normalize(), "f")
    return str(value).strip()


def record_identity(record: RawRecord, mapping: SchemaMapping, identity_fields: Sequence[str]) -> str:
    """Stable identity string of one record: identity fields plus amount in cents."""
    parts = [f"{f}={normalize_cell(mapping.get(record, f))}" for f in identity_fields]
    try:
        parts.append(f"amount={to_cents(parse_decimal(mapping.get(record, 'amount')))}")
    except AmountParseError:
        parts.append(f"amount={normalize_cell(mapping.get(record, 'amount'))}")
    return "|".join(parts)


def stable_hash(identities: Iterable[str], group_label: str = "") -> str:
    payload = json.dumps([group_label, sorted(identities)], ensure_ascii=False, separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def fingerprint_records(
    records: Iterable[RawRecord],
    mapping: SchemaMapping,
    identity_fields: Sequence[str],
    group_label: str = "",
) -> str:
    # same rows in two groups (e.g. with and without adjustment) are two documents
    return stable_hash((record_identity(r, mapping, identity_fields) for r in records), group_label)


class AntiDuplicateGuard:
    """Blocks re-emission of a batch already accepted by the issuer."""

    def __init__(self, prior_emissions: PriorEmissions) -> None:
        self.prior_emissions = prior_emissions

    def check(self, document: SynthesizedDocument) -> None:
        """Raise DuplicateEmissionError when the document's fingerprint was issued before."""
        existing = self.prior_emissions.find(document.counterparty_ref, document.fingerprint)
        if existing is not None:
            logger.warning(
                f"dedup: {document.group_key.label} already issued as {existing.number} "
                f"(fingerprint={document.fingerprint[:12]})"
            )
            raise DuplicateEmissionError(existing, document.fingerprint, document.group_key.label)

    def record(self, document: SynthesizedDocument, issued: IssuedDocument) -> None:
        self.prior_emissions.record(document.counterparty_ref, document.fingerprint, issued)
        logger.debug(f"dedup: recorded {document.fingerprint[:12]} -> {issued.number}")
