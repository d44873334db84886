from __future__ import annotations

import logging
from collections.abc import Iterable

from ..models.config_models import CounterpartyProfile
from ..models.groups import Group, LineItem, SynthesizedDocument, cents_to_decimal
from ..models.records import RawRecord, SchemaMapping
from .dedup import normalize_cell, fingerprint_records
from .money import AmountParseError, is_blank, parse_decimal, to_cents

"""Document synthesis (pure, no I/O).

One line item per source record. The description template is fixed:

    [prefix | ]<header> <value> | ... | <category header> <CATEGORY> | Subtotal: $<amount>[ | <adjustment header>: $<adjustment>]

Identity values are labelled with the header text they came from so a reader
can trace every line back to its spreadsheet row.
"""

__all__ = [
    "SynthesisError",
    "describe_record",
    "synthesize",
    "synthesize_all",
]

logger = logging.getLogger(__name__)


class SynthesisError(Exception):
    pass


def describe_record(record: RawRecord, mapping: SchemaMapping, profile: CounterpartyProfile) -> str:
    parts: list[str] = []
    if profile.description_prefix:
        parts.append(profile.description_prefix)
    for field in profile.identity_fields:
        header = mapping.header_for(field)
        if header is None:
            continue
        value = normalize_cell(mapping.get(record, field)) or "N/A"
        parts.append(f"{header} {value}")
    category_header = mapping.header_for("category")
    if category_header is not None:
        parts.append(f"{category_header} {str(mapping.get(record, 'category')).strip().upper()}")
    amount = cents_to_decimal(to_cents(parse_decimal(mapping.get(record, "amount"))))
    parts.append(f"Subtotal: ${amount:.2f}")
    adjustment_header = mapping.header_for("adjustment")
    if adjustment_header is not None:
        raw = mapping.get(record, "adjustment")
        if not is_blank(raw):
            try:
                adjustment = cents_to_decimal(to_cents(parse_decimal(raw)))
            except AmountParseError:
                adjustment = None
            if adjustment:
                parts.append(f"{adjustment_header}: ${adjustment:.2f}")
    return " | ".join(parts)


def synthesize(
    group: Group,
    mapping: SchemaMapping,
    profile: CounterpartyProfile,
    counterparty_ref: str | None = None,
) -> SynthesizedDocument:
    """Build the proposal for one non-skipped group.

    Raises:
        SynthesisError: the group was skipped (total <= 0)
    """
    if group.skipped or group.total_cents <= 0:
        raise SynthesisError(f"group {group.key.label} is not billable: {group.skip_reason or 'zero total'}")
    items = tuple(
        LineItem(
            description=describe_record(r, mapping, profile),
            amount_cents=to_cents(parse_decimal(mapping.get(r, "amount"))),
            row_index=r.row_number,
        )
        for r in group.records
    )
    document = SynthesizedDocument(
        group_key=group.key,
        line_items=items,
        total_cents=group.total_cents,
        tax_profile=group.tax_profile,
        counterparty_ref=counterparty_ref if counterparty_ref is not None else profile.counterparty_ref,
        fingerprint=fingerprint_records(group.records, mapping, profile.identity_fields, group.key.label),
        product_key=group.product_key,
    )
    logger.debug(f"synthesize: {group.key.label} lines={len(items)} total={document.total_amount:.2f}")
    return document


def synthesize_all(
    groups: Iterable[Group],
    mapping: SchemaMapping,
    profile: CounterpartyProfile,
    counterparty_ref: str | None = None,
) -> list[SynthesizedDocument]:
    """Documents for every billable group; skipped groups are left out."""
    return [synthesize(g, mapping, profile, counterparty_ref) for g in groups if not g.skipped]
