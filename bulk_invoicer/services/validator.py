from __future__ import annotations

import logging
from collections.abc import Sequence

from ..models.records import RawRecord, SchemaMapping
from ..models.validation import ValidationError, ValidationReport
from .money import AmountParseError, is_blank, parse_decimal, to_cents

"""Row validation gate.

Every record is checked before anything is classified, and all rows are
checked even after the first failure so the user sees every problem at once.
Any error rejects the whole batch: no partial invoicing from a file with a
single bad row.
"""

__all__ = [
    "validate_rows",
]

logger = logging.getLogger(__name__)


def _check_amount(record: RawRecord, mapping: SchemaMapping) -> ValidationError | None:
    raw = mapping.get(record, "amount")
    if is_blank(raw):
        return ValidationError(record.row_number, "amount", "amount is empty; must be a positive number")
    try:
        value = parse_decimal(raw)
    except AmountParseError:
        return ValidationError(record.row_number, "amount", f"amount {raw!r} is not a number")
    if value <= 0:
        return ValidationError(record.row_number, "amount", f"amount must be positive, got {value}")
    if to_cents(value) <= 0:
        # billed in whole cents
        return ValidationError(record.row_number, "amount", f"amount {value} rounds to 0.00; must be at least 0.01")
    return None


def _check_adjustment(record: RawRecord, mapping: SchemaMapping) -> ValidationError | None:
    # absent column or blank cell means "no adjustment"; text that is present
    # but unparseable is ambiguous money data
    if not mapping.has("adjustment"):
        return None
    raw = mapping.get(record, "adjustment")
    if is_blank(raw):
        return None
    try:
        parse_decimal(raw)
    except AmountParseError:
        return ValidationError(record.row_number, "adjustment", f"adjustment {raw!r} is not a number")
    return None


def validate_rows(
    records: Sequence[RawRecord],
    mapping: SchemaMapping,
    shown_limit: int = 5,
) -> ValidationReport:
    """Validate all records; never stops at the first failure."""
    errors: list[ValidationError] = []
    for record in records:
        # one error per failing row; amount problems take precedence
        for check in (_check_amount, _check_adjustment):
            err = check(record, mapping)
            if err is not None:
                errors.append(err)
                break
    if not records:
        errors.append(ValidationError(-1, "rows", "file contains no data rows"))

    report = ValidationReport.build(errors, checked_rows=len(records), shown_limit=shown_limit)
    if report.valid:
        logger.info(f"validation: {len(records)} rows ok")
    else:
        logger.warning(f"validation: {len(errors)} errors in {len(records)} rows; batch rejected")
    return report
