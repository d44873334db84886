from __future__ import annotations

import logging
from collections.abc import Sequence

from ..logging.error_log import ErrorLogBuffer
from ..models.batch_result import BatchPreview
from ..models.config_models import CounterpartyProfile
from ..models.error_record import ErrorRecord
from ..models.records import RawRecord, SchemaMapping
from ..models.validation import ValidationReport
from .aggregator import aggregate
from .classifier import classify
from .schema_resolver import SchemaResolutionError, resolve_schema
from .validator import validate_rows

"""Batch preparation: resolve -> validate -> classify -> aggregate.

Synchronous, CPU bound and free of side effects apart from logging and the
optional error log buffer. Schema and validation failures stop the batch
before any group is computed. Shared by ImportSession and the CLI preview.
"""

__all__ = [
    "ProcessingError",
    "resolve_and_validate",
    "classify_and_aggregate",
    "prepare_batch",
]

logger = logging.getLogger(__name__)


class ProcessingError(Exception):
    """Invalid request to the pipeline (e.g. unknown rule set)."""


def resolve_and_validate(
    headers: Sequence[str],
    records: Sequence[RawRecord],
    profile: CounterpartyProfile,
    shown_errors: int = 5,
    error_log: ErrorLogBuffer | None = None,
    source: str = "<upload>",
) -> tuple[SchemaMapping, ValidationReport]:
    """Resolve the schema from headers, then validate every record.

    Raises:
        SchemaResolutionError: required columns missing; no row is looked at
    """
    try:
        mapping = resolve_schema(headers, profile.aliases, profile.required_fields)
    except SchemaResolutionError as e:
        if error_log is not None:
            error_log.append(
                ErrorRecord.create(source, profile.name, -1, ",".join(e.missing_fields), "SCHEMA_UNRESOLVED", str(e))
            )
        raise
    report = validate_rows(records, mapping, shown_limit=shown_errors)
    if error_log is not None:
        for err in report.errors:
            error_log.append(
                ErrorRecord.create(source, profile.name, err.row_index, err.field, "INVALID_VALUE", err.message)
            )
    return mapping, report


def classify_and_aggregate(
    records: Sequence[RawRecord],
    mapping: SchemaMapping,
    report: ValidationReport,
    profile: CounterpartyProfile,
    rule_set_name: str | None = None,
) -> BatchPreview:
    """Classify validated records and aggregate them under one rule set."""
    if not report.valid:
        raise ProcessingError("cannot classify a batch that failed validation")
    try:
        rule_set = profile.rule_set(rule_set_name)
    except KeyError as e:
        raise ProcessingError(str(e.args[0])) from e
    classification = classify(
        records, mapping, rule_set, fixed_category=profile.fixed_category, adjustment_sign=profile.adjustment_sign
    )
    aggregation = aggregate(classification, mapping, profile, rule_set)
    preview = BatchPreview(
        row_count=len(records),
        mapping=mapping,
        report=report,
        groups=aggregation.groups,
        warnings=classification.warnings,
        skipped=aggregation.skipped,
        rule_set=rule_set.name,
    )
    logger.info(f"batch: {preview.describe_groups()}, excluded={len(preview.warnings)}")
    return preview


def prepare_batch(
    headers: Sequence[str],
    records: Sequence[RawRecord],
    profile: CounterpartyProfile,
    rule_set_name: str | None = None,
    shown_errors: int = 5,
    error_log: ErrorLogBuffer | None = None,
    source: str = "<upload>",
) -> BatchPreview:
    """Run the whole pure pipeline. A rejected batch comes back with groups=None."""
    mapping, report = resolve_and_validate(headers, records, profile, shown_errors, error_log, source)
    if not report.valid:
        return BatchPreview(row_count=len(records), mapping=mapping, report=report)
    return classify_and_aggregate(records, mapping, report, profile, rule_set_name)
