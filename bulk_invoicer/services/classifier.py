from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from decimal import Decimal

from ..models.config_models import ClassificationRule, RuleSet, RuleVariant
from ..models.groups import AdjustmentVariant, ClassificationWarning, GroupKey
from ..models.records import RawRecord, SchemaMapping
from .money import AmountParseError, is_blank, parse_decimal

"""Deterministic rule engine: validated records -> GroupKey buckets.

Category is trimmed and upper-cased. Empty category means unclassifiable: the
record is excluded with a ClassificationWarning, never put in a default bucket.
Rules are tried in order and the first match wins; rules are mutually
exclusive by construction (see config loader), so order only matters for the
trailing catch-all.
"""

__all__ = [
    "ClassificationResult",
    "classify",
    "classify_one",
    "normalize_category",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClassificationResult:
    groups: dict[GroupKey, list[RawRecord]] = field(default_factory=dict)
    warnings: tuple[ClassificationWarning, ...] = ()

    @property
    def classified_count(self) -> int:
        return sum(len(v) for v in self.groups.values())


def normalize_category(value: object) -> str:
    if is_blank(value):
        return ""
    return str(value).strip().upper()


def _adjustment(record: RawRecord, mapping: SchemaMapping) -> Decimal | None:
    """None = no adjustment column or blank cell; Decimal otherwise (may be 0)."""
    if not mapping.has("adjustment"):
        return None
    raw = mapping.get(record, "adjustment")
    if is_blank(raw):
        return None
    try:
        return parse_decimal(raw)
    except AmountParseError:
        # validator rejects these; treat as absent if called on unvalidated data
        return None


def _sheet(record: RawRecord, mapping: SchemaMapping) -> str | None:
    if not mapping.has("sheet"):
        return None
    value = mapping.get(record, "sheet")
    return None if is_blank(value) else str(value).strip()


def _variant_for(
    rule: ClassificationRule, adjustment: Decimal | None, adjustment_sign: str = "negative"
) -> AdjustmentVariant | None:
    if rule.variant is RuleVariant.NONE:
        return None
    if rule.variant is RuleVariant.WITH:
        return AdjustmentVariant.WITH_ADJUSTMENT
    if rule.variant is RuleVariant.WITHOUT:
        return AdjustmentVariant.WITHOUT_ADJUSTMENT
    if adjustment is not None and (adjustment > 0 if adjustment_sign == "positive" else adjustment < 0):
        return AdjustmentVariant.WITH_ADJUSTMENT
    return AdjustmentVariant.WITHOUT_ADJUSTMENT


def classify_one(
    category: str,
    adjustment: Decimal | None,
    rule_set: RuleSet,
    adjustment_sign: str = "negative",
    sheet: str | None = None,
) -> GroupKey | None:
    """GroupKey for (normalized category, adjustment) or None when unclassifiable."""
    if not category:
        return None
    for rule in rule_set.rules:
        if rule.matches(category):
            return GroupKey(rule.bucket, _variant_for(rule, adjustment, adjustment_sign), sheet)
    return None


def classify(
    records: Sequence[RawRecord],
    mapping: SchemaMapping,
    rule_set: RuleSet,
    fixed_category: str | None = None,
    adjustment_sign: str = "negative",
) -> ClassificationResult:
    """Partition records by GroupKey.

    fixed_category is used for profiles whose files carry no category column;
    a resolved category column always wins over it. When a sheet column is
    mapped, records of different worksheets never share a group.
    """
    groups: dict[GroupKey, list[RawRecord]] = {}
    warnings: list[ClassificationWarning] = []

    for record in records:
        if mapping.has("category"):
            category = normalize_category(mapping.get(record, "category"))
        else:
            category = fixed_category or ""
        sheet = _sheet(record, mapping)
        key = classify_one(category, _adjustment(record, mapping), rule_set, adjustment_sign, sheet)
        if key is None:
            reason = "empty category" if not category else f"category '{category}' matches no rule"
            warnings.append(ClassificationWarning(record.row_number, category, f"excluded: {reason}"))
            logger.warning(f"classify: row {record.row_number} excluded ({reason})")
            continue
        groups.setdefault(key, []).append(record)
        logger.debug(f"classify: row {record.row_number} -> {key.label}")

    summary = ", ".join(f"{k.label}={len(v)}" for k, v in groups.items())
    logger.info(f"classify: {summary or 'no groups'}; excluded={len(warnings)}")
    return ClassificationResult(groups=groups, warnings=tuple(warnings))
