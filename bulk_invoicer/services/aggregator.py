from __future__ import annotations

import logging
from dataclasses import dataclass, replace

from ..models.config_models import CounterpartyProfile, RuleSet
from ..models.groups import AdjustmentVariant, EmptyGroupSkipped, Group, GroupKey, TaxProfile, cents_to_decimal
from ..models.records import SchemaMapping
from .classifier import ClassificationResult
from .money import parse_decimal, to_cents

"""Per-group totals in integer cents plus tax profile resolution.

Groups whose total is <= 0 are kept in the result flagged `skipped` (so the
user sees "3 groups found, 1 skipped") but never reach synthesis.
"""

__all__ = [
    "AggregationResult",
    "aggregate",
    "tax_profile_for",
]

logger = logging.getLogger(__name__)

_VARIANT_ORDER = {
    AdjustmentVariant.WITH_ADJUSTMENT: 0,
    AdjustmentVariant.WITHOUT_ADJUSTMENT: 1,
    None: 2,
}


@dataclass(frozen=True)
class AggregationResult:
    groups: tuple[Group, ...]
    skipped: tuple[EmptyGroupSkipped, ...]

    @property
    def billable(self) -> tuple[Group, ...]:
        return tuple(g for g in self.groups if not g.skipped)


def tax_profile_for(key: GroupKey, profile: CounterpartyProfile) -> TaxProfile:
    """Static table lookup: base taxes always, withholding only for with-adjustment keys.

    Depends on the GroupKey and the profile's static configuration only, never
    on record content.
    """
    if key.with_adjustment:
        return TaxProfile(
            profile_id=f"{profile.name}:base+withholding",
            components=profile.base_taxes + profile.withholding_taxes,
        )
    return TaxProfile(profile_id=f"{profile.name}:base", components=profile.base_taxes)


def _ordered_keys(keys: list[GroupKey], rule_set: RuleSet) -> list[GroupKey]:
    """Workbook sheet order first (keys arrive in record order), then rule order, then variant."""
    bucket_pos = {rule.bucket: i for i, rule in enumerate(rule_set.rules)}
    sheet_pos: dict[str | None, int] = {}
    for k in keys:
        sheet_pos.setdefault(k.sheet, len(sheet_pos))
    return sorted(
        keys,
        key=lambda k: (
            sheet_pos[k.sheet],
            bucket_pos.get(k.bucket, len(bucket_pos)),
            _VARIANT_ORDER[k.variant],
            k.bucket,
        ),
    )


def aggregate(
    classification: ClassificationResult,
    mapping: SchemaMapping,
    profile: CounterpartyProfile,
    rule_set: RuleSet,
) -> AggregationResult:
    """Sum validated amounts per group (order independent: integer addition)."""
    groups: list[Group] = []
    skipped: list[EmptyGroupSkipped] = []

    for key in _ordered_keys(list(classification.groups), rule_set):
        records = classification.groups[key]
        total_cents = sum(to_cents(parse_decimal(mapping.get(r, "amount"))) for r in records)
        rule = rule_set.rule_for_bucket(key.bucket)
        group = Group(
            key=key,
            records=tuple(records),
            total_cents=total_cents,
            tax_profile=tax_profile_for(key, profile),
            product_key=rule.product_key if rule else None,
        )
        if total_cents <= 0:
            total = cents_to_decimal(total_cents)
            reason = f"group {key.label} total is {total:.2f}; no document generated"
            group = replace(group, skipped=True, skip_reason=reason)
            skipped.append(EmptyGroupSkipped(key, total, len(records), reason))
            logger.warning(f"aggregate: {reason}")
        else:
            logger.info(f"aggregate: {key.label} records={len(records)} total={group.total_amount:.2f}")
        groups.append(group)

    return AggregationResult(groups=tuple(groups), skipped=tuple(skipped))
