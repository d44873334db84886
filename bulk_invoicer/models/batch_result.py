from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum

from .groups import ClassificationWarning, EmptyGroupSkipped, Group, GroupKey, IssuedDocument, TaxProfile
from .records import SchemaMapping
from .validation import ValidationReport

"""Batch result models: what a prepared batch looks like before confirmation
(BatchPreview / ProposalSummary) and what emission produced (EmissionReport).
"""

__all__ = [
    "BatchPreview",
    "ProposalSummary",
    "EmissionStatus",
    "GroupOutcome",
    "EmissionReport",
]


@dataclass(frozen=True)
class ProposalSummary:
    """Per-group line of the confirmation prompt."""
    group_key: GroupKey
    record_count: int
    total_amount: Decimal
    tax_profile: TaxProfile
    product_key: str | None = None

    def render(self) -> str:
        taxes = ", ".join(
            f"{c.kind} {'-' if c.is_withholding else ''}{(c.rate * 100).normalize()}%"
            for c in self.tax_profile.components
        )
        return (
            f"{self.group_key.label}: {self.record_count} records, "
            f"total {self.total_amount:.2f} ({taxes})"
        )


@dataclass(frozen=True)
class BatchPreview:
    """Result of the pure pipeline (resolve -> validate -> classify -> aggregate).

    groups is None when validation rejected the batch; zero groups are computed
    from a rejected batch.
    """
    row_count: int
    mapping: SchemaMapping
    report: ValidationReport
    groups: tuple[Group, ...] | None = None
    warnings: tuple[ClassificationWarning, ...] = ()
    skipped: tuple[EmptyGroupSkipped, ...] = ()
    rule_set: str | None = None

    @property
    def billable_groups(self) -> tuple[Group, ...]:
        if not self.groups:
            return ()
        return tuple(g for g in self.groups if not g.skipped)

    @property
    def total_amount(self) -> Decimal:
        return sum((g.total_amount for g in self.billable_groups), Decimal("0.00"))

    def proposals(self) -> list[ProposalSummary]:
        return [
            ProposalSummary(
                group_key=g.key,
                record_count=g.record_count,
                total_amount=g.total_amount,
                tax_profile=g.tax_profile,
                product_key=g.product_key,
            )
            for g in self.billable_groups
        ]

    def describe_groups(self) -> str:
        """e.g. '3 groups found, 1 skipped (zero total)'"""
        found = len(self.groups or ())
        text = f"{found} groups found"
        if self.skipped:
            text += f", {len(self.skipped)} skipped (zero total)"
        return text


class EmissionStatus(Enum):
    ISSUED = "issued"
    DUPLICATE = "duplicate"
    FAILED_TRANSIENT = "failed_transient"
    FAILED_PERMANENT = "failed_permanent"
    NOT_ATTEMPTED = "not_attempted"  # cancelled before this group started


@dataclass(frozen=True)
class GroupOutcome:
    group_key: GroupKey
    status: EmissionStatus
    fingerprint: str
    issued: IssuedDocument | None = None
    error: str | None = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.status is EmissionStatus.ISSUED


@dataclass(frozen=True)
class EmissionReport:
    outcomes: tuple[GroupOutcome, ...] = field(default_factory=tuple)

    def _count(self, status: EmissionStatus) -> int:
        return sum(1 for o in self.outcomes if o.status is status)

    @property
    def issued_count(self) -> int:
        return self._count(EmissionStatus.ISSUED)

    @property
    def duplicate_count(self) -> int:
        return self._count(EmissionStatus.DUPLICATE)

    @property
    def failed_count(self) -> int:
        return self._count(EmissionStatus.FAILED_TRANSIENT) + self._count(EmissionStatus.FAILED_PERMANENT)

    @property
    def all_issued(self) -> bool:
        return bool(self.outcomes) and all(o.ok for o in self.outcomes)
