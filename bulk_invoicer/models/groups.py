from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

from .config_models import TaxComponent
from .records import RawRecord

"""Classification / aggregation / synthesis result models.

GroupKey is the deterministic bucket identifier. Group is the aggregated bucket
(integer cents inside, Decimal at the boundary). SynthesizedDocument is the
proposal shown to the user; IssuedDocument is what the external issuer returns.
"""

__all__ = [
    "AdjustmentVariant",
    "GroupKey",
    "TaxProfile",
    "Group",
    "LineItem",
    "TaxLine",
    "SynthesizedDocument",
    "IssuedDocument",
    "ClassificationWarning",
    "EmptyGroupSkipped",
    "cents_to_decimal",
]

CENT = Decimal("0.01")


def cents_to_decimal(cents: int) -> Decimal:
    """Integer cents -> 2-decimal Decimal (display boundary)."""
    return (Decimal(cents) / 100).quantize(CENT)


class AdjustmentVariant(Enum):
    WITH_ADJUSTMENT = "with-adjustment"
    WITHOUT_ADJUSTMENT = "without-adjustment"


@dataclass(frozen=True)
class GroupKey:
    """Bucket name plus optional adjustment variant and source worksheet.

    Equal (bucket, variant, sheet) always yield equal keys. sheet is only set for
    profiles that bill every worksheet of a workbook separately.
    """
    bucket: str
    variant: AdjustmentVariant | None = None
    sheet: str | None = None

    @property
    def label(self) -> str:
        label = self.bucket if self.variant is None else f"{self.bucket}-{self.variant.value}"
        if self.sheet is not None:
            return f"{self.sheet}/{label}"
        return label

    @property
    def with_adjustment(self) -> bool:
        return self.variant is AdjustmentVariant.WITH_ADJUSTMENT

    def __str__(self) -> str:  # pragma: no cover (trivial)
        return self.label


@dataclass(frozen=True)
class TaxProfile:
    """Ordered tax components applied to a group's total."""
    profile_id: str
    components: tuple[TaxComponent, ...]

    @property
    def has_withholding(self) -> bool:
        return any(c.is_withholding for c in self.components)


@dataclass(frozen=True)
class ClassificationWarning:
    """Non-fatal: one record excluded from every group."""
    row_index: int
    category: str
    message: str


@dataclass(frozen=True)
class EmptyGroupSkipped:
    """Informational: a group whose total is <= 0 produces no document."""
    group_key: GroupKey
    total_amount: Decimal
    record_count: int
    reason: str


@dataclass(frozen=True)
class Group:
    key: GroupKey
    records: tuple[RawRecord, ...]
    total_cents: int
    tax_profile: TaxProfile
    product_key: str | None = None
    skipped: bool = False
    skip_reason: str | None = None

    @property
    def total_amount(self) -> Decimal:
        return cents_to_decimal(self.total_cents)

    @property
    def record_count(self) -> int:
        return len(self.records)


@dataclass(frozen=True)
class LineItem:
    description: str
    amount_cents: int
    row_index: int  # source row, kept for audit

    @property
    def amount(self) -> Decimal:
        return cents_to_decimal(self.amount_cents)


@dataclass(frozen=True)
class TaxLine:
    kind: str
    rate: Decimal
    is_withholding: bool
    amount_cents: int

    @property
    def amount(self) -> Decimal:
        return cents_to_decimal(self.amount_cents)


@dataclass(frozen=True)
class SynthesizedDocument:
    """Proposal for one billing document (not yet issued)."""
    group_key: GroupKey
    line_items: tuple[LineItem, ...]
    total_cents: int
    tax_profile: TaxProfile
    counterparty_ref: str | None
    fingerprint: str
    product_key: str | None = None

    @property
    def total_amount(self) -> Decimal:
        return cents_to_decimal(self.total_cents)

    def tax_breakdown(self) -> tuple[tuple[TaxLine, ...], int]:
        """Tax lines (half-up rounded, in cents) and the net total in cents.

        net = subtotal + taxes - withholdings
        """
        lines: list[TaxLine] = []
        net = self.total_cents
        for comp in self.tax_profile.components:
            amount = int((Decimal(self.total_cents) * comp.rate).quantize(Decimal(1), rounding=ROUND_HALF_UP))
            lines.append(TaxLine(comp.kind, comp.rate, comp.is_withholding, amount))
            net += -amount if comp.is_withholding else amount
        return tuple(lines), net

    @property
    def net_total(self) -> Decimal:
        return cents_to_decimal(self.tax_breakdown()[1])


@dataclass(frozen=True)
class IssuedDocument:
    """Reference returned by the external document issuer."""
    id: str
    number: str
    total: Decimal
