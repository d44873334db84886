from __future__ import annotations

from dataclasses import replace
from decimal import Decimal

import pytest

from bulk_invoicer.models import SchemaMapping
from bulk_invoicer.services.aggregator import aggregate
from bulk_invoicer.services.classifier import classify
from bulk_invoicer.services.synthesizer import SynthesisError, describe_record, synthesize, synthesize_all
from tests.conftest import chubb_row, make_records

MAPPING = SchemaMapping(
    {"case_number": "No. Caso", "category": "Servicio", "amount": "Subtotal", "adjustment": "Retención"}
)


def _groups(rows, profile):
    rule_set = profile.rule_set()
    return aggregate(classify(make_records(rows), MAPPING, rule_set), MAPPING, profile, rule_set).groups


def test_describe_record(chubb_profile):
    record = make_records([chubb_row("C1", "grua", "100", "-4")])[0]
    assert describe_record(record, MAPPING, chubb_profile) == (
        "No. Caso C1 | Servicio GRUA | Subtotal: $100.00 | Retención: $-4.00"
    )


def test_describe_record_prefix_and_missing_identity(chubb_profile):
    profile = replace(chubb_profile, description_prefix="Proveedor 2233-GRUAS CRK")
    record = make_records([chubb_row(None, "OTRO", 12.5, 0)])[0]
    assert describe_record(record, MAPPING, profile) == (
        "Proveedor 2233-GRUAS CRK | No. Caso N/A | Servicio OTRO | Subtotal: $12.50"
    )


def test_one_line_item_per_record(chubb_profile):
    groups = _groups([chubb_row("C1", "GRUA", 100, -4), chubb_row("C2", "GRUA", 50, -2)], chubb_profile)
    document = synthesize(groups[0], MAPPING, chubb_profile, counterparty_ref="cust_1")
    assert [li.row_index for li in document.line_items] == [2, 3]
    assert [li.amount for li in document.line_items] == [Decimal("100.00"), Decimal("50.00")]
    assert document.total_amount == Decimal("150.00")
    assert document.counterparty_ref == "cust_1"
    assert document.product_key == "78101803"
    assert len(document.fingerprint) == 64


def test_tax_breakdown_with_withholding(chubb_profile):
    groups = _groups([chubb_row("C1", "GRUA", 100, -4)], chubb_profile)
    document = synthesize(groups[0], MAPPING, chubb_profile)
    taxes, net_cents = document.tax_breakdown()
    assert [(t.kind, t.is_withholding, t.amount) for t in taxes] == [
        ("IVA", False, Decimal("16.00")),
        ("IVA", True, Decimal("4.00")),
    ]
    assert net_cents == 11200
    assert document.net_total == Decimal("112.00")


def test_tax_breakdown_rounds_half_up(chubb_profile):
    groups = _groups([chubb_row("C1", "GASOLINA", "0.03")], chubb_profile)
    taxes, net_cents = synthesize(groups[0], MAPPING, chubb_profile).tax_breakdown()
    # 3 cents * 0.16 = 0.48 cents -> 0
    assert taxes[0].amount_cents == 0
    assert net_cents == 3


def test_counterparty_ref_falls_back_to_profile(chubb_profile):
    profile = replace(chubb_profile, counterparty_ref="chubb-customer")
    groups = _groups([chubb_row("C1", "GRUA", 10)], profile)
    assert synthesize(groups[0], MAPPING, profile).counterparty_ref == "chubb-customer"


def test_skipped_group_not_synthesized(chubb_profile):
    groups = _groups(
        [chubb_row("C1", "GASOLINA", 50), chubb_row("C2", "GASOLINA", -50), chubb_row("C3", "GRUA", 10)],
        chubb_profile,
    )
    skipped = next(g for g in groups if g.skipped)
    with pytest.raises(SynthesisError):
        synthesize(skipped, MAPPING, chubb_profile)
    documents = synthesize_all(groups, MAPPING, chubb_profile)
    assert [d.group_key.label for d in documents] == ["GRUA-without-adjustment"]
