from __future__ import annotations

from decimal import Decimal

import pytest

from bulk_invoicer.models import IssuedDocument, SchemaMapping
from bulk_invoicer.services.aggregator import aggregate
from bulk_invoicer.services.classifier import classify
from bulk_invoicer.services.dedup import (
    DuplicateEmissionError,
    fingerprint_records,
    normalize_cell,
    record_identity,
)
from bulk_invoicer.services.synthesizer import synthesize
from tests.conftest import chubb_row, make_records

MAPPING = SchemaMapping(
    {"case_number": "No. Caso", "category": "Servicio", "amount": "Subtotal", "adjustment": "Retención"}
)


def _document(rows, profile, counterparty_ref="cust_1"):
    rule_set = profile.rule_set()
    groups = aggregate(classify(make_records(rows), MAPPING, rule_set), MAPPING, profile, rule_set).groups
    return synthesize(groups[0], MAPPING, profile, counterparty_ref)


def test_normalize_cell():
    assert normalize_cell(None) == ""
    assert normalize_cell(12.0) == "12"
    assert normalize_cell(12.5) == "12.5"
    assert normalize_cell(Decimal("1.50")) == "1.5"
    assert normalize_cell("  C1 ") == "C1"


def test_record_identity_uses_cents():
    a = make_records([chubb_row("C1", "GRUA", "100")])[0]
    b = make_records([chubb_row("C1", "GRUA", 100.0)])[0]
    assert record_identity(a, MAPPING, ["case_number"]) == "case_number=C1|amount=10000"
    assert record_identity(a, MAPPING, ["case_number"]) == record_identity(b, MAPPING, ["case_number"])


def test_fingerprint_ignores_row_order():
    rows = [chubb_row("C1", "GRUA", 100), chubb_row("C2", "GRUA", 200), chubb_row("C3", "GRUA", 300)]
    forward = fingerprint_records(make_records(rows), MAPPING, ["case_number"])
    backward = fingerprint_records(make_records(list(reversed(rows)), first_row=10), MAPPING, ["case_number"])
    assert forward == backward


def test_fingerprint_changes_with_amount():
    a = fingerprint_records(make_records([chubb_row("C1", "GRUA", 100)]), MAPPING, ["case_number"])
    b = fingerprint_records(make_records([chubb_row("C1", "GRUA", 100.01)]), MAPPING, ["case_number"])
    assert a != b


def test_guard_rejects_second_emission(guard, chubb_profile):
    document = _document([chubb_row("C1", "GRUA", 100)], chubb_profile)
    guard.check(document)
    issued = IssuedDocument(id="doc-1", number="F-0001", total=Decimal("100.00"))
    guard.record(document, issued)

    again = _document([chubb_row("C1", "GRUA", 100)], chubb_profile)
    with pytest.raises(DuplicateEmissionError) as e:
        guard.check(again)
    assert e.value.existing_document_ref == issued
    assert e.value.group_label == "GRUA-without-adjustment"
    assert "F-0001" in str(e.value)


def test_guard_scoped_by_counterparty(guard, chubb_profile):
    document = _document([chubb_row("C1", "GRUA", 100)], chubb_profile, counterparty_ref="cust_1")
    guard.record(document, IssuedDocument(id="doc-1", number="F-0001", total=Decimal("100.00")))
    other = _document([chubb_row("C1", "GRUA", 100)], chubb_profile, counterparty_ref="cust_2")
    guard.check(other)  # no error


def test_fingerprint_depends_on_group_label():
    records = make_records([chubb_row("C1", "GRUA", 100)])
    with_adjustment = fingerprint_records(records, MAPPING, ["case_number"], "GRUA-with-adjustment")
    without_adjustment = fingerprint_records(records, MAPPING, ["case_number"], "GRUA-without-adjustment")
    assert with_adjustment != without_adjustment
    assert with_adjustment == fingerprint_records(records, MAPPING, ["case_number"], "GRUA-with-adjustment")
