from __future__ import annotations

from decimal import Decimal

from bulk_invoicer.models import (
    EmissionReport,
    EmissionStatus,
    GroupKey,
    GroupOutcome,
    IssuedDocument,
    SchemaMapping,
    ValidationError,
    ValidationReport,
)
from bulk_invoicer.services.orchestrator import prepare_batch
from bulk_invoicer.services.summary import render_emission_line, render_summary_line
from tests.conftest import CHUBB_HEADERS, chubb_row, make_records


def test_summary_line_for_prepared_batch(chubb_profile):
    records = make_records(
        [
            chubb_row("C1", "GRUA", 100, -4),
            chubb_row("C2", "GRUA", 50),
            chubb_row("C3", None, 10),
        ]
    )
    preview = prepare_batch(CHUBB_HEADERS, records, chubb_profile)
    assert render_summary_line(preview) == (
        "SUMMARY rows=3 valid=true errors=0 groups=2 skipped=0 excluded=1 documents=2 total=150.00"
    )


def test_summary_line_for_rejected_batch():
    from bulk_invoicer.models import BatchPreview

    report = ValidationReport.build([ValidationError(2, "amount", "bad")], checked_rows=4)
    preview = BatchPreview(row_count=4, mapping=SchemaMapping({}), report=report)
    assert render_summary_line(preview) == (
        "SUMMARY rows=4 valid=false errors=1 groups=0 skipped=0 excluded=0 documents=0 total=0.00"
    )


def test_emission_line():
    issued = IssuedDocument(id="1", number="F-1", total=Decimal("10.00"))
    report = EmissionReport(
        (
            GroupOutcome(GroupKey("GRUA"), EmissionStatus.ISSUED, "a", issued=issued, attempts=1),
            GroupOutcome(GroupKey("OTROS"), EmissionStatus.DUPLICATE, "b"),
            GroupOutcome(GroupKey("X"), EmissionStatus.FAILED_PERMANENT, "c", error="rejected"),
            GroupOutcome(GroupKey("Y"), EmissionStatus.FAILED_TRANSIENT, "d", error="timeout"),
        )
    )
    assert render_emission_line(report, "FAILED") == "SUMMARY issued=1 duplicates=1 failed=2 state=FAILED"
    assert not report.all_issued
