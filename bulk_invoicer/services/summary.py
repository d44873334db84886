from __future__ import annotations

from ..models.batch_result import BatchPreview, EmissionReport

"""SUMMARY line rendering.

Formats:
    SUMMARY rows={n} valid={true|false} errors={e} groups={g} skipped={s} excluded={x} documents={d} total={t}
    SUMMARY issued={i} duplicates={u} failed={f} state={state}
"""


def render_summary_line(preview: BatchPreview) -> str:
    """Render the SUMMARY line for a prepared (or rejected) batch.

    Examples:
        >>> from bulk_invoicer.models import SchemaMapping, ValidationReport
        >>> preview = BatchPreview(row_count=3, mapping=SchemaMapping({}), report=ValidationReport(valid=True))
        >>> render_summary_line(preview)
        'SUMMARY rows=3 valid=true errors=0 groups=0 skipped=0 excluded=0 documents=0 total=0.00'
    """
    return (
        f"SUMMARY rows={preview.row_count} "
        f"valid={'true' if preview.report.valid else 'false'} "
        f"errors={len(preview.report.errors)} "
        f"groups={len(preview.groups or ())} "
        f"skipped={len(preview.skipped)} "
        f"excluded={len(preview.warnings)} "
        f"documents={len(preview.billable_groups)} "
        f"total={preview.total_amount:.2f}"
    )


def render_emission_line(report: EmissionReport, state: str) -> str:
    return (
        f"SUMMARY issued={report.issued_count} "
        f"duplicates={report.duplicate_count} "
        f"failed={report.failed_count} "
        f"state={state}"
    )
