from __future__ import annotations

import io
import logging
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pandas as pd
import xlrd
from xlrd.compdoc import CompDocError

from ..models.records import RawRecord

"""Tabular file reader (input boundary).

Row 1 is the header row, rows 2+ are records. No fixed column order is
assumed; headers are kept in sheet order. Fully empty rows are skipped, blank
cells become None, strings are stripped. Default NA string conversion is
disabled so literal texts like "NA" or "N/A" in id columns survive.

With all_sheets every worksheet is read and the rows are stacked into one
table; each record gains a SHEET_HEADER cell naming its worksheet. Sheets
without a header row are skipped.
"""

__all__ = [
    "FileReadError",
    "SheetHeaderError",
    "TabularData",
    "SUPPORTED_SUFFIXES",
    "read_tabular_file",
    "read_tabular_bytes",
    "normalize_frame",
    "stack_sheets",
    "SHEET_HEADER",
]

logger = logging.getLogger(__name__)

SUPPORTED_SUFFIXES = (".xlsx", ".xls", ".csv")
SHEET_HEADER = "Hoja"


class FileReadError(Exception):
    """Raised when the file cannot be opened or parsed."""


class SheetHeaderError(FileReadError):
    """Raised when the header row is missing or empty."""


@dataclass(frozen=True)
class TabularData:
    source: str
    headers: list[str]
    records: list[RawRecord]


def _clean(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, float) and pd.isna(value):
        return None
    if isinstance(value, str):
        stripped = value.strip()
        return stripped if stripped else None
    if value is pd.NaT:
        return None
    return value


def _unique_headers(raw_headers: list[Any]) -> list[str]:
    """Stringify and de-duplicate headers ('Monto', 'Monto' -> 'Monto', 'Monto.1')."""
    seen: dict[str, int] = {}
    headers: list[str] = []
    for idx, h in enumerate(raw_headers):
        name = "" if _clean(h) is None else str(h).strip()
        if not name:
            name = f"Unnamed: {idx}"
        if name in seen:
            seen[name] += 1
            name = f"{name}.{seen[name]}"
        else:
            seen[name] = 0
        headers.append(name)
    return headers


def normalize_frame(df: pd.DataFrame, source: str) -> TabularData:
    """Turn a header-less raw DataFrame into headers + RawRecords."""
    if df.shape[0] < 1 or all(_clean(v) is None for v in df.iloc[0].tolist()):
        raise SheetHeaderError(f"'{source}' has no header row")
    headers = _unique_headers(df.iloc[0].tolist())
    records: list[RawRecord] = []
    # data rows start at index 1 (sheet row 2)
    for pos, (_, raw) in enumerate(df.iloc[1:].iterrows(), start=2):
        values = [_clean(v) for v in raw.tolist()]
        if all(v is None for v in values):
            continue
        records.append(RawRecord.from_mapping(pos, dict(zip(headers, values, strict=False))))
    logger.info(f"read: {source} columns={len(headers)} rows={len(records)}")
    return TabularData(source=source, headers=headers, records=records)


def stack_sheets(tables: list[TabularData], source: str) -> TabularData:
    """Stack per-sheet tables into one, tagging every record with its sheet name."""
    headers: list[str] = []
    records: list[RawRecord] = []
    for table in tables:
        for h in table.headers:
            if h not in headers:
                headers.append(h)
        for r in table.records:
            records.append(RawRecord.from_mapping(r.row_number, {**r.as_dict(), SHEET_HEADER: table.source}))
    if not tables:
        raise SheetHeaderError(f"'{source}' has no sheet with a header row")
    headers.append(SHEET_HEADER)
    logger.info(f"read: {source} sheets={len(tables)} rows={len(records)}")
    return TabularData(source=source, headers=headers, records=records)


def _read_frames(handle: Any, suffix: str, sheet_name: str | int, all_sheets: bool) -> dict[str, pd.DataFrame]:
    if suffix == ".csv":
        return {"": pd.read_csv(handle, header=None, dtype=object, keep_default_na=False)}
    if all_sheets:
        return pd.read_excel(handle, sheet_name=None, header=None, dtype=object, keep_default_na=False)
    return {"": pd.read_excel(handle, sheet_name=sheet_name, header=None, dtype=object, keep_default_na=False)}


def _to_table(frames: dict[str, pd.DataFrame], source: str, all_sheets: bool) -> TabularData:
    if not all_sheets or "" in frames:
        return normalize_frame(next(iter(frames.values())), source)
    tables: list[TabularData] = []
    for sheet, df in frames.items():
        try:
            tables.append(normalize_frame(df, str(sheet)))
        except SheetHeaderError:
            logger.info(f"read: {source} sheet {sheet!r} has no header row, skipped")
    return stack_sheets(tables, source)


def read_tabular_file(path: Path, sheet_name: str | int = 0, all_sheets: bool = False) -> TabularData:
    """Read the first (or named) sheet of an Excel/CSV file.

    Raises:
        FileReadError: unsupported suffix, missing file or parse failure
    """
    suffix = path.suffix.lower()
    if suffix not in SUPPORTED_SUFFIXES:
        raise FileReadError(f"unsupported file type '{suffix}' (expected .xlsx, .xls or .csv)")
    if not path.exists():
        raise FileReadError(f"file not found: {path}")
    try:
        frames = _read_frames(path, suffix, sheet_name, all_sheets)
    except (ValueError, OSError, KeyError, zipfile.BadZipFile, xlrd.XLRDError, CompDocError) as e:
        raise FileReadError(f"cannot read {path.name}: {e}") from e
    return _to_table(frames, path.name, all_sheets)


def read_tabular_bytes(
    data: bytes, filename: str, sheet_name: str | int = 0, all_sheets: bool = False
) -> TabularData:
    """Same as read_tabular_file for uploads handed over by the session host."""
    suffix = Path(filename).suffix.lower()
    if suffix not in SUPPORTED_SUFFIXES:
        raise FileReadError(f"unsupported file type '{suffix}' (expected .xlsx, .xls or .csv)")
    if not data:
        raise FileReadError(f"'{filename}' is empty")
    try:
        frames = _read_frames(io.BytesIO(data), suffix, sheet_name, all_sheets)
    except (ValueError, OSError, KeyError, zipfile.BadZipFile, xlrd.XLRDError, CompDocError) as e:
        raise FileReadError(f"cannot read {filename}: {e}") from e
    return _to_table(frames, filename, all_sheets)
