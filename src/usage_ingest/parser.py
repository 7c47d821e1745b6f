"""Tabular file parsing for CSV-like and spreadsheet uploads."""
from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass, field
from pathlib import PurePath
from typing import Any, Dict, List

import pandas as pd

from .coercion import is_absent
from .errors import FileParseError


logger = logging.getLogger(__name__)

DELIMITED_EXTENSIONS = {".csv": ",", ".tsv": "\t", ".txt": None}
SPREADSHEET_EXTENSIONS = {".xlsx", ".xls", ".xlsm"}
SNIFF_DELIMITERS = ",\t;|"
MAX_REPORTED_ERRORS = 10


@dataclass
class ParsedFile:
    headers: List[str]
    rows: List[Dict[str, Any]] = field(default_factory=list)


def file_extension(filename: str) -> str:
    return PurePath(str(filename)).suffix.lower()


def parse_file(buffer: bytes, filename: str) -> ParsedFile:
    """Parse a raw upload into headers and field-keyed rows.

    Delimited files keep every cell as text; spreadsheets keep native numbers
    and dates (so serial dates reach the adapters as numbers). Empty cells
    become ``None`` in both cases.
    """

    ext = file_extension(filename)
    try:
        if ext in DELIMITED_EXTENSIONS:
            return _parse_delimited(buffer, DELIMITED_EXTENSIONS[ext])
        if ext in SPREADSHEET_EXTENSIONS:
            return _parse_spreadsheet(buffer)
    except FileParseError:
        raise
    except Exception as exc:
        raise FileParseError(f"Failed to parse file: {exc}") from exc
    raise FileParseError(f"Unsupported file type: {ext.lstrip('.') or filename}")


def _decode(buffer: bytes) -> str:
    # utf-8-sig drops a leading BOM when present.
    return buffer.decode("utf-8-sig")


def _sniff_delimiter(text: str) -> str:
    sample = "\n".join(text.splitlines()[:20])
    try:
        return csv.Sniffer().sniff(sample, delimiters=SNIFF_DELIMITERS).delimiter
    except csv.Error:
        return ","


def _structural_errors(text: str, sep: str, n_columns: int) -> List[str]:
    """Report rows whose field count differs from the header's."""
    errors: List[str] = []
    reader = csv.reader(io.StringIO(text), delimiter=sep)
    next(reader, None)
    row_number = 0
    for record in reader:
        if not record or (len(record) == 1 and not record[0].strip()):
            continue
        row_number += 1
        if len(record) > n_columns:
            errors.append(f"Row {row_number}: Too many fields (expected {n_columns}, found {len(record)})")
        elif len(record) < n_columns:
            errors.append(f"Row {row_number}: Too few fields (expected {n_columns}, found {len(record)})")
    return errors


def _parse_delimited(buffer: bytes, sep: str | None) -> ParsedFile:
    text = _decode(buffer)
    if sep is None:
        sep = _sniff_delimiter(text)
    try:
        df = pd.read_csv(
            io.StringIO(text),
            sep=sep,
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
            on_bad_lines="skip",
            index_col=False,
        )
    except pd.errors.EmptyDataError as exc:
        raise FileParseError("CSV file is empty or has no data rows") from exc

    headers = [str(c).strip() for c in df.columns]
    errors = _structural_errors(text, sep, len(headers))
    if errors:
        shown = "; ".join(errors[:MAX_REPORTED_ERRORS])
        more = f" (+{len(errors) - MAX_REPORTED_ERRORS} more)" if len(errors) > MAX_REPORTED_ERRORS else ""
        raise FileParseError(f"CSV parsing errors: {shown}{more}")

    df.columns = headers
    if df.shape[0] == 0:
        raise FileParseError("CSV file is empty or has no data rows")
    rows = [
        {key: (None if is_absent(value) or value == "" else value) for key, value in record.items()}
        for record in df.to_dict(orient="records")
    ]
    return ParsedFile(headers=headers, rows=rows)


def _parse_spreadsheet(buffer: bytes) -> ParsedFile:
    with pd.ExcelFile(io.BytesIO(buffer)) as workbook:
        if not workbook.sheet_names:
            raise FileParseError("Excel file has no sheets")
        df = workbook.parse(workbook.sheet_names[0], dtype=object)

    df = df.dropna(how="all")
    if df.shape[0] == 0:
        raise FileParseError("Excel file has no data rows")

    headers = [str(c) for c in df.columns]
    df.columns = headers
    rows: List[Dict[str, Any]] = []
    for record in df.to_dict(orient="records"):
        cleaned: Dict[str, Any] = {}
        for key, value in record.items():
            if is_absent(value) or (isinstance(value, str) and value == ""):
                cleaned[key] = None
            elif isinstance(value, pd.Timestamp):
                cleaned[key] = value.to_pydatetime()
            else:
                cleaned[key] = value
        rows.append(cleaned)
    logger.debug("Parsed spreadsheet with %d rows and %d columns", len(rows), len(headers))
    return ParsedFile(headers=headers, rows=rows)
