"""Field coercion shared by the row adapters.

Spreadsheet exports encode the same date many ways: native date cells,
serial day numbers, ISO strings with or without a time part, and free-form
text. Everything is funnelled through :func:`parse_date` and rendered as
``YYYY-MM-DD`` by :func:`format_date`.
"""
from __future__ import annotations

import math
import re
import warnings
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, Mapping, Optional

import numpy as np
import pandas as pd


# Serial 0 is 1899-12-30 so that serial 60 lands on 1900-02-28, matching the
# spreadsheet convention that counts a non-existent 1900-02-29.
EXCEL_EPOCH = date(1899, 12, 30)
MIN_YEAR = 1900
MAX_YEAR = 2100
SERIAL_UPPER_BOUND = 1_000_000
MAX_DATE_STRING_LENGTH = 50

DEFAULT_MAX_EXTRA_FIELDS = 200
DEFAULT_MAX_EXTRA_VALUE_LENGTH = 1000

_NUMERIC_PREFIX_RX = re.compile(r"^[+\-]?\d{6,}")
_FRACTIONAL_SECONDS_RX = re.compile(r"(?<=\d{2}:\d{2}:\d{2})\.\d+")


def is_absent(value: Any) -> bool:
    """True for None and the pandas/numpy missing markers (NaN, NaT, NA)."""
    if value is None:
        return True
    if isinstance(value, (str, bytes, list, tuple, dict, set)):
        return False
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def is_blank(value: Any) -> bool:
    return is_absent(value) or (isinstance(value, str) and not value.strip())


def _in_range(d: date) -> bool:
    return MIN_YEAR <= d.year <= MAX_YEAR


def excel_serial_to_date(serial: Any) -> Optional[date]:
    """Convert a spreadsheet serial day number to a date.

    The fractional (time of day) part is ignored. Serials below 1 return None.
    No calendar window is applied here; :func:`parse_date` does that.
    """
    if serial is None or isinstance(serial, bool):
        return None
    try:
        number = float(serial)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number) or number < 1:
        return None
    try:
        return EXCEL_EPOCH + timedelta(days=int(math.floor(number)))
    except OverflowError:
        return None


def _timestamp_to_date(ts: Any) -> Optional[date]:
    if ts is None or ts is pd.NaT or (isinstance(ts, float) and math.isnan(ts)):
        return None
    if isinstance(ts, pd.Timestamp):
        if pd.isna(ts):
            return None
        return ts.date()
    if isinstance(ts, datetime):
        return ts.date()
    return None


def _parse_number(number: float) -> Optional[date]:
    if math.isnan(number) or math.isinf(number):
        return None
    if 0 < number < SERIAL_UPPER_BOUND:
        d = excel_serial_to_date(number)
        if d is not None and _in_range(d):
            return d
    # Outside the serial window (or out of calendar range): epoch milliseconds.
    # Small values such as 1 or -5 therefore land on 1970-01-01 / 1969-12-31.
    try:
        d = pd.Timestamp(number, unit="ms").date()
    except (ValueError, OverflowError):
        return None
    return d if _in_range(d) else None


def _parse_string(text: str) -> Optional[date]:
    trimmed = text.strip()
    if not trimmed:
        return None
    if len(trimmed) > MAX_DATE_STRING_LENGTH or _NUMERIC_PREFIX_RX.match(trimmed):
        return None

    iso_like = _FRACTIONAL_SECONDS_RX.sub("", trimmed.replace(" ", "T", 1), count=1)
    candidates = (
        (iso_like, {"format": "ISO8601"}),
        (trimmed, {}),
    )
    for candidate, kwargs in candidates:
        try:
            with warnings.catch_warnings():
                warnings.simplefilter("ignore", UserWarning)
                parsed = pd.to_datetime(candidate, errors="coerce", **kwargs)
        except (ValueError, OverflowError, TypeError):
            continue
        d = _timestamp_to_date(parsed)
        if d is not None and _in_range(d):
            return d
    return None


def parse_date(value: Any) -> Optional[date]:
    """Parse a raw cell value into a date within 1900-2100, else None."""
    if is_absent(value) or isinstance(value, bool):
        return None
    if isinstance(value, np.datetime64):
        value = pd.Timestamp(value)
    if isinstance(value, datetime):
        d = value.date()
        return d if _in_range(d) else None
    if isinstance(value, date):
        return value if _in_range(value) else None
    if isinstance(value, (int, float, np.integer, np.floating)):
        return _parse_number(float(value))
    if isinstance(value, str):
        return _parse_string(value)
    return None


def format_date(value: Optional[date]) -> Optional[str]:
    if value is None or not _in_range(value):
        return None
    return f"{value.year:04d}-{value.month:02d}-{value.day:02d}"


def coerce_date(value: Any) -> Optional[str]:
    """Parse and format in one step; None when the value is not a usable date."""
    return format_date(parse_date(value))


def to_number(value: Any) -> Optional[float]:
    """Convert a cell to float. Blank or non-numeric values become None."""
    if is_absent(value):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def as_text(value: Any) -> Optional[str]:
    """Render a non-blank cell as text; whole floats lose their ``.0``."""
    if is_blank(value):
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, (float, np.floating)) and float(value).is_integer():
        return str(int(value))
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def _row_key_index(row: Mapping[str, Any]) -> Dict[str, str]:
    index: Dict[str, str] = {}
    for key in row:
        index.setdefault(str(key).strip().lower(), key)
    return index


def get_row_value(row: Mapping[str, Any], *keys: str) -> Any:
    """Return the first non-blank value among ``keys`` (case-insensitive, trimmed)."""
    index = _row_key_index(row)
    for key in keys:
        row_key = index.get(key.strip().lower())
        if row_key is None:
            continue
        value = row[row_key]
        if not is_blank(value):
            return value
    return None


def to_json_scalar(value: Any, max_length: int = DEFAULT_MAX_EXTRA_VALUE_LENGTH) -> Any:
    if isinstance(value, (bool, np.bool_)):
        return bool(value)
    if isinstance(value, (int, np.integer)):
        return int(value)
    if isinstance(value, (float, np.floating)):
        number = float(value)
        return None if math.isnan(number) or math.isinf(number) else number
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    text = value if isinstance(value, str) else str(value)
    return text[:max_length]


def collect_extra_fields(
    row: Mapping[str, Any],
    mapped_keys: Iterable[str],
    max_fields: int = DEFAULT_MAX_EXTRA_FIELDS,
    max_value_length: int = DEFAULT_MAX_EXTRA_VALUE_LENGTH,
) -> Optional[Dict[str, Any]]:
    """Collect non-blank columns not already mapped to named attributes.

    Keeps source column order and names; stops after ``max_fields`` entries.
    """
    mapped = {k.strip().lower() for k in mapped_keys}
    extras: Dict[str, Any] = {}
    for key, value in row.items():
        if str(key).strip().lower() in mapped or is_blank(value):
            continue
        if len(extras) >= max_fields:
            break
        extras[str(key)] = to_json_scalar(value, max_value_length)
    return extras or None
