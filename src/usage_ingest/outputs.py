"""Persist store tables to disk for inspection or downstream loading."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, Iterable, Optional

import pandas as pd

from .models import DATASETS_TABLE, USAGE_FACTS_TABLE, DatasetType
from .store import InMemoryUsageStore


logger = logging.getLogger(__name__)

# Columns holding dicts/lists; flattened to JSON text before writing.
JSON_COLUMNS = ("raw_data", "dimensions", "detected_headers", "rejection_summary")
SUPPORTED_FORMATS = ("csv", "parquet")


def ensure_directory(directory: str | Path) -> Path:
    path = Path(directory)
    path.mkdir(parents=True, exist_ok=True)
    return path


def _to_json_text(value) -> Optional[str]:
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return None
    return json.dumps(value, ensure_ascii=False, sort_keys=False)


def prepare_frame(df: pd.DataFrame) -> pd.DataFrame:
    work = df.copy()
    for column in JSON_COLUMNS:
        if column in work.columns:
            work[column] = work[column].map(_to_json_text).astype("string")
    return work


def write_table(df: pd.DataFrame, path_stem: Path, fmt: str = "csv") -> Path:
    """Write one table as ``<stem>.csv`` or ``<stem>.parquet``."""
    if fmt not in SUPPORTED_FORMATS:
        raise ValueError(f"Unsupported output format: {fmt}")
    work = prepare_frame(df)
    path = path_stem.with_suffix(f".{fmt}")
    if fmt == "parquet":
        work.to_parquet(path, index=False)
    else:
        work.to_csv(path, index=False, encoding="utf-8")
    logger.info("Wrote %d rows to %s", len(work), path)
    return path


def write_tables(
    store: InMemoryUsageStore,
    output_dir: str | Path,
    fmt: str = "csv",
    tables: Optional[Iterable[str]] = None,
) -> Dict[str, Path]:
    """Write datasets, usage facts and every non-empty raw table."""
    base = ensure_directory(output_dir)
    names = list(tables) if tables is not None else [
        DATASETS_TABLE,
        USAGE_FACTS_TABLE,
        *(t.raw_table for t in DatasetType),
    ]
    written: Dict[str, Path] = {}
    for name in names:
        df = store.export_table(name)
        if df.empty and name not in (DATASETS_TABLE, USAGE_FACTS_TABLE):
            continue
        written[name] = write_table(df, base / name, fmt)
    return written
