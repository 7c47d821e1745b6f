"""Batch normalization of raw rows into canonical usage facts.

Reads every raw row of a dataset (paginated), derives the dataset's date
span and row count, maps each row to a :class:`UsageFact` and inserts the
facts in fixed-size batches. Rows that cannot be mapped are skipped and
counted; a failed fact batch aborts the run without rolling back earlier
batches.
"""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional

from .aliases import load_aliases, normalize_project_key, normalize_user_key, resolve_product_key
from .config import IngestionSettings
from .errors import DatabaseError, NormalizationError, StoreError, ValidationError
from .models import USAGE_FACTS_TABLE, DatasetType, UsageFact
from .store import UsageStore


logger = logging.getLogger(__name__)

SYSTEM_USER_KEY = "system"
NOT_APPLICABLE_PRODUCT = "n/a"


@dataclass
class NormalizationResult:
    rows_normalized: int = 0
    rows_inserted: int = 0
    rows_skipped: int = 0
    min_date: Optional[str] = None
    max_date: Optional[str] = None
    row_count: int = 0
    skip_reasons: Dict[str, int] = field(default_factory=dict)


def _dimensions(base: Dict[str, Any], raw_data: Optional[Mapping[str, Any]]) -> Optional[Dict[str, Any]]:
    dims = {key: value for key, value in base.items() if value}
    if raw_data:
        dims.update(raw_data)
    return dims or None


def _require(raw_row: Mapping[str, Any], *columns: str) -> None:
    missing = [column for column in columns if not raw_row.get(column)]
    if missing:
        raise NormalizationError(f"Missing required fields: {', '.join(missing)}")


def map_event_row(raw_row: Mapping[str, Any], account_id: str, dataset_id: str, alias_map: Mapping[str, str]) -> UsageFact:
    _require(raw_row, "event_date", "user_email", "product_name")
    return UsageFact(
        account_id=account_id,
        dataset_id=dataset_id,
        date=raw_row["event_date"],
        dataset_type=DatasetType.EVENT.value,
        product_key=resolve_product_key(raw_row["product_name"], alias_map),
        user_key=normalize_user_key(raw_row["user_email"]),
        project_key=normalize_project_key(raw_row.get("project_name")),
        metric_tokens=None,
        metric_events=1,
        dimensions=_dimensions(
            {"featureCategory": raw_row.get("feature_category"), "projectId": raw_row.get("project_id")},
            raw_row.get("raw_data"),
        ),
    )


def map_cloud_row(raw_row: Mapping[str, Any], account_id: str, dataset_id: str, alias_map: Mapping[str, str]) -> UsageFact:
    _require(raw_row, "usage_date", "product_name", "user_name")
    return UsageFact(
        account_id=account_id,
        dataset_id=dataset_id,
        date=raw_row["usage_date"],
        dataset_type=DatasetType.CLOUD_CONSUMPTION.value,
        product_key=resolve_product_key(raw_row["product_name"], alias_map),
        user_key=normalize_user_key(raw_row["user_name"]),
        metric_tokens=raw_row.get("tokens_consumed"),
        dimensions=_dimensions({}, raw_row.get("raw_data")),
    )


def map_desktop_row(raw_row: Mapping[str, Any], account_id: str, dataset_id: str, alias_map: Mapping[str, str]) -> UsageFact:
    _require(raw_row, "usage_date", "product_name", "user_name")
    return UsageFact(
        account_id=account_id,
        dataset_id=dataset_id,
        date=raw_row["usage_date"],
        dataset_type=DatasetType.DESKTOP_CONSUMPTION.value,
        product_key=resolve_product_key(raw_row["product_name"], alias_map),
        user_key=normalize_user_key(raw_row["user_name"]),
        metric_tokens=raw_row.get("tokens_consumed"),
        usage_hours=raw_row.get("usage_hours"),
        use_count=raw_row.get("use_count"),
        dimensions=_dimensions(
            {
                "productVersion": raw_row.get("product_version"),
                "machineName": raw_row.get("machine_name"),
                "licenseServerName": raw_row.get("license_server_name"),
            },
            raw_row.get("raw_data"),
        ),
    )


def map_manual_adjustment_row(
    raw_row: Mapping[str, Any], account_id: str, dataset_id: str, alias_map: Mapping[str, str]
) -> UsageFact:
    _require(raw_row, "usage_date")
    product_name = raw_row.get("product_name")
    product_key = NOT_APPLICABLE_PRODUCT
    if product_name and str(product_name).strip().lower() != NOT_APPLICABLE_PRODUCT:
        product_key = resolve_product_key(product_name, alias_map)
    return UsageFact(
        account_id=account_id,
        dataset_id=dataset_id,
        date=raw_row["usage_date"],
        dataset_type=DatasetType.MANUAL_ADJUSTMENT.value,
        product_key=product_key,
        user_key=SYSTEM_USER_KEY,
        metric_tokens=raw_row.get("tokens_consumed"),
        dimensions=_dimensions(
            {
                "transactionDate": raw_row.get("transaction_date"),
                "reasonType": raw_row.get("reason_type"),
                "reasonComment": raw_row.get("reason_comment"),
            },
            raw_row.get("raw_data"),
        ),
    )


RowMapper = Callable[[Mapping[str, Any], str, str, Mapping[str, str]], UsageFact]

ROW_MAPPERS: Dict[DatasetType, RowMapper] = {
    DatasetType.EVENT: map_event_row,
    DatasetType.CLOUD_CONSUMPTION: map_cloud_row,
    DatasetType.DESKTOP_CONSUMPTION: map_desktop_row,
    DatasetType.MANUAL_ADJUSTMENT: map_manual_adjustment_row,
}


def fetch_raw_rows(store: UsageStore, table: str, filters: Mapping[str, Any], page_size: int) -> List[Dict[str, Any]]:
    """Read every matching row with offset pagination."""
    rows: List[Dict[str, Any]] = []
    offset = 0
    while True:
        try:
            page = store.select_rows(table, filters, offset=offset, limit=page_size)
        except StoreError as exc:
            raise DatabaseError(f"Failed to fetch raw data from {table}: {exc}", filters.get("dataset_id")) from exc
        if not page:
            break
        rows.extend(page)
        if len(page) < page_size:
            break
        offset += page_size
    return rows


def _query_extreme(store: UsageStore, table: str, column: str, filters: Mapping[str, Any], descending: bool) -> Optional[str]:
    try:
        value = store.select_extreme(table, column, filters, descending=descending)
    except StoreError as exc:
        logger.error("Failed to get %s date from %s: %s", "max" if descending else "min", table, exc)
        return None
    return str(value) if value else None


def compute_date_span(
    store: UsageStore,
    table: str,
    column: str,
    filters: Mapping[str, Any],
    rows: List[Mapping[str, Any]],
) -> tuple[Optional[str], Optional[str]]:
    """Min/max of ``column`` via ordered queries, falling back to ``rows``."""
    min_date = _query_extreme(store, table, column, filters, descending=False)
    max_date = _query_extreme(store, table, column, filters, descending=True)
    if not min_date or not max_date:
        logger.warning("Falling back to in-memory date range for %s", table)
        dates = sorted(r[column] for r in rows if isinstance(r.get(column), str) and r.get(column))
        if dates:
            min_date = min_date or dates[0]
            max_date = max_date or dates[-1]
    return min_date, max_date


def compute_row_count(store: UsageStore, table: str, filters: Mapping[str, Any], in_memory: int) -> int:
    try:
        db_count: Optional[int] = store.count_rows(table, filters)
    except StoreError as exc:
        logger.error("Failed to get row count for %s: %s", table, exc)
        db_count = None
    if db_count is None:
        return in_memory
    if db_count != in_memory:
        logger.warning(
            "Row count discrepancy for %s: in-memory=%d, database=%d; using database count",
            table,
            in_memory,
            db_count,
        )
    return db_count


def normalize_raw_dataset(
    store: UsageStore,
    dataset_id: str,
    account_id: str,
    dataset_type: DatasetType | str,
    settings: Optional[IngestionSettings] = None,
) -> NormalizationResult:
    """Turn a dataset's raw rows into usage facts and record its date span."""

    settings = settings or IngestionSettings()
    resolved_type = DatasetType.parse(dataset_type)
    if resolved_type is None:
        raise ValidationError(f"Unknown dataset type: {dataset_type}", dataset_id)

    logger.info("Starting batch normalization for dataset %s (type: %s)", dataset_id, resolved_type.value)
    alias_map = load_aliases(store)

    table = resolved_type.raw_table
    filters = {"dataset_id": dataset_id, "account_id": account_id}
    raw_rows = fetch_raw_rows(store, table, filters, settings.page_size)
    if not raw_rows:
        raise ValidationError(f"No raw data found for dataset {dataset_id}", dataset_id)
    logger.info("Found %d raw rows in %s to normalize", len(raw_rows), table)

    result = NormalizationResult()
    result.min_date, result.max_date = compute_date_span(store, table, resolved_type.date_column, filters, raw_rows)
    result.row_count = compute_row_count(store, table, filters, len(raw_rows))
    logger.info(
        "Raw table stats for %s: %d rows, date range %s to %s",
        table,
        result.row_count,
        result.min_date,
        result.max_date,
    )

    mapper = ROW_MAPPERS[resolved_type]
    skip_reasons: Counter = Counter()
    facts: List[Dict[str, Any]] = []
    for raw_row in raw_rows:
        result.rows_normalized += 1
        try:
            facts.append(mapper(raw_row, account_id, dataset_id, alias_map).to_record())
        except (NormalizationError, KeyError, TypeError, ValueError) as exc:
            result.rows_skipped += 1
            skip_reasons[str(exc)] += 1
            if result.rows_skipped <= 5:
                logger.warning("Skipping raw row %d of dataset %s: %s", result.rows_normalized, dataset_id, exc)
        if result.rows_normalized % settings.progress_every == 0:
            logger.info(
                "Normalized %d/%d rows (%d%%)",
                result.rows_normalized,
                len(raw_rows),
                round(result.rows_normalized / len(raw_rows) * 100),
            )
    result.skip_reasons = dict(skip_reasons)
    logger.info("Normalized %d facts from %d raw rows", len(facts), result.rows_normalized)

    if not facts:
        raise ValidationError("No valid rows found after normalization", dataset_id)

    batch_size = settings.fact_batch_size
    total_batches = (len(facts) + batch_size - 1) // batch_size
    for start in range(0, len(facts), batch_size):
        batch = facts[start : start + batch_size]
        batch_number = start // batch_size + 1
        try:
            store.insert_rows(USAGE_FACTS_TABLE, batch)
        except StoreError as exc:
            raise DatabaseError(
                f"Failed to insert usage facts batch {batch_number}/{total_batches}: {exc}",
                dataset_id,
            ) from exc
        result.rows_inserted += len(batch)
        if batch_number % 10 == 0 or batch_number == total_batches:
            logger.info(
                "Inserted facts batch %d/%d (%d/%d rows)",
                batch_number,
                total_batches,
                result.rows_inserted,
                len(facts),
            )

    try:
        store.update_dataset(
            dataset_id,
            min_date=result.min_date,
            max_date=result.max_date,
            row_count=result.row_count,
        )
    except StoreError as exc:
        logger.error("Failed to update dataset %s with date range and row count: %s", dataset_id, exc)
    else:
        logger.info(
            "Updated dataset %s: row_count=%d, min_date=%s, max_date=%s",
            dataset_id,
            result.row_count,
            result.min_date,
            result.max_date,
        )

    logger.info(
        "Batch normalization complete: %d facts inserted, date range %s to %s",
        result.rows_inserted,
        result.min_date,
        result.max_date,
    )
    return result
