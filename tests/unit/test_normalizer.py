"""Unit tests for batch normalization of raw rows into usage facts."""
import logging

import pytest

from conftest import ACCOUNT_ID, FailingStore, add_dataset
from usage_ingest.config import IngestionSettings
from usage_ingest.errors import DatabaseError, NormalizationError, StoreError, ValidationError
from usage_ingest.models import PRODUCT_ALIASES_TABLE, USAGE_FACTS_TABLE, DatasetType
from usage_ingest.normalizer import (
    map_cloud_row,
    map_desktop_row,
    map_event_row,
    map_manual_adjustment_row,
    normalize_raw_dataset,
)
from usage_ingest.store import InMemoryUsageStore


def desktop_raw(usage_date, user_name="Jane", product_name="Revit 2024", dataset_id="ds-1", **extra):
    record = {
        "dataset_id": dataset_id,
        "account_id": ACCOUNT_ID,
        "usage_date": usage_date,
        "product_name": product_name,
        "user_name": user_name,
        "product_version": "2024.1",
        "machine_name": None,
        "license_server_name": "LS-01",
        "tokens_consumed": 2.0,
        "usage_hours": 1.0,
        "use_count": 4.0,
        "raw_data": None,
    }
    record.update(extra)
    return record


class UndatableStore(InMemoryUsageStore):
    """Accepts inserts but cannot record the date span afterwards."""

    def update_dataset(self, dataset_id, **fields):
        raise StoreError("statement timeout")


class NoAggregateStore(InMemoryUsageStore):
    """Serves rows but fails every ordered or counting query."""

    def select_extreme(self, table, column, filters=None, descending=False):
        raise StoreError("aggregate queries disabled")

    def count_rows(self, table, filters=None):
        raise StoreError("aggregate queries disabled")


class EmptyExtremeStore(InMemoryUsageStore):
    def select_extreme(self, table, column, filters=None, descending=False):
        return None


class OvercountingStore(InMemoryUsageStore):
    def count_rows(self, table, filters=None):
        return super().count_rows(table, filters) + 2


class AliasReadCountingStore(InMemoryUsageStore):
    def __init__(self):
        super().__init__()
        self.alias_reads = 0

    def select_rows(self, table, filters=None, offset=0, limit=None):
        if table == PRODUCT_ALIASES_TABLE:
            self.alias_reads += 1
        return super().select_rows(table, filters, offset=offset, limit=limit)


def test_map_event_row_counts_one_event():
    raw = {
        "event_date": "2024-03-01",
        "user_email": " Pat@Example.com ",
        "product_name": "Docs",
        "project_name": " Tower A ",
        "feature_category": "Viewing",
        "project_id": None,
        "raw_data": {"Action": "open"},
    }

    fact = map_event_row(raw, ACCOUNT_ID, "ds-1", {"docs": "docs"})

    assert fact.dataset_type == "acc_bim360"
    assert fact.metric_events == 1
    assert fact.metric_tokens is None
    assert fact.user_key == "pat@example.com"
    assert fact.project_key == "Tower A"
    assert fact.dimensions == {"featureCategory": "Viewing", "Action": "open"}


def test_map_cloud_row_carries_tokens_and_raw_data():
    raw = {
        "usage_date": "2024-02-01",
        "product_name": "Docs",
        "user_name": "amy",
        "tokens_consumed": 0.5,
        "raw_data": {"region": "EU"},
    }

    fact = map_cloud_row(raw, ACCOUNT_ID, "ds-1", {})

    assert fact.metric_tokens == 0.5
    assert fact.project_key is None
    assert fact.dimensions == {"region": "EU"}


def test_map_desktop_row_builds_dimensions():
    fact = map_desktop_row(desktop_raw("2024-01-01"), ACCOUNT_ID, "ds-1", {"revit 2024": "revit"})

    assert fact.product_key == "revit"
    assert fact.user_key == "jane"
    assert fact.usage_hours == 1.0
    assert fact.use_count == 4.0
    assert fact.dimensions == {"productVersion": "2024.1", "licenseServerName": "LS-01"}


def test_map_desktop_row_missing_user():
    with pytest.raises(NormalizationError, match="Missing required fields: user_name"):
        map_desktop_row(desktop_raw("2024-01-01", user_name=None), ACCOUNT_ID, "ds-1", {})


@pytest.mark.parametrize("product_name", [None, "N/A", " n/a "])
def test_manual_adjustment_without_product_maps_to_not_applicable(product_name):
    raw = {"usage_date": "2024-04-01", "product_name": product_name, "reason_type": "Credit", "tokens_consumed": -10.0}

    fact = map_manual_adjustment_row(raw, ACCOUNT_ID, "ds-1", {"n/a": "should-not-be-used"})

    assert fact.product_key == "n/a"
    assert fact.user_key == "system"
    assert fact.metric_tokens == -10.0
    assert fact.dimensions == {"reasonType": "Credit"}


def test_manual_adjustment_with_product_uses_aliases():
    raw = {"usage_date": "2024-04-01", "product_name": "ACAD", "transaction_date": "2024-04-03"}

    fact = map_manual_adjustment_row(raw, ACCOUNT_ID, "ds-1", {"acad": "autocad"})

    assert fact.product_key == "autocad"
    assert fact.dimensions == {"transactionDate": "2024-04-03"}


def test_normalize_raw_dataset_inserts_facts_and_records_span(store, blobs):
    add_dataset(store, blobs, b"", dataset_type="daily_user_desktop")
    store.insert_rows(PRODUCT_ALIASES_TABLE, [{"alias": "revit 2024", "product_key": "revit"}])
    table = DatasetType.DESKTOP_CONSUMPTION.raw_table
    store.insert_rows(
        table,
        [
            desktop_raw("2024-01-03"),
            desktop_raw("2024-01-01", user_name="Bob"),
            desktop_raw("2024-01-02", product_name="Unknown Tool"),
            desktop_raw("2024-01-09", dataset_id="other"),
        ],
    )

    result = normalize_raw_dataset(store, "ds-1", ACCOUNT_ID, DatasetType.DESKTOP_CONSUMPTION)

    assert result.rows_inserted == 3
    assert result.rows_skipped == 0
    assert (result.min_date, result.max_date, result.row_count) == ("2024-01-01", "2024-01-03", 3)
    facts = store.select_rows(USAGE_FACTS_TABLE, {"dataset_id": "ds-1"})
    assert sorted(f["product_key"] for f in facts) == ["revit", "revit", "unknown tool"]
    dataset = store.get_dataset("ds-1")
    assert (dataset.min_date, dataset.max_date, dataset.row_count) == ("2024-01-01", "2024-01-03", 3)


def test_normalize_raw_dataset_paginates(store, blobs):
    add_dataset(store, blobs, b"", dataset_type="daily_user_desktop")
    rows = [desktop_raw(f"2024-01-{day:02d}") for day in range(1, 8)]
    store.insert_rows(DatasetType.DESKTOP_CONSUMPTION.raw_table, rows)

    result = normalize_raw_dataset(
        store, "ds-1", ACCOUNT_ID, "daily_user_desktop", IngestionSettings(page_size=3, fact_batch_size=2)
    )

    assert result.rows_inserted == 7
    assert store.count_rows(USAGE_FACTS_TABLE, {"dataset_id": "ds-1"}) == 7


def test_normalize_skips_unmappable_rows_and_counts_reasons(store, blobs):
    add_dataset(store, blobs, b"", dataset_type="daily_user_desktop")
    store.insert_rows(
        DatasetType.DESKTOP_CONSUMPTION.raw_table,
        [desktop_raw("2024-01-01"), desktop_raw("2024-01-02", user_name=None)],
    )

    result = normalize_raw_dataset(store, "ds-1", ACCOUNT_ID, DatasetType.DESKTOP_CONSUMPTION)

    assert result.rows_inserted == 1
    assert result.rows_skipped == 1
    assert result.skip_reasons == {"Missing required fields: user_name": 1}


def test_normalize_without_raw_rows(store, blobs):
    add_dataset(store, blobs, b"", dataset_type="daily_user_cloud")

    with pytest.raises(ValidationError, match="No raw data found for dataset ds-1"):
        normalize_raw_dataset(store, "ds-1", ACCOUNT_ID, DatasetType.CLOUD_CONSUMPTION)


def test_normalize_when_no_fact_can_be_built(store, blobs):
    add_dataset(store, blobs, b"", dataset_type="daily_user_desktop")
    store.insert_rows(DatasetType.DESKTOP_CONSUMPTION.raw_table, [desktop_raw("2024-01-01", user_name="")])

    with pytest.raises(ValidationError, match="No valid rows found after normalization"):
        normalize_raw_dataset(store, "ds-1", ACCOUNT_ID, DatasetType.DESKTOP_CONSUMPTION)
    assert store.count_rows(USAGE_FACTS_TABLE) == 0


def test_normalize_unknown_dataset_type(store):
    with pytest.raises(ValidationError, match="Unknown dataset type"):
        normalize_raw_dataset(store, "ds-1", ACCOUNT_ID, "weekly_rollup")


def test_failed_fact_batch_names_batch_and_keeps_earlier_batches(blobs):
    store = FailingStore(USAGE_FACTS_TABLE, fail_on_call=2)
    add_dataset(store, blobs, b"", dataset_type="daily_user_desktop")
    store.insert_rows(
        DatasetType.DESKTOP_CONSUMPTION.raw_table,
        [desktop_raw("2024-01-01"), desktop_raw("2024-01-02"), desktop_raw("2024-01-03")],
    )

    with pytest.raises(DatabaseError, match="Failed to insert usage facts batch 2/2"):
        normalize_raw_dataset(store, "ds-1", ACCOUNT_ID, "daily_user_desktop", IngestionSettings(fact_batch_size=2))

    assert store.count_rows(USAGE_FACTS_TABLE) == 2


def test_dataset_update_failure_is_not_fatal(blobs):
    store = UndatableStore()
    add_dataset(store, blobs, b"", dataset_type="daily_user_desktop")
    store.insert_rows(DatasetType.DESKTOP_CONSUMPTION.raw_table, [desktop_raw("2024-01-01")])

    result = normalize_raw_dataset(store, "ds-1", ACCOUNT_ID, DatasetType.DESKTOP_CONSUMPTION)

    assert result.rows_inserted == 1
    assert store.get_dataset("ds-1").row_count is None


def _seed_unordered_desktop_rows(store, blobs):
    add_dataset(store, blobs, b"", dataset_type="daily_user_desktop")
    store.insert_rows(
        DatasetType.DESKTOP_CONSUMPTION.raw_table,
        [desktop_raw("2024-01-05"), desktop_raw("2024-01-02"), desktop_raw("2024-01-04")],
    )


@pytest.mark.parametrize("store_class", [NoAggregateStore, EmptyExtremeStore])
def test_date_span_falls_back_to_rows_read(store_class, blobs, caplog):
    store = store_class()
    _seed_unordered_desktop_rows(store, blobs)

    with caplog.at_level(logging.WARNING, logger="usage_ingest.normalizer"):
        result = normalize_raw_dataset(store, "ds-1", ACCOUNT_ID, DatasetType.DESKTOP_CONSUMPTION)

    assert (result.min_date, result.max_date, result.row_count) == ("2024-01-02", "2024-01-05", 3)
    dataset = store.get_dataset("ds-1")
    assert (dataset.min_date, dataset.max_date, dataset.row_count) == ("2024-01-02", "2024-01-05", 3)
    assert "Falling back to in-memory date range for daily_user_desktop_raw" in caplog.text


def test_store_row_count_wins_over_rows_read(blobs, caplog):
    store = OvercountingStore()
    _seed_unordered_desktop_rows(store, blobs)

    with caplog.at_level(logging.WARNING, logger="usage_ingest.normalizer"):
        result = normalize_raw_dataset(store, "ds-1", ACCOUNT_ID, DatasetType.DESKTOP_CONSUMPTION)

    assert result.row_count == 5
    assert result.rows_inserted == 3
    assert store.get_dataset("ds-1").row_count == 5
    assert "Row count discrepancy for daily_user_desktop_raw: in-memory=3, database=5" in caplog.text


def test_alias_table_is_read_once_per_run(blobs):
    store = AliasReadCountingStore()
    add_dataset(store, blobs, b"", dataset_type="daily_user_desktop")
    store.insert_rows(PRODUCT_ALIASES_TABLE, [{"alias": "revit 2024", "product_key": "revit"}])
    store.insert_rows(
        DatasetType.DESKTOP_CONSUMPTION.raw_table,
        [desktop_raw(f"2024-01-{day:02d}") for day in range(1, 6)],
    )

    result = normalize_raw_dataset(
        store, "ds-1", ACCOUNT_ID, DatasetType.DESKTOP_CONSUMPTION, IngestionSettings(page_size=2)
    )

    assert result.rows_inserted == 5
    assert store.alias_reads == 1
