"""Ingestion run orchestration for a single dataset.

One run takes a ``queued`` dataset to ``processed`` or ``failed``:

  1. load and check the dataset record
  2. download the upload from blob storage
  3. (re)detect the dataset type when unset or still the fallback type
  4. parse the file and validate headers against the adapter
  5. transform rows; per-row failures are counted, never fatal
  6. insert raw rows in fixed-size batches (no rollback on failure)
  7. normalize raw rows into usage facts
  8. mark the dataset processed

Any exception after step 1 is converted into a ``failed`` status on the
dataset and a non-raising :class:`IngestionResult`. A dataset that fails the
step 1 checks (missing, another account's, not ``queued``) is left as it was.
"""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .adapters import get_adapter
from .blob_storage import BlobStorage
from .config import IngestionSettings
from .detector import detect_dataset_type
from .errors import (
    DatabaseError,
    DatasetTypeDetectionError,
    IngestionError,
    StoreError,
    ValidationError,
)
from .logging_utils import end_stage_timer, log_error, log_invalid_row_analysis, start_stage_timer
from .models import DatasetStatus, DatasetType
from .normalizer import normalize_raw_dataset
from .parser import parse_file
from .store import UsageStore


logger = logging.getLogger(__name__)

NULL_TRANSFORM_REASON = "Row is blank (adapter returned no row)"
MAX_SUMMARY_REASONS = 20


@dataclass
class IngestionResult:
    success: bool
    rows_processed: int = 0
    rows_inserted: int = 0
    min_date: Optional[str] = None
    max_date: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    dataset_type: Optional[str] = None
    rows_rejected: int = 0
    timings: Dict[str, float] = field(default_factory=dict)


@dataclass
class TransformOutcome:
    records: List[Dict[str, Any]] = field(default_factory=list)
    rows_processed: int = 0
    rows_rejected: int = 0
    reasons: Counter = field(default_factory=Counter)
    samples: List[Tuple[int, str]] = field(default_factory=list)


def _is_html_error(message: str) -> bool:
    return "<!DOCTYPE" in message or "<html" in message


def _top_reasons(reasons: Counter, limit: int = MAX_SUMMARY_REASONS) -> Dict[str, int]:
    return dict(reasons.most_common(limit))


class IngestionOrchestrator:
    """Runs ingestion for datasets stored in ``store`` with files in ``blobs``."""

    def __init__(self, store: UsageStore, blobs: BlobStorage, settings: Optional[IngestionSettings] = None):
        self.store = store
        self.blobs = blobs
        self.settings = settings or IngestionSettings()

    def transform_rows(self, adapter, rows, account_id: str, dataset_id: str) -> TransformOutcome:
        """Run the adapter over every row, aggregating per-row failures."""
        outcome = TransformOutcome()
        total = len(rows)
        sample_limit = self.settings.invalid_sample_limit
        for row in rows:
            outcome.rows_processed += 1
            reason: Optional[str] = None
            try:
                raw_row = adapter.transform_to_raw(row, account_id, dataset_id)
            except Exception as exc:  # per-row failures never abort the run
                reason = str(exc) or type(exc).__name__
            else:
                if raw_row is None:
                    reason = NULL_TRANSFORM_REASON
                else:
                    outcome.records.append(raw_row.to_record())
            if reason is not None:
                outcome.rows_rejected += 1
                outcome.reasons[reason] += 1
                if len(outcome.samples) < sample_limit:
                    outcome.samples.append((outcome.rows_processed, reason))
            if outcome.rows_processed % self.settings.progress_every == 0:
                logger.info(
                    "Transformed %d/%d rows (%d%%)",
                    outcome.rows_processed,
                    total,
                    round(outcome.rows_processed / total * 100),
                )
        logger.info(
            "Transformed %d rows (%d skipped/invalid) from %d total rows",
            len(outcome.records),
            outcome.rows_rejected,
            outcome.rows_processed,
        )
        if outcome.rows_rejected:
            log_invalid_row_analysis(logger, outcome.rows_rejected, outcome.reasons.most_common(), outcome.samples)
        return outcome

    def insert_raw_rows(self, dataset_type: DatasetType, records: List[Dict[str, Any]], dataset_id: str) -> int:
        """Insert raw records batch by batch; the first failing batch aborts."""
        table = dataset_type.raw_table
        batch_size = self.settings.raw_batch_size
        total_batches = (len(records) + batch_size - 1) // batch_size
        inserted = 0
        logger.info("Inserting %d rows into %s in %d batches", len(records), table, total_batches)
        for start in range(0, len(records), batch_size):
            batch = records[start : start + batch_size]
            batch_number = start // batch_size + 1
            try:
                self.store.insert_rows(table, batch)
            except StoreError as exc:
                logger.error("Failed to insert batch %d/%d into %s: %s", batch_number, total_batches, table, exc)
                message = str(exc)
                if _is_html_error(message):
                    message = (
                        f"Store returned an error page at batch {batch_number}/{total_batches}. "
                        "Try a smaller file or try again later."
                    )
                raise DatabaseError(
                    f"Failed to insert batch {batch_number}/{total_batches}: {message}",
                    dataset_id,
                ) from exc
            inserted += len(batch)
            if batch_number % 10 == 0 or batch_number == total_batches:
                logger.info(
                    "Inserted batch %d/%d into %s (%d/%d rows)",
                    batch_number,
                    total_batches,
                    table,
                    inserted,
                    len(records),
                )
        return inserted

    def _load_dataset(self, dataset_id: str, account_id: str):
        try:
            dataset = self.store.get_dataset(dataset_id)
        except StoreError as exc:
            raise DatabaseError(f"Failed to load dataset {dataset_id}: {exc}", dataset_id) from exc
        if dataset is None:
            raise DatabaseError(f"Dataset not found: {dataset_id}", dataset_id)
        if dataset.account_id != account_id:
            raise ValidationError("Dataset does not belong to account", dataset_id)
        if dataset.status is not DatasetStatus.QUEUED:
            raise ValidationError(f"Dataset is not in queued status: {dataset.status.value}", dataset_id)
        return dataset

    def _resolve_type(self, dataset, buffer: bytes) -> DatasetType:
        dataset_type = dataset.dataset_type
        # The fallback type is assigned at upload when detection fails, so it is
        # never trusted without detecting again.
        if dataset_type is not None and dataset_type is not DatasetType.MANUAL_ADJUSTMENT:
            return dataset_type
        detection = detect_dataset_type(buffer, dataset.original_filename)
        if detection is None:
            raise DatasetTypeDetectionError("Could not detect dataset type from headers", dataset.id)
        try:
            self.store.update_dataset(
                dataset.id,
                dataset_type=detection.dataset_type.value,
                detected_headers=detection.headers,
            )
        except StoreError as exc:
            raise DatabaseError(f"Failed to record detected dataset type: {exc}", dataset.id) from exc
        return detection.dataset_type

    def ingest(self, dataset_id: str, account_id: str) -> IngestionResult:
        """Run one ingestion; never raises for pipeline failures."""
        timings: Dict[str, float] = {}
        rejected: Dict[str, int] = {}
        rows_rejected = 0
        try:
            dataset = self._load_dataset(dataset_id, account_id)
        except IngestionError as exc:
            # Guard failures leave the dataset record untouched.
            logger.error("Ingestion rejected for dataset %s [%s]: %s", dataset_id, exc.code, exc.message)
            return IngestionResult(success=False, error=exc.message, error_code=exc.code)

        try:
            t0 = start_stage_timer("download")
            try:
                buffer = self.blobs.download(dataset.storage_path)
            except StoreError as exc:
                raise DatabaseError(f"Failed to download file: {exc}", dataset_id) from exc
            end_stage_timer("download", t0, timings, logger)

            dataset_type = self._resolve_type(dataset, buffer)

            t0 = start_stage_timer("parse")
            parsed = parse_file(buffer, dataset.original_filename)
            end_stage_timer("parse", t0, timings, logger)

            adapter = get_adapter(dataset_type, self.settings)
            if not adapter.validate_headers(parsed.headers):
                raise ValidationError(f"Headers do not match expected format for {dataset_type.value}", dataset_id)

            logger.info("Starting transformation of %d rows for dataset %s", len(parsed.rows), dataset_id)
            t0 = start_stage_timer("transform")
            outcome = self.transform_rows(adapter, parsed.rows, account_id, dataset_id)
            end_stage_timer("transform", t0, timings, logger)
            rows_rejected = outcome.rows_rejected
            rejected = _top_reasons(outcome.reasons)
            if not outcome.records:
                raise ValidationError(
                    f"No valid rows found after transformation. Processed {outcome.rows_processed} rows, "
                    "all were invalid or skipped.",
                    dataset_id,
                )

            t0 = start_stage_timer("insert")
            inserted = self.insert_raw_rows(dataset_type, outcome.records, dataset_id)
            end_stage_timer("insert", t0, timings, logger)
            logger.info("Successfully inserted %d rows into %s", inserted, dataset_type.raw_table)

            t0 = start_stage_timer("normalize")
            normalized = normalize_raw_dataset(self.store, dataset_id, account_id, dataset_type, self.settings)
            end_stage_timer("normalize", t0, timings, logger)
            for reason, count in normalized.skip_reasons.items():
                rejected[f"normalization: {reason}"] = rejected.get(f"normalization: {reason}", 0) + count
            rejected = _top_reasons(Counter(rejected))

            refreshed = self.store.get_dataset(dataset_id)
            min_date = refreshed.min_date if refreshed else None
            max_date = refreshed.max_date if refreshed else None

            try:
                self.store.update_dataset(
                    dataset_id,
                    status=DatasetStatus.PROCESSED.value,
                    error_message=None,
                    rows_rejected=rows_rejected + normalized.rows_skipped,
                    rejection_summary=rejected or None,
                )
            except StoreError as exc:
                raise DatabaseError(f"Failed to update dataset: {exc}", dataset_id) from exc

            logger.info(
                "Dataset %s processed: %d facts, %s to %s",
                dataset_id,
                normalized.rows_inserted,
                min_date,
                max_date,
            )
            return IngestionResult(
                success=True,
                rows_processed=outcome.rows_processed,
                rows_inserted=normalized.rows_inserted,
                min_date=min_date,
                max_date=max_date,
                dataset_type=dataset_type.value,
                rows_rejected=rows_rejected + normalized.rows_skipped,
                timings=timings,
            )
        except Exception as exc:
            message = str(exc) or "Unknown error"
            code = exc.code if isinstance(exc, IngestionError) else "UNEXPECTED_ERROR"
            if isinstance(exc, IngestionError):
                logger.error("Ingestion failed for dataset %s [%s]: %s", dataset_id, code, message)
            else:
                logger.exception("Unexpected failure ingesting dataset %s", dataset_id)
            self._mark_failed(dataset_id, message, rows_rejected, rejected)
            return IngestionResult(success=False, error=message, error_code=code, timings=timings)

    def _mark_failed(self, dataset_id: str, message: str, rows_rejected: int, rejected: Dict[str, int]) -> None:
        # Best effort: a failure here is logged, the caller still gets the result.
        try:
            self.store.update_dataset(
                dataset_id,
                status=DatasetStatus.FAILED.value,
                error_message=message,
                rows_rejected=rows_rejected or None,
                rejection_summary=rejected or None,
            )
        except Exception as exc:
            log_error(logger, f"Failed to update dataset {dataset_id} error status: {exc}")


def ingest_dataset(
    store: UsageStore,
    blobs: BlobStorage,
    dataset_id: str,
    account_id: str,
    settings: Optional[IngestionSettings] = None,
) -> IngestionResult:
    """Functional entry point wrapping :class:`IngestionOrchestrator`."""
    return IngestionOrchestrator(store, blobs, settings).ingest(dataset_id, account_id)
