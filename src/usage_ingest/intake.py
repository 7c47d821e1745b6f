"""Upload intake: store a file, pre-detect its type, create a queued dataset."""
from __future__ import annotations

import logging
import re
import time
import uuid
from typing import Optional

from .blob_storage import BlobStorage
from .config import IntakeSettings
from .detector import detect_dataset_type
from .errors import DatabaseError, DatasetTypeDetectionError, StoreError, ValidationError
from .models import Dataset, DatasetStatus, DatasetType
from .orchestrator import IngestionResult, ingest_dataset
from .parser import file_extension
from .store import UsageStore


logger = logging.getLogger(__name__)

_UNSAFE_FILENAME_RX = re.compile(r"[^A-Za-z0-9.-]")


def sanitize_filename(filename: str) -> str:
    return _UNSAFE_FILENAME_RX.sub("_", filename)


def register_upload(
    store: UsageStore,
    blobs: BlobStorage,
    account_id: str,
    filename: str,
    content: bytes,
    settings: Optional[IntakeSettings] = None,
    timestamp_ms: Optional[int] = None,
) -> Dataset:
    """Validate and store an upload, returning the new ``queued`` dataset.

    Detection failures are not fatal here: the dataset falls back to the
    manual adjustment type and is re-detected when processed.
    """
    settings = settings or IntakeSettings()
    ext = file_extension(filename)
    if ext not in settings.allowed_extensions:
        raise ValidationError(f"Invalid file type. Allowed: {', '.join(settings.allowed_extensions)}")
    max_bytes = settings.max_file_size_mb * 1024 * 1024
    if len(content) > max_bytes:
        raise ValidationError(f"File too large. Maximum size: {settings.max_file_size_mb}MB")

    stamp = timestamp_ms if timestamp_ms is not None else int(time.time() * 1000)
    dataset_id = str(uuid.uuid4())
    # The id fragment keeps same-name uploads within one millisecond apart.
    storage_path = f"{account_id}/{stamp}-{dataset_id[:8]}-{sanitize_filename(filename)}"
    try:
        blobs.upload(storage_path, content)
    except StoreError as exc:
        raise DatabaseError(f"Failed to upload file: {exc}") from exc

    dataset_type = DatasetType.MANUAL_ADJUSTMENT
    detected_headers = None
    try:
        detection = detect_dataset_type(content, filename)
    except DatasetTypeDetectionError as exc:
        logger.warning("Dataset type detection failed for %s: %s", filename, exc)
    else:
        if detection is not None:
            dataset_type = detection.dataset_type
            detected_headers = detection.headers

    dataset = Dataset(
        id=dataset_id,
        account_id=account_id,
        original_filename=filename,
        storage_path=storage_path,
        status=DatasetStatus.QUEUED,
        dataset_type=dataset_type,
        detected_headers=detected_headers,
    )
    try:
        store.insert_dataset(dataset)
    except StoreError as exc:
        logger.error("Dataset creation failed for %s: %s", filename, exc)
        blobs.remove([storage_path])
        raise DatabaseError(f"Failed to create dataset record: {exc}") from exc
    logger.info("Registered dataset %s (%s) for %s", dataset.id, dataset_type.value, filename)
    return dataset


def process_dataset(store: UsageStore, blobs: BlobStorage, dataset_id: str, **kwargs) -> IngestionResult:
    """Run ingestion for ``dataset_id`` on behalf of its owning account."""
    dataset = store.get_dataset(dataset_id)
    if dataset is None:
        return IngestionResult(success=False, error="Dataset not found", error_code=DatabaseError.code)
    if dataset.status is not DatasetStatus.QUEUED:
        return IngestionResult(
            success=False,
            error=f"Dataset is not in queued status. Current status: {dataset.status.value}",
            error_code=ValidationError.code,
        )
    return ingest_dataset(store, blobs, dataset_id, dataset.account_id, **kwargs)
