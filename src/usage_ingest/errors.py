"""Error taxonomy for the ingestion pipeline.

Structural failures derive from :class:`IngestionError` and carry a
machine-readable ``code`` plus the dataset they relate to. Per-row problems
raise :class:`RowTransformError`, which the orchestrator counts and
aggregates instead of propagating.
"""
from __future__ import annotations

from typing import List, Optional


class IngestionError(Exception):
    code = "INGESTION_ERROR"

    def __init__(self, message: str, dataset_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.dataset_id = dataset_id

    def __str__(self) -> str:
        return self.message


class FileParseError(IngestionError):
    code = "FILE_PARSE_ERROR"


class DatasetTypeDetectionError(IngestionError):
    code = "TYPE_DETECTION_ERROR"


class ValidationError(IngestionError):
    code = "VALIDATION_ERROR"


class NormalizationError(IngestionError):
    code = "NORMALIZATION_ERROR"


class DatabaseError(IngestionError):
    code = "DATABASE_ERROR"


class RowTransformError(ValueError):
    """Raised by adapters for a single malformed row."""

    def __init__(self, message: str, missing_fields: Optional[List[str]] = None):
        super().__init__(message)
        self.missing_fields = list(missing_fields or [])

    @classmethod
    def missing(cls, fields: List[str]) -> "RowTransformError":
        return cls(f"Missing required fields: {', '.join(fields)}", missing_fields=fields)


class StoreError(RuntimeError):
    """Failure reported by a relational store collaborator."""


class BlobNotFoundError(StoreError):
    """Requested blob does not exist in storage."""
