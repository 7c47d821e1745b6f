"""
Usage export ingestion: parse heterogeneous usage files, detect their shape,
persist shape-specific raw rows and normalize them into canonical usage facts.
"""

from .detector import DetectionResult, detect_dataset_type
from .models import DatasetStatus, DatasetType, UsageFact
from .normalizer import normalize_raw_dataset
from .orchestrator import IngestionOrchestrator, IngestionResult, ingest_dataset
from .parser import ParsedFile, parse_file

__all__ = [
    "DatasetStatus",
    "DatasetType",
    "DetectionResult",
    "IngestionOrchestrator",
    "IngestionResult",
    "ParsedFile",
    "UsageFact",
    "detect_dataset_type",
    "ingest_dataset",
    "normalize_raw_dataset",
    "parse_file",
]
