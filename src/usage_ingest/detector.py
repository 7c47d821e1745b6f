"""Dataset type detection from header signatures.

Signatures overlap, so they are tested in a fixed priority order: the
desktop export carries every cloud column plus desktop-only ones, and the
manual adjustment sheet shares ``usagedate``/``productname``/``tokensconsumed``
with both.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Sequence, Set, Tuple

from .errors import DatasetTypeDetectionError
from .models import DatasetType
from .parser import parse_file


logger = logging.getLogger(__name__)

EVENT_PRODUCT_HEADERS = ("product / sub product", "product/sub product", "product")
CONSUMPTION_CORE_HEADERS = ("usagedate", "productname", "username", "tokensconsumed")
DESKTOP_ONLY_HEADERS = ("usagehours", "usecount", "previous version")
MANUAL_ADJUSTMENT_HEADERS = ("usagedate", "transactiondate", "reasontype", "productname", "tokensconsumed")


@dataclass(frozen=True)
class DetectionResult:
    dataset_type: DatasetType
    headers: List[str]


def normalize_headers(headers: Iterable[str]) -> Set[str]:
    return {str(h).strip().lower() for h in headers if h is not None}


def _has_all(normalized: Set[str], required: Sequence[str]) -> bool:
    return all(h in normalized for h in required)


def _has_any(normalized: Set[str], candidates: Sequence[str]) -> bool:
    return any(h in normalized for h in candidates)


def matches_event(headers: Iterable[str]) -> bool:
    normalized = normalize_headers(headers)
    return _has_all(normalized, ("event date", "user email", "project name")) and _has_any(
        normalized, EVENT_PRODUCT_HEADERS
    )


def matches_desktop_consumption(headers: Iterable[str]) -> bool:
    normalized = normalize_headers(headers)
    return _has_all(normalized, CONSUMPTION_CORE_HEADERS) and _has_any(normalized, DESKTOP_ONLY_HEADERS)


def matches_cloud_consumption(headers: Iterable[str]) -> bool:
    normalized = normalize_headers(headers)
    return _has_all(normalized, CONSUMPTION_CORE_HEADERS) and not _has_any(normalized, DESKTOP_ONLY_HEADERS)


def matches_manual_adjustment(headers: Iterable[str]) -> bool:
    return _has_all(normalize_headers(headers), MANUAL_ADJUSTMENT_HEADERS)


# Order matters: desktop before cloud, manual adjustment last.
SIGNATURES: Tuple[Tuple[DatasetType, Callable[[Iterable[str]], bool]], ...] = (
    (DatasetType.EVENT, matches_event),
    (DatasetType.DESKTOP_CONSUMPTION, matches_desktop_consumption),
    (DatasetType.CLOUD_CONSUMPTION, matches_cloud_consumption),
    (DatasetType.MANUAL_ADJUSTMENT, matches_manual_adjustment),
)


def detect_from_headers(headers: Sequence[str]) -> Optional[DatasetType]:
    """Return the first dataset type whose signature matches ``headers``."""
    for dataset_type, predicate in SIGNATURES:
        if predicate(headers):
            return dataset_type
    return None


def detect_dataset_type(buffer: bytes, filename: str) -> Optional[DetectionResult]:
    """Parse ``buffer`` and detect its dataset type.

    Returns None when no signature matches; raises
    :class:`DatasetTypeDetectionError` when the file cannot be parsed.
    """
    try:
        headers = parse_file(buffer, filename).headers
    except Exception as exc:
        raise DatasetTypeDetectionError(f"Failed to detect dataset type: {exc}") from exc

    dataset_type = detect_from_headers(headers)
    if dataset_type is None:
        logger.info("No dataset signature matched headers of %s: %s", filename, headers)
        return None
    logger.info("Detected %s for %s", dataset_type.value, filename)
    return DetectionResult(dataset_type=dataset_type, headers=list(headers))
