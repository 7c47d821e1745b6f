"""Record types shared by the ingestion stages."""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


DATASETS_TABLE = "datasets"
USAGE_FACTS_TABLE = "usage_facts"
PRODUCT_ALIASES_TABLE = "product_aliases"


class DatasetType(str, Enum):
    EVENT = "acc_bim360"
    CLOUD_CONSUMPTION = "daily_user_cloud"
    DESKTOP_CONSUMPTION = "daily_user_desktop"
    MANUAL_ADJUSTMENT = "manual_adjustments"

    @property
    def raw_table(self) -> str:
        return f"{self.value}_raw"

    @property
    def date_column(self) -> str:
        return "event_date" if self is DatasetType.EVENT else "usage_date"

    @classmethod
    def parse(cls, value: Any) -> Optional["DatasetType"]:
        """Return the enum member for ``value`` or None when unset/unknown."""
        if value is None or value == "":
            return None
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value))
        except ValueError:
            return None


class DatasetStatus(str, Enum):
    QUEUED = "queued"
    PROCESSED = "processed"
    FAILED = "failed"


@dataclass
class Dataset:
    id: str
    account_id: str
    original_filename: str
    storage_path: str
    status: DatasetStatus = DatasetStatus.QUEUED
    dataset_type: Optional[DatasetType] = None
    detected_headers: Optional[List[str]] = None
    min_date: Optional[str] = None
    max_date: Optional[str] = None
    row_count: Optional[int] = None
    error_message: Optional[str] = None
    rows_rejected: Optional[int] = None
    rejection_summary: Optional[Dict[str, int]] = None

    def to_record(self) -> Dict[str, Any]:
        record = asdict(self)
        record["status"] = self.status.value
        record["dataset_type"] = self.dataset_type.value if self.dataset_type else None
        return record

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Dataset":
        return cls(
            id=str(record["id"]),
            account_id=str(record["account_id"]),
            original_filename=record.get("original_filename") or "",
            storage_path=record.get("storage_path") or "",
            status=DatasetStatus(record.get("status") or DatasetStatus.QUEUED.value),
            dataset_type=DatasetType.parse(record.get("dataset_type")),
            detected_headers=record.get("detected_headers"),
            min_date=record.get("min_date"),
            max_date=record.get("max_date"),
            row_count=record.get("row_count"),
            error_message=record.get("error_message"),
            rows_rejected=record.get("rows_rejected"),
            rejection_summary=record.get("rejection_summary"),
        )


# Raw rows: one shape per dataset type, persisted verbatim.

@dataclass
class EventRawRow:
    dataset_id: str
    account_id: str
    event_date: str
    user_email: str
    product_name: str
    project_name: Optional[str] = None
    feature_category: Optional[str] = None
    project_id: Optional[str] = None
    raw_data: Optional[Dict[str, Any]] = None

    def to_record(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CloudConsumptionRawRow:
    dataset_id: str
    account_id: str
    usage_date: str
    product_name: str
    user_name: str
    tokens_consumed: Optional[float] = None
    raw_data: Optional[Dict[str, Any]] = None

    def to_record(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class DesktopConsumptionRawRow:
    dataset_id: str
    account_id: str
    usage_date: str
    product_name: str
    user_name: str
    product_version: Optional[str] = None
    machine_name: Optional[str] = None
    license_server_name: Optional[str] = None
    tokens_consumed: Optional[float] = None
    usage_hours: Optional[float] = None
    use_count: Optional[float] = None
    raw_data: Optional[Dict[str, Any]] = None

    def to_record(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ManualAdjustmentRawRow:
    dataset_id: str
    account_id: str
    usage_date: str
    transaction_date: Optional[str] = None
    reason_type: Optional[str] = None
    product_name: Optional[str] = None
    reason_comment: Optional[str] = None
    tokens_consumed: Optional[float] = None
    raw_data: Optional[Dict[str, Any]] = None

    def to_record(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class UsageFact:
    """Canonical usage record comparable across dataset types."""

    account_id: str
    dataset_id: str
    date: str
    dataset_type: str
    product_key: str
    user_key: str
    project_key: Optional[str] = None
    metric_tokens: Optional[float] = None
    metric_events: Optional[int] = None
    usage_hours: Optional[float] = None
    use_count: Optional[float] = None
    dimensions: Optional[Dict[str, Any]] = field(default=None)

    def to_record(self) -> Dict[str, Any]:
        return asdict(self)
