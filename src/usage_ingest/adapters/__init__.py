"""Per-dataset-type row adapters."""
from __future__ import annotations

from typing import Dict, Optional, Type

from ..config import IngestionSettings
from ..errors import ValidationError
from ..models import DatasetType
from .base import RowAdapter
from .cloud import CloudConsumptionAdapter
from .desktop import DesktopConsumptionAdapter
from .event import EventAdapter
from .manual import ManualAdjustmentAdapter


ADAPTERS: Dict[DatasetType, Type[RowAdapter]] = {
    DatasetType.EVENT: EventAdapter,
    DatasetType.CLOUD_CONSUMPTION: CloudConsumptionAdapter,
    DatasetType.DESKTOP_CONSUMPTION: DesktopConsumptionAdapter,
    DatasetType.MANUAL_ADJUSTMENT: ManualAdjustmentAdapter,
}


def get_adapter(dataset_type: DatasetType, settings: Optional[IngestionSettings] = None) -> RowAdapter:
    adapter_cls = ADAPTERS.get(DatasetType.parse(dataset_type))
    if adapter_cls is None:
        raise ValidationError(f"Unknown dataset type: {dataset_type}")
    settings = settings or IngestionSettings()
    return adapter_cls(
        max_extra_fields=settings.max_extra_fields,
        max_extra_value_length=settings.max_extra_value_length,
    )


__all__ = [
    "ADAPTERS",
    "CloudConsumptionAdapter",
    "DesktopConsumptionAdapter",
    "EventAdapter",
    "ManualAdjustmentAdapter",
    "RowAdapter",
    "get_adapter",
]
