"""Adapter for daily per-user cloud consumption exports."""
from __future__ import annotations

from typing import Any, Mapping, Sequence

from ..coercion import as_text, format_date, get_row_value, to_number
from ..detector import matches_cloud_consumption
from ..models import CloudConsumptionRawRow, DatasetType
from .base import RowAdapter


class CloudConsumptionAdapter(RowAdapter):
    dataset_type = DatasetType.CLOUD_CONSUMPTION
    mapped_headers = ("usagedate", "productname", "username", "tokensconsumed")

    def validate_headers(self, headers: Sequence[str]) -> bool:
        return matches_cloud_consumption(headers)

    def _transform(self, row: Mapping[str, Any], account_id: str, dataset_id: str) -> CloudConsumptionRawRow:
        values = self.require(
            row,
            [
                ("usageDate", ("usageDate",)),
                ("productName", ("productName",)),
                ("userName", ("userName",)),
            ],
        )
        usage_date = format_date(self.require_date(values["usageDate"]))

        return CloudConsumptionRawRow(
            dataset_id=dataset_id,
            account_id=account_id,
            usage_date=usage_date,
            product_name=as_text(values["productName"]),
            user_name=as_text(values["userName"]),
            tokens_consumed=to_number(get_row_value(row, "tokensConsumed")),
            raw_data=self.extra_fields(row),
        )
