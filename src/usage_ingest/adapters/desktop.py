"""Adapter for daily per-user desktop (licensed install) consumption exports."""
from __future__ import annotations

from typing import Any, Mapping, Sequence

from ..coercion import as_text, format_date, get_row_value, to_number
from ..detector import matches_desktop_consumption
from ..models import DatasetType, DesktopConsumptionRawRow
from .base import RowAdapter


class DesktopConsumptionAdapter(RowAdapter):
    dataset_type = DatasetType.DESKTOP_CONSUMPTION
    mapped_headers = (
        "usagedate",
        "productname",
        "username",
        "tokensconsumed",
        "usagehours",
        "usecount",
        "productversion",
        "machinename",
        "licenseservername",
    )

    def validate_headers(self, headers: Sequence[str]) -> bool:
        return matches_desktop_consumption(headers)

    def _transform(self, row: Mapping[str, Any], account_id: str, dataset_id: str) -> DesktopConsumptionRawRow:
        values = self.require(
            row,
            [
                ("usageDate", ("usageDate",)),
                ("productName", ("productName",)),
                ("userName", ("userName",)),
            ],
        )
        usage_date = format_date(self.require_date(values["usageDate"]))

        return DesktopConsumptionRawRow(
            dataset_id=dataset_id,
            account_id=account_id,
            usage_date=usage_date,
            product_name=as_text(values["productName"]),
            user_name=as_text(values["userName"]),
            product_version=as_text(get_row_value(row, "productVersion")),
            machine_name=as_text(get_row_value(row, "machineName")),
            license_server_name=as_text(get_row_value(row, "licenseServerName")),
            tokens_consumed=to_number(get_row_value(row, "tokensConsumed")),
            usage_hours=to_number(get_row_value(row, "usageHours")),
            use_count=to_number(get_row_value(row, "useCount")),
            raw_data=self.extra_fields(row),
        )
