"""Adapter for manual adjustment (correction) sheets.

Only ``usageDate`` is required. Product name is optional and may be the
literal ``N/A``, which normalization maps to the product key ``n/a``.
"""
from __future__ import annotations

from typing import Any, Mapping, Sequence

from ..coercion import as_text, coerce_date, format_date, get_row_value, to_number
from ..detector import matches_manual_adjustment
from ..models import DatasetType, ManualAdjustmentRawRow
from .base import RowAdapter


class ManualAdjustmentAdapter(RowAdapter):
    dataset_type = DatasetType.MANUAL_ADJUSTMENT
    mapped_headers = (
        "usagedate",
        "transactiondate",
        "reasontype",
        "productname",
        "tokensconsumed",
        "reasoncomment",
    )

    def validate_headers(self, headers: Sequence[str]) -> bool:
        return matches_manual_adjustment(headers)

    def _transform(self, row: Mapping[str, Any], account_id: str, dataset_id: str) -> ManualAdjustmentRawRow:
        values = self.require(row, [("usageDate", ("usageDate",))])
        usage_date = format_date(self.require_date(values["usageDate"]))

        return ManualAdjustmentRawRow(
            dataset_id=dataset_id,
            account_id=account_id,
            usage_date=usage_date,
            # An unparseable transaction date is dropped, not fatal for the row.
            transaction_date=coerce_date(get_row_value(row, "transactionDate")),
            reason_type=as_text(get_row_value(row, "reasonType")),
            product_name=as_text(get_row_value(row, "productName")),
            reason_comment=as_text(get_row_value(row, "reasonComment")),
            tokens_consumed=to_number(get_row_value(row, "tokensConsumed")),
            raw_data=self.extra_fields(row),
        )
