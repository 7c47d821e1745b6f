"""Adapter for per-event activity logs (one row per user action)."""
from __future__ import annotations

from typing import Any, Mapping, Sequence

from ..coercion import as_text, format_date, get_row_value
from ..detector import EVENT_PRODUCT_HEADERS, matches_event
from ..models import DatasetType, EventRawRow
from .base import RowAdapter


class EventAdapter(RowAdapter):
    dataset_type = DatasetType.EVENT
    mapped_headers = (
        "event date",
        "user email",
        *EVENT_PRODUCT_HEADERS,
        "project name",
        "feature category",
        "project id",
    )

    def validate_headers(self, headers: Sequence[str]) -> bool:
        return matches_event(headers)

    def _transform(self, row: Mapping[str, Any], account_id: str, dataset_id: str) -> EventRawRow:
        values = self.require(
            row,
            [
                ("Event Date", ("Event Date",)),
                ("User Email", ("User Email",)),
                ("Product / Sub Product (or Product)", EVENT_PRODUCT_HEADERS),
            ],
        )
        event_date = format_date(self.require_date(values["Event Date"]))

        return EventRawRow(
            dataset_id=dataset_id,
            account_id=account_id,
            event_date=event_date,
            user_email=as_text(values["User Email"]),
            product_name=as_text(values["Product / Sub Product (or Product)"]),
            project_name=as_text(get_row_value(row, "Project Name")),
            feature_category=as_text(get_row_value(row, "Feature Category")),
            project_id=as_text(get_row_value(row, "Project ID")),
            raw_data=self.extra_fields(row),
        )
