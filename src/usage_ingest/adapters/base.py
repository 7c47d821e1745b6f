"""Common adapter behaviour: header checks, required fields, extra columns."""
from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from ..coercion import (
    DEFAULT_MAX_EXTRA_FIELDS,
    DEFAULT_MAX_EXTRA_VALUE_LENGTH,
    collect_extra_fields,
    get_row_value,
    is_blank,
    parse_date,
)
from ..errors import RowTransformError
from ..models import DatasetType


# (label used in error messages, accepted header names)
RequiredField = Tuple[str, Tuple[str, ...]]


class RowAdapter(ABC):
    """Validates one dataset type's headers and turns rows into raw records."""

    dataset_type: DatasetType
    # Lower-cased headers that map to named attributes and stay out of raw_data.
    mapped_headers: Tuple[str, ...] = ()

    def __init__(
        self,
        max_extra_fields: int = DEFAULT_MAX_EXTRA_FIELDS,
        max_extra_value_length: int = DEFAULT_MAX_EXTRA_VALUE_LENGTH,
    ):
        self.max_extra_fields = max_extra_fields
        self.max_extra_value_length = max_extra_value_length

    @abstractmethod
    def validate_headers(self, headers: Sequence[str]) -> bool:
        ...

    @abstractmethod
    def _transform(self, row: Mapping[str, Any], account_id: str, dataset_id: str):
        ...

    def transform_to_raw(self, row: Mapping[str, Any], account_id: str, dataset_id: str):
        """Return the raw-row dataclass for ``row``.

        Raises :class:`RowTransformError` with a readable reason when the row
        is malformed. Fully blank rows return None.
        """
        if all(is_blank(value) for value in row.values()):
            return None
        return self._transform(row, account_id, dataset_id)

    def require(self, row: Mapping[str, Any], fields: Sequence[RequiredField]) -> Dict[str, Any]:
        """Fetch required values by label, raising once with every missing label."""
        values: Dict[str, Any] = {}
        missing = []
        for label, keys in fields:
            value = get_row_value(row, *keys)
            if value is None:
                missing.append(label)
            values[label] = value
        if missing:
            raise RowTransformError.missing(missing)
        return values

    @staticmethod
    def require_date(value: Any) -> date:
        parsed = parse_date(value)
        if parsed is None:
            raise RowTransformError(f"Invalid date value: {value!r} (type: {type(value).__name__})")
        return parsed

    def extra_fields(self, row: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        return collect_extra_fields(
            row,
            self.mapped_headers,
            max_fields=self.max_extra_fields,
            max_value_length=self.max_extra_value_length,
        )
