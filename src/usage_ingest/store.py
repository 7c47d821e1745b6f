"""Relational store contract and an in-memory reference implementation.

The pipeline only needs paginated selects, batch inserts, ordered
``limit 1`` lookups and counts. Implementations raise
:class:`~usage_ingest.errors.StoreError` on failure; callers wrap those into
:class:`~usage_ingest.errors.DatabaseError` with their own context.
"""
from __future__ import annotations

import copy
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence

import pandas as pd

from .errors import StoreError
from .models import DATASETS_TABLE, Dataset


logger = logging.getLogger(__name__)


class UsageStore(ABC):
    """Read/write contract over datasets, raw tables, facts and aliases."""

    @abstractmethod
    def get_dataset(self, dataset_id: str) -> Optional[Dataset]:
        ...

    @abstractmethod
    def insert_dataset(self, dataset: Dataset) -> Dataset:
        ...

    @abstractmethod
    def update_dataset(self, dataset_id: str, **fields: Any) -> None:
        ...

    @abstractmethod
    def insert_rows(self, table: str, rows: Sequence[Mapping[str, Any]]) -> int:
        """Insert ``rows`` as one batch and return how many were written."""

    @abstractmethod
    def select_rows(
        self,
        table: str,
        filters: Optional[Mapping[str, Any]] = None,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    def select_extreme(
        self,
        table: str,
        column: str,
        filters: Optional[Mapping[str, Any]] = None,
        descending: bool = False,
    ) -> Any:
        """Return ``column`` of the first non-null row ordered by it, or None."""

    @abstractmethod
    def count_rows(self, table: str, filters: Optional[Mapping[str, Any]] = None) -> int:
        ...


def _matches(row: Mapping[str, Any], filters: Optional[Mapping[str, Any]]) -> bool:
    if not filters:
        return True
    return all(row.get(key) == value for key, value in filters.items())


class InMemoryUsageStore(UsageStore):
    """Dict-backed store. Rows are deep-copied on the way in and out."""

    def __init__(self):
        self._tables: Dict[str, List[Dict[str, Any]]] = {}
        self._datasets: Dict[str, Dict[str, Any]] = {}

    # Datasets

    def get_dataset(self, dataset_id: str) -> Optional[Dataset]:
        record = self._datasets.get(str(dataset_id))
        return Dataset.from_record(copy.deepcopy(record)) if record is not None else None

    def insert_dataset(self, dataset: Dataset) -> Dataset:
        if dataset.id in self._datasets:
            raise StoreError(f"Dataset already exists: {dataset.id}")
        self._datasets[dataset.id] = dataset.to_record()
        return dataset

    def update_dataset(self, dataset_id: str, **fields: Any) -> None:
        record = self._datasets.get(str(dataset_id))
        if record is None:
            raise StoreError(f"Dataset not found: {dataset_id}")
        for key, value in fields.items():
            if key not in record:
                raise StoreError(f"Unknown dataset column: {key}")
            if isinstance(value, Enum):
                value = value.value
            record[key] = copy.deepcopy(value)

    # Generic tables

    def insert_rows(self, table: str, rows: Sequence[Mapping[str, Any]]) -> int:
        target = self._tables.setdefault(table, [])
        target.extend(copy.deepcopy(dict(row)) for row in rows)
        return len(rows)

    def _scan(self, table: str, filters: Optional[Mapping[str, Any]]) -> List[Dict[str, Any]]:
        if table == DATASETS_TABLE:
            source = list(self._datasets.values())
        else:
            source = self._tables.get(table, [])
        return [row for row in source if _matches(row, filters)]

    def select_rows(
        self,
        table: str,
        filters: Optional[Mapping[str, Any]] = None,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        matched = self._scan(table, filters)
        end = None if limit is None else offset + limit
        return copy.deepcopy(matched[offset:end])

    def select_extreme(
        self,
        table: str,
        column: str,
        filters: Optional[Mapping[str, Any]] = None,
        descending: bool = False,
    ) -> Any:
        values = [row.get(column) for row in self._scan(table, filters) if row.get(column) is not None]
        if not values:
            return None
        return max(values) if descending else min(values)

    def count_rows(self, table: str, filters: Optional[Mapping[str, Any]] = None) -> int:
        return len(self._scan(table, filters))

    def export_table(self, table: str) -> pd.DataFrame:
        """Return a table's rows as a DataFrame (empty frame when absent)."""
        return pd.DataFrame(self.select_rows(table))

    def table_names(self) -> List[str]:
        return sorted(self._tables)
