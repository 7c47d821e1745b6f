"""Shared fixtures for ingestion tests."""
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from usage_ingest.blob_storage import InMemoryBlobStorage
from usage_ingest.errors import StoreError
from usage_ingest.models import Dataset, DatasetStatus, DatasetType
from usage_ingest.store import InMemoryUsageStore


ACCOUNT_ID = "acct-1"


class FailingStore(InMemoryUsageStore):
    """In-memory store that fails the Nth insert into a given table."""

    def __init__(self, table: str, fail_on_call: int, message: str = "connection reset"):
        super().__init__()
        self.fail_table = table
        self.fail_on_call = fail_on_call
        self.message = message
        self.calls = 0

    def insert_rows(self, table, rows):
        if table == self.fail_table:
            self.calls += 1
            if self.calls == self.fail_on_call:
                raise StoreError(self.message)
        return super().insert_rows(table, rows)


@pytest.fixture
def store():
    return InMemoryUsageStore()


@pytest.fixture
def blobs():
    return InMemoryBlobStorage()


def make_csv(headers, rows) -> bytes:
    lines = [",".join(headers)]
    lines.extend(",".join("" if v is None else str(v) for v in row) for row in rows)
    return ("\n".join(lines) + "\n").encode("utf-8")


def add_dataset(
    store,
    blobs,
    content: bytes,
    filename: str = "usage.csv",
    dataset_id: str = "ds-1",
    account_id: str = ACCOUNT_ID,
    dataset_type=None,
    status=DatasetStatus.QUEUED,
) -> Dataset:
    storage_path = f"{account_id}/{filename}"
    blobs.upload(storage_path, content, overwrite=True)
    dataset = Dataset(
        id=dataset_id,
        account_id=account_id,
        original_filename=filename,
        storage_path=storage_path,
        status=status,
        dataset_type=DatasetType.parse(dataset_type),
    )
    store.insert_dataset(dataset)
    return dataset


DESKTOP_HEADERS = [
    "usageDate",
    "productName",
    "productVersion",
    "userName",
    "machineName",
    "licenseServerName",
    "tokensConsumed",
    "usageHours",
    "useCount",
]

CLOUD_HEADERS = ["usageDate", "productName", "userName", "tokensConsumed", "region"]

EVENT_HEADERS = ["Event Date", "User Email", "Project Name", "Product / Sub Product", "Feature Category", "Project ID"]

MANUAL_HEADERS = ["usageDate", "transactionDate", "reasonType", "productName", "tokensConsumed", "reasonComment"]
