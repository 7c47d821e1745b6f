"""Blob storage collaborators holding uploaded files."""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterable

from .errors import BlobNotFoundError, StoreError


logger = logging.getLogger(__name__)


class BlobStorage(ABC):
    @abstractmethod
    def download(self, path: str) -> bytes:
        ...

    @abstractmethod
    def upload(self, path: str, content: bytes, overwrite: bool = False) -> str:
        ...

    @abstractmethod
    def remove(self, paths: Iterable[str]) -> None:
        ...


class LocalBlobStorage(BlobStorage):
    """Stores blobs as files below ``root``; paths are relative keys."""

    def __init__(self, root: str | Path):
        self.root = Path(root).expanduser().resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _resolve(self, path: str) -> Path:
        target = (self.root / path).resolve()
        if target != self.root and self.root not in target.parents:
            raise StoreError(f"Blob path escapes storage root: {path}")
        return target

    def download(self, path: str) -> bytes:
        target = self._resolve(path)
        if not target.is_file():
            raise BlobNotFoundError(f"Blob not found: {path}")
        return target.read_bytes()

    def upload(self, path: str, content: bytes, overwrite: bool = False) -> str:
        target = self._resolve(path)
        if target.exists() and not overwrite:
            raise StoreError(f"Blob already exists: {path}")
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
        logger.debug("Stored blob %s (%d bytes)", path, len(content))
        return path

    def remove(self, paths: Iterable[str]) -> None:
        for path in paths:
            target = self._resolve(path)
            if target.is_file():
                target.unlink()


class InMemoryBlobStorage(BlobStorage):
    def __init__(self):
        self._blobs: Dict[str, bytes] = {}

    def download(self, path: str) -> bytes:
        try:
            return self._blobs[path]
        except KeyError:
            raise BlobNotFoundError(f"Blob not found: {path}") from None

    def upload(self, path: str, content: bytes, overwrite: bool = False) -> str:
        if path in self._blobs and not overwrite:
            raise StoreError(f"Blob already exists: {path}")
        self._blobs[path] = bytes(content)
        return path

    def remove(self, paths: Iterable[str]) -> None:
        for path in paths:
            self._blobs.pop(path, None)

    def __contains__(self, path: str) -> bool:
        return path in self._blobs
