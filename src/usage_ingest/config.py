"""Configuration loading and validation using Pydantic."""
from __future__ import annotations

from pathlib import Path
from typing import List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator


class IngestionSettings(BaseModel):
    """Batch sizes and bookkeeping limits for one ingestion run."""

    raw_batch_size: int = Field(500, ge=1, description="Rows per raw-table insert")
    fact_batch_size: int = Field(1000, ge=1, description="Rows per usage_facts insert")
    page_size: int = Field(10000, ge=1, description="Rows per paginated raw-table read")
    invalid_sample_limit: int = Field(100, ge=1, description="Invalid row samples retained for logging")
    progress_every: int = Field(10000, ge=1, description="Emit a progress line every N rows")
    max_extra_fields: int = Field(200, ge=1, description="Maximum entries kept in a row's raw_data bag")
    max_extra_value_length: int = Field(1000, ge=1, description="Longest string kept in raw_data")


class IntakeSettings(BaseModel):
    allowed_extensions: List[str] = Field(
        default_factory=lambda: [".csv", ".tsv", ".txt", ".xls", ".xlsx"],
    )
    max_file_size_mb: int = Field(100, ge=1)

    @field_validator("allowed_extensions")
    @classmethod
    def normalize_extensions(cls, v):
        """Lower-case and dot-prefix every extension."""
        normalized = []
        for ext in v:
            ext = str(ext).strip().lower()
            if not ext:
                continue
            normalized.append(ext if ext.startswith(".") else f".{ext}")
        if not normalized:
            raise ValueError("allowed_extensions must contain at least one extension")
        return normalized


class PathSettings(BaseModel):
    blob_root: str = "data/blobs"
    output_dir: str = "data/output"
    logs_dir: str = "logs"


class LoggingSettings(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    file_name: str = "ingestion.log"

    @field_validator("level", mode="before")
    @classmethod
    def upper_level(cls, v):
        return str(v).upper() if v is not None else "INFO"


class AppConfig(BaseModel):
    ingestion: IngestionSettings = Field(default_factory=IngestionSettings)
    intake: IntakeSettings = Field(default_factory=IntakeSettings)
    paths: PathSettings = Field(default_factory=PathSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def load_config(path: Optional[str | Path] = None) -> AppConfig:
    """Load a YAML configuration file and validate it.

    A missing path (or a path that does not exist) yields the defaults; empty
    sections fall back to their defaults as well.
    """

    if path is None or not Path(path).exists():
        return AppConfig()
    with open(path, "r", encoding="utf-8") as stream:
        raw = yaml.safe_load(stream) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"Configuration root must be a mapping: {path}")
    cleaned = {key: value for key, value in raw.items() if value is not None}
    return AppConfig(**cleaned)
