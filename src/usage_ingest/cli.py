"""Command line entry point: ingest local files or detect their type."""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence

import pandas as pd

from .blob_storage import LocalBlobStorage
from .config import AppConfig, load_config
from .detector import detect_dataset_type
from .errors import IngestionError
from .intake import process_dataset, register_upload
from .logging_utils import log_system_event, setup_logging
from .models import PRODUCT_ALIASES_TABLE
from .outputs import SUPPORTED_FORMATS, write_tables
from .store import InMemoryUsageStore


def load_alias_file(path: str | Path) -> List[dict]:
    """Read an ``alias,product_key`` CSV into alias records."""
    df = pd.read_csv(path, dtype=str, keep_default_na=False)
    df.columns = [str(c).strip().lower() for c in df.columns]
    missing = {"alias", "product_key"} - set(df.columns)
    if missing:
        raise ValueError(f"Alias file {path} missing columns: {sorted(missing)}")
    df = df[(df["alias"].str.strip() != "") & (df["product_key"].str.strip() != "")]
    return df[["alias", "product_key"]].to_dict(orient="records")


def run_ingest(args: argparse.Namespace, config: AppConfig, logger: logging.Logger) -> int:
    store = InMemoryUsageStore()
    blobs = LocalBlobStorage(args.blob_root or config.paths.blob_root)
    if args.aliases:
        store.insert_rows(PRODUCT_ALIASES_TABLE, load_alias_file(args.aliases))

    exit_code = 0
    for file_name in args.files:
        path = Path(file_name)
        try:
            dataset = register_upload(
                store,
                blobs,
                args.account,
                path.name,
                path.read_bytes(),
                settings=config.intake,
            )
        except (IngestionError, OSError) as exc:
            print(f"{path.name}: rejected ({exc})")
            exit_code = 1
            continue

        result = process_dataset(store, blobs, dataset.id, settings=config.ingestion)
        if result.success:
            print(
                f"{path.name}: processed as {result.dataset_type} "
                f"({result.rows_inserted} facts, {result.rows_rejected} rejected, "
                f"{result.min_date} to {result.max_date})"
            )
        else:
            print(f"{path.name}: failed ({result.error})")
            exit_code = 1

    output_dir = args.output_dir or config.paths.output_dir
    written = write_tables(store, output_dir, fmt=args.format)
    log_system_event(logger, f"Wrote {len(written)} tables to {output_dir}")
    return exit_code


def run_detect(args: argparse.Namespace) -> int:
    exit_code = 0
    for file_name in args.files:
        path = Path(file_name)
        try:
            detection = detect_dataset_type(path.read_bytes(), path.name)
        except (IngestionError, OSError) as exc:
            print(f"{path.name}: error ({exc})")
            exit_code = 1
            continue
        print(f"{path.name}: {detection.dataset_type.value if detection else 'unknown'}")
    return exit_code


def build_arg_parser() -> argparse.ArgumentParser:
    """Create an argument parser for the CLI."""

    parser = argparse.ArgumentParser(description="Usage export ingestion and normalization")
    parser.add_argument("--config", default="config.yaml", help="Path to configuration file")
    sub = parser.add_subparsers(dest="command", required=True)

    ingest = sub.add_parser("ingest", help="Ingest files and write normalized tables")
    ingest.add_argument("--account", required=True, help="Account identifier owning the files")
    ingest.add_argument("--output-dir", help="Directory for output tables (defaults to paths.output_dir)")
    ingest.add_argument("--blob-root", help="Local blob storage root (defaults to paths.blob_root)")
    ingest.add_argument("--format", choices=SUPPORTED_FORMATS, default="csv", help="Output table format")
    ingest.add_argument("--aliases", help="CSV with alias,product_key columns")
    ingest.add_argument("files", nargs="+", help="Usage export files (.csv, .xlsx, ...)")

    detect = sub.add_parser("detect", help="Print the detected dataset type of each file")
    detect.add_argument("files", nargs="+")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """CLI entry point."""

    parser = build_arg_parser()
    args = parser.parse_args(argv)
    config = load_config(args.config)
    logger = setup_logging(config, log_to_file=args.command == "ingest")
    if args.command == "detect":
        return run_detect(args)
    return run_ingest(args, config, logger)


if __name__ == "__main__":
    sys.exit(main())
