"""Logging setup and stage timing helpers.

All modules log through child loggers of ``usage_ingest`` obtained with
``logging.getLogger(__name__)``; :func:`setup_logging` attaches the console
and file handlers once per process (or again when reconfigured). If the file
handler cannot be attached, console logging continues on its own.

Only ``config`` is imported here; pipeline modules import this one.
"""
from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Dict, Iterable, Optional, Tuple

from .config import AppConfig


LOGGER_NAME = "usage_ingest"
SYSTEM_FMT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
DATE_FMT = "%Y-%m-%d %H:%M:%S"


def _ensure_logs_dir(config: AppConfig) -> Path:
    logs_dir = Path(config.paths.logs_dir).expanduser().resolve()
    logs_dir.mkdir(parents=True, exist_ok=True)
    return logs_dir


def _safe_add_file_handler(logger: logging.Logger, path: Path, level: int) -> None:
    try:
        fh = logging.FileHandler(path, encoding="utf-8")
        fh.setLevel(level)
        fh.setFormatter(logging.Formatter(SYSTEM_FMT, datefmt=DATE_FMT))
        logger.addHandler(fh)
    except OSError as exc:  # pragma: no cover
        logger.warning("[WARNING] Failed to attach file handler %s (%s)", str(path), exc)


def setup_logging(config: AppConfig, log_to_file: bool = True) -> logging.Logger:
    """Configure the project logger with console + file handlers.

    Handlers are reset so repeated initialisation does not duplicate output.
    """
    level = getattr(logging, config.logging.level, logging.INFO)
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.handlers = []

    sh = logging.StreamHandler()
    sh.setLevel(level)
    sh.setFormatter(logging.Formatter(SYSTEM_FMT, datefmt=DATE_FMT))
    logger.addHandler(sh)

    if log_to_file:
        try:
            logs_dir = _ensure_logs_dir(config)
        except OSError as exc:  # pragma: no cover
            logger.warning("[WARNING] Cannot create logs directory %s (%s)", config.paths.logs_dir, exc)
        else:
            _safe_add_file_handler(logger, logs_dir / config.logging.file_name, level)
    logger.debug("Logging initialised at level %s", config.logging.level)
    return logger


def log_system_event(logger: logging.Logger, message: str):
    logger.info("[SYSTEM] %s", message)


def log_warning(logger: logging.Logger, message: str):
    logger.warning("[WARNING] %s", message)


def log_error(logger: logging.Logger, message: str):
    logger.error("[ERROR] %s", message)


def start_stage_timer(stage_name: str) -> float:
    """Start a timer for a pipeline stage and return the perf counter."""
    return time.perf_counter()


def end_stage_timer(stage_name: str, start_time: float, timing_dict: Dict[str, float], logger: Optional[logging.Logger] = None) -> float:
    """End timer, accumulate into ``timing_dict`` and optionally log it."""
    elapsed = time.perf_counter() - float(start_time)
    timing_dict[stage_name] = timing_dict.get(stage_name, 0.0) + elapsed
    if logger is not None:
        logger.debug("Stage %s completed in %.2f seconds", stage_name, elapsed)
    return elapsed


def log_invalid_row_analysis(
    logger: logging.Logger,
    total_invalid: int,
    reasons: Iterable[Tuple[str, int]],
    samples: Iterable[Tuple[int, str]],
    sample_lines: int = 20,
) -> None:
    """Emit the aggregated per-row failure report as one block of lines."""
    sample_list = list(samples)
    lines = ["=== Invalid Row Analysis ===", f"Total invalid rows: {total_invalid}", "Reasons for invalid rows:"]
    for reason, count in reasons:
        lines.append(f"  - {reason}: {count} rows")
    if sample_list:
        lines.append(f"Sample invalid rows (first {min(sample_lines, len(sample_list))} of {len(sample_list)} retained):")
        for row_number, reason in sample_list[:sample_lines]:
            lines.append(f"  Row {row_number}: {reason}")
        if len(sample_list) > sample_lines:
            lines.append(f"  ... and {len(sample_list) - sample_lines} more retained samples")
    logger.warning("\n".join(lines))
