"""Logging setup and configuration."""

import logging
import secrets
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from mrf_pipeline.common.logging.context import set_log_context
from mrf_pipeline.common.logging.formatters import ConsoleFormatter, JSONFormatter

# Default settings
DEFAULT_LOG_DIR = Path("logs")
DEFAULT_MAX_BYTES = 10 * 1024 * 1024  # 10MB
DEFAULT_BACKUP_COUNT = 5
DEFAULT_CONSOLE_LEVEL = logging.INFO
DEFAULT_FILE_LEVEL = logging.DEBUG

# Noisy loggers to suppress
NOISY_LOGGERS = [
    "aiohttp",
    "asyncio",
    "urllib3",
]


def get_log_file_path(
    log_dir: Path,
    source: Optional[str] = None,
    stage: Optional[str] = None,
) -> Path:
    """
    Build log file path with source/date subfolder structure.

    Structure: {log_dir}/{source}/{YYYY-MM-DD}/{source}_{stage}_{YYYYMMDD}.log

    Args:
        log_dir: Base log directory
        source: Publisher source id (united_health, ...)
        stage: Stage name (discover, download, ...)

    Returns:
        Full path to log file
    """
    date_folder = datetime.now().strftime("%Y-%m-%d")
    date_str = datetime.now().strftime("%Y%m%d")

    if source and stage:
        filename = f"{source}_{stage}_{date_str}.log"
    elif source:
        filename = f"{source}_{date_str}.log"
    elif stage:
        filename = f"{stage}_{date_str}.log"
    else:
        filename = f"mrf_pipeline_{date_str}.log"

    if source:
        return log_dir / source / date_folder / filename
    return log_dir / date_folder / filename


def setup_logging(
    name: str = "mrf_pipeline",
    source: Optional[str] = None,
    stage: Optional[str] = None,
    log_dir: Optional[Path] = None,
    json_format: bool = True,
    console_level: int = DEFAULT_CONSOLE_LEVEL,
    file_level: int = DEFAULT_FILE_LEVEL,
    max_bytes: int = DEFAULT_MAX_BYTES,
    backup_count: int = DEFAULT_BACKUP_COUNT,
    suppress_noisy: bool = True,
    log_to_file: bool = True,
) -> logging.Logger:
    """
    Install console and per-source rotating file handlers on the root logger.

    Log files are organized by source and date:
        logs/united_health/2025-01-15/united_health_download_20250115.log

    Args:
        name: Logger name returned to the caller
        source: Publisher source id for context and file layout
        stage: Stage name for per-stage log files
        log_dir: Directory for log files (default: ./logs)
        json_format: JSON lines in the file (default: True)
        console_level: Level for stdout
        file_level: Level for the log file
        max_bytes: Rotation threshold
        backup_count: Rotated files kept
        suppress_noisy: Quiet down HTTP client loggers
        log_to_file: Attach the rotating file handler (default: True)

    Returns:
        The logger called `name`
    """
    log_dir = log_dir or DEFAULT_LOG_DIR

    set_log_context(source=source, stage=stage)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(ConsoleFormatter())

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # Capture all, handlers filter

    # Remove existing handlers to avoid duplicates on re-init
    root_logger.handlers.clear()
    root_logger.addHandler(console_handler)

    log_file = None
    if log_to_file:
        log_file = get_log_file_path(log_dir, source=source, stage=stage)
        log_file.parent.mkdir(parents=True, exist_ok=True)

        if json_format:
            file_formatter: logging.Formatter = JSONFormatter()
        else:
            file_formatter = logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"
            )

        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(file_level)
        file_handler.setFormatter(file_formatter)
        root_logger.addHandler(file_handler)

    if suppress_noisy:
        for logger_name in NOISY_LOGGERS:
            logging.getLogger(logger_name).setLevel(logging.WARNING)

    logger = logging.getLogger(name)
    logger.debug(f"Logging initialized: file={log_file}, json={json_format}")

    return logger


def get_logger(name: str) -> logging.Logger:
    """Logger under the mrf_pipeline hierarchy (pass __name__)."""
    return logging.getLogger(name)


def generate_run_id() -> str:
    """
    Generate unique run identifier.

    Format: r-YYYYMMDD-HHMMSS-XXXX where XXXX is random hex.
    """
    ts = datetime.now().strftime("%Y%m%d-%H%M%S")
    suffix = secrets.token_hex(2)
    return f"r-{ts}-{suffix}"
