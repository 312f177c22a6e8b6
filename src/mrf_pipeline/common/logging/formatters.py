"""Log formatters for JSON and console output."""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict
from urllib.parse import urlsplit, urlunsplit

from mrf_pipeline.common.logging.context import get_log_context


def strip_query(url: str) -> str:
    """Drop query string and fragment (publishers put SAS tokens there)."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter with context injection.

    Produces one JSON object per line for easy parsing with jq/grep.
    Query strings are stripped from URL fields before logging.
    """

    # Fields to extract from LogRecord extras
    EXTRA_FIELDS = [
        "duration_ms",
        "http_status",
        "error_category",
        "error_message",
        "attempt",
        "max_retries",
        "retry_after",
        "backoff_seconds",
        # Batch tracking
        "batch_size",
        "max_concurrency",
        "records_succeeded",
        "records_failed",
        "completed",
        "total",
        # Discovery
        "index_name",
        "index_count",
        "files_found",
        "content_length",
        # Files
        "file_id",
        "file_type",
        "url",
        "index_url",
        "path",
        "cache_path",
        "bytes_downloaded",
        "from_cache",
        "source_id",
    ]

    # Fields that contain URLs and should be sanitized
    URL_FIELDS = ["url", "index_url"]

    def _sanitize_value(self, key: str, value: Any) -> Any:
        if key in self.URL_FIELDS and isinstance(value, str):
            return strip_query(value)
        return value

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3]
            + "Z",
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }

        ctx = get_log_context()
        for key in ("source", "stage", "run_id"):
            if ctx[key]:
                log_entry[key] = ctx[key]

        # Add source location for DEBUG/ERROR
        if record.levelno in (logging.DEBUG, logging.ERROR, logging.CRITICAL):
            log_entry["file"] = f"{record.filename}:{record.lineno}"

        for field in self.EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_entry[field] = self._sanitize_value(field, value)

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """Human-readable console formatter."""

    def format(self, record: logging.LogRecord) -> str:
        ctx = get_log_context()

        parts = [
            datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            record.levelname,
        ]
        if ctx["source"]:
            parts.append(f"[{ctx['source']}]")
        if ctx["stage"]:
            parts.append(f"[{ctx['stage']}]")

        prefix = " - ".join(parts)
        message = f"{prefix} - {record.getMessage()}"

        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"
        return message
