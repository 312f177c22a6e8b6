"""
Core data types shared by discovery, caching and fetching.

FileDescriptor is the unit of work: created while expanding an index file,
consumed once by the fetcher, never mutated. Its id is a pure function of
its URL so cache slots stay stable across runs.
"""

import hashlib
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urlsplit

from mrf_pipeline.common.exceptions import SourceError

DATE_PATTERN = re.compile(r"(\d{4})-(\d{2})-(\d{2})")


class FileType(Enum):
    """Kind of machine-readable file. Values are used in on-disk filenames."""

    TABLE_OF_CONTENTS = "toc"
    IN_NETWORK = "in_network"
    ALLOWED_AMOUNT = "allowed_amount"
    PROVIDER_REFERENCE = "provider_ref"
    UNKNOWN = "unknown"

    @property
    def default_name(self) -> str:
        return _DEFAULT_NAMES[self]


_DEFAULT_NAMES = {
    FileType.TABLE_OF_CONTENTS: "Table of Contents",
    FileType.IN_NETWORK: "In-Network File",
    FileType.ALLOWED_AMOUNT: "Allowed Amount File",
    FileType.PROVIDER_REFERENCE: "Provider Reference File",
    FileType.UNKNOWN: "Unknown File",
}


class CompressionType(Enum):
    GZIP = "gzip"
    ZIP = "zip"
    BZIP2 = "bzip2"
    NONE = "none"
    UNKNOWN = "unknown"

    @property
    def cache_extension(self) -> str:
        """File extension used for cache entries of this compression."""
        if self is CompressionType.GZIP:
            return "json.gz"
        if self is CompressionType.ZIP:
            return "zip"
        if self is CompressionType.BZIP2:
            return "json.bz2"
        return "json"


# =============================================================================
# URL classification
# =============================================================================


def _url_path(url: str) -> str:
    """Lower-cased URL path with query string and fragment removed."""
    stripped = url.split("#", 1)[0].split("?", 1)[0]
    return stripped.lower()


def detect_compression(
    url: str, content_type: Optional[str] = None
) -> CompressionType:
    """
    Infer compression from a URL path, falling back to a Content-Type hint.

    Matching is case-insensitive and ignores query strings and fragments.

    Examples:
        >>> detect_compression("https://x/FILE.JSON.GZ?sig=1#top")
        <CompressionType.GZIP: 'gzip'>
        >>> detect_compression("https://x/file.dat")
        <CompressionType.UNKNOWN: 'unknown'>
    """
    path = _url_path(url)

    if path.endswith(".gz") or path.endswith(".gzip"):
        return CompressionType.GZIP
    if path.endswith(".zip"):
        return CompressionType.ZIP
    if path.endswith(".bz2") or path.endswith(".bzip2"):
        return CompressionType.BZIP2
    if path.endswith(".json"):
        return CompressionType.NONE

    # Loose substring checks for paths like /files/gzip/abc
    if "gzip" in path or ".gz" in path:
        return CompressionType.GZIP
    if "zip" in path:
        return CompressionType.ZIP

    if content_type:
        mime = content_type.split(";", 1)[0].strip().lower()
        if mime in ("application/gzip", "application/x-gzip"):
            return CompressionType.GZIP
        if mime in ("application/zip", "application/x-zip-compressed"):
            return CompressionType.ZIP
        if mime == "application/x-bzip2":
            return CompressionType.BZIP2
        if mime == "application/json":
            return CompressionType.NONE

    return CompressionType.UNKNOWN


def detect_file_type(url: str) -> FileType:
    """Classify a file URL by the keywords publishers put in file names."""
    path = urlsplit(url).path.lower()

    if "table-of-contents" in path or "table_of_contents" in path or "toc" in path:
        return FileType.TABLE_OF_CONTENTS
    if "in-network" in path or "in_network" in path or "negotiated" in path:
        return FileType.IN_NETWORK
    if (
        "allowed-amount" in path
        or "allowed_amount" in path
        or "out-of-network" in path
    ):
        return FileType.ALLOWED_AMOUNT
    if "provider-reference" in path or "provider_reference" in path:
        return FileType.PROVIDER_REFERENCE
    return FileType.UNKNOWN


def extract_date(name: str) -> Optional[datetime]:
    """
    Parse the first YYYY-MM-DD in a name as midnight UTC.

    Returns None when no valid date is present.
    """
    match = DATE_PATTERN.search(name)
    if not match:
        return None
    year, month, day = (int(part) for part in match.groups())
    try:
        return datetime(year, month, day, tzinfo=timezone.utc)
    except ValueError:
        return None


def generate_file_id(url: str, prefix: str = "") -> str:
    """Deterministic, run-stable identifier derived only from the URL."""
    digest = hashlib.sha256(url.encode("utf-8")).hexdigest()[:16]
    return f"{prefix}{digest}"


def url_extension(url: str, default: str = "json") -> str:
    """Extension of the URL's trailing path segment (text after the last '.')."""
    path = urlsplit(url).path
    segment = path.rsplit("/", 1)[-1]
    if "." not in segment:
        return default
    ext = segment.rsplit(".", 1)[-1]
    return ext or default


# =============================================================================
# Data types
# =============================================================================


@dataclass(frozen=True)
class FileDescriptor:
    """
    One discoverable, downloadable file.

    Attributes:
        id: Hash of url, stable across runs
        name: Human-readable name (index description or a default)
        url: Download location
        file_type: Kind of file
        size_bytes: Advertised size, when known
        last_modified: Publication timestamp (UTC), when known
        compression: Compression inferred from the URL
        metadata: Free-form publisher context (index URL, reporting entity)
    """

    id: str
    name: str
    url: str
    file_type: FileType
    size_bytes: Optional[int] = None
    last_modified: Optional[datetime] = None
    compression: CompressionType = CompressionType.UNKNOWN
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_url(
        cls,
        url: str,
        id_prefix: str = "",
        name: Optional[str] = None,
        file_type: Optional[FileType] = None,
    ) -> "FileDescriptor":
        """Build a descriptor for an ad-hoc URL, classifying it by name."""
        resolved_type = file_type or detect_file_type(url)
        return cls(
            id=generate_file_id(url, id_prefix),
            name=name or resolved_type.default_name,
            url=url,
            file_type=resolved_type,
            last_modified=extract_date(url),
            compression=detect_compression(url),
        )

    @property
    def output_filename(self) -> str:
        """Filename used by disk batches: <file_type>_<id>.<ext>."""
        return f"{self.file_type.value}_{self.id}.{url_extension(self.url)}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "url": self.url,
            "file_type": self.file_type.value,
            "size_bytes": self.size_bytes,
            "last_modified": (
                self.last_modified.isoformat() if self.last_modified else None
            ),
            "compression": self.compression.value,
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True)
class FetchOptions:
    """
    Per-call fetch configuration.

    Attributes:
        max_size: Reject files whose Content-Length exceeds this (bytes)
        use_cache: Consult and populate the on-disk cache
        cache_dir: Cache root; falls back to the source's default options
        timeout_secs: Total timeout per HTTP request
        max_retries: Retries for connection failures and 5xx responses
        verify_ssl: Verify TLS certificates
        cache_ttl_secs: Maximum cache entry age for files without last_modified
    """

    max_size: Optional[int] = None
    use_cache: bool = True
    cache_dir: Optional[Path] = None
    timeout_secs: Optional[int] = 300
    max_retries: Optional[int] = 3
    verify_ssl: bool = True
    cache_ttl_secs: Optional[int] = None


@dataclass
class SourceConfig:
    """Configuration held for the lifetime of a source instance."""

    base_url: str
    user_agent: Optional[str] = "mrf-pipeline/0.1.0"
    rate_limit: Optional[float] = None  # Requests/second, None = unthrottled
    default_options: FetchOptions = field(default_factory=FetchOptions)
    extra: Dict[str, Any] = field(default_factory=dict)
    max_connections: int = 100


@dataclass
class IndexEntry:
    """One manifest entry pointing at an index file. Discovery-internal."""

    name: str
    url: str
    date: Optional[datetime] = None
    size: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "url": self.url,
            "date": self.date.isoformat() if self.date else None,
        }


@dataclass
class FetchOutcome:
    """
    Result of fetching one descriptor inside a batch.

    Exactly one of content/path (on success) or error (on failure) is set.
    """

    descriptor: FileDescriptor
    content: Optional[bytes] = None
    path: Optional[Path] = None
    error: Optional[SourceError] = None
    from_cache: bool = False

    @property
    def success(self) -> bool:
        return self.error is None

    @classmethod
    def failure(cls, descriptor: FileDescriptor, error: SourceError) -> "FetchOutcome":
        return cls(descriptor=descriptor, error=error)
