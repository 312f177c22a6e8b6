"""
Prometheus metrics for MRF discovery and fetching.

Provides instrumentation for:
- HTTP requests, retries and rate limiting
- Index file outcomes during discovery
- Download outcomes and bytes
- Cache hits and misses
"""

from prometheus_client import Counter, Gauge, Histogram

# HTTP metrics
http_requests_total = Counter(
    "mrf_http_requests_total",
    "Total number of HTTP requests issued to publishers",
    ["status"],  # status: 2xx, 4xx, 5xx, 429, error
)

http_retries_total = Counter(
    "mrf_http_retries_total",
    "Total number of HTTP retries",
    ["reason"],  # reason: network, server_error
)

http_request_duration_seconds = Histogram(
    "mrf_http_request_duration_seconds",
    "Time until response headers are received",
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)

# Discovery metrics
index_files_total = Counter(
    "mrf_index_files_total",
    "Index files processed during discovery",
    ["source", "outcome"],  # outcome: parsed, empty, parse_error, fetch_error
)

files_discovered_total = Counter(
    "mrf_files_discovered_total",
    "File descriptors produced by discovery",
    ["source", "file_type"],
)

# Download metrics
downloads_total = Counter(
    "mrf_downloads_total",
    "Total number of file fetches",
    ["status"],  # status: success, error, cached
)

download_bytes_total = Counter(
    "mrf_download_bytes_total",
    "Total bytes downloaded from publishers",
)

downloads_concurrent = Gauge(
    "mrf_downloads_concurrent",
    "Number of fetches currently in progress",
)

# Cache metrics
cache_lookups_total = Counter(
    "mrf_cache_lookups_total",
    "Cache lookups by result",
    ["result"],  # result: hit, miss, stale
)


def _status_label(status_code: int) -> str:
    if status_code == 429:
        return "429"
    return f"{status_code // 100}xx"


def record_http_request(status_code: int = 0, duration_seconds: float = 0.0) -> None:
    """
    Record an HTTP request.

    Args:
        status_code: Response status, 0 when the request failed without one
        duration_seconds: Time until headers were received
    """
    label = _status_label(status_code) if status_code else "error"
    http_requests_total.labels(status=label).inc()
    if status_code:
        http_request_duration_seconds.observe(duration_seconds)


def record_http_retry(reason: str) -> None:
    http_retries_total.labels(reason=reason).inc()


def record_index_file(source: str, outcome: str) -> None:
    """
    Record the outcome of one index file.

    Args:
        source: Source id
        outcome: parsed, empty, parse_error or fetch_error
    """
    index_files_total.labels(source=source, outcome=outcome).inc()


def record_files_discovered(source: str, file_type: str, count: int) -> None:
    if count:
        files_discovered_total.labels(source=source, file_type=file_type).inc(count)


def record_download(success: bool, bytes_downloaded: int = 0, cached: bool = False) -> None:
    """
    Record a file fetch.

    Args:
        success: Whether the fetch succeeded
        bytes_downloaded: Bytes pulled from the network
        cached: Served from cache (no network transfer)
    """
    if cached:
        status = "cached"
    else:
        status = "success" if success else "error"
    downloads_total.labels(status=status).inc()
    if bytes_downloaded:
        download_bytes_total.inc(bytes_downloaded)


def record_cache_lookup(result: str) -> None:
    cache_lookups_total.labels(result=result).inc()


def track_download():
    """Context manager holding mrf_downloads_concurrent up by one while active."""
    return downloads_concurrent.track_inprogress()
