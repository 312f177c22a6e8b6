"""Tests for exception hierarchy and HTTP status classification."""

import pytest

from mrf_pipeline.common.exceptions import (
    ConfigurationError,
    ErrorCategory,
    HttpClientError,
    HttpError,
    IndexParseError,
    ManifestParseError,
    NetworkError,
    RateLimitedError,
    ServerError,
    SizeExceededError,
    SourceError,
    StorageError,
    classify_http_status,
    error_for_status,
)


class TestErrorCategories:
    """Each error carries the category used for retry decisions."""

    @pytest.mark.parametrize(
        "error,category",
        [
            (NetworkError("boom"), ErrorCategory.TRANSIENT),
            (RateLimitedError("slow down"), ErrorCategory.TRANSIENT),
            (ServerError("bad gateway", 502), ErrorCategory.TRANSIENT),
            (HttpClientError("missing", 404), ErrorCategory.PERMANENT),
            (HttpError("odd", 304), ErrorCategory.UNKNOWN),
            (ManifestParseError("bad manifest"), ErrorCategory.PERMANENT),
            (IndexParseError("bad index"), ErrorCategory.PERMANENT),
            (ConfigurationError("no cache dir"), ErrorCategory.PERMANENT),
            (StorageError("disk full"), ErrorCategory.PERMANENT),
            (SizeExceededError(500, 100), ErrorCategory.PERMANENT),
        ],
    )
    def test_category(self, error, category):
        assert isinstance(error, SourceError)
        assert error.category == category

    def test_transient_errors_are_retryable(self):
        assert NetworkError("x").is_retryable is True
        assert HttpClientError("x", 400).is_retryable is False

    def test_rate_limited_defaults_to_60_seconds(self):
        assert RateLimitedError("x").retry_after == 60
        assert RateLimitedError("x", retry_after=5).retry_after == 5

    def test_size_exceeded_message(self):
        error = SizeExceededError(500, 100)
        assert str(error) == "File size 500 exceeds maximum allowed size 100"
        assert error.size == 500
        assert error.max_size == 100

    def test_str_includes_cause(self):
        cause = OSError("No space left on device")
        error = StorageError("Failed to write cache entry", cause=cause)
        assert str(error) == (
            "Failed to write cache entry | Caused by: No space left on device"
        )

    def test_context_defaults_to_empty_dict(self):
        assert SourceError("x").context == {}


class TestClassifyHttpStatus:
    @pytest.mark.parametrize(
        "status,expected",
        [
            (200, ErrorCategory.UNKNOWN),
            (429, ErrorCategory.TRANSIENT),
            (400, ErrorCategory.PERMANENT),
            (404, ErrorCategory.PERMANENT),
            (500, ErrorCategory.TRANSIENT),
            (503, ErrorCategory.TRANSIENT),
            (304, ErrorCategory.UNKNOWN),
        ],
    )
    def test_classification(self, status, expected):
        assert classify_http_status(status) == expected


class TestErrorForStatus:
    def test_429_is_rate_limited_with_retry_after(self):
        error = error_for_status(429, "https://x/a", retry_after=17)
        assert isinstance(error, RateLimitedError)
        assert error.retry_after == 17
        assert error.context == {"url": "https://x/a", "http_status": 429}

    def test_5xx_is_server_error(self):
        error = error_for_status(503, "https://x/a")
        assert isinstance(error, ServerError)
        assert error.status_code == 503

    def test_4xx_is_client_error(self):
        error = error_for_status(403, "https://x/a")
        assert isinstance(error, HttpClientError)
        assert error.status_code == 403

    def test_other_status_is_generic_http_error(self):
        error = error_for_status(302, "https://x/a")
        assert type(error) is HttpError
        assert error.status_code == 302
