"""
Exception types and error classification for mrf_pipeline.

Provides:
- ErrorCategory enum for retry decisions
- Typed exception hierarchy for source errors
- HTTP status classification
"""

from enum import Enum
from typing import Optional


class ErrorCategory(Enum):
    """
    Classification of error types for handling decisions.

    Categories:
        TRANSIENT: Temporary failures that may succeed later
                   (e.g., network timeouts, 429/5xx responses)
        PERMANENT: Failures that won't succeed on retry
                   (e.g., 404, malformed manifests, configuration issues)
        UNKNOWN: Unclassified errors
    """

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    UNKNOWN = "unknown"


class SourceError(Exception):
    """
    Base exception for all source errors.

    Attributes:
        message: Human-readable error description
        category: Error classification for retry decisions
        cause: Original exception if wrapping
        context: Additional context dict for debugging
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        cause: Optional[BaseException] = None,
        context: Optional[dict] = None,
    ):
        self.message = message
        self.cause = cause
        self.context = context or {}
        super().__init__(message)

    @property
    def is_retryable(self) -> bool:
        """Whether a caller may reasonably try this operation again."""
        return self.category in (ErrorCategory.TRANSIENT, ErrorCategory.UNKNOWN)

    def __str__(self) -> str:
        parts = [self.message]
        if self.cause:
            parts.append(f"Caused by: {self.cause}")
        return " | ".join(parts)


# =============================================================================
# Transport Errors
# =============================================================================


class TransientError(SourceError):
    """Base class for transient errors."""

    category = ErrorCategory.TRANSIENT


class NetworkError(TransientError):
    """Connection failed or timed out after all retries."""

    pass


class RateLimitedError(TransientError):
    """Publisher answered 429. Surfaced immediately, never auto-retried."""

    def __init__(
        self,
        message: str,
        retry_after: int = 60,
        cause: Optional[BaseException] = None,
        context: Optional[dict] = None,
    ):
        super().__init__(message, cause, context)
        self.retry_after = retry_after  # Seconds the publisher asked us to wait


class ServerError(TransientError):
    """5xx response that persisted through all retries."""

    def __init__(
        self,
        message: str,
        status_code: int,
        cause: Optional[BaseException] = None,
        context: Optional[dict] = None,
    ):
        super().__init__(message, cause, context)
        self.status_code = status_code


class HttpError(SourceError):
    """Non-success response outside the 4xx/5xx classes."""

    def __init__(
        self,
        message: str,
        status_code: int,
        cause: Optional[BaseException] = None,
        context: Optional[dict] = None,
    ):
        super().__init__(message, cause, context)
        self.status_code = status_code


# =============================================================================
# Permanent Errors
# =============================================================================


class PermanentError(SourceError):
    """Base class for permanent errors."""

    category = ErrorCategory.PERMANENT


class HttpClientError(PermanentError):
    """4xx response other than 429."""

    def __init__(
        self,
        message: str,
        status_code: int,
        cause: Optional[BaseException] = None,
        context: Optional[dict] = None,
    ):
        super().__init__(message, cause, context)
        self.status_code = status_code


class ManifestParseError(PermanentError):
    """Manifest body could not be parsed. Fatal to discovery."""

    pass


class IndexParseError(PermanentError):
    """Index file body could not be parsed. Treated as an empty index."""

    pass


class ConfigurationError(PermanentError):
    """Invalid configuration."""

    pass


class StorageError(PermanentError):
    """Local disk operation failed."""

    pass


class SizeExceededError(PermanentError):
    """Advertised Content-Length is larger than the allowed maximum."""

    def __init__(
        self,
        size: int,
        max_size: int,
        context: Optional[dict] = None,
    ):
        super().__init__(
            f"File size {size} exceeds maximum allowed size {max_size}",
            context=context,
        )
        self.size = size
        self.max_size = max_size


# =============================================================================
# Classification Utilities
# =============================================================================


def classify_http_status(status_code: int) -> ErrorCategory:
    """
    Classify HTTP status code into error category.

    Args:
        status_code: HTTP response status

    Returns:
        Appropriate ErrorCategory
    """
    if 200 <= status_code < 300:
        return ErrorCategory.UNKNOWN  # Not an error

    if status_code == 429:
        return ErrorCategory.TRANSIENT

    if 400 <= status_code < 500:
        return ErrorCategory.PERMANENT

    if status_code >= 500:
        return ErrorCategory.TRANSIENT

    return ErrorCategory.UNKNOWN


def error_for_status(status_code: int, url: str, retry_after: int = 60) -> SourceError:
    """
    Create the appropriate exception for a non-success HTTP status.

    Args:
        status_code: HTTP response status
        url: Request URL for context
        retry_after: Seconds to wait, used for 429 only

    Returns:
        SourceError subclass instance
    """
    context = {"url": url, "http_status": status_code}

    if status_code == 429:
        return RateLimitedError(
            f"Rate limited (429), retry after {retry_after}s: {url}",
            retry_after=retry_after,
            context=context,
        )

    category = classify_http_status(status_code)

    if status_code >= 500:
        return ServerError(
            f"Server error ({status_code}): {url}", status_code, context=context
        )

    if category == ErrorCategory.PERMANENT:
        return HttpClientError(
            f"Client error ({status_code}): {url}", status_code, context=context
        )

    return HttpError(f"HTTP error ({status_code}): {url}", status_code, context=context)
