"""
Pipeline configuration.

Configuration priority (highest to lowest):
1. Environment variables (MRF_*)
2. config.yaml file (under 'mrf:' key)
3. Dataclass defaults
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional, TypeVar

import yaml

from mrf_pipeline.common.exceptions import ConfigurationError
from mrf_pipeline.sources.cache import DEFAULT_CACHE_DIR
from mrf_pipeline.sources.models import FetchOptions, SourceConfig
from mrf_pipeline.sources.united_health import (
    API_ENDPOINT,
    TRANSPARENCY_URL,
    USER_AGENT,
)

# Default config path: config.yaml in src/ directory
DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config.yaml"

T = TypeVar("T")

_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("0", "false", "no", "off")


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ValueError(f"not a boolean: {value!r}")


def _optional(parse: Callable[[Any], T]) -> Callable[[Any], Optional[T]]:
    """Wrap a parser so empty strings and 'none' map to None."""

    def parser(value: Any) -> Optional[T]:
        if value is None:
            return None
        if isinstance(value, str) and value.strip().lower() in ("", "none", "null"):
            return None
        return parse(value)

    return parser


def _setting(
    data: Dict[str, Any],
    key: str,
    env_var: str,
    default: Any,
    parse: Callable[[Any], Any] = str,
) -> Any:
    """Resolve one setting: env var, then yaml, then default."""
    raw = os.getenv(env_var)
    if raw is None:
        raw = data.get(key, default)
    if raw is default:
        return default
    try:
        return parse(raw)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(
            f"Invalid value for {key} ({env_var}): {raw!r}",
            cause=e,
            context={"setting": key},
        ) from e


@dataclass
class PipelineConfig:
    """
    Settings for discovery and download runs.

    Optional env vars (all have defaults):
        MRF_SOURCE: Source id (default: united_health)
        MRF_API_ENDPOINT: Manifest URL
        MRF_TRANSPARENCY_URL: Landing page used for health checks
        MRF_USER_AGENT: User-Agent header
        MRF_RATE_LIMIT: Max requests/second (default: unthrottled)
        MRF_MAX_CONNECTIONS: Connection pool ceiling (default: 100)
        MRF_CACHE_DIR: Cache root (default: /tmp/mrf_pipeline_cache)
        MRF_USE_CACHE: Enable the cache (default: true)
        MRF_CACHE_TTL_SECS: Max age for entries without last_modified
        MRF_TIMEOUT_SECS: Per-request timeout (default: 300)
        MRF_MAX_RETRIES: Retries for network errors and 5xx (default: 3)
        MRF_VERIFY_SSL: Verify TLS certificates (default: true)
        MRF_MAX_SIZE: Reject files larger than this many bytes
        MRF_DOWNLOAD_CONCURRENCY: Concurrent downloads (default: 8)
        MRF_INDEX_CONCURRENCY: Concurrent index fetches (default: unbounded)
        MRF_OUTPUT_DIR: Download directory (default: ./mrf_files)
        MRF_LOG_DIR: Log directory (default: ./logs)
        MRF_LOG_LEVEL: Console log level (default: INFO)
    """

    source: str = "united_health"
    api_endpoint: str = API_ENDPOINT
    transparency_url: str = TRANSPARENCY_URL
    user_agent: str = USER_AGENT
    rate_limit: Optional[float] = None
    max_connections: int = 100

    cache_dir: Optional[Path] = DEFAULT_CACHE_DIR
    use_cache: bool = True
    cache_ttl_secs: Optional[int] = None

    timeout_secs: int = 300
    max_retries: int = 3
    verify_ssl: bool = True
    max_size: Optional[int] = None

    download_concurrency: Optional[int] = 8
    index_concurrency: Optional[int] = None

    output_dir: Path = Path("mrf_files")
    log_dir: Path = Path("logs")
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        """
        Raises:
            ConfigurationError: Any setting out of range
        """
        if self.rate_limit is not None and self.rate_limit <= 0:
            raise ConfigurationError(f"rate_limit must be > 0, got {self.rate_limit}")
        if self.max_connections < 1:
            raise ConfigurationError(
                f"max_connections must be >= 1, got {self.max_connections}"
            )
        if self.timeout_secs <= 0:
            raise ConfigurationError(f"timeout_secs must be > 0, got {self.timeout_secs}")
        if self.max_retries < 0:
            raise ConfigurationError(f"max_retries must be >= 0, got {self.max_retries}")
        for name in ("max_size", "cache_ttl_secs", "download_concurrency", "index_concurrency"):
            value = getattr(self, name)
            if value is not None and value < 1:
                raise ConfigurationError(f"{name} must be >= 1, got {value}")
        if self.use_cache and self.cache_dir is None:
            raise ConfigurationError("use_cache is enabled but cache_dir is not set")

    @classmethod
    def load_config(cls, config_path: Optional[Path] = None) -> "PipelineConfig":
        """Load configuration from config.yaml and environment variables."""
        config_path = config_path or DEFAULT_CONFIG_PATH

        mrf_data: Dict[str, Any] = {}
        if config_path.exists():
            with open(config_path, "r") as f:
                yaml_data = yaml.safe_load(f) or {}
            mrf_data = yaml_data.get("mrf", {}) or {}

        defaults = cls.__dataclass_fields__
        opt_int = _optional(int)
        opt_float = _optional(float)
        opt_path = _optional(Path)

        def default(name: str) -> Any:
            return defaults[name].default

        return cls(
            source=_setting(mrf_data, "source", "MRF_SOURCE", default("source")),
            api_endpoint=_setting(
                mrf_data, "api_endpoint", "MRF_API_ENDPOINT", default("api_endpoint")
            ),
            transparency_url=_setting(
                mrf_data,
                "transparency_url",
                "MRF_TRANSPARENCY_URL",
                default("transparency_url"),
            ),
            user_agent=_setting(
                mrf_data, "user_agent", "MRF_USER_AGENT", default("user_agent")
            ),
            rate_limit=_setting(
                mrf_data, "rate_limit", "MRF_RATE_LIMIT", default("rate_limit"), opt_float
            ),
            max_connections=_setting(
                mrf_data,
                "max_connections",
                "MRF_MAX_CONNECTIONS",
                default("max_connections"),
                int,
            ),
            cache_dir=_setting(
                mrf_data, "cache_dir", "MRF_CACHE_DIR", default("cache_dir"), opt_path
            ),
            use_cache=_setting(
                mrf_data, "use_cache", "MRF_USE_CACHE", default("use_cache"), _parse_bool
            ),
            cache_ttl_secs=_setting(
                mrf_data,
                "cache_ttl_secs",
                "MRF_CACHE_TTL_SECS",
                default("cache_ttl_secs"),
                opt_int,
            ),
            timeout_secs=_setting(
                mrf_data, "timeout_secs", "MRF_TIMEOUT_SECS", default("timeout_secs"), int
            ),
            max_retries=_setting(
                mrf_data, "max_retries", "MRF_MAX_RETRIES", default("max_retries"), int
            ),
            verify_ssl=_setting(
                mrf_data, "verify_ssl", "MRF_VERIFY_SSL", default("verify_ssl"), _parse_bool
            ),
            max_size=_setting(
                mrf_data, "max_size", "MRF_MAX_SIZE", default("max_size"), opt_int
            ),
            download_concurrency=_setting(
                mrf_data,
                "download_concurrency",
                "MRF_DOWNLOAD_CONCURRENCY",
                default("download_concurrency"),
                opt_int,
            ),
            index_concurrency=_setting(
                mrf_data,
                "index_concurrency",
                "MRF_INDEX_CONCURRENCY",
                default("index_concurrency"),
                opt_int,
            ),
            output_dir=_setting(
                mrf_data, "output_dir", "MRF_OUTPUT_DIR", default("output_dir"), Path
            ),
            log_dir=_setting(mrf_data, "log_dir", "MRF_LOG_DIR", default("log_dir"), Path),
            log_level=_setting(
                mrf_data, "log_level", "MRF_LOG_LEVEL", default("log_level"), str.upper
            ),
        )

    def to_fetch_options(self) -> FetchOptions:
        return FetchOptions(
            max_size=self.max_size,
            use_cache=self.use_cache,
            cache_dir=self.cache_dir,
            timeout_secs=self.timeout_secs,
            max_retries=self.max_retries,
            verify_ssl=self.verify_ssl,
            cache_ttl_secs=self.cache_ttl_secs,
        )

    def to_source_config(self) -> SourceConfig:
        return SourceConfig(
            base_url=self.transparency_url,
            user_agent=self.user_agent,
            rate_limit=self.rate_limit,
            default_options=self.to_fetch_options(),
            extra={
                "api_endpoint": self.api_endpoint,
                "transparency_url": self.transparency_url,
                "index_concurrency": self.index_concurrency,
            },
            max_connections=self.max_connections,
        )
