"""
Publisher sources.

Usage:
    from mrf_pipeline.sources import get_source

    async with get_source("united_health") as source:
        files = await source.discover_files()
"""

from typing import Dict, List, Optional, Type

from mrf_pipeline.common.exceptions import ConfigurationError
from mrf_pipeline.sources.base import BaseSource, MrfSource
from mrf_pipeline.sources.models import (
    CompressionType,
    FetchOptions,
    FetchOutcome,
    FileDescriptor,
    FileType,
    SourceConfig,
)
from mrf_pipeline.sources.united_health import UnitedHealthSource

SOURCES: Dict[str, Type[BaseSource]] = {
    "united_health": UnitedHealthSource,
}


def available_sources() -> List[str]:
    return sorted(SOURCES)


def get_source(source_id: str, config: Optional[SourceConfig] = None) -> BaseSource:
    """
    Instantiate a registered source.

    Raises:
        ConfigurationError: Unknown source id
    """
    try:
        source_cls = SOURCES[source_id]
    except KeyError:
        raise ConfigurationError(
            f"Unknown source '{source_id}'. Available: {', '.join(available_sources())}"
        ) from None
    return source_cls(config) if config is not None else source_cls()


__all__ = [
    "BaseSource",
    "CompressionType",
    "FetchOptions",
    "FetchOutcome",
    "FileDescriptor",
    "FileType",
    "MrfSource",
    "SourceConfig",
    "UnitedHealthSource",
    "available_sources",
    "get_source",
]
