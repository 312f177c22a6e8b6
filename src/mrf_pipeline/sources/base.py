"""
Source contract and shared source plumbing.

MrfSource is the capability set every publisher implements. BaseSource wires
the shared RequestClient, CacheManager and FetchOrchestrator together so a
concrete publisher only supplies discovery and identity.
"""

import dataclasses
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from mrf_pipeline.common.logging.utilities import LoggedClass
from mrf_pipeline.sources.cache import CacheManager
from mrf_pipeline.sources.fetcher import BatchProgressCallback, FetchOrchestrator
from mrf_pipeline.sources.http_client import ProgressCallback, RequestClient
from mrf_pipeline.sources.models import (
    FetchOptions,
    FetchOutcome,
    FileDescriptor,
    FileType,
    SourceConfig,
)


class MrfSource(ABC):
    """Capabilities a publisher implementation must provide."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable publisher name."""

    @property
    @abstractmethod
    def source_id(self) -> str:
        """Stable identifier (e.g. united_health)."""

    @abstractmethod
    async def discover_files(self) -> List[FileDescriptor]:
        """Walk the publisher's manifest and index files."""

    @abstractmethod
    async def fetch_file(
        self, descriptor: FileDescriptor, options: Optional[FetchOptions] = None
    ) -> bytes:
        """Fetch one file into memory."""

    @abstractmethod
    async def fetch_file_to_path(
        self,
        descriptor: FileDescriptor,
        path: Union[str, Path],
        options: Optional[FetchOptions] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Path:
        """Stream one file to disk."""

    async def get_metadata(self) -> Dict[str, Any]:
        return {"source": self.name, "discovery_required": True}

    async def health_check(self) -> bool:
        return True


class BaseSource(LoggedClass, MrfSource):
    """
    MrfSource with the shared client, cache and fetcher composed in.

    The HTTP session lives as long as the source; use it as an async
    context manager or call close() when done.

    Usage:
        async with UnitedHealthSource(config) as source:
            files = await source.discover_files()
            outcomes = await source.fetch_all_files_to_disk(files, Path("out"))
    """

    id_prefix: str = ""  # Prefix for descriptor ids

    def __init__(
        self,
        config: SourceConfig,
        client: Optional[RequestClient] = None,
    ):
        self.config = config
        defaults = config.default_options
        self.client = client or RequestClient(
            user_agent=config.user_agent,
            max_connections=config.max_connections,
            rate_limit=config.rate_limit,
            timeout_secs=defaults.timeout_secs or 300,
            max_retries=3 if defaults.max_retries is None else defaults.max_retries,
            verify_ssl=defaults.verify_ssl,
        )
        self.cache = CacheManager(defaults)
        self.fetcher = FetchOrchestrator(self.client, self.cache)
        super().__init__()

    async def __aenter__(self) -> "BaseSource":
        await self.client.__aenter__()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self.client.close()

    def _options(self, options: Optional[FetchOptions]) -> FetchOptions:
        return options or self.config.default_options

    def descriptor_for_url(
        self, url: str, file_type: Optional[FileType] = None
    ) -> FileDescriptor:
        """Descriptor for a URL that did not come from discovery."""
        descriptor = FileDescriptor.from_url(
            url, id_prefix=self.id_prefix, file_type=file_type
        )
        return dataclasses.replace(descriptor, metadata={"source": self.source_id})

    async def fetch_file(
        self, descriptor: FileDescriptor, options: Optional[FetchOptions] = None
    ) -> bytes:
        return await self.fetcher.fetch(descriptor, self._options(options))

    async def fetch_file_to_path(
        self,
        descriptor: FileDescriptor,
        path: Union[str, Path],
        options: Optional[FetchOptions] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Path:
        return await self.fetcher.fetch_to_path(
            descriptor, path, self._options(options), on_progress
        )

    async def fetch_all_files(
        self,
        descriptors: Sequence[FileDescriptor],
        options: Optional[FetchOptions] = None,
        max_concurrency: Optional[int] = None,
    ) -> List[FetchOutcome]:
        return await self.fetcher.fetch_all(
            descriptors, self._options(options), max_concurrency
        )

    async def fetch_all_files_to_disk(
        self,
        descriptors: Sequence[FileDescriptor],
        output_dir: Union[str, Path],
        options: Optional[FetchOptions] = None,
        max_concurrency: Optional[int] = None,
        on_progress: Optional[BatchProgressCallback] = None,
    ) -> List[FetchOutcome]:
        return await self.fetcher.fetch_all_to_disk(
            descriptors,
            output_dir,
            self._options(options),
            max_concurrency,
            on_progress,
        )
