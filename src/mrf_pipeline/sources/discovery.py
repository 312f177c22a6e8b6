"""
Two-stage discovery: manifest -> index files -> file descriptors.

The manifest fetch is the only fatal step. Every index file is fetched
concurrently through a ConcurrencyGate (unbounded by default) and parsed on a
dedicated thread pool; an index that fails, is empty, or does not parse
contributes zero descriptors without affecting the others.
"""

import asyncio
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import Any, Dict, List, Optional

import aiohttp

from mrf_pipeline.common.exceptions import IndexParseError, NetworkError, SourceError
from mrf_pipeline.common.logging.utilities import LoggedClass
from mrf_pipeline.metrics import record_files_discovered, record_index_file
from mrf_pipeline.sources.concurrency import ConcurrencyGate
from mrf_pipeline.sources.http_client import RequestClient
from mrf_pipeline.sources.models import (
    FileDescriptor,
    FileType,
    IndexEntry,
    detect_compression,
    extract_date,
    generate_file_id,
)
from mrf_pipeline.sources.schemas import (
    FileLocation,
    IndexFile,
    parse_index_file,
    parse_manifest,
)

# Smallest body that can be valid JSON ("{}")
MIN_INDEX_BYTES = 2


class DiscoveryState(Enum):
    IDLE = "idle"
    FETCH_MANIFEST = "fetch_manifest"
    PARSE_MANIFEST = "parse_manifest"
    FAN_OUT = "fan_out"
    AGGREGATE = "aggregate"
    DONE = "done"
    FAILED = "failed"


def build_descriptors(
    index: IndexFile,
    index_url: str,
    source_name: str,
    id_prefix: str = "",
) -> List[FileDescriptor]:
    """
    Expand a parsed index file into descriptors.

    One descriptor per in-network and allowed-amount entry across every
    reporting structure. Absent categories contribute nothing.
    """
    metadata: Dict[str, Any] = {
        "source": source_name,
        "index_url": index_url,
        "reporting_entity_name": index.reporting_entity_name,
        "reporting_entity_type": index.reporting_entity_type,
    }

    def make(location: FileLocation, file_type: FileType) -> FileDescriptor:
        return FileDescriptor(
            id=generate_file_id(location.location, id_prefix),
            name=location.description or file_type.default_name,
            url=location.location,
            file_type=file_type,
            size_bytes=None,
            last_modified=None,
            compression=detect_compression(location.location),
            metadata=dict(metadata),
        )

    descriptors: List[FileDescriptor] = []
    for structure in index.reporting_structure:
        for location in structure.in_network_files or []:
            descriptors.append(make(location, FileType.IN_NETWORK))
        for location in structure.allowed_amount_files or []:
            descriptors.append(make(location, FileType.ALLOWED_AMOUNT))
        if structure.allowed_amount_file is not None:
            descriptors.append(make(structure.allowed_amount_file, FileType.ALLOWED_AMOUNT))
    return descriptors


class DiscoveryEngine(LoggedClass):
    """
    Walks a publisher's manifest and index files.

    Usage:
        engine = DiscoveryEngine(client, source_name="united_health", id_prefix="uh_")
        descriptors = await engine.discover(MANIFEST_URL)
        engine.close()
    """

    log_component = "discovery"

    def __init__(
        self,
        client: RequestClient,
        source_name: str,
        id_prefix: str = "",
        index_gate: Optional[ConcurrencyGate] = None,
        parse_workers: Optional[int] = None,
    ):
        """
        Args:
            client: Shared request client
            source_name: Source id recorded in descriptor metadata
            id_prefix: Prefix for descriptor ids
            index_gate: Bounds concurrent index fetches (default: unbounded)
            parse_workers: Thread pool size for index parsing (default: executor default)
        """
        self.client = client
        self.source_name = source_name
        self.id_prefix = id_prefix
        self.index_gate = index_gate or ConcurrencyGate()
        self.parse_workers = parse_workers
        self.state = DiscoveryState.IDLE
        self._executor: Optional[ThreadPoolExecutor] = None
        self._run_lock: Optional[asyncio.Lock] = None
        super().__init__()

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.parse_workers,
                thread_name_prefix="mrf-index-parse",
            )
        return self._executor

    def close(self) -> None:
        """Shut down the parse thread pool."""
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None

    async def fetch_manifest(self, manifest_url: str) -> List[IndexEntry]:
        """
        Fetch and parse the manifest into index entries.

        Raises:
            SourceError: Manifest could not be fetched
            ManifestParseError: Manifest body did not parse
        """
        self.state = DiscoveryState.FETCH_MANIFEST
        body = await self.client.get_bytes(manifest_url)

        self.state = DiscoveryState.PARSE_MANIFEST
        manifest = parse_manifest(body)

        entries = [
            IndexEntry(
                name=blob.name,
                url=blob.download_url,
                date=extract_date(blob.name),
                size=blob.size,
            )
            for blob in manifest.blobs
        ]
        self._log(
            logging.INFO,
            f"Manifest lists {len(entries)} index files",
            url=manifest_url,
            index_count=len(entries),
        )
        return entries

    async def discover(self, manifest_url: str) -> List[FileDescriptor]:
        """
        Run full discovery.

        Runs on one engine are serialized so that state always describes the
        run in progress. Use separate engines for parallel discovery.

        Returns:
            Flattened descriptors from every index file, in no particular order

        Raises:
            SourceError: Manifest fetch or parse failed
        """
        if self._run_lock is None:
            self._run_lock = asyncio.Lock()
        async with self._run_lock:
            return await self._discover(manifest_url)

    async def _discover(self, manifest_url: str) -> List[FileDescriptor]:
        start = time.perf_counter()
        try:
            entries = await self.fetch_manifest(manifest_url)
        except SourceError:
            self.state = DiscoveryState.FAILED
            raise

        self.state = DiscoveryState.FAN_OUT
        per_index = await asyncio.gather(
            *(self._process_index(entry) for entry in entries)
        )

        self.state = DiscoveryState.AGGREGATE
        descriptors = [d for batch in per_index for d in batch]

        for file_type in FileType:
            record_files_discovered(
                self.source_name,
                file_type.value,
                sum(1 for d in descriptors if d.file_type is file_type),
            )

        self.state = DiscoveryState.DONE
        self._log(
            logging.INFO,
            f"Discovery complete: {len(descriptors)} files from {len(entries)} index files",
            index_count=len(entries),
            files_found=len(descriptors),
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
        )
        return descriptors

    async def _fetch_index_body(self, entry: IndexEntry) -> Optional[bytes]:
        """Fetch an index body; None when it is advertised or read as empty."""
        async with self.client.request(entry.url) as response:
            if response.content_length == 0:
                return None
            try:
                return await response.read()
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                raise NetworkError(
                    f"Failed reading index file body: {entry.url}",
                    cause=e,
                    context={"url": entry.url},
                ) from e

    async def _process_index(self, entry: IndexEntry) -> List[FileDescriptor]:
        async with self.index_gate:
            try:
                body = await self._fetch_index_body(entry)
            except SourceError as e:
                record_index_file(self.source_name, "fetch_error")
                self._log_exception(
                    e,
                    "Failed to fetch index file, skipping",
                    level=logging.WARNING,
                    index_name=entry.name,
                    index_url=entry.url,
                )
                return []

        if body is None or len(body) < MIN_INDEX_BYTES:
            record_index_file(self.source_name, "empty")
            self._log(
                logging.DEBUG,
                "Skipping empty index file",
                index_name=entry.name,
                index_url=entry.url,
                content_length=0 if body is None else len(body),
            )
            return []

        loop = asyncio.get_running_loop()
        try:
            index = await loop.run_in_executor(
                self._get_executor(), parse_index_file, body
            )
        except IndexParseError as e:
            record_index_file(self.source_name, "parse_error")
            self._log(
                logging.WARNING,
                "Failed to parse index file, skipping",
                index_name=entry.name,
                index_url=entry.url,
                content_length=len(body),
                error_message=str(e)[:500],
                error_category=e.category.value,
            )
            return []

        descriptors = build_descriptors(
            index, entry.url, self.source_name, self.id_prefix
        )
        record_index_file(self.source_name, "parsed")
        self._log(
            logging.DEBUG,
            f"Index file yielded {len(descriptors)} files",
            index_name=entry.name,
            index_url=entry.url,
            files_found=len(descriptors),
        )
        return descriptors
