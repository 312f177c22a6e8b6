"""
Fetch orchestration: single files and bounded-concurrency batches.

Every fetch consults the cache first and populates it afterwards. Batch
operations return exactly one FetchOutcome per input descriptor; a failed
item never aborts the batch. The only batch-wide abort is failing to create
the output directory of a disk batch, which fails every item without
downloading anything.
"""

import asyncio
import logging
import time
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple, Union

from mrf_pipeline.common.exceptions import SourceError, StorageError
from mrf_pipeline.common.logging.utilities import LoggedClass
from mrf_pipeline.metrics import record_download, track_download
from mrf_pipeline.sources.cache import CacheManager
from mrf_pipeline.sources.concurrency import ConcurrencyGate
from mrf_pipeline.sources.http_client import ProgressCallback, RequestClient
from mrf_pipeline.sources.models import FetchOptions, FetchOutcome, FileDescriptor

BatchProgressCallback = Callable[[int, int], None]


def _as_source_error(exc: BaseException) -> SourceError:
    """Wrap unexpected exceptions so every outcome carries a SourceError."""
    if isinstance(exc, SourceError):
        return exc
    return SourceError(f"Unexpected error: {exc}", cause=exc)


class FetchOrchestrator(LoggedClass):
    """
    Downloads descriptors into memory or onto disk.

    Usage:
        fetcher = FetchOrchestrator(client, CacheManager(defaults))
        outcomes = await fetcher.fetch_all(descriptors, FetchOptions(), max_concurrency=8)
        succeeded = [o for o in outcomes if o.success]
    """

    log_component = "fetch"

    def __init__(self, client: RequestClient, cache: CacheManager):
        self.client = client
        self.cache = cache
        super().__init__()

    # =========================================================================
    # Single file
    # =========================================================================

    async def _fetch(
        self, descriptor: FileDescriptor, options: FetchOptions
    ) -> Tuple[bytes, bool]:
        """Returns (body, from_cache)."""
        self.cache.target_path(descriptor, options)
        cached = await self.cache.check(descriptor, options)
        if cached is not None:
            record_download(success=True, cached=True)
            return cached, True

        start = time.perf_counter()
        try:
            data = await self.client.get_bytes(
                descriptor.url,
                max_size=options.max_size,
                max_retries=options.max_retries,
                timeout_secs=options.timeout_secs,
                verify_ssl=options.verify_ssl,
            )
        except SourceError:
            record_download(success=False)
            raise

        record_download(success=True, bytes_downloaded=len(data))
        self._log(
            logging.DEBUG,
            "Fetched file",
            file_id=descriptor.id,
            file_type=descriptor.file_type.value,
            url=descriptor.url,
            bytes_downloaded=len(data),
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
        )
        await self.cache.save(descriptor, data, options)
        return data, False

    async def fetch(self, descriptor: FileDescriptor, options: FetchOptions) -> bytes:
        """
        Fetch one file into memory.

        Raises:
            SizeExceededError: Content-Length over options.max_size
            ConfigurationError: Caching enabled without a cache_dir
            SourceError: Any transport or storage failure
        """
        data, _ = await self._fetch(descriptor, options)
        return data

    async def _fetch_to_path(
        self,
        descriptor: FileDescriptor,
        path: Path,
        options: FetchOptions,
        on_progress: Optional[ProgressCallback] = None,
    ) -> bool:
        """Returns True when served from cache."""
        self.cache.target_path(descriptor, options)
        cached = await self.cache.check_path(descriptor, options)
        if cached is not None:
            size = await self.cache.restore(cached, path)
            record_download(success=True, cached=True)
            self._log(
                logging.DEBUG,
                "Restored file from cache",
                file_id=descriptor.id,
                path=str(path),
                cache_path=str(cached),
                from_cache=True,
            )
            if on_progress is not None:
                on_progress(size, size)
            return True

        start = time.perf_counter()
        try:
            written = await self.client.download(
                descriptor.url,
                path,
                on_progress=on_progress,
                max_size=options.max_size,
                max_retries=options.max_retries,
                timeout_secs=options.timeout_secs,
                verify_ssl=options.verify_ssl,
            )
        except SourceError:
            record_download(success=False)
            raise

        record_download(success=True, bytes_downloaded=written)
        self._log(
            logging.DEBUG,
            "Downloaded file",
            file_id=descriptor.id,
            file_type=descriptor.file_type.value,
            url=descriptor.url,
            path=str(path),
            bytes_downloaded=written,
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
        )
        await self.cache.save_file(descriptor, path, options)
        return False

    async def fetch_to_path(
        self,
        descriptor: FileDescriptor,
        path: Union[str, Path],
        options: FetchOptions,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Path:
        """
        Stream one file to path.

        Args:
            descriptor: File to fetch
            path: Destination file
            options: Fetch options
            on_progress: Called with (bytes_so_far, total) when Content-Length is known

        Returns:
            The destination path
        """
        path = Path(path)
        await self._fetch_to_path(descriptor, path, options, on_progress)
        return path

    # =========================================================================
    # Batches
    # =========================================================================

    def _log_summary(
        self,
        label: str,
        outcomes: List[FetchOutcome],
        gate: ConcurrencyGate,
        start: float,
    ) -> None:
        succeeded = sum(1 for o in outcomes if o.success)
        failed = len(outcomes) - succeeded
        cached = sum(1 for o in outcomes if o.from_cache)
        self._log(
            logging.INFO,
            f"{label} complete: {succeeded} succeeded, {failed} failed, {cached} from cache",
            batch_size=len(outcomes),
            max_concurrency=gate.limit,
            records_succeeded=succeeded,
            records_failed=failed,
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
        )

    def _collect(
        self,
        descriptors: Sequence[FileDescriptor],
        results: List[Union[FetchOutcome, BaseException]],
    ) -> List[FetchOutcome]:
        """Convert exceptions escaping a worker into failed outcomes."""
        outcomes: List[FetchOutcome] = []
        for descriptor, result in zip(descriptors, results):
            if isinstance(result, BaseException):
                self._log_exception(
                    result,
                    "Unhandled exception in fetch batch",
                    file_id=descriptor.id,
                    url=descriptor.url,
                )
                outcomes.append(FetchOutcome.failure(descriptor, _as_source_error(result)))
            else:
                outcomes.append(result)
        return outcomes

    async def fetch_all(
        self,
        descriptors: Sequence[FileDescriptor],
        options: FetchOptions,
        max_concurrency: Optional[int] = None,
    ) -> List[FetchOutcome]:
        """
        Fetch every descriptor into memory with bounded concurrency.

        Args:
            descriptors: Files to fetch
            options: Fetch options applied to every item
            max_concurrency: Max in-flight fetches (None = unbounded)

        Returns:
            One FetchOutcome per descriptor, in input order
        """
        if not descriptors:
            return []

        start = time.perf_counter()
        gate = ConcurrencyGate(max_concurrency)

        async def bounded_fetch(descriptor: FileDescriptor) -> FetchOutcome:
            async with gate:
                try:
                    with track_download():
                        data, from_cache = await self._fetch(descriptor, options)
                    return FetchOutcome(
                        descriptor=descriptor, content=data, from_cache=from_cache
                    )
                except SourceError as e:
                    self._log_exception(
                        e,
                        "Fetch failed",
                        level=logging.WARNING,
                        include_traceback=False,
                        file_id=descriptor.id,
                        url=descriptor.url,
                    )
                    return FetchOutcome.failure(descriptor, e)

        results = await asyncio.gather(
            *(bounded_fetch(d) for d in descriptors), return_exceptions=True
        )

        outcomes = self._collect(descriptors, results)
        self._log_summary("Fetch batch", outcomes, gate, start)
        return outcomes

    async def fetch_all_to_disk(
        self,
        descriptors: Sequence[FileDescriptor],
        output_dir: Union[str, Path],
        options: FetchOptions,
        max_concurrency: Optional[int] = None,
        on_progress: Optional[BatchProgressCallback] = None,
    ) -> List[FetchOutcome]:
        """
        Download every descriptor to output_dir/<file_type>_<id>.<ext>.

        Args:
            descriptors: Files to download
            output_dir: Target directory (created if missing)
            options: Fetch options applied to every item
            max_concurrency: Max in-flight downloads (None = unbounded)
            on_progress: Called with (completed, total) after every item,
                success or failure

        Returns:
            One FetchOutcome per descriptor, in input order
        """
        if not descriptors:
            return []

        output_dir = Path(output_dir)
        try:
            await asyncio.to_thread(output_dir.mkdir, parents=True, exist_ok=True)
        except OSError as e:
            error = StorageError(
                f"Failed to create output directory {output_dir}: {e}",
                cause=e,
                context={"path": str(output_dir)},
            )
            self._log_exception(
                error,
                "Output directory unavailable, failing batch",
                path=str(output_dir),
                batch_size=len(descriptors),
            )
            return [FetchOutcome.failure(d, error) for d in descriptors]

        start = time.perf_counter()
        gate = ConcurrencyGate(max_concurrency)
        total = len(descriptors)
        # Mutated only on the event loop thread
        completed = 0

        def mark_done() -> None:
            nonlocal completed
            completed += 1
            if on_progress is None:
                return
            try:
                on_progress(completed, total)
            except Exception as e:
                self._log_exception(
                    e,
                    "Batch progress callback failed",
                    level=logging.WARNING,
                    completed=completed,
                    batch_size=total,
                )

        async def bounded_download(descriptor: FileDescriptor) -> FetchOutcome:
            path = output_dir / descriptor.output_filename
            try:
                async with gate:
                    with track_download():
                        from_cache = await self._fetch_to_path(descriptor, path, options)
                return FetchOutcome(descriptor=descriptor, path=path, from_cache=from_cache)
            except SourceError as e:
                self._log_exception(
                    e,
                    "Download failed",
                    level=logging.WARNING,
                    include_traceback=False,
                    file_id=descriptor.id,
                    url=descriptor.url,
                    path=str(path),
                )
                return FetchOutcome.failure(descriptor, e)
            finally:
                mark_done()

        results = await asyncio.gather(
            *(bounded_download(d) for d in descriptors), return_exceptions=True
        )

        outcomes = self._collect(descriptors, results)
        self._log_summary("Download batch", outcomes, gate, start)
        return outcomes
