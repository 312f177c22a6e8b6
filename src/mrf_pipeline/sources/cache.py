"""
On-disk cache for fetched files.

Layout: <cache_dir>/<descriptor.id>/<cache_key>.<ext>

The key covers the URL and the descriptor's last_modified, so a republished
file always lands in a new slot. An entry is fresh when its mtime is strictly
after last_modified; entries without last_modified are fresh until
cache_ttl_secs (if set) has elapsed.
"""

import asyncio
import hashlib
import logging
import os
import shutil
import time
from pathlib import Path
from typing import Optional

import aiofiles

from mrf_pipeline.common.exceptions import ConfigurationError, StorageError
from mrf_pipeline.common.logging.utilities import LoggedClass
from mrf_pipeline.metrics import record_cache_lookup
from mrf_pipeline.sources.http_client import temp_path_for
from mrf_pipeline.sources.models import FetchOptions, FileDescriptor

DEFAULT_CACHE_DIR = Path("/tmp/mrf_pipeline_cache")


def cache_key(descriptor: FileDescriptor) -> str:
    """sha256 over url and, when present, the integer epoch of last_modified."""
    hasher = hashlib.sha256()
    hasher.update(descriptor.url.encode("utf-8"))
    if descriptor.last_modified is not None:
        hasher.update(str(int(descriptor.last_modified.timestamp())).encode("ascii"))
    return hasher.hexdigest()


def cache_path(cache_dir: Path, descriptor: FileDescriptor) -> Path:
    ext = descriptor.compression.cache_extension
    return Path(cache_dir) / descriptor.id / f"{cache_key(descriptor)}.{ext}"


def is_fresh(
    path: Path, descriptor: FileDescriptor, ttl_secs: Optional[int] = None
) -> bool:
    """Whether an existing cache file may be served for descriptor."""
    mtime = path.stat().st_mtime
    if descriptor.last_modified is not None:
        return mtime > descriptor.last_modified.timestamp()
    if ttl_secs is not None:
        return (time.time() - mtime) < ttl_secs
    return True


def _copy_into_place(source: Path, target: Path) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    tmp = temp_path_for(target)
    try:
        shutil.copyfile(source, tmp)
        os.replace(tmp, target)
    finally:
        if tmp.exists():
            tmp.unlink()


class CacheManager(LoggedClass):
    """
    Checks and writes cached file bodies.

    Misses are never errors. Writes are: a cache requested without a
    directory raises ConfigurationError, disk failures raise StorageError.
    """

    log_component = "cache"

    def __init__(self, default_options: Optional[FetchOptions] = None):
        """
        Args:
            default_options: Source-level options consulted when per-call
                options carry no cache_dir
        """
        self.default_options = default_options or FetchOptions()
        super().__init__()

    def resolve_cache_dir(self, options: FetchOptions) -> Optional[Path]:
        cache_dir = options.cache_dir or self.default_options.cache_dir
        return Path(cache_dir) if cache_dir else None

    def _fresh_path(
        self, descriptor: FileDescriptor, options: FetchOptions
    ) -> Optional[Path]:
        if not options.use_cache:
            return None
        cache_dir = self.resolve_cache_dir(options)
        if cache_dir is None:
            return None

        path = cache_path(cache_dir, descriptor)
        try:
            if not path.exists():
                record_cache_lookup("miss")
                return None
            if not is_fresh(path, descriptor, options.cache_ttl_secs):
                record_cache_lookup("stale")
                self._log(
                    logging.DEBUG,
                    "Cache entry stale",
                    file_id=descriptor.id,
                    cache_path=str(path),
                )
                return None
        except OSError as e:
            record_cache_lookup("miss")
            self._log_exception(
                e,
                "Cache lookup failed, treating as miss",
                level=logging.WARNING,
                file_id=descriptor.id,
                cache_path=str(path),
            )
            return None

        record_cache_lookup("hit")
        return path

    async def check_path(
        self, descriptor: FileDescriptor, options: FetchOptions
    ) -> Optional[Path]:
        """Path of a fresh cache entry, or None."""
        return await asyncio.to_thread(self._fresh_path, descriptor, options)

    async def check(
        self, descriptor: FileDescriptor, options: FetchOptions
    ) -> Optional[bytes]:
        """Cached bytes for descriptor, or None on any kind of miss."""
        path = await self.check_path(descriptor, options)
        if path is None:
            return None

        try:
            async with aiofiles.open(path, "rb") as f:
                data = await f.read()
        except OSError as e:
            self._log_exception(
                e,
                "Cache read failed, treating as miss",
                level=logging.WARNING,
                file_id=descriptor.id,
                cache_path=str(path),
            )
            return None

        self._log(
            logging.DEBUG,
            "Cache hit",
            file_id=descriptor.id,
            cache_path=str(path),
            from_cache=True,
        )
        return data

    def target_path(
        self, descriptor: FileDescriptor, options: FetchOptions
    ) -> Optional[Path]:
        """
        Where a fetched body would be cached, or None when caching is off.

        Raises:
            ConfigurationError: Caching enabled without a cache_dir
        """
        if not options.use_cache:
            return None
        cache_dir = self.resolve_cache_dir(options)
        if cache_dir is None:
            raise ConfigurationError(
                "Caching is enabled but no cache_dir is configured",
                context={"file_id": descriptor.id},
            )
        return cache_path(cache_dir, descriptor)

    async def save(
        self, descriptor: FileDescriptor, data: bytes, options: FetchOptions
    ) -> Optional[Path]:
        """
        Write bytes to the cache.

        Returns:
            Cache path written, or None when caching is disabled

        Raises:
            ConfigurationError: Caching enabled without a cache_dir
            StorageError: Disk write failed
        """
        path = self.target_path(descriptor, options)
        if path is None:
            return None

        tmp: Optional[Path] = None
        try:
            await asyncio.to_thread(path.parent.mkdir, parents=True, exist_ok=True)
            tmp = await asyncio.to_thread(temp_path_for, path)
            async with aiofiles.open(tmp, "wb") as f:
                await f.write(data)
            await asyncio.to_thread(os.replace, tmp, path)
            tmp = None
        except OSError as e:
            raise StorageError(
                f"Failed to write cache entry {path}: {e}",
                cause=e,
                context={"cache_path": str(path), "file_id": descriptor.id},
            ) from e
        finally:
            if tmp is not None and tmp.exists():
                tmp.unlink()

        self._log(
            logging.DEBUG,
            "Cached file",
            file_id=descriptor.id,
            cache_path=str(path),
            bytes_downloaded=len(data),
        )
        return path

    async def save_file(
        self, descriptor: FileDescriptor, source_path: Path, options: FetchOptions
    ) -> Optional[Path]:
        """Copy an already-downloaded file into the cache. Same errors as save."""
        path = self.target_path(descriptor, options)
        if path is None:
            return None

        try:
            await asyncio.to_thread(_copy_into_place, Path(source_path), path)
        except OSError as e:
            raise StorageError(
                f"Failed to copy {source_path} into cache: {e}",
                cause=e,
                context={"cache_path": str(path), "file_id": descriptor.id},
            ) from e

        self._log(
            logging.DEBUG,
            "Cached file",
            file_id=descriptor.id,
            cache_path=str(path),
        )
        return path

    async def restore(self, cached: Path, destination: Path) -> int:
        """Copy a cache entry to destination. Returns the file size."""
        try:
            await asyncio.to_thread(_copy_into_place, cached, destination)
            return (await asyncio.to_thread(destination.stat)).st_size
        except OSError as e:
            raise StorageError(
                f"Failed to copy cache entry to {destination}: {e}",
                cause=e,
                context={"cache_path": str(cached), "path": str(destination)},
            ) from e
