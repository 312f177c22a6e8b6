"""Concurrency gate bounding in-flight operations."""

import asyncio
from typing import Optional

from mrf_pipeline.common.exceptions import ConfigurationError


class ConcurrencyGate:
    """
    Async context manager admitting at most `limit` holders at once.

    A limit of None means unbounded; real parallelism is then capped only by
    the HTTP connection pool. in_flight and peak are tracked either way.

    Usage:
        gate = ConcurrencyGate(8)
        async with gate:
            await client.get_bytes(url)
    """

    def __init__(self, limit: Optional[int] = None):
        if limit is not None and limit < 1:
            raise ConfigurationError(f"Concurrency limit must be >= 1, got {limit}")
        self.limit = limit
        self._semaphore = asyncio.Semaphore(limit) if limit is not None else None
        self.in_flight = 0
        self.peak = 0

    @property
    def bounded(self) -> bool:
        return self._semaphore is not None

    async def __aenter__(self) -> "ConcurrencyGate":
        if self._semaphore is not None:
            await self._semaphore.acquire()
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.in_flight -= 1
        if self._semaphore is not None:
            self._semaphore.release()

    def __repr__(self) -> str:
        return f"ConcurrencyGate(limit={self.limit}, in_flight={self.in_flight})"
