"""
United Health transparency-in-coverage source.

The blobs API lists date-prefixed index files; each index lists the
in-network and allowed-amount files for one reporting entity.
"""

import logging
from typing import Any, Dict, List, Optional

from mrf_pipeline.common.exceptions import SourceError
from mrf_pipeline.common.logging.utilities import logged_operation
from mrf_pipeline.sources.base import BaseSource
from mrf_pipeline.sources.concurrency import ConcurrencyGate
from mrf_pipeline.sources.discovery import DiscoveryEngine
from mrf_pipeline.sources.http_client import RequestClient
from mrf_pipeline.sources.cache import DEFAULT_CACHE_DIR
from mrf_pipeline.sources.models import (
    FetchOptions,
    FileDescriptor,
    IndexEntry,
    SourceConfig,
)

TRANSPARENCY_URL = "https://transparency-in-coverage.uhc.com/"
API_ENDPOINT = "https://transparency-in-coverage.uhc.com/api/v1/uhc/blobs"
USER_AGENT = "mrf-pipeline/0.1.0 (United Health MRF Fetcher)"
ID_PREFIX = "uh_"

# Health probes fail fast rather than backing off
HEALTH_CHECK_TIMEOUT_SECS = 30


def default_config() -> SourceConfig:
    return SourceConfig(
        base_url=TRANSPARENCY_URL,
        user_agent=USER_AGENT,
        default_options=FetchOptions(cache_dir=DEFAULT_CACHE_DIR),
        extra={"transparency_url": TRANSPARENCY_URL, "api_endpoint": API_ENDPOINT},
    )


class UnitedHealthSource(BaseSource):
    """
    Source for United Health's machine-readable files.

    config.extra keys:
        api_endpoint: Blobs API URL (manifest)
        transparency_url: Landing page used for health checks
        index_concurrency: Bound on concurrent index fetches (default: unbounded)
        parse_workers: Thread pool size for index parsing
    """

    id_prefix = ID_PREFIX

    def __init__(
        self,
        config: Optional[SourceConfig] = None,
        client: Optional[RequestClient] = None,
    ):
        config = config or default_config()
        super().__init__(config, client)

        extra = config.extra
        self.api_endpoint: str = extra.get("api_endpoint") or API_ENDPOINT
        self.transparency_url: str = (
            extra.get("transparency_url") or config.base_url or TRANSPARENCY_URL
        )
        self.discovery = DiscoveryEngine(
            self.client,
            source_name=self.source_id,
            id_prefix=self.id_prefix,
            index_gate=ConcurrencyGate(extra.get("index_concurrency")),
            parse_workers=extra.get("parse_workers"),
        )

    @property
    def name(self) -> str:
        return "United Health"

    @property
    def source_id(self) -> str:
        return "united_health"

    async def close(self) -> None:
        self.discovery.close()
        await super().close()

    async def fetch_index_entries(self) -> List[IndexEntry]:
        """Manifest entries (index files) currently published."""
        return await self.discovery.fetch_manifest(self.api_endpoint)

    @logged_operation(level=logging.INFO, log_start=True)
    async def discover_files(self) -> List[FileDescriptor]:
        return await self.discovery.discover(self.api_endpoint)

    async def get_metadata(self) -> Dict[str, Any]:
        entries = await self.fetch_index_entries()
        return {
            "source": self.name,
            "source_id": self.source_id,
            "transparency_url": self.transparency_url,
            "api_endpoint": self.api_endpoint,
            "index_file_count": len(entries),
            "index_files": [entry.to_dict() for entry in entries],
        }

    async def health_check(self) -> bool:
        """True when the transparency site answers with 2xx."""
        try:
            async with self.client.request(
                self.transparency_url,
                max_retries=0,
                timeout_secs=HEALTH_CHECK_TIMEOUT_SECS,
            ):
                return True
        except SourceError as e:
            self._log_exception(
                e,
                "Health check failed",
                level=logging.WARNING,
                include_traceback=False,
                url=self.transparency_url,
            )
            return False
