"""Tests for UnitedHealthSource against a fake publisher."""

import pytest

from mrf_pipeline.common.exceptions import ConfigurationError, ServerError
from mrf_pipeline.sources import available_sources, get_source
from mrf_pipeline.sources.cache import DEFAULT_CACHE_DIR
from mrf_pipeline.sources.models import FetchOptions, FileType, SourceConfig
from mrf_pipeline.sources.united_health import (
    API_ENDPOINT,
    TRANSPARENCY_URL,
    UnitedHealthSource,
)

MANIFEST_PATH = "/api/v1/uhc/blobs"


def make_config(publisher, tmp_path, **extra):
    options = {
        "api_endpoint": publisher.url(MANIFEST_PATH),
        "transparency_url": publisher.url("/"),
    }
    options.update(extra)
    return SourceConfig(
        base_url=publisher.url("/"),
        user_agent="mrf-pipeline-tests",
        default_options=FetchOptions(cache_dir=tmp_path / "cache", max_retries=0),
        extra=options,
    )


@pytest.fixture
def publish(publisher, index_payload):
    """Publish a manifest with two index files."""
    publisher.add_json(
        "/idx/a",
        index_payload(
            [publisher.url("/files/a1.json.gz"), publisher.url("/files/a2.json.gz")],
            allowed_amount=[publisher.url("/files/aa.json")],
        ),
    )
    publisher.add_json("/idx/b", index_payload([publisher.url("/files/b1.json.gz")]))
    publisher.add_json(
        MANIFEST_PATH,
        {
            "blobs": [
                {"name": "2025-01-01_A_index.json", "downloadUrl": publisher.url("/idx/a")},
                {"name": "2025-01-01_B_index.json", "downloadUrl": publisher.url("/idx/b")},
            ]
        },
    )
    for name in ("a1.json.gz", "a2.json.gz", "aa.json", "b1.json.gz"):
        publisher.add(f"/files/{name}", f"contents of {name}")
    return publisher


class TestIdentity:
    def test_defaults(self):
        source = UnitedHealthSource()
        assert source.name == "United Health"
        assert source.source_id == "united_health"
        assert source.api_endpoint == API_ENDPOINT
        assert source.transparency_url == TRANSPARENCY_URL
        assert source.config.default_options.cache_dir == DEFAULT_CACHE_DIR

    def test_registry(self):
        assert available_sources() == ["united_health"]
        assert isinstance(get_source("united_health"), UnitedHealthSource)

    def test_unknown_source(self):
        with pytest.raises(ConfigurationError):
            get_source("acme_health")

    def test_descriptor_for_url(self):
        source = UnitedHealthSource()
        descriptor = source.descriptor_for_url(
            "https://x/2025-01-01_in-network-rates.json.gz"
        )
        assert descriptor.id.startswith("uh_")
        assert descriptor.file_type == FileType.IN_NETWORK
        assert descriptor.metadata == {"source": "united_health"}


class TestDiscoverAndFetch:
    @pytest.mark.asyncio
    async def test_discover_files(self, publish, tmp_path):
        async with UnitedHealthSource(make_config(publish, tmp_path)) as source:
            files = await source.discover_files()

        assert len(files) == 4
        by_type = {}
        for f in files:
            by_type.setdefault(f.file_type, []).append(f)
        assert len(by_type[FileType.IN_NETWORK]) == 3
        assert len(by_type[FileType.ALLOWED_AMOUNT]) == 1
        assert all(f.id.startswith("uh_") for f in files)
        assert all(f.metadata["source"] == "united_health" for f in files)

    @pytest.mark.asyncio
    async def test_discover_then_download(self, publish, tmp_path):
        async with UnitedHealthSource(make_config(publish, tmp_path)) as source:
            files = await source.discover_files()
            outcomes = await source.fetch_all_files_to_disk(
                files, tmp_path / "out", max_concurrency=2
            )

        assert all(o.success for o in outcomes)
        assert sorted(p.name for p in (tmp_path / "out").iterdir()) == sorted(
            o.descriptor.output_filename for o in outcomes
        )

    @pytest.mark.asyncio
    async def test_fetch_file_uses_default_options(self, publish, tmp_path):
        async with UnitedHealthSource(make_config(publish, tmp_path)) as source:
            descriptor = source.descriptor_for_url(publish.url("/files/aa.json"))
            first = await source.fetch_file(descriptor)
            second = await source.fetch_file(descriptor)

        assert first == second == b"contents of aa.json"
        assert publish.hits["/files/aa.json"] == 1

    @pytest.mark.asyncio
    async def test_manifest_failure_propagates(self, publisher, tmp_path, no_backoff):
        publisher.add(MANIFEST_PATH, status=503)

        async with UnitedHealthSource(make_config(publisher, tmp_path)) as source:
            with pytest.raises(ServerError):
                await source.discover_files()

    @pytest.mark.asyncio
    async def test_index_concurrency_from_config(self, publish, tmp_path):
        config = make_config(publish, tmp_path, index_concurrency=1)

        async with UnitedHealthSource(config) as source:
            await source.discover_files()
            assert source.discovery.index_gate.peak == 1


class TestMetadataAndHealth:
    @pytest.mark.asyncio
    async def test_metadata(self, publish, tmp_path):
        async with UnitedHealthSource(make_config(publish, tmp_path)) as source:
            metadata = await source.get_metadata()

        assert metadata["source"] == "United Health"
        assert metadata["source_id"] == "united_health"
        assert metadata["index_file_count"] == 2
        assert metadata["index_files"][0]["date"] == "2025-01-01T00:00:00+00:00"

    @pytest.mark.asyncio
    async def test_healthy(self, publisher, tmp_path):
        publisher.add("/", b"<html>ok</html>")

        async with UnitedHealthSource(make_config(publisher, tmp_path)) as source:
            assert await source.health_check() is True

    @pytest.mark.asyncio
    async def test_unhealthy_does_not_retry(self, publisher, tmp_path, no_backoff):
        publisher.add("/", status=503)

        async with UnitedHealthSource(make_config(publisher, tmp_path)) as source:
            assert await source.health_check() is False

        assert publisher.hits["/"] == 1
        no_backoff.assert_not_called()
