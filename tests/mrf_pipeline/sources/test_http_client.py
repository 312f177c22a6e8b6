"""
Tests for RequestClient.

Test Coverage:
    - Retry on 5xx with exponential backoff, exhaustion to ServerError
    - Immediate RateLimitedError on 429 with Retry-After
    - No retry on other 4xx
    - Connection failures surfacing as NetworkError
    - Size limit enforcement before reading
    - Streaming download via a temp .part file and cleanup on failure
"""

import time

import aiohttp
import pytest

from mrf_pipeline.common.exceptions import (
    HttpClientError,
    NetworkError,
    RateLimitedError,
    ServerError,
    SizeExceededError,
)
from mrf_pipeline.sources.http_client import (
    RequestClient,
    backoff_seconds,
    check_size,
    parse_retry_after,
)


class TestHelpers:
    def test_backoff_doubles(self):
        assert [backoff_seconds(a) for a in (1, 2, 3)] == [2, 4, 8]

    @pytest.mark.parametrize(
        "header,expected",
        [
            ("17", 17),
            (" 5 ", 5),
            (None, 60),
            ("", 60),
            ("Wed, 21 Oct 2015 07:28:00 GMT", 60),
            ("-3", 60),
        ],
    )
    def test_parse_retry_after(self, header, expected):
        assert parse_retry_after(header) == expected

    def test_check_size(self):
        check_size(100, 100, "https://x/a")
        check_size(None, 10, "https://x/a")
        check_size(500, None, "https://x/a")
        with pytest.raises(SizeExceededError):
            check_size(101, 100, "https://x/a")


class TestRetries:
    @pytest.mark.asyncio
    async def test_rate_limited_immediately(self, publisher, client, no_backoff):
        url = publisher.add("/rate", status=429, headers={"Retry-After": "17"})

        with pytest.raises(RateLimitedError) as exc_info:
            await client.get_bytes(url)

        assert exc_info.value.retry_after == 17
        assert publisher.hits["/rate"] == 1
        no_backoff.assert_not_called()

    @pytest.mark.asyncio
    async def test_rate_limited_without_header_defaults(self, publisher, client, no_backoff):
        url = publisher.add("/rate", status=429)

        with pytest.raises(RateLimitedError) as exc_info:
            await client.get_bytes(url)

        assert exc_info.value.retry_after == 60

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self, publisher, client, no_backoff):
        url = publisher.add("/missing", status=404)

        with pytest.raises(HttpClientError) as exc_info:
            await client.get_bytes(url)

        assert exc_info.value.status_code == 404
        assert publisher.hits["/missing"] == 1
        no_backoff.assert_not_called()

    @pytest.mark.asyncio
    async def test_server_error_exhausts_retries(self, publisher, client, no_backoff):
        url = publisher.add("/broken", status=500)

        with pytest.raises(ServerError) as exc_info:
            await client.get_bytes(url, max_retries=2)

        assert exc_info.value.status_code == 500
        assert publisher.hits["/broken"] == 3
        assert [c.args[0] for c in no_backoff.call_args_list] == [1, 2]

    @pytest.mark.asyncio
    async def test_server_error_then_success(self, publisher, client, no_backoff):
        url = publisher.add_sequence(
            "/flaky",
            [{"status": 503}, {"status": 200, "body": b'{"ok": true}'}],
        )

        body = await client.get_bytes(url)

        assert body == b'{"ok": true}'
        assert publisher.hits["/flaky"] == 2
        assert no_backoff.call_count == 1

    @pytest.mark.asyncio
    async def test_zero_retries_fails_on_first_5xx(self, publisher, client, no_backoff):
        url = publisher.add("/broken", status=502)

        with pytest.raises(ServerError):
            await client.get_bytes(url, max_retries=0)

        assert publisher.hits["/broken"] == 1

    @pytest.mark.asyncio
    async def test_connection_refused_is_network_error(self, client, no_backoff):
        with pytest.raises(NetworkError):
            await client.get_bytes("http://127.0.0.1:1/unreachable", max_retries=1)

        assert no_backoff.call_count == 1


class TestGetBytes:
    @pytest.mark.asyncio
    async def test_returns_body(self, publisher, client):
        url = publisher.add("/file.json", b'{"a": 1}')
        assert await client.get_bytes(url) == b'{"a": 1}'

    @pytest.mark.asyncio
    async def test_size_limit(self, publisher, client):
        url = publisher.add("/big.json", b"x" * 500)

        with pytest.raises(SizeExceededError) as exc_info:
            await client.get_bytes(url, max_size=100)

        assert exc_info.value.size == 500
        assert exc_info.value.max_size == 100

    @pytest.mark.asyncio
    async def test_sends_user_agent(self, publisher):
        url = publisher.add("/ua.json", b"{}")

        async with RequestClient(user_agent="mrf-pipeline-ua-test") as client:
            await client.get_bytes(url)

        assert publisher.last_headers["User-Agent"] == "mrf-pipeline-ua-test"

    @pytest.mark.asyncio
    async def test_external_session_is_not_closed(self, publisher):
        url = publisher.add("/shared.json", b"{}")
        async with aiohttp.ClientSession() as session:
            async with RequestClient(session=session) as client:
                await client.get_bytes(url)
            assert not session.closed


class TestDownload:
    @pytest.mark.asyncio
    async def test_writes_file_and_reports_progress(self, publisher, client, tmp_path):
        body = b"0123456789" * 1000
        url = publisher.add("/files/a.json.gz", body)
        destination = tmp_path / "out" / "a.json.gz"
        progress = []

        written = await client.download(
            url, destination, on_progress=lambda done, total: progress.append((done, total))
        )

        assert written == len(body)
        assert destination.read_bytes() == body
        assert not list((tmp_path / "out").glob("*.part"))
        assert progress[-1] == (len(body), len(body))

    @pytest.mark.asyncio
    async def test_size_limit_writes_nothing(self, publisher, client, tmp_path):
        url = publisher.add("/files/big.json", b"x" * 500)
        destination = tmp_path / "big.json"

        with pytest.raises(SizeExceededError):
            await client.download(url, destination, max_size=100)

        assert not destination.exists()
        assert list(tmp_path.iterdir()) == []

    @pytest.mark.asyncio
    async def test_truncated_stream_cleans_up(self, publisher, client, tmp_path, no_backoff):
        url = publisher.add("/files/cut.json", b"x" * 10_000, truncate_at=100)
        destination = tmp_path / "cut.json"

        with pytest.raises(NetworkError):
            await client.download(url, destination)

        assert not destination.exists()
        assert not list(tmp_path.glob("*.part"))

    @pytest.mark.asyncio
    async def test_failed_download_keeps_existing_destination(
        self, publisher, client, tmp_path
    ):
        url = publisher.add("/files/gone.json", status=404)
        destination = tmp_path / "gone.json"
        destination.write_bytes(b"previous")

        with pytest.raises(HttpClientError):
            await client.download(url, destination)

        assert destination.read_bytes() == b"previous"


class TestThrottle:
    @pytest.mark.asyncio
    async def test_spaces_request_starts(self, publisher):
        url = publisher.add("/file.json", b"{}")

        async with RequestClient(rate_limit=20) as client:
            start = time.monotonic()
            for _ in range(3):
                await client.get_bytes(url)
            elapsed = time.monotonic() - start

        assert elapsed >= 0.09
        assert publisher.hits["/file.json"] == 3
