"""
Fixtures for source tests.

Provides an in-process publisher (aiohttp.web + TestServer) that serves
scripted responses per path and tracks hits and concurrency.
"""

import asyncio
import json
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union
from unittest.mock import patch

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from mrf_pipeline.sources.http_client import RequestClient


@dataclass
class ScriptedResponse:
    status: int = 200
    body: bytes = b""
    headers: Dict[str, str] = field(default_factory=dict)
    delay: float = 0.0
    truncate_at: Optional[int] = None  # Close the connection after this many bytes


class FakePublisher:
    """
    Serves scripted responses keyed by request path.

    A path with several responses serves them in order and repeats the last.
    Unknown paths answer 404.
    """

    def __init__(self) -> None:
        self.base_url = ""
        self.routes: Dict[str, List[ScriptedResponse]] = {}
        self.hits: Dict[str, int] = defaultdict(int)
        self.in_flight = 0
        self.peak = 0
        self.last_headers: Dict[str, str] = {}

    def url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def add(
        self,
        path: str,
        body: Union[bytes, str, Dict[str, Any]] = b"",
        status: int = 200,
        headers: Optional[Dict[str, str]] = None,
        delay: float = 0.0,
        truncate_at: Optional[int] = None,
    ) -> str:
        """Register a single response for path. Returns the full URL."""
        self.routes[path] = [
            ScriptedResponse(status, _to_bytes(body), headers or {}, delay, truncate_at)
        ]
        return self.url(path)

    def add_sequence(self, path: str, responses: List[Dict[str, Any]]) -> str:
        """Register responses served in order, each given as add() keyword args."""
        self.routes[path] = [
            ScriptedResponse(
                status=r.get("status", 200),
                body=_to_bytes(r.get("body", b"")),
                headers=r.get("headers", {}),
                delay=r.get("delay", 0.0),
                truncate_at=r.get("truncate_at"),
            )
            for r in responses
        ]
        return self.url(path)

    def add_json(self, path: str, payload: Dict[str, Any], **kwargs: Any) -> str:
        return self.add(path, json.dumps(payload).encode("utf-8"), **kwargs)

    async def handle(self, request: web.Request) -> web.StreamResponse:
        path = request.path
        hit = self.hits[path]
        self.hits[path] += 1
        self.last_headers = dict(request.headers)

        responses = self.routes.get(path)
        if not responses:
            return web.Response(status=404, body=b"not found")
        scripted = responses[min(hit, len(responses) - 1)]

        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            if scripted.delay:
                await asyncio.sleep(scripted.delay)

            if scripted.truncate_at is not None:
                response = web.StreamResponse(status=scripted.status)
                response.content_length = len(scripted.body)
                await response.prepare(request)
                await response.write(scripted.body[: scripted.truncate_at])
                request.transport.close()
                return response

            return web.Response(
                status=scripted.status, body=scripted.body, headers=scripted.headers
            )
        finally:
            self.in_flight -= 1


def _to_bytes(body: Union[bytes, str, Dict[str, Any]]) -> bytes:
    if isinstance(body, bytes):
        return body
    if isinstance(body, str):
        return body.encode("utf-8")
    return json.dumps(body).encode("utf-8")


def _index_payload(
    locations: List[str],
    allowed_amount: Optional[List[str]] = None,
    entity: str = "Test Health Plan",
) -> Dict[str, Any]:
    """Index file body with one reporting structure."""
    structure: Dict[str, Any] = {
        "reporting_plans": [{"plan_name": "Gold PPO", "plan_id": "12345"}],
        "in_network_files": [
            {"description": f"in-network file {i}", "location": loc}
            for i, loc in enumerate(locations)
        ],
    }
    if allowed_amount is not None:
        structure["allowed_amount_files"] = [
            {"location": loc} for loc in allowed_amount
        ]
    return {
        "reporting_entity_name": entity,
        "reporting_entity_type": "Health Insurance Issuer",
        "reporting_structure": [structure],
    }


@pytest_asyncio.fixture
async def publisher():
    """Running fake publisher; yields FakePublisher with base_url set."""
    fake = FakePublisher()
    app = web.Application()
    app.router.add_route("GET", "/{tail:.*}", fake.handle)

    server = TestServer(app)
    await server.start_server()
    fake.base_url = str(server.make_url("/")).rstrip("/")
    try:
        yield fake
    finally:
        await server.close()


@pytest_asyncio.fixture
async def client():
    """RequestClient with fast timeouts for tests."""
    request_client = RequestClient(user_agent="mrf-pipeline-tests", timeout_secs=10)
    async with request_client:
        yield request_client


@pytest.fixture
def no_backoff():
    """Make retry backoff instantaneous while recording attempts."""
    with patch(
        "mrf_pipeline.sources.http_client.backoff_seconds", return_value=0
    ) as mock_backoff:
        yield mock_backoff


@pytest.fixture
def index_payload():
    """Factory for index file bodies."""
    return _index_payload
