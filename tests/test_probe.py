"""Tests for endpoint probing."""

from unittest.mock import AsyncMock, patch

import pytest

from saccolink.client import ApiResponse
from saccolink.common.errors import NetworkError
from saccolink.probe import (
    DEFAULT_BASE_URLS,
    DEFAULT_ENDPOINTS,
    EndpointProber,
    ProbeResult,
    ProbeStatus,
    classify_status,
    summarize,
)


class FakeClient:
    """Stands in for BitnobClient; answers from a path -> status map."""

    def __init__(self, base_url: str, statuses: dict[str, int | Exception]):
        self.base_url = base_url
        self.calls: list[tuple[str, str]] = []
        self._statuses = statuses
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.closed = True

    async def request(self, method, path, json_body=None, query=None):
        self.calls.append((method, path))
        status = self._statuses.get(path, 404)
        if isinstance(status, Exception):
            raise status
        return ApiResponse(status=status, reason="")


class TestClassifyStatus:
    """Tests for status classification."""

    @pytest.mark.parametrize(
        "status_code,expected",
        [
            (200, ProbeStatus.WORKING),
            (201, ProbeStatus.WORKING),
            (400, ProbeStatus.BAD_REQUEST),
            (401, ProbeStatus.AUTH_REQUIRED),
            (403, ProbeStatus.AUTH_REQUIRED),
            (404, ProbeStatus.NOT_FOUND),
            (500, ProbeStatus.SERVER_ERROR),
            (503, ProbeStatus.SERVER_ERROR),
            (302, ProbeStatus.OTHER),
            (429, ProbeStatus.OTHER),
        ],
    )
    def test_classification(self, status_code, expected):
        assert classify_status(status_code) == expected

    def test_availability(self):
        """Anything that isn't a 404 or a transport failure counts as present."""
        assert ProbeResult("/a", "http://x", ProbeStatus.AUTH_REQUIRED, 401).available
        assert ProbeResult("/a", "http://x", ProbeStatus.SERVER_ERROR, 500).available
        assert not ProbeResult("/a", "http://x", ProbeStatus.NOT_FOUND, 404).available
        assert not ProbeResult("/a", "http://x", ProbeStatus.NETWORK_ERROR).available

    def test_note(self):
        result = ProbeResult("/a", "http://x", ProbeStatus.BAD_REQUEST, 400)
        assert result.note == "Bad Request (Available)"


class TestEndpointProber:
    """Tests for EndpointProber."""

    @pytest.mark.asyncio
    async def test_probe_endpoints_in_order(self):
        client = FakeClient(
            "http://sandbox/api/v1",
            {"/wallets": 200, "/transactions": 401, "/broken": 500},
        )
        prober = EndpointProber(lambda _base_url: client, delay_seconds=0)

        results = await prober.probe_endpoints(["/wallets", "/transactions", "/broken", "/missing"])

        assert [r.path for r in results] == ["/wallets", "/transactions", "/broken", "/missing"]
        assert [r.status for r in results] == [
            ProbeStatus.WORKING,
            ProbeStatus.AUTH_REQUIRED,
            ProbeStatus.SERVER_ERROR,
            ProbeStatus.NOT_FOUND,
        ]
        assert all(method == "GET" for method, _ in client.calls)
        assert client.closed is True

    @pytest.mark.asyncio
    async def test_network_error_recorded_not_raised(self):
        client = FakeClient(
            "http://sandbox/api/v1",
            {"/wallets": NetworkError("connection refused"), "/me": 200},
        )
        prober = EndpointProber(lambda _base_url: client, delay_seconds=0)

        results = await prober.probe_endpoints(["/wallets", "/me"])

        assert results[0].status == ProbeStatus.NETWORK_ERROR
        assert results[0].status_code is None
        assert "connection refused" in results[0].detail
        assert results[1].status == ProbeStatus.WORKING

    @pytest.mark.asyncio
    async def test_delay_between_probes(self):
        """Sleeps between consecutive probes, not before the first."""
        client = FakeClient("http://sandbox/api/v1", {})
        prober = EndpointProber(lambda _base_url: client, delay_seconds=0.05)

        with patch("saccolink.probe.asyncio.sleep", new_callable=AsyncMock) as sleep:
            await prober.probe_endpoints(["/a", "/b", "/c"])

        assert sleep.await_count == 2
        sleep.assert_awaited_with(0.05)

    @pytest.mark.asyncio
    async def test_probe_base_urls(self):
        clients: dict[str, FakeClient] = {}

        def factory(base_url):
            status = 200 if base_url.endswith("/api/v1") else 404
            clients[base_url] = FakeClient(base_url, {"/wallets": status})
            return clients[base_url]

        prober = EndpointProber(factory, delay_seconds=0)
        results = await prober.probe_base_urls(["http://h/api/v1", "http://h/v2"])

        assert [(r.base_url, r.status) for r in results] == [
            ("http://h/api/v1", ProbeStatus.WORKING),
            ("http://h/v2", ProbeStatus.NOT_FOUND),
        ]
        assert all(client.closed for client in clients.values())

    @pytest.mark.asyncio
    async def test_default_base_url_passed_as_none(self):
        seen = []

        def factory(base_url):
            seen.append(base_url)
            return FakeClient("http://configured", {})

        await EndpointProber(factory, delay_seconds=0).probe_endpoints(["/wallets"])
        assert seen == [None]


class TestDefaults:
    """Tests for default probe targets."""

    def test_endpoints_start_with_core_routes(self):
        assert DEFAULT_ENDPOINTS[:2] == ("/wallets", "/transactions")
        assert all(path.startswith("/") for path in DEFAULT_ENDPOINTS)

    def test_base_urls(self):
        assert "https://sandboxapi.bitnob.co/api/v1" in DEFAULT_BASE_URLS
        assert "https://api.bitnob.co/v2" in DEFAULT_BASE_URLS
        assert len(DEFAULT_BASE_URLS) == 8


def test_summarize():
    results = [
        ProbeResult("/a", "x", ProbeStatus.WORKING, 200),
        ProbeResult("/b", "x", ProbeStatus.WORKING, 200),
        ProbeResult("/c", "x", ProbeStatus.NOT_FOUND, 404),
    ]
    assert summarize(results) == {"working": 2, "not_found": 1}
