"""Endpoint discovery against the Bitnob API."""

from __future__ import annotations

import asyncio
from collections import Counter
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum

from saccolink.client import BitnobClient
from saccolink.common.errors import NetworkError
from saccolink.common.logging import get_logger
from saccolink.common.settings import PRODUCTION_BASE_URL, SANDBOX_BASE_URL

logger = get_logger(__name__)

DEFAULT_ENDPOINTS: tuple[str, ...] = (
    "/wallets",
    "/transactions",
    "/auth/user",
    "/me",
    "/balance",
    "/customers",
    "/virtualcards",
    "/checkout",
    # Lightning
    "/lightning",
    "/invoices",
    # Payments
    "/payments",
    "/transfers",
    # Cross-border
    "/remittance",
    "/exchange",
    "/rates",
    # Cards
    "/cards",
    # Stablecoins
    "/usdt",
    "/stablecoin",
    # Account
    "/user",
    "/profile",
    "/kyc",
)

DEFAULT_BASE_URLS: tuple[str, ...] = tuple(
    f"{host}{version}"
    for host in (
        SANDBOX_BASE_URL.removesuffix("/api/v1"),
        PRODUCTION_BASE_URL.removesuffix("/api/v1"),
    )
    for version in ("/api/v1", "/api/v2", "/v1", "/v2")
)


class ProbeStatus(str, Enum):
    """Classification of a probe response."""

    WORKING = "working"
    BAD_REQUEST = "bad_request"
    AUTH_REQUIRED = "auth_required"
    NOT_FOUND = "not_found"
    SERVER_ERROR = "server_error"
    OTHER = "other"
    NETWORK_ERROR = "network_error"


_NOTES = {
    ProbeStatus.WORKING: "Working",
    ProbeStatus.BAD_REQUEST: "Bad Request (Available)",
    ProbeStatus.AUTH_REQUIRED: "Auth Required (Available)",
    ProbeStatus.NOT_FOUND: "Not Found",
    ProbeStatus.SERVER_ERROR: "Server Error (Available)",
    ProbeStatus.OTHER: "Unexpected status",
    ProbeStatus.NETWORK_ERROR: "Network error",
}

_AVAILABLE = {
    ProbeStatus.WORKING,
    ProbeStatus.BAD_REQUEST,
    ProbeStatus.AUTH_REQUIRED,
    ProbeStatus.SERVER_ERROR,
}


def classify_status(status_code: int) -> ProbeStatus:
    """Map an HTTP status to a probe classification."""
    if status_code in (200, 201):
        return ProbeStatus.WORKING
    if status_code == 400:
        return ProbeStatus.BAD_REQUEST
    if status_code in (401, 403):
        return ProbeStatus.AUTH_REQUIRED
    if status_code == 404:
        return ProbeStatus.NOT_FOUND
    if status_code >= 500:
        return ProbeStatus.SERVER_ERROR
    return ProbeStatus.OTHER


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of probing a single endpoint."""

    path: str
    base_url: str
    status: ProbeStatus
    status_code: int | None = None
    detail: str | None = None

    @property
    def note(self) -> str:
        return _NOTES[self.status]

    @property
    def available(self) -> bool:
        return self.status in _AVAILABLE


class EndpointProber:
    """
    Probes endpoints one at a time with signed GET requests.

    Each probe gets its own timestamp and nonce. A fixed pause separates
    consecutive calls; failures are recorded, never retried.
    """

    def __init__(
        self,
        client_factory: Callable[[str | None], BitnobClient],
        delay_seconds: float = 0.05,
    ):
        """
        Initialize the prober.

        Args:
            client_factory: Builds a client for a base URL (None = configured default)
            delay_seconds: Pause between consecutive probes
        """
        self._client_factory = client_factory
        self._delay_seconds = delay_seconds

    async def _probe(self, client: BitnobClient, path: str) -> ProbeResult:
        try:
            response = await client.request("GET", path)
        except NetworkError as e:
            return ProbeResult(
                path=path,
                base_url=client.base_url,
                status=ProbeStatus.NETWORK_ERROR,
                detail=str(e),
            )
        status = classify_status(response.status)
        logger.info(
            "Probed endpoint",
            base_url=client.base_url,
            path=path,
            status_code=response.status,
            status=status.value,
        )
        return ProbeResult(
            path=path,
            base_url=client.base_url,
            status=status,
            status_code=response.status,
        )

    async def probe_endpoints(
        self,
        paths: Iterable[str] = DEFAULT_ENDPOINTS,
        base_url: str | None = None,
    ) -> list[ProbeResult]:
        """Probe each path against one base URL."""
        results: list[ProbeResult] = []
        async with self._client_factory(base_url) as client:
            for index, path in enumerate(paths):
                if index and self._delay_seconds > 0:
                    await asyncio.sleep(self._delay_seconds)
                results.append(await self._probe(client, path))
        return results

    async def probe_base_urls(
        self,
        base_urls: Iterable[str] = DEFAULT_BASE_URLS,
        path: str = "/wallets",
    ) -> list[ProbeResult]:
        """Probe one path across candidate base URLs."""
        results: list[ProbeResult] = []
        for index, base_url in enumerate(base_urls):
            if index and self._delay_seconds > 0:
                await asyncio.sleep(self._delay_seconds)
            async with self._client_factory(base_url) as client:
                results.append(await self._probe(client, path))
        return results


def summarize(results: Iterable[ProbeResult]) -> dict[str, int]:
    """Count probe results per status."""
    counts = Counter(result.status.value for result in results)
    return dict(counts)
