"""Signed HTTP client for the Bitnob API."""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass, field
from typing import Any

import aiohttp

from saccolink.common.errors import (
    ApiError,
    AuthenticationRejected,
    ConfigurationError,
    NetworkError,
    UnknownEndpoint,
)
from saccolink.common.logging import get_logger
from saccolink.common.metrics import record_api_call
from saccolink.common.settings import Settings
from saccolink.signer import RequestSigner

logger = get_logger(__name__)


@dataclass
class ApiResponse:
    """Status and body of an API call, as returned by the remote side."""

    status: int
    reason: str
    data: Any = None
    error: Any = None
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def raise_for_status(self) -> ApiResponse:
        """Raise the matching ApiError for a non-2xx response."""
        if self.ok:
            return self
        message = _error_message(self.error) or self.reason or f"HTTP {self.status}"
        if self.status in (401, 403):
            raise AuthenticationRejected(message, self.status, self.error)
        if self.status == 404:
            raise UnknownEndpoint(message, self.status, self.error)
        raise ApiError(message, self.status, self.error)


def _error_message(error: Any) -> str | None:
    if isinstance(error, dict):
        message = error.get("message") or error.get("error")
        return str(message) if message else None
    if isinstance(error, str) and error:
        return error
    return None


async def _read_body(response: aiohttp.ClientResponse) -> Any:
    text = await response.text()
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


class BitnobClient:
    """
    Async client that signs every request with the x-auth scheme.

    No retries are attempted. A timeout leaves the outcome of the call unknown,
    so the resulting NetworkError carries ``outcome_unknown=True`` and callers
    must check remote state before sending a non-idempotent request again.
    """

    def __init__(
        self,
        settings: Settings,
        signer: RequestSigner | None = None,
        session: aiohttp.ClientSession | None = None,
        base_url: str | None = None,
    ):
        """
        Initialize the client.

        Args:
            settings: Application settings
            signer: Optional pre-built signer (defaults to one from settings)
            session: Optional aiohttp session owned by the caller
            base_url: Override for settings.base_url

        Raises:
            ConfigurationError: If base URL, client id or secret is missing
        """
        if base_url is None:
            settings.require_credentials()
            assert settings.base_url is not None
            base_url = settings.base_url
        elif not settings.client_id or not settings.secret_key:
            raise ConfigurationError("Missing configuration: BITNOB_CLIENT_ID or BITNOB_SECRET_KEY")

        self._base_url = base_url.rstrip("/")
        self._signer = signer or RequestSigner.from_settings(settings)
        self._timeout = aiohttp.ClientTimeout(total=settings.http_timeout)
        self._session = session
        self._owns_session = session is None

    @property
    def base_url(self) -> str:
        return self._base_url

    async def __aenter__(self) -> BitnobClient:
        """Enter async context."""
        self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit async context."""
        await self.close()

    async def close(self) -> None:
        if self._session and self._owns_session:
            await self._session.close()
        self._session = None

    def _ensure_session(self) -> aiohttp.ClientSession:
        if not self._session:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def request(
        self,
        method: str,
        path: str,
        json_body: Any = None,
        query: dict[str, Any] | None = None,
    ) -> ApiResponse:
        """
        Send a signed request.

        Args:
            method: HTTP method
            path: Path relative to the base URL, without query string
            json_body: Optional JSON-serializable payload
            query: Optional query parameters (not covered by the signature)

        Returns:
            ApiResponse with the status and decoded body, whatever the status

        Raises:
            NetworkError: On transport failure or timeout
        """
        signed = self._signer.new_request(method, path, json_body)
        headers = {"Accept": "application/json"}
        headers.update(self._signer.build_auth_headers(signed))
        url = f"{self._base_url}{path}"
        data = signed.body if signed.body else None

        session = self._ensure_session()
        start = time.perf_counter()
        try:
            async with session.request(
                signed.method,
                url,
                params=query,
                data=data,
                headers=headers,
            ) as response:
                body = await _read_body(response)
                result = ApiResponse(
                    status=response.status,
                    reason=response.reason or "",
                    headers=dict(response.headers),
                )
                if result.ok:
                    result.data = body
                else:
                    result.error = body
        except asyncio.TimeoutError as e:
            record_api_call(signed.method, "timeout", time.perf_counter() - start)
            logger.warning("Bitnob request timed out", method=signed.method, path=path)
            raise NetworkError(
                f"Request timed out: {signed.method} {path}",
                outcome_unknown=True,
            ) from e
        except aiohttp.ClientError as e:
            record_api_call(signed.method, "network_error", time.perf_counter() - start)
            logger.warning(
                "Bitnob request failed",
                method=signed.method,
                path=path,
                error=str(e),
            )
            raise NetworkError(f"Request failed: {e}") from e

        record_api_call(signed.method, str(result.status), time.perf_counter() - start)
        logger.debug("Bitnob response", method=signed.method, path=path, status=result.status)
        return result

    async def get_wallets(self) -> Any:
        """List wallets."""
        response = await self.request("GET", "/wallets")
        return response.raise_for_status().data

    async def get_transactions(self, limit: int | None = None, offset: int | None = None) -> Any:
        """List transactions."""
        query: dict[str, Any] = {}
        if limit is not None:
            query["limit"] = limit
        if offset is not None:
            query["offset"] = offset
        response = await self.request("GET", "/transactions", query=query or None)
        return response.raise_for_status().data

    async def is_service_available(self) -> bool:
        """Check that an authenticated GET /wallets succeeds."""
        try:
            response = await self.request("GET", "/wallets")
        except NetworkError as e:
            logger.warning("Bitnob service availability check failed", error=str(e))
            return False
        return response.status == 200
