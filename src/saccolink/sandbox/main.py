"""Sandbox server that verifies x-auth signed requests.

Stands in for the remote API during local development: every non-exempt
route sits behind HmacAuthMiddleware and returns canned wallet and
transaction data.
"""

import time
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from saccolink.common.auth import HmacAuthMiddleware
from saccolink.common.errors import ErrorCode, error_response
from saccolink.common.http import RequestIdMiddleware, get_request_id
from saccolink.common.logging import get_logger, setup_logging
from saccolink.common.metrics import MetricsMiddleware, metrics_endpoint
from saccolink.common.nonce_cache import NonceStore
from saccolink.common.settings import Settings, get_settings

logger = get_logger(__name__)


def _sample_wallets() -> list[dict[str, Any]]:
    now = time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())
    return [
        {
            "id": "wal_sandbox_savings",
            "currency": "USD",
            "balance": 1250.0,
            "status": "active",
            "type": "savings",
            "createdAt": now,
        },
        {
            "id": "wal_sandbox_btc",
            "currency": "BTC",
            "balance": 0.0042,
            "status": "active",
            "type": "general",
            "createdAt": now,
        },
    ]


class SandboxServer:
    """Request handlers for the sandbox API."""

    def __init__(self, settings: Settings):
        self._settings = settings
        self._wallets = _sample_wallets()
        self._transactions: list[dict[str, Any]] = []

    async def handle_get_wallets(self, _request: Request) -> JSONResponse:
        return JSONResponse({"status": True, "data": self._wallets})

    async def handle_get_transactions(self, request: Request) -> JSONResponse:
        try:
            limit = int(request.query_params.get("limit", "50"))
            offset = int(request.query_params.get("offset", "0"))
        except ValueError:
            return error_response(ErrorCode.BAD_REQUEST, "limit and offset must be integers", 400)
        page = self._transactions[offset : offset + limit]
        return JSONResponse({"status": True, "data": page, "total": len(self._transactions)})

    async def handle_echo(self, request: Request) -> JSONResponse:
        """Record a transaction from the verified body and echo it back."""
        try:
            body = await request.json()
        except ValueError:
            # JSONDecodeError and UnicodeDecodeError
            return error_response(ErrorCode.INVALID_JSON, "Invalid JSON", 400)

        transaction = {
            "id": f"txn_{uuid.uuid4().hex[:12]}",
            "payload": body,
            "requestId": get_request_id(),
            "nonce": getattr(request.state, "auth_nonce", None),
        }
        self._transactions.append(transaction)
        logger.info("Accepted signed payload", transaction_id=transaction["id"])
        return JSONResponse({"status": True, "data": transaction}, status_code=201)

    async def handle_health(self, _request: Request) -> JSONResponse:
        return JSONResponse(
            {
                "status": "healthy",
                "auth": "configured" if self._settings.secret_key else "missing_secret",
            }
        )


def create_app(
    settings: Settings | None = None,
    nonce_cache: NonceStore | None = None,
) -> Starlette:
    """Create the sandbox Starlette application."""
    settings = settings or get_settings()
    server = SandboxServer(settings)

    @asynccontextmanager
    async def lifespan(_app: Starlette) -> AsyncIterator[None]:
        if not settings.secret_key:
            logger.warning("Sandbox started without BITNOB_SECRET_KEY; signed routes will fail")
        logger.info("Sandbox verifier ready", tolerance_ms=settings.replay_tolerance_ms)
        yield

    routes = [
        Route("/wallets", server.handle_get_wallets, methods=["GET"]),
        Route("/transactions", server.handle_get_transactions, methods=["GET"]),
        Route("/echo", server.handle_echo, methods=["POST"]),
        Route("/health", server.handle_health, methods=["GET"]),
        Route("/metrics", metrics_endpoint, methods=["GET"]),
    ]

    app = Starlette(routes=routes, lifespan=lifespan)

    app.add_middleware(HmacAuthMiddleware, settings=settings, nonce_cache=nonce_cache)
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        MetricsMiddleware,
        exclude_paths=["/health", "/metrics"],
    )

    return app


def main() -> None:
    """Entry point for the sandbox verifier."""
    settings = get_settings()
    setup_logging(settings.log_level, json_format=settings.log_json)
    app = create_app(settings)

    uvicorn.run(
        app,
        host=settings.sandbox_host,
        port=settings.sandbox_port,
        log_level="info",
    )


if __name__ == "__main__":
    main()
