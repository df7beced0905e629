"""HMAC authentication middleware for signed inbound requests."""

from __future__ import annotations

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from saccolink.common.errors import ErrorCode, error_response
from saccolink.common.logging import get_logger
from saccolink.common.nonce_cache import NonceStore, create_nonce_cache
from saccolink.common.settings import Settings
from saccolink.verifier import RequestVerifier

logger = get_logger(__name__)


class HmacAuthMiddleware(BaseHTTPMiddleware):
    """Rejects requests whose x-auth signature does not verify."""

    def __init__(
        self,
        app: ASGIApp,
        settings: Settings,
        nonce_cache: NonceStore | None = None,
    ) -> None:
        super().__init__(app)
        self._settings = settings
        self._exempt_paths = set(settings.auth_exempt_paths)
        self._verifier: RequestVerifier | None = None
        if settings.secret_key:
            self._verifier = RequestVerifier.from_settings(
                settings,
                nonce_cache=nonce_cache if nonce_cache is not None else create_nonce_cache(settings),
            )

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path in self._exempt_paths:
            return await call_next(request)

        if self._verifier is None:
            logger.error("HMAC secret not configured; rejecting request", path=request.url.path)
            return error_response(
                ErrorCode.MISCONFIGURED,
                "HMAC secret not configured",
                status_code=500,
            )

        # The signature covers the path only; the query string is not signed
        body = await request.body()
        result = self._verifier.verify_headers(
            request.method,
            request.url.path,
            body,
            request.headers,
        )
        if not result:
            assert result.reason is not None
            return error_response(
                ErrorCode.UNAUTHORIZED,
                result.detail or "Invalid signature",
                status_code=401,
                details={"reason": result.reason.value},
            )

        request.state.auth_nonce = request.headers.get("x-auth-nonce")
        return await call_next(request)
