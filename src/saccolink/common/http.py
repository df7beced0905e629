"""Request context for the sandbox server."""

from __future__ import annotations

import contextvars
import uuid

import structlog
from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

REQUEST_ID_HEADER = "X-Request-ID"

_request_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "saccolink_request_id",
    default=None,
)


def get_request_id() -> str | None:
    """Request id of the request being handled, if any."""
    return _request_id_var.get()


def bind_request_context(request_id: str, method: str, path: str) -> contextvars.Token:
    """Bind the request id into the contextvar and structlog context."""
    structlog.contextvars.bind_contextvars(request_id=request_id, method=method, path=path)
    return _request_id_var.set(request_id)


def clear_request_context(token: contextvars.Token) -> None:
    _request_id_var.reset(token)
    structlog.contextvars.clear_contextvars()


class RequestIdMiddleware:
    """
    Reuse the caller's request id or mint one, and echo it on the response.

    Written as plain ASGI so the id is set before any inner middleware copies
    the context into its own task.
    """

    def __init__(self, app: ASGIApp, header_name: str = REQUEST_ID_HEADER) -> None:
        self.app = app
        self._header_name = header_name

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_id = Headers(scope=scope).get(self._header_name) or uuid.uuid4().hex
        token = bind_request_context(request_id, scope["method"], scope["path"])

        async def send_with_request_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                MutableHeaders(scope=message).setdefault(self._header_name, request_id)
            await send(message)

        try:
            await self.app(scope, receive, send_with_request_id)
        finally:
            clear_request_context(token)
