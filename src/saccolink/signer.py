"""Request signer for the Bitnob x-auth HMAC scheme."""

from __future__ import annotations

import json
import secrets
import time
from dataclasses import dataclass
from typing import Any

from saccolink.common import hmac as hmac_utils
from saccolink.common.errors import ConfigurationError
from saccolink.common.hmac import Framing
from saccolink.common.logging import get_logger
from saccolink.common.metrics import record_signed_request
from saccolink.common.settings import Settings

logger = get_logger(__name__)

HEADER_TIMESTAMP = "x-auth-timestamp"
HEADER_NONCE = "x-auth-nonce"
HEADER_SIGNATURE = "x-auth-signature"
HEADER_CLIENT = "x-auth-client"

MIN_NONCE_BYTES = 8


@dataclass(frozen=True)
class SignedRequest:
    """The fields covered by a request signature."""

    method: str
    path: str
    timestamp: int
    nonce: str
    body: str | bytes = ""

    def message(self, framing: Framing = "concat") -> bytes:
        """Signing message for this request."""
        return hmac_utils.build_message(
            self.method,
            self.path,
            self.timestamp,
            self.nonce,
            self.body,
            framing=framing,
        )


def generate_nonce(num_bytes: int = 16) -> str:
    """Hex-encoded random nonce."""
    if num_bytes < MIN_NONCE_BYTES:
        raise ValueError(f"Nonce must carry at least {MIN_NONCE_BYTES} random bytes")
    return secrets.token_hex(num_bytes)


def current_timestamp_ms() -> int:
    """Milliseconds since the epoch."""
    return time.time_ns() // 1_000_000


def serialize_body(body: Any) -> str | bytes:
    """Serialize a request body exactly once.

    The returned value is both signed and sent, so the remote side hashes
    the same bytes we did. Raw bytes pass through untouched.
    """
    if body is None:
        return ""
    if isinstance(body, (bytes, str)):
        return body
    return json.dumps(body, separators=(",", ":"), ensure_ascii=False)


def sign(
    method: str,
    path: str,
    timestamp: int | str,
    nonce: str,
    body: str | bytes | None,
    secret_key: str | None,
    framing: Framing = "concat",
) -> str:
    """
    Sign a request.

    Args:
        method: HTTP verb exactly as sent on the wire
        path: Request path, no scheme, host or query string
        timestamp: Milliseconds since the epoch
        nonce: Hex-encoded random nonce
        body: Serialized payload exactly as transmitted ("" if none)
        secret_key: Shared secret

    Returns:
        Lowercase hex HMAC-SHA256 digest

    Raises:
        ConfigurationError: If the secret key is missing
    """
    message = hmac_utils.build_message(method, path, timestamp, nonce, body, framing=framing)
    return hmac_utils.sign(secret_key, message)


def build_auth_headers(
    signed_request: SignedRequest,
    secret_key: str | None,
    client_id: str | None = None,
    include_client_header: bool = False,
    framing: Framing = "concat",
) -> dict[str, str]:
    """Build the x-auth header set for a request."""
    if include_client_header and not client_id:
        raise ConfigurationError("Client id is required when the client header is enabled")

    signature = hmac_utils.sign(secret_key, signed_request.message(framing))
    headers = {
        HEADER_TIMESTAMP: str(signed_request.timestamp),
        HEADER_NONCE: signed_request.nonce,
        HEADER_SIGNATURE: signature,
    }
    if include_client_header:
        assert client_id is not None
        headers[HEADER_CLIENT] = client_id
    if signed_request.body:
        headers["Content-Type"] = "application/json"
    return headers


class RequestSigner:
    """
    Signs outbound requests with an injected secret.

    The signer holds no mutable state and can be shared between concurrent
    callers.
    """

    def __init__(
        self,
        secret_key: str | None,
        client_id: str | None = None,
        include_client_header: bool = False,
        framing: Framing = "concat",
        nonce_bytes: int = 16,
    ):
        """
        Initialize the signer.

        Args:
            secret_key: Shared HMAC secret
            client_id: Client identifier sent as x-auth-client
            include_client_header: Whether requests carry x-auth-client
            framing: Signing message framing
            nonce_bytes: Random bytes per generated nonce

        Raises:
            ConfigurationError: If the secret is empty, or the client header
                is enabled without a client id
        """
        if not secret_key:
            raise ConfigurationError("Secret key is not configured; refusing to sign")
        if include_client_header and not client_id:
            raise ConfigurationError("Client id is required when the client header is enabled")
        if nonce_bytes < MIN_NONCE_BYTES:
            raise ConfigurationError(f"nonce_bytes must be at least {MIN_NONCE_BYTES}")

        self._secret_key = secret_key
        self._client_id = client_id
        self._include_client_header = include_client_header
        self._framing = framing
        self._nonce_bytes = nonce_bytes

    @classmethod
    def from_settings(cls, settings: Settings) -> RequestSigner:
        """Create a signer from application settings."""
        return cls(
            secret_key=settings.secret_key,
            client_id=settings.client_id,
            include_client_header=settings.include_client_header,
            framing=settings.message_framing,
            nonce_bytes=settings.nonce_bytes,
        )

    @property
    def client_id(self) -> str | None:
        return self._client_id

    @property
    def framing(self) -> Framing:
        return self._framing

    def new_request(self, method: str, path: str, body: Any = None) -> SignedRequest:
        """Stamp a request with a fresh timestamp and nonce."""
        return SignedRequest(
            method=method.upper(),
            path=path,
            timestamp=current_timestamp_ms(),
            nonce=generate_nonce(self._nonce_bytes),
            body=serialize_body(body),
        )

    def sign(self, request: SignedRequest) -> str:
        """Sign a request and return the hex digest."""
        return hmac_utils.sign(self._secret_key, request.message(self._framing))

    def build_auth_headers(self, request: SignedRequest) -> dict[str, str]:
        """Build the x-auth headers for a request."""
        headers = build_auth_headers(
            request,
            self._secret_key,
            client_id=self._client_id,
            include_client_header=self._include_client_header,
            framing=self._framing,
        )
        record_signed_request(request.method)
        logger.debug(
            "Signed request",
            method=request.method,
            path=request.path,
            nonce=request.nonce,
            signature=headers[HEADER_SIGNATURE][:16],
        )
        return headers
