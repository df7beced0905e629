"""HMAC signing primitives for the x-auth request scheme."""

from __future__ import annotations

import hashlib
import hmac
from typing import Literal

from saccolink.common.errors import ConfigurationError

Framing = Literal["concat", "length_prefixed"]


def _to_bytes(value: str | bytes | int | None) -> bytes:
    if value is None:
        return b""
    if isinstance(value, bytes):
        return value
    return str(value).encode("utf-8")


def build_message(
    method: str,
    path: str,
    timestamp: str | int,
    nonce: str,
    body: str | bytes | None = None,
    framing: Framing = "concat",
) -> bytes:
    """
    Build the signing message for a request.

    ``concat`` joins method, path, timestamp, nonce and body with no
    separators, which is what the Bitnob API verifies. ``length_prefixed``
    writes each field as ``<len>:<bytes>`` and is only usable when both
    sides are ours.
    """
    fields = [
        _to_bytes(method),
        _to_bytes(path),
        _to_bytes(timestamp),
        _to_bytes(nonce),
        _to_bytes(body),
    ]
    if framing == "concat":
        return b"".join(fields)
    if framing == "length_prefixed":
        return b"".join(str(len(field)).encode("ascii") + b":" + field for field in fields)
    raise ValueError(f"Unknown message framing: {framing}")


def sign(secret: str | None, message: bytes) -> str:
    """Create a lowercase hex HMAC-SHA256 signature."""
    if not secret:
        raise ConfigurationError("Secret key is not configured; refusing to sign")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify(secret: str | None, message: bytes, signature: str) -> bool:
    """Verify HMAC signature in constant time."""
    expected = sign(secret, message)
    # compare_digest rejects non-ASCII str input with TypeError
    return hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8"))


def verify_webhook_signature(secret: str | None, payload: str | bytes, signature: str) -> bool:
    """Verify a webhook payload signed with HMAC-SHA256 hex."""
    return verify(secret, _to_bytes(payload), signature.strip().lower())
