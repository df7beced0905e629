"""Verification of x-auth signed requests."""

from __future__ import annotations

import hashlib
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum

from saccolink.common import hmac as hmac_utils
from saccolink.common.errors import ConfigurationError, NonceCacheFull
from saccolink.common.hmac import Framing
from saccolink.common.logging import get_logger
from saccolink.common.metrics import record_verification
from saccolink.common.nonce_cache import NonceCache, NonceStore
from saccolink.common.settings import Settings
from saccolink.signer import (
    HEADER_CLIENT,
    HEADER_NONCE,
    HEADER_SIGNATURE,
    HEADER_TIMESTAMP,
    SignedRequest,
    current_timestamp_ms,
)

logger = get_logger(__name__)


class RejectReason(str, Enum):
    """Reasons for rejecting a signed request."""

    MISSING_HEADERS = "missing_headers"
    INVALID_TIMESTAMP = "invalid_timestamp"
    TIMESTAMP_SKEW = "timestamp_skew"
    INVALID_SIGNATURE = "invalid_signature"
    REPLAY_DETECTED = "replay_detected"
    UNKNOWN_CLIENT = "unknown_client"
    REPLAY_CACHE_FULL = "replay_cache_full"


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of a verification check."""

    ok: bool
    reason: RejectReason | None = None
    detail: str | None = None

    def __bool__(self) -> bool:
        return self.ok


ACCEPTED = VerificationResult(ok=True)


def _reject(reason: RejectReason, detail: str) -> VerificationResult:
    return VerificationResult(ok=False, reason=reason, detail=detail)


class RequestVerifier:
    """
    Verifies signed requests against a shared secret.

    Checks, in order: timestamp inside the replay window, signature match in
    constant time, nonce not seen before within the window. The nonce is only
    recorded once the signature is valid, so unsigned traffic cannot fill the
    cache or burn legitimate nonces.
    """

    def __init__(
        self,
        secret_key: str | None,
        tolerance_ms: int = 300_000,
        nonce_cache: NonceStore | None = None,
        framing: Framing = "concat",
        expected_client_id: str | None = None,
    ):
        if not secret_key:
            raise ConfigurationError("Secret key is not configured; cannot verify")
        if tolerance_ms <= 0:
            raise ConfigurationError("Replay tolerance must be positive")

        self._secret_key = secret_key
        self._tolerance_ms = tolerance_ms
        self._nonce_cache = nonce_cache if nonce_cache is not None else NonceCache(
            ttl_seconds=2 * tolerance_ms / 1000.0
        )
        self._framing = framing
        self._expected_client_id = expected_client_id

    @classmethod
    def from_settings(cls, settings: Settings, nonce_cache: NonceStore | None = None) -> RequestVerifier:
        """Create a verifier from application settings."""
        return cls(
            secret_key=settings.secret_key,
            tolerance_ms=settings.replay_tolerance_ms,
            nonce_cache=nonce_cache,
            framing=settings.message_framing,
            expected_client_id=settings.expected_client_id,
        )

    @property
    def tolerance_ms(self) -> int:
        return self._tolerance_ms

    def verify(
        self,
        request: SignedRequest,
        provided_signature: str,
        now_ms: int | None = None,
    ) -> VerificationResult:
        """
        Verify a received request.

        Args:
            request: Method, path, timestamp, nonce and body as received
            provided_signature: Value of x-auth-signature
            now_ms: Verifier clock in epoch milliseconds (defaults to now)

        Returns:
            VerificationResult, truthy when accepted
        """
        now = current_timestamp_ms() if now_ms is None else now_ms

        skew = abs(now - request.timestamp)
        if skew > self._tolerance_ms:
            result = _reject(
                RejectReason.TIMESTAMP_SKEW,
                f"Timestamp is {skew} ms away from verifier clock",
            )
        elif not hmac_utils.verify(
            self._secret_key,
            request.message(self._framing),
            provided_signature,
        ):
            result = _reject(RejectReason.INVALID_SIGNATURE, "Signature does not match")
        else:
            result = self._check_nonce(request.nonce, now)

        self._record(request, result)
        return result

    def verify_headers(
        self,
        method: str,
        path: str,
        body: str | bytes | None,
        headers: Mapping[str, str],
        now_ms: int | None = None,
    ) -> VerificationResult:
        """Parse x-auth headers and verify the request they describe."""
        lowered = {key.lower(): value for key, value in headers.items()}
        timestamp = lowered.get(HEADER_TIMESTAMP)
        nonce = lowered.get(HEADER_NONCE)
        signature = lowered.get(HEADER_SIGNATURE)

        if not timestamp or not nonce or not signature:
            record_verification(RejectReason.MISSING_HEADERS.value)
            return _reject(RejectReason.MISSING_HEADERS, "Missing x-auth headers")

        if (
            self._expected_client_id is not None
            and lowered.get(HEADER_CLIENT) != self._expected_client_id
        ):
            record_verification(RejectReason.UNKNOWN_CLIENT.value)
            return _reject(RejectReason.UNKNOWN_CLIENT, "Client id not recognised")

        try:
            ts_value = int(timestamp)
        except ValueError:
            record_verification(RejectReason.INVALID_TIMESTAMP.value)
            return _reject(RejectReason.INVALID_TIMESTAMP, "Timestamp is not an integer")

        request = SignedRequest(
            method=method,
            path=path,
            timestamp=ts_value,
            nonce=nonce,
            body=body or "",
        )
        return self.verify(request, signature, now_ms=now_ms)

    def _check_nonce(self, nonce: str, now_ms: int) -> VerificationResult:
        try:
            fresh = self._nonce_cache.check_and_store(nonce, now=now_ms / 1000.0)
        except NonceCacheFull as e:
            return _reject(RejectReason.REPLAY_CACHE_FULL, str(e))
        if not fresh:
            return _reject(RejectReason.REPLAY_DETECTED, "Nonce was already used")
        return ACCEPTED

    def _record(self, request: SignedRequest, result: VerificationResult) -> None:
        if result.ok:
            record_verification("accepted")
            return
        assert result.reason is not None
        record_verification(result.reason.value)
        logger.warning(
            "Rejected signed request",
            method=request.method,
            path=request.path,
            nonce=request.nonce,
            reason=result.reason.value,
        )


_shared_caches: dict[tuple[str, int], NonceCache] = {}
_shared_caches_lock = threading.Lock()


def _shared_nonce_cache(secret_key: str, tolerance_ms: int) -> NonceCache:
    # Nonces are single-use per key, so one-shot calls share a cache per key and window
    key = (hashlib.sha256(secret_key.encode("utf-8")).hexdigest(), tolerance_ms)
    with _shared_caches_lock:
        cache = _shared_caches.get(key)
        if cache is None:
            cache = NonceCache(ttl_seconds=2 * tolerance_ms / 1000.0)
            _shared_caches[key] = cache
        return cache


def verify(
    request: SignedRequest,
    signature: str,
    secret_key: str | None,
    current_time: int,
    tolerance_ms: int,
    nonce_cache: NonceStore | None = None,
) -> bool:
    """
    Verify a request in one call.

    Replays are rejected across calls: without an explicit ``nonce_cache``
    the process-wide cache for this secret and window is used.
    """
    if nonce_cache is None and secret_key and tolerance_ms > 0:
        nonce_cache = _shared_nonce_cache(secret_key, tolerance_ms)
    verifier = RequestVerifier(
        secret_key,
        tolerance_ms=tolerance_ms,
        nonce_cache=nonce_cache,
    )
    return verifier.verify(request, signature, now_ms=current_time).ok
