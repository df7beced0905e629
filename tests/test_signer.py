"""Tests for the request signer."""

import random
import string
import time

import pytest

from saccolink.common.errors import ConfigurationError
from saccolink.common.settings import Settings
from saccolink.signer import (
    HEADER_CLIENT,
    HEADER_NONCE,
    HEADER_SIGNATURE,
    HEADER_TIMESTAMP,
    RequestSigner,
    SignedRequest,
    build_auth_headers,
    current_timestamp_ms,
    generate_nonce,
    serialize_body,
    sign,
)

GOLDEN_SIGNATURE = "3ec34a457ce2064b6e19fbfe3a8fe1285234826d25e1d0837f9f099d18bd2b99"


def _bit_distance(a: str, b: str) -> int:
    return bin(int(a, 16) ^ int(b, 16)).count("1")


def _mutate(value: str, rng: random.Random) -> str:
    index = rng.randrange(len(value))
    alphabet = string.ascii_letters + string.digits
    replacement = rng.choice([c for c in alphabet if c != value[index]])
    return value[:index] + replacement + value[index + 1 :]


class TestSignFunction:
    """Tests for the module-level sign operation."""

    def test_golden_vector(self):
        signature = sign("GET", "/wallets", 1700000000000, "deadbeefdeadbeef", "", "testsecret")
        assert signature == GOLDEN_SIGNATURE

    def test_deterministic(self):
        args = ("POST", "/transfers", 1700000000123, "00ff" * 8, '{"amount":1000}', "k")
        assert len({sign(*args) for _ in range(20)}) == 1

    def test_body_changes_digest(self):
        empty = sign("GET", "/wallets", 1700000000000, "deadbeefdeadbeef", "", "testsecret")
        with_body = sign(
            "GET", "/wallets", 1700000000000, "deadbeefdeadbeef", '{"amount":1000}', "testsecret"
        )
        assert empty != with_body

    def test_method_is_case_sensitive(self):
        upper = sign("GET", "/wallets", 1, "deadbeefdeadbeef", "", "k")
        lower = sign("get", "/wallets", 1, "deadbeefdeadbeef", "", "k")
        assert upper != lower

    @pytest.mark.parametrize("secret", ["", None])
    def test_missing_secret(self, secret):
        with pytest.raises(ConfigurationError):
            sign("GET", "/wallets", 1, "deadbeefdeadbeef", "", secret)

    @pytest.mark.parametrize("field", ["path", "nonce", "body"])
    def test_avalanche(self, field):
        """Single-character changes flip about half the output bits."""
        rng = random.Random(1234)
        distances = []
        for _ in range(200):
            fields = {
                "path": "/" + "".join(rng.choices(string.ascii_lowercase, k=12)),
                "nonce": generate_nonce(),
                "body": '{"amount":%d}' % rng.randrange(1, 10**6),
            }
            original = sign("POST", fields["path"], 1700000000000, fields["nonce"], fields["body"], "k")
            fields[field] = _mutate(fields[field], rng)
            changed = sign("POST", fields["path"], 1700000000000, fields["nonce"], fields["body"], "k")

            assert changed != original
            distances.append(_bit_distance(original, changed))

        mean = sum(distances) / len(distances)
        assert 118 < mean < 138

    def test_key_sensitivity(self):
        rng = random.Random(99)
        for _ in range(100):
            key_a = generate_nonce()
            key_b = generate_nonce()
            nonce = generate_nonce()
            path = "/" + "".join(rng.choices(string.ascii_lowercase, k=8))
            assert sign("GET", path, 1, nonce, "", key_a) != sign("GET", path, 1, nonce, "", key_b)


class TestNonceAndTimestamp:
    """Tests for nonce and timestamp generation."""

    def test_default_nonce_is_32_hex_chars(self):
        nonce = generate_nonce()
        assert len(nonce) == 32
        int(nonce, 16)

    def test_nonces_are_unique(self):
        assert len({generate_nonce() for _ in range(1000)}) == 1000

    def test_short_nonce_rejected(self):
        with pytest.raises(ValueError):
            generate_nonce(4)

    def test_minimum_nonce_allowed(self):
        assert len(generate_nonce(8)) == 16

    def test_timestamp_is_milliseconds(self):
        before = int(time.time() * 1000)
        ts = current_timestamp_ms()
        after = int(time.time() * 1000)
        assert before - 1 <= ts <= after + 1


class TestSerializeBody:
    """Tests for body serialization."""

    def test_none(self):
        assert serialize_body(None) == ""

    def test_dict_compact_json(self):
        assert serialize_body({"amount": 1000, "currency": "USD"}) == '{"amount":1000,"currency":"USD"}'

    def test_string_passthrough(self):
        assert serialize_body('{"a": 1}') == '{"a": 1}'

    def test_bytes_kept_verbatim(self):
        assert serialize_body(b'{"a":1}') == b'{"a":1}'
        assert serialize_body(b"\xff\x00\xfe") == b"\xff\x00\xfe"


class TestBuildAuthHeaders:
    """Tests for header construction."""

    def test_golden_headers(self):
        request = SignedRequest("GET", "/wallets", 1700000000000, "deadbeefdeadbeef")
        headers = build_auth_headers(request, "testsecret")

        assert headers == {
            HEADER_TIMESTAMP: "1700000000000",
            HEADER_NONCE: "deadbeefdeadbeef",
            HEADER_SIGNATURE: GOLDEN_SIGNATURE,
        }

    def test_client_header_included_when_enabled(self):
        request = SignedRequest("GET", "/wallets", 1700000000000, "deadbeefdeadbeef")
        headers = build_auth_headers(
            request, "testsecret", client_id="client-1", include_client_header=True
        )
        assert headers[HEADER_CLIENT] == "client-1"
        # Client id is not part of the signature
        assert headers[HEADER_SIGNATURE] == GOLDEN_SIGNATURE

    def test_client_header_omitted_by_default(self):
        request = SignedRequest("GET", "/wallets", 1700000000000, "deadbeefdeadbeef")
        headers = build_auth_headers(request, "testsecret", client_id="client-1")
        assert HEADER_CLIENT not in headers

    def test_client_header_requires_client_id(self):
        request = SignedRequest("GET", "/wallets", 1700000000000, "deadbeefdeadbeef")
        with pytest.raises(ConfigurationError):
            build_auth_headers(request, "testsecret", include_client_header=True)

    def test_content_type_only_with_body(self):
        bare = SignedRequest("GET", "/wallets", 1, "deadbeefdeadbeef")
        with_body = SignedRequest("POST", "/transfers", 1, "deadbeefdeadbeef", '{"a":1}')

        assert "Content-Type" not in build_auth_headers(bare, "k")
        assert build_auth_headers(with_body, "k")["Content-Type"] == "application/json"

    def test_missing_secret(self):
        request = SignedRequest("GET", "/wallets", 1, "deadbeefdeadbeef")
        with pytest.raises(ConfigurationError):
            build_auth_headers(request, "")


class TestRequestSigner:
    """Tests for the RequestSigner class."""

    def test_requires_secret(self):
        with pytest.raises(ConfigurationError):
            RequestSigner("")
        with pytest.raises(ConfigurationError):
            RequestSigner(None)

    def test_client_header_requires_client_id(self):
        with pytest.raises(ConfigurationError):
            RequestSigner("k", include_client_header=True)

    def test_rejects_short_nonces(self):
        with pytest.raises(ConfigurationError):
            RequestSigner("k", nonce_bytes=4)

    def test_sign_matches_module_function(self, signer):
        request = SignedRequest("GET", "/wallets", 1700000000000, "deadbeefdeadbeef")
        assert signer.sign(request) == GOLDEN_SIGNATURE

    def test_new_request_is_fresh(self, signer):
        first = signer.new_request("get", "/wallets")
        second = signer.new_request("get", "/wallets")

        assert first.method == "GET"
        assert first.body == ""
        assert first.nonce != second.nonce
        assert second.timestamp >= first.timestamp

    def test_new_request_serializes_body_once(self, signer):
        request = signer.new_request("POST", "/transfers", {"amount": 1000})
        assert request.body == '{"amount":1000}'

    def test_new_request_signs_binary_body(self, signer):
        """Non-UTF-8 payloads are signed byte for byte."""
        payload = b"\x89PNG\xff\x00"
        request = signer.new_request("POST", "/uploads", payload)

        assert request.body == payload
        expected = sign("POST", "/uploads", request.timestamp, request.nonce, payload, "testsecret")
        assert signer.sign(request) == expected

    def test_headers_sign_transmitted_body(self, signer):
        request = signer.new_request("POST", "/transfers", {"amount": 1000})
        headers = signer.build_auth_headers(request)

        expected = sign(
            request.method, request.path, request.timestamp, request.nonce, request.body, "testsecret"
        )
        assert headers[HEADER_SIGNATURE] == expected
        assert headers[HEADER_TIMESTAMP] == str(request.timestamp)
        assert headers[HEADER_NONCE] == request.nonce

    def test_client_signer_headers(self, client_signer):
        headers = client_signer.build_auth_headers(client_signer.new_request("GET", "/wallets"))
        assert headers[HEADER_CLIENT] == "client-test-001"

    def test_length_prefixed_signer_differs(self):
        request = SignedRequest("GET", "/wallets", 1700000000000, "deadbeefdeadbeef")
        framed = RequestSigner("testsecret", framing="length_prefixed")
        assert framed.sign(request) != GOLDEN_SIGNATURE

    def test_from_settings(self):
        settings = Settings(
            _env_file=None,
            secret_key="testsecret",
            client_id="abc",
            include_client_header=True,
            nonce_bytes=8,
        )
        signer = RequestSigner.from_settings(settings)
        request = signer.new_request("GET", "/wallets")

        assert signer.client_id == "abc"
        assert len(request.nonce) == 16
        assert signer.build_auth_headers(request)[HEADER_CLIENT] == "abc"

    def test_from_settings_without_secret(self):
        with pytest.raises(ConfigurationError):
            RequestSigner.from_settings(Settings(_env_file=None))
