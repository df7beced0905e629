"""Pytest configuration and fixtures."""

import pytest

from saccolink.common.settings import Settings
from saccolink.signer import RequestSigner

TEST_SECRET = "testsecret"
TEST_CLIENT_ID = "client-test-001"


@pytest.fixture
def settings() -> Settings:
    """Create test settings."""
    return Settings(
        _env_file=None,
        base_url="http://localhost:8089",
        client_id=TEST_CLIENT_ID,
        secret_key=TEST_SECRET,
        replay_tolerance_ms=60_000,
        http_timeout=2.0,
        probe_delay_seconds=0.0,
    )


@pytest.fixture
def signer() -> RequestSigner:
    """Signer with the test secret and no client header."""
    return RequestSigner(TEST_SECRET)


@pytest.fixture
def client_signer() -> RequestSigner:
    """Signer that sends the x-auth-client header."""
    return RequestSigner(TEST_SECRET, client_id=TEST_CLIENT_ID, include_client_header=True)
