"""
Unit-tier fixtures: generated RSA keys, sample votes and relay configuration.
"""

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from votifier_relay.config.models import VotifierConfig
from votifier_relay.models.vote import VoteNotification, VotifierTarget

TEST_TOKEN = "test-votifier-token"


@pytest.fixture(scope="session")
def rsa_private_key() -> rsa.RSAPrivateKey:
    """Provide a 2048-bit RSA key pair shared by the whole session."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def public_key_pem(rsa_private_key: rsa.RSAPrivateKey) -> str:
    """Provide the public half of the session key as a PEM document."""
    return (
        rsa_private_key.public_key()
        .public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        .decode("ascii")
    )


@pytest.fixture(scope="session")
def public_key_body(public_key_pem: str) -> str:
    """Provide the bare base64 body of the public key, as Votifier servers ship it."""
    return "".join(line for line in public_key_pem.splitlines() if not line.startswith("-----"))


@pytest.fixture
def sample_vote() -> VoteNotification:
    """Provide a valid vote."""
    return VoteNotification(username="Steve", address="203.0.113.7", timestamp=1700000000)


@pytest.fixture
def relay_config() -> VotifierConfig:
    """Provide relay configuration with short timings for tests."""
    return VotifierConfig(timeout_ms=2000, close_grace_ms=50)


@pytest.fixture
def token_target() -> VotifierTarget:
    """Provide a target carrying a NuVotifier token (host/port replaced per test)."""
    return VotifierTarget(host="127.0.0.1", port=8192, token=TEST_TOKEN)
