"""Pytest configuration and shared fixtures for the relay tests."""

from typing import Any, Callable, Dict

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from src.relay.config import RelaySettings
from tests.relay.factories import AUTOMATION_ACTOR_ID, WEBHOOK_SECRET, FakeGitHub


@pytest.fixture(scope="session")
def private_key_pem() -> str:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


@pytest.fixture
def make_settings(private_key_pem) -> Callable[..., RelaySettings]:
    """Build RelaySettings without touching the environment."""

    def _make(**overrides: Any) -> RelaySettings:
        values: Dict[str, Any] = {
            "webhook_secret": WEBHOOK_SECRET,
            "app_private_key": private_key_pem,
            "webhook_slug": "hooks-abc123",
            "automation_actor_id": AUTOMATION_ACTOR_ID,
            "worker_count": 2,
            "queue_size": 16,
        }
        values.update(overrides)
        return RelaySettings(**values)

    return _make


@pytest.fixture
def fake_github() -> FakeGitHub:
    return FakeGitHub()
