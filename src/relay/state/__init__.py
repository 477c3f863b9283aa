"""Persisted relay state.

This module stores the application identity and the workflow run to check
run correlation records in Redis (or in memory for local development).
"""

from src.relay.state.backend import (
    InMemoryBackend,
    KeyValueBackend,
    RedisBackend,
    create_backend,
)
from src.relay.state.identity import IdentityState
from src.relay.state.store import (
    CORRELATION_TTL_SECONDS,
    CorrelationStore,
    IdentityStore,
    correlation_key,
)

__all__ = [
    "CORRELATION_TTL_SECONDS",
    "CorrelationStore",
    "IdentityState",
    "IdentityStore",
    "InMemoryBackend",
    "KeyValueBackend",
    "RedisBackend",
    "correlation_key",
    "create_backend",
]
