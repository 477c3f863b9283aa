"""In-process view of the application identity.

The identity is learned once, from the first installation event, and never
changes afterwards. IdentityState caches it for the request path and
serializes bootstraps inside the process; IdentityStore's atomic write
settles races between processes.
"""

import asyncio
import logging
from typing import Optional, Tuple

from src.relay.errors import StoreError
from src.relay.github.auth import ApplicationIdentity
from src.relay.state.store import IdentityStore


logger = logging.getLogger(__name__)


class IdentityState:
    """Single-writer holder of the ApplicationIdentity.

    Readers take ``current`` without locking; it is either None or a
    complete immutable identity.

    Attributes:
        store: Persistence for the identity.
    """

    def __init__(self, store: IdentityStore):
        self.store = store
        self._current: Optional[ApplicationIdentity] = None
        self._lock = asyncio.Lock()

    @property
    def current(self) -> Optional[ApplicationIdentity]:
        return self._current

    async def load(self) -> Optional[ApplicationIdentity]:
        """Load a previously persisted identity, e.g. at startup."""
        async with self._lock:
            if self._current is None:
                self._current = await self.store.load()
            return self._current

    async def bootstrap(self, identity: ApplicationIdentity) -> Tuple[ApplicationIdentity, bool]:
        """Adopt ``identity`` unless one is already known.

        Args:
            identity: The identity carried by an installation event.

        Returns:
            The effective identity, and whether this call persisted it.

        Raises:
            StoreError: If the backend fails, or reports an identity that
                        cannot be read back.
        """
        current = self._current
        if current is not None:
            return current, False

        async with self._lock:
            if self._current is not None:
                return self._current, False

            written = await self.store.bootstrap(identity)
            if written:
                self._current = identity
                return identity, True

            # Another process won the race
            stored = await self.store.load()
            if stored is None:
                raise StoreError(
                    "An identity is already persisted but could not be read back"
                )
            if stored != identity:
                logger.info(
                    "Keeping previously persisted identity",
                    extra={"app_id": stored.app_id, "offered_app_id": identity.app_id},
                )
            self._current = stored
            return stored, False
