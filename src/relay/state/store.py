"""Stores for the application identity and workflow run correlation.

Persisted layout:

    app_id                      integer, no expiry
    access_tokens_url           string, no expiry
    job_correlation.<run_id>    check run id, expires 6 hours after creation

The two identity keys are written together with a single "set all if none
exist" operation, so a crash can never leave half an identity behind and a
second bootstrap can never overwrite the first.

Source:
- src/relay/state/backend.py (KeyValueBackend)
- src/relay/github/auth.py (ApplicationIdentity)
"""

import logging
from typing import Optional

from src.relay.github.auth import ApplicationIdentity
from src.relay.state.backend import KeyValueBackend


logger = logging.getLogger(__name__)


IDENT_APP_ID = "app_id"
IDENT_TOKEN_URL = "access_tokens_url"

CORRELATION_PREFIX = "job_correlation."
CORRELATION_TTL_SECONDS = 6 * 60 * 60


def correlation_key(run_id: int) -> str:
    """Key of the correlation record for a workflow run."""
    return f"{CORRELATION_PREFIX}{run_id}"


class IdentityStore:
    """Persists the application identity learned at installation time.

    Attributes:
        backend: The key-value backend.
    """

    def __init__(self, backend: KeyValueBackend):
        self.backend = backend

    async def load(self) -> Optional[ApplicationIdentity]:
        """Load the persisted identity.

        Returns:
            The identity, or None unless both keys hold usable values.
        """
        app_id = await self.backend.get(IDENT_APP_ID)
        token_url = await self.backend.get(IDENT_TOKEN_URL)
        logger.debug(
            "Identity from store",
            extra={"app_id": app_id, "access_tokens_url": token_url},
        )

        if app_id is None or token_url is None:
            return None
        try:
            return ApplicationIdentity(app_id=int(app_id), access_tokens_url=token_url)
        except ValueError:
            logger.error(
                "Persisted app_id is not an integer",
                extra={"app_id": app_id},
            )
            return None

    async def bootstrap(self, identity: ApplicationIdentity) -> bool:
        """Persist the identity unless one is already stored.

        Args:
            identity: The identity to persist.

        Returns:
            True if this call wrote the identity, False if an identity was
            already present (it is left untouched).
        """
        written = await self.backend.set_many_if_absent(
            {
                IDENT_APP_ID: str(identity.app_id),
                IDENT_TOKEN_URL: identity.access_tokens_url,
            }
        )
        logger.info(
            "Identity bootstrap %s",
            "persisted" if written else "skipped, already present",
            extra={"app_id": identity.app_id, "written": written},
        )
        return written


class CorrelationStore:
    """Maps workflow run ids to the check runs created for them.

    Records expire CORRELATION_TTL_SECONDS after creation; reads never
    refresh the expiry, so abandoned runs clean themselves up. A missing
    record means the run is untracked.

    Attributes:
        backend: The key-value backend.
        ttl_seconds: Lifetime of a record.
    """

    def __init__(
        self,
        backend: KeyValueBackend,
        ttl_seconds: int = CORRELATION_TTL_SECONDS,
    ):
        self.backend = backend
        self.ttl_seconds = ttl_seconds

    async def track(self, run_id: int, check_run_id: int) -> None:
        """Record the check run created for a workflow run."""
        await self.backend.set(
            correlation_key(run_id),
            str(check_run_id),
            ttl_seconds=self.ttl_seconds,
        )
        logger.debug(
            "Tracking workflow run",
            extra={"run_id": run_id, "check_run_id": check_run_id},
        )

    async def lookup(self, run_id: int) -> Optional[int]:
        """Return the check run id for a workflow run, or None if untracked."""
        value = await self.backend.get(correlation_key(run_id))
        if value is None:
            return None
        try:
            return int(value)
        except ValueError:
            logger.warning(
                "Ignoring unparsable correlation record",
                extra={"run_id": run_id, "value": value},
            )
            return None

    async def forget(self, run_id: int) -> None:
        """Delete the record for a workflow run."""
        await self.backend.delete(correlation_key(run_id))
