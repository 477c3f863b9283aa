"""GitHub App authentication for the relay.

A GitHub App authenticates in two steps:

1. It signs a short-lived JWT with its private key (issuer = app id).
2. It exchanges the JWT at the installation's ``access_tokens_url`` for an
   installation token, which is the bearer credential for API calls.

The CredentialManager caches the installation token and renews it when the
cached one is within two minutes of the expiry GitHub reported.

Source:
- src/relay/webhook/models.py (Installation.app_id, access_tokens_url)
- src/relay/config.py (app_private_key)
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import httpx
import jwt

from src.relay.errors import CredentialError


logger = logging.getLogger(__name__)


GITHUB_ACCEPT = "application/vnd.github+json"
GITHUB_API_VERSION = "2022-11-28"

# iat is backdated to tolerate clock drift between us and GitHub
JWT_CLOCK_SKEW = timedelta(seconds=60)
JWT_LIFETIME = timedelta(minutes=5)

# Tokens are treated as expired this long before GitHub's expiry
TOKEN_EXPIRY_MARGIN = timedelta(minutes=2)


Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ApplicationIdentity:
    """The app id and token endpoint learned from an installation event.

    Attributes:
        app_id: Numeric GitHub App id, used as the JWT issuer.
        access_tokens_url: Endpoint that exchanges a JWT for an
                           installation token.
    """

    app_id: int
    access_tokens_url: str


@dataclass(frozen=True)
class InstallationToken:
    """A cached installation token.

    Attributes:
        token: The bearer token.
        expires_at: When the relay stops using the token (GitHub's expiry
                    minus TOKEN_EXPIRY_MARGIN).
    """

    token: str
    expires_at: datetime

    def is_valid(self, now: datetime) -> bool:
        return now < self.expires_at


def mint_app_jwt(app_id: int, private_key: str, now: datetime) -> str:
    """Sign the JWT that authenticates the app itself.

    Args:
        app_id: The GitHub App id (JWT issuer).
        private_key: PEM encoded RSA private key of the app.
        now: Current time.

    Returns:
        The encoded RS256 JWT.

    Raises:
        CredentialError: If the key cannot be used for signing.
    """
    claims = {
        "iat": int((now - JWT_CLOCK_SKEW).timestamp()),
        "exp": int((now + JWT_LIFETIME).timestamp()),
        "iss": str(app_id),
    }
    try:
        return jwt.encode(claims, private_key, algorithm="RS256")
    except (jwt.PyJWTError, ValueError, TypeError) as e:
        raise CredentialError(f"Could not sign app JWT: {e}", original_error=e) from e


def _parse_github_datetime(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        raise ValueError(f"GitHub datetime missing timezone: {value}")
    return parsed.astimezone(timezone.utc)


class CredentialManager:
    """Mints, caches and renews the installation token.

    State machine: Empty -> Minting -> Valid -> (expiry) -> Minting -> ...

    Renewal runs under an asyncio lock, so the lock holder is the only
    writer of the cached token. Callers that waited for the lock re-check
    the cache before minting, which usually lets concurrent callers share
    one exchange. Readers only ever see a complete, immutable
    InstallationToken.

    Attributes:
        private_key: PEM encoded RSA key used to sign app JWTs.
        http_client: Client used for the token exchange.
        clock: Returns the current UTC time; injectable for tests.

    Example:
        >>> manager = CredentialManager(private_key=pem, http_client=client)
        >>> token = await manager.get_token(identity)
    """

    def __init__(
        self,
        private_key: str,
        http_client: httpx.AsyncClient,
        clock: Optional[Clock] = None,
    ):
        self.private_key = private_key
        self.http_client = http_client
        self.clock = clock or _utcnow
        self._token: Optional[InstallationToken] = None
        self._lock = asyncio.Lock()

    @property
    def cached(self) -> Optional[InstallationToken]:
        """The cached token, valid or not."""
        return self._token

    def invalidate(self) -> None:
        """Drop the cached token so the next call mints a fresh one."""
        self._token = None

    async def get_token(self, identity: ApplicationIdentity) -> str:
        """Return a usable installation token, renewing it if needed.

        Args:
            identity: The application identity to authenticate as.

        Returns:
            The bearer token string.

        Raises:
            CredentialError: If signing or the token exchange fails. Nothing
                             is cached in that case.
        """
        current = self._token
        if current is not None and current.is_valid(self.clock()):
            return current.token

        async with self._lock:
            current = self._token
            if current is not None and current.is_valid(self.clock()):
                return current.token

            renewed = await self._exchange(identity)
            self._token = renewed
            return renewed.token

    async def _exchange(self, identity: ApplicationIdentity) -> InstallationToken:
        """Exchange a freshly minted JWT for an installation token."""
        url = identity.access_tokens_url
        if not url.startswith("https://"):
            raise CredentialError(f"Refusing non-HTTPS token endpoint: {url}")

        app_jwt = mint_app_jwt(identity.app_id, self.private_key, self.clock())

        logger.info(
            "Requesting installation token",
            extra={"app_id": identity.app_id, "url": url},
        )

        try:
            response = await self.http_client.post(
                url,
                headers={
                    "Authorization": f"Bearer {app_jwt}",
                    "Accept": GITHUB_ACCEPT,
                    "X-GitHub-Api-Version": GITHUB_API_VERSION,
                },
            )
        except httpx.HTTPError as e:
            logger.error(
                "Installation token request failed",
                extra={"url": url, "error": str(e)},
            )
            raise CredentialError(
                f"Installation token request failed: {e}", original_error=e
            ) from e

        if response.status_code >= 400:
            logger.error(
                "Installation token request rejected",
                extra={
                    "url": url,
                    "status_code": response.status_code,
                    "response_body": response.text[:500],
                },
            )
            raise CredentialError(
                f"Installation token request rejected: {response.status_code}"
            )

        try:
            data = response.json()
            token = data["token"]
            expires_at = _parse_github_datetime(data["expires_at"])
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise CredentialError(
                f"Malformed installation token response: {e}", original_error=e
            ) from e

        if not isinstance(token, str) or not token:
            raise CredentialError("Installation token response has an empty token")

        renewed = InstallationToken(
            token=token,
            expires_at=expires_at - TOKEN_EXPIRY_MARGIN,
        )
        logger.debug(
            "New installation token will expire at %s",
            renewed.expires_at.isoformat(),
        )
        return renewed
