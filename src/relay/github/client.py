"""GitHub API client for the relay's outbound calls.

This module provides an async wrapper around the GitHub REST API for:
- Fetching pull requests and workflow runs
- Dispatching workflows (workflow_dispatch)
- Reacting to comments
- Creating and updating check runs

Every call authenticates with the current installation token from the
CredentialManager. Calls are made once: failures are logged with the URL
and status and raised as TransportError, never retried.

Source:
- src/relay/github/auth.py (CredentialManager, ApplicationIdentity)
- src/relay/github/models.py (PullRequest, CheckRun, WorkflowRunDetails)
"""

import logging
import ssl
from typing import Any, Callable, Dict, Iterable, Optional

import httpx

from src.relay import __version__
from src.relay.errors import CredentialError, PayloadError, TransportError
from src.relay.github.auth import (
    GITHUB_ACCEPT,
    GITHUB_API_VERSION,
    ApplicationIdentity,
    CredentialManager,
)
from src.relay.github.models import (
    CheckRun,
    CheckRunStatus,
    PullRequest,
    WorkflowRunDetails,
    parse_response,
)


logger = logging.getLogger(__name__)


USER_AGENT = f"harmless-relay/{__version__}"

IdentityProvider = Callable[[], Optional[ApplicationIdentity]]


def build_http_client(
    timeout: float = 60.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """Build the shared HTTP client used for all outbound calls.

    The client enforces TLS 1.2 or newer and a fixed per-call timeout.

    Args:
        timeout: Per-call timeout in seconds.
        transport: Optional transport override (tests use MockTransport).

    Returns:
        A configured httpx AsyncClient.
    """
    if transport is not None:
        return httpx.AsyncClient(
            transport=transport,
            timeout=timeout,
            headers={"User-Agent": USER_AGENT},
        )

    tls = ssl.create_default_context()
    tls.minimum_version = ssl.TLSVersion.TLSv1_2
    return httpx.AsyncClient(
        verify=tls,
        timeout=timeout,
        headers={"User-Agent": USER_AGENT},
    )


class GitHubClient:
    """Async GitHub API client authenticated as the app installation.

    Unlike a token-based client, this client resolves its bearer token per
    call: the application identity may be bootstrapped after the client
    is built, and the installation token is renewed as it expires.

    Attributes:
        http_client: The shared httpx AsyncClient.
        credentials: Supplies installation tokens.
        identity_provider: Returns the current application identity, or
                           None before the app has been bootstrapped.

    Example:
        >>> client = GitHubClient(http_client, credentials, lambda: identity)
        >>> pr = await client.get_pull_request(pr_url)
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        credentials: CredentialManager,
        identity_provider: IdentityProvider,
    ):
        self.http_client = http_client
        self.credentials = credentials
        self.identity_provider = identity_provider

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        if not self.http_client.is_closed:
            await self.http_client.aclose()

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def _headers(self) -> Dict[str, str]:
        identity = self.identity_provider()
        if identity is None:
            raise CredentialError(
                "Application identity is not bootstrapped; "
                "no installation event has been received yet"
            )
        token = await self.credentials.get_token(identity)
        return {
            "Authorization": f"Bearer {token}",
            "Accept": GITHUB_ACCEPT,
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
        }

    async def _request(
        self,
        method: str,
        url: str,
        json_data: Optional[Dict[str, Any]] = None,
        expected: Iterable[int] = (200,),
    ) -> httpx.Response:
        """Make a single authenticated request.

        Args:
            method: HTTP method (GET, POST, PATCH).
            url: Absolute API URL, taken from a webhook payload or response.
            json_data: Optional JSON body for the request.
            expected: Status codes treated as success.

        Returns:
            The HTTP response from GitHub.

        Raises:
            TransportError: If the URL is not HTTPS, the request fails or
                            the status is not one of ``expected``.
            CredentialError: If no installation token can be obtained.
        """
        if not url.startswith("https://"):
            raise TransportError(
                f"Refusing non-HTTPS URL: {url}", request_url=url, method=method
            )

        headers = await self._headers()

        try:
            response = await self.http_client.request(
                method,
                url,
                json=json_data,
                headers=headers,
            )
        except httpx.HTTPError as e:
            logger.error(
                "GitHub API request failed",
                extra={"method": method, "url": url, "error": str(e)},
            )
            raise TransportError(
                f"{method} {url} failed: {e}", request_url=url, method=method
            ) from e

        if response.status_code not in expected:
            error_body = response.text
            logger.error(
                "GitHub API error",
                extra={
                    "status_code": response.status_code,
                    "url": url,
                    "method": method,
                    "response_body": error_body[:500],
                },
            )
            raise TransportError(
                f"GitHub API error: {response.status_code}",
                status_code=response.status_code,
                response_body=error_body,
                request_url=url,
                method=method,
            )

        return response

    def _json(self, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise PayloadError(
                f"Response from {response.request.url} is not JSON"
            ) from e

    async def get_pull_request(self, url: str) -> PullRequest:
        """Fetch a pull request by its API URL.

        Args:
            url: The pull request API URL (``issue.pull_request.url``).

        Returns:
            The pull request's base repository and head ref.

        Raises:
            TransportError: If the request fails.
            PayloadError: If the response lacks base.repo.url or head.ref.
        """
        logger.debug("Fetching pull request", extra={"url": url})
        response = await self._request("GET", url)
        return parse_response(PullRequest, self._json(response), url)

    async def get_workflow_run(self, url: str) -> WorkflowRunDetails:
        """Fetch a workflow run by its API URL."""
        logger.debug("Fetching workflow run", extra={"url": url})
        response = await self._request("GET", url)
        return parse_response(WorkflowRunDetails, self._json(response), url)

    async def dispatch_workflow(
        self,
        repo_url: str,
        workflow: str,
        ref: str,
        inputs: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Trigger a workflow_dispatch event.

        Args:
            repo_url: Repository API URL.
            workflow: Workflow file name (e.g. ``build.yml``) or id.
            ref: Git ref to run the workflow on.
            inputs: Optional workflow inputs.

        Raises:
            TransportError: If GitHub does not answer 204.
        """
        url = f"{repo_url.rstrip('/')}/actions/workflows/{workflow}/dispatches"
        body: Dict[str, Any] = {"ref": ref}
        if inputs is not None:
            body["inputs"] = inputs

        logger.info(
            "Dispatching workflow",
            extra={"url": url, "workflow": workflow, "ref": ref},
        )
        await self._request("POST", url, json_data=body, expected=(204,))

    async def create_reaction(self, comment_url: str, content: str = "+1") -> None:
        """React to an issue comment.

        Args:
            comment_url: The comment API URL.
            content: Reaction content (``+1``, ``rocket``, ...).

        Raises:
            TransportError: If the request fails.
        """
        url = f"{comment_url.rstrip('/')}/reactions"
        await self._request(
            "POST", url, json_data={"content": content}, expected=(200, 201)
        )
        logger.info("Reaction added", extra={"url": url, "content": content})

    async def create_check_run(
        self,
        repo_url: str,
        name: str,
        head_sha: str,
        external_id: str,
        details_url: Optional[str] = None,
    ) -> int:
        """Create a queued check run.

        Args:
            repo_url: Repository API URL.
            name: Check run name.
            head_sha: Commit the check run is attached to.
            external_id: Id of the workflow run the check run mirrors.
            details_url: Optional link shown on the check run.

        Returns:
            The id of the created check run.

        Raises:
            TransportError: If GitHub does not answer 201.
            PayloadError: If the response has no id.
        """
        url = f"{repo_url.rstrip('/')}/check-runs"
        body: Dict[str, Any] = {
            "name": name,
            "head_sha": head_sha,
            "status": CheckRunStatus.QUEUED.value,
            "external_id": external_id,
        }
        if details_url:
            body["details_url"] = details_url

        response = await self._request("POST", url, json_data=body, expected=(201,))
        check_run = parse_response(CheckRun, self._json(response), url)

        logger.info(
            "Check run created",
            extra={"url": url, "check_run_id": check_run.id, "head_sha": head_sha},
        )
        return check_run.id

    async def update_check_run(
        self,
        repo_url: str,
        check_run_id: int,
        status: CheckRunStatus,
        conclusion: Optional[str] = None,
    ) -> None:
        """Update the status (and conclusion) of a check run.

        Args:
            repo_url: Repository API URL.
            check_run_id: The check run to update.
            status: New status.
            conclusion: Required when ``status`` is completed.

        Raises:
            TransportError: If the request fails.
        """
        url = f"{repo_url.rstrip('/')}/check-runs/{check_run_id}"
        body: Dict[str, Any] = {"status": status.value}
        if conclusion is not None:
            body["conclusion"] = conclusion

        await self._request("PATCH", url, json_data=body)
        logger.info(
            "Check run updated",
            extra={
                "url": url,
                "check_run_id": check_run_id,
                "status": status.value,
                "conclusion": conclusion,
            },
        )
