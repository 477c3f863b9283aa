"""GitHub App authentication and API client.

This module provides:
- Installation token minting, caching and renewal
- An API client for pull requests, workflow dispatch, reactions and
  check runs, authenticated as the app installation
"""

from src.relay.github.auth import (
    ApplicationIdentity,
    CredentialManager,
    InstallationToken,
    mint_app_jwt,
)
from src.relay.github.client import GitHubClient, build_http_client
from src.relay.github.models import (
    CheckRunStatus,
    PullRequest,
    WorkflowRunDetails,
    check_run_conclusion,
)

__all__ = [
    "ApplicationIdentity",
    "CheckRunStatus",
    "CredentialManager",
    "GitHubClient",
    "InstallationToken",
    "PullRequest",
    "WorkflowRunDetails",
    "build_http_client",
    "check_run_conclusion",
    "mint_app_jwt",
]
