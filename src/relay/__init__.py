"""GitHub App relay for comment-triggered workflows and check-run tracking.

This package implements a small GitHub App backend, providing:
- Webhook signature verification over the raw request body
- GitHub App authentication (JWT minting, installation token caching)
- Event dispatch for installation, issue_comment and workflow_run events
- `!harmful <job> [json-args]` comment commands that dispatch workflows
- Check runs mirroring the lifecycle of workflows the app triggered
"""

__version__ = "0.1.0"
