"""GitHub webhook handling for the relay.

This module authenticates and parses GitHub webhook deliveries:
- installation.created / new_permissions_accepted / unsuspend
- issue_comment.created
- workflow_run.requested / in_progress / completed

Signatures are verified over the raw body before anything is parsed.
"""

from .handler import WebhookHandler, create_webhook_handler
from .models import (
    EventType,
    InstallationEvent,
    IssueCommentEvent,
    ParsedEvent,
    UnhandledEvent,
    WorkflowRunAction,
    WorkflowRunEvent,
)
from .signature import compute_signature, verify_signature

__all__ = [
    "EventType",
    "InstallationEvent",
    "IssueCommentEvent",
    "ParsedEvent",
    "UnhandledEvent",
    "WebhookHandler",
    "WorkflowRunAction",
    "WorkflowRunEvent",
    "compute_signature",
    "create_webhook_handler",
    "verify_signature",
]
