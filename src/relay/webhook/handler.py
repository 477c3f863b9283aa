"""GitHub webhook handler for the relay.

This module provides the WebhookHandler class which authenticates a raw
delivery and parses it into one of the typed event models. The handler
works on the raw request bytes: the signature is checked first and the
body is only decoded as JSON once it is known to come from GitHub.

GitHub Webhook Payload Structure (workflow_run event, trimmed):
{
  "action": "requested",
  "workflow_run": {
    "id": 42,
    "name": "build",
    "head_sha": "9fceb02...",
    "url": "https://api.github.com/repos/octo/app/actions/runs/42",
    "triggering_actor": {"id": 1234, "login": "harmless-bot[bot]"}
  },
  "repository": {"url": "https://api.github.com/repos/octo/app"}
}
"""

import json
import logging
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple, Type

from pydantic import BaseModel, ValidationError

from src.relay.errors import PayloadError, SignatureError
from src.relay.webhook.models import (
    EventType,
    InstallationAction,
    InstallationEvent,
    IssueCommentAction,
    IssueCommentEvent,
    ParsedEvent,
    UnhandledEvent,
    WorkflowRunAction,
    WorkflowRunEvent,
)
from src.relay.webhook.signature import verify_signature


logger = logging.getLogger(__name__)


EVENT_HEADER = "x-github-event"
SIGNATURE_HEADER = "x-hub-signature-256"
DELIVERY_HEADER = "x-github-delivery"


_ROUTES: Dict[str, Tuple[Type[BaseModel], FrozenSet[str]]] = {
    EventType.INSTALLATION.value: (
        InstallationEvent,
        frozenset(a.value for a in InstallationAction),
    ),
    EventType.ISSUE_COMMENT.value: (
        IssueCommentEvent,
        frozenset(a.value for a in IssueCommentAction),
    ),
    EventType.WORKFLOW_RUN.value: (
        WorkflowRunEvent,
        frozenset(a.value for a in WorkflowRunAction),
    ),
}


def _error_field(exc: ValidationError) -> Optional[str]:
    errors = exc.errors()
    if not errors:
        return None
    return ".".join(str(part) for part in errors[0].get("loc", ()))


class WebhookHandler:
    """Authenticates and parses GitHub webhook deliveries.

    Attributes:
        secret: The shared webhook secret as bytes.
    """

    def __init__(self, secret: str) -> None:
        """Initialize the webhook handler.

        Args:
            secret: The GitHub webhook secret. Surrounding whitespace is
                    stripped, matching how the secret is usually pasted
                    into environment files.
        """
        self.secret = secret.strip().encode("utf-8")

    def authenticate(self, headers: Mapping[str, str], body: bytes) -> str:
        """Verify a delivery and return its event type.

        Args:
            headers: Request headers. Lookups use lowercase names, so pass a
                     case-insensitive mapping (Starlette headers) or a dict
                     with lowercase keys.
            body: The raw request body.

        Returns:
            The value of the X-GitHub-Event header.

        Raises:
            SignatureError: If the event header is missing or the signature
                            does not match the body.
        """
        event_type = headers.get(EVENT_HEADER)
        if not event_type:
            raise SignatureError("Missing X-GitHub-Event header")

        if not verify_signature(self.secret, body, headers.get(SIGNATURE_HEADER)):
            raise SignatureError("Webhook signature is missing or wrong")

        return event_type

    def parse(self, event_type: str, body: bytes) -> ParsedEvent:
        """Parse an authenticated delivery into a typed event.

        Args:
            event_type: The X-GitHub-Event header value.
            body: The raw request body, already authenticated.

        Returns:
            The typed event for handled ``(event_type, action)`` pairs,
            otherwise an UnhandledEvent.

        Raises:
            PayloadError: If the body is not a JSON object, or a handled
                          event is missing a field the relay needs.
        """
        try:
            payload: Any = json.loads(body)
        except (UnicodeDecodeError, ValueError) as e:
            raise PayloadError(f"Body is not valid JSON: {e}") from e

        if not isinstance(payload, dict):
            raise PayloadError(
                f"Expected a JSON object, got {type(payload).__name__}"
            )

        action = payload.get("action")
        if action is not None and not isinstance(action, str):
            raise PayloadError("Invalid 'action' field", field="action")

        route = _ROUTES.get(event_type)
        if route is None or action not in route[1]:
            return UnhandledEvent(event_type=event_type, action=action)

        model, _ = route
        try:
            event = model.model_validate(payload)
        except ValidationError as e:
            field = _error_field(e)
            logger.warning(
                "Invalid %s payload, offending field: %s",
                event_type,
                field,
                extra={"event_type": event_type, "action": action, "field": field},
            )
            raise PayloadError(
                f"Invalid {event_type}.{action} payload at '{field}'",
                field=field,
            ) from e

        logger.debug(
            "Parsed webhook event",
            extra={"event_type": event_type, "action": action},
        )
        return event


def create_webhook_handler(secret: str) -> WebhookHandler:
    """Factory function to create a WebhookHandler instance.

    Args:
        secret: The GitHub webhook secret.

    Returns:
        A configured WebhookHandler instance.
    """
    return WebhookHandler(secret=secret)
