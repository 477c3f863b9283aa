"""Relay event models for observability.

This module defines the data models for events reported by the background
work queue:
- EventType: Enum of all event types emitted by the relay
- RelayEvent: Structured event with the unit of work and its outcome

The models use Pydantic for validation, consistent with the relay's
approach in webhook/models.py.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Outcomes of a background unit of work.

    Attributes:
        WORK_COMPLETED: The unit ran to completion.
        WORK_FAILED: The unit raised; details carry the error.
        WORK_DROPPED: The queue was full and the unit never ran.
    """

    WORK_COMPLETED = "work_completed"
    WORK_FAILED = "work_failed"
    WORK_DROPPED = "work_dropped"


class RelayEvent(BaseModel):
    """Structured event describing one background unit of work.

    Attributes:
        event_type: The outcome category.
        kind: What the unit does, e.g. ``workflow_run.requested``.
        delivery_id: The webhook delivery that produced the unit, if known.
        timestamp: When the event occurred (UTC timezone).
        details: Additional context (duration_seconds, error, error_type).

    Example:
        >>> event = RelayEvent(
        ...     event_type=EventType.WORK_FAILED,
        ...     kind="issue_comment.command",
        ...     details={"error": "GitHub API error: 422"},
        ... )
    """

    event_type: EventType = Field(
        ...,
        description="The outcome of the unit of work",
    )

    kind: str = Field(
        ...,
        min_length=1,
        description="What the unit of work does",
    )

    delivery_id: Optional[str] = Field(
        default=None,
        description="The X-GitHub-Delivery id of the originating webhook",
    )

    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC timezone)",
    )

    details: Dict[str, Any] = Field(
        default_factory=dict,
        description="Additional context specific to the event type",
    )

    def to_log_dict(self) -> Dict[str, Any]:
        """Convert event to a flat dictionary for structured logging.

        Returns:
            Dict[str, Any]: Flat dictionary representation of the event.
        """
        return {
            "event_type": self.event_type.value,
            "kind": self.kind,
            "delivery_id": self.delivery_id,
            "timestamp": self.timestamp.isoformat(),
            **self.details,
        }
