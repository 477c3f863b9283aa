"""GitHub webhook event models for the relay.

Each handled ``(event type, action)`` pair has its own immutable model. Only
the fields the relay reads are declared; everything else in the payload is
ignored. Deliveries for pairs the relay does not handle are represented by
UnhandledEvent so they can be acknowledged and logged without validation.

The models use Pydantic for validation, consistent with the relay's
configuration approach in config.py.
"""

from enum import Enum
from typing import ClassVar, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class EventType(str, Enum):
    """Webhook event types (the X-GitHub-Event header) the relay handles."""

    INSTALLATION = "installation"
    ISSUE_COMMENT = "issue_comment"
    WORKFLOW_RUN = "workflow_run"


class InstallationAction(str, Enum):
    """Installation actions that bootstrap the application identity."""

    CREATED = "created"
    NEW_PERMISSIONS_ACCEPTED = "new_permissions_accepted"
    UNSUSPEND = "unsuspend"


class IssueCommentAction(str, Enum):
    """Issue comment actions that may carry a command."""

    CREATED = "created"


class WorkflowRunAction(str, Enum):
    """Workflow run actions mirrored onto check runs.

    Attributes:
        REQUESTED: A run was queued. Creates the check run.
        IN_PROGRESS: A run started. Moves the check run to in_progress.
        COMPLETED: A run finished. Completes the check run.
    """

    REQUESTED = "requested"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


# Associations allowed to issue commands on a pull request
TRUSTED_AUTHOR_ASSOCIATIONS = frozenset({"OWNER", "MEMBER", "COLLABORATOR"})


class _Payload(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


# -----------------------------------------------------------------------------
# installation
# -----------------------------------------------------------------------------


class Installation(_Payload):
    """The installation object of an installation event."""

    app_id: int = Field(..., gt=0)

    access_tokens_url: str = Field(..., min_length=1)


class InstallationEvent(_Payload):
    """An installation was created, re-permissioned or unsuspended."""

    EVENT_TYPE: ClassVar[EventType] = EventType.INSTALLATION

    action: InstallationAction

    installation: Installation


# -----------------------------------------------------------------------------
# issue_comment
# -----------------------------------------------------------------------------


class PullRequestLink(_Payload):
    """The pull_request reference attached to issues that are pull requests."""

    url: str = Field(..., min_length=1)


class Issue(_Payload):
    """The issue (or pull request) a comment was posted on."""

    number: int

    state: str

    pull_request: Optional[PullRequestLink] = None

    @property
    def is_pull_request(self) -> bool:
        """Whether the issue is a pull request."""
        return self.pull_request is not None

    @property
    def is_open(self) -> bool:
        """Whether the issue is open."""
        return self.state == "open"


class User(_Payload):
    id: int

    login: str = ""


class Comment(_Payload):
    """The comment that triggered an issue_comment event."""

    id: int

    url: str = Field(..., min_length=1)

    body: str = ""

    author_association: str

    user: Optional[User] = None

    @field_validator("body", mode="before")
    @classmethod
    def _null_body(cls, v):
        return "" if v is None else v


class IssueCommentEvent(_Payload):
    """A comment was created on an issue or pull request."""

    EVENT_TYPE: ClassVar[EventType] = EventType.ISSUE_COMMENT

    action: IssueCommentAction

    issue: Issue

    comment: Comment

    @property
    def is_trusted_author(self) -> bool:
        """Whether the comment author may issue commands."""
        return self.comment.author_association in TRUSTED_AUTHOR_ASSOCIATIONS


# -----------------------------------------------------------------------------
# workflow_run
# -----------------------------------------------------------------------------


class WorkflowRun(_Payload):
    """The workflow run object of a workflow_run event."""

    id: int = Field(..., gt=0)

    name: str = ""

    head_sha: str = Field(..., min_length=1)

    url: str = Field(..., min_length=1)

    html_url: str = ""

    status: Optional[str] = None

    conclusion: Optional[str] = None

    actor: Optional[User] = None

    triggering_actor: Optional[User] = None

    @property
    def triggered_by(self) -> Optional[int]:
        """Id of the user that triggered the run, falling back to the actor."""
        if self.triggering_actor is not None:
            return self.triggering_actor.id
        if self.actor is not None:
            return self.actor.id
        return None


class Repository(_Payload):
    url: str = Field(..., min_length=1)

    full_name: str = ""


class WorkflowRunEvent(_Payload):
    """A workflow run was requested, started or completed."""

    EVENT_TYPE: ClassVar[EventType] = EventType.WORKFLOW_RUN

    action: WorkflowRunAction

    workflow_run: WorkflowRun

    repository: Repository


# -----------------------------------------------------------------------------
# everything else
# -----------------------------------------------------------------------------


class UnhandledEvent(_Payload):
    """A delivery whose type and action the relay does not act on."""

    event_type: str

    action: Optional[str] = None


ParsedEvent = Union[InstallationEvent, IssueCommentEvent, WorkflowRunEvent, UnhandledEvent]
