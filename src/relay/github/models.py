"""Models for the GitHub API responses the relay reads.

Responses are validated the same way webhook payloads are: only the fields
the relay uses are declared, and a missing field becomes a PayloadError
naming it.
"""

from enum import Enum
from typing import Any, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from src.relay.errors import PayloadError


class _Response(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class RepoRef(_Response):
    url: str = Field(..., min_length=1)


class BaseRef(_Response):
    repo: RepoRef


class HeadRef(_Response):
    ref: str = Field(..., min_length=1)


class PullRequest(_Response):
    """A pull request as returned by GET /repos/{owner}/{repo}/pulls/{n}."""

    number: int

    base: BaseRef

    head: HeadRef

    @property
    def base_repo_url(self) -> str:
        return self.base.repo.url

    @property
    def head_ref(self) -> str:
        return self.head.ref


class WorkflowRunDetails(_Response):
    """A workflow run as returned by GET .../actions/runs/{id}."""

    id: int

    name: str = ""

    head_sha: str = Field(..., min_length=1)

    html_url: str = ""


class CheckRun(_Response):
    id: int

    status: Optional[str] = None


class CheckRunStatus(str, Enum):
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


# Conclusions accepted by the check runs API
CHECK_RUN_CONCLUSIONS = frozenset(
    {
        "action_required",
        "cancelled",
        "failure",
        "neutral",
        "success",
        "skipped",
        "stale",
        "timed_out",
    }
)


def check_run_conclusion(workflow_conclusion: Optional[str]) -> str:
    """Map a workflow run conclusion onto a check run conclusion.

    Args:
        workflow_conclusion: The ``conclusion`` of a completed workflow run.

    Returns:
        The same value when the check runs API accepts it, ``failure`` for
        ``startup_failure`` and ``neutral`` for anything else.
    """
    if workflow_conclusion in CHECK_RUN_CONCLUSIONS:
        return workflow_conclusion
    if workflow_conclusion == "startup_failure":
        return "failure"
    return "neutral"


ResponseT = TypeVar("ResponseT", bound=_Response)


def parse_response(model: Type[ResponseT], data: Any, source: str) -> ResponseT:
    """Validate a decoded response body against a model.

    Args:
        model: The response model.
        data: Decoded JSON body.
        source: The URL the body came from, for the error message.

    Raises:
        PayloadError: If the body does not match the model.
    """
    try:
        return model.model_validate(data)
    except ValidationError as e:
        errors = e.errors()
        field = ".".join(str(p) for p in errors[0].get("loc", ())) if errors else None
        raise PayloadError(
            f"Unexpected {model.__name__} response from {source} at '{field}'",
            field=field,
        ) from e
