"""Pull request comment commands.

A trusted collaborator can trigger a workflow by commenting on an open pull
request:

    !harmful <job> [<json object>]

The job name selects the workflow file (``<job>.yml`` unless it already
ends in .yml or .yaml); the optional JSON object becomes the
workflow_dispatch inputs. The workflow runs on the pull request's head
branch in its base repository, and the comment gets a +1 reaction once the
dispatch is accepted.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from src.relay.errors import RelayError
from src.relay.github.client import GitHubClient
from src.relay.webhook.models import IssueCommentEvent


logger = logging.getLogger(__name__)


DEFAULT_COMMAND_PREFIX = "!harmful"

ACK_REACTION = "+1"

_WORKFLOW_SUFFIXES = (".yml", ".yaml")


@dataclass(frozen=True)
class Command:
    """A parsed comment command.

    Attributes:
        name: The job name, first token after the prefix.
        args: Workflow inputs, or None when the comment had none.
    """

    name: str
    args: Optional[Dict[str, Any]] = None


def parse_command(body: str, prefix: str = DEFAULT_COMMAND_PREFIX) -> Optional[Command]:
    """Parse a comment body into a command.

    Args:
        body: The comment body.
        prefix: The literal that marks a command.

    Returns:
        The command, or None when the body is not a well-formed command.

    Example:
        >>> parse_command('!harmful build {"env": "prod"}')
        Command(name='build', args={'env': 'prod'})
        >>> parse_command("!harmful build not-json") is None
        True
    """
    text = body.lstrip()
    if not text.startswith(prefix):
        return None

    rest = text[len(prefix):]
    # "!harmfulbuild" is not a command
    if rest and not rest[0].isspace():
        logger.debug("Command prefix not followed by whitespace")
        return None

    parts = rest.strip().split(None, 1)
    if not parts:
        logger.debug("Command has no job name")
        return None

    name = parts[0]
    raw_args = parts[1].strip() if len(parts) > 1 else ""
    if not raw_args:
        return Command(name=name)

    try:
        args = json.loads(raw_args)
    except ValueError as e:
        logger.debug(
            "Command arguments are not valid JSON",
            extra={"job": name, "error": str(e)},
        )
        return None

    if not isinstance(args, dict):
        logger.debug(
            "Command arguments are not a JSON object",
            extra={"job": name, "args_type": type(args).__name__},
        )
        return None

    return Command(name=name, args=args)


def workflow_file(name: str) -> str:
    """Workflow file name for a job name."""
    if name.endswith(_WORKFLOW_SUFFIXES):
        return name
    return f"{name}.yml"


class CommandInterpreter:
    """Runs the dispatch chain for a parsed command.

    Chain: fetch the pull request, dispatch the workflow on its head ref in
    the base repository, acknowledge the comment. A failing step is logged
    with the step name and URL, and the remaining steps are skipped.

    Attributes:
        github: Client for the GitHub API calls.
    """

    def __init__(self, github: GitHubClient):
        self.github = github

    async def run(self, event: IssueCommentEvent, command: Command) -> None:
        """Execute ``command`` for the pull request ``event`` refers to.

        Args:
            event: The issue_comment event that carried the command.
            command: The parsed command.

        Raises:
            RelayError: Re-raised after logging when a step fails.
        """
        if event.issue.pull_request is None:
            logger.debug("Comment is not on a pull request, nothing to run")
            return

        pr_url = event.issue.pull_request.url
        workflow = workflow_file(command.name)

        step, url = "get_pull_request", pr_url
        try:
            pull_request = await self.github.get_pull_request(pr_url)

            step, url = "dispatch_workflow", pull_request.base_repo_url
            await self.github.dispatch_workflow(
                pull_request.base_repo_url,
                workflow,
                pull_request.head_ref,
                inputs=command.args,
            )

            step, url = "create_reaction", event.comment.url
            await self.github.create_reaction(event.comment.url, ACK_REACTION)
        except RelayError as e:
            logger.error(
                "Command %s aborted at %s: %s",
                command.name,
                step,
                e.message,
                extra={
                    "job": command.name,
                    "step": step,
                    "url": url,
                    "pr_number": event.issue.number,
                },
            )
            raise

        logger.info(
            "Command dispatched",
            extra={
                "job": command.name,
                "workflow": workflow,
                "ref": pull_request.head_ref,
                "pr_number": event.issue.number,
            },
        )
