"""Routes verified webhook events to their handlers.

| event                          | handling                                   |
|--------------------------------|--------------------------------------------|
| installation.created / ...     | bootstrap the identity, inline              |
| issue_comment.created          | gate, parse command, queue dispatch chain   |
| workflow_run.requested         | actor gate, queue check run creation        |
| workflow_run.in_progress       | queue check run update                      |
| workflow_run.completed         | queue check run completion                  |
| anything else                  | acknowledged, no side effect                |

Inline work is limited to what the response depends on; GitHub API call
chains go to the work queue so the webhook is answered first.

Source:
- src/relay/dispatch/commands.py (parse_command, CommandInterpreter)
- src/relay/dispatch/workflow_runs.py (WorkflowRunTracker)
- src/relay/workqueue.py (WorkQueue)
"""

import logging
from enum import Enum
from functools import partial
from typing import Optional

from src.relay.dispatch.commands import (
    DEFAULT_COMMAND_PREFIX,
    CommandInterpreter,
    parse_command,
)
from src.relay.dispatch.workflow_runs import WorkflowRunTracker
from src.relay.github.auth import ApplicationIdentity
from src.relay.state.identity import IdentityState
from src.relay.webhook.models import (
    InstallationEvent,
    IssueCommentEvent,
    ParsedEvent,
    UnhandledEvent,
    WorkflowRunAction,
    WorkflowRunEvent,
)
from src.relay.workqueue import WorkFactory, WorkQueue


logger = logging.getLogger(__name__)


class DispatchOutcome(str, Enum):
    """What the dispatcher did with an event, reported in the response."""

    BOOTSTRAPPED = "bootstrapped"
    ALREADY_BOOTSTRAPPED = "already_bootstrapped"
    QUEUED = "queued"
    IGNORED = "ignored"
    UNHANDLED = "unhandled"
    DROPPED = "dropped"


class EventDispatcher:
    """Dispatches parsed events by type and action.

    Attributes:
        identity: The application identity state.
        work_queue: Queue for background call chains.
        commands: Runs comment commands.
        runs: Mirrors workflow runs as check runs.
        automation_actor_id: Only runs triggered by this user get a check run.
        command_prefix: Literal that marks a comment as a command.
    """

    def __init__(
        self,
        identity: IdentityState,
        work_queue: WorkQueue,
        commands: CommandInterpreter,
        runs: WorkflowRunTracker,
        automation_actor_id: int,
        command_prefix: str = DEFAULT_COMMAND_PREFIX,
    ):
        self.identity = identity
        self.work_queue = work_queue
        self.commands = commands
        self.runs = runs
        self.automation_actor_id = automation_actor_id
        self.command_prefix = command_prefix

    async def dispatch(
        self,
        event: ParsedEvent,
        delivery_id: Optional[str] = None,
    ) -> DispatchOutcome:
        """Handle one event.

        Args:
            event: The parsed event.
            delivery_id: The X-GitHub-Delivery header, for log context.

        Returns:
            The outcome.

        Raises:
            StoreError: If the identity bootstrap cannot reach the backend.
        """
        if isinstance(event, InstallationEvent):
            return await self._on_installation(event)
        if isinstance(event, IssueCommentEvent):
            return await self._on_issue_comment(event, delivery_id)
        if isinstance(event, WorkflowRunEvent):
            return await self._on_workflow_run(event, delivery_id)

        if isinstance(event, UnhandledEvent):
            logger.info(
                "Unhandled event %s.%s",
                event.event_type,
                event.action,
                extra={
                    "event_type": event.event_type,
                    "action": event.action,
                    "delivery_id": delivery_id,
                },
            )
        return DispatchOutcome.UNHANDLED

    async def _on_installation(self, event: InstallationEvent) -> DispatchOutcome:
        offered = ApplicationIdentity(
            app_id=event.installation.app_id,
            access_tokens_url=event.installation.access_tokens_url,
        )
        _, written = await self.identity.bootstrap(offered)
        if written:
            logger.info(
                "Application identity bootstrapped",
                extra={"app_id": offered.app_id, "action": event.action.value},
            )
            return DispatchOutcome.BOOTSTRAPPED
        return DispatchOutcome.ALREADY_BOOTSTRAPPED

    async def _bootstrapped(self, event_name: str, delivery_id: Optional[str]) -> bool:
        # another replica may have bootstrapped since startup
        if self.identity.current is not None or await self.identity.load() is not None:
            return True
        logger.warning(
            "Ignoring %s: no installation event has been received yet",
            event_name,
            extra={"delivery_id": delivery_id},
        )
        return False

    async def _on_issue_comment(
        self,
        event: IssueCommentEvent,
        delivery_id: Optional[str],
    ) -> DispatchOutcome:
        if not (event.issue.is_pull_request and event.issue.is_open):
            logger.debug(
                "Comment is not on an open pull request",
                extra={"issue_number": event.issue.number, "state": event.issue.state},
            )
            return DispatchOutcome.IGNORED

        if not event.is_trusted_author:
            logger.debug(
                "Comment author is not trusted",
                extra={
                    "issue_number": event.issue.number,
                    "author_association": event.comment.author_association,
                },
            )
            return DispatchOutcome.IGNORED

        command = parse_command(event.comment.body, self.command_prefix)
        if command is None:
            return DispatchOutcome.IGNORED

        if not await self._bootstrapped("issue_comment command", delivery_id):
            return DispatchOutcome.IGNORED

        logger.info(
            "Command %s received",
            command.name,
            extra={
                "job": command.name,
                "issue_number": event.issue.number,
                "delivery_id": delivery_id,
            },
        )
        return await self._submit(
            "issue_comment.command",
            partial(self.commands.run, event, command),
            delivery_id,
        )

    async def _on_workflow_run(
        self,
        event: WorkflowRunEvent,
        delivery_id: Optional[str],
    ) -> DispatchOutcome:
        run = event.workflow_run
        action = event.action

        if action == WorkflowRunAction.REQUESTED:
            if run.triggered_by != self.automation_actor_id:
                logger.debug(
                    "Workflow run %s was not triggered by the automation actor",
                    run.id,
                    extra={"run_id": run.id, "actor_id": run.triggered_by},
                )
                return DispatchOutcome.IGNORED
            handler = self.runs.on_requested
        elif action == WorkflowRunAction.IN_PROGRESS:
            handler = self.runs.on_in_progress
        else:
            handler = self.runs.on_completed

        if not await self._bootstrapped(f"workflow_run.{action.value}", delivery_id):
            return DispatchOutcome.IGNORED

        return await self._submit(
            f"workflow_run.{action.value}",
            partial(handler, event),
            delivery_id,
        )

    async def _submit(
        self,
        kind: str,
        factory: WorkFactory,
        delivery_id: Optional[str],
    ) -> DispatchOutcome:
        queued = await self.work_queue.submit(kind, factory, delivery_id=delivery_id)
        return DispatchOutcome.QUEUED if queued else DispatchOutcome.DROPPED
