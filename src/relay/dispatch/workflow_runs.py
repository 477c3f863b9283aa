"""Mirrors workflow runs triggered by the relay as check runs.

Lifecycle of one run:

    requested   -> create a queued check run, record run id -> check run id
    in_progress -> move the recorded check run to in_progress
    completed   -> complete it with the mapped conclusion, drop the record

Runs without a record (not triggered by the relay, expired, or delivered
out of order) are skipped without error.

Source:
- src/relay/state/store.py (CorrelationStore)
- src/relay/github/client.py (GitHubClient)
"""

import logging

from src.relay.github.client import GitHubClient
from src.relay.github.models import CheckRunStatus, check_run_conclusion
from src.relay.state.store import CorrelationStore
from src.relay.webhook.models import WorkflowRunEvent


logger = logging.getLogger(__name__)


class WorkflowRunTracker:
    """Keeps one check run in step with one workflow run.

    Attributes:
        github: Client for the check run calls.
        correlations: Store of run id -> check run id records.
    """

    def __init__(self, github: GitHubClient, correlations: CorrelationStore):
        self.github = github
        self.correlations = correlations

    async def on_requested(self, event: WorkflowRunEvent) -> int:
        """Create and record the check run for a newly requested run.

        Returns:
            The id of the created check run.
        """
        run = event.workflow_run
        details = await self.github.get_workflow_run(run.url)

        check_run_id = await self.github.create_check_run(
            event.repository.url,
            name=details.name or run.name,
            head_sha=details.head_sha,
            external_id=str(run.id),
            details_url=details.html_url or run.html_url or None,
        )
        await self.correlations.track(run.id, check_run_id)

        logger.info(
            "Tracking workflow run %s as check run %s",
            run.id,
            check_run_id,
            extra={"run_id": run.id, "check_run_id": check_run_id},
        )
        return check_run_id

    async def on_in_progress(self, event: WorkflowRunEvent) -> bool:
        """Mark the recorded check run as in progress.

        Returns:
            False when the run is untracked.
        """
        run_id = event.workflow_run.id
        check_run_id = await self.correlations.lookup(run_id)
        if check_run_id is None:
            logger.debug("Workflow run %s is not tracked", run_id)
            return False

        await self.github.update_check_run(
            event.repository.url,
            check_run_id,
            CheckRunStatus.IN_PROGRESS,
        )
        return True

    async def on_completed(self, event: WorkflowRunEvent) -> bool:
        """Complete the recorded check run and forget the run.

        Returns:
            False when the run is untracked.
        """
        run = event.workflow_run
        check_run_id = await self.correlations.lookup(run.id)
        if check_run_id is None:
            logger.debug("Workflow run %s is not tracked", run.id)
            return False

        conclusion = check_run_conclusion(run.conclusion)
        await self.github.update_check_run(
            event.repository.url,
            check_run_id,
            CheckRunStatus.COMPLETED,
            conclusion=conclusion,
        )
        await self.correlations.forget(run.id)

        logger.info(
            "Workflow run %s finished: %s",
            run.id,
            conclusion,
            extra={
                "run_id": run.id,
                "check_run_id": check_run_id,
                "workflow_conclusion": run.conclusion,
                "conclusion": conclusion,
            },
        )
        return True
