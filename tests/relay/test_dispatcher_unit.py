"""Unit tests for event dispatch: gates, bootstrap and the check run lifecycle.

The dispatcher runs against real components wired by build_context, with an
in-memory backend and a fake GitHub API.
"""

import asyncio

import httpx
import pytest
from prometheus_client import CollectorRegistry

from src.relay.context import build_context
from src.relay.dispatch import DispatchOutcome
from src.relay.github.auth import ApplicationIdentity
from src.relay.state.backend import InMemoryBackend
from src.relay.state.store import CORRELATION_TTL_SECONDS, correlation_key
from src.relay.webhook.models import (
    InstallationEvent,
    IssueCommentEvent,
    UnhandledEvent,
    WorkflowRunEvent,
)
from tests.relay.factories import (
    APP_ID,
    REPO_URL,
    TOKEN_URL,
    installation_payload,
    issue_comment_payload,
    workflow_run_payload,
)


def run_async(coro):
    return asyncio.run(coro)


IDENTITY = ApplicationIdentity(app_id=APP_ID, access_tokens_url=TOKEN_URL)


@pytest.fixture
def harness(make_settings, fake_github):
    """Runs a scenario against a started context and returns its result."""

    def _run(scenario, bootstrapped=True, **settings_overrides):
        async def wrapper():
            backend = InMemoryBackend()
            ctx = build_context(
                make_settings(**settings_overrides),
                backend=backend,
                transport=fake_github.transport,
                registry=CollectorRegistry(),
            )
            await ctx.start()
            try:
                if bootstrapped:
                    await ctx.identity.bootstrap(IDENTITY)
                result = await scenario(ctx, backend)
                await ctx.work_queue.join()
                return result
            finally:
                await ctx.close()

        return run_async(wrapper())

    return _run


def _comment(**kwargs) -> IssueCommentEvent:
    return IssueCommentEvent.model_validate(issue_comment_payload(**kwargs))


def _run_event(**kwargs) -> WorkflowRunEvent:
    return WorkflowRunEvent.model_validate(workflow_run_payload(**kwargs))


# ---------------------------------------------------------------------------
# installation
# ---------------------------------------------------------------------------


class TestInstallation:

    def test_first_installation_bootstraps(self, harness):
        async def scenario(ctx, backend):
            event = InstallationEvent.model_validate(installation_payload())
            outcome = await ctx.dispatcher.dispatch(event)
            return outcome, await backend.get("app_id"), await backend.get("access_tokens_url")

        outcome, app_id, token_url = harness(scenario, bootstrapped=False)

        assert outcome == DispatchOutcome.BOOTSTRAPPED
        assert (app_id, token_url) == (str(APP_ID), TOKEN_URL)

    def test_concurrent_installations_store_one_identity(self, harness):
        async def scenario(ctx, backend):
            event = InstallationEvent.model_validate(installation_payload())
            outcomes = await asyncio.gather(
                ctx.dispatcher.dispatch(event),
                ctx.dispatcher.dispatch(event),
            )
            other = InstallationEvent.model_validate(
                installation_payload(app_id=5, access_tokens_url="https://example.test/t")
            )
            late = await ctx.dispatcher.dispatch(other)
            return outcomes, late, await backend.get("app_id"), ctx.identity.current

        outcomes, late, app_id, current = harness(scenario, bootstrapped=False)

        assert sorted(o.value for o in outcomes) == ["already_bootstrapped", "bootstrapped"]
        assert late == DispatchOutcome.ALREADY_BOOTSTRAPPED
        assert app_id == str(APP_ID)
        assert current == IDENTITY

    def test_unhandled_event(self, harness, fake_github):
        async def scenario(ctx, backend):
            return await ctx.dispatcher.dispatch(UnhandledEvent(event_type="push"))

        assert harness(scenario) == DispatchOutcome.UNHANDLED
        assert fake_github.requests == []


# ---------------------------------------------------------------------------
# issue_comment
# ---------------------------------------------------------------------------


class TestIssueComment:

    @pytest.mark.parametrize("association", ["OWNER", "MEMBER", "COLLABORATOR"])
    def test_trusted_author_dispatches(self, harness, fake_github, association):
        async def scenario(ctx, backend):
            return await ctx.dispatcher.dispatch(
                _comment(body='!harmful build {"env":"prod"}', author_association=association)
            )

        assert harness(scenario) == DispatchOutcome.QUEUED
        (dispatch,) = fake_github.calls("POST", "/dispatches")
        assert str(dispatch.url) == f"{REPO_URL}/actions/workflows/build.yml/dispatches"
        assert fake_github.body(dispatch) == {"ref": "feature/thing", "inputs": {"env": "prod"}}
        assert len(fake_github.calls("POST", "/reactions")) == 1

    @pytest.mark.parametrize(
        "association",
        ["NONE", "FIRST_TIME_CONTRIBUTOR", "FIRST_TIMER", "CONTRIBUTOR", "MANNEQUIN"],
    )
    def test_untrusted_author_never_dispatches(self, harness, fake_github, association):
        async def scenario(ctx, backend):
            return await ctx.dispatcher.dispatch(
                _comment(body="!harmful build", author_association=association)
            )

        assert harness(scenario) == DispatchOutcome.IGNORED
        assert fake_github.calls("POST", "/dispatches") == []

    def test_closed_pull_request_ignored(self, harness, fake_github):
        async def scenario(ctx, backend):
            return await ctx.dispatcher.dispatch(_comment(state="closed"))

        assert harness(scenario) == DispatchOutcome.IGNORED
        assert fake_github.requests == []

    def test_plain_issue_ignored(self, harness, fake_github):
        async def scenario(ctx, backend):
            return await ctx.dispatcher.dispatch(_comment(is_pull_request=False))

        assert harness(scenario) == DispatchOutcome.IGNORED
        assert fake_github.requests == []

    @pytest.mark.parametrize("body", ["hello", "!harmful build not-json", "!harmful"])
    def test_non_command_ignored(self, harness, fake_github, body):
        async def scenario(ctx, backend):
            return await ctx.dispatcher.dispatch(_comment(body=body))

        assert harness(scenario) == DispatchOutcome.IGNORED
        assert fake_github.requests == []

    def test_configured_prefix(self, harness, fake_github):
        async def scenario(ctx, backend):
            return await ctx.dispatcher.dispatch(_comment(body="/relay lint"))

        assert harness(scenario, command_prefix="/relay") == DispatchOutcome.QUEUED
        assert len(fake_github.calls("POST", "/actions/workflows/lint.yml/dispatches")) == 1

    def test_ignored_before_bootstrap(self, harness, fake_github):
        async def scenario(ctx, backend):
            return await ctx.dispatcher.dispatch(_comment())

        assert harness(scenario, bootstrapped=False) == DispatchOutcome.IGNORED
        assert fake_github.requests == []


# ---------------------------------------------------------------------------
# workflow_run
# ---------------------------------------------------------------------------


class TestWorkflowRunLifecycle:

    def test_requested_creates_check_run_and_record(self, harness, fake_github):
        async def scenario(ctx, backend):
            outcome = await ctx.dispatcher.dispatch(_run_event(action="requested", run_id=42))
            await ctx.work_queue.join()
            key = correlation_key(42)
            return outcome, await backend.get(key), await backend.ttl(key)

        outcome, record, ttl = harness(scenario)

        assert outcome == DispatchOutcome.QUEUED
        assert record == "777"
        assert ttl == CORRELATION_TTL_SECONDS
        (create,) = fake_github.calls("POST", "/check-runs")
        body = fake_github.body(create)
        assert body["status"] == "queued"
        assert body["external_id"] == "42"
        assert body["head_sha"] == "9fceb02d0ae598e95dc970b74767f19372d61af8"

    def test_requested_by_other_actor_ignored(self, harness, fake_github):
        async def scenario(ctx, backend):
            return await ctx.dispatcher.dispatch(
                _run_event(action="requested", actor_id=1)
            )

        assert harness(scenario) == DispatchOutcome.IGNORED
        assert fake_github.requests == []

    def test_in_progress_updates_same_check_run(self, harness, fake_github):
        async def scenario(ctx, backend):
            await ctx.dispatcher.dispatch(_run_event(action="requested", run_id=42))
            await ctx.work_queue.join()
            await ctx.dispatcher.dispatch(_run_event(action="in_progress", run_id=42))

        harness(scenario)

        (update,) = fake_github.calls("PATCH")
        assert str(update.url) == f"{REPO_URL}/check-runs/777"
        assert fake_github.body(update) == {"status": "in_progress"}

    def test_in_progress_without_record_is_noop(self, harness, fake_github):
        async def scenario(ctx, backend):
            return await ctx.dispatcher.dispatch(_run_event(action="in_progress", run_id=99))

        assert harness(scenario) == DispatchOutcome.QUEUED
        assert fake_github.calls("PATCH") == []
        assert fake_github.calls("POST", "/check-runs") == []

    def test_completed_removes_record_and_duplicate_is_noop(self, harness, fake_github):
        async def scenario(ctx, backend):
            await ctx.dispatcher.dispatch(_run_event(action="requested", run_id=42))
            await ctx.work_queue.join()
            await ctx.dispatcher.dispatch(
                _run_event(action="completed", run_id=42, conclusion="success")
            )
            await ctx.work_queue.join()
            after_first = await backend.get(correlation_key(42))
            await ctx.dispatcher.dispatch(
                _run_event(action="completed", run_id=42, conclusion="success")
            )
            return after_first

        assert harness(scenario) is None
        (update,) = fake_github.calls("PATCH")
        assert fake_github.body(update) == {"status": "completed", "conclusion": "success"}

    def test_runs_are_tracked_independently(self, harness, fake_github):
        async def scenario(ctx, backend):
            await ctx.dispatcher.dispatch(_run_event(action="requested", run_id=42))
            await ctx.dispatcher.dispatch(_run_event(action="requested", run_id=43))
            await ctx.work_queue.join()
            await ctx.dispatcher.dispatch(
                _run_event(action="completed", run_id=42, conclusion="startup_failure")
            )
            await ctx.work_queue.join()
            return await ctx.correlations.lookup(42), await ctx.correlations.lookup(43)

        first, second = harness(scenario)

        assert first is None
        assert second in (777, 778)
        (update,) = fake_github.calls("PATCH")
        assert fake_github.body(update)["conclusion"] == "failure"

    def test_failed_unit_keeps_record(self, harness, fake_github):
        async def scenario(ctx, backend):
            await ctx.dispatcher.dispatch(_run_event(action="requested", run_id=42))
            await ctx.work_queue.join()
            fake_github.overrides[("PATCH", f"{REPO_URL}/check-runs/777")] = (
                httpx.Response(500, text="oops")
            )
            await ctx.dispatcher.dispatch(
                _run_event(action="completed", run_id=42, conclusion="success")
            )
            await ctx.work_queue.join()
            failed = ctx.metrics.registry.get_sample_value(
                "relay_work_units_total",
                {"kind": "workflow_run.completed", "outcome": "failed"},
            )
            return await ctx.correlations.lookup(42), failed

        record, failed = harness(scenario)

        assert record == 777
        assert failed == 1
