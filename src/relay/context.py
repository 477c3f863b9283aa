"""Dependency wiring for the relay.

AppContext owns every long-lived object the webhook route needs. It is built
once per application from RelaySettings; tests build it with an in-memory
backend, an httpx.MockTransport and a private Prometheus registry.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from prometheus_client import CollectorRegistry

from src.relay.config import RelaySettings
from src.relay.dispatch.commands import CommandInterpreter
from src.relay.dispatch.dispatcher import EventDispatcher
from src.relay.dispatch.workflow_runs import WorkflowRunTracker
from src.relay.errors import StoreError
from src.relay.events.emitter import EventEmitter, EventSinkType, create_event_emitter
from src.relay.events.metrics import RelayMetrics, get_metrics
from src.relay.github.auth import CredentialManager
from src.relay.github.client import GitHubClient, build_http_client
from src.relay.state.backend import KeyValueBackend, create_backend
from src.relay.state.identity import IdentityState
from src.relay.state.store import CorrelationStore, IdentityStore
from src.relay.webhook.handler import WebhookHandler, create_webhook_handler
from src.relay.workqueue import WorkQueue


logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    """Long-lived relay components.

    Attributes:
        settings: Validated configuration.
        backend: Key-value backend shared by both stores.
        metrics: Prometheus metrics.
        emitter: Sink for background work outcomes.
        identity: Application identity state.
        correlations: Workflow run -> check run records.
        credentials: Installation token cache.
        github: GitHub API client.
        work_queue: Background work queue.
        webhook_handler: Authenticates and parses deliveries.
        dispatcher: Routes parsed events.
    """

    settings: RelaySettings
    backend: KeyValueBackend
    metrics: RelayMetrics
    emitter: EventEmitter
    identity: IdentityState
    correlations: CorrelationStore
    credentials: CredentialManager
    github: GitHubClient
    work_queue: WorkQueue
    webhook_handler: WebhookHandler
    dispatcher: EventDispatcher

    async def start(self) -> None:
        """Load a persisted identity and start the workers."""
        try:
            identity = await self.identity.load()
        except StoreError as e:
            # /ready reports the backend; bootstrap is retried per event
            logger.error("Could not load persisted identity: %s", e.message)
            identity = None

        if identity is None:
            logger.warning("No application identity yet; waiting for an installation event")
        else:
            logger.info("Loaded application identity", extra={"app_id": identity.app_id})

        self.work_queue.start()

    async def close(self) -> None:
        """Stop the workers and release connections."""
        await self.work_queue.stop(drain=False)
        await self.emitter.close()
        await self.github.close()
        await self.backend.close()


def build_context(
    settings: RelaySettings,
    backend: Optional[KeyValueBackend] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    registry: Optional[CollectorRegistry] = None,
) -> AppContext:
    """Wire all relay dependencies.

    Args:
        settings: Validated relay settings.
        backend: Optional backend override; defaults to the one
                 ``settings.redis_url`` selects.
        transport: Optional HTTP transport override for the GitHub client.
        registry: Optional Prometheus registry; defaults to the global one.

    Returns:
        A context whose workers are not started yet.
    """
    backend = backend if backend is not None else create_backend(settings.redis_url)
    metrics = get_metrics(registry)
    emitter = create_event_emitter(
        [EventSinkType.LOGGING, EventSinkType.METRICS],
        metrics=metrics,
    )

    identity = IdentityState(IdentityStore(backend))
    correlations = CorrelationStore(backend)

    http_client = build_http_client(
        timeout=settings.request_timeout_seconds,
        transport=transport,
    )
    credentials = CredentialManager(
        private_key=settings.app_private_key,
        http_client=http_client,
    )
    github = GitHubClient(
        http_client=http_client,
        credentials=credentials,
        identity_provider=lambda: identity.current,
    )

    work_queue = WorkQueue(
        worker_count=settings.worker_count,
        queue_size=settings.queue_size,
        emitter=emitter,
        metrics=metrics,
    )
    dispatcher = EventDispatcher(
        identity=identity,
        work_queue=work_queue,
        commands=CommandInterpreter(github),
        runs=WorkflowRunTracker(github, correlations),
        automation_actor_id=settings.automation_actor_id,
        command_prefix=settings.command_prefix,
    )

    return AppContext(
        settings=settings,
        backend=backend,
        metrics=metrics,
        emitter=emitter,
        identity=identity,
        correlations=correlations,
        credentials=credentials,
        github=github,
        work_queue=work_queue,
        webhook_handler=create_webhook_handler(settings.webhook_secret),
        dispatcher=dispatcher,
    )
