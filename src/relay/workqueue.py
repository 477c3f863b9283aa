"""Bounded background work queue for webhook follow-up work.

Webhook responses must not wait on the GitHub API calls an event triggers,
so those call chains run here, on a fixed pool of worker tasks fed by a
bounded asyncio.Queue. Every unit reports its outcome through an
EventEmitter:

- WORK_COMPLETED: the unit returned
- WORK_FAILED: the unit raised; the error is logged with its traceback
- WORK_DROPPED: the queue was full when the unit was submitted

A failing unit never takes its worker down.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

from src.relay.events.emitter import EventEmitter, NullEventEmitter
from src.relay.events.metrics import RelayMetrics
from src.relay.events.models import EventType, RelayEvent


logger = logging.getLogger(__name__)


WorkFactory = Callable[[], Awaitable[None]]


@dataclass(frozen=True)
class WorkUnit:
    """One queued call chain.

    Attributes:
        kind: What the unit does, used as the metrics label.
        factory: Zero-argument callable returning the coroutine to run.
        delivery_id: The webhook delivery that produced the unit.
    """

    kind: str
    factory: WorkFactory
    delivery_id: Optional[str] = None
    enqueued_at: float = field(default_factory=time.monotonic)


class WorkQueue:
    """Fixed pool of workers draining a bounded queue.

    Attributes:
        worker_count: Number of concurrent workers.
        queue_size: Maximum number of waiting units.

    Example:
        >>> queue = WorkQueue(worker_count=2, queue_size=10)
        >>> queue.start()
        >>> await queue.submit("workflow_run.requested", lambda: tracker.on_requested(event))
        >>> await queue.stop()
    """

    def __init__(
        self,
        worker_count: int = 4,
        queue_size: int = 256,
        emitter: Optional[EventEmitter] = None,
        metrics: Optional[RelayMetrics] = None,
    ):
        if worker_count < 1:
            raise ValueError("worker_count must be at least 1")
        if queue_size < 1:
            raise ValueError("queue_size must be at least 1")

        self.worker_count = worker_count
        self.queue_size = queue_size
        self._emitter = emitter or NullEventEmitter()
        self._metrics = metrics
        self._queue: "asyncio.Queue[WorkUnit]" = asyncio.Queue(maxsize=queue_size)
        self._workers: List[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._workers)

    @property
    def depth(self) -> int:
        """Number of units waiting to be picked up."""
        return self._queue.qsize()

    def start(self) -> None:
        """Start the worker tasks on the running event loop."""
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(index), name=f"relay-worker-{index}")
            for index in range(self.worker_count)
        ]
        logger.info(
            "Work queue started",
            extra={"worker_count": self.worker_count, "queue_size": self.queue_size},
        )

    async def submit(
        self,
        kind: str,
        factory: WorkFactory,
        delivery_id: Optional[str] = None,
    ) -> bool:
        """Enqueue a unit of work without waiting for queue space.

        Args:
            kind: What the unit does.
            factory: Zero-argument callable returning the coroutine to run.
            delivery_id: The originating webhook delivery id.

        Returns:
            True if the unit was queued, False if it was dropped.
        """
        unit = WorkUnit(kind=kind, factory=factory, delivery_id=delivery_id)
        try:
            self._queue.put_nowait(unit)
        except asyncio.QueueFull:
            logger.warning(
                "Work queue full, dropping unit",
                extra={"kind": kind, "delivery_id": delivery_id, "queue_size": self.queue_size},
            )
            await self._emitter.emit(
                RelayEvent(
                    event_type=EventType.WORK_DROPPED,
                    kind=kind,
                    delivery_id=delivery_id,
                    details={"queue_size": self.queue_size},
                )
            )
            return False

        self._update_depth()
        return True

    async def join(self) -> None:
        """Wait until every queued unit has been processed."""
        await self._queue.join()

    async def stop(self, drain: bool = True) -> None:
        """Stop the workers.

        Args:
            drain: Wait for queued units to finish before cancelling.
        """
        if drain and self._workers:
            await self._queue.join()

        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Work queue stopped")

    async def _worker(self, index: int) -> None:
        while True:
            unit = await self._queue.get()
            self._update_depth()
            try:
                await self._run(unit)
            finally:
                self._queue.task_done()

    async def _run(self, unit: WorkUnit) -> None:
        started = time.monotonic()
        try:
            await unit.factory()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            duration = time.monotonic() - started
            logger.exception(
                "Work unit failed",
                extra={
                    "kind": unit.kind,
                    "delivery_id": unit.delivery_id,
                    "error_type": type(e).__name__,
                },
            )
            await self._emitter.emit(
                RelayEvent(
                    event_type=EventType.WORK_FAILED,
                    kind=unit.kind,
                    delivery_id=unit.delivery_id,
                    details={
                        "duration_seconds": duration,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    },
                )
            )
            return

        await self._emitter.emit(
            RelayEvent(
                event_type=EventType.WORK_COMPLETED,
                kind=unit.kind,
                delivery_id=unit.delivery_id,
                details={
                    "duration_seconds": time.monotonic() - started,
                    "queued_seconds": started - unit.enqueued_at,
                },
            )
        )

    def _update_depth(self) -> None:
        if self._metrics is not None:
            self._metrics.set_queue_depth(self._queue.qsize())
