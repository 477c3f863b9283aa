"""Sinks for work unit events.

The work queue reports every unit it runs or refuses as a RelayEvent. An
EventEmitter decides where that report goes: the log, Prometheus, several
sinks at once, or nowhere.
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Iterable, List, Optional, Sequence

from src.relay.events.models import EventType, RelayEvent


logger = logging.getLogger(__name__)


class EventSinkType(str, Enum):
    """Where work unit events can be sent."""

    LOGGING = "logging"
    METRICS = "metrics"


class EventEmitter(ABC):
    """Receives work unit events from the queue workers.

    emit() runs on a worker task; an implementation that raises is contained
    by CompositeEventEmitter but would otherwise surface in the worker.
    """

    @abstractmethod
    async def emit(self, event: RelayEvent) -> None:
        """Record one event."""

    async def close(self) -> None:
        """Release whatever the sink holds. Most sinks hold nothing."""


class LoggingEventEmitter(EventEmitter):
    """Writes each event as one log record with the event as extras.

    Completed units log at DEBUG, since every delivery produces one. Failed
    units log at ERROR and dropped units at WARNING.
    """

    _LEVELS = {
        EventType.WORK_COMPLETED: logging.DEBUG,
        EventType.WORK_FAILED: logging.ERROR,
        EventType.WORK_DROPPED: logging.WARNING,
    }

    def __init__(self, target: Optional[logging.Logger] = None):
        self._logger = target or logger

    async def emit(self, event: RelayEvent) -> None:
        if event.event_type == EventType.WORK_FAILED:
            message = "Work unit %s failed: %s"
            args = (event.kind, event.details.get("error", "unknown error"))
        elif event.event_type == EventType.WORK_DROPPED:
            message = "Work unit %s dropped: queue full"
            args = (event.kind,)
        else:
            message = "Work unit %s completed"
            args = (event.kind,)

        self._logger.log(
            self._LEVELS.get(event.event_type, logging.INFO),
            message,
            *args,
            extra=event.to_log_dict(),
        )


class CompositeEventEmitter(EventEmitter):
    """Fans each event out to several sinks.

    A sink that raises is logged and skipped; the remaining sinks still
    receive the event.
    """

    def __init__(self, emitters: Sequence[EventEmitter] = ()):
        self._emitters: List[EventEmitter] = list(emitters)

    @property
    def emitters(self) -> List[EventEmitter]:
        return list(self._emitters)

    async def emit(self, event: RelayEvent) -> None:
        for sink in self._emitters:
            try:
                await sink.emit(event)
            except Exception as e:
                logger.error(
                    "Event sink %s failed: %s",
                    type(sink).__name__,
                    e,
                    extra={"sink": type(sink).__name__, "kind": event.kind},
                )

    async def close(self) -> None:
        for sink in self._emitters:
            try:
                await sink.close()
            except Exception as e:
                logger.error("Closing event sink %s failed: %s", type(sink).__name__, e)


class NullEventEmitter(EventEmitter):
    """Drops every event. Used when a WorkQueue is built without a sink."""

    async def emit(self, event: RelayEvent) -> None:
        return None


def create_event_emitter(
    sink_types: Iterable[EventSinkType] = (EventSinkType.LOGGING,),
    metrics=None,
) -> EventEmitter:
    """Build the emitter for a set of sinks.

    Args:
        sink_types: Sinks to enable. Nothing enabled means logging only.
        metrics: RelayMetrics for the metrics sink. The default registry's
                 instance is used when omitted.

    Returns:
        The single requested emitter, or a CompositeEventEmitter over all
        of them.
    """
    emitters: List[EventEmitter] = []
    for sink_type in dict.fromkeys(sink_types):
        if sink_type == EventSinkType.LOGGING:
            emitters.append(LoggingEventEmitter())
        elif sink_type == EventSinkType.METRICS:
            # metrics.py imports this module
            from src.relay.events.metrics import MetricsEventEmitter

            emitters.append(MetricsEventEmitter(metrics=metrics))

    if not emitters:
        return LoggingEventEmitter()
    if len(emitters) == 1:
        return emitters[0]
    return CompositeEventEmitter(emitters)
