"""Per-incident progress channels behind the SSE endpoint.

The orchestrator and phase runner publish :class:`WorkflowEvent` records
here. Every incident has a channel that keeps the events published so far,
so a dashboard that connects late still sees the whole investigation, and
fans new events out to live subscribers.

Channels of finished investigations are kept for a bounded number of
incidents; the oldest finished channel is dropped once that number is
exceeded.
"""

from __future__ import annotations

import asyncio
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

import structlog

from bober.models import WorkflowEvent, utcnow

logger = structlog.get_logger(__name__)

EVENT_WORKFLOW_STARTED = "workflow_started"
EVENT_PHASE_STARTED = "phase_started"
EVENT_ITERATION_RECORDED = "iteration_recorded"
EVENT_PHASE_COMPLETED = "phase_completed"
EVENT_WORKFLOW_COMPLETED = "workflow_completed"
EVENT_WORKFLOW_FAILED = "workflow_failed"
EVENT_WORKFLOW_CANCELLED = "workflow_cancelled"

# A workflow publishes exactly one of these, last
TERMINAL_EVENTS = frozenset(
    {EVENT_WORKFLOW_COMPLETED, EVENT_WORKFLOW_FAILED, EVENT_WORKFLOW_CANCELLED}
)


@dataclass
class _Channel:
    events: list[WorkflowEvent] = field(default_factory=list)
    subscribers: list[asyncio.Queue[WorkflowEvent]] = field(default_factory=list)

    @property
    def finished(self) -> bool:
        return bool(self.events) and self.events[-1].event_type in TERMINAL_EVENTS


class WorkflowEventStream:
    """Publishes workflow events and replays them to SSE subscribers.

    Args:
        max_queue_size: Events buffered per subscriber before new ones are
            dropped for that subscriber.
        retain_finished: Number of finished incidents whose events are kept
            for replay.
    """

    def __init__(self, max_queue_size: int = 256, retain_finished: int = 100) -> None:
        self._channels: dict[str, _Channel] = {}
        # Finished incident ids, oldest first
        self._finished: OrderedDict[str, None] = OrderedDict()
        self._max_queue_size = max_queue_size
        self._retain_finished = retain_finished

    async def emit(
        self,
        incident_id: str,
        event_type: str,
        data: dict[str, Any] | None = None,
        message: str = "",
    ) -> WorkflowEvent:
        """Record an event for *incident_id* and push it to live subscribers."""
        event = WorkflowEvent(
            event_type=event_type,
            incident_id=incident_id,
            data=data or {},
            message=message,
            timestamp=utcnow(),
        )
        channel = self._channels.setdefault(incident_id, _Channel())
        if channel.finished:
            logger.warning("event_after_terminal", incident_id=incident_id, event_type=event_type)
            return event

        channel.events.append(event)
        for queue in channel.subscribers:
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning("event_queue_full", incident_id=incident_id, event_type=event_type)

        logger.debug(
            "event_emitted",
            incident_id=incident_id,
            event_type=event_type,
            subscribers=len(channel.subscribers),
        )
        if event_type in TERMINAL_EVENTS:
            self._retire(incident_id)
        return event

    async def subscribe(self, incident_id: str, finished: bool = False) -> AsyncIterator[WorkflowEvent]:
        """Yield the events of *incident_id*, past ones first.

        Iteration ends after the terminal event. Pass ``finished=True`` for an
        incident already known to be terminal: if its events are no longer
        retained the iterator ends at once instead of waiting.
        """
        channel = self._channels.get(incident_id)
        if channel is None:
            if finished:
                return
            channel = self._channels.setdefault(incident_id, _Channel())

        queue: asyncio.Queue[WorkflowEvent] = asyncio.Queue(maxsize=self._max_queue_size)
        replay = list(channel.events)
        done = channel.finished
        if not done:
            channel.subscribers.append(queue)

        try:
            for event in replay:
                yield event
            if done:
                return
            while True:
                event = await queue.get()
                yield event
                if event.event_type in TERMINAL_EVENTS:
                    return
        finally:
            if queue in channel.subscribers:
                channel.subscribers.remove(queue)
            if not channel.events and not channel.subscribers:
                # Nothing was ever published; do not keep an empty channel
                if self._channels.get(incident_id) is channel:
                    del self._channels[incident_id]

    def get_history(self, incident_id: str) -> list[WorkflowEvent]:
        channel = self._channels.get(incident_id)
        return list(channel.events) if channel is not None else []

    def __contains__(self, incident_id: object) -> bool:
        return incident_id in self._channels

    def _retire(self, incident_id: str) -> None:
        """Mark *incident_id* finished and drop the oldest finished channels over the limit."""
        channel = self._channels[incident_id]
        channel.subscribers.clear()
        self._finished[incident_id] = None
        while len(self._finished) > self._retain_finished:
            evicted, _ = self._finished.popitem(last=False)
            self._channels.pop(evicted, None)
            logger.debug("event_history_evicted", incident_id=evicted)
