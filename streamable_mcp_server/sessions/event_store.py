"""In-memory event store enabling resumable server-to-client streams.

The MCP SDK only defines the ``EventStore`` interface. This implementation keeps
a bounded history per stream so a client reconnecting with ``Last-Event-ID`` is
sent everything it missed on that stream. History is lost on restart.
"""

import itertools
import logging
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, List, Optional

from mcp.server.streamable_http import (
    EventCallback,
    EventId,
    EventMessage,
    EventStore,
    StreamId,
)
from mcp.types import JSONRPCMessage

logger = logging.getLogger(__name__)


@dataclass
class StoredEvent:
    event_id: EventId
    stream_id: StreamId
    message: Optional[JSONRPCMessage]


class InMemoryEventStore(EventStore):
    """Bounded per-stream event history kept in process memory."""

    def __init__(self, max_events_per_stream: int = 1000):
        if max_events_per_stream < 1:
            raise ValueError("max_events_per_stream must be at least 1")
        self.max_events_per_stream = max_events_per_stream
        self._streams: Dict[StreamId, Deque[StoredEvent]] = {}
        self._events: Dict[EventId, StoredEvent] = {}
        self._counter = itertools.count(1)

    async def store_event(self, stream_id: StreamId, message: Optional[JSONRPCMessage]) -> EventId:
        """Store an event and return its id.

        ``message`` is None for priming events, which mark a position in the
        stream but carry nothing to replay.
        """
        event = StoredEvent(
            event_id=f"{stream_id}_{next(self._counter)}",
            stream_id=stream_id,
            message=message,
        )
        stream = self._streams.get(stream_id)
        if stream is None:
            stream = self._streams[stream_id] = deque()
        if len(stream) >= self.max_events_per_stream:
            evicted = stream.popleft()
            self._events.pop(evicted.event_id, None)
        stream.append(event)
        self._events[event.event_id] = event
        return event.event_id

    async def replay_events_after(
        self,
        last_event_id: EventId,
        send_callback: EventCallback,
    ) -> Optional[StreamId]:
        """Send every event stored after ``last_event_id`` on the same stream.

        Returns the stream id, or None when the event id is unknown (never
        issued, or already evicted).
        """
        anchor = self._events.get(last_event_id)
        if anchor is None:
            logger.warning(f"[EVENTS] Unknown Last-Event-ID {last_event_id}, nothing to replay")
            return None

        replayed = 0
        found = False
        for event in list(self._streams.get(anchor.stream_id, ())):
            if found and event.message is not None:
                await send_callback(EventMessage(message=event.message, event_id=event.event_id))
                replayed += 1
            elif event.event_id == last_event_id:
                found = True

        logger.info(f"[EVENTS] Replayed {replayed} event(s) on stream {anchor.stream_id} after {last_event_id}")
        return anchor.stream_id

    def stream_length(self, stream_id: StreamId) -> int:
        return len(self._streams.get(stream_id, ()))

    def event_ids(self, stream_id: StreamId) -> List[EventId]:
        """Ids still held for a stream, oldest first."""
        return [event.event_id for event in self._streams.get(stream_id, ())]
