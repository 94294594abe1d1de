"""Loop event channel for status and log observers."""

from __future__ import annotations

import logging
import threading
from collections import deque
from datetime import datetime
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)


class EventKind(StrEnum):
    """Kinds of events published by the decision loop."""

    STATE = "state"
    CYCLE_SKIPPED = "cycle_skipped"
    DECISION = "decision"
    ACTION = "action"
    ADVICE = "advice"
    RATE_LIMITED = "rate_limited"
    EXHAUSTED = "exhausted"
    ERROR = "error"
    FATAL = "fatal"


class LoopEventChannel:
    """Thread-safe bounded event stream the loop publishes to.

    The loop never waits on consumers: ``publish`` only appends to a
    bounded deque, dropping the oldest events when full. Consumers poll
    with ``get_events_since`` or ``drain``.

    Example:
        >>> channel = LoopEventChannel()
        >>> channel.publish(EventKind.STATE, state="thinking")
        1
        >>> [e["kind"] for e in channel.get_events_since(0)]
        ['state']
    """

    def __init__(self, max_events: int = 500) -> None:
        self._max_events = max(1, max_events)
        self._lock = threading.Lock()
        self._events: deque[dict[str, Any]] = deque(maxlen=self._max_events)
        self._next_id = 1

    @property
    def last_event_id(self) -> int:
        """Id of the most recently published event (0 if none)."""
        with self._lock:
            return self._next_id - 1

    def publish(self, kind: EventKind | str, **payload: Any) -> int:
        """Publish an event and return its assigned id."""
        with self._lock:
            event_id = self._next_id
            self._next_id += 1
            self._events.append(
                {
                    "id": event_id,
                    "timestamp": datetime.now().isoformat(),
                    "kind": str(kind),
                    "payload": payload,
                }
            )
            return event_id

    def get_events_since(self, last_event_id: int) -> list[dict[str, Any]]:
        """Get events with id greater than ``last_event_id``."""
        with self._lock:
            return [event for event in self._events if int(event["id"]) > last_event_id]

    def drain(self) -> list[dict[str, Any]]:
        """Remove and return all buffered events in order."""
        with self._lock:
            events = list(self._events)
            self._events.clear()
            return events
