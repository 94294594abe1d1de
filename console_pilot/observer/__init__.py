"""Observer package: events published by the decision loop."""

from console_pilot.observer.events import EventKind, LoopEventChannel

__all__ = ["EventKind", "LoopEventChannel"]
